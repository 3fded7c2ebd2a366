from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from pydantic import AliasChoices, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

REQUIRED_KEYS = ("FTP_HOST", "FTP_USER", "FTP_PASSWORD")


class ConfigError(ValueError):
    """Raised when deploy configuration is missing or malformed."""


class DeployTarget(str, Enum):
    DEFAULT = "default"
    STAGING = "staging"
    PRODUCTION = "production"

    @property
    def env_prefix(self) -> str:
        return _TARGET_PREFIXES[self]


_TARGET_PREFIXES = {
    DeployTarget.DEFAULT: "",
    DeployTarget.STAGING: "STAGING_",
    DeployTarget.PRODUCTION: "PROD_",
}


def _normalize_remote_path(raw: str) -> str:
    path = raw.strip().replace("\\", "/") or "/"
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def _target_settings(prefix: str) -> type[BaseSettings]:
    """Settings model reading `<prefix>FTP_*` from the environment and `.env`.

    Credentials only exist under the prefix. Every other field falls back to
    the unprefixed variable, so one FTP_PORT can serve all targets.
    """

    def shared(key: str) -> AliasChoices:
        return AliasChoices(prefix + key, key)

    class TargetSettings(BaseSettings):
        model_config = SettingsConfigDict(
            env_prefix=prefix,
            env_file=".env",
            env_ignore_empty=True,
            extra="ignore",
        )

        ftp_host: str = ""
        ftp_user: str = ""
        ftp_password: SecretStr = SecretStr("")
        ftp_port: int = Field(21, ge=1, le=65535, validation_alias=shared("FTP_PORT"))
        ftp_secure: bool = Field(False, validation_alias=shared("FTP_SECURE"))
        ftp_remote_path: str = Field("/", validation_alias=shared("FTP_REMOTE_PATH"))
        local_build_path: Path = Field(
            Path("./dist"), validation_alias=shared("LOCAL_BUILD_PATH")
        )
        clear_remote: bool = Field(False, validation_alias=shared("CLEAR_REMOTE"))
        site_url: str | None = Field(None, validation_alias=shared("SITE_URL"))

        @field_validator("ftp_host", "ftp_user", "site_url")
        @classmethod
        def _strip(cls, value: str | None) -> str | None:
            return value.strip() if value is not None else None

        @field_validator("ftp_remote_path")
        @classmethod
        def _remote_path(cls, value: str) -> str:
            return _normalize_remote_path(value)

    return TargetSettings


_TARGET_SETTINGS = {t: _target_settings(t.env_prefix) for t in DeployTarget}


@dataclass(frozen=True)
class FtpSettings:
    host: str
    user: str
    password: str
    port: int = 21
    secure: bool = False


@dataclass
class DeployConfig:
    target: DeployTarget
    host: str
    user: str
    password: SecretStr
    port: int = 21
    secure: bool = False
    remote_path: str = "/"
    local_path: Path = Path("dist")
    clear_remote: bool = False
    site_url: str | None = None

    def env_name(self, key: str) -> str:
        return self.target.env_prefix + key

    @property
    def ftp(self) -> FtpSettings:
        return FtpSettings(
            host=self.host,
            user=self.user,
            password=self.password.get_secret_value(),
            port=self.port,
            secure=self.secure,
        )

    def validate(self, *, require_local: bool = True) -> None:
        values = {
            "FTP_HOST": self.host,
            "FTP_USER": self.user,
            "FTP_PASSWORD": self.password.get_secret_value(),
        }
        missing = [self.env_name(k) for k in REQUIRED_KEYS if not values[k]]
        if missing:
            raise ConfigError(
                "Missing required environment variables: "
                f"{', '.join(missing)}. "
                "Check your .env file or environment variables."
            )

        if require_local and not self.local_path.is_dir():
            raise ConfigError(
                f"Build directory not found: {self.local_path}. "
                "Run the site build first."
            )

    def describe(self) -> dict[str, object]:
        """Loggable view; never includes the password."""
        return {
            "target": self.target.value,
            "host": self.host,
            "user": self.user,
            "port": self.port,
            "secure": self.secure,
            "remote_path": self.remote_path,
            "local_path": str(self.local_path),
            "clear_remote": self.clear_remote,
            "site_url": self.site_url,
        }


def _validation_message(target: DeployTarget, error: ValidationError) -> str:
    prefix = target.env_prefix
    problems = []
    for err in error.errors():
        name = str(err["loc"][0]).upper() if err["loc"] else "?"
        if prefix and name.startswith(prefix):
            name = name[len(prefix):]
        problems.append(f"{name}: {err['msg']}")
    return f"Invalid settings for target {target.value}: " + "; ".join(problems)


def load_config(
    target: DeployTarget | str = DeployTarget.DEFAULT,
    *,
    env_file: Path | None = None,
) -> DeployConfig:
    """Resolve deploy settings for one target.

    Variables come from the process environment first, then from `env_file`
    (default `.env`). Empty values count as unset.

    Credentials are only read with the target prefix (e.g. PROD_FTP_HOST).
    Optional settings fall back to the unprefixed variable.
    """

    target = DeployTarget(target)
    model = _TARGET_SETTINGS[target]
    try:
        settings = model(_env_file=env_file or Path(".env"))
    except ValidationError as e:
        raise ConfigError(_validation_message(target, e)) from e

    return DeployConfig(
        target=target,
        host=settings.ftp_host,
        user=settings.ftp_user,
        password=settings.ftp_password,
        port=settings.ftp_port,
        secure=settings.ftp_secure,
        remote_path=settings.ftp_remote_path,
        local_path=settings.local_build_path,
        clear_remote=settings.clear_remote,
        site_url=settings.site_url,
    )
