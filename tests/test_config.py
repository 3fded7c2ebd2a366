"""Tests for environment-driven deploy configuration."""

from pathlib import Path

import pytest
from pydantic import SecretStr

from kb_publish.config import ConfigError, DeployConfig, DeployTarget, load_config

SETTING_KEYS = (
    "FTP_HOST",
    "FTP_USER",
    "FTP_PASSWORD",
    "FTP_PORT",
    "FTP_SECURE",
    "FTP_REMOTE_PATH",
    "LOCAL_BUILD_PATH",
    "CLEAR_REMOTE",
    "SITE_URL",
)

BASE_ENV = {
    "FTP_HOST": "ftp.example.com",
    "FTP_USER": "deployer",
    "FTP_PASSWORD": "s3cret",
}


@pytest.fixture
def set_env(monkeypatch, tmp_path):
    """Start from an environment with no deploy settings and no `.env`."""
    monkeypatch.chdir(tmp_path)
    for prefix in ("", "STAGING_", "PROD_"):
        for key in SETTING_KEYS:
            monkeypatch.delenv(prefix + key, raising=False)

    def _set(values):
        for key, value in values.items():
            monkeypatch.setenv(key, value)

    return _set


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self, set_env):
        set_env(BASE_ENV)

        config = load_config()

        assert config.target is DeployTarget.DEFAULT
        assert config.host == "ftp.example.com"
        assert config.password.get_secret_value() == "s3cret"
        assert config.port == 21
        assert config.secure is False
        assert config.remote_path == "/"
        assert config.local_path == Path("./dist")
        assert config.clear_remote is False
        assert config.site_url is None

    def test_all_settings(self, set_env):
        set_env(
            dict(
                BASE_ENV,
                FTP_PORT="2121",
                FTP_SECURE="true",
                FTP_REMOTE_PATH="public_html/",
                LOCAL_BUILD_PATH="build",
                CLEAR_REMOTE="yes",
                SITE_URL="https://kb.example.com/",
            )
        )

        config = load_config()

        assert config.port == 2121
        assert config.secure is True
        assert config.remote_path == "/public_html"
        assert config.local_path == Path("build")
        assert config.clear_remote is True
        assert config.site_url == "https://kb.example.com/"

    def test_production_prefix(self, set_env):
        set_env(
            {
                "PROD_FTP_HOST": "prod.example.com",
                "PROD_FTP_USER": "prod",
                "PROD_FTP_PASSWORD": "pw",
                "PROD_FTP_REMOTE_PATH": "/www",
            }
        )

        config = load_config("production")

        assert config.target is DeployTarget.PRODUCTION
        assert config.host == "prod.example.com"
        assert config.remote_path == "/www"

    def test_optional_settings_fall_back_to_unprefixed(self, set_env):
        set_env(
            {
                "STAGING_FTP_HOST": "stage.example.com",
                "STAGING_FTP_USER": "stage",
                "STAGING_FTP_PASSWORD": "pw",
                "FTP_PORT": "2121",
                "LOCAL_BUILD_PATH": "out",
            }
        )

        config = load_config(DeployTarget.STAGING)

        assert config.port == 2121
        assert config.local_path == Path("out")

    def test_prefixed_setting_wins(self, set_env):
        set_env(dict(BASE_ENV, PROD_FTP_HOST="h", PROD_FTP_PORT="990", FTP_PORT="21"))

        assert load_config("production").port == 990

    def test_credentials_do_not_fall_back(self, set_env):
        set_env(BASE_ENV)

        config = load_config("production")

        assert config.host == ""
        with pytest.raises(
            ConfigError, match="PROD_FTP_HOST, PROD_FTP_USER, PROD_FTP_PASSWORD"
        ):
            config.validate(require_local=False)

    def test_empty_prefixed_value_falls_back(self, set_env):
        set_env(
            dict(
                BASE_ENV,
                PROD_FTP_HOST="h",
                PROD_FTP_USER="u",
                PROD_FTP_PASSWORD="p",
                PROD_FTP_SECURE="",
                FTP_SECURE="true",
            )
        )

        assert load_config("production").secure is True

    def test_invalid_port(self, set_env):
        set_env(dict(BASE_ENV, FTP_PORT="ftp"))

        with pytest.raises(ConfigError, match="FTP_PORT: .*valid integer"):
            load_config()

    def test_port_out_of_range(self, set_env):
        set_env(dict(BASE_ENV, FTP_PORT="70000"))

        with pytest.raises(ConfigError, match="FTP_PORT: .*65535"):
            load_config()

    def test_invalid_prefixed_port_names_the_setting(self, set_env):
        set_env({"PROD_FTP_PORT": "0"})

        with pytest.raises(ConfigError, match="target production: FTP_PORT"):
            load_config("production")

    def test_invalid_boolean(self, set_env):
        set_env(dict(BASE_ENV, FTP_SECURE="maybe"))

        with pytest.raises(ConfigError, match="FTP_SECURE"):
            load_config()

    def test_unknown_target(self, set_env):
        with pytest.raises(ValueError):
            load_config("qa")

    def test_reads_env_file(self, set_env, tmp_path):
        env_file = tmp_path / "deploy.env"
        env_file.write_text(
            "FTP_HOST=from-file.example.com\nFTP_USER=u\nFTP_PASSWORD=p\n",
            encoding="utf-8",
        )

        config = load_config(env_file=env_file)

        assert config.host == "from-file.example.com"

    def test_reads_dotenv_in_working_directory(self, set_env, tmp_path):
        (tmp_path / ".env").write_text(
            "PROD_FTP_HOST=prod.example.com\nSITE_URL=https://kb.example.com/\n",
            encoding="utf-8",
        )

        config = load_config("production")

        assert config.host == "prod.example.com"
        assert config.site_url == "https://kb.example.com/"

    def test_real_environment_wins_over_env_file(self, set_env, tmp_path):
        set_env({"FTP_HOST": "from-env.example.com"})
        env_file = tmp_path / "deploy.env"
        env_file.write_text("FTP_HOST=from-file.example.com\n", encoding="utf-8")

        config = load_config(env_file=env_file)

        assert config.host == "from-env.example.com"


class TestValidate:
    """Tests for DeployConfig.validate."""

    def test_reports_every_missing_variable(self, set_env):
        set_env({"FTP_HOST": "h"})
        config = load_config()

        with pytest.raises(ConfigError) as exc_info:
            config.validate(require_local=False)

        message = str(exc_info.value)
        assert "FTP_USER" in message
        assert "FTP_PASSWORD" in message
        assert "FTP_HOST" not in message

    def test_missing_build_directory(self, set_env, tmp_path):
        set_env(dict(BASE_ENV, LOCAL_BUILD_PATH=str(tmp_path / "dist")))
        config = load_config()

        with pytest.raises(ConfigError, match="Build directory not found"):
            config.validate()

    def test_build_directory_not_required(self, set_env, tmp_path):
        set_env(dict(BASE_ENV, LOCAL_BUILD_PATH=str(tmp_path / "dist")))

        load_config().validate(require_local=False)


class TestDeployConfig:
    """Tests for the resolved DeployConfig."""

    def test_describe_hides_password(self, set_env):
        set_env(BASE_ENV)

        described = load_config().describe()

        assert "password" not in described
        assert "s3cret" not in str(described)

    def test_repr_hides_password(self):
        config = DeployConfig(
            target=DeployTarget.DEFAULT,
            host="h",
            user="u",
            password=SecretStr("s3cret"),
        )

        assert "s3cret" not in repr(config)
        assert config.ftp.password == "s3cret"
