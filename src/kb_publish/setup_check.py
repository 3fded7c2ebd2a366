from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

REQUIRED_FILES = (
    ".env.example",
    ".github/workflows/deploy.yml",
    "DEPLOYMENT.md",
    "pyproject.toml",
)

REQUIRED_DEPENDENCIES = (
    "requests",
    "beautifulsoup4",
    "tqdm",
    "pydantic-settings",
)

REQUIRED_ENV_VARS = ("FTP_HOST", "FTP_USER", "FTP_PASSWORD")

CLI_SCRIPT = "kb-publish"

_REQ_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


@dataclass(frozen=True)
class SetupCheck:
    name: str
    ok: bool
    detail: str = ""


@dataclass(frozen=True)
class SetupInspection:
    root: Path
    checks: list[SetupCheck]

    @property
    def failures(self) -> list[SetupCheck]:
        return [c for c in self.checks if not c.ok]

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "ok": self.ok,
            "checks": [
                {"name": c.name, "ok": c.ok, "detail": c.detail} for c in self.checks
            ],
        }


def _normalize_dist_name(name: str) -> str:
    return re.sub(r"[-_.]+", "-", name).lower()


def _declared_dependencies(pyproject: dict[str, Any]) -> set[str]:
    project = pyproject.get("project") or {}
    names: set[str] = set()
    for req in project.get("dependencies") or []:
        m = _REQ_NAME.match(str(req))
        if m:
            names.add(_normalize_dist_name(m.group(1)))
    return names


def _check_pyproject(root: Path) -> list[SetupCheck]:
    path = root / "pyproject.toml"
    if not path.exists():
        return []
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as e:
        return [SetupCheck("pyproject:parse", False, str(e))]

    checks: list[SetupCheck] = []
    declared = _declared_dependencies(data)
    for dep in REQUIRED_DEPENDENCIES:
        ok = _normalize_dist_name(dep) in declared
        checks.append(
            SetupCheck(
                f"dependency:{dep}",
                ok,
                "declared" if ok else "not in [project].dependencies",
            )
        )

    scripts = (data.get("project") or {}).get("scripts") or {}
    ok = CLI_SCRIPT in scripts
    checks.append(
        SetupCheck(
            f"script:{CLI_SCRIPT}",
            ok,
            str(scripts.get(CLI_SCRIPT)) if ok else "missing from [project.scripts]",
        )
    )
    return checks


def _check_env_template(root: Path) -> list[SetupCheck]:
    path = root / ".env.example"
    if not path.exists():
        return []
    text = path.read_text(encoding="utf-8", errors="replace")
    return [
        SetupCheck(
            f"env:{var}",
            var in text,
            "present" if var in text else "missing from .env.example",
        )
        for var in REQUIRED_ENV_VARS
    ]


def _check_build_dir(build_dir: Path) -> SetupCheck:
    if build_dir.is_dir():
        return SetupCheck("build_dir", True, f"{build_dir} exists")

    # Every missing component is created by the check and removed again.
    missing: list[Path] = []
    ancestor = build_dir
    while not ancestor.exists() and ancestor != ancestor.parent:
        missing.append(ancestor)
        ancestor = ancestor.parent

    try:
        build_dir.mkdir(parents=True)
    except OSError as e:
        return SetupCheck("build_dir", False, f"cannot create {build_dir}: {e}")
    finally:
        for created in missing:
            if created.is_dir():
                created.rmdir()
    return SetupCheck("build_dir", True, f"{build_dir} can be created")


def _check_workflow(root: Path) -> list[SetupCheck]:
    path = root / ".github" / "workflows" / "deploy.yml"
    if not path.exists():
        return []
    text = path.read_text(encoding="utf-8", errors="replace")
    runs_deploy = f"{CLI_SCRIPT} deploy" in text
    uses_secrets = "secrets.PROD_FTP_HOST" in text
    return [
        SetupCheck(
            "workflow:deploy",
            runs_deploy,
            "runs the deploy command" if runs_deploy else f"never runs `{CLI_SCRIPT} deploy`",
        ),
        SetupCheck(
            "workflow:secrets",
            uses_secrets,
            "uses repository secrets"
            if uses_secrets
            else "missing secrets.PROD_FTP_HOST reference",
        ),
    ]


def inspect_setup(root: Path, *, build_dir: Path | None = None) -> SetupInspection:
    """Check that a checkout has everything needed to deploy."""

    root = root.resolve()
    checks: list[SetupCheck] = []

    for rel in REQUIRED_FILES:
        exists = (root / rel).is_file()
        checks.append(
            SetupCheck(f"file:{rel}", exists, "present" if exists else "missing")
        )

    checks.extend(_check_pyproject(root))
    checks.extend(_check_env_template(root))
    checks.append(_check_build_dir(build_dir if build_dir is not None else root / "dist"))
    checks.extend(_check_workflow(root))

    return SetupInspection(root=root, checks=checks)
