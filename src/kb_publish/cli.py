from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import requests

from .config import ConfigError, DeployConfig, DeployTarget, load_config
from .deploy import DeploymentManager
from .deploy_log import DeployLog
from .ftp_client import FtpClient, FtpError
from .http_client import SiteClient
from .logging_setup import setup_logging
from .search_index import build_search_index, write_search_index
from .setup_check import inspect_setup
from .verify import verify_site

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_FTP = 3
EXIT_VALIDATION = 4


def _add_target_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--target",
        choices=[t.value for t in DeployTarget],
        default=DeployTarget.DEFAULT.value,
        help="Selects the env prefix: default=FTP_*, staging=STAGING_FTP_*, "
        "production=PROD_FTP_*",
    )
    p.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="dotenv file read after the process environment",
    )
    p.add_argument("--timeout", type=int, default=30)
    p.add_argument("--retries", type=int, default=3)
    p.add_argument("--no-progress", action="store_true")
    p.add_argument(
        "--log-dir",
        type=Path,
        default=Path(".deploy"),
        help="Where the manifest.jsonl event log and manifest.json summary go",
    )


def _load_config(args: argparse.Namespace, *, require_local: bool) -> DeployConfig:
    config = load_config(args.target, env_file=args.env_file)
    config.validate(require_local=require_local)
    return config


def _manager(args: argparse.Namespace, config: DeployConfig) -> DeploymentManager:
    client = FtpClient(
        config.ftp,
        timeout_s=int(args.timeout),
        max_retries=int(args.retries),
    )
    return DeploymentManager(
        config,
        client=client,
        log_dir=args.log_dir,
        progress=not bool(args.no_progress),
    )


def _run_verify(url: str, *, timeout_s: int, log: DeployLog | None = None) -> int:
    http = SiteClient(requests.Session(), timeout_s=timeout_s)
    check = verify_site(url, http=http)
    if log is not None:
        log.record("verify_finished", **check.to_dict())
    print(
        "verify: "
        f"url={check.url} status={check.status_code} title={check.title!r} "
        f"assets={len(check.assets)} failures={len(check.failures)}"
    )
    if check.error:
        print(f"verify: error={check.error}", file=sys.stderr)
    for failure in check.failures:
        print(
            f"- {failure.url} status={failure.status_code} error={failure.error}",
            file=sys.stderr,
        )
    return EXIT_OK if check.ok else EXIT_VALIDATION


def _cmd_deploy(args: argparse.Namespace) -> int:
    config = _load_config(args, require_local=True)
    manager = _manager(args, config)
    clear_remote = True if bool(args.clear_remote) else None
    summary = manager.deploy(clear_remote=clear_remote, dry_run=bool(args.dry_run))
    print(
        "deploy: "
        f"target={summary.target} files={summary.files} bytes={summary.bytes} "
        f"cleared={summary.cleared} removed={summary.removed} "
        f"dependency_change={summary.dependency_change} "
        f"dry_run={summary.dry_run} duration_s={summary.duration_s}"
    )

    verify_url = args.verify_url or config.site_url
    if summary.dry_run or args.no_verify or not verify_url:
        return EXIT_OK
    log = DeployLog(args.log_dir, target=config.target.value)
    return _run_verify(verify_url, timeout_s=int(args.timeout), log=log)


def _cmd_backup(args: argparse.Namespace) -> int:
    config = _load_config(args, require_local=False)
    summary = _manager(args, config).backup(args.backup_root)
    print(f"backup: files={summary.files} dir={summary.backup_dir}")
    return EXIT_OK


def _cmd_test_connection(args: argparse.Namespace) -> int:
    config = _load_config(args, require_local=False)
    cwd = _manager(args, config).test_connection()
    print(f"test-connection: ok host={config.host} cwd={cwd}")
    return EXIT_OK


def _cmd_setup_check(args: argparse.Namespace) -> int:
    build_dir = args.build_dir if args.build_dir is not None else args.root / "dist"
    inspected = inspect_setup(args.root, build_dir=build_dir)
    if bool(args.json):
        print(json.dumps(inspected.to_dict(), indent=2))
    else:
        for c in inspected.checks:
            status = "OK" if c.ok else "FAIL"
            print(f"{status}: {c.name} ({c.detail})")
        print(
            "setup-check: "
            f"checks={len(inspected.checks)} failures={len(inspected.failures)}"
        )
    return EXIT_OK if inspected.ok else EXIT_VALIDATION


def _cmd_build_search_index(args: argparse.Namespace) -> int:
    entries = build_search_index(args.content_dir)
    write_search_index(entries, args.out)
    print(f"build-search-index: entries={len(entries)} out={args.out}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kb-publish",
        description="Build, deploy, and validate the knowledge-base site.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="DEBUG, INFO, WARNING or ERROR (default: $LOG_LEVEL or INFO)",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    deploy_p = sub.add_parser("deploy", help="Upload the build output over FTP/FTPS")
    _add_target_args(deploy_p)
    deploy_p.add_argument(
        "--clear-remote",
        action="store_true",
        help="Empty the remote directory before uploading (also: CLEAR_REMOTE=true)",
    )
    deploy_p.add_argument(
        "--dry-run",
        action="store_true",
        help="Scan and log the upload plan without connecting",
    )
    deploy_p.add_argument(
        "--verify-url",
        default=None,
        help="Smoke-test this URL after upload (default: SITE_URL)",
    )
    deploy_p.add_argument("--no-verify", action="store_true")
    deploy_p.set_defaults(func=_cmd_deploy)

    backup_p = sub.add_parser(
        "backup", help="Download the current remote files as a dated backup"
    )
    _add_target_args(backup_p)
    backup_p.add_argument("--backup-root", type=Path, default=Path("backups"))
    backup_p.set_defaults(func=_cmd_backup)

    test_p = sub.add_parser("test-connection", help="Log in to the FTP server and exit")
    _add_target_args(test_p)
    test_p.set_defaults(func=_cmd_test_connection)

    setup_p = sub.add_parser(
        "setup-check", help="Verify the repo is ready for deployment"
    )
    setup_p.add_argument("--root", type=Path, default=Path("."))
    setup_p.add_argument(
        "--build-dir",
        type=Path,
        default=None,
        help="Build output directory (default: <root>/dist)",
    )
    setup_p.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON to stdout",
    )
    setup_p.set_defaults(func=_cmd_setup_check)

    index_p = sub.add_parser(
        "build-search-index", help="Index markdown content pages for site search"
    )
    index_p.add_argument("--content-dir", type=Path, default=Path("public/content"))
    index_p.add_argument(
        "--out", type=Path, default=Path("public/search-index.json")
    )
    index_p.set_defaults(func=_cmd_build_search_index)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return int(args.func(args))
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG
    except FtpError as e:
        print(str(e), file=sys.stderr)
        return EXIT_FTP
    except OSError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG
