"""Upload the built site to the configured FTP/FTPS target.

A deploy is: scan the local build, decide whether the remote directory must
be wiped first, connect, upload every file, close. Every step is appended to
`<log_dir>/manifest.jsonl` and the last run is summarized in
`<log_dir>/manifest.json`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .config import ConfigError, DeployConfig
from .ftp_client import FtpClient, FtpError
from .local_tree import LocalFile, scan_tree
from .deploy_log import DeployLog, utc_date, utc_iso
from .triggers import detect_dependency_change

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploySummary:
    target: str
    local_path: str
    remote_path: str
    files: int
    bytes: int
    dependency_change: bool
    cleared: bool
    removed: int
    dry_run: bool
    duration_s: float
    uploaded: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BackupSummary:
    target: str
    remote_path: str
    backup_dir: str
    files: int
    duration_s: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DeploymentManager:
    def __init__(
        self,
        config: DeployConfig,
        *,
        client: FtpClient | None = None,
        log_dir: Path | None = Path(".deploy"),
        root: Path = Path("."),
        progress: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.client = client or FtpClient(config.ftp)
        self.log = (
            DeployLog(log_dir, target=config.target.value)
            if log_dir is not None
            else None
        )
        self.root = root
        self.progress = progress
        self._env = env

    def _record(self, kind: str, **fields: Any) -> None:
        if self.log is not None:
            self.log.record(kind, **fields)

    def _record_upload(self, f: LocalFile, remote_path: str) -> None:
        self._record(
            "uploaded",
            path=f.rel_path_posix,
            remote_path=remote_path,
            size_bytes=f.size_bytes,
            sha256=f.sha256,
        )

    def _clear_remote(self) -> int:
        remote = self.config.remote_path
        logger.info("Clearing remote directory %s", remote)
        try:
            removed = self.client.clear_dir(remote)
        except FtpError as e:
            # A missing or locked remote dir shouldn't block the upload.
            logger.warning("Could not clear remote directory %s: %s", remote, e)
            self._record("clear_failed", error=str(e))
            return 0
        logger.info("Removed %d remote entries", removed)
        return removed

    def deploy(
        self,
        *,
        clear_remote: bool | None = None,
        dry_run: bool = False,
    ) -> DeploySummary:
        started = time.monotonic()
        cfg = self.config

        files = scan_tree(cfg.local_path)
        if not files:
            raise ConfigError(
                f"Build directory is empty: {cfg.local_path}. Run the site build first."
            )
        total_bytes = sum(f.size_bytes for f in files)

        dependency_change = detect_dependency_change(self.root, env=self._env)
        if dependency_change:
            logger.info(
                "Deployment triggered by dependency changes; "
                "remote directory will be cleared first"
            )
        else:
            logger.info("Regular content deployment")

        clear = cfg.clear_remote if clear_remote is None else clear_remote
        clear = clear or dependency_change

        logger.info(
            "Deploying %d files (%d bytes) from %s to %s:%s",
            len(files),
            total_bytes,
            cfg.local_path,
            cfg.host,
            cfg.remote_path,
        )
        self._record(
            "deploy_started",
            started_at=utc_iso(),
            config=cfg.describe(),
            files=len(files),
            bytes=total_bytes,
            dependency_change=dependency_change,
            clear_remote=clear,
            dry_run=dry_run,
        )

        removed = 0
        uploaded: list[str] = []
        if dry_run:
            for f in files:
                logger.info("[dry-run] would upload %s", f.rel_path_posix)
        else:
            try:
                self.client.connect()
                if clear:
                    removed = self._clear_remote()
                uploaded = self.client.upload_tree(
                    files,
                    cfg.remote_path,
                    progress=self.progress,
                    on_uploaded=self._record_upload,
                )
            except Exception as e:
                logger.error("Deployment failed: %s", e)
                self._record(
                    "deploy_failed", error=str(e), error_type=type(e).__name__
                )
                raise
            finally:
                self.client.close()

        summary = DeploySummary(
            target=cfg.target.value,
            local_path=str(cfg.local_path),
            remote_path=cfg.remote_path,
            files=len(files),
            bytes=total_bytes,
            dependency_change=dependency_change,
            cleared=clear and not dry_run,
            removed=removed,
            dry_run=dry_run,
            duration_s=round(time.monotonic() - started, 3),
            uploaded=uploaded,
        )
        self._record(
            "deploy_finished",
            files=summary.files,
            removed=summary.removed,
            duration_s=summary.duration_s,
            dry_run=dry_run,
        )
        if self.log is not None:
            self.log.write_summary(summary.to_dict())
        logger.info("Deployment completed in %.1fs", summary.duration_s)
        return summary

    def backup(self, backup_root: Path = Path("backups")) -> BackupSummary:
        """Download the current remote tree into `<backup_root>/<YYYY-MM-DD>`."""

        started = time.monotonic()
        backup_dir = backup_root / utc_date()
        logger.info("Creating backup of %s in %s", self.config.remote_path, backup_dir)
        try:
            self.client.connect()
            count = self.client.download_tree(
                self.config.remote_path,
                backup_dir,
                progress=self.progress,
            )
        except Exception as e:
            logger.error("Backup failed: %s", e)
            self._record(
                "backup_failed", error=str(e), error_type=type(e).__name__
            )
            raise
        finally:
            self.client.close()

        summary = BackupSummary(
            target=self.config.target.value,
            remote_path=self.config.remote_path,
            backup_dir=str(backup_dir),
            files=count,
            duration_s=round(time.monotonic() - started, 3),
        )
        self._record("backup_finished", **summary.to_dict())
        logger.info("Backup completed: %d files", count)
        return summary

    def test_connection(self) -> str:
        """Log in and read the working directory; returns it."""
        try:
            self.client.connect()
            cwd = self.client.pwd()
        finally:
            self.client.close()
        logger.info("Connection test successful (cwd=%s)", cwd)
        return cwd
