from __future__ import annotations

import ftplib
import logging
import posixpath
import socket
import ssl
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

from tqdm import tqdm

from .config import FtpSettings
from .local_tree import LocalFile, remote_dirs_for

logger = logging.getLogger(__name__)

# Worth reconnecting for: network and TLS failures, 4xx replies. Other
# OSErrors are local disk problems and propagate as-is.
TRANSIENT_FTP_ERRORS = (
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    ssl.SSLError,
    EOFError,
    ftplib.error_temp,
)

# Replies meaning "command not implemented / not understood".
_UNSUPPORTED_REPLY_CODES = ("500", "501", "502", "504")

T = TypeVar("T")

FtpFactory = Callable[[bool], ftplib.FTP]


class FtpError(RuntimeError):
    """Raised when an FTP operation fails for good."""


def _default_ftp_factory(secure: bool) -> ftplib.FTP:
    return ftplib.FTP_TLS() if secure else ftplib.FTP()


def _reply_code(error: ftplib.Error) -> str:
    return str(error)[:3]


def remote_join(base: str, *parts: str) -> str:
    path = posixpath.join(base or "/", *[p.strip("/") for p in parts if p])
    if not path.startswith("/"):
        path = "/" + path
    return posixpath.normpath(path)


@dataclass(frozen=True)
class RemoteEntry:
    name: str
    path: str
    is_dir: bool


class FtpClient:
    def __init__(
        self,
        settings: FtpSettings,
        *,
        timeout_s: int = 30,
        max_retries: int = 3,
        backoff_base_s: float = 1.0,
        passive: bool = True,
        ftp_factory: FtpFactory | None = None,
    ) -> None:
        self._settings = settings
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        self._passive = passive
        self._ftp_factory = ftp_factory or _default_ftp_factory
        self._ftp: ftplib.FTP | None = None
        self._known_dirs: set[str] = {"/"}
        self._mlsd_supported: bool | None = None

    def __enter__(self) -> FtpClient:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _open(self) -> ftplib.FTP:
        s = self._settings
        ftp = self._ftp_factory(s.secure)
        try:
            ftp.connect(s.host, s.port, timeout=self._timeout_s)
            ftp.login(s.user, s.password)
            if s.secure:
                # Encrypt the data channel too, not just the control channel.
                ftp.prot_p()
            ftp.set_pasv(self._passive)
        except BaseException:
            ftp.close()
            raise
        logger.debug("Logged in to %s:%s as %s", s.host, s.port, s.user)
        return ftp

    def _drop(self) -> None:
        if self._ftp is not None:
            self._ftp.close()
            self._ftp = None

    def _run(self, op: str, fn: Callable[[ftplib.FTP], T]) -> T:
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                if self._ftp is None:
                    self._ftp = self._open()
                return fn(self._ftp)
            except TRANSIENT_FTP_ERRORS as e:
                last_error = e
                self._drop()
                if attempt >= self._max_retries:
                    break
                wait_s = self._backoff_base_s * (2**attempt)
                logger.warning(
                    "%s failed (%s); reconnecting in %.1fs", op, e, wait_s
                )
                time.sleep(wait_s)
            except ftplib.Error as e:
                raise FtpError(f"Failed to {op}: {e}") from e

        raise FtpError(f"Failed to {op}: {last_error}")

    def connect(self) -> None:
        s = self._settings
        logger.info("Connecting to %s:%s (secure=%s)", s.host, s.port, s.secure)
        self._run(f"connect to {s.host}", lambda ftp: None)
        logger.info("Connected to %s", s.host)

    def close(self) -> None:
        ftp, self._ftp = self._ftp, None
        if ftp is None:
            return
        try:
            ftp.quit()
        except ftplib.all_errors as e:
            logger.debug("QUIT failed (%s); closing socket", e)
            ftp.close()

    def pwd(self) -> str:
        return self._run("read working directory", lambda ftp: ftp.pwd())

    def ensure_dir(self, remote_dir: str) -> None:
        remote_dir = remote_join(remote_dir)
        if remote_dir in self._known_dirs:
            return

        def _ensure(ftp: ftplib.FTP) -> None:
            current = ""
            for part in [p for p in remote_dir.split("/") if p]:
                current = f"{current}/{part}"
                if current in self._known_dirs:
                    continue
                try:
                    ftp.cwd(current)
                except ftplib.error_perm:
                    logger.debug("Creating remote directory %s", current)
                    ftp.mkd(current)
                self._known_dirs.add(current)

        self._run(f"create {remote_dir}", _ensure)

    def upload_file(self, local_path: Path, remote_path: str) -> None:
        remote_path = remote_join(remote_path)

        # Local read errors must not look like transient network failures.
        with local_path.open("rb") as fh:

            def _store(ftp: ftplib.FTP) -> None:
                fh.seek(0)
                ftp.storbinary(f"STOR {remote_path}", fh)

            self._run(f"upload {remote_path}", _store)

    def upload_tree(
        self,
        files: list[LocalFile],
        remote_root: str,
        *,
        progress: bool = True,
        on_uploaded: Callable[[LocalFile, str], None] | None = None,
    ) -> list[str]:
        """Upload a scanned local tree under `remote_root`.

        Each file is retried on its own, so a dropped connection resumes at
        the file that failed.
        """

        remote_root = remote_join(remote_root)
        self.ensure_dir(remote_root)
        for rel_dir in remote_dirs_for(files):
            self.ensure_dir(remote_join(remote_root, rel_dir))

        uploaded: list[str] = []
        total = sum(f.size_bytes for f in files)
        with tqdm(
            total=total,
            desc="Uploading",
            unit="B",
            unit_scale=True,
            disable=not progress,
        ) as bar:
            for f in files:
                remote_path = remote_join(remote_root, f.rel_path_posix)
                self.upload_file(f.path, remote_path)
                uploaded.append(remote_path)
                bar.update(f.size_bytes)
                if on_uploaded is not None:
                    on_uploaded(f, remote_path)
        return uploaded

    def _is_remote_dir(self, ftp: ftplib.FTP, path: str) -> bool:
        try:
            ftp.cwd(path)
        except ftplib.error_perm:
            return False
        return True

    def _list(self, ftp: ftplib.FTP, remote_dir: str) -> list[RemoteEntry]:
        if self._mlsd_supported is not False:
            try:
                entries: list[RemoteEntry] = []
                for name, facts in ftp.mlsd(remote_dir):
                    kind = str(facts.get("type") or "").lower()
                    if kind in {"cdir", "pdir"} or name in {".", ".."}:
                        continue
                    entries.append(
                        RemoteEntry(
                            name=name,
                            path=remote_join(remote_dir, name),
                            is_dir=kind == "dir",
                        )
                    )
                self._mlsd_supported = True
                return sorted(entries, key=lambda e: e.name)
            except ftplib.error_perm as e:
                if _reply_code(e) not in _UNSUPPORTED_REPLY_CODES:
                    raise
                logger.debug("MLSD unsupported (%s); falling back to NLST", e)
                self._mlsd_supported = False

        try:
            names = ftp.nlst(remote_dir)
        except ftplib.error_perm as e:
            # Several servers answer NLST on an empty directory with 550.
            if _reply_code(e) == "550" and self._is_remote_dir(ftp, remote_dir):
                return []
            raise

        entries = []
        for raw in names:
            name = posixpath.basename(raw.rstrip("/"))
            if name in {"", ".", ".."}:
                continue
            path = remote_join(remote_dir, name)
            entries.append(
                RemoteEntry(name=name, path=path, is_dir=self._is_remote_dir(ftp, path))
            )
        return sorted(entries, key=lambda e: e.name)

    def list_dir(self, remote_dir: str) -> list[RemoteEntry]:
        remote_dir = remote_join(remote_dir)
        return self._run(f"list {remote_dir}", lambda ftp: self._list(ftp, remote_dir))

    def _walk(
        self, ftp: ftplib.FTP, remote_dir: str
    ) -> tuple[list[RemoteEntry], list[RemoteEntry]]:
        dirs: list[RemoteEntry] = []
        files: list[RemoteEntry] = []
        for entry in self._list(ftp, remote_dir):
            if entry.is_dir:
                dirs.append(entry)
                sub_dirs, sub_files = self._walk(ftp, entry.path)
                dirs.extend(sub_dirs)
                files.extend(sub_files)
            else:
                files.append(entry)
        return dirs, files

    def walk(self, remote_dir: str) -> tuple[list[RemoteEntry], list[RemoteEntry]]:
        """Return (directories, files) below `remote_dir`, recursively."""
        remote_dir = remote_join(remote_dir)
        return self._run(f"walk {remote_dir}", lambda ftp: self._walk(ftp, remote_dir))

    def _clear(self, ftp: ftplib.FTP, remote_dir: str) -> int:
        removed = 0
        for entry in self._list(ftp, remote_dir):
            if entry.is_dir:
                removed += self._clear(ftp, entry.path)
                ftp.rmd(entry.path)
            else:
                ftp.delete(entry.path)
            removed += 1
        return removed

    def clear_dir(self, remote_dir: str) -> int:
        """Delete everything inside `remote_dir`; the directory itself stays."""
        remote_dir = remote_join(remote_dir)
        removed = self._run(
            f"clear {remote_dir}", lambda ftp: self._clear(ftp, remote_dir)
        )
        self._known_dirs = {
            d
            for d in self._known_dirs
            if d == remote_dir or not d.startswith(remote_dir.rstrip("/") + "/")
        }
        return removed

    def download_file(self, remote_path: str, local_path: Path) -> None:
        remote_path = remote_join(remote_path)

        local_path.parent.mkdir(parents=True, exist_ok=True)
        with local_path.open("wb") as fh:

            def _retrieve(ftp: ftplib.FTP) -> None:
                fh.seek(0)
                fh.truncate()
                ftp.retrbinary(f"RETR {remote_path}", fh.write)

            self._run(f"download {remote_path}", _retrieve)

    def download_tree(
        self,
        remote_dir: str,
        local_dir: Path,
        *,
        progress: bool = True,
    ) -> int:
        """Mirror `remote_dir` into `local_dir`; returns the file count."""

        remote_dir = remote_join(remote_dir)
        dirs, files = self.walk(remote_dir)
        base = remote_dir.rstrip("/") + "/"

        def _local_for(entry: RemoteEntry) -> Path:
            rel = entry.path[len(base):] if entry.path.startswith(base) else entry.name
            return local_dir.joinpath(*rel.split("/"))

        local_dir.mkdir(parents=True, exist_ok=True)
        for d in dirs:
            _local_for(d).mkdir(parents=True, exist_ok=True)

        for entry in tqdm(files, desc="Downloading", unit="file", disable=not progress):
            self.download_file(entry.path, _local_for(entry))
        return len(files)
