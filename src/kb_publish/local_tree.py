from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class LocalFile:
    rel_path_posix: str
    path: Path
    size_bytes: int
    sha256: str


def relpath_posix(path: Path, base_dir: Path) -> str:
    return path.relative_to(base_dir).as_posix()


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def scan_tree(root: Path) -> list[LocalFile]:
    """List regular files under `root`, sorted by relative POSIX path.

    Symlinks are skipped so a build can't leak files from outside `root`.
    """

    root = root.resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Not a directory: {root}")

    files: list[LocalFile] = []
    for path in root.rglob("*"):
        if path.is_symlink() or not path.is_file():
            continue
        files.append(
            LocalFile(
                rel_path_posix=relpath_posix(path, root),
                path=path,
                size_bytes=path.stat().st_size,
                sha256=file_sha256(path),
            )
        )
    files.sort(key=lambda f: f.rel_path_posix)
    return files


def remote_dirs_for(files: list[LocalFile]) -> list[str]:
    """Relative parent directories needed for `files`, parents first."""

    dirs: set[str] = set()
    for f in files:
        parts = f.rel_path_posix.split("/")[:-1]
        for i in range(1, len(parts) + 1):
            dirs.add("/".join(parts[:i]))
    return sorted(dirs, key=lambda d: (d.count("/"), d))
