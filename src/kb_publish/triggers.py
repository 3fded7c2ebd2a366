from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)

DEFAULT_WATCHED_FILES = (
    "pyproject.toml",
    "requirements.txt",
    "package.json",
    "package-lock.json",
)

RECENT_CHANGE_WINDOW_S = 60 * 60


def _changed_files_from_event(event: dict) -> list[str]:
    changed: list[str] = []
    commits = event.get("commits")
    if not isinstance(commits, list):
        return changed
    for commit in commits:
        if not isinstance(commit, dict):
            continue
        for key in ("added", "modified", "removed"):
            files = commit.get(key)
            if isinstance(files, list):
                changed.extend(str(f) for f in files)
    return changed


def changed_files_from_github_event(env: Mapping[str, str]) -> list[str] | None:
    """Files touched by the push that triggered this GitHub Actions run.

    Returns None when not running under Actions or the payload is unusable.
    """

    if not env.get("GITHUB_ACTIONS"):
        return None
    event_path = env.get("GITHUB_EVENT_PATH")
    if not event_path:
        return None
    path = Path(event_path)
    if not path.is_file():
        return None
    try:
        event = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.info("Could not read GitHub event payload %s: %s", path, e)
        return None
    if not isinstance(event, dict):
        return None
    return _changed_files_from_event(event)


def detect_dependency_change(
    root: Path,
    *,
    env: Mapping[str, str] | None = None,
    now: float | None = None,
    watched: Iterable[str] = DEFAULT_WATCHED_FILES,
) -> bool:
    """True when this deploy follows a dependency/manifest change.

    Under GitHub Actions the push payload is the answer. Only without a
    usable payload does a watched file modified within the last hour count
    as a change; a fresh checkout rewrites every file.
    """

    env = os.environ if env is None else env
    watched = tuple(watched)

    changed = changed_files_from_github_event(env)
    if changed is not None:
        return any(f in watched for f in changed)

    now = time.time() if now is None else now
    for name in watched:
        try:
            mtime = (root / name).stat().st_mtime
        except OSError:
            continue
        if now - mtime < RECENT_CHANGE_WINDOW_S:
            return True
    return False
