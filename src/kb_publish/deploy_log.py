from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

EVENTS_FILE = "manifest.jsonl"
SUMMARY_FILE = "manifest.json"


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def utc_date() -> str:
    return time.strftime("%Y-%m-%d", time.gmtime())


class DeployLog:
    """History of deploy/backup/verify runs for one target.

    Every event is one JSON line in `manifest.jsonl`, stamped with the time
    and target. `manifest.json` holds the outcome of the latest deploy.
    """

    def __init__(self, log_dir: Path, *, target: str) -> None:
        self.log_dir = log_dir
        self.target = target

    @property
    def events_path(self) -> Path:
        return self.log_dir / EVENTS_FILE

    @property
    def summary_path(self) -> Path:
        return self.log_dir / SUMMARY_FILE

    def record(self, kind: str, **fields: Any) -> None:
        line = {"at": utc_iso(), "target": self.target, "kind": kind, **fields}
        self.log_dir.mkdir(parents=True, exist_ok=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps(line, ensure_ascii=False) + "\n")

    def write_summary(self, summary: dict[str, Any]) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        # Replace in one step so readers never see a half-written summary.
        tmp = self.summary_path.with_name(SUMMARY_FILE + ".tmp")
        tmp.write_text(
            json.dumps(summary, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )
        tmp.replace(self.summary_path)
