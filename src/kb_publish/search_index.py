from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from pathlib import Path

from .local_tree import relpath_posix

logger = logging.getLogger(__name__)

_H1 = re.compile(r"^#[ \t]+(.+)$", re.MULTILINE)


@dataclass(frozen=True)
class IndexEntry:
    path: str
    title: str
    content: str


def extract_markdown_title(text: str) -> str:
    """First ATX level-1 heading, or "" when the page has none."""
    m = _H1.search(text)
    return m.group(1).strip() if m else ""


def build_search_index(content_dir: Path) -> list[IndexEntry]:
    content_dir = content_dir.resolve()
    if not content_dir.is_dir():
        raise FileNotFoundError(f"Content directory not found: {content_dir}")

    entries: list[IndexEntry] = []
    for md_path in sorted(content_dir.rglob("*.md")):
        if not md_path.is_file():
            continue
        # Undecodable bytes become U+FFFD rather than failing the whole index.
        text = md_path.read_text(encoding="utf-8", errors="replace")
        rel = relpath_posix(md_path, content_dir)
        entries.append(
            IndexEntry(
                path=rel[: -len(".md")],
                title=extract_markdown_title(text),
                content=text,
            )
        )
    return entries


def write_search_index(entries: list[IndexEntry], out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(
        json.dumps([asdict(e) for e in entries], indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    logger.info("Indexed %d markdown files into %s", len(entries), out_path)
