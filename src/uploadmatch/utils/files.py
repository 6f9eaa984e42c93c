"""Utility helpers for working with files."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Iterator

TEXT_EXTENSIONS = frozenset(
    {".txt", ".md", ".csv", ".tsv", ".json", ".xml", ".html", ".htm", ".yaml", ".yml", ".log", ".rtf"}
)


def iter_file_paths(root: Path) -> Iterator[Path]:
    """Yield regular files under ``root`` in sorted order, skipping hidden entries."""
    if root.is_file():
        yield root
        return
    for item in sorted(root.rglob("*")):
        relative = item.relative_to(root)
        if any(part.startswith(".") for part in relative.parts):
            continue
        if item.is_file():
            yield item


def relative_id(path: Path, root: Path) -> str:
    """Stable document identity: POSIX path relative to the scanned root."""
    if root.is_file():
        return path.name
    return path.relative_to(root).as_posix()


def guess_type(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    return mime or "application/octet-stream"


def is_text_like(path: Path, mime: str) -> bool:
    return mime.startswith("text/") or path.suffix.lower() in TEXT_EXTENSIONS
