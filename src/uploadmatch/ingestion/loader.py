"""File discovery and text extraction.

Uses PyMuPDF (fitz) for PDF text; text-like files are read directly and
anything else (images, archives) is indexed by name only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List

import fitz  # PyMuPDF

from uploadmatch.models import SourceFile
from uploadmatch.utils.files import guess_type, is_text_like, iter_file_paths, relative_id
from uploadmatch.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)


def iter_pdf_text(path: Path) -> Iterator[str]:
    """Yield normalized text from a PDF page by page."""
    doc = fitz.open(path)
    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:  # pragma: no cover - defensive path
                LOGGER.warning("Failed to read page %s in %s: %s", index, path, exc)
                continue
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield normalized + "\n"
    finally:
        doc.close()


def extract_text(path: Path, mime: str, *, max_chars: int = 20000) -> str:
    """Extract up to ``max_chars`` of text; raises OSError/RuntimeError on unreadable files."""
    if mime == "application/pdf" or path.suffix.lower() == ".pdf":
        parts: List[str] = []
        total = 0
        for part in iter_pdf_text(path):
            parts.append(part)
            total += len(part)
            if total >= max_chars:
                break
        return "".join(parts)[:max_chars]
    if is_text_like(path, mime):
        with path.open("r", encoding="utf-8", errors="ignore") as handle:
            return handle.read(max_chars)
    return ""


@dataclass(slots=True)
class LoadResult:
    sources: List[SourceFile] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)


def load_folder(root: Path, *, max_chars: int = 20000) -> LoadResult:
    """Read every file under ``root`` into SourceFile entries."""
    result = LoadResult()
    for path in iter_file_paths(root):
        mime = guess_type(path)
        try:
            stat = path.stat()
            text = extract_text(path, mime, max_chars=max_chars)
        except Exception as exc:
            LOGGER.error("Failed to read %s: %s", path, exc)
            result.failed.append(path)
            continue
        result.sources.append(
            SourceFile(
                id=relative_id(path, root),
                name=path.name,
                type=mime,
                size=stat.st_size,
                mtime=stat.st_mtime,
                text=text,
            )
        )
    return result
