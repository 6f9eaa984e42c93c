"""Text helpers: tokenization for TF-IDF and keyword overlap."""

from __future__ import annotations

import re
from typing import FrozenSet, Iterable, List

# Unified ideographs (+ ext. A, compatibility), kana and hangul syllables.
_CJK_CLASS = r"\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff\uac00-\ud7af"
_TOKEN_RE = re.compile(r"[a-z0-9]+|[" + _CJK_CLASS + r"]+")
_ASCII_RE = re.compile(r"[a-z0-9]")

MIN_TERM_LENGTH = 2

STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
        "be", "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "must", "shall", "can", "this", "that", "these",
        "those", "it", "its", "i", "you", "your", "yours", "we", "our", "they",
        "their", "he", "she", "me", "my", "any", "all", "not", "no", "if", "so",
        "please", "upload", "uploads", "uploading", "select", "choose", "attach",
        "file", "files", "here", "click", "drag", "drop", "browse", "max", "mb",
        "kb", "size", "format", "formats", "up", "only", "one", "more", "new",
        "的", "了", "和", "是", "在", "请", "上传", "文件",
    }
)


def tokenize(text: str) -> List[str]:
    """Split text into index terms.

    Lowercases the input and walks it left to right. Each ASCII
    alphanumeric run becomes one term; each CJK run contributes every
    character followed by every adjacent character pair, since those
    scripts carry no word boundaries. Duplicates are kept because term
    frequency depends on them.
    """
    if not text:
        return []

    terms: List[str] = []
    for match in _TOKEN_RE.finditer(text.lower()):
        run = match.group()
        if _ASCII_RE.match(run):
            terms.append(run)
            continue
        terms.extend(run)
        terms.extend(run[i : i + 2] for i in range(len(run) - 1))
    return terms


def tokenize_filtered(text: str) -> List[str]:
    """Tokenize, then drop stop words and terms shorter than MIN_TERM_LENGTH."""
    return [
        term
        for term in tokenize(text)
        if len(term) >= MIN_TERM_LENGTH and term not in STOP_WORDS
    ]


def path_text(path: str) -> str:
    """Turn a file path into plain words (separators become spaces)."""
    return re.sub(r"[/\\._-]", " ", path)


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
