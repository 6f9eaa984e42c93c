"""Core uploadmatch data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union
from urllib.parse import urlparse

import numpy as np


def folder_of(document_id: str) -> str:
    """Return the identity minus its final path segment ("" at the root)."""
    parts = document_id.split("/")
    return "/".join(parts[:-1]) if len(parts) > 1 else ""


@dataclass(slots=True)
class SourceFile:
    """A file handed to the indexer, with its full extracted text."""

    id: str
    name: str
    type: str
    size: int
    mtime: float
    text: str


@dataclass(slots=True)
class FileDocument:
    """Metadata stored for an indexed file."""

    id: str
    name: str
    type: str
    text_preview: str = ""
    size: int = 0
    mtime: float = 0.0

    @property
    def folder(self) -> str:
        return folder_of(self.id)

    @property
    def extension(self) -> str:
        if "." not in self.name:
            return ""
        return "." + self.name.rsplit(".", 1)[-1].lower()


@dataclass(slots=True, frozen=True, eq=False)
class SparseOnly:
    """TF-IDF vector only; compared in the sparse space."""

    sparse: np.ndarray

    @property
    def dense(self) -> None:
        return None


@dataclass(slots=True, frozen=True, eq=False)
class SparseAndDense:
    """TF-IDF vector plus an externally supplied embedding."""

    sparse: np.ndarray
    dense: np.ndarray


VectorPayload = Union[SparseOnly, SparseAndDense]


@dataclass(slots=True, eq=False)
class VectorRecord:
    """An indexed document together with its vectors."""

    document: FileDocument
    vectors: VectorPayload

    @property
    def document_id(self) -> str:
        return self.document.id

    @property
    def sparse(self) -> np.ndarray:
        return self.vectors.sparse

    @property
    def dense(self) -> Optional[np.ndarray]:
        return self.vectors.dense

    def with_sparse(self, sparse: np.ndarray) -> "VectorRecord":
        """Return a copy carrying a new sparse vector and the same dense one."""
        if isinstance(self.vectors, SparseAndDense):
            vectors: VectorPayload = SparseAndDense(sparse=sparse, dense=self.vectors.dense)
        else:
            vectors = SparseOnly(sparse=sparse)
        return VectorRecord(document=self.document, vectors=vectors)


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    """One recorded upload of a file on a website."""

    document_id: str
    host: str
    timestamp: float
    page_url: str = ""
    context: str = ""


def parse_accept(accept: str | None) -> Tuple[str, ...]:
    """Split an HTML ``accept`` attribute into lowercase patterns."""
    if not accept:
        return ()
    return tuple(part.strip().lower() for part in accept.split(",") if part.strip())


def host_from_url(page_url: str | None) -> str:
    if not page_url:
        return ""
    try:
        return urlparse(page_url).hostname or ""
    except ValueError:
        return ""


@dataclass(slots=True, frozen=True)
class QueryContext:
    """What an upload field is asking for, built once per request."""

    raw_text: str
    accept_filter: Tuple[str, ...] = ()
    host: str = ""

    @classmethod
    def from_request(
        cls,
        text: str,
        *,
        accept: str | None = None,
        page_url: str | None = None,
        host: str | None = None,
    ) -> "QueryContext":
        return cls(
            raw_text=text or "",
            accept_filter=parse_accept(accept),
            host=host or host_from_url(page_url),
        )


@dataclass(slots=True)
class SignalScores:
    """Per-candidate component scores, each in [0, 1]."""

    content: float = 0.0
    history: float = 0.0
    path_name: float = 0.0
    content_overlap: float = 0.0
    folder: float = 0.0


@dataclass(slots=True)
class RankedResult:
    document_id: str
    final_score: float
    history_count: int = 0
    name: str = ""
    type: str = ""
    signals: SignalScores = field(default_factory=SignalScores)
    profile: str = ""
