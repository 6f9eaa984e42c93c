"""Cosine-similarity ranking over stored vectors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence

import numpy as np

from uploadmatch.models import FileDocument, VectorRecord

LOGGER = logging.getLogger(__name__)

VectorSpace = Literal["sparse", "dense"]


@dataclass(slots=True)
class SearchHit:
    record: VectorRecord
    score: float

    @property
    def document_id(self) -> str:
        return self.record.document_id


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine of the angle between ``a`` and ``b``; 0 if either norm is 0."""
    a = np.asarray(a, dtype="float64")
    b = np.asarray(b, dtype="float64")
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def matches_accept(document: FileDocument, accept: Sequence[str]) -> bool:
    """True if the document fits any extension, MIME or ``type/*`` pattern."""
    extension = document.extension
    mime = (document.type or "").lower()
    for pattern in accept:
        pattern = pattern.strip().lower()
        if not pattern:
            continue
        if pattern == extension or pattern == mime:
            return True
        if pattern.endswith("/*") and mime.startswith(pattern[:-1]):
            return True
    return False


def filter_by_accept(
    records: Sequence[VectorRecord], accept: Optional[Sequence[str]]
) -> List[VectorRecord]:
    """Narrow ``records`` by an accept filter, ignoring a filter that matches nothing."""
    if not accept:
        return list(records)
    filtered = [record for record in records if matches_accept(record.document, accept)]
    if not filtered:
        LOGGER.debug("Accept filter %s matched no records, ignoring it", list(accept))
        return list(records)
    return filtered


def _vector_for(record: VectorRecord, space: VectorSpace) -> Optional[np.ndarray]:
    return record.sparse if space == "sparse" else record.dense


def search(
    query_vector: np.ndarray,
    records: Sequence[VectorRecord],
    top_n: int,
    accept: Optional[Sequence[str]] = None,
    *,
    space: VectorSpace = "sparse",
) -> List[SearchHit]:
    """Rank ``records`` by cosine similarity to ``query_vector``.

    Only one vector space is compared per call. Records without a vector
    in that space, or whose vector length differs from the query (stale
    against the current vocabulary), are left out. Hits are sorted by
    score descending, then document id; non-positive scores are dropped.
    """
    query = np.asarray(query_vector, dtype="float32")
    if query.size == 0 or top_n <= 0:
        return []

    if space == "dense":
        records = [record for record in records if record.dense is not None]
        if not records:
            return []

    candidates = filter_by_accept(records, accept)

    hits: List[SearchHit] = []
    stale = 0
    for record in candidates:
        vector = _vector_for(record, space)
        if vector is None or len(vector) == 0:
            continue
        if len(vector) != len(query):
            stale += 1
            continue
        hits.append(SearchHit(record=record, score=cosine_similarity(query, vector)))

    if stale:
        LOGGER.warning(
            "Skipped %d %s record(s) with dimension != %d; re-vectorize them",
            stale,
            space,
            len(query),
        )

    hits.sort(key=lambda hit: (-hit.score, hit.document_id))
    return [hit for hit in hits[:top_n] if hit.score > 0]
