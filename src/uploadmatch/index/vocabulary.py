"""Corpus-wide vocabulary with IDF weights."""

from __future__ import annotations

import hashlib
import itertools
import json
import math
from collections import Counter
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

import numpy as np

_VERSIONS = itertools.count(1)


@dataclass(slots=True, frozen=True, eq=False)
class VocabularyModel:
    """Immutable term→index and term→IDF mapping.

    A new model is built for every corpus rebuild and swapped in by
    reference. ``version`` is unique per model within the process, so a
    vector can tell which vocabulary it was computed against.
    """

    terms: Tuple[str, ...]
    term_index: Mapping[str, int]
    idf: np.ndarray
    version: int

    @classmethod
    def from_terms(cls, terms: Sequence[str], idf: Sequence[float]) -> "VocabularyModel":
        if len(terms) != len(idf):
            raise ValueError(
                f"Vocabulary terms and idf length mismatch: {len(terms)} != {len(idf)}"
            )
        weights = np.asarray(idf, dtype="float64").copy()
        weights.setflags(write=False)
        ordered = tuple(terms)
        index = {term: position for position, term in enumerate(ordered)}
        if len(index) != len(ordered):
            raise ValueError("Vocabulary terms must be unique")
        return cls(
            terms=ordered,
            term_index=MappingProxyType(index),
            idf=weights,
            version=next(_VERSIONS),
        )

    @classmethod
    def empty(cls) -> "VocabularyModel":
        return cls.from_terms((), ())

    @property
    def size(self) -> int:
        return len(self.terms)

    @property
    def is_empty(self) -> bool:
        return not self.terms

    @property
    def fingerprint(self) -> str:
        return vocabulary_fingerprint(self.terms, self.idf)

    def to_snapshot(self) -> Dict[str, List[Any]]:
        """Serialize to ``{"terms": [...], "idf": [...]}`` (positional)."""
        return {"terms": list(self.terms), "idf": [float(value) for value in self.idf]}

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> "VocabularyModel":
        return cls.from_terms(list(snapshot.get("terms", [])), list(snapshot.get("idf", [])))


def vocabulary_fingerprint(terms: Sequence[str], idf: Sequence[float]) -> str:
    """Content hash of a vocabulary; equal for models that vectorize identically."""
    digest = hashlib.sha256()
    digest.update(json.dumps(list(terms), ensure_ascii=False).encode("utf-8"))
    digest.update(np.asarray(idf, dtype="float64").tobytes())
    return digest.hexdigest()


def compute_idf(document_frequency: int, corpus_size: int) -> float:
    return math.log((corpus_size + 1) / (document_frequency + 1)) + 1.0


def build_vocabulary(token_lists: Iterable[Sequence[str]]) -> VocabularyModel:
    """Build a fresh model from one snapshot of tokenized documents.

    Terms are indexed in first-seen order across the batch. The returned
    model replaces any previous one; vectors built against the old model
    become stale.
    """
    document_frequency: Counter[str] = Counter()
    order: Dict[str, None] = {}
    corpus_size = 0
    for tokens in token_lists:
        corpus_size += 1
        unique = dict.fromkeys(tokens)
        order.update(unique)
        document_frequency.update(unique.keys())

    terms = list(order)
    idf = [compute_idf(document_frequency[term], corpus_size) for term in terms]
    return VocabularyModel.from_terms(terms, idf)
