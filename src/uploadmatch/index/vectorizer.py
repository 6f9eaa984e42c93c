"""TF-IDF vectorization against a vocabulary model."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from uploadmatch.index.vocabulary import VocabularyModel
from uploadmatch.utils.text import tokenize

LOGGER = logging.getLogger(__name__)


def vectorize(tokens: Sequence[str], model: VocabularyModel) -> np.ndarray:
    """Return an L2-normalized float32 TF-IDF vector sized to ``model``.

    Term frequency is scaled by the most frequent token. Terms missing
    from the vocabulary contribute nothing. An empty model or token list
    yields a zero-length vector.
    """
    if model.is_empty or not tokens:
        return np.zeros(0, dtype="float32")

    counts = Counter(tokens)
    max_tf = max(max(counts.values()), 1)

    vector = np.zeros(model.size, dtype="float64")
    for term, tf in counts.items():
        index = model.term_index.get(term)
        if index is None:
            continue
        vector[index] = (tf / max_tf) * model.idf[index]

    norm = float(np.linalg.norm(vector))
    if norm > 0:
        vector /= norm
    return vector.astype("float32")


@dataclass(slots=True, frozen=True, eq=False)
class QueryVector:
    """A vectorized query pinned to the vocabulary version it was built with."""

    tokens: Tuple[str, ...]
    values: np.ndarray
    vocabulary_version: int

    def is_current(self, model: VocabularyModel) -> bool:
        return self.vocabulary_version == model.version


def vectorize_query(text: str, model: VocabularyModel) -> QueryVector:
    tokens = tuple(tokenize(text))
    return QueryVector(
        tokens=tokens,
        values=vectorize(tokens, model),
        vocabulary_version=model.version,
    )


def ensure_current(query: QueryVector, model: VocabularyModel) -> QueryVector:
    """Re-vectorize ``query`` if it was built against another vocabulary."""
    if query.is_current(model):
        return query
    LOGGER.debug(
        "Query vector built for vocabulary v%s, re-vectorizing for v%s",
        query.vocabulary_version,
        model.version,
    )
    return QueryVector(
        tokens=query.tokens,
        values=vectorize(query.tokens, model),
        vocabulary_version=model.version,
    )


def is_stale(vector: np.ndarray, model: VocabularyModel) -> bool:
    """True if a stored sparse vector was built against a vocabulary of another size.

    Zero-length vectors (documents without text) are never stale.
    """
    return len(vector) != 0 and len(vector) != model.size
