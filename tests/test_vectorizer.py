"""Tests for TF-IDF vectorization."""

from __future__ import annotations

import numpy as np
import pytest

from uploadmatch.index.vectorizer import (
    QueryVector,
    ensure_current,
    is_stale,
    vectorize,
    vectorize_query,
)
from uploadmatch.index.vocabulary import VocabularyModel, build_vocabulary
from uploadmatch.utils.text import tokenize


@pytest.fixture
def model() -> VocabularyModel:
    return build_vocabulary([["a", "b"], ["c"]])


class TestVectorize:
    """Test vectorize function."""

    def test_empty_text_gives_empty_vector(self, model: VocabularyModel) -> None:
        assert len(vectorize(tokenize(""), model)) == 0

    def test_empty_model_gives_empty_vector(self) -> None:
        assert len(vectorize(["a"], VocabularyModel.empty())) == 0

    def test_sized_to_vocabulary(self, model: VocabularyModel) -> None:
        assert len(vectorize(["a"], model)) == model.size

    def test_tf_scaled_by_max_and_normalized(self, model: VocabularyModel) -> None:
        """a has tf 2, b has tf 1; equal idf gives a 2:1 ratio before L2."""
        vector = vectorize(["a", "a", "b"], model)

        assert vector[model.term_index["a"]] == pytest.approx(2 / np.sqrt(5), rel=1e-5)
        assert vector[model.term_index["b"]] == pytest.approx(1 / np.sqrt(5), rel=1e-5)
        assert vector[model.term_index["c"]] == 0.0

    def test_unit_norm(self, model: VocabularyModel) -> None:
        vector = vectorize(["a", "c", "c"], model)

        assert float(np.linalg.norm(vector)) == pytest.approx(1.0, rel=1e-5)

    def test_out_of_vocabulary_terms_dropped(self, model: VocabularyModel) -> None:
        """OOV-only input is an all-zero vector, not an error."""
        vector = vectorize(["zzz", "yyy"], model)

        assert len(vector) == model.size
        assert not vector.any()

    def test_max_tf_counts_out_of_vocabulary_terms(self, model: VocabularyModel) -> None:
        """Scaling uses the largest frequency among all tokens."""
        with_oov = vectorize(["a", "zzz", "zzz", "zzz"], model)

        assert float(np.linalg.norm(with_oov)) == pytest.approx(1.0, rel=1e-5)
        assert with_oov[model.term_index["a"]] == pytest.approx(1.0, rel=1e-5)

    def test_float32(self, model: VocabularyModel) -> None:
        assert vectorize(["a"], model).dtype == np.float32


class TestQueryVector:
    """Test query vectors pinned to a vocabulary version."""

    def test_vectorize_query(self, model: VocabularyModel) -> None:
        query = vectorize_query("A b", model)

        assert query.tokens == ("a", "b")
        assert query.vocabulary_version == model.version
        assert query.is_current(model)

    def test_ensure_current_keeps_current_query(self, model: VocabularyModel) -> None:
        query = vectorize_query("a", model)

        assert ensure_current(query, model) is query

    def test_ensure_current_revectorizes_stale_query(self, model: VocabularyModel) -> None:
        query = vectorize_query("a c", model)
        rebuilt = build_vocabulary([["a", "b"], ["c"], ["d", "e"]])

        refreshed = ensure_current(query, rebuilt)

        assert isinstance(refreshed, QueryVector)
        assert len(refreshed.values) == rebuilt.size
        assert refreshed.vocabulary_version == rebuilt.version
        np.testing.assert_allclose(refreshed.values, vectorize(["a", "c"], rebuilt))


class TestIsStale:
    """Test is_stale function."""

    def test_matching_dimension(self, model: VocabularyModel) -> None:
        assert not is_stale(np.zeros(model.size, dtype="float32"), model)

    def test_mismatched_dimension(self, model: VocabularyModel) -> None:
        assert is_stale(np.zeros(model.size + 1, dtype="float32"), model)

    def test_zero_length_never_stale(self, model: VocabularyModel) -> None:
        assert not is_stale(np.zeros(0, dtype="float32"), model)
