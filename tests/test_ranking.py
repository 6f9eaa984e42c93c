"""Tests for the rank blender."""

from __future__ import annotations

import pytest

from uploadmatch.index.ranking import (
    PROFILE_WEIGHTS,
    Candidate,
    WeightProfile,
    blend,
    is_content_useful,
    select_profile,
)
from uploadmatch.models import SignalScores


def candidate(doc_id: str, **scores: float) -> Candidate:
    return Candidate(document_id=doc_id, signals=SignalScores(**scores))


class TestWeightProfiles:
    """Test the weight table."""

    def test_four_profiles(self) -> None:
        assert set(PROFILE_WEIGHTS) == set(WeightProfile)

    @pytest.mark.parametrize("profile", list(WeightProfile))
    def test_weights_sum_to_one(self, profile: WeightProfile) -> None:
        assert PROFILE_WEIGHTS[profile].total() == pytest.approx(1.0, abs=0.01)

    def test_weak_profiles_ignore_content(self) -> None:
        assert PROFILE_WEIGHTS[WeightProfile.CONTENT_WEAK_WITH_HISTORY].content == 0.0
        assert PROFILE_WEIGHTS[WeightProfile.CONTENT_WEAK_NO_HISTORY].content == 0.0

    def test_no_history_profiles_ignore_history(self) -> None:
        assert PROFILE_WEIGHTS[WeightProfile.CONTENT_USEFUL_NO_HISTORY].history == 0.0
        assert PROFILE_WEIGHTS[WeightProfile.CONTENT_WEAK_NO_HISTORY].history == 0.0

    def test_select_profile(self) -> None:
        assert select_profile(True, True) is WeightProfile.CONTENT_USEFUL_WITH_HISTORY
        assert select_profile(True, False) is WeightProfile.CONTENT_USEFUL_NO_HISTORY
        assert select_profile(False, True) is WeightProfile.CONTENT_WEAK_WITH_HISTORY
        assert select_profile(False, False) is WeightProfile.CONTENT_WEAK_NO_HISTORY

    def test_is_content_useful(self) -> None:
        assert is_content_useful([0.01, 0.2])
        assert not is_content_useful([0.05, 0.01])
        assert not is_content_useful([])


class TestBlend:
    """Test blend function."""

    def test_weighted_sum(self) -> None:
        results = blend([candidate("a.pdf", content=0.8, path_name=1.0), candidate("b.pdf", content=0.2)])

        assert [r.document_id for r in results] == ["a.pdf", "b.pdf"]
        assert results[0].final_score == pytest.approx(0.8 * 0.56 + 1.0 * 0.22)
        assert results[1].final_score == pytest.approx(0.2 * 0.56)
        assert results[0].profile == WeightProfile.CONTENT_USEFUL_NO_HISTORY.value

    def test_sorted_and_positive(self) -> None:
        results = blend(
            [
                candidate("zero.pdf"),
                candidate("mid.pdf", path_name=0.5),
                candidate("top.pdf", path_name=1.0, content_overlap=1.0),
            ]
        )

        scores = [r.final_score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert all(score > 0 for score in scores)
        assert "zero.pdf" not in [r.document_id for r in results]

    def test_top_k(self) -> None:
        candidates = [candidate(f"{i}.pdf", path_name=(i + 1) / 10) for i in range(8)]

        assert len(blend(candidates)) == 5
        assert len(blend(candidates, top_k=2)) == 2

    def test_ties_broken_by_document_id(self) -> None:
        """Equal scores come out in ascending id order whatever the input order."""
        forward = blend([candidate("a/report.pdf", path_name=0.5), candidate("b/report.pdf", path_name=0.5)])
        backward = blend([candidate("b/report.pdf", path_name=0.5), candidate("a/report.pdf", path_name=0.5)])

        assert [r.document_id for r in forward] == ["a/report.pdf", "b/report.pdf"]
        assert [r.document_id for r in backward] == ["a/report.pdf", "b/report.pdf"]

    def test_weak_content_zeroed(self) -> None:
        """Content below the threshold selects a weak profile and contributes nothing."""
        results = blend([candidate("a.pdf", content=0.04, path_name=1.0)])

        assert results[0].profile == WeightProfile.CONTENT_WEAK_NO_HISTORY.value
        assert results[0].signals.content == 0.0
        assert results[0].final_score == pytest.approx(0.44)

    def test_history_profile_applies_to_all_candidates(self) -> None:
        results = blend([candidate("a.pdf", history=0.5), candidate("b.pdf", path_name=1.0)])

        assert {r.profile for r in results} == {WeightProfile.CONTENT_WEAK_WITH_HISTORY.value}
        scores = {r.document_id: r.final_score for r in results}
        assert scores["a.pdf"] == pytest.approx(0.5 * 0.36)
        assert scores["b.pdf"] == pytest.approx(0.30)

    def test_empty(self) -> None:
        assert blend([]) == []

    def test_is_deterministic(self) -> None:
        candidates = [candidate(f"{i % 3}-{i}.pdf", content=0.3, path_name=i % 2) for i in range(10)]

        assert blend(candidates) == blend(list(reversed(candidates)))
