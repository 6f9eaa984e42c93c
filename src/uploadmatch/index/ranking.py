"""Blend per-signal scores into one deterministic ranking."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Sequence

from uploadmatch.models import RankedResult, SignalScores

CONTENT_USEFUL_THRESHOLD = 0.05
DEFAULT_TOP_K = 5


class WeightProfile(str, Enum):
    CONTENT_USEFUL_WITH_HISTORY = "content_useful_with_history"
    CONTENT_USEFUL_NO_HISTORY = "content_useful_no_history"
    CONTENT_WEAK_WITH_HISTORY = "content_weak_with_history"
    CONTENT_WEAK_NO_HISTORY = "content_weak_no_history"


@dataclass(slots=True, frozen=True)
class Weights:
    content: float
    history: float
    path_name: float
    content_overlap: float
    folder: float

    def total(self) -> float:
        return self.content + self.history + self.path_name + self.content_overlap + self.folder

    def apply(self, signals: SignalScores) -> float:
        return (
            signals.content * self.content
            + signals.history * self.history
            + signals.path_name * self.path_name
            + signals.content_overlap * self.content_overlap
            + signals.folder * self.folder
        )


PROFILE_WEIGHTS: Dict[WeightProfile, Weights] = {
    WeightProfile.CONTENT_USEFUL_WITH_HISTORY: Weights(0.42, 0.28, 0.14, 0.08, 0.08),
    WeightProfile.CONTENT_USEFUL_NO_HISTORY: Weights(0.56, 0.00, 0.22, 0.14, 0.08),
    WeightProfile.CONTENT_WEAK_WITH_HISTORY: Weights(0.00, 0.36, 0.30, 0.20, 0.14),
    WeightProfile.CONTENT_WEAK_NO_HISTORY: Weights(0.00, 0.00, 0.44, 0.42, 0.14),
}


def select_profile(content_useful: bool, has_history: bool) -> WeightProfile:
    if content_useful:
        if has_history:
            return WeightProfile.CONTENT_USEFUL_WITH_HISTORY
        return WeightProfile.CONTENT_USEFUL_NO_HISTORY
    if has_history:
        return WeightProfile.CONTENT_WEAK_WITH_HISTORY
    return WeightProfile.CONTENT_WEAK_NO_HISTORY


def is_content_useful(
    content_scores: Sequence[float], threshold: float = CONTENT_USEFUL_THRESHOLD
) -> bool:
    return max(content_scores, default=0.0) > threshold


@dataclass(slots=True)
class Candidate:
    """A document with its extracted signals, before blending."""

    document_id: str
    signals: SignalScores
    history_count: int = 0
    name: str = ""
    type: str = ""


def choose_profile(
    candidates: Sequence[Candidate], threshold: float = CONTENT_USEFUL_THRESHOLD
) -> WeightProfile:
    content_useful = is_content_useful([c.signals.content for c in candidates], threshold)
    has_history = any(c.signals.history > 0 for c in candidates)
    return select_profile(content_useful, has_history)


def blend(
    candidates: Sequence[Candidate],
    *,
    top_k: int = DEFAULT_TOP_K,
    threshold: float = CONTENT_USEFUL_THRESHOLD,
) -> List[RankedResult]:
    """Score, sort and truncate candidates.

    One weight profile is chosen for the whole query. Results are ordered
    by final score descending; equal scores fall back to ascending
    document id so the order never depends on input order.
    """
    if not candidates or top_k <= 0:
        return []

    profile = choose_profile(candidates, threshold)
    weights = PROFILE_WEIGHTS[profile]
    content_useful = profile in (
        WeightProfile.CONTENT_USEFUL_WITH_HISTORY,
        WeightProfile.CONTENT_USEFUL_NO_HISTORY,
    )

    results: List[RankedResult] = []
    for candidate in candidates:
        signals = candidate.signals
        if not content_useful:
            signals = SignalScores(
                content=0.0,
                history=signals.history,
                path_name=signals.path_name,
                content_overlap=signals.content_overlap,
                folder=signals.folder,
            )
        results.append(
            RankedResult(
                document_id=candidate.document_id,
                final_score=weights.apply(signals),
                history_count=candidate.history_count,
                name=candidate.name,
                type=candidate.type,
                signals=signals,
                profile=profile.value,
            )
        )

    results.sort(key=lambda result: (-result.final_score, result.document_id))
    return [result for result in results[:top_k] if result.final_score > 0]
