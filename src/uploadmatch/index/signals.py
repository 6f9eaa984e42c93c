"""Independent scoring signals for ranking candidates.

Each function returns a value in ``[0, 1]`` and ignores the others.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, Sequence

from uploadmatch.models import HistoryEntry, folder_of
from uploadmatch.utils.text import path_text, tokenize_filtered

SECONDS_PER_DAY = 24 * 60 * 60
HISTORY_DECAY_DAYS = 90.0
# Any past upload on the host keeps at least this boost, however old.
HISTORY_FLOOR = 0.1


@dataclass(slots=True)
class UsageSummary:
    count: int
    last_timestamp: float


def summarize_history(history: Iterable[HistoryEntry]) -> Dict[str, UsageSummary]:
    """Group entries by document: upload count and most recent timestamp."""
    summary: Dict[str, UsageSummary] = {}
    for entry in history:
        existing = summary.get(entry.document_id)
        if existing is None:
            summary[entry.document_id] = UsageSummary(1, entry.timestamp)
        else:
            existing.count += 1
            existing.last_timestamp = max(existing.last_timestamp, entry.timestamp)
    return summary


def history_boost(usage: UsageSummary | None, now: float) -> float:
    """Recency-decayed boost: 1.0 today, linear to the floor at 90 days."""
    if usage is None:
        return 0.0
    days_ago = (now - usage.last_timestamp) / SECONDS_PER_DAY
    return min(1.0, max(HISTORY_FLOOR, 1.0 - days_ago / HISTORY_DECAY_DAYS))


def overlap_coefficient(left: Iterable[str], right: Iterable[str]) -> float:
    """|A ∩ B| / min(|A|, |B|), 0 when either side is empty."""
    a, b = set(left), set(right)
    if not a or not b:
        return 0.0
    return len(a & b) / min(len(a), len(b))


def path_name_score(path: str, query_terms: Sequence[str]) -> float:
    return overlap_coefficient(tokenize_filtered(path_text(path)), query_terms)


def content_overlap_score(text_preview: str, query_terms: Sequence[str]) -> float:
    return overlap_coefficient(tokenize_filtered(text_preview), query_terms)


def folder_frequencies(history: Iterable[HistoryEntry]) -> Dict[str, float]:
    """Share of a host's uploads that came from each folder (sums to 1)."""
    counts = Counter(folder_of(entry.document_id) for entry in history)
    total = sum(counts.values())
    if total == 0:
        return {}
    return {folder: count / total for folder, count in counts.items()}


def folder_boost(document_id: str, frequencies: Dict[str, float]) -> float:
    return frequencies.get(folder_of(document_id), 0.0)
