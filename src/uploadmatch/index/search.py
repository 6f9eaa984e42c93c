"""Query-time ranking over a consistent corpus snapshot."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from uploadmatch.embedding.provider import (
    EmbeddingPolicy,
    EmbeddingProvider,
    ProviderError,
    VisionDescriber,
    call_with_policy,
)
from uploadmatch.index.ranking import (
    CONTENT_USEFUL_THRESHOLD,
    DEFAULT_TOP_K,
    Candidate,
    blend,
    is_content_useful,
)
from uploadmatch.index.signals import (
    content_overlap_score,
    folder_boost,
    folder_frequencies,
    history_boost,
    path_name_score,
    summarize_history,
)
from uploadmatch.index.similarity import SearchHit, filter_by_accept, search
from uploadmatch.index.vectorizer import QueryVector, ensure_current, vectorize_query
from uploadmatch.index.vocabulary import VocabularyModel
from uploadmatch.models import HistoryEntry, QueryContext, RankedResult, SignalScores, VectorRecord
from uploadmatch.utils.text import tokenize_filtered
from uploadmatch.utils.workflow import create_workflow_id, log_step, round_score

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CorpusSnapshot:
    """Everything one query reads, captured together."""

    vocabulary: VocabularyModel
    records: List[VectorRecord] = field(default_factory=list)
    history: List[HistoryEntry] = field(default_factory=list)


class Searcher:
    """Turns a QueryContext and a snapshot into ranked results.

    In ``dense`` mode the content signal comes from the embedding
    provider; any provider failure, or no dense hit at all, falls back to
    the TF-IDF path. Both paths feed the same blender.
    """

    def __init__(
        self,
        *,
        mode: str = "tfidf",
        embedder: EmbeddingProvider | None = None,
        describer: VisionDescriber | None = None,
        policy: EmbeddingPolicy | None = None,
        candidate_pool: int = 15,
        content_threshold: float = CONTENT_USEFUL_THRESHOLD,
    ) -> None:
        self.mode = mode
        self.embedder = embedder
        self.describer = describer
        self.policy = policy or EmbeddingPolicy()
        self.candidate_pool = candidate_pool
        self.content_threshold = content_threshold

    def rank(
        self,
        context: QueryContext,
        snapshot: CorpusSnapshot,
        *,
        top_k: int = DEFAULT_TOP_K,
        query_vector: QueryVector | None = None,
        image: bytes | None = None,
        now: float | None = None,
        workflow_id: str | None = None,
    ) -> List[RankedResult]:
        workflow_id = workflow_id or create_workflow_id("match")
        log_step(
            workflow_id,
            "match.start",
            {
                "context": context.raw_text[:140],
                "accept": list(context.accept_filter),
                "host": context.host,
                "mode": self.mode,
            },
        )
        if not context.raw_text.strip() or not snapshot.records:
            log_step(workflow_id, "match.empty", {"records": len(snapshot.records)})
            return []

        hits: Optional[List[SearchHit]] = None
        if self.mode == "dense" and self.embedder is not None:
            hits = self._dense_hits(context, snapshot, image, workflow_id)
        if hits is None:
            hits = self._sparse_hits(context, snapshot, query_vector, workflow_id)

        content_useful = is_content_useful([hit.score for hit in hits], self.content_threshold)
        if content_useful:
            pool = [(hit.record, hit.score) for hit in hits]
        else:
            pool = [(record, 0.0) for record in filter_by_accept(snapshot.records, context.accept_filter)]
            log_step(
                workflow_id,
                "ranking.fallback.keywords",
                {"candidates": len(pool), "max_content": round_score(max((h.score for h in hits), default=0.0))},
            )

        candidates = self._extract_signals(context, pool, snapshot.history, now)
        results = blend(candidates, top_k=top_k, threshold=self.content_threshold)

        log_step(
            workflow_id,
            "match.done",
            [
                {
                    "id": result.document_id,
                    "score": round_score(result.final_score),
                    "content": round_score(result.signals.content),
                    "history": round_score(result.signals.history),
                    "path": round_score(result.signals.path_name),
                    "overlap": round_score(result.signals.content_overlap),
                    "folder": round_score(result.signals.folder),
                    "profile": result.profile,
                }
                for result in results
            ],
        )
        return results

    def _sparse_hits(
        self,
        context: QueryContext,
        snapshot: CorpusSnapshot,
        query_vector: QueryVector | None,
        workflow_id: str,
    ) -> List[SearchHit]:
        if query_vector is None:
            query_vector = vectorize_query(context.raw_text, snapshot.vocabulary)
        else:
            query_vector = ensure_current(query_vector, snapshot.vocabulary)
        hits = search(
            query_vector.values,
            snapshot.records,
            self.candidate_pool,
            context.accept_filter,
            space="sparse",
        )
        log_step(
            workflow_id,
            "search.sparse.done",
            {"tokens": len(query_vector.tokens), "dimension": len(query_vector.values), "hits": len(hits)},
        )
        return hits

    def _dense_hits(
        self,
        context: QueryContext,
        snapshot: CorpusSnapshot,
        image: bytes | None,
        workflow_id: str,
    ) -> Optional[List[SearchHit]]:
        """Dense-space hits, or None to request the sparse fallback."""
        assert self.embedder is not None
        query_text = context.raw_text
        if image is not None and self.describer is not None:
            describer = self.describer
            try:
                description = call_with_policy(
                    lambda: describer.describe(image, context.raw_text), self.policy, label="describe"
                )
            except ProviderError as exc:
                LOGGER.warning("Vision description failed, using page context only: %s", exc)
            else:
                query_text = f"{description} {context.raw_text}"

        embedder = self.embedder
        try:
            vector = call_with_policy(lambda: embedder.embed(query_text), self.policy, label="embed query")
        except ProviderError as exc:
            LOGGER.warning("Query embedding failed, falling back to TF-IDF: %s", exc)
            return None

        hits = search(vector, snapshot.records, self.candidate_pool, context.accept_filter, space="dense")
        log_step(workflow_id, "search.dense.done", {"dimension": len(vector), "hits": len(hits)})
        if not hits:
            log_step(workflow_id, "search.dense.fallback", {"reason": "no dense hits"})
            return None
        return hits

    @staticmethod
    def _extract_signals(
        context: QueryContext,
        pool: Sequence[tuple[VectorRecord, float]],
        history: Sequence[HistoryEntry],
        now: float | None,
    ) -> List[Candidate]:
        now = time.time() if now is None else now
        host_history = [entry for entry in history if context.host and entry.host == context.host]
        usage = summarize_history(host_history)
        folders = folder_frequencies(host_history)
        query_terms = tokenize_filtered(context.raw_text)

        candidates: List[Candidate] = []
        for record, content in pool:
            document = record.document
            document_usage = usage.get(document.id)
            candidates.append(
                Candidate(
                    document_id=document.id,
                    signals=SignalScores(
                        content=min(max(content, 0.0), 1.0),
                        history=history_boost(document_usage, now),
                        path_name=path_name_score(document.id, query_terms),
                        content_overlap=content_overlap_score(document.text_preview, query_terms),
                        folder=folder_boost(document.id, folders),
                    ),
                    history_count=document_usage.count if document_usage else 0,
                    name=document.name,
                    type=document.type,
                )
            )
        return candidates
