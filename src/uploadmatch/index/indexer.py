"""Corpus indexing pipeline."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from uploadmatch.embedding.provider import EmbeddingPolicy, EmbeddingProvider, batch_embed
from uploadmatch.index.storage import CorpusStore, VocabularyStore
from uploadmatch.index.vectorizer import vectorize
from uploadmatch.index.vocabulary import VocabularyModel, build_vocabulary
from uploadmatch.models import FileDocument, SourceFile, SparseAndDense, SparseOnly, VectorRecord
from uploadmatch.utils.text import tokenize
from uploadmatch.utils.workflow import create_workflow_id, log_step

LOGGER = logging.getLogger(__name__)

IndexProgress = Callable[[str, int, int], None]


class IndexingCancelled(RuntimeError):
    """Raised when a build is cancelled; nothing has been persisted."""


@dataclass(slots=True)
class IndexReport:
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    deleted: int = 0
    revectorized: int = 0
    dense_embedded: int = 0
    processed: list[str] = field(default_factory=list)

    def increment(self, status: str, document_id: str) -> None:
        if status == "indexed":
            self.indexed += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed.append(document_id)


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise IndexingCancelled("Indexing cancelled")


class Indexer:
    """Builds the vocabulary and vectors for a corpus snapshot and persists them.

    Phase 1 tokenizes every document and builds the vocabulary; phase 2
    vectorizes each document against that finished vocabulary on a thread
    pool. Records and the vocabulary are written in a single store
    transaction once both phases are done.
    """

    def __init__(
        self,
        store: CorpusStore,
        vocabulary_store: VocabularyStore,
        *,
        embedder: EmbeddingProvider | None = None,
        policy: EmbeddingPolicy | None = None,
        preview_chars: int = 500,
        embed_chars: int = 2000,
        workers: int = 4,
    ) -> None:
        self.store = store
        self.vocabulary_store = vocabulary_store
        self.embedder = embedder
        self.policy = policy or EmbeddingPolicy()
        self.preview_chars = preview_chars
        self.embed_chars = embed_chars
        self.workers = max(workers, 1)

    def build(
        self,
        sources: Sequence[SourceFile],
        *,
        incremental: bool = False,
        current: VocabularyModel | None = None,
        progress: IndexProgress | None = None,
        cancel: threading.Event | None = None,
        workflow_id: str | None = None,
    ) -> Tuple[IndexReport, VocabularyModel]:
        """Index ``sources`` and return the report with the new vocabulary.

        In incremental mode, files whose size and mtime match the stored
        record are not re-read: their stored preview stands in for their
        text when building the vocabulary, and they are re-vectorized
        against it. Stored files missing from ``sources`` are deleted.
        """
        workflow_id = workflow_id or create_workflow_id("index")
        report = IndexReport()
        log_step(workflow_id, "index.start", {"sources": len(sources), "incremental": incremental})

        existing: Dict[str, VectorRecord] = (
            {record.document_id: record for record in self.store.get_all()} if incremental else {}
        )

        changed: List[SourceFile] = []
        unchanged: List[VectorRecord] = []
        seen: set[str] = set()
        for source in sources:
            _check_cancel(cancel)
            if source.id in seen:
                LOGGER.warning("Duplicate document id %s, keeping the first", source.id)
                continue
            seen.add(source.id)
            prior = existing.get(source.id)
            if (
                prior is not None
                and prior.document.size == source.size
                and prior.document.mtime == source.mtime
            ):
                unchanged.append(prior)
                report.increment("skipped", source.id)
            else:
                changed.append(source)
        removed = [document_id for document_id in existing if document_id not in seen]

        log_step(
            workflow_id,
            "index.phase.read.done",
            {"changed": len(changed), "unchanged": len(unchanged), "removed": len(removed)},
        )

        if incremental and not changed and not removed and current is not None and not current.is_empty:
            LOGGER.info("No changes detected, %d file(s) up to date", len(unchanged))
            return report, current

        # Phase 1: tokenize everything, then build the vocabulary.
        texts = [source.text for source in changed] + [
            record.document.text_preview for record in unchanged
        ]
        token_lists: List[List[str]] = []
        for position, text in enumerate(texts, start=1):
            _check_cancel(cancel)
            token_lists.append(tokenize(text))
            if progress is not None:
                progress("tokenize", position, len(texts))
        vocabulary = build_vocabulary(token_lists)
        log_step(workflow_id, "index.phase.vocabulary.done", {"terms": vocabulary.size})

        dense_vectors: List[Optional[np.ndarray]] = [None] * len(changed)
        if self.embedder is not None and changed:
            _check_cancel(cancel)
            dense_vectors = batch_embed(
                self.embedder,
                [source.text[: self.embed_chars] for source in changed],
                self.policy,
                progress=(lambda done, total: progress("embed", done, total)) if progress else None,
                cancel=cancel,
            )
            _check_cancel(cancel)
            log_step(
                workflow_id,
                "index.phase.embed.done",
                {"embedded": sum(vector is not None for vector in dense_vectors)},
            )

        # Phase 2: vectorize each document against the finished vocabulary.
        _check_cancel(cancel)
        sparse_vectors = self._vectorize_all(token_lists, vocabulary, progress, cancel)

        records: List[VectorRecord] = []
        for source, sparse, dense in zip(changed, sparse_vectors, dense_vectors):
            if sparse is None:
                report.increment("failed", source.id)
                continue
            document = FileDocument(
                id=source.id,
                name=source.name,
                type=source.type,
                text_preview=source.text[: self.preview_chars],
                size=source.size,
                mtime=source.mtime,
            )
            if dense is not None:
                records.append(VectorRecord(document, SparseAndDense(sparse=sparse, dense=dense)))
                report.dense_embedded += 1
            else:
                records.append(VectorRecord(document, SparseOnly(sparse=sparse)))
            report.increment("indexed", source.id)

        for record, sparse in zip(unchanged, sparse_vectors[len(changed) :]):
            if sparse is None:
                report.failed += 1
                continue
            records.append(record.with_sparse(sparse))
            report.revectorized += 1

        _check_cancel(cancel)
        with self.store.transaction():
            if not incremental:
                self.store.clear()
            for document_id in removed:
                if self.store.delete_by_id(document_id):
                    report.deleted += 1
            self.store.upsert_many(records)
            self.vocabulary_store.save_vocabulary(vocabulary.to_snapshot())

        log_step(
            workflow_id,
            "index.done",
            {
                "indexed": report.indexed,
                "skipped": report.skipped,
                "failed": report.failed,
                "deleted": report.deleted,
                "revectorized": report.revectorized,
                "dense": report.dense_embedded,
            },
            level=logging.INFO,
        )
        return report, vocabulary

    def _vectorize_all(
        self,
        token_lists: Sequence[Sequence[str]],
        vocabulary: VocabularyModel,
        progress: IndexProgress | None,
        cancel: threading.Event | None,
    ) -> List[Optional[np.ndarray]]:
        vectors: List[Optional[np.ndarray]] = []
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [executor.submit(vectorize, tokens, vocabulary) for tokens in token_lists]
            try:
                for position, future in enumerate(futures, start=1):
                    _check_cancel(cancel)
                    try:
                        vectors.append(future.result())
                    except Exception as exc:
                        LOGGER.error("Failed to vectorize document %d: %s", position, exc)
                        vectors.append(None)
                    if progress is not None:
                        progress("vectorize", position, len(futures))
            except IndexingCancelled:
                for future in futures:
                    future.cancel()
                raise
        return vectors

    def revectorize(
        self, records: Sequence[VectorRecord], vocabulary: VocabularyModel
    ) -> List[VectorRecord]:
        """Recompute sparse vectors from stored previews against ``vocabulary``."""
        refreshed = [
            record.with_sparse(vectorize(tokenize(record.document.text_preview), vocabulary))
            for record in records
        ]
        self.store.upsert_many(refreshed)
        return refreshed
