"""The relevance engine: index a corpus, rank files for an upload field."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import List, Sequence

from uploadmatch.config import AppConfig
from uploadmatch.embedding.provider import EmbeddingPolicy, EmbeddingProvider, VisionDescriber
from uploadmatch.index.indexer import IndexProgress, Indexer, IndexReport
from uploadmatch.index.search import CorpusSnapshot, Searcher
from uploadmatch.index.storage import CorpusStore, HistoryStore, VocabularyStore
from uploadmatch.index.vectorizer import QueryVector, is_stale, vectorize_query
from uploadmatch.index.vocabulary import VocabularyModel
from uploadmatch.ingestion.loader import load_folder
from uploadmatch.models import HistoryEntry, QueryContext, RankedResult, SourceFile
from uploadmatch.utils.files import relative_id
from uploadmatch.utils.workflow import create_workflow_id

LOGGER = logging.getLogger(__name__)


class RelevanceEngine:
    """Owns the live vocabulary and coordinates indexing and ranking.

    The vocabulary is an immutable value swapped by reference under a
    lock. Queries read the vocabulary, records and history together under
    the same lock, so a concurrent rebuild can never hand them a
    vocabulary that disagrees with the records. Those reads also share one
    store transaction, and the cached vocabulary is reloaded when another
    writer on the same database has replaced it.
    """

    def __init__(
        self,
        corpus: CorpusStore,
        vocabulary_store: VocabularyStore,
        history_store: HistoryStore,
        *,
        config: AppConfig | None = None,
        embedder: EmbeddingProvider | None = None,
        describer: VisionDescriber | None = None,
        policy: EmbeddingPolicy | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.corpus = corpus
        self.vocabulary_store = vocabulary_store
        self.history_store = history_store
        self._lock = threading.RLock()
        self._vocabulary = VocabularyModel.empty()
        self._fingerprint: str | None = None

        dense = self.config.mode == "dense" and embedder is not None
        self.indexer = Indexer(
            corpus,
            vocabulary_store,
            embedder=embedder if dense else None,
            policy=policy,
            preview_chars=self.config.preview_chars,
            embed_chars=self.config.embed_chars,
            workers=self.config.workers,
        )
        self.searcher = Searcher(
            mode=self.config.mode,
            embedder=embedder,
            describer=describer,
            policy=policy,
            candidate_pool=self.config.candidate_pool,
            content_threshold=self.config.content_threshold,
        )

    @property
    def vocabulary(self) -> VocabularyModel:
        with self._lock, self.corpus.transaction():
            self._sync_vocabulary()
            return self._vocabulary

    def _set_vocabulary(self, vocabulary: VocabularyModel) -> None:
        self._vocabulary = vocabulary
        self._fingerprint = vocabulary.fingerprint

    def _sync_vocabulary(self) -> None:
        """Reload the vocabulary if the store holds a different one.

        Another engine or process may have rebuilt the index in the same
        database; callers hold a store transaction so the vocabulary and
        the records they read next come from one snapshot.
        """
        stored = self.vocabulary_store.vocabulary_fingerprint()
        if stored == self._fingerprint:
            return
        snapshot = self.vocabulary_store.load_vocabulary() if stored is not None else None
        if snapshot:
            self._set_vocabulary(VocabularyModel.from_snapshot(snapshot))
            LOGGER.info("Vocabulary loaded: %d terms", self._vocabulary.size)
        else:
            LOGGER.debug("No stored vocabulary found")
            self._vocabulary = VocabularyModel.empty()
            self._fingerprint = stored

    def build_index(
        self,
        sources: Sequence[SourceFile],
        *,
        incremental: bool = False,
        progress: IndexProgress | None = None,
        cancel: threading.Event | None = None,
    ) -> IndexReport:
        """Rebuild the vocabulary and vectors, then swap the vocabulary in."""
        with self._lock:
            with self.corpus.transaction():
                self._sync_vocabulary()
            current = self._vocabulary
            report, vocabulary = self.indexer.build(
                sources,
                incremental=incremental,
                current=current,
                progress=progress,
                cancel=cancel,
                workflow_id=create_workflow_id("index"),
            )
            self._set_vocabulary(vocabulary)
        return report

    def index_folder(
        self,
        root: Path,
        *,
        incremental: bool = False,
        progress: IndexProgress | None = None,
        cancel: threading.Event | None = None,
    ) -> IndexReport:
        loaded = load_folder(root, max_chars=self.config.max_text_chars)
        report = self.build_index(
            loaded.sources, incremental=incremental, progress=progress, cancel=cancel
        )
        report.failed += len(loaded.failed)
        report.processed.extend(relative_id(path, root) for path in loaded.failed)
        return report

    def refresh_stale(self) -> int:
        """Re-vectorize records whose dimension disagrees with the live vocabulary."""
        with self._lock, self.corpus.transaction():
            self._sync_vocabulary()
            stale = [
                record for record in self.corpus.get_all() if is_stale(record.sparse, self._vocabulary)
            ]
            if stale:
                LOGGER.info("Re-vectorizing %d stale record(s)", len(stale))
                self.indexer.revectorize(stale, self._vocabulary)
        return len(stale)

    def prepare_query(self, text: str) -> QueryVector:
        return vectorize_query(text, self.vocabulary)

    def snapshot(self, host: str = "") -> CorpusSnapshot:
        with self._lock, self.corpus.transaction():
            self._sync_vocabulary()
            history = (
                self.history_store.query_history_by_host(host, self.config.history_limit)
                if host
                else []
            )
            return CorpusSnapshot(
                vocabulary=self._vocabulary,
                records=self.corpus.get_all(),
                history=history,
            )

    def rank(
        self,
        context: QueryContext,
        top_n: int | None = None,
        *,
        query_vector: QueryVector | None = None,
        image: bytes | None = None,
        now: float | None = None,
    ) -> List[RankedResult]:
        """Rank indexed files for ``context``; always returns a (possibly empty) list."""
        snapshot = self.snapshot(context.host)
        return self.searcher.rank(
            context,
            snapshot,
            top_k=self.config.top_k if top_n is None else top_n,
            query_vector=query_vector,
            image=image,
            now=now,
        )

    def record_upload(
        self,
        document_id: str,
        host: str,
        *,
        page_url: str = "",
        context: str = "",
        timestamp: float | None = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            document_id=document_id,
            host=host,
            timestamp=time.time() if timestamp is None else timestamp,
            page_url=page_url,
            context=context,
        )
        with self._lock:
            self.history_store.append_history(entry)
        return entry

    def count(self) -> int:
        with self._lock:
            return self.corpus.count()

    def clear(self) -> None:
        """Drop every indexed record and reset the vocabulary."""
        with self._lock:
            with self.corpus.transaction():
                self.corpus.clear()
                self.vocabulary_store.save_vocabulary(VocabularyModel.empty().to_snapshot())
            self._set_vocabulary(VocabularyModel.empty())
