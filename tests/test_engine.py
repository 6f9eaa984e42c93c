"""End-to-end tests for RelevanceEngine."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from conftest import FakeEmbedder, make_source
from uploadmatch.config import AppConfig
from uploadmatch.engine import RelevanceEngine
from uploadmatch.index.indexer import IndexingCancelled
from uploadmatch.index.ranking import WeightProfile
from uploadmatch.index.signals import SECONDS_PER_DAY
from uploadmatch.index.storage import SQLiteStore
from uploadmatch.models import QueryContext

NOW = 1_700_000_000.0
HOST = "jobs.example.com"


@pytest.fixture
def engine(store, tmp_path):
    return RelevanceEngine(store, store, store, config=AppConfig(db_path=tmp_path / "test.db"))


def ids(results):
    return [result.document_id for result in results]


class TestScenarios:
    """Ranking behaviour over small corpora."""

    def test_content_match_ranks_first(self, engine, sample_sources):
        engine.build_index(sample_sources)

        results = engine.rank(QueryContext("please upload your resume"), now=NOW)

        assert results[0].document_id == "resume.pdf"
        assert all(r.final_score > 0 for r in results)

    def test_no_content_match_uses_filename(self, engine):
        engine.build_index(
            [
                make_source("passport.jpg", "holiday beach sunset", type="image/jpeg"),
                make_source("notes.txt", "meeting agenda budget", type="text/plain"),
            ]
        )

        results = engine.rank(QueryContext("passport scan"), now=NOW)

        assert results[0].document_id == "passport.jpg"
        assert results[0].profile == WeightProfile.CONTENT_WEAK_NO_HISTORY.value
        assert results[0].signals.content == 0.0
        assert "notes.txt" not in ids(results)

    def test_equal_scores_ordered_by_id(self, engine):
        engine.build_index(
            [
                make_source("b/report.pdf", "quarterly sales report"),
                make_source("a/report.pdf", "quarterly sales report"),
            ]
        )

        results = engine.rank(QueryContext("sales report"), now=NOW)

        assert ids(results) == ["a/report.pdf", "b/report.pdf"]
        assert results[0].final_score == results[1].final_score

    def test_query_prepared_before_rebuild(self, engine):
        engine.build_index(
            [
                make_source("budget.xlsx", "budget spreadsheet for 2024"),
                make_source("letter.txt", "cover letter for job"),
            ]
        )
        prepared = engine.prepare_query("budget spreadsheet")
        engine.build_index(
            [
                make_source("budget.xlsx", "budget spreadsheet for 2024"),
                make_source("letter.txt", "cover letter for job"),
                make_source("invoice.pdf", "invoice total amount due"),
            ]
        )

        stale = engine.rank(QueryContext("budget spreadsheet"), query_vector=prepared, now=NOW)
        fresh = engine.rank(QueryContext("budget spreadsheet"), now=NOW)

        assert not prepared.is_current(engine.vocabulary)
        assert stale == fresh
        assert stale[0].document_id == "budget.xlsx"


class TestHistorySignals:
    """History and folder boosts through the engine."""

    def test_recent_upload_boosted(self, engine):
        engine.build_index(
            [
                make_source("passport.jpg", "", type="image/jpeg"),
                make_source("id_card.png", "", type="image/png"),
            ]
        )
        engine.record_upload("id_card.png", HOST, timestamp=NOW - SECONDS_PER_DAY)

        results = engine.rank(QueryContext("identity document", host=HOST), now=NOW)

        assert ids(results) == ["id_card.png", "passport.jpg"]
        assert results[0].history_count == 1
        assert results[0].profile == WeightProfile.CONTENT_WEAK_WITH_HISTORY.value
        assert results[0].signals.history == pytest.approx(1 - 1 / 90)

    def test_other_host_history_ignored(self, engine):
        engine.build_index([make_source("passport.jpg", "", type="image/jpeg")])
        engine.record_upload("passport.jpg", "other.org", timestamp=NOW)

        assert engine.rank(QueryContext("identity document", host=HOST), now=NOW) == []

    def test_folder_boost_reaches_siblings(self, engine):
        engine.build_index(
            [
                make_source("23S/OS/HW1.pdf", "process scheduling answers"),
                make_source("23S/OS/HW2.pdf", "virtual memory answers"),
                make_source("23S/OS/HW3.pdf", "file systems answers"),
                make_source("23S/CS/lab1.pdf", "linked lists lab"),
            ]
        )
        engine.record_upload("23S/OS/HW1.pdf", HOST, timestamp=NOW - 7 * SECONDS_PER_DAY)
        engine.record_upload("23S/OS/HW2.pdf", HOST, timestamp=NOW - SECONDS_PER_DAY)

        results = engine.rank(QueryContext("homework submission", host=HOST), now=NOW)

        ranked = ids(results)
        assert ranked[:2] == ["23S/OS/HW2.pdf", "23S/OS/HW1.pdf"]
        assert "23S/OS/HW3.pdf" in ranked
        assert "23S/CS/lab1.pdf" not in ranked
        hw3 = next(r for r in results if r.document_id == "23S/OS/HW3.pdf")
        assert hw3.history_count == 0
        assert hw3.signals.folder == pytest.approx(1.0)


class TestLifecycle:
    """Index, persist, refresh and clear."""

    def test_vocabulary_survives_restart(self, store, tmp_path, sample_sources):
        config = AppConfig(db_path=tmp_path / "test.db")
        RelevanceEngine(store, store, store, config=config).build_index(sample_sources)

        reopened = RelevanceEngine(store, store, store, config=config)

        assert not reopened.vocabulary.is_empty
        assert reopened.rank(QueryContext("resume"), now=NOW)[0].document_id == "resume.pdf"

    def test_refresh_stale(self, engine, store, sample_sources):
        engine.build_index(sample_sources)
        record = store.get_by_id("taxes.pdf")
        store.upsert(record.with_sparse(np.ones(3, dtype="float32")))

        assert engine.refresh_stale() == 1
        assert len(store.get_by_id("taxes.pdf").sparse) == engine.vocabulary.size
        assert engine.refresh_stale() == 0

    @patch("uploadmatch.ingestion.loader.fitz")
    def test_index_folder_reports_unreadable_by_id(self, mock_fitz: MagicMock, engine, tmp_path):
        """Unreadable files are listed under the same relative ids as indexed ones."""
        mock_fitz.open.side_effect = RuntimeError("broken pdf")
        root = tmp_path / "docs"
        (root / "scans").mkdir(parents=True)
        (root / "scans" / "broken.pdf").write_bytes(b"not a pdf")
        (root / "resume.txt").write_text("resume with work experience", encoding="utf-8")

        report = engine.index_folder(root)

        assert report.indexed == 1
        assert report.failed == 1
        assert sorted(report.processed) == ["resume.txt", "scans/broken.pdf"]

    def test_incremental_index_folder(self, engine, tmp_path):
        root = tmp_path / "docs"
        root.mkdir()
        (root / "resume.txt").write_text("resume with work experience", encoding="utf-8")
        (root / "notes.md").write_text("shopping list", encoding="utf-8")

        first = engine.index_folder(root)
        second = engine.index_folder(root, incremental=True)

        assert first.indexed == 2
        assert second.skipped == 2
        assert engine.count() == 2
        assert engine.rank(QueryContext("resume"), now=NOW)[0].document_id == "resume.txt"

    def test_cancel_keeps_previous_index(self, engine, sample_sources):
        engine.build_index(sample_sources)
        before = engine.vocabulary
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(IndexingCancelled):
            engine.build_index([make_source("other.pdf", "other text")], cancel=cancel)

        assert engine.vocabulary is before
        assert engine.count() == 3

    def test_clear(self, engine, sample_sources):
        engine.build_index(sample_sources)

        engine.clear()

        assert engine.count() == 0
        assert engine.vocabulary.is_empty
        assert engine.rank(QueryContext("resume"), now=NOW) == []

    def test_record_upload_returns_entry(self, engine):
        entry = engine.record_upload("a.pdf", HOST, page_url="https://jobs.example.com/apply", timestamp=NOW)

        assert entry.timestamp == NOW
        assert engine.history_store.query_history_by_host(HOST) == [entry]


class TestDenseMode:
    def test_dense_mode_end_to_end(self, store, tmp_path, sample_sources, fast_policy):
        engine = RelevanceEngine(
            store,
            store,
            store,
            config=AppConfig(db_path=tmp_path / "test.db", mode="dense"),
            embedder=FakeEmbedder(),
            policy=fast_policy,
        )

        report = engine.build_index(sample_sources)
        results = engine.rank(QueryContext("please upload your resume"), now=NOW)

        assert report.dense_embedded == 3
        assert results[0].document_id == "resume.pdf"
        assert results[0].signals.content == pytest.approx(1.0)


class TestSharedDatabase:
    """Two engines with separate connections to one database file."""

    @pytest.fixture
    def engines(self, tmp_path):
        db_path = tmp_path / "shared.db"
        first_store = SQLiteStore(db_path)
        second_store = SQLiteStore(db_path)
        config = AppConfig(db_path=db_path)
        yield (
            RelevanceEngine(first_store, first_store, first_store, config=config),
            RelevanceEngine(second_store, second_store, second_store, config=config),
        )
        first_store.close()
        second_store.close()

    def test_rebuild_by_other_engine_reloads_vocabulary(self, engines):
        """A same-size vocabulary with a different term order is picked up."""
        writer, reader = engines
        writer.build_index(
            [make_source("a.pdf", "resume experience"), make_source("b.pdf", "passport photo")]
        )
        before = reader.vocabulary
        writer.build_index(
            [make_source("a.pdf", "passport photo"), make_source("b.pdf", "resume experience")]
        )

        results = reader.rank(QueryContext("resume"), now=NOW)

        assert reader.vocabulary.size == before.size
        assert reader.vocabulary.terms != before.terms
        assert results[0].document_id == "b.pdf"

    def test_clear_by_other_engine(self, engines, sample_sources):
        writer, reader = engines
        writer.build_index(sample_sources)
        assert not reader.vocabulary.is_empty

        writer.clear()

        assert reader.vocabulary.is_empty
        assert reader.rank(QueryContext("resume"), now=NOW) == []

    def test_unchanged_vocabulary_not_reloaded(self, engines, sample_sources):
        writer, reader = engines
        writer.build_index(sample_sources)
        loaded = reader.vocabulary

        reader.rank(QueryContext("resume"), now=NOW)

        assert reader.vocabulary is loaded
