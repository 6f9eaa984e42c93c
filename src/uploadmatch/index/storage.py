"""SQLite persistence for indexed files, the vocabulary and upload history."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, ContextManager, Dict, Iterator, List, Optional, Protocol, Sequence

import numpy as np

from uploadmatch.index.vocabulary import vocabulary_fingerprint
from uploadmatch.models import (
    FileDocument,
    HistoryEntry,
    SparseAndDense,
    SparseOnly,
    VectorRecord,
)

DEFAULT_HISTORY_LIMIT = 50


class CorpusStore(Protocol):
    def get_all(self) -> List[VectorRecord]: ...

    def get_by_id(self, document_id: str) -> Optional[VectorRecord]: ...

    def upsert(self, record: VectorRecord) -> None: ...

    def upsert_many(self, records: Sequence[VectorRecord]) -> None: ...

    def delete_by_id(self, document_id: str) -> bool: ...

    def clear(self) -> None: ...

    def count(self) -> int: ...

    def transaction(self) -> ContextManager[Any]: ...


class VocabularyStore(Protocol):
    def save_vocabulary(self, snapshot: Dict[str, List[Any]]) -> None: ...

    def load_vocabulary(self) -> Optional[Dict[str, List[Any]]]: ...

    def vocabulary_fingerprint(self) -> Optional[str]: ...


class HistoryStore(Protocol):
    def append_history(self, entry: HistoryEntry) -> None: ...

    def query_history_by_host(
        self, host: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> List[HistoryEntry]: ...


def _to_blob(vector: np.ndarray) -> sqlite3.Binary:
    return sqlite3.Binary(np.asarray(vector, dtype="float32").tobytes())


def _from_blob(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype="float32").copy()


class SQLiteStore:
    """Implements the corpus, vocabulary and history store contracts."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._depth = 0
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in one explicit transaction.

        Reads inside the block all see the same database snapshot, even
        while another connection writes. Commit on success, roll back on
        error. Nested calls join the outer one.
        """
        outer = self._depth == 0 and not self._conn.in_transaction
        if outer:
            self._conn.execute("BEGIN")
        self._depth += 1
        try:
            yield self._conn
            if outer:
                self._conn.commit()
        except Exception:
            if outer:
                self._conn.rollback()
            raise
        finally:
            self._depth -= 1

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS files (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL DEFAULT '',
                    size INTEGER NOT NULL DEFAULT 0,
                    mtime REAL NOT NULL DEFAULT 0,
                    text_preview TEXT NOT NULL DEFAULT '',
                    sparse BLOB NOT NULL,
                    dense BLOB,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS vocabulary (
                    key TEXT PRIMARY KEY,
                    terms TEXT NOT NULL,
                    idf BLOB NOT NULL,
                    fingerprint TEXT NOT NULL DEFAULT '',
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(vocabulary)")}
            if "fingerprint" not in columns:
                conn.execute("ALTER TABLE vocabulary ADD COLUMN fingerprint TEXT NOT NULL DEFAULT ''")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS upload_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id TEXT NOT NULL,
                    host TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    page_url TEXT NOT NULL DEFAULT '',
                    context TEXT NOT NULL DEFAULT ''
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_history_host
                    ON upload_history(host, timestamp)
                """
            )

    # ---- corpus ----

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> VectorRecord:
        document = FileDocument(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            text_preview=row["text_preview"],
            size=row["size"],
            mtime=row["mtime"],
        )
        sparse = _from_blob(row["sparse"])
        dense = _from_blob(row["dense"])
        if dense is not None and dense.size:
            return VectorRecord(document=document, vectors=SparseAndDense(sparse=sparse, dense=dense))
        return VectorRecord(document=document, vectors=SparseOnly(sparse=sparse))

    def get_all(self) -> List[VectorRecord]:
        rows = self._conn.execute("SELECT * FROM files ORDER BY id").fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_by_id(self, document_id: str) -> Optional[VectorRecord]:
        row = self._conn.execute("SELECT * FROM files WHERE id = ?", (document_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def upsert(self, record: VectorRecord) -> None:
        document = record.document
        dense = record.dense
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO files(id, name, type, size, mtime, text_preview, sparse, dense)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    type = excluded.type,
                    size = excluded.size,
                    mtime = excluded.mtime,
                    text_preview = excluded.text_preview,
                    sparse = excluded.sparse,
                    dense = excluded.dense,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    document.id,
                    document.name,
                    document.type,
                    document.size,
                    document.mtime,
                    document.text_preview,
                    _to_blob(record.sparse),
                    _to_blob(dense) if dense is not None else None,
                ),
            )

    def upsert_many(self, records: Sequence[VectorRecord]) -> None:
        with self.transaction():
            for record in records:
                self.upsert(record)

    def delete_by_id(self, document_id: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM files WHERE id = ?", (document_id,))
        return cursor.rowcount > 0

    def clear(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM files")

    def count(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM files").fetchone()[0])

    # ---- vocabulary ----

    def save_vocabulary(self, snapshot: Dict[str, List[Any]]) -> None:
        terms = list(snapshot.get("terms", []))
        idf = np.asarray(snapshot.get("idf", []), dtype="float64")
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO vocabulary(key, terms, idf, fingerprint) VALUES ('main', ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    terms = excluded.terms,
                    idf = excluded.idf,
                    fingerprint = excluded.fingerprint,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    json.dumps(terms, ensure_ascii=False),
                    sqlite3.Binary(idf.tobytes()),
                    vocabulary_fingerprint(terms, idf),
                ),
            )

    def load_vocabulary(self) -> Optional[Dict[str, List[Any]]]:
        row = self._conn.execute("SELECT terms, idf FROM vocabulary WHERE key = 'main'").fetchone()
        if row is None:
            return None
        idf = np.frombuffer(row["idf"], dtype="float64")
        return {"terms": json.loads(row["terms"]), "idf": [float(value) for value in idf]}

    def vocabulary_fingerprint(self) -> Optional[str]:
        """Fingerprint of the stored vocabulary, or None if none is stored."""
        row = self._conn.execute(
            "SELECT terms, idf, fingerprint FROM vocabulary WHERE key = 'main'"
        ).fetchone()
        if row is None:
            return None
        if row["fingerprint"]:
            return row["fingerprint"]
        # Rows written before the column existed.
        return vocabulary_fingerprint(
            json.loads(row["terms"]), np.frombuffer(row["idf"], dtype="float64")
        )

    # ---- history ----

    def append_history(self, entry: HistoryEntry) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO upload_history(document_id, host, timestamp, page_url, context)
                VALUES (?, ?, ?, ?, ?)
                """,
                (entry.document_id, entry.host, entry.timestamp, entry.page_url, entry.context),
            )

    def query_history_by_host(
        self, host: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> List[HistoryEntry]:
        """Most recent entries for ``host`` first."""
        rows = self._conn.execute(
            """
            SELECT document_id, host, timestamp, page_url, context
            FROM upload_history
            WHERE host = ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (host, limit),
        ).fetchall()
        return [
            HistoryEntry(
                document_id=row["document_id"],
                host=row["host"],
                timestamp=row["timestamp"],
                page_url=row["page_url"],
                context=row["context"],
            )
            for row in rows
        ]

    def clear_scanned_data(self) -> None:
        """Drop indexed files, the vocabulary and upload history."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM files")
            conn.execute("DELETE FROM vocabulary")
            conn.execute("DELETE FROM upload_history")
