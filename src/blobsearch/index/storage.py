"""SQLite-backed metadata search index."""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Sequence

from blobsearch.errors import IndexUnavailable
from blobsearch.index.translator import SQLQuery, SQLQueryTranslator, storage_value, value_kind
from blobsearch.models import DocumentMetadata, IndexField, Page, PageRequest

LOGGER = logging.getLogger(__name__)


class SQLiteSearchIndex:
    """Persistence layer for document metadata, partitioned by index name."""

    def __init__(self, db_path: Path | str, *, translator: SQLQueryTranslator | None = None) -> None:
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.translator = translator or SQLQueryTranslator()
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA foreign_keys=ON;")
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise IndexUnavailable(f"Cannot open index database {self.db_path}: {exc}") from exc

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS indexes (
                    name TEXT PRIMARY KEY,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    index_name TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    hash TEXT NOT NULL,
                    content_type TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(index_name, doc_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS documents_updated
                AFTER UPDATE ON documents
                BEGIN
                    UPDATE documents SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
                END;
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS document_fields (
                    document_id INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    value,
                    PRIMARY KEY(document_id, name),
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_document_fields_lookup
                    ON document_fields(name, kind, value)
                """
            )

    def create_index(self, index_name: str) -> None:
        try:
            with self.transaction() as conn:
                conn.execute("INSERT OR IGNORE INTO indexes(name) VALUES (?)", (index_name,))
        except sqlite3.Error as exc:
            raise IndexUnavailable(f"Failed to create index {index_name!r}: {exc}") from exc
        LOGGER.debug("Index %s ready", index_name)

    def list_indexes(self) -> List[str]:
        try:
            with self._lock:
                rows = self._conn.execute("SELECT name FROM indexes ORDER BY name").fetchall()
        except sqlite3.Error as exc:
            raise IndexUnavailable(f"Failed to list indexes: {exc}") from exc
        return [row["name"] for row in rows]

    def upsert(
        self,
        index_name: str,
        document_id: str | None,
        content_hash: str,
        content_type: str | None,
        fields: Sequence[IndexField],
    ) -> str:
        """Insert or fully replace a document; old fields are dropped, never merged."""
        doc_id = document_id or uuid.uuid4().hex
        try:
            with self.transaction() as conn:
                conn.execute("INSERT OR IGNORE INTO indexes(name) VALUES (?)", (index_name,))
                conn.execute(
                    """
                    INSERT INTO documents(index_name, doc_id, hash, content_type)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(index_name, doc_id) DO UPDATE SET
                        hash = excluded.hash,
                        content_type = excluded.content_type
                    """,
                    (index_name, doc_id, content_hash, content_type),
                )
                row_id = conn.execute(
                    "SELECT id FROM documents WHERE index_name = ? AND doc_id = ?",
                    (index_name, doc_id),
                ).fetchone()["id"]
                conn.execute("DELETE FROM document_fields WHERE document_id = ?", (row_id,))
                conn.executemany(
                    """
                    INSERT INTO document_fields(document_id, position, name, kind, value)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (row_id, position, item.name, value_kind(item.value), storage_value(item.value))
                        for position, item in enumerate(fields)
                    ],
                )
        except sqlite3.Error as exc:
            raise IndexUnavailable(f"Failed to index document {doc_id!r} in {index_name!r}: {exc}") from exc

        LOGGER.debug("Indexed %s/%s -> %s", index_name, doc_id, content_hash)
        return doc_id

    def search(
        self, index_name: str, native_query: SQLQuery, page_request: PageRequest
    ) -> Page[DocumentMetadata]:
        where = native_query.where
        order = native_query.order
        try:
            with self._lock:
                total = self._conn.execute(
                    f"SELECT COUNT(*) FROM documents d WHERE d.index_name = ? AND ({where.sql})",
                    (index_name, *where.params),
                ).fetchone()[0]
                rows = self._conn.execute(
                    f"""
                    SELECT d.id, d.index_name, d.doc_id, d.hash, d.content_type
                    FROM documents d
                    WHERE d.index_name = ? AND ({where.sql})
                    {order.sql}
                    LIMIT ? OFFSET ?
                    """,
                    (index_name, *where.params, *order.params, page_request.size, page_request.offset),
                ).fetchall()
                fields_by_row = self._load_fields([row["id"] for row in rows])
        except sqlite3.Error as exc:
            raise IndexUnavailable(f"Search on {index_name!r} failed: {exc}") from exc

        content = [
            self.translator.metadata_from_rows(row, fields_by_row.get(row["id"], []))
            for row in rows
        ]
        return Page(
            content=content,
            total_elements=total,
            page_number=page_request.page,
            page_size=page_request.size,
        )

    def _load_fields(self, row_ids: List[int]) -> Dict[int, List[sqlite3.Row]]:
        if not row_ids:
            return {}
        placeholders = ", ".join("?" for _ in row_ids)
        rows = self._conn.execute(
            f"""
            SELECT document_id, name, kind, value
            FROM document_fields
            WHERE document_id IN ({placeholders})
            ORDER BY document_id, position
            """,
            row_ids,
        ).fetchall()
        grouped: Dict[int, List[sqlite3.Row]] = {}
        for row in rows:
            grouped.setdefault(row["document_id"], []).append(row)
        return grouped
