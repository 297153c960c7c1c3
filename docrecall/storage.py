"""SQLite document store and similarity cache."""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import numpy as np

from .errors import DimensionMismatch, DuplicateHash, StorageUnavailable
from .logging_utils import get_logger
from .models import DocumentRecord, SimilarityResult

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(value: datetime) -> str:
    # Fixed-width ISO timestamps sort lexically in chronological order.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


class DocumentStore:
    """
    Append-mostly store of document records keyed by id, unique on content hash.

    One connection is shared across threads; the lock is held for a single
    statement or transaction at a time, never across a whole request.
    """

    def __init__(
        self,
        db_path: str,
        embedding_dim: int,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = db_path
        self.embedding_dim = embedding_dim
        self._clock = clock
        self._lock = threading.Lock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open database {db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            logger.error("Database error during %s: %s", operation, exc)
            raise StorageUnavailable(f"{operation} failed: {exc}") from exc

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._lock, self._guard("schema initialization"):
            cursor = self.conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    content_hash TEXT NOT NULL UNIQUE,
                    source_filename TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    extracted_text TEXT NOT NULL,
                    result TEXT NOT NULL,
                    embedding BLOB,
                    embedding_dim INTEGER,
                    embedding_model TEXT,
                    similar_to_id INTEGER REFERENCES documents(id),
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_created_at ON documents(created_at)"
            )

            # Derived data, safe to expire
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS similarity_cache (
                    id INTEGER PRIMARY KEY,
                    query_hash TEXT NOT NULL,
                    document_id INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                    similarity_score REAL NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_similarity_query_hash ON similarity_cache(query_hash)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_similarity_created_at ON similarity_cache(created_at)"
            )
            self.conn.commit()

    def _decode_embedding(self, row: sqlite3.Row) -> Optional[np.ndarray]:
        """Stored vector, or None when absent or unreadable."""
        blob = row["embedding"]
        if blob is None:
            return None
        try:
            vector = np.frombuffer(blob, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            logger.warning("Document %s has an unreadable embedding: %s", row["id"], exc)
            return None
        if vector.size != row["embedding_dim"]:
            logger.warning(
                "Document %s embedding holds %d values but records %s",
                row["id"], vector.size, row["embedding_dim"],
            )
            return None
        return vector

    def _row_to_record(self, row: sqlite3.Row) -> DocumentRecord:
        """Raises ValueError or TypeError on a row that cannot be decoded."""
        return DocumentRecord(
            id=row["id"],
            content_hash=row["content_hash"],
            extracted_text=row["extracted_text"],
            result=row["result"],
            embedding=self._decode_embedding(row),
            source_filename=row["source_filename"],
            mime_type=row["mime_type"],
            size_bytes=row["size_bytes"],
            embedding_model=row["embedding_model"] or "",
            similar_to_id=row["similar_to_id"],
            created_at=_parse_ts(row["created_at"]),
        )

    def _fetch_one(self, operation: str, query: str, params: tuple) -> Optional[DocumentRecord]:
        with self._lock, self._guard(operation):
            row = self.conn.execute(query, params).fetchone()
        if row is None:
            return None
        try:
            return self._row_to_record(row)
        except (TypeError, ValueError) as exc:
            logger.error("Corrupt document row %s during %s: %s", row["id"], operation, exc)
            raise StorageUnavailable(f"{operation} failed: corrupt document row {row['id']}") from exc

    # ============ Documents ============

    def lookup_by_hash(self, content_hash: str) -> Optional[DocumentRecord]:
        """Exact-match lookup by content hash."""
        return self._fetch_one(
            "hash lookup", "SELECT * FROM documents WHERE content_hash = ?", (content_hash,)
        )

    def get(self, document_id: int) -> Optional[DocumentRecord]:
        """Get a document by ID."""
        return self._fetch_one(
            "document lookup", "SELECT * FROM documents WHERE id = ?", (document_id,)
        )

    def insert(self, record: DocumentRecord) -> DocumentRecord:
        """
        Insert a new record and return it with ``id`` and ``created_at`` set.

        A record without an embedding is stored for exact-match reuse only;
        similarity scans skip it.

        Raises:
            DimensionMismatch: embedding length differs from the store's dimension
            DuplicateHash: a record with the same content hash exists
            StorageUnavailable: any other database failure
        """
        embedding = None
        if record.embedding is not None:
            embedding = np.asarray(record.embedding, dtype=np.float32)
            if embedding.ndim != 1 or embedding.size != self.embedding_dim:
                raise DimensionMismatch(self.embedding_dim, int(embedding.size))

        created_at = self._clock()
        params = (
            record.content_hash,
            record.source_filename,
            record.mime_type,
            record.size_bytes,
            record.extracted_text,
            record.result,
            None if embedding is None else embedding.tobytes(),
            None if embedding is None else int(embedding.size),
            record.embedding_model,
            record.similar_to_id,
            _format_ts(created_at),
        )

        with self._lock, self._guard("insert"):
            try:
                cursor = self.conn.execute("""
                    INSERT INTO documents (
                        content_hash, source_filename, mime_type, size_bytes,
                        extracted_text, result, embedding, embedding_dim,
                        embedding_model, similar_to_id, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, params)
                self.conn.commit()
            except sqlite3.IntegrityError as exc:
                self.conn.rollback()
                if "content_hash" in str(exc):
                    raise DuplicateHash(record.content_hash) from exc
                raise

        record.id = cursor.lastrowid
        record.created_at = created_at
        record.embedding = embedding
        return record

    def list_candidates(self) -> List[DocumentRecord]:
        """
        Records that carry an embedding, newest first, for a similarity scan.

        Rows that cannot be decoded are logged and left out.
        """
        with self._lock, self._guard("candidate scan"):
            rows = self.conn.execute(
                "SELECT * FROM documents WHERE embedding IS NOT NULL "
                "ORDER BY created_at DESC, id DESC"
            ).fetchall()

        records = []
        for row in rows:
            try:
                records.append(self._row_to_record(row))
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping corrupt document row %s: %s", row["id"], exc)
        return records

    def count(self) -> int:
        with self._lock, self._guard("count"):
            (total,) = self.conn.execute("SELECT COUNT(*) FROM documents").fetchone()
        return total

    # ============ Similarity cache ============

    def record_similarities(
        self,
        query_hash: str,
        results: List[SimilarityResult],
        retention_hours: Optional[int] = None,
    ) -> int:
        """
        Log the scores a similarity search produced. Returns rows written.

        With ``retention_hours`` set, entries older than that are deleted in
        the same transaction.
        """
        if not results:
            return 0
        now = self._clock()
        with self._lock, self._guard("similarity cache write"):
            if retention_hours is not None:
                self.conn.execute(
                    "DELETE FROM similarity_cache WHERE created_at < ?",
                    (_format_ts(now - timedelta(hours=retention_hours)),),
                )
            self.conn.executemany(
                """
                INSERT INTO similarity_cache (query_hash, document_id, similarity_score, created_at)
                VALUES (?, ?, ?, ?)
                """,
                [(query_hash, r.document_id, r.similarity_score, _format_ts(now)) for r in results],
            )
            self.conn.commit()
        return len(results)

    def similarity_stats(self, window_hours: int = 24) -> Dict[str, Any]:
        """Average similarity and entry count over the trailing window."""
        cutoff = _format_ts(self._clock() - timedelta(hours=window_hours))
        with self._lock, self._guard("similarity stats"):
            row = self.conn.execute(
                """
                SELECT AVG(similarity_score) AS avg_similarity, COUNT(*) AS entries
                FROM similarity_cache
                WHERE created_at > ?
                """,
                (cutoff,),
            ).fetchone()
        return {
            "average_similarity": float(row["avg_similarity"] or 0.0),
            "entries": int(row["entries"]),
        }

    def purge_similarity_cache(self, max_age_hours: int = 24) -> int:
        """Delete similarity cache entries older than ``max_age_hours``. Returns count deleted."""
        cutoff = _format_ts(self._clock() - timedelta(hours=max_age_hours))
        with self._lock, self._guard("similarity cache purge"):
            cursor = self.conn.execute(
                "DELETE FROM similarity_cache WHERE created_at < ?", (cutoff,)
            )
            self.conn.commit()
        if cursor.rowcount:
            logger.info("Purged %d similarity cache entries older than %dh", cursor.rowcount, max_age_hours)
        return cursor.rowcount

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self.conn.close()
