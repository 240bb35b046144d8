"""SQLite-backed inverted index store.

One database file per index directory holds every committed document:
- WAL journaling so snapshot readers never block on, or see, an open writer
- WITHOUT ROWID postings clustered by (field, term, ordinal)
- Binary position encoding (``array('I')`` blobs)
- Documents addressed by a monotonically increasing ordinal; replaced or
  deleted documents are tombstoned and physically removed by
  ``purge_deleted``
- Per-field length aggregates maintained at commit time so BM25 statistics
  never require a scan

Every mutation runs inside a single ``BEGIN IMMEDIATE`` transaction, which
makes a whole commit visible to new snapshots at once or not at all.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any

import orjson

from docindex.search.analyzers import DEFAULT_ANALYZER, is_known_analyzer
from docindex.search.errors import (
    IndexUnavailableError,
    StoreCorruptionError,
    TokenizerMismatchError,
)
from docindex.search.models import Posting, PreparedDocument
from docindex.search.schema import Schema, create_default_schema
from docindex.search.sqlite_pragmas import apply_read_pragmas, apply_write_pragmas
from docindex.search.stats import FieldLengthStats


logger = logging.getLogger(__name__)

FORMAT_VERSION = "1"
DB_FILENAME = "index.db"

# SQLite caps bound parameters per statement; stay well below the limit
_MAX_IN_PARAMS = 500

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        ordinal INTEGER PRIMARY KEY AUTOINCREMENT,
        doc_id TEXT NOT NULL,
        deleted INTEGER NOT NULL DEFAULT 0,
        stored BLOB NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_doc_id ON documents(doc_id, deleted)",
    "CREATE INDEX IF NOT EXISTS idx_documents_deleted ON documents(deleted)",
    """
    CREATE TABLE IF NOT EXISTS postings (
        field TEXT NOT NULL,
        term TEXT NOT NULL,
        ordinal INTEGER NOT NULL,
        tf INTEGER NOT NULL,
        positions_blob BLOB,
        PRIMARY KEY (field, term, ordinal)
    ) WITHOUT ROWID
    """,
    """
    CREATE TABLE IF NOT EXISTS field_lengths (
        ordinal INTEGER NOT NULL,
        field TEXT NOT NULL,
        length INTEGER NOT NULL,
        PRIMARY KEY (ordinal, field)
    ) WITHOUT ROWID
    """,
    """
    CREATE TABLE IF NOT EXISTS numeric_points (
        field TEXT NOT NULL,
        value INTEGER NOT NULL,
        ordinal INTEGER NOT NULL,
        PRIMARY KEY (field, value, ordinal)
    ) WITHOUT ROWID
    """,
    """
    CREATE TABLE IF NOT EXISTS field_stats (
        field TEXT PRIMARY KEY,
        document_count INTEGER NOT NULL,
        total_terms INTEGER NOT NULL
    ) WITHOUT ROWID
    """,
)

_DATA_TABLES = ("postings", "field_lengths", "numeric_points", "field_stats", "documents")
_ORDINAL_TABLES = ("postings", "field_lengths", "numeric_points")

_WRITER_LOCKS: dict[Path, threading.Lock] = {}
_WRITER_LOCKS_GUARD = threading.Lock()


def _writer_lock_for(db_path: Path) -> threading.Lock:
    with _WRITER_LOCKS_GUARD:
        lock = _WRITER_LOCKS.get(db_path)
        if lock is None:
            lock = threading.Lock()
            _WRITER_LOCKS[db_path] = lock
        return lock


def _chunked(items: list[int], size: int = _MAX_IN_PARAMS) -> Iterator[list[int]]:
    for offset in range(0, len(items), size):
        yield items[offset : offset + size]


def decode_stored(blob: bytes | str) -> dict[str, Any]:
    try:
        data = orjson.loads(blob)
    except orjson.JSONDecodeError as exc:
        raise StoreCorruptionError(f"Stored fields are not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise StoreCorruptionError("Stored fields must decode to an object")
    return data


class IndexStore:
    """Durable inverted index rooted at an index directory.

    Opening a store validates the on-disk format and fixes the tokenizer: a
    new index records ``tokenizer`` (default ``standard``); an existing index
    keeps the tokenizer it was created with and rejects a different explicit
    request with ``TokenizerMismatchError``.
    """

    def __init__(
        self,
        index_dir: str | Path,
        *,
        tokenizer: str | None = None,
        schema: Schema | None = None,
        create: bool = True,
    ) -> None:
        self.index_dir = Path(index_dir).expanduser()
        self.db_path = self.index_dir / DB_FILENAME
        if tokenizer is not None and not is_known_analyzer(tokenizer):
            raise ValueError(f"Unknown tokenizer '{tokenizer}'")

        if self.db_path.exists():
            metadata = self._read_metadata()
            if metadata is None:
                if not create:
                    raise StoreCorruptionError(f"{self.db_path} is not a docindex store")
                self._create(tokenizer, schema)
                metadata = self._read_metadata()
        else:
            if not create:
                raise IndexUnavailableError(f"No index found at {self.index_dir}")
            try:
                self.index_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise IndexUnavailableError(f"Cannot create index directory {self.index_dir}: {exc}") from exc
            self._create(tokenizer, schema)
            metadata = self._read_metadata()

        if metadata is None:
            raise StoreCorruptionError(f"{self.db_path} is missing index metadata")
        self.schema, self.tokenizer = self._validate_metadata(metadata, tokenizer)
        self._writer_lock = _writer_lock_for(self.db_path.resolve())

    # ------------------------------------------------------------------
    # Opening and validation
    # ------------------------------------------------------------------

    def _connect(self, *, write: bool) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        try:
            if write:
                apply_write_pragmas(conn)
            else:
                apply_read_pragmas(conn)
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _read_metadata(self) -> dict[str, str] | None:
        conn = None
        try:
            conn = self._connect(write=False)
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
            if "metadata" not in tables:
                if tables - {"sqlite_sequence"}:
                    raise StoreCorruptionError(f"{self.db_path} contains foreign tables: {sorted(tables)}")
                return None
            return {key: value for key, value in conn.execute("SELECT key, value FROM metadata")}
        except sqlite3.OperationalError as exc:
            raise IndexUnavailableError(f"Cannot open index at {self.index_dir}: {exc}") from exc
        except sqlite3.DatabaseError as exc:
            raise StoreCorruptionError(f"Index database {self.db_path} failed to open: {exc}") from exc
        finally:
            if conn is not None:
                conn.close()

    def _create(self, tokenizer: str | None, schema: Schema | None) -> None:
        schema = schema or create_default_schema()
        now = datetime.now(timezone.utc).isoformat()
        with self._write_transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'metadata'"
            ).fetchone()
            if existing:
                return
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)
            conn.executemany(
                "INSERT INTO metadata (key, value) VALUES (?, ?)",
                [
                    ("format_version", FORMAT_VERSION),
                    ("schema", orjson.dumps(schema.to_dict()).decode("utf-8")),
                    ("tokenizer", (tokenizer or DEFAULT_ANALYZER).lower()),
                    ("created_at", now),
                    ("generation", "0"),
                ],
            )
        logger.info("Created index at %s (tokenizer=%s)", self.index_dir, tokenizer or DEFAULT_ANALYZER)

    def _validate_metadata(self, metadata: Mapping[str, str], requested: str | None) -> tuple[Schema, str]:
        version = metadata.get("format_version")
        if version != FORMAT_VERSION:
            raise StoreCorruptionError(f"Unsupported index format version {version!r} at {self.db_path}")
        try:
            schema = Schema.from_dict(orjson.loads(metadata.get("schema") or ""))
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise StoreCorruptionError(f"Stored schema at {self.db_path} is unreadable: {exc}") from exc
        stored_tokenizer = metadata.get("tokenizer") or ""
        if not is_known_analyzer(stored_tokenizer):
            raise StoreCorruptionError(
                f"Index at {self.index_dir} uses tokenizer '{stored_tokenizer}', which is not registered"
            )
        if requested is not None and requested.lower() != stored_tokenizer:
            raise TokenizerMismatchError(
                f"Index at {self.index_dir} was created with tokenizer '{stored_tokenizer}', not '{requested}'"
            )
        if not (metadata.get("generation") or "").isdigit():
            raise StoreCorruptionError(f"Index generation at {self.db_path} is missing or invalid")
        return schema, stored_tokenizer

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def acquire_writer(self) -> None:
        """Claim the single write slot for this index, failing fast if taken."""
        if not self._writer_lock.acquire(blocking=False):
            raise IndexUnavailableError(f"A write session is already open for {self.index_dir}")

    def release_writer(self) -> None:
        self._writer_lock.release()

    @contextmanager
    def _write_transaction(self) -> Iterator[sqlite3.Connection]:
        conn = None
        try:
            conn = self._connect(write=True)
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        except sqlite3.OperationalError as exc:
            raise IndexUnavailableError(f"Index at {self.index_dir} is unavailable for writing: {exc}") from exc
        except sqlite3.DatabaseError as exc:
            raise StoreCorruptionError(f"Index database {self.db_path} failed during write: {exc}") from exc
        finally:
            if conn is not None:
                conn.close()

    def apply_changes(self, pending: Mapping[str, PreparedDocument | None]) -> int:
        """Atomically apply buffered upserts (documents) and deletes (None).

        Returns the new generation number.
        """
        with self._write_transaction() as conn:
            replaced = inserted = 0
            for doc_id, prepared in pending.items():
                replaced += self._tombstone(conn, doc_id)
                if prepared is not None:
                    self._insert(conn, prepared)
                    inserted += 1
            generation = self._bump_generation(conn)
        logger.debug(
            "Committed generation %d: %d inserted, %d tombstoned",
            generation,
            inserted,
            replaced,
        )
        return generation

    def clear(self) -> int:
        """Delete every document and statistic in one transaction."""
        with self._write_transaction() as conn:
            for table in _DATA_TABLES:
                conn.execute(f"DELETE FROM {table}")
            conn.execute("DELETE FROM sqlite_sequence WHERE name = 'documents'")
            generation = self._bump_generation(conn)
        logger.info("Cleared index at %s", self.index_dir)
        return generation

    def purge_deleted(self) -> int:
        """Physically remove tombstoned documents; return how many were purged."""
        with self._write_transaction() as conn:
            purged = conn.execute("SELECT COUNT(*) FROM documents WHERE deleted = 1").fetchone()[0]
            if not purged:
                return 0
            for table in _ORDINAL_TABLES:
                conn.execute(f"DELETE FROM {table} WHERE ordinal IN (SELECT ordinal FROM documents WHERE deleted = 1)")
            conn.execute("DELETE FROM documents WHERE deleted = 1")
            self._bump_generation(conn)
        logger.info("Purged %d deleted documents from %s", purged, self.index_dir)
        return int(purged)

    def vacuum(self) -> None:
        """Rebuild the database file to reclaim space left by purges."""
        conn = None
        try:
            conn = self._connect(write=True)
            conn.execute("VACUUM")
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        except sqlite3.OperationalError as exc:
            raise IndexUnavailableError(f"Cannot vacuum index at {self.index_dir}: {exc}") from exc
        finally:
            if conn is not None:
                conn.close()

    def _tombstone(self, conn: sqlite3.Connection, doc_id: str) -> int:
        ordinals = [
            row[0] for row in conn.execute("SELECT ordinal FROM documents WHERE doc_id = ? AND deleted = 0", (doc_id,))
        ]
        for ordinal in ordinals:
            conn.execute("UPDATE documents SET deleted = 1 WHERE ordinal = ?", (ordinal,))
            lengths = conn.execute("SELECT field, length FROM field_lengths WHERE ordinal = ?", (ordinal,)).fetchall()
            conn.executemany(
                "UPDATE field_stats SET document_count = document_count - 1, total_terms = total_terms - ? "
                "WHERE field = ?",
                [(length, field_name) for field_name, length in lengths],
            )
        return len(ordinals)

    def _insert(self, conn: sqlite3.Connection, prepared: PreparedDocument) -> int:
        cursor = conn.execute(
            "INSERT INTO documents (doc_id, deleted, stored) VALUES (?, 0, ?)",
            (prepared.doc_id, orjson.dumps(prepared.stored)),
        )
        ordinal = int(cursor.lastrowid)
        conn.executemany(
            "INSERT INTO postings (field, term, ordinal, tf, positions_blob) VALUES (?, ?, ?, ?, ?)",
            [(field_name, term, ordinal, tf, blob) for field_name, term, tf, blob in prepared.posting_rows()],
        )
        lengths = [(field_name, length) for field_name, length in prepared.lengths.items() if length > 0]
        conn.executemany(
            "INSERT INTO field_lengths (ordinal, field, length) VALUES (?, ?, ?)",
            [(ordinal, field_name, length) for field_name, length in lengths],
        )
        conn.executemany(
            "INSERT INTO field_stats (field, document_count, total_terms) VALUES (?, 1, ?) "
            "ON CONFLICT(field) DO UPDATE SET document_count = document_count + 1, "
            "total_terms = total_terms + excluded.total_terms",
            lengths,
        )
        conn.executemany(
            "INSERT OR IGNORE INTO numeric_points (field, value, ordinal) VALUES (?, ?, ?)",
            [(field_name, value, ordinal) for field_name, value in prepared.numerics.items()],
        )
        return ordinal

    def _bump_generation(self, conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT value FROM metadata WHERE key = 'generation'").fetchone()
        generation = int(row[0]) + 1 if row and str(row[0]).isdigit() else 1
        conn.execute("UPDATE metadata SET value = ? WHERE key = 'generation'", (str(generation),))
        return generation

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def snapshot(self) -> IndexSnapshot:
        """Open a point-in-time view of the committed index."""
        return IndexSnapshot(self)

    def current_generation(self) -> int:
        with self.snapshot() as snap:
            return snap.generation


class IndexSnapshot:
    """Read-only, point-in-time view of an ``IndexStore``.

    The snapshot holds an open read transaction on its own connection. In WAL
    mode that pins the database state as of the first read, so commits made
    while the snapshot is open stay invisible to it.
    """

    def __init__(self, store: IndexStore) -> None:
        self.store = store
        self.schema = store.schema
        self.tokenizer = store.tokenizer
        self._field_stats: dict[str, FieldLengthStats] = {}
        self._conn: sqlite3.Connection | None = None
        try:
            self._conn = store._connect(write=False)
            self._conn.execute("BEGIN")
            row = self._conn.execute("SELECT value FROM metadata WHERE key = 'generation'").fetchone()
        except sqlite3.OperationalError as exc:
            self.close()
            raise IndexUnavailableError(f"Cannot open snapshot of {store.index_dir}: {exc}") from exc
        except sqlite3.DatabaseError as exc:
            self.close()
            raise StoreCorruptionError(f"Index database {store.db_path} failed to open: {exc}") from exc
        if row is None or not str(row[0]).isdigit():
            self.close()
            raise StoreCorruptionError(f"Index generation at {store.db_path} is missing or invalid")
        self.generation = int(row[0])

    def __enter__(self) -> IndexSnapshot:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
        finally:
            self._conn.close()
            self._conn = None

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        if self._conn is None:
            raise IndexUnavailableError("Snapshot is closed")
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.OperationalError as exc:
            raise IndexUnavailableError(f"Snapshot read failed: {exc}") from exc
        except sqlite3.DatabaseError as exc:
            raise StoreCorruptionError(f"Snapshot read failed: {exc}") from exc

    # -- statistics ------------------------------------------------------

    def live_count(self) -> int:
        return int(self._execute("SELECT COUNT(*) FROM documents WHERE deleted = 0").fetchone()[0])

    def deleted_count(self) -> int:
        return int(self._execute("SELECT COUNT(*) FROM documents WHERE deleted = 1").fetchone()[0])

    def max_document(self) -> int:
        """Document slots in use: live rows plus tombstones not yet purged."""
        return int(self._execute("SELECT COUNT(*) FROM documents").fetchone()[0])

    def field_stats(self, field_name: str) -> FieldLengthStats:
        cached = self._field_stats.get(field_name)
        if cached is not None:
            return cached
        row = self._execute(
            "SELECT document_count, total_terms FROM field_stats WHERE field = ?", (field_name,)
        ).fetchone()
        doc_count, total_terms = row if row else (0, 0)
        stats = FieldLengthStats(field=field_name, total_terms=int(total_terms), document_count=int(doc_count))
        self._field_stats[field_name] = stats
        return stats

    def doc_frequency(self, field_name: str, term: str) -> int:
        row = self._execute(
            "SELECT COUNT(*) FROM postings AS p JOIN documents AS d ON d.ordinal = p.ordinal "
            "WHERE p.field = ? AND p.term = ? AND d.deleted = 0",
            (field_name, term),
        ).fetchone()
        return int(row[0])

    # -- postings --------------------------------------------------------

    def iter_term_postings(self, field_name: str, term: str) -> Iterator[tuple[int, int, int]]:
        """Yield ``(ordinal, tf, field_length)`` for live documents containing ``term``."""
        cursor = self._execute(
            "SELECT p.ordinal, p.tf, COALESCE(l.length, 0) FROM postings AS p "
            "JOIN documents AS d ON d.ordinal = p.ordinal "
            "LEFT JOIN field_lengths AS l ON l.ordinal = p.ordinal AND l.field = p.field "
            "WHERE p.field = ? AND p.term = ? AND d.deleted = 0",
            (field_name, term),
        )
        for ordinal, tf, length in cursor:
            yield int(ordinal), int(tf), int(length)

    def iter_term_positions(self, field_name: str, term: str) -> Iterator[Posting]:
        cursor = self._execute(
            "SELECT p.ordinal, p.tf, p.positions_blob FROM postings AS p "
            "JOIN documents AS d ON d.ordinal = p.ordinal "
            "WHERE p.field = ? AND p.term = ? AND d.deleted = 0",
            (field_name, term),
        )
        for ordinal, tf, blob in cursor:
            yield Posting.from_blob(int(ordinal), int(tf), blob)

    def field_length(self, field_name: str, ordinal: int) -> int:
        row = self._execute(
            "SELECT length FROM field_lengths WHERE ordinal = ? AND field = ?", (ordinal, field_name)
        ).fetchone()
        return int(row[0]) if row else 0

    def iter_wildcard_matches(self, field_name: str, glob_pattern: str) -> Iterator[int]:
        """Yield live ordinals having any term in ``field_name`` matching a GLOB pattern."""
        cursor = self._execute(
            "SELECT DISTINCT p.ordinal FROM postings AS p JOIN documents AS d ON d.ordinal = p.ordinal "
            "WHERE p.field = ? AND p.term GLOB ? AND d.deleted = 0",
            (field_name, glob_pattern),
        )
        for (ordinal,) in cursor:
            yield int(ordinal)

    def iter_numeric_range(
        self,
        field_name: str,
        lower: int | None,
        upper: int | None,
        *,
        include_lower: bool = True,
        include_upper: bool = True,
    ) -> Iterator[int]:
        clauses = ["n.field = ?", "d.deleted = 0"]
        params: list[Any] = [field_name]
        if lower is not None:
            clauses.append("n.value >= ?" if include_lower else "n.value > ?")
            params.append(lower)
        if upper is not None:
            clauses.append("n.value <= ?" if include_upper else "n.value < ?")
            params.append(upper)
        cursor = self._execute(
            "SELECT DISTINCT n.ordinal FROM numeric_points AS n JOIN documents AS d ON d.ordinal = n.ordinal "
            f"WHERE {' AND '.join(clauses)}",
            params,
        )
        for (ordinal,) in cursor:
            yield int(ordinal)

    # -- stored fields ---------------------------------------------------

    def stored_fields(self, ordinals: Iterable[int]) -> dict[int, dict[str, Any]]:
        """Load stored fields for the given ordinals (live or not)."""
        wanted = list(dict.fromkeys(ordinals))
        loaded: dict[int, dict[str, Any]] = {}
        for chunk in _chunked(wanted):
            placeholders = ", ".join("?" for _ in chunk)
            cursor = self._execute(f"SELECT ordinal, stored FROM documents WHERE ordinal IN ({placeholders})", chunk)
            for ordinal, blob in cursor:
                loaded[int(ordinal)] = decode_stored(blob)
        return loaded

    def iter_documents(self, limit: int | None = None) -> Iterator[tuple[int, dict[str, Any]]]:
        """Yield ``(ordinal, stored_fields)`` for live documents in ordinal order."""
        sql = "SELECT ordinal, stored FROM documents WHERE deleted = 0 ORDER BY ordinal"
        params: tuple[Any, ...] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        for ordinal, blob in self._execute(sql, params):
            yield int(ordinal), decode_stored(blob)
