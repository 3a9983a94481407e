"""
SQL-backed cache store (one SQLite file per cache context).

Tables are created automatically on first use.  Every public method runs in
its own transaction; SQLAlchemy / sqlite failures surface as CacheError so
callers can degrade them to a cache miss.

Timestamps are stored as epoch seconds (REAL).
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from src.cache.base import (
    CacheContext,
    CacheStats,
    Clock,
    NamedReference,
    decode_payload,
    encode_payload,
    expiry_from,
    is_expired,
)
from src.core.errors import CacheError
from src.core.logging import get_logger

logger = get_logger(__name__)

_BUSY_TIMEOUT_SECONDS = 5

_CREATE_SQL = [
    """
    CREATE TABLE IF NOT EXISTS metadata_cache (
        subject_id      TEXT NOT NULL,
        cache_kind      TEXT NOT NULL,      -- 'metadata', 'events_30', ...
        data            TEXT NOT NULL,      -- JSON payload
        created_at      REAL NOT NULL,
        expires_at      REAL NOT NULL,
        last_accessed   REAL NOT NULL,
        PRIMARY KEY (subject_id, cache_kind)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS query_cache (
        query_id        TEXT PRIMARY KEY,
        subject_id      TEXT NOT NULL,
        query_hash      TEXT NOT NULL UNIQUE,
        query_params    TEXT NOT NULL,      -- JSON request
        result_data     TEXT NOT NULL,      -- JSON payload
        row_count       INTEGER NOT NULL,
        created_at      REAL NOT NULL,
        expires_at      REAL,               -- NULL = never expires
        last_accessed   REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS named_references (
        name            TEXT PRIMARY KEY,
        subject_id      TEXT NOT NULL,
        query_id        TEXT NOT NULL REFERENCES query_cache(query_id),
        description     TEXT,
        created_at      REAL NOT NULL,
        last_accessed   REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cache_stats (
        context_id      TEXT PRIMARY KEY,
        total_hits      INTEGER NOT NULL DEFAULT 0,
        total_misses    INTEGER NOT NULL DEFAULT 0,
        last_sweep      REAL,
        created_at      REAL NOT NULL,
        updated_at      REAL NOT NULL
    )
    """,
]


def make_engine(db_path: Path) -> Engine:
    """SQLite engine for *db_path*; parent directories are created."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"timeout": _BUSY_TIMEOUT_SECONDS, "check_same_thread": False},
        echo=False,
    )

    # Take the write lock at BEGIN so concurrent read-then-write transactions
    # queue on the busy timeout.
    @event.listens_for(engine, "connect")
    def _disable_implicit_begin(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


class SQLCacheStore:
    """Persistent store for one cache context.

    Parameters
    ----------
    context : CacheContext
        Selects the database file and the stats row.
    engine : Engine, optional
        Pre-built engine (tests); by default one is created for the context.
    clock : callable
        Returns current epoch seconds.
    """

    def __init__(self, context: CacheContext, *, engine: Engine | None = None, clock: Clock = time.time):
        self.context = context
        self._clock = clock
        self._log_extra = {"cache_context": context.name}
        try:
            self._engine = engine or make_engine(context.db_path)
        except (OSError, SQLAlchemyError) as exc:
            raise CacheError(f"Cannot open cache for context '{context.name}': {exc}") from exc
        self.ensure_tables()

    # ── Setup ───────────────────────────────────────────

    def ensure_tables(self) -> None:
        """Create the cache tables and the stats row if they don't exist."""
        now = self._clock()
        with self._transaction("ensure tables") as conn:
            for ddl in _CREATE_SQL:
                conn.execute(text(ddl))
            conn.execute(
                text("""
                    INSERT OR IGNORE INTO cache_stats (context_id, created_at, updated_at)
                    VALUES (:ctx, :now, :now)
                """),
                {"ctx": self.context.name, "now": now},
            )
        logger.info("Cache tables ensured", extra=self._log_extra)

    # ── Metadata ────────────────────────────────────────

    def get_cached_metadata(self, subject_id: str, kind: str) -> tuple[Any, bool]:
        now = self._clock()
        key = {"subject_id": subject_id, "kind": kind}
        with self._transaction("read metadata") as conn:
            row = conn.execute(
                text("""
                    SELECT data, expires_at FROM metadata_cache
                    WHERE subject_id = :subject_id AND cache_kind = :kind
                """),
                key,
            ).fetchone()

            if row is None:
                self._count(conn, "total_misses", now)
                return None, False

            if is_expired(row.expires_at, now):
                # only the row just read; a concurrent rewrite stays
                conn.execute(
                    text("""
                        DELETE FROM metadata_cache
                        WHERE subject_id = :subject_id AND cache_kind = :kind AND expires_at <= :now
                    """),
                    {**key, "now": now},
                )
                self._count(conn, "total_misses", now)
                return None, False

            conn.execute(
                text("""
                    UPDATE metadata_cache SET last_accessed = :now
                    WHERE subject_id = :subject_id AND cache_kind = :kind
                """),
                {**key, "now": now},
            )
            self._count(conn, "total_hits", now)
            data = row.data
        return decode_payload(data), True

    def cache_metadata(self, subject_id: str, kind: str, payload: Any, ttl_hours: float) -> None:
        if ttl_hours is None:
            raise CacheError("Metadata entries always need a TTL")
        data = encode_payload(payload)
        now = self._clock()
        with self._transaction("write metadata") as conn:
            conn.execute(
                text("""
                    INSERT OR REPLACE INTO metadata_cache
                        (subject_id, cache_kind, data, created_at, expires_at, last_accessed)
                    VALUES (:subject_id, :kind, :data, :now, :expires_at, :now)
                """),
                {
                    "subject_id": subject_id,
                    "kind": kind,
                    "data": data,
                    "now": now,
                    "expires_at": expiry_from(now, ttl_hours),
                },
            )
        logger.debug("Metadata PUT subject=%s kind=%s", subject_id, kind, extra=self._log_extra)

    def delete_metadata(self, subject_id: str, kind: str) -> bool:
        with self._transaction("delete metadata") as conn:
            result = conn.execute(
                text("DELETE FROM metadata_cache WHERE subject_id = :subject_id AND cache_kind = :kind"),
                {"subject_id": subject_id, "kind": kind},
            )
        return result.rowcount > 0

    # ── Query results ───────────────────────────────────

    def get_cached_query(self, query_hash: str) -> tuple[Any, bool]:
        now = self._clock()
        with self._transaction("read query") as conn:
            row = conn.execute(
                text("SELECT result_data, expires_at FROM query_cache WHERE query_hash = :h"),
                {"h": query_hash},
            ).fetchone()

            if row is None:
                self._count(conn, "total_misses", now)
                return None, False

            if is_expired(row.expires_at, now):
                conn.execute(
                    text("""
                        DELETE FROM query_cache
                        WHERE query_hash = :h AND expires_at IS NOT NULL AND expires_at <= :now
                    """),
                    {"h": query_hash, "now": now},
                )
                self._count(conn, "total_misses", now)
                return None, False

            conn.execute(
                text("UPDATE query_cache SET last_accessed = :now WHERE query_hash = :h"),
                {"h": query_hash, "now": now},
            )
            self._count(conn, "total_hits", now)
            data = row.result_data
        return decode_payload(data), True

    def cache_query(
        self,
        query_id: str,
        subject_id: str,
        query_hash: str,
        request: Any,
        payload: Any,
        row_count: int,
        ttl_hours: float | None = None,
    ) -> None:
        params_json = encode_payload(request)
        data = encode_payload(payload)
        now = self._clock()
        with self._transaction("write query") as conn:
            previous = conn.execute(
                text("SELECT query_id FROM query_cache WHERE query_hash = :h"),
                {"h": query_hash},
            ).scalar()

            # REPLACE drops any row clashing on query_id or query_hash
            conn.execute(
                text("""
                    INSERT OR REPLACE INTO query_cache
                        (query_id, subject_id, query_hash, query_params, result_data,
                         row_count, created_at, expires_at, last_accessed)
                    VALUES
                        (:query_id, :subject_id, :h, :params, :data,
                         :row_count, :now, :expires_at, :now)
                """),
                {
                    "query_id": query_id,
                    "subject_id": subject_id,
                    "h": query_hash,
                    "params": params_json,
                    "data": data,
                    "row_count": row_count,
                    "now": now,
                    "expires_at": expiry_from(now, ttl_hours),
                },
            )

            if previous is not None and previous != query_id:
                conn.execute(
                    text("UPDATE named_references SET query_id = :new WHERE query_id = :old"),
                    {"new": query_id, "old": previous},
                )
        logger.debug("Query PUT hash=%s ttl_hours=%s", query_hash[:16], ttl_hours, extra=self._log_extra)

    def delete_query(self, query_hash: str) -> bool:
        with self._transaction("delete query") as conn:
            result = conn.execute(text("DELETE FROM query_cache WHERE query_hash = :h"), {"h": query_hash})
        return result.rowcount > 0

    # ── Named references ────────────────────────────────

    def create_named_reference(
        self, name: str, subject_id: str, query_id: str, description: str = "",
    ) -> None:
        now = self._clock()
        with self._transaction("create named reference") as conn:
            exists = conn.execute(
                text("SELECT 1 FROM query_cache WHERE query_id = :id"), {"id": query_id},
            ).fetchone()
            if exists is None:
                raise CacheError(f"No cached query result with id '{query_id}'")
            conn.execute(
                text("""
                    INSERT OR REPLACE INTO named_references
                        (name, subject_id, query_id, description, created_at, last_accessed)
                    VALUES (:name, :subject_id, :query_id, :description, :now, :now)
                """),
                {
                    "name": name,
                    "subject_id": subject_id,
                    "query_id": query_id,
                    "description": description,
                    "now": now,
                },
            )

    def get_named_reference(self, name: str) -> tuple[Any, bool]:
        now = self._clock()
        with self._transaction("read named reference") as conn:
            row = conn.execute(
                text("""
                    SELECT qc.query_id, qc.result_data, qc.expires_at
                    FROM named_references nr
                    JOIN query_cache qc ON nr.query_id = qc.query_id
                    WHERE nr.name = :name
                """),
                {"name": name},
            ).fetchone()
            if row is None or is_expired(row.expires_at, now):
                return None, False
            conn.execute(
                text("UPDATE named_references SET last_accessed = :now WHERE name = :name"),
                {"name": name, "now": now},
            )
            conn.execute(
                text("UPDATE query_cache SET last_accessed = :now WHERE query_id = :id"),
                {"id": row.query_id, "now": now},
            )
            data = row.result_data
        return decode_payload(data), True

    def list_named_references(self, subject_id: str | None = None) -> list[NamedReference]:
        sql = """
            SELECT nr.name, nr.subject_id, nr.query_id, nr.description,
                   nr.created_at, nr.last_accessed,
                   qc.row_count, qc.created_at AS query_created
            FROM named_references nr
            JOIN query_cache qc ON nr.query_id = qc.query_id
        """
        params: dict[str, Any] = {}
        if subject_id is not None:
            sql += " WHERE nr.subject_id = :subject_id"
            params["subject_id"] = subject_id
        sql += " ORDER BY nr.created_at DESC"

        with self._transaction("list named references") as conn:
            rows = conn.execute(text(sql), params).fetchall()
        return [
            NamedReference(
                name=r.name,
                subject_id=r.subject_id,
                query_id=r.query_id,
                description=r.description or "",
                created_at=r.created_at,
                last_accessed_at=r.last_accessed,
                row_count=r.row_count,
                query_created_at=r.query_created,
            )
            for r in rows
        ]

    def delete_named_reference(self, name: str) -> bool:
        with self._transaction("delete named reference") as conn:
            result = conn.execute(text("DELETE FROM named_references WHERE name = :name"), {"name": name})
        return result.rowcount > 0

    # ── Maintenance ─────────────────────────────────────

    def sweep_expired(self) -> int:
        """Remove every expired entry from both tables. Returns count removed."""
        now = self._clock()
        with self._transaction("sweep") as conn:
            meta = conn.execute(
                text("DELETE FROM metadata_cache WHERE expires_at <= :now"), {"now": now},
            ).rowcount
            queries = conn.execute(
                text("DELETE FROM query_cache WHERE expires_at IS NOT NULL AND expires_at <= :now"),
                {"now": now},
            ).rowcount
            conn.execute(text("""
                DELETE FROM named_references
                WHERE query_id NOT IN (SELECT query_id FROM query_cache)
            """))
            conn.execute(
                text("UPDATE cache_stats SET last_sweep = :now, updated_at = :now WHERE context_id = :ctx"),
                {"now": now, "ctx": self.context.name},
            )
        removed = meta + queries
        logger.info("Sweep removed %d expired entries", removed, extra=self._log_extra)
        return removed

    def clear(self) -> int:
        with self._transaction("clear") as conn:
            conn.execute(text("DELETE FROM named_references"))
            meta = conn.execute(text("DELETE FROM metadata_cache")).rowcount
            queries = conn.execute(text("DELETE FROM query_cache")).rowcount
        return meta + queries

    def stats(self) -> CacheStats:
        with self._transaction("stats") as conn:
            row = conn.execute(
                text("""
                    SELECT total_hits, total_misses, last_sweep, created_at, updated_at
                    FROM cache_stats WHERE context_id = :ctx
                """),
                {"ctx": self.context.name},
            ).fetchone()
            meta_count = conn.execute(text("SELECT COUNT(*) FROM metadata_cache")).scalar() or 0
            query_count = conn.execute(text("SELECT COUNT(*) FROM query_cache")).scalar() or 0

        if row is None:
            return CacheStats(context_id=self.context.name, entry_count=meta_count + query_count)
        return CacheStats(
            context_id=self.context.name,
            hits=row.total_hits,
            misses=row.total_misses,
            entry_count=meta_count + query_count,
            last_sweep_at=row.last_sweep,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def close(self) -> None:
        self._engine.dispose()

    # ── Internals ───────────────────────────────────────

    @contextmanager
    def _transaction(self, op: str) -> Generator[Connection, None, None]:
        try:
            with self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            raise CacheError(f"Cache {op} failed (context={self.context.name}): {exc}") from exc

    def _count(self, conn: Connection, column: str, now: float) -> None:
        conn.execute(
            text(f"UPDATE cache_stats SET {column} = {column} + 1, updated_at = :now WHERE context_id = :ctx"),
            {"now": now, "ctx": self.context.name},
        )
