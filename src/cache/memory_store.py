"""
In-memory cache store.

Process-local, lock-guarded dicts with the same TTL semantics as the SQL
store.  Used in tests and when no on-disk cache is wanted.  Payloads are
kept as JSON text so a hit always hands back an independent copy.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any

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


# ── Cache entries ───────────────────────────────────────


@dataclass
class CacheEntry:
    """A single cached payload."""
    data: str
    created_at: float
    expires_at: float | None
    last_accessed: float


@dataclass
class QueryEntry(CacheEntry):
    query_id: str = ""
    subject_id: str = ""
    query_hash: str = ""
    request: str = ""
    row_count: int = 0


@dataclass
class _Reference:
    name: str
    subject_id: str
    query_id: str
    description: str
    created_at: float
    last_accessed: float


# ── Store implementation ────────────────────────────────


class MemoryCacheStore:
    """Thread-safe in-memory store.

    Parameters
    ----------
    context : CacheContext | None
        Only its name is used (for stats); nothing touches disk.
    clock : callable
        Returns current epoch seconds; injectable for tests.
    """

    def __init__(self, context: CacheContext | None = None, *, clock: Clock = time.time):
        self.context_id = context.name if context else "memory"
        self._log_extra = {"cache_context": self.context_id}
        self._clock = clock
        self._lock = threading.Lock()
        self._metadata: dict[tuple[str, str], CacheEntry] = {}
        self._queries: dict[str, QueryEntry] = {}
        self._references: dict[str, _Reference] = {}
        self._hits = 0
        self._misses = 0
        self._last_sweep: float | None = None
        self._created_at = clock()
        self._updated_at = self._created_at

    # ── Metadata ────────────────────────────────────────

    def get_cached_metadata(self, subject_id: str, kind: str) -> tuple[Any, bool]:
        key = (subject_id, kind)
        with self._lock:
            entry = self._lookup(self._metadata, key)
            if entry is None:
                return None, False
            data = entry.data
        return decode_payload(data), True

    def cache_metadata(self, subject_id: str, kind: str, payload: Any, ttl_hours: float) -> None:
        if ttl_hours is None:
            raise CacheError("Metadata entries always need a TTL")
        data = encode_payload(payload)
        now = self._clock()
        with self._lock:
            self._metadata[(subject_id, kind)] = CacheEntry(
                data=data, created_at=now, expires_at=expiry_from(now, ttl_hours), last_accessed=now,
            )
        logger.debug("Metadata PUT subject=%s kind=%s", subject_id, kind, extra=self._log_extra)

    def delete_metadata(self, subject_id: str, kind: str) -> bool:
        with self._lock:
            return self._metadata.pop((subject_id, kind), None) is not None

    # ── Query results ───────────────────────────────────

    def get_cached_query(self, query_hash: str) -> tuple[Any, bool]:
        with self._lock:
            entry = self._lookup(self._queries, query_hash)
            if entry is None:
                return None, False
            data = entry.data
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
        data = encode_payload(payload)
        req = encode_payload(request)
        now = self._clock()
        with self._lock:
            previous = self._queries.get(query_hash)
            self._queries[query_hash] = QueryEntry(
                data=data,
                created_at=now,
                expires_at=expiry_from(now, ttl_hours),
                last_accessed=now,
                query_id=query_id,
                subject_id=subject_id,
                query_hash=query_hash,
                request=req,
                row_count=row_count,
            )
            if previous is not None and previous.query_id != query_id:
                self._repoint_references(previous.query_id, query_id)
        logger.debug("Query PUT hash=%s ttl_hours=%s", query_hash[:16], ttl_hours, extra=self._log_extra)

    def delete_query(self, query_hash: str) -> bool:
        with self._lock:
            return self._queries.pop(query_hash, None) is not None

    # ── Named references ────────────────────────────────

    def create_named_reference(
        self, name: str, subject_id: str, query_id: str, description: str = "",
    ) -> None:
        now = self._clock()
        with self._lock:
            if self._query_by_id(query_id) is None:
                raise CacheError(f"No cached query result with id '{query_id}'")
            self._references[name] = _Reference(
                name=name, subject_id=subject_id, query_id=query_id,
                description=description, created_at=now, last_accessed=now,
            )

    def get_named_reference(self, name: str) -> tuple[Any, bool]:
        now = self._clock()
        with self._lock:
            ref = self._references.get(name)
            if ref is None:
                return None, False
            entry = self._query_by_id(ref.query_id)
            if entry is None or is_expired(entry.expires_at, now):
                return None, False
            ref.last_accessed = now
            entry.last_accessed = now
            data = entry.data
        return decode_payload(data), True

    def list_named_references(self, subject_id: str | None = None) -> list[NamedReference]:
        with self._lock:
            refs = []
            for ref in self._references.values():
                if subject_id is not None and ref.subject_id != subject_id:
                    continue
                entry = self._query_by_id(ref.query_id)
                if entry is None:
                    continue
                refs.append(NamedReference(
                    name=ref.name,
                    subject_id=ref.subject_id,
                    query_id=ref.query_id,
                    description=ref.description,
                    created_at=ref.created_at,
                    last_accessed_at=ref.last_accessed,
                    row_count=entry.row_count,
                    query_created_at=entry.created_at,
                ))
        return sorted(refs, key=lambda r: r.created_at or 0.0, reverse=True)

    def delete_named_reference(self, name: str) -> bool:
        with self._lock:
            return self._references.pop(name, None) is not None

    # ── Maintenance ─────────────────────────────────────

    def sweep_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        now = self._clock()
        with self._lock:
            expired_meta = [k for k, v in self._metadata.items() if is_expired(v.expires_at, now)]
            for k in expired_meta:
                del self._metadata[k]
            expired_queries = [k for k, v in self._queries.items() if is_expired(v.expires_at, now)]
            for k in expired_queries:
                del self._queries[k]
            live_ids = {q.query_id for q in self._queries.values()}
            for name in [n for n, r in self._references.items() if r.query_id not in live_ids]:
                del self._references[name]
            self._last_sweep = now
            self._updated_at = now
            removed = len(expired_meta) + len(expired_queries)
        logger.info("Sweep removed %d expired entries", removed, extra=self._log_extra)
        return removed

    def clear(self) -> int:
        with self._lock:
            count = len(self._metadata) + len(self._queries)
            self._metadata.clear()
            self._queries.clear()
            self._references.clear()
            return count

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                context_id=self.context_id,
                hits=self._hits,
                misses=self._misses,
                entry_count=len(self._metadata) + len(self._queries),
                last_sweep_at=self._last_sweep,
                created_at=self._created_at,
                updated_at=self._updated_at,
            )

    def close(self) -> None:
        pass

    # ── Internals (caller holds the lock) ───────────────

    def _lookup(self, table: dict, key: Any) -> CacheEntry | None:
        now = self._clock()
        entry = table.get(key)
        if entry is None:
            self._misses += 1
            self._updated_at = now
            return None
        if is_expired(entry.expires_at, now):
            del table[key]
            self._misses += 1
            self._updated_at = now
            return None
        entry.last_accessed = now
        self._hits += 1
        self._updated_at = now
        return entry

    def _query_by_id(self, query_id: str) -> QueryEntry | None:
        for entry in self._queries.values():
            if entry.query_id == query_id:
                return entry
        return None

    def _repoint_references(self, old_id: str, new_id: str) -> None:
        for ref in self._references.values():
            if ref.query_id == old_id:
                ref.query_id = new_id
