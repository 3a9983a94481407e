"""
Cache backing interface shared by every store implementation.

Two logical tables live behind the interface:
  metadata  -- keyed by (subject_id, kind), always carries an expiry
  queries   -- keyed by content hash, expiry optional (None = never expires)

Entry lifecycle:
  absent -> present (on write)
  present -> expired (wall clock passes expires_at; detected lazily)
  expired -> absent (on the read that notices it, or on sweep_expired())

Counters (hits / misses) are scoped to a CacheContext, which is passed in
explicitly -- there is no process-wide "active context".
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol, runtime_checkable

from src.core.config import Settings
from src.core.errors import CacheError

Clock = Callable[[], float]
SECONDS_PER_HOUR = 3600.0


@dataclass(frozen=True)
class CacheContext:
    """One isolated caching context (its own database file and counters)."""

    name: str
    cache_dir: Path

    @property
    def db_path(self) -> Path:
        return Path(self.cache_dir) / f"{self.name}.db"

    @classmethod
    def from_settings(cls, settings: Settings, name: str | None = None) -> "CacheContext":
        return cls(name=name or settings.cache_context, cache_dir=settings.cache_dir)


@dataclass
class CacheStats:
    context_id: str
    hits: int = 0
    misses: int = 0
    entry_count: int = 0
    last_sweep_at: float | None = None
    created_at: float | None = None
    updated_at: float | None = None

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total, 3) if total else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "context_id": self.context_id,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "entry_count": self.entry_count,
            "last_sweep_at": self.last_sweep_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class NamedReference:
    name: str
    subject_id: str
    query_id: str
    description: str = ""
    created_at: float | None = None
    last_accessed_at: float | None = None
    row_count: int = 0
    query_created_at: float | None = None


def expiry_from(now: float, ttl_hours: float | None) -> float | None:
    if ttl_hours is None:
        return None
    return now + ttl_hours * SECONDS_PER_HOUR


def is_expired(expires_at: float | None, now: float) -> bool:
    return expires_at is not None and now >= expires_at


def encode_payload(payload: Any) -> str:
    try:
        return json.dumps(payload, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise CacheError(f"Payload is not JSON-serialisable: {exc}") from exc


def decode_payload(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise CacheError(f"Stored payload is corrupted: {exc}") from exc


@runtime_checkable
class CacheBackend(Protocol):
    """Pluggable store contract; every method may raise CacheError."""

    def get_cached_metadata(self, subject_id: str, kind: str) -> tuple[Any, bool]: ...

    def cache_metadata(self, subject_id: str, kind: str, payload: Any, ttl_hours: float) -> None: ...

    def delete_metadata(self, subject_id: str, kind: str) -> bool: ...

    def get_cached_query(self, query_hash: str) -> tuple[Any, bool]: ...

    def cache_query(
        self,
        query_id: str,
        subject_id: str,
        query_hash: str,
        request: Any,
        payload: Any,
        row_count: int,
        ttl_hours: float | None = None,
    ) -> None: ...

    def delete_query(self, query_hash: str) -> bool: ...

    def create_named_reference(
        self, name: str, subject_id: str, query_id: str, description: str = "",
    ) -> None: ...

    def get_named_reference(self, name: str) -> tuple[Any, bool]: ...

    def list_named_references(self, subject_id: str | None = None) -> list[NamedReference]: ...

    def delete_named_reference(self, name: str) -> bool: ...

    def sweep_expired(self) -> int: ...

    def clear(self) -> int: ...

    def stats(self) -> CacheStats: ...

    def close(self) -> None: ...
