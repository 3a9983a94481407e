"""
No-op cache store: every read misses, every write is dropped.

Lets the executor run with caching disabled without special-casing it.
"""
from __future__ import annotations

from typing import Any

from src.cache.base import CacheStats, NamedReference
from src.core.errors import CacheError


class NullCacheStore:
    def __init__(self) -> None:
        self._misses = 0

    def get_cached_metadata(self, subject_id: str, kind: str) -> tuple[Any, bool]:
        self._misses += 1
        return None, False

    def cache_metadata(self, subject_id: str, kind: str, payload: Any, ttl_hours: float) -> None:
        pass

    def delete_metadata(self, subject_id: str, kind: str) -> bool:
        return False

    def get_cached_query(self, query_hash: str) -> tuple[Any, bool]:
        self._misses += 1
        return None, False

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
        pass

    def delete_query(self, query_hash: str) -> bool:
        return False

    def create_named_reference(
        self, name: str, subject_id: str, query_id: str, description: str = "",
    ) -> None:
        raise CacheError("Caching is disabled; named references cannot be stored")

    def get_named_reference(self, name: str) -> tuple[Any, bool]:
        return None, False

    def list_named_references(self, subject_id: str | None = None) -> list[NamedReference]:
        return []

    def delete_named_reference(self, name: str) -> bool:
        return False

    def sweep_expired(self) -> int:
        return 0

    def clear(self) -> int:
        return 0

    def stats(self) -> CacheStats:
        return CacheStats(context_id="disabled", misses=self._misses)

    def close(self) -> None:
        pass
