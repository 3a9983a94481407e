"""
Error taxonomy for the report cache.

  ValidationError   -- malformed / out-of-range spec, raised before any
                       cache or remote interaction
  TranslationError  -- filter spec that cannot be turned into an expression
  CacheError        -- store I/O or serialisation failure; callers degrade
                       it to a cache miss
  RemoteError       -- reporting gateway failure (status + message)
  NotFoundError     -- gateway reported the subject / resource as missing
  RequestCancelled  -- caller cancelled before the fetch completed
"""
from __future__ import annotations

from typing import Any


class ReportCacheError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(ReportCacheError):
    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid query spec")


class TranslationError(ReportCacheError):
    pass


class CacheError(ReportCacheError):
    pass


class RemoteError(ReportCacheError):
    """Gateway failure.

    ``result`` is filled in by the executor with the error-annotated
    QueryResult so callers can record the failed attempt.
    """

    def __init__(self, message: str, status: int | None = None, result: Any = None):
        self.message = message
        self.status = status
        self.result = result
        super().__init__(f"[{status}] {message}" if status is not None else message)


class NotFoundError(RemoteError):
    pass


class RequestCancelled(ReportCacheError):
    pass
