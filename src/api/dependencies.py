"""
Shared FastAPI dependencies.

The executor (and its cache store) is built once per process from Settings.
Tests swap it out with ``app.dependency_overrides[get_executor]``.
"""
from __future__ import annotations

from functools import lru_cache

from src.cache.base import CacheContext
from src.cache.sql_store import SQLCacheStore
from src.core.config import get_settings
from src.gateway.http import HttpReportingGateway
from src.query.executor import Executor


@lru_cache
def get_executor() -> Executor:
    settings = get_settings()
    store = SQLCacheStore(CacheContext.from_settings(settings))
    gateway = HttpReportingGateway(lambda: settings.gateway_access_token)
    return Executor(gateway, store, settings=settings)
