"""
Shared test doubles -- a controllable clock and an in-process reporting gateway.
"""
from __future__ import annotations

import pytest

from src.cache.memory_store import MemoryCacheStore
from src.core.config import Settings
from src.core.errors import RemoteError
from src.query.executor import Executor
from src.query.expression import CellValue, MetricHeader, NamedField, ReportRequest, ReportResponse, Row
from src.query.spec import QuerySpec


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, hours: float = 0.0, seconds: float = 0.0) -> None:
        self.now += hours * 3600 + seconds


def sample_response(rows: int = 2) -> ReportResponse:
    return ReportResponse(
        dimension_headers=[NamedField(name="country")],
        metric_headers=[MetricHeader(name="sessions", type="TYPE_INTEGER")],
        rows=[
            Row(
                dimension_values=[CellValue(value=f"country_{i}")],
                metric_values=[CellValue(value=str(100 + i))],
            )
            for i in range(rows)
        ],
        row_count=rows,
        metadata={"currencyCode": "USD"},
    )


SAMPLE_METADATA = {
    "name": "properties/123/metadata",
    "dimensions": [
        {"apiName": "country", "uiName": "Country", "category": "Geography"},
        {"apiName": "city", "uiName": "City", "category": "Geography"},
        {"apiName": "date", "uiName": "Date", "category": "Time"},
        {
            "apiName": "customEvent:plan",
            "uiName": "Plan",
            "customDefinition": True,
            "deprecatedApiNames": ["customEvent:tier"],
        },
    ],
    "metrics": [
        {"apiName": "sessions", "uiName": "Sessions", "type": "TYPE_INTEGER"},
        {"apiName": "activeUsers", "uiName": "Active users", "type": "TYPE_INTEGER"},
        {"apiName": "totalRevenue", "uiName": "Total revenue", "type": "TYPE_CURRENCY"},
    ],
}


class FakeGateway:
    """Records every call; returns canned payloads or raises ``error``."""

    def __init__(self, response: ReportResponse | None = None, metadata: dict | None = None):
        self.response = response or sample_response()
        self.metadata = metadata or SAMPLE_METADATA
        self.error: Exception | None = None
        self.requests: list[ReportRequest] = []
        self.metadata_calls: list[str] = []
        self.timeouts: list[float | None] = []

    def run_report(self, request: ReportRequest, *, timeout: float | None = None) -> ReportResponse:
        self.requests.append(request)
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        return self.response

    def get_metadata(self, subject_id: str, *, timeout: float | None = None) -> dict:
        self.metadata_calls.append(subject_id)
        if self.error is not None:
            raise self.error
        return self.metadata


def make_spec(**overrides) -> QuerySpec:
    base = {
        "subject_id": "123",
        "dimensions": ["country"],
        "metrics": ["sessions"],
        "start_date": "2024-01-01",
        "end_date": "2024-01-31",
    }
    base.update(overrides)
    return QuerySpec(**base)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(query_ttl_hours=4, metadata_ttl_hours=24, default_limit=10_000, max_limit=250_000)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def memory_store(clock) -> MemoryCacheStore:
    return MemoryCacheStore(clock=clock)


@pytest.fixture
def executor(gateway, memory_store, settings) -> Executor:
    return Executor(gateway, memory_store, settings=settings, strict=False)


@pytest.fixture
def remote_failure() -> RemoteError:
    return RemoteError("quota exhausted", status=429)
