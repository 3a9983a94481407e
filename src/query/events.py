"""
Event-volume analysis -- top events by count for the last N days.

The summary is cached alongside field metadata under the kind
``events_<days>`` with a short TTL.
"""
from __future__ import annotations

import datetime

from pydantic import BaseModel, Field

from src.query.expression import DateRange, MetricOrderBy, NamedField, OrderBy, ReportRequest, ReportResponse

MIN_DAYS = 1
MAX_DAYS = 365
TOP_EVENTS = 100


class EventSummary(BaseModel):
    event_name: str
    event_count: int = 0
    active_users: int = 0
    events_per_user: float = 0.0


class EventAnalysis(BaseModel):
    subject_id: str
    days: int
    date_range: str
    total_events: int = 0
    total_event_count: int = 0
    total_active_users: int = 0
    analyzed_at: datetime.datetime
    events: list[EventSummary] = Field(default_factory=list)


def cache_kind(days: int) -> str:
    return f"events_{days}"


def days_error(days: int) -> str | None:
    if not MIN_DAYS <= days <= MAX_DAYS:
        return f"days must be between {MIN_DAYS} and {MAX_DAYS} (got {days})."
    return None


def event_request(subject_id: str, days: int) -> ReportRequest:
    """eventName x (eventCount, activeUsers), busiest first."""
    return ReportRequest(
        subject_id=subject_id,
        dimensions=[NamedField(name="eventName")],
        metrics=[NamedField(name="eventCount"), NamedField(name="activeUsers")],
        date_ranges=[DateRange(start_date=f"{days}daysAgo", end_date="yesterday")],
        order_bys=[OrderBy(desc=True, metric=MetricOrderBy(metric_name="eventCount"))],
        limit=TOP_EVENTS,
    )


def _as_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def summarise_events(
    subject_id: str,
    days: int,
    response: ReportResponse,
    analyzed_at: datetime.datetime,
) -> EventAnalysis:
    """Fold report rows into per-event summaries; short rows are skipped."""
    events: list[EventSummary] = []
    for row in response.rows:
        if not row.dimension_values or len(row.metric_values) < 2:
            continue
        count = _as_int(row.metric_values[0].value)
        users = _as_int(row.metric_values[1].value)
        events.append(EventSummary(
            event_name=row.dimension_values[0].value,
            event_count=count,
            active_users=users,
            events_per_user=round(count / users, 4) if users else 0.0,
        ))

    return EventAnalysis(
        subject_id=subject_id,
        days=days,
        date_range=f"{days} days",
        total_events=len(events),
        total_event_count=sum(e.event_count for e in events),
        total_active_users=sum(e.active_users for e in events),
        analyzed_at=analyzed_at,
        events=events,
    )
