"""
QuerySpec -- the flat, user-authored description of a report request.

A QuerySpec is frozen once built; validation and template overrides produce
new copies via ``model_copy(update=...)`` rather than mutating in place.
"""
from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict, Field

FILTER_KINDS = ("string", "numeric", "between", "in_list")


class FilterSpec(BaseModel):
    """One flat filter. Only the payload fields matching ``kind`` are read."""

    model_config = ConfigDict(frozen=True)

    field_name: str = Field(..., description="Dimension or metric the filter applies to")
    kind: str = Field("string", description="string | numeric | between | in_list")

    # string
    match_type: str | None = Field(None, description="EXACT, CONTAINS, STARTS_WITH, ...")
    value: str = ""
    case_sensitive: bool = False

    # numeric
    operation: str | None = Field(None, description="EQUAL, GREATER_THAN, ...")
    numeric_value: float | None = None

    # between
    from_value: float | None = None
    to_value: float | None = None

    # in_list (shares case_sensitive with string)
    values: list[str] = Field(default_factory=list)


class OrderBySpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_name: str
    field_kind: str | None = Field(None, description="dimension | metric; inferred when None")
    descending: bool = False
    order_type: str | None = Field(
        None, description="ALPHANUMERIC | CASE_INSENSITIVE_ALPHANUMERIC | NUMERIC (dimensions only)"
    )


class QuerySpec(BaseModel):
    """Parsed representation of a report request."""

    model_config = ConfigDict(frozen=True)

    subject_id: str = Field(..., description="Property / subject the report runs against")
    dimensions: list[str] = Field(default_factory=list, description="Ordered result columns")
    metrics: list[str] = Field(default_factory=list, description="Ordered result columns")
    start_date: str = Field("", description="YYYY-MM-DD or relative token, e.g. '30daysAgo'")
    end_date: str = Field("", description="YYYY-MM-DD or relative token, e.g. 'yesterday'")
    limit: int = Field(0, description="Row limit; <= 0 means use the default")
    offset: int = 0
    filters: list[FilterSpec] = Field(default_factory=list)
    order_by: list[OrderBySpec] = Field(default_factory=list)

    keep_empty_rows: bool = False
    metric_aggregations: list[str] = Field(default_factory=list)
    currency_code: str = ""
    return_property_quota: bool = False

    # Display metadata -- never part of the cache key
    name: str = ""
    description: str = ""
    created_by: str = ""
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


class TemplateOverrides(BaseModel):
    """The closed set of fields a template run may override."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start_date: str | None = None
    end_date: str | None = None
    limit: int | None = None
    offset: int | None = None

    def apply(self, spec: QuerySpec) -> QuerySpec:
        update = self.model_dump(exclude_none=True)
        return spec.model_copy(update=update) if update else spec


class QueryTemplate(BaseModel):
    """A saved query plus usage bookkeeping."""

    name: str
    description: str = ""
    category: str = ""
    query: QuerySpec
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None
    usage_count: int = 0
    last_used: datetime.datetime | None = None
