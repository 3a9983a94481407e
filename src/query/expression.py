"""
Wire models for the reporting protocol.

The filter-expression tree is a tagged node: a ``FilterExpression`` holds
exactly one of a leaf ``filter``, an ``and_group`` / ``or_group`` (ordered
children) or a ``not_expression`` (single child).  Every model serialises
to the protocol's camelCase JSON through ``to_wire()``.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _exactly_one(model: BaseModel, fields: tuple[str, ...]) -> None:
    present = [f for f in fields if getattr(model, f) is not None]
    if len(present) != 1:
        raise ValueError(
            f"{type(model).__name__} needs exactly one of {', '.join(fields)}; got {present or 'none'}"
        )


# ── Leaf payloads ───────────────────────────────────────


class NumericValue(WireModel):
    int64_value: str | None = None
    double_value: str | None = None

    @model_validator(mode="after")
    def _one_token(self) -> "NumericValue":
        _exactly_one(self, ("int64_value", "double_value"))
        return self


class StringFilter(WireModel):
    match_type: str = "EXACT"
    value: str
    case_sensitive: bool = False


class NumericFilter(WireModel):
    operation: str
    value: NumericValue


class BetweenFilter(WireModel):
    from_value: NumericValue
    to_value: NumericValue


class InListFilter(WireModel):
    values: list[str]
    case_sensitive: bool = False


class Filter(WireModel):
    field_name: str
    string_filter: StringFilter | None = None
    numeric_filter: NumericFilter | None = None
    between_filter: BetweenFilter | None = None
    in_list_filter: InListFilter | None = None

    @model_validator(mode="after")
    def _one_payload(self) -> "Filter":
        _exactly_one(self, ("string_filter", "numeric_filter", "between_filter", "in_list_filter"))
        return self


# ── Tree nodes ──────────────────────────────────────────


class FilterExpressionList(WireModel):
    expressions: list["FilterExpression"] = Field(default_factory=list)


class FilterExpression(WireModel):
    and_group: FilterExpressionList | None = None
    or_group: FilterExpressionList | None = None
    not_expression: "FilterExpression | None" = None
    filter: Filter | None = None

    @model_validator(mode="after")
    def _one_node(self) -> "FilterExpression":
        _exactly_one(self, ("and_group", "or_group", "not_expression", "filter"))
        return self

    @classmethod
    def leaf(cls, f: Filter) -> "FilterExpression":
        return cls(filter=f)

    @classmethod
    def all_of(cls, children: list["FilterExpression"]) -> "FilterExpression":
        return cls(and_group=FilterExpressionList(expressions=children))

    @classmethod
    def any_of(cls, children: list["FilterExpression"]) -> "FilterExpression":
        return cls(or_group=FilterExpressionList(expressions=children))

    @classmethod
    def negate(cls, child: "FilterExpression") -> "FilterExpression":
        return cls(not_expression=child)


FilterExpressionList.model_rebuild()
FilterExpression.model_rebuild()


# ── Request ─────────────────────────────────────────────


class NamedField(WireModel):
    name: str


class DateRange(WireModel):
    start_date: str
    end_date: str
    name: str | None = None


class DimensionOrderBy(WireModel):
    dimension_name: str
    order_type: str | None = None


class MetricOrderBy(WireModel):
    metric_name: str


class OrderBy(WireModel):
    desc: bool = False
    dimension: DimensionOrderBy | None = None
    metric: MetricOrderBy | None = None


class ReportRequest(WireModel):
    """A fully assembled runReport request."""

    subject_id: str = Field(..., exclude=True)
    dimensions: list[NamedField] = Field(default_factory=list)
    metrics: list[NamedField] = Field(default_factory=list)
    date_ranges: list[DateRange] = Field(default_factory=list)
    dimension_filter: FilterExpression | None = None
    metric_filter: FilterExpression | None = None
    offset: int = 0
    limit: int = 0
    metric_aggregations: list[str] = Field(default_factory=list)
    order_bys: list[OrderBy] = Field(default_factory=list)
    currency_code: str | None = None
    keep_empty_rows: bool = False
    return_property_quota: bool = False


# ── Response ────────────────────────────────────────────


class CellValue(WireModel):
    value: str = ""


class Row(WireModel):
    dimension_values: list[CellValue] = Field(default_factory=list)
    metric_values: list[CellValue] = Field(default_factory=list)


class MetricHeader(WireModel):
    name: str
    type: str = ""


class ReportResponse(WireModel):
    dimension_headers: list[NamedField] = Field(default_factory=list)
    metric_headers: list[MetricHeader] = Field(default_factory=list)
    rows: list[Row] = Field(default_factory=list)
    totals: list[Row] = Field(default_factory=list)
    maximums: list[Row] = Field(default_factory=list)
    minimums: list[Row] = Field(default_factory=list)
    row_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)
    property_quota: dict[str, Any] | None = None
    kind: str = ""
