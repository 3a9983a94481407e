"""
Filter compiler -- flat FilterSpec list -> FilterExpression tree.

Rules:
  - no filters        -> None (no filter applied)
  - one filter        -> a single leaf
  - several filters   -> one AND group, children in input order

OR / NOT nodes exist in the tree model but are never produced here.
Pure transformation: no state, no I/O.
"""
from __future__ import annotations

import decimal
import math
from typing import Callable, Sequence

from src.core.errors import TranslationError
from src.query.expression import (
    BetweenFilter,
    Filter,
    FilterExpression,
    InListFilter,
    NumericFilter,
    NumericValue,
    StringFilter,
)
from src.query.spec import FilterSpec

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


# ── Numeric encoding ────────────────────────────────────


def is_integral(value: float) -> bool:
    """True when *value* equals its integer truncation and fits an int64 token.

    Float inputs above 2**53 have already lost precision before this check;
    they are encoded as whatever integer the float holds.
    """
    if not math.isfinite(value):
        return False
    return value == math.trunc(value) and _INT64_MIN <= value <= _INT64_MAX


def format_decimal(value: float) -> str:
    """Shortest round-trip decimal in plain notation, e.g. 5.5 -> '5.5', 1e-07 -> '0.0000001'."""
    return format(decimal.Decimal(repr(float(value))), "f")


def encode_numeric(value: float | int) -> NumericValue:
    if isinstance(value, bool):
        raise TranslationError(f"Boolean is not a numeric filter value: {value!r}")
    if isinstance(value, int):
        return NumericValue(int64_value=str(value))
    if not math.isfinite(value):
        raise TranslationError(f"Numeric filter value must be finite, got {value!r}")
    if is_integral(value):
        return NumericValue(int64_value=str(int(value)))
    return NumericValue(double_value=format_decimal(value))


# ── Per-kind translation ────────────────────────────────


def _string_leaf(spec: FilterSpec) -> Filter:
    return Filter(
        field_name=spec.field_name,
        string_filter=StringFilter(
            match_type=spec.match_type or "EXACT",
            value=spec.value,
            case_sensitive=spec.case_sensitive,
        ),
    )


def _numeric_leaf(spec: FilterSpec) -> Filter:
    if spec.numeric_value is None:
        raise TranslationError(f"Numeric filter on '{spec.field_name}' has no value")
    if not spec.operation:
        raise TranslationError(f"Numeric filter on '{spec.field_name}' has no operation")
    return Filter(
        field_name=spec.field_name,
        numeric_filter=NumericFilter(
            operation=spec.operation,
            value=encode_numeric(spec.numeric_value),
        ),
    )


def _between_leaf(spec: FilterSpec) -> Filter:
    if spec.from_value is None or spec.to_value is None:
        raise TranslationError(f"Between filter on '{spec.field_name}' needs both bounds")
    return Filter(
        field_name=spec.field_name,
        between_filter=BetweenFilter(
            from_value=encode_numeric(spec.from_value),
            to_value=encode_numeric(spec.to_value),
        ),
    )


def _in_list_leaf(spec: FilterSpec) -> Filter:
    return Filter(
        field_name=spec.field_name,
        in_list_filter=InListFilter(
            values=list(spec.values),
            case_sensitive=spec.case_sensitive,
        ),
    )


_TRANSLATORS: dict[str, Callable[[FilterSpec], Filter]] = {
    "string": _string_leaf,
    "numeric": _numeric_leaf,
    "between": _between_leaf,
    "in_list": _in_list_leaf,
}


def compile_filter(spec: FilterSpec) -> FilterExpression:
    """Translate one FilterSpec into a leaf expression."""
    kind = spec.kind or "string"
    translate = _TRANSLATORS.get(kind)
    if translate is None:
        raise TranslationError(
            f"Unsupported filter type '{kind}' on field '{spec.field_name}'. "
            f"Supported: {', '.join(_TRANSLATORS)}"
        )
    return FilterExpression.leaf(translate(spec))


def compile_filters(filters: Sequence[FilterSpec]) -> FilterExpression | None:
    """Compile a flat filter list; multiple filters are always AND-combined."""
    if not filters:
        return None
    leaves = [compile_filter(f) for f in filters]
    if len(leaves) == 1:
        return leaves[0]
    return FilterExpression.all_of(leaves)
