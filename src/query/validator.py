"""
Validates and normalises a QuerySpec before it reaches the cache or gateway.

Checks performed:
  1. Subject id is present
  2. Start / end dates are ISO dates or relative tokens
  3. At least one dimension or metric is requested
  4. Limit / offset are in range (limit <= 0 falls back to the default)
  5. Every filter carries a valid payload for its kind
  6. Every order-by references a requested dimension / metric
  7. Dimensions and metrics exist in the field metadata, when supplied

When no metadata is supplied the existence checks are skipped unless
``strict=True``, in which case missing metadata is itself an error.
"""
from __future__ import annotations

import datetime
import math
import re

from src.core.errors import ValidationError
from src.query.metadata import FieldMetadata
from src.query.spec import FILTER_KINDS, FilterSpec, OrderBySpec, QuerySpec

DEFAULT_LIMIT = 10_000
MAX_LIMIT = 250_000

STRING_MATCH_TYPES = (
    "EXACT", "CONTAINS", "STARTS_WITH", "ENDS_WITH", "REGEX",
    "FULL_REGEXP", "PARTIAL_REGEXP",
)
NUMERIC_OPERATIONS = (
    "EQUAL", "LESS_THAN", "LESS_THAN_OR_EQUAL",
    "GREATER_THAN", "GREATER_THAN_OR_EQUAL",
)
DIMENSION_ORDER_TYPES = ("ALPHANUMERIC", "CASE_INSENSITIVE_ALPHANUMERIC", "NUMERIC")

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_RELATIVE_DATE_RE = re.compile(r"^(today|yesterday|\d+(days|weeks|months|years)Ago)$")


def is_valid_date_token(token: str) -> bool:
    """ISO ``YYYY-MM-DD`` or a relative token such as ``30daysAgo`` / ``yesterday``."""
    if not token:
        return False
    if _RELATIVE_DATE_RE.match(token):
        return True
    if _ISO_DATE_RE.match(token):
        try:
            datetime.date.fromisoformat(token)
        except ValueError:
            return False
        return True
    return False


# ── Filters ─────────────────────────────────────────────


def _finite(value: float | None) -> bool:
    return value is not None and math.isfinite(value)


def _check_filter(index: int, f: FilterSpec) -> tuple[FilterSpec, list[str]]:
    """Return the normalised filter and any errors found on it."""
    label = f"Filter {index + 1}"
    errors: list[str] = []

    if not f.field_name:
        errors.append(f"{label}: field name is required.")

    kind = f.kind or "string"
    update: dict = {"kind": kind}

    if kind == "string":
        match_type = f.match_type or "EXACT"
        update["match_type"] = match_type
        if not f.value:
            errors.append(f"{label}: string value is required for a string filter.")
        if match_type not in STRING_MATCH_TYPES:
            errors.append(
                f"{label}: invalid string match type '{match_type}'. "
                f"Allowed: {', '.join(STRING_MATCH_TYPES)}"
            )

    elif kind == "numeric":
        if not f.operation:
            errors.append(f"{label}: numeric operation is required for a numeric filter.")
        elif f.operation not in NUMERIC_OPERATIONS:
            errors.append(
                f"{label}: invalid numeric operation '{f.operation}'. "
                f"Allowed: {', '.join(NUMERIC_OPERATIONS)}"
            )
        if not _finite(f.numeric_value):
            errors.append(f"{label}: numeric filter needs a finite value.")

    elif kind == "between":
        if not _finite(f.from_value) or not _finite(f.to_value):
            errors.append(f"{label}: between filter needs finite 'from' and 'to' values.")
        elif f.from_value >= f.to_value:
            errors.append(f"{label}: between filter 'from' value must be less than 'to' value.")

    elif kind == "in_list":
        if not f.values:
            errors.append(f"{label}: in-list values are required for an in_list filter.")

    else:
        errors.append(
            f"{label}: invalid filter type '{kind}'. Allowed: {', '.join(FILTER_KINDS)}"
        )

    return f.model_copy(update=update), errors


# ── Order by ────────────────────────────────────────────


def _check_order_by(index: int, o: OrderBySpec, spec: QuerySpec) -> tuple[OrderBySpec, list[str]]:
    label = f"Order by {index + 1}"
    errors: list[str] = []

    if not o.field_name:
        return o, [f"{label}: field name is required."]

    kind = o.field_kind or None
    if kind == "dimension":
        if o.field_name not in spec.dimensions:
            errors.append(f"{label}: dimension '{o.field_name}' not found in query dimensions.")
    elif kind == "metric":
        if o.field_name not in spec.metrics:
            errors.append(f"{label}: metric '{o.field_name}' not found in query metrics.")
    elif kind is None:
        # Dimensions win when a name appears in both lists
        if o.field_name in spec.dimensions:
            kind = "dimension"
        elif o.field_name in spec.metrics:
            kind = "metric"
        else:
            errors.append(f"{label}: field '{o.field_name}' not found in dimensions or metrics.")
    else:
        errors.append(f"{label}: invalid field kind '{kind}'. Allowed: dimension, metric")

    if o.order_type:
        if kind == "metric":
            errors.append(f"{label}: order type only applies to dimensions.")
        elif o.order_type not in DIMENSION_ORDER_TYPES:
            errors.append(
                f"{label}: invalid order type '{o.order_type}'. "
                f"Allowed: {', '.join(DIMENSION_ORDER_TYPES)}"
            )

    return o.model_copy(update={"field_kind": kind}), errors


# ── Public API ──────────────────────────────────────────


def normalise(
    spec: QuerySpec,
    metadata: FieldMetadata | None = None,
    *,
    strict: bool = False,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> tuple[QuerySpec, list[str]]:
    """Return the defaulted copy of *spec* plus every validation error found."""
    errors: list[str] = []

    if not spec.subject_id.strip():
        errors.append("Subject id is required.")

    if not spec.start_date or not spec.end_date:
        errors.append("Date range is required (start_date and end_date).")
    else:
        if not is_valid_date_token(spec.start_date):
            errors.append(f"Invalid start date format: '{spec.start_date}'.")
        if not is_valid_date_token(spec.end_date):
            errors.append(f"Invalid end date format: '{spec.end_date}'.")

    if not spec.dimensions and not spec.metrics:
        errors.append("At least one dimension or metric is required.")

    limit = spec.limit
    if limit > max_limit:
        errors.append(f"Requested limit ({limit}) exceeds maximum allowed ({max_limit}).")
    elif limit <= 0:
        limit = default_limit

    if spec.offset < 0:
        errors.append(f"Offset cannot be negative (got {spec.offset}).")

    filters: list[FilterSpec] = []
    for i, f in enumerate(spec.filters):
        fixed, f_errors = _check_filter(i, f)
        filters.append(fixed)
        errors.extend(f_errors)

    order_by: list[OrderBySpec] = []
    for i, o in enumerate(spec.order_by):
        fixed, o_errors = _check_order_by(i, o, spec)
        order_by.append(fixed)
        errors.extend(o_errors)

    if metadata is not None:
        for dim_name in spec.dimensions:
            if not metadata.has_dimension(dim_name):
                errors.append(f"Dimension '{dim_name}' not found in subject '{metadata.subject_id}'.")
        for metric_name in spec.metrics:
            if not metadata.has_metric(metric_name):
                errors.append(f"Metric '{metric_name}' not found in subject '{metadata.subject_id}'.")
    elif strict:
        errors.append("Field metadata is required for strict validation but none was supplied.")

    normalised = spec.model_copy(update={"limit": limit, "filters": filters, "order_by": order_by})
    return normalised, errors


def collect_errors(
    spec: QuerySpec,
    metadata: FieldMetadata | None = None,
    *,
    strict: bool = False,
) -> list[str]:
    """Return a list of validation error messages (empty list = spec is valid)."""
    return normalise(spec, metadata, strict=strict)[1]


def validate_query(
    spec: QuerySpec,
    metadata: FieldMetadata | None = None,
    *,
    strict: bool = False,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> QuerySpec:
    """Validate *spec* and return its normalised copy.

    Raises
    ------
    ValidationError
        Carrying every error message found.
    """
    normalised, errors = normalise(
        spec, metadata, strict=strict, default_limit=default_limit, max_limit=max_limit,
    )
    if errors:
        raise ValidationError(errors)
    return normalised
