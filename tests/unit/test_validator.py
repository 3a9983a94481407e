"""
Unit tests -- query validator / normaliser.
"""
import pytest

from conftest import SAMPLE_METADATA, make_spec
from src.core.errors import ValidationError
from src.query.metadata import parse_metadata
from src.query.spec import FilterSpec, OrderBySpec
from src.query.validator import collect_errors, is_valid_date_token, normalise, validate_query

METADATA = parse_metadata("123", SAMPLE_METADATA)


def test_valid_spec_has_no_errors():
    assert collect_errors(make_spec(), METADATA) == []


def test_limit_zero_normalised_to_default():
    assert validate_query(make_spec(limit=0)).limit == 10_000


def test_negative_limit_normalised_to_default():
    assert validate_query(make_spec(limit=-5)).limit == 10_000


def test_explicit_limit_kept():
    assert validate_query(make_spec(limit=500)).limit == 500


def test_limit_over_max_rejected():
    errors = collect_errors(make_spec(limit=250_001))
    assert "Requested limit (250001) exceeds maximum allowed (250000)." in errors


def test_custom_limits():
    spec, errors = normalise(make_spec(limit=0), default_limit=50, max_limit=100)
    assert errors == []
    assert spec.limit == 50
    _, errors = normalise(make_spec(limit=101), default_limit=50, max_limit=100)
    assert any("exceeds maximum" in e for e in errors)


def test_negative_offset_rejected():
    assert any("Offset cannot be negative" in e for e in collect_errors(make_spec(offset=-1)))


def test_missing_subject():
    assert "Subject id is required." in collect_errors(make_spec(subject_id="  "))


def test_no_dimensions_or_metrics():
    errors = collect_errors(make_spec(dimensions=[], metrics=[]))
    assert "At least one dimension or metric is required." in errors


def test_metrics_only_is_fine():
    assert collect_errors(make_spec(dimensions=[])) == []


def test_missing_dates():
    errors = collect_errors(make_spec(start_date="", end_date=""))
    assert any("Date range is required" in e for e in errors)


@pytest.mark.parametrize("token", ["2024-02-29", "today", "yesterday", "7daysAgo", "2weeksAgo", "1yearsAgo"])
def test_valid_date_tokens(token):
    assert is_valid_date_token(token)


@pytest.mark.parametrize("token", ["2023-02-29", "2024-13-01", "24-01-01", "lastweek", "daysAgo", ""])
def test_invalid_date_tokens(token):
    assert not is_valid_date_token(token)


def test_all_errors_collected_at_once():
    with pytest.raises(ValidationError) as exc_info:
        validate_query(make_spec(subject_id="", dimensions=[], metrics=[], limit=999_999))
    assert len(exc_info.value.errors) >= 3


# ── Filters ─────────────────────────────────────────────

def test_string_filter_defaults_filled_in():
    spec = validate_query(make_spec(filters=[FilterSpec(field_name="country", kind="", value="US")]))
    f = spec.filters[0]
    assert f.kind == "string"
    assert f.match_type == "EXACT"


def test_string_filter_needs_value():
    errors = collect_errors(make_spec(filters=[FilterSpec(field_name="country")]))
    assert any("string value is required" in e for e in errors)


def test_invalid_match_type():
    errors = collect_errors(make_spec(filters=[FilterSpec(field_name="country", value="US", match_type="FUZZY")]))
    assert any("invalid string match type 'FUZZY'" in e for e in errors)


def test_numeric_filter_needs_operation():
    errors = collect_errors(make_spec(filters=[
        FilterSpec(field_name="sessions", kind="numeric", numeric_value=3),
    ]))
    assert any("numeric operation is required" in e for e in errors)


def test_numeric_filter_bad_operation():
    errors = collect_errors(make_spec(filters=[
        FilterSpec(field_name="sessions", kind="numeric", operation="ABOUT", numeric_value=3),
    ]))
    assert any("invalid numeric operation 'ABOUT'" in e for e in errors)


def test_numeric_filter_rejects_infinity():
    errors = collect_errors(make_spec(filters=[
        FilterSpec(field_name="sessions", kind="numeric", operation="EQUAL", numeric_value=float("inf")),
    ]))
    assert any("finite value" in e for e in errors)


def test_between_needs_ordered_bounds():
    errors = collect_errors(make_spec(filters=[
        FilterSpec(field_name="sessions", kind="between", from_value=10, to_value=5),
    ]))
    assert any("'from' value must be less than 'to'" in e for e in errors)


def test_in_list_needs_values():
    errors = collect_errors(make_spec(filters=[FilterSpec(field_name="country", kind="in_list")]))
    assert any("in-list values are required" in e for e in errors)


def test_unknown_filter_kind():
    errors = collect_errors(make_spec(filters=[FilterSpec(field_name="country", kind="regexish", value="x")]))
    assert any("invalid filter type 'regexish'" in e for e in errors)


def test_filter_errors_are_numbered():
    errors = collect_errors(make_spec(filters=[
        FilterSpec(field_name="country", value="US"),
        FilterSpec(field_name="", value="x"),
    ]))
    assert "Filter 2: field name is required." in errors


# ── Order by ────────────────────────────────────────────

def test_order_by_kind_inferred():
    spec = validate_query(make_spec(order_by=[
        OrderBySpec(field_name="sessions", descending=True),
        OrderBySpec(field_name="country"),
    ]))
    assert [o.field_kind for o in spec.order_by] == ["metric", "dimension"]


def test_order_by_unknown_field():
    errors = collect_errors(make_spec(order_by=[OrderBySpec(field_name="bounceRate")]))
    assert any("field 'bounceRate' not found in dimensions or metrics" in e for e in errors)


def test_order_by_declared_kind_must_match():
    errors = collect_errors(make_spec(order_by=[OrderBySpec(field_name="country", field_kind="metric")]))
    assert any("metric 'country' not found in query metrics" in e for e in errors)


def test_order_type_only_for_dimensions():
    errors = collect_errors(make_spec(order_by=[OrderBySpec(field_name="sessions", order_type="NUMERIC")]))
    assert any("order type only applies to dimensions" in e for e in errors)


def test_dimension_order_type_checked():
    assert collect_errors(make_spec(order_by=[OrderBySpec(field_name="country", order_type="NUMERIC")])) == []
    errors = collect_errors(make_spec(order_by=[OrderBySpec(field_name="country", order_type="RANDOM")]))
    assert any("invalid order type 'RANDOM'" in e for e in errors)


# ── Metadata ────────────────────────────────────────────

def test_unknown_dimension_against_metadata():
    errors = collect_errors(make_spec(dimensions=["planet"]), METADATA)
    assert "Dimension 'planet' not found in subject '123'." in errors


def test_unknown_metric_against_metadata():
    errors = collect_errors(make_spec(metrics=["bounces"]), METADATA)
    assert "Metric 'bounces' not found in subject '123'." in errors


def test_deprecated_name_still_accepted():
    assert collect_errors(make_spec(dimensions=["customEvent:tier"]), METADATA) == []


def test_lenient_without_metadata():
    assert collect_errors(make_spec(dimensions=["anything"])) == []


def test_strict_without_metadata_fails():
    errors = collect_errors(make_spec(), strict=True)
    assert any("Field metadata is required for strict validation" in e for e in errors)


def test_normalise_returns_new_copy():
    raw = make_spec(limit=0)
    normalised, _ = normalise(raw)
    assert raw.limit == 0
    assert normalised.limit == 10_000
