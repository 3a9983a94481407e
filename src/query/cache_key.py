"""
Content-addressed cache keys for report requests.

The digest is SHA-256 over a canonical JSON form of the validated spec:
  - keys are sorted, separators compact, so dict iteration order is irrelevant
  - dimensions, metrics and order-by keep their order (they shape the result)
  - filters are sorted (they are AND-combined), as are in-list values and
    metric aggregations
  - display metadata (name, description, timestamps) never participates
"""
from __future__ import annotations

import hashlib
import json
from typing import Any

from src.query.spec import FilterSpec, OrderBySpec, QuerySpec

KEY_VERSION = "v1"


def _canonical_filter(f: FilterSpec) -> dict[str, Any]:
    kind = f.kind or "string"
    out: dict[str, Any] = {"field": f.field_name, "kind": kind}
    if kind == "string":
        out.update(match=f.match_type or "EXACT", value=f.value, case=f.case_sensitive)
    elif kind == "numeric":
        out.update(op=f.operation, value=f.numeric_value)
    elif kind == "between":
        out.update(lo=f.from_value, hi=f.to_value)
    elif kind == "in_list":
        out.update(values=sorted(f.values), case=f.case_sensitive)
    return out


def _canonical_order_by(o: OrderBySpec) -> dict[str, Any]:
    return {
        "field": o.field_name,
        "kind": o.field_kind,
        "desc": o.descending,
        "type": o.order_type,
    }


def _dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonical_request(spec: QuerySpec) -> str:
    """Canonical serialisation of everything that shapes the remote response."""
    filters = sorted((_canonical_filter(f) for f in spec.filters), key=_dumps)
    body = {
        "version": KEY_VERSION,
        "subject": spec.subject_id,
        "dimensions": list(spec.dimensions),
        "metrics": list(spec.metrics),
        "date_range": [spec.start_date, spec.end_date],
        "limit": spec.limit,
        "offset": spec.offset,
        "filters": filters,
        "order_by": [_canonical_order_by(o) for o in spec.order_by],
        "keep_empty_rows": spec.keep_empty_rows,
        "metric_aggregations": sorted(spec.metric_aggregations),
        "currency_code": spec.currency_code,
        "return_property_quota": spec.return_property_quota,
    }
    return _dumps(body)


def digest(spec: QuerySpec) -> str:
    """64-char hex SHA-256 of ``canonical_request(spec)``."""
    return hashlib.sha256(canonical_request(spec).encode("utf-8")).hexdigest()
