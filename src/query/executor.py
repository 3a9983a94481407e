"""
Executor -- orchestrates validate -> digest -> cache lookup -> translate -> fetch -> cache write.

  1. Validate / normalise the QuerySpec (ValidationError aborts, nothing touched)
  2. Digest the normalised spec
  3. Look the digest up in the store; a hit is returned without contacting the gateway
  4. On a miss compile the filters, assemble the ReportRequest, call the gateway
  5. On success persist the result under the digest (short TTL, or no TTL
     when the caller asks for persistent storage) and return it
  6. On gateway failure attach an error-annotated QueryResult to the raised
     RemoteError and write nothing

Store failures never fail a request: they are logged and treated as misses.
"""
from __future__ import annotations

import datetime
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import pandas as pd
import pydantic
from pydantic import BaseModel, Field

from src.cache.base import CacheBackend
from src.cache.null_store import NullCacheStore
from src.core.config import Settings, get_settings
from src.core.errors import CacheError, RemoteError, RequestCancelled, ValidationError
from src.core.logging import get_logger
from src.core.utils import utc_now
from src.gateway.base import ReportingGateway
from src.query.cache_key import digest
from src.query.events import EventAnalysis, cache_kind, days_error, event_request, summarise_events
from src.query.expression import (
    DateRange,
    DimensionOrderBy,
    MetricHeader,
    MetricOrderBy,
    NamedField,
    OrderBy,
    ReportRequest,
    ReportResponse,
    Row,
)
from src.query.filters import compile_filters
from src.query.metadata import FieldMetadata, parse_metadata
from src.query.spec import QuerySpec, QueryTemplate, TemplateOverrides
from src.query.validator import normalise, validate_query

logger = get_logger(__name__)

METADATA_KIND = "metadata"


@dataclass
class CallOptions:
    """Per-call timeout and cancellation, passed through to the gateway."""

    timeout: float | None = None
    cancel_event: threading.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def check(self, stage: str) -> None:
        if self.cancelled:
            raise RequestCancelled(f"Request cancelled {stage}")


class QueryResult(BaseModel):
    """Result envelope handed back to callers (and stored in the cache)."""

    query_id: str
    subject_id: str
    query_hash: str
    spec: QuerySpec
    executed_at: datetime.datetime
    execution_ms: int = 0
    row_count: int = 0
    from_cache: bool = False

    dimension_headers: list[NamedField] = Field(default_factory=list)
    metric_headers: list[MetricHeader] = Field(default_factory=list)
    rows: list[Row] = Field(default_factory=list)
    totals: list[Row] = Field(default_factory=list)
    maximums: list[Row] = Field(default_factory=list)
    minimums: list[Row] = Field(default_factory=list)
    response_metadata: dict[str, Any] = Field(default_factory=dict)
    property_quota: dict[str, Any] | None = None

    error: str = ""

    @property
    def success(self) -> bool:
        return not self.error

    def columns(self) -> list[str]:
        return [h.name for h in self.dimension_headers] + [h.name for h in self.metric_headers]

    def to_records(self) -> list[dict[str, str]]:
        """Rows as ``{column: value}`` dicts, dimensions first."""
        cols = self.columns()
        return [
            dict(zip(cols, [v.value for v in r.dimension_values] + [v.value for v in r.metric_values]))
            for r in self.rows
        ]

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.to_records(), columns=self.columns())

    def to_csv(self) -> str:
        """Header row of column names, then one line per row."""
        return self.to_dataframe().to_csv(index=False)

    def export_csv(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_dataframe().to_csv(path, index=False)
        return path

    def export_json(self, path: str | Path, *, prettify: bool = False) -> Path:
        """Write the full result envelope; *prettify* indents by two spaces."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2 if prettify else None), encoding="utf-8")
        return path

    def response(self) -> ReportResponse:
        return ReportResponse(
            dimension_headers=self.dimension_headers,
            metric_headers=self.metric_headers,
            rows=self.rows,
            totals=self.totals,
            maximums=self.maximums,
            minimums=self.minimums,
            row_count=self.row_count,
            metadata=self.response_metadata,
            property_quota=self.property_quota,
        )

    def to_payload(self) -> dict[str, Any]:
        """Cache payload: enough to rebuild this result later."""
        return {
            "query_id": self.query_id,
            "executed_at": self.executed_at.isoformat(),
            "spec": self.spec.model_dump(mode="json"),
            "response": self.response().to_wire(),
        }

    @classmethod
    def build(
        cls,
        *,
        query_id: str,
        spec: QuerySpec,
        query_hash: str,
        executed_at: datetime.datetime,
        response: ReportResponse,
        execution_ms: int = 0,
        from_cache: bool = False,
    ) -> "QueryResult":
        return cls(
            query_id=query_id,
            subject_id=spec.subject_id,
            query_hash=query_hash,
            spec=spec,
            executed_at=executed_at,
            execution_ms=execution_ms,
            row_count=response.row_count,
            from_cache=from_cache,
            dimension_headers=list(response.dimension_headers),
            metric_headers=list(response.metric_headers),
            rows=list(response.rows),
            totals=list(response.totals),
            maximums=list(response.maximums),
            minimums=list(response.minimums),
            response_metadata=dict(response.metadata),
            property_quota=response.property_quota,
        )


def new_query_id() -> str:
    return f"query_{uuid.uuid4().hex[:16]}"


# ── Request assembly ────────────────────────────────────


def build_request(spec: QuerySpec) -> ReportRequest:
    """Turn a validated spec into a ReportRequest.

    Filters on a requested metric become the metric filter; everything else
    goes to the dimension filter.  Raises TranslationError for bad filters.
    """
    metric_names = set(spec.metrics)
    metric_specs = [f for f in spec.filters if f.field_name in metric_names]
    dimension_specs = [f for f in spec.filters if f.field_name not in metric_names]

    order_bys: list[OrderBy] = []
    for o in spec.order_by:
        if o.field_kind == "metric":
            order_bys.append(OrderBy(desc=o.descending, metric=MetricOrderBy(metric_name=o.field_name)))
        else:
            order_bys.append(OrderBy(
                desc=o.descending,
                dimension=DimensionOrderBy(dimension_name=o.field_name, order_type=o.order_type),
            ))

    return ReportRequest(
        subject_id=spec.subject_id,
        dimensions=[NamedField(name=d) for d in spec.dimensions],
        metrics=[NamedField(name=m) for m in spec.metrics],
        date_ranges=[DateRange(start_date=spec.start_date, end_date=spec.end_date)],
        dimension_filter=compile_filters(dimension_specs),
        metric_filter=compile_filters(metric_specs),
        offset=spec.offset,
        limit=spec.limit,
        metric_aggregations=list(spec.metric_aggregations),
        order_bys=order_bys,
        currency_code=spec.currency_code or None,
        keep_empty_rows=spec.keep_empty_rows,
        return_property_quota=spec.return_property_quota,
    )


# ── Executor ────────────────────────────────────────────


class Executor:
    """Runs QuerySpecs against a reporting gateway through a cache store.

    Parameters
    ----------
    gateway : ReportingGateway
        Remote collaborator that executes assembled requests.
    store : CacheBackend, optional
        Cache for this context; defaults to a no-op store.
    settings : Settings, optional
        TTLs and limits; defaults to ``get_settings()``.
    strict : bool, optional
        Require field metadata for validation.  When on and no metadata is
        passed to ``execute``, it is loaded through the metadata cache.
    """

    def __init__(
        self,
        gateway: ReportingGateway,
        store: CacheBackend | None = None,
        *,
        settings: Settings | None = None,
        strict: bool | None = None,
    ):
        self._gateway = gateway
        self._store: CacheBackend = store if store is not None else NullCacheStore()
        self._settings = settings or get_settings()
        self._strict = self._settings.strict_validation if strict is None else strict

    @property
    def store(self) -> CacheBackend:
        return self._store

    # ── Metadata ────────────────────────────────────────

    def get_metadata(self, subject_id: str, *, options: CallOptions | None = None) -> FieldMetadata:
        """Field metadata for *subject_id*, served from cache when fresh."""
        options = options or CallOptions()
        payload, found = self._cache_read(
            "metadata read", lambda: self._store.get_cached_metadata(subject_id, METADATA_KIND),
        )
        if found and isinstance(payload, dict):
            try:
                return parse_metadata(subject_id, payload)
            except (KeyError, TypeError, AttributeError, ValueError) as exc:
                logger.warning("Cached metadata unreadable -- refetching subject=%s: %s", subject_id, exc)

        options.check("before metadata fetch")
        raw = self._gateway.get_metadata(subject_id, timeout=options.timeout)
        options.check("before metadata write")
        self._cache_write(
            "metadata write",
            lambda: self._store.cache_metadata(
                subject_id, METADATA_KIND, raw, self._settings.metadata_ttl_hours,
            ),
        )
        logger.info("Metadata fetched subject=%s", subject_id)
        return parse_metadata(subject_id, raw)

    def analyze_events(
        self, subject_id: str, days: int = 30, *, options: CallOptions | None = None,
    ) -> EventAnalysis:
        """Top events by count over the last *days* (1..365), cached for an hour.

        Raises ValidationError for a bad window before any cache or gateway
        access; gateway failures propagate as RemoteError.
        """
        errors = []
        if not subject_id.strip():
            errors.append("Subject id is required.")
        window_error = days_error(days)
        if window_error:
            errors.append(window_error)
        if errors:
            raise ValidationError(errors)

        options = options or CallOptions()
        kind = cache_kind(days)
        payload, found = self._cache_read(
            "events read", lambda: self._store.get_cached_metadata(subject_id, kind),
        )
        if found:
            try:
                return EventAnalysis.model_validate(payload)
            except pydantic.ValidationError as exc:
                logger.warning("Cached event summary unreadable -- refetching subject=%s: %s", subject_id, exc)

        options.check("before events fetch")
        response = self._gateway.run_report(event_request(subject_id, days), timeout=options.timeout)
        options.check("before events write")
        analysis = summarise_events(subject_id, days, response, utc_now())
        self._cache_write(
            "events write",
            lambda: self._store.cache_metadata(
                subject_id, kind, analysis.model_dump(mode="json"), self._settings.events_ttl_hours,
            ),
        )
        logger.info("Events analysed subject=%s days=%d events=%d", subject_id, days, analysis.total_events)
        return analysis

    # ── Queries ─────────────────────────────────────────

    def execute(
        self,
        spec: QuerySpec,
        *,
        metadata: FieldMetadata | None = None,
        persist: bool = False,
        options: CallOptions | None = None,
    ) -> QueryResult:
        """Run *spec*, serving it from cache when an identical request is stored.

        Raises
        ------
        ValidationError, TranslationError
            Before any remote call.
        RemoteError / NotFoundError
            Gateway failure; ``exc.result`` carries the error-annotated result.
        RequestCancelled
            ``options.cancel_event`` was set before the fetch completed.
        """
        options = options or CallOptions()
        t0 = time.perf_counter()
        started = utc_now()

        # structural checks first: a malformed spec never reaches the store or gateway
        _, structural_errors = normalise(
            spec, None,
            strict=False,
            default_limit=self._settings.default_limit,
            max_limit=self._settings.max_limit,
        )
        if structural_errors:
            raise ValidationError(structural_errors)

        if metadata is None and self._strict:
            metadata = self.get_metadata(spec.subject_id, options=options)

        validated = validate_query(
            spec, metadata,
            strict=self._strict,
            default_limit=self._settings.default_limit,
            max_limit=self._settings.max_limit,
        )
        query_hash = digest(validated)
        logger.info("Executor.execute | subject=%s | hash=%s", validated.subject_id, query_hash[:16])

        cached = self._lookup(validated, query_hash, t0)
        if cached is not None:
            if persist:
                self._cache_write("query persist", lambda: self._store_result(cached, None))
            return cached

        request = build_request(validated)
        query_id = new_query_id()

        options.check("before report fetch")
        try:
            response = self._gateway.run_report(request, timeout=options.timeout)
        except RemoteError as exc:
            logger.exception("Report fetch failed subject=%s status=%s: %s",
                             validated.subject_id, exc.status, exc.message)
            exc.result = QueryResult(
                query_id=query_id,
                subject_id=validated.subject_id,
                query_hash=query_hash,
                spec=validated,
                executed_at=started,
                execution_ms=int((time.perf_counter() - t0) * 1000),
                error=str(exc),
            )
            raise

        options.check("before cache write")
        result = QueryResult.build(
            query_id=query_id,
            spec=validated,
            query_hash=query_hash,
            executed_at=started,
            response=response,
            execution_ms=int((time.perf_counter() - t0) * 1000),
        )

        ttl = None if persist else self._settings.query_ttl_hours
        self._cache_write("query write", lambda: self._store_result(result, ttl, request))
        logger.info("Report fetched subject=%s rows=%d ms=%d persist=%s",
                    result.subject_id, result.row_count, result.execution_ms, persist)
        return result

    def execute_template(
        self,
        template: QueryTemplate,
        overrides: TemplateOverrides | None = None,
        *,
        metadata: FieldMetadata | None = None,
        persist: bool = False,
        options: CallOptions | None = None,
    ) -> QueryResult:
        """Run a saved template with typed overrides; bumps its usage stats."""
        spec = (overrides or TemplateOverrides()).apply(template.query)
        template.usage_count += 1
        template.last_used = utc_now()
        logger.info("Running template '%s' (use #%d)", template.name, template.usage_count)
        return self.execute(spec, metadata=metadata, persist=persist, options=options)

    # ── Named references ────────────────────────────────

    def save_named(self, name: str, result: QueryResult, description: str = "") -> None:
        """Persist *result* without expiry and alias it as *name*.

        Raises CacheError when the store cannot keep it; this is an explicit
        management call, so failures are not swallowed.
        """
        if not result.success:
            raise CacheError(f"Cannot name a failed result ({result.error})")
        self._store_result(result, None)
        self._store.create_named_reference(name, result.subject_id, result.query_id, description)
        logger.info("Saved result %s as '%s'", result.query_id, name)

    def load_named(self, name: str) -> QueryResult | None:
        payload, found = self._cache_read("named read", lambda: self._store.get_named_reference(name))
        if not found:
            return None
        return self._from_payload(payload, None, time.perf_counter())

    # ── Internals ───────────────────────────────────────

    def _store_result(
        self,
        result: QueryResult,
        ttl_hours: float | None,
        request: ReportRequest | None = None,
    ) -> None:
        request = request or build_request(result.spec)
        self._store.cache_query(
            result.query_id,
            result.subject_id,
            result.query_hash,
            {"subject_id": request.subject_id, **request.to_wire()},
            result.to_payload(),
            result.row_count,
            ttl_hours,
        )

    def _lookup(self, spec: QuerySpec, query_hash: str, t0: float) -> QueryResult | None:
        payload, found = self._cache_read("query read", lambda: self._store.get_cached_query(query_hash))
        if not found:
            return None
        result = self._from_payload(payload, spec, t0, query_hash)
        if result is not None:
            logger.info("Cache HIT subject=%s hash=%s", spec.subject_id, query_hash[:16])
        return result

    def _from_payload(
        self,
        payload: Any,
        spec: QuerySpec | None,
        t0: float,
        query_hash: str | None = None,
    ) -> QueryResult | None:
        try:
            stored_spec = QuerySpec.model_validate(payload["spec"])
            response = ReportResponse.model_validate(payload["response"])
            executed_at = datetime.datetime.fromisoformat(payload["executed_at"])
            query_id = payload["query_id"]
        except (KeyError, TypeError, ValueError, pydantic.ValidationError) as exc:
            logger.warning("Cached payload unreadable -- treating as miss: %s", exc)
            return None
        spec = spec or stored_spec
        return QueryResult.build(
            query_id=query_id,
            spec=spec,
            query_hash=query_hash or digest(spec),
            executed_at=executed_at,
            response=response,
            execution_ms=int((time.perf_counter() - t0) * 1000),
            from_cache=True,
        )

    def _cache_read(self, op: str, fn: Callable[[], tuple[Any, bool]]) -> tuple[Any, bool]:
        try:
            return fn()
        except CacheError as exc:
            logger.warning("Cache %s failed -- treating as miss: %s", op, exc)
            return None, False

    def _cache_write(self, op: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except CacheError as exc:
            logger.warning("Cache %s failed -- continuing without caching: %s", op, exc)

    def close(self) -> None:
        self._store.close()
