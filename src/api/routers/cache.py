"""GET /cache/stats, POST /cache/sweep, /cache/references -- cache management and export endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from src.api.dependencies import get_executor
from src.core.errors import CacheError, RemoteError, TranslationError, ValidationError
from src.core.logging import get_logger
from src.core.utils import from_epoch, timer
from src.query.executor import Executor, QueryResult
from src.query.spec import QuerySpec

logger = get_logger(__name__)
router = APIRouter()


class CacheStatsResponse(BaseModel):
    context_id: str
    hits: int
    misses: int
    hit_rate: float
    entry_count: int
    last_sweep_at: float | None = None
    created_at: float | None = None
    updated_at: float | None = None


class SweepResponse(BaseModel):
    removed: int
    elapsed_ms: int


class ReferenceItem(BaseModel):
    name: str
    subject_id: str
    query_id: str
    description: str
    row_count: int
    created_at: str | None
    last_accessed_at: str | None


class CreateReferenceRequest(BaseModel):
    name: str
    spec: QuerySpec
    description: str = ""


def _iso(ts: float | None) -> str | None:
    dt = from_epoch(ts)
    return dt.isoformat() if dt else None


@router.get("/stats", response_model=CacheStatsResponse)
def stats_endpoint(executor: Executor = Depends(get_executor)):
    """Return hit / miss counters for the active cache context."""
    try:
        stats = executor.store.stats()
    except CacheError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return CacheStatsResponse(**stats.as_dict())


@router.post("/sweep", response_model=SweepResponse)
def sweep_endpoint(executor: Executor = Depends(get_executor)):
    """Remove every expired entry in one pass."""
    try:
        with timer() as t:
            removed = executor.store.sweep_expired()
    except CacheError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    logger.info("Sweep via API removed=%d ms=%d", removed, t["elapsed_ms"])
    return SweepResponse(removed=removed, elapsed_ms=t["elapsed_ms"])


@router.get("/references", response_model=list[ReferenceItem])
def list_references_endpoint(subject_id: str | None = None, executor: Executor = Depends(get_executor)):
    try:
        refs = executor.store.list_named_references(subject_id)
    except CacheError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return [
        ReferenceItem(
            name=r.name,
            subject_id=r.subject_id,
            query_id=r.query_id,
            description=r.description,
            row_count=r.row_count,
            created_at=_iso(r.created_at),
            last_accessed_at=_iso(r.last_accessed_at),
        )
        for r in refs
    ]


@router.post("/references", response_model=QueryResult, status_code=201)
def create_reference_endpoint(req: CreateReferenceRequest, executor: Executor = Depends(get_executor)):
    """Run (or reuse) the query result and pin it under *name*."""
    try:
        result = executor.execute(req.spec, persist=True)
        executor.save_named(req.name, result, req.description)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"validation_errors": exc.errors})
    except TranslationError as exc:
        raise HTTPException(status_code=422, detail={"translation_error": str(exc)})
    except RemoteError as exc:
        raise HTTPException(status_code=502, detail={"status": exc.status, "message": exc.message})
    except CacheError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return result


@router.get("/references/{name}", response_model=QueryResult)
def get_reference_endpoint(name: str, executor: Executor = Depends(get_executor)):
    result = executor.load_named(name)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No named result '{name}'")
    return result


@router.get("/references/{name}/export")
def export_reference_endpoint(
    name: str,
    format: str = Query("csv", pattern="^(csv|json)$"),
    executor: Executor = Depends(get_executor),
):
    """Download a named result as CSV (header + rows) or as the JSON envelope."""
    result = executor.load_named(name)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No named result '{name}'")
    if format == "json":
        return PlainTextResponse(result.model_dump_json(indent=2), media_type="application/json")
    return PlainTextResponse(
        result.to_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{name}.csv"'},
    )


@router.delete("/references/{name}")
def delete_reference_endpoint(name: str, executor: Executor = Depends(get_executor)):
    try:
        deleted = executor.store.delete_named_reference(name)
    except CacheError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if not deleted:
        raise HTTPException(status_code=404, detail=f"No named result '{name}'")
    return {"deleted": name}
