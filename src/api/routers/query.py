"""POST /query -- run a report through the cache; POST /query/digest -- inspect its cache key; GET /query/events."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from src.api.dependencies import get_executor
from src.core.config import get_settings
from src.core.errors import NotFoundError, RemoteError, TranslationError, ValidationError
from src.core.logging import get_logger
from src.query.cache_key import canonical_request, digest
from src.query.events import EventAnalysis
from src.query.executor import Executor, QueryResult
from src.query.spec import QuerySpec
from src.query.validator import validate_query

logger = get_logger(__name__)
router = APIRouter()


class QueryRequest(BaseModel):
    spec: QuerySpec
    persist: bool = Field(False, description="Store the result without expiry")


class DigestResponse(BaseModel):
    query_hash: str
    canonical: str
    spec: QuerySpec


@router.post("", response_model=QueryResult)
def query_endpoint(req: QueryRequest, executor: Executor = Depends(get_executor)):
    """Validate -> digest -> cache lookup -> (fetch -> cache write)."""
    try:
        return executor.execute(req.spec, persist=req.persist)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"validation_errors": exc.errors})
    except TranslationError as exc:
        raise HTTPException(status_code=422, detail={"translation_error": str(exc)})
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except RemoteError as exc:
        logger.warning("Report fetch failed status=%s", exc.status)
        raise HTTPException(
            status_code=502,
            detail={"status": exc.status, "message": exc.message},
        )


@router.post("/digest", response_model=DigestResponse)
def digest_endpoint(spec: QuerySpec):
    """Dry-run: validate and return the cache key (no cache or gateway access)."""
    try:
        settings = get_settings()
        validated = validate_query(
            spec, default_limit=settings.default_limit, max_limit=settings.max_limit,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"validation_errors": exc.errors})
    return DigestResponse(
        query_hash=digest(validated),
        canonical=canonical_request(validated),
        spec=validated,
    )


@router.get("/events/{subject_id}", response_model=EventAnalysis)
def events_endpoint(
    subject_id: str,
    days: int = Query(30, description="Look-back window in days (1-365)"),
    executor: Executor = Depends(get_executor),
):
    """Top events by count for the last *days* days (cached for an hour)."""
    try:
        return executor.analyze_events(subject_id, days)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"validation_errors": exc.errors})
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except RemoteError as exc:
        raise HTTPException(status_code=502, detail={"status": exc.status, "message": exc.message})
