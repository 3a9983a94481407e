"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI

from src.api.routers import cache, query

app = FastAPI(
    title="Analytics Report Cache",
    version="0.1.0",
    description="Query translation and TTL caching in front of a reporting API",
)

app.include_router(query.router, prefix="/query", tags=["Query"])
app.include_router(cache.router, prefix="/cache", tags=["Cache"])


@app.get("/health")
def health():
    return {"status": "ok"}
