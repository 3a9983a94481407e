"""
API tests -- FastAPI endpoints via TestClient (no live server needed).

The executor dependency is swapped for one backed by a fake gateway and the
in-memory store.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import make_spec
from src.api.dependencies import get_executor
from src.api.main import app
from src.core.errors import NotFoundError
from src.query.expression import CellValue, ReportResponse, Row


@pytest.fixture
def client(executor):
    app.dependency_overrides[get_executor] = lambda: executor
    yield TestClient(app)
    app.dependency_overrides.clear()


def _body(**overrides) -> dict:
    return make_spec(**overrides).model_dump(mode="json")


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ── /query ──────────────────────────────────────────────

def test_query_miss_then_hit(client, gateway):
    first = client.post("/query", json={"spec": _body()})
    assert first.status_code == 200
    data = first.json()
    assert data["from_cache"] is False
    assert data["row_count"] == 2
    assert data["spec"]["limit"] == 10_000
    assert len(data["query_hash"]) == 64

    second = client.post("/query", json={"spec": _body()})
    assert second.json()["from_cache"] is True
    assert len(gateway.requests) == 1


def test_query_validation_error(client, gateway):
    resp = client.post("/query", json={"spec": _body(dimensions=[], metrics=[])})
    assert resp.status_code == 422
    assert "At least one dimension or metric is required." in resp.json()["detail"]["validation_errors"]
    assert gateway.requests == []


def test_query_remote_error(client, gateway, remote_failure):
    gateway.error = remote_failure
    resp = client.post("/query", json={"spec": _body()})
    assert resp.status_code == 502
    assert resp.json()["detail"] == {"status": 429, "message": "quota exhausted"}


def test_query_not_found(client, gateway):
    gateway.error = NotFoundError("Subject 123 not found or not accessible", status=404)
    resp = client.post("/query", json={"spec": _body()})
    assert resp.status_code == 404


def test_digest_dry_run(client, gateway):
    resp = client.post("/query/digest", json=_body(limit=0))
    assert resp.status_code == 200
    data = resp.json()
    assert len(data["query_hash"]) == 64
    assert data["spec"]["limit"] == 10_000
    assert '"subject":"123"' in data["canonical"]
    assert gateway.requests == []


def test_digest_matches_executed_hash(client):
    digest = client.post("/query/digest", json=_body()).json()["query_hash"]
    executed = client.post("/query", json={"spec": _body()}).json()["query_hash"]
    assert digest == executed


# ── /cache ──────────────────────────────────────────────

def test_cache_stats(client):
    client.post("/query", json={"spec": _body()})
    client.post("/query", json={"spec": _body()})
    data = client.get("/cache/stats").json()
    assert data["hits"] == 1
    assert data["misses"] == 1
    assert data["hit_rate"] == 0.5
    assert data["entry_count"] == 1


def test_cache_sweep(client, clock):
    client.post("/query", json={"spec": _body()})
    clock.advance(hours=5)
    data = client.post("/cache/sweep").json()
    assert data["removed"] == 1
    assert data["elapsed_ms"] >= 0


def test_named_reference_lifecycle(client, gateway):
    created = client.post(
        "/cache/references",
        json={"name": "jan", "spec": _body(), "description": "January sessions"},
    )
    assert created.status_code == 201
    query_id = created.json()["query_id"]

    listed = client.get("/cache/references").json()
    assert [r["name"] for r in listed] == ["jan"]
    assert listed[0]["query_id"] == query_id
    assert listed[0]["created_at"].endswith("+00:00")
    assert client.get("/cache/references", params={"subject_id": "other"}).json() == []

    fetched = client.get("/cache/references/jan")
    assert fetched.status_code == 200
    assert fetched.json()["from_cache"] is True

    assert client.delete("/cache/references/jan").status_code == 200
    assert client.get("/cache/references/jan").status_code == 404
    assert client.delete("/cache/references/jan").status_code == 404
    assert len(gateway.requests) == 1


def test_named_reference_bad_spec(client):
    resp = client.post("/cache/references", json={"name": "x", "spec": _body(metrics=[], dimensions=[])})
    assert resp.status_code == 422


def test_named_reference_export(client):
    client.post("/cache/references", json={"name": "jan", "spec": _body()})

    as_csv = client.get("/cache/references/jan/export")
    assert as_csv.status_code == 200
    assert as_csv.headers["content-type"].startswith("text/csv")
    assert as_csv.text.splitlines() == ["country,sessions", "country_0,100", "country_1,101"]

    as_json = client.get("/cache/references/jan/export", params={"format": "json"})
    assert as_json.json()["row_count"] == 2

    assert client.get("/cache/references/jan/export", params={"format": "xml"}).status_code == 422
    assert client.get("/cache/references/nope/export").status_code == 404


# ── /query/events ───────────────────────────────────────

def test_events_summary(client, gateway):
    gateway.response = ReportResponse(rows=[
        Row(dimension_values=[CellValue(value="page_view")],
            metric_values=[CellValue(value="40"), CellValue(value="10")]),
    ])
    resp = client.get("/query/events/123", params={"days": 7})
    assert resp.status_code == 200
    data = resp.json()
    assert data["date_range"] == "7 days"
    assert data["events"][0]["events_per_user"] == 4.0
    assert client.get("/query/events/123", params={"days": 7}).json() == data
    assert len(gateway.requests) == 1


def test_events_bad_window(client, gateway):
    resp = client.get("/query/events/123", params={"days": 400})
    assert resp.status_code == 422
    assert gateway.requests == []


def test_events_remote_error(client, gateway, remote_failure):
    gateway.error = remote_failure
    assert client.get("/query/events/123").status_code == 502
