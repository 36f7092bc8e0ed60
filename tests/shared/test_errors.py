from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI, HTTPException, Query
from httpx import ASGITransport

from shared.http.errors import (
    ExpiredResourceError,
    InvalidTransitionError,
    NoCapacityError,
    UpstreamDegradedError,
    register_exception_handlers,
)


def _build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/conflict")
    async def conflict() -> None:
        raise InvalidTransitionError("completed", "en_route")

    @app.get("/capacity")
    async def capacity() -> None:
        raise NoCapacityError(emergency_id="e1")

    @app.get("/expired")
    async def expired() -> None:
        raise ExpiredResourceError("document", "doc-1")

    @app.get("/http")
    async def http_error() -> None:
        raise HTTPException(status_code=404, detail={"detail": "missing", "hint": "check the id"})

    @app.get("/validated")
    async def validated(limit: int = Query(...)) -> dict[str, int]:
        return {"limit": limit}

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("connection string postgres://dispatch@db")

    return app


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def client(anyio_backend):
    transport = ASGITransport(app=_build_app(), raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.mark.anyio("asyncio")
async def test_transition_conflicts_are_409_problems(client) -> None:
    response = await client.get("/conflict")

    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["status"] == 409
    assert body["instance"] == "/conflict"


@pytest.mark.anyio("asyncio")
async def test_problem_extensions_are_serialized(client) -> None:
    capacity = (await client.get("/capacity")).json()
    expired = (await client.get("/expired")).json()

    assert capacity["emergencyId"] == "e1"
    assert capacity["outcome"] == "no_hospitals_available"
    assert expired["status"] == 410
    assert expired["resourceId"] == "doc-1"


@pytest.mark.anyio("asyncio")
async def test_http_exceptions_and_request_validation(client) -> None:
    http_problem = await client.get("/http")
    assert http_problem.status_code == 404
    assert http_problem.json()["detail"] == "missing"
    assert http_problem.json()["hint"] == "check the id"

    invalid = await client.get("/validated", params={"limit": "many"})
    assert invalid.status_code == 422
    assert invalid.json()["errors"][0]["loc"] == ["query", "limit"]


@pytest.mark.anyio("asyncio")
async def test_unhandled_errors_become_generic_500(client) -> None:
    response = await client.get("/boom")

    assert response.status_code == 500
    assert "postgres://dispatch@db" not in response.text
    assert response.json()["title"] == "Internal Server Error"


def test_upstream_degraded_error_carries_reason() -> None:
    error = UpstreamDegradedError("osrm", reason="timeout")

    assert error.status_code == 503
    assert error.reason == "timeout"
