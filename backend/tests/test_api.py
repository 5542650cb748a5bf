"""HTTP tests for the analysis, quota and usage endpoints."""

from typing import AsyncGenerator

import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from swingsetups.main import app
from swingsetups.services.analysis import get_orchestrator
from swingsetups.services.quota import get_quota_guard
from swingsetups.services.usage import UsageLedger, get_usage_ledger

KEY = "NSE_EQ|INE002A01018"


def body(**overrides) -> dict:
    data = {
        "instrument_key": KEY,
        "stock_name": "Reliance Industries",
        "stock_symbol": "RELIANCE",
        "analysis_type": "swing",
        "user_id": "u1",
        "notify": False,
    }
    data.update(overrides)
    return data


@pytest_asyncio.fixture
async def client(make_orchestrator) -> AsyncGenerator[AsyncClient, None]:
    orchestrator = make_orchestrator()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_quota_guard] = lambda: orchestrator.quota
    app.dependency_overrides[get_usage_ledger] = lambda: UsageLedger()
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "session" in data["market"]


class TestAnalysisEndpoints:
    """POST /api/v1/analysis and GET /api/v1/analysis/{instrument_key}."""

    async def test_fresh_then_cached(self, client):
        first = await client.post("/api/v1/analysis", json=body())
        assert first.status_code == 200
        assert first.json()["status"] == "fresh"
        assert first.json()["data"]["status"] == "completed"

        second = await client.post("/api/v1/analysis", json=body(user_id="u2"))
        assert second.status_code == 200
        assert second.json()["cached"] is True
        assert second.json()["data"]["id"] == first.json()["data"]["id"]

    async def test_poll_status(self, client):
        await client.post("/api/v1/analysis", json=body())

        response = await client.get(f"/api/v1/analysis/{KEY}", params={"analysis_type": "swing"})
        assert response.status_code == 200
        data = response.json()
        assert data["inProgress"] is False
        assert data["data"]["progress"]["percentage"] == 100

    async def test_poll_unknown_key(self, client):
        response = await client.get("/api/v1/analysis/NSE_EQ|UNKNOWN")
        assert response.status_code == 404
        assert response.json()["errorCode"] == "not_found"

    async def test_quota_exceeded_is_429(self, client):
        for i, symbol in enumerate(("RELIANCE", "TCS", "INFY")):
            response = await client.post(
                "/api/v1/analysis", json=body(instrument_key=f"NSE_EQ|KEY{i}", stock_symbol=symbol)
            )
            assert response.status_code == 200

        response = await client.post(
            "/api/v1/analysis", json=body(instrument_key="NSE_EQ|KEY9", stock_symbol="HDFCBANK")
        )
        assert response.status_code == 429
        data = response.json()
        assert data["success"] is False
        assert data["errorCode"] == "daily_limit_reached"
        assert "resetsAt" in data

    async def test_header_mismatch_is_400(self, client):
        response = await client.post("/api/v1/analysis", json=body(), headers={"X-User-Id": "someone-else"})
        assert response.status_code == 400
        assert response.json()["errorCode"] == "validation_error"

    async def test_invalid_body_is_422(self, client):
        response = await client.post("/api/v1/analysis", json=body(stock_symbol=""))
        assert response.status_code == 422


class TestQuotaEndpoints:
    async def test_check_quota(self, client):
        response = await client.get("/api/v1/quota/u1", params={"symbol": "tcs"})
        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["reason"] == "within_limit"
        assert data["symbol"] == "TCS"
        assert data["limit"] == 3

    async def test_usage_after_analysis(self, client):
        await client.post("/api/v1/analysis", json=body())

        response = await client.get("/api/v1/usage/u1")
        assert response.status_code == 200
        data = response.json()
        assert data["quota"]["used"] == 1
        assert data["quota"]["symbols"] == ["RELIANCE"]
        assert data["billing"]["computations"] == 1
