"""Tests for health check endpoints."""

from unittest.mock import AsyncMock, patch
import pytest
from httpx import AsyncClient

HEALTH = "mockup_queue.api.v1.endpoints.health"


@pytest.fixture
def broker():
    with patch(f"{HEALTH}.redis.from_url") as mock_from_url:
        mock_from_url.return_value = AsyncMock()
        yield mock_from_url.return_value


@pytest.fixture
def database_up():
    with patch(f"{HEALTH}.check_db_connection", AsyncMock(return_value=True)):
        yield


@pytest.fixture
def database_down():
    with patch(f"{HEALTH}.check_db_connection", AsyncMock(return_value=False)):
        yield


async def test_health_check(client: AsyncClient, broker, database_up):
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"] == {"database": True, "redis": True}
    assert data["version"] == "1.0.0"
    assert data["provider_mode"] == "mock"
    assert data["dispatch_capacity"] == 10
    assert "timestamp" in data
    broker.aclose.assert_awaited_once()


async def test_health_check_degraded(client: AsyncClient, broker, database_down):
    """Unreachable dependencies degrade the status."""
    broker.ping.side_effect = ConnectionRefusedError("refused")

    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["services"] == {"database": False, "redis": False}
    broker.aclose.assert_awaited_once()


async def test_live_provider_mode(client: AsyncClient, broker, database_up, test_settings):
    test_settings.replicate_api_token = "r8_token"

    response = await client.get("/api/v1/health")

    assert response.json()["provider_mode"] == "live"


async def test_liveness_check(client: AsyncClient):
    response = await client.get("/api/v1/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "alive"


async def test_readiness_check(client: AsyncClient, broker, database_up):
    response = await client.get("/api/v1/health/ready")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_readiness_fails_while_degraded(client: AsyncClient, broker, database_down):
    response = await client.get("/api/v1/health/ready")

    assert response.status_code == 503
    assert response.json()["services"]["database"] is False


async def test_root_endpoint(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "mockup-queue"
    assert data["version"] == "1.0.0"
    assert data["docs"] == "/docs"
    assert data["health"] == "/api/v1/health"


async def test_request_id_header(client: AsyncClient):
    response = await client.get("/api/v1/health/live")
    assert "X-Request-ID" in response.headers


async def test_incoming_request_id_is_kept(client: AsyncClient):
    response = await client.get("/api/v1/health/live", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


async def test_unknown_route_uses_error_envelope(client: AsyncClient):
    response = await client.get("/api/v1/nope")

    assert response.status_code == 404
    body = response.json()
    assert body["error_code"] == "NOT_FOUND"
    assert body["request_id"] == response.headers["X-Request-ID"]
