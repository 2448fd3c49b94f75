"""Integration tests for health check endpoints.

Tests cover:
- Basic health check at /health
- Database health check at /health/db
- Scheduler health check at /health/scheduler
- Request logging and request_id headers
"""

from httpx import AsyncClient


class TestHealthEndpoint:
    """Tests for the basic health check endpoint."""

    async def test_health_returns_ok(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_health_includes_request_id_header(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health")

        # UUID format: 8-4-4-4-12
        assert len(response.headers["X-Request-ID"]) == 36


class TestDatabaseHealthEndpoint:
    async def test_database_health_returns_ok(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health/db")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": True}


class TestSchedulerHealthEndpoint:
    async def test_scheduler_disabled_in_tests(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health/scheduler")

        assert response.status_code == 200
        data = response.json()
        assert data["running"] is False
        assert data["status"] == "not_initialized"


class TestUnknownRoutes:
    async def test_unknown_route_returns_404(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/api/v1/nope")

        assert response.status_code == 404
