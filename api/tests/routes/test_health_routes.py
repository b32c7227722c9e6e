"""Route tests for the health and readiness endpoints."""

import pytest

pytestmark = pytest.mark.unit


class TestHealth:
    async def test_liveness(self, anonymous_client):
        response = await anonymous_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "streakshield-api"}

    async def test_detailed_reports_database(self, anonymous_client):
        response = await anonymous_client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["database"] is True
        assert data["status"] == "healthy"
        # Tests run on NullPool, which has no pool metrics
        assert data["pool"] is None


class TestReady:
    async def test_ready_after_init(self, anonymous_client):
        response = await anonymous_client.get("/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_not_ready_while_starting(self, app, anonymous_client):
        app.state.init_done = False

        response = await anonymous_client.get("/ready")

        assert response.status_code == 503
        assert response.json()["detail"] == "Starting"

    async def test_not_ready_after_failed_init(self, app, anonymous_client):
        app.state.init_error = "migrations failed"

        response = await anonymous_client.get("/ready")

        assert response.status_code == 503
        assert "migrations failed" in response.json()["detail"]
