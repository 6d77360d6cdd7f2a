"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)

HEALTHY_DB = {
    "healthy": True,
    "service": "database_pool",
    "connection_time_ms": 1.5,
    "pool_stats": {"pool_size": 2, "pool_available": 2, "requests_waiting": 0},
}


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_readyz_endpoint_all_healthy():
    with patch("app.routes.health.db_health_check", AsyncMock(return_value=HEALTHY_DB)):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["database"]["ok"] is True
    assert data["checks"]["database"]["pool_size"] == 2
    assert data["checks"]["configuration"]["ok"] is True


def test_readyz_endpoint_database_unhealthy():
    unhealthy = {"healthy": False, "error": "Pool not initialized", "service": "database_pool"}
    with patch("app.routes.health.db_health_check", AsyncMock(return_value=unhealthy)):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not initialized"


def test_readyz_endpoint_database_raises():
    with patch("app.routes.health.db_health_check", AsyncMock(side_effect=OSError("refused"))):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert "OSError" in data["checks"]["database"]["error"]
    assert isinstance(data["checks"]["database"]["latency_ms"], (int, float))


def test_readyz_endpoint_missing_encryption_key():
    with (
        patch("app.routes.health.db_health_check", AsyncMock(return_value=HEALTHY_DB)),
        patch("app.routes.health.settings.ENCRYPTION_KEY", None),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert "ENCRYPTION_KEY not set" in data["checks"]["configuration"]["issues"]
