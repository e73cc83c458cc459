"""Tests for system endpoints."""

from unittest.mock import MagicMock

from fastapi import status
from fastapi.testclient import TestClient


def test_system_config(client: TestClient) -> None:
    """Configuration snapshot exposes delivery tuning but no connection strings."""
    r = client.get("/api/v1/system/config")
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert "app" in data and "delivery" in data
    assert data["delivery"]["max_attempts"] >= 1
    assert "database_url" not in str(data)


def test_system_health_without_worker(client: TestClient) -> None:
    r = client.get("/api/v1/system/health")
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["status"] == "healthy"
    assert data["components"] == {"database": "healthy", "worker": "disabled"}
    assert data["durability_alarms"] == 0


def test_system_health_reports_worker(client: TestClient) -> None:
    coordinator = MagicMock(running=True, durability_alarms=2)
    client.app.state.coordinator = coordinator
    try:
        data = client.get("/api/v1/system/health").json()
    finally:
        client.app.state.coordinator = None

    assert data["components"]["worker"] == "running"
    assert data["durability_alarms"] == 2
