"""Test health check endpoints"""

import uuid

from httpx import AsyncClient


async def test_health_check(client: AsyncClient, presence, connection_factory):
    """Test basic health check endpoint"""
    presence.register(uuid.uuid4(), connection_factory())

    response = await client.get("/health/")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert data["service"] == "Temporary Social API"
    assert data["connectedUsers"] == 1


async def test_readiness_check(client: AsyncClient):
    response = await client.get("/health/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["checks"]["database"] == "healthy"
    assert data["checks"]["redis"] == "disabled"
    assert data["status"] == "healthy"


async def test_liveness_check(client: AsyncClient):
    """Test liveness probe endpoint"""
    response = await client.get("/health/live")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "alive"


async def test_status_endpoint(client: AsyncClient):
    response = await client.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Temporary Social API"
    assert data["status"] == "operational"
    assert "version" in data
