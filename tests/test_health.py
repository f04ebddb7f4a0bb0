"""
Health and version endpoints
"""
from fastapi.testclient import TestClient
from community_hub.main import app

client = TestClient(app)


def test_health_endpoint_returns_200():
    """Test that /health returns HTTP 200"""
    response = client.get("/health")
    assert response.status_code == 200


def test_health_endpoint_returns_ok_status():
    """Test that /health returns status: ok"""
    response = client.get("/health")
    data = response.json()
    assert data["status"] == "ok"


def test_version_endpoint_reports_name_and_version():
    """Test that /version identifies the app"""
    data = client.get("/version").json()
    assert data["name"] == "Community Hub"
    assert data["full"].startswith("Community Hub ")
