"""Integration tests for health endpoints."""

from zfs_replicator import __version__


class TestHealthEndpoints:
    """Test suite for health check endpoints."""

    def test_health_check(self, test_client):
        """Test basic health check endpoint."""
        response = test_client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__

    def test_health_live(self, test_client):
        response = test_client.get("/api/v1/health/live")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    def test_health_ready(self, test_client):
        """Test readiness against the test database."""
        response = test_client.get("/api/v1/health/ready")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"
        assert response.json()["services"] == "initialized"

    def test_root_redirects_to_docs(self, test_client):
        response = test_client.get("/", follow_redirects=False)
        assert response.status_code in (302, 307)
        assert response.headers["location"] == "/docs"

    def test_services_unavailable_without_container(self, test_client):
        """Test that operator endpoints answer 503 before services are wired."""
        test_client.app.state.container = None

        response = test_client.get("/api/v1/replication/pending")

        assert response.status_code == 503

    def test_health_ready_without_container(self, test_client):
        """Test that readiness fails until the replication services are wired."""
        test_client.app.state.container = None

        response = test_client.get("/api/v1/health/ready")

        assert response.status_code == 503
        assert "not initialized" in response.json()["detail"]
