from fastapi.testclient import TestClient
from stockscan.main import app


def test_root_and_info():
    client = TestClient(app)
    resp = client.get('/')
    assert resp.status_code == 200
    assert resp.json()["status"] == "running"

    info = client.get('/info').json()
    assert info["endpoints"]["webhook"] == "/esp32-webhook"


def test_health_endpoints():
    client = TestClient(app)
    for endpoint in ["/health", "/health/live"]:
        resp = client.get(endpoint)
        assert resp.status_code == 200

    assert client.get("/health").json()["status"] == "pass"


def test_readiness_reports_database_check():
    client = TestClient(app)
    resp = client.get("/health/ready")
    assert resp.status_code in [200, 503]
    data = resp.json()
    assert data["checks"]["database:connectivity"]["status"] == "pass"


def test_metrics_endpoint():
    client = TestClient(app)
    resp = client.get("/metrics")
    assert resp.status_code == 200
    data = resp.json()
    assert "uptime_seconds" in data
    assert data["system"]["num_threads"] >= 1
