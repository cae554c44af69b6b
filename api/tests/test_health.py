from __future__ import annotations


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["uptime_s"] >= 0


def test_redis_health_without_redis(client):
    response = client.get("/health/redis")
    assert response.status_code == 503
    assert response.json()["detail"] == "Redis unavailable"


def test_readiness_reports_fallback_on_sqlite(client):
    response = client.get("/health/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": True, "atomic_increment": False}
