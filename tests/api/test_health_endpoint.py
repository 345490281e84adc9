from __future__ import annotations

from fastapi.testclient import TestClient

from keycloak_bridge.db import redis as redis_module


def test_health_returns_ok(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] in ("ok", "degraded")
    assert "redis" in body["checks"]


def test_health_reports_redis_not_configured(client: TestClient) -> None:
    if redis_module.redis_pool is not None:
        return
    assert client.get("/health").json() == {
        "status": "ok",
        "checks": {"redis": "not_configured"},
    }


def test_ready_without_redis(client: TestClient) -> None:
    if redis_module.redis_pool is not None:
        return
    assert client.get("/ready").status_code == 200


def test_unknown_route_is_404(client: TestClient) -> None:
    assert client.get("/nope").status_code == 404
