from __future__ import annotations

from fastapi.testclient import TestClient

from scope_engine import main as app_main


def test_healthz_ok() -> None:
    client = TestClient(app_main.app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_ok_when_dependencies_ready(monkeypatch) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)
    monkeypatch.setattr(app_main, "check_redis_ready", lambda: True)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "checks": {"db": "ok", "redis": "ok"}}


def test_readyz_degraded_without_redis(monkeypatch) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)
    monkeypatch.setattr(app_main, "check_redis_ready", lambda: False)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json()["checks"]["redis"] == "degraded"


def test_readyz_fails_without_database(monkeypatch) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda: False)
    monkeypatch.setattr(app_main, "check_redis_ready", lambda: True)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 503
    assert response.json()["detail"]["checks"]["db"] == "fail"
