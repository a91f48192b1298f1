from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlmodel import create_engine

from rbac_engine import main as app_main
from rbac_engine.infra.db import RbacStore


def _client(tmp_path: Path) -> TestClient:
    test_engine = create_engine(f"sqlite:///{tmp_path / 'health_test.db'}")
    return TestClient(app_main.create_app(store=RbacStore(test_engine)))


def test_healthz_ok() -> None:
    client = TestClient(app_main.app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_ok_when_dependencies_ready(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda _engine: True)
    monkeypatch.setattr(app_main, "check_redis_ready", lambda: True)
    response = _client(tmp_path).get("/readyz")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_readyz_reports_failed_dependency(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(app_main, "check_redis_ready", lambda: False)
    response = _client(tmp_path).get("/readyz")
    assert response.status_code == 503
    assert response.json()["detail"]["checks"] == {"db": "ok", "redis": "fail"}
