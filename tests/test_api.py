"""Tests for the HTTP control app."""

import time

import pytest
from fastapi.testclient import TestClient

from app.backend.main import app
from app.backend.services.controller_service import set_controller
from framework.controller import AutonomousController
from sql import queries


def wait_for_first_snapshot(api, timeout: float = 3.0):
    deadline = time.monotonic() + timeout
    while api.get("/api/metrics/latest").status_code != 200:
        assert time.monotonic() < deadline, "no snapshot collected"
        time.sleep(0.02)


@pytest.fixture
def api(settings, fake_client, monkeypatch):
    monkeypatch.delenv("AUTOPILOT_AUTOSTART", raising=False)
    fake_client.responses[queries.SLOW_ACTIVE_QUERIES] = [
        {"pid": 1, "query": "SELECT 1", "running_seconds": 50.0},
    ]
    controller = AutonomousController(settings, db_client=fake_client)
    set_controller(controller)
    with TestClient(app) as client:
        yield client
    set_controller(None)


def test_root_lists_endpoints(api):
    body = api.get("/").json()
    assert "/api/reports/{name}" in body["endpoints"]


def test_status_before_start(api):
    assert api.get("/api/system/status").json()["status"] == "initializing"
    health = api.get("/api/health").json()
    assert health["status"] == "healthy"
    assert api.get("/api/metrics/latest").status_code == 404


def test_start_and_stop(api):
    started = api.post("/api/system/start")
    assert started.status_code == 200
    assert started.json()["status"] == "running"

    again = api.post("/api/system/start")
    assert again.status_code == 409
    assert again.json()["error"] == "ControllerStateError"
    wait_for_first_snapshot(api)

    stopped = api.post("/api/system/stop")
    assert stopped.json()["status"] == "stopped"
    latest = api.get("/api/metrics/latest")
    assert latest.status_code == 200
    assert latest.json()["performance_score"] == 90


def test_decisions_and_reports(api):
    api.post("/api/system/start")
    wait_for_first_snapshot(api)
    api.post("/api/system/stop")

    decisions = api.get("/api/decisions", params={"outcome": "success"}).json()
    assert len(decisions) == 1
    assert api.get("/api/decisions/recommendations", params={"requires_approval": True}).json() == []

    names = api.get("/api/reports").json()["reports"]
    assert "schema_comparison" in names
    report = api.get("/api/reports/decisions").json()
    assert report["data"]["total"] == 1
    assert api.get("/api/reports/nonexistent").status_code == 404


def test_emergency_stop(api):
    response = api.post("/api/system/emergency-stop", json={"reason": "bad migration in flight"})
    assert response.status_code == 200
    body = response.json()
    assert body["emergency_mode"] is True
    assert body["last_action"] == "emergency_mode: bad migration in flight"
    assert api.get("/api/health").json()["status"] == "degraded"
    assert api.post("/api/system/start").status_code == 409
