from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from quickcal.app import create_app
from quickcal.app_logger import log_event

from .conftest import make_draft


@pytest.fixture
def client(scheduler):
    return TestClient(create_app(scheduler))


def test_schedule_created_directly(client, calendar):
    response = client.post("/api/schedule", json={"text": "dinner on march 1st at 7pm"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["event"]["id"] == "evt-1"
    assert calendar.inserted[0].title == "Dinner"

    history = client.get("/api/history").json()
    assert [entry["id"] for entry in history] == ["evt-1"]


def test_empty_input_is_an_error(client):
    body = client.post("/api/schedule", json={}).json()

    assert body["status"] == "error"
    assert body["session_id"] is None


def test_clarification_round_trip(client, interpreter, calendar):
    interpreter.draft = make_draft(confidence=0.3)

    first = client.post("/api/schedule", json={"text": "dinner sometime"}).json()
    assert first["status"] == "needs_clarification"
    assert first["question"].startswith("Create this event?")
    session_id = first["session_id"]

    preview = client.get(f"/api/schedule/{session_id}").json()
    assert preview["question_type"] == "confirm_before_create"
    assert preview["draft"]["title"] == "Dinner"

    done = client.post(f"/api/schedule/{session_id}/answer", json={"text": "yes"}).json()
    assert done["status"] == "success"
    assert len(calendar.inserted) == 1
    assert client.get(f"/api/schedule/{session_id}").status_code == 404


def test_cancel_session(client, interpreter, calendar):
    interpreter.draft = make_draft(confidence=0.3)
    session_id = client.post("/api/schedule", json={"text": "dinner"}).json()["session_id"]

    cancelled = client.post(f"/api/schedule/{session_id}/cancel").json()
    assert cancelled["status"] == "cancelled"

    late = client.post(f"/api/schedule/{session_id}/answer", json={"text": "yes"}).json()
    assert late["status"] == "error"
    assert calendar.inserted == []


def test_unknown_session_preview_is_404(client):
    assert client.get("/api/schedule/nope").status_code == 404


def test_settings_roundtrip(client):
    settings = client.get("/api/settings").json()
    assert settings["input_mode"] == "ai"

    updated = client.put("/api/settings", json={"input_mode": "direct", "default_duration_minutes": 45})
    assert updated.status_code == 200
    assert updated.json()["default_duration_minutes"] == 45
    assert client.get("/api/settings").json()["input_mode"] == "direct"


def test_settings_rejects_invalid_values(client):
    assert client.put("/api/settings", json={"default_duration_minutes": 0}).status_code == 422
    assert client.put("/api/settings", json={"input_mode": "voice"}).status_code == 422


def test_debug_logs(client):
    log_event("info", "test.marker", {"value": 1})

    body = client.get("/api/debug/logs", params={"limit": 1}).json()

    assert [entry["event"] for entry in body["entries"]] == ["test.marker"]
    assert client.get("/api/debug/logs", params={"limit": 0}).status_code == 422
