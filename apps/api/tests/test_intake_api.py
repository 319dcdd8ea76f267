"""
API tests for the intake endpoints.
"""
import json

from fastapi.testclient import TestClient

from main import app
from models import Client, IntakeAnalytics, Packet

client = TestClient(app)


def test_progress_requires_auth():
    assert client.get("/v1/intake/progress").status_code == 401


def test_progress_empty_then_saved(client_headers):
    resp = client.get("/v1/intake/progress", headers=client_headers)
    assert resp.status_code == 200
    assert resp.json() == {"progress": None}

    resp = client.post("/v1/intake/progress", json={
        "selected_path": "GENERAL_WELLNESS",
        "current_step": 2,
        "total_steps": 7,
        "responses": {"sleep": "<6 hours"},
    }, headers=client_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["is_new_intake"] is True
    assert body["progress"]["responses"] == {"sleep": "&lt;6 hours"}

    resp = client.get("/v1/intake/progress", headers=client_headers)
    progress = resp.json()["progress"]
    assert progress["current_step"] == 2
    assert progress["selected_path"] == "GENERAL_WELLNESS"


def test_progress_validation_error(client_headers):
    resp = client.post("/v1/intake/progress", json={
        "current_step": 9, "total_steps": 3, "responses": {},
    }, headers=client_headers)

    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_submit_full_program(db_session, client_headers, client_user):
    resp = client.post("/v1/intake/submit", json={
        "classification": "FULL_PROGRAM",
        "responses": {"full-name": "Jane Doe", "primary-goal": "Run a 10k"},
    }, headers=client_headers)

    assert resp.status_code == 201
    body = resp.json()
    assert body["client"]["full_name"] == "Jane Doe"
    assert body["client"]["client_type"] == "FULL_PROGRAM"
    assert [p["type"] for p in body["packets"]] == ["INTRO", "NUTRITION", "WORKOUT"]
    assert all(p["status"] == "PENDING" for p in body["packets"])
    assert "3 packet(s)" in body["message"]

    owned = db_session.query(Client).filter(Client.user_id == client_user.id).one()
    assert db_session.query(Packet).filter(Packet.client_id == owned.id).count() == 3


def test_submit_unknown_classification(db_session, client_headers):
    resp = client.post("/v1/intake/submit", json={
        "classification": "SOMETHING", "responses": {},
    }, headers=client_headers)

    assert resp.status_code == 400
    assert resp.json()["error"]["field"] == "classification"
    assert db_session.query(Packet).count() == 0


def test_submit_missing_responses_is_400(client_headers):
    resp = client.post("/v1/intake/submit", json={"classification": "YOUTH"}, headers=client_headers)
    assert resp.status_code == 400


def test_analytics_start_and_beacon_abandon(db_session):
    resp = client.post("/v1/intake/analytics/start", json={"clientType": "YOUTH"})
    assert resp.status_code == 201
    analytics_id = resp.json()["analytics_id"]

    # navigator.sendBeacon posts JSON as text/plain
    resp = client.post(
        "/v1/intake/analytics",
        content=json.dumps({"clientType": "YOUTH", "dropOffStep": 4}),
        headers={"Content-Type": "text/plain;charset=UTF-8"},
    )
    assert resp.status_code == 200
    assert resp.json()["closed"] is True

    record = db_session.query(IntakeAnalytics).one()
    assert str(record.id) == analytics_id
    assert record.drop_off_step == 4
    assert record.abandoned_at is not None


def test_abandon_without_open_record():
    resp = client.post("/v1/intake/analytics", json={"client_type": "YOUTH", "drop_off_step": 1})

    assert resp.status_code == 200
    assert resp.json()["closed"] is False


def test_abandon_rejects_bad_payloads():
    assert client.post("/v1/intake/analytics", content=b"nope").status_code == 400
    assert client.post("/v1/intake/analytics", json={"clientType": "YOUTH"}).status_code == 400
    assert client.post("/v1/intake/analytics", json={"clientType": "BOGUS", "dropOffStep": 1}).status_code == 400
