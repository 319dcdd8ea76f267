"""
Tests for application-level wiring: health checks and Sentry scrubbing.
"""
from unittest.mock import patch

from fastapi.testclient import TestClient

from main import app, _scrub_event

client = TestClient(app)


def test_ping():
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_reports_database():
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["email_enabled"] is False
    assert "X-Process-Time" in response.headers


def test_health_unavailable_when_database_down():
    with patch("main.check_db_connection", return_value=False):
        response = client.get("/health")
    assert response.status_code == 503
    assert response.json()["database"] == "unavailable"


def test_sentry_events_drop_credentials():
    event = {
        "request": {
            "headers": {
                "Authorization": "Bearer abc",
                "X-Webhook-Secret": "s3cret",
                "Content-Type": "application/json",
            }
        }
    }
    scrubbed = _scrub_event(event, None)
    assert scrubbed["request"]["headers"] == {"Content-Type": "application/json"}


def test_sentry_event_without_request_passes_through():
    event = {"message": "boom"}
    assert _scrub_event(event, None) == {"message": "boom"}
