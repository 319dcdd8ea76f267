"""
Tests for the generation hand-off task. HTTP and the broker are mocked.
"""
import logging
from unittest.mock import MagicMock, patch

import pytest
import requests

from core.config import settings
from models import PacketStatus
from tasks.packet_tasks import (
    build_generation_payload,
    dispatch_packet_generation_task,
    enqueue_packet_generation,
)


@pytest.fixture
def pending_packet(make_client, make_packet):
    client = make_client(client_type="NUTRITION_ONLY")
    return make_packet(client, "NUTRITION", PacketStatus.PENDING.value)


def test_payload(pending_packet, monkeypatch):
    monkeypatch.setattr(settings, "PUBLIC_API_BASE_URL", "https://api.example.com/")

    payload = build_generation_payload(pending_packet)

    assert payload == {
        "packetId": str(pending_packet.id),
        "clientId": str(pending_packet.client_id),
        "packetType": "NUTRITION",
        "clientType": "NUTRITION_ONLY",
        "callbackUrl": "https://api.example.com/v1/packets/update",
    }


def test_dispatch_posts_to_worker(pending_packet, monkeypatch):
    monkeypatch.setattr(settings, "GENERATION_WORKER_URL", "https://worker.example.com/generate")
    response = MagicMock()

    with patch("tasks.packet_tasks.requests.post", return_value=response) as post:
        result = dispatch_packet_generation_task.apply(args=[str(pending_packet.id)]).get()

    assert result == {"status": "dispatched", "packet_id": str(pending_packet.id)}
    post.assert_called_once()
    assert post.call_args.kwargs["json"]["packetId"] == str(pending_packet.id)
    response.raise_for_status.assert_called_once()


def test_dispatch_without_worker_is_skipped(pending_packet, monkeypatch):
    monkeypatch.setattr(settings, "GENERATION_WORKER_URL", None)

    with patch("tasks.packet_tasks.requests.post") as post:
        result = dispatch_packet_generation_task.apply(args=[str(pending_packet.id)]).get()

    assert result["status"] == "skipped"
    post.assert_not_called()


def test_dispatch_for_deleted_packet_is_skipped(monkeypatch):
    from uuid import uuid4

    monkeypatch.setattr(settings, "GENERATION_WORKER_URL", "https://worker.example.com/generate")

    with patch("tasks.packet_tasks.requests.post") as post:
        result = dispatch_packet_generation_task.apply(args=[str(uuid4())]).get()

    assert result["reason"] == "packet not found"
    post.assert_not_called()


def test_dispatch_http_error_propagates(pending_packet, monkeypatch):
    monkeypatch.setattr(settings, "GENERATION_WORKER_URL", "https://worker.example.com/generate")

    with patch("tasks.packet_tasks.requests.post", side_effect=requests.ConnectionError("refused")):
        result = dispatch_packet_generation_task.apply(args=[str(pending_packet.id)])

    assert result.failed()


def test_enqueue_disabled(monkeypatch):
    from uuid import uuid4

    monkeypatch.setattr(settings, "PACKET_DISPATCH_ENABLED", False)

    with patch.object(dispatch_packet_generation_task, "delay") as delay:
        assert enqueue_packet_generation([uuid4()]) == []
    delay.assert_not_called()


def test_enqueue_continues_past_broker_errors(monkeypatch):
    from uuid import uuid4

    monkeypatch.setattr(settings, "PACKET_DISPATCH_ENABLED", True)
    first, second = uuid4(), uuid4()

    with patch.object(dispatch_packet_generation_task, "delay", side_effect=[ConnectionError("redis down"), None]):
        queued = enqueue_packet_generation([first, second])

    assert queued == [str(second)]


def test_dispatch_warns_when_type_cannot_be_reported_back(make_client, make_packet, monkeypatch, caplog):
    packet = make_packet(make_client(client_type="ATHLETE_PERFORMANCE"), "PERFORMANCE", PacketStatus.PENDING.value)
    monkeypatch.setattr(settings, "GENERATION_WORKER_URL", "https://worker.example.com/generate")

    with patch("tasks.packet_tasks.requests.post", return_value=MagicMock()), \
            caplog.at_level(logging.WARNING, logger="tasks.packet_tasks"):
        result = dispatch_packet_generation_task.apply(args=[str(packet.id)]).get()

    assert result["status"] == "dispatched"
    assert any("cannot report its outcome" in r.getMessage() for r in caplog.records)


def test_dispatch_of_reportable_type_does_not_warn(pending_packet, monkeypatch, caplog):
    monkeypatch.setattr(settings, "GENERATION_WORKER_URL", "https://worker.example.com/generate")

    with patch("tasks.packet_tasks.requests.post", return_value=MagicMock()), \
            caplog.at_level(logging.WARNING, logger="tasks.packet_tasks"):
        dispatch_packet_generation_task.apply(args=[str(pending_packet.id)]).get()

    assert not any("cannot report its outcome" in r.getMessage() for r in caplog.records)
