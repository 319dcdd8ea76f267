"""
Packet generation hand-off.

After routing, each new packet is handed to the external generation worker.
The worker later reports back through POST /v1/packets/update; nothing here
changes packet state.

Task contract:
- Payload: {packetId, clientId, packetType, clientType, callbackUrl}
- Retry: up to 3 attempts with exponential backoff on HTTP/network errors
- No worker configured: logged and skipped
"""
import logging
from typing import Dict, Iterable, List
from uuid import UUID

import requests
from celery import Task

from core.config import settings
from core.database import get_db_sync
from models import Packet
from schemas import CALLBACK_PACKET_TYPES
from tasks import celery_app

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/v1/packets/update"


def build_generation_payload(packet: Packet) -> Dict:
    return {
        "packetId": str(packet.id),
        "clientId": str(packet.client_id),
        "packetType": packet.type,
        "clientType": packet.client.client_type,
        "callbackUrl": f"{settings.PUBLIC_API_BASE_URL.rstrip('/')}{CALLBACK_PATH}",
    }


@celery_app.task(
    name="tasks.dispatch_packet_generation",
    bind=True,
    autoretry_for=(requests.RequestException,),
    retry_backoff=True,
    retry_backoff_max=60,
    max_retries=3,
)
def dispatch_packet_generation_task(self: Task, packet_id: str) -> Dict:
    """POST one packet to the generation worker."""
    if not settings.GENERATION_WORKER_URL:
        logger.info(f"No generation worker configured; packet {packet_id} not dispatched")
        return {"status": "skipped", "packet_id": packet_id, "reason": "no worker configured"}

    db = get_db_sync()
    try:
        packet = db.query(Packet).filter(Packet.id == UUID(packet_id)).first()
        if packet is None:
            logger.warning(f"Packet {packet_id} disappeared before dispatch")
            return {"status": "skipped", "packet_id": packet_id, "reason": "packet not found"}
        payload = build_generation_payload(packet)
    finally:
        db.close()

    if payload["packetType"] not in CALLBACK_PACKET_TYPES:
        # The status callback only accepts INTRO, NUTRITION and WORKOUT
        logger.warning(
            f"Packet {packet_id} is {payload['packetType']}; the worker cannot report its outcome, "
            f"so it stays PENDING until staff intervene",
            extra={"extra_fields": {"packet_id": packet_id, "packet_type": payload["packetType"]}},
        )

    r = requests.post(
        settings.GENERATION_WORKER_URL,
        json=payload,
        timeout=settings.GENERATION_WORKER_TIMEOUT_S,
    )
    r.raise_for_status()

    logger.info(
        f"Dispatched packet {packet_id} for generation",
        extra={"extra_fields": {
            "packet_id": packet_id,
            "packet_type": payload["packetType"],
            "attempt": self.request.retries + 1,
        }},
    )
    return {"status": "dispatched", "packet_id": packet_id}


def enqueue_packet_generation(packet_ids: Iterable[UUID]) -> List[str]:
    """
    Queue hand-off for each packet. Returns the ids that were queued; a
    broker failure is logged and never propagates to the caller.
    """
    queued: List[str] = []
    if not settings.PACKET_DISPATCH_ENABLED:
        logger.info("Packet dispatch disabled; not enqueueing generation")
        return queued

    for packet_id in packet_ids:
        try:
            dispatch_packet_generation_task.delay(str(packet_id))
            queued.append(str(packet_id))
        except Exception as e:
            logger.error(
                f"Failed to enqueue generation for packet {packet_id}: {e}",
                extra={"extra_fields": {"packet_id": str(packet_id)}},
            )
    return queued
