"""
Intake Submission Service

Turns a completed intake into a persisted client profile and its packet set:

1. validate the classification
2. sanitize answers
3. create or update the Client
4. route packets (one live PENDING packet per required type)

Steps 1-4 commit together. Afterwards, and strictly best-effort, the open
funnel record is closed, staff are notified, and new packets are handed to
the generation worker.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from models import Client, Packet, User, utcnow
from services import intake_analytics
from services.clients import ensure_client_for_user
from services.intake_progress import mark_complete
from services.packet_notifications import NotificationDispatcher
from services.packet_routing import route_packets
from services.sanitizer import sanitize_responses
from services.side_effects import SideEffectOutcome, attempt

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    client: Client
    packets: List[Packet]
    side_effects: List[SideEffectOutcome] = field(default_factory=list)


def _answer(responses: Dict[str, Any], key: str) -> Optional[str]:
    value = responses.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _default_enqueue(packet_ids: Iterable[UUID]) -> List[str]:
    from tasks.packet_tasks import enqueue_packet_generation

    return enqueue_packet_generation(packet_ids)


def submit_intake(
    db: Session,
    user: User,
    classification: str,
    raw_responses: Dict[str, Any],
    notifier: Optional[NotificationDispatcher] = None,
    enqueue: Callable[[Iterable[UUID]], List[str]] = _default_enqueue,
) -> SubmissionResult:
    intake_analytics.validate_client_type(classification, field="classification")
    if not isinstance(raw_responses, dict):
        raise ValidationError("responses must be an object", field="responses")

    responses = sanitize_responses(raw_responses)

    client = ensure_client_for_user(db, user, client_type=classification)
    client.client_type = classification
    client.intake_responses = responses
    client.intake_completed_at = utcnow()
    client.full_name = _answer(responses, "full-name") or client.full_name
    client.phone = _answer(responses, "phone") or client.phone
    client.goal = _answer(responses, "primary-goal") or client.goal

    mark_complete(db, client.id, classification, responses)
    routing = route_packets(db, client, classification, responses)
    db.commit()

    logger.info(
        f"Intake submitted for client {client.id} ({classification})",
        extra={"extra_fields": {
            "client_id": str(client.id),
            "client_type": classification,
            "packet_types": routing.packet_types,
        }},
    )

    packets_by_id = {
        p.id: p for p in db.query(Packet).filter(Packet.id.in_(routing.packet_ids)).all()
    }
    packets = [packets_by_id[pid] for pid in routing.packet_ids]

    side_effects = [_close_funnel_record(db, classification)]

    notifier = notifier or NotificationDispatcher(db)
    side_effects.append(notifier.notify_intake_complete(client.id, routing.packet_types))

    if routing.created_ids:
        side_effects.append(attempt(
            "dispatch_generation",
            lambda: f"{len(enqueue(routing.created_ids))} queued",
            {"client_id": str(client.id)},
        ))
    else:
        side_effects.append(SideEffectOutcome.skip("dispatch_generation", "no new packets"))

    return SubmissionResult(client=client, packets=packets, side_effects=side_effects)


def _close_funnel_record(db: Session, classification: str) -> SideEffectOutcome:
    name = "close_funnel_record"
    try:
        record = intake_analytics.record_completion(db, classification)
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to close intake analytics for {classification}: {e}")
        return SideEffectOutcome.fail(name, str(e))
    if record is None:
        return SideEffectOutcome.skip(name, "no open record")
    return SideEffectOutcome.ok(name, detail=str(record.id))
