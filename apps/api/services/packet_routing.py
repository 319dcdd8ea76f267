"""
Packet Routing Engine

Maps a client's classification and intake answers to the ordered list of
packet types they need, and creates one PENDING Packet per type.

Routing is idempotent per (client, type) among live packets: re-submitting an
intake reuses an existing packet of the same type unless that packet FAILED,
in which case a fresh PENDING packet is created and the failed row is left
alone.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from models import Client, ClientType, Packet, PacketStatus, PacketType
from services.packet_templates import get_default_template

logger = logging.getLogger(__name__)

ADULT_AGE = 18

WELLNESS_WORKOUT_FOCUS = {"strength", "endurance", "mobility"}
WELLNESS_NUTRITION_FOCUS = {"weight", "energy"}


@dataclass
class RoutingResult:
    packet_ids: List[UUID] = field(default_factory=list)
    packet_types: List[str] = field(default_factory=list)
    # Subset of packet_ids created by this call (the rest were reused)
    created_ids: List[UUID] = field(default_factory=list)


def _is_youth_athlete(responses: Dict[str, Any]) -> bool:
    if responses.get("school-grade"):
        return True
    age = responses.get("age")
    try:
        return age is not None and int(str(age)) < ADULT_AGE
    except ValueError:
        return False


def determine_packet_types(client_type: str, responses: Dict[str, Any]) -> List[str]:
    """
    Ordered, duplicate-free packet types for a classification.

    Unknown classifications (and any path that would yield nothing) get the
    introduction packet.
    """
    packets: List[str] = []

    if client_type == ClientType.NUTRITION_ONLY.value:
        packets.append(PacketType.NUTRITION.value)

    elif client_type == ClientType.WORKOUT_ONLY.value:
        packets.append(PacketType.WORKOUT.value)

    elif client_type == ClientType.FULL_PROGRAM.value:
        packets.extend([PacketType.INTRO.value, PacketType.NUTRITION.value, PacketType.WORKOUT.value])

    elif client_type == ClientType.ATHLETE_PERFORMANCE.value:
        if _is_youth_athlete(responses):
            packets.append(PacketType.YOUTH.value)
        else:
            packets.append(PacketType.PERFORMANCE.value)
        if responses.get("include-nutrition") == "yes":
            packets.append(PacketType.NUTRITION.value)

    elif client_type == ClientType.YOUTH.value:
        packets.append(PacketType.YOUTH.value)

    elif client_type == ClientType.GENERAL_WELLNESS.value:
        packets.append(PacketType.WELLNESS.value)
        focus = responses.get("wellness-focus")
        if isinstance(focus, list):
            if WELLNESS_WORKOUT_FOCUS.intersection(focus):
                packets.append(PacketType.WORKOUT.value)
            if WELLNESS_NUTRITION_FOCUS.intersection(focus):
                packets.append(PacketType.NUTRITION.value)

    elif client_type == ClientType.SPECIAL_SITUATION.value:
        packets.append(PacketType.RECOVERY.value)
        goals = responses.get("recovery-goals")
        if isinstance(goals, str) and "nutrition" in goals.lower():
            packets.append(PacketType.NUTRITION.value)

    if not packets:
        packets.append(PacketType.INTRO.value)

    return packets


def _find_live_packet(db: Session, client_id: UUID, packet_type: str) -> Optional[Packet]:
    return (
        db.query(Packet)
        .filter(
            Packet.client_id == client_id,
            Packet.type == packet_type,
            Packet.status != PacketStatus.FAILED.value,
        )
        .order_by(Packet.created_at.desc())
        .first()
    )


def route_packets(db: Session, client: Client, client_type: str, responses: Dict[str, Any]) -> RoutingResult:
    """
    Ensure one live packet per required type. New rows are flushed, not
    committed; the caller owns the transaction.
    """
    result = RoutingResult()

    for packet_type in determine_packet_types(client_type, responses):
        packet = _find_live_packet(db, client.id, packet_type)
        if packet is None:
            template = get_default_template(db, packet_type, client_type)
            packet = Packet(
                client_id=client.id,
                type=packet_type,
                status=PacketStatus.PENDING.value,
                retry_count=0,
                version=1,
                content=None,
                template_id=template.id if template else None,
                generated_by="SYSTEM",
                generation_method="TEMPLATE",
            )
            db.add(packet)
            db.flush()
            result.created_ids.append(packet.id)
        else:
            logger.info(
                f"Reusing {packet_type} packet {packet.id} for client {client.id}",
                extra={"extra_fields": {"packet_id": str(packet.id), "status": packet.status}},
            )

        result.packet_ids.append(packet.id)
        result.packet_types.append(packet_type)

    logger.info(
        f"Routed {len(result.packet_ids)} packets for client {client.id} ({client_type})",
        extra={"extra_fields": {
            "client_id": str(client.id),
            "packet_types": result.packet_types,
            "created": len(result.created_ids),
        }},
    )
    return result
