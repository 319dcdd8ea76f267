"""
Read-side packet queries: a client's packet progress and the staff view of
failed packets.
"""
from typing import Dict, List
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from models import Packet, PacketStatus

# Out of the generation pipeline, whether or not staff have reviewed them yet
COMPLETED_STATES = {PacketStatus.READY.value, PacketStatus.APPROVED.value, PacketStatus.SENT.value}


def client_packets(db: Session, client_id: UUID) -> List[Packet]:
    return (
        db.query(Packet)
        .filter(Packet.client_id == client_id)
        .order_by(Packet.created_at.asc())
        .all()
    )


def summarize(packets: List[Packet]) -> Dict[str, int]:
    total = len(packets)
    completed = sum(1 for p in packets if p.status in COMPLETED_STATES)
    failed = sum(1 for p in packets if p.status == PacketStatus.FAILED.value)
    generating = sum(1 for p in packets if p.status == PacketStatus.GENERATING.value)
    pending = sum(1 for p in packets if p.status == PacketStatus.PENDING.value)
    return {
        "total": total,
        "completed": completed,
        "failed": failed,
        "generating": generating,
        "pending": pending,
        "progress": round(100 * (completed + failed) / total) if total else 0,
    }


def failed_packets(db: Session, limit: int = 100) -> List[Packet]:
    """FAILED packets, most recently updated first, with their clients loaded."""
    return (
        db.query(Packet)
        .options(joinedload(Packet.client))
        .filter(Packet.status == PacketStatus.FAILED.value)
        .order_by(Packet.updated_at.desc())
        .limit(limit)
        .all()
    )
