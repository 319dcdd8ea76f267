"""
Packet template lookup.

Templates are managed by staff tooling; this module only resolves the default
layout for a (packet type, classification) pair and enforces that at most one
template per pair is marked default.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from models import PacketTemplate

logger = logging.getLogger(__name__)


def get_default_template(db: Session, packet_type: str, client_type: Optional[str] = None) -> Optional[PacketTemplate]:
    """
    Default template for the pair, falling back to the type-wide default
    (client_type NULL) when no classification-specific one exists.
    """
    if client_type is not None:
        specific = (
            db.query(PacketTemplate)
            .filter(
                PacketTemplate.packet_type == packet_type,
                PacketTemplate.client_type == client_type,
                PacketTemplate.is_default.is_(True),
            )
            .first()
        )
        if specific is not None:
            return specific

    return (
        db.query(PacketTemplate)
        .filter(
            PacketTemplate.packet_type == packet_type,
            PacketTemplate.client_type.is_(None),
            PacketTemplate.is_default.is_(True),
        )
        .first()
    )


def set_default_template(db: Session, template_id: UUID) -> PacketTemplate:
    template = db.query(PacketTemplate).filter(PacketTemplate.id == template_id).first()
    if template is None:
        raise NotFoundError("Packet template", str(template_id))

    pair_filter = [PacketTemplate.packet_type == template.packet_type, PacketTemplate.id != template.id]
    if template.client_type is None:
        pair_filter.append(PacketTemplate.client_type.is_(None))
    else:
        pair_filter.append(PacketTemplate.client_type == template.client_type)

    cleared = (
        db.query(PacketTemplate)
        .filter(*pair_filter, PacketTemplate.is_default.is_(True))
        .update({PacketTemplate.is_default: False}, synchronize_session="fetch")
    )
    template.is_default = True
    db.commit()

    logger.info(
        f"Template {template.id} is now default for {template.packet_type}/{template.client_type or '*'}",
        extra={"extra_fields": {"cleared_defaults": cleared}},
    )
    return template
