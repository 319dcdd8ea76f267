"""
Staff router: failed packets, intake funnel, template defaults.
"""
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.auth import require_admin, require_staff
from core.database import get_db
from models import User
from schemas import FailedPacketItem, FailedPacketsResponse, FunnelSummaryResponse
from services import intake_analytics, packet_status
from services.packet_templates import set_default_template

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.get("/packets/failed", response_model=FailedPacketsResponse)
def list_failed_packets(
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """FAILED packets needing attention, most recently updated first."""
    packets = packet_status.failed_packets(db, limit=limit)
    items = [
        FailedPacketItem(
            id=p.id,
            type=p.type,
            client_id=p.client_id,
            client_name=p.client.full_name,
            client_email=p.client.email,
            last_error=p.last_error,
            retry_count=p.retry_count,
            updated_at=p.updated_at,
        )
        for p in packets
    ]
    return FailedPacketsResponse(packets=items, total=len(items))


@router.get("/intake/analytics", response_model=FunnelSummaryResponse)
def intake_funnel(
    days: int = Query(30, ge=1, le=365),
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return intake_analytics.funnel_summary(db, days=days)


@router.put("/templates/{template_id}/default")
def make_template_default(
    template_id: UUID,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    template = set_default_template(db, template_id)
    return {
        "success": True,
        "template": {
            "id": str(template.id),
            "packet_type": template.packet_type,
            "client_type": template.client_type,
            "is_default": template.is_default,
        },
    }
