"""
Packets router

- POST /v1/packets/update: generation worker callback (shared-secret auth)
- GET  /v1/packets/status: the signed-in client's packets and progress
- GET  /v1/packets/{id}: one packet (owner or staff)
- GET  /v1/packets/{id}/download: the rendered PDF (owner or staff)
- PUT  /v1/packets/{id}/edit, POST /v1/packets/{id}/send, DELETE /v1/packets/{id}: staff
- POST /v1/packets/{id}/regenerate-pdf: staff
"""
from dataclasses import asdict
from typing import Optional
from uuid import UUID
import logging
import re

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from pydantic import ValidationError as PayloadError
from sqlalchemy.orm import Session

from core.auth import STAFF_ROLES, get_current_user, require_staff
from core.database import get_db
from core.exceptions import AuthenticationError, NotFoundError, ValidationError
from core.security import WEBHOOK_SECRET_HEADER, SharedSecretVerifier, get_webhook_verifier
from models import Packet, User, packet_type_label
from schemas import (
    PacketCallback,
    PacketCallbackPacket,
    PacketCallbackResponse,
    PacketDeleteResponse,
    PacketEditRequest,
    PacketMutationResponse,
    PacketResponse,
    PacketStatusItem,
    PacketStatusResponse,
    PacketStatusSummary,
)
from services import packet_status
from services.clients import get_client_for_user
from services.packet_lifecycle import PacketLifecycleManager, TransitionResult
from services.pdf_export import PdfArtifactManager, get_pdf_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/packets", tags=["packets"])


def get_lifecycle_manager(
    db: Session = Depends(get_db),
    pdf_manager: PdfArtifactManager = Depends(get_pdf_manager),
) -> PacketLifecycleManager:
    return PacketLifecycleManager(db, pdf_manager=pdf_manager)


def _visible_packet(db: Session, packet_id: UUID, current_user: User) -> Packet:
    """The packet if the caller owns it or is staff; 404 otherwise."""
    packet = db.query(Packet).filter(Packet.id == packet_id).first()
    if packet is None:
        raise NotFoundError("Packet", str(packet_id))
    if current_user.role not in STAFF_ROLES and packet.client.user_id != current_user.id:
        # Don't reveal other clients' packets exist
        raise NotFoundError("Packet", str(packet_id))
    return packet


def _mutation_response(result: TransitionResult, message: Optional[str] = None) -> PacketMutationResponse:
    return PacketMutationResponse(
        packet=PacketResponse.model_validate(result.packet),
        side_effects=[asdict(o) for o in result.side_effects],
        message=message,
    )


@router.post("/update", response_model=PacketCallbackResponse)
async def packet_status_callback(
    request: Request,
    x_webhook_secret: Optional[str] = Header(None, alias=WEBHOOK_SECRET_HEADER),
    verifier: SharedSecretVerifier = Depends(get_webhook_verifier),
    manager: PacketLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    Generation worker reports READY or FAILED for a client's packet.

    The secret is checked before the body is even parsed, so an
    unauthenticated caller learns nothing about payload validity.
    """
    if not verifier.verify(x_webhook_secret):
        logger.warning(
            "Rejected packet callback: invalid webhook secret",
            extra={"extra_fields": {"client_host": request.client.host if request.client else None}},
        )
        raise AuthenticationError()

    body = await request.body()
    try:
        payload = PacketCallback.model_validate_json(body or b"{}")
    except PayloadError as e:
        raise ValidationError.from_errors(e.errors())

    result = await run_in_threadpool(
        manager.apply_callback,
        packet_type=payload.packet_type,
        status=payload.status,
        client_id=payload.client_id,
        client_email=payload.client_email,
        doc_url=payload.doc_url,
        error=payload.error,
    )
    packet = result.packet
    return PacketCallbackResponse(
        packet=PacketCallbackPacket(id=packet.id, type=packet.type, status=packet.status, docUrl=packet.doc_url)
    )


@router.get("/status", response_model=PacketStatusResponse)
def get_packet_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """The caller's packets with a generation progress summary."""
    client = get_client_for_user(db, current_user.id)
    packets = packet_status.client_packets(db, client.id) if client else []
    return PacketStatusResponse(
        packets=[PacketStatusItem.model_validate(p) for p in packets],
        summary=PacketStatusSummary(**packet_status.summarize(packets)),
    )


@router.get("/{packet_id}", response_model=PacketResponse)
def get_packet(
    packet_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return PacketResponse.model_validate(_visible_packet(db, packet_id, current_user))


def _download_name(packet: Packet) -> str:
    stem = f"{packet_type_label(packet.type)}-{packet.client.full_name or 'client'}"
    return re.sub(r"[^A-Za-z0-9_-]+", "-", stem).strip("-") + ".pdf"


@router.get("/{packet_id}/download")
def download_packet_pdf(
    packet_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    pdf_manager: PdfArtifactManager = Depends(get_pdf_manager),
):
    """The rendered PDF as an attachment (owner or staff)."""
    packet = _visible_packet(db, packet_id, current_user)
    if not packet.pdf_url:
        raise NotFoundError("PDF for packet", str(packet_id))
    path = pdf_manager.path_for_url(packet.pdf_url)
    if path is None or not path.is_file():
        logger.warning(
            f"PDF file missing for packet {packet_id}",
            extra={"extra_fields": {"packet_id": str(packet_id), "pdf_url": packet.pdf_url}},
        )
        raise NotFoundError("PDF file", packet.pdf_url)
    filename = _download_name(packet)
    return FileResponse(path, media_type="application/pdf", filename=filename)


@router.put("/{packet_id}/edit", response_model=PacketMutationResponse)
def edit_packet(
    packet_id: UUID,
    body: PacketEditRequest,
    current_user: User = Depends(require_staff),
    manager: PacketLifecycleManager = Depends(get_lifecycle_manager),
):
    result = manager.edit_content(packet_id, body.content, target_status=body.status)
    logger.info(
        f"Packet {packet_id} edited by {current_user.id}",
        extra={"extra_fields": {"packet_id": str(packet_id), "editor_id": str(current_user.id)}},
    )
    return _mutation_response(result, "Packet updated")


@router.post("/{packet_id}/send", response_model=PacketMutationResponse)
def send_packet(
    packet_id: UUID,
    current_user: User = Depends(require_staff),
    manager: PacketLifecycleManager = Depends(get_lifecycle_manager),
):
    result = manager.send(packet_id)
    return _mutation_response(result, "Packet sent to client")


@router.delete("/{packet_id}", response_model=PacketDeleteResponse)
def delete_packet(
    packet_id: UUID,
    current_user: User = Depends(require_staff),
    manager: PacketLifecycleManager = Depends(get_lifecycle_manager),
):
    result = manager.delete(packet_id)
    logger.info(
        f"Packet {packet_id} deleted by {current_user.id}",
        extra={"extra_fields": {"packet_id": str(packet_id), "editor_id": str(current_user.id)}},
    )
    return PacketDeleteResponse(
        message="Packet deleted",
        side_effects=[asdict(o) for o in result.side_effects],
    )


@router.post("/{packet_id}/regenerate-pdf", response_model=PacketMutationResponse)
def regenerate_packet_pdf(
    packet_id: UUID,
    current_user: User = Depends(require_staff),
    manager: PacketLifecycleManager = Depends(get_lifecycle_manager),
):
    result = manager.regenerate_pdf(packet_id)
    outcome = result.outcome("regenerate_pdf")
    logger.info(
        f"PDF regeneration for packet {packet_id} requested by {current_user.id}",
        extra={"extra_fields": {"packet_id": str(packet_id), "succeeded": outcome.succeeded}},
    )
    return _mutation_response(result, "PDF regenerated" if outcome.succeeded else "PDF regeneration failed")
