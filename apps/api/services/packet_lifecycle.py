"""
Packet Lifecycle Manager

State machine for a packet from creation to delivery:

    PENDING -> GENERATING -> READY -> (APPROVED) -> SENT
    PENDING/GENERATING -> FAILED

Writers:
- the generation worker's callback (READY / FAILED)
- staff content edits, PDF regeneration, send and delete

Every write is a compare-and-swap on Packet.revision (SQLAlchemy
version_id_col). A transition re-reads the row, applies all of its field
changes, and commits in one UPDATE; if another writer got there first the
commit raises StaleDataError and the transition is re-applied to the fresh
row. Two racing writers therefore serialize, and the row always reflects one
complete transition.

Side effects (PDF regeneration, emails) run only after the transition has
committed and are reported as SideEffectOutcome values; they never fail the
transition.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.config import settings
from core.exceptions import InvalidTransitionError, NotFoundError, TransientStoreError, ValidationError
from core.retry import retry_with_backoff
from models import Packet, PacketStatus, packet_type_label, utcnow
from services.clients import find_client
from services.packet_notifications import NotificationDispatcher
from services.pdf_export import PdfArtifactManager, PdfMetadata, get_pdf_manager
from services.sanitizer import normalize_email, sanitize_value
from services.side_effects import SideEffectOutcome, attempt

logger = logging.getLogger(__name__)

# Generation outcomes land only on in-flight packets; a FAILED row is never
# revived and a READY row is never failed after the fact.
CALLBACK_SOURCE_STATES = {
    PacketStatus.PENDING.value,
    PacketStatus.GENERATING.value,
}
CALLBACK_TARGET_STATES = {PacketStatus.READY.value, PacketStatus.FAILED.value}
EDITABLE_STATES = {PacketStatus.READY.value, PacketStatus.APPROVED.value, PacketStatus.SENT.value}
SENDABLE_STATES = {PacketStatus.APPROVED.value, PacketStatus.READY.value}
# Edits to these targets start a new content version
VERSIONING_TARGETS = {PacketStatus.APPROVED.value, PacketStatus.READY.value}
PDF_REGENERATION_TARGETS = {PacketStatus.APPROVED.value, PacketStatus.SENT.value}
CLIENT_UPDATE_TARGETS = {PacketStatus.READY.value, PacketStatus.APPROVED.value}
IN_FLIGHT_STATES = (PacketStatus.PENDING.value, PacketStatus.GENERATING.value)

DEFAULT_FAILURE_MESSAGE = "Packet generation failed"


@dataclass
class TransitionResult:
    """The committed packet plus what happened to each side effect."""
    packet: Packet
    side_effects: List[SideEffectOutcome] = field(default_factory=list)

    def outcome(self, name: str) -> Optional[SideEffectOutcome]:
        for outcome in self.side_effects:
            if outcome.name == name:
                return outcome
        return None


def find_callback_target(db: Session, client_id: UUID, packet_type: str) -> Optional[Packet]:
    """
    Packet a worker callback refers to: the newest in-flight packet of the
    type, else the newest packet of the type.
    """
    in_flight = (
        db.query(Packet)
        .filter(Packet.client_id == client_id, Packet.type == packet_type, Packet.status.in_(IN_FLIGHT_STATES))
        .order_by(Packet.created_at.desc())
        .first()
    )
    if in_flight is not None:
        return in_flight
    return (
        db.query(Packet)
        .filter(Packet.client_id == client_id, Packet.type == packet_type)
        .order_by(Packet.created_at.desc())
        .first()
    )


class PacketLifecycleManager:
    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationDispatcher] = None,
        pdf_manager: Optional[PdfArtifactManager] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay_s: Optional[float] = None,
        retry_max_delay_s: Optional[float] = None,
        conflict_retries: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.notifier = notifier or NotificationDispatcher(db)
        self.pdf = pdf_manager or get_pdf_manager()
        self.retry_attempts = retry_attempts or settings.WEBHOOK_RETRY_ATTEMPTS
        self.retry_base_delay_s = retry_base_delay_s if retry_base_delay_s is not None else settings.WEBHOOK_RETRY_BASE_DELAY_S
        self.retry_max_delay_s = retry_max_delay_s if retry_max_delay_s is not None else settings.WEBHOOK_RETRY_MAX_DELAY_S
        self.conflict_retries = conflict_retries or settings.PACKET_WRITE_CONFLICT_RETRIES
        self._sleep = sleep

    # Store access

    def _with_retry(self, operation: Callable[[], Any], description: str) -> Any:
        return retry_with_backoff(
            operation,
            attempts=self.retry_attempts,
            base_delay_s=self.retry_base_delay_s,
            max_delay_s=self.retry_max_delay_s,
            on_retry=lambda exc, attempt_no: self.db.rollback(),
            description=description,
            sleep=self._sleep,
        )

    def _read(self, packet_id: UUID) -> Optional[Packet]:
        return (
            self.db.query(Packet)
            .filter(Packet.id == packet_id)
            .populate_existing()
            .first()
        )

    def _get_packet(self, packet_id: UUID) -> Packet:
        packet = self._with_retry(lambda: self._read(packet_id), f"load packet {packet_id}")
        if packet is None:
            raise NotFoundError("Packet", str(packet_id))
        return packet

    def _compare_and_swap(self, packet_id: UUID, mutate: Callable[[Packet], None], action: str) -> Packet:
        """
        Apply `mutate` to a fresh copy of the row and commit, retrying on
        revision conflicts. `mutate` validates before it touches any field.
        """
        for conflict in range(self.conflict_retries):
            packet = self._read(packet_id)
            if packet is None:
                raise NotFoundError("Packet", str(packet_id))
            try:
                mutate(packet)
            except Exception:
                self.db.rollback()
                raise
            try:
                self.db.commit()
                return packet
            except StaleDataError:
                self.db.rollback()
                logger.info(
                    f"Concurrent write on packet {packet_id} during {action}, re-applying",
                    extra={"extra_fields": {"packet_id": str(packet_id), "conflict": conflict + 1}},
                )

        logger.error(f"Gave up on {action} for packet {packet_id} after {self.conflict_retries} write conflicts")
        raise TransientStoreError(f"Packet {packet_id} is being modified concurrently; try again")

    def _transition(self, packet_id: UUID, mutate: Callable[[Packet], None], action: str) -> Packet:
        return self._with_retry(
            lambda: self._compare_and_swap(packet_id, mutate, action),
            f"{action} packet {packet_id}",
        )

    # Worker callback

    @staticmethod
    def _is_ready_re_report(packet: Packet, status: str, doc_url: Optional[str]) -> bool:
        """A repeated READY for a READY packet with the same document changes nothing."""
        return (
            status == PacketStatus.READY.value
            and packet.status == PacketStatus.READY.value
            and (doc_url is None or doc_url == packet.doc_url)
        )

    def apply_callback(
        self,
        packet_type: str,
        status: str,
        client_id: Optional[UUID] = None,
        client_email: Optional[str] = None,
        doc_url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> TransitionResult:
        """
        Record the generation worker's outcome for a client's packet.

        Client is resolved by id, else by normalized email; the packet by
        (client, type). Not-found is final; transient store failures are
        retried with backoff.
        """
        if status not in CALLBACK_TARGET_STATES:
            raise ValidationError(f"Invalid callback status: {status}", field="status")

        email = normalize_email(client_email)
        client = self._with_retry(
            lambda: find_client(self.db, client_id=client_id, email=email),
            "resolve callback client",
        )
        if client is None:
            raise NotFoundError("Client", str(client_id) if client_id else email)

        target = self._with_retry(
            lambda: find_callback_target(self.db, client.id, packet_type),
            "resolve callback packet",
        )
        if target is None:
            raise NotFoundError("Packet", f"{packet_type} for client {client.id}")

        re_report = {"value": False}

        def mutate(packet: Packet) -> None:
            re_report["value"] = False
            if self._is_ready_re_report(packet, status, doc_url):
                re_report["value"] = True
                packet.updated_at = utcnow()
                return
            if packet.status not in CALLBACK_SOURCE_STATES:
                raise InvalidTransitionError(
                    f"Cannot apply a {status} callback to a packet that is {packet.status}",
                    current_status=packet.status,
                )
            packet.status = status
            if status == PacketStatus.READY.value:
                packet.doc_url = doc_url
                packet.last_error = None
            else:
                packet.doc_url = None
                packet.last_error = error or DEFAULT_FAILURE_MESSAGE
                packet.retry_count = (packet.retry_count or 0) + 1

        packet = self._transition(target.id, mutate, f"callback {status}")
        logger.info(
            f"Packet {packet.id} ({packet.type}) is now {packet.status}",
            extra={"extra_fields": {
                "packet_id": str(packet.id),
                "client_id": str(client.id),
                "status": packet.status,
                "retry_count": packet.retry_count,
            }},
        )

        if re_report["value"]:
            side_effects = [SideEffectOutcome.skip("notify_packet_ready", "already ready")]
        elif status == PacketStatus.READY.value:
            side_effects = [self.notifier.notify_packet_ready(packet.id)]
        else:
            side_effects = [self.notifier.notify_generation_failure(packet.id)]
        return TransitionResult(packet=packet, side_effects=side_effects)

    # Staff actions

    def edit_content(
        self,
        packet_id: UUID,
        content: Dict[str, Any],
        target_status: Optional[str] = None,
    ) -> TransitionResult:
        """
        Persist staff-edited content, optionally moving the packet to
        READY / APPROVED / SENT.

        Edits targeting READY or APPROVED start a new content version. Edits
        targeting APPROVED or SENT re-render the PDF; edits targeting READY or
        APPROVED notify the client.
        """
        if not isinstance(content, dict) or not content:
            raise ValidationError("Content is required", field="content")
        if target_status is not None and target_status not in EDITABLE_STATES:
            raise ValidationError(
                f"Edit status must be one of {sorted(EDITABLE_STATES)}", field="status"
            )

        sanitized = sanitize_value(content)

        def mutate(packet: Packet) -> None:
            if packet.status not in EDITABLE_STATES:
                raise InvalidTransitionError(
                    f"Packet content can only be edited once generated (status is {packet.status})",
                    current_status=packet.status,
                )
            packet.content = sanitized
            if target_status in VERSIONING_TARGETS:
                packet.version = (packet.version or 1) + 1
                if packet.previous_version_id is None:
                    packet.previous_version_id = packet.id
            if target_status is not None:
                packet.status = target_status
            if target_status == PacketStatus.SENT.value and packet.sent_at is None:
                packet.sent_at = utcnow()

        packet = self._transition(packet_id, mutate, "edit")
        logger.info(
            f"Packet {packet.id} content edited (status {packet.status}, version {packet.version})",
            extra={"extra_fields": {"packet_id": str(packet.id), "target_status": target_status}},
        )

        side_effects = []
        if target_status in PDF_REGENERATION_TARGETS:
            side_effects.append(self._regenerate_pdf(packet))
        else:
            side_effects.append(SideEffectOutcome.skip("regenerate_pdf", "not an approval or send edit"))
        if target_status in CLIENT_UPDATE_TARGETS:
            side_effects.append(self.notifier.notify_packet_updated(packet.id))

        return TransitionResult(packet=packet, side_effects=side_effects)

    def regenerate_pdf(self, packet_id: UUID) -> TransitionResult:
        """Staff re-render of a packet's PDF from its current content. Status is untouched."""
        packet = self._get_packet(packet_id)
        if not packet.content:
            raise ValidationError("Packet content not available", field="content")
        outcome = self._regenerate_pdf(packet)
        return TransitionResult(packet=self._get_packet(packet_id), side_effects=[outcome])

    def _regenerate_pdf(self, packet: Packet) -> SideEffectOutcome:
        """Delete the old artifact, render a new one, and record its url."""
        packet_id = packet.id
        old_url = packet.pdf_url
        client = packet.client
        label = packet_type_label(packet.type)
        metadata = PdfMetadata(
            title=f"{label} Plan - {client.full_name}",
            author=settings.PDF_AUTHOR,
            subject=f"Personalized {label} Plan",
            keywords=[packet.type, client.client_type, "wellness"],
        )

        def run() -> str:
            if old_url:
                self.pdf.delete(old_url)
            try:
                new_url = self.pdf.generate(packet_id, packet.content or {}, client.full_name, packet.type, metadata)
            except Exception:
                if old_url:
                    # The old file is gone; don't leave the row pointing at it.
                    self._transition(packet_id, lambda p: setattr(p, "pdf_url", None), "clear pdf url")
                raise
            self._transition(packet_id, lambda p: setattr(p, "pdf_url", new_url), "record pdf url")
            return new_url

        return attempt("regenerate_pdf", run, {"packet_id": str(packet_id)})

    def send(self, packet_id: UUID) -> TransitionResult:
        """Mark an approved (or ready) packet as delivered and email the client."""

        def mutate(packet: Packet) -> None:
            if packet.status not in SENDABLE_STATES:
                raise InvalidTransitionError(
                    "Packet must be approved before sending",
                    current_status=packet.status,
                )
            packet.status = PacketStatus.SENT.value
            packet.sent_at = utcnow()

        packet = self._transition(packet_id, mutate, "send")
        logger.info(f"Packet {packet.id} sent", extra={"extra_fields": {"packet_id": str(packet.id)}})
        return TransitionResult(packet=packet, side_effects=[self.notifier.notify_packet_sent(packet.id)])

    def delete(self, packet_id: UUID) -> TransitionResult:
        """
        Delete a packet in any state. The rendered PDF is removed first; if
        that fails the row is deleted anyway.
        """
        side_effects: List[SideEffectOutcome] = []
        deleted_urls = set()

        for conflict in range(self.conflict_retries):
            packet = self._get_packet(packet_id)
            pdf_url = packet.pdf_url
            if pdf_url and pdf_url not in deleted_urls:
                deleted_urls.add(pdf_url)

                def remove_pdf(url=pdf_url) -> str:
                    return "deleted" if self.pdf.delete(url) else "already absent"

                side_effects.append(attempt(
                    "delete_pdf", remove_pdf, {"packet_id": str(packet_id), "pdf_url": pdf_url}
                ))
            elif not pdf_url and not side_effects:
                side_effects.append(SideEffectOutcome.skip("delete_pdf", "no pdf"))

            self.db.delete(packet)
            try:
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                logger.info(f"Packet {packet_id} changed while deleting, retrying")
                continue

            logger.info(
                f"Deleted packet {packet_id}",
                extra={"extra_fields": {"packet_id": str(packet_id), "type": packet.type}},
            )
            return TransitionResult(packet=packet, side_effects=side_effects)

        raise TransientStoreError(f"Packet {packet_id} is being modified concurrently; try again")
