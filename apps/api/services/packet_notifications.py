"""
Notification Dispatcher

Emails triggered by intake and packet lifecycle transitions:

- client: packet ready, packet updated by staff, packet sent
- staff: intake completed, a packet type failing generation repeatedly

Every method returns a SideEffectOutcome and never raises.
"""
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import settings
from models import Client, Packet, PacketStatus, User, packet_type_label
from services.email_service import EmailService
from services.side_effects import SideEffectOutcome

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, db: Session, email_service: Optional[EmailService] = None):
        self.db = db
        self.email = email_service or EmailService()

    def staff_recipients(self) -> List[str]:
        """Active admins, else the configured fallback list."""
        admins = (
            self.db.query(User.email)
            .filter(User.role == "admin", User.is_active.is_(True))
            .order_by(User.email.asc())
            .all()
        )
        emails = [row[0] for row in admins if row[0]]
        return emails or settings.staff_notification_emails

    def _load_packet(self, packet_id: UUID) -> Optional[Packet]:
        return self.db.query(Packet).filter(Packet.id == packet_id).first()

    def _dispatch(self, name: str, packet_id: Optional[UUID], send) -> SideEffectOutcome:
        if not self.email.enabled:
            return SideEffectOutcome.skip(name, "email disabled")
        try:
            sent = send()
        except SQLAlchemyError as e:
            # Reads run after the transition committed; clear the failed transaction only.
            self.db.rollback()
            logger.error(
                f"Notification {name} could not read its data: {e}",
                extra={"extra_fields": {"notification": name, "packet_id": str(packet_id) if packet_id else None}},
            )
            return SideEffectOutcome.fail(name, str(e))
        except Exception as e:
            logger.error(
                f"Notification {name} failed: {e}",
                exc_info=True,
                extra={"extra_fields": {"notification": name, "packet_id": str(packet_id) if packet_id else None}},
            )
            return SideEffectOutcome.fail(name, str(e))
        if isinstance(sent, SideEffectOutcome):
            return sent
        if not sent:
            logger.warning(f"Notification {name} was not delivered", extra={"extra_fields": {"notification": name}})
            return SideEffectOutcome.fail(name, "delivery failed")
        return SideEffectOutcome.ok(name)

    def _client_email(self, name: str, packet_id: UUID, sender):
        def send():
            packet = self._load_packet(packet_id)
            if packet is None:
                return SideEffectOutcome.skip(name, "packet not found")
            client = packet.client
            return sender(client.email, client.full_name, packet_type_label(packet.type), packet)

        return self._dispatch(name, packet_id, send)

    def notify_packet_ready(self, packet_id: UUID) -> SideEffectOutcome:
        return self._client_email(
            "notify_packet_ready",
            packet_id,
            lambda to, name, label, packet: self.email.send_packet_ready(to, name, label),
        )

    def notify_packet_updated(self, packet_id: UUID) -> SideEffectOutcome:
        return self._client_email(
            "notify_packet_updated",
            packet_id,
            lambda to, name, label, packet: self.email.send_packet_updated(to, name, label),
        )

    def notify_packet_sent(self, packet_id: UUID) -> SideEffectOutcome:
        return self._client_email(
            "notify_packet_sent",
            packet_id,
            lambda to, name, label, packet: self.email.send_packet_delivered(to, name, label, packet.pdf_url),
        )

    def failure_count(self, packet: Packet) -> int:
        """Failed generations for the packet's client and type; each retry is a fresh row."""
        return (
            self.db.query(func.count(Packet.id))
            .filter(
                Packet.client_id == packet.client_id,
                Packet.type == packet.type,
                Packet.status == PacketStatus.FAILED.value,
            )
            .scalar()
        ) or 0

    def notify_generation_failure(self, packet_id: UUID, max_failures: Optional[int] = None) -> SideEffectOutcome:
        """Alert staff once a client's packet type has failed `max_failures` times."""
        name = "notify_generation_failure"
        threshold = max_failures if max_failures is not None else settings.PACKET_MAX_GENERATION_FAILURES

        def send():
            packet = self._load_packet(packet_id)
            if packet is None:
                return SideEffectOutcome.skip(name, "packet not found")
            failures = self.failure_count(packet)
            if failures < threshold:
                return SideEffectOutcome.skip(name, f"{failures}/{threshold} failures")
            recipients = self.staff_recipients()
            if not recipients:
                logger.warning("No staff recipients configured for packet failure alerts")
                return SideEffectOutcome.skip(name, "no staff recipients")
            client = packet.client
            return self.email.send_packet_failure_alert(
                recipients,
                str(packet.id),
                client.full_name,
                client.email,
                packet_type_label(packet.type),
                packet.last_error or "Unknown error",
                failures,
            )

        return self._dispatch(name, packet_id, send)

    def notify_intake_complete(self, client_id: UUID, packet_types: List[str]) -> SideEffectOutcome:
        name = "notify_intake_complete"

        def send():
            client = self.db.query(Client).filter(Client.id == client_id).first()
            if client is None:
                return SideEffectOutcome.skip(name, "client not found")
            recipients = self.staff_recipients()
            if not recipients:
                return SideEffectOutcome.skip(name, "no staff recipients")
            return self.email.send_intake_complete_alert(
                recipients,
                client.full_name,
                client.email,
                client.client_type,
                [packet_type_label(t) for t in packet_types],
            )

        return self._dispatch(name, None, send)
