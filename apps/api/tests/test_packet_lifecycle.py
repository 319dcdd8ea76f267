"""
Tests for the packet lifecycle: worker callbacks, staff edits, send, delete.
"""
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from models import Packet, PacketStatus
from services.packet_lifecycle import DEFAULT_FAILURE_MESSAGE, PacketLifecycleManager
from services.pdf_export import PdfArtifactManager

CONTENT = {"sections": [{"title": "Daily Meals", "blocks": ["Breakfast: oats", "Lunch: salad"]}]}


@pytest.fixture
def manager(db_session, notifier, pdf_manager):
    return PacketLifecycleManager(db_session, notifier=notifier, pdf_manager=pdf_manager, sleep=lambda s: None)


@pytest.fixture
def nutrition_client(make_client):
    return make_client(email="jane@example.com", full_name="Jane Doe", client_type="NUTRITION_ONLY")


class TestCallback:
    def test_ready_by_email_sets_doc_url(self, db_session, manager, nutrition_client, make_packet, mock_email):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.GENERATING.value)

        result = manager.apply_callback(
            "NUTRITION", "READY", client_email="  JANE@Example.com ", doc_url="https://docs.example.com/d/1"
        )

        assert result.packet.id == packet.id
        db_session.refresh(packet)
        assert packet.status == PacketStatus.READY.value
        assert packet.doc_url == "https://docs.example.com/d/1"
        assert packet.last_error is None
        assert result.outcome("notify_packet_ready").succeeded
        mock_email.send_packet_ready.assert_called_once_with("jane@example.com", "Jane Doe", "Nutrition")

    def test_ready_by_client_id(self, db_session, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION")

        manager.apply_callback("NUTRITION", "READY", client_id=nutrition_client.id, doc_url="d")

        db_session.refresh(packet)
        assert packet.status == PacketStatus.READY.value

    def test_failed_records_error_and_increments_retry_count(self, db_session, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.GENERATING.value, doc_url="stale")

        result = manager.apply_callback("NUTRITION", "FAILED", client_id=nutrition_client.id, error="LLM timeout")

        db_session.refresh(packet)
        assert packet.status == PacketStatus.FAILED.value
        assert packet.last_error == "LLM timeout"
        assert packet.doc_url is None
        assert packet.retry_count == 1
        # below the alert threshold
        assert result.outcome("notify_generation_failure").skipped

    def test_failed_without_error_uses_default_message(self, db_session, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION")

        manager.apply_callback("NUTRITION", "FAILED", client_id=nutrition_client.id)

        db_session.refresh(packet)
        assert packet.last_error == DEFAULT_FAILURE_MESSAGE

    def test_repeated_failures_alert_staff(self, db_session, manager, nutrition_client, make_packet, admin_user, mock_email):
        make_packet(nutrition_client, "NUTRITION", PacketStatus.FAILED.value, retry_count=1)
        make_packet(nutrition_client, "NUTRITION", PacketStatus.FAILED.value, retry_count=1)
        make_packet(nutrition_client, "NUTRITION", PacketStatus.GENERATING.value)

        result = manager.apply_callback("NUTRITION", "FAILED", client_id=nutrition_client.id, error="boom")

        assert result.packet.retry_count == 1
        assert result.outcome("notify_generation_failure").succeeded
        args = mock_email.send_packet_failure_alert.call_args[0]
        assert args[0] == [admin_user.email]
        assert args[5] == "boom"
        assert args[6] == 3

    def test_failure_alert_store_error_does_not_fail_callback(self, db_session, manager, notifier, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.GENERATING.value)

        with patch.object(notifier, "_load_packet", side_effect=OperationalError("SELECT", {}, Exception("db gone"))):
            result = manager.apply_callback("NUTRITION", "FAILED", client_id=nutrition_client.id, error="boom")

        assert not result.outcome("notify_generation_failure").succeeded
        db_session.expire_all()
        assert db_session.get(Packet, packet.id).status == PacketStatus.FAILED.value

    def test_ready_rejected_on_failed_packet(self, db_session, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.FAILED.value, last_error="x", retry_count=1)

        with pytest.raises(InvalidTransitionError):
            manager.apply_callback("NUTRITION", "READY", client_id=nutrition_client.id, doc_url="/y.pdf")

        db_session.refresh(packet)
        assert packet.status == PacketStatus.FAILED.value
        assert packet.doc_url is None
        assert packet.last_error == "x"

    def test_failed_rejected_on_ready_packet(self, db_session, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.GENERATING.value)
        manager.apply_callback("NUTRITION", "READY", client_id=nutrition_client.id, doc_url="/x.pdf")

        with pytest.raises(InvalidTransitionError):
            manager.apply_callback("NUTRITION", "FAILED", client_id=nutrition_client.id, error="late failure")

        db_session.refresh(packet)
        assert packet.status == PacketStatus.READY.value
        assert packet.doc_url == "/x.pdf"
        assert packet.last_error is None
        assert packet.retry_count == 0

    def test_repeated_ready_is_a_no_op(self, db_session, manager, nutrition_client, make_packet, mock_email):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value, doc_url="/x.pdf")

        result = manager.apply_callback("NUTRITION", "READY", client_id=nutrition_client.id, doc_url="/x.pdf")

        db_session.refresh(packet)
        assert packet.status == PacketStatus.READY.value
        assert packet.doc_url == "/x.pdf"
        assert result.outcome("notify_packet_ready").skipped
        mock_email.send_packet_ready.assert_not_called()

    def test_ready_with_new_document_rejected_on_ready_packet(self, db_session, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value, doc_url="/x.pdf")

        with pytest.raises(InvalidTransitionError):
            manager.apply_callback("NUTRITION", "READY", client_id=nutrition_client.id, doc_url="/other.pdf")

        db_session.refresh(packet)
        assert packet.doc_url == "/x.pdf"

    def test_prefers_in_flight_packet(self, db_session, manager, nutrition_client, make_packet):
        make_packet(nutrition_client, "NUTRITION", PacketStatus.FAILED.value, retry_count=1)
        fresh = make_packet(nutrition_client, "NUTRITION", PacketStatus.PENDING.value)

        result = manager.apply_callback("NUTRITION", "READY", client_id=nutrition_client.id, doc_url="d")

        assert result.packet.id == fresh.id

    @pytest.mark.parametrize("status", [PacketStatus.APPROVED.value, PacketStatus.SENT.value])
    def test_rejected_after_staff_review(self, db_session, manager, nutrition_client, make_packet, status):
        packet = make_packet(nutrition_client, "NUTRITION", status, doc_url="original")

        with pytest.raises(InvalidTransitionError):
            manager.apply_callback("NUTRITION", "READY", client_id=nutrition_client.id, doc_url="new")

        db_session.refresh(packet)
        assert packet.status == status
        assert packet.doc_url == "original"

    def test_unknown_client(self, manager):
        with pytest.raises(NotFoundError):
            manager.apply_callback("NUTRITION", "READY", client_email="nobody@example.com")

    def test_client_without_packet_of_type(self, manager, nutrition_client):
        with pytest.raises(NotFoundError):
            manager.apply_callback("WORKOUT", "READY", client_id=nutrition_client.id)

    def test_invalid_status(self, manager, nutrition_client):
        with pytest.raises(ValidationError):
            manager.apply_callback("NUTRITION", "APPROVED", client_id=nutrition_client.id)

    def test_notification_failure_does_not_fail_callback(self, db_session, manager, nutrition_client, make_packet, mock_email):
        packet = make_packet(nutrition_client, "NUTRITION")
        mock_email.send_packet_ready.side_effect = RuntimeError("smtp down")

        result = manager.apply_callback("NUTRITION", "READY", client_id=nutrition_client.id, doc_url="d")

        db_session.refresh(packet)
        assert packet.status == PacketStatus.READY.value
        assert result.outcome("notify_packet_ready").error == "smtp down"


class TestEdit:
    def test_approve_bumps_version_and_renders_pdf(self, db_session, manager, nutrition_client, make_packet, pdf_manager):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value)

        result = manager.edit_content(packet.id, CONTENT, target_status="APPROVED")

        db_session.refresh(packet)
        assert packet.status == PacketStatus.APPROVED.value
        assert packet.version == 2
        assert packet.previous_version_id == packet.id
        assert packet.content == CONTENT
        assert packet.pdf_url.startswith("/packets/packet-")
        assert pdf_manager.path_for_url(packet.pdf_url).exists()
        assert result.outcome("regenerate_pdf").succeeded
        assert result.outcome("notify_packet_updated").succeeded

    def test_draft_save_keeps_status_and_version(self, db_session, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value)

        result = manager.edit_content(packet.id, {"notes": "<i>draft</i>"})

        db_session.refresh(packet)
        assert packet.status == PacketStatus.READY.value
        assert packet.version == 1
        assert packet.content == {"notes": "&lt;i&gt;draft&lt;&#x2F;i&gt;"}
        assert result.outcome("regenerate_pdf").skipped
        assert result.outcome("notify_packet_updated") is None

    def test_edit_to_sent_stamps_sent_at(self, db_session, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.APPROVED.value, version=2)

        result = manager.edit_content(packet.id, CONTENT, target_status="SENT")

        db_session.refresh(packet)
        assert packet.status == PacketStatus.SENT.value
        assert packet.sent_at is not None
        assert packet.version == 2
        assert result.outcome("regenerate_pdf").succeeded

    def test_regeneration_replaces_old_pdf(self, db_session, manager, nutrition_client, make_packet, pdf_manager):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value)
        manager.edit_content(packet.id, CONTENT, target_status="APPROVED")
        db_session.refresh(packet)
        old_path = pdf_manager.path_for_url(packet.pdf_url)

        manager.edit_content(packet.id, CONTENT, target_status="SENT")

        db_session.refresh(packet)
        assert not old_path.exists()
        assert pdf_manager.path_for_url(packet.pdf_url).exists()

    def test_pdf_failure_does_not_fail_edit(self, db_session, notifier, nutrition_client, make_packet):
        broken_pdf = MagicMock(spec=PdfArtifactManager)
        broken_pdf.generate.side_effect = RuntimeError("disk full")
        broken_pdf.delete.return_value = True
        manager = PacketLifecycleManager(db_session, notifier=notifier, pdf_manager=broken_pdf, sleep=lambda s: None)
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value, pdf_url="/packets/old.pdf")

        result = manager.edit_content(packet.id, CONTENT, target_status="APPROVED")

        db_session.refresh(packet)
        assert packet.status == PacketStatus.APPROVED.value
        assert packet.pdf_url is None
        assert result.outcome("regenerate_pdf").error == "disk full"
        broken_pdf.delete.assert_called_once_with("/packets/old.pdf")

    @pytest.mark.parametrize("status", [PacketStatus.PENDING.value, PacketStatus.GENERATING.value, PacketStatus.FAILED.value])
    def test_edit_requires_generated_packet(self, db_session, manager, nutrition_client, make_packet, status):
        packet = make_packet(nutrition_client, "NUTRITION", status)

        with pytest.raises(InvalidTransitionError):
            manager.edit_content(packet.id, CONTENT, target_status="APPROVED")

        db_session.refresh(packet)
        assert packet.status == status
        assert packet.content is None

    @pytest.mark.parametrize("content", [{}, None, "text"])
    def test_content_is_required(self, manager, nutrition_client, make_packet, content):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value)
        with pytest.raises(ValidationError):
            manager.edit_content(packet.id, content)

    def test_invalid_target_status(self, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value)
        with pytest.raises(ValidationError):
            manager.edit_content(packet.id, CONTENT, target_status="FAILED")

    def test_missing_packet(self, manager):
        with pytest.raises(NotFoundError):
            manager.edit_content(uuid4(), CONTENT)


class TestRegeneratePdf:
    def test_replaces_artifact_without_touching_status(self, db_session, manager, nutrition_client, make_packet, pdf_manager):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.SENT.value, content=CONTENT, version=3)
        first_url = manager.regenerate_pdf(packet.id).packet.pdf_url

        result = manager.regenerate_pdf(packet.id)

        assert result.outcome("regenerate_pdf").succeeded
        assert result.packet.pdf_url != first_url
        assert result.packet.status == PacketStatus.SENT.value
        assert result.packet.version == 3
        assert not pdf_manager.path_for_url(first_url).exists()
        assert pdf_manager.path_for_url(result.packet.pdf_url).exists()

    def test_requires_content(self, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value)

        with pytest.raises(ValidationError):
            manager.regenerate_pdf(packet.id)

    def test_render_failure_is_reported(self, db_session, notifier, nutrition_client, make_packet):
        broken_pdf = MagicMock(spec=PdfArtifactManager)
        broken_pdf.generate.side_effect = RuntimeError("font missing")
        manager = PacketLifecycleManager(db_session, notifier=notifier, pdf_manager=broken_pdf, sleep=lambda s: None)
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.APPROVED.value, content=CONTENT)

        result = manager.regenerate_pdf(packet.id)

        assert result.outcome("regenerate_pdf").error == "font missing"
        assert result.packet.status == PacketStatus.APPROVED.value

    def test_unknown_packet(self, manager):
        with pytest.raises(NotFoundError):
            manager.regenerate_pdf(uuid4())


class TestSend:
    @pytest.mark.parametrize("status", [PacketStatus.APPROVED.value, PacketStatus.READY.value])
    def test_send(self, db_session, manager, nutrition_client, make_packet, mock_email, status):
        packet = make_packet(nutrition_client, "NUTRITION", status, pdf_url="/packets/p.pdf")

        result = manager.send(packet.id)

        db_session.refresh(packet)
        assert packet.status == PacketStatus.SENT.value
        assert packet.sent_at is not None
        assert result.outcome("notify_packet_sent").succeeded
        mock_email.send_packet_delivered.assert_called_once_with(
            "jane@example.com", "Jane Doe", "Nutrition", "/packets/p.pdf"
        )

    @pytest.mark.parametrize(
        "status",
        [PacketStatus.PENDING.value, PacketStatus.GENERATING.value, PacketStatus.FAILED.value, PacketStatus.SENT.value],
    )
    def test_send_requires_approval(self, db_session, manager, nutrition_client, make_packet, mock_email, status):
        packet = make_packet(nutrition_client, "NUTRITION", status)
        revision = packet.revision

        with pytest.raises(InvalidTransitionError) as exc:
            manager.send(packet.id)

        assert exc.value.detail == "Packet must be approved before sending"
        db_session.refresh(packet)
        assert packet.status == status
        assert packet.revision == revision
        mock_email.send_packet_delivered.assert_not_called()


class TestDelete:
    def test_delete_removes_pdf_then_row(self, db_session, manager, nutrition_client, make_packet, pdf_manager):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value)
        manager.edit_content(packet.id, CONTENT, target_status="APPROVED")
        db_session.refresh(packet)
        path = pdf_manager.path_for_url(packet.pdf_url)
        packet_id = packet.id

        result = manager.delete(packet_id)

        assert not path.exists()
        assert result.outcome("delete_pdf").detail == "deleted"
        db_session.expire_all()
        assert db_session.get(Packet, packet_id) is None

    def test_delete_proceeds_when_pdf_removal_fails(self, db_session, notifier, nutrition_client, make_packet):
        broken_pdf = MagicMock(spec=PdfArtifactManager)
        broken_pdf.delete.side_effect = PermissionError("read-only filesystem")
        manager = PacketLifecycleManager(db_session, notifier=notifier, pdf_manager=broken_pdf, sleep=lambda s: None)
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.SENT.value, pdf_url="/packets/x.pdf")
        packet_id = packet.id

        result = manager.delete(packet_id)

        assert result.outcome("delete_pdf").error == "read-only filesystem"
        db_session.expire_all()
        assert db_session.get(Packet, packet_id) is None

    def test_delete_with_missing_file(self, db_session, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.READY.value, pdf_url="/packets/gone.pdf")

        result = manager.delete(packet.id)

        assert result.outcome("delete_pdf").detail == "already absent"

    def test_delete_without_pdf(self, manager, nutrition_client, make_packet):
        packet = make_packet(nutrition_client, "NUTRITION", PacketStatus.PENDING.value)

        result = manager.delete(packet.id)

        assert result.outcome("delete_pdf").skipped

    def test_delete_missing_packet(self, manager):

        with pytest.raises(NotFoundError):
            manager.delete(uuid4())
