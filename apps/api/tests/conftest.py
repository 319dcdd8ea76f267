"""
Pytest configuration and fixtures

Tests run against a throwaway SQLite file created once per session. Every
table is emptied after each test, so nothing leaks between tests.
"""
import pytest
import sys
import os
import tempfile
from uuid import uuid4
from unittest.mock import MagicMock

# Settings are read at import time; point them at the test sandbox first.
_TEST_DIR = tempfile.mkdtemp(prefix="afya-intake-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters-long")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("PACKET_DISPATCH_ENABLED", "false")
os.environ.setdefault("PDF_STORAGE_PATH", os.path.join(_TEST_DIR, "packets"))
os.environ.setdefault("WEBHOOK_RETRY_BASE_DELAY_S", "0")
os.environ.setdefault("WEBHOOK_RETRY_MAX_DELAY_S", "0")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import Base, SessionLocal, engine, init_db  # noqa: E402
from core.security import create_access_token  # noqa: E402
from models import Client, Packet, PacketStatus, User  # noqa: E402
from services.email_service import EmailService  # noqa: E402
from services.packet_notifications import NotificationDispatcher  # noqa: E402
from services.pdf_export import PdfArtifactManager  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _create_schema():
    init_db()
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function")
def db_session():
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


def _make_user(db, role="client", display_name="Test Client"):
    user = User(
        email=f"{role}_{uuid4().hex[:8]}@example.com",
        display_name=display_name,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def client_user(db_session):
    return _make_user(db_session, role="client", display_name="Jane Doe")


@pytest.fixture
def coach_user(db_session):
    return _make_user(db_session, role="coach", display_name="Coach Kim")


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, role="admin", display_name="Admin")


def auth_headers_for(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client_headers(client_user):
    return auth_headers_for(client_user)


@pytest.fixture
def coach_headers(coach_user):
    return auth_headers_for(coach_user)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers_for(admin_user)


@pytest.fixture
def webhook_headers():
    return {"X-Webhook-Secret": os.environ["WEBHOOK_SECRET"]}


@pytest.fixture
def make_client(db_session):
    """Client profile (no owning user unless one is given)."""
    def _make(email=None, full_name="Jane Doe", client_type="FULL_PROGRAM", user=None):
        client = Client(
            user_id=user.id if user else None,
            full_name=full_name,
            email=email or f"client_{uuid4().hex[:8]}@example.com",
            client_type=client_type,
        )
        db_session.add(client)
        db_session.commit()
        return client

    return _make


@pytest.fixture
def make_packet(db_session):
    def _make(client, packet_type="NUTRITION", status=PacketStatus.PENDING.value, **fields):
        packet = Packet(client_id=client.id, type=packet_type, status=status, **fields)
        db_session.add(packet)
        db_session.commit()
        return packet

    return _make


@pytest.fixture
def mock_email():
    """EmailService double that is enabled and always delivers."""
    email = MagicMock(spec=EmailService)
    email.enabled = True
    for method in (
        "send_email",
        "send_to_all",
        "send_packet_ready",
        "send_packet_updated",
        "send_packet_delivered",
        "send_packet_failure_alert",
        "send_intake_complete_alert",
    ):
        getattr(email, method).return_value = True
    return email


@pytest.fixture
def notifier(db_session, mock_email):
    return NotificationDispatcher(db_session, email_service=mock_email)


@pytest.fixture
def pdf_manager(tmp_path):
    return PdfArtifactManager(storage_path=str(tmp_path / "packets"), public_base_url="/packets")
