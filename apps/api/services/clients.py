"""
Client profile lookup and lazy creation.

A Client row is created the first time a user saves intake progress or
submits an intake. Identity (id, owning user) never changes afterwards.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Client, ClientType, User
from services.sanitizer import normalize_email, sanitize_text

logger = logging.getLogger(__name__)


def get_client_for_user(db: Session, user_id: UUID) -> Optional[Client]:
    return db.query(Client).filter(Client.user_id == user_id).first()


def find_client(db: Session, client_id: Optional[UUID] = None, email: Optional[str] = None) -> Optional[Client]:
    """Resolve by id first, then by normalized email."""
    if client_id is not None:
        return db.query(Client).filter(Client.id == client_id).first()
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.query(Client).filter(Client.email == normalized).first()


def ensure_client_for_user(db: Session, user: User, client_type: Optional[str] = None) -> Client:
    """
    Return the user's Client, creating a minimal profile if needed.

    An unowned Client with the same email (e.g. created by staff) is adopted
    rather than duplicated. The new row is flushed, not committed.
    """
    client = get_client_for_user(db, user.id)
    if client is not None:
        return client

    email = normalize_email(user.email)
    client = db.query(Client).filter(Client.email == email, Client.user_id.is_(None)).first()
    if client is not None:
        client.user_id = user.id
        db.flush()
        logger.info(f"Linked existing client {client.id} to user {user.id}")
        return client

    client = Client(
        user_id=user.id,
        full_name=sanitize_text(user.display_name or ""),
        email=email,
        client_type=client_type or ClientType.FULL_PROGRAM.value,
    )
    db.add(client)
    try:
        db.flush()
    except IntegrityError:
        # Concurrent first save from the same user won the insert.
        db.rollback()
        client = get_client_for_user(db, user.id)
        if client is None:
            raise
        return client

    logger.info(
        f"Created client profile for user {user.id}",
        extra={"extra_fields": {"client_id": str(client.id), "client_type": client.client_type}},
    )
    return client
