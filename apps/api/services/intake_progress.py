"""
Intake Progress Store

Resumable autosave of an in-progress intake, at most one row per client.
Answers are sanitized before they are persisted; malformed payloads are
rejected before anything is written.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from models import IntakeProgress, User, utcnow
from services import intake_analytics
from services.clients import ensure_client_for_user, get_client_for_user
from services.sanitizer import sanitize_responses

logger = logging.getLogger(__name__)


def _validate_step(value: Any, field: str, required: bool) -> Optional[int]:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    # bool is an int subclass; a checkbox value is not a step index
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer", field=field)
    return value


def save_progress(
    db: Session,
    user: User,
    current_step: int,
    responses: Dict[str, Any],
    selected_path: Optional[str] = None,
    total_steps: Optional[int] = None,
    is_complete: Optional[bool] = None,
) -> Tuple[IntakeProgress, bool]:
    """
    Upsert the caller's progress row.

    Returns (progress, is_new_intake). The owning Client is created on the
    first save. The first save that carries a path, whether or not it is the
    first save overall, opens a funnel record for that classification; failure
    to open it is logged and does not affect the save.
    """
    current_step = _validate_step(current_step, "current_step", required=True)
    total_steps = _validate_step(total_steps, "total_steps", required=False)
    if not isinstance(responses, dict):
        raise ValidationError("responses must be an object", field="responses")
    if selected_path is not None:
        intake_analytics.validate_client_type(selected_path, field="selected_path")

    existing_client = get_client_for_user(db, user.id)
    progress = None
    if existing_client is not None:
        progress = db.query(IntakeProgress).filter(IntakeProgress.client_id == existing_client.id).first()
    is_new_intake = progress is None
    # The funnel attempt starts when the progress row first gets a path
    opens_funnel = bool(selected_path) and (progress is None or not progress.selected_path)

    effective_total = total_steps if total_steps is not None else (progress.total_steps if progress else None)
    if effective_total is not None and current_step > effective_total:
        raise ValidationError("current_step cannot exceed total_steps", field="current_step")

    client = existing_client or ensure_client_for_user(db, user, client_type=selected_path)
    sanitized = sanitize_responses(responses)
    now = utcnow()

    if progress is None:
        progress = IntakeProgress(
            client_id=client.id,
            selected_path=selected_path,
            current_step=current_step,
            total_steps=total_steps,
            responses=sanitized,
            is_complete=bool(is_complete),
            last_saved_at=now,
        )
        db.add(progress)
    else:
        if selected_path:
            progress.selected_path = selected_path
        if total_steps is not None:
            progress.total_steps = total_steps
        if is_complete is not None:
            progress.is_complete = is_complete
        progress.current_step = current_step
        progress.responses = sanitized
        progress.last_saved_at = now

    db.commit()
    logger.debug(
        f"Saved intake progress for client {client.id} at step {current_step}",
        extra={"extra_fields": {"client_id": str(client.id), "is_new_intake": is_new_intake}},
    )

    if opens_funnel:
        try:
            intake_analytics.open_record(db, selected_path)
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to open intake analytics for {selected_path}: {e}")

    return progress, is_new_intake


def load_progress(db: Session, user: User) -> Optional[IntakeProgress]:
    """The caller's saved progress, or None when nothing has been saved yet."""
    client = get_client_for_user(db, user.id)
    if client is None:
        return None
    return db.query(IntakeProgress).filter(IntakeProgress.client_id == client.id).first()


def mark_complete(db: Session, client_id, selected_path: str, responses: Dict[str, Any]) -> IntakeProgress:
    """
    Flag the client's progress as complete on submission (flushed, not committed).
    """
    progress = db.query(IntakeProgress).filter(IntakeProgress.client_id == client_id).first()
    now = utcnow()
    if progress is None:
        progress = IntakeProgress(
            client_id=client_id,
            selected_path=selected_path,
            current_step=0,
            responses=responses,
            is_complete=True,
            last_saved_at=now,
        )
        db.add(progress)
    else:
        progress.selected_path = selected_path
        progress.responses = responses
        progress.is_complete = True
        progress.last_saved_at = now
    db.flush()
    return progress
