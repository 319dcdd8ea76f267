"""
Intake router

- Progress autosave/resume for the signed-in client (their own row only)
- Intake submission: profile + packet routing
- Funnel analytics start/abandon signals from the intake page
"""
import json
import logging

from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError as PayloadError
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import ValidationError
from models import User
from schemas import (
    AnalyticsAbandonRequest,
    AnalyticsAbandonResponse,
    AnalyticsStartRequest,
    AnalyticsStartResponse,
    IntakeProgressEnvelope,
    IntakeProgressResponse,
    IntakeProgressSave,
    IntakeSubmission,
    IntakeSubmissionResponse,
    ClientSummary,
    PacketSummary,
)
from services import intake_analytics
from services.intake_progress import load_progress, save_progress
from services.intake_submission import submit_intake

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/intake", tags=["intake"])


@router.get("/progress", response_model=IntakeProgressEnvelope)
def get_progress(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Resume point for the intake wizard. `progress` is null when nothing is saved."""
    progress = load_progress(db, current_user)
    if progress is None:
        return IntakeProgressEnvelope(progress=None)
    return IntakeProgressEnvelope(progress=IntakeProgressResponse.model_validate(progress))


@router.post("/progress")
def post_progress(
    body: IntakeProgressSave,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    progress, is_new_intake = save_progress(
        db,
        current_user,
        current_step=body.current_step,
        responses=body.responses,
        selected_path=body.selected_path,
        total_steps=body.total_steps,
        is_complete=body.is_complete,
    )
    return {
        "success": True,
        "is_new_intake": is_new_intake,
        "progress": IntakeProgressResponse.model_validate(progress),
    }


@router.post("/submit", response_model=IntakeSubmissionResponse, status_code=status.HTTP_201_CREATED)
def post_submit(
    body: IntakeSubmission,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = submit_intake(db, current_user, body.classification, body.responses)
    return IntakeSubmissionResponse(
        client=ClientSummary.model_validate(result.client),
        packets=[PacketSummary.model_validate(p) for p in result.packets],
        message=f"Intake submitted. {len(result.packets)} packet(s) queued for generation.",
    )


@router.post("/analytics/start", response_model=AnalyticsStartResponse, status_code=status.HTTP_201_CREATED)
def start_analytics(body: AnalyticsStartRequest, db: Session = Depends(get_db)):
    record = intake_analytics.open_record(db, body.client_type)
    return AnalyticsStartResponse(analytics_id=record.id)


@router.post("/analytics", response_model=AnalyticsAbandonResponse)
async def abandon_analytics(request: Request, db: Session = Depends(get_db)):
    """
    Page-leave signal. Browsers send this with navigator.sendBeacon, which
    posts the JSON as text/plain, so the body is parsed by hand.
    """
    raw = await request.body()
    try:
        body = AnalyticsAbandonRequest.model_validate(json.loads(raw or b"{}"))
    except PayloadError as e:
        raise ValidationError.from_errors(e.errors())
    except ValueError:
        raise ValidationError("Request body must be JSON")

    try:
        record = intake_analytics.record_abandonment(db, body.client_type, body.drop_off_step)
    except ValidationError:
        raise
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to record intake abandonment for {body.client_type}: {e}")
        return AnalyticsAbandonResponse(success=False, closed=False)

    return AnalyticsAbandonResponse(closed=record is not None)
