"""
Funnel Analytics Recorder

One IntakeAnalytics row per intake attempt. Rows are keyed by the
classification value only; a row is opened when an attempt starts and closed
exactly once, as either completed or abandoned.

Callers treat everything here as advisory telemetry. Nothing in this module
may block or roll back the intake flow that triggered it.
"""
import logging
import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from models import ClientType, IntakeAnalytics, as_utc, utcnow

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_ABANDONED = "abandoned"

VALID_CLIENT_TYPES = {t.value for t in ClientType}


def validate_client_type(client_type: Optional[str], field: str = "client_type") -> str:
    if not client_type or client_type not in VALID_CLIENT_TYPES:
        raise ValidationError(
            f"Invalid client type: {client_type!r}. Must be one of {sorted(VALID_CLIENT_TYPES)}",
            field=field,
        )
    return client_type


def open_record(db: Session, client_type: str, started_at: Optional[datetime] = None) -> IntakeAnalytics:
    """Start a funnel record for this classification."""
    validate_client_type(client_type)
    record = IntakeAnalytics(client_type=client_type, started_at=started_at or utcnow())
    db.add(record)
    db.commit()
    logger.info(
        f"Opened intake analytics record for {client_type}",
        extra={"extra_fields": {"analytics_id": str(record.id), "client_type": client_type}},
    )
    return record


def find_open_record(db: Session, client_type: str) -> Optional[IntakeAnalytics]:
    """Most recently started record for the classification with no outcome yet."""
    return (
        db.query(IntakeAnalytics)
        .filter(
            IntakeAnalytics.client_type == client_type,
            IntakeAnalytics.completed_at.is_(None),
            IntakeAnalytics.abandoned_at.is_(None),
        )
        .order_by(IntakeAnalytics.started_at.desc())
        .first()
    )


def close_record(
    db: Session,
    client_type: str,
    outcome: str,
    drop_off_step: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[IntakeAnalytics]:
    """
    Close the open record for `client_type` with the given outcome.

    Returns the closed record, or None when there was nothing open (or a
    concurrent caller closed it first). The UPDATE is conditional on the row
    still being open, so a record can never end up with both timestamps.
    """
    if outcome not in (OUTCOME_COMPLETED, OUTCOME_ABANDONED):
        raise ValueError(f"Unknown analytics outcome: {outcome}")

    record = find_open_record(db, client_type)
    if record is None:
        logger.debug(f"No open intake analytics record for {client_type}; nothing to close")
        return None

    closed_at = now or utcnow()
    values = {}
    if outcome == OUTCOME_COMPLETED:
        elapsed = (closed_at - as_utc(record.started_at)).total_seconds()
        values["completed_at"] = closed_at
        values["completion_time"] = max(0, math.floor(elapsed))
    else:
        values["abandoned_at"] = closed_at
        values["drop_off_step"] = drop_off_step

    result = db.execute(
        update(IntakeAnalytics)
        .where(
            IntakeAnalytics.id == record.id,
            IntakeAnalytics.completed_at.is_(None),
            IntakeAnalytics.abandoned_at.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if result.rowcount == 0:
        logger.info(f"Intake analytics record {record.id} was closed concurrently")
        return None

    db.refresh(record)
    logger.info(
        f"Closed intake analytics record as {outcome}",
        extra={"extra_fields": {
            "analytics_id": str(record.id),
            "client_type": client_type,
            "completion_time": record.completion_time,
            "drop_off_step": record.drop_off_step,
        }},
    )
    return record


def record_completion(db: Session, client_type: str, now: Optional[datetime] = None) -> Optional[IntakeAnalytics]:
    return close_record(db, client_type, OUTCOME_COMPLETED, now=now)


def record_abandonment(
    db: Session,
    client_type: str,
    drop_off_step: Optional[int],
    now: Optional[datetime] = None,
) -> Optional[IntakeAnalytics]:
    validate_client_type(client_type)
    if drop_off_step is not None and drop_off_step < 0:
        raise ValidationError("drop_off_step must be a non-negative integer", field="drop_off_step")
    return close_record(db, client_type, OUTCOME_ABANDONED, drop_off_step=drop_off_step, now=now)


def _summarize(client_type: str, records: List[IntakeAnalytics]) -> Dict:
    completed = [r for r in records if r.completed_at is not None]
    abandoned = [r for r in records if r.abandoned_at is not None]
    times = [r.completion_time for r in completed if r.completion_time is not None]
    drop_offs = Counter(r.drop_off_step for r in abandoned if r.drop_off_step is not None)

    started = len(records)
    return {
        "client_type": client_type,
        "started": started,
        "completed": len(completed),
        "abandoned": len(abandoned),
        "open": started - len(completed) - len(abandoned),
        "completion_rate": round(100.0 * len(completed) / started, 1) if started else 0.0,
        "avg_completion_time_s": round(sum(times) / len(times), 1) if times else None,
        "drop_off_by_step": dict(sorted(drop_offs.items())),
    }


def funnel_summary(db: Session, days: int = 30, now: Optional[datetime] = None) -> Dict:
    """
    Funnel counts over the trailing `days` window, overall and per classification.

    Only classifications with at least one record in the window are listed.
    """
    if days < 1:
        raise ValidationError("days must be at least 1", field="days")

    since = (now or utcnow()) - timedelta(days=days)
    records = (
        db.query(IntakeAnalytics)
        .filter(IntakeAnalytics.started_at >= since)
        .order_by(IntakeAnalytics.started_at.asc())
        .all()
    )

    by_type: Dict[str, List[IntakeAnalytics]] = {}
    for record in records:
        by_type.setdefault(record.client_type, []).append(record)

    return {
        "window_days": days,
        "since": since,
        "totals": _summarize("ALL", records),
        "by_client_type": [
            _summarize(t.value, by_type[t.value]) for t in ClientType if t.value in by_type
        ],
    }
