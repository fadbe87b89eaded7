import logging
import math
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from fieldclock.core.timeutil import utcnow
from fieldclock.database import SessionLocal
from fieldclock.models.clock_event import ClockEvent

logger = logging.getLogger(__name__)


def _finite_or_none(value) -> Optional[float]:
    if value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return v


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def append_event(
    *,
    company_id: int,
    worker_id: str,
    job_id,
    kind: str,
    client_event_id: Optional[str],
    requested_at: Optional[datetime],
    lat=None,
    lng=None,
    accuracy_m=None,
    outcome: str,
    rejection_reason: Optional[str] = None,
    message: Optional[str] = None,
    entry_id: Optional[str] = None,
    distance_m: Optional[float] = None,
    db: Optional[Session] = None,
) -> Optional[str]:
    """
    Append one attempt to the event log.

    Runs after the authoritative write has committed, so a failure here is
    logged and reported as None instead of failing a request whose outcome is
    already decided.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    event_id = str(uuid4())
    try:
        db.add(
            ClockEvent(
                id=event_id,
                company_id=int(company_id),
                worker_id=str(worker_id),
                job_id=_int_or_none(job_id),
                kind=str(kind)[:3],
                client_event_id=str(client_event_id)[:64] if client_event_id else None,
                requested_at=requested_at,
                lat=_finite_or_none(lat),
                lng=_finite_or_none(lng),
                accuracy_m=_finite_or_none(accuracy_m),
                outcome=outcome,
                rejection_reason=rejection_reason,
                message=message,
                entry_id=entry_id,
                distance_m=_finite_or_none(distance_m),
                created_at=utcnow(),
            )
        )
        db.flush()
        if owns_db:
            db.commit()
        return event_id
    except Exception:
        if owns_db:
            db.rollback()
        logger.exception(
            "Clock event append failed",
            extra={"worker_id": worker_id, "client_event_id": client_event_id, "outcome": outcome},
        )
        if not owns_db:
            raise
        return None
    finally:
        if owns_db:
            db.close()


def list_events(
    db: Session,
    *,
    company_id: int,
    worker_id: Optional[str] = None,
    client_event_id: Optional[str] = None,
    outcome: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[ClockEvent]:
    q = db.query(ClockEvent).filter(ClockEvent.company_id == int(company_id))
    if worker_id is not None:
        q = q.filter(ClockEvent.worker_id == str(worker_id))
    if client_event_id is not None:
        q = q.filter(ClockEvent.client_event_id == str(client_event_id))
    if outcome is not None:
        q = q.filter(ClockEvent.outcome == str(outcome))
    return (
        q.order_by(ClockEvent.created_at.desc(), ClockEvent.id.asc())
        .offset(int(offset))
        .limit(int(limit))
        .all()
    )
