import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fieldclock.models.idempotency_record import IdempotencyRecord

logger = logging.getLogger(__name__)


def lookup(db: Session, worker_id: str, client_event_id: str, now: datetime) -> Optional[Dict[str, Any]]:
    row = db.get(IdempotencyRecord, (str(worker_id), str(client_event_id)))
    if row is None:
        return None
    if row.expires_at <= now:
        return None
    return dict(row.result)


def record(
    db: Session,
    *,
    worker_id: str,
    company_id: int,
    client_event_id: str,
    kind: str,
    result: Dict[str, Any],
    now: datetime,
    ttl_hours: int,
) -> bool:
    """
    Store the first result for a key. Commits on its own.

    Returns False when another request already recorded the key; the earlier
    result stands and is never overwritten.
    """
    existing = db.get(IdempotencyRecord, (str(worker_id), str(client_event_id)))
    if existing is not None:
        if existing.expires_at > now:
            return False
        # Expired rows are replaced rather than left to shadow the new result.
        db.delete(existing)
        db.flush()

    db.add(
        IdempotencyRecord(
            worker_id=str(worker_id),
            client_event_id=str(client_event_id),
            company_id=int(company_id),
            kind=kind,
            result=result,
            created_at=now,
            expires_at=now + timedelta(hours=int(ttl_hours)),
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "Idempotency key already recorded",
            extra={"worker_id": worker_id, "client_event_id": client_event_id},
        )
        return False
    return True


def purge_expired(db: Session, now: datetime, *, limit: int = 1000, company_id: Optional[int] = None) -> int:
    q = db.query(IdempotencyRecord).filter(IdempotencyRecord.expires_at <= now)
    if company_id is not None:
        q = q.filter(IdempotencyRecord.company_id == int(company_id))
    rows = (
        q.order_by(IdempotencyRecord.expires_at.asc())
        .limit(int(limit))
        .all()
    )
    for row in rows:
        db.delete(row)
    db.flush()
    return len(rows)
