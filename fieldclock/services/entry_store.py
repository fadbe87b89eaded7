"""
Authoritative time entry store.

Every write to `time_entries` goes through this module. Clock-in/out use
`create_open_entry`/`close_entry`; every later correction (admin edit,
approval, auto-closeout) goes through `apply_edit`, which writes exactly one
AuditRecord per call.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from fieldclock.core.errors import AlreadyClockedIn, Conflict, EntryLocked, InvalidInput, TimeclockError
from fieldclock.core.timeutil import isoformat_utc, utcnow
from fieldclock.database import SessionLocal
from fieldclock.models.audit_record import AuditRecord
from fieldclock.models.time_entry import TimeEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AuditMeta:
    edited_by: str
    edit_reason: str
    force: bool = False


def run_in_transaction(fn: Callable[[Session], T], *, retries: int = 3, label: str = "time_entries") -> T:
    """
    Run `fn` in a fresh session and commit.

    Integrity and serialization failures mean another request for the same
    worker won the race; the whole read-modify-write is replayed so it sees the
    winner's state. After `retries` attempts the caller gets Conflict.
    """
    attempt = 0
    while True:
        attempt += 1
        db = SessionLocal()
        try:
            result = fn(db)
            db.commit()
            return result
        except TimeclockError:
            db.rollback()
            raise
        except (IntegrityError, OperationalError) as exc:
            db.rollback()
            if attempt >= int(retries):
                logger.warning(
                    "Transaction retries exhausted",
                    extra={"label": label, "attempts": attempt, "error": type(exc).__name__},
                )
                raise Conflict(
                    "Concurrent update in progress; retry with the same clientEventId",
                    context={"attempts": attempt},
                ) from exc
            logger.info(
                "Transaction contention; retrying",
                extra={"label": label, "attempt": attempt, "error": type(exc).__name__},
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def snapshot(entry: TimeEntry) -> Dict[str, Any]:
    return {
        "time_entry_id": entry.time_entry_id,
        "company_id": entry.company_id,
        "worker_id": entry.worker_id,
        "job_id": entry.job_id,
        "clock_in_at": isoformat_utc(entry.clock_in_at),
        "clock_out_at": isoformat_utc(entry.clock_out_at),
        "geo_ok_in": entry.geo_ok_in,
        "geo_ok_out": entry.geo_ok_out,
        "exception_tags": sorted(entry.exception_tags or []),
        "approved": bool(entry.approved),
        "approved_by": entry.approved_by,
        "invoice_id": entry.invoice_id,
        "version": entry.version,
        "notes": entry.notes,
    }


def get_entry(db: Session, entry_id: str, *, company_id: Optional[int] = None, for_update: bool = False) -> Optional[TimeEntry]:
    q = db.query(TimeEntry).filter(TimeEntry.time_entry_id == str(entry_id))
    if company_id is not None:
        q = q.filter(TimeEntry.company_id == int(company_id))
    if for_update:
        q = q.with_for_update()
    return q.first()


def get_open_entry(
    db: Session,
    worker_id: str,
    *,
    job_id: Optional[int] = None,
    for_update: bool = False,
) -> Optional[TimeEntry]:
    q = db.query(TimeEntry).filter(
        TimeEntry.worker_id == str(worker_id),
        TimeEntry.clock_out_at.is_(None),
    )
    if job_id is not None:
        q = q.filter(TimeEntry.job_id == int(job_id))
    if for_update:
        q = q.with_for_update()
    return q.order_by(TimeEntry.clock_in_at.desc()).first()


def find_by_event_id(db: Session, worker_id: str, client_event_id: str) -> Optional[TimeEntry]:
    """Entry created or closed by this client event, if any."""
    return (
        db.query(TimeEntry)
        .filter(
            TimeEntry.worker_id == str(worker_id),
            (TimeEntry.clock_in_event_id == str(client_event_id))
            | (TimeEntry.clock_out_event_id == str(client_event_id)),
        )
        .first()
    )


def create_open_entry(
    db: Session,
    *,
    company_id: int,
    worker_id: str,
    job_id: int,
    clock_in_at: datetime,
    clock_in_event_id: str,
    distance_m: Optional[float] = None,
    effective_radius_m: Optional[float] = None,
    accuracy_m: Optional[float] = None,
) -> TimeEntry:
    open_entry = get_open_entry(db, worker_id, for_update=True)
    if open_entry is not None:
        raise AlreadyClockedIn(
            "Already clocked in to a job",
            context={"time_entry_id": open_entry.time_entry_id, "job_id": open_entry.job_id},
        )

    now = utcnow()
    entry = TimeEntry(
        time_entry_id=str(uuid4()),
        company_id=int(company_id),
        worker_id=str(worker_id),
        job_id=int(job_id),
        clock_in_at=clock_in_at,
        clock_out_at=None,
        geo_ok_in=True,
        geo_ok_out=None,
        exception_tags=[],
        approved=False,
        version=1,
        clock_in_event_id=str(clock_in_event_id),
        effective_radius_in_m=effective_radius_m,
        distance_in_m=distance_m,
        accuracy_in_m=accuracy_m,
        created_at=now,
        updated_at=now,
    )
    db.add(entry)
    db.flush()
    return entry


def close_entry(
    db: Session,
    entry: TimeEntry,
    *,
    clock_out_at: datetime,
    clock_out_event_id: Optional[str],
    geo_ok_out: bool,
    tags: Iterable[str] = (),
    distance_m: Optional[float] = None,
    effective_radius_m: Optional[float] = None,
    accuracy_m: Optional[float] = None,
) -> TimeEntry:
    if not entry.is_open:
        raise InvalidInput("Time entry is already closed", context={"time_entry_id": entry.time_entry_id})
    # Invoiced rows only change through a forced apply_edit.
    if entry.is_locked:
        raise EntryLocked(
            "Time entry is invoiced and locked; an admin force edit is required",
            context={"time_entry_id": entry.time_entry_id, "invoice_id": entry.invoice_id},
        )
    if clock_out_at <= entry.clock_in_at:
        raise InvalidInput(
            "Clock-out must be after clock-in",
            context={"clock_in_at": isoformat_utc(entry.clock_in_at)},
        )

    entry.clock_out_at = clock_out_at
    entry.clock_out_event_id = clock_out_event_id
    entry.geo_ok_out = bool(geo_ok_out)
    entry.add_tags(*tags)
    entry.distance_out_m = distance_m
    entry.effective_radius_out_m = effective_radius_m
    entry.accuracy_out_m = accuracy_m
    entry.updated_at = utcnow()

    db.flush()
    return entry


def apply_edit(
    db: Session,
    entry: TimeEntry,
    mutator: Callable[[TimeEntry], None],
    meta: AuditMeta,
    *,
    now: Optional[datetime] = None,
) -> AuditRecord:
    if entry.is_locked and not meta.force:
        raise EntryLocked(
            "Time entry is invoiced and locked",
            context={"time_entry_id": entry.time_entry_id, "invoice_id": entry.invoice_id},
        )

    now = now or utcnow()
    before = snapshot(entry)
    was_open = entry.is_open

    mutator(entry)

    if entry.clock_out_at is None and not was_open:
        raise InvalidInput("A closed time entry cannot be reopened")
    if entry.clock_out_at is not None and entry.clock_out_at <= entry.clock_in_at:
        raise InvalidInput("Clock-out must be after clock-in")

    after_times = (isoformat_utc(entry.clock_in_at), isoformat_utc(entry.clock_out_at))
    if after_times != (before["clock_in_at"], before["clock_out_at"]):
        entry.approved = False
        entry.approved_by = None
        entry.approved_at = None

    entry.version = int(before["version"] or 0) + 1
    entry.updated_at = now

    audit = AuditRecord(
        id=str(uuid4()),
        entry_id=entry.time_entry_id,
        company_id=entry.company_id,
        edited_by=str(meta.edited_by),
        edit_reason=meta.edit_reason,
        before=before,
        after=snapshot(entry),
        force_edit=bool(meta.force),
        created_at=now,
    )
    db.add(audit)
    db.flush()
    return audit
