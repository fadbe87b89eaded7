import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from fieldclock.core.settings import ClockSettings, get_settings
from fieldclock.core.timeutil import as_utc_naive, isoformat_utc, utcnow
from fieldclock.database import SessionLocal
from fieldclock.models.time_entry import TAG_AUTO_CLOSED, TimeEntry
from fieldclock.services import entry_store, idempotency_ledger

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system:auto-closeout"

_LOCK_KEYS = (4343, 4344)


@dataclass(frozen=True)
class CloseoutItem:
    entry_id: str
    company_id: int
    worker_id: str
    job_id: int
    clock_in_at: str
    clock_out_at: str


@dataclass
class AutoCloseoutResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    purged_idempotency_records: int = 0
    dry_run: bool = False
    entries: List[CloseoutItem] = field(default_factory=list)


def find_stale_entries(
    db: Session, *, cutoff: datetime, limit: int, company_id: Optional[int] = None
) -> List[TimeEntry]:
    q = db.query(TimeEntry).filter(
        TimeEntry.clock_out_at.is_(None),
        TimeEntry.clock_in_at < cutoff,
    )
    if company_id is not None:
        q = q.filter(TimeEntry.company_id == int(company_id))
    return (
        q.order_by(TimeEntry.clock_in_at.asc())
        .limit(int(limit))
        .all()
    )


def _close_one(entry_id: str, *, cutoff: datetime, max_shift: timedelta, now: datetime, retries: int) -> bool:
    def _close(db: Session) -> bool:
        entry = entry_store.get_entry(db, entry_id, for_update=True)
        # Clocked out (or edited) since the scan; nothing left to do.
        if entry is None or not entry.is_open or entry.clock_in_at >= cutoff:
            return False

        def mutate(row: TimeEntry) -> None:
            row.clock_out_at = row.clock_in_at + max_shift
            row.add_tags(TAG_AUTO_CLOSED)
            row.approved = False

        hours = max_shift.total_seconds() / 3600.0
        entry_store.apply_edit(
            db,
            entry,
            mutate,
            entry_store.AuditMeta(
                edited_by=SYSTEM_ACTOR,
                edit_reason=f"Exceeded {hours:g} hour maximum shift",
            ),
            now=now,
        )
        return True

    return entry_store.run_in_transaction(_close, retries=retries, label="auto_closeout")


def run_auto_closeout_once(
    *,
    now: Optional[datetime] = None,
    settings: Optional[ClockSettings] = None,
    dry_run: bool = False,
    company_id: Optional[int] = None,
) -> AutoCloseoutResult:
    """
    One sweep: close open entries older than the max shift, then purge expired
    idempotency records.

    Each entry is closed in its own transaction. A failing row is logged and
    left open for the next run; it never aborts the rest of the batch.

    With `company_id` both steps only touch that company's rows.
    """
    settings = settings or get_settings()
    now = as_utc_naive(now) if now is not None else utcnow()
    max_shift = timedelta(hours=float(settings.auto_closeout_max_shift_hours))
    cutoff = now - max_shift

    result = AutoCloseoutResult(dry_run=dry_run)

    db = SessionLocal()
    try:
        stale = find_stale_entries(
            db, cutoff=cutoff, limit=settings.auto_closeout_batch_size, company_id=company_id
        )
    finally:
        db.close()

    logger.info(
        "Auto-closeout scan",
        extra={
            "cutoff": cutoff.isoformat(),
            "candidates": len(stale),
            "batch_size": settings.auto_closeout_batch_size,
            "dry_run": dry_run,
            "company_id": company_id,
        },
    )

    for entry in stale:
        item = CloseoutItem(
            entry_id=entry.time_entry_id,
            company_id=entry.company_id,
            worker_id=entry.worker_id,
            job_id=entry.job_id,
            clock_in_at=isoformat_utc(entry.clock_in_at),
            clock_out_at=isoformat_utc(entry.clock_in_at + max_shift),
        )

        if dry_run:
            result.processed += 1
            result.entries.append(item)
            continue

        try:
            closed = _close_one(
                entry.time_entry_id,
                cutoff=cutoff,
                max_shift=max_shift,
                now=now,
                retries=settings.tx_retries,
            )
        except Exception:
            result.failed += 1
            logger.exception(
                "Auto-closeout failed for entry",
                extra={"time_entry_id": entry.time_entry_id, "worker_id": entry.worker_id},
            )
            continue

        if not closed:
            result.skipped += 1
            continue

        result.processed += 1
        result.entries.append(item)
        logger.info(
            "Time entry auto-closed",
            extra={
                "time_entry_id": item.entry_id,
                "worker_id": item.worker_id,
                "job_id": item.job_id,
                "company_id": item.company_id,
                "clock_in_at": item.clock_in_at,
                "clock_out_at": item.clock_out_at,
            },
        )

    if not dry_run:
        db = SessionLocal()
        try:
            result.purged_idempotency_records = idempotency_ledger.purge_expired(db, now, company_id=company_id)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Idempotency purge failed")
        finally:
            db.close()

    logger.info(
        "Auto-closeout finished",
        extra={
            "processed": result.processed,
            "failed": result.failed,
            "skipped": result.skipped,
            "purged_idempotency_records": result.purged_idempotency_records,
            "dry_run": dry_run,
        },
    )
    return result


def try_acquire_closeout_lock(db: Session) -> bool:
    if db.get_bind().dialect.name != "postgresql":
        return True
    res = db.execute(text("select pg_try_advisory_lock(:a, :b)"), {"a": _LOCK_KEYS[0], "b": _LOCK_KEYS[1]}).scalar()
    return bool(res)


def release_closeout_lock(db: Session) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("select pg_advisory_unlock(:a, :b)"), {"a": _LOCK_KEYS[0], "b": _LOCK_KEYS[1]})
