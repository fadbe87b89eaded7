import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from fieldclock.core.errors import EntryLocked, EntryNotFound, Forbidden, InvalidInput, OverlapDetected, TimeclockError
from fieldclock.core.settings import ClockSettings, get_settings
from fieldclock.core.timeutil import as_utc_naive, isoformat_utc, utcnow
from fieldclock.models.audit_record import AuditRecord
from fieldclock.models.time_entry import TAG_CANCELLED, TAG_FORCED_EDIT, TAG_OVERLAP, TimeEntry
from fieldclock.services import entry_store

logger = logging.getLogger(__name__)

EDIT_REASON_MIN = 3
EDIT_REASON_MAX = 500
MAX_APPROVAL_BATCH = 500

EDITOR_ROLES = {"ADMIN", "MANAGER"}


@dataclass(frozen=True)
class EntryChanges:
    clock_in_at: Optional[datetime] = None
    clock_out_at: Optional[datetime] = None
    notes: Optional[str] = None
    cancelled: Optional[bool] = None

    def is_empty(self) -> bool:
        return (
            self.clock_in_at is None
            and self.clock_out_at is None
            and self.notes is None
            and self.cancelled is None
        )

    def touches_time(self) -> bool:
        return self.clock_in_at is not None or self.clock_out_at is not None


@dataclass(frozen=True)
class EditResult:
    entry: TimeEntry
    audit_record_id: str
    has_overlap: bool
    requires_reapproval: bool
    force_edit: bool


@dataclass
class ApprovalResult:
    approved: int = 0
    failed: int = 0
    errors: List[dict] = field(default_factory=list)


def _check_editor(actor_role: str, force: bool) -> None:
    role = str(actor_role or "").upper()
    if role not in EDITOR_ROLES:
        raise Forbidden("Only admin or manager can edit time entries")
    if force and role != "ADMIN":
        raise Forbidden("Only admin can force-edit time entries")


def validate_edit_reason(edit_reason: Optional[str]) -> str:
    reason = (edit_reason or "").strip()
    if len(reason) < EDIT_REASON_MIN or len(reason) > EDIT_REASON_MAX:
        raise InvalidInput(
            f"editReason must be between {EDIT_REASON_MIN} and {EDIT_REASON_MAX} characters",
            context={"length": len(reason)},
        )
    return reason


def find_overlaps(
    db: Session,
    entry: TimeEntry,
    start: datetime,
    end: Optional[datetime],
) -> List[TimeEntry]:
    """Other non-cancelled entries of the same worker intersecting [start, end)."""
    q = db.query(TimeEntry).filter(
        TimeEntry.company_id == entry.company_id,
        TimeEntry.worker_id == entry.worker_id,
        TimeEntry.time_entry_id != entry.time_entry_id,
        (TimeEntry.clock_out_at.is_(None)) | (TimeEntry.clock_out_at > start),
    )
    if end is not None:
        q = q.filter(TimeEntry.clock_in_at < end)

    return [other for other in q.order_by(TimeEntry.clock_in_at.asc()).all() if TAG_CANCELLED not in other.tag_set()]


def edit_time_entry(
    entry_id: str,
    changes: EntryChanges,
    edit_reason: str,
    actor_id: str,
    *,
    company_id: int,
    actor_role: str,
    force: bool = False,
    now: Optional[datetime] = None,
    settings: Optional[ClockSettings] = None,
) -> EditResult:
    settings = settings or get_settings()
    now = as_utc_naive(now) if now is not None else utcnow()

    reason = validate_edit_reason(edit_reason)
    _check_editor(actor_role, force)

    if changes.is_empty():
        raise InvalidInput("No changes specified")

    new_in = as_utc_naive(changes.clock_in_at) if changes.clock_in_at is not None else None
    new_out = as_utc_naive(changes.clock_out_at) if changes.clock_out_at is not None else None

    def _edit(db: Session) -> EditResult:
        entry = entry_store.get_entry(db, entry_id, company_id=company_id, for_update=True)
        if entry is None:
            raise EntryNotFound("Time entry not found", context={"time_entry_id": entry_id})

        was_locked = entry.is_locked
        if was_locked and not force:
            raise EntryLocked(
                "Time entry is invoiced and locked; an admin force edit is required",
                context={"time_entry_id": entry.time_entry_id, "invoice_id": entry.invoice_id},
            )

        target_in = new_in or entry.clock_in_at
        target_out = new_out or entry.clock_out_at

        if target_out is not None and target_out <= target_in:
            raise InvalidInput("Clock-out must be after clock-in")

        if target_out is not None:
            duration = target_out - target_in
            if duration > timedelta(hours=float(settings.edit_max_shift_hours)):
                raise InvalidInput(
                    f"Shift duration cannot exceed {float(settings.edit_max_shift_hours):g} hours",
                    context={"duration_hours": round(duration.total_seconds() / 3600.0, 2)},
                )

        overlaps: List[TimeEntry] = []
        cancelling = changes.cancelled is True
        if changes.touches_time() and not cancelling:
            overlaps = find_overlaps(db, entry, target_in, target_out)
            if overlaps and not force:
                raise OverlapDetected(
                    "Edited window overlaps another entry for this worker",
                    context={
                        "overlapping_entry_ids": [o.time_entry_id for o in overlaps],
                        "clock_in_at": isoformat_utc(target_in),
                        "clock_out_at": isoformat_utc(target_out),
                    },
                )

        def mutate(row: TimeEntry) -> None:
            if new_in is not None:
                row.clock_in_at = new_in
            if new_out is not None:
                row.clock_out_at = new_out
            if changes.notes is not None:
                row.notes = changes.notes
            if changes.cancelled is True:
                row.add_tags(TAG_CANCELLED)
            elif changes.cancelled is False:
                row.remove_tags(TAG_CANCELLED)
            if overlaps:
                row.add_tags(TAG_OVERLAP)
            if force and was_locked:
                row.add_tags(TAG_FORCED_EDIT)

        was_approved = bool(entry.approved)
        audit = entry_store.apply_edit(
            db,
            entry,
            mutate,
            entry_store.AuditMeta(edited_by=actor_id, edit_reason=reason, force=force),
            now=now,
        )
        return EditResult(
            entry=entry,
            audit_record_id=audit.id,
            has_overlap=bool(overlaps),
            requires_reapproval=was_approved and not entry.approved,
            force_edit=bool(force),
        )

    result = entry_store.run_in_transaction(_edit, retries=settings.tx_retries, label="edit_time_entry")

    log = logger.warning if result.force_edit else logger.info
    log(
        "Time entry edited",
        extra={
            "time_entry_id": entry_id,
            "company_id": company_id,
            "edited_by": actor_id,
            "force_edit": result.force_edit,
            "has_overlap": result.has_overlap,
            "version": result.entry.version,
            "audit_record_id": result.audit_record_id,
        },
    )
    return result


def approve_entries(
    entry_ids: List[str],
    *,
    company_id: int,
    actor_id: str,
    actor_role: str,
    now: Optional[datetime] = None,
    settings: Optional[ClockSettings] = None,
) -> ApprovalResult:
    settings = settings or get_settings()
    now = as_utc_naive(now) if now is not None else utcnow()

    _check_editor(actor_role, force=False)

    if not entry_ids:
        raise InvalidInput("entryIds must be a non-empty list")
    if len(entry_ids) > MAX_APPROVAL_BATCH:
        raise InvalidInput(f"Maximum {MAX_APPROVAL_BATCH} entries per batch. Split into multiple requests.")

    result = ApprovalResult()

    for entry_id in dict.fromkeys(str(e) for e in entry_ids):

        def _approve(db: Session) -> None:
            entry = entry_store.get_entry(db, entry_id, company_id=company_id, for_update=True)
            if entry is None:
                raise EntryNotFound("Time entry not found")
            if entry.approved:
                return
            if entry.is_open:
                raise InvalidInput("Open time entries cannot be approved")

            def mutate(row: TimeEntry) -> None:
                row.approved = True
                row.approved_by = str(actor_id)
                row.approved_at = now

            entry_store.apply_edit(
                db,
                entry,
                mutate,
                entry_store.AuditMeta(edited_by=actor_id, edit_reason="Bulk approval"),
                now=now,
            )

        try:
            entry_store.run_in_transaction(_approve, retries=settings.tx_retries, label="approve_time_entry")
            result.approved += 1
        except TimeclockError as exc:
            result.failed += 1
            result.errors.append({"entry_id": entry_id, "code": exc.code, "error": exc.message})

    logger.info(
        "Bulk approval finished",
        extra={
            "company_id": company_id,
            "approved_by": actor_id,
            "approved": result.approved,
            "failed": result.failed,
        },
    )
    return result


def list_audit_records(db: Session, entry_id: str, *, company_id: int) -> List[AuditRecord]:
    return (
        db.query(AuditRecord)
        .filter(
            AuditRecord.entry_id == str(entry_id),
            AuditRecord.company_id == int(company_id),
        )
        .order_by(AuditRecord.created_at.asc(), AuditRecord.id.asc())
        .all()
    )
