from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from fieldclock.core.authorization import Role, has_role, require_role
from fieldclock.core.errors import TimeclockError, to_http_exception
from fieldclock.core.timeutil import as_utc_naive
from fieldclock.database import SessionLocal
from fieldclock.deps.auth import AuthContext, require_auth
from fieldclock.models.time_entry import TimeEntry
from fieldclock.schemas.time_entry import (
    ApproveRequest,
    ApproveResponse,
    AuditRecordResponse,
    EditTimeEntryRequest,
    EditTimeEntryResponse,
    TimeEntryResponse,
)
from fieldclock.services import audit_service, entry_store

router = APIRouter(
    prefix="/time_entries",
    tags=["Time Entries"],
)


def _to_response(entry: TimeEntry) -> TimeEntryResponse:
    return TimeEntryResponse.model_validate(entry, from_attributes=True)


def _visible_worker_id(auth: AuthContext, worker_id: Optional[str]) -> Optional[str]:
    """Employees only ever see their own entries."""
    if has_role(auth, Role.MANAGER):
        return worker_id
    if worker_id is not None and worker_id != auth.user_id:
        raise HTTPException(status_code=403, detail="Insufficient role")
    return auth.user_id


@router.get("", response_model=list[TimeEntryResponse])
def list_time_entries(
    worker_id: Optional[str] = None,
    job_id: Optional[int] = None,
    open_only: bool = False,
    approved: Optional[bool] = None,
    clock_in_from: Optional[datetime] = None,
    clock_in_to: Optional[datetime] = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(require_auth),
):
    worker_id = _visible_worker_id(auth, worker_id)

    db = SessionLocal()
    try:
        q = db.query(TimeEntry).filter(TimeEntry.company_id == auth.company_id)

        if worker_id is not None:
            q = q.filter(TimeEntry.worker_id == str(worker_id))
        if job_id is not None:
            q = q.filter(TimeEntry.job_id == int(job_id))
        if open_only:
            q = q.filter(TimeEntry.clock_out_at.is_(None))
        if approved is not None:
            q = q.filter(TimeEntry.approved.is_(bool(approved)))
        if clock_in_from is not None:
            q = q.filter(TimeEntry.clock_in_at >= as_utc_naive(clock_in_from))
        if clock_in_to is not None:
            q = q.filter(TimeEntry.clock_in_at <= as_utc_naive(clock_in_to))

        rows = (
            q.order_by(TimeEntry.clock_in_at.desc(), TimeEntry.time_entry_id.asc())
            .offset(int(offset))
            .limit(int(limit))
            .all()
        )
        return [_to_response(r) for r in rows]
    finally:
        db.close()


@router.get("/active", response_model=TimeEntryResponse)
def get_active_time_entry(
    worker_id: Optional[str] = None,
    auth: AuthContext = Depends(require_auth),
):
    worker_id = _visible_worker_id(auth, worker_id) or auth.user_id

    db = SessionLocal()
    try:
        entry = entry_store.get_open_entry(db, worker_id)
        if entry is None or entry.company_id != auth.company_id:
            raise HTTPException(status_code=404, detail="No active time entry")
        return _to_response(entry)
    finally:
        db.close()


@router.post("/approve", response_model=ApproveResponse)
def approve_time_entries(
    payload: ApproveRequest,
    auth: AuthContext = Depends(require_role(Role.MANAGER)),
):
    try:
        result = audit_service.approve_entries(
            payload.entry_ids,
            company_id=auth.company_id,
            actor_id=auth.user_id,
            actor_role=auth.role,
        )
    except TimeclockError as exc:
        raise to_http_exception(exc) from exc

    return ApproveResponse(approved=result.approved, failed=result.failed, errors=result.errors)


@router.get("/{time_entry_id}", response_model=TimeEntryResponse)
def get_time_entry(
    time_entry_id: str,
    auth: AuthContext = Depends(require_auth),
):
    db = SessionLocal()
    try:
        entry = entry_store.get_entry(db, time_entry_id, company_id=auth.company_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Time entry not found")
        _visible_worker_id(auth, entry.worker_id)
        return _to_response(entry)
    finally:
        db.close()


@router.patch("/{time_entry_id}", response_model=EditTimeEntryResponse)
def edit_time_entry(
    time_entry_id: str,
    payload: EditTimeEntryRequest,
    auth: AuthContext = Depends(require_role(Role.MANAGER)),
):
    changes = audit_service.EntryChanges(
        clock_in_at=payload.clock_in_at,
        clock_out_at=payload.clock_out_at,
        notes=payload.notes,
        cancelled=payload.cancelled,
    )
    try:
        result = audit_service.edit_time_entry(
            time_entry_id,
            changes,
            payload.edit_reason,
            auth.user_id,
            company_id=auth.company_id,
            actor_role=auth.role,
            force=payload.force,
        )
    except TimeclockError as exc:
        raise to_http_exception(exc) from exc

    return EditTimeEntryResponse(
        entry=_to_response(result.entry),
        audit_record_id=result.audit_record_id,
        has_overlap=result.has_overlap,
        requires_reapproval=result.requires_reapproval,
        force_edit=result.force_edit,
    )


@router.get("/{time_entry_id}/audit", response_model=list[AuditRecordResponse])
def list_time_entry_audit(
    time_entry_id: str,
    auth: AuthContext = Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        rows = audit_service.list_audit_records(db, time_entry_id, company_id=auth.company_id)
        return [AuditRecordResponse.model_validate(r, from_attributes=True) for r in rows]
    finally:
        db.close()
