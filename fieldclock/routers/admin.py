from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fieldclock.core.authorization import Role, require_role
from fieldclock.database import SessionLocal
from fieldclock.deps.auth import AuthContext
from fieldclock.services import auto_closeout

router = APIRouter(prefix="/admin", tags=["Admin"])


class AutoCloseoutRequest(BaseModel):
    dry_run: bool = False


class AutoCloseoutEntry(BaseModel):
    entry_id: str
    company_id: int
    worker_id: str
    job_id: int
    clock_in_at: str
    clock_out_at: str


class AutoCloseoutResponse(BaseModel):
    processed: int
    failed: int
    skipped: int
    purged_idempotency_records: int
    dry_run: bool
    entries: List[AutoCloseoutEntry]


@router.post("/auto_closeout/run", response_model=AutoCloseoutResponse)
def run_auto_closeout(
    payload: AutoCloseoutRequest,
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    lock_db = SessionLocal()
    have_lock = False
    try:
        have_lock = auto_closeout.try_acquire_closeout_lock(lock_db)
        if not have_lock:
            raise HTTPException(
                status_code=409,
                detail={"code": "conflict", "message": "Auto-closeout is already running"},
            )

        result = auto_closeout.run_auto_closeout_once(dry_run=payload.dry_run, company_id=auth.company_id)
    finally:
        if have_lock:
            auto_closeout.release_closeout_lock(lock_db)
        lock_db.close()

    return AutoCloseoutResponse(
        processed=result.processed,
        failed=result.failed,
        skipped=result.skipped,
        purged_idempotency_records=result.purged_idempotency_records,
        dry_run=result.dry_run,
        entries=[AutoCloseoutEntry(**e.__dict__) for e in result.entries],
    )
