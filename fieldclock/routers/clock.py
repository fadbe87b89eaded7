from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from fieldclock.core.authorization import Role, require_role
from fieldclock.core.errors import TimeclockError, to_http_exception
from fieldclock.core.timeutil import utcnow
from fieldclock.database import SessionLocal
from fieldclock.deps.auth import AuthContext, require_auth
from fieldclock.schemas.clock import (
    ClockEventResponse,
    ClockInRequest,
    ClockOutRequest,
    ClockRequest,
    ClockResponse,
)
from fieldclock.services import admission_engine, event_log

router = APIRouter(
    prefix="/clock",
    tags=["Clock"],
)


def _to_response(result: admission_engine.ClockResult) -> ClockResponse:
    return ClockResponse(**result.to_dict())


def _admit(payload: ClockInRequest | ClockOutRequest, auth: AuthContext) -> ClockResponse:
    command = admission_engine.ClockCommand(
        company_id=auth.company_id,
        worker_id=auth.user_id,
        job_id=int(payload.job_id),
        kind=payload.kind,
        client_event_id=payload.client_event_id,
        lat=payload.lat,
        lng=payload.lng,
        accuracy_m=payload.accuracy_m,
        requested_at=payload.requested_at or utcnow(),
        time_entry_id=getattr(payload, "time_entry_id", None),
    )
    try:
        result = admission_engine.request_clock(command)
    except TimeclockError as exc:
        raise to_http_exception(exc) from exc
    return _to_response(result)


@router.post("", response_model=ClockResponse)
def clock_endpoint(
    payload: ClockRequest = Body(...),
    auth: AuthContext = Depends(require_auth),
):
    return _admit(payload, auth)


@router.post("/in", response_model=ClockResponse)
def clock_in_endpoint(
    payload: ClockInRequest,
    auth: AuthContext = Depends(require_auth),
):
    return _admit(payload, auth)


@router.post("/out", response_model=ClockResponse)
def clock_out_endpoint(
    payload: ClockOutRequest,
    auth: AuthContext = Depends(require_auth),
):
    return _admit(payload, auth)


@router.get("/events", response_model=list[ClockEventResponse])
def list_clock_events(
    worker_id: Optional[str] = None,
    client_event_id: Optional[str] = None,
    outcome: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        rows = event_log.list_events(
            db,
            company_id=auth.company_id,
            worker_id=worker_id,
            client_event_id=client_event_id,
            outcome=outcome,
            limit=limit,
            offset=offset,
        )
        return [ClockEventResponse.model_validate(r, from_attributes=True) for r in rows]
    finally:
        db.close()
