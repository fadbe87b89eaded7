"""
Clock-in/clock-out admission.

Order of checks for one request:
  1. boundary validation of the command
  2. idempotency (ledger, then entries already stamped with the event id)
  3. assignment lookup at requested_at
  4. geofence with the adaptive radius (hard gate on IN, soft gate on OUT)
  5. read-then-write of the worker's entry inside one transaction
  6. after commit: idempotency record + event log append

Rejections are not written to the idempotency ledger, so a retry with the same
clientEventId is evaluated again (e.g. after walking into range).
"""
import logging
import math
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from fieldclock.core.errors import InvalidInput, LowAccuracy, NotClockedIn, OutsideGeofence, TimeclockError
from fieldclock.core.settings import ClockSettings, get_settings
from fieldclock.core.timeutil import as_utc_naive, utcnow
from fieldclock.database import SessionLocal
from fieldclock.models.clock_event import (
    OUTCOME_ACCEPTED,
    OUTCOME_DUPLICATE,
    OUTCOME_ERROR,
    OUTCOME_REJECTED,
)
from fieldclock.models.time_entry import TAG_GEOFENCE_OUT, TAG_LOW_ACCURACY_OUT, TimeEntry
from fieldclock.services import assignment_lookup, entry_store, event_log, geometry, idempotency_ledger

logger = logging.getLogger(__name__)

KIND_IN = "IN"
KIND_OUT = "OUT"

MAX_REPORTED_ACCURACY_M = 2000.0
CLIENT_EVENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_:.\-]{1,64}$")


@dataclass(frozen=True)
class ClockCommand:
    company_id: int
    worker_id: str
    job_id: int
    kind: str
    client_event_id: str
    lat: float
    lng: float
    accuracy_m: Optional[float]
    requested_at: datetime
    time_entry_id: Optional[str] = None


@dataclass(frozen=True)
class ClockResult:
    status: str
    kind: str
    entry_id: str
    geo_ok: bool
    distance_m: Optional[float]
    effective_radius_m: Optional[float]
    exception_tags: Tuple[str, ...] = field(default_factory=tuple)
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["exception_tags"] = list(self.exception_tags)
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ClockResult":
        return cls(
            status=payload["status"],
            kind=payload["kind"],
            entry_id=payload["entry_id"],
            geo_ok=bool(payload["geo_ok"]),
            distance_m=payload.get("distance_m"),
            effective_radius_m=payload.get("effective_radius_m"),
            exception_tags=tuple(payload.get("exception_tags") or ()),
            warning=payload.get("warning"),
        )


@dataclass(frozen=True)
class GeofenceDecision:
    inside: bool
    distance_m: float
    effective_radius_m: float
    bearing_deg: float
    direction: str
    accuracy_ok: bool


def _round1(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), 1)


def validate_command(command: ClockCommand, *, now: datetime, settings: ClockSettings) -> ClockCommand:
    kind = str(command.kind or "").upper()
    if kind not in (KIND_IN, KIND_OUT):
        raise InvalidInput("kind must be IN or OUT")

    cid = command.client_event_id
    if not cid or not CLIENT_EVENT_ID_PATTERN.match(str(cid)):
        raise InvalidInput(
            "clientEventId must be 1-64 characters of letters, digits, '_', ':', '.' or '-'"
        )

    if not command.worker_id:
        raise InvalidInput("workerId is required")

    point = geometry.validate_coordinate(geometry.Coordinate(lat=command.lat, lng=command.lng))

    accuracy = command.accuracy_m
    if accuracy is not None:
        try:
            accuracy = float(accuracy)
        except (TypeError, ValueError) as exc:
            raise InvalidInput("Invalid accuracy: not a number") from exc
        if math.isnan(accuracy) or accuracy < 0 or accuracy > MAX_REPORTED_ACCURACY_M:
            raise InvalidInput("Invalid accuracy: must be between 0 and 2000 meters")

    if command.requested_at is None:
        raise InvalidInput("requestedAt is required")
    requested_at = as_utc_naive(command.requested_at)
    if requested_at > now + timedelta(seconds=int(settings.max_future_skew_seconds)):
        raise InvalidInput(
            "requestedAt is in the future; check the device clock",
            context={"server_time": now.isoformat()},
        )

    return ClockCommand(
        company_id=int(command.company_id),
        worker_id=str(command.worker_id),
        job_id=int(command.job_id),
        kind=kind,
        client_event_id=str(cid),
        lat=point.lat,
        lng=point.lng,
        accuracy_m=accuracy,
        requested_at=requested_at,
        time_entry_id=command.time_entry_id,
    )


def evaluate_geofence(
    command: ClockCommand,
    site: assignment_lookup.JobSite,
    settings: ClockSettings,
) -> GeofenceDecision:
    point = geometry.Coordinate(lat=command.lat, lng=command.lng)
    radius = geometry.effective_radius(site.radius_m, command.accuracy_m)
    distance = geometry.distance_meters(point, site.center)
    bearing = geometry.initial_bearing(point, site.center)
    accuracy_ok = command.accuracy_m is None or command.accuracy_m <= float(settings.clock_in_max_accuracy_m)

    return GeofenceDecision(
        inside=distance <= radius,
        distance_m=distance,
        effective_radius_m=radius,
        bearing_deg=bearing,
        direction=geometry.compass_direction(bearing),
        accuracy_ok=accuracy_ok,
    )


def _enforce_clock_in_gate(command: ClockCommand, decision: GeofenceDecision, settings: ClockSettings) -> None:
    if not decision.accuracy_ok:
        raise LowAccuracy(
            f"GPS accuracy too low. Please wait for better signal (current: {command.accuracy_m:.0f}m, "
            f"required: {float(settings.clock_in_max_accuracy_m):.0f}m)",
            context={
                "accuracy_m": command.accuracy_m,
                "max_accuracy_m": float(settings.clock_in_max_accuracy_m),
            },
        )

    if not decision.inside:
        raise OutsideGeofence(
            f"Outside geofence: {decision.distance_m:.1f}m from job site "
            f"(max {decision.effective_radius_m:.1f}m). Head {decision.direction} to reach the site.",
            context={
                "distance_m": _round1(decision.distance_m),
                "effective_radius_m": _round1(decision.effective_radius_m),
                "bearing_deg": _round1(decision.bearing_deg),
                "direction": decision.direction,
            },
        )


def _result_for_entry(entry: TimeEntry, kind: str) -> ClockResult:
    """Responses are rebuilt from the entry so duplicates answer identically."""
    if kind == KIND_IN:
        return ClockResult(
            status=OUTCOME_ACCEPTED,
            kind=KIND_IN,
            entry_id=entry.time_entry_id,
            geo_ok=bool(entry.geo_ok_in),
            distance_m=_round1(entry.distance_in_m),
            effective_radius_m=_round1(entry.effective_radius_in_m),
        )

    tags = []
    if entry.geo_ok_out is False:
        tags.append(TAG_GEOFENCE_OUT)
    if TAG_LOW_ACCURACY_OUT in entry.tag_set():
        tags.append(TAG_LOW_ACCURACY_OUT)

    warning = None
    if entry.geo_ok_out is False:
        warning = (
            f"Clocked out outside geofence ({float(entry.distance_out_m or 0.0):.1f}m from job site). "
            "Entry flagged for review."
        )
    elif TAG_LOW_ACCURACY_OUT in tags:
        warning = "Clocked out with low GPS accuracy. Entry flagged for review."

    return ClockResult(
        status=OUTCOME_ACCEPTED,
        kind=KIND_OUT,
        entry_id=entry.time_entry_id,
        geo_ok=bool(entry.geo_ok_out),
        distance_m=_round1(entry.distance_out_m),
        effective_radius_m=_round1(entry.effective_radius_out_m),
        exception_tags=tuple(sorted(tags)),
        warning=warning,
    )


def _kind_for_event(entry: TimeEntry, client_event_id: str) -> str:
    return KIND_OUT if entry.clock_out_event_id == client_event_id else KIND_IN


def _resolve_duplicate(db: Session, command: ClockCommand) -> Optional[ClockResult]:
    entry = entry_store.find_by_event_id(db, command.worker_id, command.client_event_id)
    if entry is None:
        return None
    return _result_for_entry(entry, _kind_for_event(entry, command.client_event_id))


def _admit_clock_in(db: Session, command: ClockCommand, decision: GeofenceDecision) -> Tuple[ClockResult, bool]:
    duplicate = _resolve_duplicate(db, command)
    if duplicate is not None:
        return duplicate, True

    try:
        entry = entry_store.create_open_entry(
            db,
            company_id=command.company_id,
            worker_id=command.worker_id,
            job_id=command.job_id,
            clock_in_at=command.requested_at,
            clock_in_event_id=command.client_event_id,
            distance_m=decision.distance_m,
            effective_radius_m=decision.effective_radius_m,
            accuracy_m=command.accuracy_m,
        )
    except TimeclockError:
        # The open entry may be this very event, committed by a racing retry.
        duplicate = _resolve_duplicate(db, command)
        if duplicate is not None:
            return duplicate, True
        raise

    return _result_for_entry(entry, KIND_IN), False


def _admit_clock_out(db: Session, command: ClockCommand, decision: GeofenceDecision) -> Tuple[ClockResult, bool]:
    duplicate = _resolve_duplicate(db, command)
    if duplicate is not None:
        return duplicate, True

    entry = entry_store.get_open_entry(db, command.worker_id, job_id=command.job_id, for_update=True)
    if entry is None or (command.time_entry_id and entry.time_entry_id != command.time_entry_id):
        # Re-read after the row lock: a racing duplicate may have just committed.
        duplicate = _resolve_duplicate(db, command)
        if duplicate is not None:
            return duplicate, True
        raise NotClockedIn(
            "No open time entry for this job",
            context={"job_id": command.job_id, "time_entry_id": command.time_entry_id},
        )

    tags = []
    if not decision.inside:
        tags.append(TAG_GEOFENCE_OUT)
    if not decision.accuracy_ok:
        tags.append(TAG_LOW_ACCURACY_OUT)

    entry_store.close_entry(
        db,
        entry,
        clock_out_at=command.requested_at,
        clock_out_event_id=command.client_event_id,
        geo_ok_out=decision.inside,
        tags=tags,
        distance_m=decision.distance_m,
        effective_radius_m=decision.effective_radius_m,
        accuracy_m=command.accuracy_m,
    )
    return _result_for_entry(entry, KIND_OUT), False


def _lookup_prior_result(command: ClockCommand, now: datetime) -> Optional[ClockResult]:
    db = SessionLocal()
    try:
        cached = idempotency_ledger.lookup(db, command.worker_id, command.client_event_id, now)
        if cached is not None:
            return ClockResult.from_dict(cached)
        # Ledger rows expire; entries stamped with the event id do not.
        return _resolve_duplicate(db, command)
    finally:
        db.close()


def _record_result(command: ClockCommand, result: ClockResult, now: datetime, settings: ClockSettings) -> None:
    db = SessionLocal()
    try:
        idempotency_ledger.record(
            db,
            worker_id=command.worker_id,
            company_id=command.company_id,
            client_event_id=command.client_event_id,
            kind=result.kind,
            result=result.to_dict(),
            now=now,
            ttl_hours=settings.idempotency_ttl_hours,
        )
    except Exception:
        db.rollback()
        # Entries carry the event id, so duplicates still resolve without the ledger row.
        logger.exception(
            "Idempotency record failed",
            extra={"worker_id": command.worker_id, "client_event_id": command.client_event_id},
        )
    finally:
        db.close()


def _append(command: ClockCommand, outcome: str, **fields) -> None:
    event_log.append_event(
        company_id=command.company_id,
        worker_id=command.worker_id,
        job_id=command.job_id,
        kind=command.kind,
        client_event_id=command.client_event_id,
        requested_at=as_utc_naive(command.requested_at) if isinstance(command.requested_at, datetime) else None,
        lat=command.lat,
        lng=command.lng,
        accuracy_m=command.accuracy_m,
        outcome=outcome,
        **fields,
    )


def request_clock(
    command: ClockCommand,
    *,
    now: Optional[datetime] = None,
    settings: Optional[ClockSettings] = None,
) -> ClockResult:
    """
    Admit or reject one clock event.

    Raises a TimeclockError subclass on rejection; the attempt is still appended
    to the event log.
    """
    settings = settings or get_settings()
    now = as_utc_naive(now) if now is not None else utcnow()
    started = time.monotonic()

    try:
        command = validate_command(command, now=now, settings=settings)

        prior = _lookup_prior_result(command, now)
        if prior is not None:
            _record_result(command, prior, now, settings)
            _append(command, OUTCOME_DUPLICATE, entry_id=prior.entry_id, distance_m=prior.distance_m)
            logger.info(
                "Clock request resolved as duplicate",
                extra={
                    "worker_id": command.worker_id,
                    "client_event_id": command.client_event_id,
                    "entry_id": prior.entry_id,
                    "kind": prior.kind,
                },
            )
            return prior

        db = SessionLocal()
        try:
            site = assignment_lookup.find_job_site(
                db,
                company_id=command.company_id,
                job_id=command.job_id,
                worker_id=command.worker_id,
                at=command.requested_at,
            )
        finally:
            db.close()

        decision = evaluate_geofence(command, site, settings)

        logger.info(
            "Geofence check",
            extra={
                "worker_id": command.worker_id,
                "job_id": command.job_id,
                "kind": command.kind,
                "distance_m": _round1(decision.distance_m),
                "effective_radius_m": _round1(decision.effective_radius_m),
                "accuracy_m": command.accuracy_m,
                "inside": decision.inside,
                "client_event_id": command.client_event_id,
            },
        )

        if command.kind == KIND_IN:
            _enforce_clock_in_gate(command, decision, settings)
            admit = _admit_clock_in
        else:
            admit = _admit_clock_out

        result, duplicate = entry_store.run_in_transaction(
            lambda db: admit(db, command, decision),
            retries=settings.tx_retries,
            label=f"clock_{command.kind.lower()}",
        )

    except TimeclockError as exc:
        _append(
            command,
            OUTCOME_REJECTED,
            rejection_reason=exc.code,
            message=exc.message,
            distance_m=exc.context.get("distance_m"),
        )
        logger.info(
            "Clock request rejected",
            extra={
                "worker_id": command.worker_id,
                "job_id": command.job_id,
                "kind": command.kind,
                "reason": exc.code,
                "client_event_id": command.client_event_id,
                "elapsed_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        raise
    except Exception as exc:
        _append(command, OUTCOME_ERROR, message=type(exc).__name__)
        logger.exception(
            "Clock request failed",
            extra={"worker_id": command.worker_id, "client_event_id": command.client_event_id},
        )
        raise

    _record_result(command, result, now, settings)
    _append(
        command,
        OUTCOME_DUPLICATE if duplicate else OUTCOME_ACCEPTED,
        entry_id=result.entry_id,
        distance_m=result.distance_m,
        message=result.warning,
    )

    logger.info(
        "Clock request accepted",
        extra={
            "worker_id": command.worker_id,
            "job_id": command.job_id,
            "kind": result.kind,
            "entry_id": result.entry_id,
            "geo_ok": result.geo_ok,
            "exception_tags": list(result.exception_tags),
            "duplicate": duplicate,
            "client_event_id": command.client_event_id,
            "elapsed_ms": round((time.monotonic() - started) * 1000, 1),
        },
    )
    return result
