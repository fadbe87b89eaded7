from typing import Any, Dict, Optional

from fastapi import HTTPException


class TimeclockError(ValueError):
    """Caller-visible failure with a stable machine code."""

    code = "error"
    http_status = 409

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            payload["context"] = self.context
        return payload


class InvalidInput(TimeclockError):
    code = "invalid-input"
    http_status = 422


class NotAssigned(TimeclockError):
    code = "not-assigned"
    http_status = 403


class OutsideGeofence(TimeclockError):
    code = "geofence"


class LowAccuracy(TimeclockError):
    code = "low-accuracy"


class AlreadyClockedIn(TimeclockError):
    code = "already-clocked-in"


class NotClockedIn(TimeclockError):
    code = "not-clocked-in"


class OverlapDetected(TimeclockError):
    code = "overlap"


class EntryLocked(TimeclockError):
    code = "locked"


class EntryNotFound(TimeclockError):
    code = "not-found"
    http_status = 404


class Forbidden(TimeclockError):
    code = "forbidden"
    http_status = 403


class Conflict(TimeclockError):
    code = "conflict"


def to_http_exception(exc: TimeclockError) -> HTTPException:
    return HTTPException(status_code=exc.http_status, detail=exc.to_dict())
