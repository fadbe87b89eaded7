from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC, the representation every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(dt: datetime) -> datetime:
    """Normalize to naive UTC. Naive inputs are treated as UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_utc(dt):
    if dt is None:
        return None
    return as_utc_naive(dt).replace(tzinfo=timezone.utc).isoformat()
