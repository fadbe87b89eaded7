import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return v.strip() not in {"0", "false", "False", "no", "NO"}


@dataclass(frozen=True)
class ClockSettings:
    """Per-deployment tuning for admission, edits and the closeout sweep."""

    clock_in_max_accuracy_m: float = 50.0
    max_future_skew_seconds: int = 300
    tx_retries: int = 3
    idempotency_ttl_hours: int = 48
    auto_closeout_enabled: bool = True
    auto_closeout_interval_seconds: float = 900.0
    auto_closeout_max_shift_hours: float = 16.0
    auto_closeout_batch_size: int = 100
    edit_max_shift_hours: float = 24.0
    access_token_ttl_minutes: int = 480

    @classmethod
    def from_env(cls) -> "ClockSettings":
        return cls(
            clock_in_max_accuracy_m=_env_float("CLOCK_IN_MAX_ACCURACY_M", 50.0),
            max_future_skew_seconds=_env_int("CLOCK_MAX_FUTURE_SKEW_SECONDS", 300),
            tx_retries=max(1, _env_int("CLOCK_TX_RETRIES", 3)),
            idempotency_ttl_hours=_env_int("IDEMPOTENCY_TTL_HOURS", 48),
            auto_closeout_enabled=_env_bool("AUTO_CLOSEOUT_ENABLED", True),
            auto_closeout_interval_seconds=_env_float("AUTO_CLOSEOUT_INTERVAL_SECONDS", 900.0),
            auto_closeout_max_shift_hours=_env_float("AUTO_CLOSEOUT_MAX_SHIFT_HOURS", 16.0),
            auto_closeout_batch_size=_env_int("AUTO_CLOSEOUT_BATCH_SIZE", 100),
            edit_max_shift_hours=_env_float("EDIT_MAX_SHIFT_HOURS", 24.0),
            access_token_ttl_minutes=max(1, _env_int("ACCESS_TOKEN_TTL_MINUTES", 480)),
        )


def get_settings() -> ClockSettings:
    # Read on every call so tests and operators can flip env vars without a restart.
    return ClockSettings.from_env()
