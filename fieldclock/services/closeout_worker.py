import asyncio
import logging
import os

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from fieldclock.core.settings import get_settings
from fieldclock.database import SessionLocal
from fieldclock.services.auto_closeout import (
    release_closeout_lock,
    run_auto_closeout_once,
    try_acquire_closeout_lock,
)

logger = logging.getLogger(__name__)


def closeout_worker_enabled() -> bool:
    # Disable by default under pytest to keep tests deterministic.
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    return get_settings().auto_closeout_enabled


def _dispose_engine(db: Session) -> None:
    try:
        engine = db.get_bind()
        if engine is not None and hasattr(engine, "dispose"):
            engine.dispose()
    except Exception:
        pass


async def _run_tick() -> None:
    # The sweep is blocking DB work; keep it off the event loop.
    await asyncio.to_thread(run_auto_closeout_once)


async def closeout_worker_loop(*, interval_seconds: float = 900.0) -> None:
    """
    Periodic auto-closeout sweep.

    Each tick takes the Postgres advisory lock, sweeps once and releases it, so
    only one process sweeps at a time and the admin trigger can run between
    ticks. A failing tick is logged and the next tick retries; the loop itself
    never exits except on cancellation.
    """
    logger.info("Auto-closeout worker started", extra={"interval_seconds": float(interval_seconds)})

    while True:
        lock_db: Session = SessionLocal()
        have_lock = False

        try:
            try:
                if lock_db.get_bind().dialect.name == "postgresql":
                    lock_db.execute(text("set application_name = 'fieldclock_closeout_lock'"))
            except Exception:
                pass

            have_lock = try_acquire_closeout_lock(lock_db)
            if have_lock:
                await _run_tick()
            else:
                logger.info("Auto-closeout lock held elsewhere; skipping tick")

        except asyncio.CancelledError:
            logger.info("Auto-closeout worker cancelled; shutting down")
            raise

        except (OperationalError, DBAPIError):
            _dispose_engine(lock_db)
            logger.exception(
                "Auto-closeout tick failed",
                extra={"component": "closeout_worker", "reason": "dbapi_error"},
            )

        except Exception:
            logger.exception(
                "Auto-closeout tick failed",
                extra={"component": "closeout_worker", "reason": "unexpected"},
            )

        finally:
            try:
                if have_lock:
                    release_closeout_lock(lock_db)
            except Exception:
                pass
            try:
                lock_db.close()
            except Exception:
                pass

        await asyncio.sleep(interval_seconds)


def start_closeout_worker_task() -> asyncio.Task | None:
    if not closeout_worker_enabled():
        logger.info("Auto-closeout worker disabled")
        return None

    settings = get_settings()
    return asyncio.create_task(
        closeout_worker_loop(interval_seconds=float(settings.auto_closeout_interval_seconds))
    )
