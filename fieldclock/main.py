from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fieldclock.core.logging import configure_logging
from fieldclock.models import audit_record, clock_event, idempotency_record, job, time_entry  # noqa: F401
from fieldclock.routers.admin import router as admin_router
from fieldclock.routers.auth import router as auth_router
from fieldclock.routers.clock import router as clock_router
from fieldclock.routers.time_entries import router as time_entries_router
from fieldclock.services.closeout_worker import start_closeout_worker_task

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    task = start_closeout_worker_task()
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                # worker crash during shutdown; already logged.
                pass


app = FastAPI(
    title="Fieldclock",
    lifespan=lifespan,
)


@app.middleware("http")
async def catch_unhandled_exceptions(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception", extra={"path": request.url.path, "method": request.method})
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(clock_router)
app.include_router(time_entries_router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {"status": "Fieldclock running"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
    }
