"""
Speaking coach - FastAPI backend
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from speakcoach import __version__
from speakcoach.config import settings
from speakcoach.errors import (
    AnalysisFailure,
    InvalidStateError,
    NotFoundError,
    PersistenceFailure,
    SubmissionValidationError,
)
from speakcoach.routers import progress, recordings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Sentry error tracking (optional, enabled when SENTRY_DSN is set)
_sentry_dsn = os.getenv("SENTRY_DSN")
if _sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=_sentry_dsn,
            traces_sample_rate=0.1,
            environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
            release=f"speakcoach-api@{__version__}",
            integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        )
        logger.info("Sentry initialized for API")
    except ImportError:
        logger.warning("sentry-sdk not installed, skipping")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting speaking coach API (debug=%s, backend=%s)", settings.debug, settings.processing_backend)

    from speakcoach.services.database import init_db, close_db
    from speakcoach.services.redis_client import redis_client
    from speakcoach.services.recording_processor import recording_processor
    from speakcoach.services.worker_pool import worker_pool

    try:
        await init_db()
    except Exception as e:
        logger.warning("Database initialization warning: %s", e)

    if settings.processing_backend == "local":
        await worker_pool.start(recording_processor.process)

    # Recordings whose scheduling failed or whose worker died stay Pending until rescheduled
    try:
        await recording_processor.resume_pending()
    except Exception as e:
        logger.warning("Could not reschedule pending recordings: %s", e)

    yield

    logger.info("Shutting down...")
    if settings.processing_backend == "local":
        await worker_pool.stop(timeout=settings.worker_shutdown_timeout)
    await recording_processor.close()
    await redis_client.close()
    await close_db()


app = FastAPI(
    title="Speaking Coach",
    description="Recording analysis and progress tracking API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:4200",
        "http://127.0.0.1:4200",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Typed pipeline failures -> HTTP status
_ERROR_STATUS = [
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (SubmissionValidationError, 422),
    (AnalysisFailure, 502),
    (PersistenceFailure, 503),
]


def _register_error_handler(exc_class: type[Exception], status_code: int) -> None:
    async def handler(request: Request, exc: Exception):
        if status_code >= 500:
            logger.error("%s on %s %s: %s", exc_class.__name__, request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error": exc_class.__name__},
        )

    app.add_exception_handler(exc_class, handler)


for _exc_class, _status in _ERROR_STATUS:
    _register_error_handler(_exc_class, _status)


app.include_router(recordings.router, prefix="/api/recordings", tags=["Recordings"])
app.include_router(progress.router, prefix="/api/progress", tags=["Progress"])


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "speakcoach"}


@app.get("/health")
async def health():
    """Detailed health check: verifies PostgreSQL and, with the Celery backend, Redis."""
    checks = {"api": True}

    # PostgreSQL
    try:
        from sqlalchemy import text
        from speakcoach.services.database import get_db
        async with get_db() as db:
            await db.execute(text("SELECT 1"))
        checks["postgres"] = True
    except Exception:
        checks["postgres"] = False

    if settings.processing_backend == "celery":
        try:
            from speakcoach.services.redis_client import redis_client
            checks["redis"] = await redis_client.ping()
        except Exception:
            checks["redis"] = False
    else:
        from speakcoach.services.worker_pool import worker_pool
        checks["worker_pool"] = worker_pool.running

    status = "healthy" if all(checks.values()) else "degraded"
    return {"status": status, "version": __version__, "services": checks}
