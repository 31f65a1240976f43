"""
Processing dispatch: hands submitted recordings to the configured backend.

- "local"  : in-process bounded worker pool (speakcoach.services.worker_pool)
- "celery" : Celery task on the Redis broker (speakcoach.tasks.processing)
"""
import logging

from celery import Celery

from speakcoach.config import settings
from speakcoach.services.worker_pool import worker_pool

logger = logging.getLogger(__name__)

PROCESS_TASK = "speakcoach.tasks.processing.process_recording"

# Client-side Celery app for sending tasks (the worker has its own, see speakcoach.tasks)
celery_app = Celery(
    "speakcoach",
    broker=settings.redis_url,
    backend=settings.redis_url,
)


async def dispatch_processing(recording_id: int) -> None:
    """Schedule analysis of a recording on the configured backend."""
    if settings.processing_backend == "celery":
        result = celery_app.send_task(PROCESS_TASK, args=[recording_id], queue="analysis")
        logger.info("Recording %s sent to Celery (task %s)", recording_id, result.id)
    elif settings.processing_backend == "local":
        await worker_pool.submit(recording_id)
    else:
        raise ValueError(f"Unknown processing backend: {settings.processing_backend!r}")
