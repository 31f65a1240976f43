"""
Celery task running the recording analysis pipeline.

Each task run builds its own processor and closes the provider and the
database pool afterwards, since every run gets a fresh event loop.
"""
import asyncio
import logging

from celery import shared_task

logger = logging.getLogger(__name__)


async def _process(recording_id: int) -> str:
    from speakcoach.services.database import close_db
    from speakcoach.services.recording_processor import build_recording_processor

    processor = build_recording_processor()
    try:
        outcome = await processor.process(recording_id)
        return outcome.value
    finally:
        await processor.close()
        await close_db()


@shared_task(bind=True, name="speakcoach.tasks.processing.process_recording")
def process_recording(self, recording_id: int) -> dict:
    """
    Analyse one recording.

    Provider retries happen inside the pipeline's provider wrapper; a failure
    raised here means the recording is already Failed, so the task is not retried.
    """
    logger.info("Task %s: processing recording %s", self.request.id, recording_id)
    outcome = asyncio.run(_process(recording_id))
    return {"recording_id": recording_id, "outcome": outcome}
