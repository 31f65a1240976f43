"""
Celery tasks computing daily progress snapshots.
"""
import asyncio
import logging

from celery import shared_task

logger = logging.getLogger(__name__)


async def _snapshot(user_ids: list[int] | None = None) -> dict:
    from speakcoach.services.database import close_db
    from speakcoach.services.progress_aggregator import build_progress_aggregator

    aggregator = build_progress_aggregator()
    written = []
    failed = []
    try:
        if user_ids is None:
            user_ids = await aggregator.active_user_ids()
        for user_id in user_ids:
            try:
                metric = await aggregator.record_daily_snapshot(user_id)
            except Exception as e:
                logger.error("Daily snapshot failed for user %s: %s", user_id, e)
                failed.append(user_id)
                continue
            if metric is not None:
                written.append(user_id)
    finally:
        await close_db()

    return {"written": written, "failed": failed}


@shared_task(name="speakcoach.tasks.progress.record_daily_snapshot")
def record_daily_snapshot(user_id: int) -> dict:
    """Snapshot today's progress for one user."""
    return asyncio.run(_snapshot([user_id]))


@shared_task(name="speakcoach.tasks.progress.record_daily_snapshots")
def record_daily_snapshots() -> dict:
    """Snapshot today's progress for every user who practiced today (beat schedule)."""
    result = asyncio.run(_snapshot())
    logger.info(
        "Daily snapshots: %d written, %d failed",
        len(result["written"]), len(result["failed"]),
    )
    return result
