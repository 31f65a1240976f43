"""
Celery application configuration for the analysis worker.

Start with:
    celery -A speakcoach.tasks.celery_app worker -Q analysis,default --concurrency 4
    celery -A speakcoach.tasks.celery_app beat
"""
import logging

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_shutdown

from speakcoach.config import settings

# Structured logging config
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@worker_shutdown.connect
def _log_shutdown(**kwargs):
    logger.info("Worker shutting down, unacknowledged tasks return to the broker")


celery_app = Celery(
    "speakcoach",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "speakcoach.tasks.processing",
        "speakcoach.tasks.progress",
    ],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # 10 minutes max per task
    worker_prefetch_multiplier=1,  # one analysis per worker slot, backlog stays in the broker
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.task_routes = {
    "speakcoach.tasks.processing.*": {"queue": "analysis"},
    "speakcoach.tasks.progress.*": {"queue": "default"},
}

# Periodic tasks (Celery beat)
celery_app.conf.beat_schedule = {
    "daily-progress-snapshots": {
        "task": "speakcoach.tasks.progress.record_daily_snapshots",
        "schedule": crontab(hour=23, minute=55),
    },
}
