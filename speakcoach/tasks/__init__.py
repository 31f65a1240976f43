"""
Celery tasks for background processing.
"""
from .celery_app import celery_app
from .processing import process_recording
from .progress import record_daily_snapshot, record_daily_snapshots

__all__ = [
    "celery_app",
    "process_recording",
    "record_daily_snapshot",
    "record_daily_snapshots",
]
