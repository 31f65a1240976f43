"""Database models."""
from speakcoach.models.base import Base, ProcessingStatus, SessionStatus, MetricPeriod
from speakcoach.models.session import Session
from speakcoach.models.recording import Recording
from speakcoach.models.feedback import Feedback
from speakcoach.models.progress_metric import ProgressMetric

__all__ = [
    "Base",
    "ProcessingStatus",
    "SessionStatus",
    "MetricPeriod",
    "Session",
    "Recording",
    "Feedback",
    "ProgressMetric",
]
