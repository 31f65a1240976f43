"""
SQLAlchemy model for per-user progress snapshots.
"""
from sqlalchemy import Column, Date, Float, Integer, String, Text, UniqueConstraint, Index

from speakcoach.models.base import Base, MetricPeriod


class ProgressMetric(Base):
    """
    Aggregated practice activity of one user for one period.

    overall_score is the mean of the three average scores. One row per
    (user, date, period): a later snapshot of the same day replaces the values.
    """
    __tablename__ = "progress_metrics"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)
    metric_date = Column(Date, nullable=False)
    period = Column(String(10), nullable=False, default=MetricPeriod.DAILY.value)

    total_sessions = Column(Integer, nullable=False, default=0)
    total_recordings = Column(Integer, nullable=False, default=0)
    total_minutes_practiced = Column(Integer, nullable=False, default=0)
    average_pronunciation_score = Column(Float, nullable=False, default=0.0)
    average_fluency_score = Column(Float, nullable=False, default=0.0)
    average_accuracy_score = Column(Float, nullable=False, default=0.0)
    overall_score = Column(Float, nullable=False, default=0.0)
    completed_lessons = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "metric_date", "period", name="uq_progress_metric_user_date_period"),
        Index("idx_progress_metrics_lookup", "user_id", "metric_date"),
    )

    def __repr__(self) -> str:
        return f"<ProgressMetric(user={self.user_id}, date={self.metric_date}, period={self.period})>"
