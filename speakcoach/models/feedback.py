"""
SQLAlchemy model for analysis feedback attached to a recording.
"""
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from speakcoach.models.base import Base


class Feedback(Base):
    """
    One actionable comment produced by the analysis of a recording.

    Created only when analysis results are persisted; never updated afterwards.
    """
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True)
    recording_id = Column(Integer, ForeignKey("recordings.id"), nullable=False, index=True)

    category = Column(String(50), nullable=False, default="General")  # Pronunciation, Fluency, Grammar...
    content = Column(Text, nullable=False)
    detailed_analysis = Column(Text, nullable=True)
    severity = Column(Integer, nullable=True)  # 1 = minor, 5 = critical
    word_position = Column(Integer, nullable=True)  # index into the transcript
    suggestion = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    recording = relationship("Recording", back_populates="feedback")

    __table_args__ = (
        CheckConstraint("severity IS NULL OR (severity BETWEEN 1 AND 5)", name="ck_feedback_severity"),
    )

    def __repr__(self) -> str:
        return f"<Feedback(id={self.id}, recording={self.recording_id}, category={self.category})>"
