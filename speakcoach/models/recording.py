"""
SQLAlchemy model for submitted recordings.
One row per audio attempt; rows are never deleted so aggregation can replay history.
"""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from speakcoach.models.base import Base, ProcessingStatus


class Recording(Base):
    """
    One submitted audio attempt.

    Transcript and the three scores (0-100) are populated together when the
    analysis completes, and stay NULL otherwise.
    """
    __tablename__ = "recordings"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False, index=True)

    # URL/path of the audio file in object storage
    audio_url = Column(Text, nullable=False)
    original_file_name = Column(String(255), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)

    # Analysis output
    transcript = Column(Text, nullable=True)
    pronunciation_score = Column(Float, nullable=True)
    fluency_score = Column(Float, nullable=True)
    accuracy_score = Column(Float, nullable=True)

    processing_status = Column(String(20), nullable=False, default=ProcessingStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    processed_at = Column(DateTime(timezone=True), nullable=True)

    session = relationship("Session", back_populates="recordings")
    feedback = relationship("Feedback", back_populates="recording", order_by="Feedback.id")

    __table_args__ = (
        Index("idx_recordings_status", "processing_status"),
    )

    def __repr__(self) -> str:
        return f"<Recording(id={self.id}, session={self.session_id}, status={self.processing_status})>"

    @property
    def status(self) -> ProcessingStatus:
        return ProcessingStatus(self.processing_status)

    @property
    def is_analyzed(self) -> bool:
        """True when transcript and all three scores are present."""
        return (
            self.transcript is not None
            and self.pronunciation_score is not None
            and self.fluency_score is not None
            and self.accuracy_score is not None
        )
