"""
SQLAlchemy model for practice sessions.
Written by the session CRUD layer; the progress engine only reads it.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from speakcoach.models.base import Base, SessionStatus


class Session(Base):
    """A bounded practice interval owning zero or more recordings."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    lesson_id = Column(Integer, nullable=True)
    start_time = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=SessionStatus.ACTIVE.value)
    notes = Column(Text, nullable=True)

    recordings = relationship("Recording", back_populates="session", order_by="Recording.created_at")

    __table_args__ = (
        Index("idx_sessions_user_start", "user_id", "start_time"),
    )

    def __repr__(self) -> str:
        return f"<Session(id={self.id}, user={self.user_id}, status={self.status})>"

    @property
    def effective_duration_seconds(self) -> int:
        """Stored duration, else end - start once the session has ended, else 0."""
        if self.duration_seconds is not None:
            return self.duration_seconds
        if self.start_time is not None and self.end_time is not None:
            return max(0, int((self.end_time - self.start_time).total_seconds()))
        return 0
