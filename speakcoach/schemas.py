"""
Pydantic request/response models shared by the routers and services.
"""
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class UploadRecordingRequest(BaseModel):
    """Request to register an uploaded audio file for analysis."""
    session_id: int
    audio_url: str = Field(min_length=1)
    original_file_name: str | None = None
    duration_seconds: int | None = Field(default=None, ge=0)
    file_size_bytes: int | None = Field(default=None, ge=0)


class RecordingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int
    audio_url: str
    original_file_name: str | None = None
    duration_seconds: int | None = None
    file_size_bytes: int | None = None
    transcript: str | None = None
    pronunciation_score: float | None = None
    fluency_score: float | None = None
    accuracy_score: float | None = None
    processing_status: str
    created_at: datetime | None = None
    processed_at: datetime | None = None


class FeedbackOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    recording_id: int
    category: str
    content: str
    detailed_analysis: str | None = None
    severity: int | None = None
    word_position: int | None = None
    suggestion: str | None = None
    created_at: datetime | None = None


class RecordingAnalysis(BaseModel):
    """Transcript, scores and feedback of one recording."""
    recording_id: int
    processing_status: str
    transcript: str | None = None
    pronunciation_score: float | None = None
    fluency_score: float | None = None
    accuracy_score: float | None = None
    feedback: list[FeedbackOut] = Field(default_factory=list)


class ProcessResponse(BaseModel):
    recording_id: int
    outcome: str


class ProgressMetricOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    user_id: int
    metric_date: date
    period: str
    total_sessions: int
    total_recordings: int
    total_minutes_practiced: int
    average_pronunciation_score: float
    average_fluency_score: float
    average_accuracy_score: float
    overall_score: float
    completed_lessons: int
    notes: str | None = None


class ProgressSummary(BaseModel):
    """Aggregated activity of a user over a time window."""
    period: str
    total_sessions: int
    total_recordings: int
    total_minutes_practiced: int
    average_score: float
    improvement_percentage: float
    daily_metrics: list[ProgressMetricOut] = Field(default_factory=list)
