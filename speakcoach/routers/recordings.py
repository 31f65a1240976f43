"""
Recording routes: upload, read, analysis and manual processing trigger.
"""
import logging

from fastapi import APIRouter, HTTPException

from speakcoach.errors import NotFoundError
from speakcoach.schemas import ProcessResponse, RecordingAnalysis, RecordingOut, UploadRecordingRequest
from speakcoach.services.recording_processor import ProcessOutcome, RecordingMetadata, recording_processor

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/upload", response_model=RecordingOut, status_code=201)
async def upload_recording(request: UploadRecordingRequest):
    """
    Register an uploaded recording and queue it for analysis.

    The audio file itself lives in object storage; the request carries its URL.
    The response is returned before analysis runs (processing_status=Pending).
    """
    try:
        recording = await recording_processor.submit(
            request.audio_url,
            request.session_id,
            RecordingMetadata(
                original_file_name=request.original_file_name,
                duration_seconds=request.duration_seconds,
                file_size_bytes=request.file_size_bytes,
            ),
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return recording


@router.get("/session/{session_id}", response_model=list[RecordingOut])
async def get_session_recordings(session_id: int):
    """All recordings of a session, oldest first."""
    return await recording_processor.list_session_recordings(session_id)


@router.get("/{recording_id}", response_model=RecordingOut)
async def get_recording(recording_id: int):
    try:
        return await recording_processor.get_recording(recording_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{recording_id}/analysis", response_model=RecordingAnalysis)
async def get_recording_analysis(recording_id: int):
    """Transcript, scores and feedback of a recording."""
    try:
        return await recording_processor.get_analysis(recording_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{recording_id}/process", response_model=ProcessResponse)
async def process_recording(recording_id: int):
    """
    Run the analysis of a Pending recording inline.

    Already claimed or finished recordings are left untouched (outcome "skipped").
    """
    outcome = await recording_processor.process(recording_id)
    if outcome is ProcessOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Recording {recording_id} not found")
    return ProcessResponse(recording_id=recording_id, outcome=outcome.value)
