"""
Recording analysis pipeline.

Drives a submitted recording through its lifecycle:

    Pending -> Processing -> Completed
                          -> Failed

Completed and Failed are terminal. The Pending -> Processing write is committed
before the analysis provider is called and is the only guard against analysing
a recording twice (no lock manager): a concurrent process() that loses the
conditional claim turns into a no-op.

Transcript, scores, status and feedback rows are committed as one unit, so a
reader never sees scores without their feedback or the other way round.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from speakcoach.errors import (
    AnalysisFailure,
    CoachError,
    NotFoundError,
    PersistenceFailure,
    SubmissionValidationError,
)
from speakcoach.models import Feedback, ProcessingStatus, Recording
from speakcoach.schemas import FeedbackOut, RecordingAnalysis
from speakcoach.services.analysis import AnalysisProvider, AnalysisResult
from speakcoach.services.store import StoreFactory

logger = logging.getLogger(__name__)

Scheduler = Callable[[int], Awaitable[None]]


class ProcessOutcome(str, Enum):
    """What a process() call did."""
    COMPLETED = "completed"
    SKIPPED = "skipped"  # not Pending any more: duplicate or late scheduling
    NOT_FOUND = "not_found"


@dataclass
class RecordingMetadata:
    """Optional facts about the uploaded audio file."""
    original_file_name: str | None = None
    duration_seconds: int | None = None
    file_size_bytes: int | None = None


class RecordingProcessor:
    """
    Owns the processing status of recordings and the creation of feedback.

    Args:
        store_factory: opens a RecordingStore unit of work (async context manager)
        provider: analysis provider, already wrapped with any retry policy
        schedule: hands a recording id to the processing backend
    """

    def __init__(
        self,
        store_factory: StoreFactory,
        provider: AnalysisProvider,
        schedule: Scheduler,
    ):
        self._store_factory = store_factory
        self._provider = provider
        self._schedule = schedule
        self._inflight: set[asyncio.Task] = set()

    # ============================================
    # Submission
    # ============================================

    async def submit(
        self,
        audio_url: str,
        session_id: int,
        metadata: RecordingMetadata | None = None,
    ) -> Recording:
        """
        Create a Pending recording and schedule its processing.

        Returns as soon as the recording is stored; analysis happens later.

        Raises:
            SubmissionValidationError: empty audio reference or negative sizes
            NotFoundError: the session does not exist
            PersistenceFailure: the recording could not be stored
        """
        metadata = metadata or RecordingMetadata()
        _validate_submission(audio_url, metadata)

        async with self._store_factory() as store:
            if await store.get_session(session_id) is None:
                raise NotFoundError("Session", session_id)

            recording = Recording(
                session_id=session_id,
                audio_url=audio_url.strip(),
                original_file_name=metadata.original_file_name,
                duration_seconds=metadata.duration_seconds,
                file_size_bytes=metadata.file_size_bytes,
                processing_status=ProcessingStatus.PENDING.value,
                created_at=datetime.now(timezone.utc),
            )
            await store.add_recording(recording)
            await store.commit()

        logger.info("Recording %s submitted for session %s", recording.id, session_id)

        try:
            await self._schedule(recording.id)
        except Exception:
            # The recording stays Pending; resume_pending() at the next API startup picks it up.
            logger.exception("Failed to schedule processing of recording %s", recording.id)

        return recording

    async def resume_pending(self) -> int:
        """Schedule every recording still Pending (e.g. after a restart). Returns the count."""
        async with self._store_factory() as store:
            pending_ids = await store.find_pending_recording_ids()

        for recording_id in pending_ids:
            await self._schedule(recording_id)

        if pending_ids:
            logger.info("Rescheduled %d pending recording(s)", len(pending_ids))
        return len(pending_ids)

    # ============================================
    # Processing
    # ============================================

    async def process(self, recording_id: int) -> ProcessOutcome:
        """
        Analyse a Pending recording and persist the results.

        Returns NOT_FOUND for unknown ids and SKIPPED when the recording is not
        Pending (already claimed by another call, or terminal). Once claimed,
        the analysis runs to Completed or Failed even if the caller is cancelled.

        Raises:
            AnalysisFailure: the provider failed; the recording is now Failed
            PersistenceFailure: results could not be stored; the recording is now Failed
        """
        async with self._store_factory() as store:
            recording = await store.get_recording(recording_id)
            if recording is None:
                logger.warning("Recording %s not found, nothing to process", recording_id)
                return ProcessOutcome.NOT_FOUND

            if recording.processing_status != ProcessingStatus.PENDING.value:
                logger.info(
                    "Recording %s is %s, skipping",
                    recording_id, recording.processing_status,
                )
                return ProcessOutcome.SKIPPED

            if not await store.claim_recording(recording_id):
                logger.info("Recording %s claimed by another worker, skipping", recording_id)
                return ProcessOutcome.SKIPPED

            audio_url = recording.audio_url

        logger.info("Recording %s: Processing", recording_id)
        task = asyncio.create_task(self._run_claimed(recording_id, audio_url))
        self._inflight.add(task)
        task.add_done_callback(self._claimed_done)
        return await asyncio.shield(task)

    def _claimed_done(self, task: asyncio.Task) -> None:
        # Retrieve the outcome even when the caller was cancelled; _run_claimed already logged it.
        self._inflight.discard(task)
        if not task.cancelled():
            task.exception()

    async def _run_claimed(self, recording_id: int, audio_url: str) -> ProcessOutcome:
        try:
            result = await self._analyze(audio_url)
            feedback_count = await self._persist_results(recording_id, result)
        except Exception as e:
            logger.error("Recording %s failed: %s", recording_id, e)
            await self._mark_failed(recording_id)
            if isinstance(e, CoachError):
                raise
            raise PersistenceFailure(f"Could not store results of recording {recording_id}: {e}") from e

        logger.info(
            "Recording %s: Completed (%d feedback item(s))",
            recording_id, feedback_count,
        )
        return ProcessOutcome.COMPLETED

    async def _analyze(self, audio_url: str) -> AnalysisResult:
        try:
            result = await self._provider.analyze(audio_url)
            if not isinstance(result, AnalysisResult):
                result = AnalysisResult.model_validate(result)
        except AnalysisFailure:
            raise
        except Exception as e:
            raise AnalysisFailure(f"Analysis of {audio_url} failed: {e}") from e
        return result

    async def _persist_results(self, recording_id: int, result: AnalysisResult) -> int:
        now = datetime.now(timezone.utc)

        async with self._store_factory() as store:
            recording = await store.get_recording(recording_id)
            if recording is None:
                raise PersistenceFailure(f"Recording {recording_id} disappeared during processing")

            recording.transcript = result.transcript
            recording.pronunciation_score = result.pronunciation_score
            recording.fluency_score = result.fluency_score
            recording.accuracy_score = result.accuracy_score
            recording.processing_status = ProcessingStatus.COMPLETED.value
            recording.processed_at = now
            await store.update_recording(recording)

            for item in result.feedback_items:
                await store.add_feedback(Feedback(
                    recording_id=recording_id,
                    category=item.category,
                    content=item.content,
                    detailed_analysis=item.detailed_analysis,
                    severity=item.severity,
                    word_position=item.word_position,
                    suggestion=item.suggestion,
                    created_at=now,
                ))

            await store.commit()

        return len(result.feedback_items)

    async def _mark_failed(self, recording_id: int) -> None:
        """Best-effort Processing -> Failed; the original error is what the caller sees."""
        try:
            async with self._store_factory() as store:
                if not await store.fail_recording(recording_id):
                    logger.warning("Recording %s was no longer Processing when marking Failed", recording_id)
        except Exception:
            logger.exception("Could not mark recording %s as Failed", recording_id)

    async def close(self) -> None:
        """Wait for claimed recordings to reach a terminal state, then release the provider."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        await self._provider.close()

    # ============================================
    # Reads
    # ============================================

    async def get_recording(self, recording_id: int) -> Recording:
        async with self._store_factory() as store:
            recording = await store.get_recording(recording_id)
        if recording is None:
            raise NotFoundError("Recording", recording_id)
        return recording

    async def list_session_recordings(self, session_id: int) -> list[Recording]:
        async with self._store_factory() as store:
            return await store.find_recordings(session_id)

    async def get_analysis(self, recording_id: int) -> RecordingAnalysis:
        """Transcript, scores and feedback of a recording (empty until Completed)."""
        async with self._store_factory() as store:
            recording = await store.get_recording(recording_id)
            if recording is None:
                raise NotFoundError("Recording", recording_id)
            feedback = await store.find_feedback(recording_id)

        return RecordingAnalysis(
            recording_id=recording.id,
            processing_status=recording.processing_status,
            transcript=recording.transcript,
            pronunciation_score=recording.pronunciation_score,
            fluency_score=recording.fluency_score,
            accuracy_score=recording.accuracy_score,
            feedback=[FeedbackOut.model_validate(f) for f in feedback],
        )


def _validate_submission(audio_url: str, metadata: RecordingMetadata) -> None:
    if not audio_url or not audio_url.strip():
        raise SubmissionValidationError("audio_url must not be empty")
    if metadata.duration_seconds is not None and metadata.duration_seconds < 0:
        raise SubmissionValidationError("duration_seconds must be >= 0")
    if metadata.file_size_bytes is not None and metadata.file_size_bytes < 0:
        raise SubmissionValidationError("file_size_bytes must be >= 0")


def build_recording_processor() -> RecordingProcessor:
    """Processor wired to the database, the configured provider and dispatcher."""
    from speakcoach.services.analysis import build_analysis_provider
    from speakcoach.services.dispatch import dispatch_processing
    from speakcoach.services.store import store_scope

    return RecordingProcessor(
        store_factory=store_scope,
        provider=build_analysis_provider(),
        schedule=dispatch_processing,
    )


# Singleton instance
recording_processor = build_recording_processor()
