"""
Tests for SqlRecordingStore on a real database (SQLite through aiosqlite):
the conditional status updates and the mapping of database errors.
"""
import asyncio
from unittest.mock import patch

import pytest
from httpx import AsyncClient, ASGITransport

from speakcoach.errors import PersistenceFailure
from speakcoach.main import app
from speakcoach.models import ProcessingStatus, Recording, Session
from speakcoach.services.progress_aggregator import ProgressAggregator
from speakcoach.services.recording_processor import ProcessOutcome, RecordingProcessor

from conftest import NOW, StubAnalysisProvider

PENDING = ProcessingStatus.PENDING.value
PROCESSING = ProcessingStatus.PROCESSING.value
COMPLETED = ProcessingStatus.COMPLETED.value
FAILED = ProcessingStatus.FAILED.value


async def _seed_recording(store_factory) -> int:
    """Store a session with one Pending recording, return the recording id."""
    async with store_factory() as store:
        session = Session(user_id=1, start_time=NOW)
        store.session.add(session)
        await store.commit()

        recording = Recording(
            session_id=session.id,
            audio_url="https://storage.test/audio/a.webm",
            processing_status=PENDING,
            created_at=NOW,
        )
        await store.add_recording(recording)
        await store.commit()
        return recording.id


async def _status(store_factory, recording_id) -> str:
    async with store_factory() as store:
        recording = await store.get_recording(recording_id)
        return recording.processing_status


async def _noop_schedule(recording_id):
    return None


# ============================================
# Conditional status updates
# ============================================

async def test_claim_succeeds_once(sql_store_factory):
    recording_id = await _seed_recording(sql_store_factory)

    async with sql_store_factory() as store:
        assert await store.claim_recording(recording_id) is True
    async with sql_store_factory() as store:
        assert await store.claim_recording(recording_id) is False

    assert await _status(sql_store_factory, recording_id) == PROCESSING


async def test_claim_unknown_recording(sql_store_factory):
    async with sql_store_factory() as store:
        assert await store.claim_recording(999) is False


async def test_fail_only_from_processing(sql_store_factory):
    recording_id = await _seed_recording(sql_store_factory)

    async with sql_store_factory() as store:
        assert await store.fail_recording(recording_id) is False
    assert await _status(sql_store_factory, recording_id) == PENDING

    async with sql_store_factory() as store:
        await store.claim_recording(recording_id)
        assert await store.fail_recording(recording_id) is True
        assert await store.fail_recording(recording_id) is False

    assert await _status(sql_store_factory, recording_id) == FAILED


async def test_process_round_trip(sql_store_factory):
    recording_id = await _seed_recording(sql_store_factory)
    processor = RecordingProcessor(sql_store_factory, StubAnalysisProvider(), _noop_schedule)

    assert await processor.process(recording_id) is ProcessOutcome.COMPLETED

    async with sql_store_factory() as store:
        recording = await store.get_recording(recording_id)
        feedback = await store.find_feedback(recording_id)
    assert recording.processing_status == COMPLETED
    assert (recording.pronunciation_score, recording.fluency_score, recording.accuracy_score) == (80, 70, 90)
    assert recording.transcript == "T"
    assert [f.category for f in feedback] == ["Pronunciation"]


async def test_concurrent_process_analyses_once(sql_store_factory):
    recording_id = await _seed_recording(sql_store_factory)
    provider = StubAnalysisProvider()
    processor = RecordingProcessor(sql_store_factory, provider, _noop_schedule)

    outcomes = await asyncio.gather(
        processor.process(recording_id),
        processor.process(recording_id),
    )

    assert sorted(o.value for o in outcomes) == ["completed", "skipped"]
    assert len(provider.calls) == 1
    async with sql_store_factory() as store:
        assert len(await store.find_feedback(recording_id)) == 1


# ============================================
# Database errors
# ============================================

async def test_failing_reads_raise_persistence_failure(broken_store_factory):
    async with broken_store_factory() as store:
        with pytest.raises(PersistenceFailure):
            await store.get_recording(1)
        with pytest.raises(PersistenceFailure):
            await store.find_sessions(1, NOW)
        with pytest.raises(PersistenceFailure):
            await store.find_metrics(1, NOW.date())


async def test_pipeline_surfaces_database_errors(broken_store_factory):
    processor = RecordingProcessor(broken_store_factory, StubAnalysisProvider(), _noop_schedule)
    aggregator = ProgressAggregator(broken_store_factory, clock=lambda: NOW)

    with pytest.raises(PersistenceFailure):
        await processor.submit("https://storage.test/audio/a.webm", 1)
    with pytest.raises(PersistenceFailure):
        await processor.process(1)
    with pytest.raises(PersistenceFailure):
        await aggregator.weekly_summary(1)


async def test_database_errors_map_to_503(broken_store_factory):
    processor = RecordingProcessor(broken_store_factory, StubAnalysisProvider(), _noop_schedule)
    aggregator = ProgressAggregator(broken_store_factory, clock=lambda: NOW)

    with (
        patch("speakcoach.routers.recordings.recording_processor", processor),
        patch("speakcoach.routers.progress.progress_aggregator", aggregator),
    ):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            recording_resp = await client.get("/api/recordings/1")
            progress_resp = await client.get("/api/progress/user/1/weekly")

    assert recording_resp.status_code == 503
    assert recording_resp.json()["error"] == "PersistenceFailure"
    assert progress_resp.status_code == 503
