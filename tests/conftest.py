"""
Test fixtures for the speaking coach backend.

Provides:
- In-memory RecordingStore with real commit/rollback semantics
- SqlRecordingStore scopes on a throwaway SQLite database (aiosqlite)
- Stub analysis provider (fixed result, failure injection, gating)
- Processor / aggregator wired to the in-memory store
- FastAPI test client (httpx AsyncClient) with the service singletons patched
"""
import asyncio
import itertools
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from speakcoach.errors import PersistenceFailure
from speakcoach.main import app
from speakcoach.models import Base, ProcessingStatus, ProgressMetric, Recording, Session, SessionStatus
from speakcoach.services.analysis import AnalysisProvider, AnalysisResult, FeedbackItem
from speakcoach.services.progress_aggregator import ProgressAggregator
from speakcoach.services.recording_processor import RecordingProcessor
from speakcoach.services.store import RecordingStore, make_store_scope


# ============================================
# Sample data
# ============================================

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)

SAMPLE_RESULT = AnalysisResult(
    transcript="T",
    pronunciation_score=80,
    fluency_score=70,
    accuracy_score=90,
    feedback_items=[
        FeedbackItem(
            category="Pronunciation",
            content="The 'th' sound needs improvement",
            detailed_analysis="Place your tongue between your teeth",
            severity=2,
            word_position=3,
            suggestion="Practice words: think, thank, the, this",
        ),
    ],
)


def _clone(obj):
    """Detached copy of a model instance (column attributes only)."""
    mapper = sa_inspect(type(obj))
    return type(obj)(**{attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs})


# ============================================
# In-memory store
# ============================================

class InMemoryBackend:
    """Committed state shared by every InMemoryStore unit of work."""

    def __init__(self):
        self.recordings: dict[int, Recording] = {}
        self.feedback: dict[int, object] = {}
        self.sessions: dict[int, Session] = {}
        self.metrics: dict[int, ProgressMetric] = {}
        self._ids = defaultdict(lambda: itertools.count(1))
        self.status_log: dict[int, list[str]] = defaultdict(list)
        self.fail_next_commit = False
        self.commits = 0

    def next_id(self, table: str) -> int:
        return next(self._ids[table])

    @asynccontextmanager
    async def scope(self):
        store = InMemoryStore(self)
        try:
            yield store
        except Exception:
            await store.rollback()
            raise

    # Fixture helpers (write committed rows directly)
    def add_session(
        self,
        user_id: int = 1,
        start_time: datetime = NOW,
        duration_seconds: int | None = None,
        status: str = SessionStatus.ACTIVE.value,
        lesson_id: int | None = None,
        end_time: datetime | None = None,
    ) -> Session:
        session = Session(
            id=self.next_id("sessions"),
            user_id=user_id,
            lesson_id=lesson_id,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=duration_seconds,
            status=status,
        )
        self.sessions[session.id] = session
        return session

    def add_recording(
        self,
        session_id: int,
        created_at: datetime = NOW,
        status: str = ProcessingStatus.PENDING.value,
        pronunciation: float | None = None,
        fluency: float | None = None,
        accuracy: float | None = None,
        audio_url: str = "https://storage.test/audio/rec.webm",
    ) -> Recording:
        recording = Recording(
            id=self.next_id("recordings"),
            session_id=session_id,
            audio_url=audio_url,
            processing_status=status,
            created_at=created_at,
            pronunciation_score=pronunciation,
            fluency_score=fluency,
            accuracy_score=accuracy,
            transcript="text" if status == ProcessingStatus.COMPLETED.value else None,
        )
        self.recordings[recording.id] = recording
        self.status_log[recording.id].append(status)
        return recording

    def add_metric(self, **values) -> ProgressMetric:
        metric = ProgressMetric(id=self.next_id("progress_metrics"), **values)
        self.metrics[metric.id] = metric
        return metric

    def feedback_for(self, recording_id: int) -> list:
        return [f for f in self.feedback.values() if f.recording_id == recording_id]

    def _set_status(self, recording_id: int, status: str) -> None:
        self.recordings[recording_id].processing_status = status
        self.status_log[recording_id].append(status)


class InMemoryStore(RecordingStore):
    """Unit of work over InMemoryBackend: writes are staged until commit()."""

    def __init__(self, backend: InMemoryBackend):
        self.backend = backend
        self._pending = []

    async def get_recording(self, recording_id):
        recording = self.backend.recordings.get(recording_id)
        return _clone(recording) if recording is not None else None

    async def find_recordings(self, session_id):
        rows = [r for r in self.backend.recordings.values() if r.session_id == session_id]
        return [_clone(r) for r in sorted(rows, key=lambda r: (r.created_at, r.id))]

    async def find_pending_recording_ids(self):
        return sorted(
            r.id for r in self.backend.recordings.values()
            if r.processing_status == ProcessingStatus.PENDING.value
        )

    async def add_recording(self, recording):
        def apply():
            recording.id = self.backend.next_id("recordings")
            self.backend.recordings[recording.id] = _clone(recording)
            self.backend.status_log[recording.id].append(recording.processing_status)
        self._pending.append(apply)

    async def update_recording(self, recording):
        snapshot = _clone(recording)

        def apply():
            previous = self.backend.recordings[snapshot.id].processing_status
            self.backend.recordings[snapshot.id] = snapshot
            if snapshot.processing_status != previous:
                self.backend.status_log[snapshot.id].append(snapshot.processing_status)
        self._pending.append(apply)

    async def _transition(self, recording_id, expected, new):
        recording = self.backend.recordings.get(recording_id)
        if recording is None or recording.processing_status != expected.value:
            return False
        self.backend._set_status(recording_id, new.value)
        return True

    async def claim_recording(self, recording_id):
        return await self._transition(recording_id, ProcessingStatus.PENDING, ProcessingStatus.PROCESSING)

    async def fail_recording(self, recording_id):
        return await self._transition(recording_id, ProcessingStatus.PROCESSING, ProcessingStatus.FAILED)

    async def add_feedback(self, feedback):
        def apply():
            feedback.id = self.backend.next_id("feedback")
            self.backend.feedback[feedback.id] = _clone(feedback)
        self._pending.append(apply)

    async def find_feedback(self, recording_id):
        return [_clone(f) for f in sorted(self.backend.feedback_for(recording_id), key=lambda f: f.id)]

    async def get_session(self, session_id):
        session = self.backend.sessions.get(session_id)
        return _clone(session) if session is not None else None

    async def find_sessions(self, user_id, start, end=None):
        found = []
        for session in sorted(self.backend.sessions.values(), key=lambda s: s.start_time):
            if session.user_id != user_id or session.start_time < start:
                continue
            if end is not None and session.start_time >= end:
                continue
            copy = _clone(session)
            copy.recordings = await self.find_recordings(session.id)
            found.append(copy)
        return found

    async def find_active_user_ids(self, start, end):
        return sorted({
            s.user_id for s in self.backend.sessions.values()
            if start <= s.start_time < end
        })

    async def find_metrics(self, user_id, since, period=None):
        return [
            _clone(m) for m in self.backend.metrics.values()
            if m.user_id == user_id and m.metric_date >= since
            and (period is None or m.period == period)
        ]

    async def get_metric(self, user_id, metric_date, period):
        for m in self.backend.metrics.values():
            if m.user_id == user_id and m.metric_date == metric_date and m.period == period:
                return _clone(m)
        return None

    async def add_metric(self, metric):
        def apply():
            for m in self.backend.metrics.values():
                if (m.user_id, m.metric_date, m.period) == (metric.user_id, metric.metric_date, metric.period):
                    raise PersistenceFailure("duplicate progress metric")
            metric.id = self.backend.next_id("progress_metrics")
            self.backend.metrics[metric.id] = _clone(metric)
        self._pending.append(apply)

    async def update_metric(self, metric):
        snapshot = _clone(metric)

        def apply():
            self.backend.metrics[snapshot.id] = snapshot
        self._pending.append(apply)

    async def commit(self):
        pending, self._pending = self._pending, []
        if self.backend.fail_next_commit:
            self.backend.fail_next_commit = False
            raise PersistenceFailure("simulated commit failure")
        for apply in pending:
            apply()
        self.backend.commits += 1

    async def rollback(self):
        self._pending = []


# ============================================
# Stub analysis provider
# ============================================

class StubAnalysisProvider(AnalysisProvider):
    """Returns a fixed result, or raises `error`; waits on `gate` when set."""

    def __init__(self, result: AnalysisResult = SAMPLE_RESULT, error: Exception | None = None):
        self.result = result
        self.error = error
        self.gate: asyncio.Event | None = None
        self.calls: list[str] = []

    async def analyze(self, audio_url: str) -> AnalysisResult:
        self.calls.append(audio_url)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.result


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def provider():
    return StubAnalysisProvider()


@pytest.fixture
def scheduled():
    """Recording ids handed to the scheduler."""
    return []


@pytest.fixture
def processor(backend, provider, scheduled):
    async def schedule(recording_id: int) -> None:
        scheduled.append(recording_id)

    return RecordingProcessor(store_factory=backend.scope, provider=provider, schedule=schedule)


@pytest.fixture
def aggregator(backend):
    return ProgressAggregator(store_factory=backend.scope, clock=lambda: NOW)


@pytest.fixture
async def client(processor, aggregator):
    """
    Async test client with the service singletons replaced by in-memory ones.
    """
    with (
        patch("speakcoach.routers.recordings.recording_processor", processor),
        patch("speakcoach.routers.progress.progress_aggregator", aggregator),
    ):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


# ============================================
# SQL-backed stores
# ============================================

@pytest.fixture
async def sql_engine(tmp_path):
    """SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'speakcoach.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_store_factory(sql_engine):
    return make_store_scope(async_sessionmaker(sql_engine, expire_on_commit=False))


@pytest.fixture
async def broken_store_factory(tmp_path):
    """Store scopes on a database without tables: every query fails."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    yield make_store_scope(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()
