"""
Recording store: typed access to recordings, feedback, sessions and progress metrics.

RecordingStore is the unit of work the pipeline talks to. Writes staged with
add_*/update_* become visible to other units of work only after commit();
rollback() discards them. SqlRecordingStore backs it with an AsyncSession;
any database error, on reads as well as writes, surfaces as PersistenceFailure.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncContextManager, AsyncGenerator, Callable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from speakcoach.errors import PersistenceFailure
from speakcoach.models import Feedback, ProcessingStatus, ProgressMetric, Recording, Session
from speakcoach.services.database import AsyncSessionLocal

logger = logging.getLogger(__name__)


class RecordingStore(ABC):
    """Persistence operations used by the recording processor and the progress aggregator."""

    # Recordings
    @abstractmethod
    async def get_recording(self, recording_id: int) -> Recording | None: ...

    @abstractmethod
    async def find_recordings(self, session_id: int) -> list[Recording]:
        """Recordings of a session, oldest first."""

    @abstractmethod
    async def find_pending_recording_ids(self) -> list[int]: ...

    @abstractmethod
    async def add_recording(self, recording: Recording) -> None: ...

    @abstractmethod
    async def update_recording(self, recording: Recording) -> None: ...

    @abstractmethod
    async def claim_recording(self, recording_id: int) -> bool:
        """
        Move a recording from Pending to Processing and commit immediately.

        Returns False when the recording was not Pending any more (another
        worker got there first). This write is the only guard against
        analysing the same recording twice.
        """

    @abstractmethod
    async def fail_recording(self, recording_id: int) -> bool:
        """Move a Processing recording to Failed and commit. Returns False if it was not Processing."""

    # Feedback
    @abstractmethod
    async def add_feedback(self, feedback: Feedback) -> None: ...

    @abstractmethod
    async def find_feedback(self, recording_id: int) -> list[Feedback]: ...

    # Sessions (read-only)
    @abstractmethod
    async def get_session(self, session_id: int) -> Session | None: ...

    @abstractmethod
    async def find_sessions(
        self,
        user_id: int,
        start: datetime,
        end: datetime | None = None,
    ) -> list[Session]:
        """Sessions of a user with start <= start_time (< end), recordings loaded."""

    @abstractmethod
    async def find_active_user_ids(self, start: datetime, end: datetime) -> list[int]:
        """Distinct users with at least one session starting in [start, end)."""

    # Progress metrics
    @abstractmethod
    async def find_metrics(
        self,
        user_id: int,
        since: date,
        period: str | None = None,
    ) -> list[ProgressMetric]: ...

    @abstractmethod
    async def get_metric(self, user_id: int, metric_date: date, period: str) -> ProgressMetric | None: ...

    @abstractmethod
    async def add_metric(self, metric: ProgressMetric) -> None: ...

    @abstractmethod
    async def update_metric(self, metric: ProgressMetric) -> None: ...

    # Unit of work
    @abstractmethod
    async def commit(self) -> None:
        """Durably persist every staged write, or none of them (raises PersistenceFailure)."""

    @abstractmethod
    async def rollback(self) -> None: ...


class SqlRecordingStore(RecordingStore):
    """RecordingStore backed by a SQLAlchemy AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _execute(self, statement):
        try:
            return await self.session.execute(statement)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceFailure(f"Query failed: {e}") from e

    async def _get(self, model, ident):
        try:
            return await self.session.get(model, ident)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceFailure(f"Loading {model.__name__} {ident} failed: {e}") from e

    async def get_recording(self, recording_id: int) -> Recording | None:
        return await self._get(Recording, recording_id)

    async def find_recordings(self, session_id: int) -> list[Recording]:
        result = await self._execute(
            select(Recording)
            .where(Recording.session_id == session_id)
            .order_by(Recording.created_at, Recording.id)
        )
        return list(result.scalars().all())

    async def find_pending_recording_ids(self) -> list[int]:
        result = await self._execute(
            select(Recording.id)
            .where(Recording.processing_status == ProcessingStatus.PENDING.value)
            .order_by(Recording.created_at, Recording.id)
        )
        return list(result.scalars().all())

    async def add_recording(self, recording: Recording) -> None:
        self.session.add(recording)

    async def update_recording(self, recording: Recording) -> None:
        # Loaded instances are tracked by the session; add() covers detached ones.
        self.session.add(recording)

    async def _transition(self, recording_id: int, expected: ProcessingStatus, new: ProcessingStatus) -> bool:
        try:
            result = await self.session.execute(
                update(Recording)
                .where(
                    Recording.id == recording_id,
                    Recording.processing_status == expected.value,
                )
                .values(processing_status=new.value)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceFailure(
                f"Status change {expected.value} -> {new.value} failed for recording {recording_id}: {e}"
            ) from e
        return result.rowcount == 1

    async def claim_recording(self, recording_id: int) -> bool:
        return await self._transition(recording_id, ProcessingStatus.PENDING, ProcessingStatus.PROCESSING)

    async def fail_recording(self, recording_id: int) -> bool:
        return await self._transition(recording_id, ProcessingStatus.PROCESSING, ProcessingStatus.FAILED)

    async def add_feedback(self, feedback: Feedback) -> None:
        self.session.add(feedback)

    async def find_feedback(self, recording_id: int) -> list[Feedback]:
        result = await self._execute(
            select(Feedback)
            .where(Feedback.recording_id == recording_id)
            .order_by(Feedback.id)
        )
        return list(result.scalars().all())

    async def get_session(self, session_id: int) -> Session | None:
        return await self._get(Session, session_id)

    async def find_sessions(
        self,
        user_id: int,
        start: datetime,
        end: datetime | None = None,
    ) -> list[Session]:
        query = (
            select(Session)
            .options(selectinload(Session.recordings))
            .where(Session.user_id == user_id, Session.start_time >= start)
        )
        if end is not None:
            query = query.where(Session.start_time < end)
        result = await self._execute(query.order_by(Session.start_time))
        return list(result.scalars().all())

    async def find_active_user_ids(self, start: datetime, end: datetime) -> list[int]:
        result = await self._execute(
            select(Session.user_id)
            .where(Session.start_time >= start, Session.start_time < end)
            .distinct()
        )
        return sorted(result.scalars().all())

    async def find_metrics(
        self,
        user_id: int,
        since: date,
        period: str | None = None,
    ) -> list[ProgressMetric]:
        query = select(ProgressMetric).where(
            ProgressMetric.user_id == user_id,
            ProgressMetric.metric_date >= since,
        )
        if period is not None:
            query = query.where(ProgressMetric.period == period)
        result = await self._execute(query)
        return list(result.scalars().all())

    async def get_metric(self, user_id: int, metric_date: date, period: str) -> ProgressMetric | None:
        result = await self._execute(
            select(ProgressMetric).where(
                ProgressMetric.user_id == user_id,
                ProgressMetric.metric_date == metric_date,
                ProgressMetric.period == period,
            )
        )
        return result.scalar_one_or_none()

    async def add_metric(self, metric: ProgressMetric) -> None:
        self.session.add(metric)

    async def update_metric(self, metric: ProgressMetric) -> None:
        self.session.add(metric)

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.error("Commit failed, rolling back: %s", e)
            await self.session.rollback()
            raise PersistenceFailure(f"Commit failed: {e}") from e

    async def rollback(self) -> None:
        await self.session.rollback()


# Opens a RecordingStore unit of work, e.g. store_scope
StoreFactory = Callable[[], AsyncContextManager[RecordingStore]]


def make_store_scope(session_factory: async_sessionmaker[AsyncSession]) -> StoreFactory:
    """StoreFactory opening SqlRecordingStore units of work on `session_factory`."""

    @asynccontextmanager
    async def scope() -> AsyncGenerator[RecordingStore, None]:
        async with session_factory() as session:
            try:
                yield SqlRecordingStore(session)
            except Exception:
                await session.rollback()
                raise

    return scope


_database_scope = make_store_scope(AsyncSessionLocal)


def store_scope() -> AsyncContextManager[RecordingStore]:
    """
    Open a unit of work on the application database.

    Nothing is committed implicitly: callers commit what they mean to keep,
    and anything left staged when the block raises is rolled back.

    Usage:
        async with store_scope() as store:
            recording = await store.get_recording(42)
    """
    return _database_scope()
