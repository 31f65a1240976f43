"""
Progress aggregation engine.

Rolls per-recording scores into window summaries (weekly/monthly views with an
improvement trend) and into one Daily ProgressMetric row per user and day.

Two different averages live here, on purpose:
- ProgressSummary.average_score is a per-recording composite: each recording
  with a pronunciation score contributes (p + f + a) / 3, missing fluency or
  accuracy counting as 0, and the composites are averaged.
- ProgressMetric.overall_score is a mean of means: each score type is averaged
  over the recordings that have it, then the three averages are averaged.
They only agree when every recording carries all three scores.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterable

from speakcoach.models import MetricPeriod, ProgressMetric, Recording, Session, SessionStatus
from speakcoach.schemas import ProgressMetricOut, ProgressSummary
from speakcoach.services.store import StoreFactory

logger = logging.getLogger(__name__)

WEEK_DAYS = 7
MONTH_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def first_metric_date(start: datetime) -> date:
    """
    Earliest metric_date inside a window opening at `start`.

    A metric stands for the midnight (UTC) of its date, so the day `start`
    falls on only counts when `start` is exactly midnight.
    """
    start = start.astimezone(timezone.utc)
    day = start.date()
    if start.time() != time.min:
        day += timedelta(days=1)
    return day


def total_minutes(sessions: Iterable[Session]) -> int:
    """Sum of session durations in whole minutes (integer division)."""
    return sum(s.effective_duration_seconds for s in sessions) // 60


def composite_average(recordings: Iterable[Recording]) -> float:
    """Mean of (p + f + a) / 3 over recordings with a pronunciation score; 0 if none."""
    composites = [
        (r.pronunciation_score + (r.fluency_score or 0) + (r.accuracy_score or 0)) / 3
        for r in recordings
        if r.pronunciation_score is not None
    ]
    if not composites:
        return 0.0
    return sum(composites) / len(composites)


def score_average(recordings: Iterable[Recording], attribute: str) -> float:
    """Mean of one score over the recordings that have it; 0 if none."""
    values = [getattr(r, attribute) for r in recordings if getattr(r, attribute) is not None]
    if not values:
        return 0.0
    return sum(values) / len(values)


def improvement_percentage(
    recordings: Iterable[Recording],
    window_start: datetime,
    now: datetime,
) -> float:
    """
    Relative change of the mean pronunciation score between the two halves of the window.

    The window is split at window_start + (now - window_start) / 2. Missing
    scores count as 0. Returns 0 when either half is empty or when the first
    half averages 0.
    """
    midpoint = window_start + (now - window_start) / 2
    recordings = list(recordings)
    first_half = [r.pronunciation_score or 0 for r in recordings if r.created_at < midpoint]
    second_half = [r.pronunciation_score or 0 for r in recordings if r.created_at >= midpoint]

    if not first_half or not second_half:
        return 0.0

    first_avg = sum(first_half) / len(first_half)
    second_avg = sum(second_half) / len(second_half)
    if first_avg == 0:
        return 0.0
    return (second_avg - first_avg) / first_avg * 100


class ProgressAggregator:
    """
    Builds progress summaries and daily snapshots from the recording store.

    Never mutates sessions or recordings; only creates/updates ProgressMetric rows.
    """

    def __init__(self, store_factory: StoreFactory, clock: Callable[[], datetime] = _utcnow):
        self._store_factory = store_factory
        self._clock = clock

    async def summarize(self, user_id: int, window_start: datetime, period: str) -> ProgressSummary:
        """
        Summarize a user's activity from window_start until now.

        Args:
            user_id: User whose sessions are aggregated
            window_start: Inclusive start of the window
            period: Label echoed in the summary (Weekly, Monthly...)

        Returns:
            ProgressSummary with counts, minutes, composite average score,
            improvement percentage and the Daily metrics of the window (oldest first)
        """
        now = self._clock()

        async with self._store_factory() as store:
            sessions = await store.find_sessions(user_id, window_start)
            metrics = await store.find_metrics(user_id, first_metric_date(window_start), MetricPeriod.DAILY.value)

        recordings = [r for s in sessions for r in s.recordings]

        return ProgressSummary(
            period=period,
            total_sessions=len(sessions),
            total_recordings=len(recordings),
            total_minutes_practiced=total_minutes(sessions),
            average_score=round(composite_average(recordings), 2),
            improvement_percentage=round(improvement_percentage(recordings, window_start, now), 2),
            daily_metrics=[
                ProgressMetricOut.model_validate(m)
                for m in sorted(metrics, key=lambda m: m.metric_date)
            ],
        )

    async def weekly_summary(self, user_id: int) -> ProgressSummary:
        window_start = self._clock() - timedelta(days=WEEK_DAYS)
        return await self.summarize(user_id, window_start, MetricPeriod.WEEKLY.value)

    async def monthly_summary(self, user_id: int) -> ProgressSummary:
        window_start = self._clock() - timedelta(days=MONTH_DAYS)
        return await self.summarize(user_id, window_start, MetricPeriod.MONTHLY.value)

    async def history(self, user_id: int, days: int = 30) -> list[ProgressMetricOut]:
        """Stored metrics of the last `days` days, newest first."""
        since = first_metric_date(self._clock() - timedelta(days=days))
        async with self._store_factory() as store:
            metrics = await store.find_metrics(user_id, since)
        return [
            ProgressMetricOut.model_validate(m)
            for m in sorted(metrics, key=lambda m: m.metric_date, reverse=True)
        ]

    def _day_bounds(self, day: date) -> tuple[datetime, datetime]:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        return start, start + timedelta(days=1)

    async def record_daily_snapshot(self, user_id: int) -> ProgressMetric | None:
        """
        Store today's Daily metric for a user.

        Uses the sessions that started today (UTC). Nothing is written when
        there are none. A second call on the same day refreshes the existing
        row instead of adding another one.

        Returns:
            The stored metric, or None when the user did not practice today
        """
        today = self._clock().astimezone(timezone.utc).date()
        day_start, day_end = self._day_bounds(today)

        async with self._store_factory() as store:
            sessions = await store.find_sessions(user_id, day_start, day_end)
            if not sessions:
                logger.info("No sessions for user %s on %s, no snapshot written", user_id, today)
                return None

            metric = await store.get_metric(user_id, today, MetricPeriod.DAILY.value)
            is_new = metric is None
            if is_new:
                metric = ProgressMetric(
                    user_id=user_id,
                    metric_date=today,
                    period=MetricPeriod.DAILY.value,
                )

            _fill_daily_metric(metric, sessions)

            if is_new:
                await store.add_metric(metric)
            else:
                await store.update_metric(metric)
            await store.commit()

        logger.info(
            "Daily snapshot %s for user %s on %s: %d session(s), %d recording(s), overall=%.2f",
            "created" if is_new else "refreshed",
            user_id, today, metric.total_sessions, metric.total_recordings, metric.overall_score,
        )
        return metric

    async def active_user_ids(self, day: date | None = None) -> list[int]:
        """Users with at least one session starting on `day` (default: today, UTC)."""
        day = day or self._clock().astimezone(timezone.utc).date()
        day_start, day_end = self._day_bounds(day)
        async with self._store_factory() as store:
            return await store.find_active_user_ids(day_start, day_end)


def _fill_daily_metric(metric: ProgressMetric, sessions: list[Session]) -> None:
    recordings = [r for s in sessions for r in s.recordings]

    metric.total_sessions = len(sessions)
    metric.total_recordings = len(recordings)
    metric.total_minutes_practiced = total_minutes(sessions)
    metric.average_pronunciation_score = round(score_average(recordings, "pronunciation_score"), 2)
    metric.average_fluency_score = round(score_average(recordings, "fluency_score"), 2)
    metric.average_accuracy_score = round(score_average(recordings, "accuracy_score"), 2)
    metric.overall_score = round(
        (
            metric.average_pronunciation_score
            + metric.average_fluency_score
            + metric.average_accuracy_score
        ) / 3,
        2,
    )
    metric.completed_lessons = sum(
        1 for s in sessions
        if s.status == SessionStatus.COMPLETED.value and s.lesson_id is not None
    )


def build_progress_aggregator() -> ProgressAggregator:
    from speakcoach.services.store import store_scope

    return ProgressAggregator(store_factory=store_scope)


# Singleton instance
progress_aggregator = build_progress_aggregator()
