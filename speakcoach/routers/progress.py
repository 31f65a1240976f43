"""
Progress routes: weekly/monthly summaries, history and daily snapshot trigger.
"""
from fastapi import APIRouter, Query

from speakcoach.schemas import ProgressMetricOut, ProgressSummary
from speakcoach.services.progress_aggregator import progress_aggregator

router = APIRouter()


@router.get("/user/{user_id}/weekly", response_model=ProgressSummary)
async def get_weekly_progress(user_id: int):
    return await progress_aggregator.weekly_summary(user_id)


@router.get("/user/{user_id}/monthly", response_model=ProgressSummary)
async def get_monthly_progress(user_id: int):
    return await progress_aggregator.monthly_summary(user_id)


@router.get("/user/{user_id}/history", response_model=list[ProgressMetricOut])
async def get_progress_history(user_id: int, days: int = Query(default=30, ge=1, le=366)):
    """Stored progress metrics of the last `days` days, newest first."""
    return await progress_aggregator.history(user_id, days)


@router.post("/user/{user_id}/update")
async def update_progress(user_id: int):
    """
    Compute today's Daily snapshot (typically called at the end of the day).

    Nothing is stored when the user has no session today.
    """
    metric = await progress_aggregator.record_daily_snapshot(user_id)
    if metric is None:
        return {"message": "No sessions today, nothing recorded", "metric": None}
    return {
        "message": "Progress metrics updated successfully",
        "metric": ProgressMetricOut.model_validate(metric),
    }
