"""Scheduler-triggered streak jobs.

All endpoints require ``Authorization: Bearer <CRON_SECRET>``. They are safe
to call repeatedly: every per-user step is idempotent.
"""

from fastapi import APIRouter

from core.auth import CronAuthorized
from core.database import SessionMaker
from schemas import (
    DailyValidationResponse,
    RecoveryCleanupResponse,
    WeeklyResetResponse,
)
from services.streak_jobs_service import (
    run_daily_validation,
    run_recovery_cleanup,
    run_weekly_reset,
)

router = APIRouter(
    prefix="/api/cron/streaks",
    tags=["cron"],
    dependencies=[CronAuthorized],
    include_in_schema=False,
)


@router.post("/daily-validation", response_model=DailyValidationResponse)
async def daily_validation_endpoint(
    session_maker: SessionMaker,
) -> DailyValidationResponse:
    """Resolve yesterday (and any earlier unresolved day) for every user."""
    result = await run_daily_validation(session_maker)
    return DailyValidationResponse.model_validate(result)


@router.post("/weekly-reset", response_model=WeeklyResetResponse)
async def weekly_reset_endpoint(session_maker: SessionMaker) -> WeeklyResetResponse:
    """Grant the weekly freeze to users whose local day is Monday."""
    result = await run_weekly_reset(session_maker)
    return WeeklyResetResponse.model_validate(result)


@router.post("/cleanup-recoveries", response_model=RecoveryCleanupResponse)
async def cleanup_recoveries_endpoint(
    session_maker: SessionMaker,
) -> RecoveryCleanupResponse:
    """Expire pending recoveries whose window has passed."""
    result = await run_recovery_cleanup(session_maker)
    return RecoveryCleanupResponse.model_validate(result)
