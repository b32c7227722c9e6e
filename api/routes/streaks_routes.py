"""Streak claiming, shields, pauses, recovery and milestones.

Every user-facing operation works on the caller's local day, so each
endpoint resolves a timezone first: mobile clients (bearer auth) must send
one, web clients fall back to the configured default.

Domain errors are raised as ``StreakError`` and turned into
``{"detail", "code"}`` responses by the handler registered in main.py. The
one exception is an already-claimed day on ``/claim``, which is reported as
a normal 200 response.
"""

from typing import Annotated

from fastapi import APIRouter, Query, Request
from pytz.tzinfo import BaseTzInfo

from core.auth import UserId, is_bearer_request
from core.config import get_settings
from core.database import DbSession, SessionMaker
from core.ratelimit import CLAIM_LIMIT, PURCHASE_LIMIT, READ_LIMIT, limiter
from models import utcnow
from schemas import (
    AutoClaimRequest,
    AutoClaimResponse,
    ClaimableDayResponse,
    ClaimableDaysResponse,
    ClaimHistoryEntryResponse,
    ClaimHistoryResponse,
    ClaimRequest,
    ClaimResponse,
    EarnedMilestoneResponse,
    EarnedMilestonesResponse,
    ErrorResponse,
    MilestoneResponse,
    PauseRequest,
    RecoveriesResponse,
    RecoveryResponse,
    RecoveryStartRequest,
    ShieldActivateRequest,
    ShieldActivateResponse,
    ShieldSummaryResponse,
    StreakSummaryResponse,
    TimezoneRequest,
)
from services.claim_orchestrator import activate_shield, claim_streak, try_auto_claim
from services.clock_service import local_date, resolve_request_timezone
from services.milestones_service import get_earned_milestones, get_next_milestone
from services.shields_service import get_shield_summary, purchase_freeze
from services.streak_errors import AlreadyClaimedError
from services.streak_ledger_service import (
    get_claim_history,
    get_claimable_days,
    get_streak,
    get_streak_summary,
    pause,
    resume,
)
from services.streak_recovery_service import (
    complete_recovery_action,
    get_recovery_overview,
    start_recovery,
)

router = APIRouter(prefix="/api/streaks", tags=["streaks"])

TimezoneQuery = Annotated[str | None, Query(max_length=64)]

_BAD_REQUEST = {"model": ErrorResponse, "description": "Invalid input"}
_CONFLICT = {"model": ErrorResponse, "description": "Conflicts with streak state"}
_NOT_FOUND = {"model": ErrorResponse, "description": "No such resource"}


def _resolve_timezone(request: Request, name: str | None) -> BaseTzInfo:
    return resolve_request_timezone(
        name,
        is_bearer=is_bearer_request(request),
        default=get_settings().default_timezone,
    )


def _milestone(info: dict | None) -> MilestoneResponse | None:
    return MilestoneResponse.model_validate(info) if info else None


# --- Claims ---


@router.post(
    "/claim",
    response_model=ClaimResponse,
    responses={400: _BAD_REQUEST, 409: _CONFLICT},
)
@limiter.limit(CLAIM_LIMIT)
async def claim_endpoint(
    request: Request,
    body: ClaimRequest,
    user_id: UserId,
    db: DbSession,
) -> ClaimResponse:
    """Check in for a day (defaults to today in the user's timezone)."""
    tz = _resolve_timezone(request, body.timezone)

    try:
        result = await claim_streak(db, user_id, tz, body.claim_date)
    except AlreadyClaimedError as e:
        return ClaimResponse(
            claim_date=e.claim_date,
            current_streak=e.current_streak,
            already_claimed=True,
        )

    return ClaimResponse(
        claim_date=result.claim_date,
        current_streak=result.current_streak,
        longest_streak=result.longest_streak,
        method=result.method,
        counted=result.counted,
        pending=result.pending,
        milestone=_milestone(result.milestone),
        next_milestone=_milestone(result.next_milestone),
    )


@router.post("/auto-claim", response_model=AutoClaimResponse, status_code=202)
@limiter.limit(CLAIM_LIMIT)
async def auto_claim_endpoint(
    request: Request,
    body: AutoClaimRequest,
    user_id: UserId,
    session_maker: SessionMaker,
) -> AutoClaimResponse:
    """Best-effort claim after a metric entry. Always accepted.

    The outcome is reported for diagnostics only; callers must not treat a
    rejected auto-claim as a failure of their own write.
    """
    tz = _resolve_timezone(request, body.timezone)
    outcome = await try_auto_claim(
        session_maker, user_id, body.entry_date, body.source, tz
    )
    return AutoClaimResponse.model_validate(outcome)


@router.get(
    "/claimable-days",
    response_model=ClaimableDaysResponse,
    responses={400: _BAD_REQUEST},
)
@limiter.limit(READ_LIMIT)
async def claimable_days_endpoint(
    request: Request,
    user_id: UserId,
    db: DbSession,
    timezone: TimezoneQuery = None,
    lookback_days: Annotated[int | None, Query(ge=1, le=30)] = None,
) -> ClaimableDaysResponse:
    tz = _resolve_timezone(request, timezone)
    lookback = lookback_days or get_settings().claimable_days_lookback
    days = await get_claimable_days(db, user_id, tz, lookback)
    return ClaimableDaysResponse(
        timezone=tz.zone,
        days=[ClaimableDayResponse.model_validate(d) for d in days],
    )


@router.get(
    "/summary",
    response_model=StreakSummaryResponse,
    responses={400: _BAD_REQUEST},
)
@limiter.limit(READ_LIMIT)
async def summary_endpoint(
    request: Request,
    user_id: UserId,
    db: DbSession,
    timezone: TimezoneQuery = None,
) -> StreakSummaryResponse:
    tz = _resolve_timezone(request, timezone)
    summary = await get_streak_summary(db, user_id, tz)
    return StreakSummaryResponse.model_validate(summary)


@router.get(
    "/history",
    response_model=ClaimHistoryResponse,
    responses={400: _BAD_REQUEST},
)
@limiter.limit(READ_LIMIT)
async def history_endpoint(
    request: Request,
    user_id: UserId,
    db: DbSession,
    timezone: TimezoneQuery = None,
    days: Annotated[int, Query(ge=1, le=365)] = 30,
) -> ClaimHistoryResponse:
    """Recorded days (claimed, shielded or missed), newest first."""
    tz = _resolve_timezone(request, timezone)
    entries = await get_claim_history(db, user_id, tz, days)
    return ClaimHistoryResponse(
        entries=[ClaimHistoryEntryResponse.model_validate(e) for e in entries]
    )


# --- Shields ---


@router.get(
    "/shields",
    response_model=ShieldSummaryResponse,
    responses={400: _BAD_REQUEST},
)
@limiter.limit(READ_LIMIT)
async def shields_endpoint(
    request: Request,
    user_id: UserId,
    db: DbSession,
    timezone: TimezoneQuery = None,
) -> ShieldSummaryResponse:
    tz = _resolve_timezone(request, timezone)
    # Registers the user for the weekly reset job
    await get_streak(db, user_id, tz)
    summary = await get_shield_summary(db, user_id, tz)
    return ShieldSummaryResponse.model_validate(summary)


@router.post(
    "/shields/purchase",
    response_model=ShieldSummaryResponse,
    responses={400: _BAD_REQUEST, 409: _CONFLICT},
)
@limiter.limit(PURCHASE_LIMIT)
async def purchase_shield_endpoint(
    request: Request,
    body: TimezoneRequest,
    user_id: UserId,
    db: DbSession,
) -> ShieldSummaryResponse:
    """Add one purchased shield.

    Payment is settled by the caller; on 409 (inventory full) the caller is
    expected to refund.
    """
    tz = _resolve_timezone(request, body.timezone)
    await get_streak(db, user_id, tz)
    summary = await purchase_freeze(db, user_id, tz)
    return ShieldSummaryResponse.model_validate(summary)


@router.post(
    "/shields/activate",
    response_model=ShieldActivateResponse,
    responses={400: _BAD_REQUEST, 409: _CONFLICT},
)
@limiter.limit(CLAIM_LIMIT)
async def activate_shield_endpoint(
    request: Request,
    body: ShieldActivateRequest,
    user_id: UserId,
    db: DbSession,
) -> ShieldActivateResponse:
    """Protect a day with a shield. With no shields left this is rejected
    and the streak is left as it was."""
    tz = _resolve_timezone(request, body.timezone)
    day = body.day or local_date(utcnow(), tz)
    shield_type = await activate_shield(db, user_id, tz, day)
    summary = await get_shield_summary(db, user_id, tz)
    return ShieldActivateResponse(
        day=day,
        shield_type=shield_type.value,
        shields=ShieldSummaryResponse.model_validate(summary),
    )


# --- Pause ---


@router.post(
    "/pause",
    response_model=StreakSummaryResponse,
    responses={400: _BAD_REQUEST, 409: _CONFLICT},
)
@limiter.limit(CLAIM_LIMIT)
async def pause_endpoint(
    request: Request,
    body: PauseRequest,
    user_id: UserId,
    db: DbSession,
) -> StreakSummaryResponse:
    tz = _resolve_timezone(request, body.timezone)
    summary = await pause(db, user_id, body.until, tz)
    return StreakSummaryResponse.model_validate(summary)


@router.post(
    "/resume",
    response_model=StreakSummaryResponse,
    responses={400: _BAD_REQUEST, 409: _CONFLICT},
)
@limiter.limit(CLAIM_LIMIT)
async def resume_endpoint(
    request: Request,
    body: TimezoneRequest,
    user_id: UserId,
    db: DbSession,
) -> StreakSummaryResponse:
    tz = _resolve_timezone(request, body.timezone)
    summary = await resume(db, user_id, tz)
    return StreakSummaryResponse.model_validate(summary)


# --- Recovery ---


@router.post(
    "/recovery/start",
    response_model=RecoveryResponse,
    responses={409: _CONFLICT},
)
@limiter.limit(PURCHASE_LIMIT)
async def start_recovery_endpoint(
    request: Request,
    body: RecoveryStartRequest,
    user_id: UserId,
    db: DbSession,
) -> RecoveryResponse:
    """Start recovering the latest break. Purchased recoveries apply at once."""
    tz = _resolve_timezone(request, body.timezone)
    result = await start_recovery(
        db, user_id, body.broken_date, body.recovery_type, tz
    )
    return RecoveryResponse.model_validate(result)


@router.post(
    "/recovery/{recovery_id}/actions",
    response_model=RecoveryResponse,
    responses={404: _NOT_FOUND, 409: _CONFLICT},
)
@limiter.limit(CLAIM_LIMIT)
async def recovery_action_endpoint(
    request: Request,
    recovery_id: int,
    body: TimezoneRequest,
    user_id: UserId,
    db: DbSession,
) -> RecoveryResponse:
    tz = _resolve_timezone(request, body.timezone)
    result = await complete_recovery_action(db, user_id, recovery_id, tz)
    return RecoveryResponse.model_validate(result)


@router.get("/recovery", response_model=RecoveriesResponse)
@limiter.limit(READ_LIMIT)
async def recoveries_endpoint(
    request: Request,
    user_id: UserId,
    db: DbSession,
    timezone: TimezoneQuery = None,
) -> RecoveriesResponse:
    tz = _resolve_timezone(request, timezone)
    overview = await get_recovery_overview(db, user_id, tz)
    return RecoveriesResponse(
        recoverable_date=overview.recoverable_date,
        recoverable_streak=overview.recoverable_streak,
        recoveries=[RecoveryResponse.model_validate(r) for r in overview.recoveries],
    )


# --- Milestones ---


@router.get("/milestones", response_model=EarnedMilestonesResponse)
@limiter.limit(READ_LIMIT)
async def milestones_endpoint(
    request: Request,
    user_id: UserId,
    db: DbSession,
    timezone: TimezoneQuery = None,
) -> EarnedMilestonesResponse:
    tz = _resolve_timezone(request, timezone)
    streak = await get_streak(db, user_id, tz)
    earned = await get_earned_milestones(db, user_id)
    return EarnedMilestonesResponse(
        milestones=[EarnedMilestoneResponse.model_validate(m) for m in earned],
        next_milestone=_milestone(get_next_milestone(streak.current_streak)),
    )
