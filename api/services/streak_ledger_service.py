"""Streak ledger: the per-user, per-day claim state machine.

Streak states: ACTIVE(n) and PAUSED. A break drops the counter to zero and
records the missed day in ``last_broken_date``; the status stays ACTIVE.

The current run spans ``streak_started_date`` to ``last_covered_date``. A
claim made while an earlier day is still inside its grace window is recorded
but left pending: it joins the run once that day is claimed or shielded, and
starts a new run if the day is missed.

Day records (one per user and local date) move from "no record" to exactly
one of CLAIMED, FROZEN_BY_SHIELD or MISSED and never back.

Counters live on UserStreak and are only written through compare-and-set on
``UserStreak.version``. A day record is only written through
INSERT ... ON CONFLICT DO NOTHING on (user_id, claim_date). Together these give
at most one claim per user and day under concurrent writers.

Every function takes an already-resolved timezone. "now" is injectable for
tests and defaults to the current UTC time.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import StrEnum

from pytz.tzinfo import BaseTzInfo
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.logger import get_logger
from core.metrics import STREAK_BROKEN_COUNTER, STREAK_CLAIMED_COUNTER
from models import (
    ClaimMethod,
    DayState,
    ShieldType,
    StreakStatus,
    UserStreak,
    utcnow,
)
from repositories.data_day_repository import DataDayRepository
from repositories.shield_repository import ShieldInventoryRepository
from repositories.streak_repository import (
    DailyClaimRepository,
    StreakPauseRepository,
    UserStreakRepository,
)
from services.clock_service import (
    ClaimWindow,
    claim_cutoff,
    claim_window_state,
    ensure_utc,
    is_window_closed,
    last_closed_date,
    local_date,
)
from services.milestones_service import (
    MilestoneInfo,
    get_next_milestone,
    record_milestones,
)
from services.shields_service import consume_shield, get_inventory
from services.streak_errors import (
    AlreadyClaimedError,
    AlreadyPausedError,
    FutureDateError,
    InvalidPauseError,
    NoShieldsAvailableError,
    NotPausedError,
    StorageConflictError,
    StreakPausedError,
    UnresolvedGapError,
    WindowExpiredError,
)

logger = get_logger(__name__)

# Counter updates re-read and retry this many times on a version conflict
CAS_ATTEMPTS = 3

# Day states that keep a run going
_RUN_STATES = (DayState.CLAIMED, DayState.FROZEN_BY_SHIELD)


class ValidationOutcome(StrEnum):
    WINDOW_OPEN = "window_open"
    PAUSED = "paused"
    ALREADY_VALIDATED = "already_validated"
    ALREADY_RESOLVED = "already_resolved"
    NOTHING_TO_PROTECT = "nothing_to_protect"
    SHIELD_APPLIED = "shield_applied"
    STREAK_BROKEN = "streak_broken"


@dataclass(frozen=True)
class ClaimResult:
    """DTO for a successful claim."""

    claim_date: date
    method: ClaimMethod
    current_streak: int
    longest_streak: int
    counted: bool
    milestone: MilestoneInfo | None
    next_milestone: MilestoneInfo | None
    pending: bool = False


@dataclass(frozen=True)
class StreakSummary:
    """DTO for a user's streak overview."""

    current_streak: int
    longest_streak: int
    total_claims: int
    status: StreakStatus
    last_claim_date: date | None
    last_broken_date: date | None
    paused_until: date | None
    claimed_today: bool
    can_claim_today: bool
    freezes_available: int
    shields_total: int
    next_milestone: MilestoneInfo | None
    days_to_next_milestone: int | None


@dataclass(frozen=True)
class ClaimableDay:
    """One row of the claimable-days view."""

    date: date
    state: DayState | None
    claimed: bool
    has_health_data: bool
    can_claim: bool
    reason: str | None


@dataclass(frozen=True)
class ClaimHistoryEntry:
    date: date
    state: DayState
    method: ClaimMethod | None
    has_underlying_data: bool
    recorded_at: datetime


@dataclass(frozen=True)
class _Transition:
    current_streak: int
    counted: bool
    last_covered_date: date | None
    streak_started_date: date | None = None
    pending: bool = False


def _grace_hours() -> int:
    return get_settings().claim_grace_hours


def compute_claim_transition(
    current_streak: int,
    covered_through: date | None,
    last_validated: date | None,
    claim_date: date,
    *,
    run_start: date | None = None,
    earliest_open: date | None = None,
) -> _Transition:
    """Counter effect of claiming ``claim_date``.

    - The day right before the run start extends the run backwards by 1.
    - A day already inside the covered run changes nothing.
    - A new or broken streak restarts at 1.
    - A day right after the covered (or validated) run extends it by 1.
    - A day whose only unresolved predecessors are on or after
      ``earliest_open`` (still claimable) is pending: recorded, not counted.
    - Anything else leaves an earlier day unresolved; the ledger refuses
      to bridge it.
    """
    if current_streak > 0 and covered_through:
        if run_start and claim_date == run_start - timedelta(days=1):
            return _Transition(current_streak + 1, True, covered_through, claim_date)
        if claim_date <= covered_through:
            return _Transition(current_streak, False, covered_through, run_start)

    if current_streak == 0:
        return _Transition(1, True, claim_date, claim_date)

    resolved_through = max(
        (d for d in (covered_through, last_validated) if d is not None),
        default=None,
    )
    if resolved_through and claim_date - timedelta(days=1) <= resolved_through:
        return _Transition(current_streak + 1, True, claim_date, run_start)

    open_date = (
        resolved_through + timedelta(days=1)
        if resolved_through
        else claim_date - timedelta(days=1)
    )
    if earliest_open and open_date >= earliest_open:
        return _Transition(
            current_streak, False, covered_through, run_start, pending=True
        )
    raise UnresolvedGapError(claim_date, open_date)


async def _walk_run(
    db: AsyncSession, user_id: str, after: date, until: date
) -> tuple[date, int]:
    """Follow contiguous claimed/frozen records from the day after ``after``.

    Returns the last day reached and how many of the days walked were
    claims. Pending claims and shields set ahead of a gap join the run this
    way once the gap is resolved.
    """
    if after >= until:
        return after, 0

    records = await DailyClaimRepository(db).list_range(
        user_id, after + timedelta(days=1), until
    )
    states = {r.claim_date: r.day_state for r in records}
    end, claimed = after, 0
    while states.get(end + timedelta(days=1)) in _RUN_STATES:
        end += timedelta(days=1)
        if states[end] is DayState.CLAIMED:
            claimed += 1
    return end, claimed


async def _has_data(db: AsyncSession, user_id: str, day: date) -> bool:
    return await DataDayRepository(db).has_data(user_id, day)


async def get_streak(db: AsyncSession, user_id: str, tz: BaseTzInfo) -> UserStreak:
    """Get or lazily create the user's streak, remembering their timezone."""
    streaks = UserStreakRepository(db)
    streak = await streaks.get_or_create(user_id, tz.zone)
    if streak.timezone != tz.zone:
        await streaks.set_timezone(user_id, tz.zone)
        streak = await streaks.get(user_id)
    return streak


async def claim(
    db: AsyncSession,
    user_id: str,
    claim_date: date,
    tz: BaseTzInfo,
    *,
    method: ClaimMethod = ClaimMethod.MANUAL,
    has_underlying_data: bool | None = None,
    now: datetime | None = None,
) -> ClaimResult:
    """Claim ``claim_date`` for the user.

    Raises:
        StreakPausedError: The streak is paused.
        FutureDateError: The local day has not started yet.
        WindowExpiredError: The grace cutoff for the day has passed.
        AlreadyClaimedError: A record for the day exists (informational).
        UnresolvedGapError: An earlier day is still open and unclaimed.
        StorageConflictError: Counter update kept losing races.
    """
    now = ensure_utc(now or utcnow())
    streaks = UserStreakRepository(db)
    claims = DailyClaimRepository(db)

    streak = await get_streak(db, user_id, tz)
    if streak.status == StreakStatus.PAUSED:
        raise StreakPausedError(user_id)

    window = claim_window_state(claim_date, tz, now, _grace_hours())
    if window is ClaimWindow.NOT_STARTED:
        raise FutureDateError(claim_date)
    if window is ClaimWindow.EXPIRED:
        raise WindowExpiredError(claim_date, claim_cutoff(claim_date, tz, _grace_hours()))

    if await claims.get(user_id, claim_date) is not None:
        raise AlreadyClaimedError(claim_date, streak.current_streak)

    today = local_date(now, tz)
    earliest_open = last_closed_date(tz, now, _grace_hours()) + timedelta(days=1)

    # Fail before writing anything if the claim would bridge a gap
    compute_claim_transition(
        streak.current_streak,
        streak.last_covered_date,
        streak.last_validated_date,
        claim_date,
        run_start=streak.streak_started_date,
        earliest_open=earliest_open,
    )

    if has_underlying_data is None:
        has_underlying_data = await _has_data(db, user_id, claim_date)

    inserted = await claims.insert(
        user_id,
        claim_date,
        claimed=True,
        claim_method=method,
        has_underlying_data=has_underlying_data,
        timezone=tz.zone,
    )
    if not inserted:
        # Lost the race on (user_id, claim_date) to a concurrent claim
        logger.info("streak.claim.conflict", user_id=user_id, claim_date=claim_date)
        streak = await streaks.get(user_id)
        raise AlreadyClaimedError(claim_date, streak.current_streak if streak else 0)

    for attempt in range(CAS_ATTEMPTS):
        transition = compute_claim_transition(
            streak.current_streak,
            streak.last_covered_date,
            streak.last_validated_date,
            claim_date,
            run_start=streak.streak_started_date,
            earliest_open=earliest_open,
        )
        current = transition.current_streak
        covered = transition.last_covered_date
        if transition.counted and covered is not None:
            # Pending claims after this day join the run now
            covered, joined = await _walk_run(db, user_id, covered, today)
            current += joined
        last_claim = max(d for d in (streak.last_claim_date, claim_date) if d)
        try:
            streak = await streaks.compare_and_set(
                user_id,
                streak.version,
                current_streak=current,
                longest_streak=max(streak.longest_streak, current),
                streak_started_date=transition.streak_started_date,
                last_covered_date=covered,
                last_claim_date=last_claim,
                total_claims=streak.total_claims + 1,
                status=StreakStatus.ACTIVE,
            )
            break
        except StorageConflictError:
            if attempt == CAS_ATTEMPTS - 1:
                raise
            streak = await streaks.get(user_id)

    milestone = None
    if transition.counted:
        milestone = await record_milestones(db, user_id, streak.current_streak)

    STREAK_CLAIMED_COUNTER.add(1, {"method": method.value})
    logger.info(
        "streak.claimed",
        user_id=user_id,
        claim_date=claim_date.isoformat(),
        method=method.value,
        current_streak=streak.current_streak,
        counted=transition.counted,
        pending=transition.pending,
    )

    return ClaimResult(
        claim_date=claim_date,
        method=method,
        current_streak=streak.current_streak,
        longest_streak=streak.longest_streak,
        counted=transition.counted,
        milestone=milestone,
        next_milestone=get_next_milestone(streak.current_streak),
        pending=transition.pending,
    )


async def _protect_day(
    db: AsyncSession, user_id: str, day: date, tz: BaseTzInfo
) -> ShieldType | None:
    """Spend a shield and write the FROZEN_BY_SHIELD record for ``day``.

    Returns None (and refunds the shield) if another writer resolved the
    day first.

    Raises:
        NoShieldsAvailableError: Nothing to spend.
    """
    shield_type = await consume_shield(db, user_id)
    inserted = await DailyClaimRepository(db).insert(
        user_id,
        day,
        claimed=False,
        claim_method=ClaimMethod.SHIELD_APPLIED,
        has_underlying_data=await _has_data(db, user_id, day),
        timezone=tz.zone,
    )
    if not inserted:
        await ShieldInventoryRepository(db).increment_if_room(user_id, shield_type)
        logger.info("shield.refunded", user_id=user_id, day=day.isoformat())
        return None
    return shield_type


async def apply_shield(
    db: AsyncSession,
    user_id: str,
    day: date,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> ShieldType:
    """Explicitly protect ``day`` with a shield.

    Unlike validation, running out of shields here is a plain rejection:
    the streak is left untouched.

    Raises:
        StreakPausedError, FutureDateError, WindowExpiredError,
        AlreadyClaimedError, NoShieldsAvailableError
    """
    now = ensure_utc(now or utcnow())
    streak = await get_streak(db, user_id, tz)
    if streak.status == StreakStatus.PAUSED:
        raise StreakPausedError(user_id)

    if day > local_date(now, tz):
        raise FutureDateError(day)
    # A closed day can still be shielded until validation has resolved it
    if is_window_closed(day, tz, now, _grace_hours()) and (
        streak.last_validated_date is None or day <= streak.last_validated_date
    ):
        raise WindowExpiredError(day, claim_cutoff(day, tz, _grace_hours()))
    if await DailyClaimRepository(db).get(user_id, day) is not None:
        raise AlreadyClaimedError(day, streak.current_streak)

    shield_type = await _protect_day(db, user_id, day, tz)
    if shield_type is None:
        raise AlreadyClaimedError(day, streak.current_streak)

    if streak.current_streak > 0 and streak.last_covered_date:
        covered, joined = await _walk_run(
            db, user_id, streak.last_covered_date, local_date(now, tz)
        )
        if covered != streak.last_covered_date:
            current = streak.current_streak + joined
            await UserStreakRepository(db).compare_and_set(
                user_id,
                streak.version,
                current_streak=current,
                longest_streak=max(streak.longest_streak, current),
                last_covered_date=covered,
            )
            if joined:
                await record_milestones(db, user_id, current)

    logger.info(
        "shield.applied",
        user_id=user_id,
        day=day.isoformat(),
        shield_type=shield_type.value,
        trigger="explicit",
    )
    return shield_type


async def validate_day(
    db: AsyncSession,
    user_id: str,
    day: date,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> ValidationOutcome:
    """Resolve a closed day: shield it, or break the streak.

    Only days whose claim window has fully closed are touched, and each day
    is resolved once (tracked by ``last_validated_date``).
    """
    now = ensure_utc(now or utcnow())
    streaks = UserStreakRepository(db)
    streak = await get_streak(db, user_id, tz)

    if streak.status == StreakStatus.PAUSED:
        return ValidationOutcome.PAUSED
    if not is_window_closed(day, tz, now, _grace_hours()):
        return ValidationOutcome.WINDOW_OPEN
    if streak.last_validated_date and day <= streak.last_validated_date:
        return ValidationOutcome.ALREADY_VALIDATED

    today = local_date(now, tz)
    covered = streak.last_covered_date
    current = streak.current_streak
    updates: dict[str, object] = {"last_validated_date": day}

    record = await DailyClaimRepository(db).get(user_id, day)
    if record is not None:
        outcome = ValidationOutcome.ALREADY_RESOLVED
    elif current == 0 or (covered and day <= covered):
        outcome = ValidationOutcome.NOTHING_TO_PROTECT
    else:
        try:
            shield_type = await _protect_day(db, user_id, day, tz)
        except NoShieldsAvailableError:
            shield_type = None
            inserted = await DailyClaimRepository(db).insert(
                user_id,
                day,
                claimed=False,
                claim_method=None,
                has_underlying_data=await _has_data(db, user_id, day),
                timezone=tz.zone,
            )
            if inserted:
                outcome = ValidationOutcome.STREAK_BROKEN
                # Claims already made after the missed day start the next run
                end, claimed = await _walk_run(db, user_id, day, today)
                current = claimed
                updates.update(
                    current_streak=current,
                    streak_started_date=day + timedelta(days=1) if current else None,
                    last_covered_date=end if current else covered,
                    last_broken_date=day,
                    last_broken_streak=streak.current_streak,
                )
            else:
                outcome = ValidationOutcome.ALREADY_RESOLVED
        else:
            if shield_type is None:
                outcome = ValidationOutcome.ALREADY_RESOLVED
            else:
                outcome = ValidationOutcome.SHIELD_APPLIED
                end, joined = await _walk_run(db, user_id, day, today)
                current += joined
                updates.update(current_streak=current, last_covered_date=end)

    if current != streak.current_streak:
        updates["longest_streak"] = max(streak.longest_streak, current)
    await streaks.compare_and_set(user_id, streak.version, **updates)

    if current and current != streak.current_streak:
        await record_milestones(db, user_id, current)

    if outcome is ValidationOutcome.STREAK_BROKEN:
        STREAK_BROKEN_COUNTER.add(1)
        logger.info(
            "streak.broken",
            user_id=user_id,
            day=day.isoformat(),
            lost_streak=streak.current_streak,
            restarted_at=current,
        )
    elif outcome is ValidationOutcome.SHIELD_APPLIED:
        logger.info(
            "shield.applied", user_id=user_id, day=day.isoformat(), trigger="validation"
        )
    return outcome


async def validate_pending_days(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> list[ValidationOutcome]:
    """Validate every closed day not yet validated, oldest first.

    Catch-up is bounded by ``max_validation_catchup_days`` so a user who has
    been away for months is resolved in one bounded pass.
    """
    now = ensure_utc(now or utcnow())
    streak = await get_streak(db, user_id, tz)
    if streak.status == StreakStatus.PAUSED:
        return []

    end = last_closed_date(tz, now, _grace_hours())
    if streak.last_validated_date:
        start = streak.last_validated_date + timedelta(days=1)
    elif streak.last_covered_date:
        start = streak.last_covered_date + timedelta(days=1)
    else:
        start = end

    earliest = end - timedelta(days=get_settings().max_validation_catchup_days - 1)
    start = max(start, earliest)

    outcomes = []
    day = start
    while day <= end:
        outcomes.append(await validate_day(db, user_id, day, tz, now))
        day += timedelta(days=1)
    return outcomes


async def pause(
    db: AsyncSession,
    user_id: str,
    until: date,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> StreakSummary:
    """Pause the streak through ``until`` (inclusive).

    Closed days are resolved first so a pause never excuses a past miss.

    Raises:
        AlreadyPausedError: The streak is already paused.
        InvalidPauseError: ``until`` is not after today or exceeds the
            maximum pause length.
    """
    now = ensure_utc(now or utcnow())
    today = local_date(now, tz)
    max_days = get_settings().max_pause_days

    streak = await get_streak(db, user_id, tz)
    if streak.status == StreakStatus.PAUSED:
        raise AlreadyPausedError(user_id)
    if until <= today:
        raise InvalidPauseError(
            "Pause end date must be after today", until=until.isoformat()
        )
    if (until - today).days > max_days:
        raise InvalidPauseError(
            f"Pause cannot exceed {max_days} days", until=until.isoformat()
        )

    await validate_pending_days(db, user_id, tz, now)
    streak = await UserStreakRepository(db).get(user_id)

    await StreakPauseRepository(db).create(user_id, today, until)
    await UserStreakRepository(db).compare_and_set(
        user_id, streak.version, status=StreakStatus.PAUSED
    )
    logger.info("streak.paused", user_id=user_id, until=until.isoformat())
    return await get_streak_summary(db, user_id, tz, now)


async def _end_pause(
    db: AsyncSession, streak: UserStreak, last_paused_day: date, resume_day: date
) -> None:
    await StreakPauseRepository(db).delete(streak.user_id)
    covered = streak.last_covered_date
    validated = streak.last_validated_date
    await UserStreakRepository(db).compare_and_set(
        streak.user_id,
        streak.version,
        status=StreakStatus.ACTIVE,
        last_covered_date=max(d for d in (covered, last_paused_day) if d),
        last_validated_date=max(d for d in (validated, resume_day) if d),
    )


async def resume(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> StreakSummary:
    """Resume a paused streak. Validation restarts the day after today.

    Raises:
        NotPausedError: The streak is not paused.
    """
    now = ensure_utc(now or utcnow())
    today = local_date(now, tz)
    streak = await get_streak(db, user_id, tz)
    if streak.status != StreakStatus.PAUSED:
        raise NotPausedError(user_id)

    await _end_pause(db, streak, today - timedelta(days=1), today)
    logger.info("streak.resumed", user_id=user_id, trigger="user")
    return await get_streak_summary(db, user_id, tz, now)


async def expire_pause_if_due(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> bool:
    """End a pause whose window is over. Returns True if one was ended.

    The last paused day counts as covered; validation picks up the day after.
    """
    now = ensure_utc(now or utcnow())
    streak = await get_streak(db, user_id, tz)
    if streak.status != StreakStatus.PAUSED:
        return False

    pause_window = await StreakPauseRepository(db).get(user_id)
    today = local_date(now, tz)
    if pause_window is not None and pause_window.pause_end_date >= today:
        return False

    end = pause_window.pause_end_date if pause_window else today - timedelta(days=1)
    await _end_pause(db, streak, end, end)
    logger.info("streak.resumed", user_id=user_id, trigger="expired")
    return True


async def get_streak_summary(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> StreakSummary:
    now = ensure_utc(now or utcnow())
    today = local_date(now, tz)
    streak = await get_streak(db, user_id, tz)
    inventory = await get_inventory(db, user_id)

    today_record = await DailyClaimRepository(db).get(user_id, today)
    paused_until = None
    if streak.status == StreakStatus.PAUSED:
        pause_window = await StreakPauseRepository(db).get(user_id)
        paused_until = pause_window.pause_end_date if pause_window else None

    next_milestone = get_next_milestone(streak.current_streak)
    return StreakSummary(
        current_streak=streak.current_streak,
        longest_streak=streak.longest_streak,
        total_claims=streak.total_claims,
        status=streak.status,
        last_claim_date=streak.last_claim_date,
        last_broken_date=streak.last_broken_date,
        paused_until=paused_until,
        claimed_today=bool(today_record and today_record.claimed),
        can_claim_today=today_record is None and streak.status != StreakStatus.PAUSED,
        freezes_available=inventory.freezes_available,
        shields_total=inventory.total,
        next_milestone=next_milestone,
        days_to_next_milestone=(
            next_milestone["threshold"] - streak.current_streak
            if next_milestone
            else None
        ),
    )


_DAY_STATE_REASONS = {
    DayState.CLAIMED: "Already claimed",
    DayState.FROZEN_BY_SHIELD: "Protected by a shield",
    DayState.MISSED: "Missed",
}


async def get_claimable_days(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo,
    lookback_days: int,
    now: datetime | None = None,
) -> list[ClaimableDay]:
    """Today and the previous ``lookback_days - 1`` local days, newest first."""
    now = ensure_utc(now or utcnow())
    today = local_date(now, tz)
    start = today - timedelta(days=max(lookback_days, 1) - 1)

    streak = await get_streak(db, user_id, tz)
    records = {
        r.claim_date: r
        for r in await DailyClaimRepository(db).list_range(user_id, start, today)
    }
    data_dates = await DataDayRepository(db).dates_with_data(user_id, start, today)
    paused = streak.status == StreakStatus.PAUSED

    days: list[ClaimableDay] = []
    day = today
    while day >= start:
        record = records.get(day)
        if record is not None:
            state = record.day_state
            reason = _DAY_STATE_REASONS[state]
        elif paused:
            state = None
            reason = "Streak is paused"
        elif is_window_closed(day, tz, now, _grace_hours()):
            state = None
            reason = "Claim window has closed"
        else:
            state = None
            reason = None

        days.append(
            ClaimableDay(
                date=day,
                state=state,
                claimed=bool(record and record.claimed),
                has_health_data=day in data_dates
                or bool(record and record.has_underlying_data),
                can_claim=reason is None,
                reason=reason,
            )
        )
        day -= timedelta(days=1)
    return days


async def get_claim_history(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo,
    days: int = 30,
    now: datetime | None = None,
) -> list[ClaimHistoryEntry]:
    now = ensure_utc(now or utcnow())
    today = local_date(now, tz)
    records = await DailyClaimRepository(db).list_range(
        user_id, today - timedelta(days=days - 1), today
    )
    return [
        ClaimHistoryEntry(
            date=r.claim_date,
            state=r.day_state,
            method=r.claim_method,
            has_underlying_data=r.has_underlying_data,
            recorded_at=ensure_utc(r.created_at),
        )
        for r in records
    ]
