"""Streak recovery: winning back the streak lost to a missed day.

A break can be recovered once. Two ways:
- weekend warrior: complete ``recovery_actions_required`` actions within
  ``recovery_window_hours`` of starting
- purchased: restored immediately, limited to
  ``purchased_recoveries_per_year`` per rolling year

A restore only applies while the streak can still be joined back to the lost
run: the break must be the latest one, and either nothing has been claimed
since or the new run started the day right after the missed day. Restoring
adds the lost count to the current run and covers the missed day.

The missed day's record is never rewritten; the recovery row is the audit
trail for it.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from pytz.tzinfo import BaseTzInfo
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.logger import get_logger
from core.metrics import STREAK_RECOVERY_COUNTER
from models import (
    RecoveryStatus,
    RecoveryType,
    StreakRecovery,
    StreakStatus,
    UserStreak,
    utcnow,
)
from repositories.recovery_repository import StreakRecoveryRepository
from repositories.streak_repository import UserStreakRepository
from services.clock_service import ensure_utc
from services.milestones_service import record_milestones
from services.streak_errors import (
    RecoveryExpiredError,
    RecoveryInProgressError,
    RecoveryLimitReachedError,
    RecoveryNotAvailableError,
    RecoveryNotFoundError,
    StreakPausedError,
)
from services.streak_ledger_service import get_streak

logger = get_logger(__name__)

PURCHASE_LIMIT_WINDOW = timedelta(days=365)


@dataclass(frozen=True)
class RecoveryResult:
    """DTO for a recovery attempt and the streak it left behind."""

    id: int
    broken_date: date
    lost_streak: int
    recovery_type: RecoveryType
    status: RecoveryStatus
    actions_required: int | None
    actions_completed: int
    expires_at: datetime | None
    completed_at: datetime | None
    current_streak: int


@dataclass(frozen=True)
class RecoveryOverview:
    recoverable_date: date | None
    recoverable_streak: int | None
    recoveries: list[RecoveryResult]


def _to_result(recovery: StreakRecovery, current_streak: int) -> RecoveryResult:
    return RecoveryResult(
        id=recovery.id,
        broken_date=recovery.broken_date,
        lost_streak=recovery.lost_streak,
        recovery_type=recovery.recovery_type,
        status=recovery.status,
        actions_required=recovery.actions_required,
        actions_completed=recovery.actions_completed,
        expires_at=ensure_utc(recovery.expires_at) if recovery.expires_at else None,
        completed_at=(
            ensure_utc(recovery.completed_at) if recovery.completed_at else None
        ),
        current_streak=current_streak,
    )


def can_rejoin(streak: UserStreak, broken_date: date) -> bool:
    """Whether restoring the run lost on ``broken_date`` still lines up."""
    if streak.last_broken_date != broken_date or streak.last_broken_streak <= 0:
        return False
    if streak.current_streak > 0:
        return streak.streak_started_date == broken_date + timedelta(days=1)
    # Nothing claimed since; later days must not have been resolved as gaps
    return (
        streak.last_validated_date is None
        or streak.last_validated_date <= broken_date
    )


async def _restore(
    db: AsyncSession, recovery: StreakRecovery, now: datetime
) -> tuple[StreakRecovery, int]:
    """Complete ``recovery``, or fail it if the streak moved on."""
    repo = StreakRecoveryRepository(db)
    streaks = UserStreakRepository(db)
    streak = await streaks.get(recovery.user_id)

    if not can_rejoin(streak, recovery.broken_date):
        await repo.finish(recovery.id, RecoveryStatus.FAILED, completed_at=now)
        STREAK_RECOVERY_COUNTER.add(1, {"outcome": "failed"})
        logger.info(
            "recovery.failed",
            user_id=recovery.user_id,
            recovery_id=recovery.id,
            broken_date=recovery.broken_date.isoformat(),
        )
        recovery = await repo.get(recovery.user_id, recovery.id)
        return recovery, streak.current_streak

    if not await repo.finish(recovery.id, RecoveryStatus.COMPLETED, completed_at=now):
        raise RecoveryExpiredError(recovery.id)

    current = streak.current_streak + recovery.lost_streak
    updates: dict[str, object] = {
        "current_streak": current,
        "longest_streak": max(streak.longest_streak, current),
        "last_broken_date": None,
        "last_broken_streak": 0,
        # The lost run's first day is not kept
        "streak_started_date": None,
    }
    if streak.current_streak == 0:
        updates["last_covered_date"] = recovery.broken_date
    streak = await streaks.compare_and_set(
        recovery.user_id, streak.version, **updates
    )
    await record_milestones(db, recovery.user_id, streak.current_streak)

    STREAK_RECOVERY_COUNTER.add(
        1, {"outcome": "completed", "type": recovery.recovery_type.value}
    )
    logger.info(
        "recovery.completed",
        user_id=recovery.user_id,
        recovery_id=recovery.id,
        recovery_type=recovery.recovery_type.value,
        restored=recovery.lost_streak,
        current_streak=streak.current_streak,
    )
    return await repo.get(recovery.user_id, recovery.id), streak.current_streak


async def start_recovery(
    db: AsyncSession,
    user_id: str,
    broken_date: date,
    recovery_type: RecoveryType,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> RecoveryResult:
    """Start recovering the streak lost on ``broken_date``.

    Purchased recoveries restore immediately; weekend-warrior ones wait for
    their actions.

    Raises:
        StreakPausedError: The streak is paused.
        RecoveryNotAvailableError: No recoverable break on that date, or it
            was already attempted.
        RecoveryInProgressError: A recovery for this break is pending.
        RecoveryLimitReachedError: The yearly purchased allowance is used up.
    """
    now = ensure_utc(now or utcnow())
    settings = get_settings()
    repo = StreakRecoveryRepository(db)

    streak = await get_streak(db, user_id, tz)
    if streak.status == StreakStatus.PAUSED:
        raise StreakPausedError(user_id)

    existing = await repo.get_for_break(user_id, broken_date)
    if existing is not None:
        if existing.status == RecoveryStatus.PENDING:
            raise RecoveryInProgressError(existing.id)
        raise RecoveryNotAvailableError(
            "This break already had a recovery attempt",
            broken_date=broken_date.isoformat(),
        )
    if not can_rejoin(streak, broken_date):
        raise RecoveryNotAvailableError(
            f"No recoverable break on {broken_date.isoformat()}",
            broken_date=broken_date.isoformat(),
        )

    if recovery_type is RecoveryType.PURCHASED:
        used = await repo.count_purchased_since(user_id, now - PURCHASE_LIMIT_WINDOW)
        if used >= settings.purchased_recoveries_per_year:
            raise RecoveryLimitReachedError(
                user_id, settings.purchased_recoveries_per_year
            )
        actions_required, expires_at = None, None
    else:
        actions_required = settings.recovery_actions_required
        expires_at = now + timedelta(hours=settings.recovery_window_hours)

    recovery = await repo.create(
        user_id,
        broken_date,
        lost_streak=streak.last_broken_streak,
        recovery_type=recovery_type,
        actions_required=actions_required,
        expires_at=expires_at,
    )
    if recovery is None:
        # A concurrent request started one first
        existing = await repo.get_for_break(user_id, broken_date)
        raise RecoveryInProgressError(existing.id if existing else 0)

    logger.info(
        "recovery.started",
        user_id=user_id,
        recovery_id=recovery.id,
        recovery_type=recovery_type.value,
        broken_date=broken_date.isoformat(),
        lost_streak=recovery.lost_streak,
    )

    current = streak.current_streak
    if recovery_type is RecoveryType.PURCHASED:
        recovery, current = await _restore(db, recovery, now)
    return _to_result(recovery, current)


async def complete_recovery_action(
    db: AsyncSession,
    user_id: str,
    recovery_id: int,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> RecoveryResult:
    """Record one weekend-warrior action; the last one restores the streak.

    Raises:
        RecoveryNotFoundError: No such recovery for this user.
        RecoveryExpiredError: The recovery is past its window or no longer
            pending.
    """
    now = ensure_utc(now or utcnow())
    repo = StreakRecoveryRepository(db)

    recovery = await repo.get(user_id, recovery_id)
    if recovery is None:
        raise RecoveryNotFoundError(recovery_id)
    if recovery.status != RecoveryStatus.PENDING:
        raise RecoveryExpiredError(recovery_id)
    # Left PENDING here; the cleanup job records the expiry
    if recovery.expires_at is None or ensure_utc(recovery.expires_at) <= now:
        raise RecoveryExpiredError(recovery_id)

    if not await repo.record_action(recovery_id, now):
        raise RecoveryExpiredError(recovery_id)
    recovery = await repo.get(user_id, recovery_id)
    logger.info(
        "recovery.action",
        user_id=user_id,
        recovery_id=recovery_id,
        actions_completed=recovery.actions_completed,
        actions_required=recovery.actions_required,
    )

    streak = await get_streak(db, user_id, tz)
    current = streak.current_streak
    if recovery.actions_completed >= (recovery.actions_required or 0):
        recovery, current = await _restore(db, recovery, now)
    return _to_result(recovery, current)


async def get_recovery_overview(
    db: AsyncSession, user_id: str, tz: BaseTzInfo
) -> RecoveryOverview:
    """The break that can still be recovered, if any, and recent attempts."""
    repo = StreakRecoveryRepository(db)
    streak = await get_streak(db, user_id, tz)

    recoverable = streak.last_broken_date
    if recoverable is not None and (
        not can_rejoin(streak, recoverable)
        or await repo.get_for_break(user_id, recoverable) is not None
    ):
        recoverable = None

    recoveries = await repo.list_for_user(user_id)
    return RecoveryOverview(
        recoverable_date=recoverable,
        recoverable_streak=streak.last_broken_streak if recoverable else None,
        recoveries=[_to_result(r, streak.current_streak) for r in recoveries],
    )


async def expire_recoveries(db: AsyncSession, now: datetime | None = None) -> int:
    """Expire pending recoveries past their window. Returns how many."""
    now = ensure_utc(now or utcnow())
    expired = await StreakRecoveryRepository(db).expire_due(now)
    if expired:
        STREAK_RECOVERY_COUNTER.add(expired, {"outcome": "expired"})
    logger.info("recovery.expired", count=expired)
    return expired
