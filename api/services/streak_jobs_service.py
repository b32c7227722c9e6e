"""Scheduled streak jobs: daily validation, the weekly freeze reset and
recovery cleanup.

Validation and the weekly reset walk every user with a streak row in
keyset-paginated pages and fan out per user with a bounded semaphore. Each
user gets a fresh session and its own transaction, so one failing user never
blocks or rolls back the others. A user's counts are added to the job result
only once their transaction has committed.

No job keeps state of its own. Idempotency comes from the per-user markers
(``last_validated_date`` and ``last_freeze_reset_at``) and from recovery
status, so running a job twice, late, or hourly is safe.
"""

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from pytz.tzinfo import BaseTzInfo
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from core.logger import bind_contextvars, clear_contextvars, get_logger
from core.metrics import JOB_USER_FAILED_COUNTER
from models import utcnow
from repositories.streak_repository import UserStreakRepository
from services.clock_service import ensure_utc, is_reset_day, resolve_timezone
from services.shields_service import grant_weekly_freeze
from services.streak_errors import InvalidTimezoneError
from services.streak_ledger_service import (
    ValidationOutcome,
    expire_pause_if_due,
    validate_pending_days,
)
from services.streak_recovery_service import expire_recoveries

logger = get_logger(__name__)

UserTask = Callable[[AsyncSession, str], Awaitable[Counter[str]]]


@dataclass
class DailyValidationResult:
    users_processed: int = 0
    days_validated: int = 0
    shields_applied: int = 0
    streaks_broken: int = 0
    pauses_expired: int = 0
    failures: int = 0


@dataclass
class WeeklyResetResult:
    users_processed: int = 0
    users_reset: int = 0
    users_skipped: int = 0
    failures: int = 0


@dataclass
class RecoveryCleanupResult:
    recoveries_expired: int = 0


@dataclass
class _JobRun:
    name: str
    failures: int = 0
    processed: int = 0
    counts: Counter[str] = field(default_factory=Counter)


async def _user_timezone(db: AsyncSession, user_id: str) -> BaseTzInfo:
    streak = await UserStreakRepository(db).get(user_id)
    name = streak.timezone if streak else get_settings().default_timezone
    try:
        return resolve_timezone(name)
    except InvalidTimezoneError:
        logger.warning("job.timezone.invalid", user_id=user_id, timezone=name)
        return resolve_timezone(get_settings().default_timezone)


async def _run_for_user(
    session_maker: async_sessionmaker[AsyncSession],
    semaphore: asyncio.Semaphore,
    run: _JobRun,
    user_id: str,
    task: UserTask,
) -> None:
    async with semaphore:
        bind_contextvars(job=run.name, user_id=user_id)
        try:
            async with session_maker() as db:
                try:
                    counts = await task(db, user_id)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
            run.processed += 1
            run.counts.update(counts)
        except Exception as e:
            run.failures += 1
            JOB_USER_FAILED_COUNTER.add(1, {"job": run.name})
            logger.exception("job.user.failed", error_type=type(e).__name__)
        finally:
            clear_contextvars()


async def _for_each_user(
    session_maker: async_sessionmaker[AsyncSession],
    run: _JobRun,
    task: UserTask,
) -> None:
    settings = get_settings()
    semaphore = asyncio.Semaphore(settings.job_concurrency)

    after: str | None = None
    while True:
        async with session_maker() as db:
            user_ids = await UserStreakRepository(db).list_user_ids(
                after=after, limit=settings.job_page_size
            )
        if not user_ids:
            break

        await asyncio.gather(
            *(
                _run_for_user(session_maker, semaphore, run, user_id, task)
                for user_id in user_ids
            )
        )
        after = user_ids[-1]


async def run_daily_validation(
    session_maker: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
) -> DailyValidationResult:
    """Resolve every closed, unvalidated day for every user.

    Per user: end an expired pause, then validate pending days oldest first.
    A missed day with a shield available is protected; without one the
    streak breaks.
    """
    now = ensure_utc(now or utcnow())
    run = _JobRun(name="daily_validation")

    async def task(db: AsyncSession, user_id: str) -> Counter[str]:
        counts: Counter[str] = Counter()
        tz = await _user_timezone(db, user_id)
        if await expire_pause_if_due(db, user_id, tz, now):
            counts["pauses_expired"] += 1
        outcomes = await validate_pending_days(db, user_id, tz, now)
        counts["days_validated"] += len(outcomes)
        counts["shields_applied"] += outcomes.count(ValidationOutcome.SHIELD_APPLIED)
        counts["streaks_broken"] += outcomes.count(ValidationOutcome.STREAK_BROKEN)
        return counts

    logger.info("job.started", job=run.name, now=now.isoformat())
    await _for_each_user(session_maker, run, task)

    result = DailyValidationResult(
        users_processed=run.processed,
        days_validated=run.counts["days_validated"],
        shields_applied=run.counts["shields_applied"],
        streaks_broken=run.counts["streaks_broken"],
        pauses_expired=run.counts["pauses_expired"],
        failures=run.failures,
    )
    logger.info(
        "job.completed",
        job=run.name,
        users_processed=result.users_processed,
        days_validated=result.days_validated,
        shields_applied=result.shields_applied,
        streaks_broken=result.streaks_broken,
        pauses_expired=result.pauses_expired,
        failures=result.failures,
    )
    return result


async def run_weekly_reset(
    session_maker: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
) -> WeeklyResetResult:
    """Grant the weekly free freeze to users whose local day is Monday.

    Users already reset during their current local week are skipped, so the
    job can run hourly to catch every timezone's Monday.
    """
    now = ensure_utc(now or utcnow())
    run = _JobRun(name="weekly_reset")

    async def task(db: AsyncSession, user_id: str) -> Counter[str]:
        tz = await _user_timezone(db, user_id)
        if is_reset_day(now, tz) and await grant_weekly_freeze(db, user_id, tz, now):
            return Counter(users_reset=1)
        return Counter(users_skipped=1)

    logger.info("job.started", job=run.name, now=now.isoformat())
    await _for_each_user(session_maker, run, task)

    result = WeeklyResetResult(
        users_processed=run.processed,
        users_reset=run.counts["users_reset"],
        users_skipped=run.counts["users_skipped"],
        failures=run.failures,
    )
    logger.info(
        "job.completed",
        job=run.name,
        users_processed=result.users_processed,
        users_reset=result.users_reset,
        users_skipped=result.users_skipped,
        failures=result.failures,
    )
    return result


async def run_recovery_cleanup(
    session_maker: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
) -> RecoveryCleanupResult:
    """Mark pending recoveries whose window has passed as expired."""
    now = ensure_utc(now or utcnow())
    logger.info("job.started", job="recovery_cleanup", now=now.isoformat())

    async with session_maker() as db:
        try:
            expired = await expire_recoveries(db, now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("job.completed", job="recovery_cleanup", recoveries_expired=expired)
    return RecoveryCleanupResult(recoveries_expired=expired)
