"""Entry points that turn user actions into ledger operations.

Two paths lead to a claim:

- explicit check-in (``claim_streak``): errors propagate to the route.
- auto-claim after a manual metric entry (``try_auto_claim``): a best-effort
  side effect of a write that has already committed. It runs in its own
  session, never raises and is never retried; a missed auto-claim is picked
  up by the next explicit check-in or by the daily validation job.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum

from pytz.tzinfo import BaseTzInfo
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from core.logger import get_logger
from core.metrics import AUTO_CLAIM_OUTCOME_COUNTER
from models import ClaimMethod, DataSource, ShieldType, utcnow
from repositories.data_day_repository import DataDayRepository
from services.clock_service import ensure_utc, local_date
from services.streak_errors import AlreadyClaimedError, StreakError
from services.streak_ledger_service import (
    ClaimResult,
    apply_shield,
    claim,
    validate_pending_days,
)

logger = get_logger(__name__)


class AutoClaimStatus(StrEnum):
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"
    SKIPPED_BULK_SYNC = "skipped_bulk_sync"
    SKIPPED_DISABLED = "skipped_disabled"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class AutoClaimOutcome:
    """What happened to an auto-claim attempt. Never an exception."""

    status: AutoClaimStatus
    claim_date: date
    current_streak: int | None = None
    error_code: str | None = None


async def claim_streak(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo,
    claim_date: date | None = None,
    *,
    method: ClaimMethod = ClaimMethod.MANUAL,
    now: datetime | None = None,
) -> ClaimResult:
    """Explicit check-in for ``claim_date`` (defaults to the user's today).

    Closed days that the validation job has not reached yet are resolved
    first, so a claim never has to bridge a gap the job would have handled.
    """
    now = ensure_utc(now or utcnow())
    if claim_date is None:
        claim_date = local_date(now, tz)

    await validate_pending_days(db, user_id, tz, now)
    return await claim(db, user_id, claim_date, tz, method=method, now=now)


async def activate_shield(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo,
    day: date | None = None,
    now: datetime | None = None,
) -> ShieldType:
    """User-requested shield for ``day`` (defaults to the user's today).

    NoShieldsAvailableError propagates as a plain rejection.
    """
    now = ensure_utc(now or utcnow())
    if day is None:
        day = local_date(now, tz)
    return await apply_shield(db, user_id, day, tz, now)


async def _auto_claim(
    db: AsyncSession,
    user_id: str,
    entry_date: date,
    source: DataSource,
    tz: BaseTzInfo,
    now: datetime,
) -> AutoClaimOutcome:
    if source is not DataSource.MANUAL_ENTRY:
        return AutoClaimOutcome(AutoClaimStatus.SKIPPED_BULK_SYNC, entry_date)
    if not get_settings().auto_claim_enabled:
        return AutoClaimOutcome(AutoClaimStatus.SKIPPED_DISABLED, entry_date)

    await validate_pending_days(db, user_id, tz, now)
    result = await claim(
        db,
        user_id,
        entry_date,
        tz,
        method=ClaimMethod.AUTO,
        has_underlying_data=True,
        now=now,
    )
    return AutoClaimOutcome(
        AutoClaimStatus.CLAIMED, entry_date, current_streak=result.current_streak
    )


async def try_auto_claim(
    session_maker: async_sessionmaker[AsyncSession],
    user_id: str,
    entry_date: date,
    source: DataSource,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> AutoClaimOutcome:
    """Best-effort claim triggered by a committed metric write.

    Call this only after the metric write's own transaction has committed.
    Runs in a fresh session; every failure is logged, counted and returned
    as an outcome. The data-day marker is committed before the claim is
    attempted, so it survives a rejected claim. Bulk-synced history never
    claims.
    """
    now = ensure_utc(now or utcnow())
    log = logger.bind(
        user_id=user_id, entry_date=entry_date.isoformat(), source=source.value
    )

    try:
        async with session_maker() as db:
            try:
                await DataDayRepository(db).mark(user_id, entry_date, source)
                await db.commit()

                outcome = await _auto_claim(db, user_id, entry_date, source, tz, now)
                await db.commit()
            except AlreadyClaimedError as e:
                await db.rollback()
                outcome = AutoClaimOutcome(
                    AutoClaimStatus.ALREADY_CLAIMED,
                    entry_date,
                    current_streak=e.current_streak,
                    error_code=e.code,
                )
            except Exception:
                await db.rollback()
                raise
    except StreakError as e:
        log.info("auto_claim.rejected", error_code=e.code, error=str(e))
        outcome = AutoClaimOutcome(
            AutoClaimStatus.REJECTED, entry_date, error_code=e.code
        )
    except Exception as e:
        log.exception("auto_claim.failed", error_type=type(e).__name__)
        outcome = AutoClaimOutcome(
            AutoClaimStatus.FAILED, entry_date, error_code=type(e).__name__
        )

    AUTO_CLAIM_OUTCOME_COUNTER.add(1, {"status": outcome.status.value})
    log.info("auto_claim.completed", status=outcome.status.value)
    return outcome
