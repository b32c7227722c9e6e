"""Repositories for streak counters, day records and pause windows."""

from collections.abc import Sequence
from datetime import date
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    ClaimMethod,
    DailyClaimRecord,
    StreakPause,
    StreakStatus,
    UserStreak,
)
from repositories.utils import insert_if_absent, log_slow_query
from services.streak_errors import StorageConflictError


class UserStreakRepository:
    """Repository for UserStreak rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @log_slow_query("streak.get")
    async def get(self, user_id: str) -> UserStreak | None:
        result = await self.db.execute(
            select(UserStreak)
            .where(UserStreak.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: str, timezone: str = "UTC") -> UserStreak:
        """Get the user's streak row, creating a zeroed one if missing.

        Uses INSERT ... ON CONFLICT DO NOTHING so concurrent first
        interactions create exactly one row.
        """
        streak = await self.get(user_id)
        if streak:
            return streak

        await insert_if_absent(
            self.db,
            UserStreak,
            {
                "user_id": user_id,
                "timezone": timezone,
                "status": StreakStatus.ACTIVE,
            },
            index_elements=["user_id"],
        )
        streak = await self.get(user_id)
        assert streak is not None
        return streak

    @log_slow_query("streak.compare_and_set")
    async def compare_and_set(
        self, user_id: str, expected_version: int, **values: Any
    ) -> UserStreak:
        """Apply ``values`` only if the row is still at ``expected_version``.

        Raises:
            StorageConflictError: Another writer updated the row first.
        """
        result = await self.db.execute(
            update(UserStreak)
            .where(
                UserStreak.user_id == user_id,
                UserStreak.version == expected_version,
            )
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StorageConflictError(
                "Streak was modified concurrently",
                user_id=user_id,
                expected_version=expected_version,
            )

        refreshed = await self.db.execute(
            select(UserStreak)
            .where(UserStreak.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return refreshed.scalar_one()

    async def set_timezone(self, user_id: str, timezone: str) -> None:
        """Remember the caller's zone so the jobs can evaluate local days."""
        await self.db.execute(
            update(UserStreak)
            .where(UserStreak.user_id == user_id, UserStreak.timezone != timezone)
            .values(timezone=timezone)
            .execution_options(synchronize_session=False)
        )

    @log_slow_query("streak.list_user_ids")
    async def list_user_ids(self, *, after: str | None, limit: int) -> list[str]:
        """Keyset-paginated user ids, for the scheduled jobs."""
        query = select(UserStreak.user_id).order_by(UserStreak.user_id).limit(limit)
        if after is not None:
            query = query.where(UserStreak.user_id > after)
        result = await self.db.execute(query)
        return list(result.scalars().all())


class DailyClaimRepository:
    """Repository for per-day claim records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str, claim_date: date) -> DailyClaimRecord | None:
        result = await self.db.execute(
            select(DailyClaimRecord)
            .where(
                DailyClaimRecord.user_id == user_id,
                DailyClaimRecord.claim_date == claim_date,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @log_slow_query("claims.insert")
    async def insert(
        self,
        user_id: str,
        claim_date: date,
        *,
        claimed: bool,
        claim_method: ClaimMethod | None,
        has_underlying_data: bool,
        timezone: str,
    ) -> bool:
        """Create the record for (user, date) unless one already exists.

        The unique constraint on (user_id, claim_date) decides the winner
        under concurrency. Returns True if this call created the row.
        """
        return await insert_if_absent(
            self.db,
            DailyClaimRecord,
            {
                "user_id": user_id,
                "claim_date": claim_date,
                "claimed": claimed,
                "claim_method": claim_method,
                "has_underlying_data": has_underlying_data,
                "timezone": timezone,
            },
            index_elements=["user_id", "claim_date"],
        )

    @log_slow_query("claims.list_range")
    async def list_range(
        self, user_id: str, start: date, end: date
    ) -> Sequence[DailyClaimRecord]:
        """Records with start <= claim_date <= end, newest first."""
        result = await self.db.execute(
            select(DailyClaimRecord)
            .where(
                DailyClaimRecord.user_id == user_id,
                DailyClaimRecord.claim_date >= start,
                DailyClaimRecord.claim_date <= end,
            )
            .order_by(DailyClaimRecord.claim_date.desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()


class StreakPauseRepository:
    """Repository for active pause windows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str) -> StreakPause | None:
        result = await self.db.execute(
            select(StreakPause).where(StreakPause.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def create(self, user_id: str, start: date, end: date) -> bool:
        return await insert_if_absent(
            self.db,
            StreakPause,
            {"user_id": user_id, "pause_start_date": start, "pause_end_date": end},
            index_elements=["user_id"],
        )

    async def delete(self, user_id: str) -> bool:
        result = await self.db.execute(
            delete(StreakPause).where(StreakPause.user_id == user_id)
        )
        return result.rowcount > 0
