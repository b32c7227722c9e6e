"""Repository for streak recovery attempts.

State changes are conditional UPDATEs on ``status``, so a recovery moves out
of PENDING exactly once even with concurrent writers.
"""

from collections.abc import Sequence
from datetime import date, datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import RecoveryStatus, RecoveryType, StreakRecovery
from repositories.utils import insert_if_absent, log_slow_query


class StreakRecoveryRepository:
    """Repository for StreakRecovery rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str, recovery_id: int) -> StreakRecovery | None:
        result = await self.db.execute(
            select(StreakRecovery)
            .where(
                StreakRecovery.id == recovery_id,
                StreakRecovery.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_break(
        self, user_id: str, broken_date: date
    ) -> StreakRecovery | None:
        result = await self.db.execute(
            select(StreakRecovery)
            .where(
                StreakRecovery.user_id == user_id,
                StreakRecovery.broken_date == broken_date,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @log_slow_query("recoveries.create")
    async def create(
        self,
        user_id: str,
        broken_date: date,
        *,
        lost_streak: int,
        recovery_type: RecoveryType,
        actions_required: int | None,
        expires_at: datetime | None,
    ) -> StreakRecovery | None:
        """Start the single recovery for this break.

        Returns None if another attempt for the same break already exists.
        """
        created = await insert_if_absent(
            self.db,
            StreakRecovery,
            {
                "user_id": user_id,
                "broken_date": broken_date,
                "lost_streak": lost_streak,
                "recovery_type": recovery_type,
                "status": RecoveryStatus.PENDING,
                "actions_required": actions_required,
                "actions_completed": 0,
                "expires_at": expires_at,
            },
            index_elements=["user_id", "broken_date"],
        )
        if not created:
            return None
        return await self.get_for_break(user_id, broken_date)

    @log_slow_query("recoveries.count_purchased_since")
    async def count_purchased_since(self, user_id: str, since: datetime) -> int:
        """Purchased recoveries that restored a streak on or after ``since``."""
        result = await self.db.execute(
            select(func.count())
            .select_from(StreakRecovery)
            .where(
                StreakRecovery.user_id == user_id,
                StreakRecovery.recovery_type == RecoveryType.PURCHASED,
                StreakRecovery.status == RecoveryStatus.COMPLETED,
                StreakRecovery.completed_at >= since,
            )
        )
        return result.scalar_one()

    @log_slow_query("recoveries.record_action")
    async def record_action(self, recovery_id: int, now: datetime) -> bool:
        """Count one action on a pending, unexpired recovery."""
        result = await self.db.execute(
            update(StreakRecovery)
            .where(
                StreakRecovery.id == recovery_id,
                StreakRecovery.status == RecoveryStatus.PENDING,
                StreakRecovery.expires_at > now,
            )
            .values(actions_completed=StreakRecovery.actions_completed + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @log_slow_query("recoveries.finish")
    async def finish(
        self,
        recovery_id: int,
        status: RecoveryStatus,
        completed_at: datetime | None = None,
    ) -> bool:
        """Move a pending recovery to ``status``. False if it already left PENDING."""
        result = await self.db.execute(
            update(StreakRecovery)
            .where(
                StreakRecovery.id == recovery_id,
                StreakRecovery.status == RecoveryStatus.PENDING,
            )
            .values(status=status, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @log_slow_query("recoveries.expire_due")
    async def expire_due(self, now: datetime) -> int:
        """Expire every pending recovery whose window has passed."""
        result = await self.db.execute(
            update(StreakRecovery)
            .where(
                StreakRecovery.status == RecoveryStatus.PENDING,
                StreakRecovery.expires_at <= now,
            )
            .values(status=RecoveryStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def list_for_user(
        self, user_id: str, limit: int = 20
    ) -> Sequence[StreakRecovery]:
        """Most recent breaks first."""
        result = await self.db.execute(
            select(StreakRecovery)
            .where(StreakRecovery.user_id == user_id)
            .order_by(StreakRecovery.broken_date.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()
