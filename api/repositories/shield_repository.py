"""Repository for shield inventories.

Every mutation is a single conditional UPDATE, so the cap and the
non-negative counts hold under concurrent writers without row locks.
"""

from datetime import datetime

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import MAX_TOTAL_SHIELDS, ShieldInventory, ShieldType
from repositories.utils import insert_if_absent, log_slow_query

_COLUMNS = {
    ShieldType.FREEZE: ShieldInventory.freezes_available,
    ShieldType.MILESTONE: ShieldInventory.milestone_shields,
    ShieldType.PURCHASED: ShieldInventory.purchased_shields,
}

_TOTAL = (
    ShieldInventory.freezes_available
    + ShieldInventory.milestone_shields
    + ShieldInventory.purchased_shields
)


class ShieldInventoryRepository:
    """Repository for ShieldInventory rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str) -> ShieldInventory | None:
        result = await self.db.execute(
            select(ShieldInventory)
            .where(ShieldInventory.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self, user_id: str, initial_freezes: int = 0
    ) -> ShieldInventory:
        inventory = await self.get(user_id)
        if inventory:
            return inventory

        await insert_if_absent(
            self.db,
            ShieldInventory,
            {
                "user_id": user_id,
                "freezes_available": min(initial_freezes, MAX_TOTAL_SHIELDS),
                "milestone_shields": 0,
                "purchased_shields": 0,
            },
            index_elements=["user_id"],
        )
        inventory = await self.get(user_id)
        assert inventory is not None
        return inventory

    @log_slow_query("shields.decrement_if_positive")
    async def decrement_if_positive(self, user_id: str, shield_type: ShieldType) -> bool:
        """Take one shield of ``shield_type``. False if that count is already 0."""
        column = _COLUMNS[shield_type]
        result = await self.db.execute(
            update(ShieldInventory)
            .where(ShieldInventory.user_id == user_id, column > 0)
            .values({column: column - 1})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @log_slow_query("shields.increment_if_room")
    async def increment_if_room(
        self, user_id: str, shield_type: ShieldType, max_total: int = MAX_TOTAL_SHIELDS
    ) -> bool:
        """Add one shield of ``shield_type``. False if the inventory is at the cap."""
        column = _COLUMNS[shield_type]
        result = await self.db.execute(
            update(ShieldInventory)
            .where(ShieldInventory.user_id == user_id, _TOTAL < max_total)
            .values({column: column + 1})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @log_slow_query("shields.grant_weekly")
    async def grant_weekly(
        self,
        user_id: str,
        *,
        week_start: datetime,
        now: datetime,
        max_total: int = MAX_TOTAL_SHIELDS,
    ) -> bool:
        """Weekly freeze: +1 if below the cap, dropped otherwise.

        ``last_freeze_reset_at`` is stamped either way. The update only
        matches inventories not yet reset since ``week_start``, so repeated
        runs within a week are no-ops. Returns True if the reset was applied.
        """
        result = await self.db.execute(
            update(ShieldInventory)
            .where(
                ShieldInventory.user_id == user_id,
                (ShieldInventory.last_freeze_reset_at.is_(None))
                | (ShieldInventory.last_freeze_reset_at < week_start),
            )
            .values(
                freezes_available=ShieldInventory.freezes_available
                + case((_TOTAL < max_total, 1), else_=0),
                last_freeze_reset_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
