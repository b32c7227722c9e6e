"""Repository for earned streak milestones."""

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import EarnedMilestone
from repositories.utils import insert_if_absent


class EarnedMilestoneRepository:
    """Repository for EarnedMilestone rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_user(self, user_id: str) -> Sequence[EarnedMilestone]:
        result = await self.db.execute(
            select(EarnedMilestone)
            .where(EarnedMilestone.user_id == user_id)
            .order_by(EarnedMilestone.threshold)
        )
        return result.scalars().all()

    async def get_thresholds(self, user_id: str) -> set[int]:
        result = await self.db.execute(
            select(EarnedMilestone.threshold).where(EarnedMilestone.user_id == user_id)
        )
        return set(result.scalars().all())

    async def record(
        self, user_id: str, threshold: int, badge_id: str, shields_granted: int
    ) -> bool:
        """Persist a milestone once. False if it was already earned."""
        return await insert_if_absent(
            self.db,
            EarnedMilestone,
            {
                "user_id": user_id,
                "threshold": threshold,
                "badge_id": badge_id,
                "shields_granted": shields_granted,
            },
            index_elements=["user_id", "threshold"],
        )
