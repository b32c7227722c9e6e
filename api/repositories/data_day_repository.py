"""Repository for metric data-presence markers."""

from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import DataDay, DataSource
from repositories.utils import insert_if_absent


class DataDayRepository:
    """Repository for DataDay rows (one per user, date and source)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def mark(self, user_id: str, activity_date: date, source: DataSource) -> bool:
        return await insert_if_absent(
            self.db,
            DataDay,
            {"user_id": user_id, "activity_date": activity_date, "source": source},
            index_elements=["user_id", "activity_date", "source"],
        )

    async def has_data(self, user_id: str, activity_date: date) -> bool:
        result = await self.db.execute(
            select(DataDay.id)
            .where(DataDay.user_id == user_id, DataDay.activity_date == activity_date)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def dates_with_data(self, user_id: str, start: date, end: date) -> set[date]:
        result = await self.db.execute(
            select(DataDay.activity_date)
            .where(
                DataDay.user_id == user_id,
                DataDay.activity_date >= start,
                DataDay.activity_date <= end,
            )
            .distinct()
        )
        return set(result.scalars().all())
