"""Repository layer for database operations."""

from repositories.data_day_repository import DataDayRepository
from repositories.milestone_repository import EarnedMilestoneRepository
from repositories.shield_repository import ShieldInventoryRepository
from repositories.streak_repository import (
    DailyClaimRepository,
    StreakPauseRepository,
    UserStreakRepository,
)

__all__ = [
    "DailyClaimRepository",
    "DataDayRepository",
    "EarnedMilestoneRepository",
    "ShieldInventoryRepository",
    "StreakPauseRepository",
    "UserStreakRepository",
]
