"""Streak milestones: catalog, evaluation and one-time grants.

Milestones are reached by streak length. Each one is granted once per user
and recorded in ``earned_milestones``; some also award milestone shields.

``evaluate_milestones`` is a pure function and has no database access.
``record_milestones`` persists what it returns.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import TypedDict

from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import get_logger
from core.metrics import MILESTONE_EARNED_COUNTER
from repositories.milestone_repository import EarnedMilestoneRepository
from services.clock_service import ensure_utc
from services.shields_service import grant_milestone_shields
from services.streak_errors import MilestoneCatalogError

logger = get_logger(__name__)


class MilestoneInfo(TypedDict):
    """Streak milestone configuration."""

    id: str
    name: str
    description: str
    icon: str
    threshold: int
    shields: int


STREAK_MILESTONES: list[MilestoneInfo] = [
    {
        "id": "streak_3",
        "name": "Getting Started",
        "description": "Checked in 3 days in a row",
        "icon": "🌱",
        "threshold": 3,
        "shields": 0,
    },
    {
        "id": "streak_7",
        "name": "Week Warrior",
        "description": "Maintained a 7-day streak",
        "icon": "🔥",
        "threshold": 7,
        "shields": 0,
    },
    {
        "id": "streak_14",
        "name": "Fortnight Focus",
        "description": "Maintained a 14-day streak",
        "icon": "⚡",
        "threshold": 14,
        "shields": 0,
    },
    {
        "id": "streak_30",
        "name": "Monthly Master",
        "description": "Maintained a 30-day streak",
        "icon": "💪",
        "threshold": 30,
        "shields": 1,
    },
    {
        "id": "streak_60",
        "name": "Habit Builder",
        "description": "Maintained a 60-day streak",
        "icon": "🏗️",
        "threshold": 60,
        "shields": 1,
    },
    {
        "id": "streak_100",
        "name": "Century Club",
        "description": "Maintained a 100-day streak",
        "icon": "💯",
        "threshold": 100,
        "shields": 2,
    },
    {
        "id": "streak_180",
        "name": "Half-Year Hero",
        "description": "Maintained a 180-day streak",
        "icon": "🏅",
        "threshold": 180,
        "shields": 0,
    },
    {
        "id": "streak_365",
        "name": "Year of Consistency",
        "description": "Maintained a 365-day streak",
        "icon": "🏆",
        "threshold": 365,
        "shields": 3,
    },
]


def validate_catalog(catalog: list[MilestoneInfo]) -> None:
    """Thresholds must be positive and strictly ascending; ids unique."""
    thresholds = [m["threshold"] for m in catalog]
    if any(t <= 0 for t in thresholds):
        raise MilestoneCatalogError("Milestone thresholds must be positive")
    if any(a >= b for a, b in zip(thresholds, thresholds[1:])):
        raise MilestoneCatalogError(
            "Milestone thresholds must be strictly ascending with no duplicates",
            thresholds=thresholds,
        )
    ids = [m["id"] for m in catalog]
    if len(ids) != len(set(ids)):
        raise MilestoneCatalogError("Milestone ids must be unique", ids=ids)


validate_catalog(STREAK_MILESTONES)


@dataclass(frozen=True)
class MilestoneEvaluation:
    """Result of evaluating a streak length against the catalog."""

    reached: MilestoneInfo | None
    next_milestone: MilestoneInfo | None


@dataclass(frozen=True)
class EarnedMilestoneData:
    """DTO for an earned milestone."""

    threshold: int
    badge_id: str
    name: str
    icon: str
    shields_granted: int
    earned_at: datetime


def evaluate_milestones(
    current_streak: int,
    earned_thresholds: set[int],
    catalog: list[MilestoneInfo] = STREAK_MILESTONES,
) -> MilestoneEvaluation:
    """Find the milestone to grant now and the next one to aim for.

    ``reached`` is the highest threshold <= current_streak that has not been
    earned yet, or None. ``next_milestone`` is the first threshold strictly
    above current_streak, or None once the catalog is exhausted.
    """
    reached = None
    next_milestone = None
    for milestone in catalog:
        if milestone["threshold"] <= current_streak:
            if milestone["threshold"] not in earned_thresholds:
                reached = milestone
        elif next_milestone is None:
            next_milestone = milestone
    return MilestoneEvaluation(reached=reached, next_milestone=next_milestone)


def get_next_milestone(current_streak: int) -> MilestoneInfo | None:
    return evaluate_milestones(current_streak, set()).next_milestone


async def record_milestones(
    db: AsyncSession, user_id: str, current_streak: int
) -> MilestoneInfo | None:
    """Grant the milestone reached by ``current_streak``, at most once.

    Returns the newly granted milestone, or None if nothing new was reached
    (including when a concurrent caller recorded it first).
    """
    repo = EarnedMilestoneRepository(db)
    earned = await repo.get_thresholds(user_id)
    evaluation = evaluate_milestones(current_streak, earned)
    milestone = evaluation.reached
    if milestone is None:
        return None

    created = await repo.record(
        user_id,
        threshold=milestone["threshold"],
        badge_id=milestone["id"],
        shields_granted=milestone["shields"],
    )
    if not created:
        return None

    if milestone["shields"]:
        await grant_milestone_shields(db, user_id, milestone["shields"])

    MILESTONE_EARNED_COUNTER.add(1, {"badge_id": milestone["id"]})
    logger.info(
        "milestone.earned",
        user_id=user_id,
        badge_id=milestone["id"],
        threshold=milestone["threshold"],
        shields=milestone["shields"],
    )
    return milestone


async def get_earned_milestones(
    db: AsyncSession, user_id: str
) -> list[EarnedMilestoneData]:
    by_threshold = {m["threshold"]: m for m in STREAK_MILESTONES}
    repo = EarnedMilestoneRepository(db)

    earned: list[EarnedMilestoneData] = []
    for row in await repo.list_for_user(user_id):
        info = by_threshold.get(row.threshold)
        earned.append(
            EarnedMilestoneData(
                threshold=row.threshold,
                badge_id=row.badge_id,
                name=info["name"] if info else row.badge_id,
                icon=info["icon"] if info else "",
                shields_granted=row.shields_granted,
                earned_at=ensure_utc(row.earned_at),
            )
        )
    return earned
