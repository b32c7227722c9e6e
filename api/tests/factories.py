"""Factory Boy factories for generating test data.

Factories provide a clean way to create test objects with sensible defaults.
Override specific fields as needed in tests.

Usage:
    # A user on a 6-day streak, covered through yesterday
    streak = await create_async(
        UserStreakFactory, db_session, current_streak=6, last_covered_date=yesterday
    )

    # Shield inventory at the cap
    await create_async(ShieldInventoryFactory, db_session, user_id=uid, purchased_shields=5)
"""

from datetime import UTC, date, datetime, timedelta

import factory
from faker import Faker
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    ClaimMethod,
    DailyClaimRecord,
    DataDay,
    DataSource,
    EarnedMilestone,
    RecoveryStatus,
    RecoveryType,
    ShieldInventory,
    StreakPause,
    StreakRecovery,
    StreakStatus,
    UserStreak,
)

fake = Faker()

# Monday, 2 March 2026, 12:00 UTC
FROZEN_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
TODAY = FROZEN_NOW.date()


def at_utc(
    year: int, month: int, day: int, hour: int = 12, minute: int = 0
) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=UTC)


# =============================================================================
# Async Factory Helpers
# =============================================================================


async def create_async(
    factory_class: type[factory.Factory], db: AsyncSession, **kwargs
):
    """Create an instance using a factory and persist to database.

    Usage:
        streak = await create_async(UserStreakFactory, db_session, current_streak=3)
    """
    instance = factory_class.build(**kwargs)
    db.add(instance)
    await db.flush()
    await db.refresh(instance)
    return instance


async def create_batch_async(
    factory_class: type[factory.Factory], db: AsyncSession, size: int, **kwargs
):
    """Create multiple instances and persist to database."""
    instances = factory_class.build_batch(size, **kwargs)
    for instance in instances:
        db.add(instance)
    await db.flush()
    for instance in instances:
        await db.refresh(instance)
    return instances


def _user_id() -> str:
    return f"user_{fake.uuid4().replace('-', '')[:24]}"


# =============================================================================
# Streak Factories
# =============================================================================


class UserStreakFactory(factory.Factory):
    """A streak row. Defaults to a brand-new user (nothing claimed yet)."""

    class Meta:
        model = UserStreak

    user_id = factory.LazyFunction(_user_id)
    timezone = "UTC"
    current_streak = 0
    longest_streak = factory.LazyAttribute(lambda obj: obj.current_streak)
    total_claims = factory.LazyAttribute(lambda obj: obj.current_streak)
    last_claim_date = factory.LazyAttribute(lambda obj: obj.last_covered_date)
    streak_started_date = None
    last_covered_date = None
    last_validated_date = None
    last_broken_date = None
    last_broken_streak = 0
    status = StreakStatus.ACTIVE
    version = 0


class DailyClaimFactory(factory.Factory):
    """A claimed day."""

    class Meta:
        model = DailyClaimRecord

    user_id = factory.LazyFunction(_user_id)
    claim_date = TODAY
    claimed = True
    claim_method = ClaimMethod.MANUAL
    has_underlying_data = False
    timezone = "UTC"
    created_at = factory.LazyFunction(lambda: datetime.now(UTC))


class ShieldedDayFactory(DailyClaimFactory):
    claimed = False
    claim_method = ClaimMethod.SHIELD_APPLIED


class MissedDayFactory(DailyClaimFactory):
    claimed = False
    claim_method = None


class StreakPauseFactory(factory.Factory):
    class Meta:
        model = StreakPause

    user_id = factory.LazyFunction(_user_id)
    pause_start_date = TODAY
    pause_end_date = factory.LazyAttribute(
        lambda obj: date.fromordinal(obj.pause_start_date.toordinal() + 7)
    )


# =============================================================================
# Shield / Milestone Factories
# =============================================================================


class ShieldInventoryFactory(factory.Factory):
    """An inventory with nothing in it. Override counts per test."""

    class Meta:
        model = ShieldInventory

    user_id = factory.LazyFunction(_user_id)
    freezes_available = 0
    milestone_shields = 0
    purchased_shields = 0
    last_freeze_reset_at = None


class EarnedMilestoneFactory(factory.Factory):
    class Meta:
        model = EarnedMilestone

    user_id = factory.LazyFunction(_user_id)
    threshold = 3
    badge_id = factory.LazyAttribute(lambda obj: f"streak_{obj.threshold}")
    shields_granted = 0
    earned_at = factory.LazyFunction(lambda: datetime.now(UTC))


class DataDayFactory(factory.Factory):
    class Meta:
        model = DataDay

    user_id = factory.LazyFunction(_user_id)
    activity_date = TODAY
    source = DataSource.MANUAL_ENTRY


class StreakRecoveryFactory(factory.Factory):
    """A pending weekend-warrior recovery for a break yesterday."""

    class Meta:
        model = StreakRecovery

    user_id = factory.LazyFunction(_user_id)
    broken_date = TODAY - timedelta(days=1)
    lost_streak = 5
    recovery_type = RecoveryType.WEEKEND_WARRIOR
    status = RecoveryStatus.PENDING
    actions_required = 2
    actions_completed = 0
    expires_at = FROZEN_NOW + timedelta(hours=24)
    completed_at = None
