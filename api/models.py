"""SQLAlchemy models for streak claiming and the shield economy."""

from datetime import UTC, date, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from core.database import Base

# Hard cap on freezes + milestone shields + purchased shields
MAX_TOTAL_SHIELDS = 5


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns.

    Use this for any model that needs audit timestamps.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow)

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class StreakStatus(str, PyEnum):
    """Lifecycle of a user's streak.

    A break does not change the status: the counter drops to zero and
    ``UserStreak.last_broken_date`` records the missed day.
    """

    ACTIVE = "active"
    PAUSED = "paused"


class ClaimMethod(str, PyEnum):
    """How a day record came to exist."""

    MANUAL = "manual"  # explicit check-in
    AUTO = "auto"  # triggered by a manual metric entry
    SHIELD_APPLIED = "shield_applied"  # protected by a shield, not claimed


class DayState(str, PyEnum):
    """Derived state of one (user, date) record."""

    CLAIMED = "claimed"
    FROZEN_BY_SHIELD = "frozen_by_shield"
    MISSED = "missed"


class ShieldType(str, PyEnum):
    """Shield kinds, in the order they are consumed."""

    FREEZE = "freeze"
    MILESTONE = "milestone"
    PURCHASED = "purchased"


class DataSource(str, PyEnum):
    """Where a metric write came from.

    Only MANUAL_ENTRY is allowed to auto-claim; BULK_SYNC never claims.
    """

    MANUAL_ENTRY = "manual_entry"
    BULK_SYNC = "bulk_sync"


class RecoveryType(str, PyEnum):
    """Ways to win back a broken streak."""

    WEEKEND_WARRIOR = "weekend_warrior"  # complete actions before expiry
    PURCHASED = "purchased"  # restored immediately, limited per year


class RecoveryStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class UserStreak(TimestampMixin, Base):
    """Per-user streak counters.

    ``streak_started_date`` and ``last_covered_date`` bound the current run
    (claimed or shield-protected days). ``last_validated_date`` is the latest
    local date the daily validation already resolved. ``last_broken_streak``
    is the counter lost at ``last_broken_date``, kept for recovery.
    ``version`` is bumped on every counter update and used as a
    compare-and-set token.
    """

    __tablename__ = "user_streaks"
    __table_args__ = (
        CheckConstraint("current_streak >= 0", name="ck_user_streaks_current"),
        CheckConstraint(
            "longest_streak >= current_streak", name="ck_user_streaks_longest"
        ),
        Index("ix_user_streaks_timezone", "timezone"),
    )

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_claims: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_claim_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    streak_started_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_covered_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_validated_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_broken_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_broken_streak: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    status: Mapped[StreakStatus] = mapped_column(
        Enum(
            StreakStatus,
            name="streak_status",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=StreakStatus.ACTIVE,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DailyClaimRecord(Base):
    """One row per (user, local date), written at most once and never updated."""

    __tablename__ = "daily_claims"
    __table_args__ = (
        UniqueConstraint("user_id", "claim_date", name="uq_daily_claims_user_date"),
        Index("ix_daily_claims_user_date", "user_id", "claim_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claim_method: Mapped[ClaimMethod | None] = mapped_column(
        Enum(
            ClaimMethod,
            name="claim_method",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    has_underlying_data: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    @property
    def day_state(self) -> DayState:
        if self.claimed:
            return DayState.CLAIMED
        if self.claim_method == ClaimMethod.SHIELD_APPLIED:
            return DayState.FROZEN_BY_SHIELD
        return DayState.MISSED


class ShieldInventory(TimestampMixin, Base):
    """Consumable shields, capped at MAX_TOTAL_SHIELDS in total."""

    __tablename__ = "shield_inventories"
    __table_args__ = (
        CheckConstraint("freezes_available >= 0", name="ck_shields_freezes"),
        CheckConstraint("milestone_shields >= 0", name="ck_shields_milestone"),
        CheckConstraint("purchased_shields >= 0", name="ck_shields_purchased"),
        CheckConstraint(
            "freezes_available + milestone_shields + purchased_shields "
            f"<= {MAX_TOTAL_SHIELDS}",
            name="ck_shields_total_cap",
        ),
    )

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    freezes_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    milestone_shields: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchased_shields: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_freeze_reset_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def total(self) -> int:
        return self.freezes_available + self.milestone_shields + self.purchased_shields


class EarnedMilestone(Base):
    """A milestone threshold reached by a user. Granted once, never re-granted."""

    __tablename__ = "earned_milestones"
    __table_args__ = (
        UniqueConstraint("user_id", "threshold", name="uq_earned_milestones_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    badge_id: Mapped[str] = mapped_column(String(64), nullable=False)
    shields_granted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class StreakPause(Base):
    """Active pause window. Removed on resume or when it expires."""

    __tablename__ = "streak_pauses"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    pause_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    pause_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class StreakRecovery(TimestampMixin, Base):
    """An attempt to restore the streak lost on ``broken_date``.

    One attempt per break. Weekend-warrior attempts stay PENDING until
    ``actions_completed`` reaches ``actions_required`` or ``expires_at``
    passes; purchased attempts complete on creation.
    """

    __tablename__ = "streak_recoveries"
    __table_args__ = (
        UniqueConstraint("user_id", "broken_date", name="uq_streak_recoveries_break"),
        CheckConstraint("actions_completed >= 0", name="ck_streak_recoveries_actions"),
        Index("ix_streak_recoveries_status_expiry", "status", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    broken_date: Mapped[date] = mapped_column(Date, nullable=False)
    lost_streak: Mapped[int] = mapped_column(Integer, nullable=False)
    recovery_type: Mapped[RecoveryType] = mapped_column(
        Enum(
            RecoveryType,
            name="recovery_type",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    status: Mapped[RecoveryStatus] = mapped_column(
        Enum(
            RecoveryStatus,
            name="recovery_status",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=RecoveryStatus.PENDING,
    )
    actions_required: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actions_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class DataDay(Base):
    """Marker that a user logged metric data on a local date.

    Metric values live elsewhere; only presence and source are kept here.
    """

    __tablename__ = "data_days"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "activity_date", "source", name="uq_data_days_user_date_source"
        ),
        Index("ix_data_days_user_date", "user_id", "activity_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    source: Mapped[DataSource] = mapped_column(
        Enum(
            DataSource,
            name="data_source",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
