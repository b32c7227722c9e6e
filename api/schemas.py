"""Pydantic schemas for API request/response validation."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import (
    ClaimMethod,
    DataSource,
    DayState,
    RecoveryStatus,
    RecoveryType,
    StreakStatus,
)


class ErrorResponse(BaseModel):
    """Body returned for every rejected streak operation."""

    detail: str
    code: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


class PoolStatusResponse(BaseModel):
    """Database connection pool metrics."""

    pool_size: int
    checked_out: int
    overflow: int
    checked_in: int


class DetailedHealthResponse(BaseModel):
    """Health check with component status."""

    status: str
    service: str
    database: bool
    pool: PoolStatusResponse | None = None


# --- Requests ---


class _TimezoneMixin(BaseModel):
    timezone: str | None = Field(default=None, max_length=64)

    @field_validator("timezone")
    @classmethod
    def strip_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class ClaimRequest(_TimezoneMixin):
    """Explicit check-in. ``claim_date`` defaults to the user's today."""

    claim_date: date | None = None


class AutoClaimRequest(_TimezoneMixin):
    """Sent by the metric-entry layer after its own write has committed."""

    entry_date: date
    source: DataSource = DataSource.MANUAL_ENTRY


class ShieldActivateRequest(_TimezoneMixin):
    day: date | None = None


class TimezoneRequest(_TimezoneMixin):
    pass


class PauseRequest(_TimezoneMixin):
    until: date


class RecoveryStartRequest(_TimezoneMixin):
    broken_date: date
    recovery_type: RecoveryType


# --- Responses ---


class MilestoneResponse(BaseModel):
    """A streak milestone from the catalog."""

    id: str
    name: str
    description: str
    icon: str
    threshold: int
    shields: int


class EarnedMilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    threshold: int
    badge_id: str
    name: str
    icon: str
    shields_granted: int
    earned_at: datetime


class EarnedMilestonesResponse(BaseModel):
    milestones: list[EarnedMilestoneResponse]
    next_milestone: MilestoneResponse | None = None


class ClaimResponse(BaseModel):
    """Result of an explicit check-in.

    ``already_claimed`` is informational: the day was claimed before and the
    streak is unchanged. ``pending`` means the claim is recorded but waits on
    an earlier day that can still be claimed.
    """

    model_config = ConfigDict(from_attributes=True)

    claim_date: date
    current_streak: int
    longest_streak: int | None = None
    method: ClaimMethod | None = None
    counted: bool = False
    pending: bool = False
    already_claimed: bool = False
    milestone: MilestoneResponse | None = None
    next_milestone: MilestoneResponse | None = None


class AutoClaimResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    claim_date: date
    current_streak: int | None = None
    error_code: str | None = None


class ShieldSummaryResponse(BaseModel):
    """A user's shield inventory."""

    model_config = ConfigDict(from_attributes=True)

    freezes: int
    milestone_shields: int
    purchased: int
    total: int
    max_total: int
    last_freeze_reset: datetime | None = None
    next_freeze_reset: datetime


class ShieldActivateResponse(BaseModel):
    day: date
    shield_type: str
    shields: ShieldSummaryResponse


class StreakSummaryResponse(BaseModel):
    """A user's streak overview."""

    model_config = ConfigDict(from_attributes=True)

    current_streak: int
    longest_streak: int
    total_claims: int
    status: StreakStatus
    last_claim_date: date | None = None
    last_broken_date: date | None = None
    paused_until: date | None = None
    claimed_today: bool
    can_claim_today: bool
    freezes_available: int
    shields_total: int
    next_milestone: MilestoneResponse | None = None
    days_to_next_milestone: int | None = None


class ClaimableDayResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    state: DayState | None = None
    claimed: bool
    has_health_data: bool
    can_claim: bool
    reason: str | None = None


class ClaimableDaysResponse(BaseModel):
    timezone: str
    days: list[ClaimableDayResponse]


class ClaimHistoryEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    state: DayState
    method: ClaimMethod | None = None
    has_underlying_data: bool
    recorded_at: datetime


class ClaimHistoryResponse(BaseModel):
    entries: list[ClaimHistoryEntryResponse]


class DailyValidationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    users_processed: int
    days_validated: int
    shields_applied: int
    streaks_broken: int
    pauses_expired: int
    failures: int


class WeeklyResetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    users_processed: int
    users_reset: int
    users_skipped: int
    failures: int


class RecoveryCleanupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    recoveries_expired: int


class RecoveryResponse(BaseModel):
    """A recovery attempt. ``current_streak`` is the streak after the call."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    broken_date: date
    lost_streak: int
    recovery_type: RecoveryType
    status: RecoveryStatus
    actions_required: int | None = None
    actions_completed: int
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    current_streak: int


class RecoveriesResponse(BaseModel):
    """The latest recoverable break, if any, and recent attempts."""

    recoverable_date: date | None = None
    recoverable_streak: int | None = None
    recoveries: list[RecoveryResponse]
