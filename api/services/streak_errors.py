"""Domain errors raised by the streak engine.

Every error carries a stable ``code`` so routes can map it to an HTTP
status and clients can branch on it without parsing messages.
"""

from datetime import date, datetime


class StreakError(Exception):
    """Base class for streak engine errors."""

    code = "streak_error"

    def __init__(self, message: str, **details: object):
        super().__init__(message)
        self.details = details


class InvalidTimezoneError(StreakError):
    code = "invalid_timezone"

    def __init__(self, timezone: str):
        super().__init__(f"Unknown timezone: {timezone!r}", timezone=timezone)
        self.timezone = timezone


class MissingParameterError(StreakError):
    code = "missing_parameter"

    def __init__(self, parameter: str):
        super().__init__(f"Missing required parameter: {parameter}", parameter=parameter)
        self.parameter = parameter


class AlreadyClaimedError(StreakError):
    """Informational: the day is already claimed. Not a failure for the user."""

    code = "already_claimed"

    def __init__(self, claim_date: date, current_streak: int = 0):
        super().__init__(
            f"{claim_date.isoformat()} is already claimed",
            claim_date=claim_date.isoformat(),
        )
        self.claim_date = claim_date
        self.current_streak = current_streak


class WindowExpiredError(StreakError):
    code = "window_expired"

    def __init__(self, claim_date: date, cutoff: datetime):
        super().__init__(
            f"The claim window for {claim_date.isoformat()} closed at "
            f"{cutoff.isoformat()}",
            claim_date=claim_date.isoformat(),
            cutoff=cutoff.isoformat(),
        )
        self.claim_date = claim_date
        self.cutoff = cutoff


class FutureDateError(StreakError):
    code = "future_date"

    def __init__(self, claim_date: date):
        super().__init__(
            f"{claim_date.isoformat()} has not started yet in your timezone",
            claim_date=claim_date.isoformat(),
        )
        self.claim_date = claim_date


class UnresolvedGapError(StreakError):
    """An earlier day is still open and unclaimed.

    The ledger never bridges a gap on its own; the caller must claim or
    validate the earlier day first.
    """

    code = "unresolved_gap"

    def __init__(self, claim_date: date, open_date: date):
        super().__init__(
            f"Cannot claim {claim_date.isoformat()} while "
            f"{open_date.isoformat()} is unresolved",
            claim_date=claim_date.isoformat(),
            open_date=open_date.isoformat(),
        )
        self.claim_date = claim_date
        self.open_date = open_date


class StreakPausedError(StreakError):
    code = "streak_paused"

    def __init__(self, user_id: str):
        super().__init__("Streak is paused; resume it before claiming", user_id=user_id)


class NoShieldsAvailableError(StreakError):
    code = "no_shields_available"

    def __init__(self, user_id: str):
        super().__init__("No shields available", user_id=user_id)


class InventoryFullError(StreakError):
    code = "inventory_full"

    def __init__(self, user_id: str, max_total: int):
        super().__init__(
            f"Shield inventory is full ({max_total} max)",
            user_id=user_id,
            max_total=max_total,
        )


class NotPausedError(StreakError):
    code = "not_paused"

    def __init__(self, user_id: str):
        super().__init__("Streak is not paused", user_id=user_id)


class AlreadyPausedError(StreakError):
    code = "already_paused"

    def __init__(self, user_id: str):
        super().__init__("Streak is already paused", user_id=user_id)


class InvalidPauseError(StreakError):
    code = "invalid_pause"


class StorageConflictError(StreakError):
    """A concurrent writer won the race on a unique key or version check."""

    code = "storage_conflict"


class MilestoneCatalogError(StreakError):
    code = "milestone_catalog"


class RecoveryNotAvailableError(StreakError):
    """There is no recoverable break on that date."""

    code = "recovery_not_available"


class RecoveryInProgressError(StreakError):
    code = "recovery_in_progress"

    def __init__(self, recovery_id: int):
        super().__init__(
            "A recovery for this break is already in progress",
            recovery_id=recovery_id,
        )
        self.recovery_id = recovery_id


class RecoveryLimitReachedError(StreakError):
    code = "recovery_limit_reached"

    def __init__(self, user_id: str, limit: int):
        super().__init__(
            f"Purchased recoveries are limited to {limit} per year",
            user_id=user_id,
            limit=limit,
        )


class RecoveryNotFoundError(StreakError):
    code = "recovery_not_found"

    def __init__(self, recovery_id: int):
        super().__init__(f"Recovery {recovery_id} not found", recovery_id=recovery_id)


class RecoveryExpiredError(StreakError):
    """The recovery is no longer pending (expired, failed or completed)."""

    code = "recovery_expired"

    def __init__(self, recovery_id: int):
        super().__init__(
            "Recovery has expired or is no longer pending", recovery_id=recovery_id
        )
