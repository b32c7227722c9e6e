"""Timezone-aware day boundaries for streak claims.

This is the only module that turns a raw instant into a user-local date.
Everything downstream works with ``date`` values already resolved here.

Claim window for local day D:
    opens  at local 00:00 on D
    closes at local 03:00 on D+1 (configurable grace hours)
The close instant is exclusive: a claim exactly at the cutoff is rejected.

DST: local times are built with ``tz.localize`` + ``tz.normalize`` so a
midnight or 03:00 that falls in a spring-forward gap still maps to a real
instant, and the window length follows the wall clock (23 or 25 hours on
transition days).
"""

from datetime import UTC, date, datetime, time, timedelta
from enum import StrEnum

import pytz
from pytz.tzinfo import BaseTzInfo

from services.streak_errors import InvalidTimezoneError, MissingParameterError

GRACE_PERIOD_HOURS = 3

# Freezes are replenished at local Monday 00:00
FREEZE_RESET_WEEKDAY = 0


class ClaimWindow(StrEnum):
    NOT_STARTED = "not_started"
    OPEN = "open"
    EXPIRED = "expired"


def resolve_timezone(name: str) -> BaseTzInfo:
    """Return the pytz zone for an IANA name or raise InvalidTimezoneError."""
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError as e:
        raise InvalidTimezoneError(str(name)) from e


def resolve_request_timezone(
    name: str | None, *, is_bearer: bool, default: str
) -> BaseTzInfo:
    """Resolve the timezone sent with a request.

    Mobile (bearer) clients must send one; web clients fall back to the
    configured default.
    """
    if not name:
        if is_bearer:
            raise MissingParameterError("timezone")
        name = default
    return resolve_timezone(name)


def ensure_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime.

    SQLite hands back naive datetimes even for timezone-aware columns.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _local_instant(day: date, at: time, tz: BaseTzInfo) -> datetime:
    local = tz.normalize(tz.localize(datetime.combine(day, at), is_dst=False))
    return local.astimezone(UTC)


def local_date(now: datetime, tz: BaseTzInfo) -> date:
    """The user's calendar date at ``now``."""
    return ensure_utc(now).astimezone(tz).date()


def claim_window_start(claim_date: date, tz: BaseTzInfo) -> datetime:
    return _local_instant(claim_date, time.min, tz)


def claim_cutoff(
    claim_date: date, tz: BaseTzInfo, grace_hours: int = GRACE_PERIOD_HOURS
) -> datetime:
    """Exclusive end of the claim window for ``claim_date``, in UTC."""
    return _local_instant(claim_date + timedelta(days=1), time(grace_hours), tz)


def claim_window_state(
    claim_date: date,
    tz: BaseTzInfo,
    now: datetime,
    grace_hours: int = GRACE_PERIOD_HOURS,
) -> ClaimWindow:
    now = ensure_utc(now)
    if now < claim_window_start(claim_date, tz):
        return ClaimWindow.NOT_STARTED
    if now >= claim_cutoff(claim_date, tz, grace_hours):
        return ClaimWindow.EXPIRED
    return ClaimWindow.OPEN


def is_window_closed(
    claim_date: date,
    tz: BaseTzInfo,
    now: datetime,
    grace_hours: int = GRACE_PERIOD_HOURS,
) -> bool:
    return claim_window_state(claim_date, tz, now, grace_hours) is ClaimWindow.EXPIRED


def last_closed_date(
    tz: BaseTzInfo, now: datetime, grace_hours: int = GRACE_PERIOD_HOURS
) -> date:
    """Latest local date whose claim window has already closed at ``now``.

    Before the grace cutoff this is the day before yesterday; after it,
    yesterday.
    """
    yesterday = local_date(now, tz) - timedelta(days=1)
    if is_window_closed(yesterday, tz, now, grace_hours):
        return yesterday
    return yesterday - timedelta(days=1)


def week_start(now: datetime, tz: BaseTzInfo) -> datetime:
    """Local Monday 00:00 of the week containing ``now``, in UTC."""
    today = local_date(now, tz)
    monday = today - timedelta(days=(today.weekday() - FREEZE_RESET_WEEKDAY) % 7)
    return _local_instant(monday, time.min, tz)


def next_freeze_reset(now: datetime, tz: BaseTzInfo) -> datetime:
    """Local Monday 00:00 of the following week, in UTC."""
    monday = week_start(now, tz).astimezone(tz).date()
    return _local_instant(monday + timedelta(days=7), time.min, tz)


def is_reset_day(now: datetime, tz: BaseTzInfo) -> bool:
    return local_date(now, tz).weekday() == FREEZE_RESET_WEEKDAY
