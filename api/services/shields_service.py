"""Shield inventory: allocation, purchase and replenishment.

Three shield kinds share one pool capped at MAX_TOTAL_SHIELDS:
- freezes: one free freeze granted every local Monday
- milestone shields: awarded when a streak milestone is reached
- purchased shields: bought by the user

When a missed day needs protecting, shields are spent in SHIELD_PRIORITY
order so the most renewable kind goes first and paid shields go last.

Grants that would exceed the cap are clamped (silently dropped), never
rejected. Purchases over the cap are rejected with InventoryFullError so the
caller can refund.
"""

from dataclasses import dataclass
from datetime import datetime

from pytz.tzinfo import BaseTzInfo
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.logger import get_logger
from core.metrics import SHIELD_CONSUMED_COUNTER, SHIELD_GRANTED_COUNTER
from models import MAX_TOTAL_SHIELDS, ShieldInventory, ShieldType, utcnow
from repositories.shield_repository import ShieldInventoryRepository
from services.clock_service import (
    ensure_utc,
    next_freeze_reset,
    resolve_timezone,
    week_start,
)
from services.streak_errors import InventoryFullError, NoShieldsAvailableError

logger = get_logger(__name__)

SHIELD_PRIORITY: tuple[ShieldType, ...] = (
    ShieldType.FREEZE,
    ShieldType.MILESTONE,
    ShieldType.PURCHASED,
)


@dataclass(frozen=True)
class ShieldSummary:
    """DTO for a user's shield inventory."""

    freezes: int
    milestone_shields: int
    purchased: int
    total: int
    max_total: int
    last_freeze_reset: datetime | None
    next_freeze_reset: datetime


async def get_inventory(db: AsyncSession, user_id: str) -> ShieldInventory:
    """Get the user's inventory, creating it with the starter freezes."""
    repo = ShieldInventoryRepository(db)
    return await repo.get_or_create(user_id, get_settings().initial_freezes)


async def consume_shield(db: AsyncSession, user_id: str) -> ShieldType:
    """Spend one shield in priority order and return which kind was used.

    Each step is a decrement-if-positive, so two concurrent consumers can
    never drive a count below zero; the loser simply falls through to the
    next kind.

    Raises:
        NoShieldsAvailableError: Every count is zero.
    """
    await get_inventory(db, user_id)
    repo = ShieldInventoryRepository(db)

    for shield_type in SHIELD_PRIORITY:
        if await repo.decrement_if_positive(user_id, shield_type):
            SHIELD_CONSUMED_COUNTER.add(1, {"shield_type": shield_type.value})
            logger.info(
                "shield.consumed", user_id=user_id, shield_type=shield_type.value
            )
            return shield_type

    raise NoShieldsAvailableError(user_id)


async def purchase_freeze(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo | None = None,
    now: datetime | None = None,
) -> ShieldSummary:
    """Add one purchased shield.

    Raises:
        InventoryFullError: The pool already holds MAX_TOTAL_SHIELDS.
    """
    await get_inventory(db, user_id)
    repo = ShieldInventoryRepository(db)

    if not await repo.increment_if_room(user_id, ShieldType.PURCHASED):
        logger.info("shield.purchase.rejected", user_id=user_id, reason="full")
        raise InventoryFullError(user_id, MAX_TOTAL_SHIELDS)

    SHIELD_GRANTED_COUNTER.add(1, {"shield_type": ShieldType.PURCHASED.value})
    logger.info("shield.purchased", user_id=user_id)
    return await get_shield_summary(db, user_id, tz, now)


async def grant_milestone_shields(db: AsyncSession, user_id: str, count: int) -> int:
    """Add up to ``count`` milestone shields, clamped at the cap.

    Returns how many were actually added.
    """
    await get_inventory(db, user_id)
    repo = ShieldInventoryRepository(db)

    granted = 0
    for _ in range(count):
        if not await repo.increment_if_room(user_id, ShieldType.MILESTONE):
            break
        granted += 1

    if granted:
        SHIELD_GRANTED_COUNTER.add(granted, {"shield_type": ShieldType.MILESTONE.value})
    if granted < count:
        logger.info(
            "shield.milestone.clamped",
            user_id=user_id,
            requested=count,
            granted=granted,
        )
    return granted


async def grant_weekly_freeze(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo,
    now: datetime | None = None,
) -> bool:
    """Apply this week's free freeze if the user has not had it yet.

    Returns True if the weekly reset was applied (the freeze itself may still
    have been dropped by the cap), False if the user was already reset in the
    current local week.
    """
    now = ensure_utc(now or utcnow())
    freezes_before = (await get_inventory(db, user_id)).freezes_available
    repo = ShieldInventoryRepository(db)

    applied = await repo.grant_weekly(user_id, week_start=week_start(now, tz), now=now)
    if not applied:
        return False

    after = await repo.get(user_id)
    added = after is not None and after.freezes_available > freezes_before
    if added:
        SHIELD_GRANTED_COUNTER.add(1, {"shield_type": ShieldType.FREEZE.value})
    logger.info("shield.weekly_freeze", user_id=user_id, added=added)
    return True


async def get_shield_summary(
    db: AsyncSession,
    user_id: str,
    tz: BaseTzInfo | None = None,
    now: datetime | None = None,
) -> ShieldSummary:
    now = ensure_utc(now or utcnow())
    inventory = await get_inventory(db, user_id)
    if tz is None:
        tz = resolve_timezone(get_settings().default_timezone)

    last_reset = inventory.last_freeze_reset_at
    return ShieldSummary(
        freezes=inventory.freezes_available,
        milestone_shields=inventory.milestone_shields,
        purchased=inventory.purchased_shields,
        total=inventory.total,
        max_total=MAX_TOTAL_SHIELDS,
        last_freeze_reset=ensure_utc(last_reset) if last_reset else None,
        next_freeze_reset=next_freeze_reset(now, tz),
    )
