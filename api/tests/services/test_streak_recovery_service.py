"""Tests for streak_recovery_service.

Scenarios run at FROZEN_NOW for a UTC user whose 5-day streak broke on
1 March (yesterday), unless stated otherwise.
"""

from datetime import date, timedelta

import pytest
import pytz

from models import RecoveryStatus, RecoveryType, StreakStatus
from repositories.recovery_repository import StreakRecoveryRepository
from repositories.streak_repository import UserStreakRepository
from services.streak_errors import (
    RecoveryExpiredError,
    RecoveryInProgressError,
    RecoveryLimitReachedError,
    RecoveryNotAvailableError,
    RecoveryNotFoundError,
    StreakPausedError,
)
from services.streak_ledger_service import claim, validate_day
from services.streak_recovery_service import (
    complete_recovery_action,
    expire_recoveries,
    get_recovery_overview,
    start_recovery,
)
from tests.factories import (
    FROZEN_NOW,
    TODAY,
    ShieldInventoryFactory,
    StreakRecoveryFactory,
    UserStreakFactory,
    at_utc,
    create_async,
)

pytestmark = pytest.mark.unit

UTC_TZ = pytz.timezone("UTC")
YESTERDAY = TODAY - timedelta(days=1)
FEB_28 = date(2026, 2, 28)


async def _broken(db, user_id, **extra):
    """A 5-day run that ended on 28 Feb and broke on 1 March."""
    await create_async(ShieldInventoryFactory, db, user_id=user_id)
    fields = {
        "current_streak": 0,
        "longest_streak": 5,
        "total_claims": 5,
        "last_claim_date": FEB_28,
        "last_covered_date": FEB_28,
        "last_validated_date": YESTERDAY,
        "last_broken_date": YESTERDAY,
        "last_broken_streak": 5,
        **extra,
    }
    return await create_async(UserStreakFactory, db, user_id=user_id, **fields)


async def _streak(db, user_id):
    return await UserStreakRepository(db).get(user_id)


class TestPurchasedRecovery:
    async def test_restores_immediately(self, db_session, test_user_id):
        await _broken(db_session, test_user_id)

        result = await start_recovery(
            db_session,
            test_user_id,
            YESTERDAY,
            RecoveryType.PURCHASED,
            UTC_TZ,
            FROZEN_NOW,
        )

        assert result.status is RecoveryStatus.COMPLETED
        assert result.current_streak == 5
        assert result.completed_at == FROZEN_NOW
        streak = await _streak(db_session, test_user_id)
        assert streak.last_covered_date == YESTERDAY
        assert streak.last_broken_date is None
        assert streak.last_broken_streak == 0

        claimed = await claim(db_session, test_user_id, TODAY, UTC_TZ, now=FROZEN_NOW)
        assert claimed.current_streak == 6

    async def test_joins_run_restarted_the_next_day(self, db_session, test_user_id):
        await _broken(
            db_session,
            test_user_id,
            current_streak=1,
            streak_started_date=TODAY,
            last_covered_date=TODAY,
        )

        result = await start_recovery(
            db_session,
            test_user_id,
            YESTERDAY,
            RecoveryType.PURCHASED,
            UTC_TZ,
            FROZEN_NOW,
        )

        assert result.current_streak == 6
        streak = await _streak(db_session, test_user_id)
        assert streak.current_streak == 6
        assert streak.longest_streak == 6
        assert streak.last_covered_date == TODAY

    async def test_one_purchase_per_year(self, db_session, test_user_id):
        await _broken(db_session, test_user_id)
        await create_async(
            StreakRecoveryFactory,
            db_session,
            user_id=test_user_id,
            broken_date=date(2025, 12, 1),
            recovery_type=RecoveryType.PURCHASED,
            status=RecoveryStatus.COMPLETED,
            actions_required=None,
            expires_at=None,
            completed_at=FROZEN_NOW - timedelta(days=90),
        )

        with pytest.raises(RecoveryLimitReachedError):
            await start_recovery(
                db_session,
                test_user_id,
                YESTERDAY,
                RecoveryType.PURCHASED,
                UTC_TZ,
                FROZEN_NOW,
            )

        assert (await _streak(db_session, test_user_id)).current_streak == 0

    async def test_purchase_allowance_renews_after_a_year(
        self, db_session, test_user_id
    ):
        await _broken(db_session, test_user_id)
        await create_async(
            StreakRecoveryFactory,
            db_session,
            user_id=test_user_id,
            broken_date=date(2025, 2, 1),
            recovery_type=RecoveryType.PURCHASED,
            status=RecoveryStatus.COMPLETED,
            actions_required=None,
            expires_at=None,
            completed_at=FROZEN_NOW - timedelta(days=366),
        )

        result = await start_recovery(
            db_session,
            test_user_id,
            YESTERDAY,
            RecoveryType.PURCHASED,
            UTC_TZ,
            FROZEN_NOW,
        )

        assert result.status is RecoveryStatus.COMPLETED


class TestWeekendWarriorRecovery:
    async def _start(self, db, user_id):
        return await start_recovery(
            db,
            user_id,
            YESTERDAY,
            RecoveryType.WEEKEND_WARRIOR,
            UTC_TZ,
            FROZEN_NOW,
        )

    async def test_two_actions_restore_the_streak(self, db_session, test_user_id):
        await _broken(db_session, test_user_id)

        started = await self._start(db_session, test_user_id)

        assert started.status is RecoveryStatus.PENDING
        assert started.actions_required == 2
        assert started.expires_at == FROZEN_NOW + timedelta(hours=24)
        assert started.current_streak == 0

        first = await complete_recovery_action(
            db_session, test_user_id, started.id, UTC_TZ, at_utc(2026, 3, 2, 14)
        )
        assert first.status is RecoveryStatus.PENDING
        assert first.actions_completed == 1

        second = await complete_recovery_action(
            db_session, test_user_id, started.id, UTC_TZ, at_utc(2026, 3, 2, 18)
        )
        assert second.status is RecoveryStatus.COMPLETED
        assert second.current_streak == 5
        assert (await _streak(db_session, test_user_id)).last_broken_date is None

    async def test_second_start_while_pending(self, db_session, test_user_id):
        await _broken(db_session, test_user_id)
        started = await self._start(db_session, test_user_id)

        with pytest.raises(RecoveryInProgressError) as exc_info:
            await self._start(db_session, test_user_id)

        assert exc_info.value.recovery_id == started.id

    async def test_action_after_expiry_is_rejected(self, db_session, test_user_id):
        await _broken(db_session, test_user_id)
        recovery = await create_async(
            StreakRecoveryFactory,
            db_session,
            user_id=test_user_id,
            expires_at=FROZEN_NOW - timedelta(hours=1),
        )

        with pytest.raises(RecoveryExpiredError):
            await complete_recovery_action(
                db_session, test_user_id, recovery.id, UTC_TZ, FROZEN_NOW
            )

        assert (await _streak(db_session, test_user_id)).current_streak == 0

    async def test_completed_recovery_takes_no_more_actions(
        self, db_session, test_user_id
    ):
        await _broken(db_session, test_user_id)
        recovery = await create_async(
            StreakRecoveryFactory,
            db_session,
            user_id=test_user_id,
            status=RecoveryStatus.COMPLETED,
            actions_completed=2,
        )

        with pytest.raises(RecoveryExpiredError):
            await complete_recovery_action(
                db_session, test_user_id, recovery.id, UTC_TZ, FROZEN_NOW
            )

    async def test_unknown_or_foreign_recovery_is_not_found(
        self, db_session, test_user_id
    ):
        foreign = await create_async(
            StreakRecoveryFactory, db_session, user_id="user_someone_else"
        )

        with pytest.raises(RecoveryNotFoundError):
            await complete_recovery_action(
                db_session, test_user_id, foreign.id, UTC_TZ, FROZEN_NOW
            )
        with pytest.raises(RecoveryNotFoundError):
            await complete_recovery_action(
                db_session, test_user_id, 999_999, UTC_TZ, FROZEN_NOW
            )

    async def test_fails_when_the_next_day_was_missed_meanwhile(
        self, db_session, test_user_id
    ):
        await _broken(db_session, test_user_id)
        started = await self._start(db_session, test_user_id)

        # 2 March closes unclaimed while the recovery is still pending
        late = at_utc(2026, 3, 3, 5)
        await validate_day(db_session, test_user_id, TODAY, UTC_TZ, late)
        for _ in range(2):
            result = await complete_recovery_action(
                db_session, test_user_id, started.id, UTC_TZ, late
            )

        assert result.status is RecoveryStatus.FAILED
        assert result.current_streak == 0
        streak = await _streak(db_session, test_user_id)
        assert streak.current_streak == 0
        assert streak.last_broken_date == YESTERDAY


class TestStartRecoveryRejections:
    async def test_break_that_is_not_the_latest(self, db_session, test_user_id):
        await _broken(db_session, test_user_id)

        with pytest.raises(RecoveryNotAvailableError):
            await start_recovery(
                db_session,
                test_user_id,
                date(2026, 2, 20),
                RecoveryType.PURCHASED,
                UTC_TZ,
                FROZEN_NOW,
            )

    async def test_run_restarted_later_cannot_rejoin(self, db_session, test_user_id):
        await _broken(
            db_session,
            test_user_id,
            current_streak=1,
            streak_started_date=TODAY + timedelta(days=1),
            last_covered_date=TODAY + timedelta(days=1),
        )

        with pytest.raises(RecoveryNotAvailableError):
            await start_recovery(
                db_session,
                test_user_id,
                YESTERDAY,
                RecoveryType.WEEKEND_WARRIOR,
                UTC_TZ,
                FROZEN_NOW,
            )

    async def test_break_attempted_before(self, db_session, test_user_id):
        await _broken(db_session, test_user_id)
        await create_async(
            StreakRecoveryFactory,
            db_session,
            user_id=test_user_id,
            status=RecoveryStatus.EXPIRED,
        )

        with pytest.raises(RecoveryNotAvailableError):
            await start_recovery(
                db_session,
                test_user_id,
                YESTERDAY,
                RecoveryType.PURCHASED,
                UTC_TZ,
                FROZEN_NOW,
            )

    async def test_paused_streak(self, db_session, test_user_id):
        await _broken(db_session, test_user_id, status=StreakStatus.PAUSED)

        with pytest.raises(StreakPausedError):
            await start_recovery(
                db_session,
                test_user_id,
                YESTERDAY,
                RecoveryType.PURCHASED,
                UTC_TZ,
                FROZEN_NOW,
            )


class TestExpireRecoveries:
    async def test_only_overdue_pending_recoveries_expire(self, db_session):
        overdue = await create_async(
            StreakRecoveryFactory,
            db_session,
            expires_at=FROZEN_NOW - timedelta(minutes=1),
        )
        open_one = await create_async(StreakRecoveryFactory, db_session)
        done = await create_async(
            StreakRecoveryFactory,
            db_session,
            status=RecoveryStatus.COMPLETED,
            expires_at=FROZEN_NOW - timedelta(hours=2),
        )

        assert await expire_recoveries(db_session, FROZEN_NOW) == 1

        repo = StreakRecoveryRepository(db_session)
        statuses = [
            (await repo.get(r.user_id, r.id)).status for r in (overdue, open_one, done)
        ]
        assert statuses == [
            RecoveryStatus.EXPIRED,
            RecoveryStatus.PENDING,
            RecoveryStatus.COMPLETED,
        ]

    async def test_rerun_expires_nothing(self, db_session):
        await create_async(
            StreakRecoveryFactory,
            db_session,
            expires_at=FROZEN_NOW - timedelta(minutes=1),
        )

        await expire_recoveries(db_session, FROZEN_NOW)

        assert await expire_recoveries(db_session, FROZEN_NOW) == 0


class TestRecoveryOverview:
    async def test_latest_break_is_offered(self, db_session, test_user_id):
        await _broken(db_session, test_user_id)

        overview = await get_recovery_overview(db_session, test_user_id, UTC_TZ)

        assert overview.recoverable_date == YESTERDAY
        assert overview.recoverable_streak == 5
        assert overview.recoveries == []

    async def test_nothing_offered_once_attempted(self, db_session, test_user_id):
        await _broken(db_session, test_user_id)
        await start_recovery(
            db_session,
            test_user_id,
            YESTERDAY,
            RecoveryType.WEEKEND_WARRIOR,
            UTC_TZ,
            FROZEN_NOW,
        )

        overview = await get_recovery_overview(db_session, test_user_id, UTC_TZ)

        assert overview.recoverable_date is None
        assert [r.status for r in overview.recoveries] == [RecoveryStatus.PENDING]
