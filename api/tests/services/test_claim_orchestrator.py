"""Tests for claim_orchestrator.

try_auto_claim opens its own sessions, so arranged data is committed
and results are read back through a fresh session.
"""

from datetime import timedelta

import pytest
import pytz

from models import ClaimMethod, DataSource, ShieldType
from repositories.data_day_repository import DataDayRepository
from repositories.streak_repository import DailyClaimRepository, UserStreakRepository
from services.claim_orchestrator import (
    AutoClaimStatus,
    activate_shield,
    claim_streak,
    try_auto_claim,
)
from services.streak_errors import AlreadyClaimedError
from tests.factories import (
    FROZEN_NOW,
    TODAY,
    DailyClaimFactory,
    ShieldInventoryFactory,
    UserStreakFactory,
    at_utc,
    create_async,
)

pytestmark = pytest.mark.unit

UTC_TZ = pytz.timezone("UTC")

# Inside the grace period for 1 March
GRACE_NOW = at_utc(2026, 3, 2, 1)
YESTERDAY = TODAY - timedelta(days=1)


class TestClaimStreak:
    async def test_defaults_to_local_today(self, db_session, test_user_id):
        result = await claim_streak(db_session, test_user_id, UTC_TZ, now=FROZEN_NOW)
        assert result.claim_date == TODAY
        assert result.current_streak == 1

    async def test_pending_days_are_shielded_before_claiming(
        self, db_session, test_user_id
    ):
        three_days_ago = TODAY - timedelta(days=3)
        await create_async(
            ShieldInventoryFactory,
            db_session,
            user_id=test_user_id,
            freezes_available=2,
        )
        await create_async(
            UserStreakFactory,
            db_session,
            user_id=test_user_id,
            current_streak=3,
            last_covered_date=three_days_ago,
            last_validated_date=three_days_ago,
        )

        result = await claim_streak(db_session, test_user_id, UTC_TZ, now=FROZEN_NOW)

        assert result.current_streak == 4

    async def test_pending_miss_breaks_before_claiming(self, db_session, test_user_id):
        await create_async(ShieldInventoryFactory, db_session, user_id=test_user_id)
        await create_async(
            UserStreakFactory,
            db_session,
            user_id=test_user_id,
            current_streak=9,
            last_covered_date=TODAY - timedelta(days=2),
        )

        result = await claim_streak(db_session, test_user_id, UTC_TZ, now=FROZEN_NOW)

        assert result.current_streak == 1
        assert result.longest_streak == 9


class TestActivateShield:
    async def test_defaults_to_local_today(self, db_session, test_user_id):
        used = await activate_shield(db_session, test_user_id, UTC_TZ, now=FROZEN_NOW)

        assert used is ShieldType.FREEZE
        record = await DailyClaimRepository(db_session).get(test_user_id, TODAY)
        assert record.claim_method is ClaimMethod.SHIELD_APPLIED


class TestTryAutoClaim:
    async def test_manual_entry_claims_the_day(self, session_maker, test_user_id):
        outcome = await try_auto_claim(
            session_maker,
            test_user_id,
            TODAY,
            DataSource.MANUAL_ENTRY,
            UTC_TZ,
            FROZEN_NOW,
        )

        assert outcome.status is AutoClaimStatus.CLAIMED
        assert outcome.current_streak == 1
        async with session_maker() as db:
            record = await DailyClaimRepository(db).get(test_user_id, TODAY)
            assert record.claim_method is ClaimMethod.AUTO
            assert record.has_underlying_data is True

    async def test_replay_does_not_duplicate(self, session_maker, test_user_id):
        for _ in range(2):
            outcome = await try_auto_claim(
                session_maker,
                test_user_id,
                TODAY,
                DataSource.MANUAL_ENTRY,
                UTC_TZ,
                FROZEN_NOW,
            )

        assert outcome.status is AutoClaimStatus.ALREADY_CLAIMED
        assert outcome.current_streak == 1
        async with session_maker() as db:
            records = await DailyClaimRepository(db).list_range(
                test_user_id, TODAY, TODAY
            )
            assert len(records) == 1

    async def test_bulk_sync_never_claims(self, session_maker, test_user_id):
        outcome = await try_auto_claim(
            session_maker,
            test_user_id,
            TODAY,
            DataSource.BULK_SYNC,
            UTC_TZ,
            FROZEN_NOW,
        )

        assert outcome.status is AutoClaimStatus.SKIPPED_BULK_SYNC
        async with session_maker() as db:
            assert await DailyClaimRepository(db).get(test_user_id, TODAY) is None
            assert await DataDayRepository(db).has_data(test_user_id, TODAY)

    async def test_disabled_flag_skips(self, session_maker, test_user_id, monkeypatch):
        from core.config import clear_settings_cache

        monkeypatch.setenv("AUTO_CLAIM_ENABLED", "false")
        clear_settings_cache()

        outcome = await try_auto_claim(
            session_maker,
            test_user_id,
            TODAY,
            DataSource.MANUAL_ENTRY,
            UTC_TZ,
            FROZEN_NOW,
        )

        assert outcome.status is AutoClaimStatus.SKIPPED_DISABLED

    async def test_rejected_claim_keeps_data_marker(self, session_maker, test_user_id):
        old_day = TODAY - timedelta(days=2)

        outcome = await try_auto_claim(
            session_maker,
            test_user_id,
            old_day,
            DataSource.MANUAL_ENTRY,
            UTC_TZ,
            FROZEN_NOW,
        )

        assert outcome.status is AutoClaimStatus.REJECTED
        assert outcome.error_code == "window_expired"
        async with session_maker() as db:
            assert await DataDayRepository(db).has_data(test_user_id, old_day)
            assert await DailyClaimRepository(db).get(test_user_id, old_day) is None

    async def test_unexpected_error_is_contained(
        self, session_maker, test_user_id, monkeypatch
    ):
        async def broken_claim(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr("services.claim_orchestrator.claim", broken_claim)

        outcome = await try_auto_claim(
            session_maker,
            test_user_id,
            TODAY,
            DataSource.MANUAL_ENTRY,
            UTC_TZ,
            FROZEN_NOW,
        )

        assert outcome.status is AutoClaimStatus.FAILED
        assert outcome.error_code == "RuntimeError"

    async def test_already_claimed_from_explicit_check_in(
        self, session_maker, test_user_id
    ):
        async with session_maker() as db:
            await claim_streak(db, test_user_id, UTC_TZ, now=FROZEN_NOW)
            await db.commit()

        outcome = await try_auto_claim(
            session_maker,
            test_user_id,
            TODAY,
            DataSource.MANUAL_ENTRY,
            UTC_TZ,
            FROZEN_NOW,
        )

        assert outcome.status is AutoClaimStatus.ALREADY_CLAIMED
        assert outcome.error_code == AlreadyClaimedError.code


class TestEarlyMorningClaims:
    """Claims made at 01:00 while 1 March is still inside its grace period."""

    STARTED = TODAY - timedelta(days=6)
    COVERED = TODAY - timedelta(days=2)

    async def _arrange_run(self, session_maker, user_id):
        """Streak of 5 from 24 to 28 February, each day explicitly claimed."""
        async with session_maker() as db:
            await create_async(
                UserStreakFactory,
                db,
                user_id=user_id,
                current_streak=5,
                streak_started_date=self.STARTED,
                last_covered_date=self.COVERED,
                last_validated_date=self.COVERED,
            )
            for offset in range(5):
                await create_async(
                    DailyClaimFactory,
                    db,
                    user_id=user_id,
                    claim_date=self.STARTED + timedelta(days=offset),
                )
            await db.commit()

    async def test_auto_claim_today_while_yesterday_is_open(
        self, session_maker, test_user_id
    ):
        await self._arrange_run(session_maker, test_user_id)

        outcome = await try_auto_claim(
            session_maker,
            test_user_id,
            TODAY,
            DataSource.MANUAL_ENTRY,
            UTC_TZ,
            GRACE_NOW,
        )

        assert outcome.status is AutoClaimStatus.CLAIMED
        assert outcome.current_streak == 5
        async with session_maker() as db:
            record = await DailyClaimRepository(db).get(test_user_id, TODAY)
            assert record.claimed is True
            streak = await UserStreakRepository(db).get(test_user_id)
            assert streak.last_covered_date == self.COVERED
            assert streak.last_broken_date is None

    async def test_auto_claim_of_yesterday_joins_today(
        self, session_maker, test_user_id
    ):
        await self._arrange_run(session_maker, test_user_id)

        for day in (TODAY, YESTERDAY):
            outcome = await try_auto_claim(
                session_maker,
                test_user_id,
                day,
                DataSource.MANUAL_ENTRY,
                UTC_TZ,
                GRACE_NOW,
            )
            assert outcome.status is AutoClaimStatus.CLAIMED

        assert outcome.current_streak == 7

    async def test_explicit_check_in_reports_pending(
        self, session_maker, test_user_id
    ):
        await self._arrange_run(session_maker, test_user_id)

        async with session_maker() as db:
            result = await claim_streak(db, test_user_id, UTC_TZ, now=GRACE_NOW)
            await db.commit()

        assert result.claim_date == TODAY
        assert result.pending is True
        assert result.current_streak == 5

    async def test_bulk_sync_of_a_week_never_touches_the_ledger(
        self, session_maker, test_user_id
    ):
        await self._arrange_run(session_maker, test_user_id)
        week = [self.STARTED + timedelta(days=offset) for offset in range(7)]

        outcomes = [
            await try_auto_claim(
                session_maker,
                test_user_id,
                day,
                DataSource.BULK_SYNC,
                UTC_TZ,
                GRACE_NOW,
            )
            for day in week
        ]

        assert {o.status for o in outcomes} == {AutoClaimStatus.SKIPPED_BULK_SYNC}
        async with session_maker() as db:
            claims = DailyClaimRepository(db)
            data_days = DataDayRepository(db)
            for day in week:
                assert await data_days.has_data(test_user_id, day)
            for day in week[:5]:
                record = await claims.get(test_user_id, day)
                assert record.claim_method is ClaimMethod.MANUAL
                assert record.has_underlying_data is False
            assert await claims.get(test_user_id, YESTERDAY) is None
            assert await claims.get(test_user_id, TODAY) is None

            streak = await UserStreakRepository(db).get(test_user_id)
            assert streak.current_streak == 5
            assert streak.last_covered_date == self.COVERED
            assert streak.last_validated_date == self.COVERED
