"""Tests for milestones_service.

evaluate_milestones is pure; record_milestones and get_earned_milestones
run against the test database.
"""

import pytest

from repositories.milestone_repository import EarnedMilestoneRepository
from repositories.shield_repository import ShieldInventoryRepository
from services.milestones_service import (
    STREAK_MILESTONES,
    evaluate_milestones,
    get_earned_milestones,
    get_next_milestone,
    record_milestones,
    validate_catalog,
)
from services.streak_errors import MilestoneCatalogError
from tests.factories import (
    EarnedMilestoneFactory,
    ShieldInventoryFactory,
    create_async,
)

pytestmark = pytest.mark.unit


def _milestone(threshold: int, shields: int = 0, milestone_id: str | None = None):
    return {
        "id": milestone_id or f"streak_{threshold}",
        "name": f"{threshold} days",
        "description": "",
        "icon": "",
        "threshold": threshold,
        "shields": shields,
    }


class TestEvaluateMilestones:
    def test_below_first_threshold(self):
        result = evaluate_milestones(2, set())
        assert result.reached is None
        assert result.next_milestone["threshold"] == 3

    def test_next_milestone_after_earned_one(self):
        result = evaluate_milestones(6, {3})
        assert result.reached is None
        assert result.next_milestone["threshold"] == 7

    def test_reaching_threshold_grants_it(self):
        result = evaluate_milestones(7, {3})
        assert result.reached["id"] == "streak_7"
        assert result.next_milestone["threshold"] == 14

    def test_already_earned_is_not_granted_again(self):
        result = evaluate_milestones(7, {3, 7})
        assert result.reached is None

    def test_only_highest_unearned_is_reported(self):
        result = evaluate_milestones(30, set())
        assert result.reached["threshold"] == 30

    def test_catalog_exhausted(self):
        result = evaluate_milestones(400, {m["threshold"] for m in STREAK_MILESTONES})
        assert result.reached is None
        assert result.next_milestone is None

    def test_custom_catalog(self):
        catalog = [_milestone(2), _milestone(5)]
        result = evaluate_milestones(2, set(), catalog)
        assert result.reached["threshold"] == 2
        assert result.next_milestone["threshold"] == 5

    def test_get_next_milestone_ignores_earned(self):
        assert get_next_milestone(0)["threshold"] == 3
        assert get_next_milestone(365) is None


class TestValidateCatalog:
    def test_builtin_catalog_is_valid(self):
        validate_catalog(STREAK_MILESTONES)

    @pytest.mark.parametrize(
        "catalog",
        [
            [_milestone(7), _milestone(3)],
            [_milestone(3), _milestone(3, milestone_id="other")],
            [_milestone(0), _milestone(3)],
            [_milestone(3), _milestone(7, milestone_id="streak_3")],
        ],
        ids=["unordered", "duplicate-threshold", "non-positive", "duplicate-id"],
    )
    def test_invalid_catalog_raises(self, catalog):
        with pytest.raises(MilestoneCatalogError):
            validate_catalog(catalog)


class TestRecordMilestones:
    async def test_grants_reached_milestone_once(self, db_session, test_user_id):
        first = await record_milestones(db_session, test_user_id, 7)
        second = await record_milestones(db_session, test_user_id, 7)

        assert first["id"] == "streak_7"
        assert second is None
        earned = await EarnedMilestoneRepository(db_session).get_thresholds(
            test_user_id
        )
        assert earned == {7}

    async def test_below_threshold_records_nothing(self, db_session, test_user_id):
        assert await record_milestones(db_session, test_user_id, 2) is None
        earned = await EarnedMilestoneRepository(db_session).list_for_user(
            test_user_id
        )
        assert list(earned) == []

    async def test_shield_award_goes_to_inventory(self, db_session):
        inv = await create_async(ShieldInventoryFactory, db_session)

        milestone = await record_milestones(db_session, inv.user_id, 30)

        assert milestone["shields"] == 1
        inventory = await ShieldInventoryRepository(db_session).get(inv.user_id)
        assert inventory.milestone_shields == 1

    async def test_shield_award_is_clamped_at_cap(self, db_session):
        inv = await create_async(
            ShieldInventoryFactory, db_session, purchased_shields=5
        )

        milestone = await record_milestones(db_session, inv.user_id, 30)

        assert milestone is not None
        inventory = await ShieldInventoryRepository(db_session).get(inv.user_id)
        assert inventory.total == 5
        assert inventory.milestone_shields == 0

    async def test_concurrently_recorded_milestone_is_skipped(self, db_session):
        """A row written by another caller makes this grant a no-op."""
        existing = await create_async(EarnedMilestoneFactory, db_session, threshold=7)
        await create_async(
            ShieldInventoryFactory, db_session, user_id=existing.user_id
        )

        assert await record_milestones(db_session, existing.user_id, 7) is None


class TestGetEarnedMilestones:
    async def test_lists_earned_with_catalog_details(self, db_session, test_user_id):
        await create_async(
            EarnedMilestoneFactory, db_session, user_id=test_user_id, threshold=3
        )
        await create_async(
            EarnedMilestoneFactory,
            db_session,
            user_id=test_user_id,
            threshold=30,
            shields_granted=1,
        )

        earned = await get_earned_milestones(db_session, test_user_id)

        assert [m.threshold for m in earned] == [3, 30]
        assert earned[0].name == "Getting Started"
        assert earned[1].shields_granted == 1
        assert earned[1].earned_at.tzinfo is not None
