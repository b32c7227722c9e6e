"""streak engine schema

Revision ID: 0001_streak_engine
Revises:
Create Date: 2026-10-19

Streak counters, per-day claim records, shield inventories, earned
milestones, pause windows and data-day markers.
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_streak_engine"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False)


def upgrade() -> None:
    op.create_table(
        "user_streaks",
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_claims", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_claim_date", sa.Date(), nullable=True),
        sa.Column("last_covered_date", sa.Date(), nullable=True),
        sa.Column("last_validated_date", sa.Date(), nullable=True),
        sa.Column("last_broken_date", sa.Date(), nullable=True),
        sa.Column(
            "status",
            _enum("streak_status", "active", "paused", "broken"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("user_id"),
        sa.CheckConstraint("current_streak >= 0", name="ck_user_streaks_current"),
        sa.CheckConstraint(
            "longest_streak >= current_streak", name="ck_user_streaks_longest"
        ),
    )
    op.create_index("ix_user_streaks_timezone", "user_streaks", ["timezone"])

    op.create_table(
        "daily_claims",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("claim_date", sa.Date(), nullable=False),
        sa.Column("claimed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "claim_method",
            _enum("claim_method", "manual", "auto", "shield_applied"),
            nullable=True,
        ),
        sa.Column(
            "has_underlying_data",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "claim_date", name="uq_daily_claims_user_date"),
    )
    op.create_index(
        "ix_daily_claims_user_date", "daily_claims", ["user_id", "claim_date"]
    )

    op.create_table(
        "shield_inventories",
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column(
            "freezes_available", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "milestone_shields", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "purchased_shields", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("last_freeze_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("user_id"),
        sa.CheckConstraint("freezes_available >= 0", name="ck_shields_freezes"),
        sa.CheckConstraint("milestone_shields >= 0", name="ck_shields_milestone"),
        sa.CheckConstraint("purchased_shields >= 0", name="ck_shields_purchased"),
        sa.CheckConstraint(
            "freezes_available + milestone_shields + purchased_shields <= 5",
            name="ck_shields_total_cap",
        ),
    )

    op.create_table(
        "earned_milestones",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("threshold", sa.Integer(), nullable=False),
        sa.Column("badge_id", sa.String(64), nullable=False),
        sa.Column("shields_granted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "threshold", name="uq_earned_milestones_user"),
    )
    op.create_index(
        "ix_earned_milestones_user_id", "earned_milestones", ["user_id"]
    )

    op.create_table(
        "streak_pauses",
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("pause_start_date", sa.Date(), nullable=False),
        sa.Column("pause_end_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "data_days",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("activity_date", sa.Date(), nullable=False),
        sa.Column(
            "source", _enum("data_source", "manual_entry", "bulk_sync"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "activity_date", "source", name="uq_data_days_user_date_source"
        ),
    )
    op.create_index(
        "ix_data_days_user_date", "data_days", ["user_id", "activity_date"]
    )


def downgrade() -> None:
    op.drop_index("ix_data_days_user_date", table_name="data_days")
    op.drop_table("data_days")
    op.drop_table("streak_pauses")
    op.drop_index("ix_earned_milestones_user_id", table_name="earned_milestones")
    op.drop_table("earned_milestones")
    op.drop_table("shield_inventories")
    op.drop_index("ix_daily_claims_user_date", table_name="daily_claims")
    op.drop_table("daily_claims")
    op.drop_index("ix_user_streaks_timezone", table_name="user_streaks")
    op.drop_table("user_streaks")
