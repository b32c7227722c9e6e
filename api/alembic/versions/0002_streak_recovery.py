"""streak runs and recovery

Revision ID: 0002_streak_recovery
Revises: 0001_streak_engine
Create Date: 2026-10-19

Tracks where the current run started and what the last break cost, drops
the persisted "broken" status, and adds streak recovery attempts.
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0002_streak_recovery"
down_revision = "0001_streak_engine"
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False)


def upgrade() -> None:
    op.add_column(
        "user_streaks", sa.Column("streak_started_date", sa.Date(), nullable=True)
    )
    op.add_column(
        "user_streaks",
        sa.Column(
            "last_broken_streak", sa.Integer(), nullable=False, server_default="0"
        ),
    )
    op.execute(
        "UPDATE user_streaks SET status = 'active' WHERE status = 'broken'"
    )
    # Existing runs are assumed to be unbroken back to their first day
    op.execute(
        "UPDATE user_streaks "
        "SET streak_started_date = last_covered_date - (current_streak - 1) "
        "WHERE current_streak > 0 AND last_covered_date IS NOT NULL"
    )

    op.create_table(
        "streak_recoveries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("broken_date", sa.Date(), nullable=False),
        sa.Column("lost_streak", sa.Integer(), nullable=False),
        sa.Column(
            "recovery_type",
            _enum("recovery_type", "weekend_warrior", "purchased"),
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum("recovery_status", "pending", "completed", "failed", "expired"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("actions_required", sa.Integer(), nullable=True),
        sa.Column(
            "actions_completed", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "broken_date", name="uq_streak_recoveries_break"
        ),
        sa.CheckConstraint(
            "actions_completed >= 0", name="ck_streak_recoveries_actions"
        ),
    )
    op.create_index(
        "ix_streak_recoveries_user_id", "streak_recoveries", ["user_id"]
    )
    op.create_index(
        "ix_streak_recoveries_status_expiry",
        "streak_recoveries",
        ["status", "expires_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_streak_recoveries_status_expiry", table_name="streak_recoveries")
    op.drop_index("ix_streak_recoveries_user_id", table_name="streak_recoveries")
    op.drop_table("streak_recoveries")
    op.drop_column("user_streaks", "last_broken_streak")
    op.drop_column("user_streaks", "streak_started_date")
