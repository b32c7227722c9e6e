"""Custom business metrics for the streak engine.

Counters for streak and shield events. Instruments are created via
``opentelemetry.metrics.get_meter()`` which resolves against the global
``MeterProvider``. If no provider is installed the OTel API returns
no-op instruments.

Usage in services::

    from core.metrics import STREAK_CLAIMED_COUNTER

    STREAK_CLAIMED_COUNTER.add(1, {"method": "manual"})
"""

from __future__ import annotations

from opentelemetry import metrics

_meter = metrics.get_meter("streakshield")

# ── Claim metrics ─────────────────────────────────────────────────────

STREAK_CLAIMED_COUNTER = _meter.create_counter(
    name="streak.claimed",
    description="Days successfully claimed",
    unit="{claim}",
)

STREAK_BROKEN_COUNTER = _meter.create_counter(
    name="streak.broken",
    description="Streaks reset to zero by a missed day",
    unit="{streak}",
)

AUTO_CLAIM_OUTCOME_COUNTER = _meter.create_counter(
    name="auto_claim.outcome",
    description="Auto-claim attempts after manual data entry, by outcome",
    unit="{attempt}",
)

# ── Shield metrics ────────────────────────────────────────────────────

SHIELD_CONSUMED_COUNTER = _meter.create_counter(
    name="shield.consumed",
    description="Shields spent to protect a missed day",
    unit="{shield}",
)

SHIELD_GRANTED_COUNTER = _meter.create_counter(
    name="shield.granted",
    description="Shields added to an inventory (weekly, milestone, purchase)",
    unit="{shield}",
)

MILESTONE_EARNED_COUNTER = _meter.create_counter(
    name="milestone.earned",
    description="Streak milestones reached for the first time",
    unit="{milestone}",
)

# ── Job metrics ───────────────────────────────────────────────────────

JOB_USER_FAILED_COUNTER = _meter.create_counter(
    name="job.user_failed",
    description="Per-user failures inside scheduled streak jobs",
    unit="{user}",
)

# ── Recovery metrics ──────────────────────────────────────────────────

STREAK_RECOVERY_COUNTER = _meter.create_counter(
    name="streak.recovery",
    description="Recovery attempts leaving PENDING, by outcome",
    unit="{recovery}",
)
