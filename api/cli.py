#!/usr/bin/env python3
"""CLI for streak engine management tasks.

Usage:
    python -m cli <command>

Commands:
    daily-validation    Resolve closed days for every user (shield or break)
    weekly-reset        Grant the weekly freeze to users whose local day is Monday
    cleanup-recoveries  Expire pending recoveries past their window
    migrate             Run database migrations

The job commands are what a scheduler (cron, Container Apps job, k8s CronJob)
should invoke. All are idempotent and can be re-run safely.
"""

import argparse
import asyncio
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from core.logger import configure_logging, get_logger

if TYPE_CHECKING:
    from alembic.config import Config

configure_logging()
logger = get_logger(__name__)


def _parse_now(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


async def _run_job(name: str, now: datetime | None) -> int:
    from core.database import create_engine, create_session_maker, dispose_engine
    from services.streak_jobs_service import (
        run_daily_validation,
        run_recovery_cleanup,
        run_weekly_reset,
    )

    engine = create_engine()
    try:
        session_maker = create_session_maker(engine)
        if name == "daily-validation":
            result = await run_daily_validation(session_maker, now)
        elif name == "weekly-reset":
            result = await run_weekly_reset(session_maker, now)
        else:
            await run_recovery_cleanup(session_maker, now)
            return 0
    finally:
        await dispose_engine(engine)

    return 1 if result.failures else 0


def cmd_daily_validation(now: datetime | None) -> int:
    """Resolve every closed, unvalidated day for every user."""
    logger.info("cli.daily_validation.started")
    return asyncio.run(_run_job("daily-validation", now))


def cmd_weekly_reset(now: datetime | None) -> int:
    """Grant this week's free freeze where it is due."""
    logger.info("cli.weekly_reset.started")
    return asyncio.run(_run_job("weekly-reset", now))


def cmd_cleanup_recoveries(now: datetime | None) -> int:
    logger.info("cli.cleanup_recoveries.started")
    return asyncio.run(_run_job("cleanup-recoveries", now))


def _get_alembic_config() -> "Config":
    from alembic.config import Config

    api_dir = Path(__file__).resolve().parent
    cfg = Config(str(api_dir / "alembic.ini"))
    # Absolute so the command works from any working directory
    cfg.set_main_option("script_location", str(api_dir / "alembic"))
    return cfg


def cmd_migrate(revision: str) -> int:
    """Upgrade the schema to ``revision`` (default: head)."""
    from alembic import command

    logger.info("cli.migrate.started", revision=revision)
    command.upgrade(_get_alembic_config(), revision)
    logger.info("cli.migrate.completed", revision=revision)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Streak engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("daily-validation", "Resolve closed days for every user"),
        ("weekly-reset", "Grant the weekly freeze where it is due"),
        ("cleanup-recoveries", "Expire pending recoveries past their window"),
    ):
        job = subparsers.add_parser(name, help=help_text)
        job.add_argument(
            "--now",
            help="Run as of this ISO-8601 instant (UTC if no offset). "
            "Defaults to the current time.",
        )

    migrate = subparsers.add_parser(
        "migrate",
        help="Run database migrations",
    )
    migrate.add_argument(
        "revision",
        nargs="?",
        default="head",
        help="Target revision (default: head)",
    )

    args = parser.parse_args(argv)

    if args.command == "daily-validation":
        return cmd_daily_validation(_parse_now(args.now))
    elif args.command == "weekly-reset":
        return cmd_weekly_reset(_parse_now(args.now))
    elif args.command == "cleanup-recoveries":
        return cmd_cleanup_recoveries(_parse_now(args.now))
    elif args.command == "migrate":
        return cmd_migrate(args.revision)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
