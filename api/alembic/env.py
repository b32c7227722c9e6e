from __future__ import annotations

import logging
import sys
import time
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import Connection, create_engine, text

# Ensure parent directory (api/) is in Python path for module imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Import models so they register with Base.metadata
import models  # noqa: F401
from alembic import context
from core.config import get_settings
from core.database import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata

# Serializes migrations when several replicas start at once
_ADVISORY_LOCK_KEY = 582190377

_LOCK_TIMEOUT_SECONDS = 120


def _get_sync_database_url() -> str:
    """Synchronous URL for migrations.

    Alembic runs outside the event loop, so async drivers are swapped for
    their sync counterparts (asyncpg -> psycopg2, aiosqlite -> pysqlite).
    """
    url = get_settings().database_url
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_get_sync_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def _acquire_advisory_lock(connection: Connection, logger: logging.Logger) -> None:
    deadline = time.monotonic() + _LOCK_TIMEOUT_SECONDS
    while time.monotonic() < deadline:
        acquired = connection.execute(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": _ADVISORY_LOCK_KEY}
        ).scalar()
        if acquired:
            # Commit so Alembic starts from a clean transaction
            connection.commit()
            logger.info("migrations.lock.acquired")
            return
        logger.debug("migrations.lock.waiting")
        time.sleep(2)

    raise RuntimeError(
        f"Failed to acquire migration lock within {_LOCK_TIMEOUT_SECONDS}s. "
        "Another process may be stuck holding the lock."
    )


def _run_migrations(connection: Connection) -> None:
    logger = logging.getLogger("alembic")
    use_lock = connection.dialect.name == "postgresql"

    if use_lock:
        _acquire_advisory_lock(connection, logger)

    try:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()
    finally:
        if use_lock:
            try:
                connection.execute(
                    text("SELECT pg_advisory_unlock(:key)"),
                    {"key": _ADVISORY_LOCK_KEY},
                )
                logger.info("migrations.lock.released")
            except Exception as unlock_error:
                # The lock is released with the session anyway
                logger.warning("migrations.lock.release_failed: %s", unlock_error)


def run_migrations_online() -> None:
    engine = create_engine(_get_sync_database_url())
    try:
        with engine.connect() as connection:
            _run_migrations(connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
