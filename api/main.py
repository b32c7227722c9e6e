"""FastAPI application for the streak engine API."""

import asyncio
import subprocess
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import fastapi
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from core.config import get_settings
from core.database import create_engine, create_session_maker, dispose_engine, init_db
from core.logger import configure_logging, get_logger
from core.ratelimit import limiter, rate_limit_exceeded_handler
from routes import cron_router, health_router, streaks_router
from services.streak_errors import StreakError

configure_logging()
logger = get_logger(__name__)

# HTTP status for each StreakError code. Unlisted codes are server errors.
STREAK_ERROR_STATUS: dict[str, int] = {
    "invalid_timezone": 400,
    "missing_parameter": 400,
    "window_expired": 400,
    "future_date": 400,
    "invalid_pause": 400,
    "recovery_not_found": 404,
    "already_claimed": 409,
    "unresolved_gap": 409,
    "streak_paused": 409,
    "no_shields_available": 409,
    "inventory_full": 409,
    "not_paused": 409,
    "already_paused": 409,
    "storage_conflict": 409,
    "recovery_not_available": 409,
    "recovery_in_progress": 409,
    "recovery_limit_reached": 409,
    "recovery_expired": 409,
}


async def streak_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map domain errors to ``{"detail", "code"}`` responses."""
    if not isinstance(exc, StreakError):
        return JSONResponse(status_code=500, content={"detail": "Unexpected error"})

    status_code = STREAK_ERROR_STATUS.get(exc.code, 500)
    log = logger.warning if status_code >= 500 else logger.info
    log(
        "request.rejected",
        code=exc.code,
        status_code=status_code,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": exc.code},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for unhandled exceptions."""
    logger.exception(
        "unhandled.exception",
        exc_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again."},
    )


async def validation_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handler for request validation errors."""
    if not isinstance(exc, RequestValidationError):
        return JSONResponse(status_code=500, content={"detail": "Unexpected error"})

    logger.warning(
        "request.validation_error",
        path=request.url.path,
        method=request.method,
        error_count=len(exc.errors()),
    )
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()},
    )


async def _run_alembic_migrations() -> None:
    """Run Alembic migrations in a subprocess.

    psycopg2's connection pool cleanup deadlocks inside
    asyncio.to_thread when uvloop is the event loop. Running
    migrations as a subprocess avoids the issue entirely.
    """
    cmd = [
        sys.executable,
        "-c",
        (
            "from alembic import command; "
            "from alembic.config import Config; "
            "command.upgrade(Config('alembic.ini'), 'head')"
        ),
    ]
    cwd = Path(__file__).parent

    result = await asyncio.to_thread(
        lambda: subprocess.run(
            cmd, cwd=cwd, capture_output=True, text=True, timeout=120
        )
    )

    if result.returncode != 0:
        stderr = result.stderr.strip()
        logger.error("migrations.failed", stderr=stderr)
        raise RuntimeError(f"Alembic migration failed:\n{stderr}")

    logger.info("migrations.complete")


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    """Create DB engine at startup, dispose on shutdown."""
    app.state.engine = create_engine()
    app.state.session_maker = create_session_maker(app.state.engine)

    app.state.init_done = False
    app.state.init_error = None

    try:
        async with asyncio.timeout(60):
            await init_db(app.state.engine)

        if get_settings().run_migrations_on_startup:
            async with asyncio.timeout(120):
                await _run_alembic_migrations()

        app.state.init_done = True
        logger.info("init.complete")
    except TimeoutError:
        logger.error(
            "init.timeout",
            init_done=app.state.init_done,
            hint="Startup hung - check DB connectivity and migration state",
        )
        raise RuntimeError("Application startup timed out")
    except Exception as e:
        app.state.init_error = str(e)
        logger.error("init.failed", error=str(e), exc_info=True)
        raise

    try:
        yield
    finally:
        await dispose_engine(app.state.engine)


_settings = get_settings()

app = fastapi.FastAPI(
    title="Streak Shield API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if _settings.enable_docs or _settings.debug else None,
    redoc_url="/redoc" if _settings.enable_docs or _settings.debug else None,
    openapi_url=("/openapi.json" if _settings.enable_docs or _settings.debug else None),
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(StreakError, streak_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.include_router(health_router)
app.include_router(streaks_router)
app.include_router(cron_router)
