"""API route modules."""

from routes.cron_routes import router as cron_router
from routes.health_routes import router as health_router
from routes.streaks_routes import router as streaks_router

__all__ = [
    "cron_router",
    "health_router",
    "streaks_router",
]
