"""Request identity helpers.

Authentication happens upstream (API gateway / session layer). By the time a
request reaches this service the caller has been resolved to a user id, which
is passed either on ``request.state.user_id`` (in-process middleware) or in the
``X-User-Id`` header (gateway).

Provides:
- ``UserId``: the trusted user id for user-facing routes
- ``is_bearer_request``: True for mobile clients (Authorization: Bearer)
- ``verify_cron_secret``: guard for scheduler-only endpoints
"""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from core.config import get_settings
from core.logger import get_logger

logger = get_logger(__name__)

USER_ID_HEADER = "X-User-Id"


def get_user_id(request: Request) -> str:
    """Return the caller's user id or raise 401."""
    user_id = getattr(request.state, "user_id", None) or request.headers.get(
        USER_ID_HEADER
    )
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    request.state.user_id = user_id
    return user_id


UserId = Annotated[str, Depends(get_user_id)]


def is_bearer_request(request: Request) -> bool:
    """Mobile clients authenticate with a bearer token, web with a session."""
    auth_header = request.headers.get("Authorization", "")
    return auth_header.lower().startswith("bearer ")


def verify_cron_secret(request: Request) -> None:
    """Reject scheduler calls that do not carry ``Bearer <CRON_SECRET>``.

    With DEBUG=true and no secret configured the check is skipped.
    """
    settings = get_settings()
    if not settings.cron_secret:
        if settings.debug:
            return
        raise HTTPException(status_code=401, detail="Unauthorized")

    expected = f"Bearer {settings.cron_secret}"
    provided = request.headers.get("Authorization", "")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("cron.unauthorized", path=request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")


CronAuthorized = Depends(verify_cron_secret)
