"""FastAPI dependencies for authenticating the dashboard against the bot API.

The dashboard and the bot share one secret (``BOT_API_SECRET``). Every
``/api/*`` request must carry it as ``Authorization: Bearer <secret>``.
"""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Request

from muster.config import Settings

logger = logging.getLogger(__name__)


class Unauthorized(Exception):
    """Raised when the bearer token is missing or wrong."""


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def require_api_secret(request: Request) -> None:
    """Reject the request unless it carries the shared API secret."""
    settings: Settings = request.app.state.settings
    token = _bearer_token(request)
    if token is None or not secrets.compare_digest(
        token.encode(), settings.bot_api_secret.encode()
    ):
        logger.warning("bot_api_unauthorized path=%s", request.url.path)
        raise Unauthorized


# Handy alias for route signatures.
ApiAuth = Annotated[None, Depends(require_api_secret)]
