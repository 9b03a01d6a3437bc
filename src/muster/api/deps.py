"""FastAPI dependency injection for database sessions, repository and bot."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from muster.db.engine import get_session
from muster.db.repository import Repository
from muster.discord.bot import MusterBot


class BotUnavailable(Exception):
    """Raised when an endpoint needs Discord but the bot isn't connected."""


async def get_engine(request: Request) -> AsyncEngine:
    """Get the database engine from app state."""
    return request.app.state.engine


async def get_db_session(
    engine: Annotated[AsyncEngine, Depends(get_engine)],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session scoped to the request; commits when the handler succeeds."""
    async with get_session(engine) as session:
        yield session


async def get_repo(session: Annotated[AsyncSession, Depends(get_db_session)]) -> Repository:
    """Get a repository instance bound to the current session."""
    return Repository(session)


async def get_bot(request: Request) -> MusterBot:
    """Get the running Discord bot, or refuse with 503."""
    bot = getattr(request.app.state, "discord_bot", None)
    if bot is None or not bot.is_ready():
        raise BotUnavailable
    return bot


RepoDep = Annotated[Repository, Depends(get_repo)]
BotDep = Annotated[MusterBot, Depends(get_bot)]
