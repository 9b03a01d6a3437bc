"""Discord bot helpers: DB session context, admin checks, channel lookups, DMs."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import discord
from sqlalchemy.ext.asyncio import AsyncEngine

from muster.core.cache import ExpiringCache
from muster.core.errors import NotificationDeliveryError
from muster.db.engine import get_session
from muster.db.repository import Repository

logger = logging.getLogger(__name__)


class ChannelNotFound(Exception):
    """Raised when a channel id doesn't resolve to a text channel the bot can see."""


class MessageNotFound(Exception):
    """Raised when a message id doesn't exist in the given channel."""


@asynccontextmanager
async def db_session(
    engine: AsyncEngine,
) -> AsyncGenerator[Repository, None]:
    """Yield a Repository bound to a fresh async session."""
    async with get_session(engine) as session:
        yield Repository(session)


class AdminChecker:
    """Decides whether a user may run admin-only actions.

    A user is an admin if they hold the Administrator permission or the
    configured admin role. Answers are cached per user for ``ttl_seconds``
    so button storms don't refetch members.
    """

    def __init__(self, admin_role_id: str = "", ttl_seconds: float = 300) -> None:
        self.admin_role_id = int(admin_role_id) if admin_role_id else None
        self._cache: ExpiringCache[bool] = ExpiringCache(ttl=ttl_seconds)

    def _member_is_admin(self, member: discord.Member) -> bool:
        if member.guild_permissions.administrator:
            return True
        if self.admin_role_id is None:
            return False
        return any(role.id == self.admin_role_id for role in member.roles)

    async def is_admin(
        self,
        user: discord.User | discord.Member,
        guild: discord.Guild | None = None,
    ) -> bool:
        key = str(user.id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        member = user if isinstance(user, discord.Member) else None
        if member is None and guild is not None:
            member = guild.get_member(user.id)
            if member is None:
                try:
                    member = await guild.fetch_member(user.id)
                except discord.NotFound:
                    member = None
                except discord.HTTPException:
                    logger.warning("admin_check_member_fetch_failed user=%s", user.id)
                    return False

        result = member is not None and self._member_is_admin(member)
        self._cache.set(key, result)
        return result

    def invalidate(self, user_id: int | str) -> None:
        self._cache.pop(str(user_id))


async def fetch_text_channel(
    client: discord.Client, channel_id: str | int
) -> discord.TextChannel | discord.Thread:
    """Resolve a channel id to a text channel or thread.

    Raises ChannelNotFound for bad ids, missing or forbidden channels, and
    channels that can't hold messages (categories, voice).
    """
    try:
        cid = int(channel_id)
    except (TypeError, ValueError):
        raise ChannelNotFound(f"Invalid channel id: {channel_id}") from None

    channel = client.get_channel(cid)
    if channel is None:
        try:
            channel = await client.fetch_channel(cid)
        except (discord.NotFound, discord.Forbidden) as exc:
            raise ChannelNotFound(f"Channel not found: {channel_id}") from exc

    if not isinstance(channel, discord.TextChannel | discord.Thread):
        raise ChannelNotFound(f"Channel is not text-based: {channel_id}")
    return channel


async def send_dm(
    client: discord.Client,
    user_id: str | int,
    *,
    content: str | None = None,
    embed: discord.Embed | None = None,
) -> None:
    """DM a user. Raises NotificationDeliveryError when Discord refuses."""
    try:
        uid = int(user_id)
        user = client.get_user(uid) or await client.fetch_user(uid)
        await user.send(content=content, embed=embed)
    except (discord.HTTPException, ValueError) as exc:
        raise NotificationDeliveryError(f"Could not DM user {user_id}: {exc}") from exc


async def notify_user(
    client: discord.Client,
    user_id: str | int,
    *,
    content: str | None = None,
    embed: discord.Embed | None = None,
) -> bool:
    """Best-effort DM. The state change already committed, so failures are logged only."""
    try:
        await send_dm(client, user_id, content=content, embed=embed)
    except NotificationDeliveryError as exc:
        logger.info("dm_delivery_failed user=%s err=%s", user_id, exc.message)
        return False
    return True
