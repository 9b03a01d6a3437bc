"""Tests for the TTL cache and the cached admin checker."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from muster.core.cache import ExpiringCache
from muster.discord.helpers import AdminChecker


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestExpiringCache:
    def test_set_and_get(self):
        cache: ExpiringCache[int] = ExpiringCache(ttl=60)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert "a" in cache
        assert len(cache) == 1

    def test_missing_key(self):
        cache: ExpiringCache[int] = ExpiringCache(ttl=60)
        assert cache.get("nope") is None

    def test_expiry(self):
        clock = FakeClock()
        cache: ExpiringCache[bool] = ExpiringCache(ttl=10, timer=clock)
        cache.set("a", True)
        clock.now = 9
        assert cache.get("a") is True
        clock.now = 11
        assert cache.get("a") is None

    def test_pop_and_clear(self):
        cache: ExpiringCache[int] = ExpiringCache(ttl=60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.pop("a")
        cache.pop("missing")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0

    def test_instances_are_independent(self):
        first: ExpiringCache[int] = ExpiringCache(ttl=60)
        second: ExpiringCache[int] = ExpiringCache(ttl=60)
        first.set("a", 1)
        assert second.get("a") is None


def make_member(user_id: int = 1, *, administrator: bool = False, role_ids=()) -> MagicMock:
    member = MagicMock(spec=discord.Member)
    member.id = user_id
    member.guild_permissions = MagicMock()
    member.guild_permissions.administrator = administrator
    roles = []
    for role_id in role_ids:
        role = MagicMock()
        role.id = role_id
        roles.append(role)
    member.roles = roles
    return member


class TestAdminChecker:
    async def test_administrator_permission(self):
        checker = AdminChecker()
        assert await checker.is_admin(make_member(administrator=True)) is True

    async def test_admin_role(self):
        checker = AdminChecker(admin_role_id="555")
        assert await checker.is_admin(make_member(role_ids=[555])) is True

    async def test_regular_member(self):
        checker = AdminChecker(admin_role_id="555")
        assert await checker.is_admin(make_member(role_ids=[1, 2])) is False

    async def test_answer_cached(self):
        checker = AdminChecker()
        member = make_member(administrator=True)
        assert await checker.is_admin(member) is True
        member.guild_permissions.administrator = False
        assert await checker.is_admin(member) is True

    async def test_plain_user_resolved_through_guild(self):
        checker = AdminChecker()
        user = MagicMock(spec=discord.User)
        user.id = 9
        guild = MagicMock(spec=discord.Guild)
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(return_value=make_member(9, administrator=True))
        assert await checker.is_admin(user, guild) is True
        guild.fetch_member.assert_awaited_once_with(9)

    async def test_user_without_guild_is_not_admin(self):
        checker = AdminChecker()
        user = MagicMock(spec=discord.User)
        user.id = 9
        assert await checker.is_admin(user) is False

    @pytest.mark.parametrize("role_id", ["", "123"])
    def test_role_id_parsing(self, role_id: str):
        checker = AdminChecker(admin_role_id=role_id)
        assert checker.admin_role_id == (int(role_id) if role_id else None)

    async def test_invalidate_drops_cached_answer(self):
        checker = AdminChecker()
        member = make_member(administrator=True)
        assert await checker.is_admin(member) is True
        member.guild_permissions.administrator = False
        checker.invalidate(member.id)
        assert await checker.is_admin(member) is False
