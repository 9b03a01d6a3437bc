"""Tests for the event lifecycle: creation, RSVPs, deletion."""

import pytest

from muster.core import events
from muster.core import requests as lifecycle
from muster.core.errors import ValidationError
from muster.db.repository import Repository

FUTURE = 4_000_000_000


class TestParseEventTime:
    def test_plain_seconds(self):
        assert events.parse_event_time(" 1735689600 ") == 1735689600

    def test_discord_markup(self):
        assert events.parse_event_time("<t:1735689600:F>") == 1735689600

    def test_discord_markup_without_style(self):
        assert events.parse_event_time("<t:1735689600>") == 1735689600

    @pytest.mark.parametrize("raw", ["tomorrow", "", "12.5", "-5", "0"])
    def test_rejects_garbage(self, raw: str):
        with pytest.raises(ValidationError):
            events.parse_event_time(raw)


class TestCreateEvent:
    async def test_create_event(self, repo: Repository):
        detail = await events.create_event(
            repo, "42", "  Night Op ", FUTURE, description="Bring NVGs", location=" Ridge "
        )
        assert detail.id
        assert detail.title == "Night Op"
        assert detail.location == "Ridge"
        assert detail.image is None
        assert detail.creator_id == "42"

    async def test_title_required(self, repo: Repository):
        with pytest.raises(ValidationError):
            await events.create_event(repo, "42", "   ", FUTURE)

    async def test_title_too_long(self, repo: Repository):
        with pytest.raises(ValidationError):
            await events.create_event(repo, "42", "x" * 201, FUTURE)

    async def test_get_unknown_event(self, repo: Repository):
        with pytest.raises(ValidationError):
            await events.get_event(repo, "missing")

    async def test_list_upcoming(self, repo: Repository):
        await events.create_event(repo, "42", "Past", 1000)
        await events.create_event(repo, "42", "Soon", FUTURE)
        listed = await events.list_events(repo, since=2000)
        assert [e.title for e in listed] == ["Soon"]

    async def test_record_announcement(self, repo: Repository):
        detail = await events.create_event(repo, "42", "Op", FUTURE)
        assert await events.record_announcement(repo, detail.id, "100", "200") is True
        stored = await events.get_event(repo, detail.id)
        assert stored.channel_id == "100"
        assert stored.message_id == "200"
        assert await events.record_announcement(repo, "missing", "100", "200") is False


class TestRsvp:
    async def test_rsvp_summary(self, repo: Repository):
        detail = await events.create_event(repo, "42", "Op", FUTURE)
        await events.set_rsvp(repo, detail.id, "1", "yes")
        await events.set_rsvp(repo, detail.id, "2", "maybe")
        summary = await events.set_rsvp(repo, detail.id, "3", "no")
        assert summary.yes == ["1"]
        assert summary.maybe == ["2"]
        assert summary.no == ["3"]
        assert summary.attending == ["1", "2"]

    async def test_rsvp_change(self, repo: Repository):
        detail = await events.create_event(repo, "42", "Op", FUTURE)
        await events.set_rsvp(repo, detail.id, "1", "yes")
        summary = await events.set_rsvp(repo, detail.id, "1", "no")
        assert summary.yes == []
        assert summary.no == ["1"]

    async def test_rsvp_unknown_status(self, repo: Repository):
        detail = await events.create_event(repo, "42", "Op", FUTURE)
        with pytest.raises(ValidationError):
            await events.set_rsvp(repo, detail.id, "1", "perhaps")

    async def test_rsvp_deleted_event(self, repo: Repository):
        with pytest.raises(ValidationError, match="no longer exists"):
            await events.set_rsvp(repo, "missing", "1", "yes")


class TestDeleteEvent:
    async def test_delete_releases_reservations(self, repo: Repository):
        detail = await events.create_event(repo, "42", "Op", FUTURE)
        radio = await repo.create_equipment("Radio", 10)
        await lifecycle.create_equipment_request(repo, detail.id, radio.id, 3, "7")
        await events.set_rsvp(repo, detail.id, "1", "yes")

        deleted, summary = await events.delete_event(repo, detail.id)

        assert deleted.title == "Op"
        assert summary.requests == 1
        assert summary.units == 3
        refreshed = await repo.get_equipment(radio.id)
        assert refreshed.available_quantity == 10
        assert await repo.get_event(detail.id) is None
        assert await repo.get_rsvps(detail.id) == []

    async def test_delete_unknown(self, repo: Repository):
        with pytest.raises(ValidationError):
            await events.delete_event(repo, "missing")


class TestEventHistory:
    async def test_history_with_attendance(self, repo: Repository):
        old = await events.create_event(repo, "42", "Old Op", 1000)
        recent = await events.create_event(repo, "42", "Recent Op", 2000)
        await events.create_event(repo, "42", "Next Op", FUTURE)
        for user, status in (("1", "yes"), ("2", "yes"), ("3", "maybe"), ("4", "no")):
            await events.set_rsvp(repo, recent.id, user, status)

        past, total = await events.event_history(repo, before=3000)

        assert total == 2
        assert [p.event.id for p in past] == [recent.id, old.id]
        assert sorted(past[0].rsvps.yes) == ["1", "2"]
        assert past[0].participation_rate == 50
        assert past[1].participation_rate is None

    async def test_history_limit_caps_entries_not_total(self, repo: Repository):
        for t in (1000, 2000, 3000):
            await events.create_event(repo, "42", f"Op {t}", t)
        past, total = await events.event_history(repo, before=5000, limit=1)
        assert [p.event.title for p in past] == ["Op 3000"]
        assert total == 3

    async def test_history_empty(self, repo: Repository):
        await events.create_event(repo, "42", "Next Op", FUTURE)
        assert await events.event_history(repo, before=3000) == ([], 0)

    @pytest.mark.parametrize("limit", [0, 21])
    async def test_history_limit_bounds(self, repo: Repository, limit: int):
        with pytest.raises(ValidationError, match="between 1 and 20"):
            await events.event_history(repo, before=3000, limit=limit)
