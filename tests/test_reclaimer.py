"""Tests for the scheduled reclaimer sweep."""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from muster.core import reclaimer
from muster.core import requests as lifecycle
from muster.db.engine import get_session
from muster.db.repository import Repository

NOW = 2_000_000_000


async def _seed(engine: AsyncEngine) -> dict[str, str]:
    async with get_session(engine) as session:
        repo = Repository(session)
        ended = await repo.create_event("1", "Ended", NOW - 3600)
        upcoming = await repo.create_event("1", "Upcoming", NOW + 3600)
        radio = await repo.create_equipment("Radio", 10)
        medkit = await repo.create_equipment("Medkit", 5)
        truck = await repo.create_equipment("Truck", 2)

        await lifecycle.create_equipment_request(repo, ended.id, radio.id, 4, "7")
        approved = await lifecycle.create_equipment_request(repo, ended.id, medkit.id, 2, "7")
        await lifecycle.approve_equipment_request(repo, approved.request_id, "9")
        denied = await lifecycle.create_equipment_request(repo, ended.id, truck.id, 1, "7")
        await lifecycle.deny_equipment_request(repo, denied.request_id, "9")
        await lifecycle.create_equipment_request(repo, upcoming.id, radio.id, 3, "8")
    return {
        "ended": ended.id,
        "upcoming": upcoming.id,
        "radio": radio.id,
        "medkit": medkit.id,
        "truck": truck.id,
    }


async def _available(engine: AsyncEngine, equipment_id: str) -> int:
    async with get_session(engine) as session:
        row = await Repository(session).get_equipment(equipment_id)
        return row.available_quantity


class TestReclaimSweep:
    async def test_sweep_releases_ended_event(self, engine: AsyncEngine):
        ids = await _seed(engine)
        assert await _available(engine, ids["radio"]) == 3

        summary = await reclaimer.reclaim_ended_events(engine, now=NOW)

        assert summary is not None
        assert summary.requests == 3
        assert summary.units == 6
        assert summary.events == 1
        assert await _available(engine, ids["radio"]) == 7
        assert await _available(engine, ids["medkit"]) == 5
        assert await _available(engine, ids["truck"]) == 2

    async def test_upcoming_event_untouched(self, engine: AsyncEngine):
        ids = await _seed(engine)
        await reclaimer.reclaim_ended_events(engine, now=NOW)
        async with get_session(engine) as session:
            remaining = await Repository(session).get_equipment_requests_for_event(
                ids["upcoming"]
            )
        assert [r.quantity for r in remaining] == [3]

    async def test_second_sweep_is_noop(self, engine: AsyncEngine):
        ids = await _seed(engine)
        await reclaimer.reclaim_ended_events(engine, now=NOW)
        second = await reclaimer.reclaim_ended_events(engine, now=NOW)
        assert second is not None
        assert second.requests == 0
        assert second.units == 0
        assert await _available(engine, ids["radio"]) == 7

    async def test_event_at_now_counts_as_ended(self, engine: AsyncEngine):
        async with get_session(engine) as session:
            repo = Repository(session)
            event = await repo.create_event("1", "Starting", NOW)
            radio = await repo.create_equipment("Radio", 4)
            await lifecycle.create_equipment_request(repo, event.id, radio.id, 4, "7")
        summary = await reclaimer.reclaim_ended_events(engine, now=NOW)
        assert summary.units == 4

    async def test_database_error_is_logged_not_raised(
        self, engine: AsyncEngine, monkeypatch: pytest.MonkeyPatch
    ):
        async def _boom(repo: Repository, now: int) -> None:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(reclaimer, "release_for_ended_events", _boom)
        assert await reclaimer.reclaim_ended_events(engine, now=NOW) is None
