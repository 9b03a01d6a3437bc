"""Tests for the equipment and certification request lifecycle."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from muster.core import reclaimer
from muster.core import requests as lifecycle
from muster.core.errors import ConflictError, InsufficientInventoryError, ValidationError
from muster.core.events import delete_event
from muster.db.engine import get_session
from muster.db.repository import Repository
from muster.models.requests import EquipmentRequestDetail

FUTURE = 4_000_000_000


async def _setup(repo: Repository, total: int = 10) -> tuple[str, str]:
    event = await repo.create_event("100", "Operation Dawn", FUTURE, location="Airfield")
    equipment = await repo.create_equipment("Radio", total, category="Communications")
    return event.id, equipment.id


async def _available(repo: Repository, equipment_id: str) -> int:
    row = await repo.get_equipment(equipment_id)
    assert row is not None
    return row.available_quantity


class TestCreateEquipmentRequest:
    async def test_create_reserves(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        detail = await lifecycle.create_equipment_request(repo, event_id, equipment_id, 4, "7")
        assert detail.status == "pending"
        assert detail.available_after == 6
        assert detail.equipment_name == "Radio"
        assert detail.event_title == "Operation Dawn"
        assert detail.request_id
        assert await _available(repo, equipment_id) == 6

    async def test_insufficient_inventory_changes_nothing(self, repo: Repository):
        event_id, equipment_id = await _setup(repo, total=3)
        with pytest.raises(InsufficientInventoryError):
            await lifecycle.create_equipment_request(repo, event_id, equipment_id, 4, "7")
        assert await _available(repo, equipment_id) == 3
        assert await repo.get_equipment_requests_for_event(event_id) == []

    async def test_unknown_event(self, repo: Repository):
        _, equipment_id = await _setup(repo)
        with pytest.raises(ValidationError, match="No event"):
            await lifecycle.create_equipment_request(repo, "missing", equipment_id, 1, "7")

    async def test_unknown_equipment(self, repo: Repository):
        event_id, _ = await _setup(repo)
        with pytest.raises(ValidationError, match="No equipment"):
            await lifecycle.create_equipment_request(repo, event_id, "missing", 1, "7")

    async def test_quantity_below_one(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        with pytest.raises(ValidationError):
            await lifecycle.create_equipment_request(repo, event_id, equipment_id, 0, "7")

    async def test_duplicate_active_request_rejected(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        await lifecycle.create_equipment_request(repo, event_id, equipment_id, 2, "7")
        with pytest.raises(ConflictError):
            await lifecycle.create_equipment_request(repo, event_id, equipment_id, 3, "8")
        assert await _available(repo, equipment_id) == 8

    async def test_denied_request_can_be_replaced(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        first = await lifecycle.create_equipment_request(repo, event_id, equipment_id, 2, "7")
        await lifecycle.deny_equipment_request(repo, first.request_id, "9", "No")
        second = await lifecycle.create_equipment_request(repo, event_id, equipment_id, 5, "7")
        assert second.request_id != first.request_id
        assert second.status == "pending"
        assert await _available(repo, equipment_id) == 5


class TestDecisions:
    async def test_approve_keeps_reservation(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        created = await lifecycle.create_equipment_request(repo, event_id, equipment_id, 4, "7")
        detail = await lifecycle.approve_equipment_request(repo, created.request_id, "9")
        assert detail.status == "approved"
        assert detail.decided_by == "9"
        assert await _available(repo, equipment_id) == 6

    async def test_deny_restores_exactly_quantity(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        created = await lifecycle.create_equipment_request(repo, event_id, equipment_id, 4, "7")
        detail = await lifecycle.deny_equipment_request(
            repo, created.request_id, "9", "  Not this week  "
        )
        assert detail.status == "denied"
        assert detail.denial_reason == "Not this week"
        assert detail.available_after == 10
        assert await _available(repo, equipment_id) == 10

    async def test_deny_twice_restores_once(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        created = await lifecycle.create_equipment_request(repo, event_id, equipment_id, 4, "7")
        await lifecycle.deny_equipment_request(repo, created.request_id, "9")
        with pytest.raises(ConflictError, match="already been denied"):
            await lifecycle.deny_equipment_request(repo, created.request_id, "10")
        assert await _available(repo, equipment_id) == 10

    async def test_approve_after_deny_rejected(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        created = await lifecycle.create_equipment_request(repo, event_id, equipment_id, 4, "7")
        await lifecycle.deny_equipment_request(repo, created.request_id, "9")
        with pytest.raises(ConflictError):
            await lifecycle.approve_equipment_request(repo, created.request_id, "9")
        found = await lifecycle.find_equipment_request(repo, event_id, equipment_id)
        assert found.status == "denied"
        assert await _available(repo, equipment_id) == 10

    async def test_deny_after_approve_rejected(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        created = await lifecycle.create_equipment_request(repo, event_id, equipment_id, 4, "7")
        await lifecycle.approve_equipment_request(repo, created.request_id, "9")
        with pytest.raises(ConflictError, match="already been approved"):
            await lifecycle.deny_equipment_request(repo, created.request_id, "9")
        assert await _available(repo, equipment_id) == 6

    async def test_unknown_request(self, repo: Repository):
        with pytest.raises(ValidationError):
            await lifecycle.approve_equipment_request(repo, "nope", "9")

    async def test_decision_after_commit_rejected(self, engine: AsyncEngine):
        """A second session deciding after the first committed sees the row as decided."""
        async with get_session(engine) as session:
            repo = Repository(session)
            event_id, equipment_id = await _setup(repo)
            created = await lifecycle.create_equipment_request(
                repo, event_id, equipment_id, 4, "7"
            )

        async with get_session(engine) as session:
            await lifecycle.deny_equipment_request(Repository(session), created.request_id, "9")

        with pytest.raises(ConflictError):
            async with get_session(engine) as session:
                await lifecycle.deny_equipment_request(
                    Repository(session), created.request_id, "10"
                )

        async with get_session(engine) as session:
            assert await _available(Repository(session), equipment_id) == 10


class TestRemoveAndList:
    async def test_remove_pending_releases(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        await lifecycle.create_equipment_request(repo, event_id, equipment_id, 4, "7")
        detail = await lifecycle.remove_equipment_request(repo, event_id, equipment_id)
        assert detail.quantity == 4
        assert await _available(repo, equipment_id) == 10
        with pytest.raises(ValidationError):
            await lifecycle.find_equipment_request(repo, event_id, equipment_id)

    async def test_remove_denied_releases_nothing(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        created = await lifecycle.create_equipment_request(repo, event_id, equipment_id, 4, "7")
        await lifecycle.deny_equipment_request(repo, created.request_id, "9")
        await lifecycle.remove_equipment_request(repo, event_id, equipment_id)
        assert await _available(repo, equipment_id) == 10

    async def test_remove_missing(self, repo: Repository):
        event_id, equipment_id = await _setup(repo)
        with pytest.raises(ValidationError):
            await lifecycle.remove_equipment_request(repo, event_id, equipment_id)

    async def test_list_event_requests(self, repo: Repository):
        event_id, radio_id = await _setup(repo)
        medkit = await repo.create_equipment("Medkit", 3, category="Medical")
        await lifecycle.create_equipment_request(repo, event_id, radio_id, 1, "7")
        await lifecycle.create_equipment_request(repo, event_id, medkit.id, 2, "8")
        details = await lifecycle.list_event_equipment_requests(repo, event_id)
        assert sorted(d.equipment_name for d in details) == ["Medkit", "Radio"]

    async def test_pending_and_deployed(self, repo: Repository):
        event_id, radio_id = await _setup(repo)
        medkit = await repo.create_equipment("Medkit", 3, category="Medical")
        pending = await lifecycle.create_equipment_request(repo, event_id, radio_id, 1, "7")
        approved = await lifecycle.create_equipment_request(repo, event_id, medkit.id, 2, "8")
        await lifecycle.approve_equipment_request(repo, approved.request_id, "9")

        queue = await lifecycle.list_pending_equipment_requests(repo)
        assert [d.request_id for d in queue] == [pending.request_id]

        deployed = await lifecycle.list_deployed_equipment(repo, now=FUTURE - 60)
        assert [d.equipment_name for d in deployed] == ["Medkit"]
        assert deployed[0].event_location == "Airfield"
        assert await lifecycle.list_deployed_equipment(repo, now=FUTURE + 60) == []


class TestExampleScenario:
    async def test_reserve_approve_delete_event(self, repo: Repository):
        event = await repo.create_event("100", "V1", FUTURE)
        equipment = await repo.create_equipment("E1", 10)

        r1 = await lifecycle.create_equipment_request(repo, event.id, equipment.id, 4, "7")
        assert r1.status == "pending"
        assert await _available(repo, equipment.id) == 6

        approved = await lifecycle.approve_equipment_request(repo, r1.request_id, "9")
        assert approved.status == "approved"
        assert await _available(repo, equipment.id) == 6

        _, summary = await delete_event(repo, event.id)
        assert summary.units == 4
        assert await _available(repo, equipment.id) == 10
        assert await repo.get_equipment_request(r1.request_id) is None


class TestCertificationRequests:
    async def test_request_and_approve(self, repo: Repository):
        cert = await repo.create_certification("Pilot", "Fly things")
        detail = await lifecycle.request_certification(repo, "7", cert.id)
        assert detail.status == "pending"
        assert detail.cert_name == "Pilot"

        approved = await lifecycle.approve_certification_request(repo, detail.id, "9")
        assert approved.status == "approved"
        assert approved.decided_by == "9"

    async def test_duplicate_pending_rejected(self, repo: Repository):
        cert = await repo.create_certification("Pilot")
        await lifecycle.request_certification(repo, "7", cert.id)
        with pytest.raises(ConflictError):
            await lifecycle.request_certification(repo, "7", cert.id)

    async def test_new_request_after_denial(self, repo: Repository):
        cert = await repo.create_certification("Pilot")
        first = await lifecycle.request_certification(repo, "7", cert.id)
        denied = await lifecycle.deny_certification_request(repo, first.id, "9", "Train more")
        assert denied.denial_reason == "Train more"
        second = await lifecycle.request_certification(repo, "7", cert.id)
        assert second.id != first.id
        assert second.status == "pending"

    async def test_approved_blocks_new_request(self, repo: Repository):
        cert = await repo.create_certification("Pilot")
        first = await lifecycle.request_certification(repo, "7", cert.id)
        await lifecycle.approve_certification_request(repo, first.id, "9")
        with pytest.raises(ConflictError, match="approved"):
            await lifecycle.request_certification(repo, "7", cert.id)

    async def test_decided_request_is_terminal(self, repo: Repository):
        cert = await repo.create_certification("Pilot")
        detail = await lifecycle.request_certification(repo, "7", cert.id)
        await lifecycle.deny_certification_request(repo, detail.id, "9")
        with pytest.raises(ConflictError, match="already been denied"):
            await lifecycle.approve_certification_request(repo, detail.id, "9")

    async def test_unknown_certification(self, repo: Repository):
        with pytest.raises(ValidationError):
            await lifecycle.request_certification(repo, "7", "missing")

    async def test_list_by_user(self, repo: Repository):
        pilot = await repo.create_certification("Pilot")
        medic = await repo.create_certification("Medic")
        a = await lifecycle.request_certification(repo, "7", pilot.id)
        await lifecycle.request_certification(repo, "7", medic.id)
        await lifecycle.request_certification(repo, "8", pilot.id)
        await lifecycle.approve_certification_request(repo, a.id, "9")

        approved = await lifecycle.list_certification_requests(
            repo, status="approved", user_id="7"
        )
        assert [d.cert_name for d in approved] == ["Pilot"]
        pending = await lifecycle.list_certification_requests(repo, status="pending")
        assert len(pending) == 2


class TestConcurrentSessions:
    """Operations racing in separate sessions on the same rows."""

    async def _seed(self, engine: AsyncEngine, time: int = FUTURE) -> tuple[str, str]:
        async with get_session(engine) as session:
            repo = Repository(session)
            event = await repo.create_event("100", "Operation Dawn", time)
            equipment = await repo.create_equipment("Radio", 10)
            return event.id, equipment.id

    async def _add(self, engine: AsyncEngine, event_id: str, equipment_id: str, user: str):
        async with get_session(engine) as session:
            return await lifecycle.create_equipment_request(
                Repository(session), event_id, equipment_id, 3, user
            )

    async def _deny(self, engine: AsyncEngine, request_id: str, admin: str):
        async with get_session(engine) as session:
            return await lifecycle.deny_equipment_request(Repository(session), request_id, admin)

    async def _available(self, engine: AsyncEngine, equipment_id: str) -> int:
        async with get_session(engine) as session:
            return await _available(Repository(session), equipment_id)

    async def test_simultaneous_adds_for_one_pair(self, engine: AsyncEngine):
        event_id, equipment_id = await self._seed(engine)

        results = await asyncio.gather(
            self._add(engine, event_id, equipment_id, "7"),
            self._add(engine, event_id, equipment_id, "8"),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        created = [r for r in results if isinstance(r, EquipmentRequestDetail)]
        assert len(conflicts) == 1
        assert len(created) == 1
        assert await self._available(engine, equipment_id) == 7

    async def test_insert_race_reported_as_conflict(self, engine: AsyncEngine):
        event_id, equipment_id = await self._seed(engine)
        await self._add(engine, event_id, equipment_id, "7")

        with pytest.raises(ConflictError, match="already a request for Radio"):
            async with get_session(engine) as session:
                repo = Repository(session)
                # The duplicate check ran before the other add committed.
                repo.get_equipment_request_for_pair = AsyncMock(return_value=None)
                await lifecycle.create_equipment_request(repo, event_id, equipment_id, 3, "8")

        assert await self._available(engine, equipment_id) == 7

    async def test_simultaneous_denials(self, engine: AsyncEngine):
        event_id, equipment_id = await self._seed(engine)
        created = await self._add(engine, event_id, equipment_id, "7")

        results = await asyncio.gather(
            self._deny(engine, created.request_id, "9"),
            self._deny(engine, created.request_id, "10"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert sum(isinstance(r, EquipmentRequestDetail) for r in results) == 1
        assert await self._available(engine, equipment_id) == 10

    async def test_denial_during_sweep(self, engine: AsyncEngine):
        now = 2_000_000_000
        event_id, equipment_id = await self._seed(engine, time=now - 3600)
        created = await self._add(engine, event_id, equipment_id, "7")

        denied, summary = await asyncio.gather(
            self._deny(engine, created.request_id, "9"),
            reclaimer.reclaim_ended_events(engine, now=now),
            return_exceptions=True,
        )

        # Whichever lands second finds the request decided or gone.
        assert isinstance(denied, (EquipmentRequestDetail, ValidationError))
        assert summary is not None
        assert summary.units in (0, 3)
        assert await self._available(engine, equipment_id) == 10
        async with get_session(engine) as session:
            remaining = await Repository(session).get_equipment_requests_for_event(event_id)
        assert remaining == []
