"""Tests for the inventory reservation engine and equipment catalog."""

import random

import pytest

from muster.core import inventory
from muster.core.errors import (
    ConflictError,
    InsufficientInventoryError,
    InventoryConsistencyError,
    ValidationError,
)
from muster.db.repository import Repository

FUTURE = 4_000_000_000


async def _available(repo: Repository, equipment_id: str) -> int:
    row = await repo.get_equipment(equipment_id)
    assert row is not None
    return row.available_quantity


class TestReserve:
    async def test_reserve_decrements(self, repo: Repository):
        row = await repo.create_equipment("Radio", 10)
        await inventory.reserve(repo, row.id, 4)
        assert await _available(repo, row.id) == 6

    async def test_reserve_everything(self, repo: Repository):
        row = await repo.create_equipment("Radio", 3)
        await inventory.reserve(repo, row.id, 3)
        assert await _available(repo, row.id) == 0

    async def test_insufficient_leaves_available_unchanged(self, repo: Repository):
        row = await repo.create_equipment("Radio", 3)
        with pytest.raises(InsufficientInventoryError) as exc_info:
            await inventory.reserve(repo, row.id, 4)
        assert exc_info.value.available == 3
        assert exc_info.value.requested == 4
        assert exc_info.value.equipment_name == "Radio"
        assert await _available(repo, row.id) == 3

    async def test_zero_quantity_rejected(self, repo: Repository):
        row = await repo.create_equipment("Radio", 3)
        with pytest.raises(ValidationError):
            await inventory.reserve(repo, row.id, 0)

    async def test_unknown_equipment(self, repo: Repository):
        with pytest.raises(ValidationError):
            await inventory.reserve(repo, "missing", 1)


class TestRelease:
    async def test_release_restores(self, repo: Repository):
        row = await repo.create_equipment("Radio", 10)
        await inventory.reserve(repo, row.id, 4)
        await inventory.release(repo, row.id, 4)
        assert await _available(repo, row.id) == 10

    async def test_over_release_is_an_error_not_a_clamp(self, repo: Repository):
        row = await repo.create_equipment("Radio", 10)
        await inventory.reserve(repo, row.id, 2)
        with pytest.raises(InventoryConsistencyError):
            await inventory.release(repo, row.id, 3)
        assert await _available(repo, row.id) == 8

    async def test_release_for_missing_equipment_is_noop(self, repo: Repository):
        await inventory.release(repo, "gone", 2)


class TestBounds:
    async def test_random_sequences_stay_in_bounds(self, repo: Repository):
        """Any mix of reserve/release keeps 0 <= available <= total."""
        total = 12
        row = await repo.create_equipment("Crate", total)
        rng = random.Random(1234)
        expected = total
        for _ in range(200):
            quantity = rng.randint(1, 5)
            if rng.random() < 0.5:
                if quantity <= expected:
                    await inventory.reserve(repo, row.id, quantity)
                    expected -= quantity
                else:
                    with pytest.raises(InsufficientInventoryError):
                        await inventory.reserve(repo, row.id, quantity)
            else:
                if expected + quantity <= total:
                    await inventory.release(repo, row.id, quantity)
                    expected += quantity
                else:
                    with pytest.raises(InventoryConsistencyError):
                        await inventory.release(repo, row.id, quantity)
            available = await _available(repo, row.id)
            assert available == expected
            assert 0 <= available <= total


class TestEventRelease:
    async def test_release_for_event_returns_active_units(self, repo: Repository):
        event = await repo.create_event("1", "Op", FUTURE)
        radio = await repo.create_equipment("Radio", 10)
        medkit = await repo.create_equipment("Medkit", 5)
        await inventory.reserve(repo, radio.id, 4)
        await repo.add_equipment_request(event.id, radio.id, 4, "1")
        await inventory.reserve(repo, medkit.id, 2)
        denied = await repo.add_equipment_request(event.id, medkit.id, 2, "1")
        await repo.decide_equipment_request(denied.request_id, "denied", "9")
        await inventory.release(repo, medkit.id, 2)

        summary = await inventory.release_for_event(repo, event.id)

        assert summary.requests == 2
        assert summary.units == 4
        assert summary.events == 1
        assert await _available(repo, radio.id) == 10
        assert await _available(repo, medkit.id) == 5
        assert await repo.get_equipment_requests_for_event(event.id) == []

    async def test_release_for_event_without_requests(self, repo: Repository):
        event = await repo.create_event("1", "Op", FUTURE)
        summary = await inventory.release_for_event(repo, event.id)
        assert summary.requests == 0
        assert summary.units == 0


class TestReset:
    async def test_reset_restores_everything(self, repo: Repository):
        event = await repo.create_event("1", "Op", FUTURE)
        radio = await repo.create_equipment("Radio", 10)
        await inventory.reserve(repo, radio.id, 7)
        await repo.add_equipment_request(event.id, radio.id, 7, "1")

        summary = await inventory.reset_all(repo)

        assert summary.requests == 1
        assert summary.units == 7
        assert await _available(repo, radio.id) == 10
        assert await repo.get_equipment_requests_by_status(["pending", "approved"]) == []


class TestCatalog:
    async def test_add_equipment(self, repo: Repository):
        item = await inventory.add_equipment(repo, "  Radio ", 5, "Communications", "VHF")
        assert item.name == "Radio"
        assert item.available_quantity == 5
        assert item.reserved_quantity == 0
        assert item.status == "available"

    async def test_duplicate_name_rejected(self, repo: Repository):
        await inventory.add_equipment(repo, "Radio", 5)
        with pytest.raises(ConflictError):
            await inventory.add_equipment(repo, "radio", 2)

    async def test_unknown_category_rejected(self, repo: Repository):
        with pytest.raises(ValidationError, match="Unknown category"):
            await inventory.add_equipment(repo, "Radio", 5, "Snacks")

    async def test_negative_quantity_rejected(self, repo: Repository):
        with pytest.raises(ValidationError):
            await inventory.add_equipment(repo, "Radio", -1)

    async def test_edit_total_keeps_reservations(self, repo: Repository):
        item = await inventory.add_equipment(repo, "Radio", 10)
        await inventory.reserve(repo, item.id, 6)
        edited = await inventory.edit_equipment(repo, item.id, total_quantity=8)
        assert edited.total_quantity == 8
        assert edited.available_quantity == 2
        assert edited.reserved_quantity == 6

    async def test_edit_total_below_reserved_rejected(self, repo: Repository):
        item = await inventory.add_equipment(repo, "Radio", 10)
        await inventory.reserve(repo, item.id, 6)
        with pytest.raises(ValidationError, match="reserved"):
            await inventory.edit_equipment(repo, item.id, total_quantity=5)
        assert await _available(repo, item.id) == 4

    async def test_edit_details(self, repo: Repository):
        item = await inventory.add_equipment(repo, "Radio", 10)
        edited = await inventory.edit_equipment(
            repo, item.id, name="Long Radio", category="Communications", description="HF"
        )
        assert edited.name == "Long Radio"
        assert edited.category == "Communications"
        assert edited.description == "HF"

    async def test_remove_equipment(self, repo: Repository):
        item = await inventory.add_equipment(repo, "Radio", 10)
        removed = await inventory.remove_equipment(repo, item.id)
        assert removed.name == "Radio"
        assert await repo.get_equipment(item.id) is None

    async def test_list_inventory_by_category(self, repo: Repository):
        await inventory.add_equipment(repo, "Radio", 1, "Communications")
        await inventory.add_equipment(repo, "Medkit", 1, "Medical")
        items = await inventory.list_inventory(repo, "Medical")
        assert [i.name for i in items] == ["Medkit"]
        assert len(await inventory.list_inventory(repo)) == 2

    async def test_row_status_surfaces(self, repo: Repository):
        item = await inventory.add_equipment(repo, "Radio", 2)
        row = await repo.get_equipment(item.id)
        row.status = "maintenance"
        await repo.session.flush()
        [listed] = await inventory.list_inventory(repo)
        assert listed.status == "maintenance"
