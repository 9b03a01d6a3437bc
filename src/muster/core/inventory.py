"""Inventory reservation engine.

Every function here runs inside the caller's session, so a reservation and the
request row that owns it commit or roll back together. Callers never touch
``available_quantity`` directly.

A reservation is taken when a request is created and returned exactly once:
on denial, on explicit removal, when its event is deleted, when its event's
time passes, or on a full reset.
"""

from __future__ import annotations

import logging

from muster.core.errors import (
    ConflictError,
    InsufficientInventoryError,
    InventoryConsistencyError,
    ValidationError,
)
from muster.db.models import EquipmentRequestRow, EquipmentRow
from muster.db.repository import ACTIVE_STATUSES, Repository
from muster.models.inventory import EQUIPMENT_CATEGORIES, EquipmentItem, ReclaimSummary

logger = logging.getLogger(__name__)


async def reserve(repo: Repository, equipment_id: str, quantity: int) -> None:
    """Take *quantity* units out of the available pool.

    Raises:
        ValidationError: quantity below one, or unknown equipment.
        InsufficientInventoryError: fewer than *quantity* units available.
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1.")
    if await repo.try_decrement_available(equipment_id, quantity):
        return
    equipment = await repo.get_equipment(equipment_id)
    if equipment is None:
        raise ValidationError("That equipment does not exist.")
    raise InsufficientInventoryError(equipment.name, quantity, equipment.available_quantity)


async def release(repo: Repository, equipment_id: str, quantity: int) -> None:
    """Return *quantity* units to the available pool.

    Raises InventoryConsistencyError rather than clamping when the release
    would push available above total. A missing equipment row is a no-op:
    its requests went with it.
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1.")
    if await repo.try_increment_available(equipment_id, quantity):
        return
    if await repo.get_equipment(equipment_id) is None:
        logger.warning("release_skipped_missing_equipment equipment=%s", equipment_id)
        return
    logger.error(
        "inventory_consistency_violation equipment=%s quantity=%d", equipment_id, quantity
    )
    raise InventoryConsistencyError(equipment_id, quantity)


async def _release_and_delete(
    repo: Repository, requests: list[EquipmentRequestRow]
) -> ReclaimSummary:
    """Delete each request row, releasing it first if it still held a reservation.

    The delete is conditional on the status the row had when it was read, so
    a request that was denied concurrently is never released twice.
    """
    summary = ReclaimSummary()
    events: set[str] = set()
    for request in requests:
        events.add(request.event_id)
        if request.status in ACTIVE_STATUSES:
            if await repo.delete_equipment_request(request.id, statuses=ACTIVE_STATUSES):
                await release(repo, request.equipment_id, request.quantity)
                summary.units += request.quantity
                summary.requests += 1
                continue
        if await repo.delete_equipment_request(request.id):
            summary.requests += 1
    summary.events = len(events)
    return summary


async def release_for_event(repo: Repository, event_id: str) -> ReclaimSummary:
    """Release and delete every request attached to one event."""
    requests = await repo.get_equipment_requests_for_event(event_id)
    summary = await _release_and_delete(repo, requests)
    if summary.requests:
        logger.info(
            "event_reservations_released event=%s requests=%d units=%d",
            event_id,
            summary.requests,
            summary.units,
        )
    return summary


async def release_for_ended_events(repo: Repository, now: int) -> ReclaimSummary:
    """Release and delete every request whose event time is at or before *now*.

    Idempotent: swept rows no longer exist, so a second run finds nothing.
    """
    requests = await repo.get_equipment_requests_for_ended_events(now)
    if not requests:
        return ReclaimSummary()
    return await _release_and_delete(repo, requests)


async def reset_all(repo: Repository) -> ReclaimSummary:
    """Administrative reset: every request is deleted and available = total."""
    active = await repo.get_equipment_requests_by_status(ACTIVE_STATUSES)
    units = sum(request.quantity for request in active)
    deleted = await repo.delete_all_equipment_requests()
    touched = await repo.reset_all_available()
    logger.warning(
        "inventory_reset equipment=%d requests=%d units=%d", touched, deleted, units
    )
    return ReclaimSummary(
        requests=deleted,
        units=units,
        events=len({request.event_id for request in active}),
    )


# --- Catalog administration ---


def equipment_item(row: EquipmentRow) -> EquipmentItem:
    return EquipmentItem(
        id=row.id,
        name=row.name,
        category=row.category,
        total_quantity=row.total_quantity,
        available_quantity=row.available_quantity,
        description=row.description or "",
        status=row.status or "available",
    )


def _check_category(category: str) -> str:
    if category not in EQUIPMENT_CATEGORIES:
        raise ValidationError(
            f"Unknown category `{category}`. Use one of: {', '.join(EQUIPMENT_CATEGORIES)}."
        )
    return category


async def add_equipment(
    repo: Repository,
    name: str,
    total_quantity: int,
    category: str = "Other",
    description: str = "",
) -> EquipmentItem:
    name = name.strip()
    if not name:
        raise ValidationError("Equipment name is required.")
    if total_quantity < 0:
        raise ValidationError("Quantity cannot be negative.")
    if await repo.get_equipment_by_name(name) is not None:
        raise ConflictError(f"Equipment named **{name}** already exists.")
    row = await repo.create_equipment(
        name=name,
        total_quantity=total_quantity,
        category=_check_category(category),
        description=description.strip(),
    )
    logger.info("equipment_added equipment=%s total=%d", row.id, total_quantity)
    return equipment_item(row)


async def edit_equipment(
    repo: Repository,
    equipment_id: str,
    name: str | None = None,
    category: str | None = None,
    description: str | None = None,
    total_quantity: int | None = None,
) -> EquipmentItem:
    """Update an equipment row.

    A new total shifts available by the same amount, so reservations stay
    intact. A total below the currently reserved amount is rejected.
    """
    row = await repo.get_equipment(equipment_id)
    if row is None:
        raise ValidationError(f"No equipment found with ID `{equipment_id}`.")
    if category is not None:
        _check_category(category)
    if name is not None and not name.strip():
        raise ValidationError("Equipment name cannot be empty.")

    if total_quantity is not None and total_quantity != row.total_quantity:
        if total_quantity < 0:
            raise ValidationError("Quantity cannot be negative.")
        reserved = row.total_quantity - row.available_quantity
        delta = total_quantity - row.total_quantity
        if not await repo.adjust_total_quantity(equipment_id, delta):
            raise ValidationError(
                f"{reserved} unit(s) of **{row.name}** are reserved; "
                f"the total can't go below that."
            )

    await repo.update_equipment_details(
        equipment_id,
        name=name.strip() if name is not None else None,
        category=category,
        description=description,
    )
    updated = await repo.get_equipment(equipment_id)
    logger.info("equipment_edited equipment=%s", equipment_id)
    return equipment_item(updated or row)


async def remove_equipment(repo: Repository, equipment_id: str) -> EquipmentItem:
    """Delete equipment; its requests go with it."""
    row = await repo.get_equipment(equipment_id)
    if row is None:
        raise ValidationError(f"No equipment found with ID `{equipment_id}`.")
    item = equipment_item(row)
    await repo.delete_equipment(equipment_id)
    logger.info("equipment_removed equipment=%s", equipment_id)
    return item


async def list_inventory(repo: Repository, category: str | None = None) -> list[EquipmentItem]:
    return [equipment_item(row) for row in await repo.list_equipment(category)]
