"""Request lifecycle controller for equipment and certification requests.

Both request kinds share one state machine::

    pending -> approved   (terminal)
    pending -> denied     (terminal)

Decisions are compare-and-set updates on ``status = 'pending'``, so of two
concurrent decisions exactly one wins and the other raises ConflictError.
Guards raise before anything is written. Every function runs inside the
caller's session and returns a detail snapshot; notifications are the
caller's job once the session has committed.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from muster.core import inventory
from muster.core.errors import ConflictError, ValidationError
from muster.db.models import CertificationRequestRow, EquipmentRequestRow
from muster.db.repository import ACTIVE_STATUSES, Repository
from muster.models.requests import CertificationRequestDetail, EquipmentRequestDetail

logger = logging.getLogger(__name__)


def _equipment_detail(
    row: EquipmentRequestRow, available_after: int | None = None
) -> EquipmentRequestDetail:
    equipment = row.equipment
    event = row.event
    return EquipmentRequestDetail(
        id=row.id,
        request_id=row.request_id or "",
        event_id=row.event_id,
        event_title=event.title if event is not None else "",
        event_time=event.time if event is not None else None,
        event_location=event.location if event is not None else None,
        equipment_id=row.equipment_id,
        equipment_name=equipment.name if equipment is not None else "Unknown equipment",
        equipment_category=equipment.category if equipment is not None else "Other",
        quantity=row.quantity,
        requested_by=row.requested_by,
        status=row.status,
        available_after=available_after,
        decided_by=row.decided_by,
        decided_at=row.decided_at,
        denial_reason=row.denial_reason,
    )


def _cert_detail(row: CertificationRequestRow) -> CertificationRequestDetail:
    cert = row.certification
    decided_by = row.approved_by if row.status == "approved" else row.denied_by
    return CertificationRequestDetail(
        id=row.id,
        user_id=row.user_id,
        cert_id=row.cert_id,
        cert_name=cert.name if cert is not None else "Unknown certification",
        cert_description=cert.description if cert is not None else "",
        status=row.status,
        requested_at=row.requested_at,
        decided_by=decided_by,
        denial_reason=row.denial_reason,
    )


# --- Equipment requests ---


async def create_equipment_request(
    repo: Repository,
    event_id: str,
    equipment_id: str,
    quantity: int,
    requested_by: str,
) -> EquipmentRequestDetail:
    """Reserve inventory and record a pending request for (event, equipment).

    An active request for the same pair is rejected; the requester has to
    remove it first. A denied request for the pair already returned its
    units and is replaced.
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1.")
    event = await repo.get_event(event_id)
    if event is None:
        raise ValidationError(f"No event found with ID `{event_id}`.")
    equipment = await repo.get_equipment(equipment_id)
    if equipment is None:
        raise ValidationError(f"No equipment found with ID `{equipment_id}`.")
    # A failed flush expires loaded rows, so keep the name for the conflict message.
    equipment_name = equipment.name

    existing = await repo.get_equipment_request_for_pair(event_id, equipment_id)
    if existing is not None:
        if existing.status in ACTIVE_STATUSES:
            raise ConflictError(
                f"There is already a {existing.status} request for {equipment_name} "
                f"on this event. Remove it before requesting again."
            )
        await repo.delete_equipment_request(existing.id)

    await inventory.reserve(repo, equipment_id, quantity)
    try:
        row = await repo.add_equipment_request(event_id, equipment_id, quantity, requested_by)
    except IntegrityError as exc:
        # A concurrent add for the same pair committed first.
        raise ConflictError(
            f"There is already a request for {equipment_name} on this event."
        ) from exc

    stored = await repo.get_equipment_request(row.request_id or "")
    refreshed = await repo.get_equipment(equipment_id)
    logger.info(
        "equipment_request_created request=%s event=%s equipment=%s quantity=%d",
        row.request_id,
        event_id,
        equipment_id,
        quantity,
    )
    return _equipment_detail(
        stored or row,
        available_after=refreshed.available_quantity if refreshed is not None else None,
    )


async def _get_equipment_request_or_raise(
    repo: Repository, request_id: str
) -> EquipmentRequestRow:
    row = await repo.get_equipment_request(request_id)
    if row is None:
        raise ValidationError("That equipment request no longer exists.")
    return row


async def approve_equipment_request(
    repo: Repository, request_id: str, decided_by: str
) -> EquipmentRequestDetail:
    """pending -> approved. The reservation stays in place."""
    row = await _get_equipment_request_or_raise(repo, request_id)
    if not await repo.decide_equipment_request(request_id, "approved", decided_by):
        current = await _get_equipment_request_or_raise(repo, request_id)
        raise ConflictError(f"This equipment request has already been {current.status}.")
    row = await _get_equipment_request_or_raise(repo, request_id)
    equipment = await repo.get_equipment(row.equipment_id)
    logger.info("equipment_request_approved request=%s by=%s", request_id, decided_by)
    return _equipment_detail(
        row, available_after=equipment.available_quantity if equipment else None
    )


async def deny_equipment_request(
    repo: Repository,
    request_id: str,
    decided_by: str,
    reason: str | None = None,
) -> EquipmentRequestDetail:
    """pending -> denied, returning the reserved units to the pool."""
    row = await _get_equipment_request_or_raise(repo, request_id)
    reason = (reason or "").strip() or None
    if not await repo.decide_equipment_request(request_id, "denied", decided_by, reason):
        current = await _get_equipment_request_or_raise(repo, request_id)
        raise ConflictError(f"This equipment request has already been {current.status}.")
    await inventory.release(repo, row.equipment_id, row.quantity)
    row = await _get_equipment_request_or_raise(repo, request_id)
    equipment = await repo.get_equipment(row.equipment_id)
    logger.info(
        "equipment_request_denied request=%s by=%s units=%d",
        request_id,
        decided_by,
        row.quantity,
    )
    return _equipment_detail(
        row, available_after=equipment.available_quantity if equipment else None
    )


async def find_equipment_request(
    repo: Repository, event_id: str, equipment_id: str
) -> EquipmentRequestDetail:
    """Resolve the request for an (event, equipment) pair."""
    row = await repo.get_equipment_request_for_pair(event_id, equipment_id)
    if row is None:
        raise ValidationError("No equipment request found for that event and equipment.")
    loaded = await _get_equipment_request_or_raise(repo, row.request_id or "")
    return _equipment_detail(loaded)


async def remove_equipment_request(
    repo: Repository, event_id: str, equipment_id: str
) -> EquipmentRequestDetail:
    """Delete the request for a pair, releasing its units if it still held them."""
    row = await repo.get_equipment_request_for_pair(event_id, equipment_id)
    if row is None:
        raise ValidationError("No equipment request found for that event and equipment.")
    detail = _equipment_detail(await _get_equipment_request_or_raise(repo, row.request_id or ""))
    if row.status in ACTIVE_STATUSES and await repo.delete_equipment_request(
        row.id, statuses=ACTIVE_STATUSES
    ):
        await inventory.release(repo, row.equipment_id, row.quantity)
        logger.info(
            "equipment_request_removed request=%s units=%d", row.request_id, row.quantity
        )
    else:
        await repo.delete_equipment_request(row.id)
        logger.info("equipment_request_removed request=%s units=0", row.request_id)
    return detail


async def list_event_equipment_requests(
    repo: Repository, event_id: str
) -> list[EquipmentRequestDetail]:
    if await repo.get_event(event_id) is None:
        raise ValidationError(f"No event found with ID `{event_id}`.")
    rows = await repo.get_equipment_requests_for_event(event_id)
    details = []
    for row in rows:
        loaded = await repo.get_equipment_request(row.request_id or "")
        details.append(_equipment_detail(loaded or row))
    return details


async def list_pending_equipment_requests(repo: Repository) -> list[EquipmentRequestDetail]:
    rows = await repo.get_equipment_requests_by_status(["pending"])
    return [_equipment_detail(row) for row in rows]


async def list_deployed_equipment(repo: Repository, now: int) -> list[EquipmentRequestDetail]:
    """Approved requests for events that haven't started, ordered by location then time."""
    rows = await repo.get_equipment_requests_by_status(["approved"])
    upcoming = [row for row in rows if row.event is not None and row.event.time > now]
    upcoming.sort(key=lambda row: (row.event.location or "", row.event.time))
    return [_equipment_detail(row) for row in upcoming]


# --- Certification requests ---


async def request_certification(
    repo: Repository, user_id: str, cert_id: str
) -> CertificationRequestDetail:
    """Record a pending certification request.

    Rejected while the user already has a pending or approved request for the
    same certification; a denied request doesn't block a new one.
    """
    cert = await repo.get_certification(cert_id)
    if cert is None:
        raise ValidationError("That certification does not exist.")
    existing = await repo.get_active_certification_request(user_id, cert_id)
    if existing is not None:
        raise ConflictError(
            f"You already have a {existing.status} request for **{cert.name}**."
        )
    row = await repo.add_certification_request(user_id, cert_id)
    stored = await repo.get_certification_request(row.id)
    logger.info("cert_request_created request=%s user=%s cert=%s", row.id, user_id, cert_id)
    return _cert_detail(stored or row)


async def _get_cert_request_or_raise(
    repo: Repository, request_id: str
) -> CertificationRequestRow:
    row = await repo.get_certification_request(request_id)
    if row is None:
        raise ValidationError("That certification request no longer exists.")
    return row


async def get_certification_request(
    repo: Repository, request_id: str
) -> CertificationRequestDetail:
    return _cert_detail(await _get_cert_request_or_raise(repo, request_id))


async def approve_certification_request(
    repo: Repository, request_id: str, decided_by: str
) -> CertificationRequestDetail:
    await _get_cert_request_or_raise(repo, request_id)
    if not await repo.approve_certification_request(request_id, decided_by):
        current = await _get_cert_request_or_raise(repo, request_id)
        raise ConflictError(f"This request has already been {current.status}.")
    logger.info("cert_request_approved request=%s by=%s", request_id, decided_by)
    return _cert_detail(await _get_cert_request_or_raise(repo, request_id))


async def deny_certification_request(
    repo: Repository,
    request_id: str,
    decided_by: str,
    reason: str | None = None,
) -> CertificationRequestDetail:
    await _get_cert_request_or_raise(repo, request_id)
    reason = (reason or "").strip() or None
    if not await repo.deny_certification_request(request_id, decided_by, reason):
        current = await _get_cert_request_or_raise(repo, request_id)
        raise ConflictError(f"This request has already been {current.status}.")
    logger.info("cert_request_denied request=%s by=%s", request_id, decided_by)
    return _cert_detail(await _get_cert_request_or_raise(repo, request_id))


async def list_certification_requests(
    repo: Repository,
    status: str | None = None,
    user_id: str | None = None,
) -> list[CertificationRequestDetail]:
    rows = await repo.get_certification_requests(status=status, user_id=user_id)
    return [_cert_detail(row) for row in rows]
