"""Repository pattern for database access.

Wraps SQLAlchemy async sessions. Quantity and status changes are single
conditional UPDATE statements; the returned rowcount tells the caller whether
the guard in the WHERE clause held, so no read-modify-write races exist.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from muster.db.models import (
    CertificationRequestRow,
    CertificationRow,
    EquipmentRequestRow,
    EquipmentRow,
    EventRow,
    RsvpRow,
    SentReminderRow,
)

ACTIVE_STATUSES = ("pending", "approved")


class Repository:
    """Async repository for all database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Equipment ---

    async def create_equipment(
        self,
        name: str,
        total_quantity: int,
        category: str = "Other",
        description: str = "",
    ) -> EquipmentRow:
        row = EquipmentRow(
            name=name,
            category=category,
            total_quantity=total_quantity,
            available_quantity=total_quantity,
            description=description,
            status="available",
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_equipment(self, equipment_id: str) -> EquipmentRow | None:
        """Get an equipment row, refreshed from the database."""
        return await self.session.get(EquipmentRow, equipment_id, populate_existing=True)

    async def get_equipment_by_name(self, name: str) -> EquipmentRow | None:
        """Case-insensitive lookup by name."""
        stmt = (
            select(EquipmentRow)
            .where(func.lower(EquipmentRow.name) == name.lower())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_equipment(self, category: str | None = None) -> list[EquipmentRow]:
        stmt = select(EquipmentRow).order_by(EquipmentRow.category, EquipmentRow.name)
        if category:
            stmt = stmt.where(EquipmentRow.category == category)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def update_equipment_details(
        self,
        equipment_id: str,
        name: str | None = None,
        category: str | None = None,
        description: str | None = None,
    ) -> None:
        values: dict[str, str] = {}
        if name is not None:
            values["name"] = name
        if category is not None:
            values["category"] = category
        if description is not None:
            values["description"] = description
        if not values:
            return
        await self.session.execute(
            update(EquipmentRow)
            .where(EquipmentRow.id == equipment_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def adjust_total_quantity(self, equipment_id: str, delta: int) -> bool:
        """Shift total and available by *delta* together.

        Fails (returns False) when the shift would leave available below zero,
        i.e. when the new total is smaller than what is currently reserved.
        """
        stmt = (
            update(EquipmentRow)
            .where(
                EquipmentRow.id == equipment_id,
                EquipmentRow.available_quantity + delta >= 0,
            )
            .values(
                total_quantity=EquipmentRow.total_quantity + delta,
                available_quantity=EquipmentRow.available_quantity + delta,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def delete_equipment(self, equipment_id: str) -> bool:
        """Delete an equipment row and every request for it."""
        await self.session.execute(
            delete(EquipmentRequestRow)
            .where(EquipmentRequestRow.equipment_id == equipment_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            delete(EquipmentRow)
            .where(EquipmentRow.id == equipment_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def try_decrement_available(self, equipment_id: str, quantity: int) -> bool:
        """Subtract *quantity* from available if at least that much is available."""
        stmt = (
            update(EquipmentRow)
            .where(
                EquipmentRow.id == equipment_id,
                EquipmentRow.available_quantity >= quantity,
            )
            .values(available_quantity=EquipmentRow.available_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def try_increment_available(self, equipment_id: str, quantity: int) -> bool:
        """Add *quantity* back to available unless that would exceed the total."""
        stmt = (
            update(EquipmentRow)
            .where(
                EquipmentRow.id == equipment_id,
                EquipmentRow.available_quantity + quantity <= EquipmentRow.total_quantity,
            )
            .values(available_quantity=EquipmentRow.available_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def reset_all_available(self) -> int:
        """Set available = total on every row. Returns rows touched."""
        result = await self.session.execute(
            update(EquipmentRow)
            .values(available_quantity=EquipmentRow.total_quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # --- Equipment requests ---

    async def add_equipment_request(
        self,
        event_id: str,
        equipment_id: str,
        quantity: int,
        requested_by: str,
    ) -> EquipmentRequestRow:
        row = EquipmentRequestRow(
            event_id=event_id,
            equipment_id=equipment_id,
            quantity=quantity,
            requested_by=requested_by,
            status="pending",
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_equipment_request(self, request_id: str) -> EquipmentRequestRow | None:
        """Look up a request by its public ``request_id`` token."""
        stmt = (
            select(EquipmentRequestRow)
            .where(EquipmentRequestRow.request_id == request_id)
            .options(
                selectinload(EquipmentRequestRow.equipment),
                selectinload(EquipmentRequestRow.event),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_equipment_request_for_pair(
        self, event_id: str, equipment_id: str
    ) -> EquipmentRequestRow | None:
        stmt = (
            select(EquipmentRequestRow)
            .where(
                EquipmentRequestRow.event_id == event_id,
                EquipmentRequestRow.equipment_id == equipment_id,
            )
            .options(selectinload(EquipmentRequestRow.equipment))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_equipment_requests_for_event(
        self, event_id: str
    ) -> list[EquipmentRequestRow]:
        stmt = (
            select(EquipmentRequestRow)
            .where(EquipmentRequestRow.event_id == event_id)
            .options(selectinload(EquipmentRequestRow.equipment))
            .order_by(EquipmentRequestRow.requested_at)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_equipment_requests_by_status(
        self, statuses: Iterable[str]
    ) -> list[EquipmentRequestRow]:
        """Requests in any of *statuses*, oldest first, with equipment and event loaded."""
        stmt = (
            select(EquipmentRequestRow)
            .where(EquipmentRequestRow.status.in_(list(statuses)))
            .options(
                selectinload(EquipmentRequestRow.equipment),
                selectinload(EquipmentRequestRow.event),
            )
            .order_by(EquipmentRequestRow.requested_at)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_equipment_requests_for_ended_events(
        self, now: int
    ) -> list[EquipmentRequestRow]:
        """Every request attached to an event whose time is at or before *now*."""
        stmt = (
            select(EquipmentRequestRow)
            .join(EventRow, EventRow.id == EquipmentRequestRow.event_id)
            .where(EventRow.time <= now)
            .order_by(EquipmentRequestRow.event_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def decide_equipment_request(
        self,
        request_id: str,
        status: str,
        decided_by: str,
        reason: str | None = None,
    ) -> bool:
        """Compare-and-set pending -> *status*. False if the request wasn't pending."""
        stmt = (
            update(EquipmentRequestRow)
            .where(
                EquipmentRequestRow.request_id == request_id,
                EquipmentRequestRow.status == "pending",
            )
            .values(
                status=status,
                decided_by=decided_by,
                decided_at=datetime.now(UTC),
                denial_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def delete_equipment_request(
        self, row_id: str, statuses: Iterable[str] | None = None
    ) -> bool:
        """Delete one request row, optionally only while it has one of *statuses*."""
        stmt = delete(EquipmentRequestRow).where(EquipmentRequestRow.id == row_id)
        if statuses is not None:
            stmt = stmt.where(EquipmentRequestRow.status.in_(list(statuses)))
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete_all_equipment_requests(self) -> int:
        result = await self.session.execute(
            delete(EquipmentRequestRow).execution_options(synchronize_session=False)
        )
        return result.rowcount

    # --- Events ---

    async def create_event(
        self,
        creator_id: str,
        title: str,
        time: int,
        description: str = "",
        location: str | None = None,
        image: str | None = None,
    ) -> EventRow:
        row = EventRow(
            creator_id=creator_id,
            title=title,
            time=time,
            description=description,
            location=location,
            image=image,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_event(self, event_id: str) -> EventRow | None:
        return await self.session.get(EventRow, event_id, populate_existing=True)

    async def get_events(self, since: int | None = None, limit: int = 25) -> list[EventRow]:
        """Events ordered by start time; only those at or after *since* when given."""
        stmt = select(EventRow).order_by(EventRow.time).limit(limit)
        if since is not None:
            stmt = stmt.where(EventRow.time >= since)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def get_past_events(self, before: int, limit: int = 5) -> list[EventRow]:
        """Events that started before *before*, most recent first."""
        stmt = (
            select(EventRow)
            .where(EventRow.time < before)
            .order_by(EventRow.time.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_events_before(self, before: int) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(EventRow).where(EventRow.time < before)
        )
        return result.scalar_one()

    async def set_event_message(self, event_id: str, channel_id: str, message_id: str) -> bool:
        result = await self.session.execute(
            update(EventRow)
            .where(EventRow.id == event_id)
            .values(channel_id=channel_id, message_id=message_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete_event_rows(self, event_id: str) -> bool:
        """Delete an event and every row that hangs off it.

        Callers must release the event's reservations first.
        """
        for model in (RsvpRow, SentReminderRow, EquipmentRequestRow):
            await self.session.execute(
                delete(model)
                .where(model.event_id == event_id)
                .execution_options(synchronize_session=False)
            )
        result = await self.session.execute(
            delete(EventRow)
            .where(EventRow.id == event_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_events_due_for_reminder(self, start: int, end: int) -> list[EventRow]:
        """Events starting within [start, end] that have not had a reminder yet."""
        already_sent = select(SentReminderRow.event_id)
        stmt = (
            select(EventRow)
            .where(
                EventRow.time >= start,
                EventRow.time <= end,
                EventRow.id.not_in(already_sent),
            )
            .order_by(EventRow.time)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_reminder_sent(self, event_id: str, sent_at: int) -> None:
        self.session.add(SentReminderRow(event_id=event_id, sent_at=sent_at))
        await self.session.flush()

    async def prune_sent_reminders(self, before: int) -> int:
        """Drop reminder markers for events that started before *before*."""
        ended = select(EventRow.id).where(EventRow.time < before)
        result = await self.session.execute(
            delete(SentReminderRow)
            .where(SentReminderRow.event_id.in_(ended))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # --- RSVPs ---

    async def set_rsvp(self, event_id: str, user_id: str, status: str) -> RsvpRow:
        row = await self.session.get(RsvpRow, (event_id, user_id))
        if row is None:
            row = RsvpRow(event_id=event_id, user_id=user_id, status=status)
            self.session.add(row)
        else:
            row.status = status
        await self.session.flush()
        return row

    async def get_rsvps(self, event_id: str) -> list[RsvpRow]:
        stmt = (
            select(RsvpRow)
            .where(RsvpRow.event_id == event_id)
            .order_by(RsvpRow.updated_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # --- Certifications ---

    async def create_certification(self, name: str, description: str = "") -> CertificationRow:
        row = CertificationRow(name=name, description=description)
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_certification(self, cert_id: str) -> CertificationRow | None:
        return await self.session.get(CertificationRow, cert_id, populate_existing=True)

    async def get_certification_by_name(self, name: str) -> CertificationRow | None:
        stmt = select(CertificationRow).where(
            func.lower(CertificationRow.name) == name.lower()
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_certifications(self) -> list[CertificationRow]:
        stmt = select(CertificationRow).order_by(CertificationRow.name)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_certification(
        self, cert_id: str, name: str | None = None, description: str | None = None
    ) -> bool:
        values: dict[str, str] = {}
        if name is not None:
            values["name"] = name
        if description is not None:
            values["description"] = description
        if not values:
            return False
        result = await self.session.execute(
            update(CertificationRow)
            .where(CertificationRow.id == cert_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete_certification(self, cert_id: str) -> bool:
        await self.session.execute(
            delete(CertificationRequestRow)
            .where(CertificationRequestRow.cert_id == cert_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            delete(CertificationRow)
            .where(CertificationRow.id == cert_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # --- Certification requests ---

    async def add_certification_request(
        self, user_id: str, cert_id: str
    ) -> CertificationRequestRow:
        row = CertificationRequestRow(user_id=user_id, cert_id=cert_id, status="pending")
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_certification_request(
        self, request_id: str
    ) -> CertificationRequestRow | None:
        stmt = (
            select(CertificationRequestRow)
            .where(CertificationRequestRow.id == request_id)
            .options(selectinload(CertificationRequestRow.certification))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_certification_request(
        self, user_id: str, cert_id: str
    ) -> CertificationRequestRow | None:
        """The user's pending or approved request for *cert_id*, if any."""
        stmt = select(CertificationRequestRow).where(
            CertificationRequestRow.user_id == user_id,
            CertificationRequestRow.cert_id == cert_id,
            CertificationRequestRow.status.in_(ACTIVE_STATUSES),
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_certification_requests(
        self,
        status: str | None = None,
        user_id: str | None = None,
    ) -> list[CertificationRequestRow]:
        stmt = (
            select(CertificationRequestRow)
            .options(selectinload(CertificationRequestRow.certification))
            .order_by(CertificationRequestRow.requested_at)
        )
        if status is not None:
            stmt = stmt.where(CertificationRequestRow.status == status)
        if user_id is not None:
            stmt = stmt.where(CertificationRequestRow.user_id == user_id)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def approve_certification_request(self, request_id: str, approved_by: str) -> bool:
        """Compare-and-set pending -> approved."""
        stmt = (
            update(CertificationRequestRow)
            .where(
                CertificationRequestRow.id == request_id,
                CertificationRequestRow.status == "pending",
            )
            .values(status="approved", approved_by=approved_by, approved_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def deny_certification_request(
        self, request_id: str, denied_by: str, reason: str | None
    ) -> bool:
        """Compare-and-set pending -> denied."""
        stmt = (
            update(CertificationRequestRow)
            .where(
                CertificationRequestRow.id == request_id,
                CertificationRequestRow.status == "pending",
            )
            .values(
                status="denied",
                denied_by=denied_by,
                denied_at=datetime.now(UTC),
                denial_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
