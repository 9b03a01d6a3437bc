"""Event lifecycle: creation, deletion with reservation release, RSVPs."""

from __future__ import annotations

import logging

from muster.core import inventory
from muster.core.errors import ValidationError
from muster.db.models import EventRow
from muster.db.repository import Repository
from muster.models.events import RSVP_STATUSES, EventDetail, PastEvent, RsvpSummary
from muster.models.inventory import ReclaimSummary

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_HISTORY = 20


def event_detail(row: EventRow) -> EventDetail:
    return EventDetail(
        id=row.id,
        creator_id=row.creator_id,
        title=row.title,
        description=row.description or "",
        time=row.time,
        location=row.location,
        image=row.image,
        message_id=row.message_id,
        channel_id=row.channel_id,
    )


def parse_event_time(raw: str) -> int:
    """Parse a UNIX timestamp as typed into the create-event modal.

    Accepts plain seconds or Discord markup like ``<t:1700000000:F>``.
    """
    value = raw.strip()
    if value.startswith("<t:") and value.endswith(">"):
        value = value[3:-1].split(":", 1)[0]
    try:
        timestamp = int(value)
    except ValueError:
        raise ValidationError(
            "Event time must be a UNIX timestamp, e.g. `1735689600`."
        ) from None
    if timestamp <= 0:
        raise ValidationError("Event time must be a positive UNIX timestamp.")
    return timestamp


async def create_event(
    repo: Repository,
    creator_id: str,
    title: str,
    time: int,
    description: str = "",
    location: str | None = None,
    image: str | None = None,
) -> EventDetail:
    title = title.strip()
    if not title:
        raise ValidationError("Event title is required.")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Event title must be at most {MAX_TITLE_LENGTH} characters.")
    row = await repo.create_event(
        creator_id=creator_id,
        title=title,
        time=time,
        description=description.strip(),
        location=(location or "").strip() or None,
        image=(image or "").strip() or None,
    )
    logger.info("event_created event=%s creator=%s time=%d", row.id, creator_id, time)
    return event_detail(row)


async def get_event(repo: Repository, event_id: str) -> EventDetail:
    row = await repo.get_event(event_id)
    if row is None:
        raise ValidationError(f"No event found with ID `{event_id}`.")
    return event_detail(row)


async def list_events(
    repo: Repository, since: int | None = None, limit: int = 25
) -> list[EventDetail]:
    return [event_detail(row) for row in await repo.get_events(since=since, limit=limit)]


async def event_history(
    repo: Repository, before: int, limit: int = 5
) -> tuple[list[PastEvent], int]:
    """The most recent events that started before *before*, plus how many exist in all."""
    if not 1 <= limit <= MAX_HISTORY:
        raise ValidationError(f"Limit must be between 1 and {MAX_HISTORY}.")
    past = []
    for row in await repo.get_past_events(before, limit):
        rsvps = await get_rsvp_summary(repo, row.id)
        past.append(PastEvent(event=event_detail(row), rsvps=rsvps))
    return past, await repo.count_events_before(before)


async def delete_event(repo: Repository, event_id: str) -> tuple[EventDetail, ReclaimSummary]:
    """Release the event's reservations, then delete it and everything attached.

    One transaction: either the units come back and the rows go, or neither.
    """
    row = await repo.get_event(event_id)
    if row is None:
        raise ValidationError(f"No event found with ID `{event_id}`.")
    detail = event_detail(row)
    summary = await inventory.release_for_event(repo, event_id)
    await repo.delete_event_rows(event_id)
    logger.info(
        "event_deleted event=%s requests=%d units=%d",
        event_id,
        summary.requests,
        summary.units,
    )
    return detail, summary


async def record_announcement(
    repo: Repository, event_id: str, channel_id: str, message_id: str
) -> bool:
    """Remember where an event was announced. False if the event is unknown."""
    return await repo.set_event_message(event_id, channel_id, message_id)


async def set_rsvp(repo: Repository, event_id: str, user_id: str, status: str) -> RsvpSummary:
    if status not in RSVP_STATUSES:
        raise ValidationError(f"Unknown RSVP response `{status}`.")
    if await repo.get_event(event_id) is None:
        raise ValidationError("This event no longer exists.")
    await repo.set_rsvp(event_id, user_id, status)
    return await get_rsvp_summary(repo, event_id)


async def get_rsvp_summary(repo: Repository, event_id: str) -> RsvpSummary:
    summary = RsvpSummary()
    for rsvp in await repo.get_rsvps(event_id):
        getattr(summary, rsvp.status).append(rsvp.user_id)
    return summary
