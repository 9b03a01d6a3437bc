"""Event reminders by simple polling.

``send_due_reminders`` runs every minute. Events starting ``lead_minutes``
from now (give or take ``REMINDER_WINDOW_SECONDS``) get one reminder. The
``sent_reminders`` marker is written in the same transaction that selects the
event, so a restart never repeats a reminder.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from muster.core.events import event_detail, get_rsvp_summary
from muster.db.engine import get_session
from muster.db.repository import Repository
from muster.models.events import EventDetail, RsvpSummary

logger = logging.getLogger(__name__)

REMINDER_WINDOW_SECONDS = 120
MARKER_RETENTION_SECONDS = 24 * 60 * 60

ReminderSender = Callable[[EventDetail, RsvpSummary, int], Awaitable[None]]


async def claim_due_reminders(
    repo: Repository, now: int, lead_minutes: int = 60
) -> list[tuple[EventDetail, RsvpSummary]]:
    """Mark every event due for a reminder as sent and return them."""
    target = now + lead_minutes * 60
    due = await repo.get_events_due_for_reminder(
        target - REMINDER_WINDOW_SECONDS, target + REMINDER_WINDOW_SECONDS
    )
    claimed: list[tuple[EventDetail, RsvpSummary]] = []
    for row in due:
        await repo.mark_reminder_sent(row.id, now)
        claimed.append((event_detail(row), await get_rsvp_summary(repo, row.id)))
    pruned = await repo.prune_sent_reminders(now - MARKER_RETENTION_SECONDS)
    if pruned:
        logger.debug("reminder_markers_pruned count=%d", pruned)
    return claimed


async def send_due_reminders(
    engine: AsyncEngine,
    send: ReminderSender,
    lead_minutes: int = 60,
    now: int | None = None,
) -> int:
    """Claim due reminders, then hand each to *send* after commit.

    Returns the number of reminders delivered. Failures are logged, never raised.
    """
    now = int(time.time()) if now is None else now
    try:
        async with get_session(engine) as session:
            claimed = await claim_due_reminders(Repository(session), now, lead_minutes)
    except SQLAlchemyError:
        logger.exception("reminder_sweep_failed now=%d", now)
        return 0

    delivered = 0
    for event, rsvps in claimed:
        try:
            await send(event, rsvps, lead_minutes)
            delivered += 1
            logger.info("reminder_sent event=%s attending=%d", event.id, len(rsvps.attending))
        except Exception:
            logger.exception("reminder_send_failed event=%s", event.id)
    return delivered
