"""Scheduled reclaimer.

``reclaim_ended_events`` is invoked by APScheduler every
``settings.muster_reclaim_interval_minutes``. Each tick returns the units held
by requests whose event has started and deletes those request rows.

Errors are logged but never propagated so the scheduler keeps running.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from muster.core.errors import MusterError
from muster.core.inventory import release_for_ended_events
from muster.db.engine import get_session
from muster.db.repository import Repository
from muster.models.inventory import ReclaimSummary

logger = logging.getLogger(__name__)


async def reclaim_ended_events(
    engine: AsyncEngine, now: int | None = None
) -> ReclaimSummary | None:
    """Run one sweep. Returns the summary, or None if the sweep failed."""
    now = int(time.time()) if now is None else now
    try:
        async with get_session(engine) as session:
            summary = await release_for_ended_events(Repository(session), now)
    except (SQLAlchemyError, MusterError):
        logger.exception("reclaim_sweep_failed now=%d", now)
        return None

    if summary.requests:
        logger.info(
            "reclaim_sweep events=%d requests=%d units=%d",
            summary.events,
            summary.requests,
            summary.units,
        )
    else:
        logger.debug("reclaim_sweep_noop now=%d", now)
    return summary
