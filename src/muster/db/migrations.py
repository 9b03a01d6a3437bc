"""Versioned schema migrations, applied once each at startup.

``create_all`` builds any missing tables; the ``MIGRATIONS`` list then
upgrades tables created by older releases. Every applied version is
recorded in ``schema_migrations`` so a migration never runs twice.

Add new entries at the end with the next version number. Never edit or
reorder an entry that has shipped.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import insert, select, text
from sqlalchemy.ext.asyncio import AsyncConnection

from muster.db.models import Base, SchemaMigrationRow, new_request_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    apply: Callable[[AsyncConnection], Awaitable[None]]


async def table_columns(conn: AsyncConnection, table: str) -> set[str]:
    """Return the column names of *table* (empty if the table doesn't exist)."""
    result = await conn.execute(text(f"PRAGMA table_info({table})"))
    return {row[1] for row in result}


async def _add_column_if_missing(
    conn: AsyncConnection,
    table: str,
    column: str,
    col_def: str,
) -> bool:
    """Add a nullable column to an existing table if it isn't there yet."""
    if column in await table_columns(conn, table):
        return False
    await conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_def}"))
    logger.info("migration: added %s.%s", table, column)
    return True


async def _equipment_request_tokens(conn: AsyncConnection) -> None:
    """Give every equipment request a public ``request_id`` token."""
    await _add_column_if_missing(conn, "equipment_requests", "request_id", "VARCHAR(20)")
    result = await conn.execute(
        text("SELECT id FROM equipment_requests WHERE request_id IS NULL")
    )
    missing = [row[0] for row in result]
    for row_id in missing:
        await conn.execute(
            text("UPDATE equipment_requests SET request_id = :token WHERE id = :id"),
            {"token": new_request_token(), "id": row_id},
        )
    await conn.execute(
        text(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_equipment_requests_request_id "
            "ON equipment_requests (request_id)"
        )
    )
    if missing:
        logger.info("migration: backfilled %d equipment request tokens", len(missing))


async def _events_location(conn: AsyncConnection) -> None:
    await _add_column_if_missing(conn, "events", "location", "VARCHAR(200)")


async def _events_drop_duration(conn: AsyncConnection) -> None:
    """One-time destructive step: ``location`` replaced the free-text ``duration``.

    SQLite rebuilds the table internally for DROP COLUMN; existing rows and
    their ids are preserved.
    """
    if "duration" in await table_columns(conn, "events"):
        await conn.execute(text("ALTER TABLE events DROP COLUMN duration"))
        logger.warning("migration: dropped legacy column events.duration")


async def _request_decision_columns(conn: AsyncConnection) -> None:
    await _add_column_if_missing(conn, "equipment_requests", "decided_by", "VARCHAR(30)")
    await _add_column_if_missing(conn, "equipment_requests", "decided_at", "DATETIME")
    await _add_column_if_missing(conn, "equipment_requests", "denial_reason", "TEXT")
    await _add_column_if_missing(conn, "certification_requests", "approved_by", "VARCHAR(30)")
    await _add_column_if_missing(conn, "certification_requests", "approved_at", "DATETIME")
    await _add_column_if_missing(conn, "certification_requests", "denied_by", "VARCHAR(30)")
    await _add_column_if_missing(conn, "certification_requests", "denied_at", "DATETIME")
    await _add_column_if_missing(conn, "certification_requests", "denial_reason", "TEXT")


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "equipment_request_tokens", _equipment_request_tokens),
    Migration(2, "events_location", _events_location),
    Migration(3, "events_drop_duration", _events_drop_duration),
    Migration(4, "request_decision_columns", _request_decision_columns),
)


async def apply_migrations(conn: AsyncConnection) -> list[str]:
    """Create missing tables, then apply every pending migration in order.

    Safe to call on every startup. Returns the names of the migrations
    applied by this call.
    """
    await conn.run_sync(Base.metadata.create_all)

    result = await conn.execute(select(SchemaMigrationRow.version))
    done = {row[0] for row in result}

    applied: list[str] = []
    for migration in MIGRATIONS:
        if migration.version in done:
            continue
        await migration.apply(conn)
        await conn.execute(
            insert(SchemaMigrationRow).values(
                version=migration.version,
                name=migration.name,
                applied_at=datetime.now(UTC),
            )
        )
        applied.append(migration.name)
        logger.info("migration_applied version=%d name=%s", migration.version, migration.name)
    return applied
