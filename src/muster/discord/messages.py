"""User-facing text for domain errors.

Errors are raised with structured data; this module is the only place that
turns them into sentences.
"""

from __future__ import annotations

from muster.core.errors import (
    ErrorKind,
    InsufficientInventoryError,
    MusterError,
)

GENERIC_FAILURE = (
    "Something went wrong while handling that. Nothing was changed -- "
    "try again in a moment, and if it keeps failing let an admin know."
)

DATABASE_UNAVAILABLE = (
    "The database is temporarily unavailable. Try again in a moment -- "
    "if this persists, let an admin know."
)

ADMIN_ONLY = "Only admins can do that."


def render_error(error: MusterError) -> str:
    """Render a domain error as a short ephemeral reply."""
    if isinstance(error, InsufficientInventoryError):
        return (
            f"Not enough **{error.equipment_name}** available: "
            f"you asked for {error.requested}, only {error.available} left."
        )
    if error.kind is ErrorKind.INVENTORY_CONSISTENCY:
        return (
            "The inventory count for this equipment doesn't add up, so nothing "
            "was changed. An admin should check the logs or run `/reset-inventory`."
        )
    if error.kind is ErrorKind.NOTIFICATION_DELIVERY:
        return "The change was saved, but the notification could not be delivered."
    return error.message
