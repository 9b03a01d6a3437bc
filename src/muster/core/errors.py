"""Error taxonomy for the request lifecycle and inventory bookkeeping.

Errors carry a machine-readable ``kind`` plus the values needed to describe
them. Turning an error into user-facing text is a presentation concern and
lives in ``muster.discord.messages``.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    INSUFFICIENT_INVENTORY = "insufficient_inventory"
    INVENTORY_CONSISTENCY = "inventory_consistency"
    NOTIFICATION_DELIVERY = "notification_delivery"


class MusterError(Exception):
    """Base class for every domain error raised by Muster."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MusterError):
    """Missing or invalid input: unknown event/equipment, quantity below one."""

    kind = ErrorKind.VALIDATION


class ConflictError(MusterError):
    """Duplicate active request, or a decision on an already-decided request."""

    kind = ErrorKind.CONFLICT


class InsufficientInventoryError(MusterError):
    kind = ErrorKind.INSUFFICIENT_INVENTORY

    def __init__(self, equipment_name: str, requested: int, available: int) -> None:
        super().__init__(
            f"{requested} x {equipment_name} requested but only {available} available"
        )
        self.equipment_name = equipment_name
        self.requested = requested
        self.available = available


class InventoryConsistencyError(MusterError):
    """A release would push available_quantity above total_quantity.

    Means a reservation was returned twice. Never clamped; the transaction
    that triggered it is rolled back.
    """

    kind = ErrorKind.INVENTORY_CONSISTENCY

    def __init__(self, equipment_id: str, quantity: int) -> None:
        super().__init__(
            f"releasing {quantity} unit(s) of equipment {equipment_id} exceeds its total"
        )
        self.equipment_id = equipment_id
        self.quantity = quantity


class NotificationDeliveryError(MusterError):
    """A best-effort Discord send failed after the state change committed."""

    kind = ErrorKind.NOTIFICATION_DELIVERY
