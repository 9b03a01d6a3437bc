"""Inventory models: equipment snapshots and reclaim summaries."""

from __future__ import annotations

from pydantic import BaseModel, Field

EQUIPMENT_CATEGORIES = (
    "Weapons",
    "Vehicles",
    "Communications",
    "Medical",
    "Tactical",
    "Other",
)


class EquipmentItem(BaseModel):
    """A point-in-time view of one equipment row."""

    id: str
    name: str
    category: str = "Other"
    total_quantity: int = Field(ge=0)
    available_quantity: int = Field(ge=0)
    description: str = ""
    status: str = "available"

    @property
    def reserved_quantity(self) -> int:
        return self.total_quantity - self.available_quantity


class ReclaimSummary(BaseModel):
    """What a release sweep or reset returned to the pool."""

    requests: int = 0  # request rows deleted
    units: int = 0  # quantity added back to available
    events: int = 0  # distinct events swept
