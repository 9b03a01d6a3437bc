"""Request lifecycle models.

Controller operations return these detail snapshots so notifications can be
rendered after the session that produced them has committed and closed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

RequestStatus = Literal["pending", "approved", "denied"]


class EquipmentRequestDetail(BaseModel):
    """An equipment request with the names needed to describe it."""

    model_config = {"frozen": True}

    id: str
    request_id: str
    event_id: str
    event_title: str = ""
    event_time: int | None = None
    event_location: str | None = None
    equipment_id: str
    equipment_name: str
    equipment_category: str = "Other"
    quantity: int = Field(ge=1)
    requested_by: str
    status: RequestStatus = "pending"
    available_after: int | None = None  # equipment availability once the change landed
    decided_by: str | None = None
    decided_at: datetime | None = None
    denial_reason: str | None = None


class CertificationRequestDetail(BaseModel):
    """A certification request with the certification's name resolved."""

    model_config = {"frozen": True}

    id: str
    user_id: str
    cert_id: str
    cert_name: str
    cert_description: str = ""
    status: RequestStatus = "pending"
    requested_at: datetime | None = None
    decided_by: str | None = None
    denial_reason: str | None = None


class CertificationItem(BaseModel):
    """A certification users can request."""

    id: str
    name: str
    description: str = ""
