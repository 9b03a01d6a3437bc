"""SQLAlchemy ORM models for the Muster database.

Tables: equipment, equipment_requests, certifications,
certification_requests, events, rsvps, sent_reminders and the
schema_migrations ledger.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def new_request_token() -> str:
    """Short public id embedded in button custom ids (``app_eq_<token>``)."""
    return secrets.token_hex(5)


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class EventRow(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    creator_id: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    time: Mapped[int] = mapped_column(Integer, nullable=False)  # UNIX seconds
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    image: Mapped[str | None] = mapped_column(String(512), nullable=True)
    message_id: Mapped[str | None] = mapped_column(String(30), nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(30), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    equipment_requests: Mapped[list[EquipmentRequestRow]] = relationship(
        back_populates="event",
    )
    rsvps: Mapped[list[RsvpRow]] = relationship(back_populates="event")

    __table_args__ = (Index("ix_events_time", "time"),)


class RsvpRow(Base):
    __tablename__ = "rsvps"

    event_id: Mapped[str] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(30), primary_key=True)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_now, onupdate=_now
    )

    event: Mapped[EventRow] = relationship(back_populates="rsvps")


class SentReminderRow(Base):
    """Marks an event whose reminder has been posted. Survives restarts."""

    __tablename__ = "sent_reminders"

    event_id: Mapped[str] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), primary_key=True
    )
    sent_at: Mapped[int] = mapped_column(Integer, nullable=False)  # UNIX seconds


class EquipmentRow(Base):
    __tablename__ = "equipment"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="Other")
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    available_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="available")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    requests: Mapped[list[EquipmentRequestRow]] = relationship(
        back_populates="equipment",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("available_quantity >= 0", name="ck_equipment_available_nonneg"),
        CheckConstraint(
            "available_quantity <= total_quantity", name="ck_equipment_available_le_total"
        ),
        Index("ix_equipment_category", "category"),
    )


class EquipmentRequestRow(Base):
    __tablename__ = "equipment_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    event_id: Mapped[str] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    equipment_id: Mapped[str] = mapped_column(
        ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    requested_by: Mapped[str] = mapped_column(String(30), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    request_id: Mapped[str | None] = mapped_column(
        String(20), nullable=True, unique=True, default=new_request_token
    )
    decided_by: Mapped[str | None] = mapped_column(String(30), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    event: Mapped[EventRow] = relationship(back_populates="equipment_requests")
    equipment: Mapped[EquipmentRow] = relationship(back_populates="requests")

    __table_args__ = (
        UniqueConstraint("event_id", "equipment_id", name="uq_equipment_request_pair"),
        CheckConstraint("quantity >= 1", name="ck_equipment_request_quantity_positive"),
        Index("ix_equipment_requests_status", "status"),
    )


class CertificationRow(Base):
    __tablename__ = "certifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    requests: Mapped[list[CertificationRequestRow]] = relationship(
        back_populates="certification",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class CertificationRequestRow(Base):
    """A user's request for a certification.

    One pending/approved request per (user_id, cert_id) is enforced by the
    lifecycle controller, not by a constraint: denied rows stay as history.
    """

    __tablename__ = "certification_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(30), nullable=False)
    cert_id: Mapped[str] = mapped_column(
        ForeignKey("certifications.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    approved_by: Mapped[str | None] = mapped_column(String(30), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    denied_by: Mapped[str | None] = mapped_column(String(30), nullable=True)
    denied_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    certification: Mapped[CertificationRow] = relationship(back_populates="requests")

    __table_args__ = (
        Index("ix_cert_requests_user_cert", "user_id", "cert_id"),
        Index("ix_cert_requests_status", "status"),
    )


class SchemaMigrationRow(Base):
    """Ledger of versioned migrations applied to this database."""

    __tablename__ = "schema_migrations"

    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
