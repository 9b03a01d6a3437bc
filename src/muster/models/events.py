"""Event and RSVP models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

RsvpStatus = Literal["yes", "no", "maybe"]

RSVP_STATUSES: tuple[RsvpStatus, ...] = ("yes", "no", "maybe")


class EventDetail(BaseModel):
    """An event as announced in Discord or posted by the dashboard."""

    id: str = ""
    creator_id: str = ""
    title: str
    description: str = ""
    time: int  # UNIX seconds
    location: str | None = None
    image: str | None = None
    message_id: str | None = None
    channel_id: str | None = None


class RsvpSummary(BaseModel):
    """User ids grouped by response."""

    yes: list[str] = Field(default_factory=list)
    no: list[str] = Field(default_factory=list)
    maybe: list[str] = Field(default_factory=list)

    @property
    def attending(self) -> list[str]:
        """Users to ping for reminders: yes first, then maybe."""
        return [*self.yes, *self.maybe]

    @property
    def total(self) -> int:
        return len(self.yes) + len(self.no) + len(self.maybe)


class PastEvent(BaseModel):
    """A finished event with the responses it collected."""

    event: EventDetail
    rsvps: RsvpSummary

    @property
    def participation_rate(self) -> int | None:
        """Percent of responders who said yes, or None without responses."""
        if not self.rsvps.total:
            return None
        return round(len(self.rsvps.yes) / self.rsvps.total * 100)
