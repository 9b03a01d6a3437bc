"""Rich Discord embed builders for Muster.

Builds discord.Embed objects for event announcements, equipment and
certification requests, inventory listings, and reminders. Each builder takes
domain models and returns a styled embed ready to send.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from muster.models.events import EventDetail, PastEvent, RsvpSummary
    from muster.models.inventory import EquipmentItem, ReclaimSummary
    from muster.models.requests import (
        CertificationItem,
        CertificationRequestDetail,
        EquipmentRequestDetail,
    )


COLOR_EVENT = 0x5865F2  # Blurple — event announcements
COLOR_PENDING = 0xFFA500  # Orange — awaiting a decision
COLOR_APPROVED = 0x2ECC71  # Green — approved
COLOR_DENIED = 0xE74C3C  # Red — denied / removed
COLOR_INVENTORY = 0x3498DB  # Blue — inventory listings
COLOR_CERT = 0x9B59B6  # Purple — certifications
COLOR_REMINDER = 0xF39C12  # Gold — reminders
COLOR_HISTORY = 0x95A5A6  # Grey: past events

FOOTER = "Muster"
FIELD_LIMIT = 1024
MAX_FIELDS = 25


def _mention_list(user_ids: list[str]) -> str:
    if not user_ids:
        return "No one"
    return _truncate("\n".join(f"<@{uid}>" for uid in user_ids))


def _truncate(text: str, limit: int = FIELD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def discord_time(timestamp: int, style: str = "F") -> str:
    return f"<t:{timestamp}:{style}>"


def _message_link(guild_id: int | None, event: EventDetail) -> str | None:
    if not (guild_id and event.channel_id and event.message_id):
        return None
    return f"https://discord.com/channels/{guild_id}/{event.channel_id}/{event.message_id}"


def build_event_embed(event: EventDetail, rsvps: RsvpSummary | None = None) -> discord.Embed:
    """Build the announcement embed for an event, with RSVP columns if given."""
    description = event.description.strip() or "No description provided."
    embed = discord.Embed(
        title=event.title,
        description=(
            f"{description}\n\n"
            f"**Event Time**: {discord_time(event.time)} ({discord_time(event.time, 'R')})\n\n"
            f"**Location**: {event.location or 'N/A'}"
        ),
        color=COLOR_EVENT,
    )
    if event.image:
        embed.set_thumbnail(url=event.image)
    if rsvps is not None:
        embed.add_field(
            name=f"Attending ({len(rsvps.yes)})", value=_mention_list(rsvps.yes), inline=True
        )
        embed.add_field(
            name=f"Not Attending ({len(rsvps.no)})", value=_mention_list(rsvps.no), inline=True
        )
        embed.add_field(
            name=f"Maybe ({len(rsvps.maybe)})", value=_mention_list(rsvps.maybe), inline=True
        )
    embed.set_footer(text=f"Event ID: {event.id or 'N/A'}")
    return embed


def build_event_list_embed(events: list[EventDetail]) -> discord.Embed:
    embed = discord.Embed(title="Upcoming Events", color=COLOR_EVENT)
    if not events:
        embed.description = "No upcoming events. Create one with `/create-event`."
        return embed
    for event in events[:MAX_FIELDS]:
        embed.add_field(
            name=event.title,
            value=(
                f"{discord_time(event.time)} ({discord_time(event.time, 'R')})\n"
                f"Location: {event.location or 'N/A'}\n"
                f"ID: `{event.id}`"
            ),
            inline=False,
        )
    embed.set_footer(text=FOOTER)
    return embed


def build_reminder_embed(event: EventDetail, lead_minutes: int) -> discord.Embed:
    embed = discord.Embed(
        title=f"Reminder: {event.title}",
        description=(
            f"Starts in about {lead_minutes} minutes, {discord_time(event.time, 'R')}.\n"
            f"**Location**: {event.location or 'N/A'}"
        ),
        color=COLOR_REMINDER,
    )
    embed.set_footer(text=f"Event ID: {event.id}")
    return embed


def build_manual_reminder_embed(
    event: EventDetail, note: str = "", guild_id: int | None = None
) -> discord.Embed:
    """Reminder an organizer sends by hand, with their optional note."""
    description = "This is a reminder that you're attending an event."
    if note.strip():
        description += f"\n\n**Message from organizer**: {_truncate(note.strip(), 1500)}"
    embed = discord.Embed(
        title=f"Reminder: {event.title}", description=description, color=COLOR_REMINDER
    )
    embed.add_field(
        name="When",
        value=f"{discord_time(event.time)} ({discord_time(event.time, 'R')})",
        inline=False,
    )
    embed.add_field(name="Location", value=event.location or "N/A", inline=False)
    link = _message_link(guild_id, event)
    if link:
        embed.add_field(name="Event Link", value=f"[Jump to Event]({link})", inline=False)
    embed.set_footer(text=f"Event ID: {event.id}")
    return embed


def build_event_history_embed(
    past: list[PastEvent], total: int, guild_id: int | None = None
) -> discord.Embed:
    embed = discord.Embed(
        title="Event History",
        description=f"Showing the last {len(past)} past events:",
        color=COLOR_HISTORY,
    )
    for entry in past[:MAX_FIELDS]:
        event, rsvps = entry.event, entry.rsvps
        lines = [
            f"**When**: {discord_time(event.time)}",
            f"**Location**: {event.location or 'Not specified'}",
            f"**Created by**: <@{event.creator_id}>" if event.creator_id else "",
            f"**Attendance**: {len(rsvps.yes)} attended, {len(rsvps.maybe)} maybe, "
            f"{len(rsvps.no)} declined",
        ]
        if entry.participation_rate is not None:
            lines.append(f"**Participation Rate**: {entry.participation_rate}%")
        link = _message_link(guild_id, event)
        if link:
            lines.append(f"[View Original Event]({link})")
        embed.add_field(
            name=f"{event.title} (ID: {event.id})"[:256],
            value=_truncate("\n".join(line for line in lines if line)),
            inline=False,
        )
    embed.set_footer(text=f"Showing {len(past)} of {total} past events")
    return embed


# ---------------------------------------------------------------------------
# Equipment requests
# ---------------------------------------------------------------------------


def _request_fields(embed: discord.Embed, detail: EquipmentRequestDetail) -> None:
    event_line = detail.event_title or detail.event_id
    if detail.event_time is not None:
        event_line += f"\n{discord_time(detail.event_time)}"
    embed.add_field(name="Event", value=event_line, inline=False)
    embed.add_field(
        name="Equipment",
        value=f"{detail.equipment_name} ({detail.equipment_category})",
        inline=True,
    )
    embed.add_field(name="Quantity", value=str(detail.quantity), inline=True)
    embed.add_field(name="Requested By", value=f"<@{detail.requested_by}>", inline=True)


def build_equipment_request_embed(detail: EquipmentRequestDetail) -> discord.Embed:
    """The pending request posted for admins, above the Approve/Deny buttons."""
    embed = discord.Embed(title="Equipment Request", color=COLOR_PENDING)
    _request_fields(embed, detail)
    if detail.available_after is not None:
        embed.add_field(
            name="Available After Reservation", value=str(detail.available_after), inline=True
        )
    embed.set_footer(text=f"Request ID: {detail.request_id}")
    return embed


def build_equipment_decision_embed(detail: EquipmentRequestDetail) -> discord.Embed:
    """The decided request: replaces the control message and is DMed to the requester."""
    approved = detail.status == "approved"
    embed = discord.Embed(
        title=f"Equipment Request {'Approved' if approved else 'Denied'}",
        color=COLOR_APPROVED if approved else COLOR_DENIED,
    )
    _request_fields(embed, detail)
    if detail.decided_by:
        embed.add_field(
            name="Approved By" if approved else "Denied By",
            value=f"<@{detail.decided_by}>",
            inline=True,
        )
    if not approved:
        embed.add_field(
            name="Reason", value=detail.denial_reason or "No reason provided.", inline=False
        )
    embed.set_footer(text=f"Request ID: {detail.request_id}")
    return embed


def build_equipment_request_list_embed(
    title: str, details: list[EquipmentRequestDetail]
) -> discord.Embed:
    """Requests listed one per line, e.g. an event's requests or the pending queue."""
    embed = discord.Embed(title=title, color=COLOR_INVENTORY)
    if not details:
        embed.description = "No equipment requests."
        return embed
    lines = [
        f"• **{d.equipment_name}** ({d.quantity}x) - {d.status} - <@{d.requested_by}>"
        + (f" - {d.event_title}" if d.event_title else "")
        + f" `{d.request_id}`"
        for d in details
    ]
    embed.description = _truncate("\n".join(lines), 4096)
    embed.set_footer(text=FOOTER)
    return embed


def build_deployed_equipment_embed(details: list[EquipmentRequestDetail]) -> discord.Embed:
    """Approved equipment for upcoming events, grouped by location."""
    embed = discord.Embed(title="Approved Equipment Deployed by Location", color=COLOR_INVENTORY)
    if not details:
        embed.description = "No upcoming events are currently using any approved equipment."
        return embed

    by_location: dict[str, dict[str, list[EquipmentRequestDetail]]] = defaultdict(dict)
    for detail in details:
        location = detail.event_location or "No location"
        by_location[location].setdefault(detail.event_id, []).append(detail)

    for location, events in list(by_location.items())[:MAX_FIELDS]:
        blocks = []
        for requests in events.values():
            head = requests[0]
            when = discord_time(head.event_time) if head.event_time is not None else ""
            lines = [
                f"  • **{r.equipment_name}** ({r.quantity}x) [{r.equipment_category}]"
                for r in requests
            ]
            blocks.append(f"**{head.event_title}** {when}\n" + "\n".join(lines))
        embed.add_field(name=location, value=_truncate("\n".join(blocks)), inline=False)
    embed.set_footer(text=FOOTER)
    return embed


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


def build_inventory_embed(items: list[EquipmentItem], category: str | None = None) -> discord.Embed:
    title = f"Inventory: {category}" if category else "Inventory"
    embed = discord.Embed(title=title, color=COLOR_INVENTORY)
    if not items:
        embed.description = "No equipment found. Add some with `/add-equipment`."
        return embed

    by_category: dict[str, list[EquipmentItem]] = defaultdict(list)
    for item in items:
        by_category[item.category].append(item)
    for name, group in list(by_category.items())[:MAX_FIELDS]:
        lines = [
            f"**{item.name}**: {item.available_quantity}/{item.total_quantity} available"
            + ("" if item.status == "available" else f" ({item.status})")
            + f" `{item.id}`"
            for item in group
        ]
        embed.add_field(name=name, value=_truncate("\n".join(lines)), inline=False)
    embed.set_footer(text=FOOTER)
    return embed


def build_equipment_item_embed(item: EquipmentItem, title: str) -> discord.Embed:
    embed = discord.Embed(title=title, color=COLOR_INVENTORY)
    embed.add_field(name="Name", value=item.name, inline=True)
    embed.add_field(name="Category", value=item.category, inline=True)
    embed.add_field(
        name="Available",
        value=f"{item.available_quantity}/{item.total_quantity}",
        inline=True,
    )
    embed.add_field(name="Status", value=item.status.capitalize(), inline=True)
    if item.description:
        embed.add_field(name="Description", value=_truncate(item.description), inline=False)
    embed.set_footer(text=f"Equipment ID: {item.id}")
    return embed


def build_reset_embed(summary: ReclaimSummary) -> discord.Embed:
    return discord.Embed(
        title="Inventory Reset",
        description=(
            f"All equipment is back to full availability.\n"
            f"Requests cleared: {summary.requests}\n"
            f"Units returned: {summary.units}"
        ),
        color=COLOR_DENIED,
    )


# ---------------------------------------------------------------------------
# Certifications
# ---------------------------------------------------------------------------


def build_cert_request_embed(
    user_id: str,
    cert_name: str,
    cert_description: str,
    request_id: str,
    requested_at: int | None = None,
) -> discord.Embed:
    """The pending certification request posted for admins."""
    requested_at = int(time.time()) if requested_at is None else requested_at
    embed = discord.Embed(
        title="Certification Request",
        description=f"User: <@{user_id}>",
        color=COLOR_PENDING,
    )
    embed.add_field(name="Certification", value=cert_name, inline=True)
    embed.add_field(
        name="Description", value=_truncate(cert_description or "No description"), inline=False
    )
    embed.add_field(name="Requested At", value=discord_time(requested_at), inline=True)
    embed.add_field(name="Request ID", value=request_id, inline=True)
    return embed


def build_cert_decision_embed(detail: CertificationRequestDetail) -> discord.Embed:
    approved = detail.status == "approved"
    embed = discord.Embed(
        title=f"Certification Request {'Approved' if approved else 'Denied'}",
        description=f"User: <@{detail.user_id}>",
        color=COLOR_APPROVED if approved else COLOR_DENIED,
    )
    embed.add_field(name="Certification", value=detail.cert_name, inline=True)
    if detail.decided_by:
        embed.add_field(
            name="Approved By" if approved else "Denied By",
            value=f"<@{detail.decided_by}>",
            inline=True,
        )
    if not approved:
        embed.add_field(
            name="Reason", value=detail.denial_reason or "No reason provided.", inline=False
        )
    embed.set_footer(text=f"Request ID: {detail.id}")
    return embed


def build_cert_list_embed(certs: list[CertificationItem]) -> discord.Embed:
    embed = discord.Embed(title="Certifications", color=COLOR_CERT)
    if not certs:
        embed.description = "No certifications yet."
        return embed
    for cert in certs[:MAX_FIELDS]:
        embed.add_field(
            name=cert.name,
            value=_truncate(f"{cert.description or 'No description'}\nID: `{cert.id}`"),
            inline=False,
        )
    embed.set_footer(text=FOOTER)
    return embed


def build_cert_requests_embed(
    title: str, details: list[CertificationRequestDetail]
) -> discord.Embed:
    embed = discord.Embed(title=title, color=COLOR_CERT)
    if not details:
        embed.description = "No certification requests."
        return embed
    lines = [
        f"• **{d.cert_name}** - {d.status} - <@{d.user_id}> `{d.id}`" for d in details
    ]
    embed.description = _truncate("\n".join(lines), 4096)
    embed.set_footer(text=FOOTER)
    return embed
