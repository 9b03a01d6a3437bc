"""Discord UI components: persistent buttons and modals.

Buttons are ``DynamicItem`` subclasses whose custom ids carry the id they act
on, so controls keep working after a restart and for messages posted through
the HTTP API. Every class is registered with the bot via ``DYNAMIC_ITEMS``.

Custom id formats:
    app_eq_<request_id> / den_eq_<request_id>       equipment request decision
    cert_approve_<id> / cert_deny_<id>              certification request decision
    rsvp_<event_id>_<yes|no|maybe>                  event RSVP
    check_equipment_<event_id>                      list an event's equipment
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import discord
from sqlalchemy.exc import SQLAlchemyError

from muster.core.errors import MusterError
from muster.core.events import (
    create_event,
    get_event,
    parse_event_time,
    record_announcement,
    set_rsvp,
)
from muster.core.requests import (
    approve_certification_request,
    approve_equipment_request,
    deny_certification_request,
    deny_equipment_request,
    list_event_equipment_requests,
)
from muster.discord.embeds import (
    build_cert_decision_embed,
    build_equipment_decision_embed,
    build_equipment_request_list_embed,
    build_event_embed,
)
from muster.discord.helpers import db_session, notify_user
from muster.discord.messages import ADMIN_ONLY, GENERIC_FAILURE, render_error

if TYPE_CHECKING:
    from muster.discord.bot import MusterBot

logger = logging.getLogger(__name__)


def _bot(interaction: discord.Interaction) -> MusterBot:
    return interaction.client  # type: ignore[return-value]


async def _require_admin(interaction: discord.Interaction) -> bool:
    """Reply with a rejection and return False unless the user is an admin."""
    bot = _bot(interaction)
    if await bot.admin_checker.is_admin(interaction.user, interaction.guild):
        return True
    await interaction.response.send_message(ADMIN_ONLY, ephemeral=True)
    return False


# ---------------------------------------------------------------------------
# Equipment request decisions
# ---------------------------------------------------------------------------


async def decide_equipment_request(
    interaction: discord.Interaction,
    request_id: str,
    *,
    approve: bool,
    reason: str | None = None,
) -> None:
    """Apply an admin's decision, then update the control message and DM the requester."""
    bot = _bot(interaction)
    decided_by = str(interaction.user.id)
    try:
        async with db_session(bot.engine) as repo:
            if approve:
                detail = await approve_equipment_request(repo, request_id, decided_by)
            else:
                detail = await deny_equipment_request(repo, request_id, decided_by, reason)
    except MusterError as exc:
        await interaction.response.send_message(render_error(exc), ephemeral=True)
        return
    except SQLAlchemyError:
        logger.exception("equipment_decision_failed request=%s", request_id)
        await interaction.response.send_message(GENERIC_FAILURE, ephemeral=True)
        return

    embed = build_equipment_decision_embed(detail)
    try:
        await interaction.response.edit_message(embed=embed, view=None)
    except discord.HTTPException:
        logger.warning("equipment_decision_message_edit_failed request=%s", request_id)
    await notify_user(bot, detail.requested_by, embed=embed)


class EquipmentApproveButton(
    discord.ui.DynamicItem[discord.ui.Button],
    template=r"app_eq_(?P<request_id>[\w-]+)",
):
    def __init__(self, request_id: str) -> None:
        super().__init__(
            discord.ui.Button(
                label="Approve",
                style=discord.ButtonStyle.green,
                custom_id=f"app_eq_{request_id}",
            )
        )
        self.request_id = request_id

    @classmethod
    async def from_custom_id(
        cls,
        interaction: discord.Interaction,  # noqa: ARG003
        item: discord.ui.Button,  # noqa: ARG003
        match: re.Match[str],
        /,
    ) -> EquipmentApproveButton:
        return cls(match["request_id"])

    async def callback(self, interaction: discord.Interaction) -> None:
        if not await _require_admin(interaction):
            return
        await decide_equipment_request(interaction, self.request_id, approve=True)


class EquipmentDenyButton(
    discord.ui.DynamicItem[discord.ui.Button],
    template=r"den_eq_(?P<request_id>[\w-]+)",
):
    def __init__(self, request_id: str) -> None:
        super().__init__(
            discord.ui.Button(
                label="Deny",
                style=discord.ButtonStyle.red,
                custom_id=f"den_eq_{request_id}",
            )
        )
        self.request_id = request_id

    @classmethod
    async def from_custom_id(
        cls,
        interaction: discord.Interaction,  # noqa: ARG003
        item: discord.ui.Button,  # noqa: ARG003
        match: re.Match[str],
        /,
    ) -> EquipmentDenyButton:
        return cls(match["request_id"])

    async def callback(self, interaction: discord.Interaction) -> None:
        if not await _require_admin(interaction):
            return
        await interaction.response.send_modal(EquipmentDenyReasonModal(request_id=self.request_id))


class EquipmentDenyReasonModal(discord.ui.Modal, title="Deny Equipment Request"):
    """Text input for the admin's denial reason."""

    reason = discord.ui.TextInput(
        label="Reason for denial",
        style=discord.TextStyle.paragraph,
        placeholder="Why is this request being denied?",
        required=False,
        max_length=500,
    )

    def __init__(self, *, request_id: str) -> None:
        super().__init__()
        self.request_id = request_id

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await decide_equipment_request(
            interaction, self.request_id, approve=False, reason=self.reason.value
        )


def build_equipment_request_view(request_id: str) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(EquipmentApproveButton(request_id))
    view.add_item(EquipmentDenyButton(request_id))
    return view


# ---------------------------------------------------------------------------
# Certification request decisions
# ---------------------------------------------------------------------------


async def decide_certification_request(
    interaction: discord.Interaction,
    request_id: str,
    *,
    approve: bool,
    reason: str | None = None,
) -> None:
    bot = _bot(interaction)
    decided_by = str(interaction.user.id)
    try:
        async with db_session(bot.engine) as repo:
            if approve:
                detail = await approve_certification_request(repo, request_id, decided_by)
            else:
                detail = await deny_certification_request(repo, request_id, decided_by, reason)
    except MusterError as exc:
        await interaction.response.send_message(render_error(exc), ephemeral=True)
        return
    except SQLAlchemyError:
        logger.exception("cert_decision_failed request=%s", request_id)
        await interaction.response.send_message(GENERIC_FAILURE, ephemeral=True)
        return

    embed = build_cert_decision_embed(detail)
    try:
        await interaction.response.edit_message(embed=embed, view=None)
    except discord.HTTPException:
        logger.warning("cert_decision_message_edit_failed request=%s", request_id)
    await notify_user(bot, detail.user_id, embed=embed)


class CertApproveButton(
    discord.ui.DynamicItem[discord.ui.Button],
    template=r"cert_approve_(?P<request_id>[\w-]+)",
):
    def __init__(self, request_id: str) -> None:
        super().__init__(
            discord.ui.Button(
                label="Approve",
                style=discord.ButtonStyle.green,
                custom_id=f"cert_approve_{request_id}",
            )
        )
        self.request_id = request_id

    @classmethod
    async def from_custom_id(
        cls,
        interaction: discord.Interaction,  # noqa: ARG003
        item: discord.ui.Button,  # noqa: ARG003
        match: re.Match[str],
        /,
    ) -> CertApproveButton:
        return cls(match["request_id"])

    async def callback(self, interaction: discord.Interaction) -> None:
        if not await _require_admin(interaction):
            return
        await decide_certification_request(interaction, self.request_id, approve=True)


class CertDenyButton(
    discord.ui.DynamicItem[discord.ui.Button],
    template=r"cert_deny_(?P<request_id>[\w-]+)",
):
    def __init__(self, request_id: str) -> None:
        super().__init__(
            discord.ui.Button(
                label="Deny",
                style=discord.ButtonStyle.red,
                custom_id=f"cert_deny_{request_id}",
            )
        )
        self.request_id = request_id

    @classmethod
    async def from_custom_id(
        cls,
        interaction: discord.Interaction,  # noqa: ARG003
        item: discord.ui.Button,  # noqa: ARG003
        match: re.Match[str],
        /,
    ) -> CertDenyButton:
        return cls(match["request_id"])

    async def callback(self, interaction: discord.Interaction) -> None:
        if not await _require_admin(interaction):
            return
        await interaction.response.send_modal(CertDenyReasonModal(request_id=self.request_id))


class CertDenyReasonModal(discord.ui.Modal, title="Deny Certification Request"):
    reason = discord.ui.TextInput(
        label="Reason for denial",
        style=discord.TextStyle.paragraph,
        placeholder="What does the requester still need to do?",
        required=False,
        max_length=500,
    )

    def __init__(self, *, request_id: str) -> None:
        super().__init__()
        self.request_id = request_id

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await decide_certification_request(
            interaction, self.request_id, approve=False, reason=self.reason.value
        )


def build_cert_request_view(request_id: str) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(CertApproveButton(request_id))
    view.add_item(CertDenyButton(request_id))
    return view


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

RSVP_LABELS = {"yes": "Attending", "no": "Not Attending", "maybe": "Maybe"}
RSVP_STYLES = {
    "yes": discord.ButtonStyle.green,
    "no": discord.ButtonStyle.red,
    "maybe": discord.ButtonStyle.secondary,
}


class RsvpButton(
    discord.ui.DynamicItem[discord.ui.Button],
    template=r"rsvp_(?P<event_id>[\w-]+)_(?P<status>yes|no|maybe)",
):
    def __init__(self, event_id: str, status: str) -> None:
        super().__init__(
            discord.ui.Button(
                label=RSVP_LABELS[status],
                style=RSVP_STYLES[status],
                custom_id=f"rsvp_{event_id}_{status}",
            )
        )
        self.event_id = event_id
        self.status = status

    @classmethod
    async def from_custom_id(
        cls,
        interaction: discord.Interaction,  # noqa: ARG003
        item: discord.ui.Button,  # noqa: ARG003
        match: re.Match[str],
        /,
    ) -> RsvpButton:
        return cls(match["event_id"], match["status"])

    async def callback(self, interaction: discord.Interaction) -> None:
        bot = _bot(interaction)
        try:
            async with db_session(bot.engine) as repo:
                rsvps = await set_rsvp(repo, self.event_id, str(interaction.user.id), self.status)
                event = await get_event(repo, self.event_id)
        except MusterError as exc:
            await interaction.response.send_message(render_error(exc), ephemeral=True)
            return
        except SQLAlchemyError:
            logger.exception("rsvp_failed event=%s", self.event_id)
            await interaction.response.send_message(GENERIC_FAILURE, ephemeral=True)
            return

        await interaction.response.edit_message(
            embed=build_event_embed(event, rsvps),
            view=build_event_view(self.event_id),
        )


class EventEquipmentButton(
    discord.ui.DynamicItem[discord.ui.Button],
    template=r"check_equipment_(?P<event_id>[\w-]+)",
):
    def __init__(self, event_id: str) -> None:
        super().__init__(
            discord.ui.Button(
                label="Equipment",
                style=discord.ButtonStyle.blurple,
                custom_id=f"check_equipment_{event_id}",
            )
        )
        self.event_id = event_id

    @classmethod
    async def from_custom_id(
        cls,
        interaction: discord.Interaction,  # noqa: ARG003
        item: discord.ui.Button,  # noqa: ARG003
        match: re.Match[str],
        /,
    ) -> EventEquipmentButton:
        return cls(match["event_id"])

    async def callback(self, interaction: discord.Interaction) -> None:
        bot = _bot(interaction)
        try:
            async with db_session(bot.engine) as repo:
                event = await get_event(repo, self.event_id)
                details = await list_event_equipment_requests(repo, self.event_id)
        except MusterError as exc:
            await interaction.response.send_message(render_error(exc), ephemeral=True)
            return
        except SQLAlchemyError:
            logger.exception("event_equipment_lookup_failed event=%s", self.event_id)
            await interaction.response.send_message(GENERIC_FAILURE, ephemeral=True)
            return

        await interaction.response.send_message(
            embed=build_equipment_request_list_embed(f"Equipment for {event.title}", details),
            ephemeral=True,
        )


def build_event_view(event_id: str) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    for status in ("yes", "no", "maybe"):
        view.add_item(RsvpButton(event_id, status))
    view.add_item(EventEquipmentButton(event_id))
    return view


def build_event_equipment_view(event_id: str) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(EventEquipmentButton(event_id))
    return view


class CreateEventModal(discord.ui.Modal, title="Create Event"):
    """Collects the event fields, then posts the announcement in the current channel."""

    event_title = discord.ui.TextInput(label="Title", max_length=200)
    description = discord.ui.TextInput(
        label="Description",
        style=discord.TextStyle.paragraph,
        required=False,
        max_length=2000,
    )
    event_time = discord.ui.TextInput(
        label="Time (UNIX timestamp)",
        placeholder="1735689600",
        max_length=40,
    )
    location = discord.ui.TextInput(label="Location", required=False, max_length=200)
    image = discord.ui.TextInput(label="Image URL", required=False, max_length=512)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        bot = _bot(interaction)
        try:
            timestamp = parse_event_time(self.event_time.value)
            async with db_session(bot.engine) as repo:
                event = await create_event(
                    repo,
                    creator_id=str(interaction.user.id),
                    title=self.event_title.value,
                    time=timestamp,
                    description=self.description.value or "",
                    location=self.location.value or None,
                    image=self.image.value or None,
                )
        except MusterError as exc:
            await interaction.response.send_message(render_error(exc), ephemeral=True)
            return
        except SQLAlchemyError:
            logger.exception("create_event_failed")
            await interaction.response.send_message(GENERIC_FAILURE, ephemeral=True)
            return

        await interaction.response.send_message(
            embed=build_event_embed(event), view=build_event_view(event.id)
        )
        try:
            message = await interaction.original_response()
            async with db_session(bot.engine) as repo:
                await record_announcement(repo, event.id, str(message.channel.id), str(message.id))
        except (discord.HTTPException, SQLAlchemyError):
            logger.warning("event_announcement_not_recorded event=%s", event.id)


DYNAMIC_ITEMS: tuple[type[discord.ui.DynamicItem], ...] = (
    EquipmentApproveButton,
    EquipmentDenyButton,
    CertApproveButton,
    CertDenyButton,
    RsvpButton,
    EventEquipmentButton,
)
