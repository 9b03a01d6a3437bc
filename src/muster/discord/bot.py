"""Discord bot for Muster.

Runs alongside FastAPI using the same event loop. Registers the slash
commands, the persistent request/RSVP buttons, and exposes the Discord-side
operations the internal HTTP API calls (post and delete announcements, list
channels, post certification requests).

The bot is optional: if DISCORD_BOT_TOKEN is not set, nothing starts.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING

import discord
from discord import Intents, app_commands
from discord.ext import commands
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from muster.core import certifications as cert_catalog
from muster.core import inventory
from muster.core import requests as lifecycle
from muster.core.errors import MusterError, NotificationDeliveryError
from muster.core.events import (
    delete_event,
    event_history,
    get_event,
    get_rsvp_summary,
    list_events,
)
from muster.discord.embeds import (
    build_cert_list_embed,
    build_cert_request_embed,
    build_cert_requests_embed,
    build_deployed_equipment_embed,
    build_equipment_decision_embed,
    build_equipment_item_embed,
    build_equipment_request_embed,
    build_equipment_request_list_embed,
    build_event_embed,
    build_event_history_embed,
    build_event_list_embed,
    build_inventory_embed,
    build_manual_reminder_embed,
    build_reminder_embed,
    build_reset_embed,
)
from muster.discord.helpers import (
    AdminChecker,
    ChannelNotFound,
    MessageNotFound,
    db_session,
    fetch_text_channel,
    notify_user,
)
from muster.discord.messages import (
    ADMIN_ONLY,
    DATABASE_UNAVAILABLE,
    GENERIC_FAILURE,
    render_error,
)
from muster.discord.views import (
    DYNAMIC_ITEMS,
    CreateEventModal,
    build_cert_request_view,
    build_equipment_request_view,
    build_event_equipment_view,
    build_event_view,
)
from muster.models.inventory import EQUIPMENT_CATEGORIES

if TYPE_CHECKING:
    from muster.config import Settings
    from muster.models.events import EventDetail, RsvpSummary
    from muster.models.requests import EquipmentRequestDetail

logger = logging.getLogger(__name__)

CATEGORY_CHOICES = [app_commands.Choice(name=c, value=c) for c in EQUIPMENT_CATEGORIES]
CERT_STATUS_CHOICES = [
    app_commands.Choice(name=s.title(), value=s) for s in ("pending", "approved", "denied")
]
AUTOCOMPLETE_LIMIT = 25


class MusterBot(commands.Bot):
    """The Muster Discord bot.

    Runs in-process with FastAPI. Provides slash commands for events,
    equipment requests, inventory and certifications, and the buttons that
    approve or deny requests.
    """

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        admin_checker: AdminChecker | None = None,
    ) -> None:
        intents = Intents.default()
        intents.members = True  # Admin-role checks on members outside the cache

        super().__init__(
            command_prefix="!",
            intents=intents,
            description="Muster -- events, equipment and certifications.",
        )
        self.settings = settings
        self.engine = engine
        self.admin_checker = admin_checker or AdminChecker(
            settings.discord_admin_role_id,
            ttl_seconds=settings.muster_admin_cache_ttl_seconds,
        )
        self._setup_commands()

    def _setup_commands(self) -> None:
        """Register slash commands on the bot's command tree."""

        async def event_autocomplete(
            interaction: discord.Interaction, current: str
        ) -> list[app_commands.Choice[str]]:
            return await self._event_choices(current)

        async def equipment_autocomplete(
            interaction: discord.Interaction, current: str
        ) -> list[app_commands.Choice[str]]:
            return await self._equipment_choices(current)

        async def cert_autocomplete(
            interaction: discord.Interaction, current: str
        ) -> list[app_commands.Choice[str]]:
            return await self._cert_choices(current)

        # --- Events ---

        @self.tree.command(name="create-event", description="Create and announce an event")
        async def create_event_command(interaction: discord.Interaction) -> None:
            await interaction.response.send_modal(CreateEventModal())

        @self.tree.command(name="list-events", description="List upcoming events")
        async def list_events_command(interaction: discord.Interaction) -> None:
            await self._handle_list_events(interaction)

        @self.tree.command(name="event-info", description="Show an event with its RSVPs")
        @app_commands.describe(event_id="The event to show")
        async def event_info_command(interaction: discord.Interaction, event_id: str) -> None:
            await self._handle_event_info(interaction, event_id)

        @self.tree.command(name="delete-event", description="Delete an event you created")
        @app_commands.describe(event_id="The event to delete")
        async def delete_event_command(interaction: discord.Interaction, event_id: str) -> None:
            await self._handle_delete_event(interaction, event_id)

        @self.tree.command(name="event-history", description="Show past events with attendance")
        @app_commands.describe(limit="How many past events to show (default 5, max 20)")
        async def event_history_command(
            interaction: discord.Interaction, limit: app_commands.Range[int, 1, 20] = 5
        ) -> None:
            await self._handle_event_history(interaction, limit)

        @self.tree.command(name="remind-event", description="Ping everyone attending an event")
        @app_commands.describe(
            event_id="The event to send a reminder for",
            message="Optional note to include with the reminder",
        )
        async def remind_event_command(
            interaction: discord.Interaction, event_id: str, message: str = ""
        ) -> None:
            await self._handle_remind_event(interaction, event_id, message)

        # --- Equipment requests ---

        equipment_request = app_commands.Group(
            name="equipment-request", description="Request equipment for an event"
        )

        @equipment_request.command(name="add", description="Request equipment for an event")
        @app_commands.describe(
            event_id="The event that needs the equipment",
            equipment_id="The equipment to reserve",
            quantity="How many units",
            channel="Where to post the request for admins (defaults to the configured channel)",
        )
        async def equipment_request_add(
            interaction: discord.Interaction,
            event_id: str,
            equipment_id: str,
            quantity: app_commands.Range[int, 1],
            channel: discord.TextChannel | None = None,
        ) -> None:
            await self._handle_equipment_request_add(
                interaction, event_id, equipment_id, quantity, channel
            )

        @equipment_request.command(name="remove", description="Withdraw an equipment request")
        @app_commands.describe(event_id="The event", equipment_id="The requested equipment")
        async def equipment_request_remove(
            interaction: discord.Interaction, event_id: str, equipment_id: str
        ) -> None:
            await self._handle_equipment_request_remove(interaction, event_id, equipment_id)

        @equipment_request.command(name="list", description="List equipment requested for an event")
        @app_commands.describe(event_id="The event")
        async def equipment_request_list(interaction: discord.Interaction, event_id: str) -> None:
            await self._handle_equipment_request_list(interaction, event_id)

        @equipment_request.command(name="approve", description="Approve an equipment request")
        @app_commands.describe(event_id="The event", equipment_id="The requested equipment")
        async def equipment_request_approve(
            interaction: discord.Interaction, event_id: str, equipment_id: str
        ) -> None:
            await self._handle_equipment_request_decision(
                interaction, event_id, equipment_id, approve=True
            )

        @equipment_request.command(name="deny", description="Deny an equipment request")
        @app_commands.describe(
            event_id="The event",
            equipment_id="The requested equipment",
            reason="Why the request is denied",
        )
        async def equipment_request_deny(
            interaction: discord.Interaction,
            event_id: str,
            equipment_id: str,
            reason: str = "",
        ) -> None:
            await self._handle_equipment_request_decision(
                interaction, event_id, equipment_id, approve=False, reason=reason
            )

        @equipment_request.command(name="pending", description="List pending equipment requests")
        async def equipment_request_pending(interaction: discord.Interaction) -> None:
            await self._handle_equipment_request_pending(interaction)

        for command in (
            equipment_request_add,
            equipment_request_remove,
            equipment_request_list,
            equipment_request_approve,
            equipment_request_deny,
        ):
            command.autocomplete("event_id")(event_autocomplete)
        for command in (
            equipment_request_add,
            equipment_request_remove,
            equipment_request_approve,
            equipment_request_deny,
        ):
            command.autocomplete("equipment_id")(equipment_autocomplete)
        event_info_command.autocomplete("event_id")(event_autocomplete)
        delete_event_command.autocomplete("event_id")(event_autocomplete)
        remind_event_command.autocomplete("event_id")(event_autocomplete)

        self.tree.add_command(equipment_request)

        # --- Inventory ---

        @self.tree.command(name="add-equipment", description="Add equipment to the inventory")
        @app_commands.describe(
            name="Equipment name",
            quantity="Total units owned",
            category="Equipment category",
            description="Optional description",
        )
        @app_commands.choices(category=CATEGORY_CHOICES)
        async def add_equipment_command(
            interaction: discord.Interaction,
            name: str,
            quantity: app_commands.Range[int, 0],
            category: app_commands.Choice[str],
            description: str = "",
        ) -> None:
            await self._handle_add_equipment(
                interaction, name, quantity, category.value, description
            )

        @self.tree.command(name="edit-equipment", description="Edit an equipment entry")
        @app_commands.describe(
            equipment_id="The equipment to edit",
            name="New name",
            quantity="New total units",
            category="New category",
            description="New description",
        )
        @app_commands.choices(category=CATEGORY_CHOICES)
        async def edit_equipment_command(
            interaction: discord.Interaction,
            equipment_id: str,
            name: str | None = None,
            quantity: int | None = None,
            category: app_commands.Choice[str] | None = None,
            description: str | None = None,
        ) -> None:
            await self._handle_edit_equipment(
                interaction,
                equipment_id,
                name=name,
                total_quantity=quantity,
                category=category.value if category else None,
                description=description,
            )

        @self.tree.command(name="remove-equipment", description="Remove equipment entirely")
        @app_commands.describe(equipment_id="The equipment to remove")
        async def remove_equipment_command(
            interaction: discord.Interaction, equipment_id: str
        ) -> None:
            await self._handle_remove_equipment(interaction, equipment_id)

        edit_equipment_command.autocomplete("equipment_id")(equipment_autocomplete)
        remove_equipment_command.autocomplete("equipment_id")(equipment_autocomplete)

        @self.tree.command(name="inventory", description="Show equipment availability")
        @app_commands.describe(category="Only show one category")
        @app_commands.choices(category=CATEGORY_CHOICES)
        async def inventory_command(
            interaction: discord.Interaction,
            category: app_commands.Choice[str] | None = None,
        ) -> None:
            await self._handle_inventory(interaction, category.value if category else None)

        @self.tree.command(
            name="equipment-deployed",
            description="Show approved equipment for upcoming events, by location",
        )
        async def equipment_deployed_command(interaction: discord.Interaction) -> None:
            await self._handle_equipment_deployed(interaction)

        @self.tree.command(
            name="reset-inventory",
            description="Clear every equipment request and restore full availability",
        )
        @app_commands.describe(confirm="Set to True to confirm the reset")
        async def reset_inventory_command(
            interaction: discord.Interaction, confirm: bool = False
        ) -> None:
            await self._handle_reset_inventory(interaction, confirm)

        # --- Certifications ---

        @self.tree.command(name="create-cert", description="Create a certification")
        @app_commands.describe(name="Certification name", description="What it certifies")
        async def create_cert_command(
            interaction: discord.Interaction, name: str, description: str = ""
        ) -> None:
            await self._handle_create_cert(interaction, name, description)

        @self.tree.command(name="edit-cert", description="Edit a certification")
        @app_commands.describe(
            cert="The certification to edit", name="New name", description="New description"
        )
        async def edit_cert_command(
            interaction: discord.Interaction,
            cert: str,
            name: str | None = None,
            description: str | None = None,
        ) -> None:
            await self._handle_edit_cert(interaction, cert, name, description)

        @self.tree.command(name="delete-cert", description="Delete a certification")
        @app_commands.describe(cert="The certification to delete")
        async def delete_cert_command(interaction: discord.Interaction, cert: str) -> None:
            await self._handle_delete_cert(interaction, cert)

        @self.tree.command(name="list-certs", description="List all certifications")
        async def list_certs_command(interaction: discord.Interaction) -> None:
            await self._handle_list_certs(interaction)

        @self.tree.command(name="request-cert", description="Request a certification")
        @app_commands.describe(cert="The certification you want")
        async def request_cert_command(interaction: discord.Interaction, cert: str) -> None:
            await self._handle_request_cert(interaction, cert)

        @self.tree.command(name="my-certs", description="Show your approved certifications")
        async def my_certs_command(interaction: discord.Interaction) -> None:
            await self._handle_user_certs(interaction, interaction.user, own=True)

        @self.tree.command(name="user-certs", description="Show a member's certifications")
        @app_commands.describe(user="The member to look up")
        async def user_certs_command(
            interaction: discord.Interaction, user: discord.Member
        ) -> None:
            await self._handle_user_certs(interaction, user, own=False)

        @self.tree.command(name="cert-requests", description="List certification requests")
        @app_commands.describe(status="Only show requests with this status")
        @app_commands.choices(status=CERT_STATUS_CHOICES)
        async def cert_requests_command(
            interaction: discord.Interaction,
            status: app_commands.Choice[str] | None = None,
        ) -> None:
            await self._handle_cert_requests(interaction, status.value if status else "pending")

        for command in (edit_cert_command, delete_cert_command, request_cert_command):
            command.autocomplete("cert")(cert_autocomplete)

    async def setup_hook(self) -> None:
        """Register persistent buttons, then sync slash commands."""
        self.add_dynamic_items(*DYNAMIC_ITEMS)
        if self.settings.discord_guild_id:
            guild = discord.Object(id=int(self.settings.discord_guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("discord_commands_synced guild_id=%s", self.settings.discord_guild_id)
        else:
            await self.tree.sync()
            logger.info("discord_commands_synced globally")

    async def on_ready(self) -> None:
        user = self.user
        name = user.name if user else "unknown"
        logger.info("discord_bot_ready user=%s", name)

    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if before.roles != after.roles or before.guild_permissions != after.guild_permissions:
            self.admin_checker.invalidate(after.id)

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    async def _reply(
        self,
        interaction: discord.Interaction,
        content: str | None = None,
        *,
        embed: discord.Embed | None = None,
        ephemeral: bool = True,
    ) -> None:
        """Respond, or follow up if the interaction was already deferred."""
        kwargs: dict[str, object] = {"ephemeral": ephemeral}
        if content is not None:
            kwargs["content"] = content
        if embed is not None:
            kwargs["embed"] = embed
        if interaction.response.is_done():
            await interaction.followup.send(**kwargs)
        else:
            await interaction.response.send_message(**kwargs)

    async def _is_admin(self, interaction: discord.Interaction) -> bool:
        return await self.admin_checker.is_admin(interaction.user, interaction.guild)

    async def _require_admin(self, interaction: discord.Interaction) -> bool:
        if await self._is_admin(interaction):
            return True
        await self._reply(interaction, ADMIN_ONLY)
        return False

    async def _event_choices(self, current: str) -> list[app_commands.Choice[str]]:
        try:
            async with db_session(self.engine) as repo:
                events = await list_events(repo, since=int(time.time()), limit=50)
        except SQLAlchemyError:
            logger.debug("event_autocomplete_failed", exc_info=True)
            return []
        needle = current.lower()
        return [
            app_commands.Choice(name=e.title[:100], value=e.id)
            for e in events
            if needle in e.title.lower() or e.id.startswith(current)
        ][:AUTOCOMPLETE_LIMIT]

    async def _equipment_choices(self, current: str) -> list[app_commands.Choice[str]]:
        try:
            async with db_session(self.engine) as repo:
                items = await inventory.list_inventory(repo)
        except SQLAlchemyError:
            logger.debug("equipment_autocomplete_failed", exc_info=True)
            return []
        needle = current.lower()
        return [
            app_commands.Choice(
                name=f"{item.name} ({item.available_quantity}/{item.total_quantity})"[:100],
                value=item.id,
            )
            for item in items
            if needle in item.name.lower() or item.id.startswith(current)
        ][:AUTOCOMPLETE_LIMIT]

    async def _cert_choices(self, current: str) -> list[app_commands.Choice[str]]:
        try:
            async with db_session(self.engine) as repo:
                certs = await cert_catalog.list_certifications(repo)
        except SQLAlchemyError:
            logger.debug("cert_autocomplete_failed", exc_info=True)
            return []
        needle = current.lower()
        return [
            app_commands.Choice(name=cert.name[:100], value=cert.id)
            for cert in certs
            if needle in cert.name.lower()
        ][:AUTOCOMPLETE_LIMIT]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _handle_list_events(self, interaction: discord.Interaction) -> None:
        """Handle the /list-events slash command."""
        try:
            async with db_session(self.engine) as repo:
                events = await list_events(repo, since=int(time.time()))
        except SQLAlchemyError:
            logger.exception("discord_list_events_failed")
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        await interaction.response.send_message(embed=build_event_list_embed(events))

    async def _handle_event_history(
        self, interaction: discord.Interaction, limit: int = 5
    ) -> None:
        """Handle the /event-history slash command."""
        try:
            async with db_session(self.engine) as repo:
                past, total = await event_history(repo, before=int(time.time()), limit=limit)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_event_history_failed")
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        if not past:
            await self._reply(interaction, "There are no past events in the database.")
            return
        guild_id = interaction.guild.id if interaction.guild else None
        await interaction.response.send_message(
            embed=build_event_history_embed(past, total, guild_id)
        )

    async def _handle_remind_event(
        self, interaction: discord.Interaction, event_id: str, message: str = ""
    ) -> None:
        """Handle /remind-event: ping the yes RSVPs in the current channel.

        Only the event creator or an admin may send one.
        """
        await interaction.response.defer(ephemeral=True)
        is_admin = await self._is_admin(interaction)
        try:
            async with db_session(self.engine) as repo:
                event = await get_event(repo, event_id)
                rsvps = await get_rsvp_summary(repo, event_id)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_remind_event_failed event=%s", event_id)
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return

        if event.creator_id != str(interaction.user.id) and not is_admin:
            await self._reply(
                interaction,
                "You can only send reminders for events that you created "
                "or if you're an administrator.",
            )
            return
        if not rsvps.yes:
            await self._reply(
                interaction, "There are no attendees who have RSVP'd 'yes' to this event."
            )
            return

        channel = interaction.channel
        if channel is None:
            await self._reply(interaction, "Reminders can only be sent from a text channel.")
            return
        guild_id = interaction.guild.id if interaction.guild else None
        mentions = " ".join(f"<@{uid}>" for uid in rsvps.yes)
        try:
            await channel.send(
                content=f"**Event Reminder!** {mentions}",
                embed=build_manual_reminder_embed(event, message, guild_id),
                view=build_event_equipment_view(event.id),
            )
        except discord.HTTPException:
            logger.warning("manual_reminder_send_failed event=%s", event.id, exc_info=True)
            await self._reply(interaction, "The reminder could not be posted in this channel.")
            return

        logger.info(
            "manual_reminder_sent event=%s by=%s attendees=%d",
            event.id,
            interaction.user.id,
            len(rsvps.yes),
        )
        await self._reply(
            interaction,
            f"Successfully sent reminders to {len(rsvps.yes)} attendees "
            f'for the event "{event.title}".',
        )

    async def _handle_event_info(self, interaction: discord.Interaction, event_id: str) -> None:
        """Handle the /event-info slash command."""
        try:
            async with db_session(self.engine) as repo:
                event = await get_event(repo, event_id)
                rsvps = await get_rsvp_summary(repo, event_id)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_event_info_failed event=%s", event_id)
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        await interaction.response.send_message(
            embed=build_event_embed(event, rsvps), view=build_event_view(event.id)
        )

    async def _handle_delete_event(self, interaction: discord.Interaction, event_id: str) -> None:
        """Handle /delete-event. Only the creator or an admin may delete."""
        await interaction.response.defer(ephemeral=True)
        is_admin = await self._is_admin(interaction)
        try:
            async with db_session(self.engine) as repo:
                existing = await get_event(repo, event_id)
                if existing.creator_id != str(interaction.user.id) and not is_admin:
                    await self._reply(
                        interaction, "Only the event creator or an admin can delete this event."
                    )
                    return
                event, summary = await delete_event(repo, event_id)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_delete_event_failed event=%s", event_id)
            await self._reply(interaction, GENERIC_FAILURE)
            return

        if event.channel_id and event.message_id:
            try:
                await self.delete_announcement(event.channel_id, event.message_id)
            except (ChannelNotFound, MessageNotFound, discord.HTTPException):
                logger.info("event_announcement_delete_skipped event=%s", event.id)

        text = f"Deleted **{event.title}**."
        if summary.requests:
            text += (
                f" Released {summary.units} reserved unit(s) "
                f"from {summary.requests} equipment request(s)."
            )
        await self._reply(interaction, text)

    # ------------------------------------------------------------------
    # Equipment requests
    # ------------------------------------------------------------------

    async def _handle_equipment_request_add(
        self,
        interaction: discord.Interaction,
        event_id: str,
        equipment_id: str,
        quantity: int,
        channel: discord.TextChannel | None = None,
    ) -> None:
        """Handle /equipment-request add: reserve, then post controls for admins."""
        await interaction.response.defer(ephemeral=True)
        try:
            async with db_session(self.engine) as repo:
                detail = await lifecycle.create_equipment_request(
                    repo, event_id, equipment_id, quantity, str(interaction.user.id)
                )
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_equipment_request_failed event=%s", event_id)
            await self._reply(interaction, GENERIC_FAILURE)
            return

        posted = await self._post_equipment_request_controls(detail, channel)
        text = (
            f"Requested {detail.quantity}x **{detail.equipment_name}** for "
            f"**{detail.event_title}**. It is pending admin approval."
        )
        if not posted:
            text += " (The admin notification could not be posted; let an admin know.)"
        await self._reply(interaction, text)

    async def _post_equipment_request_controls(
        self,
        detail: EquipmentRequestDetail,
        channel: discord.TextChannel | None = None,
    ) -> bool:
        """Post the Approve/Deny message. Best-effort: the request already committed."""
        try:
            target = channel
            if target is None:
                if not self.settings.equipment_request_channel_id:
                    raise NotificationDeliveryError("No equipment request channel configured")
                target = await fetch_text_channel(self, self.settings.equipment_request_channel_id)
            await target.send(
                embed=build_equipment_request_embed(detail),
                view=build_equipment_request_view(detail.request_id),
            )
        except (NotificationDeliveryError, ChannelNotFound, discord.HTTPException) as exc:
            logger.warning(
                "equipment_request_controls_not_posted request=%s err=%s",
                detail.request_id,
                exc,
            )
            return False
        return True

    async def _handle_equipment_request_remove(
        self, interaction: discord.Interaction, event_id: str, equipment_id: str
    ) -> None:
        """Handle /equipment-request remove. Requester or admin only."""
        is_admin = await self._is_admin(interaction)
        try:
            async with db_session(self.engine) as repo:
                current = await lifecycle.find_equipment_request(repo, event_id, equipment_id)
                if current.requested_by != str(interaction.user.id) and not is_admin:
                    await self._reply(
                        interaction, "Only the requester or an admin can remove this request."
                    )
                    return
                detail = await lifecycle.remove_equipment_request(repo, event_id, equipment_id)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_equipment_request_remove_failed event=%s", event_id)
            await self._reply(interaction, GENERIC_FAILURE)
            return
        await self._reply(
            interaction,
            f"Removed the request for {detail.quantity}x **{detail.equipment_name}** "
            f"on **{detail.event_title}**.",
        )

    async def _handle_equipment_request_list(
        self, interaction: discord.Interaction, event_id: str
    ) -> None:
        try:
            async with db_session(self.engine) as repo:
                event = await get_event(repo, event_id)
                details = await lifecycle.list_event_equipment_requests(repo, event_id)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_equipment_request_list_failed event=%s", event_id)
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        await interaction.response.send_message(
            embed=build_equipment_request_list_embed(f"Equipment for {event.title}", details)
        )

    async def _handle_equipment_request_decision(
        self,
        interaction: discord.Interaction,
        event_id: str,
        equipment_id: str,
        *,
        approve: bool,
        reason: str = "",
    ) -> None:
        """Handle /equipment-request approve|deny, the slash twin of the buttons."""
        if not await self._require_admin(interaction):
            return
        decided_by = str(interaction.user.id)
        try:
            async with db_session(self.engine) as repo:
                current = await lifecycle.find_equipment_request(repo, event_id, equipment_id)
                if approve:
                    detail = await lifecycle.approve_equipment_request(
                        repo, current.request_id, decided_by
                    )
                else:
                    detail = await lifecycle.deny_equipment_request(
                        repo, current.request_id, decided_by, reason
                    )
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_equipment_decision_failed event=%s", event_id)
            await self._reply(interaction, GENERIC_FAILURE)
            return

        embed = build_equipment_decision_embed(detail)
        await interaction.response.send_message(embed=embed)
        await notify_user(self, detail.requested_by, embed=embed)

    async def _handle_equipment_request_pending(self, interaction: discord.Interaction) -> None:
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                details = await lifecycle.list_pending_equipment_requests(repo)
        except SQLAlchemyError:
            logger.exception("discord_pending_requests_failed")
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        await self._reply(
            interaction,
            embed=build_equipment_request_list_embed("Pending Equipment Requests", details),
        )

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    async def _handle_add_equipment(
        self,
        interaction: discord.Interaction,
        name: str,
        quantity: int,
        category: str,
        description: str,
    ) -> None:
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                item = await inventory.add_equipment(repo, name, quantity, category, description)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_add_equipment_failed")
            await self._reply(interaction, GENERIC_FAILURE)
            return
        await self._reply(interaction, embed=build_equipment_item_embed(item, "Equipment Added"))

    async def _handle_edit_equipment(
        self,
        interaction: discord.Interaction,
        equipment_id: str,
        *,
        name: str | None,
        total_quantity: int | None,
        category: str | None,
        description: str | None,
    ) -> None:
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                item = await inventory.edit_equipment(
                    repo,
                    equipment_id,
                    name=name,
                    category=category,
                    description=description,
                    total_quantity=total_quantity,
                )
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_edit_equipment_failed equipment=%s", equipment_id)
            await self._reply(interaction, GENERIC_FAILURE)
            return
        await self._reply(interaction, embed=build_equipment_item_embed(item, "Equipment Updated"))

    async def _handle_remove_equipment(
        self, interaction: discord.Interaction, equipment_id: str
    ) -> None:
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                item = await inventory.remove_equipment(repo, equipment_id)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_remove_equipment_failed equipment=%s", equipment_id)
            await self._reply(interaction, GENERIC_FAILURE)
            return
        await self._reply(interaction, f"Removed **{item.name}** and all of its requests.")

    async def _handle_inventory(
        self, interaction: discord.Interaction, category: str | None
    ) -> None:
        try:
            async with db_session(self.engine) as repo:
                items = await inventory.list_inventory(repo, category)
        except SQLAlchemyError:
            logger.exception("discord_inventory_failed")
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        await interaction.response.send_message(embed=build_inventory_embed(items, category))

    async def _handle_equipment_deployed(self, interaction: discord.Interaction) -> None:
        try:
            async with db_session(self.engine) as repo:
                details = await lifecycle.list_deployed_equipment(repo, int(time.time()))
        except SQLAlchemyError:
            logger.exception("discord_equipment_deployed_failed")
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        await interaction.response.send_message(embed=build_deployed_equipment_embed(details))

    async def _handle_reset_inventory(
        self, interaction: discord.Interaction, confirm: bool
    ) -> None:
        if not await self._require_admin(interaction):
            return
        if not confirm:
            await self._reply(
                interaction,
                "This deletes every equipment request and restores full availability. "
                "Run `/reset-inventory confirm:True` to go ahead.",
            )
            return
        try:
            async with db_session(self.engine) as repo:
                summary = await inventory.reset_all(repo)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_reset_inventory_failed")
            await self._reply(interaction, GENERIC_FAILURE)
            return
        logger.warning("inventory_reset_by user=%s", interaction.user.id)
        await self._reply(interaction, embed=build_reset_embed(summary), ephemeral=False)

    # ------------------------------------------------------------------
    # Certifications
    # ------------------------------------------------------------------

    async def _handle_create_cert(
        self, interaction: discord.Interaction, name: str, description: str
    ) -> None:
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                cert = await cert_catalog.create_certification(repo, name, description)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_create_cert_failed")
            await self._reply(interaction, GENERIC_FAILURE)
            return
        await self._reply(interaction, f"Created certification **{cert.name}** (`{cert.id}`).")

    async def _handle_edit_cert(
        self,
        interaction: discord.Interaction,
        cert_id: str,
        name: str | None,
        description: str | None,
    ) -> None:
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                cert = await cert_catalog.edit_certification(repo, cert_id, name, description)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_edit_cert_failed cert=%s", cert_id)
            await self._reply(interaction, GENERIC_FAILURE)
            return
        await self._reply(interaction, f"Updated certification **{cert.name}**.")

    async def _handle_delete_cert(self, interaction: discord.Interaction, cert_id: str) -> None:
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                cert = await cert_catalog.delete_certification(repo, cert_id)
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_delete_cert_failed cert=%s", cert_id)
            await self._reply(interaction, GENERIC_FAILURE)
            return
        await self._reply(interaction, f"Deleted certification **{cert.name}** and its requests.")

    async def _handle_list_certs(self, interaction: discord.Interaction) -> None:
        try:
            async with db_session(self.engine) as repo:
                certs = await cert_catalog.list_certifications(repo)
        except SQLAlchemyError:
            logger.exception("discord_list_certs_failed")
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        await interaction.response.send_message(embed=build_cert_list_embed(certs))

    async def _handle_request_cert(self, interaction: discord.Interaction, cert_id: str) -> None:
        """Handle /request-cert: record the request, then post controls for admins."""
        await interaction.response.defer(ephemeral=True)
        try:
            async with db_session(self.engine) as repo:
                detail = await lifecycle.request_certification(
                    repo, str(interaction.user.id), cert_id
                )
        except MusterError as exc:
            await self._reply(interaction, render_error(exc))
            return
        except SQLAlchemyError:
            logger.exception("discord_request_cert_failed cert=%s", cert_id)
            await self._reply(interaction, GENERIC_FAILURE)
            return

        text = f"Your request for **{detail.cert_name}** was submitted for review."
        try:
            await self.post_certification_request(
                detail.user_id, detail.cert_name, detail.cert_description, detail.id
            )
        except (ChannelNotFound, NotificationDeliveryError, discord.HTTPException) as exc:
            logger.warning("cert_request_controls_not_posted request=%s err=%s", detail.id, exc)
            text += " (The admin notification could not be posted; let an admin know.)"
        await self._reply(interaction, text)

    async def _handle_user_certs(
        self,
        interaction: discord.Interaction,
        user: discord.User | discord.Member,
        *,
        own: bool,
    ) -> None:
        """Handle /my-certs and /user-certs: a member's approved certifications."""
        try:
            async with db_session(self.engine) as repo:
                details = await lifecycle.list_certification_requests(
                    repo, status="approved", user_id=str(user.id)
                )
        except SQLAlchemyError:
            logger.exception("discord_user_certs_failed user=%s", user.id)
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        title = "Your Certifications" if own else f"Certifications for {user.display_name}"
        await self._reply(interaction, embed=build_cert_requests_embed(title, details))

    async def _handle_cert_requests(self, interaction: discord.Interaction, status: str) -> None:
        if not await self._require_admin(interaction):
            return
        try:
            async with db_session(self.engine) as repo:
                details = await lifecycle.list_certification_requests(repo, status=status)
        except SQLAlchemyError:
            logger.exception("discord_cert_requests_failed")
            await self._reply(interaction, DATABASE_UNAVAILABLE)
            return
        await self._reply(
            interaction,
            embed=build_cert_requests_embed(f"{status.title()} Certification Requests", details),
        )

    # ------------------------------------------------------------------
    # Operations used by the HTTP API and the reminder job
    # ------------------------------------------------------------------

    async def post_event_announcement(self, channel_id: str, event: EventDetail) -> str:
        """Post an event's announcement with RSVP buttons. Returns the message id.

        Raises ChannelNotFound if the channel isn't a visible text channel.
        """
        channel = await fetch_text_channel(self, channel_id)
        view = build_event_view(event.id) if event.id else None
        message = await channel.send(embed=build_event_embed(event), view=view)
        logger.info("event_announced event=%s channel=%s", event.id, channel_id)
        return str(message.id)

    async def delete_announcement(self, channel_id: str, message_id: str) -> None:
        """Delete a message. Raises ChannelNotFound or MessageNotFound."""
        channel = await fetch_text_channel(self, channel_id)
        try:
            message = await channel.fetch_message(int(message_id))
        except (ValueError, discord.NotFound) as exc:
            raise MessageNotFound(f"Message not found: {message_id}") from exc
        await message.delete()
        logger.info("message_deleted channel=%s message=%s", channel_id, message_id)

    async def list_channels(self) -> dict[str, list[dict[str, str | None]]]:
        """Categories and text channels of the configured guild."""
        guild_id = self.settings.guild_id
        if guild_id is None:
            raise RuntimeError("DISCORD_GUILD_ID is not configured")
        guild = self.get_guild(guild_id) or await self.fetch_guild(guild_id)
        channels = await guild.fetch_channels()

        categories: list[dict[str, str | None]] = []
        text_channels: list[dict[str, str | None]] = []
        for channel in channels:
            if isinstance(channel, discord.CategoryChannel):
                categories.append({"id": str(channel.id), "name": channel.name})
            elif isinstance(channel, discord.TextChannel):
                text_channels.append(
                    {
                        "id": str(channel.id),
                        "name": channel.name,
                        "parentId": str(channel.category_id) if channel.category_id else None,
                    }
                )
        return {"categories": categories, "textChannels": text_channels}

    async def post_certification_request(
        self,
        user_id: str,
        cert_name: str,
        cert_description: str,
        request_id: str,
    ) -> str:
        """Post a certification request with Approve/Deny buttons. Returns the message id."""
        if not self.settings.cert_request_channel_id:
            raise NotificationDeliveryError("No certification request channel configured")
        channel = await fetch_text_channel(self, self.settings.cert_request_channel_id)
        message = await channel.send(
            embed=build_cert_request_embed(user_id, cert_name, cert_description, request_id),
            view=build_cert_request_view(request_id),
        )
        logger.info("cert_request_posted request=%s user=%s", request_id, user_id)
        return str(message.id)

    async def send_event_reminder(
        self, event: EventDetail, rsvps: RsvpSummary, lead_minutes: int
    ) -> None:
        """Post a reminder in the event's announcement channel, pinging attendees."""
        if not event.channel_id:
            raise NotificationDeliveryError(f"Event {event.id} was never announced")
        try:
            channel = await fetch_text_channel(self, event.channel_id)
        except ChannelNotFound as exc:
            raise NotificationDeliveryError(str(exc)) from exc
        mentions = " ".join(f"<@{uid}>" for uid in rsvps.attending)
        try:
            await channel.send(
                content=mentions or None,
                embed=build_reminder_embed(event, lead_minutes),
            )
        except discord.HTTPException as exc:
            raise NotificationDeliveryError(str(exc)) from exc


def is_discord_enabled(settings: Settings) -> bool:
    """Check whether Discord integration should be started.

    Returns True only when discord_enabled is True, a token is set, AND the
    environment is not development.  This keeps a local dev server from
    connecting to the production guild and syncing commands.
    """
    if settings.muster_env == "development":
        logger.info("discord_bot_skipped_in_development")
        return False
    return bool(settings.discord_enabled and settings.discord_bot_token)


async def start_discord_bot(settings: Settings, engine: AsyncEngine) -> MusterBot:
    """Create and start the Discord bot in the current event loop.

    Returns the bot instance so the caller can stop it during shutdown.
    The bot runs as a background task; this function returns immediately
    after starting it.
    """
    bot = MusterBot(settings=settings, engine=engine)

    async def _run_bot() -> None:
        try:
            await bot.start(settings.discord_bot_token)
        except asyncio.CancelledError:
            logger.info("discord_bot_cancelled")
        except Exception:  # Last-resort handler — bot.start can raise connection and auth errors
            logger.exception("discord_bot_error")
        finally:
            if not bot.is_closed():
                with contextlib.suppress(Exception):
                    await bot.close()

    asyncio.create_task(_run_bot(), name="discord-bot")
    logger.info("discord_bot_started")
    return bot
