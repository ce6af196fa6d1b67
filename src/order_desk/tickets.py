"""Discord side of the order system: panel, order form, ticket channels and commands."""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands

from .config import Settings, TicketSettings
from .embeds import (
    ERROR_COLOR,
    PANEL_TEMPLATES,
    SUCCESS_COLOR,
    WARNING_COLOR,
    error_embed,
    format_order_list,
    info_embed,
    order_confirmation_embed,
    order_info_embed,
    order_stats_embed,
    order_ticket_embed,
    panel_embed,
    status_label,
)
from .orders import (
    DuplicateOrderError,
    Order,
    OrderError,
    OrderTracker,
    OrderValidationError,
)
from .triggers import Trigger, TriggerView, send_ephemeral, trigger_button

if TYPE_CHECKING:
    from .database import Database
    from .notifier import OrderNotifier

_log = logging.getLogger(__name__)

CHANNEL_NAME_LIMIT = 100
PANEL_TEMPLATE_SETTING = "panel_template"
TEMPLATE_CHOICES = [app_commands.Choice(name=name.title(), value=name) for name in PANEL_TEMPLATES]


def _slug(text: str) -> str:
    return re.sub(r"-+", "-", re.sub(r"[^a-z0-9]", "-", text.lower())).strip("-")


def order_channel_name(display_name: str) -> str:
    return f"order-{_slug(display_name) or 'customer'}"[:CHANNEL_NAME_LIMIT]


def claimed_channel_name(current: str, staff_name: str) -> str:
    suffix = _slug(staff_name)
    if not suffix or current.endswith(f"-{suffix}"):
        return current
    return f"{current}-{suffix}"[:CHANNEL_NAME_LIMIT]


def is_staff(member: discord.abc.User, settings: Settings) -> bool:
    if settings.is_admin(member.id):
        return True
    roles = getattr(member, "roles", None) or []
    if settings.tickets.support_role_id is not None and any(
        role.id == settings.tickets.support_role_id for role in roles
    ):
        return True
    permissions = getattr(member, "guild_permissions", None)
    return bool(permissions and (permissions.administrator or permissions.manage_channels))


async def create_private_channel(
    guild: discord.Guild,
    member: discord.abc.User,
    name: str,
    tickets: TicketSettings,
    *,
    reason: str,
) -> discord.TextChannel:
    """Create a channel only ``member``, the support role and the bot can see."""

    category = guild.get_channel(tickets.category_id) if tickets.category_id else None
    overwrites = {
        guild.default_role: discord.PermissionOverwrite(view_channel=False),
        member: discord.PermissionOverwrite(
            view_channel=True, send_messages=True, read_message_history=True
        ),
    }
    support_role = guild.get_role(tickets.support_role_id) if tickets.support_role_id else None
    if support_role is not None:
        overwrites[support_role] = discord.PermissionOverwrite(
            view_channel=True,
            send_messages=True,
            read_message_history=True,
            manage_messages=True,
        )
    if guild.me is not None:
        overwrites[guild.me] = discord.PermissionOverwrite(
            view_channel=True, send_messages=True, manage_channels=True, read_message_history=True
        )
    return await guild.create_text_channel(
        name,
        category=category if isinstance(category, discord.CategoryChannel) else None,
        overwrites=overwrites,
        reason=reason,
    )


def order_panel_view(template_name: str = "default") -> TriggerView:
    template = PANEL_TEMPLATES.get(template_name, PANEL_TEMPLATES["default"])
    return TriggerView(
        trigger_button(
            Trigger.CREATE_ORDER,
            template.button_label,
            emoji=template.button_emoji,
            style=discord.ButtonStyle.success,
        )
    )


def pending_controls_view() -> TriggerView:
    return TriggerView(
        trigger_button(Trigger.CLAIM_ORDER, "Claim Order", emoji="✋", style=discord.ButtonStyle.primary),
        trigger_button(Trigger.CLOSE_ORDER, "Cancel Order", emoji="❌", style=discord.ButtonStyle.danger),
    )


def processing_controls_view() -> TriggerView:
    return TriggerView(
        trigger_button(
            Trigger.COMPLETE_ORDER, "Mark as Completed", emoji="✅", style=discord.ButtonStyle.success
        ),
        trigger_button(Trigger.CLOSE_ORDER, "Cancel Order", emoji="❌", style=discord.ButtonStyle.danger),
    )


def confirm_close_view() -> TriggerView:
    return TriggerView(
        trigger_button(
            Trigger.CONFIRM_CLOSE, "Yes, Cancel Order", emoji="✅", style=discord.ButtonStyle.danger
        ),
        trigger_button(Trigger.CANCEL_CLOSE, "Keep Order Active", emoji="↩️"),
    )


def reopen_view() -> TriggerView:
    return TriggerView(
        trigger_button(Trigger.REOPEN_ORDER, "Reopen Order", emoji="🔓", style=discord.ButtonStyle.primary)
    )


class OrderFormModal(discord.ui.Modal):
    def __init__(self, desk: "OrderDesk"):
        super().__init__(title="🛒 Place Your Order")
        self._desk = desk
        self.service_input = discord.ui.TextInput(
            label="What service do you need?",
            placeholder="Example: Account Boost, 1000 Robux, Discord Nitro",
            max_length=100,
        )
        self.details_input = discord.ui.TextInput(
            label="Order details & specifications",
            placeholder="Describe exactly what you need",
            style=discord.TextStyle.paragraph,
            max_length=1000,
        )
        self.quantity_input = discord.ui.TextInput(
            label="Quantity / amount needed",
            placeholder="Example: 5 ranks, 1000 coins, 1 month",
            max_length=50,
        )
        self.budget_input = discord.ui.TextInput(
            label="Your budget (USD)",
            placeholder="Example: $25, $10-15, flexible",
            max_length=20,
        )
        self.urgency_input = discord.ui.TextInput(
            label="When do you need this completed?",
            placeholder="Example: ASAP, within 24 hours, no rush",
            max_length=50,
        )
        for item in (
            self.service_input,
            self.details_input,
            self.quantity_input,
            self.budget_input,
            self.urgency_input,
        ):
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self._desk.submit_order(
            interaction,
            {
                "service": self.service_input.value,
                "details": self.details_input.value,
                "quantity": self.quantity_input.value,
                "budget": self.budget_input.value,
                "urgency": self.urgency_input.value,
            },
        )


class OrderDesk:
    """Handles the order buttons, the order form and ticket channel creation."""

    def __init__(
        self,
        settings: Settings,
        tracker: OrderTracker,
        notifier: "OrderNotifier",
    ) -> None:
        self.settings = settings
        self.tracker = tracker
        self.notifier = notifier

    @property
    def tickets(self) -> TicketSettings:
        return self.settings.tickets

    def handlers(self):
        return [
            (Trigger.CREATE_ORDER, self.open_form),
            (Trigger.CLAIM_ORDER, self.claim),
            (Trigger.COMPLETE_ORDER, self.complete),
            (Trigger.CLOSE_ORDER, self.request_close),
            (Trigger.CONFIRM_CLOSE, self.confirm_close),
            (Trigger.CANCEL_CLOSE, self.keep_open),
            (Trigger.REOPEN_ORDER, self.reopen),
        ]

    async def _release_if_missing(self, guild: discord.Guild, user_id: int) -> Optional[int]:
        """Return the user's open order channel, dropping it if it was deleted."""

        channel_id = self.tracker.active_channel_for(user_id)
        if channel_id is None:
            return None
        if guild.get_channel(channel_id) is not None:
            return channel_id
        await self.tracker.release_stale_ticket(user_id)
        return None

    async def open_form(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        if interaction.guild is None:
            await send_ephemeral(interaction, error_embed("Orders can only be placed inside a server."))
            return
        if not self.tickets.is_configured:
            await send_ephemeral(
                interaction,
                error_embed("The order system is not set up yet. Ask an admin to run `/setup`."),
            )
            return
        existing = await self._release_if_missing(interaction.guild, interaction.user.id)
        if existing is not None:
            await send_ephemeral(
                interaction, error_embed(f"You already have an active order: <#{existing}>")
            )
            return
        await interaction.response.send_modal(OrderFormModal(self))

    async def submit_order(self, interaction: discord.Interaction, fields: dict[str, str]) -> None:
        guild = interaction.guild
        user = interaction.user
        if guild is None:
            await send_ephemeral(interaction, error_embed("Orders can only be placed inside a server."))
            return

        await self._release_if_missing(guild, user.id)
        try:
            order = await self.tracker.submit(user.id, user.display_name, fields)
        except DuplicateOrderError as exc:
            where = f": <#{exc.channel_id}>" if exc.channel_id else "."
            await send_ephemeral(interaction, error_embed(f"You already have an active order{where}"))
            return
        except OrderValidationError as exc:
            await send_ephemeral(interaction, error_embed(str(exc)))
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            channel = await self._create_channel(guild, user, order)
        except discord.HTTPException:
            self.tracker.abandon(order)
            _log.warning("Failed to create an order channel for %s", user.id)
            await interaction.followup.send(
                embed=error_embed(
                    "There was an error processing your order. "
                    "Please try again or contact an administrator."
                ),
                ephemeral=True,
            )
            return

        await self.tracker.register(order, channel.id)
        mentions = user.mention
        if self.tickets.support_role_id is not None:
            mentions += f" <@&{self.tickets.support_role_id}>"
        try:
            await channel.send(
                content=mentions, embed=order_ticket_embed(order), view=pending_controls_view()
            )
        except discord.HTTPException:
            _log.warning("Failed to post the order summary in %s", channel.id)

        await self.notifier.new_order(order)
        await interaction.followup.send(
            embed=order_confirmation_embed(order, channel.id), ephemeral=True
        )

    async def _create_channel(
        self, guild: discord.Guild, member: discord.abc.User, order: Order
    ) -> discord.TextChannel:
        return await create_private_channel(
            guild,
            member,
            order_channel_name(member.display_name),
            self.tickets,
            reason=f"Order {order.order_id} for {member}",
        )

    def _require_staff(self, interaction: discord.Interaction, action: str) -> None:
        if not is_staff(interaction.user, self.settings):
            raise OrderError(f"Only staff members can {action} orders.")

    async def claim(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        self._require_staff(interaction, "claim")
        order = await self.tracker.claim(interaction.channel_id, interaction.user.id)
        embed = info_embed(
            "✋ Order Claimed!",
            f"**{interaction.user.display_name}** has claimed this order and will handle it personally.",
        )
        embed.add_field(name="Order ID", value=order.order_id, inline=True)
        embed.add_field(name="Claimed By", value=interaction.user.mention, inline=True)
        embed.add_field(name="Status", value=status_label(order.status), inline=True)
        await interaction.response.send_message(embed=embed, view=processing_controls_view())

        channel = interaction.channel
        try:
            if interaction.message is not None:
                await interaction.message.edit(view=None)
            if isinstance(channel, discord.TextChannel):
                await channel.edit(name=claimed_channel_name(channel.name, interaction.user.name))
        except discord.HTTPException:
            _log.warning("Failed to update channel %s after claim", interaction.channel_id)
        await self.notifier.claimed(order)

    async def complete(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        self._require_staff(interaction, "complete")
        order = await self.tracker.complete(interaction.channel_id, interaction.user.id)
        embed = info_embed(
            "✅ Order Completed!",
            f"**{order.service}** has been completed successfully!\n\n🎉 **Thank you for your business!**",
            color=SUCCESS_COLOR,
        )
        embed.add_field(name="Order ID", value=order.order_id, inline=True)
        embed.add_field(name="Customer", value=f"<@{order.requester_id}>", inline=True)
        embed.add_field(name="Completed By", value=interaction.user.mention, inline=True)
        await interaction.response.send_message(embed=embed)
        try:
            if interaction.message is not None:
                await interaction.message.edit(view=None)
        except discord.HTTPException:
            _log.warning("Failed to clear buttons in %s", interaction.channel_id)
        await self.notifier.completed(order)

    def _check_can_close(self, interaction: discord.Interaction) -> Order:
        order = self.tracker.require(interaction.channel_id)
        if interaction.user.id != order.requester_id and not is_staff(interaction.user, self.settings):
            raise OrderError("Only the customer or staff can cancel this order.")
        if not order.status.is_open:
            raise OrderError(f"Order {order.order_id} is already {order.status.value}.")
        return order

    async def request_close(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        order = self._check_can_close(interaction)
        embed = info_embed(
            "⚠️ Cancel Order?",
            f"Are you sure you want to cancel order `{order.order_id}`?\n"
            "This channel will be deleted shortly afterwards.",
            color=WARNING_COLOR,
        )
        await interaction.response.send_message(embed=embed, view=confirm_close_view())

    async def confirm_close(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        self._check_can_close(interaction)
        order = await self.tracker.cancel(interaction.channel_id, interaction.user.id)
        embed = info_embed(
            "🔒 Order Cancelled",
            f"Order cancelled by {interaction.user.mention}.\n"
            "Staff can reopen it before the channel is deleted.",
            color=ERROR_COLOR,
        )
        await interaction.response.edit_message(embed=embed, view=reopen_view())
        await self.notifier.status_update(order, interaction.user.id, "Cancelled")

    async def keep_open(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        await interaction.response.edit_message(
            embed=info_embed("✅ Order Kept Active", "Nothing was changed."), view=None
        )

    async def reopen(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        self._require_staff(interaction, "reopen")
        order = await self.tracker.reopen(interaction.channel_id, interaction.user.id)
        embed = info_embed(
            "🔓 Order Reopened",
            f"{interaction.user.mention} reopened order `{order.order_id}`. "
            "The channel will no longer be deleted.",
        )
        await interaction.response.send_message(embed=embed, view=pending_controls_view())
        try:
            if interaction.message is not None and interaction.message.components:
                await interaction.message.edit(view=None)
        except discord.HTTPException:
            _log.warning("Failed to clear buttons in %s", interaction.channel_id)
        await self.notifier.status_update(order, interaction.user.id, "Reopened")


class TicketGroup(app_commands.Group):
    def __init__(self, desk: OrderDesk, db: "Database"):
        super().__init__(name="ticket", description="Manage order tickets")
        self.desk = desk
        self.db = db

    @property
    def tracker(self) -> OrderTracker:
        return self.desk.tracker

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if is_staff(interaction.user, self.desk.settings):
            return True
        await send_ephemeral(interaction, error_embed("Only staff members can manage tickets."))
        return False

    def _order_here(self, interaction: discord.Interaction) -> Order:
        order = self.tracker.get(interaction.channel_id)
        if order is None:
            raise OrderError("This command can only be used in order channels.")
        return order

    @app_commands.command(name="add", description="Add a member to this order channel")
    @app_commands.describe(member="Member to give access")
    async def add(self, interaction: discord.Interaction, member: discord.Member):
        self._order_here(interaction)
        try:
            await interaction.channel.set_permissions(
                member, view_channel=True, send_messages=True, read_message_history=True
            )
        except discord.HTTPException:
            _log.warning("Failed to add %s to %s", member.id, interaction.channel_id)
            await send_ephemeral(interaction, error_embed("I couldn't update this channel's permissions."))
            return
        await interaction.response.send_message(
            embed=info_embed("➕ Member Added", f"{member.mention} can now see this order.")
        )

    @app_commands.command(name="remove", description="Remove a member from this order channel")
    @app_commands.describe(member="Member to remove")
    async def remove(self, interaction: discord.Interaction, member: discord.Member):
        order = self._order_here(interaction)
        if member.id == order.requester_id:
            raise OrderError("The customer cannot be removed from their own order.")
        try:
            await interaction.channel.set_permissions(member, overwrite=None)
        except discord.HTTPException:
            _log.warning("Failed to remove %s from %s", member.id, interaction.channel_id)
            await send_ephemeral(interaction, error_embed("I couldn't update this channel's permissions."))
            return
        await interaction.response.send_message(
            embed=info_embed("➖ Member Removed", f"{member.mention} no longer has access to this order.")
        )

    @app_commands.command(name="info", description="Show details for the order in this channel")
    async def info(self, interaction: discord.Interaction):
        order = self._order_here(interaction)
        await interaction.response.send_message(embed=order_info_embed(order), ephemeral=True)

    @app_commands.command(name="stats", description="Show order statistics")
    async def stats(self, interaction: discord.Interaction):
        await interaction.response.send_message(
            embed=order_stats_embed(self.tracker.stats()), ephemeral=True
        )

    @app_commands.command(name="list", description="List every open order")
    async def list_orders(self, interaction: discord.Interaction):
        open_orders = [order for order in self.tracker.orders() if order.status.is_open]
        embed = info_embed(f"📋 Active Orders ({len(open_orders)})", format_order_list(open_orders[:25]))
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="history", description="Show a member's recent orders")
    @app_commands.describe(member="Member to look up")
    async def history(self, interaction: discord.Interaction, member: discord.Member):
        orders = await self.db.order_history(member.id)
        embed = info_embed(f"🗂️ Orders for {member.display_name}", format_order_list(orders))
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="close", description="Cancel the order in this channel")
    async def close(self, interaction: discord.Interaction):
        self._order_here(interaction)
        order = await self.tracker.cancel(interaction.channel_id, interaction.user.id)
        await interaction.response.send_message(
            embed=info_embed(
                "🔒 Order Cancelled",
                f"Order `{order.order_id}` was force-closed by {interaction.user.mention}.",
                color=ERROR_COLOR,
            ),
            view=reopen_view(),
        )
        await self.desk.notifier.status_update(order, interaction.user.id, "Cancelled")

    @app_commands.command(name="reopen", description="Reopen a cancelled order before its channel is deleted")
    async def reopen(self, interaction: discord.Interaction):
        self._order_here(interaction)
        await self.desk.reopen(interaction)


class PanelGroup(app_commands.Group):
    def __init__(self, settings: Settings, db: "Database"):
        super().__init__(name="panel", description="Post the order panel")
        self.settings = settings
        self.db = db

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if is_staff(interaction.user, self.settings):
            return True
        await send_ephemeral(interaction, error_embed("Only staff members can post panels."))
        return False

    @app_commands.command(name="send", description="Post the order panel in a channel")
    @app_commands.describe(template="Panel style", channel="Where to post (defaults to here)")
    @app_commands.choices(template=TEMPLATE_CHOICES)
    async def send(
        self,
        interaction: discord.Interaction,
        template: Optional[app_commands.Choice[str]] = None,
        channel: Optional[discord.TextChannel] = None,
    ):
        if template is not None:
            name = template.value
            await self.db.set_setting(PANEL_TEMPLATE_SETTING, name)
        else:
            name = (await self.db.get_settings()).get(PANEL_TEMPLATE_SETTING, "default")
        target = channel or interaction.channel
        try:
            await target.send(embed=panel_embed(PANEL_TEMPLATES[name]), view=order_panel_view(name))
        except discord.HTTPException:
            _log.warning("Failed to post the order panel in %s", getattr(target, "id", None))
            await send_ephemeral(interaction, error_embed("I couldn't post the panel in that channel."))
            return
        await interaction.response.send_message(
            embed=info_embed("✅ Panel Posted", f"The **{name}** panel was posted in {target.mention}."),
            ephemeral=True,
        )

    @app_commands.command(name="reset", description="Go back to the default panel style")
    async def reset(self, interaction: discord.Interaction):
        await self.db.set_setting(PANEL_TEMPLATE_SETTING, None)
        _log.info("Panel template reset by %s", interaction.user.id)
        await interaction.response.send_message(
            embed=info_embed("🔄 Panel Reset", "The next panel will use the **default** style."),
            ephemeral=True,
        )

    @app_commands.command(name="preview", description="Preview an order panel template")
    @app_commands.describe(template="Panel style")
    @app_commands.choices(template=TEMPLATE_CHOICES)
    async def preview(self, interaction: discord.Interaction, template: app_commands.Choice[str]):
        await interaction.response.send_message(
            embed=panel_embed(PANEL_TEMPLATES[template.value]), ephemeral=True
        )


class SetupGroup(app_commands.Group):
    def __init__(self, settings: Settings, db: "Database"):
        super().__init__(name="setup", description="Configure the order system")
        self.settings = settings
        self.db = db

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        permissions = getattr(interaction.user, "guild_permissions", None)
        if self.settings.is_admin(interaction.user.id) or (permissions and permissions.administrator):
            return True
        await send_ephemeral(interaction, error_embed("Only administrators can change the setup."))
        return False

    async def _store(self, name: str, value: Optional[int]) -> None:
        self.settings.tickets.update(name, value)
        await self.db.set_setting(name, None if value is None else str(value))

    @app_commands.command(name="channels", description="Set the order feed and log channels")
    @app_commands.describe(
        orders="New orders and status updates",
        received="Completed orders",
        ongoing="Unclaimed orders board",
        log="Audit log",
    )
    async def channels(
        self,
        interaction: discord.Interaction,
        orders: Optional[discord.TextChannel] = None,
        received: Optional[discord.TextChannel] = None,
        ongoing: Optional[discord.TextChannel] = None,
        log: Optional[discord.TextChannel] = None,
    ):
        changes = {
            "orders_channel_id": orders,
            "received_channel_id": received,
            "ongoing_channel_id": ongoing,
            "log_channel_id": log,
        }
        updated = []
        for name, channel in changes.items():
            if channel is not None:
                await self._store(name, channel.id)
                updated.append(f"**{name.removesuffix('_channel_id').title()}** → {channel.mention}")
        description = "\n".join(updated) or "Nothing was changed."
        await interaction.response.send_message(
            embed=info_embed("⚙️ Channels Updated", description), ephemeral=True
        )

    @app_commands.command(name="category", description="Set the category new order channels go in")
    async def category(self, interaction: discord.Interaction, category: discord.CategoryChannel):
        await self._store("category_id", category.id)
        await interaction.response.send_message(
            embed=info_embed("⚙️ Category Updated", f"New orders will open under **{category.name}**."),
            ephemeral=True,
        )

    @app_commands.command(name="role", description="Set the support role that handles orders")
    async def role(self, interaction: discord.Interaction, role: discord.Role):
        await self._store("support_role_id", role.id)
        await interaction.response.send_message(
            embed=info_embed("⚙️ Support Role Updated", f"{role.mention} will handle new orders."),
            ephemeral=True,
        )

    @app_commands.command(name="show", description="Show the current order system configuration")
    async def show(self, interaction: discord.Interaction):
        tickets = self.settings.tickets

        def channel(value: Optional[int]) -> str:
            return f"<#{value}>" if value else "Not set"

        embed = info_embed("⚙️ Order System Setup")
        embed.add_field(
            name="Category", value=f"<#{tickets.category_id}>" if tickets.category_id else "Not set", inline=True
        )
        embed.add_field(
            name="Support role",
            value=f"<@&{tickets.support_role_id}>" if tickets.support_role_id else "Not set",
            inline=True,
        )
        embed.add_field(name="Orders", value=channel(tickets.orders_channel_id), inline=True)
        embed.add_field(name="Completed", value=channel(tickets.received_channel_id), inline=True)
        embed.add_field(name="Unclaimed board", value=channel(tickets.ongoing_channel_id), inline=True)
        embed.add_field(name="Log", value=channel(tickets.log_channel_id), inline=True)
        await interaction.response.send_message(embed=embed, ephemeral=True)
