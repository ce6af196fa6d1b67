"""Shop panel, purchase channels, trade requests and the ``/shop`` commands."""
from __future__ import annotations

import logging
import re
import time
from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands

from .catalog import (
    ItemSpec,
    PaymentResult,
    build_item_spec,
    catalog_stats,
    category_emoji,
    group_by_category,
    match_category,
    parse_item_spec,
    stock_label,
    summarize_categories,
)
from .config import Settings
from .currency import dual_price
from .embeds import (
    ERROR_COLOR,
    SUCCESS_COLOR,
    WARNING_COLOR,
    categories_embed,
    category_embed,
    error_embed,
    format_item_lines,
    format_purchases,
    format_trades,
    info_embed,
    item_embed,
    purchase_embed,
    shop_panel_embed,
    shop_stats_embed,
    trade_request_embed,
)
from .tickets import create_private_channel, is_staff
from .triggers import Trigger, TriggerView, send_ephemeral, trigger_button, trigger_select

if TYPE_CHECKING:
    from .cleanup import DeletionScheduler
    from .database import Database

_log = logging.getLogger(__name__)

_USER_ID = re.compile(r"\d{15,20}")


def is_shop_admin(member: discord.abc.User, settings: Settings) -> bool:
    permissions = getattr(member, "guild_permissions", None)
    return settings.is_admin(member.id) or bool(permissions and permissions.administrator)


def parse_user_id(raw: str) -> Optional[int]:
    """Pull a user id out of a mention like ``<@123>`` or a bare id."""

    match = _USER_ID.search(raw or "")
    return int(match.group()) if match else None


def purchase_channel_name(display_name: str) -> str:
    slug = re.sub(r"-+", "-", re.sub(r"[^a-z0-9]", "-", display_name.lower())).strip("-")
    return f"purchase-{slug or 'customer'}"[:100]


def shop_panel_view() -> TriggerView:
    return TriggerView(
        trigger_button(Trigger.BROWSE_SHOP, "Browse Shop", emoji="🛍️", style=discord.ButtonStyle.primary),
        trigger_button(Trigger.START_TRADE, "Start Trade", emoji="🤝", style=discord.ButtonStyle.success),
        trigger_button(Trigger.MY_PURCHASES, "My Purchases", emoji="🧾"),
        trigger_button(Trigger.MANAGE_SHOP, "Manage Shop", emoji="⚙️"),
    )


def purchase_controls_view() -> TriggerView:
    return TriggerView(
        trigger_button(
            Trigger.COMPLETE_PURCHASE, "Mark as Paid", emoji="✅", style=discord.ButtonStyle.success
        ),
        trigger_button(
            Trigger.CANCEL_PURCHASE, "Cancel Purchase", emoji="❌", style=discord.ButtonStyle.danger
        ),
    )


def trade_response_view(trade_id: int) -> TriggerView:
    return TriggerView(
        trigger_button(
            Trigger.ACCEPT_TRADE, "Accept", argument=trade_id, emoji="✅", style=discord.ButtonStyle.success
        ),
        trigger_button(
            Trigger.DECLINE_TRADE, "Decline", argument=trade_id, emoji="❌", style=discord.ButtonStyle.danger
        ),
    )


class AddItemModal(discord.ui.Modal):
    def __init__(self, desk: "ShopDesk"):
        super().__init__(title="Add shop item")
        self._desk = desk
        self.name_input = discord.ui.TextInput(label="Item name", max_length=100)
        self.price_input = discord.ui.TextInput(label="Price (USD)", placeholder="25.50", max_length=12)
        self.category_input = discord.ui.TextInput(
            label="Category", placeholder="Roblox, Steam, Accounts...", max_length=50, required=False
        )
        self.description_input = discord.ui.TextInput(
            label="Description",
            style=discord.TextStyle.paragraph,
            max_length=1000,
            required=False,
        )
        self.stock_input = discord.ui.TextInput(
            label="Stock (-1 for unlimited)", default="-1", max_length=6, required=False
        )
        for item in (
            self.name_input,
            self.price_input,
            self.category_input,
            self.description_input,
            self.stock_input,
        ):
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        try:
            spec = build_item_spec(
                self.name_input.value,
                self.price_input.value,
                self.category_input.value or "",
                self.description_input.value or "",
                self.stock_input.value or "-1",
            )
        except ValueError as exc:
            await send_ephemeral(interaction, error_embed(str(exc)))
            return
        await self._desk.add_item(interaction, spec)


class TradeRequestModal(discord.ui.Modal):
    def __init__(self, desk: "ShopDesk"):
        super().__init__(title="🔄 Create Trade Request")
        self._desk = desk
        self.target_input = discord.ui.TextInput(
            label="Who do you want to trade with?",
            placeholder="@mention or user ID",
            max_length=50,
        )
        self.platform_input = discord.ui.TextInput(
            label="Game / platform",
            placeholder="Example: Roblox - Adopt Me",
            max_length=100,
        )
        self.offer_input = discord.ui.TextInput(
            label="What are you offering?",
            style=discord.TextStyle.paragraph,
            max_length=500,
        )
        self.want_input = discord.ui.TextInput(
            label="What do you want in return?",
            style=discord.TextStyle.paragraph,
            max_length=500,
        )
        self.notes_input = discord.ui.TextInput(
            label="Additional notes",
            placeholder="Example: Flexible on pricing, can add cash",
            style=discord.TextStyle.paragraph,
            max_length=500,
            required=False,
        )
        for item in (
            self.target_input,
            self.platform_input,
            self.offer_input,
            self.want_input,
            self.notes_input,
        ):
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self._desk.submit_trade(
            interaction,
            target_raw=self.target_input.value,
            platform=self.platform_input.value,
            offer=self.offer_input.value,
            want=self.want_input.value,
            notes=self.notes_input.value or "",
        )


class ShopDesk:
    """Handles shop buttons, purchase channels and trade requests."""

    def __init__(
        self, settings: Settings, db: "Database", scheduler: "DeletionScheduler | None" = None
    ) -> None:
        self.settings = settings
        self.db = db
        self.scheduler = scheduler

    @property
    def rate(self):
        return self.settings.usd_to_php_rate

    def handlers(self):
        return [
            (Trigger.BROWSE_SHOP, self.browse),
            (Trigger.START_TRADE, self.start_trade),
            (Trigger.MY_PURCHASES, self.my_purchases),
            (Trigger.MANAGE_SHOP, self.manage),
            (Trigger.SELECT_CATEGORY, self.select_category),
            (Trigger.SELECT_ITEM, self.select_item),
            (Trigger.BUY_ITEM, self.buy_item),
            (Trigger.CONFIRM_PURCHASE, self.confirm_purchase),
            (Trigger.COMPLETE_PURCHASE, self.complete_purchase),
            (Trigger.CANCEL_PURCHASE, self.cancel_purchase),
            (Trigger.ACCEPT_TRADE, self.accept_trade),
            (Trigger.DECLINE_TRADE, self.decline_trade),
        ]

    # -- browsing --------------------------------------------------------

    async def browse(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        items = await self.db.get_shop_items()
        if not items:
            await send_ephemeral(
                interaction, info_embed("🏪 Shop is empty", "No items are listed right now. Check back soon!")
            )
            return

        grouped = group_by_category(items)
        options = [
            discord.SelectOption(
                label=category[:100],
                value=category[:100],
                description=f"{len(entries)} item(s)",
                emoji=category_emoji(category),
            )
            for category, entries in grouped.items()
        ]
        embed = categories_embed(summarize_categories(items), self.rate)
        embed.title = "🛍️ Browse the Shop"
        view = TriggerView(trigger_select(Trigger.SELECT_CATEGORY, options, placeholder="Choose a category"))
        await interaction.response.send_message(embed=embed, view=view, ephemeral=True)

    async def select_category(self, interaction: discord.Interaction, category: Optional[str]) -> None:
        items = [item for item in await self.db.get_shop_items() if item.category == category]
        if not items:
            await send_ephemeral(interaction, error_embed("That category has no items anymore."))
            return

        options = [
            discord.SelectOption(
                label=item.name[:100],
                value=str(item.item_id),
                description=f"{dual_price(item.price, self.rate)} • {stock_label(item.stock)}"[:100],
            )
            for item in items
            if item.in_stock
        ]
        view = None
        if options:
            view = TriggerView(trigger_select(Trigger.SELECT_ITEM, options, placeholder="Choose an item"))
        await interaction.response.edit_message(
            embed=category_embed(category, items, self.rate), view=view
        )

    async def _active_item(self, interaction: discord.Interaction, raw_id: Optional[str]):
        try:
            item = await self.db.get_shop_item(int(raw_id or ""))
        except ValueError:
            item = None
        if item is None or not item.is_active:
            await send_ephemeral(interaction, error_embed("That item is no longer available."))
            return None
        if not item.in_stock:
            await send_ephemeral(interaction, error_embed(f"**{item.name}** is out of stock."))
            return None
        return item

    async def select_item(self, interaction: discord.Interaction, raw_id: Optional[str]) -> None:
        item = await self._active_item(interaction, raw_id)
        if item is None:
            return
        view = TriggerView(
            trigger_button(
                Trigger.BUY_ITEM,
                f"Buy for {dual_price(item.price, self.rate)}",
                argument=item.item_id,
                emoji="🛒",
                style=discord.ButtonStyle.success,
            )
        )
        await interaction.response.edit_message(embed=item_embed(item, self.rate), view=view)

    async def buy_item(self, interaction: discord.Interaction, raw_id: Optional[str]) -> None:
        item = await self._active_item(interaction, raw_id)
        if item is None:
            return
        embed = info_embed(
            "🛒 Confirm Purchase",
            f"Buy **{item.name}** for **{dual_price(item.price, self.rate)}**?\n"
            "A private channel will be opened with our staff to arrange payment.",
            color=WARNING_COLOR,
        )
        view = TriggerView(
            trigger_button(
                Trigger.CONFIRM_PURCHASE,
                "Confirm Purchase",
                argument=item.item_id,
                emoji="✅",
                style=discord.ButtonStyle.success,
            )
        )
        await interaction.response.edit_message(embed=embed, view=view)

    async def confirm_purchase(self, interaction: discord.Interaction, raw_id: Optional[str]) -> None:
        if interaction.guild is None:
            await send_ephemeral(interaction, error_embed("Purchases can only be made inside a server."))
            return
        item = await self._active_item(interaction, raw_id)
        if item is None:
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        user = interaction.user
        try:
            channel = await create_private_channel(
                interaction.guild,
                user,
                purchase_channel_name(user.display_name),
                self.settings.tickets,
                reason=f"Purchase of {item.name} by {user}",
            )
        except discord.HTTPException:
            _log.warning("Failed to create a purchase channel for %s", user.id)
            await interaction.followup.send(
                embed=error_embed("I couldn't open a purchase channel. Please contact an administrator."),
                ephemeral=True,
            )
            return

        purchase_id = await self.db.create_purchase(user.id, item, channel.id)
        await self.db.create_or_update_user(user.id, user.name, user.display_name)
        purchase = await self.db.get_purchase_by_channel(channel.id)
        mentions = user.mention
        if self.settings.tickets.support_role_id is not None:
            mentions += f" <@&{self.settings.tickets.support_role_id}>"
        try:
            await channel.send(
                content=mentions, embed=purchase_embed(purchase, self.rate), view=purchase_controls_view()
            )
        except discord.HTTPException:
            _log.warning("Failed to post purchase %s in %s", purchase_id, channel.id)
        await interaction.followup.send(
            embed=info_embed(
                "✅ Purchase Started",
                f"Continue in {channel.mention} to complete your purchase.",
                color=SUCCESS_COLOR,
            ),
            ephemeral=True,
        )

    async def _schedule_cleanup(self, channel_id: int) -> None:
        if self.scheduler is not None:
            await self.scheduler.schedule(channel_id, reason="purchase")

    async def complete_purchase(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        if not is_staff(interaction.user, self.settings):
            await send_ephemeral(interaction, error_embed("Only staff can confirm payments."))
            return
        purchase = await self.db.get_purchase_by_channel(interaction.channel_id)
        if purchase is None or purchase.status != "pending":
            await send_ephemeral(interaction, error_embed("There is no pending purchase in this channel."))
            return
        result = await self.db.mark_purchase_paid(purchase.purchase_id, purchase.item_id)
        if result is PaymentResult.ALREADY_HANDLED:
            await send_ephemeral(interaction, error_embed("This purchase was already handled."))
            return
        if result is PaymentResult.OUT_OF_STOCK:
            await send_ephemeral(interaction, error_embed(f"**{purchase.item_name}** is out of stock."))
            return
        await self.db.add_spend(purchase.user_id, purchase.price)

        await interaction.response.send_message(
            embed=info_embed(
                "✅ Payment Confirmed",
                f"{interaction.user.mention} confirmed payment for **{purchase.item_name}** "
                f"({dual_price(purchase.price, self.rate)}). Thank you <@{purchase.user_id}>!",
                color=SUCCESS_COLOR,
            )
        )
        _log.info("Purchase %s marked paid by %s", purchase.purchase_id, interaction.user.id)
        await self._schedule_cleanup(interaction.channel_id)

    async def cancel_purchase(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        purchase = await self.db.get_purchase_by_channel(interaction.channel_id)
        if purchase is None or purchase.status != "pending":
            await send_ephemeral(interaction, error_embed("There is no pending purchase in this channel."))
            return
        if interaction.user.id != purchase.user_id and not is_staff(interaction.user, self.settings):
            await send_ephemeral(interaction, error_embed("Only the buyer or staff can cancel this purchase."))
            return
        if not await self.db.set_purchase_status(purchase.purchase_id, "cancelled"):
            await send_ephemeral(interaction, error_embed("This purchase was already handled."))
            return

        await interaction.response.send_message(
            embed=info_embed(
                "❌ Purchase Cancelled",
                f"{interaction.user.mention} cancelled the purchase of **{purchase.item_name}**.",
                color=ERROR_COLOR,
            )
        )
        await self._schedule_cleanup(interaction.channel_id)

    async def my_purchases(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        purchases = await self.db.purchases_for_user(interaction.user.id)
        await send_ephemeral(interaction, info_embed("🧾 Your Purchases", format_purchases(purchases)))

    async def manage(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        if not is_shop_admin(interaction.user, self.settings):
            await send_ephemeral(interaction, error_embed("Only shop administrators can manage the shop."))
            return
        await interaction.response.send_modal(AddItemModal(self))

    async def add_item(self, interaction: discord.Interaction, spec: ItemSpec) -> None:
        item_id = await self.db.create_shop_item(spec, interaction.user.id)
        item = await self.db.get_shop_item(item_id)
        _log.info("Shop item %s (%s) added by %s", item_id, spec.name, interaction.user.id)
        embed = item_embed(item, self.rate)
        embed.title = f"✅ Added {item.name}"
        await send_ephemeral(interaction, embed)

    # -- trades ----------------------------------------------------------

    async def start_trade(self, interaction: discord.Interaction, _: Optional[str] = None) -> None:
        await interaction.response.send_modal(TradeRequestModal(self))

    async def submit_trade(
        self,
        interaction: discord.Interaction,
        *,
        target_raw: str,
        platform: str,
        offer: str,
        want: str,
        notes: str = "",
    ) -> None:
        target_id = parse_user_id(target_raw)
        if target_id is None:
            await send_ephemeral(interaction, error_embed("Please mention a member or paste their user ID."))
            return
        if target_id == interaction.user.id:
            await send_ephemeral(interaction, error_embed("You can't trade with yourself."))
            return
        if interaction.guild is not None and interaction.guild.get_member(target_id) is None:
            try:
                await interaction.guild.fetch_member(target_id)
            except discord.HTTPException:
                await send_ephemeral(interaction, error_embed("I couldn't find that member in this server."))
                return

        trade_id = await self.db.create_trade_request(
            interaction.user.id, target_id, platform, offer, want, notes
        )
        trade = await self.db.get_trade_request(trade_id)
        await interaction.response.send_message(
            content=f"<@{target_id}>",
            embed=trade_request_embed(trade),
            view=trade_response_view(trade_id),
        )

    async def _respond_to_trade(
        self, interaction: discord.Interaction, raw_id: Optional[str], status: str
    ) -> None:
        try:
            trade = await self.db.get_trade_request(int(raw_id or ""))
        except ValueError:
            trade = None
        if trade is None:
            await send_ephemeral(interaction, error_embed("That trade request no longer exists."))
            return
        if interaction.user.id != trade.target_id:
            await send_ephemeral(interaction, error_embed("Only the member this trade was sent to can answer it."))
            return
        if trade.is_expired(time.time()):
            await send_ephemeral(interaction, error_embed("This trade request has expired."))
            return
        if not await self.db.set_trade_status(trade.trade_id, interaction.user.id, status):
            await send_ephemeral(interaction, error_embed("This trade request was already answered."))
            return

        trade.status = status
        accepted = status == "accepted"
        embed = trade_request_embed(trade)
        embed.title = "🤝 Trade Accepted" if accepted else "🚫 Trade Declined"
        embed.color = SUCCESS_COLOR if accepted else ERROR_COLOR
        await interaction.response.edit_message(embed=embed, view=None)
        try:
            await interaction.followup.send(
                content=f"<@{trade.requester_id}> your trade request was **{status}** by {interaction.user.mention}."
            )
        except discord.HTTPException:
            _log.warning("Failed to announce trade %s", trade.trade_id)

    async def accept_trade(self, interaction: discord.Interaction, raw_id: Optional[str]) -> None:
        await self._respond_to_trade(interaction, raw_id, "accepted")

    async def decline_trade(self, interaction: discord.Interaction, raw_id: Optional[str]) -> None:
        await self._respond_to_trade(interaction, raw_id, "declined")


class ShopGroup(app_commands.Group):
    def __init__(self, desk: ShopDesk):
        super().__init__(name="shop", description="Browse and manage the shop")
        self.desk = desk
        self.db = desk.db

    @property
    def rate(self):
        return self.desk.rate

    async def _admin_only(self, interaction: discord.Interaction) -> bool:
        if is_shop_admin(interaction.user, self.desk.settings):
            return True
        await send_ephemeral(interaction, error_embed("Only shop administrators can use this command."))
        return False

    @app_commands.command(name="add", description="Add an item to the shop")
    @app_commands.describe(
        name="Item name",
        price="Price in USD",
        category="Category name",
        description="Short description",
        stock="How many are available (-1 for unlimited)",
        image_url="Optional image URL",
    )
    async def add(
        self,
        interaction: discord.Interaction,
        name: str,
        price: str,
        category: str,
        description: str = "",
        stock: int = -1,
        image_url: str = "",
    ):
        if not await self._admin_only(interaction):
            return
        try:
            spec = build_item_spec(name, price, category, description, str(stock), image_url)
        except ValueError as exc:
            await send_ephemeral(interaction, error_embed(str(exc)))
            return
        await self.desk.add_item(interaction, spec)

    @app_commands.command(name="quickadd", description="Add an item using Name | Price | Category | Description | Stock | Image URL")
    @app_commands.describe(details="Name | Price | Category | Description | Stock | Image URL")
    async def quickadd(self, interaction: discord.Interaction, details: str):
        if not await self._admin_only(interaction):
            return
        try:
            spec = parse_item_spec(details)
        except ValueError as exc:
            await send_ephemeral(interaction, error_embed(str(exc)))
            return
        await self.desk.add_item(interaction, spec)

    @app_commands.command(name="form", description="Add an item with a form")
    async def form(self, interaction: discord.Interaction):
        if not await self._admin_only(interaction):
            return
        await interaction.response.send_modal(AddItemModal(self.desk))

    @app_commands.command(name="list", description="List every item in the shop")
    async def list_items(self, interaction: discord.Interaction):
        items = await self.db.get_shop_items()
        embed = info_embed(f"🏪 Shop Items ({len(items)})", format_item_lines(items, self.rate))
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="categories", description="Show shop categories with totals")
    async def categories(self, interaction: discord.Interaction):
        items = await self.db.get_shop_items()
        await interaction.response.send_message(
            embed=categories_embed(summarize_categories(items), self.rate), ephemeral=True
        )

    @app_commands.command(name="category", description="Show the items in one category")
    @app_commands.describe(name="Category name (fuzzy matched)")
    async def category(self, interaction: discord.Interaction, name: str):
        items = await self.db.get_shop_items()
        grouped = group_by_category(items)
        match = match_category(name, grouped.keys())
        if match is None:
            await interaction.response.send_message(
                embed=info_embed(
                    "🔍 No close match",
                    "I couldn't find a category that looks like that. Try `/shop categories`.",
                ),
                ephemeral=True,
            )
            return
        await interaction.response.send_message(
            embed=category_embed(match, grouped[match], self.rate), ephemeral=True
        )

    @app_commands.command(name="remove", description="Remove an item from the shop")
    @app_commands.describe(item_id="ID of the item to remove")
    async def remove(self, interaction: discord.Interaction, item_id: int):
        if not await self._admin_only(interaction):
            return
        if not await self.db.deactivate_shop_item(item_id):
            await send_ephemeral(interaction, error_embed(f"No active item with ID `{item_id}`."))
            return
        _log.info("Shop item %s removed by %s", item_id, interaction.user.id)
        await interaction.response.send_message(
            embed=info_embed("🗑️ Item Removed", f"Item `{item_id}` is no longer listed."), ephemeral=True
        )

    @app_commands.command(name="restock", description="Add stock to an item (-1 for unlimited)")
    @app_commands.describe(item_id="ID of the item", amount="How many to add, or -1 for unlimited")
    async def restock(self, interaction: discord.Interaction, item_id: int, amount: int):
        if not await self._admin_only(interaction):
            return
        if amount == 0 or amount < -1:
            await send_ephemeral(interaction, error_embed("Use a positive amount, or -1 for unlimited."))
            return
        stock = await self.db.restock_shop_item(item_id, amount)
        if stock is None:
            await send_ephemeral(interaction, error_embed(f"No active item with ID `{item_id}`."))
            return
        await interaction.response.send_message(
            embed=info_embed("📦 Item Restocked", f"Item `{item_id}` now has {stock_label(stock).lower()}."),
            ephemeral=True,
        )

    @app_commands.command(name="stats", description="Show shop and sales statistics")
    async def stats(self, interaction: discord.Interaction):
        if not await self._admin_only(interaction):
            return
        items = await self.db.get_shop_items()
        sales = await self.db.sales_summary()
        await interaction.response.send_message(
            embed=shop_stats_embed(catalog_stats(items), sales, self.rate), ephemeral=True
        )

    @app_commands.command(name="purchases", description="Show your recent purchases")
    async def purchases(self, interaction: discord.Interaction):
        await self.desk.my_purchases(interaction)

    @app_commands.command(name="trades", description="Show recent trade requests")
    @app_commands.describe(member="Whose trades to show (defaults to you)")
    async def trades(self, interaction: discord.Interaction, member: Optional[discord.Member] = None):
        target = member or interaction.user
        trades = await self.db.trades_for_user(target.id)
        embed = info_embed(f"🤝 Trades for {target.display_name}", format_trades(trades, target.id, time.time()))
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="panel", description="Post the shop panel")
    @app_commands.describe(channel="Where to post (defaults to here)")
    async def panel(self, interaction: discord.Interaction, channel: Optional[discord.TextChannel] = None):
        if not await self._admin_only(interaction):
            return
        target = channel or interaction.channel
        try:
            await target.send(embed=shop_panel_embed(), view=shop_panel_view())
        except discord.HTTPException:
            _log.warning("Failed to post the shop panel in %s", getattr(target, "id", None))
            await send_ephemeral(interaction, error_embed("I couldn't post the panel in that channel."))
            return
        await interaction.response.send_message(
            embed=info_embed("✅ Panel Posted", f"The shop panel was posted in {target.mention}."),
            ephemeral=True,
        )
