"""Embed builder utilities for consistent formatting."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Tuple

import discord

from .catalog import (
    CatalogStats,
    CategorySummary,
    Purchase,
    ShopItem,
    TradeRequest,
    category_emoji,
    stock_emoji,
    stock_label,
)
from .config import DEFAULT_USD_TO_PHP_RATE
from .currency import dual_price, format_php, format_usd, usd_to_php
from .orders import ORDER_FIELD_LABELS, Order, OrderStats, OrderStatus

DEFAULT_COLOR = 0x0099FF
SUCCESS_COLOR = 0x00FF00
WARNING_COLOR = 0xFFAA00
ERROR_COLOR = 0xFF0000
FOOTER_TEXT = "Order Desk • Professional Services"
#: Orders listed on the unclaimed board before collapsing into "... and N more".
BOARD_LIMIT = 10

STATUS_STYLE = {
    OrderStatus.PENDING: ("⏳", WARNING_COLOR),
    OrderStatus.PROCESSING: ("🔄", DEFAULT_COLOR),
    OrderStatus.COMPLETED: ("✅", SUCCESS_COLOR),
    OrderStatus.CANCELLED: ("❌", ERROR_COLOR),
}


def info_embed(title: str, description: str | None = None, *, color: int = DEFAULT_COLOR) -> discord.Embed:
    embed = discord.Embed(title=title, description=description or "", color=color)
    embed.set_footer(text=FOOTER_TEXT)
    return embed


def error_embed(description: str) -> discord.Embed:
    return info_embed("❌ Error", description, color=ERROR_COLOR)


def _timestamp(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value else None


def _relative(value: Optional[float]) -> str:
    return f"<t:{int(value)}:R>" if value else "—"


def _truncate(text: str, limit: int = 1000) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def status_label(status: OrderStatus) -> str:
    emoji, _ = STATUS_STYLE[status]
    return f"{emoji} {status.value.title()}"


def _add_order_fields(embed: discord.Embed, order: Order, *, details: bool = True) -> None:
    embed.add_field(name="Order ID", value=f"`{order.order_id}`", inline=True)
    embed.add_field(name="Customer", value=f"<@{order.requester_id}>", inline=True)
    embed.add_field(name=ORDER_FIELD_LABELS["service"], value=_truncate(order.service), inline=True)
    if details:
        embed.add_field(
            name=ORDER_FIELD_LABELS["details"], value=_truncate(order.details), inline=False
        )
    embed.add_field(name=ORDER_FIELD_LABELS["quantity"], value=_truncate(order.quantity), inline=True)
    embed.add_field(name=ORDER_FIELD_LABELS["budget"], value=_truncate(order.budget), inline=True)
    embed.add_field(name=ORDER_FIELD_LABELS["urgency"], value=_truncate(order.urgency), inline=True)


def order_ticket_embed(order: Order) -> discord.Embed:
    """Welcome message posted inside a freshly created order channel."""

    embed = info_embed(
        "🛒 New Order Received",
        f"Hello <@{order.requester_id}>! Thank you for your order. "
        "Our team will review it and get back to you shortly.",
    )
    _add_order_fields(embed, order)
    embed.add_field(name="Status", value=status_label(order.status), inline=True)
    embed.timestamp = _timestamp(order.created_at)
    return embed


def order_confirmation_embed(order: Order, channel_id: int) -> discord.Embed:
    return info_embed(
        "✅ Order Submitted",
        f"Your order `{order.order_id}` has been created in <#{channel_id}>.",
        color=SUCCESS_COLOR,
    )


def new_order_embed(order: Order) -> discord.Embed:
    embed = info_embed("📥 New Order", f"A new order was placed in <#{order.channel_id}>.")
    _add_order_fields(embed, order)
    embed.timestamp = _timestamp(order.created_at)
    return embed


def claimed_embed(order: Order) -> discord.Embed:
    embed = info_embed(
        "🔄 Order Claimed & In Progress",
        f"<@{order.claimed_by}> is now handling order `{order.order_id}`.",
    )
    _add_order_fields(embed, order, details=False)
    embed.timestamp = _timestamp(order.claimed_at)
    return embed


def status_update_embed(order: Order, actor_id: int) -> discord.Embed:
    emoji, color = STATUS_STYLE[order.status]
    embed = info_embed(
        f"{emoji} Order {order.status.value.title()}",
        f"Order `{order.order_id}` was updated by <@{actor_id}>.",
        color=color,
    )
    embed.add_field(name="Customer", value=f"<@{order.requester_id}>", inline=True)
    embed.add_field(name="Service", value=_truncate(order.service), inline=True)
    embed.add_field(name="Status", value=status_label(order.status), inline=True)
    return embed


def delivered_embed(order: Order) -> discord.Embed:
    embed = info_embed(
        "📦 Order Delivered",
        f"Order `{order.order_id}` for <@{order.requester_id}> has been completed.",
        color=SUCCESS_COLOR,
    )
    embed.add_field(name="Service", value=_truncate(order.service), inline=True)
    embed.add_field(name="Handled by", value=f"<@{order.claimed_by}>" if order.claimed_by else "—", inline=True)
    embed.add_field(name="Completed by", value=f"<@{order.completed_by}>", inline=True)
    embed.timestamp = _timestamp(order.completed_at)
    return embed


def unclaimed_board_embed(pending: Sequence[Order]) -> discord.Embed:
    if not pending:
        return info_embed(
            "📋 Unclaimed Orders",
            "No orders are waiting to be claimed. 🎉",
            color=SUCCESS_COLOR,
        )

    lines = [
        f"**{order.order_id}** • <@{order.requester_id}> • {_truncate(order.service, 60)} "
        f"• {_truncate(order.budget, 30)} • <#{order.channel_id}> • {_relative(order.created_at)}"
        for order in pending[:BOARD_LIMIT]
    ]
    if len(pending) > BOARD_LIMIT:
        lines.append(f"... and {len(pending) - BOARD_LIMIT} more")
    return info_embed(
        f"📋 Unclaimed Orders ({len(pending)})", "\n".join(lines), color=WARNING_COLOR
    )


def log_embed(action: str, order: Order, actor_id: int) -> discord.Embed:
    _, color = STATUS_STYLE[order.status]
    embed = info_embed(f"📝 Order {action}", color=color)
    embed.add_field(name="Order ID", value=f"`{order.order_id}`", inline=True)
    embed.add_field(name="Customer", value=f"<@{order.requester_id}>", inline=True)
    embed.add_field(name="By", value=f"<@{actor_id}>", inline=True)
    if order.channel_id:
        embed.add_field(name="Channel", value=f"<#{order.channel_id}>", inline=True)
    embed.timestamp = datetime.now(tz=timezone.utc)
    return embed


def order_info_embed(order: Order) -> discord.Embed:
    _, color = STATUS_STYLE[order.status]
    embed = info_embed(f"📄 Order {order.order_id}", color=color)
    _add_order_fields(embed, order)
    embed.add_field(name="Status", value=status_label(order.status), inline=True)
    embed.add_field(name="Created", value=_relative(order.created_at), inline=True)
    if order.claimed_by:
        embed.add_field(
            name="Claimed", value=f"<@{order.claimed_by}> {_relative(order.claimed_at)}", inline=True
        )
    if order.completed_by:
        embed.add_field(
            name="Completed",
            value=f"<@{order.completed_by}> {_relative(order.completed_at)}",
            inline=True,
        )
    if order.cancelled_by:
        embed.add_field(
            name="Cancelled",
            value=f"<@{order.cancelled_by}> {_relative(order.cancelled_at)}",
            inline=True,
        )
    return embed


def order_stats_embed(stats: OrderStats) -> discord.Embed:
    embed = info_embed("📊 Order Statistics")
    embed.add_field(name="Total", value=str(stats.total), inline=True)
    embed.add_field(name="⏳ Pending", value=str(stats.pending), inline=True)
    embed.add_field(name="🔄 Processing", value=str(stats.processing), inline=True)
    embed.add_field(name="✅ Completed", value=str(stats.completed), inline=True)
    embed.add_field(name="❌ Cancelled", value=str(stats.cancelled), inline=True)
    embed.add_field(name="Open tickets", value=str(stats.active_channels), inline=True)
    embed.add_field(name="Completion rate", value=f"{stats.completion_rate}%", inline=True)
    return embed


def format_order_list(orders: Iterable[Order]) -> str:
    lines = [
        f"{STATUS_STYLE[order.status][0]} **{order.order_id}** • <@{order.requester_id}> "
        f"• {_truncate(order.service, 60)} • <#{order.channel_id}>"
        for order in orders
    ]
    return "\n".join(lines) or "No active orders."


def closing_embed(seconds: float) -> discord.Embed:
    return info_embed(
        "🔒 Closing Channel",
        f"This channel will be deleted in {int(seconds)} seconds.",
        color=WARNING_COLOR,
    )


# -- order panel templates ---------------------------------------------------


@dataclass(frozen=True)
class PanelTemplate:
    title: str
    description: str
    button_label: str
    button_emoji: str
    color: int


PANEL_TEMPLATES = {
    "default": PanelTemplate(
        "🛒 Place an Order",
        "Click the button below to open an order ticket.\n\n"
        "You will be asked for the service, order details, quantity, budget and urgency. "
        "A private channel is created for you and our staff.",
        "Create Order",
        "🛒",
        DEFAULT_COLOR,
    ),
    "gaming": PanelTemplate(
        "🎮 Gaming Services",
        "Boosting, coaching, items and accounts.\n\n"
        "Press **Order Now** to tell us what you need. A staff member will pick it up shortly.",
        "Order Now",
        "🎮",
        0x9B59B6,
    ),
    "digital": PanelTemplate(
        "💻 Digital Products",
        "Software, designs, subscriptions and digital goods.\n\n"
        "Press **Request Product** and describe what you are looking for.",
        "Request Product",
        "💻",
        0x3498DB,
    ),
    "services": PanelTemplate(
        "🛠️ Professional Services",
        "Custom work delivered by our team.\n\n"
        "Press **Request Service** and share the details, your budget and deadline.",
        "Request Service",
        "🛠️",
        0x2ECC71,
    ),
}


def panel_embed(template: PanelTemplate) -> discord.Embed:
    embed = info_embed(template.title, template.description, color=template.color)
    embed.add_field(name="⏱️ Response time", value="Usually within a few hours", inline=True)
    embed.add_field(name="🔒 Privacy", value="Only you and staff can see your ticket", inline=True)
    return embed


# -- shop --------------------------------------------------------------------


def item_embed(item: ShopItem, rate: Decimal = DEFAULT_USD_TO_PHP_RATE) -> discord.Embed:
    embed = info_embed(
        f"{category_emoji(item.category)} {item.name}",
        item.description or "No description provided.",
    )
    embed.add_field(name="Price", value=dual_price(item.price, rate), inline=True)
    embed.add_field(name="Category", value=item.category, inline=True)
    embed.add_field(name="Stock", value=f"{stock_emoji(item.stock)} {stock_label(item.stock)}", inline=True)
    embed.add_field(name="Item ID", value=f"`{item.item_id}`", inline=True)
    if item.image_url:
        embed.set_thumbnail(url=item.image_url)
    return embed


def format_item_lines(items: Iterable[ShopItem], rate: Decimal = DEFAULT_USD_TO_PHP_RATE) -> str:
    lines = [
        f"{stock_emoji(item.stock)} `{item.item_id}` **{item.name}** — {dual_price(item.price, rate)} "
        f"({stock_label(item.stock)})"
        for item in items
    ]
    return _truncate("\n".join(lines), 4000) or "No items listed yet."


def category_embed(category: str, items: Sequence[ShopItem], rate: Decimal = DEFAULT_USD_TO_PHP_RATE) -> discord.Embed:
    return info_embed(
        f"{category_emoji(category)} {category} ({len(items)})", format_item_lines(items, rate)
    )


def categories_embed(summaries: Sequence[CategorySummary], rate: Decimal = DEFAULT_USD_TO_PHP_RATE) -> discord.Embed:
    embed = info_embed("📂 Shop Categories", "" if summaries else "No items listed yet.")
    for summary in summaries[:25]:
        embed.add_field(
            name=f"{category_emoji(summary.name)} {summary.name}",
            value=(
                f"{summary.count} item(s)\nAvg {dual_price(summary.average_price, rate)}\n"
                f"Total {format_usd(summary.total_value)}"
            ),
            inline=True,
        )
    return embed


def shop_stats_embed(
    stats: CatalogStats,
    sales: Tuple[int, Decimal, int, list[Tuple[str, int]]],
    rate: Decimal = DEFAULT_USD_TO_PHP_RATE,
) -> discord.Embed:
    paid, revenue, customers, popular = sales
    embed = info_embed("📈 Shop Statistics")
    embed.add_field(name="Items", value=str(stats.total_items), inline=True)
    embed.add_field(name="Categories", value=str(stats.categories), inline=True)
    embed.add_field(name="In stock", value=str(stats.in_stock), inline=True)
    embed.add_field(name="Unlimited", value=str(stats.unlimited), inline=True)
    embed.add_field(name="Average price", value=dual_price(stats.average_price, rate), inline=True)
    embed.add_field(name="Sales", value=str(paid), inline=True)
    embed.add_field(
        name="Revenue",
        value=f"{format_usd(revenue)} ({format_php(usd_to_php(revenue, rate))})",
        inline=True,
    )
    embed.add_field(name="Customers", value=str(customers), inline=True)
    embed.add_field(
        name="Best sellers",
        value="\n".join(f"**{name}** x{count}" for name, count in popular) or "No sales yet.",
        inline=False,
    )
    return embed


def shop_panel_embed() -> discord.Embed:
    embed = info_embed(
        "🏪 Community Shop",
        "Browse items, start a trade with another member or review your purchases.",
    )
    embed.add_field(name="🛍️ Browse", value="Look through items by category", inline=True)
    embed.add_field(name="🤝 Trade", value="Send a trade request to a member", inline=True)
    embed.add_field(name="🧾 Purchases", value="See your recent purchases", inline=True)
    return embed


def purchase_embed(purchase: Purchase, rate: Decimal = DEFAULT_USD_TO_PHP_RATE) -> discord.Embed:
    embed = info_embed(
        "🧾 Purchase Started",
        f"<@{purchase.user_id}> is buying **{purchase.item_name}**.\n"
        "A staff member will share payment details here.",
        color=WARNING_COLOR,
    )
    embed.add_field(name="Purchase ID", value=f"`{purchase.purchase_id}`", inline=True)
    embed.add_field(name="Price", value=dual_price(purchase.price, rate), inline=True)
    embed.add_field(name="Status", value=purchase.status.title(), inline=True)
    return embed


def format_purchases(purchases: Iterable[Purchase]) -> str:
    icons = {"pending": "⏳", "paid": "✅", "cancelled": "❌"}
    lines = [
        f"{icons.get(purchase.status, '•')} `{purchase.purchase_id}` **{purchase.item_name}** "
        f"— {format_usd(purchase.price)} • {_relative(purchase.created_at)}"
        for purchase in purchases
    ]
    return "\n".join(lines) or "You have not bought anything yet."


def trade_request_embed(trade: TradeRequest) -> discord.Embed:
    embed = info_embed(
        "🤝 Trade Request",
        f"<@{trade.requester_id}> wants to trade with <@{trade.target_id}>.",
    )
    embed.add_field(name="Platform", value=_truncate(trade.game_platform), inline=False)
    embed.add_field(name="Offering", value=_truncate(trade.requester_offer), inline=True)
    embed.add_field(name="Wants", value=_truncate(trade.target_offer), inline=True)
    if trade.notes:
        embed.add_field(name="Notes", value=_truncate(trade.notes), inline=False)
    embed.add_field(name="Expires", value=_relative(trade.expires_at), inline=True)
    embed.add_field(name="Trade ID", value=f"`{trade.trade_id}`", inline=True)
    return embed


def format_trades(trades: Iterable[TradeRequest], user_id: int, now: float) -> str:
    icons = {"pending": "⏳", "accepted": "✅", "declined": "❌"}
    lines = []
    for trade in trades:
        status = "expired" if trade.is_expired(now) else trade.status
        partner = trade.target_id if trade.requester_id == user_id else trade.requester_id
        direction = "to" if trade.requester_id == user_id else "from"
        lines.append(
            f"{icons.get(status, '⌛')} `{trade.trade_id}` {direction} <@{partner}> "
            f"• {_truncate(trade.game_platform, 40)} • {status}"
        )
    return "\n".join(lines) or "No trade requests yet."


def conversion_embed(usd: Decimal, php: Decimal, rate: Decimal) -> discord.Embed:
    embed = info_embed("💱 Currency Conversion", f"{format_usd(usd)} ≈ {format_php(php)}")
    embed.add_field(name="Rate", value=f"$1 = ₱{rate}", inline=True)
    return embed


def format_uptime(seconds: float) -> str:
    minutes, _ = divmod(int(max(seconds, 0)), 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h {minutes}m"


def bot_info_embed(
    *,
    guilds: int,
    members: int,
    latency_ms: int,
    uptime: float,
    owner_id: Optional[int],
    admins: int,
    configured: bool,
    stats: OrderStats,
) -> discord.Embed:
    embed = info_embed("🤖 Bot Information")
    embed.add_field(name="Servers", value=str(guilds), inline=True)
    embed.add_field(name="Members", value=str(members), inline=True)
    embed.add_field(name="Latency", value=f"{latency_ms}ms", inline=True)
    embed.add_field(name="Uptime", value=format_uptime(uptime), inline=True)
    embed.add_field(name="Owner", value=f"<@{owner_id}>" if owner_id else "Not set", inline=True)
    embed.add_field(name="Admins", value=str(admins), inline=True)
    embed.add_field(name="Order system", value="✅ Configured" if configured else "❌ Not configured", inline=True)
    embed.add_field(name="Open tickets", value=str(stats.active_channels), inline=True)
    embed.add_field(name="Tracked orders", value=str(stats.total), inline=True)
    return embed
