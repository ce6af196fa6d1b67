from decimal import Decimal

import discord

from order_desk import embeds
from order_desk.catalog import CatalogStats, ShopItem, TradeRequest
from order_desk.orders import Order, OrderStats, OrderStatus


def make_order(index: int, status: OrderStatus = OrderStatus.PENDING) -> Order:
    return Order(
        order_id=f"#{index:06d}",
        requester_id=index,
        requester_name=f"User {index}",
        service=f"Service {index}",
        details="Details",
        quantity="1",
        budget="$25",
        urgency="ASAP",
        status=status,
        created_at=1_700_000_000.0 + index,
        channel_id=1000 + index,
    )


def test_info_embed_sets_footer():
    embed = embeds.info_embed("Title", "Body")
    assert isinstance(embed, discord.Embed)
    assert embed.footer.text.startswith("Order Desk")
    assert embed.color.value == embeds.DEFAULT_COLOR


def test_unclaimed_board_lists_at_most_ten_orders():
    pending = [make_order(index) for index in range(12)]

    embed = embeds.unclaimed_board_embed(pending)

    assert "(12)" in embed.title
    assert "#000009" in embed.description
    assert "#000010" not in embed.description
    assert embed.description.endswith("... and 2 more")


def test_unclaimed_board_when_empty():
    embed = embeds.unclaimed_board_embed([])
    assert "No orders" in embed.description
    assert embed.color.value == embeds.SUCCESS_COLOR


def test_order_embeds_mention_customer():
    order = make_order(1)
    order.status = OrderStatus.PROCESSING
    order.claimed_by = 42

    assert any(field.value == "<@1>" for field in embeds.new_order_embed(order).fields)
    assert "<@42>" in embeds.claimed_embed(order).description
    update = embeds.status_update_embed(order, 42)
    assert update.title == "🔄 Order Processing"


def test_order_stats_embed_shows_completion_rate():
    stats = OrderStats(total=4, pending=1, processing=1, completed=1, cancelled=1, active_channels=2)
    embed = embeds.order_stats_embed(stats)
    assert any(field.value == "25%" for field in embed.fields)


def test_item_embed_shows_both_currencies():
    item = ShopItem(1, "Dragon Pet", "Rare", Decimal("25.50"), "Roblox", stock=3)
    embed = embeds.item_embed(item)

    price = next(field.value for field in embed.fields if field.name == "Price")
    assert price == "$25.50 (₱1,440)"
    assert embed.title.startswith("🎮")


def test_format_item_lines_when_empty():
    assert embeds.format_item_lines([]) == "No items listed yet."


def test_shop_stats_embed_lists_best_sellers():
    stats = CatalogStats(total_items=2, categories=1, total_value=Decimal("30"), in_stock=2, unlimited=1)
    embed = embeds.shop_stats_embed(stats, (3, Decimal("45.00"), 2, [("Sword", 2), ("Shield", 1)]))

    sellers = next(field.value for field in embed.fields if field.name == "Best sellers")
    assert sellers.splitlines() == ["**Sword** x2", "**Shield** x1"]


def test_format_trades_marks_expired_requests():
    trade = TradeRequest(7, 1, 2, "Roblox", "Dragon", "Unicorn", "", "pending", 0.0, 100.0)

    text = embeds.format_trades([trade], 1, now=200.0)

    assert "expired" in text
    assert "to <@2>" in text


def test_panel_templates_have_distinct_labels():
    labels = {template.button_label for template in embeds.PANEL_TEMPLATES.values()}
    assert len(labels) == len(embeds.PANEL_TEMPLATES)
    embed = embeds.panel_embed(embeds.PANEL_TEMPLATES["gaming"])
    assert embed.title == "🎮 Gaming Services"
