import asyncio
from decimal import Decimal
from pathlib import Path

import pytest

from helpers import FakeGuild, make_interaction, make_user
from order_desk.catalog import build_item_spec
from order_desk.config import Settings, TicketSettings
from order_desk.database import Database
from order_desk.shop import AddItemModal, ShopDesk, parse_user_id, purchase_channel_name

pytestmark = pytest.mark.asyncio

SUPPORT_ROLE = 2
TRADE_TARGET = 123456789012345678


class RecordingScheduler:
    def __init__(self) -> None:
        self.scheduled: list[tuple[int, str]] = []

    async def schedule(self, channel_id: int, *, reason: str = "order") -> bool:
        self.scheduled.append((channel_id, reason))
        return True


async def make_desk(tmp_path: Path) -> ShopDesk:
    db = Database(tmp_path / "shop.db")
    await db.setup()
    settings = Settings(
        discord_token="token",
        admin_ids={99},
        tickets=TicketSettings(category_id=1, support_role_id=SUPPORT_ROLE),
    )
    return ShopDesk(settings, db, RecordingScheduler())


async def test_parse_user_id():
    assert parse_user_id(f"<@{TRADE_TARGET}>") == TRADE_TARGET
    assert parse_user_id(f"<@!{TRADE_TARGET}>") == TRADE_TARGET
    assert parse_user_id(str(TRADE_TARGET)) == TRADE_TARGET
    assert parse_user_id("bob") is None
    assert parse_user_id("12345") is None


async def test_purchase_channel_name():
    assert purchase_channel_name("Big Spender") == "purchase-big-spender"


async def test_browse_empty_shop(tmp_path: Path):
    desk = await make_desk(tmp_path)
    interaction = make_interaction(make_user(10))

    await desk.browse(interaction)

    assert interaction.response.messages[0]["embed"].title == "🏪 Shop is empty"


async def test_manage_requires_admin(tmp_path: Path):
    desk = await make_desk(tmp_path)

    denied = make_interaction(make_user(10, roles=[SUPPORT_ROLE]))
    await desk.manage(denied)
    assert denied.response.modals == []

    allowed = make_interaction(make_user(99))
    await desk.manage(allowed)
    assert isinstance(allowed.response.modals[0], AddItemModal)


async def test_purchase_flow(tmp_path: Path):
    desk = await make_desk(tmp_path)
    item_id = await desk.db.create_shop_item(
        build_item_spec("Dragon Pet", "25.50", "Roblox", "Rare pet", "1"), 99
    )
    guild = FakeGuild()
    buyer = make_user(10, "buyer")

    browse = make_interaction(buyer, guild=guild)
    await desk.browse(browse)
    [select] = browse.response.messages[0]["view"].children
    assert select.custom_id == "shop_category"
    assert [option.value for option in select.options] == ["Roblox"]

    confirm = make_interaction(buyer, guild=guild)
    await desk.confirm_purchase(confirm, str(item_id))

    [created] = guild.created
    assert created["name"] == "purchase-buyer"
    channel = guild.get_channel(max(guild.channels))
    [intro] = channel.sent
    assert intro["embed"].fields[1].value == "$25.50 (₱1,440)"

    denied = make_interaction(buyer, guild=guild, channel=channel)
    await desk.complete_purchase(denied)
    assert (await desk.db.get_purchase_by_channel(channel.id)).status == "pending"

    staff = make_interaction(make_user(20, roles=[SUPPORT_ROLE]), guild=guild, channel=channel)
    await desk.complete_purchase(staff)

    purchase = await desk.db.get_purchase_by_channel(channel.id)
    assert purchase.status == "paid"
    assert (await desk.db.get_shop_item(item_id)).stock == 0
    user = await desk.db.get_user(10)
    assert user[4] == Decimal("25.50")
    assert desk.scheduler.scheduled == [(channel.id, "purchase")]

    sold_out = make_interaction(make_user(11), guild=guild)
    await desk.confirm_purchase(sold_out, str(item_id))
    assert "out of stock" in sold_out.response.messages[0]["embed"].description
    assert len(guild.created) == 1


async def test_concurrent_payment_confirmations_take_stock_once(tmp_path: Path):
    desk = await make_desk(tmp_path)
    item_id = await desk.db.create_shop_item(
        build_item_spec("Dragon Pet", "25.50", "Roblox", "Rare pet", "5"), 99
    )
    guild = FakeGuild()
    await desk.confirm_purchase(make_interaction(make_user(10, "buyer"), guild=guild), str(item_id))
    channel = guild.get_channel(max(guild.channels))

    clicks = [
        make_interaction(make_user(staff_id, roles=[SUPPORT_ROLE]), guild=guild, channel=channel)
        for staff_id in (20, 21)
    ]
    await asyncio.gather(*(desk.complete_purchase(click) for click in clicks))

    assert (await desk.db.get_shop_item(item_id)).stock == 4
    assert (await desk.db.get_purchase_by_channel(channel.id)).status == "paid"
    assert (await desk.db.get_user(10))[4] == Decimal("25.50")
    assert desk.scheduler.scheduled == [(channel.id, "purchase")]
    titles = {click.response.messages[0]["embed"].title for click in clicks}
    assert titles == {"❌ Error", "✅ Payment Confirmed"}


async def test_cancel_purchase_by_buyer(tmp_path: Path):
    desk = await make_desk(tmp_path)
    item_id = await desk.db.create_shop_item(build_item_spec("Nitro", "9.99", "Discord", "", "-1"), 99)
    guild = FakeGuild()
    buyer = make_user(10)
    await desk.confirm_purchase(make_interaction(buyer, guild=guild), str(item_id))
    channel = guild.get_channel(max(guild.channels))

    stranger = make_interaction(make_user(30), guild=guild, channel=channel)
    await desk.cancel_purchase(stranger)
    assert (await desk.db.get_purchase_by_channel(channel.id)).status == "pending"

    await desk.cancel_purchase(make_interaction(buyer, guild=guild, channel=channel))
    assert (await desk.db.get_purchase_by_channel(channel.id)).status == "cancelled"
    assert desk.scheduler.scheduled == [(channel.id, "purchase")]


async def test_trade_request_flow(tmp_path: Path):
    desk = await make_desk(tmp_path)
    guild = FakeGuild()
    requester = make_user(10)

    to_self = make_interaction(requester, guild=guild)
    await desk.submit_trade(to_self, target_raw="<@10>", platform="Roblox", offer="Pet", want="Robux")
    assert "mention a member" in to_self.response.messages[0]["embed"].description

    request = make_interaction(requester, guild=guild)
    await desk.submit_trade(
        request, target_raw=f"<@{TRADE_TARGET}>", platform="Roblox", offer="Pet", want="Robux"
    )
    [posted] = request.response.messages
    accept_id = posted["view"].children[0].custom_id
    assert accept_id.startswith("accept_trade:")
    trade_id = accept_id.partition(":")[2]

    wrong_user = make_interaction(make_user(30), guild=guild)
    await desk.accept_trade(wrong_user, trade_id)
    assert "Only the member" in wrong_user.response.messages[0]["embed"].description

    target = make_interaction(make_user(TRADE_TARGET), guild=guild)
    await desk.accept_trade(target, trade_id)
    assert target.response.edits[0]["view"] is None
    assert (await desk.db.get_trade_request(int(trade_id))).status == "accepted"

    again = make_interaction(make_user(TRADE_TARGET), guild=guild)
    await desk.decline_trade(again, trade_id)
    assert "already answered" in again.response.messages[0]["embed"].description
