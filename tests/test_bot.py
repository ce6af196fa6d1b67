from pathlib import Path
from types import SimpleNamespace

import discord
import pytest

from helpers import FakeChannel
from order_desk.bot import OrderDeskBot
from order_desk.config import Settings
from order_desk.database import Database

pytestmark = pytest.mark.asyncio

FORM = {
    "service": "Account Boost",
    "details": "Gold to Platinum",
    "quantity": "1",
    "budget": "$25",
    "urgency": "ASAP",
}


def http_error(cls, status: int, reason: str):
    return cls(SimpleNamespace(status=status, reason=reason), reason)


class LockedChannel(FakeChannel):
    async def delete(self, **kwargs) -> None:
        raise http_error(discord.Forbidden, 403, "Missing Permissions")


async def make_bot(tmp_path: Path) -> OrderDeskBot:
    db = Database(tmp_path / "bot.db")
    await db.setup()
    return OrderDeskBot(Settings(discord_token="token"), db)


async def open_order(bot: OrderDeskBot, user_id: int, channel_id: int):
    order = await bot.tracker.submit(user_id, "Alice", FORM)
    return await bot.tracker.register(order, channel_id)


async def test_delete_channel_forgets_the_order(tmp_path: Path):
    bot = await make_bot(tmp_path)
    channel = FakeChannel(100)
    bot.get_channel = lambda channel_id: channel
    await open_order(bot, 1, 100)

    await bot._delete_channel(100)

    assert channel.deleted
    assert bot.tracker.get(100) is None
    assert bot.tracker.active_channel_for(1) is None


async def test_delete_channel_forgets_the_order_when_deletion_is_refused(tmp_path: Path):
    bot = await make_bot(tmp_path)
    bot.get_channel = lambda channel_id: LockedChannel(channel_id)
    await open_order(bot, 1, 100)

    await bot._delete_channel(100)

    assert bot.tracker.get(100) is None
    assert bot.tracker.active_channel_for(1) is None
    assert await bot.db.load_open_orders() == []
    # the member can open a new ticket straight away
    await open_order(bot, 1, 200)
    assert bot.tracker.active_channel_for(1) == 200


async def test_delete_channel_when_fetch_fails(tmp_path: Path):
    bot = await make_bot(tmp_path)
    bot.get_channel = lambda channel_id: None

    async def fetch_channel(channel_id: int):
        raise http_error(discord.Forbidden, 403, "Missing Access")

    bot.fetch_channel = fetch_channel
    await open_order(bot, 1, 100)

    assert await bot._resolve_channel(100) is None
    await bot._delete_channel(100)

    assert bot.tracker.get(100) is None
