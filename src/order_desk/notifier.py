"""Fan-out of order lifecycle changes to the feed channels."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import discord

from .embeds import (
    claimed_embed,
    delivered_embed,
    log_embed,
    new_order_embed,
    status_update_embed,
    unclaimed_board_embed,
)
from .orders import Order

if TYPE_CHECKING:
    from .config import TicketSettings
    from .orders import OrderTracker

_log = logging.getLogger(__name__)

#: Recent messages cleared from the unclaimed board before it is re-rendered.
BOARD_PURGE_LIMIT = 10


class OrderNotifier:
    """Posts order summaries to the new-orders, unclaimed and completed feeds.

    Channels are looked up on every call so ``/setup`` changes apply
    immediately. Unset or missing channels are skipped without error.
    """

    def __init__(self, client: discord.Client, tracker: "OrderTracker", settings: "TicketSettings") -> None:
        self.client = client
        self.tracker = tracker
        self.settings = settings

    async def _channel(self, channel_id: Optional[int]) -> Optional[discord.abc.Messageable]:
        if channel_id is None:
            return None
        channel = self.client.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.client.fetch_channel(channel_id)
        except discord.HTTPException:
            _log.warning("Notification channel %s is unavailable", channel_id)
            return None

    async def _send(self, channel_id: Optional[int], embed: discord.Embed) -> Optional[discord.Message]:
        channel = await self._channel(channel_id)
        if channel is None:
            return None
        try:
            return await channel.send(embed=embed)
        except discord.HTTPException:
            _log.warning("Failed to send notification to channel %s", channel_id)
            return None

    async def new_order(self, order: Order) -> None:
        await self._send(self.settings.orders_channel_id, new_order_embed(order))
        await self.log_action("Created", order, order.requester_id)
        await self.refresh_board()

    async def claimed(self, order: Order) -> None:
        await self._send(self.settings.orders_channel_id, claimed_embed(order))
        await self.log_action("Claimed", order, order.claimed_by)
        await self.refresh_board()

    async def completed(self, order: Order) -> None:
        await self._send(self.settings.received_channel_id, delivered_embed(order))
        await self.log_action("Completed", order, order.completed_by)
        await self.refresh_board()

    async def status_update(self, order: Order, actor_id: int, action: str) -> None:
        await self._send(self.settings.orders_channel_id, status_update_embed(order, actor_id))
        await self.log_action(action, order, actor_id)
        await self.refresh_board()

    async def log_action(self, action: str, order: Order, actor_id: Optional[int]) -> None:
        await self._send(self.settings.log_channel_id, log_embed(action, order, actor_id or 0))

    async def refresh_board(self) -> None:
        """Replace the unclaimed board's recent messages with one aggregate embed."""

        channel = await self._channel(self.settings.ongoing_channel_id)
        if channel is None:
            return
        try:
            messages = [message async for message in channel.history(limit=BOARD_PURGE_LIMIT)]
            if len(messages) > 1 and hasattr(channel, "delete_messages"):
                await channel.delete_messages(messages)
            else:
                for message in messages:
                    await message.delete()
        except discord.HTTPException:
            _log.warning("Failed to clear the unclaimed board in %s", channel.id)
        try:
            await channel.send(embed=unclaimed_board_embed(self.tracker.pending_orders()))
        except discord.HTTPException:
            _log.warning("Failed to post the unclaimed board in %s", channel.id)
