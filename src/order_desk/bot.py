"""Discord bot entrypoint and command registration."""
from __future__ import annotations

import logging
import time

import discord
from discord import app_commands
from discord.ext import commands

from .admin import AdminGroup
from .cleanup import DeletionScheduler
from .config import Settings, apply_stored_settings, load_settings
from .currency import parse_amount, php_to_usd, usd_to_php
from .database import Database
from .embeds import closing_embed, conversion_embed, error_embed
from .notifier import OrderNotifier
from .orders import OrderError, OrderTracker
from .shop import ShopDesk, ShopGroup
from .tickets import OrderDesk, PanelGroup, SetupGroup, TicketGroup
from .triggers import TriggerRouter, send_ephemeral

_log = logging.getLogger(__name__)

CURRENCY_CHOICES = [
    app_commands.Choice(name="USD → PHP", value="usd"),
    app_commands.Choice(name="PHP → USD", value="php"),
]


class OrderDeskBot(commands.Bot):
    """Discord bot that runs the order desk and the shop."""

    def __init__(self, settings: Settings, db: Database) -> None:
        intents = discord.Intents.default()
        intents.members = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)
        self.settings = settings
        self.db = db
        self.started_at = time.time()
        self.scheduler = DeletionScheduler(
            db, self._delete_channel, on_warning=self._warn_channel_deletion
        )
        self.tracker = OrderTracker(db, scheduler=self.scheduler)
        self.notifier = OrderNotifier(self, self.tracker, settings.tickets)
        self.order_desk = OrderDesk(settings, self.tracker, self.notifier)
        self.shop_desk = ShopDesk(settings, db, self.scheduler)
        self.router = TriggerRouter()
        self.router.register_many(self.order_desk.handlers())
        self.router.register_many(self.shop_desk.handlers())

    async def setup_hook(self) -> None:
        await self.db.setup()
        applied = apply_stored_settings(self.settings.tickets, await self.db.get_settings())
        if applied:
            _log.info("Applied stored settings: %s", ", ".join(sorted(applied)))
        await self.tracker.load()
        await self.scheduler.recover()

        self.tree.add_command(TicketGroup(self.order_desk, self.db))
        self.tree.add_command(PanelGroup(self.settings, self.db))
        self.tree.add_command(SetupGroup(self.settings, self.db))
        self.tree.add_command(ShopGroup(self.shop_desk))
        self.tree.add_command(AdminGroup(self))
        await self.add_misc_commands()
        self.tree.on_error = self.on_app_command_error

        if self.settings.guild_id:
            guild = discord.Object(id=self.settings.guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        else:
            await self.tree.sync()
        _log.info("Slash commands synced")

    async def on_ready(self) -> None:
        _log.info("Logged in as %s (%s)", self.user, getattr(self.user, "id", None))

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        await self.router.handle_interaction(interaction)

    async def on_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, OrderError):
            await send_ephemeral(interaction, error_embed(str(original)))
            return
        if isinstance(error, app_commands.CheckFailure):
            return
        _log.exception("Slash command failed", exc_info=original)
        await send_ephemeral(interaction, error_embed("Something went wrong. Please try again later."))

    async def close(self) -> None:
        await self.scheduler.close()
        await super().close()

    async def _resolve_channel(self, channel_id: int):
        channel = self.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.fetch_channel(channel_id)
        except discord.NotFound:
            return None
        except discord.HTTPException:
            _log.warning("Failed to fetch channel %s", channel_id)
            return None

    async def _warn_channel_deletion(self, channel_id: int) -> None:
        channel = await self._resolve_channel(channel_id)
        if channel is None:
            return
        try:
            await channel.send(embed=closing_embed(self.scheduler.grace))
        except discord.HTTPException:
            _log.warning("Failed to post closing notice in %s", channel_id)

    async def _delete_channel(self, channel_id: int) -> None:
        channel = await self._resolve_channel(channel_id)
        try:
            if channel is not None:
                await channel.delete(reason="Ticket closed")
        except discord.NotFound:
            pass
        except discord.HTTPException:
            # tracking is dropped even when the channel itself survives
            _log.warning("Failed to delete channel %s", channel_id)
        order = await self.tracker.forget(channel_id)
        if order is not None:
            _log.info("Order %s channel %s deleted", order.order_id, channel_id)

    async def add_misc_commands(self) -> None:
        rate = self.settings.usd_to_php_rate

        @self.tree.command(name="convert", description="Convert between USD and PHP")
        @app_commands.describe(amount="Amount to convert, e.g. 25.50", currency="Currency of the amount")
        @app_commands.choices(currency=CURRENCY_CHOICES)
        async def convert(
            interaction: discord.Interaction,
            amount: str,
            currency: app_commands.Choice[str],
        ):
            try:
                value = parse_amount(amount)
            except ValueError as exc:
                await send_ephemeral(interaction, error_embed(str(exc)))
                return

            if currency.value == "usd":
                usd = value
                php = usd_to_php(value, rate)
            else:
                php = value
                usd = php_to_usd(value, rate)
            await interaction.response.send_message(embed=conversion_embed(usd, php, rate), ephemeral=True)


def run_bot() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level)
    bot = OrderDeskBot(settings, Database(settings.database_path))
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    run_bot()
