"""Owner and administrator utilities under ``/admin``."""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import discord
from discord import app_commands

from .embeds import SUCCESS_COLOR, bot_info_embed, error_embed, info_embed
from .triggers import send_ephemeral

if TYPE_CHECKING:
    from .bot import OrderDeskBot

_log = logging.getLogger(__name__)

#: Discord's bulk delete accepts at most 100 messages per call.
CLEAN_LIMIT = 100


class AdminGroup(app_commands.Group):
    def __init__(self, bot: "OrderDeskBot"):
        super().__init__(name="admin", description="Bot administration")
        self.bot = bot

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        permissions = getattr(interaction.user, "guild_permissions", None)
        if self.bot.settings.is_admin(interaction.user.id) or (permissions and permissions.administrator):
            return True
        await send_ephemeral(interaction, error_embed("Only the bot owner or admins can use this command."))
        return False

    @app_commands.command(name="info", description="Show bot status")
    async def info(self, interaction: discord.Interaction):
        settings = self.bot.settings
        guilds = list(self.bot.guilds)
        embed = bot_info_embed(
            guilds=len(guilds),
            members=sum(guild.member_count or 0 for guild in guilds),
            latency_ms=round(self.bot.latency * 1000),
            uptime=time.time() - self.bot.started_at,
            owner_id=settings.owner_id,
            admins=len(settings.admin_ids),
            configured=settings.tickets.is_configured,
            stats=self.bot.tracker.stats(),
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="say", description="Post a message as the bot")
    @app_commands.describe(message="Text to post in this channel")
    async def say(self, interaction: discord.Interaction, message: str):
        try:
            await interaction.channel.send(message)
        except discord.HTTPException:
            _log.warning("Failed to post a message in %s", interaction.channel_id)
            await send_ephemeral(interaction, error_embed("I couldn't post in this channel."))
            return
        await interaction.response.send_message(embed=info_embed("✅ Message sent"), ephemeral=True)

    @app_commands.command(name="embed", description="Post an embed as the bot")
    @app_commands.describe(title="Embed title", description="Embed text")
    async def embed(self, interaction: discord.Interaction, title: str, description: str):
        embed = discord.Embed(title=title[:256], description=description[:4000], color=SUCCESS_COLOR)
        embed.set_footer(text=f"Created by {interaction.user}")
        try:
            await interaction.channel.send(embed=embed)
        except discord.HTTPException:
            _log.warning("Failed to post an embed in %s", interaction.channel_id)
            await send_ephemeral(interaction, error_embed("I couldn't post in this channel."))
            return
        await interaction.response.send_message(embed=info_embed("✅ Embed sent"), ephemeral=True)

    @app_commands.command(name="clean", description="Bulk delete recent messages in this channel")
    @app_commands.describe(amount="How many messages to delete (1-100)")
    async def clean(self, interaction: discord.Interaction, amount: app_commands.Range[int, 1, CLEAN_LIMIT]):
        if not 1 <= amount <= CLEAN_LIMIT:
            await send_ephemeral(interaction, error_embed(f"Please choose between 1 and {CLEAN_LIMIT} messages."))
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            deleted = await interaction.channel.purge(limit=amount)
        except discord.HTTPException:
            _log.warning("Failed to clean messages in %s", interaction.channel_id)
            await send_ephemeral(
                interaction,
                error_embed(
                    "Could not delete messages. They might be too old (14+ days) or I lack permissions."
                ),
            )
            return
        _log.info("%s deleted %s messages in %s", interaction.user.id, len(deleted), interaction.channel_id)
        await interaction.followup.send(
            embed=info_embed("🧹 Channel Cleaned", f"✅ Deleted {len(deleted)} messages.", color=SUCCESS_COLOR),
            ephemeral=True,
        )
