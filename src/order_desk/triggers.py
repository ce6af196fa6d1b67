"""Component trigger identifiers and the router that maps them to handlers.

Every button and select the bot sends carries a ``custom_id`` of the form
``<trigger>`` or ``<trigger>:<argument>``. The bot listens to all component
interactions and hands them to :class:`TriggerRouter`, so buttons keep
working after a restart without re-registering views.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, Tuple

import discord

from .embeds import error_embed, info_embed
from .orders import OrderError

_log = logging.getLogger(__name__)

Handler = Callable[[discord.Interaction, Optional[str]], Awaitable[None]]


class Trigger(str, Enum):
    CREATE_ORDER = "create_ticket"
    CLOSE_ORDER = "close_ticket"
    CONFIRM_CLOSE = "confirm_close"
    CANCEL_CLOSE = "cancel_close"
    CLAIM_ORDER = "claim_order"
    COMPLETE_ORDER = "mark_completed"
    REOPEN_ORDER = "reopen_order"
    BROWSE_SHOP = "browse_shop"
    START_TRADE = "start_trade"
    MY_PURCHASES = "my_purchases"
    MANAGE_SHOP = "manage_shop"
    SELECT_CATEGORY = "shop_category"
    SELECT_ITEM = "shop_item"
    BUY_ITEM = "buy_item"
    CONFIRM_PURCHASE = "confirm_purchase"
    COMPLETE_PURCHASE = "complete_purchase"
    CANCEL_PURCHASE = "cancel_purchase"
    ACCEPT_TRADE = "accept_trade"
    DECLINE_TRADE = "decline_trade"


class UnknownTriggerError(LookupError):
    def __init__(self, custom_id: str) -> None:
        super().__init__(f"Unknown component id: {custom_id!r}")
        self.custom_id = custom_id


def build_custom_id(trigger: Trigger, argument: object = None) -> str:
    return trigger.value if argument is None else f"{trigger.value}:{argument}"


def parse_custom_id(custom_id: str) -> Tuple[Trigger, Optional[str]]:
    name, _, argument = custom_id.partition(":")
    try:
        trigger = Trigger(name)
    except ValueError:
        raise UnknownTriggerError(custom_id) from None
    return trigger, argument or None


async def send_ephemeral(interaction: discord.Interaction, embed: discord.Embed) -> None:
    """Reply privately, whether or not the interaction was already answered."""

    try:
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)
    except discord.HTTPException:
        _log.warning("Failed to reply to interaction %s", getattr(interaction, "id", None))


class TriggerRouter:
    """Lookup table from :class:`Trigger` to an async handler."""

    def __init__(self) -> None:
        self._handlers: dict[Trigger, Handler] = {}

    def register(self, trigger: Trigger, handler: Handler) -> None:
        if trigger in self._handlers:
            raise ValueError(f"{trigger.value} already has a handler")
        self._handlers[trigger] = handler

    def register_many(self, handlers: Iterable[Tuple[Trigger, Handler]]) -> None:
        for trigger, handler in handlers:
            self.register(trigger, handler)

    def resolve(self, custom_id: str) -> Tuple[Handler, Optional[str]]:
        trigger, argument = parse_custom_id(custom_id)
        handler = self._handlers.get(trigger)
        if handler is None:
            raise UnknownTriggerError(custom_id)
        return handler, argument

    async def dispatch(
        self, interaction: discord.Interaction, custom_id: str, *, value: Optional[str] = None
    ) -> None:
        """Run the handler for ``custom_id``; select values replace the id argument."""

        try:
            handler, argument = self.resolve(custom_id)
        except UnknownTriggerError:
            _log.warning("Rejected unknown component id %r", custom_id)
            await send_ephemeral(
                interaction,
                info_embed("⚠️ Unsupported action", "This button is no longer supported."),
            )
            return

        try:
            await handler(interaction, value if value is not None else argument)
        except OrderError as exc:
            await send_ephemeral(interaction, error_embed(str(exc)))
        except Exception:
            _log.exception("Handler for %r failed", custom_id)
            await send_ephemeral(
                interaction, error_embed("Something went wrong. Please try again later.")
            )

    async def handle_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component:
            return
        data = interaction.data or {}
        custom_id = data.get("custom_id")
        if not isinstance(custom_id, str):
            return
        values = data.get("values") or []
        await self.dispatch(interaction, custom_id, value=values[0] if values else None)


class TriggerView(discord.ui.View):
    """A view whose components are routed by custom id instead of callbacks."""

    def __init__(self, *items: discord.ui.Item) -> None:
        super().__init__(timeout=None)
        for item in items:
            self.add_item(item)


def trigger_button(
    trigger: Trigger,
    label: str,
    *,
    argument: object = None,
    style: discord.ButtonStyle = discord.ButtonStyle.secondary,
    emoji: Optional[str] = None,
    disabled: bool = False,
) -> discord.ui.Button:
    return discord.ui.Button(
        label=label,
        style=style,
        emoji=emoji,
        custom_id=build_custom_id(trigger, argument),
        disabled=disabled,
    )


def trigger_select(
    trigger: Trigger,
    options: list[discord.SelectOption],
    *,
    placeholder: str,
) -> discord.ui.Select:
    return discord.ui.Select(
        custom_id=build_custom_id(trigger),
        placeholder=placeholder,
        options=options[:25],
        min_values=1,
        max_values=1,
    )
