import discord
import pytest

from helpers import make_interaction
from order_desk.orders import OrderError
from order_desk.triggers import (
    Trigger,
    TriggerRouter,
    UnknownTriggerError,
    build_custom_id,
    parse_custom_id,
    trigger_button,
)

pytestmark = pytest.mark.asyncio


async def test_custom_id_round_trip():
    assert build_custom_id(Trigger.CLAIM_ORDER) == "claim_order"
    assert build_custom_id(Trigger.BUY_ITEM, 12) == "buy_item:12"
    assert parse_custom_id("buy_item:12") == (Trigger.BUY_ITEM, "12")
    assert parse_custom_id("mark_completed") == (Trigger.COMPLETE_ORDER, None)


async def test_unknown_custom_id_raises():
    with pytest.raises(UnknownTriggerError):
        parse_custom_id("self_destruct")
    with pytest.raises(UnknownTriggerError):
        TriggerRouter().resolve("claim_order")


async def test_duplicate_registration_is_rejected():
    router = TriggerRouter()

    async def handler(interaction, argument):
        pass

    router.register(Trigger.CLAIM_ORDER, handler)
    with pytest.raises(ValueError):
        router.register(Trigger.CLAIM_ORDER, handler)


async def test_dispatch_passes_argument_and_select_value():
    router = TriggerRouter()
    calls = []

    async def handler(interaction, argument):
        calls.append(argument)

    router.register(Trigger.BUY_ITEM, handler)
    router.register(Trigger.SELECT_CATEGORY, handler)

    await router.handle_interaction(make_interaction(custom_id="buy_item:7"))
    await router.handle_interaction(make_interaction(custom_id="shop_category", values=["Roblox"]))

    assert calls == ["7", "Roblox"]


async def test_unknown_trigger_gets_explicit_reply():
    router = TriggerRouter()
    interaction = make_interaction(custom_id="legacy_button")

    await router.handle_interaction(interaction)

    [message] = interaction.response.messages
    assert message["ephemeral"] is True
    assert "no longer supported" in message["embed"].description


async def test_non_component_interactions_are_ignored():
    router = TriggerRouter()
    interaction = make_interaction(
        custom_id="order_form", kind=discord.InteractionType.modal_submit
    )

    await router.handle_interaction(interaction)

    assert interaction.response.messages == []


async def test_order_errors_are_reported_to_the_user():
    router = TriggerRouter()

    async def handler(interaction, argument):
        raise OrderError("Order #1 is pending and cannot be completed.")

    router.register(Trigger.COMPLETE_ORDER, handler)
    interaction = make_interaction(custom_id="mark_completed")
    await router.handle_interaction(interaction)

    [message] = interaction.response.messages
    assert "cannot be completed" in message["embed"].description


async def test_unexpected_errors_get_opaque_reply():
    router = TriggerRouter()

    async def handler(interaction, argument):
        await interaction.response.defer()
        raise RuntimeError("database exploded")

    router.register(Trigger.BROWSE_SHOP, handler)
    interaction = make_interaction(custom_id="browse_shop")
    await router.handle_interaction(interaction)

    [message] = interaction.followup.messages
    assert "Something went wrong" in message["embed"].description
    assert "exploded" not in message["embed"].description


async def test_trigger_button_carries_custom_id():
    button = trigger_button(Trigger.ACCEPT_TRADE, "Accept", argument=3)
    assert button.custom_id == "accept_trade:3"
    assert button.label == "Accept"
