"""Small stand-ins for discord interactions used across the tests."""
from __future__ import annotations

from types import SimpleNamespace
from typing import Optional

import discord


class FakeResponse:
    def __init__(self) -> None:
        self.messages: list[dict] = []
        self.edits: list[dict] = []
        self.modals: list[discord.ui.Modal] = []
        self.deferred = False

    def is_done(self) -> bool:
        return bool(self.messages or self.edits or self.modals or self.deferred)

    async def send_message(self, content=None, **kwargs) -> None:
        self.messages.append({"content": content, **kwargs})

    async def edit_message(self, **kwargs) -> None:
        self.edits.append(kwargs)

    async def send_modal(self, modal: discord.ui.Modal) -> None:
        self.modals.append(modal)

    async def defer(self, **kwargs) -> None:
        self.deferred = True


class FakeFollowup:
    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def send(self, content=None, **kwargs) -> None:
        self.messages.append({"content": content, **kwargs})


class FakeChannel:
    def __init__(self, channel_id: int, name: str = "channel") -> None:
        self.id = channel_id
        self.name = name
        self.mention = f"<#{channel_id}>"
        self.sent: list[dict] = []
        self.deleted = False

    async def send(self, content=None, **kwargs):
        self.sent.append({"content": content, **kwargs})
        return SimpleNamespace(id=len(self.sent))

    async def edit(self, **kwargs) -> None:
        self.__dict__.update(kwargs)

    async def delete(self, **kwargs) -> None:
        self.deleted = True


class FakeRole:
    def __init__(self, role_id: int) -> None:
        self.id = role_id
        self.mention = f"<@&{role_id}>"


class FakeMember:
    def __init__(
        self,
        user_id: int,
        name: str = "alice",
        *,
        roles=(),
        administrator: bool = False,
        manage_channels: bool = False,
    ) -> None:
        self.id = user_id
        self.name = name
        self.display_name = name.title()
        self.mention = f"<@{user_id}>"
        self.roles = [FakeRole(role_id) for role_id in roles]
        self.guild_permissions = SimpleNamespace(
            administrator=administrator, manage_channels=manage_channels
        )

    def __str__(self) -> str:
        return self.name


class FakeGuild:
    def __init__(self) -> None:
        self.id = 1
        self.channels: dict[int, FakeChannel] = {}
        self.created: list[dict] = []
        self.default_role = FakeRole(1)
        self.me = None
        self._next_id = 5000

    def get_channel(self, channel_id: int) -> Optional[FakeChannel]:
        return self.channels.get(channel_id)

    def get_role(self, role_id: int) -> FakeRole:
        return FakeRole(role_id)

    def get_member(self, user_id: int) -> FakeMember:
        return FakeMember(user_id)

    async def create_text_channel(self, name: str, **kwargs) -> FakeChannel:
        self._next_id += 1
        channel = FakeChannel(self._next_id, name)
        self.channels[channel.id] = channel
        self.created.append({"name": name, **kwargs})
        return channel


def make_user(user_id: int, name: str = "alice", **kwargs) -> FakeMember:
    return FakeMember(user_id, name, **kwargs)


def make_interaction(
    user=None,
    *,
    channel=None,
    guild=None,
    custom_id: Optional[str] = None,
    values: Optional[list[str]] = None,
    kind: discord.InteractionType = discord.InteractionType.component,
):
    data = {}
    if custom_id is not None:
        data["custom_id"] = custom_id
    if values is not None:
        data["values"] = values
    return SimpleNamespace(
        id=99,
        type=kind,
        data=data,
        user=user or make_user(1),
        guild=guild,
        channel=channel,
        channel_id=getattr(channel, "id", None),
        message=None,
        response=FakeResponse(),
        followup=FakeFollowup(),
    )
