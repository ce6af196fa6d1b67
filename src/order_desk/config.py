"""Configuration helpers for the bot."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

DEFAULT_USD_TO_PHP_RATE = Decimal("56.50")

#: Environment variable -> ``TicketSettings`` attribute.
TICKET_ENV_VARS = {
    "CATEGORY_ID": "category_id",
    "SUPPORT_ROLE_ID": "support_role_id",
    "LOG_CHANNEL_ID": "log_channel_id",
    "ORDERS_CHANNEL_ID": "orders_channel_id",
    "RECEIVED_CHANNEL_ID": "received_channel_id",
    "ONGOING_CHANNEL_ID": "ongoing_channel_id",
}


@dataclass
class TicketSettings:
    """Channel and role identifiers used by the order system."""

    category_id: Optional[int] = None
    support_role_id: Optional[int] = None
    log_channel_id: Optional[int] = None
    orders_channel_id: Optional[int] = None
    received_channel_id: Optional[int] = None
    ongoing_channel_id: Optional[int] = None

    @property
    def is_configured(self) -> bool:
        return self.category_id is not None and self.support_role_id is not None

    def update(self, name: str, value: Optional[int]) -> None:
        if name not in {f.name for f in fields(self)}:
            raise ValueError(f"Unknown ticket setting: {name}")
        setattr(self, name, value)


@dataclass
class Settings:
    """Runtime settings loaded from the environment."""

    discord_token: str
    guild_id: Optional[int] = None
    owner_id: Optional[int] = None
    admin_ids: set[int] = field(default_factory=set)
    tickets: TicketSettings = field(default_factory=TicketSettings)
    database_path: str = "data/order_desk.db"
    usd_to_php_rate: Decimal = DEFAULT_USD_TO_PHP_RATE
    log_level: str = "INFO"

    def is_admin(self, user_id: int) -> bool:
        return user_id == self.owner_id or user_id in self.admin_ids


def _parse_id(value: Any) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    digits = "".join(ch for ch in text if ch.isdigit())
    if not digits:
        raise RuntimeError(f"Invalid Discord ID: {text!r}")
    return int(digits)


def _parse_id_list(value: Any) -> set[int]:
    if not value:
        return set()
    if isinstance(value, str):
        value = value.split(",")
    return {parsed for parsed in (_parse_id(entry) for entry in value) if parsed is not None}


def _parse_rate(value: Any) -> Decimal:
    if value in (None, ""):
        return DEFAULT_USD_TO_PHP_RATE
    try:
        rate = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise RuntimeError(f"USD_TO_PHP_RATE must be a number, got {value!r}") from exc
    if rate <= 0:
        raise RuntimeError("USD_TO_PHP_RATE must be positive")
    return rate


def load_file_config(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read the optional JSON config file, returning an empty mapping if absent."""

    config_path = Path(path)
    if not config_path.exists():
        return {}
    with config_path.open(encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise RuntimeError(f"{config_path} must contain a JSON object")
    return data


def load_settings() -> Settings:
    """Load settings from environment variables.

    The function will read a local `.env` file when present. Values missing
    from the environment fall back to ``config.json`` (or the file named by
    ``ORDER_DESK_CONFIG``).
    """

    load_dotenv()
    file_config = load_file_config(os.getenv("ORDER_DESK_CONFIG", "config.json"))
    file_tickets = file_config.get("ticketSettings") or {}

    def pick(env_name: str, file_value: Any = None) -> Any:
        value = os.getenv(env_name)
        return value if value not in (None, "") else file_value

    token = pick("DISCORD_TOKEN", file_config.get("token"))
    if not token:
        raise RuntimeError("DISCORD_TOKEN is required to run the bot")

    tickets = TicketSettings()
    for env_name, attr in TICKET_ENV_VARS.items():
        camel = attr.split("_")[0] + "".join(part.title() for part in attr.split("_")[1:])
        tickets.update(attr, _parse_id(pick(env_name, file_tickets.get(camel))))

    return Settings(
        discord_token=token,
        guild_id=_parse_id(pick("GUILD_ID", file_config.get("guildId"))),
        owner_id=_parse_id(pick("OWNER_ID", file_config.get("ownerId"))),
        admin_ids=_parse_id_list(pick("ADMIN_IDS", file_config.get("adminIds"))),
        tickets=tickets,
        database_path=pick("ORDER_DESK_DB_PATH", "data/order_desk.db"),
        usd_to_php_rate=_parse_rate(pick("USD_TO_PHP_RATE", file_config.get("usdToPhpRate"))),
        log_level=(pick("LOG_LEVEL", "INFO") or "INFO").upper(),
    )


def apply_stored_settings(tickets: TicketSettings, stored: dict[str, str]) -> list[str]:
    """Overlay values saved through ``/setup`` onto ``tickets``.

    Returns the names that were applied. Unknown or malformed rows are ignored.
    """

    known = {f.name for f in fields(tickets)}
    applied = []
    for name, value in stored.items():
        if name not in known:
            continue
        try:
            tickets.update(name, _parse_id(value))
        except RuntimeError:
            continue
        applied.append(name)
    return applied
