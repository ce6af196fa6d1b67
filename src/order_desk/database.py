"""SQLite persistence layer for the order desk."""
from __future__ import annotations

import asyncio
import os
import time
from decimal import Decimal
from typing import AsyncIterator, List, Optional, Tuple

import aiosqlite

from .catalog import (
    TRADE_REQUEST_TTL_SECONDS,
    ItemSpec,
    PaymentResult,
    Purchase,
    ShopItem,
    TradeRequest,
)
from .orders import Order

ORDER_COLUMNS = (
    "order_id, customer_id, customer_name, service_type, order_details, quantity, budget, "
    "urgency, status, created_at, channel_id, claimed_by, claimed_at, completed_by, "
    "completed_at, cancelled_by, cancelled_at"
)
SHOP_ITEM_COLUMNS = (
    "item_id, name, description, price, category, stock, image_url, created_by, created_at, is_active"
)
PURCHASE_COLUMNS = "purchase_id, user_id, item_id, item_name, price, status, channel_id, created_at"
TRADE_COLUMNS = (
    "trade_id, requester_id, target_id, game_platform, requester_offer, target_offer, notes, "
    "status, created_at, expires_at"
)


class Database:
    """Data access helper built on top of SQLite."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = str(path)
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._lock = asyncio.Lock()

    async def setup(self) -> None:
        async with self._connect() as db:
            await db.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id INTEGER PRIMARY KEY,
                    username TEXT DEFAULT '',
                    display_name TEXT DEFAULT '',
                    total_orders INTEGER DEFAULT 0,
                    total_spent TEXT DEFAULT '0.00',
                    reputation INTEGER DEFAULT 0,
                    created_at REAL,
                    updated_at REAL
                );

                CREATE TABLE IF NOT EXISTS orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    order_id TEXT NOT NULL,
                    customer_id INTEGER NOT NULL,
                    customer_name TEXT DEFAULT '',
                    service_type TEXT NOT NULL,
                    order_details TEXT NOT NULL,
                    quantity TEXT NOT NULL,
                    budget TEXT NOT NULL,
                    urgency TEXT NOT NULL,
                    status TEXT DEFAULT 'pending',
                    created_at REAL NOT NULL,
                    channel_id INTEGER UNIQUE,
                    claimed_by INTEGER,
                    claimed_at REAL,
                    completed_by INTEGER,
                    completed_at REAL,
                    cancelled_by INTEGER,
                    cancelled_at REAL,
                    is_open INTEGER DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS active_tickets (
                    user_id INTEGER PRIMARY KEY,
                    channel_id INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS shop_items (
                    item_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    price TEXT NOT NULL,
                    category TEXT DEFAULT 'Other',
                    stock INTEGER DEFAULT -1,
                    image_url TEXT DEFAULT '',
                    created_by INTEGER,
                    created_at REAL,
                    is_active INTEGER DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS purchases (
                    purchase_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    item_id INTEGER NOT NULL,
                    item_name TEXT NOT NULL,
                    price TEXT NOT NULL,
                    status TEXT DEFAULT 'pending',
                    channel_id INTEGER,
                    created_at REAL
                );

                CREATE TABLE IF NOT EXISTS trade_requests (
                    trade_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    requester_id INTEGER NOT NULL,
                    target_id INTEGER NOT NULL,
                    game_platform TEXT NOT NULL,
                    requester_offer TEXT NOT NULL,
                    target_offer TEXT NOT NULL,
                    notes TEXT DEFAULT '',
                    status TEXT DEFAULT 'pending',
                    created_at REAL,
                    expires_at REAL
                );

                CREATE TABLE IF NOT EXISTS scheduled_deletions (
                    channel_id INTEGER PRIMARY KEY,
                    due_at REAL NOT NULL,
                    reason TEXT DEFAULT 'order'
                );

                CREATE TABLE IF NOT EXISTS bot_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                );
                """
            )
            await db.commit()

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.path)

    # -- users -----------------------------------------------------------

    async def ensure_user(self, user_id: int) -> None:
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    "INSERT OR IGNORE INTO users(user_id, created_at, updated_at) VALUES (?, ?, ?)",
                    (user_id, time.time(), time.time()),
                )
                await db.commit()

    async def get_user(self, user_id: int) -> Optional[Tuple[int, str, str, int, Decimal, int]]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT user_id, username, display_name, total_orders, total_spent, reputation\n"
                "FROM users WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        user_id, username, display_name, total_orders, total_spent, reputation = row
        return user_id, username, display_name, total_orders, Decimal(total_spent), reputation

    async def create_or_update_user(self, user_id: int, username: str, display_name: str) -> None:
        now = time.time()
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO users(user_id, username, display_name, created_at, updated_at)\n"
                    "VALUES (?, ?, ?, ?, ?)\n"
                    "ON CONFLICT(user_id) DO UPDATE SET username = excluded.username,\n"
                    "display_name = excluded.display_name, updated_at = excluded.updated_at",
                    (user_id, username, display_name, now, now),
                )
                await db.commit()

    async def record_order_completed(self, user_id: int) -> None:
        await self.ensure_user(user_id)
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    "UPDATE users SET total_orders = total_orders + 1, updated_at = ? WHERE user_id = ?",
                    (time.time(), user_id),
                )
                await db.commit()

    async def add_spend(self, user_id: int, amount: Decimal) -> None:
        await self.ensure_user(user_id)
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "SELECT total_spent FROM users WHERE user_id = ?", (user_id,)
                )
                row = await cursor.fetchone()
                total = Decimal(row[0] if row else "0") + amount
                await db.execute(
                    "UPDATE users SET total_spent = ?, updated_at = ? WHERE user_id = ?",
                    (str(total.quantize(Decimal("0.01"))), time.time(), user_id),
                )
                await db.commit()

    # -- orders ----------------------------------------------------------

    async def save_order(self, order: Order) -> None:
        placeholders = ", ".join("?" for _ in ORDER_COLUMNS.split(","))
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    f"INSERT INTO orders({ORDER_COLUMNS}, is_open) VALUES ({placeholders}, 1)\n"
                    "ON CONFLICT(channel_id) DO UPDATE SET status = excluded.status,\n"
                    "claimed_by = excluded.claimed_by,\n"
                    "claimed_at = excluded.claimed_at, completed_by = excluded.completed_by,\n"
                    "completed_at = excluded.completed_at, cancelled_by = excluded.cancelled_by,\n"
                    "cancelled_at = excluded.cancelled_at, is_open = 1",
                    order.to_row(),
                )
                await db.commit()

    async def close_order(self, channel_id: int) -> None:
        async with self._lock:
            async with self._connect() as db:
                await db.execute("UPDATE orders SET is_open = 0 WHERE channel_id = ?", (channel_id,))
                await db.commit()

    async def load_open_orders(self) -> List[Order]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {ORDER_COLUMNS} FROM orders WHERE is_open = 1 ORDER BY created_at"
            )
            return [Order.from_row(row) for row in await cursor.fetchall()]

    async def order_history(self, user_id: int, limit: int = 10) -> List[Order]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {ORDER_COLUMNS} FROM orders WHERE customer_id = ?\n"
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (user_id, limit),
            )
            return [Order.from_row(row) for row in await cursor.fetchall()]

    async def set_active_ticket(self, user_id: int, channel_id: int) -> None:
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO active_tickets(user_id, channel_id) VALUES (?, ?)\n"
                    "ON CONFLICT(user_id) DO UPDATE SET channel_id = excluded.channel_id",
                    (user_id, channel_id),
                )
                await db.commit()

    async def clear_active_ticket(self, user_id: int) -> None:
        async with self._lock:
            async with self._connect() as db:
                await db.execute("DELETE FROM active_tickets WHERE user_id = ?", (user_id,))
                await db.commit()

    async def load_active_tickets(self) -> List[Tuple[int, int]]:
        async with self._connect() as db:
            cursor = await db.execute("SELECT user_id, channel_id FROM active_tickets")
            return await cursor.fetchall()

    # -- shop ------------------------------------------------------------

    async def create_shop_item(self, spec: ItemSpec, created_by: int) -> int:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "INSERT INTO shop_items(name, description, price, category, stock, image_url,\n"
                    "created_by, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        spec.name,
                        spec.description,
                        str(spec.price),
                        spec.category,
                        spec.stock,
                        spec.image_url,
                        created_by,
                        time.time(),
                    ),
                )
                await db.commit()
                return cursor.lastrowid

    async def get_shop_items(self, *, include_inactive: bool = False) -> List[ShopItem]:
        query = f"SELECT {SHOP_ITEM_COLUMNS} FROM shop_items"
        if not include_inactive:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at DESC, item_id DESC"
        async with self._connect() as db:
            cursor = await db.execute(query)
            return [ShopItem.from_row(row) for row in await cursor.fetchall()]

    async def get_shop_item(self, item_id: int) -> Optional[ShopItem]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {SHOP_ITEM_COLUMNS} FROM shop_items WHERE item_id = ?", (item_id,)
            )
            row = await cursor.fetchone()
        return ShopItem.from_row(row) if row else None

    async def deactivate_shop_item(self, item_id: int) -> bool:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "UPDATE shop_items SET is_active = 0 WHERE item_id = ? AND is_active = 1",
                    (item_id,),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def restock_shop_item(self, item_id: int, amount: int) -> Optional[int]:
        """Add ``amount`` to an item's stock, or set it to unlimited when ``amount`` is -1."""

        async with self._lock:
            async with self._connect() as db:
                if amount == -1:
                    cursor = await db.execute(
                        "UPDATE shop_items SET stock = -1 WHERE item_id = ? AND is_active = 1",
                        (item_id,),
                    )
                else:
                    cursor = await db.execute(
                        "UPDATE shop_items SET stock = CASE WHEN stock = -1 THEN -1\n"
                        "ELSE MAX(0, stock + ?) END WHERE item_id = ? AND is_active = 1",
                        (amount, item_id),
                    )
                await db.commit()
                if cursor.rowcount == 0:
                    return None
                cursor = await db.execute("SELECT stock FROM shop_items WHERE item_id = ?", (item_id,))
                row = await cursor.fetchone()
                return row[0] if row else None

    @staticmethod
    async def _take_stock(db: aiosqlite.Connection, item_id: int) -> bool:
        """Take one unit out of stock inside the caller's transaction; unlimited items always succeed."""

        cursor = await db.execute(
            "UPDATE shop_items SET stock = stock - 1 WHERE item_id = ? AND stock > 0",
            (item_id,),
        )
        if cursor.rowcount:
            return True
        cursor = await db.execute(
            "SELECT 1 FROM shop_items WHERE item_id = ? AND stock = -1", (item_id,)
        )
        return await cursor.fetchone() is not None

    # -- purchases -------------------------------------------------------

    async def create_purchase(self, user_id: int, item: ShopItem, channel_id: Optional[int]) -> int:
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "INSERT INTO purchases(user_id, item_id, item_name, price, status, channel_id, created_at)\n"
                    "VALUES (?, ?, ?, ?, 'pending', ?, ?)",
                    (user_id, item.item_id, item.name, str(item.price), channel_id, time.time()),
                )
                await db.commit()
                return cursor.lastrowid

    async def set_purchase_status(self, purchase_id: int, status: str) -> bool:
        """Move a pending purchase to ``paid`` or ``cancelled``."""

        if status not in {"paid", "cancelled"}:
            raise ValueError(f"Invalid purchase status: {status}")
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "UPDATE purchases SET status = ? WHERE purchase_id = ? AND status = 'pending'",
                    (status, purchase_id),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def mark_purchase_paid(self, purchase_id: int, item_id: int) -> PaymentResult:
        """Claim a pending purchase and take its unit of stock in one transaction."""

        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "UPDATE purchases SET status = 'paid' WHERE purchase_id = ? AND status = 'pending'",
                    (purchase_id,),
                )
                if cursor.rowcount == 0:
                    await db.rollback()
                    return PaymentResult.ALREADY_HANDLED
                if not await self._take_stock(db, item_id):
                    await db.rollback()
                    return PaymentResult.OUT_OF_STOCK
                await db.commit()
                return PaymentResult.PAID

    async def get_purchase_by_channel(self, channel_id: int) -> Optional[Purchase]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {PURCHASE_COLUMNS} FROM purchases WHERE channel_id = ?\n"
                "ORDER BY purchase_id DESC LIMIT 1",
                (channel_id,),
            )
            row = await cursor.fetchone()
        return Purchase.from_row(row) if row else None

    async def purchases_for_user(self, user_id: int, limit: int = 10) -> List[Purchase]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {PURCHASE_COLUMNS} FROM purchases WHERE user_id = ?\n"
                "ORDER BY purchase_id DESC LIMIT ?",
                (user_id, limit),
            )
            return [Purchase.from_row(row) for row in await cursor.fetchall()]

    async def sales_summary(self, limit: int = 5) -> Tuple[int, Decimal, int, List[Tuple[str, int]]]:
        """Return paid purchase count, revenue, distinct customers and best sellers."""

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT user_id, item_name, price FROM purchases WHERE status = 'paid'"
            )
            rows = await cursor.fetchall()

        revenue = sum((Decimal(price) for _, _, price in rows), Decimal("0"))
        customers = len({user_id for user_id, _, _ in rows})
        counts: dict[str, int] = {}
        for _, item_name, _ in rows:
            counts[item_name] = counts.get(item_name, 0) + 1
        popular = sorted(counts.items(), key=lambda entry: (-entry[1], entry[0].lower()))[:limit]
        return len(rows), revenue, customers, popular

    # -- trades ----------------------------------------------------------

    async def create_trade_request(
        self,
        requester_id: int,
        target_id: int,
        game_platform: str,
        requester_offer: str,
        target_offer: str,
        notes: str = "",
    ) -> int:
        now = time.time()
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "INSERT INTO trade_requests(requester_id, target_id, game_platform, requester_offer,\n"
                    "target_offer, notes, status, created_at, expires_at)\n"
                    "VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?)",
                    (
                        requester_id,
                        target_id,
                        game_platform.strip(),
                        requester_offer.strip(),
                        target_offer.strip(),
                        notes.strip(),
                        now,
                        now + TRADE_REQUEST_TTL_SECONDS,
                    ),
                )
                await db.commit()
                return cursor.lastrowid

    async def get_trade_request(self, trade_id: int) -> Optional[TradeRequest]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {TRADE_COLUMNS} FROM trade_requests WHERE trade_id = ?", (trade_id,)
            )
            row = await cursor.fetchone()
        return TradeRequest.from_row(row) if row else None

    async def set_trade_status(self, trade_id: int, target_id: int, status: str) -> bool:
        """Let the target accept or decline a pending, unexpired request."""

        if status not in {"accepted", "declined"}:
            raise ValueError(f"Invalid trade status: {status}")
        async with self._lock:
            async with self._connect() as db:
                cursor = await db.execute(
                    "UPDATE trade_requests SET status = ?\n"
                    "WHERE trade_id = ? AND target_id = ? AND status = 'pending' AND expires_at > ?",
                    (status, trade_id, target_id, time.time()),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def trades_for_user(self, user_id: int, limit: int = 10) -> List[TradeRequest]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {TRADE_COLUMNS} FROM trade_requests\n"
                "WHERE requester_id = ? OR target_id = ? ORDER BY trade_id DESC LIMIT ?",
                (user_id, user_id, limit),
            )
            return [TradeRequest.from_row(row) for row in await cursor.fetchall()]

    # -- scheduled deletions --------------------------------------------

    async def schedule_deletion(self, channel_id: int, due_at: float, reason: str = "order") -> None:
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO scheduled_deletions(channel_id, due_at, reason) VALUES (?, ?, ?)\n"
                    "ON CONFLICT(channel_id) DO UPDATE SET due_at = excluded.due_at, reason = excluded.reason",
                    (channel_id, due_at, reason),
                )
                await db.commit()

    async def cancel_deletion(self, channel_id: int) -> None:
        async with self._lock:
            async with self._connect() as db:
                await db.execute(
                    "DELETE FROM scheduled_deletions WHERE channel_id = ?", (channel_id,)
                )
                await db.commit()

    async def scheduled_deletions(self) -> List[Tuple[int, float, str]]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT channel_id, due_at, reason FROM scheduled_deletions ORDER BY due_at"
            )
            return await cursor.fetchall()

    # -- settings --------------------------------------------------------

    async def set_setting(self, key: str, value: Optional[str]) -> None:
        async with self._lock:
            async with self._connect() as db:
                if value is None:
                    await db.execute("DELETE FROM bot_settings WHERE key = ?", (key,))
                else:
                    await db.execute(
                        "INSERT INTO bot_settings(key, value) VALUES (?, ?)\n"
                        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                        (key, value),
                    )
                await db.commit()

    async def get_settings(self) -> dict[str, str]:
        async with self._connect() as db:
            cursor = await db.execute("SELECT key, value FROM bot_settings")
            return dict(await cursor.fetchall())

    async def dump_state(self) -> AsyncIterator[Tuple[str, Tuple]]:
        """Debugging helper for tests: yields every stored row by table. Not used at runtime."""
        async with self._connect() as db:
            for table in [
                "users",
                "orders",
                "active_tickets",
                "shop_items",
                "purchases",
                "trade_requests",
                "scheduled_deletions",
                "bot_settings",
            ]:
                cursor = await db.execute(f"SELECT * FROM {table}")
                for row in await cursor.fetchall():
                    yield table, row
