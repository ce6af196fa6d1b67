"""Order lifecycle tracking: the order store, the active-ticket index and transitions."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, fields
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Mapping, Optional

import aiosqlite

if TYPE_CHECKING:
    from .cleanup import DeletionScheduler
    from .database import Database

_log = logging.getLogger(__name__)

#: Form fields every order submission must fill in, in display order.
ORDER_FIELDS = ("service", "details", "quantity", "budget", "urgency")
ORDER_FIELD_LABELS = {
    "service": "Service",
    "details": "Order details",
    "quantity": "Quantity",
    "budget": "Budget",
    "urgency": "Urgency",
}


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        return self in (OrderStatus.PENDING, OrderStatus.PROCESSING)


class OrderError(Exception):
    """Base class for order problems that should be reported to the user."""


class OrderValidationError(OrderError, ValueError):
    pass


class OrderNotFoundError(OrderError, LookupError):
    pass


class DuplicateOrderError(OrderError):
    def __init__(self, user_id: int, channel_id: Optional[int]) -> None:
        super().__init__("You already have an active order.")
        self.user_id = user_id
        self.channel_id = channel_id


class InvalidTransitionError(OrderError):
    def __init__(self, order: "Order", action: str) -> None:
        super().__init__(
            f"Order {order.order_id} is {order.status.value} and cannot be {action}."
        )
        self.order = order
        self.action = action


def default_order_id(now: Optional[float] = None) -> str:
    """Short display id made from the tail of the millisecond clock."""

    millis = int((time.time() if now is None else now) * 1000)
    return f"#{str(millis)[-6:]}"


@dataclass
class Order:
    order_id: str
    requester_id: int
    requester_name: str
    service: str
    details: str
    quantity: str
    budget: str
    urgency: str
    status: OrderStatus = OrderStatus.PENDING
    created_at: float = 0.0
    channel_id: Optional[int] = None
    claimed_by: Optional[int] = None
    claimed_at: Optional[float] = None
    completed_by: Optional[int] = None
    completed_at: Optional[float] = None
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[float] = None

    def to_row(self) -> tuple:
        return tuple(
            getattr(self, f.name).value if f.name == "status" else getattr(self, f.name)
            for f in fields(self)
        )

    @classmethod
    def from_row(cls, row: Iterable) -> "Order":
        values = dict(zip((f.name for f in fields(cls)), row))
        values["status"] = OrderStatus(values["status"])
        return cls(**values)


@dataclass(frozen=True)
class OrderStats:
    total: int
    pending: int
    processing: int
    completed: int
    cancelled: int
    active_channels: int

    @property
    def completion_rate(self) -> int:
        """Percentage of tracked orders that reached ``completed``."""

        return round(self.completed / self.total * 100) if self.total else 0


def clean_fields(fields_in: Mapping[str, Optional[str]]) -> dict[str, str]:
    """Strip every form field and reject blank ones."""

    cleaned: dict[str, str] = {}
    for name in ORDER_FIELDS:
        value = (fields_in.get(name) or "").strip()
        if not value:
            raise OrderValidationError(f"{ORDER_FIELD_LABELS[name]} is required.")
        cleaned[name] = value
    return cleaned


class OrderTracker:
    """Owns the order store and the active-ticket index.

    Callers go through the transition methods so the two maps can never
    disagree. The maps are the source of truth. Writes to the database are
    best-effort and failures are only logged.
    """

    def __init__(
        self,
        db: "Database | None" = None,
        *,
        scheduler: "DeletionScheduler | None" = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[float], str] = default_order_id,
    ) -> None:
        self.db = db
        self.scheduler = scheduler
        self._clock = clock
        self._id_factory = id_factory
        self._orders: dict[int, Order] = {}
        self._active: dict[int, int] = {}
        self._reserved: set[int] = set()
        self._pending_ids: set[str] = set()

    async def load(self) -> None:
        """Rebuild both maps from the database."""

        if self.db is None:
            return
        self._orders = {
            order.channel_id: order
            for order in await self.db.load_open_orders()
            if order.channel_id is not None
        }
        self._active = {
            user_id: channel_id
            for user_id, channel_id in await self.db.load_active_tickets()
            if channel_id in self._orders
        }
        _log.info(
            "Loaded %s tracked orders and %s active tickets",
            len(self._orders),
            len(self._active),
        )

    # -- queries ---------------------------------------------------------

    def get(self, channel_id: int) -> Optional[Order]:
        return self._orders.get(channel_id)

    def require(self, channel_id: int) -> Order:
        order = self._orders.get(channel_id)
        if order is None:
            raise OrderNotFoundError("Order data not found for this channel.")
        return order

    def active_channel_for(self, user_id: int) -> Optional[int]:
        return self._active.get(user_id)

    def orders(self) -> list[Order]:
        return sorted(self._orders.values(), key=lambda order: order.created_at)

    def pending_orders(self) -> list[Order]:
        return [order for order in self.orders() if order.status is OrderStatus.PENDING]

    def stats(self) -> OrderStats:
        counts = {status: 0 for status in OrderStatus}
        for order in self._orders.values():
            counts[order.status] += 1
        return OrderStats(
            total=len(self._orders),
            pending=counts[OrderStatus.PENDING],
            processing=counts[OrderStatus.PROCESSING],
            completed=counts[OrderStatus.COMPLETED],
            cancelled=counts[OrderStatus.CANCELLED],
            active_channels=len(self._active),
        )

    # -- transitions -----------------------------------------------------

    async def release_stale_ticket(self, user_id: int) -> None:
        """Drop a user's index entry (and its record) when the channel no longer exists."""

        channel_id = self._active.pop(user_id, None)
        if channel_id is None:
            return
        _log.info("Released stale ticket %s for user %s", channel_id, user_id)
        await self._persist_ticket(user_id, None)
        await self.forget(channel_id)

    async def submit(
        self, requester_id: int, requester_name: str, fields_in: Mapping[str, Optional[str]]
    ) -> Order:
        cleaned = clean_fields(fields_in)
        if requester_id in self._active or requester_id in self._reserved:
            raise DuplicateOrderError(requester_id, self._active.get(requester_id))

        now = self._clock()
        order = Order(
            order_id=self._allocate_id(now),
            requester_id=requester_id,
            requester_name=requester_name,
            created_at=now,
            **cleaned,
        )
        # Held until the caller registers the channel or abandons the order.
        self._reserved.add(requester_id)
        return order

    def _allocate_id(self, now: float) -> str:
        """Short ids wrap around, so skip any still held by a tracked order."""

        in_use = {order.order_id for order in self._orders.values()} | self._pending_ids
        order_id = self._id_factory(now)
        while order_id in in_use:
            now += 0.001
            order_id = self._id_factory(now)
        self._pending_ids.add(order_id)
        return order_id

    def abandon(self, order: Order) -> None:
        self._reserved.discard(order.requester_id)
        self._pending_ids.discard(order.order_id)

    async def register(self, order: Order, channel_id: int) -> Order:
        self._reserved.discard(order.requester_id)
        self._pending_ids.discard(order.order_id)
        order.channel_id = channel_id
        self._orders[channel_id] = order
        self._active[order.requester_id] = channel_id
        await self._persist(order)
        await self._persist_ticket(order.requester_id, channel_id)
        _log.info("Order %s opened in channel %s", order.order_id, channel_id)
        return order

    async def claim(self, channel_id: int, staff_id: int) -> Order:
        order = self.require(channel_id)
        if order.status is not OrderStatus.PENDING:
            raise InvalidTransitionError(order, "claimed")
        order.status = OrderStatus.PROCESSING
        order.claimed_by = staff_id
        order.claimed_at = self._clock()
        await self._persist(order)
        return order

    async def complete(self, channel_id: int, staff_id: int) -> Order:
        order = self.require(channel_id)
        if order.status is not OrderStatus.PROCESSING:
            raise InvalidTransitionError(order, "completed")
        order.status = OrderStatus.COMPLETED
        order.completed_by = staff_id
        order.completed_at = self._clock()
        await self._persist(order)
        if self.db is not None:
            try:
                await self.db.record_order_completed(order.requester_id)
            except aiosqlite.Error:
                _log.exception("Failed to update order count for %s", order.requester_id)
        await self._schedule_cleanup(channel_id)
        return order

    async def cancel(self, channel_id: int, actor_id: int) -> Order:
        order = self.require(channel_id)
        if not order.status.is_open:
            raise InvalidTransitionError(order, "cancelled")
        order.status = OrderStatus.CANCELLED
        order.cancelled_by = actor_id
        order.cancelled_at = self._clock()
        if self._active.get(order.requester_id) == channel_id:
            del self._active[order.requester_id]
            await self._persist_ticket(order.requester_id, None)
        await self._persist(order)
        await self._schedule_cleanup(channel_id)
        return order

    async def reopen(self, channel_id: int, staff_id: int) -> Order:
        order = self.require(channel_id)
        if order.status is not OrderStatus.CANCELLED:
            raise InvalidTransitionError(order, "reopened")
        other = self._active.get(order.requester_id)
        if (other is not None and other != channel_id) or order.requester_id in self._reserved:
            raise DuplicateOrderError(order.requester_id, other)

        if self.scheduler is not None:
            await self.scheduler.cancel(channel_id)
        order.status = OrderStatus.PENDING
        order.cancelled_by = None
        order.cancelled_at = None
        self._active[order.requester_id] = channel_id
        await self._persist_ticket(order.requester_id, channel_id)
        await self._persist(order)
        _log.info("Order %s reopened by %s", order.order_id, staff_id)
        return order

    async def forget(self, channel_id: int) -> Optional[Order]:
        """Drop a record once its channel has been deleted."""

        order = self._orders.pop(channel_id, None)
        if order is None:
            return None
        if self._active.get(order.requester_id) == channel_id:
            del self._active[order.requester_id]
            await self._persist_ticket(order.requester_id, None)
        if self.db is not None:
            try:
                await self.db.close_order(channel_id)
            except aiosqlite.Error:
                _log.exception("Failed to close order %s", order.order_id)
        return order

    # -- persistence -----------------------------------------------------

    async def _schedule_cleanup(self, channel_id: int) -> None:
        if self.scheduler is None:
            return
        await self.scheduler.schedule(channel_id)

    async def _persist(self, order: Order) -> None:
        if self.db is None:
            return
        try:
            await self.db.save_order(order)
        except aiosqlite.Error:
            _log.exception("Failed to save order %s", order.order_id)

    async def _persist_ticket(self, user_id: int, channel_id: Optional[int]) -> None:
        if self.db is None:
            return
        try:
            if channel_id is None:
                await self.db.clear_active_ticket(user_id)
            else:
                await self.db.set_active_ticket(user_id, channel_id)
        except aiosqlite.Error:
            _log.exception("Failed to update active ticket for %s", user_id)
