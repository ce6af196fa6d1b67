import asyncio
from pathlib import Path

import pytest

from order_desk.cleanup import DeletionScheduler
from order_desk.database import Database
from order_desk.orders import (
    DuplicateOrderError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderStatus,
    OrderTracker,
    OrderValidationError,
    default_order_id,
)

pytestmark = pytest.mark.asyncio

FORM = {
    "service": "Account Boost",
    "details": "Gold to Platinum",
    "quantity": "1",
    "budget": "$25",
    "urgency": "ASAP",
}


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingScheduler:
    def __init__(self):
        self.scheduled: list[int] = []
        self.cancelled: list[int] = []

    async def schedule(self, channel_id: int, *, reason: str = "order") -> bool:
        if channel_id in self.scheduled:
            return False
        self.scheduled.append(channel_id)
        return True

    async def cancel(self, channel_id: int) -> bool:
        self.cancelled.append(channel_id)
        return True


async def open_order(tracker: OrderTracker, user_id: int = 1, channel_id: int = 100):
    order = await tracker.submit(user_id, "Alice", FORM)
    return await tracker.register(order, channel_id)


async def test_default_order_id_uses_last_six_millis():
    assert default_order_id(1_700_000_123.0) == "#123000"


async def test_wrapped_order_ids_are_not_reused():
    tracker = OrderTracker(clock=FakeClock(1_700_000_000.0))
    first = await open_order(tracker, user_id=1, channel_id=100)
    second = await open_order(tracker, user_id=2, channel_id=200)

    assert first.order_id == "#000000"
    assert second.order_id != first.order_id
    assert second.order_id.startswith("#00000")


async def test_submit_creates_pending_order_and_index_entry():
    clock = FakeClock()
    tracker = OrderTracker(clock=clock)

    order = await open_order(tracker)

    assert order.status is OrderStatus.PENDING
    assert order.service == "Account Boost"
    assert order.budget == "$25"
    assert order.created_at == clock.now
    assert order.order_id.startswith("#") and len(order.order_id) == 7
    assert tracker.get(100) is order
    assert tracker.active_channel_for(1) == 100


async def test_blank_field_is_rejected():
    tracker = OrderTracker()
    with pytest.raises(OrderValidationError):
        await tracker.submit(1, "Alice", {**FORM, "budget": "   "})
    assert tracker.active_channel_for(1) is None


async def test_second_submission_is_rejected():
    tracker = OrderTracker()
    await open_order(tracker)

    with pytest.raises(DuplicateOrderError) as excinfo:
        await tracker.submit(1, "Alice", FORM)
    assert excinfo.value.channel_id == 100


async def test_submission_in_flight_blocks_another():
    tracker = OrderTracker()
    pending = await tracker.submit(1, "Alice", FORM)

    with pytest.raises(DuplicateOrderError):
        await tracker.submit(1, "Alice", FORM)

    tracker.abandon(pending)
    again = await tracker.submit(1, "Alice", FORM)
    assert again.requester_id == 1


async def test_claim_moves_to_processing():
    clock = FakeClock()
    tracker = OrderTracker(clock=clock)
    await open_order(tracker)
    clock.now += 60

    order = await tracker.claim(100, 42)

    assert order.status is OrderStatus.PROCESSING
    assert order.claimed_by == 42
    assert order.claimed_at == clock.now


async def test_second_claim_is_rejected():
    tracker = OrderTracker()
    await open_order(tracker)
    await tracker.claim(100, 42)

    with pytest.raises(InvalidTransitionError):
        await tracker.claim(100, 43)
    assert tracker.get(100).claimed_by == 42


async def test_concurrent_claims_only_one_wins():
    tracker = OrderTracker()
    await open_order(tracker)

    results = await asyncio.gather(
        tracker.claim(100, 42), tracker.claim(100, 43), return_exceptions=True
    )

    assert sum(1 for result in results if isinstance(result, InvalidTransitionError)) == 1
    assert tracker.get(100).claimed_by == 42


async def test_complete_requires_processing():
    tracker = OrderTracker()
    await open_order(tracker)

    with pytest.raises(InvalidTransitionError):
        await tracker.complete(100, 42)


async def test_complete_schedules_deletion_once():
    scheduler = RecordingScheduler()
    tracker = OrderTracker(scheduler=scheduler)
    await open_order(tracker)
    await tracker.claim(100, 42)

    order = await tracker.complete(100, 42)

    assert order.status is OrderStatus.COMPLETED
    assert order.completed_by == 42
    assert order.completed_at is not None
    assert scheduler.scheduled == [100]
    with pytest.raises(InvalidTransitionError):
        await tracker.complete(100, 42)
    assert scheduler.scheduled == [100]


async def test_cancel_removes_index_entry():
    scheduler = RecordingScheduler()
    tracker = OrderTracker(scheduler=scheduler)
    await open_order(tracker)

    order = await tracker.cancel(100, 1)

    assert order.status is OrderStatus.CANCELLED
    assert order.cancelled_by == 1
    assert order.cancelled_at is not None
    assert tracker.active_channel_for(1) is None
    assert tracker.get(100) is order
    assert scheduler.scheduled == [100]

    # the user may order again right away
    await tracker.submit(1, "Alice", FORM)


async def test_cancel_processing_order():
    tracker = OrderTracker()
    await open_order(tracker)
    await tracker.claim(100, 42)

    order = await tracker.cancel(100, 42)
    assert order.status is OrderStatus.CANCELLED


async def test_completed_order_cannot_be_cancelled():
    tracker = OrderTracker()
    await open_order(tracker)
    await tracker.claim(100, 42)
    await tracker.complete(100, 42)

    with pytest.raises(InvalidTransitionError):
        await tracker.cancel(100, 1)


async def test_reopen_restores_index_and_cancels_deletion():
    scheduler = RecordingScheduler()
    tracker = OrderTracker(scheduler=scheduler)
    await open_order(tracker)
    await tracker.cancel(100, 1)

    order = await tracker.reopen(100, 42)

    assert order.status is OrderStatus.PENDING
    assert order.cancelled_by is None
    assert order.cancelled_at is None
    assert tracker.active_channel_for(1) == 100
    assert scheduler.cancelled == [100]


async def test_reopen_rejected_when_user_has_new_order():
    tracker = OrderTracker()
    await open_order(tracker)
    await tracker.cancel(100, 1)
    await open_order(tracker, channel_id=200)

    with pytest.raises(DuplicateOrderError):
        await tracker.reopen(100, 42)
    assert tracker.get(100).status is OrderStatus.CANCELLED


async def test_reopen_requires_cancelled():
    tracker = OrderTracker()
    await open_order(tracker)
    with pytest.raises(InvalidTransitionError):
        await tracker.reopen(100, 42)


async def test_unknown_channel_raises_not_found():
    tracker = OrderTracker()
    with pytest.raises(OrderNotFoundError):
        await tracker.claim(999, 42)


async def test_stats_and_pending_order():
    clock = FakeClock()
    tracker = OrderTracker(clock=clock)
    await open_order(tracker, user_id=1, channel_id=100)
    clock.now += 1
    await open_order(tracker, user_id=2, channel_id=200)
    clock.now += 1
    await open_order(tracker, user_id=3, channel_id=300)
    await tracker.claim(200, 42)
    await tracker.cancel(300, 3)

    assert [order.channel_id for order in tracker.pending_orders()] == [100]
    stats = tracker.stats()
    assert stats.total == 3
    assert stats.pending == 1
    assert stats.processing == 1
    assert stats.cancelled == 1
    assert stats.active_channels == 2
    assert stats.completion_rate == 0


async def test_completion_deletes_channel_and_clears_record():
    tracker = OrderTracker()
    deleted: list[int] = []

    async def on_due(channel_id: int) -> None:
        deleted.append(channel_id)
        await tracker.forget(channel_id)

    scheduler = DeletionScheduler(None, on_due, delay=0.02, grace=0.01)
    tracker.scheduler = scheduler
    await open_order(tracker)
    await tracker.claim(100, 42)
    await tracker.complete(100, 42)

    await asyncio.sleep(0.1)

    assert deleted == [100]
    assert tracker.get(100) is None
    assert tracker.active_channel_for(1) is None
    await scheduler.close()


async def test_state_survives_reload(tmp_path: Path):
    db = Database(tmp_path / "test.db")
    await db.setup()
    tracker = OrderTracker(db)
    await open_order(tracker)
    await tracker.claim(100, 42)
    await open_order(tracker, user_id=2, channel_id=200)
    await tracker.cancel(200, 2)

    reloaded = OrderTracker(db)
    await reloaded.load()

    assert reloaded.get(100).status is OrderStatus.PROCESSING
    assert reloaded.get(100).claimed_by == 42
    assert reloaded.active_channel_for(1) == 100
    assert reloaded.get(200).status is OrderStatus.CANCELLED
    assert reloaded.active_channel_for(2) is None


async def test_forget_closes_history_row(tmp_path: Path):
    db = Database(tmp_path / "test.db")
    await db.setup()
    tracker = OrderTracker(db)
    await open_order(tracker)
    await tracker.cancel(100, 1)
    await tracker.forget(100)

    reloaded = OrderTracker(db)
    await reloaded.load()
    assert reloaded.get(100) is None
    history = await db.order_history(1)
    assert [order.status for order in history] == [OrderStatus.CANCELLED]


async def test_release_stale_ticket_frees_user():
    tracker = OrderTracker()
    await open_order(tracker)

    await tracker.release_stale_ticket(1)

    assert tracker.active_channel_for(1) is None
    assert tracker.get(100) is None
    await tracker.submit(1, "Alice", FORM)
