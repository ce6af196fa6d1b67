import asyncio
import time
from pathlib import Path

import pytest

from order_desk.cleanup import ORDER_CLEANUP_DELAY_SECONDS, DeletionScheduler
from order_desk.database import Database

pytestmark = pytest.mark.asyncio


async def init_db(tmp_path: Path) -> Database:
    db = Database(tmp_path / "test.db")
    await db.setup()
    return db


async def test_default_delay_is_fifteen_seconds():
    assert ORDER_CLEANUP_DELAY_SECONDS == 15.0


async def test_warning_then_deletion(tmp_path: Path):
    db = await init_db(tmp_path)
    events: list[tuple[str, int]] = []

    async def on_warning(channel_id: int) -> None:
        events.append(("warn", channel_id))

    async def on_due(channel_id: int) -> None:
        events.append(("delete", channel_id))

    scheduler = DeletionScheduler(db, on_due, on_warning=on_warning, delay=0.05, grace=0.02)
    assert await scheduler.schedule(100)
    assert await db.scheduled_deletions() != []

    await asyncio.sleep(0.2)

    assert events == [("warn", 100), ("delete", 100)]
    assert not scheduler.is_scheduled(100)
    assert await db.scheduled_deletions() == []


async def test_schedule_is_idempotent(tmp_path: Path):
    db = await init_db(tmp_path)
    deleted: list[int] = []

    async def on_due(channel_id: int) -> None:
        deleted.append(channel_id)

    scheduler = DeletionScheduler(db, on_due, delay=0.05, grace=0.0)
    assert await scheduler.schedule(100)
    assert not await scheduler.schedule(100)

    await asyncio.sleep(0.2)
    assert deleted == [100]


async def test_cancel_stops_deletion(tmp_path: Path):
    db = await init_db(tmp_path)
    deleted: list[int] = []

    async def on_due(channel_id: int) -> None:
        deleted.append(channel_id)

    scheduler = DeletionScheduler(db, on_due, delay=0.05, grace=0.0)
    await scheduler.schedule(100)
    assert await scheduler.cancel(100)

    await asyncio.sleep(0.1)
    assert deleted == []
    assert await db.scheduled_deletions() == []


async def test_recover_fires_overdue_deletions(tmp_path: Path):
    db = await init_db(tmp_path)
    await db.schedule_deletion(100, time.time() - 30)
    await db.schedule_deletion(200, time.time() + 60)
    deleted: list[int] = []

    async def on_due(channel_id: int) -> None:
        deleted.append(channel_id)

    scheduler = DeletionScheduler(db, on_due)
    assert await scheduler.recover() == 2

    await asyncio.sleep(0.1)
    assert deleted == [100]
    assert scheduler.is_scheduled(200)
    assert [row[0] for row in await db.scheduled_deletions()] == [200]

    await scheduler.close()
    assert not scheduler.is_scheduled(200)
    # closing keeps the row so the next start re-arms it
    assert [row[0] for row in await db.scheduled_deletions()] == [200]


async def test_failing_callback_still_clears_row(tmp_path: Path):
    db = await init_db(tmp_path)

    async def on_due(channel_id: int) -> None:
        raise RuntimeError("boom")

    scheduler = DeletionScheduler(db, on_due, delay=0.01, grace=0.0)
    await scheduler.schedule(100)
    await asyncio.sleep(0.1)

    assert not scheduler.is_scheduled(100)
    assert await db.scheduled_deletions() == []


async def test_grace_cannot_exceed_delay():
    async def on_due(channel_id: int) -> None:
        pass

    with pytest.raises(ValueError):
        DeletionScheduler(None, on_due, delay=5, grace=10)
