"""Deferred channel deletion that survives restarts."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import aiosqlite

if TYPE_CHECKING:
    from .database import Database

_log = logging.getLogger(__name__)

#: Seconds between a completion/cancellation and the "closing soon" warning.
ACKNOWLEDGE_DELAY_SECONDS = 5.0
#: Seconds between the warning and the channel deletion.
GRACE_DELAY_SECONDS = 10.0
ORDER_CLEANUP_DELAY_SECONDS = ACKNOWLEDGE_DELAY_SECONDS + GRACE_DELAY_SECONDS

ChannelCallback = Callable[[int], Awaitable[None]]


class DeletionScheduler:
    """Schedules channel deletions and records each one in the database.

    ``on_warning`` fires ``grace`` seconds before the deletion and
    ``on_due`` fires at the due time. A persisted row is removed only after
    ``on_due`` has run, so :meth:`recover` can re-arm anything a crash
    interrupted.
    """

    def __init__(
        self,
        db: "Database | None",
        on_due: ChannelCallback,
        *,
        on_warning: Optional[ChannelCallback] = None,
        delay: float = ORDER_CLEANUP_DELAY_SECONDS,
        grace: float = GRACE_DELAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if grace > delay:
            raise ValueError("grace period cannot exceed the total delay")
        self.db = db
        self.on_due = on_due
        self.on_warning = on_warning
        self.delay = delay
        self.grace = grace
        self._clock = clock
        self._tasks: dict[int, asyncio.Task[None]] = {}

    def is_scheduled(self, channel_id: int) -> bool:
        return channel_id in self._tasks

    async def schedule(self, channel_id: int, *, reason: str = "order") -> bool:
        """Arm a deletion for ``channel_id``; returns ``False`` if one is already armed."""

        if channel_id in self._tasks:
            return False
        due_at = self._clock() + self.delay
        if self.db is not None:
            try:
                await self.db.schedule_deletion(channel_id, due_at, reason)
            except aiosqlite.Error:
                _log.exception("Failed to persist deletion for channel %s", channel_id)
        self._arm(channel_id, due_at)
        return True

    async def cancel(self, channel_id: int) -> bool:
        task = self._tasks.pop(channel_id, None)
        if task is not None:
            task.cancel()
        if self.db is not None:
            try:
                await self.db.cancel_deletion(channel_id)
            except aiosqlite.Error:
                _log.exception("Failed to clear deletion for channel %s", channel_id)
        return task is not None

    async def recover(self) -> int:
        """Re-arm deletions persisted by a previous run."""

        if self.db is None:
            return 0
        recovered = 0
        for channel_id, due_at, _ in await self.db.scheduled_deletions():
            if channel_id in self._tasks:
                continue
            self._arm(channel_id, due_at)
            recovered += 1
        if recovered:
            _log.info("Recovered %s pending channel deletions", recovered)
        return recovered

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _arm(self, channel_id: int, due_at: float) -> None:
        self._tasks[channel_id] = asyncio.create_task(
            self._run(channel_id, due_at), name=f"delete-channel-{channel_id}"
        )

    async def _run(self, channel_id: int, due_at: float) -> None:
        warn_at = due_at - self.grace
        remaining = warn_at - self._clock()
        if remaining > 0:
            await asyncio.sleep(remaining)
            if self.on_warning is not None:
                try:
                    await self.on_warning(channel_id)
                except Exception:
                    _log.exception("Deletion warning failed for channel %s", channel_id)

        remaining = due_at - self._clock()
        if remaining > 0:
            await asyncio.sleep(remaining)

        try:
            await self.on_due(channel_id)
        except Exception:
            _log.exception("Scheduled deletion failed for channel %s", channel_id)
        finally:
            self._tasks.pop(channel_id, None)
            if self.db is not None:
                try:
                    await self.db.cancel_deletion(channel_id)
                except aiosqlite.Error:
                    _log.exception("Failed to clear deletion for channel %s", channel_id)
