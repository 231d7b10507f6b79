"""
taxgate.services.timeout_scheduler — Deferred Verification Timeouts
====================================================================

One ``asyncio`` task per ``(user_id, group_id)`` that sleeps for the
verification window and then runs a callback exactly once.

Arming the same key again replaces the earlier task, so a member who
leaves and rejoins only has the newest deadline enforced.  Cancellation
is a convenience: the callback itself re-checks the session and is a
no-op once it is COMPLETED.

The in-memory tasks die with the process.  The periodic sweep in
``taxgate.bot.cogs.tasks`` picks up whatever was never fired.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TimeoutKey = tuple[int, int]  # (user_id, group_id)


class TimeoutScheduler:
    """Keyed, replaceable, fire-once deferred actions."""

    def __init__(self) -> None:
        self._tasks: dict[TimeoutKey, asyncio.Task] = {}

    def schedule(
        self,
        key: TimeoutKey,
        delay_seconds: float,
        callback: Callable[[], Awaitable[object]],
    ) -> asyncio.Task:
        """Run *callback* once after *delay_seconds*.  Must be called from a
        running event loop.
        """
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(self._run(key, delay_seconds, callback))
        self._tasks[key] = task
        logger.debug("Timeout armed for %s in %.0fs", key, delay_seconds)
        return task

    async def _run(
        self,
        key: TimeoutKey,
        delay_seconds: float,
        callback: Callable[[], Awaitable[object]],
    ) -> None:
        try:
            await asyncio.sleep(delay_seconds)
            # Drop ourselves before firing so a re-arm from the callback sticks
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Timeout callback failed for %s", key)

    def cancel(self, key: TimeoutKey) -> bool:
        """Cancel the pending task for *key*.  Returns True if one was pending."""
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def pending(self, key: TimeoutKey) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def shutdown(self) -> None:
        """Cancel every pending task and wait for them to unwind."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Timeout scheduler stopped (%d pending cancelled)", len(tasks))
