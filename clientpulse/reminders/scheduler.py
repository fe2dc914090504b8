"""Timer scheduler: per-reminder wake-ups within a bounded look-ahead horizon.

The armed-timer table is only touched by synchronous code running on the
event loop (register / cancel / fire completion), so the loop itself is the
single owner of the table and those operations never interleave. Store and
gateway I/O happen inside the fire callback, after the registration has
already been removed from the table.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from loguru import logger

from clientpulse.reminders.clock import Clock

if TYPE_CHECKING:
    from datetime import datetime

    from clientpulse.reminders.schema import Reminder

# Longest wake-up armed directly; anything further out waits for the poller.
DEFAULT_HORIZON_S = 24 * 60 * 60


class TimerScheduler:
    """Arms one asyncio task per due-soon reminder.

    ``register`` is cancel-then-arm, so calling it any number of times for
    the same id leaves at most one armed wake-up. On wake-up the scheduler
    drops the registration, then calls ``on_fire(reminder_id)`` exactly once.
    """

    def __init__(
        self,
        on_fire: Callable[[str], Awaitable[Any]],
        clock: Clock | None = None,
        horizon_s: float = DEFAULT_HORIZON_S,
    ):
        self.on_fire = on_fire
        self.clock = clock or Clock()
        self.horizon_s = horizon_s
        self._timers: dict[str, asyncio.Task] = {}
        self._firing: set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register(self, reminder: "Reminder") -> bool:
        """(Re-)arm a wake-up for reminder. Returns True if a timer is now armed."""
        if self._closed:
            logger.warning(f"[Scheduler] Closed; not arming {reminder.id}")
            return False

        replaced = self._drop(reminder.id)

        if reminder.status != "scheduled":
            logger.debug(f"[Scheduler] {reminder.id} status={reminder.status}, not arming")
            return False

        delay = self.clock.seconds_until(reminder.fire_at)
        if delay > self.horizon_s:
            logger.debug(
                f"[Scheduler] {reminder.id} due in {delay:.0f}s, beyond horizon "
                f"({self.horizon_s:.0f}s); deferring to poller"
            )
            return False

        task = asyncio.get_running_loop().create_task(
            self._wake(reminder.id, reminder.fire_at), name=f"reminder-timer:{reminder.id}"
        )
        self._timers[reminder.id] = task
        logger.debug(
            f"[Scheduler] {'Re-armed' if replaced else 'Armed'} {reminder.id}: "
            f"{max(delay, 0):.0f}s until fire"
        )
        return True

    def cancel(self, reminder_id: str) -> bool:
        """Remove an armed wake-up. Returns False if none was armed."""
        dropped = self._drop(reminder_id)
        if dropped:
            logger.debug(f"[Scheduler] Cancelled timer for {reminder_id}")
        return dropped

    def is_armed(self, reminder_id: str) -> bool:
        task = self._timers.get(reminder_id)
        return task is not None and not task.done()

    def armed_ids(self) -> list[str]:
        return [rid for rid, task in self._timers.items() if not task.done()]

    def __len__(self) -> int:
        return len(self.armed_ids())

    @property
    def in_flight(self) -> int:
        """Number of wake-ups currently running their delivery attempt."""
        return len(self._firing)

    async def shutdown(self) -> None:
        """Cancel every armed wake-up and wait for in-flight attempts to finish."""
        self._closed = True
        armed = list(self._timers)
        for reminder_id in armed:
            self._drop(reminder_id)
        if armed:
            logger.info(f"[Scheduler] Shutdown: cancelled {len(armed)} armed timer(s)")
        if self._firing:
            await asyncio.gather(*self._firing, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _drop(self, reminder_id: str) -> bool:
        task = self._timers.pop(reminder_id, None)
        if task is None:
            return False
        if not task.done():
            task.cancel()
        return True

    async def _wake(self, reminder_id: str, fire_at: "datetime") -> None:
        """Sleep until fire_at, then hand the reminder to on_fire once."""
        me = asyncio.current_task()
        try:
            # Re-check after every sleep: the wall clock may lag the timer.
            remaining = self.clock.seconds_until(fire_at)
            while remaining > 0:
                await self.clock.sleep(min(remaining, self.horizon_s))
                remaining = self.clock.seconds_until(fire_at)
        except asyncio.CancelledError:
            return

        # Registration is destroyed on fire, before any I/O. A register()
        # issued during the attempt arms a fresh timer and leaves this one alone.
        if self._timers.get(reminder_id) is me:
            del self._timers[reminder_id]
        else:
            return

        self._firing.add(me)
        try:
            logger.debug(f"[Scheduler] Firing {reminder_id}")
            await self.on_fire(reminder_id)
        except asyncio.CancelledError:
            logger.warning(f"[Scheduler] Attempt for {reminder_id} cancelled")
        except Exception:
            logger.exception(f"[Scheduler] Attempt for {reminder_id} raised")
        finally:
            self._firing.discard(me)
