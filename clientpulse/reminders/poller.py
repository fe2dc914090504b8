"""Reconciliation poller: periodic rescan that (re)arms timers.

Covers every way a timer can go missing: process restart, reminders created
elsewhere (another process, the CLI), registrations lost to errors, and
long-horizon reminders that only become armable as time passes. It never
delivers anything itself; all firing goes through the TimerScheduler.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

from clientpulse.reminders.clock import Clock
from clientpulse.reminders.errors import DataStoreError

if TYPE_CHECKING:
    from clientpulse.reminders.scheduler import TimerScheduler
    from clientpulse.reminders.storage import ReminderStore

DEFAULT_POLL_INTERVAL_S = 20.0
DEFAULT_DUE_WINDOW_S = 60.0


@dataclass
class PollResult:
    """Outcome of a single poll_once() pass."""

    due: list[str] = field(default_factory=list)  # |delta| <= due window
    upcoming: list[str] = field(default_factory=list)  # within horizon
    missed: list[str] = field(default_factory=list)  # overdue beyond the window
    deferred: list[str] = field(default_factory=list)  # beyond horizon / skipped
    skipped: bool = False  # a scan was already running
    error: str | None = None

    @property
    def registered(self) -> list[str]:
        return self.due + self.upcoming + self.missed


class ReconciliationPoller:
    """Scan scheduled reminders on a fixed cadence and register near-term ones.

    Non-reentrant: a tick that arrives while a scan is still running is
    skipped, not queued.
    """

    def __init__(
        self,
        store: "ReminderStore",
        scheduler: "TimerScheduler",
        clock: Clock | None = None,
        interval_s: float = DEFAULT_POLL_INTERVAL_S,
        due_window_s: float = DEFAULT_DUE_WINDOW_S,
        deliver_missed: bool = True,
    ):
        self.store = store
        self.scheduler = scheduler
        self.clock = clock or scheduler.clock
        self.interval_s = interval_s
        self.due_window_s = due_window_s
        self.deliver_missed = deliver_missed
        self._scanning = False
        self._running = False
        self._task: asyncio.Task | None = None
        self._scan_task: asyncio.Future | None = None

    @property
    def horizon_s(self) -> float:
        return self.scheduler.horizon_s

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background loop. The first scan runs immediately."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="reminder-poller")
        logger.info(f"[Poller] Started (every {self.interval_s:.0f}s)")

    async def stop(self) -> None:
        """Stop the background loop and wait for an in-progress scan to finish."""
        self._running = False
        task, self._task = self._task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        scan, self._scan_task = self._scan_task, None
        if scan and not scan.done():
            await asyncio.gather(scan, return_exceptions=True)

    async def _run_loop(self) -> None:
        while self._running:
            try:
                # Shielded: cancelling the loop must not abandon a store read mid-scan.
                self._scan_task = asyncio.ensure_future(self.poll_once())
                await asyncio.shield(self._scan_task)
                await self.clock.sleep(self.interval_s)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("[Poller] Tick error")
                await self.clock.sleep(self.interval_s)

    # ------------------------------------------------------------------
    # Single pass
    # ------------------------------------------------------------------

    async def poll_once(self) -> PollResult:
        """Scan all scheduled reminders once and register the near-term ones."""
        if self._scanning:
            logger.debug("[Poller] Scan already in progress; skipping tick")
            return PollResult(skipped=True)

        self._scanning = True
        try:
            return await self._scan()
        finally:
            self._scanning = False

    async def _scan(self) -> PollResult:
        result = PollResult()
        try:
            reminders = await asyncio.to_thread(self.store.list_scheduled)
        except DataStoreError as e:
            logger.error(f"[Poller] Could not list reminders: {e}")
            result.error = str(e)
            return result

        for reminder in reminders:
            if reminder.status != "scheduled":
                continue
            delta = self.clock.seconds_until(reminder.fire_at)

            if -self.due_window_s <= delta <= self.due_window_s:
                bucket = result.due
            elif self.due_window_s < delta <= self.horizon_s:
                bucket = result.upcoming
            elif delta < -self.due_window_s and self.deliver_missed:
                logger.info(
                    f"[Poller] {reminder.id} missed its fire time by {-delta:.0f}s; delivering now"
                )
                bucket = result.missed
            else:
                result.deferred.append(reminder.id)
                continue

            if self.scheduler.register(reminder):
                bucket.append(reminder.id)
            else:
                result.deferred.append(reminder.id)

        if result.registered:
            logger.debug(
                f"[Poller] Registered {len(result.registered)} reminder(s) "
                f"(due={len(result.due)}, upcoming={len(result.upcoming)}, "
                f"missed={len(result.missed)})"
            )
        return result
