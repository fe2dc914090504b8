"""Clock abstraction so schedules are testable without wall-clock waits."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone

from clientpulse.reminders.utils import ensure_utc


class Clock:
    """Wall-clock time, monotonic elapsed time and sleeping."""

    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        """Seconds from an arbitrary origin, for elapsed-time measurements."""
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))

    def seconds_until(self, when: datetime) -> float:
        """Signed seconds from now until when (negative if already past)."""
        return (ensure_utc(when) - self.now()).total_seconds()


class ManualClock(Clock):
    """Clock that only moves when told to.

    sleep() parks the caller until advance() moves time past its deadline,
    so timer behavior can be driven step by step from tests.
    """

    def __init__(self, start: datetime | None = None):
        self._now = ensure_utc(start) if start else datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
        self._elapsed = 0.0
        self._sleepers: list[tuple[float, asyncio.Future]] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._elapsed

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._elapsed + seconds, future))
        try:
            await future
        finally:
            self._sleepers = [(d, f) for d, f in self._sleepers if f is not future]

    def advance(self, seconds: float) -> None:
        """Move time forward and wake every sleeper whose deadline has passed."""
        self._elapsed += seconds
        self._now += timedelta(seconds=seconds)
        for deadline, future in list(self._sleepers):
            if deadline <= self._elapsed and not future.done():
                future.set_result(None)

    def set(self, when: datetime) -> None:
        """Jump the wall clock without moving monotonic time (simulates clock adjustment)."""
        self._now = ensure_utc(when)

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, f in self._sleepers if not f.done())
