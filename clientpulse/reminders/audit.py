"""Audit log wiring: best-effort append of scheduling/delivery events."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from clientpulse.reminders.schema import LogEntry
    from clientpulse.reminders.storage import ReminderStore


class AuditLog:
    """Append-only event recorder backed by the reminder store.

    A failing append is logged and swallowed: audit records must never
    block or fail a delivery.
    """

    def __init__(self, store: "ReminderStore"):
        self.store = store

    async def record(self, type: str, detail: str) -> "LogEntry | None":
        try:
            return await asyncio.to_thread(self.store.append_log, type, detail)
        except Exception as e:
            logger.warning(f"[Audit] Failed to append {type} entry ({detail!r}): {e}")
            return None

    async def reminder(self, detail: str) -> "LogEntry | None":
        return await self.record("Reminder", detail)

    async def send(self, detail: str) -> "LogEntry | None":
        return await self.record("Send", detail)

    async def error(self, detail: str) -> "LogEntry | None":
        return await self.record("Error", detail)
