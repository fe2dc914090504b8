"""Reminder service: the boundary the CLI (or an HTTP layer) talks to.

Wires the store, gateway, timer scheduler, reconciliation poller and
delivery coordinator together, validates new reminders, and exposes
run-now / cancel / list operations.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from clientpulse.reminders.audit import AuditLog
from clientpulse.reminders.clock import Clock
from clientpulse.reminders.coordinator import DeliveryCoordinator, DeliveryOutcome
from clientpulse.reminders.errors import (
    ConflictError,
    DataStoreError,
    DeliveryError,
    NotFoundError,
    ValidationError,
)
from clientpulse.reminders.poller import ReconciliationPoller
from clientpulse.reminders.scheduler import TimerScheduler
from clientpulse.reminders.schema import normalize_repeat
from clientpulse.reminders.utils import isoformat, parse_timestamp

if TYPE_CHECKING:
    from clientpulse.config.schema import Config
    from clientpulse.reminders.gateway import DeliveryGateway
    from clientpulse.reminders.schema import Client, LogEntry, Reminder
    from clientpulse.reminders.storage import ReminderStore


class ReminderService:
    """One instance per process. Owns the scheduler; lifetime = start()..stop()."""

    def __init__(
        self,
        store: "ReminderStore",
        gateway: "DeliveryGateway",
        config: "Config | None" = None,
        clock: Clock | None = None,
    ):
        from clientpulse.config.schema import Config

        self.config = config or Config()
        self.store = store
        self.gateway = gateway
        self.clock = clock or Clock()
        self.audit = AuditLog(store)

        sched_cfg = self.config.scheduler
        rem_cfg = self.config.reminders

        self.coordinator = DeliveryCoordinator(
            store,
            gateway,
            clock=self.clock,
            audit=self.audit,
            send_timeout_s=sched_cfg.send_timeout_s,
            timezone=rem_cfg.timezone,
            sender_name=rem_cfg.sender_name,
        )
        self.scheduler = TimerScheduler(
            on_fire=self.coordinator.attempt,
            clock=self.clock,
            horizon_s=sched_cfg.horizon_s,
        )
        self.coordinator.scheduler = self.scheduler
        self.poller = ReconciliationPoller(
            store,
            self.scheduler,
            clock=self.clock,
            interval_s=sched_cfg.poll_interval_s,
            due_window_s=sched_cfg.due_window_s,
            deliver_missed=sched_cfg.deliver_missed,
        )
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start reconciliation (first scan runs immediately)."""
        if self._started:
            return
        self._started = True
        await self.poller.start()
        logger.info(f"[Service] Started (transport={self.gateway.name})")

    async def stop(self) -> None:
        """Stop polling, cancel armed timers, let in-flight sends finish."""
        await self.poller.stop()
        await self.scheduler.shutdown()
        await self.gateway.close()
        self.store.close()
        self._started = False
        logger.info("[Service] Stopped")

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def create_reminder(
        self,
        client_id: str,
        fire_at: str | datetime,
        message: str,
        repeat: Any = "none",
    ) -> "Reminder":
        """Validate, persist and arm a new reminder.

        Raises ValidationError for bad input and NotFoundError for an unknown
        client. Nothing is persisted when either is raised.
        """
        rem_cfg = self.config.reminders

        if not client_id or not message or not str(message).strip() or fire_at in (None, ""):
            raise ValidationError("client_id, fire_at and message are required")

        client = await self._call(self.store.get_client, client_id)
        if client is None:
            raise NotFoundError("client", client_id)

        try:
            when = parse_timestamp(fire_at)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"invalid date: {fire_at!r}") from e

        policy = normalize_repeat(repeat)
        if policy is None:
            if rem_cfg.strict_repeat:
                raise ValidationError(f"unknown repeat policy: {repeat!r}")
            if repeat not in (None, ""):
                logger.warning(f"[Service] Unknown repeat policy {repeat!r}; using 'none'")
            policy = "none"

        now = self.clock.now()
        if when < now - timedelta(seconds=rem_cfg.past_tolerance_s):
            raise ValidationError("reminder must be in the future")
        if rem_cfg.max_ahead_days is not None and when > now + timedelta(
            days=rem_cfg.max_ahead_days
        ):
            raise ValidationError(
                f"reminder must be within {rem_cfg.max_ahead_days} days from now"
            )

        reminder = await self._call(self.store.create_reminder, client_id, when, message, policy)
        await self.audit.reminder(
            f"Scheduled reminder {reminder.id} for client {client.email} "
            f"at {isoformat(reminder.fire_at)}"
        )
        self.scheduler.register(reminder)
        logger.info(
            f"[Service] Created {reminder.id} for {client_id} at "
            f"{isoformat(reminder.fire_at)} (repeat={policy})"
        )
        return reminder

    async def run_now(self, reminder_id: str) -> DeliveryOutcome:
        """Deliver a reminder immediately, bypassing its schedule.

        Raises NotFoundError for an unknown id and DeliveryError when the
        attempt did not deliver (send failure, missing client, in-flight,
        cancelled).
        """
        if not reminder_id:
            raise ValidationError("reminder_id required")
        outcome = await self.coordinator.attempt(reminder_id, manual=True)
        if not outcome.ok:
            raise DeliveryError(reminder_id, outcome.reason or "send failed")
        return outcome

    async def cancel_reminder(self, reminder_id: str) -> "Reminder":
        """Disarm and mark a scheduled reminder cancelled.

        The timer is cancelled before the store update so it cannot fire in
        between. Raises NotFoundError, or ConflictError when the reminder is
        no longer scheduled.
        """
        self.scheduler.cancel(reminder_id)
        if self.coordinator.is_in_flight(reminder_id):
            raise ConflictError(f"reminder {reminder_id} is being delivered right now")

        updated = await self._call(
            self.store.update_reminder,
            reminder_id,
            {"status": "cancelled"},
            {"status": "scheduled"},
        )
        if updated is None:
            current = await self._call(self.store.get_reminder, reminder_id)
            status = current.status if current else "missing"
            raise ConflictError(f"reminder {reminder_id} is {status}, not scheduled")

        # A poll that ran during the update may have re-armed it.
        self.scheduler.cancel(reminder_id)
        await self.audit.reminder(f"Cancelled reminder {reminder_id}")
        logger.info(f"[Service] Cancelled {reminder_id}")
        return updated

    async def list_reminders(self) -> list["Reminder"]:
        """All reminders, newest first."""
        return await self._call(self.store.list_reminders)

    async def get_reminder(self, reminder_id: str) -> "Reminder":
        reminder = await self._call(self.store.get_reminder, reminder_id)
        if reminder is None:
            raise NotFoundError("reminder", reminder_id)
        return reminder

    # ------------------------------------------------------------------
    # Clients & logs
    # ------------------------------------------------------------------

    async def add_client(
        self, name: str, email: str, phone: str = "", notes: str = ""
    ) -> "Client":
        if not name or not email:
            raise ValidationError("name and email required")
        return await self._call(self.store.add_client, name, email, phone, notes)

    async def list_clients(self) -> list["Client"]:
        return await self._call(self.store.list_clients)

    async def list_logs(self, limit: int = 200) -> list["LogEntry"]:
        return await self._call(self.store.list_logs, limit)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except (DataStoreError, NotFoundError, ValidationError):
            raise
        except Exception as e:
            raise DataStoreError(f"{getattr(fn, '__name__', 'store call')} failed: {e}") from e
