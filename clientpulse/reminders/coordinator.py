"""Delivery coordinator: the single path that sends reminders and mutates their state.

Both the timer scheduler (via its fire callback) and manual run-now land
here. Exactly-once-effective delivery rests on three layers:

1. An in-process in-flight set: a second attempt for an id that is still
   being delivered returns a skipped outcome without touching anything.
2. Re-fetching the authoritative record before deciding anything, so stale
   timers for sent/failed/cancelled/advanced reminders become no-ops.
3. Compare-and-set store updates conditioned on the state observed in (2),
   so a racing writer in another process is detected instead of overwritten.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from clientpulse.reminders.audit import AuditLog
from clientpulse.reminders.clock import Clock
from clientpulse.reminders.errors import DataStoreError, NotFoundError
from clientpulse.reminders.gateway import SendResult
from clientpulse.reminders.recurrence import next_occurrence
from clientpulse.reminders.utils import isoformat

if TYPE_CHECKING:
    from clientpulse.reminders.gateway import DeliveryGateway
    from clientpulse.reminders.scheduler import TimerScheduler
    from clientpulse.reminders.schema import Client, Reminder
    from clientpulse.reminders.storage import ReminderStore

DEFAULT_SEND_TIMEOUT_S = 30.0
# A timer that wakes more than this long before fire_at is treated as stale.
EARLY_FIRE_TOLERANCE_S = 1.0


@dataclass
class DeliveryOutcome:
    """Result of one attempt()."""

    reminder_id: str
    ok: bool
    skipped: bool = False
    reason: str | None = None  # Failure or skip reason
    reminder: "Reminder | None" = None  # State after the attempt, when known


def compose_message(client: "Client", reminder: "Reminder", sender_name: str) -> tuple[str, str]:
    """Fixed subject/body template for a reminder."""
    subject = f"Follow-up: {client.name}"
    body = f"Hi {client.name},\n\n{reminder.message}\n\n-- Sent by {sender_name}"
    return subject, body


class DeliveryCoordinator:
    """Send a reminder once and move it to its next state."""

    def __init__(
        self,
        store: "ReminderStore",
        gateway: "DeliveryGateway",
        clock: Clock | None = None,
        audit: AuditLog | None = None,
        send_timeout_s: float = DEFAULT_SEND_TIMEOUT_S,
        timezone: str = "UTC",
        sender_name: str = "ClientPulse",
    ):
        self.store = store
        self.gateway = gateway
        self.clock = clock or Clock()
        self.audit = audit or AuditLog(store)
        self.send_timeout_s = send_timeout_s
        self.timezone = timezone
        self.sender_name = sender_name
        # Set by the owning service; used to re-arm recurring reminders.
        self.scheduler: "TimerScheduler | None" = None
        self._in_flight: set[str] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def attempt(self, reminder_id: str, *, manual: bool = False) -> DeliveryOutcome:
        """Try to deliver one reminder.

        Timer-driven attempts (manual=False) only act on scheduled reminders
        that are actually due. Manual attempts bypass timing and may re-run
        failed or sent reminders, never cancelled ones.

        Raises NotFoundError for an unknown id and DataStoreError when the
        store fails; delivery failures are reported in the outcome.
        """
        if reminder_id in self._in_flight:
            logger.debug(f"[Coordinator] Skipping {reminder_id} (in-flight)")
            return DeliveryOutcome(reminder_id, ok=False, skipped=True, reason="already in flight")

        self._in_flight.add(reminder_id)
        try:
            return await self._attempt(reminder_id, manual)
        finally:
            self._in_flight.discard(reminder_id)

    def is_in_flight(self, reminder_id: str) -> bool:
        return reminder_id in self._in_flight

    # ------------------------------------------------------------------
    # Attempt flow
    # ------------------------------------------------------------------

    async def _attempt(self, reminder_id: str, manual: bool) -> DeliveryOutcome:
        reminder = await self._call(self.store.get_reminder, reminder_id)
        if reminder is None:
            raise NotFoundError("reminder", reminder_id)

        if reminder.status == "cancelled" or (not manual and reminder.status != "scheduled"):
            logger.debug(f"[Coordinator] {reminder_id} status={reminder.status}; nothing to do")
            return DeliveryOutcome(
                reminder_id,
                ok=False,
                skipped=True,
                reason=f"status is {reminder.status}",
                reminder=reminder,
            )

        if not manual:
            early_by = self.clock.seconds_until(reminder.fire_at)
            if early_by > EARLY_FIRE_TOLERANCE_S:
                logger.debug(
                    f"[Coordinator] {reminder_id} not due for {early_by:.0f}s; re-arming"
                )
                self._rearm(reminder)
                return DeliveryOutcome(
                    reminder_id, ok=False, skipped=True, reason="not yet due", reminder=reminder
                )

        # Preconditions for every write below: nobody else moved the reminder.
        expected: dict[str, Any] = {"status": reminder.status}
        if reminder.is_recurring:
            expected["fire_at"] = reminder.fire_at

        # 1. Resolve client (missing client is permanent, no retry)
        client = await self._call(self.store.get_client, reminder.client_id)
        if client is None:
            updated = await self._transition(reminder, {"status": "failed"}, expected)
            logger.error(
                f"[Coordinator] Client {reminder.client_id} missing for reminder {reminder_id}"
            )
            await self.audit.error(
                f"Client {reminder.client_id} missing for reminder {reminder_id}"
            )
            return DeliveryOutcome(
                reminder_id, ok=False, reason="client missing", reminder=updated or reminder
            )

        # 2-3. Compose and send
        subject, body = compose_message(client, reminder, self.sender_name)
        result = await self._send(client.email, subject, body)
        sent_at = self.clock.now()

        if not result.ok:
            return await self._on_failure(reminder, client, result, expected)
        return await self._on_success(reminder, client, sent_at, expected)

    async def _on_success(
        self, reminder: "Reminder", client: "Client", sent_at, expected: dict[str, Any]
    ) -> DeliveryOutcome:
        changes: dict[str, Any] = {"last_sent_at": sent_at}
        skipped = 0
        if reminder.is_recurring:
            # Manual re-runs of a failed recurring reminder revive it.
            changes["status"] = "scheduled"
            changes["fire_at"], skipped = self._next_future_occurrence(reminder)
        else:
            changes["status"] = "sent"

        try:
            updated = await self._transition(reminder, changes, expected)
        except (DataStoreError, NotFoundError) as e:
            logger.critical(
                f"[Coordinator] {reminder.id} was SENT to {client.email} but the state update "
                f"failed: {e}. Manual remediation required to avoid a repeat send."
            )
            await self.audit.error(
                f"Sent reminder {reminder.id} (client {client.id}) but failed to record it: {e}"
            )
            if isinstance(e, DataStoreError):
                raise
            raise DataStoreError(str(e)) from e

        if updated is None:
            logger.critical(
                f"[Coordinator] {reminder.id} was SENT to {client.email} but changed concurrently "
                f"(expected {expected}); possible double send"
            )
            await self.audit.error(
                f"Reminder {reminder.id} (client {client.id}) changed while being sent; "
                f"possible duplicate delivery"
            )
        elif reminder.is_recurring:
            detail = f"Rescheduled {reminder.id} to {isoformat(updated.fire_at)}"
            if skipped:
                detail += f" (skipped {skipped} missed occurrence(s))"
            await self.audit.reminder(detail)

        await self.audit.send(f"Sent reminder {reminder.id} to {client.email}")
        logger.info(f"[Coordinator] Delivered {reminder.id} to {client.email}")

        if updated is not None and updated.status == "scheduled":
            self._rearm(updated)
        return DeliveryOutcome(reminder.id, ok=True, reminder=updated)

    async def _on_failure(
        self,
        reminder: "Reminder",
        client: "Client",
        result: SendResult,
        expected: dict[str, Any],
    ) -> DeliveryOutcome:
        reason = result.error or "unknown error"
        updated = await self._transition(reminder, {"status": "failed"}, expected)
        if updated is None:
            logger.warning(
                f"[Coordinator] {reminder.id} changed concurrently; failure not recorded on it"
            )
        logger.error(
            f"[Coordinator] Send failed for {reminder.id} (client {client.id}): {reason}"
        )
        await self.audit.send(f"Failed to send {reminder.id} to {client.email}: {reason}")
        return DeliveryOutcome(reminder.id, ok=False, reason=reason, reminder=updated)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _next_future_occurrence(self, reminder: "Reminder") -> tuple[datetime, int]:
        """First occurrence after fire_at that is also after now, plus how many were skipped.

        A reminder that was overdue by several periods is sent once, not
        once per missed period.
        """
        next_at = next_occurrence(reminder.fire_at, reminder.repeat, self.timezone)
        now = self.clock.now()
        skipped = 0
        while next_at <= now:
            next_at = next_occurrence(next_at, reminder.repeat, self.timezone)
            skipped += 1
        return next_at, skipped

    async def _send(self, to: str, subject: str, body: str) -> SendResult:
        """Gateway send bounded by send_timeout_s. Never raises."""
        try:
            return await asyncio.wait_for(
                self.gateway.send(to, subject, body), timeout=self.send_timeout_s
            )
        except asyncio.TimeoutError:
            return SendResult(False, f"send timed out after {self.send_timeout_s:.0f}s")
        except Exception as e:
            logger.exception(f"[Coordinator] Gateway {self.gateway.name} raised for {to}")
            return SendResult(False, str(e) or e.__class__.__name__)

    async def _transition(
        self, reminder: "Reminder", changes: dict[str, Any], expected: dict[str, Any]
    ) -> "Reminder | None":
        return await self._call(self.store.update_reminder, reminder.id, changes, expected)

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a sync store call off the event loop, normalizing unexpected failures."""
        try:
            return await asyncio.to_thread(fn, *args)
        except (DataStoreError, NotFoundError):
            raise
        except Exception as e:
            raise DataStoreError(f"{getattr(fn, '__name__', 'store call')} failed: {e}") from e

    def _rearm(self, reminder: "Reminder") -> None:
        if self.scheduler is None:
            return
        try:
            self.scheduler.register(reminder)
        except Exception:
            logger.exception(f"[Coordinator] Re-arm failed for {reminder.id}")
