"""Reminder scheduling and delivery engine."""

from clientpulse.reminders.clock import Clock, ManualClock
from clientpulse.reminders.coordinator import DeliveryCoordinator, DeliveryOutcome
from clientpulse.reminders.errors import (
    ConflictError,
    DataStoreError,
    DeliveryError,
    NotFoundError,
    ReminderError,
    TransientDeliveryError,
    ValidationError,
)
from clientpulse.reminders.gateway import (
    ConsoleGateway,
    DeliveryGateway,
    SendResult,
    SmtpGateway,
    WebhookGateway,
    build_gateway,
)
from clientpulse.reminders.poller import PollResult, ReconciliationPoller
from clientpulse.reminders.recurrence import next_occurrence
from clientpulse.reminders.scheduler import TimerScheduler
from clientpulse.reminders.schema import Client, LogEntry, Reminder
from clientpulse.reminders.service import ReminderService
from clientpulse.reminders.storage import (
    JsonReminderStore,
    MemoryReminderStore,
    ReminderStore,
    build_store,
)

__all__ = [
    "Clock",
    "ManualClock",
    "DeliveryCoordinator",
    "DeliveryOutcome",
    "ConflictError",
    "DataStoreError",
    "DeliveryError",
    "NotFoundError",
    "ReminderError",
    "TransientDeliveryError",
    "ValidationError",
    "ConsoleGateway",
    "DeliveryGateway",
    "SendResult",
    "SmtpGateway",
    "WebhookGateway",
    "build_gateway",
    "PollResult",
    "ReconciliationPoller",
    "next_occurrence",
    "TimerScheduler",
    "Client",
    "LogEntry",
    "Reminder",
    "ReminderService",
    "JsonReminderStore",
    "MemoryReminderStore",
    "ReminderStore",
    "build_store",
]
