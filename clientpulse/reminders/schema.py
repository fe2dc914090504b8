"""Pydantic schemas for reminders, clients and audit log entries."""

from datetime import datetime
from typing import Literal, Optional, get_args

from pydantic import BaseModel, Field, field_validator

from clientpulse.reminders.utils import parse_timestamp

RepeatPolicy = Literal["none", "daily", "weekly"]
ReminderStatus = Literal["scheduled", "sent", "failed", "cancelled"]
LogType = Literal["Reminder", "Send", "Error"]

REPEAT_POLICIES: tuple[str, ...] = get_args(RepeatPolicy)


# ============================================================================
# Client
# ============================================================================


class Client(BaseModel):
    """A client of the business. Read-only from the engine's perspective."""

    id: str
    name: str
    email: str
    phone: str = ""
    notes: str = ""
    created_at: datetime

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, v):
        return parse_timestamp(v)


# ============================================================================
# Reminder
# ============================================================================


class Reminder(BaseModel):
    """A scheduled notification tied to a client."""

    id: str
    client_id: str
    fire_at: datetime
    message: str
    repeat: RepeatPolicy = "none"
    status: ReminderStatus = "scheduled"
    created_at: datetime
    last_sent_at: Optional[datetime] = None

    @field_validator("fire_at", "created_at", mode="before")
    @classmethod
    def _parse_required_ts(cls, v):
        return parse_timestamp(v)

    @field_validator("last_sent_at", mode="before")
    @classmethod
    def _parse_optional_ts(cls, v):
        if v is None or v == "":
            return None
        return parse_timestamp(v)

    @property
    def is_recurring(self) -> bool:
        return self.repeat != "none"


# ============================================================================
# Audit log
# ============================================================================


class LogEntry(BaseModel):
    """Append-only audit record."""

    id: str
    type: LogType
    detail: str
    timestamp: datetime

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, v):
        return parse_timestamp(v)


# ============================================================================
# Store file
# ============================================================================


class StoreFile(BaseModel):
    """store.json schema."""

    version: str = "1.0"
    clients: list[Client] = Field(default_factory=list)
    reminders: list[Reminder] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)


def normalize_repeat(value: object) -> RepeatPolicy | None:
    """Return value as a RepeatPolicy, or None when it is not a recognized one."""
    if isinstance(value, str):
        candidate = value.strip().lower()
        if candidate in REPEAT_POLICIES:
            return candidate  # type: ignore[return-value]
    return None
