"""Reminder store abstraction.

Provides a narrow, synchronous interface between the engine and persistence.
- ReminderStore: Abstract base class defining the interface.
- MemoryReminderStore: In-process store (tests, ephemeral runs).
- JsonReminderStore: Single JSON file store (default durable backend).

All methods are **sync**. Engine callers dispatch them with
``asyncio.to_thread()`` so store I/O never blocks the event loop.
"""

from __future__ import annotations

import json
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, NamedTuple
from uuid import uuid4

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from clientpulse.reminders.errors import DataStoreError, NotFoundError
from clientpulse.reminders.schema import Client, LogEntry, Reminder, StoreFile
from clientpulse.reminders.utils import ensure_utc

if TYPE_CHECKING:
    from clientpulse.config.schema import Config

# Fields the engine may change after creation.
MUTABLE_FIELDS = frozenset({"status", "fire_at", "last_sent_at"})


class SaveResult(NamedTuple):
    """Result of a storage save operation.

    NamedTuple so ``ok, msg = store.save(...)`` unpacking works.
    """

    success: bool
    message: str


def _generate_id(prefix: str) -> str:
    """Generate unique ID: {prefix}_xxxxxxxxxxxx."""
    return f"{prefix}_{uuid4().hex[:12]}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_value(field: str, value: Any) -> Any:
    if field in ("fire_at", "last_sent_at") and isinstance(value, datetime):
        return ensure_utc(value)
    return value


# ============================================================================
# Store ABC
# ============================================================================


class ReminderStore(ABC):
    """Abstract reminder store.

    Subclasses keep their own state and implement the primitive hooks
    (_read / _write) under a single lock. The public operations, including
    the compare-and-set update, are implemented once here (Template Method).
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    # --- Primitive hooks ---
    @abstractmethod
    def _read(self) -> StoreFile: ...

    @abstractmethod
    def _write(self, data: StoreFile) -> SaveResult: ...

    def _transaction(self, fn: Callable[[StoreFile], Any], *, write: bool = True) -> Any:
        """Run fn on a fresh snapshot under the store lock, persisting on success."""
        with self._lock:
            data = self._read_or_raise()
            result = fn(data)
            if write:
                ok, msg = self._write(data)
                if not ok:
                    raise DataStoreError(msg)
            return result

    # --- Clients ---
    def add_client(self, name: str, email: str, phone: str = "", notes: str = "") -> Client:
        client = Client(
            id=_generate_id("c"),
            name=name,
            email=email,
            phone=phone,
            notes=notes,
            created_at=_now(),
        )

        def _add(data: StoreFile) -> Client:
            data.clients.append(client)
            return client

        return self._transaction(_add)

    def get_client(self, client_id: str) -> Client | None:
        def _get(data: StoreFile) -> Client | None:
            return next((c for c in data.clients if c.id == client_id), None)

        return self._transaction(_get, write=False)

    def list_clients(self) -> list[Client]:
        """Clients, newest first."""
        return self._transaction(lambda data: list(reversed(data.clients)), write=False)

    # --- Reminders ---
    def create_reminder(
        self, client_id: str, fire_at: datetime, message: str, repeat: str = "none"
    ) -> Reminder:
        """Persist a new reminder: store-assigned id, scheduled, no last_sent_at."""
        reminder = Reminder(
            id=_generate_id("r"),
            client_id=client_id,
            fire_at=fire_at,
            message=message,
            repeat=repeat,
            status="scheduled",
            created_at=_now(),
            last_sent_at=None,
        )

        def _add(data: StoreFile) -> Reminder:
            data.reminders.append(reminder)
            return reminder

        return self._transaction(_add)

    def get_reminder(self, reminder_id: str) -> Reminder | None:
        def _get(data: StoreFile) -> Reminder | None:
            found = next((r for r in data.reminders if r.id == reminder_id), None)
            return found.model_copy() if found else None

        return self._transaction(_get, write=False)

    def list_reminders(self) -> list[Reminder]:
        """All reminders, newest first."""
        return self._transaction(
            lambda data: [r.model_copy() for r in reversed(data.reminders)], write=False
        )

    def list_scheduled(self) -> list[Reminder]:
        """Reminders with status=scheduled, soonest first."""
        pending = [r for r in self.list_reminders() if r.status == "scheduled"]
        return sorted(pending, key=lambda r: r.fire_at)

    def update_reminder(
        self,
        reminder_id: str,
        changes: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> Reminder | None:
        """Apply changes to a reminder, optionally compare-and-set.

        Returns the updated reminder, or None when any ``expected`` field no
        longer holds (nothing is written in that case).
        Raises NotFoundError for an unknown id and ValueError for fields the
        engine is not allowed to change.
        """
        illegal = set(changes) - MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Immutable reminder field(s): {sorted(illegal)}")

        def _update(data: StoreFile) -> Reminder | None:
            index = next(
                (i for i, r in enumerate(data.reminders) if r.id == reminder_id), None
            )
            if index is None:
                raise NotFoundError("reminder", reminder_id)
            current = data.reminders[index]
            for field, value in (expected or {}).items():
                if getattr(current, field) != _normalize_value(field, value):
                    logger.debug(
                        f"[Store] CAS miss on {reminder_id}: {field}="
                        f"{getattr(current, field)!r}, expected {value!r}"
                    )
                    return None
            try:
                updated = Reminder.model_validate({**current.model_dump(), **changes})
            except PydanticValidationError as e:
                raise ValueError(f"Invalid reminder update: {e}") from e
            data.reminders[index] = updated
            return updated.model_copy()

        with self._lock:
            data = self._read_or_raise()
            result = _update(data)
            if result is not None:
                ok, msg = self._write(data)
                if not ok:
                    raise DataStoreError(msg)
            return result

    # --- Audit log ---
    def append_log(self, type: str, detail: str) -> LogEntry:
        entry = LogEntry(id=_generate_id("l"), type=type, detail=detail, timestamp=_now())

        def _append(data: StoreFile) -> LogEntry:
            data.logs.append(entry)
            return entry

        return self._transaction(_append)

    def list_logs(self, limit: int = 200) -> list[LogEntry]:
        """Most recent log entries first."""
        return self._transaction(lambda data: list(reversed(data.logs))[:limit], write=False)

    def export_all(self) -> dict:
        """Dump every collection as JSON-compatible data."""
        return self._transaction(lambda data: data.model_dump(mode="json"), write=False)

    # --- Lifecycle ---
    def close(self) -> None:
        """Release resources. No-op for stateless backends."""

    def _read_or_raise(self) -> StoreFile:
        try:
            return self._read()
        except DataStoreError:
            raise
        except Exception as e:
            raise DataStoreError(f"Store read failed: {e}") from e


# ============================================================================
# In-memory store
# ============================================================================


class MemoryReminderStore(ReminderStore):
    """Keeps everything in process memory. Lost on restart."""

    def __init__(self) -> None:
        super().__init__()
        self._data = StoreFile()

    def _read(self) -> StoreFile:
        return self._data

    def _write(self, data: StoreFile) -> SaveResult:
        self._data = data
        return SaveResult(True, "Saved in memory")


# ============================================================================
# JSON file store
# ============================================================================


class JsonReminderStore(ReminderStore):
    """File-based JSON store: clients, reminders and logs in one document.

    Every operation re-reads the file so edits made by another process
    (e.g. the CLI while `serve` runs) are seen. Writes go to a temp file
    and are renamed into place.
    """

    def __init__(self, path: Path):
        super().__init__()
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> StoreFile:
        if not self._path.exists():
            return StoreFile()
        raw = self._path.read_text(encoding="utf-8")
        if not raw.strip():
            return StoreFile()
        try:
            return StoreFile.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise DataStoreError(f"Corrupt store file {self._path}: {e}") from e

    def _write(self, data: StoreFile) -> SaveResult:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(
                json.dumps(data.model_dump(mode="json"), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            os.replace(tmp, self._path)
            return SaveResult(True, "Saved successfully")
        except OSError as e:
            logger.error(f"[Store] Write failed for {self._path}: {e}")
            return SaveResult(False, f"Error: {e}")


def build_store(config: "Config") -> ReminderStore:
    """Create the store selected in config."""
    if config.storage.backend == "memory":
        return MemoryReminderStore()
    from clientpulse.utils.helpers import get_store_path

    return JsonReminderStore(get_store_path(config.storage.path or None))
