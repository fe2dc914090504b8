"""Tests for ReminderService: creation rules, run-now, cancel, end-to-end firing."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from clientpulse.config.schema import Config
from clientpulse.reminders.clock import ManualClock
from clientpulse.reminders.errors import (
    ConflictError,
    DeliveryError,
    NotFoundError,
    ValidationError,
)
from clientpulse.reminders.gateway import ConsoleGateway, DeliveryGateway, SendResult
from clientpulse.reminders.service import ReminderService
from clientpulse.reminders.storage import MemoryReminderStore
from clientpulse.reminders.utils import isoformat


# ============================================================================
# Fixtures
# ============================================================================


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return MemoryReminderStore()


@pytest.fixture
def gateway():
    return ConsoleGateway()


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def service(store, gateway, config, clock):
    return ReminderService(store, gateway, config=config, clock=clock)


@pytest.fixture
def client(store):
    return store.add_client("Ada Lovelace", "ada@example.com")


def _at(clock, seconds):
    return isoformat(clock.now() + timedelta(seconds=seconds))


# ============================================================================
# create_reminder
# ============================================================================


class TestCreateReminder:
    @pytest.mark.asyncio
    async def test_valid_reminder_persisted_logged_and_armed(self, service, store, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, 3600), "Send invoice")

        assert reminder.status == "scheduled"
        assert reminder.repeat == "none"
        assert store.get_reminder(reminder.id) is not None
        assert service.scheduler.is_armed(reminder.id)
        logs = store.list_logs()
        assert logs[0].type == "Reminder"
        assert logs[0].detail == (
            f"Scheduled reminder {reminder.id} for client ada@example.com "
            f"at {isoformat(reminder.fire_at)}"
        )
        await service.stop()

    @pytest.mark.asyncio
    async def test_accepts_datetime(self, service, client, clock):
        reminder = await service.create_reminder(
            client.id, clock.now() + timedelta(minutes=5), "hi"
        )
        assert reminder.fire_at == clock.now() + timedelta(minutes=5)
        await service.stop()

    @pytest.mark.asyncio
    async def test_two_minutes_past_rejected(self, service, store, client, clock):
        with pytest.raises(ValidationError, match="future"):
            await service.create_reminder(client.id, _at(clock, -120), "late")
        assert store.list_reminders() == []

    @pytest.mark.asyncio
    async def test_thirty_seconds_past_accepted(self, service, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, -30), "just now")
        assert reminder.status == "scheduled"
        await service.stop()

    @pytest.mark.asyncio
    async def test_unknown_client(self, service, store, clock):
        with pytest.raises(NotFoundError):
            await service.create_reminder("c_ghost", _at(clock, 60), "hi")
        assert store.list_reminders() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "client_id,fire_at,message",
        [("", "2026-01-02T09:00:00Z", "hi"), ("c_x", "", "hi"), ("c_x", "2026-01-02T09:00:00Z", "  ")],
    )
    async def test_missing_fields(self, service, client_id, fire_at, message):
        with pytest.raises(ValidationError, match="required"):
            await service.create_reminder(client_id, fire_at, message)

    @pytest.mark.asyncio
    async def test_invalid_date(self, service, store, client):
        with pytest.raises(ValidationError, match="invalid date"):
            await service.create_reminder(client.id, "next tuesday", "hi")
        assert store.list_reminders() == []

    @pytest.mark.asyncio
    async def test_unknown_repeat_normalized(self, service, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, 60), "hi", "monthly")
        assert reminder.repeat == "none"
        await service.stop()

    @pytest.mark.asyncio
    async def test_repeat_case_insensitive(self, service, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, 60), "hi", " Weekly ")
        assert reminder.repeat == "weekly"
        await service.stop()

    @pytest.mark.asyncio
    async def test_unknown_repeat_rejected_when_strict(self, store, gateway, clock, client):
        config = Config.model_validate({"reminders": {"strict_repeat": True}})
        service = ReminderService(store, gateway, config=config, clock=clock)

        with pytest.raises(ValidationError, match="repeat"):
            await service.create_reminder(client.id, _at(clock, 60), "hi", "monthly")

    @pytest.mark.asyncio
    async def test_max_ahead_ceiling(self, store, gateway, clock, client):
        config = Config.model_validate({"reminders": {"max_ahead_days": 30}})
        service = ReminderService(store, gateway, config=config, clock=clock)

        with pytest.raises(ValidationError, match="30 days"):
            await service.create_reminder(client.id, _at(clock, 31 * 86400), "hi")
        reminder = await service.create_reminder(client.id, _at(clock, 29 * 86400), "hi")
        assert reminder.status == "scheduled"

    @pytest.mark.asyncio
    async def test_far_future_persisted_but_not_armed(self, service, store, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, 3 * 86400), "later")

        assert store.get_reminder(reminder.id).status == "scheduled"
        assert not service.scheduler.is_armed(reminder.id)


# ============================================================================
# End-to-end firing
# ============================================================================


class TestFiring:
    @pytest.mark.asyncio
    async def test_fires_at_time_and_marks_sent(self, service, store, gateway, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, 30), "Call back")
        await _settle()

        clock.advance(30)
        await _wait_until(lambda: store.get_reminder(reminder.id).status == "sent")

        assert len(gateway.sent) == 1
        assert store.get_reminder(reminder.id).last_sent_at == clock.now()
        await service.stop()

    @pytest.mark.asyncio
    async def test_daily_fires_again_next_day(self, service, store, gateway, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, 10), "Stand-up", "daily")
        await _settle()

        clock.advance(10)
        await _wait_until(lambda: len(gateway.sent) == 1)
        await _wait_until(lambda: service.scheduler.is_armed(reminder.id))

        clock.advance(86400)
        await _wait_until(lambda: len(gateway.sent) == 2)

        stored = store.get_reminder(reminder.id)
        assert stored.fire_at == reminder.fire_at + timedelta(days=2)
        assert stored.status == "scheduled"
        await service.stop()

    @pytest.mark.asyncio
    async def test_start_delivers_reminder_missed_while_down(self, service, store, gateway, client, clock):
        reminder = store.create_reminder(
            client.id, clock.now() - timedelta(hours=2), "Overdue follow-up"
        )

        await service.start()
        await _wait_until(lambda: store.get_reminder(reminder.id).status == "sent")

        assert len(gateway.sent) == 1
        await service.stop()

    @pytest.mark.asyncio
    async def test_daily_overdue_for_days_sends_once(self, service, store, gateway, client, clock):
        original = clock.now() - timedelta(days=10, minutes=5)
        reminder = store.create_reminder(client.id, original, "Weekly report", "daily")

        await service.start()
        await _wait_until(lambda: store.get_reminder(reminder.id).last_sent_at is not None)
        await _wait_until(lambda: service.scheduler.is_armed(reminder.id))
        await _settle()

        assert len(gateway.sent) == 1
        stored = store.get_reminder(reminder.id)
        assert stored.status == "scheduled"
        assert stored.fire_at == original + timedelta(days=11)
        assert stored.fire_at > clock.now()
        rescheduled = [e.detail for e in store.list_logs() if e.type == "Reminder"]
        assert any("skipped 10 missed occurrence" in d for d in rescheduled)
        await service.stop()


# ============================================================================
# run_now
# ============================================================================


class TestRunNow:
    @pytest.mark.asyncio
    async def test_success(self, service, store, gateway, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, 3600), "hi")

        outcome = await service.run_now(reminder.id)

        assert outcome.ok is True
        assert store.get_reminder(reminder.id).status == "sent"
        # The first timer still wakes at fire_at but finds nothing to do.
        clock.advance(3600)
        scheduler = service.scheduler
        await _wait_until(lambda: scheduler.in_flight == 0 and not scheduler.is_armed(reminder.id))
        assert len(gateway.sent) == 1
        await service.stop()

    @pytest.mark.asyncio
    async def test_gateway_failure_raises_delivery_error(self, store, client, clock):
        gateway = Mock(spec=DeliveryGateway)
        gateway.name = "mock"
        gateway.send = AsyncMock(return_value=SendResult(False, "relay down"))
        gateway.close = AsyncMock()
        service = ReminderService(store, gateway, clock=clock)
        reminder = store.create_reminder(client.id, clock.now() + timedelta(hours=1), "hi")

        with pytest.raises(DeliveryError, match="relay down"):
            await service.run_now(reminder.id)
        assert store.get_reminder(reminder.id).status == "failed"

    @pytest.mark.asyncio
    async def test_unknown_id(self, service):
        with pytest.raises(NotFoundError):
            await service.run_now("r_missing")

    @pytest.mark.asyncio
    async def test_missing_client_fails_with_one_error_entry(self, service, store, gateway, clock):
        reminder = store.create_reminder(
            "c_deleted", clock.now() + timedelta(hours=1), "Orphaned follow-up"
        )

        with pytest.raises(DeliveryError, match="client missing"):
            await service.run_now(reminder.id)

        assert store.get_reminder(reminder.id).status == "failed"
        errors = [e for e in store.list_logs() if e.type == "Error"]
        assert len(errors) == 1
        assert "c_deleted" in errors[0].detail
        assert gateway.sent == []


# ============================================================================
# cancel_reminder
# ============================================================================


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_disarms_and_never_sends(self, service, store, gateway, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, 30), "hi")
        await _settle()

        cancelled = await service.cancel_reminder(reminder.id)
        clock.advance(60)
        await _settle()

        assert cancelled.status == "cancelled"
        assert not service.scheduler.is_armed(reminder.id)
        assert gateway.sent == []
        assert (await service.poller.poll_once()).registered == []

    @pytest.mark.asyncio
    async def test_cancel_twice_conflicts(self, service, client, clock):
        reminder = await service.create_reminder(client.id, _at(clock, 30), "hi")
        await service.cancel_reminder(reminder.id)

        with pytest.raises(ConflictError, match="cancelled"):
            await service.cancel_reminder(reminder.id)

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, service):
        with pytest.raises(NotFoundError):
            await service.cancel_reminder("r_missing")


# ============================================================================
# Clients & logs
# ============================================================================


class TestClientsAndLogs:
    @pytest.mark.asyncio
    async def test_add_and_list_clients(self, service):
        client = await service.add_client("Grace", "grace@example.com")
        assert [c.id for c in await service.list_clients()] == [client.id]

    @pytest.mark.asyncio
    async def test_add_client_requires_name_and_email(self, service):
        with pytest.raises(ValidationError):
            await service.add_client("Grace", "")

    @pytest.mark.asyncio
    async def test_get_reminder_unknown(self, service):
        with pytest.raises(NotFoundError):
            await service.get_reminder("r_missing")

    @pytest.mark.asyncio
    async def test_list_logs_limit(self, service, client, clock):
        for i in range(3):
            await service.create_reminder(client.id, _at(clock, 3 * 86400 + i), f"m{i}")

        assert len(await service.list_logs(limit=2)) == 2
