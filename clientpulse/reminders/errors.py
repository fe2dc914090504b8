"""Error taxonomy for the reminder engine."""


class ReminderError(Exception):
    """Base class for reminder engine errors."""


class ValidationError(ReminderError):
    """Bad input at creation time. Nothing was persisted."""


class NotFoundError(ReminderError):
    """Unknown client or reminder id."""

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} not found: {item_id}")


class DeliveryError(ReminderError):
    """The delivery gateway reported a failure (or timed out).

    By the time this is raised the reminder has already been marked failed
    and the failure recorded in the audit log.
    """

    def __init__(self, reminder_id: str, reason: str):
        self.reminder_id = reminder_id
        self.reason = reason
        super().__init__(f"Delivery failed for {reminder_id}: {reason}")


TransientDeliveryError = DeliveryError


class DataStoreError(ReminderError):
    """A reminder store call failed."""


class ConflictError(ReminderError):
    """A conditional update lost the race: the reminder changed underneath us."""
