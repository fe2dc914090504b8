"""Recurrence resolver: next fire time for daily/weekly reminders."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from clientpulse.reminders.utils import ensure_utc

_STEP_DAYS = {
    "daily": 1,
    "weekly": 7,
}


def next_occurrence(fire_at: datetime, policy: str, tz: str = "UTC") -> datetime:
    """Return the next fire time after fire_at for a recurring policy.

    Days are added on the wall clock of ``tz`` so the time-of-day is
    preserved, then the result is converted back to UTC. With the default
    UTC zone the step is exactly 24h (daily) or 168h (weekly). With a local
    zone the step can be 23h or 25h across a DST change.

    Raises ValueError for policy "none" or an unknown policy.
    """
    days = _STEP_DAYS.get(policy)
    if days is None:
        raise ValueError(f"No next occurrence for repeat policy {policy!r}")

    fire_at = ensure_utc(fire_at)
    if tz.upper() == "UTC":
        return fire_at + timedelta(days=days)

    zone = ZoneInfo(tz)
    local = fire_at.astimezone(zone).replace(tzinfo=None)
    # Re-attach the zone to the shifted wall time so the offset is recomputed.
    shifted = (local + timedelta(days=days)).replace(tzinfo=zone)
    return shifted.astimezone(timezone.utc)
