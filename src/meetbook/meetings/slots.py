"""Free-slot generator -- suggests start times within a fixed daily window.

Candidate slots run from ``day_start_hour`` to ``day_end_hour`` (exclusive) of
a local day at a fixed granularity. A slot is free when its
``[start, start + granularity)`` interval does not overlap any of the
participant's active bookings (exact half-open overlap, not the padded
conflict policy). Slots are suggestions only; nothing is reserved.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from src.meetbook.meetings.schemas import ACTIVE_STATUSES, Meeting


@dataclass(frozen=True)
class SlotPolicy:
    """Fixed daily availability window and granularity."""

    day_start_hour: int = 9
    day_end_hour: int = 18
    granularity_minutes: int = 30

    def __post_init__(self) -> None:
        if not 0 <= self.day_start_hour < self.day_end_hour <= 24:
            raise ValueError("day window must satisfy 0 <= start < end <= 24")
        if self.granularity_minutes <= 0:
            raise ValueError("granularity_minutes must be positive")


def day_bounds(day: date, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    """Return the ``[00:00, next 00:00)`` bounds of a local day as UTC datetimes."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def candidate_slots(
    day: date, policy: SlotPolicy, tz: tzinfo = timezone.utc
) -> Iterator[datetime]:
    """Yield every candidate start of the day's window, in order, as UTC datetimes."""
    step = timedelta(minutes=policy.granularity_minutes)
    current = datetime.combine(day, time(hour=policy.day_start_hour), tzinfo=tz)
    if policy.day_end_hour == 24:
        window_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    else:
        window_end = datetime.combine(day, time(hour=policy.day_end_hour), tzinfo=tz)

    while current < window_end:
        yield current.astimezone(timezone.utc)
        current = current + step


def iter_free_slots(
    day: date,
    bookings: Iterable[Meeting],
    now: datetime,
    policy: SlotPolicy | None = None,
    tz: tzinfo = timezone.utc,
) -> Iterator[datetime]:
    """Lazily yield free slot starts on ``day`` strictly after ``now``.

    Args:
        day: Local calendar day.
        bookings: The participant's meetings; only active ones are considered.
        now: Current instant (timezone-aware).
        policy: SlotPolicy; defaults to 09:00-18:00 at 30 minutes.
        tz: Timezone that defines the local day.
    """
    policy = policy or SlotPolicy()
    active = [m for m in bookings if m.status in ACTIVE_STATUSES]
    length = timedelta(minutes=policy.granularity_minutes)

    for slot_start in candidate_slots(day, policy, tz):
        if slot_start <= now:
            continue
        slot_end = slot_start + length
        if any(m.overlaps(slot_start, slot_end) for m in active):
            continue
        yield slot_start
