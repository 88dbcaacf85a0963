"""Conflict detection -- decides whether a booking would double-book a participant.

Two policies are supported:

- PADDED (default): a candidate starting at ``start`` with duration ``d``
  conflicts with any active booking of either participant whose start lies in
  ``[start - d, start + d]``, and additionally with any booking that truly
  overlaps ``[start, start + d)``. The padded window deliberately flags
  back-to-back bookings as conflicts; the exact-overlap term keeps longer
  existing bookings that began before the padded window from slipping through.
- STRICT: plain half-open interval overlap, allowing back-to-back packing.

Everything here is pure: callers (the repository) load candidate bookings
using ``BookingGuard.scan_range()`` and this module filters them.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from src.meetbook.meetings.schemas import ACTIVE_STATUSES, Meeting

# Longest duration a stored booking may have; bounds how far back the scan reaches.
DEFAULT_MAX_DURATION_MINUTES = 120


class ConflictPolicy(str, Enum):
    """How close two bookings may be before they are considered in conflict."""

    PADDED = "padded"
    STRICT = "strict"


@dataclass(frozen=True)
class BookingGuard:
    """A candidate booking window checked against the participants' active bookings.

    Args:
        conference_id: Conference the booking belongs to.
        participant_ids: One or two distinct profile ids whose bookings are checked.
        start: Candidate start (timezone-aware).
        duration_minutes: Candidate duration; also the padding under PADDED.
        exclude_meeting_id: Meeting to ignore (the meeting being re-validated).
        policy: ConflictPolicy to apply.
        max_duration_minutes: Upper bound on stored booking durations.
    """

    conference_id: str
    participant_ids: frozenset[str]
    start: datetime
    duration_minutes: int
    exclude_meeting_id: uuid.UUID | None = None
    policy: ConflictPolicy = ConflictPolicy.PADDED
    max_duration_minutes: int = field(default=DEFAULT_MAX_DURATION_MINUTES)

    def __post_init__(self) -> None:
        if not 1 <= len(self.participant_ids) <= 2:
            raise ValueError("participant_ids must contain one or two profile ids")
        if self.duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def padded_window(self) -> tuple[datetime, datetime]:
        """Inclusive ``[start - duration, start + duration]`` window."""
        padding = timedelta(minutes=self.duration_minutes)
        return self.start - padding, self.start + padding

    def scan_range(self) -> tuple[datetime, datetime]:
        """Inclusive range of ``proposed_time`` values that could possibly conflict."""
        reach_back = self.start - timedelta(minutes=self.max_duration_minutes)
        if self.policy == ConflictPolicy.STRICT:
            return reach_back, self.end
        padded_from, padded_to = self.padded_window()
        return min(reach_back, padded_from), padded_to

    def matches(self, meeting: Meeting) -> bool:
        """Whether ``meeting`` is an active booking that conflicts with this window."""
        if self.exclude_meeting_id is not None and meeting.id == self.exclude_meeting_id:
            return False
        if meeting.conference_id != self.conference_id:
            return False
        if meeting.status not in ACTIVE_STATUSES:
            return False
        if not any(meeting.involves(pid) for pid in self.participant_ids):
            return False

        overlaps = meeting.overlaps(self.start, self.end)
        if self.policy == ConflictPolicy.STRICT:
            return overlaps

        padded_from, padded_to = self.padded_window()
        return overlaps or padded_from <= meeting.proposed_time <= padded_to

    def conflicts(self, bookings: Iterable[Meeting]) -> list[Meeting]:
        return [m for m in bookings if self.matches(m)]


def has_conflict(
    bookings: Iterable[Meeting],
    conference_id: str,
    participant_ids: Iterable[str],
    start: datetime,
    duration_minutes: int,
    exclude_meeting_id: uuid.UUID | None = None,
    policy: ConflictPolicy = ConflictPolicy.PADDED,
) -> bool:
    """Return True if the window overlaps any active booking of the participants."""
    guard = BookingGuard(
        conference_id=conference_id,
        participant_ids=frozenset(participant_ids),
        start=start,
        duration_minutes=duration_minutes,
        exclude_meeting_id=exclude_meeting_id,
        policy=policy,
    )
    return bool(guard.conflicts(bookings))
