"""Typed error taxonomy for meeting lifecycle operations.

Every failure surfaced by MeetingService is a MeetingError subclass with a
stable ``code`` that transport layers can map to user-facing messages.
"""

from __future__ import annotations

from typing import Any


class MeetingError(Exception):
    """Base class for all meeting domain errors."""

    code = "MEETING_ERROR"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.details = details
        super().__init__(message or self.code)


class ConferenceNotFoundError(MeetingError):
    code = "CONFERENCE_NOT_FOUND"


class NotInConferenceError(MeetingError):
    code = "NOT_IN_CONFERENCE"


class RecipientNotFoundError(MeetingError):
    code = "RECIPIENT_NOT_FOUND"


class CannotMeetSelfError(MeetingError):
    code = "CANNOT_MEET_YOURSELF"


class InvalidTimeInPastError(MeetingError):
    code = "INVALID_TIME_PAST"


class InvalidMeetingDetailsError(MeetingError):
    code = "INVALID_MEETING_DETAILS"


class TimeConflictError(MeetingError):
    code = "TIME_CONFLICT"


class QuotaExceededError(MeetingError):
    """Raised when a conference-level or per-user meeting quota denies creation."""

    code = "MEETING_LIMIT_EXCEEDED"

    def __init__(self, scope: str, limit: int, current: int) -> None:
        super().__init__(
            f"{scope} meeting limit exceeded ({current}/{limit})",
            scope=scope,
            limit=limit,
            current=current,
        )


class MeetingNotFoundError(MeetingError):
    code = "MEETING_NOT_FOUND"


class NotRecipientError(MeetingError):
    code = "NOT_RECIPIENT"


class NotParticipantError(MeetingError):
    code = "NOT_PARTICIPANT"


class AlreadyProcessedError(MeetingError):
    code = "MEETING_ALREADY_PROCESSED"


class AlreadyFinalizedError(MeetingError):
    code = "MEETING_ALREADY_FINALIZED"
