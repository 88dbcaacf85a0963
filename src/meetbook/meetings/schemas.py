"""Pydantic v2 schemas for the meeting scheduling domain.

Defines the data contracts for meetings, participants' directory records,
quota decisions, chat sessions, and notification actions. Every other
module in src.meetbook.meetings imports its types from here.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Lifecycle status of a 1:1 meeting."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES: frozenset[MeetingStatus] = frozenset(
    {MeetingStatus.PENDING, MeetingStatus.ACCEPTED}
)
TERMINAL_STATUSES: frozenset[MeetingStatus] = frozenset(
    {MeetingStatus.REJECTED, MeetingStatus.CANCELLED, MeetingStatus.COMPLETED}
)


class ActionKind(str, Enum):
    """How a notification action is rendered by the channel."""

    CALLBACK = "callback"
    URL = "url"


# ── Directory Read Models ────────────────────────────────────────────────────


class Conference(BaseModel):
    """Conference as exposed by the profile directory."""

    id: str
    code: str
    title: str = ""


class Profile(BaseModel):
    """A participant's profile within one conference."""

    id: str
    conference_id: str
    external_id: str = Field(description="Caller identity, e.g. a chat user id")
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or "Participant"


# ── Meeting Models ───────────────────────────────────────────────────────────


class Meeting(BaseModel):
    """A proposed or confirmed 1:1 time-boxed meeting."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    conference_id: str
    requester_id: str
    recipient_id: str
    proposed_time: datetime
    duration_minutes: int
    message: str = ""
    meeting_location: str | None = None
    status: MeetingStatus = MeetingStatus.PENDING
    start_notified_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def end_time(self) -> datetime:
        return self.proposed_time + timedelta(minutes=self.duration_minutes)

    @property
    def participant_ids(self) -> tuple[str, str]:
        return (self.requester_id, self.recipient_id)

    def involves(self, profile_id: str) -> bool:
        return profile_id in (self.requester_id, self.recipient_id)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval overlap with [start, end)."""
        return self.proposed_time < end and start < self.end_time


class MeetingCreate(BaseModel):
    """Validated data for persisting a new pending meeting."""

    conference_id: str
    requester_id: str
    recipient_id: str
    proposed_time: datetime
    duration_minutes: int = Field(default=30, gt=0)
    message: str = ""
    meeting_location: str | None = Field(default=None, max_length=200)


# ── Collaborator Results ─────────────────────────────────────────────────────


class QuotaDecision(BaseModel):
    """Allow/deny decision from a quota check, with current usage."""

    allowed: bool
    limit: int = -1
    current: int = 0
    reason: str | None = None


class NotificationAction(BaseModel):
    """A button attached to an outbound notification."""

    label: str
    kind: ActionKind = ActionKind.CALLBACK
    value: str


class ChatSession(BaseModel):
    """Ephemeral chat session handle for a meeting that is starting."""

    meeting_id: uuid.UUID
    token: str
    expires_at: datetime
    base_url: str

    def url_for(self, external_id: str) -> str:
        """Per-participant chat URL."""
        return (
            f"{self.base_url.rstrip('/')}/meeting-chat/{self.meeting_id}"
            f"?token={self.token}&participant={external_id}"
        )
