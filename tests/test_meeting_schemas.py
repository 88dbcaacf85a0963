"""Tests for meeting schemas and the error taxonomy."""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from pydantic import ValidationError

from src.meetbook.meetings.errors import (
    CannotMeetSelfError,
    MeetingError,
    QuotaExceededError,
    TimeConflictError,
)
from src.meetbook.meetings.schemas import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ChatSession,
    MeetingCreate,
    MeetingStatus,
    Profile,
)
from tests.doubles import NOW, make_meeting


class TestMeetingStatus:
    def test_active_and_terminal_partition_all_statuses(self):
        assert ACTIVE_STATUSES | TERMINAL_STATUSES == set(MeetingStatus)
        assert not ACTIVE_STATUSES & TERMINAL_STATUSES

    def test_values(self):
        assert MeetingStatus("accepted") is MeetingStatus.ACCEPTED


class TestMeeting:
    def test_end_time(self):
        meeting = make_meeting(proposed_time=NOW, duration_minutes=45)
        assert meeting.end_time == NOW + timedelta(minutes=45)

    def test_involves(self):
        meeting = make_meeting()
        assert meeting.involves("p-alice")
        assert meeting.involves("p-bob")
        assert not meeting.involves("p-carol")
        assert meeting.participant_ids == ("p-alice", "p-bob")

    def test_overlap_is_half_open(self):
        meeting = make_meeting(proposed_time=NOW, duration_minutes=30)
        end = NOW + timedelta(minutes=30)

        assert meeting.overlaps(NOW, end)
        assert meeting.overlaps(NOW + timedelta(minutes=29), end + timedelta(minutes=29))
        assert not meeting.overlaps(end, end + timedelta(minutes=30))
        assert not meeting.overlaps(NOW - timedelta(minutes=30), NOW)

    def test_defaults(self):
        meeting = make_meeting()
        assert isinstance(meeting.id, uuid.UUID)
        assert meeting.status == MeetingStatus.PENDING
        assert meeting.start_notified_at is None
        assert meeting.message == ""


class TestMeetingCreate:
    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValidationError):
            MeetingCreate(
                conference_id="c",
                requester_id="a",
                recipient_id="b",
                proposed_time=NOW,
                duration_minutes=0,
            )

    def test_rejects_long_location(self):
        with pytest.raises(ValidationError):
            MeetingCreate(
                conference_id="c",
                requester_id="a",
                recipient_id="b",
                proposed_time=NOW,
                meeting_location="x" * 201,
            )


class TestProfile:
    def test_display_name(self):
        profile = Profile(
            id="p", conference_id="c", external_id="e", first_name="Ada", last_name="Lovelace"
        )
        assert profile.display_name == "Ada Lovelace"

    def test_display_name_fallback(self):
        assert Profile(id="p", conference_id="c", external_id="e").display_name == "Participant"


class TestChatSession:
    def test_url_for(self):
        meeting_id = uuid.uuid4()
        session = ChatSession(
            meeting_id=meeting_id,
            token="abc",
            expires_at=NOW,
            base_url="https://chat.example.com/",
        )

        assert session.url_for("tg-alice") == (
            f"https://chat.example.com/meeting-chat/{meeting_id}"
            "?token=abc&participant=tg-alice"
        )


class TestErrors:
    def test_default_message_is_code(self):
        assert str(CannotMeetSelfError()) == "CANNOT_MEET_YOURSELF"

    def test_details_are_kept(self):
        error = TimeConflictError("busy", proposed_time="2026-10-19T11:00:00+00:00")
        assert error.code == "TIME_CONFLICT"
        assert error.details == {"proposed_time": "2026-10-19T11:00:00+00:00"}
        assert isinstance(error, MeetingError)

    def test_quota_error_message(self):
        error = QuotaExceededError("conference", 10, 10)
        assert "conference meeting limit exceeded (10/10)" in str(error)
