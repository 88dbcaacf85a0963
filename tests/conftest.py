"""Shared fixtures for the meeting core test suite.

Wires the in-memory doubles from tests/doubles.py into a MeetingService
with a frozen clock at NOW.
"""

from __future__ import annotations

import pytest

from src.meetbook.meetings.lifecycle import MeetingService
from src.meetbook.meetings.notifications import MeetingNotifier
from src.meetbook.meetings.schemas import Conference, Profile
from tests.doubles import (
    CONFERENCE_ID,
    OTHER_CONFERENCE_ID,
    FakeChatProvisioner,
    FrozenClock,
    InMemoryDirectory,
    InMemoryMeetingRepository,
    RecordingChannel,
    StaticQuotaChecker,
)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def repository() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest.fixture
def directory() -> InMemoryDirectory:
    d = InMemoryDirectory()
    d.add_conference(Conference(id=CONFERENCE_ID, code="DEVCONF", title="DevConf 2026"))
    d.add_conference(Conference(id=OTHER_CONFERENCE_ID, code="OTHER", title="Other Conf"))
    d.add_profile(
        Profile(
            id="p-alice",
            conference_id=CONFERENCE_ID,
            external_id="tg-alice",
            first_name="Alice",
            last_name="Liddell",
        )
    )
    d.add_profile(
        Profile(
            id="p-bob",
            conference_id=CONFERENCE_ID,
            external_id="tg-bob",
            first_name="Bob",
        )
    )
    d.add_profile(
        Profile(id="p-carol", conference_id=CONFERENCE_ID, external_id="tg-carol")
    )
    d.add_profile(
        Profile(
            id="p-dave",
            conference_id=CONFERENCE_ID,
            external_id="tg-dave",
            first_name="Dave",
            is_active=False,
        )
    )
    d.add_profile(
        Profile(
            id="p-erin",
            conference_id=OTHER_CONFERENCE_ID,
            external_id="tg-erin",
            first_name="Erin",
        )
    )
    return d


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def quotas() -> StaticQuotaChecker:
    return StaticQuotaChecker()


@pytest.fixture
def chat() -> FakeChatProvisioner:
    return FakeChatProvisioner()


@pytest.fixture
def notifier(channel, directory) -> MeetingNotifier:
    return MeetingNotifier(channel, directory, max_attempts=2, retry_wait_seconds=0)


@pytest.fixture
def service(repository, directory, quotas, notifier, clock) -> MeetingService:
    return MeetingService(repository, directory, quotas, notifier=notifier, clock=clock)
