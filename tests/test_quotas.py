"""Tests for RepositoryQuotaChecker and its use by MeetingService."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.meetbook.meetings.errors import QuotaExceededError
from src.meetbook.meetings.lifecycle import MeetingService
from src.meetbook.meetings.quotas import UNLIMITED, RepositoryQuotaChecker
from src.meetbook.meetings.schemas import MeetingStatus
from tests.doubles import CONFERENCE_ID, NOW, OTHER_CONFERENCE_ID, make_meeting


class TestRepositoryQuotaChecker:
    @pytest.mark.asyncio
    async def test_unlimited_skips_counting(self):
        repository = AsyncMock()
        checker = RepositoryQuotaChecker(repository)

        conference = await checker.can_create_meeting(CONFERENCE_ID)
        user = await checker.can_user_create_meeting(CONFERENCE_ID, "p-alice")

        assert conference.allowed and user.allowed
        assert conference.limit == UNLIMITED
        repository.count_meetings.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_conference_limit_counts_every_status(self, repository):
        repository.add(make_meeting(status=MeetingStatus.CANCELLED))
        repository.add(make_meeting(status=MeetingStatus.REJECTED))
        repository.add(make_meeting(conference_id=OTHER_CONFERENCE_ID))
        checker = RepositoryQuotaChecker(repository, max_per_conference=2)

        decision = await checker.can_create_meeting(CONFERENCE_ID)

        assert not decision.allowed
        assert (decision.limit, decision.current) == (2, 2)
        assert decision.reason == "LIMIT_EXCEEDED"

    @pytest.mark.asyncio
    async def test_under_conference_limit(self, repository):
        repository.add(make_meeting())
        checker = RepositoryQuotaChecker(repository, max_per_conference=2)

        decision = await checker.can_create_meeting(CONFERENCE_ID)

        assert decision.allowed
        assert decision.current == 1
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_user_limit_counts_only_that_participant(self, repository):
        repository.add(make_meeting(requester_id="p-alice", recipient_id="p-bob"))
        repository.add(make_meeting(requester_id="p-bob", recipient_id="p-carol"))
        checker = RepositoryQuotaChecker(repository, max_per_user=1)

        alice = await checker.can_user_create_meeting(CONFERENCE_ID, "p-alice")
        carol = await checker.can_user_create_meeting(CONFERENCE_ID, "p-carol")
        dave = await checker.can_user_create_meeting(CONFERENCE_ID, "p-dave")

        assert not alice.allowed
        assert alice.reason == "USER_MEETING_LIMIT_EXCEEDED"
        assert not carol.allowed
        assert dave.allowed


class TestServiceQuota:
    @pytest.mark.asyncio
    async def test_second_request_exceeds_user_quota(
        self, repository, directory, notifier, clock
    ):
        service = MeetingService(
            repository,
            directory,
            RepositoryQuotaChecker(repository, max_per_user=1),
            notifier=notifier,
            clock=clock,
        )
        await service.request(CONFERENCE_ID, "tg-alice", "p-bob", NOW + timedelta(hours=1))

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.request(
                CONFERENCE_ID, "tg-alice", "p-carol", NOW + timedelta(hours=3)
            )

        assert exc_info.value.details == {"scope": "user", "limit": 1, "current": 1}
