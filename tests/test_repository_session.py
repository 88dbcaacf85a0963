"""MeetingRepository against a real AsyncSession.

Runs on in-memory SQLite through aiosqlite. Advisory locks are PostgreSQL
only, so _lock_participants is stubbed out.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.meetbook.core.database import Base
from src.meetbook.meetings.conflicts import BookingGuard
from src.meetbook.meetings.models import MeetingModel
from src.meetbook.meetings.repository import MeetingRepository, TransitionOutcome
from src.meetbook.meetings.schemas import MeetingStatus
from tests.doubles import CONFERENCE_ID, NOW, make_meeting

T = NOW + timedelta(hours=1)


@pytest_asyncio.fixture
async def session_maker() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def repository(session_maker) -> MeetingRepository:
    async def session_factory():
        async with session_maker() as session:
            yield session

    repo = MeetingRepository(session_factory=session_factory)
    repo._lock_participants = AsyncMock()
    return repo


async def _seed(session_maker, status: str) -> uuid.UUID:
    meeting_id = uuid.uuid4()
    async with session_maker() as session:
        session.add(
            MeetingModel(
                id=meeting_id,
                conference_id=CONFERENCE_ID,
                requester_id="p-alice",
                recipient_id="p-bob",
                proposed_time=T,
                duration_minutes=30,
                message="",
                status=status,
                created_at=NOW,
            )
        )
        await session.commit()
    return meeting_id


def _guard(meeting_id: uuid.UUID) -> BookingGuard:
    return BookingGuard(
        conference_id=CONFERENCE_ID,
        participant_ids=frozenset({"p-alice", "p-bob"}),
        start=T,
        duration_minutes=30,
        exclude_meeting_id=meeting_id,
    )


class TestGuardedTransition:
    @pytest.mark.asyncio
    async def test_stale_status_after_rollback(self, repository, session_maker):
        meeting_id = await _seed(session_maker, "cancelled")

        result = await repository.transition_status(
            meeting_id, [MeetingStatus.PENDING], MeetingStatus.ACCEPTED, _guard(meeting_id)
        )

        assert result.outcome == TransitionOutcome.STALE_STATUS
        assert result.meeting.id == meeting_id
        assert result.meeting.status == MeetingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_conflict_after_rollback(self, repository, session_maker):
        meeting_id = await _seed(session_maker, "pending")
        booking = make_meeting(requester_id="p-carol", status=MeetingStatus.ACCEPTED)
        repository._conflicts = AsyncMock(return_value=[booking])

        result = await repository.transition_status(
            meeting_id, [MeetingStatus.PENDING], MeetingStatus.ACCEPTED, _guard(meeting_id)
        )

        assert result.outcome == TransitionOutcome.CONFLICT
        assert result.meeting.status == MeetingStatus.PENDING
        stored = await repository.get_meeting(meeting_id)
        assert stored.status == MeetingStatus.PENDING
