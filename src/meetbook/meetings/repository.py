"""Meeting repository -- async persistence for meetings with atomic guards.

Provides MeetingRepository with the session_factory callable pattern. Handles
serialization between Pydantic schemas and SQLAlchemy models and owns no
business rules beyond the atomicity the lifecycle relies on:

- create_meeting() and guarded transitions take PostgreSQL transaction-scoped
  advisory locks per participant, then scan for conflicts and write in the
  same transaction, so two concurrent bookings cannot both pass the check.
- Status transitions are conditional updates (``WHERE status IN (...)``);
  a zero-row update is reported as STALE_STATUS instead of trusting an
  earlier read.
- claim_start_notification() sets start_notified_at only if it is unset;
  release_start_notification() clears it again if nothing was delivered.
"""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import AsyncGenerator, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import structlog
from sqlalchemy import Select, Update, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetbook.meetings.conflicts import BookingGuard
from src.meetbook.meetings.models import MeetingModel
from src.meetbook.meetings.schemas import (
    ACTIVE_STATUSES,
    Meeting,
    MeetingCreate,
    MeetingStatus,
)

logger = structlog.get_logger(__name__)


# ── Results ─────────────────────────────────────────────────────────────────


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    NOT_FOUND = "not_found"
    STALE_STATUS = "stale_status"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a conditional status transition.

    ``meeting`` is the updated record when APPLIED, and the current record
    (if it exists) otherwise.
    """

    outcome: TransitionOutcome
    meeting: Meeting | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        conference_id=model.conference_id,
        requester_id=model.requester_id,
        recipient_id=model.recipient_id,
        proposed_time=model.proposed_time,
        duration_minutes=model.duration_minutes,
        message=model.message or "",
        meeting_location=model.meeting_location,
        status=MeetingStatus(model.status),
        start_notified_at=model.start_notified_at,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _parse_uuid(value: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def participant_lock_key(conference_id: str, profile_id: str) -> int:
    """Stable signed 64-bit advisory lock key for one participant in a conference."""
    digest = hashlib.blake2b(
        f"{conference_id}:{profile_id}".encode(), digest_size=8
    ).digest()
    return int.from_bytes(digest, "big", signed=True)


# ── Statement Builders ──────────────────────────────────────────────────────


def active_bookings_stmt(
    conference_id: str,
    profile_ids: Iterable[str],
    from_time: datetime,
    to_time: datetime,
) -> Select:
    """Active meetings of any of ``profile_ids`` starting within [from_time, to_time]."""
    ids = sorted(set(profile_ids))
    return (
        select(MeetingModel)
        .where(
            MeetingModel.conference_id == conference_id,
            MeetingModel.status.in_([s.value for s in ACTIVE_STATUSES]),
            or_(
                MeetingModel.requester_id.in_(ids),
                MeetingModel.recipient_id.in_(ids),
            ),
            MeetingModel.proposed_time >= from_time,
            MeetingModel.proposed_time <= to_time,
        )
        .order_by(MeetingModel.proposed_time)
    )


def participant_meetings_stmt(
    conference_id: str, profile_id: str, status: MeetingStatus | None = None
) -> Select:
    """All meetings of a participant in a conference, earliest first."""
    stmt = select(MeetingModel).where(
        MeetingModel.conference_id == conference_id,
        or_(
            MeetingModel.requester_id == profile_id,
            MeetingModel.recipient_id == profile_id,
        ),
    )
    if status is not None:
        stmt = stmt.where(MeetingModel.status == status.value)
    return stmt.order_by(MeetingModel.proposed_time)


def due_for_start_stmt(from_time: datetime, to_time: datetime) -> Select:
    """Accepted meetings starting within [from_time, to_time] not yet announced."""
    return (
        select(MeetingModel)
        .where(
            MeetingModel.status == MeetingStatus.ACCEPTED.value,
            MeetingModel.start_notified_at.is_(None),
            MeetingModel.proposed_time >= from_time,
            MeetingModel.proposed_time <= to_time,
        )
        .order_by(MeetingModel.proposed_time)
    )


def transition_stmt(
    meeting_id: uuid.UUID,
    expected: Iterable[MeetingStatus],
    new_status: MeetingStatus,
    now: datetime,
) -> Update:
    """Conditional status update; matches no row unless the status is still expected."""
    return (
        update(MeetingModel)
        .where(
            MeetingModel.id == meeting_id,
            MeetingModel.status.in_([s.value for s in expected]),
        )
        .values(status=new_status.value, updated_at=now)
        .returning(MeetingModel.id)
        .execution_options(synchronize_session=False)
    )


def claim_start_stmt(meeting_id: uuid.UUID, at: datetime) -> Update:
    """Set start_notified_at only if it is still NULL and the meeting is accepted."""
    return (
        update(MeetingModel)
        .where(
            MeetingModel.id == meeting_id,
            MeetingModel.status == MeetingStatus.ACCEPTED.value,
            MeetingModel.start_notified_at.is_(None),
        )
        .values(start_notified_at=at)
        .returning(MeetingModel.id)
        .execution_options(synchronize_session=False)
    )


def release_start_stmt(meeting_id: uuid.UUID, at: datetime) -> Update:
    """Clear start_notified_at only if it still holds the claim made at ``at``."""
    return (
        update(MeetingModel)
        .where(
            MeetingModel.id == meeting_id,
            MeetingModel.start_notified_at == at,
        )
        .values(start_notified_at=None)
        .returning(MeetingModel.id)
        .execution_options(synchronize_session=False)
    )


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async persistence for meetings.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def _lock_participants(
        self, session: AsyncSession, conference_id: str, profile_ids: Iterable[str]
    ) -> None:
        # Sorted acquisition order prevents lock-order deadlocks.
        keys = sorted({participant_lock_key(conference_id, pid) for pid in profile_ids})
        for key in keys:
            await session.execute(select(func.pg_advisory_xact_lock(key)))

    async def _conflicts(
        self, session: AsyncSession, guard: BookingGuard
    ) -> list[Meeting]:
        scan_from, scan_to = guard.scan_range()
        result = await session.execute(
            active_bookings_stmt(
                guard.conference_id, guard.participant_ids, scan_from, scan_to
            )
        )
        bookings = [_model_to_meeting(m) for m in result.scalars().all()]
        return guard.conflicts(bookings)

    # ── Writes ───────────────────────────────────────────────────────────

    async def create_meeting(
        self, data: MeetingCreate, guard: BookingGuard
    ) -> Meeting | None:
        """Insert a pending meeting unless the guard finds a conflicting booking.

        Args:
            data: Validated meeting data.
            guard: BookingGuard covering both participants.

        Returns:
            The persisted Meeting, or None if a conflict was found.
        """
        async for session in self._session_factory():
            await self._lock_participants(
                session, guard.conference_id, guard.participant_ids
            )
            conflicts = await self._conflicts(session, guard)
            if conflicts:
                await session.rollback()
                logger.info(
                    "meeting_insert_conflict",
                    conference_id=data.conference_id,
                    conflicting_ids=[str(m.id) for m in conflicts],
                )
                return None

            model = MeetingModel(
                conference_id=data.conference_id,
                requester_id=data.requester_id,
                recipient_id=data.recipient_id,
                proposed_time=data.proposed_time,
                duration_minutes=data.duration_minutes,
                message=data.message,
                meeting_location=data.meeting_location,
                status=MeetingStatus.PENDING.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)
        return None

    async def transition_status(
        self,
        meeting_id: str | uuid.UUID,
        expected: Iterable[MeetingStatus],
        new_status: MeetingStatus,
        guard: BookingGuard | None = None,
    ) -> TransitionResult:
        """Move a meeting to ``new_status`` only if its status is in ``expected``.

        When ``guard`` is given, the participants are locked and the conflict
        scan runs in the same transaction as the update.

        Args:
            meeting_id: Meeting UUID (string or UUID).
            expected: Statuses the meeting must currently have.
            new_status: Target status.
            guard: Optional BookingGuard to re-validate before activating.

        Returns:
            TransitionResult describing what happened.
        """
        mid = _parse_uuid(meeting_id)
        if mid is None:
            return TransitionResult(TransitionOutcome.NOT_FOUND)
        expected = tuple(expected)

        async for session in self._session_factory():
            if guard is not None:
                await self._lock_participants(
                    session, guard.conference_id, guard.participant_ids
                )

            current = await session.get(MeetingModel, mid)
            if current is None:
                await session.rollback()
                return TransitionResult(TransitionOutcome.NOT_FOUND)

            if guard is not None:
                # Rollback expires loaded rows; snapshot before releasing locks.
                snapshot = _model_to_meeting(current)
                if snapshot.status not in expected:
                    await session.rollback()
                    return TransitionResult(TransitionOutcome.STALE_STATUS, snapshot)
                if await self._conflicts(session, guard):
                    await session.rollback()
                    return TransitionResult(TransitionOutcome.CONFLICT, snapshot)

            result = await session.execute(
                transition_stmt(mid, expected, new_status, datetime.now(timezone.utc))
            )
            updated_id = result.scalar_one_or_none()
            if updated_id is None:
                await session.rollback()
            else:
                await session.commit()
            await session.refresh(current)

            outcome = (
                TransitionOutcome.STALE_STATUS
                if updated_id is None
                else TransitionOutcome.APPLIED
            )
            return TransitionResult(outcome, _model_to_meeting(current))
        return TransitionResult(TransitionOutcome.NOT_FOUND)

    async def claim_start_notification(
        self, meeting_id: str | uuid.UUID, at: datetime
    ) -> bool:
        """Atomically mark a meeting's start as announced.

        Returns:
            True if this call set the marker, False if it was already set
            (or the meeting is no longer accepted).
        """
        mid = _parse_uuid(meeting_id)
        if mid is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(claim_start_stmt(mid, at))
            claimed = result.scalar_one_or_none() is not None
            await session.commit()
            return claimed
        return False

    async def release_start_notification(
        self, meeting_id: str | uuid.UUID, at: datetime
    ) -> bool:
        """Undo a claim made at ``at`` so a later tick can announce the start again."""
        mid = _parse_uuid(meeting_id)
        if mid is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(release_start_stmt(mid, at))
            released = result.scalar_one_or_none() is not None
            await session.commit()
            return released
        return False

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_meeting(self, meeting_id: str | uuid.UUID) -> Meeting | None:
        """Get a meeting by ID, or None if missing or malformed."""
        mid = _parse_uuid(meeting_id)
        if mid is None:
            return None
        async for session in self._session_factory():
            model = await session.get(MeetingModel, mid)
            if model is None:
                return None
            return _model_to_meeting(model)
        return None

    async def list_meetings(
        self,
        conference_id: str,
        profile_id: str,
        status: MeetingStatus | None = None,
    ) -> list[Meeting]:
        """Meetings where the profile is requester or recipient, by proposed_time."""
        async for session in self._session_factory():
            result = await session.execute(
                participant_meetings_stmt(conference_id, profile_id, status)
            )
            return [_model_to_meeting(m) for m in result.scalars().all()]
        return []

    async def list_active_bookings(
        self,
        conference_id: str,
        profile_ids: Iterable[str],
        from_time: datetime,
        to_time: datetime,
    ) -> list[Meeting]:
        """Pending/accepted meetings of the profiles starting within [from_time, to_time]."""
        async for session in self._session_factory():
            result = await session.execute(
                active_bookings_stmt(conference_id, profile_ids, from_time, to_time)
            )
            return [_model_to_meeting(m) for m in result.scalars().all()]
        return []

    async def list_due_for_start(
        self, from_time: datetime, to_time: datetime
    ) -> list[Meeting]:
        """Accepted, not-yet-announced meetings starting within the window."""
        async for session in self._session_factory():
            result = await session.execute(due_for_start_stmt(from_time, to_time))
            return [_model_to_meeting(m) for m in result.scalars().all()]
        return []

    async def count_meetings(
        self, conference_id: str, profile_id: str | None = None
    ) -> int:
        """Count meetings of any status in a conference, optionally for one participant."""
        stmt = select(func.count()).select_from(MeetingModel).where(
            MeetingModel.conference_id == conference_id
        )
        if profile_id is not None:
            stmt = stmt.where(
                or_(
                    MeetingModel.requester_id == profile_id,
                    MeetingModel.recipient_id == profile_id,
                )
            )
        async for session in self._session_factory():
            result = await session.execute(stmt)
            return int(result.scalar_one())
        return 0
