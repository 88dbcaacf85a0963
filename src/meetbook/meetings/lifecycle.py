"""MeetingService -- request/accept/reject/cancel/complete state machine.

State machine (terminal states have no outgoing transitions):

    pending --accept--> accepted --complete--> completed
    pending --reject--> rejected
    pending|accepted --cancel--> cancelled

Every validation failure is raised as a typed MeetingError and never retried
here. Activating writes (request, accept) run the conflict check inside the
repository's guarded transaction; every transition is a conditional update,
so a concurrent change surfaces as AlreadyProcessed/AlreadyFinalized/
TimeConflict instead of overwriting. Notifications are sent after a
successful write and cannot fail the operation.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator
from datetime import date, datetime, timedelta, timezone, tzinfo

import structlog

from src.meetbook.meetings.collaborators import ProfileDirectory, QuotaChecker
from src.meetbook.meetings.conflicts import (
    DEFAULT_MAX_DURATION_MINUTES,
    BookingGuard,
    ConflictPolicy,
)
from src.meetbook.meetings.errors import (
    AlreadyFinalizedError,
    AlreadyProcessedError,
    CannotMeetSelfError,
    ConferenceNotFoundError,
    InvalidMeetingDetailsError,
    InvalidTimeInPastError,
    MeetingNotFoundError,
    NotInConferenceError,
    NotParticipantError,
    NotRecipientError,
    QuotaExceededError,
    RecipientNotFoundError,
    TimeConflictError,
)
from src.meetbook.meetings.notifications import MeetingNotifier
from src.meetbook.meetings.repository import (
    MeetingRepository,
    TransitionOutcome,
    TransitionResult,
)
from src.meetbook.meetings.schemas import (
    TERMINAL_STATUSES,
    Meeting,
    MeetingCreate,
    MeetingStatus,
    Profile,
)
from src.meetbook.meetings.slots import SlotPolicy, day_bounds, iter_free_slots

logger = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MeetingService:
    """Orchestrates the meeting lifecycle for one conference application.

    Args:
        repository: MeetingRepository (the single source of truth).
        directory: ProfileDirectory resolving conferences and profiles.
        quota_checker: QuotaChecker consulted before creating a request.
        notifier: Optional MeetingNotifier for requested/cancelled events.
        conflict_policy: ConflictPolicy used for request/accept checks.
        slot_policy: SlotPolicy for available_slots().
        tz: Conference local timezone (defines "a day" for slots).
        clock: Returns the current UTC time.
        default_duration_minutes: Duration used when the caller passes none.
        min_duration_minutes: Shortest allowed meeting.
        max_duration_minutes: Longest allowed meeting.
        message_max_length: Longest allowed request message.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        directory: ProfileDirectory,
        quota_checker: QuotaChecker,
        notifier: MeetingNotifier | None = None,
        conflict_policy: ConflictPolicy = ConflictPolicy.PADDED,
        slot_policy: SlotPolicy | None = None,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] | None = None,
        default_duration_minutes: int = 30,
        min_duration_minutes: int = 5,
        max_duration_minutes: int = DEFAULT_MAX_DURATION_MINUTES,
        message_max_length: int = 500,
    ) -> None:
        self._repository = repository
        self._directory = directory
        self._quota_checker = quota_checker
        self._notifier = notifier
        self._conflict_policy = conflict_policy
        self._slot_policy = slot_policy or SlotPolicy()
        self._tz = tz
        self._clock = clock or utc_now
        self._default_duration = default_duration_minutes
        self._min_duration = min_duration_minutes
        self._max_duration = max_duration_minutes
        self._message_max_length = message_max_length

    # ── Helpers ──────────────────────────────────────────────────────────

    def _guard(
        self,
        conference_id: str,
        participant_ids: tuple[str, ...],
        start: datetime,
        duration_minutes: int,
        exclude_meeting_id: uuid.UUID | None = None,
    ) -> BookingGuard:
        return BookingGuard(
            conference_id=conference_id,
            participant_ids=frozenset(participant_ids),
            start=start,
            duration_minutes=duration_minutes,
            exclude_meeting_id=exclude_meeting_id,
            policy=self._conflict_policy,
            max_duration_minutes=self._max_duration,
        )

    async def _load(self, meeting_id: str | uuid.UUID) -> Meeting:
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(f"Meeting not found: {meeting_id}")
        return meeting

    async def _is_party(self, profile_id: str, identity: str) -> bool:
        profile = await self._directory.get_profile(profile_id)
        return profile is not None and profile.external_id == identity

    async def _require_profile(self, conference_id: str, identity: str) -> Profile:
        if await self._directory.get_conference(conference_id) is None:
            raise ConferenceNotFoundError(f"Conference not found: {conference_id}")
        profile = await self._directory.get_active_profile(conference_id, identity)
        if profile is None:
            raise NotInConferenceError(
                f"No active profile for identity in conference {conference_id}"
            )
        return profile

    @staticmethod
    def _raise_for(result: TransitionResult, stale_error: type[Exception]) -> Meeting:
        if result.outcome == TransitionOutcome.NOT_FOUND or result.meeting is None:
            raise MeetingNotFoundError("Meeting disappeared during transition")
        if result.outcome == TransitionOutcome.CONFLICT:
            raise TimeConflictError(
                "Participant already has an overlapping booking",
                meeting_id=str(result.meeting.id),
            )
        if result.outcome == TransitionOutcome.STALE_STATUS:
            raise stale_error(
                f"Meeting is already {result.meeting.status.value}",
                status=result.meeting.status.value,
            )
        return result.meeting

    # ── Operations ───────────────────────────────────────────────────────

    async def request(
        self,
        conference_id: str,
        identity: str,
        recipient_profile_id: str,
        proposed_time: datetime,
        duration_minutes: int | None = None,
        message: str = "",
        meeting_location: str | None = None,
    ) -> Meeting:
        """Propose a meeting to another participant.

        Args:
            conference_id: Conference the meeting belongs to.
            identity: Requester's resolved caller identity.
            recipient_profile_id: Profile id of the invited participant.
            proposed_time: Meeting start; must be strictly in the future.
            duration_minutes: Meeting length (defaults to the configured default).
            message: Optional note for the recipient.
            meeting_location: Optional place to meet.

        Returns:
            The created pending Meeting.

        Raises:
            ConferenceNotFoundError, NotInConferenceError, RecipientNotFoundError,
            CannotMeetSelfError, InvalidTimeInPastError, InvalidMeetingDetailsError,
            QuotaExceededError, TimeConflictError.
        """
        conference = await self._directory.get_conference(conference_id)
        if conference is None:
            raise ConferenceNotFoundError(f"Conference not found: {conference_id}")

        requester = await self._directory.get_active_profile(conference_id, identity)
        if requester is None:
            raise NotInConferenceError(
                f"No active profile for identity in conference {conference_id}"
            )

        recipient = await self._directory.get_profile(recipient_profile_id)
        if recipient is None or recipient.conference_id != conference_id:
            raise RecipientNotFoundError(
                f"Recipient not found in conference: {recipient_profile_id}"
            )

        if requester.id == recipient.id:
            raise CannotMeetSelfError("Cannot request a meeting with yourself")

        proposed_time = _ensure_aware(proposed_time)
        if proposed_time <= self._clock():
            raise InvalidTimeInPastError(
                "Proposed time must be in the future",
                proposed_time=proposed_time.isoformat(),
            )

        duration = self._default_duration if duration_minutes is None else duration_minutes
        if not self._min_duration <= duration <= self._max_duration:
            raise InvalidMeetingDetailsError(
                f"Duration must be between {self._min_duration} and "
                f"{self._max_duration} minutes",
                duration_minutes=duration,
            )

        message = (message or "").strip()
        if len(message) > self._message_max_length:
            raise InvalidMeetingDetailsError(
                f"Message exceeds {self._message_max_length} characters",
                length=len(message),
            )

        conference_quota = await self._quota_checker.can_create_meeting(conference_id)
        if not conference_quota.allowed:
            raise QuotaExceededError(
                "conference", conference_quota.limit, conference_quota.current
            )
        user_quota = await self._quota_checker.can_user_create_meeting(
            conference_id, requester.id
        )
        if not user_quota.allowed:
            raise QuotaExceededError("user", user_quota.limit, user_quota.current)

        guard = self._guard(
            conference_id, (requester.id, recipient.id), proposed_time, duration
        )
        meeting = await self._repository.create_meeting(
            MeetingCreate(
                conference_id=conference_id,
                requester_id=requester.id,
                recipient_id=recipient.id,
                proposed_time=proposed_time,
                duration_minutes=duration,
                message=message,
                meeting_location=meeting_location,
            ),
            guard,
        )
        if meeting is None:
            raise TimeConflictError(
                "Requester or recipient already has a meeting at this time",
                proposed_time=proposed_time.isoformat(),
            )

        logger.info(
            "meeting_requested",
            meeting_id=str(meeting.id),
            conference_id=conference_id,
            requester_id=requester.id,
            recipient_id=recipient.id,
            proposed_time=proposed_time.isoformat(),
            duration_minutes=duration,
        )

        if self._notifier is not None:
            await self._notifier.meeting_requested(meeting, conference, requester, recipient)
        return meeting

    async def accept(self, meeting_id: str | uuid.UUID, identity: str) -> Meeting:
        """Recipient accepts a pending request after a fresh conflict check."""
        meeting = await self._load(meeting_id)
        if not await self._is_party(meeting.recipient_id, identity):
            raise NotRecipientError("Only the recipient can accept this meeting")
        if meeting.status != MeetingStatus.PENDING:
            raise AlreadyProcessedError(
                f"Meeting is already {meeting.status.value}", status=meeting.status.value
            )

        guard = self._guard(
            meeting.conference_id,
            meeting.participant_ids,
            meeting.proposed_time,
            meeting.duration_minutes,
            exclude_meeting_id=meeting.id,
        )
        result = await self._repository.transition_status(
            meeting.id, [MeetingStatus.PENDING], MeetingStatus.ACCEPTED, guard
        )
        accepted = self._raise_for(result, AlreadyProcessedError)
        logger.info("meeting_accepted", meeting_id=str(accepted.id))
        return accepted

    async def reject(self, meeting_id: str | uuid.UUID, identity: str) -> Meeting:
        """Recipient declines a pending request."""
        meeting = await self._load(meeting_id)
        if not await self._is_party(meeting.recipient_id, identity):
            raise NotRecipientError("Only the recipient can reject this meeting")
        if meeting.status != MeetingStatus.PENDING:
            raise AlreadyProcessedError(
                f"Meeting is already {meeting.status.value}", status=meeting.status.value
            )

        result = await self._repository.transition_status(
            meeting.id, [MeetingStatus.PENDING], MeetingStatus.REJECTED
        )
        rejected = self._raise_for(result, AlreadyProcessedError)
        logger.info("meeting_rejected", meeting_id=str(rejected.id))
        return rejected

    async def cancel(self, meeting_id: str | uuid.UUID, identity: str) -> Meeting:
        """Either participant cancels a pending or accepted meeting."""
        meeting = await self._load(meeting_id)
        is_requester = await self._is_party(meeting.requester_id, identity)
        if not is_requester and not await self._is_party(meeting.recipient_id, identity):
            raise NotParticipantError("Only a participant can cancel this meeting")
        if meeting.status in TERMINAL_STATUSES:
            raise AlreadyFinalizedError(
                f"Meeting is already {meeting.status.value}", status=meeting.status.value
            )

        result = await self._repository.transition_status(
            meeting.id,
            [MeetingStatus.PENDING, MeetingStatus.ACCEPTED],
            MeetingStatus.CANCELLED,
        )
        cancelled = self._raise_for(result, AlreadyFinalizedError)
        logger.info(
            "meeting_cancelled",
            meeting_id=str(cancelled.id),
            cancelled_by="requester" if is_requester else "recipient",
        )

        if self._notifier is not None:
            await self._notifier.meeting_cancelled(cancelled)
        return cancelled

    async def complete(
        self, meeting_id: str | uuid.UUID, identity: str, conference_id: str
    ) -> Meeting:
        """A participant marks an accepted meeting as completed.

        The meeting window is expected to be in progress; outside it the
        completion is still applied and a warning is logged.
        """
        meeting = await self._load(meeting_id)
        if meeting.conference_id != conference_id:
            raise MeetingNotFoundError(f"Meeting not found: {meeting_id}")
        if not (
            await self._is_party(meeting.requester_id, identity)
            or await self._is_party(meeting.recipient_id, identity)
        ):
            raise NotParticipantError("Only a participant can complete this meeting")
        if meeting.status in TERMINAL_STATUSES:
            raise AlreadyFinalizedError(
                f"Meeting is already {meeting.status.value}", status=meeting.status.value
            )
        if meeting.status != MeetingStatus.ACCEPTED:
            raise AlreadyProcessedError(
                "Only accepted meetings can be completed", status=meeting.status.value
            )

        now = self._clock()
        if not meeting.proposed_time <= now < meeting.end_time:
            logger.warning(
                "meeting_completed_outside_window",
                meeting_id=str(meeting.id),
                proposed_time=meeting.proposed_time.isoformat(),
                now=now.isoformat(),
            )

        result = await self._repository.transition_status(
            meeting.id, [MeetingStatus.ACCEPTED], MeetingStatus.COMPLETED
        )
        completed = self._raise_for(result, AlreadyFinalizedError)
        logger.info("meeting_completed", meeting_id=str(completed.id))
        return completed

    async def list_meetings(
        self,
        identity: str,
        conference_id: str,
        status: MeetingStatus | None = None,
    ) -> list[Meeting]:
        """The caller's meetings in a conference, earliest first."""
        profile = await self._directory.get_active_profile(conference_id, identity)
        if profile is None:
            raise NotInConferenceError(
                f"No active profile for identity in conference {conference_id}"
            )
        return await self._repository.list_meetings(conference_id, profile.id, status)

    async def available_slots(
        self, identity: str, conference_id: str, day: date | None = None
    ) -> Iterator[datetime]:
        """Free slot starts on ``day`` (default: today, local) for the caller.

        Returns a lazy iterator over a snapshot of the caller's bookings; call
        again for a fresh view. Nothing is reserved.
        """
        profile = await self._require_profile(conference_id, identity)
        now = self._clock()
        if day is None:
            day = now.astimezone(self._tz).date()

        day_start, day_end = day_bounds(day, self._tz)
        bookings = await self._repository.list_active_bookings(
            conference_id,
            [profile.id],
            day_start - timedelta(minutes=self._max_duration),
            day_end,
        )
        return iter_free_slots(day, bookings, now, self._slot_policy, self._tz)
