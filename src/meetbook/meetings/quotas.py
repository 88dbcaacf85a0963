"""Default quota checker backed by meeting counts in the repository.

Counts every meeting regardless of status, so rejected and cancelled
requests still consume quota. A limit of -1 means unlimited.
"""

from __future__ import annotations

import structlog

from src.meetbook.meetings.collaborators import QuotaChecker
from src.meetbook.meetings.repository import MeetingRepository
from src.meetbook.meetings.schemas import QuotaDecision

logger = structlog.get_logger(__name__)

UNLIMITED = -1


def _decide(limit: int, current: int, reason: str) -> QuotaDecision:
    if limit == UNLIMITED:
        return QuotaDecision(allowed=True, limit=UNLIMITED, current=current)
    allowed = current < limit
    return QuotaDecision(
        allowed=allowed,
        limit=limit,
        current=current,
        reason=None if allowed else reason,
    )


class RepositoryQuotaChecker(QuotaChecker):
    """Quota checks against fixed limits.

    Args:
        repository: MeetingRepository used for counting.
        max_per_conference: Meetings allowed per conference (-1 = unlimited).
        max_per_user: Meetings allowed per participant (-1 = unlimited).
    """

    def __init__(
        self,
        repository: MeetingRepository,
        max_per_conference: int = UNLIMITED,
        max_per_user: int = UNLIMITED,
    ) -> None:
        self._repository = repository
        self._max_per_conference = max_per_conference
        self._max_per_user = max_per_user

    async def can_create_meeting(self, conference_id: str) -> QuotaDecision:
        if self._max_per_conference == UNLIMITED:
            return QuotaDecision(allowed=True)
        current = await self._repository.count_meetings(conference_id)
        decision = _decide(self._max_per_conference, current, "LIMIT_EXCEEDED")
        if not decision.allowed:
            logger.info(
                "conference_meeting_quota_reached",
                conference_id=conference_id,
                limit=decision.limit,
                current=decision.current,
            )
        return decision

    async def can_user_create_meeting(
        self, conference_id: str, profile_id: str
    ) -> QuotaDecision:
        if self._max_per_user == UNLIMITED:
            return QuotaDecision(allowed=True)
        current = await self._repository.count_meetings(conference_id, profile_id)
        decision = _decide(self._max_per_user, current, "USER_MEETING_LIMIT_EXCEEDED")
        if not decision.allowed:
            logger.info(
                "user_meeting_quota_reached",
                conference_id=conference_id,
                profile_id=profile_id,
                limit=decision.limit,
                current=decision.current,
            )
        return decision
