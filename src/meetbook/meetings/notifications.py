"""MeetingNotifier -- composes and delivers meeting event notifications.

Three events reach participants through the NotificationChannel:
1. meeting requested: sent to the recipient with accept/reject actions
2. meeting cancelled: sent to both participants
3. meeting starting: sent to both participants with their chat link

Delivery is fire-and-forget from the caller's point of view: each send is
retried with tenacity and a final failure is logged, never raised. A failure
for one participant does not prevent delivery to the other.
"""

from __future__ import annotations

from datetime import timezone, tzinfo

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from src.meetbook.meetings.collaborators import NotificationChannel, ProfileDirectory
from src.meetbook.meetings.schemas import (
    ActionKind,
    ChatSession,
    Conference,
    Meeting,
    NotificationAction,
    Profile,
)

logger = structlog.get_logger(__name__)


# ── Action Builders ──────────────────────────────────────────────────────────


def accept_action(meeting: Meeting) -> NotificationAction:
    return NotificationAction(label="Accept", value=f"meeting:accept:{meeting.id}")


def reject_action(meeting: Meeting) -> NotificationAction:
    return NotificationAction(label="Reject", value=f"meeting:reject:{meeting.id}")


def list_action(conference: Conference) -> NotificationAction:
    return NotificationAction(label="My meetings", value=f"meeting:list:{conference.code}")


def complete_action(meeting: Meeting, conference: Conference) -> NotificationAction:
    return NotificationAction(
        label="Mark as completed",
        value=f"meeting:complete:{meeting.id}:{conference.code}",
    )


def chat_action(url: str) -> NotificationAction:
    return NotificationAction(label="Open chat", kind=ActionKind.URL, value=url)


# ── Notifier ─────────────────────────────────────────────────────────────────


class MeetingNotifier:
    """Builds notification texts and delivers them with bounded retries.

    Args:
        channel: NotificationChannel used for delivery.
        directory: ProfileDirectory for resolving names and conferences.
        tz: Timezone used to render meeting times.
        max_attempts: Delivery attempts per participant per event.
        retry_wait_seconds: Base of the exponential wait between attempts.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        directory: ProfileDirectory,
        tz: tzinfo = timezone.utc,
        max_attempts: int = 3,
        retry_wait_seconds: float = 0.5,
    ) -> None:
        self._channel = channel
        self._directory = directory
        self._tz = tz
        self._max_attempts = max(1, max_attempts)
        self._retry_wait = retry_wait_seconds

    def format_time(self, meeting: Meeting) -> str:
        return meeting.proposed_time.astimezone(self._tz).strftime("%Y-%m-%d %H:%M %Z")

    async def _deliver(
        self,
        event: str,
        meeting: Meeting,
        profile: Profile,
        text: str,
        actions: list[NotificationAction],
    ) -> bool:
        """Send one message with retries. Returns False on final failure."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._retry_wait, max=10),
                reraise=True,
            ):
                with attempt:
                    await self._channel.send(profile.external_id, text, actions)
        except Exception:
            logger.exception(
                f"{event}_notification_failed",
                meeting_id=str(meeting.id),
                profile_id=profile.id,
                attempts=self._max_attempts,
            )
            return False

        logger.debug(
            f"{event}_notification_sent",
            meeting_id=str(meeting.id),
            profile_id=profile.id,
        )
        return True

    async def _participants(
        self, meeting: Meeting
    ) -> tuple[Conference, Profile, Profile] | None:
        conference = await self._directory.get_conference(meeting.conference_id)
        requester = await self._directory.get_profile(meeting.requester_id)
        recipient = await self._directory.get_profile(meeting.recipient_id)
        if conference is None or requester is None or recipient is None:
            logger.warning(
                "notification_participants_unresolved",
                meeting_id=str(meeting.id),
                conference_found=conference is not None,
                requester_found=requester is not None,
                recipient_found=recipient is not None,
            )
            return None
        return conference, requester, recipient

    # ── Events ───────────────────────────────────────────────────────────

    async def meeting_requested(
        self,
        meeting: Meeting,
        conference: Conference,
        requester: Profile,
        recipient: Profile,
    ) -> bool:
        """Tell the recipient about a new request."""
        lines = [
            "New meeting request",
            "",
            f"Conference: {conference.title}",
            f"From: {requester.display_name}",
            f"Time: {self.format_time(meeting)}",
            f"Duration: {meeting.duration_minutes} minutes",
        ]
        if meeting.meeting_location:
            lines.append(f"Location: {meeting.meeting_location}")
        if meeting.message:
            lines.append(f"Message: {meeting.message}")
        lines += ["", "You can accept or reject the request."]

        actions = [accept_action(meeting), reject_action(meeting), list_action(conference)]
        try:
            return await self._deliver(
                "meeting_requested", meeting, recipient, "\n".join(lines), actions
            )
        except Exception:
            logger.exception("meeting_requested_notification_error", meeting_id=str(meeting.id))
            return False

    async def meeting_cancelled(self, meeting: Meeting) -> int:
        """Tell both participants a meeting was cancelled. Returns deliveries made."""
        try:
            resolved = await self._participants(meeting)
            if resolved is None:
                return 0
            conference, requester, recipient = resolved

            delivered = 0
            for profile, other in ((requester, recipient), (recipient, requester)):
                text = "\n".join(
                    [
                        "Meeting cancelled",
                        "",
                        f"Conference: {conference.title}",
                        f"With: {other.display_name}",
                        f"Time: {self.format_time(meeting)}",
                        "",
                        "The meeting has been cancelled.",
                    ]
                )
                if await self._deliver(
                    "meeting_cancelled", meeting, profile, text, [list_action(conference)]
                ):
                    delivered += 1
            return delivered
        except Exception:
            logger.exception("meeting_cancelled_notification_error", meeting_id=str(meeting.id))
            return 0

    async def meeting_starting(
        self, meeting: Meeting, chat: ChatSession | None = None
    ) -> int:
        """Tell both participants a meeting is starting now. Returns deliveries made."""
        try:
            resolved = await self._participants(meeting)
            if resolved is None:
                return 0
            conference, requester, recipient = resolved

            delivered = 0
            for profile, other in ((requester, recipient), (recipient, requester)):
                lines = [
                    "Your meeting is starting!",
                    "",
                    f"Conference: {conference.title}",
                    f"With: {other.display_name}",
                    f"Time: {self.format_time(meeting)}",
                    f"Duration: {meeting.duration_minutes} minutes",
                ]
                actions: list[NotificationAction] = []
                if chat is not None:
                    lines += ["", "The meeting chat is open now."]
                    actions.append(chat_action(chat.url_for(profile.external_id)))
                actions += [complete_action(meeting, conference), list_action(conference)]

                if await self._deliver(
                    "meeting_starting", meeting, profile, "\n".join(lines), actions
                ):
                    delivered += 1
            return delivered
        except Exception:
            logger.exception("meeting_starting_notification_error", meeting_id=str(meeting.id))
            return 0
