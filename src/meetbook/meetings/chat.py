"""Meeting chat token provisioning.

Issues one access token per meeting for the ephemeral meeting chat. An
unexpired token is reused; otherwise a fresh one replaces it, expiring a
grace period after the meeting ends.
"""

from __future__ import annotations

import secrets
import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetbook.meetings.collaborators import ChatProvisioner
from src.meetbook.meetings.errors import MeetingNotFoundError
from src.meetbook.meetings.models import MeetingChatTokenModel, MeetingModel
from src.meetbook.meetings.schemas import ChatSession, Meeting, MeetingStatus

logger = structlog.get_logger(__name__)

TOKEN_BYTES = 32


def generate_chat_token() -> str:
    """64 hex characters of CSPRNG output."""
    return secrets.token_hex(TOKEN_BYTES)


def token_expiry(meeting: Meeting, grace: timedelta) -> datetime:
    return meeting.end_time + grace


class ChatTokenService(ChatProvisioner):
    """SQLAlchemy-backed ChatProvisioner.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        base_url: Public base URL of the meeting chat page.
        grace_minutes: Token lifetime after the meeting's end.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        base_url: str,
        grace_minutes: int = 60,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._base_url = base_url
        self._grace = timedelta(minutes=grace_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _to_session(self, model: MeetingChatTokenModel) -> ChatSession:
        return ChatSession(
            meeting_id=model.meeting_id,
            token=model.token,
            expires_at=model.expires_at,
            base_url=self._base_url,
        )

    async def get_or_create_session(self, meeting: Meeting) -> ChatSession:
        now = self._clock()
        async for session in self._session_factory():
            result = await session.execute(
                select(MeetingChatTokenModel).where(
                    MeetingChatTokenModel.meeting_id == meeting.id
                )
            )
            existing = result.scalar_one_or_none()
            if existing is not None and existing.expires_at > now:
                return self._to_session(existing)

            if existing is not None:
                await session.execute(
                    delete(MeetingChatTokenModel).where(
                        MeetingChatTokenModel.id == existing.id
                    )
                )

            model = MeetingChatTokenModel(
                meeting_id=meeting.id,
                token=generate_chat_token(),
                expires_at=token_expiry(meeting, self._grace),
            )
            session.add(model)
            await session.commit()
            logger.info(
                "chat_token_issued",
                meeting_id=str(meeting.id),
                expires_at=model.expires_at.isoformat(),
            )
            return self._to_session(model)
        raise RuntimeError("session factory yielded no session")

    async def validate_token(self, token: str) -> uuid.UUID:
        """Return the meeting id for a live token of an accepted meeting.

        Expired tokens are deleted on sight.

        Raises:
            MeetingNotFoundError: If the token is unknown, expired, or the
                meeting is not accepted.
        """
        now = self._clock()
        async for session in self._session_factory():
            result = await session.execute(
                select(MeetingChatTokenModel).where(MeetingChatTokenModel.token == token)
            )
            model = result.scalar_one_or_none()
            if model is None:
                raise MeetingNotFoundError("unknown chat token")

            if model.expires_at <= now:
                await session.execute(
                    delete(MeetingChatTokenModel).where(
                        MeetingChatTokenModel.id == model.id
                    )
                )
                await session.commit()
                raise MeetingNotFoundError("chat token expired")

            meeting = await session.get(MeetingModel, model.meeting_id)
            if meeting is None or meeting.status != MeetingStatus.ACCEPTED.value:
                raise MeetingNotFoundError("meeting not available for chat")
            return model.meeting_id
        raise RuntimeError("session factory yielded no session")
