"""Abstract interfaces for the collaborators the meeting core consumes.

Transport layers (bots, HTTP handlers) provide concrete implementations of
the profile directory and notification channel. Default implementations of
QuotaChecker and ChatProvisioner live in quotas.py and chat.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.meetbook.meetings.schemas import (
    ChatSession,
    Conference,
    Meeting,
    NotificationAction,
    Profile,
    QuotaDecision,
)


class ProfileDirectory(ABC):
    """Resolves conferences and participant profiles.

    Methods:
        get_conference: Conference by id.
        get_active_profile: Active profile of an identity within a conference.
        get_profile: Profile by id (active or not).
    """

    @abstractmethod
    async def get_conference(self, conference_id: str) -> Conference | None:
        ...

    @abstractmethod
    async def get_active_profile(
        self, conference_id: str, identity: str
    ) -> Profile | None:
        ...

    @abstractmethod
    async def get_profile(self, profile_id: str) -> Profile | None:
        ...


class QuotaChecker(ABC):
    """Conference-level and per-participant meeting quotas."""

    @abstractmethod
    async def can_create_meeting(self, conference_id: str) -> QuotaDecision:
        ...

    @abstractmethod
    async def can_user_create_meeting(
        self, conference_id: str, profile_id: str
    ) -> QuotaDecision:
        ...


class NotificationChannel(ABC):
    """Fire-and-forget delivery of a message to one participant."""

    @abstractmethod
    async def send(
        self,
        external_id: str,
        text: str,
        actions: list[NotificationAction] | None = None,
    ) -> None:
        """Deliver ``text`` to the participant; raise on delivery failure."""
        ...


class ChatProvisioner(ABC):
    """Provides the chat session opened when a meeting starts."""

    @abstractmethod
    async def get_or_create_session(self, meeting: Meeting) -> ChatSession:
        ...
