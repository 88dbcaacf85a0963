"""Meeting persistence models.

Two SQLAlchemy models on the shared declarative Base:
- MeetingModel: 1:1 meeting requests and their lifecycle status
- MeetingChatTokenModel: One chat access token per started meeting

Participants and conferences are owned by the profile directory, so their
ids are stored as plain strings with no foreign key constraints.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.meetbook.core.database import Base


class MeetingModel(Base):
    """A 1:1 meeting between two conference participants.

    Only ``status``, ``updated_at`` and ``start_notified_at`` change after
    creation.
    """

    __tablename__ = "meetings"
    __table_args__ = (
        Index("ix_meetings_conference_status", "conference_id", "status"),
        Index("ix_meetings_requester_status", "requester_id", "status"),
        Index("ix_meetings_recipient_status", "recipient_id", "status"),
        Index("ix_meetings_proposed_time", "proposed_time"),
        Index(
            "ix_meetings_conference_time_status",
            "conference_id",
            "proposed_time",
            "status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    conference_id: Mapped[str] = mapped_column(String(64), nullable=False)
    requester_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    proposed_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    duration_minutes: Mapped[int] = mapped_column(
        Integer, default=30, server_default=text("30"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    meeting_location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
        server_default=text("'pending'"),
        nullable=False,
    )
    start_notified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class MeetingChatTokenModel(Base):
    """Chat access token issued when a meeting starts."""

    __tablename__ = "meeting_chat_tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, unique=True
    )
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
