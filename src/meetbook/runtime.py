"""Runtime wiring for the meeting core.

meeting_runtime() builds every component from Settings, starts the
StartTimeNotifier as an owned background task, and tears everything down on
exit. Transport layers (bots, HTTP apps) enter it from their own lifespan and
call into ``runtime.service``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

import structlog

from src.meetbook.config import Settings, get_settings
from src.meetbook.core.database import close_db, get_session
from src.meetbook.core.logging import configure_structlog
from src.meetbook.meetings.chat import ChatTokenService
from src.meetbook.meetings.collaborators import (
    ChatProvisioner,
    NotificationChannel,
    ProfileDirectory,
    QuotaChecker,
)
from src.meetbook.meetings.lifecycle import MeetingService
from src.meetbook.meetings.notifications import MeetingNotifier
from src.meetbook.meetings.notifier import StartTimeNotifier
from src.meetbook.meetings.quotas import RepositoryQuotaChecker
from src.meetbook.meetings.repository import MeetingRepository
from src.meetbook.meetings.slots import SlotPolicy


@dataclass
class MeetingRuntime:
    """Components assembled by meeting_runtime()."""

    repository: MeetingRepository
    service: MeetingService
    notifier: MeetingNotifier
    start_notifier: StartTimeNotifier
    chat: ChatProvisioner


def build_runtime(
    settings: Settings,
    directory: ProfileDirectory,
    channel: NotificationChannel,
    repository: MeetingRepository | None = None,
    quota_checker: QuotaChecker | None = None,
    chat_provisioner: ChatProvisioner | None = None,
    clock: Callable[[], datetime] | None = None,
) -> MeetingRuntime:
    """Assemble components from settings without starting anything."""
    tz = ZoneInfo(settings.MEETING_TIMEZONE)
    repository = repository or MeetingRepository(session_factory=get_session)
    quota_checker = quota_checker or RepositoryQuotaChecker(
        repository,
        max_per_conference=settings.MAX_MEETINGS_PER_CONFERENCE,
        max_per_user=settings.MAX_MEETINGS_PER_USER,
    )
    chat_provisioner = chat_provisioner or ChatTokenService(
        session_factory=get_session,
        base_url=settings.CHAT_BASE_URL,
        grace_minutes=settings.CHAT_TOKEN_GRACE_MINUTES,
        clock=clock,
    )
    notifier = MeetingNotifier(
        channel,
        directory,
        tz=tz,
        max_attempts=settings.NOTIFY_MAX_ATTEMPTS,
        retry_wait_seconds=settings.NOTIFY_RETRY_WAIT_SECONDS,
    )
    service = MeetingService(
        repository,
        directory,
        quota_checker,
        notifier=notifier,
        conflict_policy=settings.MEETING_CONFLICT_POLICY,
        slot_policy=SlotPolicy(
            day_start_hour=settings.SLOT_DAY_START_HOUR,
            day_end_hour=settings.SLOT_DAY_END_HOUR,
            granularity_minutes=settings.SLOT_GRANULARITY_MINUTES,
        ),
        tz=tz,
        clock=clock,
        default_duration_minutes=settings.MEETING_DEFAULT_DURATION_MINUTES,
        min_duration_minutes=settings.MEETING_MIN_DURATION_MINUTES,
        max_duration_minutes=settings.MEETING_MAX_DURATION_MINUTES,
        message_max_length=settings.MEETING_MESSAGE_MAX_LENGTH,
    )
    start_notifier = StartTimeNotifier(
        repository,
        notifier,
        chat_provisioner=chat_provisioner,
        interval_seconds=settings.START_NOTIFIER_INTERVAL_SECONDS,
        window_seconds=settings.START_NOTIFIER_WINDOW_SECONDS,
        clock=clock,
    )
    return MeetingRuntime(
        repository=repository,
        service=service,
        notifier=notifier,
        start_notifier=start_notifier,
        chat=chat_provisioner,
    )


@asynccontextmanager
async def meeting_runtime(
    directory: ProfileDirectory,
    channel: NotificationChannel,
    settings: Settings | None = None,
    **overrides,
) -> AsyncGenerator[MeetingRuntime, None]:
    """Run the meeting core for the lifetime of the ``async with`` block.

    Args:
        directory: ProfileDirectory implementation.
        channel: NotificationChannel implementation.
        settings: Settings; defaults to get_settings().
        **overrides: Passed to build_runtime() (repository, quota_checker,
            chat_provisioner, clock).
    """
    settings = settings or get_settings()
    configure_structlog(settings)
    log = structlog.get_logger(__name__)

    runtime = build_runtime(settings, directory, channel, **overrides)
    runtime.start_notifier.start()
    log.info(
        "meeting_runtime_started",
        conflict_policy=settings.MEETING_CONFLICT_POLICY.value,
        timezone=settings.MEETING_TIMEZONE,
    )
    try:
        yield runtime
    finally:
        await runtime.start_notifier.stop()
        await close_db()
        log.info("meeting_runtime_stopped")
