"""StartTimeNotifier -- announces accepted meetings when their start time arrives.

A single repeating poll loop (one tick per interval, not per-meeting timers)
scans for accepted meetings whose proposed_time lies within +/- window of now
and that have not been announced yet. Each meeting is claimed atomically via
start_notified_at before anything is sent, so a meeting is announced at most
once even across restarts or overlapping ticks. If no participant could be
reached the claim is released and a later tick inside the window retries.

Failure isolation: a failure for one meeting is logged and the tick moves on
to the next meeting; a store failure aborts only the current tick.

The loop runs as an owned asyncio task (start()/stop()) bound to the
application lifecycle; tests drive tick() directly with an explicit ``now``.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from src.meetbook.core.logging import log_context, new_tick_id
from src.meetbook.meetings.collaborators import ChatProvisioner
from src.meetbook.meetings.notifications import MeetingNotifier
from src.meetbook.meetings.repository import MeetingRepository
from src.meetbook.meetings.schemas import ChatSession, Meeting

logger = structlog.get_logger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

POLL_INTERVAL_SECONDS = 60.0
START_WINDOW_SECONDS = 60


class StartTimeNotifier:
    """Polls for meetings reaching their start time and notifies both participants.

    Args:
        repository: MeetingRepository to scan and claim meetings.
        notifier: MeetingNotifier that delivers the "starting" message.
        chat_provisioner: Optional ChatProvisioner opening the meeting chat.
        interval_seconds: Time between ticks.
        window_seconds: Half-width of the start window around now.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        notifier: MeetingNotifier,
        chat_provisioner: ChatProvisioner | None = None,
        interval_seconds: float = POLL_INTERVAL_SECONDS,
        window_seconds: int = START_WINDOW_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._notifier = notifier
        self._chat_provisioner = chat_provisioner
        self._interval = interval_seconds
        self._window = timedelta(seconds=window_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Core Detection ───────────────────────────────────────────────────

    async def tick(self, now: datetime | None = None) -> list[Meeting]:
        """Run one scan and announce every due meeting.

        Args:
            now: Instant to evaluate against; defaults to the clock.

        Returns:
            Meetings announced by this tick.
        """
        now = now or self._clock()
        with log_context(tick_id=new_tick_id()):
            due = await self._repository.list_due_for_start(
                now - self._window, now + self._window
            )

            announced: list[Meeting] = []
            for meeting in due:
                try:
                    if await self._announce(meeting, now):
                        announced.append(meeting)
                except Exception:
                    logger.exception(
                        "start_notification_failed",
                        meeting_id=str(meeting.id),
                    )

            if announced:
                logger.info(
                    "start_notifier_tick_complete",
                    due=len(due),
                    announced=len(announced),
                )
            return announced

    async def _announce(self, meeting: Meeting, now: datetime) -> bool:
        # Re-check against the window edges of the query.
        if abs(meeting.proposed_time - now) > self._window:
            return False

        if not await self._repository.claim_start_notification(meeting.id, now):
            logger.debug("meeting_start_already_claimed", meeting_id=str(meeting.id))
            return False

        chat = await self._open_chat(meeting)
        delivered = await self._notifier.meeting_starting(meeting, chat)
        if delivered == 0:
            # Nobody was reached; let a later tick inside the window retry.
            await self._repository.release_start_notification(meeting.id, now)
            logger.warning(
                "meeting_start_notification_released", meeting_id=str(meeting.id)
            )
            return False

        logger.info(
            "meeting_start_announced",
            meeting_id=str(meeting.id),
            delivered=delivered,
            chat_opened=chat is not None,
        )
        return True

    async def _open_chat(self, meeting: Meeting) -> ChatSession | None:
        if self._chat_provisioner is None:
            return None
        try:
            return await self._chat_provisioner.get_or_create_session(meeting)
        except Exception:
            logger.exception("chat_provisioning_failed", meeting_id=str(meeting.id))
            return None

    # ── Poll Loop ────────────────────────────────────────────────────────

    async def run_poll_loop(self) -> None:
        """Tick every interval until cancelled; tick failures are logged."""
        loop = asyncio.get_running_loop()
        logger.info("start_notifier_started", poll_interval=self._interval)

        while True:
            started = loop.time()
            try:
                await self.tick()
            except Exception:
                logger.exception("start_notifier_tick_failed")

            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self._interval - elapsed))

    def start(self) -> asyncio.Task:
        """Start the poll loop as a background task (idempotent)."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(
                self.run_poll_loop(), name="start-time-notifier"
            )
        return self._task

    async def stop(self) -> None:
        """Cancel the poll loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("start_notifier_stopped")
