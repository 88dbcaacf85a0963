"""Tests for StartTimeNotifier (tick detection, at-most-once, failure isolation, loop)."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.meetbook.meetings.notifier import StartTimeNotifier
from src.meetbook.meetings.schemas import ActionKind, MeetingStatus
from tests.doubles import NOW, InMemoryMeetingRepository, make_meeting

T = NOW + timedelta(hours=1)


def _accepted(**overrides):
    overrides.setdefault("proposed_time", T)
    return make_meeting(status=MeetingStatus.ACCEPTED, **overrides)


@pytest.fixture
def start_notifier(repository, notifier, chat, clock):
    return StartTimeNotifier(repository, notifier, chat_provisioner=chat, clock=clock)


class TestTick:
    @pytest.mark.asyncio
    async def test_notifies_both_participants_exactly_once(
        self, start_notifier, repository, channel
    ):
        meeting = repository.add(_accepted())

        first = await start_notifier.tick(T)
        second = await start_notifier.tick(T)

        assert [m.id for m in first] == [meeting.id]
        assert second == []
        assert sorted(channel.recipients()) == ["tg-alice", "tg-bob"]
        stored = await repository.get_meeting(meeting.id)
        assert stored.start_notified_at == T

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset_seconds", [-60, -30, 0, 30, 60])
    async def test_ticks_within_window_announce(
        self, start_notifier, repository, offset_seconds
    ):
        repository.add(_accepted())

        announced = await start_notifier.tick(T + timedelta(seconds=offset_seconds))

        assert len(announced) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset_seconds", [-61, 61, 3600])
    async def test_ticks_outside_window_do_nothing(
        self, start_notifier, repository, channel, offset_seconds
    ):
        repository.add(_accepted())

        assert await start_notifier.tick(T + timedelta(seconds=offset_seconds)) == []
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_announces_each_meeting_once_across_ticks(
        self, start_notifier, repository, channel
    ):
        repository.add(_accepted())

        for offset in (-60, -20, 20, 60):
            await start_notifier.tick(T + timedelta(seconds=offset))

        assert len(channel.sent) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status",
        [
            MeetingStatus.PENDING,
            MeetingStatus.REJECTED,
            MeetingStatus.CANCELLED,
            MeetingStatus.COMPLETED,
        ],
    )
    async def test_only_accepted_meetings_are_announced(
        self, start_notifier, repository, status
    ):
        repository.add(make_meeting(proposed_time=T, status=status))
        assert await start_notifier.tick(T) == []

    @pytest.mark.asyncio
    async def test_defaults_to_clock(self, start_notifier, repository, clock):
        repository.add(_accepted())
        clock.now = T

        assert len(await start_notifier.tick()) == 1

    @pytest.mark.asyncio
    async def test_overlapping_ticks_announce_once(
        self, start_notifier, repository, channel
    ):
        repository.add(_accepted())

        results = await asyncio.gather(start_notifier.tick(T), start_notifier.tick(T))

        assert sum(len(r) for r in results) == 1
        assert len(channel.sent) == 2


class TestChatProvisioning:
    @pytest.mark.asyncio
    async def test_each_participant_gets_own_chat_link(
        self, start_notifier, repository, channel, chat
    ):
        meeting = repository.add(_accepted())

        await start_notifier.tick(T)

        assert chat.calls == [meeting.id]
        for external_id, text, actions in channel.sent:
            urls = [a.value for a in actions if a.kind == ActionKind.URL]
            assert len(urls) == 1
            assert urls[0].endswith(f"&participant={external_id}")
            assert "The meeting chat is open now." in text

    @pytest.mark.asyncio
    async def test_chat_failure_still_notifies(
        self, start_notifier, repository, channel, chat
    ):
        repository.add(_accepted())
        chat.fail = True

        announced = await start_notifier.tick(T)

        assert len(announced) == 1
        assert len(channel.sent) == 2
        for _, _, actions in channel.sent:
            assert all(a.kind == ActionKind.CALLBACK for a in actions)

    @pytest.mark.asyncio
    async def test_without_provisioner(self, repository, notifier, channel):
        start_notifier = StartTimeNotifier(repository, notifier)
        meeting = repository.add(_accepted())

        await start_notifier.tick(T)

        _, _, actions = channel.sent[0]
        assert [a.value for a in actions] == [
            f"meeting:complete:{meeting.id}:DEVCONF",
            "meeting:list:DEVCONF",
        ]


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_failed_delivery_to_one_participant(
        self, start_notifier, repository, channel
    ):
        repository.add(_accepted())
        channel.fail_for.add("tg-alice")

        announced = await start_notifier.tick(T)

        assert len(announced) == 1
        assert channel.recipients() == ["tg-bob"]

    @pytest.mark.asyncio
    async def test_undelivered_start_is_retried_next_tick(
        self, start_notifier, repository, channel
    ):
        meeting = _accepted()
        repository.add(meeting)
        channel.fail_for.update({"tg-alice", "tg-bob"})

        assert await start_notifier.tick(T) == []
        stored = await repository.get_meeting(meeting.id)
        assert stored.start_notified_at is None

        channel.fail_for.clear()
        announced = await start_notifier.tick(T + timedelta(seconds=30))

        assert [m.id for m in announced] == [meeting.id]
        assert sorted(channel.recipients()) == ["tg-alice", "tg-bob"]
        stored = await repository.get_meeting(meeting.id)
        assert stored.start_notified_at == T + timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_failure_for_one_meeting_does_not_stop_the_next(
        self, notifier, chat, channel
    ):
        class FlakyRepository(InMemoryMeetingRepository):
            def __init__(self, broken_id):
                super().__init__()
                self.broken_id = broken_id

            async def claim_start_notification(self, meeting_id, at):
                if meeting_id == self.broken_id:
                    raise RuntimeError("row locked")
                return await super().claim_start_notification(meeting_id, at)

        broken = _accepted()
        repository = FlakyRepository(broken.id)
        repository.add(broken)
        healthy = repository.add(
            _accepted(
                requester_id="p-carol",
                recipient_id="p-bob",
                proposed_time=T + timedelta(seconds=30),
            )
        )
        start_notifier = StartTimeNotifier(repository, notifier, chat_provisioner=chat)

        announced = await start_notifier.tick(T)

        assert [m.id for m in announced] == [healthy.id]
        assert sorted(channel.recipients()) == ["tg-bob", "tg-carol"]

    @pytest.mark.asyncio
    async def test_store_failure_aborts_the_tick(self, notifier):
        repository = AsyncMock()
        repository.list_due_for_start.side_effect = ConnectionError("db down")
        start_notifier = StartTimeNotifier(repository, notifier)

        with pytest.raises(ConnectionError):
            await start_notifier.tick(T)


class TestPollLoop:
    @pytest.mark.asyncio
    async def test_loop_survives_tick_failures(self, notifier):
        calls = 0

        async def list_due_for_start(from_time, to_time):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("db down")
            return []

        repository = AsyncMock()
        repository.list_due_for_start.side_effect = list_due_for_start
        start_notifier = StartTimeNotifier(repository, notifier, interval_seconds=0.01)

        start_notifier.start()
        await asyncio.sleep(0.1)
        await start_notifier.stop()

        assert calls >= 2
        assert not start_notifier.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, start_notifier):
        first = start_notifier.start()
        second = start_notifier.start()

        assert first is second
        assert start_notifier.running

        await start_notifier.stop()
        assert first.cancelled()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, start_notifier):
        await start_notifier.stop()
        assert not start_notifier.running

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, start_notifier):
        first = start_notifier.start()
        await start_notifier.stop()

        second = start_notifier.start()

        assert second is not first
        assert start_notifier.running
        await start_notifier.stop()
