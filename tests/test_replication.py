"""Tests for the post-create consistency wait."""

from __future__ import annotations

import asyncio

import pytest

from graphsync.errors import (
    NotFoundError,
    OperationCancelledError,
    ReplicationTimeoutError,
    ResponseValidationError,
)
from graphsync.replication import Backoff, wait_for_creation_replication


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedPoll:
    """Raises NotFoundError a set number of times, then returns a value."""

    def __init__(self, clock: FakeClock, not_found: int, result: str = "visible") -> None:
        self._clock = clock
        self._not_found = not_found
        self._result = result
        self.calls: list[float] = []

    async def __call__(self) -> str:
        self.calls.append(self._clock.now)
        if len(self.calls) <= self._not_found:
            raise NotFoundError("not yet", operation="get", status=404)
        return self._result


UNIT_BACKOFF = Backoff(initial_delay=1.0, max_delay=1.0, multiplier=1.0)


class TestWaitForCreationReplication:
    """Tests for wait_for_creation_replication."""

    @pytest.mark.asyncio
    async def test_immediately_visible(self) -> None:
        clock = FakeClock()
        poll = ScriptedPoll(clock, not_found=0)

        result = await wait_for_creation_replication(
            poll, timeout=5, clock=clock, sleep=clock.sleep
        )

        assert result == "visible"
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_visible_after_four_misses(self) -> None:
        """Test that polls at t=0..4 with a 5 unit timeout succeed on the fifth."""
        clock = FakeClock()
        poll = ScriptedPoll(clock, not_found=4)

        result = await wait_for_creation_replication(
            poll, timeout=5, backoff=UNIT_BACKOFF, clock=clock, sleep=clock.sleep
        )

        assert result == "visible"
        assert poll.calls == [0.0, 1.0, 2.0, 3.0, 4.0]

    @pytest.mark.asyncio
    async def test_times_out_after_six_misses(self) -> None:
        clock = FakeClock()
        poll = ScriptedPoll(clock, not_found=6)

        with pytest.raises(ReplicationTimeoutError) as exc_info:
            await wait_for_creation_replication(
                poll,
                timeout=5,
                resource_id="obj-1",
                backoff=UNIT_BACKOFF,
                clock=clock,
                sleep=clock.sleep,
            )

        assert exc_info.value.resource_id == "obj-1"
        assert exc_info.value.attempts == len(poll.calls)
        assert clock.now == 5.0

    @pytest.mark.asyncio
    async def test_exponential_backoff_capped(self) -> None:
        clock = FakeClock()
        poll = ScriptedPoll(clock, not_found=5)

        await wait_for_creation_replication(
            poll,
            timeout=100,
            backoff=Backoff(initial_delay=1.0, max_delay=4.0, multiplier=2.0),
            clock=clock,
            sleep=clock.sleep,
        )

        assert clock.sleeps == [1.0, 2.0, 4.0, 4.0, 4.0]

    @pytest.mark.asyncio
    async def test_last_sleep_clipped_to_deadline(self) -> None:
        clock = FakeClock()
        poll = ScriptedPoll(clock, not_found=10)

        with pytest.raises(ReplicationTimeoutError):
            await wait_for_creation_replication(
                poll,
                timeout=2.5,
                backoff=Backoff(initial_delay=2.0, max_delay=2.0),
                clock=clock,
                sleep=clock.sleep,
            )

        assert clock.sleeps == [2.0, 0.5]
        assert poll.calls == [0.0, 2.0, 2.5]

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self) -> None:
        """Test that only not-found is retried."""
        calls = 0

        async def poll() -> None:
            nonlocal calls
            calls += 1
            raise ResponseValidationError("forbidden", status=403)

        with pytest.raises(ResponseValidationError):
            await wait_for_creation_replication(poll, timeout=60)

        assert calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_before_first_poll(self) -> None:
        clock = FakeClock()
        poll = ScriptedPoll(clock, not_found=0)
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            await wait_for_creation_replication(
                poll, timeout=5, cancel=cancel, clock=clock, sleep=clock.sleep
            )

        assert poll.calls == []

    @pytest.mark.asyncio
    async def test_cancelled_while_sleeping(self) -> None:
        """Test that a cancel signal interrupts the backoff sleep."""
        cancel = asyncio.Event()
        polls = 0

        async def poll() -> None:
            nonlocal polls
            polls += 1
            raise NotFoundError("not yet")

        async def cancel_soon() -> None:
            await asyncio.sleep(0.01)
            cancel.set()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(OperationCancelledError):
            await wait_for_creation_replication(
                poll,
                timeout=60,
                backoff=Backoff(initial_delay=30.0),
                cancel=cancel,
            )
        await canceller

        assert polls == 1
