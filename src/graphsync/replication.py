"""Post-create consistency wait.

The directory is eventually consistent: an object that was just created
can read back as not-found for a while. This is the only retry loop in
the client, and it retries nothing but NotFoundError; any other failure
propagates on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import NotFoundError, OperationCancelledError, ReplicationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_INITIAL_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 30.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff schedule, capped at ``max_delay``."""

    initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    def next(self, delay: float) -> float:
        return min(delay * self.multiplier, self.max_delay)


async def wait_for_creation_replication(
    poll: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    resource_id: str | None = None,
    backoff: Backoff | None = None,
    cancel: asyncio.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Poll until ``poll`` stops raising NotFoundError.

    Args:
        poll: Reads the object back; raises NotFoundError while it is not
            yet visible.
        timeout: Seconds to keep polling. A final poll is made at the
            deadline before giving up.
        resource_id: Identifier named in errors and logs.
        backoff: Delay schedule between polls.
        cancel: Caller cancellation signal, honoured between polls.
        clock: Monotonic clock (injectable for tests).
        sleep: Sleep coroutine (injectable for tests).

    Returns:
        Whatever ``poll`` returned once the object was visible.

    Raises:
        ReplicationTimeoutError: Still not found when the deadline passed.
        OperationCancelledError: ``cancel`` was set while waiting.
    """
    schedule = backoff or Backoff()
    deadline = clock() + timeout
    delay = schedule.initial_delay
    attempts = 0

    while True:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError(
                "cancelled while waiting for replication",
                operation="wait_for_replication",
                resource_id=resource_id,
            )

        attempts += 1
        try:
            result = await poll()
        except NotFoundError:
            pass
        else:
            if attempts > 1:
                logger.info(
                    "Object replicated",
                    extra={"resource_id": resource_id, "attempts": attempts},
                )
            return result

        remaining = deadline - clock()
        if remaining <= 0:
            logger.warning(
                "Timed out waiting for replication",
                extra={"resource_id": resource_id, "attempts": attempts, "timeout": timeout},
            )
            raise ReplicationTimeoutError(
                f"object still not found after {attempts} attempt(s) over {timeout}s",
                attempts=attempts,
                operation="wait_for_replication",
                resource_id=resource_id,
            )

        logger.debug(
            "Object not yet visible, waiting",
            extra={"resource_id": resource_id, "attempt": attempts, "delay": delay},
        )
        await _pause(min(delay, remaining), cancel, sleep, resource_id)
        delay = schedule.next(delay)


async def _pause(
    seconds: float,
    cancel: asyncio.Event | None,
    sleep: Callable[[float], Awaitable[None]],
    resource_id: str | None,
) -> None:
    if cancel is None:
        await sleep(seconds)
        return

    sleeper = asyncio.ensure_future(sleep(seconds))
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, waiter):
            if not task.done():
                task.cancel()

    if waiter in done:
        raise OperationCancelledError(
            "cancelled while waiting for replication",
            operation="wait_for_replication",
            resource_id=resource_id,
        )
