"""Convergence polling with capped, jittered exponential backoff.

The poller knows nothing about deployments. It repeatedly awaits a fetch
that returns a Classification and stops when:

- the classification is FATAL (its error is raised at once, no sleep)
- ``is_done`` accepts the classification (it is returned)
- the time budget is exhausted (ConvergenceTimeoutError)

Sleeps go through ``asyncio.sleep`` so cancelling the calling task aborts
a wait immediately instead of after the current backoff interval.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable

from .classifier import Classification
from .config import BackoffConfig

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Classification]]
DoneFn = Callable[[Classification], bool]


class ConvergenceTimeoutError(Exception):
    """Raised when a resource does not converge within its time budget.

    The message embeds the last observed non-terminal state to aid diagnosis.
    """

    def __init__(
        self,
        last: Classification | None,
        timeout_seconds: float,
        attempts: int,
    ) -> None:
        detail = last.detail if last is not None and last.detail else "no observation"
        super().__init__(
            f"timeout while waiting for deployment to converge "
            f"(last state: {detail}, timeout: {timeout_seconds:g}s, attempts: {attempts})"
        )
        self.last = last
        self.timeout_seconds = timeout_seconds
        self.attempts = attempts


def backoff_delay(backoff: BackoffConfig, attempt: int, rng: random.Random) -> float:
    """Delay before the retry that follows ``attempt`` (1-based).

    Exponential from the initial delay, capped, plus up to ``jitter`` of the
    capped value. Jitter never pulls a delay below its base.
    """
    base = backoff.initial_delay_seconds * (backoff.multiplier ** (attempt - 1))
    base = min(base, backoff.max_delay_seconds)
    return base + rng.uniform(0, base * backoff.jitter)


async def await_condition(
    fetch: FetchFn,
    is_done: DoneFn,
    timeout: float,
    *,
    backoff: BackoffConfig | None = None,
    on_attempt: Callable[[Classification], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: random.Random | None = None,
) -> Classification:
    """Poll until ``is_done`` accepts a classification or the budget runs out.

    Args:
        fetch: Coroutine function performing and classifying one fetch.
        is_done: Predicate selecting the terminal success classification.
        timeout: Total time budget in seconds.
        backoff: Delay policy between fetches.
        on_attempt: Called with every non-fatal classification.
        clock: Monotonic clock, injectable for tests.
        sleep: Sleep coroutine, injectable for tests.
        rng: Jitter source; a fresh OS-seeded generator by default so
            independent pollers do not retry in lockstep.

    Returns:
        The classification accepted by ``is_done``.

    Raises:
        Exception: The error carried by a FATAL classification.
        ConvergenceTimeoutError: If the budget is exhausted first.
    """
    backoff = backoff or BackoffConfig()
    rng = rng or random.Random()
    deadline = clock() + timeout
    attempts = 0
    last: Classification | None = None

    while True:
        attempts += 1
        result = await fetch()

        if result.is_fatal:
            logger.debug("Poll attempt fatal", extra={"attempt": attempts})
            # SAFETY: FATAL classifications are always built with an error
            assert result.error is not None
            raise result.error

        if on_attempt is not None:
            on_attempt(result)

        if is_done(result):
            logger.debug(
                "Poll condition met",
                extra={"attempt": attempts, "outcome": result.outcome.value},
            )
            return result

        last = result
        remaining = deadline - clock()
        if remaining <= 0:
            raise ConvergenceTimeoutError(last, timeout, attempts)

        wait_time = min(backoff_delay(backoff, attempts, rng), remaining)
        logger.debug(
            "Condition not met, retrying",
            extra={
                "attempt": attempts,
                "outcome": result.outcome.value,
                "detail": result.detail,
                "wait_seconds": wait_time,
            },
        )
        await sleep(wait_time)
