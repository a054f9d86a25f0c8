"""Pacing primitives for remote fetches.

- throttled_delay: a uniformly random pause between page fetches.
- with_retry: bounded exponential backoff around one remote operation.
  The backoff delay is deterministic; only the inter-request pause is
  randomized.
- NavigationLimiter: an optional hard ceiling on navigations per minute
  backed by pyrate_limiter.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pyrate_limiter import Duration, InMemoryBucket, Limiter, Rate

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


async def throttled_delay(
    min_ms: int,
    max_ms: int,
    *,
    rng: random.Random | None = None,
    sleep: SleepFunc = asyncio.sleep,
) -> float:
    """Suspend for a uniformly random duration in ``[min_ms, max_ms]``.

    Args:
        min_ms: Lower bound in milliseconds.
        max_ms: Upper bound in milliseconds.
        rng: Random source (default: the module-level generator).
        sleep: Awaitable sleep taking seconds.

    Returns:
        The number of milliseconds slept.

    Raises:
        ValueError: If the bounds are negative or inverted.
    """
    if min_ms < 0 or max_ms < 0:
        raise ValueError(f"Delay bounds must be non-negative: {min_ms}, {max_ms}")
    if min_ms > max_ms:
        raise ValueError(f"min_ms ({min_ms}) must not exceed max_ms ({max_ms})")

    source = rng or random
    delay_ms = source.uniform(min_ms, max_ms)
    await sleep(delay_ms / 1000.0)
    return delay_ms


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> int:
    """Wait before retrying after failed attempt number ``attempt`` (1-based)."""
    return base_delay_ms * 2 ** (attempt - 1)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay_ms: int = 5000,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str | None = None,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """Invoke ``operation`` with bounded exponential backoff.

    After failed attempt ``n`` the executor waits
    ``base_delay_ms * 2 ** (n - 1)`` milliseconds. Once ``max_attempts``
    attempts have failed, the last error propagates unchanged.

    Args:
        operation: Zero-argument callable returning a fresh awaitable.
        max_attempts: Total attempts, including the first.
        base_delay_ms: Wait after the first failure.
        retry_on: Exception types that trigger a retry. Anything else
            propagates immediately.
        description: Label for log lines (default: the callable's name).
        sleep: Awaitable sleep taking seconds.

    Returns:
        The operation's result.

    Example:
        page = await with_retry(lambda: tab.fetch(url), max_attempts=3)
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    label = description or getattr(operation, "__name__", "operation")
    started = time.monotonic()

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt == max_attempts:
                elapsed = time.monotonic() - started
                logger.error(
                    f"{label}: attempt {attempt}/{max_attempts} failed: {e}. "
                    f"Giving up after {elapsed:.1f}s"
                )
                raise
            wait_ms = backoff_delay_ms(attempt, base_delay_ms)
            logger.warning(
                f"{label}: attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {wait_ms / 1000:.1f}s"
            )
            await sleep(wait_ms / 1000.0)

    raise AssertionError("unreachable")


class NavigationLimiter:
    """Hard ceiling on navigations per minute.

    Wraps a pyrate_limiter Limiter over an in-memory bucket. ``acquire``
    polls until a slot frees up instead of failing, so a burst of
    navigations is stretched out rather than aborted.
    """

    def __init__(
        self,
        per_minute: int,
        poll_interval_s: float = 0.25,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.per_minute = per_minute
        self.poll_interval_s = poll_interval_s
        self._sleep = sleep
        bucket = InMemoryBucket([Rate(per_minute, Duration.MINUTE)])
        self._limiter = Limiter(bucket, raise_when_fail=False)

    def try_acquire_nowait(self) -> bool:
        """Take a slot if one is free, without waiting."""
        return bool(self._limiter.try_acquire("navigation"))

    async def acquire(self) -> float:
        """Wait for a free slot.

        Returns:
            Seconds spent waiting.
        """
        started = time.monotonic()
        while not self.try_acquire_nowait():
            await self._sleep(self.poll_interval_s)
        waited = time.monotonic() - started
        if waited > 0.5:
            logger.info(
                f"Navigation ceiling ({self.per_minute}/min) held the next fetch for {waited:.1f}s"
            )
        return waited
