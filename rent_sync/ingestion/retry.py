"""
Retry Module
============

A single combinator for "bounded attempts, per-attempt timeout, linear
backoff with optional jitter". Page fetches and store API calls both go
through it with their own policies.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from rent_sync.core.exceptions import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    How to retry one kind of operation.

    Attributes:
        attempts: Total attempts including the first (1 = no retry)
        timeout: Per-attempt timeout in seconds (None = unbounded)
        backoff: Linear backoff base; attempt N waits backoff * N
        jitter: Upper bound of uniform random seconds added to each wait
        retry_on: Exception types worth another attempt. A per-attempt
            timeout surfaces as OperationTimeoutError and is retried only
            if that type is listed.
    """

    attempts: int = 3
    timeout: float | None = 30.0
    backoff: float = 2.0
    jitter: float = 0.0
    retry_on: tuple[type[BaseException], ...] = field(default=(Exception,))

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.backoff * attempt
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay

    def with_attempts(self, attempts: int) -> RetryPolicy:
        """Copy of this policy with a different attempt count."""
        return RetryPolicy(
            attempts=attempts,
            timeout=self.timeout,
            backoff=self.backoff,
            jitter=self.jitter,
            retry_on=self.retry_on,
        )


def jittered_delay(base: float, jitter: float) -> float:
    """A base delay plus uniform random jitter, to avoid a fixed request cadence."""
    return base + (random.uniform(0, jitter) if jitter > 0 else 0.0)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    label: str,
    policy: RetryPolicy,
) -> T:
    """
    Run ``operation`` under ``policy``.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        label: Human readable name used in log lines and timeout errors
        policy: Attempts, timeout and backoff to apply

    Returns:
        The operation's result

    Raises:
        The last error once attempts are exhausted, or immediately for
        errors not covered by ``policy.retry_on``.
    """
    attempts = max(1, policy.attempts)

    for attempt in range(1, attempts + 1):
        try:
            if policy.timeout is None:
                return await operation()
            try:
                return await asyncio.wait_for(operation(), timeout=policy.timeout)
            except asyncio.TimeoutError as e:
                raise OperationTimeoutError(label, policy.timeout) from e
        except policy.retry_on as e:
            if attempt == attempts:
                logger.error(f"{label} failed after {attempts} attempt(s): {e}")
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{label} attempt {attempt}/{attempts} failed ({e}), retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
