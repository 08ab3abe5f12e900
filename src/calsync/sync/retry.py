"""Retry/backoff wrapper around remote calendar calls.

Attempt 0 is the initial try; up to ``RetryPolicy.max_attempts`` retries
follow.  Only transient failures are retried; anything else propagates on
the spot.  When every attempt fails transiently a
:class:`~calsync.sync.errors.RetryExhaustedError` chained to the last error
is raised.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field

from calsync.core.metrics import SyncMetrics
from calsync.sync.errors import RetryExhaustedError, TransientRemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses a provider adapter may surface via httpx.HTTPStatusError that
# are worth retrying (rate limiting and temporary unavailability).
RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}

# Fraction of the computed delay used as the upper bound of added jitter.
JITTER_FRACTION = 0.1


class RetryPolicy(BaseModel):
    """Backoff parameters for one call site."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_ms: int = Field(default=30000, ge=0)
    jitter: bool = True

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    def calculate_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Return the delay in milliseconds before retry number *attempt* (0-based).

        ``min(max_delay, initial_delay * multiplier ** attempt)``, plus a
        uniformly random amount in ``[0, 0.1 * delay]`` when jitter is on.
        Attempt indices outside ``[0, max_attempts)`` yield 0.
        """
        if attempt < 0 or attempt >= self.max_attempts:
            return 0.0

        delay = min(float(self.max_delay_ms), self.initial_delay_ms * self.multiplier**attempt)
        if self.jitter:
            delay += (rng or random).uniform(0.0, delay * JITTER_FRACTION)
        return delay


def is_transient(exc: BaseException) -> bool:
    """Return True when *exc* is a remote failure that is safe to retry."""
    if isinstance(exc, TransientRemoteError):
        return True
    if isinstance(exc, httpx.TimeoutException | httpx.ConnectError | httpx.RemoteProtocolError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RATE_LIMIT_RETRY_STATUS_CODES
    return False


class RetryExecutor:
    """Execute async operations with exponential backoff on transient errors.

    Parameters
    ----------
    policy:
        Default policy for calls that do not pass their own.
    sleep:
        Awaitable sleep used between attempts (seconds).  Injected by tests.
    rng:
        Random source for jitter.
    metrics:
        Optional metrics wrapper; each retry increments a counter.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        metrics: SyncMetrics | None = None,
    ) -> None:
        self._policy = policy or RetryPolicy.default()
        self._sleep = sleep
        self._rng = rng
        self._metrics = metrics

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        description: str = "remote call",
    ) -> T:
        """Run *operation*, retrying transient failures per *policy*."""
        policy = policy or self._policy
        total_attempts = policy.max_attempts + 1
        attempt = 0

        while True:
            try:
                return await operation()
            except Exception as exc:
                if not is_transient(exc):
                    logger.debug("Non-retryable error during %s: %s", description, exc)
                    raise
                if attempt >= policy.max_attempts:
                    logger.error(
                        "%s failed after initial attempt and %d retry attempts",
                        description,
                        attempt,
                    )
                    raise RetryExhaustedError(total_attempts, exc) from exc

                delay_ms = policy.calculate_delay(attempt, self._rng)
                logger.warning(
                    "Transient error during %s (attempt %d/%d), retrying in %.0fms: %s",
                    description,
                    attempt + 1,
                    total_attempts,
                    delay_ms,
                    exc,
                )
                if self._metrics is not None:
                    self._metrics.record_retry(description)
                await self._sleep(delay_ms / 1000.0)
                attempt += 1
