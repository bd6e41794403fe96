"""Bounded exponential backoff for polling eventually-consistent gateway reads.

The payment gateway generates the first charge of a subscription
asynchronously, so the charge list is polled a bounded number of times with
growing delays instead of sleeping once for a fixed interval.  Every wait and
the final give-up are logged against a caller-supplied ``label`` naming the
thing being waited for (for example ``"first charge of subscription sub_1"``).
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Polling schedule for a gateway read that is not ready yet."""

    max_retries: int = Field(
        default=4,
        ge=0,
        description="Extra polls after the first one before giving up.",
    )
    base_delay: float = Field(
        default=0.5,
        gt=0.0,
        description="Wait in seconds before the first extra poll.",
    )
    max_delay: float = Field(
        default=8.0,
        gt=0.0,
        description="Upper bound on a single wait in seconds.",
    )
    jitter: bool = Field(
        default=True,
        description="Randomise each wait within [0.5x, 1.5x].",
    )

    @property
    def attempts(self) -> int:
        return self.max_retries + 1


def _compute_delay(attempt: int, config: RetryConfig) -> float:
    """Return the wait before poll number ``attempt + 1``."""
    delay: float = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


async def async_retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    *,
    label: str = "gateway read",
) -> T:
    """Await *fn* until it stops raising a retryable exception.

    Parameters
    ----------
    fn:
        Zero-argument coroutine function.  It is called once per poll and
        must be safe to call repeatedly.
    config:
        Polling schedule (see :class:`RetryConfig`).
    retryable_exceptions:
        Exceptions meaning "not ready yet".  Anything else propagates from
        the poll that raised it.
    label:
        What is being waited for; used in every log line.

    Returns
    -------
    T
        The result of the first poll that did not raise.

    Raises
    ------
    Exception
        The retryable exception from the last poll once ``config.attempts``
        polls have failed.
    """
    for attempt in range(config.attempts):
        try:
            return await fn()
        except retryable_exceptions as exc:
            if attempt + 1 >= config.attempts:
                logger.warning("Gave up waiting for %s after %d attempt(s): %s", label, config.attempts, exc)
                raise
            delay = _compute_delay(attempt, config)
            logger.info(
                "Waiting %.2fs for %s (attempt %d/%d): %s",
                delay,
                label,
                attempt + 1,
                config.attempts,
                exc,
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
