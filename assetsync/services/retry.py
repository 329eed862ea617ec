"""Retry policies and the combinator that applies them."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait between tries.

    ``delay_for(attempt)`` is the wait *after* a failed ``attempt``
    (1-based): ``base_delay`` for fixed backoff,
    ``base_delay * 2 ** (attempt - 1)`` for exponential backoff.
    """

    max_attempts: int
    base_delay: float
    backoff: Literal["fixed", "exponential"] = "fixed"
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got: {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must not be negative, got: {self.base_delay}")

    def delay_for(self, attempt: int) -> float:
        if self.backoff == "exponential":
            return self.base_delay * 2 ** (attempt - 1)
        return self.base_delay

    @classmethod
    def fixed(
        cls,
        max_attempts: int,
        delay: float,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, base_delay=delay, backoff="fixed", retry_on=retry_on)

    @classmethod
    def exponential(cls, max_attempts: int, base_delay: float) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, base_delay=base_delay, backoff="exponential")


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    description: str = "operation",
) -> T:
    """Run ``operation(attempt)`` until it succeeds or the policy is exhausted.

    Only exceptions listed in ``policy.retry_on`` are retried; anything else
    propagates immediately. ``asyncio.CancelledError`` is a ``BaseException``
    and is never retried.

    Raises:
        The last exception raised by ``operation`` once attempts run out.
    """
    attempt = 1
    while True:
        try:
            return await operation(attempt)
        except policy.retry_on as e:
            if attempt >= policy.max_attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description}: attempt {attempt} failed ({e}). Retrying in {delay:.1f}s..."
            )
            await sleep(delay)
            attempt += 1
