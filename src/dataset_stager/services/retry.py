"""Bounded exponential-backoff retry policy for external calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

_logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an async operation with exponential backoff.

    The wait after failed attempt ``n`` is ``base_delay_seconds *
    multiplier ** (n - 1)``, capped at ``max_delay_seconds``. Retrying stops at
    ``max_attempts`` attempts or once ``max_elapsed_seconds`` have passed,
    whichever comes first, and the last exception is re-raised.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 10.0
    max_elapsed_seconds: float = 120.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    sleep: Sleeper = field(default=asyncio.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_before(self, attempt_number: int) -> float:
        """Return the backoff wait preceding ``attempt_number`` (2-based)."""
        if attempt_number <= 1:
            return 0.0
        delay = self.base_delay_seconds * self.multiplier ** (attempt_number - 2)
        return min(delay, self.max_delay_seconds)

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds or the policy is exhausted."""
        retrying = AsyncRetrying(
            stop=(
                stop_after_attempt(self.max_attempts)
                | stop_after_delay(self.max_elapsed_seconds)
            ),
            wait=wait_exponential(
                multiplier=self.base_delay_seconds,
                exp_base=self.multiplier,
                min=0,
                max=self.max_delay_seconds,
            ),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=before_sleep_log(_logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )
        return await retrying(operation)
