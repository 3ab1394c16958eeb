"""Bounded retry for mutating storage calls.

Fixed delay between attempts. Existence probes never go through here: a
not-found answer is a state, not a transient failure.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TypeVar

from blockrepair.config import RetryConfig
from blockrepair.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def retry_any(exc: Exception) -> bool:
    return True


class RetryExhaustedError(Exception):
    """Raised when an operation failed on every allowed attempt."""

    def __init__(self, operation: str, attempts: int, last_error: Exception) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a storage mutation is retried."""

    max_attempts: int = 3
    delay_seconds: float = 2.0
    is_retryable: Callable[[Exception], bool] = field(default=retry_any)
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_config(cls, cfg: RetryConfig) -> RetryPolicy:
        return cls(max_attempts=cfg.max_attempts, delay_seconds=cfg.delay_seconds)

    def excluding(self, *errors: type[Exception]) -> RetryPolicy:
        """Same policy, but errors of the given types fail on the first attempt."""
        is_retryable = self.is_retryable
        return replace(
            self, is_retryable=lambda e: not isinstance(e, errors) and is_retryable(e)
        )

    async def run(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Await fn() until it succeeds or attempts run out.

        Raises:
            RetryExhaustedError: After max_attempts retryable failures.
            Exception: A non-retryable error from fn, unchanged.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn()
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt >= self.max_attempts:
                    raise RetryExhaustedError(operation, attempt, e) from e
                logger.warning(
                    "Storage operation failed, retrying",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=self.delay_seconds,
                    error=str(e),
                )
            await self.sleep(self.delay_seconds)
