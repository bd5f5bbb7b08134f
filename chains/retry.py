"""
chains/retry.py - Exponential backoff with jitter.

Delay before retry i (0-indexed):
    min(2**i * base_delay_ms, max_delay_ms) + uniform(0, jitter_ms)

Errors for which retryable_when() is False fail immediately.
asyncio.CancelledError is never caught.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from core.constants import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    RETRY_JITTER_MS,
)
from core.exceptions import BlockflowError
from core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """
    Default retry predicate.

    Typed errors retry by code (transient infra only); anything else
    (transport exceptions, unexpected errors) is treated as transient.
    """
    if isinstance(error, BlockflowError):
        return error.retryable
    return True


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration."""
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    jitter_ms: int = RETRY_JITTER_MS
    retryable_when: Callable[[BaseException], bool] = field(default=is_retryable)

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")

    def with_retries(self, max_retries: int) -> "RetryConfig":
        """Copy with a different attempt ceiling."""
        return RetryConfig(
            max_retries=max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            jitter_ms=self.jitter_ms,
            retryable_when=self.retryable_when,
        )


class RetryPolicy:
    """
    Wraps an async operation with bounded retries.

    sleep and rng are injectable so tests can observe scheduled delays.
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self._sleep = sleep
        self._rng = rng or random.Random()

    def compute_delay_ms(self, attempt: int, config: RetryConfig) -> float:
        """Delay before retrying after failed attempt `attempt` (0-indexed)."""
        backoff = min((2 ** attempt) * config.base_delay_ms, config.max_delay_ms)
        jitter = self._rng.uniform(0, config.jitter_ms) if config.jitter_ms > 0 else 0.0
        return backoff + jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        config: Optional[RetryConfig] = None,
        operation_name: str = "operation",
    ) -> T:
        """
        Run operation up to config.max_retries times.

        Args:
            operation: Zero-argument coroutine factory
            config: Retry configuration (defaults if None)
            operation_name: Label for logs

        Returns:
            The operation's result

        Raises:
            The last observed error on exhaustion, or the first
            non-retryable error immediately.
        """
        config = config or RetryConfig()

        for attempt in range(config.max_retries):
            try:
                result = await operation()
                if attempt > 0:
                    logger.info(
                        f"Retry successful for {operation_name}",
                        extra={"context": {"attempts": attempt + 1}},
                    )
                return result
            except Exception as e:
                if not config.retryable_when(e):
                    logger.debug(
                        f"Non-retryable error in {operation_name}: {e}",
                        extra={"context": {"attempt": attempt + 1}},
                    )
                    raise

                if attempt == config.max_retries - 1:
                    logger.error(
                        f"All {config.max_retries} attempts failed for {operation_name}: {e}",
                    )
                    raise

                delay_ms = self.compute_delay_ms(attempt, config)
                logger.warning(
                    f"Attempt {attempt + 1}/{config.max_retries} failed for {operation_name}",
                    extra={"context": {"error": str(e), "retry_in_ms": int(delay_ms)}},
                )
                await self._sleep(delay_ms / 1000)

        raise ValueError(f"max_retries must be >= 1, got {config.max_retries}")
