"""
Retry mechanism for operations that may hit optimistic-concurrency conflicts.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.01,
                 max_delay: float = 0.5,
                 exponential_base: float = 2.0,
                 jitter: bool = True):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


async def run_with_retry(operation: Callable[[], Awaitable[Any]],
                         exceptions: tuple = (Exception,),
                         config: Optional[RetryConfig] = None,
                         name: str = "operation") -> Any:
    """Run ``operation`` until it succeeds or attempts run out.

    The operation is re-invoked from scratch on every attempt, so it must
    re-read whatever state it depends on. When attempts are exhausted the
    last exception is re-raised unchanged.
    """
    if config is None:
        config = RetryConfig()

    logger = get_logger(f"retry.{name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await operation()
            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, operation=name)
            return result

        except exceptions as e:
            if attempt == config.max_attempts:
                logger.warning(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    operation=name,
                    error=str(e)
                )
                raise

            delay = _calculate_delay(attempt, config)
            logger.debug(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                operation=name,
                error=str(e)
            )
            await asyncio.sleep(delay)


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay between retry attempts."""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))

    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
