"""
Bounded retries with capped exponential backoff
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class RetryCategory(str, Enum):
    """Operations that are retried, with stable reason codes"""
    TRANSPORT_CONNECT = "RETRY_TRANSPORT_CONNECT"
    PROTOCOL_RESEND = "RETRY_PROTOCOL_RESEND"


@dataclass
class RetryPolicy:
    """Attempt budget and backoff shape"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_enabled: bool = True
    # Fraction of the delay added or removed at random
    jitter_factor: float = 0.1
    non_retryable_exceptions: Tuple[type, ...] = ()

    def compute_delay(self, attempt: int) -> float:
        """Backoff before retrying after the given 1-based attempt"""
        delay = min(self.base_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)
        if not self.jitter_enabled:
            return delay
        spread = delay * self.jitter_factor
        return max(0.0, random.uniform(delay - spread, delay + spread))

    def is_retryable(self, exception: BaseException) -> bool:
        return not isinstance(exception, tuple(self.non_retryable_exceptions))


@dataclass
class RetryAttempt:
    """One failed attempt"""
    attempt_number: int
    exception: BaseException
    delay: float = 0.0


class RetryError(Exception):
    """The attempt budget ran out"""

    def __init__(self, category: RetryCategory, attempts: List[RetryAttempt], operation: str):
        self.category = category
        self.attempts = attempts
        self.operation = operation
        super().__init__(f"'{operation}' failed {len(attempts)} times ({category.value})")

    @property
    def last_exception(self) -> Optional[BaseException]:
        if not self.attempts:
            return None
        return self.attempts[-1].exception


DEFAULT_POLICIES = {
    RetryCategory.TRANSPORT_CONNECT: RetryPolicy(max_attempts=5),
    RetryCategory.PROTOCOL_RESEND: RetryPolicy(max_attempts=5),
}


class RetryManager:
    """Runs operations under a per-category retry policy"""

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep

    def get_policy(self, category: RetryCategory) -> RetryPolicy:
        return DEFAULT_POLICIES.get(category, RetryPolicy())

    async def execute_with_retry(
        self,
        category: RetryCategory,
        operation: str,
        coro_factory: Callable[[], Awaitable[Any]],
        policy: Optional[RetryPolicy] = None
    ) -> Any:
        """
        Await coro_factory() until it succeeds or the budget is spent

        Raises:
            RetryError: After max_attempts retryable failures
        """
        policy = policy or self.get_policy(category)
        failures: List[RetryAttempt] = []

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await coro_factory()
            except Exception as e:
                if not policy.is_retryable(e):
                    raise
                failure = RetryAttempt(attempt, e)
                failures.append(failure)
                if attempt == policy.max_attempts:
                    logger.error(f"{operation} failed {attempt} times, giving up")
                    raise RetryError(category, failures, operation) from e

                failure.delay = policy.compute_delay(attempt)
                logger.warning(f"{operation} failed ({attempt}/{policy.max_attempts}): {e}; retrying in {failure.delay:.2f}s")
                await self._sleep(failure.delay)
