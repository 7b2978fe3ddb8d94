"""
Deadlines for blocking ceremony operations
Each category maps to a TimeoutConfig field and a stable reason code
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TimeoutCategory(str, Enum):
    """Blocking operations that carry a deadline"""
    TRANSPORT_CONNECT = "TIMEOUT_TRANSPORT_CONNECT"
    TRANSPORT_PUBLISH = "TIMEOUT_TRANSPORT_PUBLISH"
    TRANSPORT_DRAIN = "TIMEOUT_TRANSPORT_DRAIN"
    PROTOCOL_RECEIVE = "TIMEOUT_PROTOCOL_RECEIVE"
    SERVICE_STARTUP = "TIMEOUT_SERVICE_STARTUP"


@dataclass
class TimeoutConfig:
    """Deadline in seconds per category; field names follow the category names"""
    transport_connect: float = 10.0
    transport_publish: float = 5.0
    transport_drain: float = 5.0
    # None waits forever
    protocol_receive: Optional[float] = 120.0
    service_startup: float = 300.0
    default_timeout: float = 30.0


class TimeoutError(Exception):
    """A categorized operation missed its deadline"""

    def __init__(self, category: TimeoutCategory, timeout_seconds: float, operation: str):
        self.category = category
        self.timeout_seconds = timeout_seconds
        self.operation = operation
        super().__init__(f"'{operation}' exceeded {timeout_seconds}s ({category.value})")


class TimeoutManager:
    """Applies the configured deadline for a category to an awaitable"""

    def __init__(self, config: Optional[TimeoutConfig] = None):
        self.config = config or TimeoutConfig()

    def get_timeout(self, category: Union[TimeoutCategory, str]) -> Optional[float]:
        try:
            category = TimeoutCategory(category)
        except ValueError:
            logger.warning(f"No deadline configured for {category}, using default")
            return self.config.default_timeout
        return getattr(self.config, category.name.lower())

    async def execute_with_timeout(
        self,
        category: TimeoutCategory,
        operation: str,
        coro: Awaitable[T],
        timeout: Optional[float] = None
    ) -> T:
        """
        Await coro under the category deadline

        Args:
            category: Deadline category, also the reason code on expiry
            operation: Human-readable label for logs
            coro: Awaitable to run
            timeout: Explicit deadline overriding the configured one

        Raises:
            TimeoutError: If the deadline passes first
        """
        deadline = self.get_timeout(category) if timeout is None else timeout
        if deadline is None:
            return await coro

        try:
            return await asyncio.wait_for(coro, timeout=deadline)
        except asyncio.TimeoutError:
            logger.warning(f"{operation} gave up after {deadline}s ({category.value})")
            raise TimeoutError(category, deadline, operation)
