"""
Reliability module initialization
"""

from .timeout_manager import (
    TimeoutCategory,
    TimeoutConfig,
    TimeoutError,
    TimeoutManager
)

from .retry_manager import (
    RetryCategory,
    RetryPolicy,
    RetryAttempt,
    RetryError,
    RetryManager
)

__all__ = [
    "TimeoutCategory",
    "TimeoutConfig",
    "TimeoutError",
    "TimeoutManager",
    "RetryCategory",
    "RetryPolicy",
    "RetryAttempt",
    "RetryError",
    "RetryManager",
]
