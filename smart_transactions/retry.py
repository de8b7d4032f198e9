"""
Retry policy for client-side resubmission.

Only transport-level failures are retried, and always with the same signed
bytes; the submission engine owns the loop and asks this module whether and
when to go again.
"""

import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Type

from .exceptions import (
    Cancelled,
    LifetimeExpired,
    SimulationRejected,
    TransportTransient,
)

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Retries allowed after the first attempt (0 = single attempt)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay cap in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Whether to add random jitter to delays
        jitter_factor: Maximum jitter as fraction of delay (0.0-1.0)
        retryable_exceptions: Exceptions that allow another attempt
        non_retryable_exceptions: Exceptions that never allow another attempt
    """
    max_retries: int = 0
    base_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.2
    retryable_exceptions: Tuple[Type[BaseException], ...] = (TransportTransient,)
    non_retryable_exceptions: Tuple[Type[BaseException], ...] = (
        LifetimeExpired,
        SimulationRejected,
        Cancelled,
    )

    def __post_init__(self):
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")


class BackoffStrategy(ABC):
    """Abstract base class for backoff strategies."""

    @abstractmethod
    def get_delay(self, attempt: int, config: RetryConfig) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        pass

    def _apply_jitter(self, delay: float, config: RetryConfig) -> float:
        if config.jitter and config.jitter_factor > 0:
            jitter_range = delay * config.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)
        return max(0, min(delay, config.max_delay))


class ExponentialBackoff(BackoffStrategy):
    """delay = base_delay * (exponential_base ^ (attempt - 1))"""

    def get_delay(self, attempt: int, config: RetryConfig) -> float:
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
        return self._apply_jitter(min(delay, config.max_delay), config)


class ConstantBackoff(BackoffStrategy):
    """delay = base_delay"""

    def get_delay(self, attempt: int, config: RetryConfig) -> float:
        return self._apply_jitter(config.base_delay, config)


def should_retry(exception: BaseException, config: RetryConfig, attempt: int) -> bool:
    """Whether failed attempt number ``attempt`` (1-based) may be followed by another."""
    if attempt > config.max_retries:
        return False

    if isinstance(exception, config.non_retryable_exceptions):
        return False

    return isinstance(exception, config.retryable_exceptions)


@dataclass
class RetryStatistics:
    """Running totals across submissions made by one engine."""

    total_submissions: int = 0
    successful_submissions: int = 0
    failed_submissions: int = 0
    total_retries: int = 0
    exceptions_by_type: Dict[str, int] = field(default_factory=dict)
    last_exception: Optional[BaseException] = None
    last_success_time: Optional[float] = None
    last_failure_time: Optional[float] = None

    def record_submission(self, success: bool, retries: int):
        self.total_submissions += 1
        self.total_retries += retries

        if success:
            self.successful_submissions += 1
            self.last_success_time = time.time()
        else:
            self.failed_submissions += 1
            self.last_failure_time = time.time()

    def record_exception(self, exc: BaseException):
        exc_type = type(exc).__name__
        self.exceptions_by_type[exc_type] = self.exceptions_by_type.get(exc_type, 0) + 1
        self.last_exception = exc


__all__ = [
    "RetryConfig",
    "BackoffStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "should_retry",
    "RetryStatistics",
]
