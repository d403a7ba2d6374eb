"""
Circuit breaker for the AI summarization provider

One ``CircuitBreaker`` instance is shared by every summarization call in a
process. It opens after a fixed number of consecutive failures and lets a
trial call through once the cool-down has elapsed. State changes happen
under a lock so concurrent workers see consistent counts.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ErrorType(Enum):
    """Classification of a provider failure."""

    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    AUTH = "auth"
    CONTENT_POLICY = "content_policy"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorClassification:
    """Retry guidance derived from a provider failure."""

    error_type: ErrorType
    retryable: bool
    backoff_seconds: Optional[float]


def classify_error(error: BaseException) -> ErrorClassification:
    """Map a provider exception to an error type and backoff hint."""
    message = str(error).lower()
    status = getattr(error, "status_code", None)

    if status == 429 or "rate limit" in message or "quota" in message or "429" in message:
        return ErrorClassification(ErrorType.RATE_LIMIT, True, 60.0)
    if "timeout" in message or "timed out" in message or "network" in message or "connection" in message:
        return ErrorClassification(ErrorType.NETWORK, True, 10.0)
    if status in (401, 403) or "invalid" in message or "unauthorized" in message or "api key" in message:
        return ErrorClassification(ErrorType.AUTH, False, None)
    if "content" in message or "safety" in message or "blocked" in message:
        return ErrorClassification(ErrorType.CONTENT_POLICY, False, None)
    return ErrorClassification(ErrorType.UNKNOWN, True, 30.0)


@dataclass
class BreakerSnapshot:
    """Point-in-time view of the breaker state."""

    failure_count: int
    last_failure_at: Optional[float]
    is_open: bool
    last_error_type: Optional[ErrorType]


class CircuitBreaker:
    """Consecutive-failure circuit breaker with a fixed cool-down."""

    def __init__(
        self,
        name: str = "summarization",
        failure_threshold: int = 3,
        cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._failure_count = 0
        self._last_failure_at: Optional[float] = None
        self._is_open = False
        self._last_error_type: Optional[ErrorType] = None

    def allow_request(self) -> bool:
        """Whether a call may proceed now.

        An open breaker whose cool-down has elapsed closes again and lets the
        call through; a failure of that call re-opens it immediately.
        """
        with self._lock:
            if not self._is_open:
                return True
            elapsed = self._clock() - (self._last_failure_at or 0.0)
            if elapsed >= self.cooldown_seconds:
                logger.info(f"Circuit '{self.name}' cool-down elapsed, closing")
                self._is_open = False
                self._failure_count = self.failure_threshold - 1
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._failure_count or self._is_open:
                logger.info(f"Circuit '{self.name}' reset after successful call")
            self._failure_count = 0
            self._is_open = False
            self._last_error_type = None

    def record_failure(self, error: BaseException) -> ErrorClassification:
        """Count a failure and open the breaker at the threshold."""
        classification = classify_error(error)
        with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._clock()
            self._last_error_type = classification.error_type
            if self._failure_count >= self.failure_threshold and not self._is_open:
                self._is_open = True
                logger.warning(
                    f"Circuit '{self.name}' opened after {self._failure_count} "
                    f"consecutive failures ({classification.error_type.value})"
                )
        return classification

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            return BreakerSnapshot(
                failure_count=self._failure_count,
                last_failure_at=self._last_failure_at,
                is_open=self._is_open,
                last_error_type=self._last_error_type,
            )

    @property
    def is_open(self) -> bool:
        return self.snapshot().is_open
