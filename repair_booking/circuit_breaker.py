"""Circuit breaker in front of the calendar.

Purpose: fail fast when the calendar keeps failing instead of letting every
request wait for its own timeout. The breaker never retries a call.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Calendar failing, calls fail immediately with CircuitBreakerOpen
- HALF_OPEN: After the reset timeout, one trial call is let through
"""
import time
import logging
from typing import Callable, Any, Tuple, Type
from enum import Enum

from repair_booking.errors import GatewayUnavailable

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(GatewayUnavailable):
    """Raised when circuit breaker is open (fail fast)."""
    pass


class CircuitBreaker:
    """Circuit breaker for calendar calls."""

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60,
        excluded_exceptions: Tuple[Type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds to wait before attempting half-open
            excluded_exceptions: Exceptions that are answers, not failures
                (e.g. "not found"); they pass through without counting
            clock: Monotonic time source
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.excluded_exceptions = excluded_exceptions
        self._clock = clock
        self.failure_count = 0
        self.last_failure_time = None
        self._state = CircuitState.CLOSED

    @property
    def state(self) -> str:
        """Get current state as string."""
        return self._state.value

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with circuit breaker protection.

        Raises:
            CircuitBreakerOpen: If circuit is open (fail fast)
            Exception: Whatever func raises
        """
        if self._state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker transitioning to HALF_OPEN")
            else:
                raise CircuitBreakerOpen(
                    f"Calendar circuit is OPEN. "
                    f"Retry after {self._time_until_retry():.1f}s"
                )

        try:
            result = func(*args, **kwargs)
        except self.excluded_exceptions:
            self._on_success()
            raise
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        """Check if enough time passed to attempt half-open."""
        if self.last_failure_time is None:
            return True

        elapsed = self._clock() - self.last_failure_time
        return elapsed >= self.timeout

    def _time_until_retry(self) -> float:
        """Calculate seconds until retry allowed."""
        if self.last_failure_time is None:
            return 0

        elapsed = self._clock() - self.last_failure_time
        return max(0, self.timeout - elapsed)

    def _on_success(self):
        self.failure_count = 0
        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            logger.info("Circuit breaker closed after successful half-open attempt")

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning("Circuit breaker opened after failed half-open attempt")
        elif self.failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.error(
                f"Circuit breaker opened after {self.failure_count} failures. "
                f"Timeout: {self.timeout}s"
            )
