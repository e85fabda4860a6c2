"""
Circuit breaker for outbound calls to the messaging provider and notification service.
"""
import time
from enum import Enum
from typing import Callable, Any, Dict, Optional
from dataclasses import dataclass
import structlog
from app.core.exceptions import ServiceUnavailableError

logger = structlog.get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5
    success_threshold: int = 2
    timeout: int = 60
    half_open_max_calls: int = 3


@dataclass
class CircuitBreakerMetrics:
    """Call counters for monitoring."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    circuit_open_count: int = 0

    @property
    def failure_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.failed_calls / self.total_calls


class CircuitBreaker:
    """
    Circuit breaker for external service calls.

    While OPEN every call is rejected with ServiceUnavailableError without
    reaching the provider. After ``timeout`` seconds a limited number of
    trial calls are let through (HALF_OPEN); enough successes close the
    circuit again, any failure reopens it.
    """

    def __init__(
        self,
        service_name: str = "Unknown Service",
        config: Optional[CircuitBreakerConfig] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._monotonic = monotonic

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED
        self.half_open_calls = 0

        self.metrics = CircuitBreakerMetrics()

    def __call__(self, func: Callable) -> Callable:
        """Decorator to wrap coroutine functions with circuit breaker."""

        async def wrapper(*args, **kwargs) -> Any:
            return await self.call_async(func, *args, **kwargs)

        return wrapper

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """Execute async function with circuit breaker protection."""
        self._before_call()

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _before_call(self) -> None:
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition_to_half_open()
            else:
                self.metrics.rejected_calls += 1
                logger.warning(
                    "Circuit breaker rejecting call - OPEN state",
                    service=self.service_name,
                    failure_count=self.failure_count,
                )
                raise ServiceUnavailableError(
                    self.service_name,
                    f"Circuit breaker is OPEN for {self.service_name}",
                )

        if self.state == CircuitState.HALF_OPEN:
            if self.half_open_calls >= self.config.half_open_max_calls:
                self.metrics.rejected_calls += 1
                raise ServiceUnavailableError(
                    self.service_name,
                    f"Circuit breaker half-open limit reached for {self.service_name}",
                )
            self.half_open_calls += 1

        self.metrics.total_calls += 1

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt circuit reset."""
        return (
            self.last_failure_time is not None
            and self._monotonic() - self.last_failure_time >= self.config.timeout
        )

    def _transition_to_half_open(self) -> None:
        self.state = CircuitState.HALF_OPEN
        self.half_open_calls = 0
        self.success_count = 0
        logger.info("Circuit breaker transitioning to half-open", service=self.service_name)

    def _on_success(self) -> None:
        self.metrics.successful_calls += 1

        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.success_count = 0
                self.failure_count = 0
                self.half_open_calls = 0
                logger.info("Circuit breaker reset to closed", service=self.service_name)
        else:
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.metrics.failed_calls += 1
        self.failure_count += 1
        self.last_failure_time = self._monotonic()

        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.OPEN
            self.metrics.circuit_open_count += 1
            logger.warning(
                "Circuit breaker reopened from half-open",
                service=self.service_name,
                failure_count=self.failure_count,
            )
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
            self.state = CircuitState.OPEN
            self.metrics.circuit_open_count += 1
            logger.warning(
                "Circuit breaker opened",
                service=self.service_name,
                failure_count=self.failure_count,
                threshold=self.config.failure_threshold,
            )

    def get_status(self) -> Dict[str, Any]:
        """Get current circuit breaker status."""
        return {
            "service": self.service_name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.config.failure_threshold,
            "is_available": self.state != CircuitState.OPEN,
            "metrics": {
                "total_calls": self.metrics.total_calls,
                "successful_calls": self.metrics.successful_calls,
                "failed_calls": self.metrics.failed_calls,
                "rejected_calls": self.metrics.rejected_calls,
                "failure_rate": round(self.metrics.failure_rate, 4),
                "circuit_open_count": self.metrics.circuit_open_count,
            },
        }

    def reset(self) -> None:
        """Reset circuit breaker to closed state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.half_open_calls = 0
        self.last_failure_time = None
        self.metrics = CircuitBreakerMetrics()
        logger.info("Circuit breaker manually reset", service=self.service_name)
