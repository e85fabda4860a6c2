"""
Retry logic with exponential backoff using tenacity.

Only idempotent store reads are retried. Sends and status writes are never
retried inside a run: a failed case stays eligible and the next scheduled
run picks it up.
"""
from typing import Callable, Optional
from dataclasses import dataclass
import httpx
import structlog
from tenacity import (
    retry,
    stop_after_attempt,
    wait_random_exponential,
    retry_if_exception_type,
    RetryCallState,
)

from app.core.exceptions import DatabaseConnectionError

logger = structlog.get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    retryable_exceptions: tuple = (
        ConnectionError,
        TimeoutError,
        httpx.TransportError,
        DatabaseConnectionError,
    )


def create_retry_decorator(
    config: Optional[RetryConfig] = None,
    operation: str = "store read",
) -> Callable:
    """Create a retry decorator with jittered exponential backoff."""

    config = config or RetryConfig()

    def _before_sleep(retry_state: RetryCallState) -> None:
        """Log retry attempts."""
        logger.warning(
            "Retrying failed operation",
            operation=operation,
            attempt=retry_state.attempt_number,
            max_attempts=config.max_attempts,
            delay=retry_state.next_action.sleep if retry_state.next_action else None,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_random_exponential(multiplier=config.base_delay, max=config.max_delay),
        retry=retry_if_exception_type(config.retryable_exceptions),
        before_sleep=_before_sleep,
        reraise=True,
    )


def get_database_retry_config(max_attempts: int = 3) -> RetryConfig:
    """Get retry configuration for database reads."""
    return RetryConfig(max_attempts=max_attempts, base_delay=0.5, max_delay=10.0)
