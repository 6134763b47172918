"""
Retry logic with exponential backoff using tenacity.

Only idempotent, non-money-moving calls (such as OAuth token acquisition)
are wrapped. Transfer, funding-source and customer creation are never
retried in-process.
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

logger = structlog.get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retryable_exceptions: tuple = (
        ConnectionError,
        TimeoutError,
        httpx.TransportError,
    )


def create_async_retry_decorator(
    config: Optional[RetryConfig] = None,
    service_name: str = "Unknown Service",
) -> Callable:
    """Create a retry decorator for async functions."""

    config = config or RetryConfig()

    def _before_sleep(retry_state: RetryCallState) -> None:
        """Log retry attempts."""
        logger.warning(
            "Retrying failed async operation",
            service=service_name,
            attempt=retry_state.attempt_number,
            max_attempts=config.max_attempts,
            delay=retry_state.next_action.sleep,
            exception=str(retry_state.outcome.exception()),
        )

    wait_strategy = wait_random_exponential(
        multiplier=config.base_delay,
        max=config.max_delay,
    )

    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_strategy,
        retry=retry_if_exception_type(config.retryable_exceptions),
        before_sleep=_before_sleep,
        reraise=True,
    )


def get_token_retry_config(max_attempts: int = 3, base_delay: float = 1.0) -> RetryConfig:
    """Retry configuration for processor OAuth token requests."""
    return RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=10.0,
    )
