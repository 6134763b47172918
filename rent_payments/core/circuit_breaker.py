"""
Circuit breaker implementation for external service calls.
"""
import time
from enum import Enum
from typing import Callable, Any, Optional, List
from dataclasses import dataclass, field
import structlog
from rent_payments.core.exceptions import CircuitBreakerOpenError

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
    success_threshold: int = 3
    timeout: int = 60
    half_open_max_calls: int = 5


@dataclass
class CircuitBreakerMetrics:
    """Circuit breaker metrics for monitoring."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    circuit_open_count: int = 0
    last_state_change: Optional[float] = None
    failure_rate: float = 0.0
    average_response_time: float = 0.0
    response_times: List[float] = field(default_factory=list)

    def update_metrics(self, success: bool, response_time: float) -> None:
        """Update metrics after a call."""
        self.total_calls += 1

        if success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1

        self.response_times.append(response_time)
        if len(self.response_times) > 100:  # Keep last 100 response times
            self.response_times.pop(0)

        if self.total_calls > 0:
            self.failure_rate = self.failed_calls / self.total_calls

        if self.response_times:
            self.average_response_time = sum(self.response_times) / len(self.response_times)


class CircuitBreaker:
    """Circuit breaker for external service calls.

    ``is_failure`` decides whether a raised exception counts against the
    circuit. Business rejections from a healthy service (for example a
    processor refusing an invalid bank account) should not open it.
    """

    def __init__(
        self,
        service_name: str = "Unknown Service",
        config: Optional[CircuitBreakerConfig] = None,
        is_failure: Optional[Callable[[Exception], bool]] = None,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self.is_failure = is_failure or (lambda exc: True)

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        self.state = CircuitState.CLOSED
        self.half_open_calls = 0

        self.metrics = CircuitBreakerMetrics()

    def __call__(self, func: Callable) -> Callable:
        """Decorator to wrap functions with circuit breaker."""

        async def wrapper(*args, **kwargs) -> Any:
            return await self.call_async(func, *args, **kwargs)

        return wrapper

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """Execute async function with circuit breaker protection."""
        start_time = time.time()

        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition_to_half_open()
            else:
                logger.warning(
                    "Circuit breaker rejecting call - OPEN state",
                    service=self.service_name,
                    failure_count=self.failure_count,
                    last_failure_time=self.last_failure_time,
                )
                raise CircuitBreakerOpenError(self.service_name)

        if self.state == CircuitState.HALF_OPEN:
            if self.half_open_calls >= self.config.half_open_max_calls:
                logger.warning(
                    "Circuit breaker rejecting call - half-open limit reached",
                    service=self.service_name,
                    half_open_calls=self.half_open_calls,
                )
                raise CircuitBreakerOpenError(self.service_name)
            self.half_open_calls += 1

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            response_time = time.time() - start_time
            if self.is_failure(e):
                self._on_failure(response_time)
            else:
                self._on_success(response_time)
            raise

        self._on_success(time.time() - start_time)
        return result

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt circuit reset."""
        return bool(
            self.last_failure_time
            and time.time() - self.last_failure_time >= self.config.timeout
        )

    def _transition_to_half_open(self) -> None:
        """Transition circuit breaker to half-open state."""
        self.state = CircuitState.HALF_OPEN
        self.half_open_calls = 0
        self.success_count = 0
        self.metrics.last_state_change = time.time()
        logger.info(
            "Circuit breaker transitioning to half-open",
            service=self.service_name,
        )

    def _on_success(self, response_time: float) -> None:
        """Handle successful call."""
        self.metrics.update_metrics(True, response_time)

        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.success_count = 0
                self.failure_count = 0
                self.half_open_calls = 0
                self.metrics.last_state_change = time.time()
                logger.info(
                    "Circuit breaker reset to closed",
                    service=self.service_name,
                )
        else:
            self.failure_count = 0
            self.success_count = 0

    def _on_failure(self, response_time: float) -> None:
        """Handle failed call."""
        self.metrics.update_metrics(False, response_time)
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == CircuitState.HALF_OPEN:
            # Any failure while probing reopens the circuit
            self.state = CircuitState.OPEN
            self.metrics.circuit_open_count += 1
            self.metrics.last_state_change = time.time()
            logger.warning(
                "Circuit breaker reopened from half-open",
                service=self.service_name,
                failure_count=self.failure_count,
            )
        elif self.failure_count >= self.config.failure_threshold:
            self.state = CircuitState.OPEN
            self.metrics.circuit_open_count += 1
            self.metrics.last_state_change = time.time()
            logger.warning(
                "Circuit breaker opened",
                service=self.service_name,
                failure_count=self.failure_count,
                threshold=self.config.failure_threshold,
            )

    def get_status(self) -> dict[str, Any]:
        """Get current circuit breaker status."""
        return {
            "service": self.service_name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "failure_threshold": self.config.failure_threshold,
            "success_threshold": self.config.success_threshold,
            "half_open_calls": self.half_open_calls,
            "half_open_max_calls": self.config.half_open_max_calls,
            "is_available": self.state != CircuitState.OPEN,
            "last_failure_time": self.last_failure_time,
            "metrics": {
                "total_calls": self.metrics.total_calls,
                "successful_calls": self.metrics.successful_calls,
                "failed_calls": self.metrics.failed_calls,
                "failure_rate": round(self.metrics.failure_rate, 4),
                "average_response_time": round(self.metrics.average_response_time, 3),
                "circuit_open_count": self.metrics.circuit_open_count,
            }
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
