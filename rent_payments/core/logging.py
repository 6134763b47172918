"""
Structured logging configuration with correlation IDs and performance timing.
"""
import logging
import sys
import time
import uuid
from typing import Any, Dict, Optional
from contextlib import contextmanager
from contextvars import ContextVar
import structlog

# Context variables for request-scoped data
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
party_id_var: ContextVar[Optional[str]] = ContextVar('party_id', default=None)
payment_id_var: ContextVar[Optional[str]] = ContextVar('payment_id', default=None)

_service_context: Dict[str, Any] = {
    "service": "rent-payment-orchestrator",
    "version": "1.0.0",
    "environment": "development",
}


def add_correlation_id(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add correlation ID to log events."""
    correlation_id = correlation_id_var.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())[:8]
        correlation_id_var.set(correlation_id)

    event_dict.setdefault("correlation_id", correlation_id)
    return event_dict


def add_request_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add request context information to log events."""
    party_id = party_id_var.get()
    if party_id:
        event_dict.setdefault("party_id", party_id)

    payment_id = payment_id_var.get()
    if payment_id:
        event_dict.setdefault("payment_id", payment_id)

    return event_dict


def add_service_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add service context to log events."""
    event_dict.update(_service_context)
    return event_dict


def add_timestamp(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = time.time()
    event_dict["iso_timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    version: Optional[str] = None,
    environment: Optional[str] = None,
) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Minimum level passed through to the stdlib handler
        service_name: Service name stamped on every event
        version: Service version stamped on every event
        environment: Deployment environment stamped on every event
    """
    if service_name:
        _service_context["service"] = service_name
    if version:
        _service_context["version"] = version
    if environment:
        _service_context["environment"] = environment

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            add_timestamp,
            add_service_context,
            add_request_context,
            add_correlation_id,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def get_business_logger() -> structlog.stdlib.BoundLogger:
    """Get a business event logger instance."""
    return structlog.get_logger("business")


def get_performance_logger() -> structlog.stdlib.BoundLogger:
    """Get a performance logger instance."""
    return structlog.get_logger("performance")


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from current context."""
    return correlation_id_var.get()


def set_party_id(party_id: str) -> None:
    """Set the authenticated party ID in the current context."""
    party_id_var.set(party_id)


def set_payment_id(payment_id: str) -> None:
    """Set the payment intent ID in the current context."""
    payment_id_var.set(payment_id)


@contextmanager
def correlation_context(correlation_id: str = None, party_id: str = None,
                        payment_id: str = None):
    """
    Context manager for setting correlation context.

    Args:
        correlation_id: Correlation ID for the request
        party_id: Authenticated party (tenant or landlord) ID
        payment_id: Payment intent ID
    """
    tokens = []
    try:
        if correlation_id:
            tokens.append((correlation_id_var, correlation_id_var.set(correlation_id)))
        if party_id:
            tokens.append((party_id_var, party_id_var.set(party_id)))
        if payment_id:
            tokens.append((payment_id_var, payment_id_var.set(payment_id)))

        yield

    finally:
        for var, token in reversed(tokens):
            var.reset(token)


@contextmanager
def performance_timing(operation_name: str, **context):
    """
    Context manager for timing operations.

    Args:
        operation_name: Name of the operation being timed
    """
    start_time = time.time()
    logger = get_performance_logger()

    try:
        yield

    finally:
        duration = time.time() - start_time
        logger.info(
            "Operation completed",
            operation=operation_name,
            duration_ms=round(duration * 1000, 2),
            **context
        )


def log_business_event(event_type: str, **kwargs):
    """
    Log a structured business event.

    Args:
        event_type: Type of business event
        **kwargs: Additional event data
    """
    logger = get_business_logger()
    logger.info("Business event", event_type=event_type, **kwargs)

