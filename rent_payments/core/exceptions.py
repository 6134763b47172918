"""
Custom exception classes for the Rent Payment Orchestrator Service.
"""
from typing import Optional, Any, Dict
import uuid
from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.detail,
            "correlation_id": self.correlation_id,
            "context": self.context,
        }


class ValidationError(BaseAPIException):
    """Exception for validation errors."""

    def __init__(
        self,
        detail: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **context
    ):
        error_code = "PAY_001"
        if field:
            error_code = f"PAY_001_{field.upper()}"
            detail = f"Validation failed for field '{field}': {detail}"

        context_dict = {"field": field, "value": value, **context}

        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code,
            context=context_dict,
        )


class AuthenticationRequiredError(BaseAPIException):
    """Raised when the caller's party id is missing."""

    def __init__(self, detail: str = "Authenticated party id is required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="PAY_002",
        )


class WebhookSignatureError(BaseAPIException):
    """Raised when a processor callback fails signature verification."""

    def __init__(self, detail: str = "Invalid webhook signature"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="PAY_003",
        )


class ServiceUnavailableError(BaseAPIException):
    """Exception for external service unavailability."""

    def __init__(
        self,
        service_name: str,
        detail: Optional[str] = None,
        retry_after: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.retry_after = retry_after
        error_code = "PAY_004"
        if not detail:
            detail = f"External service '{service_name}' is currently unavailable"

        context_dict = {
            "service_name": service_name,
            "retry_after": retry_after,
            **context
        }

        headers = {}
        if retry_after:
            headers["Retry-After"] = str(retry_after)

        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=error_code,
            headers=headers,
            context=context_dict,
        )


# External Service Exceptions
class ExternalServiceError(Exception):
    """Exception for external service call errors."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.status_code = status_code
        self.retry_after = retry_after
        self.context = context
        super().__init__(f"[{service_name}] {message}")


class ExternalServiceTimeoutError(ExternalServiceError):
    """Exception for external service timeout errors."""

    def __init__(self, service_name: str, timeout_seconds: float, **context):
        super().__init__(
            service_name=service_name,
            message=f"Service timed out after {timeout_seconds} seconds",
            **context
        )
        self.timeout_seconds = timeout_seconds


class ExternalServiceAuthenticationError(ExternalServiceError):
    """Exception for external service authentication errors."""

    def __init__(self, service_name: str, **context):
        super().__init__(
            service_name=service_name,
            message="Service authentication failed",
            **context
        )


class ProcessorAPIError(ExternalServiceError):
    """The money-movement processor rejected a request.

    ``error_detail`` keeps the processor's response body so it can be logged
    for reconciliation; it is never returned to end users.
    """

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        error_detail: Optional[Any] = None,
        **context
    ):
        super().__init__(
            service_name=service_name,
            message=message,
            status_code=status_code,
            **context
        )
        self.error_detail = error_detail


class CircuitBreakerOpenError(ExternalServiceError):
    """Exception for circuit breaker being open."""

    def __init__(self, service_name: str, **context):
        super().__init__(
            service_name=service_name,
            message=f"Circuit breaker is OPEN for service '{service_name}'",
            **context
        )


# Database Exceptions
class DatabaseError(Exception):
    """Exception for database-related errors."""

    def __init__(self, detail: str, operation: Optional[str] = None, **context):
        self.operation = operation
        if operation:
            context["operation"] = operation
        self.context = context
        super().__init__(detail)


class DatabaseConnectionError(DatabaseError):
    """Exception for database connection errors."""

    def __init__(self, detail: str, retry_after: Optional[int] = None, **context):
        super().__init__(
            detail=detail,
            operation="connection",
            retry_after=retry_after,
            **context
        )
        self.retry_after = retry_after


# Ledger Exceptions
class InvalidPaymentTransition(Exception):
    """Raised when a payment or transfer status change is not allowed."""

    def __init__(self, entity: str, current: str, requested: str, entity_id: Optional[str] = None):
        self.entity = entity
        self.current = current
        self.requested = requested
        self.entity_id = entity_id
        super().__init__(
            f"{entity} '{entity_id}' cannot move from '{current}' to '{requested}'"
        )


# Error mapping utilities
def map_external_service_error(external_error: ExternalServiceError) -> BaseAPIException:
    """Map external service error to API exception."""
    if isinstance(external_error, ExternalServiceTimeoutError):
        return ServiceUnavailableError(
            service_name=external_error.service_name,
            detail=f"Service timeout: {external_error}",
            retry_after=int(external_error.timeout_seconds) if external_error.timeout_seconds else None,
        )
    elif isinstance(external_error, ExternalServiceAuthenticationError):
        return ServiceUnavailableError(
            service_name=external_error.service_name,
            detail=f"Authentication failed: {external_error}",
        )
    else:
        return ServiceUnavailableError(
            service_name=external_error.service_name,
            detail=str(external_error),
        )

