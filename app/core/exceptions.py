"""
Custom exception classes for the Renewal Reminder Orchestrator.
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


class CronAuthorizationError(BaseAPIException):
    """Exception for cron triggers presenting a wrong or missing secret."""

    def __init__(self, detail: str = "Invalid cron secret"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="RRO_001",
            headers={"WWW-Authenticate": "Bearer"},
        )


class DriverDisabledError(BaseAPIException):
    """Exception for triggering a driver that is switched off by configuration."""

    def __init__(self, driver: str, detail: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"Driver '{driver}' is disabled",
            error_code="RRO_002",
            context={"driver": driver},
        )


class WebhookVerificationError(BaseAPIException):
    """Exception for a failed WhatsApp webhook verification handshake."""

    def __init__(self, detail: str = "Webhook verification failed"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="RRO_003",
        )


class InternalServerError(BaseAPIException):
    """Exception for unexpected internal errors."""

    def __init__(self, detail: str = "An unexpected internal error occurred"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="INTERNAL_SERVER_ERROR",
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


class ServiceUnavailableError(ExternalServiceError):
    """Exception for a service rejected up front (circuit open)."""

    def __init__(self, service_name: str, detail: Optional[str] = None, **context):
        super().__init__(
            service_name=service_name,
            message=detail or f"External service '{service_name}' is currently unavailable",
            **context
        )


class ExternalServiceTimeoutError(ExternalServiceError):
    """Exception for external service timeout errors."""

    def __init__(self, service_name: str, timeout_seconds: float, **context):
        super().__init__(
            service_name=service_name,
            message=f"Service timed out after {timeout_seconds} seconds",
            **context
        )
        self.timeout_seconds = timeout_seconds


class ExternalServiceRateLimitError(ExternalServiceError):
    """Exception for external service rate limiting errors."""

    def __init__(self, service_name: str, retry_after: Optional[int] = None, **context):
        super().__init__(
            service_name=service_name,
            message="Service rate limit exceeded",
            retry_after=retry_after,
            **context
        )


class GatewayError(ExternalServiceError):
    """Exception for a messaging gateway call that did not deliver."""

    def __init__(self, message: str, status_code: Optional[int] = None, **context):
        super().__init__(
            service_name="WhatsApp",
            message=message,
            status_code=status_code,
            **context
        )


class GatewayTimeoutError(GatewayError):
    """Exception for a messaging gateway call that timed out."""

    def __init__(self, timeout_seconds: float, **context):
        super().__init__(message=f"Request timed out after {timeout_seconds} seconds", **context)
        self.timeout_seconds = timeout_seconds


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

    def __init__(self, detail: str, **context):
        super().__init__(detail=detail, operation="connection", **context)


# Non-API context exceptions
class ValidationException(Exception):
    """Exception for validation errors outside API context."""

    def __init__(self, detail: str, field: Optional[str] = None, value: Optional[Any] = None):
        self.detail = detail
        self.field = field
        self.value = value
        message = f"Validation failed: {detail}"
        if field:
            message = f"Validation failed for field '{field}': {detail}"
        super().__init__(message)


class ContactChannelUnavailableError(ValidationException):
    """Exception for a subject that cannot be reached on the messaging channel."""

    def __init__(self, detail: str, subject_id: Optional[str] = None, value: Optional[Any] = None):
        self.subject_id = subject_id
        super().__init__(detail, field="phone", value=value)


class ConfigurationError(Exception):
    """Exception for settings that cannot produce a working collaborator."""

    def __init__(self, detail: str, setting: Optional[str] = None):
        self.setting = setting
        message = detail
        if setting:
            message = f"Invalid configuration '{setting}': {detail}"
        super().__init__(message)
