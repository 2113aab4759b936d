"""Custom exceptions for the application."""

from datetime import datetime
from typing import Any


class AppException(Exception):
    """Base exception for application errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ConfigurationError(AppException):
    """Raised when there's a configuration problem."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class ValidationError(AppException):
    """Raised when inbound arguments are malformed. Never retried."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field} if field else {},
        )


class AuthenticationError(AppException):
    """Raised when the request carries no usable tenant principal."""

    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message, code="UNAUTHORIZED")


class NotFoundError(AppException):
    """Raised when a tenant-scoped record does not exist."""

    status_code = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            f"{resource} not found: {resource_id}",
            code="NOT_FOUND",
            details={"resource": resource, "id": resource_id},
        )


class RateLimitError(AppException):
    """Raised when admission control rejects a turn."""

    status_code = 429

    def __init__(
        self,
        tenant_id: str,
        identifier: str,
        limit: int,
        remaining: int,
        reset_at: datetime,
        retry_after: int,
    ) -> None:
        super().__init__(
            f"Rate limit exceeded for {tenant_id}:{identifier}",
            code="RATE_LIMIT_EXCEEDED",
            details={
                "tenant_id": tenant_id,
                "limit": limit,
                "remaining": remaining,
                "reset_at": reset_at.isoformat(),
                "retry_after": retry_after,
            },
        )
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.retry_after = retry_after


class StorageError(AppException):
    """Raised when the document store fails or times out."""

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"operation": operation} if operation else {},
        )


class DuplicateDocumentError(StorageError):
    """Raised when a create collides with an existing unique key."""

    status_code = 409

    def __init__(self, collection: str, unique_key: str, existing_id: str | None = None) -> None:
        super().__init__(f"Duplicate {collection} for key {unique_key}", operation="create")
        self.code = "DUPLICATE_DOCUMENT"
        self.collection = collection
        self.unique_key = unique_key
        self.existing_id = existing_id
        self.details.update({"collection": collection, "existing_id": existing_id})


class PlannerError(AppException):
    """Raised when the language-model planner fails, times out or returns garbage."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(
            message,
            code="PLANNER_ERROR",
            details={"provider": provider} if provider else {},
        )


class LLMError(PlannerError):
    """Raised when every configured LLM model fails."""


class FunctionError(AppException):
    """Raised inside a function handler; always captured into a FunctionResult."""

    def __init__(self, message: str, error: str = "internal", function_name: str | None = None) -> None:
        super().__init__(
            message,
            code="FUNCTION_ERROR",
            details={"error": error, "function": function_name},
        )
        self.error = error


class TenantIsolationError(FunctionError):
    """Raised when an argument resolves to a record owned by another tenant."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(
            f"{collection} {record_id} is not accessible for this tenant",
            error="tenant_isolation",
        )
        self.code = "TENANT_ISOLATION"
        self.details.update({"collection": collection, "record_id": record_id})


class PaymentProviderError(AppException):
    """Raised when the payment provider rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(
            message,
            code="PAYMENT_PROVIDER_ERROR",
            details={"provider_status_code": status_code} if status_code else {},
        )


class ChannelError(AppException):
    """Raised when channel operations fail."""

    def __init__(self, message: str, channel: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            code="CHANNEL_ERROR",
            details={"channel": channel, **(details or {})},
        )
