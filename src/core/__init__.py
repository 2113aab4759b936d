"""Core module - configuration and utilities."""

from src.core.config import settings
from src.core.exceptions import (
    AppException,
    AuthenticationError,
    ConfigurationError,
    FunctionError,
    NotFoundError,
    PlannerError,
    RateLimitError,
    StorageError,
    TenantIsolationError,
    ValidationError,
)

__all__ = [
    "settings",
    "AppException",
    "AuthenticationError",
    "ConfigurationError",
    "FunctionError",
    "NotFoundError",
    "PlannerError",
    "RateLimitError",
    "StorageError",
    "TenantIsolationError",
    "ValidationError",
]
