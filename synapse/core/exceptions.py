"""
Custom exception hierarchy for Synapse.
Provides structured error handling with proper HTTP status codes.
"""

import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Optional


class SynapseError(Exception):
    """Base exception for all Synapse errors."""

    error_type = "internal_server_error"
    user_message = "An unexpected error occurred. Our team has been notified."
    retry_after: Optional[int] = None

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


# =============================================================================
# Configuration Errors (500)
# =============================================================================


class ConfigurationError(SynapseError):
    """Error in application configuration."""

    error_type = "configuration_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details=details,
            status_code=500,
        )


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(SynapseError):
    """Request validation failed."""

    error_type = "validation_error"
    user_message = "Invalid input provided. Please check your data."

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details=details,
            status_code=400,
        )


class InvalidRequestError(ValidationError):
    """Invalid request parameters."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        details = {"field": field} if field else {}
        super().__init__(message=message, details=details)
        self.code = "INVALID_REQUEST"


class FileProcessingError(ValidationError):
    """Uploaded file could not be processed."""

    error_type = "file_processing_error"
    user_message = "File processing failed. Please check file format and try again."

    def __init__(self, message: str, file_name: Optional[str] = None) -> None:
        details = {"file_name": file_name} if file_name else {}
        super().__init__(message=message, details=details)
        self.code = "FILE_PROCESSING_ERROR"


class InvalidStatusTransitionError(SynapseError):
    """An analysis record was asked to move backwards in its lifecycle."""

    error_type = "conflict_error"
    user_message = "The analysis is no longer in a state that allows this change."

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            message=f"Invalid status transition: {current} -> {requested}",
            code="INVALID_STATUS_TRANSITION",
            details={"current": current, "requested": requested},
            status_code=409,
        )


# =============================================================================
# Authentication/Authorization Errors (401, 403)
# =============================================================================


class AuthenticationError(SynapseError):
    """Authentication failed."""

    error_type = "auth_error"
    user_message = "Authentication required. Please log in and try again."

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            message=message,
            code="AUTHENTICATION_REQUIRED",
            status_code=401,
        )


class AuthorizationError(SynapseError):
    """Authorization failed - insufficient permissions."""

    error_type = "security_error"
    user_message = "Access denied. Please check your permissions."

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(
            message=message,
            code="AUTHORIZATION_FAILED",
            status_code=403,
        )


class SecurityError(SynapseError):
    """Security policy violation (prompt injection, unsafe input)."""

    error_type = "security_error"
    user_message = "Access denied. Please check your permissions."

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            code="SECURITY_VIOLATION",
            details=details,
            status_code=403,
        )


# =============================================================================
# Not Found Errors (404)
# =============================================================================


class NotFoundError(SynapseError):
    """Requested resource not found."""

    error_type = "not_found_error"
    user_message = "The requested resource was not found."

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        msg = message or f"{resource_type} not found"
        if resource_id and not message:
            msg = f"{resource_type} with ID '{resource_id}' not found"

        super().__init__(
            message=msg,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
            status_code=404,
        )


class MethodNotFoundError(NotFoundError):
    """Remote procedure name is not in the routing table."""

    def __init__(self, method: str, supported: list[str]) -> None:
        super().__init__(
            resource_type="Method",
            resource_id=method,
            message=f"Unknown method: {method}",
        )
        self.code = "METHOD_NOT_FOUND"
        self.details["supported_methods"] = supported


class APIKeyNotFoundError(NotFoundError):
    """API key metadata not found."""

    def __init__(self, key_id: str) -> None:
        super().__init__(resource_type="API key", resource_id=key_id)
        self.code = "API_KEY_NOT_FOUND"


# =============================================================================
# Rate Limiting (429)
# =============================================================================


class RateLimitError(SynapseError):
    """Caller exceeded a rate limit."""

    error_type = "rate_limit_error"
    user_message = "Too many requests. Please wait before trying again."

    def __init__(self, message: str, retry_after: int = 3600) -> None:
        super().__init__(
            message=message,
            code="RATE_LIMIT_EXCEEDED",
            details={"retry_after": retry_after},
            status_code=429,
        )
        self.retry_after = retry_after


# =============================================================================
# External Service Errors (502, 503, 504)
# =============================================================================


class ExternalServiceError(SynapseError):
    """Error communicating with external service."""

    error_type = "external_service_error"
    user_message = "An external service is temporarily unavailable."
    retry_after = 300

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 502,
    ) -> None:
        super().__init__(
            message=f"{service_name} error: {message}",
            code="EXTERNAL_SERVICE_ERROR",
            details={"service": service_name, **(details or {})},
            status_code=status_code,
        )


class AIServiceError(ExternalServiceError):
    """Error communicating with the AI inference API."""

    error_type = "ai_service_error"
    user_message = "AI service is temporarily unavailable. Please try again later."

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(service_name="Claude API", message=message, details=details, status_code=503)
        self.code = "AI_SERVICE_ERROR"


class JiraServiceError(ExternalServiceError):
    """Error communicating with the issue tracker."""

    error_type = "jira_service_error"
    user_message = "Issue creation service is temporarily unavailable."

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(service_name="Jira", message=message, details=details, status_code=502)
        self.code = "JIRA_SERVICE_ERROR"


class StorageError(SynapseError):
    """Key-value store unavailable or failed."""

    error_type = "storage_error"
    user_message = "Data storage is temporarily unavailable. Please try again."
    retry_after = 300

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            message=f"storage error: {message}",
            code="STORAGE_ERROR",
            details=details,
            status_code=503,
        )


class RequestTimeoutError(SynapseError):
    """Outbound call timed out."""

    error_type = "timeout_error"
    user_message = "Request timed out. Please try again."
    retry_after = 60

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            code="TIMEOUT",
            details=details,
            status_code=504,
        )


# =============================================================================
# Classification
# =============================================================================


@dataclass
class ErrorClassification:
    """HTTP mapping for a handled exception."""

    status_code: int
    user_message: str
    error_type: str
    retry_after: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_details(self) -> dict[str, Any]:
        details: dict[str, Any] = {"type": self.error_type}
        if self.retry_after is not None:
            details["retryAfter"] = self.retry_after
        return details


# Ordered: the first matching category wins.
_MESSAGE_CATEGORIES: list[tuple[tuple[str, ...], ErrorClassification]] = [
    (
        ("security",),
        ErrorClassification(403, SecurityError.user_message, "security_error"),
    ),
    (
        ("invalid",),
        ErrorClassification(400, ValidationError.user_message, "validation_error"),
    ),
    (
        ("rate limit exceeded",),
        ErrorClassification(429, RateLimitError.user_message, "rate_limit_error", retry_after=3600),
    ),
    (
        ("claude api", "anthropic"),
        ErrorClassification(503, AIServiceError.user_message, "ai_service_error", retry_after=300),
    ),
    (
        ("jira",),
        ErrorClassification(502, JiraServiceError.user_message, "jira_service_error", retry_after=300),
    ),
    (
        ("file", "upload"),
        ErrorClassification(400, FileProcessingError.user_message, "file_processing_error"),
    ),
    (
        ("storage", "kvs", "redis"),
        ErrorClassification(503, StorageError.user_message, "storage_error", retry_after=300),
    ),
    (
        ("timeout", "network"),
        ErrorClassification(504, RequestTimeoutError.user_message, "timeout_error", retry_after=60),
    ),
    (
        ("authentication", "unauthorized"),
        ErrorClassification(401, AuthenticationError.user_message, "auth_error"),
    ),
]

_DEFAULT_CLASSIFICATION = ErrorClassification(
    500, SynapseError.user_message, "internal_server_error"
)


def classify_error(exc: BaseException) -> ErrorClassification:
    """
    Map an exception to a status code and a generic user-facing message.

    Synapse errors carry their own mapping. Anything else is matched by
    case-insensitive substring against known categories; unmatched errors
    become a generic 500.
    """
    if isinstance(exc, SynapseError):
        return ErrorClassification(
            status_code=exc.status_code,
            user_message=exc.user_message,
            error_type=exc.error_type,
            retry_after=exc.retry_after,
        )

    message = str(exc).lower()
    for needles, classification in _MESSAGE_CATEGORIES:
        if any(needle in message for needle in needles):
            return classification

    return _DEFAULT_CLASSIFICATION


def generate_error_id() -> str:
    """
    Generate a unique error id for tracing a failure across logs and responses.

    Returns:
        An id of the form err_<base36 millis>_<random hex>
    """
    millis = int(time.time() * 1000)
    return f"err_{_to_base36(millis)}_{secrets.token_hex(5)}"


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))
