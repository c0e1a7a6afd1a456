"""Custom exceptions for the skill runner."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "NotFoundError": "The requested resource was not found.",
    "ConfigurationError": "The service is not configured correctly.",
    "StorageConnectionError": "The database is temporarily unavailable.",
    "StorageTimeoutError": "The database did not respond in time.",
    "DatabaseError": "A database error occurred. Please try again.",
    "AgentTimeoutError": "Agent execution timed out.",
    "RateLimitError": "Too many requests. Please try again later.",
    "RequestTimeoutError": "The request did not complete in time.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."

# Exceptions whose own summary is safe to show the caller; a wrapped cause is not
_PASSTHROUGH = ("ValidationError", "AgentError")


def sanitize_error(e: Exception) -> dict[str, str]:
    """Map an exception to a safe, user-facing error body.

    Only the class name, a classified code and a safe message leave the
    process. Storage internals and secret material never do.

    Args:
        e: The exception to sanitize.

    Returns:
        Dict with ``error``, ``message`` and ``code`` keys.
    """
    code = getattr(e, "code", None)
    if not isinstance(code, str):
        code = "INTERNAL_ERROR"

    message = _DEFAULT_MESSAGE
    # Walk the MRO to find the most specific matching type
    for cls in type(e).__mro__:
        if cls.__name__ in _SAFE_MESSAGES:
            message = _SAFE_MESSAGES[cls.__name__]
            break
        if cls.__name__ in _PASSTHROUGH and isinstance(e, SkillRunnerException):
            message = getattr(e, "summary", e.message)
            break

    return {"error": type(e).__name__, "message": message, "code": code}


class SkillRunnerException(Exception):
    """Base exception for all skill runner errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize skill runner exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ValidationError(SkillRunnerException):
    """Request payload failed validation (400). No execution is recorded."""

    def __init__(self, message: str, field: str | None = None) -> None:
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details,
        )


class NotFoundError(SkillRunnerException):
    """Resource not found error (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class ConfigurationError(SkillRunnerException):
    """Missing or invalid configuration (500)."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="CONFIGURATION_ERROR", status_code=500)


class DatabaseError(SkillRunnerException):
    """Non-transient storage failure (500)."""

    def __init__(
        self,
        message: str = "Database operation failed",
        code: str = "DATABASE_ERROR",
        status_code: int = 500,
        db_code: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code=code,
            status_code=status_code,
            details={"db_code": db_code} if db_code else {},
        )
        self.db_code = db_code


class StorageConnectionError(DatabaseError):
    """The store could not be reached. Safe to retry."""

    def __init__(self, message: str = "Database connection failed", db_code: str | None = None) -> None:
        super().__init__(
            message=message,
            code="STORAGE_CONNECTION_ERROR",
            status_code=503,
            db_code=db_code,
        )


class StorageTimeoutError(DatabaseError):
    """The store did not answer in time. Safe to retry."""

    def __init__(self, message: str = "Database request timed out") -> None:
        super().__init__(message=message, code="STORAGE_TIMEOUT", status_code=504)


class QueryTimeoutError(StorageTimeoutError):
    """Raised by the timeout guard when a storage query exceeds its deadline."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Query timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class AgentError(SkillRunnerException):
    """Agent orchestration failed (500).

    Carries the working directory and whatever trace was gathered so the
    caller can clean up and record the failure.
    """

    def __init__(
        self,
        message: str = "Agent execution failed",
        *,
        cause: BaseException | None = None,
        working_directory: str | None = None,
        trace: list[dict[str, Any]] | None = None,
        code: str = "AGENT_ERROR",
        status_code: int = 500,
    ) -> None:
        summary = message
        if cause is not None and str(cause) and str(cause) not in message:
            message = f"{message}: {cause}"
        super().__init__(message=message, code=code, status_code=status_code)
        self.summary = summary
        self.cause = cause
        self.working_directory = working_directory
        self.trace = trace or []


class AgentTimeoutError(AgentError):
    """The whole agent run exceeded AGENT_TIMEOUT_MS (504)."""

    def __init__(
        self,
        timeout_ms: int,
        *,
        working_directory: str | None = None,
        trace: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            f"Agent execution timeout after {timeout_ms}ms",
            working_directory=working_directory,
            trace=trace,
            code="AGENT_TIMEOUT",
            status_code=504,
        )
        self.timeout_ms = timeout_ms
        self.partial_text: str = ""


class ClassificationError(SkillRunnerException):
    """Workflow classification failed. Always recovered inside the classifier."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="CLASSIFICATION_ERROR", status_code=500)


class RateLimitError(SkillRunnerException):
    """Client exceeded the request rate limit (429)."""

    def __init__(self, retry_after: int, limit: str, message: str | None = None) -> None:
        super().__init__(
            message=message or f"Rate limit exceeded: {limit}. Try again in {retry_after} seconds.",
            code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details={"retry_after": retry_after, "limit": limit},
        )
        self.retry_after = retry_after


class RequestTimeoutError(SkillRunnerException):
    """A request exceeded REQUEST_TIMEOUT_MS (504). Work already started keeps running."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(
            message=f"Request timeout after {timeout_ms}ms",
            code="REQUEST_TIMEOUT",
            status_code=504,
        )
        self.timeout_ms = timeout_ms
