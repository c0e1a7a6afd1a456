"""Tests for the exception hierarchy and error sanitization."""

from skillrunner.core.exceptions import (
    AgentError,
    AgentTimeoutError,
    DatabaseError,
    NotFoundError,
    QueryTimeoutError,
    RateLimitError,
    RequestTimeoutError,
    StorageConnectionError,
    ValidationError,
    sanitize_error,
)


class TestSanitizeError:
    """Tests for sanitize_error."""

    def test_storage_internals_are_hidden(self) -> None:
        exc = DatabaseError('relation "executions" violates constraint fk_skill', db_code="23503")
        body = sanitize_error(exc)

        assert body == {
            "error": "DatabaseError",
            "message": "A database error occurred. Please try again.",
            "code": "DATABASE_ERROR",
        }

    def test_transient_subclasses_keep_their_code(self) -> None:
        body = sanitize_error(StorageConnectionError("host db.internal:5432 refused"))
        assert body["code"] == "STORAGE_CONNECTION_ERROR"
        assert "db.internal" not in body["message"]

        assert sanitize_error(QueryTimeoutError(15000))["code"] == "STORAGE_TIMEOUT"

    def test_validation_message_passes_through(self) -> None:
        body = sanitize_error(ValidationError("Prompt cannot be empty", field="prompt"))
        assert body["message"] == "Prompt cannot be empty"
        assert body["code"] == "VALIDATION_ERROR"

    def test_agent_error_summary_passes_through_without_cause(self) -> None:
        exc = AgentError("Agent execution failed", cause=RuntimeError("connect to 10.0.0.5:5432 failed"))

        body = sanitize_error(exc)

        assert body["error"] == "AgentError"
        assert body["message"] == "Agent execution failed"
        assert "10.0.0.5" not in body["message"]
        assert exc.message == "Agent execution failed: connect to 10.0.0.5:5432 failed"

    def test_agent_error_without_cause_keeps_message(self) -> None:
        body = sanitize_error(AgentError("Anthropic API key not configured"))
        assert body["message"] == "Anthropic API key not configured"

    def test_rate_limit_has_safe_message(self) -> None:
        body = sanitize_error(RateLimitError(retry_after=12, limit="60 per 60s"))
        assert body == {
            "error": "RateLimitError",
            "message": "Too many requests. Please try again later.",
            "code": "RATE_LIMIT_EXCEEDED",
        }

    def test_agent_timeout_has_safe_message(self) -> None:
        body = sanitize_error(AgentTimeoutError(300000))
        assert body == {
            "error": "AgentTimeoutError",
            "message": "Agent execution timed out.",
            "code": "AGENT_TIMEOUT",
        }

    def test_unknown_exception_gets_generic_message(self) -> None:
        body = sanitize_error(RuntimeError("secret=abc123"))
        assert body["code"] == "INTERNAL_ERROR"
        assert "abc123" not in body["message"]


class TestExceptionAttributes:
    """Tests for exception status codes and details."""

    def test_not_found(self) -> None:
        exc = NotFoundError("Execution", "exec-1")
        assert exc.status_code == 404
        assert exc.message == "Execution with id 'exec-1' not found"

    def test_agent_error_carries_cleanup_context(self) -> None:
        exc = AgentError(working_directory="/tmp/req-1-1", trace=[{"type": "user"}])
        assert exc.working_directory == "/tmp/req-1-1"
        assert exc.trace == [{"type": "user"}]
        assert exc.status_code == 500

    def test_agent_timeout_is_agent_error(self) -> None:
        exc = AgentTimeoutError(1000, working_directory="/tmp/x")
        assert isinstance(exc, AgentError)
        assert exc.status_code == 504
        assert exc.message == "Agent execution timeout after 1000ms"

    def test_rate_limit_error(self) -> None:
        exc = RateLimitError(retry_after=30, limit="60 per 60s")
        assert exc.status_code == 429
        assert exc.details == {"retry_after": 30, "limit": "60 per 60s"}
        assert exc.message == "Rate limit exceeded: 60 per 60s. Try again in 30 seconds."

    def test_request_timeout_error(self) -> None:
        exc = RequestTimeoutError(1500)
        assert exc.status_code == 504
        assert exc.code == "REQUEST_TIMEOUT"
        assert exc.message == "Request timeout after 1500ms"
