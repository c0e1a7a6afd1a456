"""Tests for the HTTP surface."""

import time
from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError
from pydantic import SecretStr

from skillrunner.api.deps import get_mcp_connections
from skillrunner.container import Container, build_container
from skillrunner.core.config import Settings
from skillrunner.core.exceptions import AgentError, AgentTimeoutError
from skillrunner.main import create_app
from skillrunner.models.execution import Execution, ExecutionStatus
from skillrunner.models.webhook import StoredResult
from tests.helpers import TEST_API_KEY, FakeAgentRunner, result_message


@pytest.fixture
def api_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"ANTHROPIC_API_KEY": SecretStr(TEST_API_KEY)})


def _build_container(
    settings: Settings, mock_supabase: MagicMock, runner: FakeAgentRunner | None = None
) -> Container:
    table = mock_supabase.table.return_value
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=[])
    table.select.return_value.eq.return_value.order.return_value.limit.return_value.execute.return_value = (
        MagicMock(data=[])
    )
    table.select.return_value.limit.return_value.execute.return_value = MagicMock(data=[])
    table.upsert.return_value.execute.return_value = MagicMock(data=[{}])
    classifier_llm = MagicMock()
    classifier_llm.complete = AsyncMock(return_value='{"match": false}')
    return build_container(
        settings,
        supabase_client=mock_supabase,
        agent_runner=runner or FakeAgentRunner([result_message("Hello from the agent")]),
        classifier_llm=classifier_llm,
    )


@pytest.fixture
def container(api_settings: Settings, mock_supabase: MagicMock) -> Container:
    return _build_container(api_settings, mock_supabase)


@pytest.fixture
def client(api_settings: Settings, container: Container) -> Iterator[TestClient]:
    with TestClient(create_app(api_settings, container=container)) as test_client:
        yield test_client


class TestWebhook:
    """Tests for POST /webhook."""

    def test_sync_request(self, client: TestClient) -> None:
        response = client.post(
            "/webhook", json={"prompt": "hello", "requestId": "req-1"}, headers={"X-Request-ID": "corr-abc"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["response"] == "Hello from the agent"
        assert body["requestId"] == "req-1"
        assert body["files"] == []
        assert "workflowId" not in body
        assert response.headers["X-Request-ID"] == "corr-abc"
        assert response.headers["X-Response-Time"].endswith("ms")

    def test_alternate_path(self, client: TestClient) -> None:
        response = client.post("/webhooks/prompt", json={"prompt": "hello"})

        assert response.status_code == 200
        assert response.json()["requestId"].startswith("req-")

    def test_async_request_is_accepted(self, client: TestClient) -> None:
        response = client.post("/webhook", json={"prompt": "hello", "requestId": "req-2", "async": True})

        assert response.status_code == 202
        assert response.json() == {"status": "processing", "requestId": "req-2"}

    def test_validation_error(self, client: TestClient) -> None:
        response = client.post("/webhook", json={"prompt": ""})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["error"] == "ValidationError"
        assert body["correlationId"] == response.headers["X-Request-ID"]

    def test_body_must_be_json(self, client: TestClient) -> None:
        response = client.post(
            "/webhook", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Request body must be valid JSON"

    def test_agent_failure(self, client: TestClient, container: Container) -> None:
        container.pipeline.handle = AsyncMock(
            side_effect=AgentError("Agent execution failed", cause=RuntimeError("boom"))
        )

        response = client.post("/webhook", json={"prompt": "hello"})

        assert response.status_code == 500
        assert response.json()["code"] == "AGENT_ERROR"
        assert response.json()["message"] == "Agent execution failed"
        assert "boom" not in response.text

    def test_agent_timeout(self, client: TestClient, container: Container) -> None:
        container.pipeline.handle = AsyncMock(side_effect=AgentTimeoutError(300000))

        response = client.post("/webhook", json={"prompt": "hello"})

        assert response.status_code == 504
        assert response.json()["code"] == "AGENT_TIMEOUT"

    def test_unexpected_failure_is_sanitized(self, api_settings: Settings, container: Container) -> None:
        container.pipeline.handle = AsyncMock(side_effect=RuntimeError("secret internals"))
        app = create_app(api_settings, container=container)
        with TestClient(app, raise_server_exceptions=False) as failing:
            response = failing.post("/webhook", json={"prompt": "hello"})

        assert response.status_code == 500
        assert "secret internals" not in response.text
        assert response.json()["code"] == "INTERNAL_ERROR"

    def test_request_deadline_returns_504(self, api_settings: Settings, mock_supabase: MagicMock) -> None:
        """A run slower than REQUEST_TIMEOUT_MS answers 504 and keeps running."""
        slow_settings = api_settings.model_copy(update={"REQUEST_TIMEOUT_MS": 100})
        runner = FakeAgentRunner([result_message("late answer")], delay=0.4)
        slow_container = _build_container(slow_settings, mock_supabase, runner)

        with TestClient(create_app(slow_settings, container=slow_container)) as slow_client:
            response = slow_client.post("/webhook", json={"prompt": "hello", "requestId": "req-slow"})
            time.sleep(0.6)

        assert response.status_code == 504
        body = response.json()
        assert body["code"] == "REQUEST_TIMEOUT"
        assert body["message"] == "The request did not complete in time."
        assert len(runner.requests) == 1
        upserted = mock_supabase.table.return_value.upsert.call_args.args[0]
        assert upserted["request_id"] == "req-slow"


class TestRateLimit:
    """Tests for per-client rate limiting."""

    @pytest.fixture
    def limited_client(self, api_settings: Settings, mock_supabase: MagicMock) -> Iterator[TestClient]:
        limited = api_settings.model_copy(update={"RATE_LIMIT_MAX": 2, "RATE_LIMIT_WINDOW_MS": 60_000})
        with TestClient(create_app(limited, container=_build_container(limited, mock_supabase))) as test_client:
            yield test_client

    def test_rejects_requests_over_the_limit(self, limited_client: TestClient) -> None:
        statuses = [limited_client.post("/webhook", json={"prompt": "hello"}).status_code for _ in range(2)]

        response = limited_client.post("/webhook", json={"prompt": "hello"})

        assert statuses == [200, 200]
        assert response.status_code == 429
        body = response.json()
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["message"] == "Too many requests. Please try again later."
        assert 1 <= int(response.headers["Retry-After"]) <= 60

    def test_limit_spans_api_routes(self, limited_client: TestClient) -> None:
        limited_client.get("/api/config")
        limited_client.get("/api/config")

        assert limited_client.post("/webhook", json={"prompt": "hello"}).status_code == 429

    def test_health_is_not_limited(self, limited_client: TestClient) -> None:
        for _ in range(4):
            response = limited_client.get("/health")

        assert response.status_code == 200

    def test_can_be_disabled(self, api_settings: Settings, mock_supabase: MagicMock) -> None:
        unlimited = api_settings.model_copy(update={"RATE_LIMIT_MAX": 1, "RATE_LIMIT_ENABLED": False})
        with TestClient(create_app(unlimited, container=_build_container(unlimited, mock_supabase))) as test_client:
            statuses = [test_client.post("/webhook", json={"prompt": "hello"}).status_code for _ in range(3)]

        assert statuses == [200, 200, 200]

class TestConfigRoutes:
    """Tests for /api/config."""

    def test_get_without_stored_key(self, client: TestClient) -> None:
        response = client.get("/api/config")

        assert response.status_code == 200
        assert response.json() == {"hasApiKey": False, "maskedApiKey": None, "apiKeyUpdatedAt": None}

    def test_store_key(self, client: TestClient, mock_supabase: MagicMock) -> None:
        key = "sk-ant-REDACTED"

        response = client.post("/api/config", json={"anthropic_api_key": key})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "API key saved successfully",
            "maskedApiKey": "sk-ant-...mnop",
        }
        row = mock_supabase.table.return_value.upsert.call_args.args[0]
        assert row["key"] == "anthropic_api_key"
        assert row["value"].startswith("encrypted:")
        assert key not in row["value"]

    @pytest.mark.parametrize(
        ("payload", "message"),
        [
            ({}, "anthropic_api_key is required"),
            ({"anthropic_api_key": "sk-live-abcdefghijklmnopqrstuv"}, "Invalid API key format"),
            ({"anthropic_api_key": "sk-ant-short"}, "API key is too short"),
        ],
    )
    def test_rejects_bad_keys(self, client: TestClient, payload: dict, message: str) -> None:
        response = client.post("/api/config", json=payload)

        assert response.status_code == 400
        assert response.json()["message"].startswith(message)


class TestExecutionRoutes:
    """Tests for /api/executions and /api/results."""

    def test_missing_execution(self, client: TestClient) -> None:
        response = client.get("/api/executions/exec-missing")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_missing_result(self, client: TestClient) -> None:
        response = client.get("/api/results/req-missing")

        assert response.status_code == 404

    def test_result_falls_back_to_latest_execution(self, client: TestClient, container: Container) -> None:
        container.executions.find_latest_for_request = AsyncMock(
            return_value=Execution(
                id="exec-9",
                skill_id="skill-weekly",
                status=ExecutionStatus.FAILED,
                output=None,
                duration_ms=1200,
            )
        )

        response = client.get("/api/results/req-failed")

        assert response.status_code == 200
        assert response.json() == {
            "requestId": "req-failed",
            "text": "",
            "files": [],
            "metadata": {
                "executionId": "exec-9",
                "skillId": "skill-weekly",
                "status": "failed",
                "durationMs": 1200,
            },
        }
        container.executions.find_latest_for_request.assert_awaited_once_with("req-failed")

    def test_stored_result_wins_over_execution(self, client: TestClient, container: Container) -> None:
        container.results.get_result = AsyncMock(
            return_value=StoredResult(request_id="req-done", text="final answer")
        )
        container.executions.find_latest_for_request = AsyncMock()

        response = client.get("/api/results/req-done")

        assert response.status_code == 200
        assert response.json()["text"] == "final answer"
        container.executions.find_latest_for_request.assert_not_awaited()

    def test_limit_is_bounded(self, client: TestClient) -> None:
        response = client.get("/api/executions", params={"limit": 500})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_list(self, client: TestClient, container: Container) -> None:
        container.executions.list_executions = AsyncMock(return_value=[])

        response = client.get("/api/executions", params={"skillId": "skill-weekly", "status": "failed"})

        assert response.status_code == 200
        assert response.json() == {"executions": [], "count": 0}
        kwargs = container.executions.list_executions.await_args.kwargs
        assert kwargs["skill_id"] == "skill-weekly"
        assert kwargs["status"].value == "failed"


class TestHealthRoutes:
    """Tests for /health and /metrics."""

    def test_healthy(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"]["status"] == "up"
        assert "requests" in body["metrics"]

    def test_database_down(self, client: TestClient, mock_supabase: MagicMock) -> None:
        execute = mock_supabase.table.return_value.select.return_value.limit.return_value.execute
        execute.side_effect = APIError({"message": "permission denied", "code": "42501"})

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["database"]["status"] == "down"

    def test_metrics_counts_requests(self, client: TestClient) -> None:
        client.post("/webhook", json={"prompt": "hello"})

        body = client.get("/metrics").json()

        assert body["requests"]["total"] == 1
        assert body["requests"]["successful"] == 1

    def test_root(self, client: TestClient) -> None:
        assert client.get("/").json() == {"name": "skillrunner", "version": "1.0.0"}


class TestDependencies:
    """Tests for dependency overrides."""

    def test_connections_dependency_is_replaceable(self, api_settings: Settings, container: Container) -> None:
        app = create_app(api_settings, container=container)
        app.dependency_overrides[get_mcp_connections] = lambda: {"jira": {"command": "jira-mcp"}}

        with TestClient(app) as test_client:
            response = test_client.post("/webhook", json={"prompt": "hello"})

        assert response.status_code == 200
        runner = container.orchestrator._runner
        assert runner.requests[-1].mcp_servers == {"jira": {"command": "jira-mcp"}}
