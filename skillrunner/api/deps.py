"""FastAPI dependencies resolving components from app state."""

import logging
import uuid
from typing import Annotated, Any

from fastapi import Depends, Request

from skillrunner.container import Container
from skillrunner.core.config import Settings
from skillrunner.core.exceptions import RateLimitError
from skillrunner.core.monitoring import Metrics
from skillrunner.db.client import StorageClient
from skillrunner.db.executions import ExecutionStore
from skillrunner.db.results import ResultStore
from skillrunner.services.pipeline import PipelineController
from skillrunner.services.secrets import SecretStore

logger = logging.getLogger(__name__)


def get_container(request: Request) -> Container:
    """The container built in the app lifespan."""
    return request.app.state.container


def get_settings_dep(container: Annotated[Container, Depends(get_container)]) -> Settings:
    return container.settings


def get_pipeline(container: Annotated[Container, Depends(get_container)]) -> PipelineController:
    return container.pipeline


def get_secret_store(container: Annotated[Container, Depends(get_container)]) -> SecretStore:
    return container.secrets


def get_execution_store(container: Annotated[Container, Depends(get_container)]) -> ExecutionStore:
    return container.executions


def get_result_store(container: Annotated[Container, Depends(get_container)]) -> ResultStore:
    return container.results


def get_storage(container: Annotated[Container, Depends(get_container)]) -> StorageClient:
    return container.storage


def get_metrics(container: Annotated[Container, Depends(get_container)]) -> Metrics:
    return container.metrics


def get_mcp_connections(settings: Annotated[Settings, Depends(get_settings_dep)]) -> dict[str, Any]:
    """Tool connections for a request. Override to source them elsewhere."""
    return settings.mcp_connections


def get_correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid.uuid4())


# Type aliases for cleaner route signatures
AppSettings = Annotated[Settings, Depends(get_settings_dep)]
Pipeline = Annotated[PipelineController, Depends(get_pipeline)]
Secrets = Annotated[SecretStore, Depends(get_secret_store)]
Executions = Annotated[ExecutionStore, Depends(get_execution_store)]
Results = Annotated[ResultStore, Depends(get_result_store)]
Storage = Annotated[StorageClient, Depends(get_storage)]
AppMetrics = Annotated[Metrics, Depends(get_metrics)]
McpConnections = Annotated[dict[str, Any], Depends(get_mcp_connections)]
CorrelationId = Annotated[str, Depends(get_correlation_id)]


def enforce_rate_limit(request: Request, container: Annotated[Container, Depends(get_container)]) -> None:
    """Reject the request with 429 once its client exceeds the rate limit."""
    if not container.settings.RATE_LIMIT_ENABLED:
        return
    identifier = request.client.host if request.client else "unknown"
    config = container.rate_limit
    if not container.rate_limiter.check_rate_limit(identifier, config):
        raise RateLimitError(
            retry_after=container.rate_limiter.get_retry_after(identifier, config),
            limit=config.description,
        )
