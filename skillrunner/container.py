"""Explicit wiring of every component from one Settings object."""

import logging
from dataclasses import dataclass, field

from skillrunner.core.config import Settings
from skillrunner.core.monitoring import Metrics
from skillrunner.core.rate_limiter import RateLimitConfig, RateLimitTracker
from skillrunner.core.resilience import drain_abandoned
from skillrunner.core.tasks import BackgroundTaskScheduler
from skillrunner.db.client import StorageClient
from skillrunner.db.executions import ExecutionStore
from skillrunner.db.results import ResultStore
from skillrunner.db.skills import SkillRepository
from skillrunner.services.agent import AgentRunner, ClaudeAgentRunner
from skillrunner.services.classifier import (
    AnthropicClassifierClient,
    ClassifierLLM,
    WorkflowClassifier,
)
from skillrunner.services.files import FileArtifacts
from skillrunner.services.orchestrator import ExecutionOrchestrator
from skillrunner.services.pipeline import PipelineController
from skillrunner.services.prompts import PromptLoader
from skillrunner.services.secrets import SecretStore
from supabase import Client

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_TIMEOUT_S = 10.0


@dataclass
class Container:
    """Every long-lived component of the process."""

    settings: Settings
    metrics: Metrics
    scheduler: BackgroundTaskScheduler
    storage: StorageClient
    skills: SkillRepository
    executions: ExecutionStore
    results: ResultStore
    secrets: SecretStore
    classifier: WorkflowClassifier
    orchestrator: ExecutionOrchestrator
    files: FileArtifacts
    prompts: PromptLoader
    pipeline: PipelineController
    rate_limiter: RateLimitTracker
    rate_limit: RateLimitConfig
    _shut_down: bool = field(default=False, repr=False)

    async def shutdown(self) -> None:
        """Drain detached work, then release the storage handle. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down", extra={"pending_tasks": self.scheduler.pending})
        await self.scheduler.drain(SHUTDOWN_DRAIN_TIMEOUT_S)
        await drain_abandoned(timeout=1.0)
        await self.storage.shutdown()
        logger.info("Shutdown complete")


def build_container(
    settings: Settings,
    *,
    supabase_client: Client | None = None,
    agent_runner: AgentRunner | None = None,
    classifier_llm: ClassifierLLM | None = None,
) -> Container:
    """Create every component once.

    Args:
        settings: Process-wide settings.
        supabase_client: Pre-built Supabase client (created lazily otherwise).
        agent_runner: Agent capability (Claude Agent SDK by default).
        classifier_llm: Classifier capability (Anthropic Messages API by default).
    """
    metrics = Metrics()
    scheduler = BackgroundTaskScheduler(metrics)
    storage = StorageClient(settings, client=supabase_client)
    skills = SkillRepository(storage)
    executions = ExecutionStore(storage)
    results = ResultStore(storage)
    secrets = SecretStore(settings, storage)
    classifier = WorkflowClassifier(
        skills, classifier_llm or AnthropicClassifierClient(settings, secrets)
    )
    orchestrator = ExecutionOrchestrator(settings, agent_runner or ClaudeAgentRunner(), secrets)
    files = FileArtifacts(settings, storage)
    prompts = PromptLoader(settings)
    pipeline = PipelineController(
        settings=settings,
        classifier=classifier,
        executions=executions,
        results=results,
        orchestrator=orchestrator,
        files=files,
        prompts=prompts,
        scheduler=scheduler,
        metrics=metrics,
    )
    return Container(
        settings=settings,
        metrics=metrics,
        scheduler=scheduler,
        storage=storage,
        skills=skills,
        executions=executions,
        results=results,
        secrets=secrets,
        classifier=classifier,
        orchestrator=orchestrator,
        files=files,
        prompts=prompts,
        pipeline=pipeline,
        rate_limiter=RateLimitTracker(),
        rate_limit=RateLimitConfig.from_settings(settings),
    )
