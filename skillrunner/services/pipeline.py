"""Pipeline controller: the per-request state machine.

    received -> validated -> (classifying) -> executing -> finalizing -> responded
                                      any state -> failed

Each step returns an Ok / Recovered / Fatal outcome. Classification,
execution bookkeeping, file handling, result persistence and cleanup
only ever produce Recovered; the agent run is the only step whose
failure moves the run to ``failed`` and reaches the caller.
"""

import logging
import time
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from skillrunner.core.config import Settings
from skillrunner.core.exceptions import AgentError, ValidationError
from skillrunner.core.monitoring import Metrics
from skillrunner.core.results import Fatal, Ok, Recovered, StepOutcome, value_or
from skillrunner.core.tasks import BackgroundTaskScheduler
from skillrunner.db.executions import ExecutionStore
from skillrunner.db.results import ResultStore
from skillrunner.models.classification import ClassificationResult
from skillrunner.models.execution import Execution, ExecutionStatus, ExecutionTrigger
from skillrunner.models.webhook import (
    AsyncAcknowledgement,
    FileInfo,
    WebhookRequest,
    WebhookResponse,
)
from skillrunner.services.classifier import WorkflowClassifier
from skillrunner.services.files import FileArtifacts, format_files_for_response
from skillrunner.services.orchestrator import ExecutionOrchestrator, OrchestrationResult
from skillrunner.services.prompts import PromptLoader

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """States of one request's run."""

    RECEIVED = "received"
    VALIDATED = "validated"
    CLASSIFYING = "classifying"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    RESPONDED = "responded"
    FAILED = "failed"


class RunLogAdapter(logging.LoggerAdapter):
    """Adds correlation/request ids to every log line of a run."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


@dataclass
class PipelineRun:
    """Mutable context of one request as it moves through the pipeline."""

    request: WebhookRequest
    correlation_id: str
    connections: dict[str, Any]
    state: PipelineState = PipelineState.RECEIVED
    classification: ClassificationResult = field(default_factory=ClassificationResult.none)
    execution: Execution | None = None
    working_directory: str | None = None
    started_at: float = field(default_factory=time.perf_counter)

    def __post_init__(self) -> None:
        self.log = RunLogAdapter(
            logger,
            {"correlation_id": self.correlation_id, "request_id": self.request.request_id},
        )

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)

    def transition(self, state: PipelineState) -> None:
        self.log.info(
            "Pipeline %s -> %s",
            self.state.value,
            state.value,
            extra={"stage": state.value, "elapsed_ms": self.elapsed_ms},
        )
        self.state = state


class PipelineController:
    """Composes classification, execution and bookkeeping for each request."""

    def __init__(
        self,
        settings: Settings,
        classifier: WorkflowClassifier,
        executions: ExecutionStore,
        results: ResultStore,
        orchestrator: ExecutionOrchestrator,
        files: FileArtifacts,
        prompts: PromptLoader,
        scheduler: BackgroundTaskScheduler,
        metrics: Metrics,
    ) -> None:
        self._settings = settings
        self._classifier = classifier
        self._executions = executions
        self._results = results
        self._orchestrator = orchestrator
        self._files = files
        self._prompts = prompts
        self._scheduler = scheduler
        self._metrics = metrics

    def validate(self, payload: Any) -> WebhookRequest:
        """Schema-validate an incoming payload.

        Raises:
            ValidationError: The payload is not a valid request.
        """
        try:
            return WebhookRequest.model_validate(
                payload,
                context={"request_id_max_length": self._settings.REQUEST_ID_MAX_LENGTH},
            )
        except PydanticValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ())) or None
            message = first.get("msg", "Invalid request")
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            raise ValidationError(message, field=location) from e

    async def handle(
        self,
        payload: Any,
        *,
        connections: dict[str, Any],
        correlation_id: str,
    ) -> WebhookResponse | AsyncAcknowledgement:
        """Run the pipeline for one request.

        Args:
            payload: Raw request body.
            connections: Tool connections available to this request.
            correlation_id: Id tying together every log line of the request.

        Returns:
            WebhookResponse in sync mode, AsyncAcknowledgement in async mode.

        Raises:
            ValidationError: The payload failed validation (no execution recorded).
            AgentError: Orchestration failed in sync mode.
        """
        request = self.validate(payload)
        run = PipelineRun(request=request, correlation_id=correlation_id, connections=connections)
        run.transition(PipelineState.VALIDATED)

        if request.run_async:
            run.log.info("Dispatching request for async processing")
            self._scheduler.spawn(self._process_detached(run), name=f"pipeline-{request.request_id}")
            return AsyncAcknowledgement(request_id=request.request_id)

        return await self.process(run)

    async def _process_detached(self, run: PipelineRun) -> None:
        try:
            await self.process(run)
        except AgentError:
            # Already logged, counted and written to the execution record.
            run.log.info("Async processing ended in failure")

    async def process(self, run: PipelineRun) -> WebhookResponse:
        """Drive a validated run to ``responded`` or ``failed``."""
        try:
            return await self._run_stages(run)
        except Exception as e:
            await self._record_failure(run, e)
            raise

    async def _run_stages(self, run: PipelineRun) -> WebhookResponse:
        request = run.request
        if not run.connections:
            run.log.warning("No MCP connections available - agent will have no tools")

        system_prompt = await self._prompts.system_prompt(request.system_prompt)
        user_prompt_prefix = await self._prompts.user_prompt_prefix()

        if request.search_workflow:
            run.transition(PipelineState.CLASSIFYING)
            run.classification = value_or(await self._classify(run), ClassificationResult.none())
        else:
            run.log.info("Workflow search disabled")

        run.transition(PipelineState.EXECUTING)
        if run.classification.matched:
            run.execution = value_or(await self._start_execution(run), None)

        outcome = await self._execute(run, system_prompt, user_prompt_prefix)
        if isinstance(outcome, Fatal):
            raise outcome.error
        result = outcome.value
        run.working_directory = result.working_directory

        run.transition(PipelineState.FINALIZING)
        files = value_or(await self._collect_files(run, result), [])
        text = result.text + format_files_for_response(files)

        await self._persist_result(run, text, files)
        if run.execution is not None:
            await self._complete_execution(
                run,
                ExecutionStatus.COMPLETED,
                output=text,
                trace=result.trace,
                token_count=result.token_count,
                cost_usd=result.cost_usd,
            )

        self._schedule_cleanup(run, result.working_directory)
        self._metrics.record_request(True, run.elapsed_ms)
        run.transition(PipelineState.RESPONDED)

        skill = run.classification.skill
        return WebhookResponse(
            response=text,
            files=files,
            request_id=request.request_id,
            trace=result.trace,
            workflow_id=skill.id if skill else None,
            workflow=skill,
        )

    # -- steps ----------------------------------------------------------------

    async def _classify(self, run: PipelineRun) -> StepOutcome[ClassificationResult]:
        try:
            classification = await self._classifier.classify(run.request.prompt)
        except Exception as e:
            run.log.warning("Classification failed - falling back to one-off agent: %s", e)
            return Recovered("classification failed", e)
        if classification.matched:
            run.log.info(
                "Matched workflow %s",
                classification.skill.name,
                extra={
                    "skill_id": classification.skill_id,
                    "confidence": classification.confidence.value,
                    "step_count": len(classification.skill.steps),
                },
            )
        else:
            run.log.info("No workflow match - using one-off agent")
        return Ok(classification)

    async def _start_execution(self, run: PipelineRun) -> StepOutcome[Execution]:
        request = run.request
        try:
            execution = await self._executions.start_execution(
                run.classification.skill_id,
                ExecutionTrigger.WEBHOOK,
                {
                    "prompt": request.prompt,
                    "metadata": request.metadata,
                    "requestId": request.request_id,
                },
            )
        except Exception as e:
            run.log.warning("Failed to create execution (continuing untracked): %s", e)
            self._metrics.record_error(type(e).__name__)
            return Recovered("execution record not created", e)
        run.log.info("Created execution", extra={"execution_id": execution.id})
        return Ok(execution)

    async def _execute(
        self,
        run: PipelineRun,
        system_prompt: str,
        user_prompt_prefix: str | None,
    ) -> StepOutcome[OrchestrationResult]:
        run.log.info("Starting agent execution")
        try:
            result = await self._orchestrator.run(
                run.classification.skill,
                run.request.prompt,
                run.request.request_id,
                run.connections,
                system_prompt,
                user_prompt_prefix,
            )
        except AgentError as e:
            return Fatal(e)
        except Exception as e:
            return Fatal(AgentError("Agent execution failed", cause=e))
        return Ok(result)

    async def _collect_files(
        self, run: PipelineRun, result: OrchestrationResult
    ) -> StepOutcome[list[FileInfo]]:
        try:
            detected = await self._files.detect(result.working_directory)
            if not detected:
                run.log.info("No files detected")
                return Ok([])
            self._metrics.record_file_generated(len(detected))
            uploaded = await self._files.upload_all(detected, run.request.request_id)
            self._metrics.record_file_uploaded(len(uploaded))
            run.log.info("Uploaded %d/%d files", len(uploaded), len(detected))
            return Ok(uploaded)
        except Exception as e:
            run.log.error("File processing error (non-fatal): %s", e)
            self._metrics.record_error("StorageError")
            return Recovered("file processing failed", e)

    async def _persist_result(
        self, run: PipelineRun, text: str, files: list[FileInfo]
    ) -> StepOutcome[None]:
        metadata = dict(run.request.metadata or {})
        if run.execution is not None:
            metadata["executionId"] = run.execution.id
        try:
            await self._results.upsert_result(run.request.request_id, text, files, metadata)
        except Exception as e:
            run.log.error("Result persistence failed (non-fatal): %s", e)
            self._metrics.record_error(type(e).__name__)
            return Recovered("result not persisted", e)
        return Ok(None)

    async def _complete_execution(
        self,
        run: PipelineRun,
        status: ExecutionStatus,
        **fields: Any,
    ) -> StepOutcome[bool]:
        execution_id = run.execution.id
        try:
            updated = await self._executions.complete_execution(
                execution_id, status, duration_ms=run.elapsed_ms, **fields
            )
        except Exception as e:
            run.log.warning(
                "Failed to update execution (non-fatal): %s",
                e,
                extra={"execution_id": execution_id},
            )
            self._metrics.record_error(type(e).__name__)
            return Recovered("execution record not updated", e)
        return Ok(updated)

    def _schedule_cleanup(self, run: PipelineRun, working_directory: str | None) -> None:
        if working_directory:
            self._scheduler.spawn(
                self._files.cleanup(working_directory),
                name=f"cleanup-{run.request.request_id}",
            )

    async def _record_failure(self, run: PipelineRun, error: Exception) -> None:
        run.transition(PipelineState.FAILED)
        run.log.error(
            "Request failed: %s",
            error,
            extra={"error_type": type(error).__name__},
        )
        self._metrics.record_request(False, run.elapsed_ms)
        self._metrics.record_error(type(error).__name__)

        if run.execution is not None:
            message = getattr(error, "message", None) or str(error) or type(error).__name__
            await self._complete_execution(
                run,
                ExecutionStatus.FAILED,
                error=message,
                trace=getattr(error, "trace", None) or None,
            )

        working_directory = getattr(error, "working_directory", None) or run.working_directory
        self._schedule_cleanup(run, working_directory)
