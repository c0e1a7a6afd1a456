"""Execution records: atomic start, idempotent completion, lookup, listing.

Starting an execution goes through the ``start_skill_execution`` Postgres
function so the skill's run counter, its last-run timestamp and the new
``running`` row commit together or not at all.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from skillrunner.core.exceptions import DatabaseError
from skillrunner.db.client import StorageClient
from skillrunner.models.execution import Execution, ExecutionStatus, ExecutionTrigger

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


class ExecutionStore:
    """Sole writer of execution state."""

    def __init__(self, storage: StorageClient) -> None:
        self._storage = storage

    async def start_execution(
        self,
        skill_id: str,
        trigger: ExecutionTrigger,
        input_payload: dict[str, Any],
    ) -> Execution:
        """Create a running execution and bump the skill's counters in one transaction.

        Attempted once. A call that times out may still commit, so retrying
        could start the same run twice.

        Args:
            skill_id: Parent skill UUID.
            trigger: What started the run.
            input_payload: Opaque request payload (prompt, metadata, requestId).

        Returns:
            The new execution with status ``running``.

        Raises:
            DatabaseError: If the transaction failed (including unknown skill).
        """
        data = await self._storage.run(
            "start_skill_execution",
            lambda c: c.rpc(
                "start_skill_execution",
                {
                    "p_skill_id": skill_id,
                    "p_trigger": trigger.value,
                    "p_input": input_payload,
                },
            ),
            retry=False,
        )
        row = data[0] if isinstance(data, list) and data else data
        if not isinstance(row, dict):
            raise DatabaseError("start_skill_execution returned no row")
        execution = Execution.model_validate(row)
        logger.info(
            "Execution started",
            extra={"execution_id": execution.id, "skill_id": skill_id, "trigger": trigger.value},
        )
        return execution

    async def complete_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        *,
        output: str | None = None,
        trace: list[dict[str, Any]] | None = None,
        error: str | None = None,
        duration_ms: int | None = None,
        token_count: int | None = None,
        cost_usd: float | None = None,
    ) -> bool:
        """Move a running execution to a terminal status.

        The update only matches rows still in ``running``, so ``completed_at``
        is written exactly once.

        Returns:
            True if this call performed the transition, False if the
            execution was already terminal (or does not exist).

        Raises:
            ValueError: If ``status`` is not terminal.
            DatabaseError: On storage failure.
        """
        if not status.is_terminal:
            raise ValueError(f"Cannot complete execution with non-terminal status {status.value}")

        update: dict[str, Any] = {
            "status": status.value,
            "completed_at": datetime.now(UTC).isoformat(),
            "duration_ms": duration_ms,
        }
        if output is not None:
            update["output"] = output
        if trace is not None:
            update["trace"] = trace
        if error is not None:
            update["error"] = error
        if token_count is not None:
            update["token_count"] = token_count
        if cost_usd is not None:
            update["cost_usd"] = cost_usd

        rows = await self._storage.run(
            "complete_execution",
            lambda c: c.table("executions")
            .update(update)
            .eq("id", execution_id)
            .eq("status", ExecutionStatus.RUNNING.value),
        )
        if not rows:
            logger.warning(
                "Execution already terminal or missing - completion ignored",
                extra={"execution_id": execution_id, "status": status.value},
            )
            return False
        logger.info(
            "Execution %s",
            status.value,
            extra={"execution_id": execution_id, "duration_ms": duration_ms},
        )
        return True

    async def get_execution(self, execution_id: str) -> Execution | None:
        rows = await self._storage.run(
            "get_execution",
            lambda c: c.table("executions").select("*").eq("id", execution_id).limit(1),
        )
        return Execution.model_validate(rows[0]) if rows else None

    async def list_executions(
        self,
        *,
        skill_id: str | None = None,
        status: ExecutionStatus | None = None,
        trigger: ExecutionTrigger | None = None,
        limit: int = 50,
    ) -> list[Execution]:
        """List executions, newest first.

        Args:
            skill_id: Only executions of this skill.
            status: Only executions in this status.
            trigger: Only executions started by this trigger.
            limit: Maximum rows, clamped to 1..MAX_LIST_LIMIT.
        """
        limit = max(1, min(limit, MAX_LIST_LIMIT))

        def build(c: Any) -> Any:
            query = c.table("executions").select("*")
            if skill_id:
                query = query.eq("skill_id", skill_id)
            if status:
                query = query.eq("status", status.value)
            if trigger:
                query = query.eq("trigger", trigger.value)
            return query.order("started_at", desc=True).limit(limit)

        rows = await self._storage.run("list_executions", build)
        return [Execution.model_validate(row) for row in rows or []]

    async def find_latest_for_request(self, request_id: str) -> Execution | None:
        """Most recent execution whose input carries this client request id."""
        rows = await self._storage.run(
            "find_execution_for_request",
            lambda c: c.table("executions")
            .select("*")
            .eq("input->>requestId", request_id)
            .order("started_at", desc=True)
            .limit(1),
        )
        return Execution.model_validate(rows[0]) if rows else None
