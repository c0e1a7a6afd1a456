"""Execution and result lookup routes."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Query

from skillrunner.api.deps import Executions, Results
from skillrunner.core.exceptions import NotFoundError
from skillrunner.db.executions import MAX_LIST_LIMIT
from skillrunner.models.execution import ExecutionStatus, ExecutionTrigger
from skillrunner.models.webhook import StoredResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["executions"])


@router.get("/executions")
async def list_executions(
    executions: Executions,
    skill_id: Annotated[str | None, Query(alias="skillId")] = None,
    status: ExecutionStatus | None = None,
    trigger: ExecutionTrigger | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIST_LIMIT)] = 50,
) -> dict[str, Any]:
    """List executions, newest first."""
    rows = await executions.list_executions(
        skill_id=skill_id, status=status, trigger=trigger, limit=limit
    )
    return {
        "executions": [row.model_dump(mode="json") for row in rows],
        "count": len(rows),
    }


@router.get("/executions/{execution_id}")
async def get_execution(execution_id: str, executions: Executions) -> dict[str, Any]:
    execution = await executions.get_execution(execution_id)
    if execution is None:
        raise NotFoundError("Execution", execution_id)
    return execution.model_dump(mode="json")


@router.get("/results/{request_id}")
async def get_result(request_id: str, results: Results, executions: Executions) -> dict[str, Any]:
    """Stored result for a client request id (used to poll async requests).

    Falls back to the latest execution for the request when no result row
    was persisted, so a run that failed or is still going can be polled.
    """
    result = await results.get_result(request_id)
    if result is None:
        execution = await executions.find_latest_for_request(request_id)
        if execution is None:
            raise NotFoundError("Result", request_id)
        result = StoredResult(
            request_id=request_id,
            text=execution.output or "",
            files=[],
            metadata={
                "executionId": execution.id,
                "skillId": execution.skill_id,
                "status": execution.status.value,
                "durationMs": execution.duration_ms,
            },
        )
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)
