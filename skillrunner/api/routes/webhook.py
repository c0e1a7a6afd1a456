"""Webhook routes: submit a prompt for execution."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from skillrunner.api.deps import AppSettings, CorrelationId, McpConnections, Pipeline
from skillrunner.core.exceptions import RequestTimeoutError, ValidationError
from skillrunner.core.resilience import with_timeout
from skillrunner.models.webhook import AsyncAcknowledgement

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Request body must be valid JSON") from e


@router.post("/webhook")
@router.post("/webhooks/prompt")
async def submit_prompt(
    request: Request,
    pipeline: Pipeline,
    connections: McpConnections,
    correlation_id: CorrelationId,
    settings: AppSettings,
) -> JSONResponse:
    """Run a prompt through the pipeline.

    Returns 200 with the agent response in sync mode, or 202 with
    ``{"status": "processing", "requestId": ...}`` when ``async`` is set.
    Past REQUEST_TIMEOUT_MS the caller gets 504 while the run finishes in
    the background and stays pollable under its request id.
    """
    payload = await _read_json(request)
    logger.info("Webhook received", extra={"correlation_id": correlation_id})

    result = await with_timeout(
        pipeline.handle(payload, connections=connections, correlation_id=correlation_id),
        settings.REQUEST_TIMEOUT_MS,
        on_timeout=RequestTimeoutError,
    )

    status_code = (
        status.HTTP_202_ACCEPTED
        if isinstance(result, AsyncAcknowledgement)
        else status.HTTP_200_OK
    )
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
