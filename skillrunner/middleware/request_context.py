"""Correlation id and request timing middleware.

Provides:
- CorrelationIdMiddleware: reuses an incoming X-Request-ID or assigns a UUID.
- RequestTimingMiddleware: adds X-Response-Time and warns on slow requests.
"""

import logging
import re
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Request-ID"
SLOW_REQUEST_THRESHOLD_MS = 1000.0
_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Assign a correlation id to every request.

    - Stores the id in ``request.state.correlation_id``.
    - Returns it in the ``X-Request-ID`` response header.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        incoming = request.headers.get(CORRELATION_HEADER, "")
        correlation_id = incoming if _VALID_CORRELATION_ID.match(incoming) else str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        response: Response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Measure request duration.

    - Adds ``X-Response-Time`` header (in milliseconds).
    - Logs a WARNING for any request exceeding SLOW_REQUEST_THRESHOLD_MS.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        start = time.perf_counter()

        response: Response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000.0
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        correlation_id = getattr(request.state, "correlation_id", "unknown")
        log = logger.warning if duration_ms >= SLOW_REQUEST_THRESHOLD_MS else logger.debug
        log(
            "%s %s completed in %.2f ms [correlation_id=%s, status=%d]",
            request.method,
            request.url.path,
            duration_ms,
            correlation_id,
            response.status_code,
        )
        return response
