"""Health and metrics routes.

Provides:
- GET /health: status, uptime, database connectivity, metrics
- GET /metrics: metrics snapshot
"""

import logging
import time
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Response, status

from skillrunner.api.deps import AppMetrics, Storage
from skillrunner.core.monitoring import OverallStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(response: Response, storage: Storage, metrics: AppMetrics) -> dict[str, Any]:
    """Overall health.

    - 200 when healthy or degraded
    - 503 when the database ping fails or recent failures mark us unhealthy
    """
    start = time.perf_counter()
    database_up = await storage.ping()
    latency_ms = round((time.perf_counter() - start) * 1000, 2)

    overall = metrics.health_status() if database_up else OverallStatus.UNHEALTHY
    if overall == OverallStatus.UNHEALTHY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": overall.value,
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime_seconds": round(metrics.uptime_seconds, 1),
        "database": {"status": "up" if database_up else "down", "latency_ms": latency_ms},
        "metrics": metrics.snapshot(),
    }


@router.get("/metrics")
async def get_metrics(metrics: AppMetrics) -> dict[str, Any]:
    return {"timestamp": datetime.now(UTC).isoformat(), **metrics.snapshot()}
