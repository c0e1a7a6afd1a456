"""In-process metrics and health status for the skill runner.

Counts pipeline requests, errors by type and file artifacts, keeps the
most recent request durations, and derives an overall health status
from the recent failure rate.
"""

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MAX_RECENT_REQUESTS = 1000
MIN_REQUESTS_FOR_HEALTH = 10
UNHEALTHY_FAILURE_RATE = 0.5
DEGRADED_FAILURE_RATE = 0.1


class OverallStatus(str, Enum):
    """Overall application health status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class Metrics:
    """Thread-safe request, error and file counters.

    One instance is created per process by the container and shared by the
    pipeline, the middleware and the health routes.
    """

    def __init__(self, max_recent: int = MAX_RECENT_REQUESTS) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._recent: deque[tuple[bool, float]] = deque(maxlen=max_recent)
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._errors_by_type: dict[str, int] = {}
        self._files_generated = 0
        self._files_uploaded = 0

    def record_request(self, success: bool, duration_ms: float) -> None:
        """Record one finished pipeline run.

        Args:
            success: Whether orchestration succeeded.
            duration_ms: Wall-clock duration of the run.
        """
        with self._lock:
            self._total += 1
            if success:
                self._successful += 1
            else:
                self._failed += 1
            self._recent.append((success, duration_ms))

    def record_error(self, error_type: str) -> None:
        with self._lock:
            self._errors_by_type[error_type] = self._errors_by_type.get(error_type, 0) + 1

    def record_file_generated(self, count: int = 1) -> None:
        with self._lock:
            self._files_generated += count

    def record_file_uploaded(self, count: int = 1) -> None:
        with self._lock:
            self._files_uploaded += count

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._started_at

    def health_status(self) -> OverallStatus:
        """Derive health from the failure rate of recent requests.

        Fewer than MIN_REQUESTS_FOR_HEALTH recent requests always reads as healthy.
        """
        with self._lock:
            recent = list(self._recent)
        if len(recent) < MIN_REQUESTS_FOR_HEALTH:
            return OverallStatus.HEALTHY
        failures = sum(1 for success, _ in recent if not success)
        rate = failures / len(recent)
        if rate > UNHEALTHY_FAILURE_RATE:
            return OverallStatus.UNHEALTHY
        if rate > DEGRADED_FAILURE_RATE:
            return OverallStatus.DEGRADED
        return OverallStatus.HEALTHY

    def snapshot(self) -> dict[str, Any]:
        """Return a point-in-time copy of all counters.

        Returns:
            Dict with request counts, average duration, errors by type and file counts.
        """
        with self._lock:
            durations = [duration for _, duration in self._recent]
            snapshot = {
                "requests": {
                    "total": self._total,
                    "successful": self._successful,
                    "failed": self._failed,
                    "average_duration_ms": (
                        round(sum(durations) / len(durations), 2) if durations else 0.0
                    ),
                },
                "errors": {
                    "total": sum(self._errors_by_type.values()),
                    "by_type": dict(self._errors_by_type),
                },
                "files": {
                    "generated": self._files_generated,
                    "uploaded": self._files_uploaded,
                },
            }
        snapshot["uptime_seconds"] = round(self.uptime_seconds, 1)
        return snapshot

    def reset(self) -> None:
        """Clear all counters."""
        with self._lock:
            self._recent.clear()
            self._total = self._successful = self._failed = 0
            self._errors_by_type.clear()
            self._files_generated = self._files_uploaded = 0
