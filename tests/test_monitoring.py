"""Tests for metrics, health status and the background task scheduler."""

import asyncio

import pytest

from skillrunner.core.monitoring import Metrics, OverallStatus
from skillrunner.core.tasks import BackgroundTaskScheduler


class TestMetrics:
    """Tests for Metrics."""

    def test_snapshot(self) -> None:
        metrics = Metrics()
        metrics.record_request(True, 100)
        metrics.record_request(False, 300)
        metrics.record_error("AgentError")
        metrics.record_error("AgentError")
        metrics.record_file_generated(3)
        metrics.record_file_uploaded(2)

        snapshot = metrics.snapshot()

        assert snapshot["requests"] == {
            "total": 2,
            "successful": 1,
            "failed": 1,
            "average_duration_ms": 200.0,
        }
        assert snapshot["errors"] == {"total": 2, "by_type": {"AgentError": 2}}
        assert snapshot["files"] == {"generated": 3, "uploaded": 2}
        assert snapshot["uptime_seconds"] >= 0

    def test_reset(self) -> None:
        metrics = Metrics()
        metrics.record_request(True, 10)
        metrics.record_error("X")

        metrics.reset()

        assert metrics.snapshot()["requests"]["total"] == 0
        assert metrics.snapshot()["errors"]["by_type"] == {}

    @pytest.mark.parametrize(
        ("failures", "expected"),
        [
            (0, OverallStatus.HEALTHY),
            (1, OverallStatus.HEALTHY),
            (2, OverallStatus.DEGRADED),
            (6, OverallStatus.UNHEALTHY),
        ],
    )
    def test_health_from_failure_rate(self, failures: int, expected: OverallStatus) -> None:
        metrics = Metrics()
        for i in range(10):
            metrics.record_request(i >= failures, 10)

        assert metrics.health_status() == expected

    def test_few_requests_read_as_healthy(self) -> None:
        metrics = Metrics()
        for _ in range(5):
            metrics.record_request(False, 10)

        assert metrics.health_status() == OverallStatus.HEALTHY


class TestBackgroundTaskScheduler:
    """Tests for BackgroundTaskScheduler."""

    @pytest.mark.asyncio
    async def test_runs_detached_work(self) -> None:
        scheduler = BackgroundTaskScheduler()
        done = asyncio.Event()

        async def work() -> None:
            done.set()

        scheduler.spawn(work(), name="work")
        assert await scheduler.drain(timeout=1.0) == 0
        assert done.is_set()
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_failures_are_counted(self) -> None:
        metrics = Metrics()
        scheduler = BackgroundTaskScheduler(metrics)

        async def fail() -> None:
            raise RuntimeError("boom")

        scheduler.spawn(fail(), name="fail")
        await scheduler.drain(timeout=1.0)

        assert metrics.snapshot()["errors"]["by_type"] == {"RuntimeError": 1}

    @pytest.mark.asyncio
    async def test_drain_reports_stragglers(self) -> None:
        scheduler = BackgroundTaskScheduler()
        release = asyncio.Event()

        scheduler.spawn(release.wait(), name="slow")

        assert await scheduler.drain(timeout=0.05) == 1
        release.set()
        await asyncio.sleep(0)

    @pytest.mark.asyncio
    async def test_rejects_work_after_drain(self) -> None:
        scheduler = BackgroundTaskScheduler()
        await scheduler.drain()
        ran = False

        async def work() -> None:
            nonlocal ran
            ran = True

        scheduler.spawn(work(), name="late")
        await asyncio.sleep(0)

        assert not ran
        assert scheduler.pending == 0
