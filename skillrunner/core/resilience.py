"""Resilience patterns for storage calls.

Provides:
- with_retry: bounded exponential backoff, retrying only transient storage errors
- with_timeout: wall-clock deadline that abandons (never cancels) the operation
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from skillrunner.core.exceptions import QueryTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STORAGE_CODES = frozenset({"STORAGE_CONNECTION_ERROR", "STORAGE_TIMEOUT"})

DEFAULT_QUERY_TIMEOUT_MS = 15_000

# Operations abandoned by with_timeout; held so they are not garbage collected mid-flight
_abandoned: set[asyncio.Future[Any]] = set()


@dataclass(frozen=True)
class RetryConfig:
    """Retry settings for storage operations."""

    max_attempts: int = 3
    initial_delay_ms: int = 100
    backoff_multiplier: float = 2.0


def is_transient_storage_error(exc: BaseException) -> bool:
    """Return True if the error is classified as safely retryable.

    Classification reads the stable ``code`` attribute, never the message.
    """
    return getattr(exc, "code", None) in TRANSIENT_STORAGE_CODES


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    operation_name: str = "storage operation",
) -> T:
    """Run an async operation, retrying transient storage failures.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        config: Retry settings; defaults to 3 attempts, 100ms, x2.
        operation_name: Label used in log lines.

    Returns:
        The operation's result.

    Raises:
        The first non-transient error immediately, or the last transient
        error once attempts are exhausted.
    """
    config = config or RetryConfig()
    delay_ms = float(config.initial_delay_ms)
    attempt = 1

    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_transient_storage_error(exc):
                raise
            if attempt >= config.max_attempts:
                logger.error(
                    "All %d attempts exhausted for %s: %s",
                    config.max_attempts,
                    operation_name,
                    exc,
                )
                raise
            logger.warning(
                "Retry %d/%d for %s after %s (waiting %.0fms)",
                attempt,
                config.max_attempts - 1,
                operation_name,
                getattr(exc, "code", type(exc).__name__),
                delay_ms,
            )
            await asyncio.sleep(delay_ms / 1000)
            delay_ms *= config.backoff_multiplier
            attempt += 1


def _consume_abandoned(task: asyncio.Future[Any]) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned operation finished with %s: %s", type(exc).__name__, exc)


async def with_timeout(
    operation: Awaitable[T],
    timeout_ms: int = DEFAULT_QUERY_TIMEOUT_MS,
    *,
    on_timeout: Callable[[int], BaseException] = QueryTimeoutError,
) -> T:
    """Race an awaitable against a deadline.

    On expiry the caller stops waiting but the operation keeps running in
    the background; its side effects are not undone and its result is
    discarded.

    Args:
        operation: Coroutine or future to await.
        timeout_ms: Deadline in milliseconds.
        on_timeout: Factory building the exception raised on expiry.

    Returns:
        The operation's result if it finishes in time.

    Raises:
        The exception built by ``on_timeout`` (QueryTimeoutError by default).
        Errors raised by the operation itself, including its own
        ``TimeoutError``, propagate unchanged.
    """
    task = asyncio.ensure_future(operation)
    _, pending = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    if pending:
        _abandoned.add(task)
        task.add_done_callback(_consume_abandoned)
        raise on_timeout(timeout_ms)
    return task.result()


async def drain_abandoned(timeout: float = 5.0) -> int:
    """Wait briefly for abandoned operations at shutdown.

    Returns:
        Number of operations still running after the wait.
    """
    pending = [task for task in _abandoned if not task.done()]
    if not pending:
        return 0
    _, still_pending = await asyncio.wait(pending, timeout=timeout)
    return len(still_pending)
