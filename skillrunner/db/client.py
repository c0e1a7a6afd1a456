"""Supabase storage handle with pool bound, timeout, retry and lifecycle."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx
from postgrest.exceptions import APIError

from skillrunner.core.config import Settings
from skillrunner.core.exceptions import (
    DatabaseError,
    SkillRunnerException,
    StorageConnectionError,
    StorageTimeoutError,
)
from skillrunner.core.resilience import RetryConfig, with_retry, with_timeout
from supabase import Client, create_client

logger = logging.getLogger(__name__)

# Anything exposing a blocking .execute() (postgrest query / rpc builders)
QueryBuilder = Any


def translate_storage_error(exc: BaseException) -> SkillRunnerException:
    """Map a Supabase/PostgREST/httpx failure onto the storage error hierarchy.

    Connection and timeout classes become transient errors (retried by
    ``with_retry``); everything else becomes a plain DatabaseError.
    """
    if isinstance(exc, SkillRunnerException):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return StorageTimeoutError(f"Database request timed out: {type(exc).__name__}")
    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError, ConnectionError)):
        return StorageConnectionError(f"Database connection failed: {type(exc).__name__}")
    if isinstance(exc, APIError):
        db_code = str(exc.code) if exc.code else None
        # SQLSTATE class 08 = connection exception
        if db_code and db_code.startswith("08"):
            return StorageConnectionError(exc.message or "Database connection failed", db_code=db_code)
        return DatabaseError(exc.message or "Database operation failed", db_code=db_code)
    return DatabaseError(f"Database operation failed: {exc}")


class StorageClient:
    """Process-wide Supabase handle.

    The underlying client is created once on first use. Every query goes
    through the pool bound (DB_POOL_SIZE concurrent calls), then the
    timeout guard (DB_QUERY_TIMEOUT_MS), then the retry policy. Writes that
    are not idempotent opt out of retry.
    """

    def __init__(self, settings: Settings, client: Client | None = None) -> None:
        self._settings = settings
        self._client = client
        self._init_lock = asyncio.Lock()
        self._pool = asyncio.Semaphore(settings.DB_POOL_SIZE)
        self._retry = RetryConfig(
            max_attempts=settings.DB_RETRY_MAX_ATTEMPTS,
            initial_delay_ms=settings.DB_RETRY_INITIAL_DELAY_MS,
            backoff_multiplier=settings.DB_RETRY_BACKOFF_MULTIPLIER,
        )
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def get_client(self) -> Client:
        """Get or create the Supabase client.

        Returns:
            Initialized Supabase client.

        Raises:
            DatabaseError: If the handle was shut down or initialization fails.
        """
        if self._closed:
            raise DatabaseError("Storage client has been shut down")
        if self._client is not None:
            return self._client
        async with self._init_lock:
            if self._client is None:
                if not self._settings.has_database:
                    raise StorageConnectionError("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not configured")
                try:
                    self._client = create_client(
                        self._settings.SUPABASE_URL,
                        self._settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
                    )
                    logger.info("Supabase client initialized successfully")
                except Exception as e:
                    logger.exception("Failed to initialize Supabase client")
                    raise DatabaseError(f"Failed to initialize database connection: {e}") from e
        return self._client

    async def _in_pool(self, fn: Callable[..., Any], *args: Any, timeout_ms: int) -> Any:
        """Run a blocking call on a worker thread holding one pool slot.

        The slot is released when the thread finishes, not when the caller
        stops waiting, so calls abandoned by the timeout guard still count
        against DB_POOL_SIZE.
        """
        await self._pool.acquire()
        try:
            future = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        except BaseException:
            self._pool.release()
            raise
        future.add_done_callback(lambda _: self._pool.release())
        return await with_timeout(future, timeout_ms)

    async def run(
        self,
        operation_name: str,
        build: Callable[[Client], QueryBuilder],
        *,
        timeout_ms: int | None = None,
        retry: bool = True,
    ) -> Any:
        """Execute one query with pool bound, timeout and retry.

        Args:
            operation_name: Label used in logs.
            build: Given the client, returns a query builder to ``.execute()``.
            timeout_ms: Per-attempt deadline; defaults to DB_QUERY_TIMEOUT_MS.
            retry: Pass False for writes that are not idempotent. A timed-out
                attempt may still commit, so those get exactly one attempt.

        Returns:
            The response ``data`` payload.

        Raises:
            DatabaseError: Or one of its transient subclasses after retries.
        """
        deadline = timeout_ms or self._settings.DB_QUERY_TIMEOUT_MS
        policy = self._retry if retry else RetryConfig(max_attempts=1)

        async def attempt() -> Any:
            client = await self.get_client()
            try:
                response = await self._in_pool(lambda: build(client).execute(), timeout_ms=deadline)
            except Exception as e:
                raise translate_storage_error(e) from e
            return response.data

        return await with_retry(attempt, policy, operation_name=operation_name)

    async def run_blocking(self, operation_name: str, fn: Callable[[Client], Any]) -> Any:
        """Run a blocking client call that is not a query (e.g. file storage).

        Pool-bounded and deadline-guarded, but never retried.
        """
        client = await self.get_client()
        try:
            return await self._in_pool(fn, client, timeout_ms=self._settings.DB_QUERY_TIMEOUT_MS)
        except Exception as e:
            logger.warning("%s failed: %s", operation_name, e)
            raise

    async def ping(self) -> bool:
        """Trivial connectivity check.

        Returns:
            True if a minimal round trip to the store succeeded.
        """
        try:
            await self.run(
                "ping",
                lambda c: c.table("config").select("key").limit(1),
                timeout_ms=min(self._settings.DB_QUERY_TIMEOUT_MS, 5000),
            )
            return True
        except Exception as e:
            logger.error("Database connectivity check failed: %s", e)
            return False

    async def shutdown(self) -> None:
        """Release the client. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        client, self._client = self._client, None
        if client is None:
            return
        try:
            session = getattr(getattr(client, "postgrest", None), "session", None)
            if session is not None:
                await asyncio.to_thread(session.close)
        except Exception as e:
            logger.warning("Error while closing Supabase client: %s", e)
        logger.info("Storage client shut down")
