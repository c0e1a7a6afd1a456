"""In-memory sliding-window rate limiting.

Requests are tracked per client identifier (the caller's IP address). The
tracker lives in the container, so it is per process and not shared
between workers.
"""

import math
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

from skillrunner.core.config import Settings


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for rate limiting.

    Attributes:
        requests: Maximum number of requests allowed in the time window.
        window_seconds: Time window in seconds.
    """

    requests: int = 60
    window_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitConfig":
        return cls(
            requests=max(1, settings.RATE_LIMIT_MAX),
            window_seconds=settings.RATE_LIMIT_WINDOW_MS / 1000,
        )

    @property
    def description(self) -> str:
        return f"{self.requests} per {self.window_seconds:g}s"


class RateLimitTracker:
    """Tracks request timestamps per identifier over a sliding window."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        # Maps identifier to timestamps of requests inside the window
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._clock = clock

    def check_rate_limit(self, identifier: str, config: RateLimitConfig) -> bool:
        """Record a request if it is allowed under the limit.

        Args:
            identifier: Client identifier (IP address).
            config: Rate limit configuration.

        Returns:
            True if the request is allowed, False if the limit is exceeded.
        """
        now = self._clock()
        window_start = now - config.window_seconds

        recent = [ts for ts in self._requests[identifier] if ts > window_start]
        if len(recent) < config.requests:
            recent.append(now)
            self._requests[identifier] = recent
            return True

        self._requests[identifier] = recent
        return False

    def get_retry_after(self, identifier: str, config: RateLimitConfig) -> int:
        """Whole seconds until the oldest tracked request leaves the window."""
        timestamps = self._requests.get(identifier)
        if not timestamps:
            return 0
        expiry = min(timestamps) + config.window_seconds
        return max(1, math.ceil(expiry - self._clock()))

    def reset_for_client(self, identifier: str) -> None:
        self._requests.pop(identifier, None)

    def reset_all(self) -> None:
        self._requests.clear()

    @property
    def tracked_clients(self) -> int:
        return len(self._requests)
