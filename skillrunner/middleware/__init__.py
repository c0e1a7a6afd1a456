"""HTTP middleware for the skill runner."""

from skillrunner.middleware.request_context import CorrelationIdMiddleware, RequestTimingMiddleware

__all__ = ["CorrelationIdMiddleware", "RequestTimingMiddleware"]
