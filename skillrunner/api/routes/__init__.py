"""API route modules."""

from skillrunner.api.routes import config, executions, health, webhook

__all__ = ["config", "executions", "health", "webhook"]
