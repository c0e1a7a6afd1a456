"""Configuration management using Pydantic Settings."""

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Built once at startup and handed to every component constructor.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Server
    PORT: int = 3001
    APP_ENV: Literal["development", "staging", "production", "test"] = "development"
    CORS_ORIGINS: str = "*"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # Supabase (relational store + file storage)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")
    SUPABASE_STORAGE_BUCKET: str = "agent-files"

    # Storage pool / timeout / retry
    DB_POOL_SIZE: int = 5
    DB_QUERY_TIMEOUT_MS: int = 15_000
    DB_RETRY_MAX_ATTEMPTS: int = 3
    DB_RETRY_INITIAL_DELAY_MS: int = 100
    DB_RETRY_BACKOFF_MULTIPLIER: float = 2.0

    # Secrets
    VM_ENCRYPTION_SECRET: SecretStr = SecretStr("")
    ANTHROPIC_API_KEY: SecretStr = SecretStr("")

    # Agent execution
    AGENT_MODEL: str = "claude-sonnet-4-20250514"
    AGENT_TIMEOUT_MS: int = 300_000
    DISALLOWED_TOOLS: str = ""
    WORKING_DIRECTORY_ROOT: str = "/tmp"

    # Workflow execution and classification
    WORKFLOW_AGENT_MODEL: str = "claude-haiku-4-5-20251001"
    CLASSIFIER_MODEL: str = "claude-haiku-4-5-20251001"
    CLASSIFIER_MAX_TOKENS: int = 300

    # Prompts
    SYSTEM_PROMPT_FILE: str = ""
    USER_PROMPT_PREFIX_FILE: str = ""

    # Files
    MAX_FILE_SIZE_MB: int = 50

    # Requests
    REQUEST_ID_MAX_LENGTH: int = 100
    REQUEST_TIMEOUT_MS: int = 360_000

    # Rate limiting (per client, sliding window)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_MAX: int = 60
    RATE_LIMIT_WINDOW_MS: int = 60_000

    # Tool connections (JSON object keyed by connection name)
    MCP_CONNECTIONS: str = ""

    @field_validator("SUPABASE_URL")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate that SUPABASE_URL is a valid URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def disallowed_tools_list(self) -> list[str]:
        """Get disallowed agent tools as a list."""
        return [tool.strip() for tool in self.DISALLOWED_TOOLS.split(",") if tool.strip()]

    @property
    def mcp_connections(self) -> dict[str, Any]:
        """Parse MCP_CONNECTIONS, falling back to no connections on bad JSON."""
        if not self.MCP_CONNECTIONS.strip():
            return {}
        try:
            parsed = json.loads(self.MCP_CONNECTIONS)
        except json.JSONDecodeError:
            logger.warning("MCP_CONNECTIONS is not valid JSON - ignoring it")
            return {}
        if not isinstance(parsed, dict):
            logger.warning("MCP_CONNECTIONS must be a JSON object - ignoring it")
            return {}
        return parsed

    @property
    def max_file_size_bytes(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def has_database(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value())


@dataclass
class ValidationReport:
    """Outcome of validate_config()."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_config(settings: Settings) -> ValidationReport:
    """Check settings for values that would break or degrade the service.

    Args:
        settings: Settings to check.

    Returns:
        ValidationReport with hard errors and soft warnings.
    """
    report = ValidationReport()

    if not (1 <= settings.PORT <= 65535):
        report.errors.append(f"PORT must be between 1 and 65535 (got {settings.PORT})")
    if settings.DB_POOL_SIZE < 1:
        report.errors.append(f"DB_POOL_SIZE must be at least 1 (got {settings.DB_POOL_SIZE})")
    if settings.DB_RETRY_MAX_ATTEMPTS < 1:
        report.errors.append(
            f"DB_RETRY_MAX_ATTEMPTS must be at least 1 (got {settings.DB_RETRY_MAX_ATTEMPTS})"
        )
    if settings.RATE_LIMIT_MAX < 1:
        report.errors.append(f"RATE_LIMIT_MAX must be at least 1 (got {settings.RATE_LIMIT_MAX})")

    if not settings.has_database:
        report.warnings.append(
            "SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not set - database operations will fail"
        )
    if not settings.VM_ENCRYPTION_SECRET.get_secret_value():
        report.warnings.append("VM_ENCRYPTION_SECRET not set - secrets cannot be stored")
    if not settings.ANTHROPIC_API_KEY.get_secret_value():
        report.warnings.append(
            "ANTHROPIC_API_KEY not set - the key will be loaded from the config table at runtime"
        )
    if not settings.mcp_connections:
        report.warnings.append("MCP_CONNECTIONS not set - agent will have no tools available")
    if settings.AGENT_TIMEOUT_MS < 1000:
        report.warnings.append(
            f"AGENT_TIMEOUT_MS is very low ({settings.AGENT_TIMEOUT_MS}ms) - "
            "agent execution may time out too quickly"
        )
    if settings.DB_QUERY_TIMEOUT_MS < 1000:
        report.warnings.append(f"DB_QUERY_TIMEOUT_MS is very low ({settings.DB_QUERY_TIMEOUT_MS}ms)")
    if settings.REQUEST_TIMEOUT_MS < 1000:
        report.warnings.append(
            f"REQUEST_TIMEOUT_MS is very low ({settings.REQUEST_TIMEOUT_MS}ms) - "
            "requests may time out too quickly"
        )
    if settings.RATE_LIMIT_WINDOW_MS < 1000:
        report.warnings.append(f"RATE_LIMIT_WINDOW_MS is very low ({settings.RATE_LIMIT_WINDOW_MS}ms)")
    if settings.MAX_FILE_SIZE_MB > 100:
        report.warnings.append(
            f"MAX_FILE_SIZE_MB is very high ({settings.MAX_FILE_SIZE_MB}MB) - may cause memory issues"
        )

    return report


def log_config_summary(settings: Settings) -> ValidationReport:
    """Log a secret-free summary of the configuration plus validation results."""
    report = validate_config(settings)

    logger.info(
        "Configuration loaded",
        extra={
            "port": settings.PORT,
            "environment": settings.APP_ENV,
            "agent_model": settings.AGENT_MODEL,
            "agent_timeout_s": settings.AGENT_TIMEOUT_MS / 1000,
            "request_timeout_s": settings.REQUEST_TIMEOUT_MS / 1000,
            "rate_limit": (
                f"{settings.RATE_LIMIT_MAX} per {settings.RATE_LIMIT_WINDOW_MS / 1000:g}s"
                if settings.RATE_LIMIT_ENABLED
                else "disabled"
            ),
            "workflow_agent_model": settings.WORKFLOW_AGENT_MODEL,
            "classifier_model": settings.CLASSIFIER_MODEL,
            "disallowed_tools": settings.disallowed_tools_list or "none",
            "database": "SET" if settings.has_database else "NOT SET",
            "storage_bucket": settings.SUPABASE_STORAGE_BUCKET,
            "mcp_servers": sorted(settings.mcp_connections) or "none",
        },
    )
    for error in report.errors:
        logger.error("Configuration error: %s", error)
    for warning in report.warnings:
        logger.warning("Configuration warning: %s", warning)

    return report


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance with validated configuration.
    """
    return Settings()
