"""Shared fixtures for skill runner tests."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from skillrunner.core.config import Settings
from skillrunner.db.client import StorageClient
from skillrunner.models.skill import Skill
from tests.helpers import make_skill


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        SUPABASE_URL="https://test.supabase.co",
        SUPABASE_SERVICE_ROLE_KEY="service-role-key",
        VM_ENCRYPTION_SECRET="test-encryption-secret",
        ANTHROPIC_API_KEY="",
        WORKING_DIRECTORY_ROOT=str(tmp_path / "work"),
        DB_RETRY_INITIAL_DELAY_MS=1,
        DB_QUERY_TIMEOUT_MS=2000,
        AGENT_TIMEOUT_MS=5000,
        MCP_CONNECTIONS='{"github": {"command": "gh-mcp"}, "slack": {"command": "slack-mcp"}}',
        DISALLOWED_TOOLS="Bash, WebFetch",
    )


@pytest.fixture
def mock_supabase() -> MagicMock:
    """Synchronous Supabase client double."""
    return MagicMock()


@pytest.fixture
def storage(settings: Settings, mock_supabase: MagicMock) -> StorageClient:
    return StorageClient(settings, client=mock_supabase)


@pytest.fixture
def skill() -> Skill:
    return make_skill()
