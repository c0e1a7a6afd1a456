"""Database access for the skill runner."""

from skillrunner.db.client import StorageClient, translate_storage_error
from skillrunner.db.executions import ExecutionStore
from skillrunner.db.results import ResultStore
from skillrunner.db.skills import SkillRepository

__all__ = [
    "ExecutionStore",
    "ResultStore",
    "SkillRepository",
    "StorageClient",
    "translate_storage_error",
]
