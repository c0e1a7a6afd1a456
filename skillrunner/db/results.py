"""Per-request result persistence."""

import logging
from datetime import UTC, datetime
from typing import Any

from skillrunner.db.client import StorageClient
from skillrunner.models.webhook import FileInfo, StoredResult

logger = logging.getLogger(__name__)


class ResultStore:
    """Keeps the latest result for each client request id."""

    def __init__(self, storage: StorageClient) -> None:
        self._storage = storage

    async def upsert_result(
        self,
        request_id: str,
        text: str,
        files: list[FileInfo],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        row = {
            "request_id": request_id,
            "text": text,
            "files": [f.model_dump(by_alias=True, exclude_none=True) for f in files],
            "metadata": metadata or {},
            "updated_at": datetime.now(UTC).isoformat(),
        }
        await self._storage.run(
            "upsert_result",
            lambda c: c.table("results").upsert(row, on_conflict="request_id"),
        )
        logger.info("Result stored", extra={"request_id": request_id})

    async def get_result(self, request_id: str) -> StoredResult | None:
        rows = await self._storage.run(
            "get_result",
            lambda c: c.table("results").select("*").eq("request_id", request_id).limit(1),
        )
        if not rows:
            return None
        row = rows[0]
        return StoredResult(
            request_id=row["request_id"],
            text=row.get("text") or "",
            files=[FileInfo.model_validate(f) for f in row.get("files") or []],
            metadata=row.get("metadata"),
            created_at=row.get("created_at"),
        )
