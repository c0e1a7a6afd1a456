"""File artifacts: detect files an agent produced, upload them, clean up."""

import asyncio
import logging
import mimetypes
import shutil
from dataclasses import dataclass
from pathlib import Path

from skillrunner.core.config import Settings
from skillrunner.db.client import StorageClient
from skillrunner.models.webhook import FileInfo
from supabase import Client

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class DetectedFile:
    """A file found in a working directory."""

    name: str
    path: Path
    size: int
    mime_type: str


def format_files_for_response(files: list[FileInfo]) -> str:
    """Human-readable listing appended to the response text."""
    if not files:
        return ""
    lines = ["\n\n--- Files Generated ---"]
    for i, f in enumerate(files, start=1):
        lines.append(f"{i}. {f.name}\n   URL: {f.url}")
    return "\n".join(lines)


class FileArtifacts:
    """detect / upload / cleanup over Supabase Storage."""

    def __init__(self, settings: Settings, storage: StorageClient) -> None:
        self._settings = settings
        self._storage = storage

    def _scan(self, directory: Path) -> list[DetectedFile]:
        max_bytes = self._settings.max_file_size_bytes
        found: list[DetectedFile] = []
        for path in sorted(directory.rglob("*")):
            relative = path.relative_to(directory)
            if any(part.startswith(".") for part in relative.parts) or not path.is_file():
                continue
            size = path.stat().st_size
            if size > max_bytes:
                logger.warning(
                    "Skipping file over size limit",
                    extra={"file": str(relative), "size": size, "max_bytes": max_bytes},
                )
                continue
            mime_type = mimetypes.guess_type(path.name)[0] or DEFAULT_MIME_TYPE
            found.append(
                DetectedFile(name=relative.as_posix(), path=path, size=size, mime_type=mime_type)
            )
        return found

    async def detect(self, working_directory: str) -> list[DetectedFile]:
        """List regular, non-hidden files under a working directory.

        A missing directory yields no files.
        """
        directory = Path(working_directory)
        if not directory.is_dir():
            return []
        return await asyncio.to_thread(self._scan, directory)

    async def upload(self, file: DetectedFile, request_id: str) -> FileInfo:
        """Upload one file to ``<bucket>/<request_id>/<name>``.

        Raises:
            Exception: Whatever the storage client raised.
        """
        bucket = self._settings.SUPABASE_STORAGE_BUCKET
        object_path = f"{request_id}/{file.name}"
        content = await asyncio.to_thread(file.path.read_bytes)

        def _upload(client: Client) -> str:
            store = client.storage.from_(bucket)
            store.upload(object_path, content, {"content-type": file.mime_type, "upsert": "true"})
            return store.get_public_url(object_path)

        url = await self._storage.run_blocking("upload_file", _upload)
        logger.info("Uploaded file", extra={"request_id": request_id, "file": file.name, "size": file.size})
        return FileInfo(name=file.name, url=str(url), size=file.size, mime_type=file.mime_type)

    async def upload_all(self, files: list[DetectedFile], request_id: str) -> list[FileInfo]:
        """Upload each file; failures are logged and skipped."""
        uploaded: list[FileInfo] = []
        for file in files:
            try:
                uploaded.append(await self.upload(file, request_id))
            except Exception as e:
                logger.error(
                    "File upload failed: %s",
                    e,
                    extra={"request_id": request_id, "file": file.name},
                )
        return uploaded

    async def cleanup(self, working_directory: str) -> None:
        """Remove a working directory. Never raises."""
        try:
            await asyncio.to_thread(shutil.rmtree, working_directory)
            logger.debug("Removed working directory", extra={"working_directory": working_directory})
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(
                "Cleanup failed: %s", e, extra={"working_directory": working_directory}
            )
