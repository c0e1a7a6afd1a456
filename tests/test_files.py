"""Tests for file artifact detection, upload and cleanup."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from skillrunner.core.config import Settings
from skillrunner.db.client import StorageClient
from skillrunner.models.webhook import FileInfo
from skillrunner.services.files import DetectedFile, FileArtifacts, format_files_for_response


@pytest.fixture
def artifacts(settings: Settings, storage: StorageClient) -> FileArtifacts:
    return FileArtifacts(settings, storage)


class TestDetect:
    """Tests for FileArtifacts.detect."""

    @pytest.mark.asyncio
    async def test_finds_nested_files_and_skips_hidden(self, artifacts: FileArtifacts, tmp_path: Path) -> None:
        (tmp_path / "report.md").write_text("# Report")
        (tmp_path / "charts").mkdir()
        (tmp_path / "charts" / "sales.csv").write_text("a,b\n1,2\n")
        (tmp_path / ".claude").mkdir()
        (tmp_path / ".claude" / "session.json").write_text("{}")
        (tmp_path / ".env").write_text("SECRET=1")

        found = await artifacts.detect(str(tmp_path))

        assert [f.name for f in found] == ["charts/sales.csv", "report.md"]
        assert found[0].mime_type == "text/csv"
        assert found[1].size == len("# Report")

    @pytest.mark.asyncio
    async def test_skips_oversized_files(self, settings: Settings, storage: StorageClient, tmp_path: Path) -> None:
        small = settings.model_copy(update={"MAX_FILE_SIZE_MB": 1})
        (tmp_path / "big.bin").write_bytes(b"\0" * (1024 * 1024 + 1))
        (tmp_path / "ok.txt").write_text("ok")

        found = await FileArtifacts(small, storage).detect(str(tmp_path))

        assert [f.name for f in found] == ["ok.txt"]

    @pytest.mark.asyncio
    async def test_missing_directory(self, artifacts: FileArtifacts, tmp_path: Path) -> None:
        assert await artifacts.detect(str(tmp_path / "gone")) == []

    @pytest.mark.asyncio
    async def test_unknown_extension_is_octet_stream(self, artifacts: FileArtifacts, tmp_path: Path) -> None:
        (tmp_path / "data.zzunknown").write_bytes(b"x")

        found = await artifacts.detect(str(tmp_path))

        assert found[0].mime_type == "application/octet-stream"


class TestUpload:
    """Tests for FileArtifacts.upload and upload_all."""

    @pytest.mark.asyncio
    async def test_upload_scopes_path_by_request(
        self, artifacts: FileArtifacts, mock_supabase: MagicMock, tmp_path: Path
    ) -> None:
        path = tmp_path / "report.md"
        path.write_text("# Report")
        bucket = mock_supabase.storage.from_.return_value
        bucket.get_public_url.return_value = "https://cdn.test/req-1/report.md"

        info = await artifacts.upload(
            DetectedFile(name="report.md", path=path, size=8, mime_type="text/markdown"), "req-1"
        )

        assert info == FileInfo(
            name="report.md", url="https://cdn.test/req-1/report.md", size=8, mime_type="text/markdown"
        )
        mock_supabase.storage.from_.assert_called_with("agent-files")
        bucket.upload.assert_called_once_with(
            "req-1/report.md", b"# Report", {"content-type": "text/markdown", "upsert": "true"}
        )

    @pytest.mark.asyncio
    async def test_upload_all_skips_failures(
        self, artifacts: FileArtifacts, mock_supabase: MagicMock, tmp_path: Path
    ) -> None:
        for name in ("a.txt", "b.txt"):
            (tmp_path / name).write_text(name)
        bucket = mock_supabase.storage.from_.return_value
        bucket.upload.side_effect = [RuntimeError("quota exceeded"), None]
        bucket.get_public_url.side_effect = lambda p: f"https://cdn.test/{p}"

        files = await artifacts.detect(str(tmp_path))
        uploaded = await artifacts.upload_all(files, "req-1")

        assert [f.name for f in uploaded] == ["b.txt"]


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_directory(self, artifacts: FileArtifacts, tmp_path: Path) -> None:
        work = tmp_path / "req-1-123"
        (work / "nested").mkdir(parents=True)
        (work / "nested" / "f.txt").write_text("x")

        await artifacts.cleanup(str(work))

        assert not work.exists()

    @pytest.mark.asyncio
    async def test_missing_directory_is_ignored(self, artifacts: FileArtifacts, tmp_path: Path) -> None:
        await artifacts.cleanup(str(tmp_path / "never-created"))


def test_format_files_for_response() -> None:
    files = [
        FileInfo(name="a.md", url="https://cdn/a.md"),
        FileInfo(name="b.csv", url="https://cdn/b.csv"),
    ]

    assert format_files_for_response(files) == (
        "\n\n--- Files Generated ---\n"
        "1. a.md\n   URL: https://cdn/a.md\n"
        "2. b.csv\n   URL: https://cdn/b.csv"
    )
    assert format_files_for_response([]) == ""
