"""Tests for folder scanning and upload state."""

import hashlib

from parley_uploader.config import FolderConfig
from parley_uploader.scanner import (
    UploadState,
    compute_file_hash,
    get_mime_type,
    matches_any,
    scan_folder,
)


class TestScanFolder:
    def test_finds_supported_files(self, folder):
        files = scan_folder(folder)

        assert [f.relative_path for f in files] == [
            "handbook.txt",
            "notes.md",
            "policies/leave.pdf",
        ]
        assert [f.mime_type for f in files] == [
            "text/plain",
            "text/markdown",
            "application/pdf",
        ]
        assert all(f.channel_id == folder.channel_id for f in files)

    def test_size_limit(self, docs_dir):
        folder = FolderConfig(
            name="docs", path=str(docs_dir), channel_id="c", max_file_size_bytes=20
        )

        names = [f.relative_path for f in scan_folder(folder)]

        assert "handbook.txt" in names
        assert "notes.md" not in names

    def test_include_patterns(self, docs_dir):
        folder = FolderConfig(
            name="docs", path=str(docs_dir), channel_id="c", include_patterns=["*.pdf"]
        )

        assert [f.relative_path for f in scan_folder(folder)] == ["policies/leave.pdf"]

    def test_excluded_directory(self, docs_dir):
        folder = FolderConfig(
            name="docs",
            path=str(docs_dir),
            channel_id="c",
            exclude_patterns=["policies", "~*", "*.tmp"],
        )

        assert [f.relative_path for f in scan_folder(folder)] == ["handbook.txt", "notes.md"]

    def test_missing_folder(self, tmp_path):
        folder = FolderConfig(name="gone", path=str(tmp_path / "gone"), channel_id="c")

        assert scan_folder(folder) == []


def test_compute_file_hash(docs_dir):
    path = docs_dir / "handbook.txt"

    expected = hashlib.sha256(b"Welcome to the team.").hexdigest()

    assert compute_file_hash(str(path)) == f"sha256:{expected}"


def test_get_mime_type():
    assert get_mime_type("README.md") == "text/markdown"
    assert get_mime_type("archive.unknownext") == "application/octet-stream"


def test_matches_any():
    assert matches_any("a/b/~lock.docx", ["~*"])
    assert not matches_any("report.docx", ["*.tmp"])


class TestUploadState:
    def test_only_new_files_are_pending(self, folder, tmp_path):
        files = scan_folder(folder)
        state = UploadState(str(tmp_path / "state.json")).load()

        assert state.pending(files) == files

        state.record(files[0], "doc-1")
        state.save()
        reloaded = UploadState(str(tmp_path / "state.json")).load()

        assert reloaded.pending(files) == files[1:]
        assert reloaded.entries[UploadState.key(files[0])]["document_id"] == "doc-1"

    def test_changed_content_is_pending_again(self, folder, docs_dir, tmp_path):
        state = UploadState(str(tmp_path / "state.json"))
        for file in scan_folder(folder):
            state.record(file, "doc")

        (docs_dir / "handbook.txt").write_text("Welcome to the team, updated.")

        assert [f.relative_path for f in state.pending(scan_folder(folder))] == ["handbook.txt"]

    def test_save_leaves_no_temp_file(self, tmp_path):
        state = UploadState(str(tmp_path / "state.json"))

        state.save()

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]
