"""Shared fixtures for the uploader tests."""

import pytest

from parley_uploader.config import FolderConfig, UploaderSettings

CHANNEL_ID = "5b0c3f5e-4a7c-4f0e-9a53-3d1f2f6f2a10"


@pytest.fixture
def docs_dir(tmp_path):
    """
    A folder with a mix of uploadable and skipped files:

        handbook.txt     uploaded
        notes.md         uploaded
        policies/leave.pdf   uploaded
        logo.png         unsupported type
        empty.txt        empty
        ~draft.txt       excluded by pattern
        cache.tmp        excluded by pattern
    """
    root = tmp_path / "docs"
    (root / "policies").mkdir(parents=True)
    (root / "handbook.txt").write_text("Welcome to the team.")
    (root / "notes.md").write_text("# Notes\n\nShip on Friday.")
    (root / "policies" / "leave.pdf").write_bytes(b"%PDF-1.4 leave policy")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n")
    (root / "empty.txt").write_text("")
    (root / "~draft.txt").write_text("lock file")
    (root / "cache.tmp").write_text("scratch")
    return root


@pytest.fixture
def folder(docs_dir) -> FolderConfig:
    return FolderConfig(name="docs", path=str(docs_dir), channel_id=CHANNEL_ID)


@pytest.fixture
def uploader_settings(tmp_path, folder) -> UploaderSettings:
    return UploaderSettings(
        api_base_url="http://parley.test",
        identity="uploader@example.com",
        state_file=str(tmp_path / "state.json"),
        retry_backoff_seconds=0,
        folders=[folder],
    )
