import fnmatch
import hashlib
import json
import logging
import mimetypes
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from parley_uploader.config import FolderConfig

logger = logging.getLogger(__name__)

# Initialize mimetypes
mimetypes.init()
mimetypes.add_type("text/markdown", ".md")
mimetypes.add_type("text/markdown", ".markdown")

# Types the Parley API accepts
SUPPORTED_MIME_TYPES = {
    "text/plain",
    "text/markdown",
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}


@dataclass
class FileInfo:
    """Information about a scanned file."""

    folder_name: str
    channel_id: str
    path: str
    relative_path: str
    size_bytes: int
    mtime: datetime
    mime_type: str
    content_hash: str


def compute_file_hash(path: str, chunk_size: int = 8192) -> str:
    """Compute SHA256 hash of file contents."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return f"sha256:{sha256.hexdigest()}"


def get_mime_type(path: str) -> str:
    """Get MIME type for a file."""
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or "application/octet-stream"


def matches_any(path: str, patterns: list[str]) -> bool:
    """Check a path (or its basename) against glob patterns."""
    basename = os.path.basename(path)
    return any(
        fnmatch.fnmatch(basename, pattern) or fnmatch.fnmatch(path, pattern)
        for pattern in patterns
    )


def scan_folder(config: FolderConfig) -> list[FileInfo]:
    """
    Scan a folder and return information about every uploadable file.

    Args:
        config: Folder configuration

    Returns:
        List of FileInfo objects for supported files within the size limit
    """
    files: list[FileInfo] = []
    root_path = Path(config.path)

    if not root_path.is_dir():
        logger.error(f"Folder does not exist: {root_path}")
        return files

    logger.info(f"Scanning folder {config.name} at {root_path}")

    for root, dirs, filenames in os.walk(root_path):
        # Filter out excluded directories
        dirs[:] = [d for d in dirs if not matches_any(d, config.exclude_patterns)]
        dirs.sort()

        for filename in sorted(filenames):
            if matches_any(filename, config.exclude_patterns):
                continue

            full_path = os.path.join(root, filename)
            relative_path = os.path.relpath(full_path, root_path)

            if not matches_any(relative_path, config.include_patterns):
                continue

            mime_type = get_mime_type(full_path)
            if mime_type not in SUPPORTED_MIME_TYPES:
                logger.debug(f"Skipping unsupported file type {mime_type}: {full_path}")
                continue

            try:
                stat = os.stat(full_path)
                if stat.st_size == 0 or stat.st_size > config.max_file_size_bytes:
                    logger.debug(f"Skipping file outside size limits: {full_path}")
                    continue

                files.append(
                    FileInfo(
                        folder_name=config.name,
                        channel_id=config.channel_id,
                        path=full_path,
                        relative_path=relative_path,
                        size_bytes=stat.st_size,
                        mtime=datetime.fromtimestamp(stat.st_mtime),
                        mime_type=mime_type,
                        content_hash=compute_file_hash(full_path),
                    )
                )
            except OSError as e:
                logger.warning(f"Could not read file {full_path}: {e}")

    logger.info(f"Found {len(files)} files in folder {config.name}")
    return files


class UploadState:
    """
    Content hashes of files already uploaded, persisted as JSON.
    A file is uploaded again only when its content changes.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.entries: dict[str, dict[str, str]] = {}

    def load(self) -> "UploadState":
        if self.path.exists():
            self.entries = json.loads(self.path.read_text())
        return self

    def save(self) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self.entries, indent=2, sort_keys=True))
        tmp_path.replace(self.path)

    @staticmethod
    def key(file: FileInfo) -> str:
        return f"{file.channel_id}:{file.path}"

    def is_uploaded(self, file: FileInfo) -> bool:
        entry = self.entries.get(self.key(file))
        return entry is not None and entry.get("content_hash") == file.content_hash

    def record(self, file: FileInfo, document_id: str) -> None:
        self.entries[self.key(file)] = {
            "content_hash": file.content_hash,
            "document_id": document_id,
        }

    def pending(self, files: list[FileInfo]) -> list[FileInfo]:
        return [f for f in files if not self.is_uploaded(f)]
