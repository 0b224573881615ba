"""Blob storage for uploaded document bytes.

Uploads use a two-phase protocol: the API hands out a signed, expiring
upload URL, the client PUTs the bytes to it and gets back a storage id,
then registers document metadata against that id.
"""

import hashlib
import hmac
import logging
import re
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path
from uuid import uuid4

from parley.config import Settings, settings
from parley.errors import ConflictError, NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

STORAGE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


@dataclass
class UploadUrl:
    url: str
    token: str
    expires_at: datetime


class LocalBlobStorage:
    """Stores blobs as files under a directory, one file per storage id."""

    def __init__(self, config: Settings):
        self.root = Path(config.storage_dir)
        self.signing_key = config.storage_signing_key.encode()
        self.base_url = config.public_base_url.rstrip("/")
        self.ttl_seconds = config.upload_url_ttl_seconds

    # ------------------------------------------------------------------
    # Upload tokens
    # ------------------------------------------------------------------

    def _sign(self, payload: str) -> str:
        return hmac.new(self.signing_key, payload.encode(), hashlib.sha256).hexdigest()

    def generate_upload_url(self) -> UploadUrl:
        """Create a signed URL the client can PUT bytes to before it expires."""
        nonce = uuid4().hex
        expires = int(time.time()) + self.ttl_seconds
        payload = f"{nonce}.{expires}"
        token = f"{payload}.{self._sign(payload)}"
        return UploadUrl(
            url=f"{self.base_url}/v0/storage/upload/{token}",
            token=token,
            expires_at=datetime.fromtimestamp(expires, UTC).replace(tzinfo=None),
        )

    def verify_token(self, token: str) -> str | None:
        """Return the storage id a token grants, or None if it is forged or expired."""
        try:
            nonce, expires, signature = token.split(".")
            expires_at = int(expires)
        except ValueError:
            return None

        if not hmac.compare_digest(signature, self._sign(f"{nonce}.{expires}")):
            return None
        if expires_at < time.time():
            return None
        if not STORAGE_ID_PATTERN.match(nonce):
            return None
        return nonce

    # ------------------------------------------------------------------
    # Blob operations
    # ------------------------------------------------------------------

    def _path(self, storage_id: str) -> Path:
        if not STORAGE_ID_PATTERN.match(storage_id):
            raise ValidationError(f"Invalid storage id: {storage_id}")
        return self.root / storage_id[:2] / storage_id

    def _write(self, storage_id: str, data: bytes) -> None:
        """Create the blob file; an existing blob is never overwritten."""
        path = self._path(storage_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise ConflictError(f"Blob {storage_id} has already been uploaded") from e
        except OSError as e:
            logger.exception(f"Failed to write blob {storage_id}: {e}")
            raise StorageError(f"Failed to store blob {storage_id}: {e}") from e
        logger.info(f"Stored blob {storage_id} ({len(data)} bytes)")

    def put(self, token: str, data: bytes) -> str:
        """
        Store bytes uploaded against a signed token.

        A token accepts one upload: once its blob exists, further PUTs raise
        ConflictError until the token expires.
        """
        storage_id = self.verify_token(token)
        if not storage_id:
            raise ValidationError("Upload URL is invalid or has expired")
        self._write(storage_id, data)
        return storage_id

    def put_bytes(self, data: bytes) -> str:
        """Store bytes directly (server-side upload) and return a new storage id."""
        storage_id = uuid4().hex
        self._write(storage_id, data)
        return storage_id

    def exists(self, storage_id: str) -> bool:
        return self._path(storage_id).is_file()

    def size(self, storage_id: str) -> int:
        path = self._path(storage_id)
        if not path.is_file():
            raise NotFoundError("Blob", storage_id)
        return path.stat().st_size

    def read(self, storage_id: str) -> bytes:
        path = self._path(storage_id)
        if not path.is_file():
            raise NotFoundError("Blob", storage_id)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read blob {storage_id}: {e}") from e

    def delete(self, storage_id: str) -> None:
        """Delete a blob; deleting a missing blob is a no-op."""
        try:
            self._path(storage_id).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete blob {storage_id}: {e}") from e
        logger.info(f"Deleted blob {storage_id}")


@lru_cache
def get_storage() -> LocalBlobStorage:
    """Process-wide storage instance (also used as a FastAPI dependency)."""
    return LocalBlobStorage(settings)
