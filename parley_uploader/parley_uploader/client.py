import asyncio
import logging
import os

import httpx

from parley_uploader.config import UploaderSettings
from parley_uploader.scanner import FileInfo

logger = logging.getLogger(__name__)


class ParleyClient:
    """HTTP client for the Parley API's two-phase document upload."""

    def __init__(
        self,
        settings: UploaderSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.base_url = settings.api_base_url.rstrip("/")
        self.headers = {settings.identity_header: settings.identity}
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.request_timeout_seconds,
            headers=self.headers,
            transport=self.transport,
        )

    async def request_upload_url(self, client: httpx.AsyncClient) -> str:
        response = await client.post(f"{self.base_url}/v0/storage/upload-url")
        response.raise_for_status()
        return response.json()["upload_url"]

    async def put_bytes(self, client: httpx.AsyncClient, upload_url: str, data: bytes) -> str:
        response = await client.put(
            upload_url,
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        response.raise_for_status()
        return response.json()["storage_id"]

    async def register(
        self,
        client: httpx.AsyncClient,
        storage_id: str,
        file: FileInfo,
    ) -> dict:
        """
        Register uploaded bytes as a document.

        Retried on network errors and 5xx answers with the same storage_id;
        the API treats a repeated registration as a no-op.
        """
        payload = {
            "storage_id": storage_id,
            "name": os.path.basename(file.path),
            "mime_type": file.mime_type,
            "channel_id": file.channel_id,
        }
        attempts = max(1, self.settings.register_retries)

        for attempt in range(1, attempts + 1):
            try:
                response = await client.post(f"{self.base_url}/v0/documents", json=payload)
                if response.status_code < 500 or attempt == attempts:
                    response.raise_for_status()
                    return response.json()
                logger.warning(
                    f"Registering {file.relative_path} failed with {response.status_code} "
                    f"(attempt {attempt}/{attempts})"
                )
            except httpx.TransportError as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    f"Registering {file.relative_path} failed: {e} (attempt {attempt}/{attempts})"
                )

            await asyncio.sleep(self.settings.retry_backoff_seconds * attempt)

    async def upload_file(self, file: FileInfo) -> dict:
        """
        Upload one file: request a signed URL, PUT the bytes, register metadata.

        Returns:
            The registered document from the API
        """
        with open(file.path, "rb") as f:
            data = f.read()

        async with self._client() as client:
            upload_url = await self.request_upload_url(client)
            storage_id = await self.put_bytes(client, upload_url, data)
            document = await self.register(client, storage_id, file)

        logger.info(
            f"Uploaded {file.relative_path} as document {document['id']} "
            f"({file.size_bytes} bytes, {file.mime_type})"
        )
        return document
