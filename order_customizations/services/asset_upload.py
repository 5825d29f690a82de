from __future__ import annotations

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

from order_customizations.config import settings
from order_customizations.errors import AssetTransferError, InvalidCustomizationError
from order_customizations.services.asset_extraction import AssetCandidate
from order_customizations.services.durable_storage import DurableStorage
from order_customizations.services.payload_codec import is_data_uri
from order_customizations.services.temp_files import TempFileStore, transient_filename

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
}


def extension_for(media_type: Optional[str]) -> str:
    return _EXTENSIONS.get((media_type or "").lower(), "png")


def default_filename(customization_id: str, media_type: Optional[str]) -> str:
    return f"customization-{customization_id[:8]}-{uuid.uuid4().hex[:8]}.{extension_for(media_type)}"


@dataclass(frozen=True)
class UploadedAsset:
    id: str
    url: str
    media_type: str
    filename: str


class AssetUploader:
    """Loads an asset candidate's bytes and stores them in a durable folder."""

    def __init__(
        self,
        *,
        storage: DurableStorage,
        temp_store: TempFileStore,
        timeout_seconds: Optional[float] = None,
        max_bytes: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.storage = storage
        self.temp_store = temp_store
        self.timeout_seconds = timeout_seconds or settings.REMOTE_FETCH_TIMEOUT_SECONDS
        self.max_bytes = max_bytes or settings.REMOTE_FETCH_MAX_BYTES
        self.transport = transport

    async def upload(self, candidate: AssetCandidate, *, customization_id: str, folder_id: str) -> UploadedAsset:
        data = await self.load_bytes(candidate.url)
        filename = candidate.filename or default_filename(customization_id, candidate.media_type)
        media_type = candidate.media_type or "image/png"
        stored = await self.storage.upload_buffer(data, filename, folder_id, media_type)
        logger.info(
            "assets.uploaded",
            extra={
                "customization_id": customization_id,
                "folder_id": folder_id,
                "file_id": stored.id,
                "size_bytes": len(data),
            },
        )
        return UploadedAsset(id=stored.id, url=stored.url, media_type=media_type, filename=filename)

    async def load_bytes(self, url: str) -> bytes:
        filename = transient_filename(url)
        if filename:
            return self._read_transient(filename)
        if url.startswith(("http://", "https://")):
            return await self._download(url)
        if is_data_uri(url):
            logger.warning("assets.inline_base64_at_upload", extra={"prefix": url[:40]})
            return self._decode_data_uri(url)
        raise InvalidCustomizationError(message=f"Unsupported asset URL: {url[:80]}")

    def _read_transient(self, filename: str) -> bytes:
        try:
            return self.temp_store.read_bytes(filename)
        except FileNotFoundError as exc:
            raise AssetTransferError(message=f"Temporary file not found: {filename}") from exc
        except OSError as exc:
            raise AssetTransferError(message=f"Failed to read temporary file {filename}: {exc}") from exc

    async def _download(self, url: str) -> bytes:
        if not urlparse(url).hostname:
            raise InvalidCustomizationError(message=f"Invalid asset URL: {url[:80]}")
        timeout = httpx.Timeout(self.timeout_seconds, read=self.timeout_seconds)
        try:
            async with httpx.AsyncClient(
                timeout=timeout, follow_redirects=True, transport=self.transport
            ) as client:
                async with client.stream("GET", url) as resp:
                    resp.raise_for_status()
                    data = bytearray()
                    async for chunk in resp.aiter_bytes():
                        data.extend(chunk)
                        if len(data) > self.max_bytes:
                            raise AssetTransferError(message=f"Remote asset exceeds {self.max_bytes} bytes: {url}")
                    return bytes(data)
        except httpx.HTTPError as exc:
            raise AssetTransferError(message=f"Failed to fetch {url}: {exc}") from exc

    @staticmethod
    def _decode_data_uri(url: str) -> bytes:
        _, _, encoded = url.partition(",")
        try:
            return base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise InvalidCustomizationError(message="Invalid inline base64 asset") from exc
