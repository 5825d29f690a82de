from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, quote, unquote, urlparse

from order_customizations import google_clients
from order_customizations.config import settings
from order_customizations.errors import DurableStorageError

logger = logging.getLogger(__name__)

LOCAL_DURABLE_URL_MARKER = "/images/customizations/"
_DRIVE_FILE_PATH = re.compile(r"/d/([A-Za-z0-9_-]+)")


@dataclass(frozen=True)
class StoredFile:
    id: str
    url: str


class DurableStorage:
    """Permanent folder/object store that finalized customization assets move into."""

    async def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        raise NotImplementedError

    async def make_folder_public(self, folder_id: str) -> None:
        raise NotImplementedError

    async def upload_buffer(self, data: bytes, filename: str, folder_id: str, media_type: str) -> StoredFile:
        raise NotImplementedError

    def get_folder_url(self, folder_id: str) -> str:
        raise NotImplementedError

    def owns_url(self, url: str) -> bool:
        raise NotImplementedError

    async def file_exists(self, *, url: Optional[str] = None, file_id: Optional[str] = None) -> bool:
        raise NotImplementedError


class GoogleDriveStorage(DurableStorage):
    def __init__(self, parent_folder_id: Optional[str] = None) -> None:
        self.parent_folder_id = parent_folder_id or settings.GOOGLE_DRIVE_PARENT_FOLDER_ID

    async def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        return await asyncio.to_thread(google_clients.create_folder, name, parent_id or self.parent_folder_id)

    async def make_folder_public(self, folder_id: str) -> None:
        await asyncio.to_thread(google_clients.make_folder_public, folder_id)

    async def upload_buffer(self, data: bytes, filename: str, folder_id: str, media_type: str) -> StoredFile:
        uploaded = await asyncio.to_thread(
            google_clients.upload_bytes,
            name=filename,
            data=data,
            mime_type=media_type,
            parent_folder_id=folder_id,
        )
        url = uploaded.get("webContentLink") or uploaded.get("webViewLink") or ""
        return StoredFile(id=uploaded["id"], url=url)

    def get_folder_url(self, folder_id: str) -> str:
        return google_clients.get_folder_url(folder_id)

    def owns_url(self, url: str) -> bool:
        host = urlparse(url).hostname or ""
        return host.endswith("drive.google.com") or host.endswith("googleusercontent.com")

    @staticmethod
    def file_id_from_url(url: str) -> Optional[str]:
        parsed = urlparse(url)
        ids = parse_qs(parsed.query).get("id")
        if ids:
            return ids[0]
        match = _DRIVE_FILE_PATH.search(parsed.path)
        return match.group(1) if match else None

    async def file_exists(self, *, url: Optional[str] = None, file_id: Optional[str] = None) -> bool:
        resolved_id = file_id or (self.file_id_from_url(url) if url else None)
        if not resolved_id:
            return False
        return await asyncio.to_thread(google_clients.drive_file_exists, resolved_id)


class LocalFolderStorage(DurableStorage):
    """Durable folders on local disk, served publicly under /images/customizations/."""

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = Path(root or settings.CUSTOMIZATIONS_DIR).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _safe_segment(name: str) -> str:
        cleaned = name.replace("/", "_").replace("\\", "_").strip()
        return cleaned.lstrip(".") or "_"

    def _path_for(self, relative: str) -> Path:
        candidate = (self.root / relative).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise DurableStorageError(message=f"Invalid durable path: {relative}", status_code=400)
        return candidate

    def _public_url(self, relative: str) -> str:
        return f"{settings.public_base_url}{LOCAL_DURABLE_URL_MARKER}{quote(relative)}"

    async def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        segment = self._safe_segment(name)
        folder_id = f"{parent_id}/{segment}" if parent_id else segment
        try:
            self._path_for(folder_id).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DurableStorageError(message=f"Failed to create folder {folder_id!r}: {exc}") from exc
        return folder_id

    async def make_folder_public(self, folder_id: str) -> None:
        # Everything under the root is already served publicly.
        return None

    async def upload_buffer(self, data: bytes, filename: str, folder_id: str, media_type: str) -> StoredFile:
        folder = self._path_for(folder_id)
        target = folder / self._safe_segment(filename)
        counter = 1
        while target.exists():
            stem, suffix = Path(filename).stem, Path(filename).suffix
            target = folder / self._safe_segment(f"{stem}-{counter}{suffix}")
            counter += 1
        try:
            folder.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise DurableStorageError(message=f"Failed to store {filename!r}: {exc}") from exc
        relative = f"{folder_id}/{target.name}"
        return StoredFile(id=relative, url=self._public_url(relative))

    def get_folder_url(self, folder_id: str) -> str:
        return self._public_url(folder_id)

    def owns_url(self, url: str) -> bool:
        return LOCAL_DURABLE_URL_MARKER in url

    async def file_exists(self, *, url: Optional[str] = None, file_id: Optional[str] = None) -> bool:
        relative = file_id
        if not relative and url and self.owns_url(url):
            path = urlparse(url).path if url.startswith(("http://", "https://")) else url
            relative = unquote(path.split(LOCAL_DURABLE_URL_MARKER, 1)[1])
        if not relative:
            return False
        try:
            return self._path_for(relative).is_file()
        except DurableStorageError:
            return False


def get_durable_storage() -> DurableStorage:
    if settings.DURABLE_STORAGE_BACKEND == "google_drive":
        return GoogleDriveStorage()
    return LocalFolderStorage()
