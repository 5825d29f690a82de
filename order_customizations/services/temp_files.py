from __future__ import annotations

import logging
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import unquote, urlparse

from sqlalchemy.orm import Session

from order_customizations.config import settings
from order_customizations.db.repositories.temp_files import TemporaryFilesRepository
from order_customizations.errors import InvalidCustomizationError

logger = logging.getLogger(__name__)

TRANSIENT_URL_MARKER = "/uploads/temp/"


def transient_filename(url: Optional[str]) -> Optional[str]:
    """Filename of a transient upload URL (absolute or root-relative), else None."""
    if not isinstance(url, str) or TRANSIENT_URL_MARKER not in url:
        return None
    path = urlparse(url).path if url.startswith(("http://", "https://")) else url.split("?", 1)[0]
    filename = unquote(path.split(TRANSIENT_URL_MARKER, 1)[1])
    return filename or None


@dataclass
class DeleteResult:
    deleted: int = 0
    failed: int = 0


@dataclass
class BackupResult:
    copied: int = 0
    failed: int = 0


@dataclass
class SavedTempFile:
    filename: str
    path: Path
    url: str


class TempFileStore:
    """Short-lived uploads kept on local disk until finalization or TTL expiry."""

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        *,
        legacy_dir: Optional[Path] = None,
        backup_dir: Optional[Path] = None,
    ) -> None:
        self.base_dir = Path(base_dir or settings.temp_uploads_path).resolve()
        self.legacy_dir = Path(legacy_dir or settings.LEGACY_TEMP_UPLOADS_DIR).resolve()
        self.backup_dir = Path(backup_dir or settings.backup_path).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def resolve_path(self, filename: str, *, root: Optional[Path] = None) -> Path:
        base = root or self.base_dir
        candidate = (base / filename).resolve()
        if base not in candidate.parents:
            raise InvalidCustomizationError(message=f"Invalid transient file path: {filename}")
        return candidate

    def locate(self, filename: str) -> Optional[Path]:
        """Find a transient file in the current layout or the legacy one."""
        for root in (self.base_dir, self.legacy_dir):
            try:
                path = self.resolve_path(filename, root=root)
            except InvalidCustomizationError:
                return None
            if path.is_file():
                return path
        return None

    def exists(self, filename: str) -> bool:
        return self.resolve_path(filename).is_file()

    def read_bytes(self, filename: str) -> bytes:
        path = self.resolve_path(filename)
        if not path.is_file():
            raise FileNotFoundError(f"Temporary file not found: {filename}")
        return path.read_bytes()

    def public_url(self, filename: str) -> str:
        return f"{settings.public_base_url}{TRANSIENT_URL_MARKER}{filename}"

    def save_bytes(self, data: bytes, original_name: str) -> SavedTempFile:
        sanitized = re.sub(r"[^a-zA-Z0-9._-]", "_", original_name or "upload").lower()
        filename = f"{int(time.time() * 1000)}-{sanitized}"
        path = self.resolve_path(filename)
        path.write_bytes(data)
        logger.info("temp_files.saved", extra={"filename": filename, "size_bytes": len(data)})
        return SavedTempFile(filename=filename, path=path, url=self.public_url(filename))

    def delete_file(self, filename: str) -> bool:
        try:
            path = self.resolve_path(filename)
        except InvalidCustomizationError:
            logger.warning("temp_files.delete_outside_root", extra={"filename": filename})
            return False
        if not path.is_file():
            logger.warning("temp_files.delete_missing", extra={"filename": filename})
            return False
        try:
            path.unlink()
        except OSError:
            logger.exception("temp_files.delete_failed", extra={"filename": filename})
            return False
        return True

    def delete_files(self, filenames: Iterable[str]) -> DeleteResult:
        result = DeleteResult()
        for filename in filenames:
            if self.delete_file(filename):
                result.deleted += 1
            else:
                result.failed += 1
        logger.info("temp_files.deleted", extra={"deleted": result.deleted, "failed": result.failed})
        return result

    def backup_files(self, filenames: Iterable[str]) -> BackupResult:
        """Copy files into the backup directory with a timestamp prefix before they get deleted."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        result = BackupResult()
        for filename in filenames:
            try:
                source = self.resolve_path(filename)
            except InvalidCustomizationError:
                result.failed += 1
                continue
            if not source.is_file():
                logger.warning("temp_files.backup_missing", extra={"filename": filename})
                result.failed += 1
                continue
            stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
            try:
                shutil.copy2(source, self.backup_dir / f"{stamp}_{source.name}")
            except OSError:
                logger.exception("temp_files.backup_failed", extra={"filename": filename})
                result.failed += 1
                continue
            result.copied += 1
        logger.info("temp_files.backed_up", extra={"copied": result.copied, "failed": result.failed})
        return result

    def sweep_older_than(self, hours: Optional[int] = None) -> DeleteResult:
        threshold_seconds = (hours if hours is not None else settings.TEMP_FILE_TTL_HOURS) * 3600
        now = time.time()
        result = DeleteResult()
        for path in self.base_dir.iterdir():
            if not path.is_file():
                continue
            try:
                if now - path.stat().st_mtime > threshold_seconds:
                    path.unlink()
                    result.deleted += 1
            except OSError:
                logger.exception("temp_files.sweep_failed", extra={"filename": path.name})
                result.failed += 1
        if result.deleted or result.failed:
            logger.info("temp_files.swept", extra={"deleted": result.deleted, "failed": result.failed})
        return result


def sweep_expired_temp_files(session: Session, store: Optional[TempFileStore] = None) -> DeleteResult:
    """Delete temporary file records past their expiry along with their bytes."""
    store = store or TempFileStore()
    repo = TemporaryFilesRepository(session)
    result = DeleteResult()
    for record in repo.list_expired():
        try:
            path = store.resolve_path(record.file_path)
            path.unlink(missing_ok=True)
        except (InvalidCustomizationError, OSError):
            logger.warning("temp_files.expired_unlink_failed", extra={"file_id": record.id}, exc_info=True)
            result.failed += 1
            continue
        repo.delete(record.id)
        result.deleted += 1
    logger.info("temp_files.expired_swept", extra={"deleted": result.deleted, "failed": result.failed})
    return result
