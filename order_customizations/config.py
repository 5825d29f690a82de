from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Google clients read credentials straight from os.environ, so the .env file is loaded eagerly.
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)

DURABLE_STORAGE_BACKENDS = ("local", "google_drive")


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./order_customizations.db"
    PUBLIC_BASE_URL: str = "http://localhost:3333"

    STORAGE_ROOT: str = "storage"
    TEMP_UPLOADS_DIR: str | None = None
    # Older deployments served /uploads/temp/ straight from this folder.
    LEGACY_TEMP_UPLOADS_DIR: str = "uploads/temp"
    CUSTOMIZATIONS_DIR: str = "images/customizations"
    TEMP_FILE_TTL_HOURS: int = 48

    DURABLE_STORAGE_BACKEND: str = "local"
    GOOGLE_DRIVE_PARENT_FOLDER_ID: str | None = None

    REMOTE_FETCH_TIMEOUT_SECONDS: float = 30.0
    REMOTE_FETCH_MAX_BYTES: int = 50 * 1024 * 1024

    @field_validator("DURABLE_STORAGE_BACKEND")
    @classmethod
    def validate_backend(cls, value: str) -> str:
        backend = value.strip().lower()
        if backend not in DURABLE_STORAGE_BACKENDS:
            raise ValueError(
                f"DURABLE_STORAGE_BACKEND must be one of {', '.join(DURABLE_STORAGE_BACKENDS)}"
            )
        return backend

    @property
    def public_base_url(self) -> str:
        return self.PUBLIC_BASE_URL.rstrip("/")

    @property
    def temp_uploads_path(self) -> Path:
        if self.TEMP_UPLOADS_DIR:
            return Path(self.TEMP_UPLOADS_DIR).resolve()
        return (Path(self.STORAGE_ROOT) / "temp").resolve()

    @property
    def backup_path(self) -> Path:
        return (Path(self.STORAGE_ROOT) / "backup").resolve()

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
