from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

import google.auth
import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2 import credentials as oauth2_credentials
from google.oauth2.service_account import Credentials as ServiceAccountCredentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaInMemoryUpload

from order_customizations.errors import DurableStorageError

SCOPES = ["https://www.googleapis.com/auth/drive"]
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


def _service_account_from_file() -> Optional[ServiceAccountCredentials]:
    key_file = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if not key_file or not Path(key_file).exists():
        return None
    info = json.loads(Path(key_file).read_text(encoding="utf-8"))
    if "client_email" in info and "private_key" in info:
        return ServiceAccountCredentials.from_service_account_info(info, scopes=SCOPES)
    return None


def _service_account_from_env() -> Optional[ServiceAccountCredentials]:
    email = os.getenv("GOOGLE_CLIENT_EMAIL")
    key = os.getenv("GOOGLE_PRIVATE_KEY")
    if not (email and key):
        return None
    info = {"client_email": email, "private_key": key.replace("\\n", "\n")}
    return ServiceAccountCredentials.from_service_account_info(info, scopes=SCOPES)


def _oauth_refresh_credentials() -> Optional[oauth2_credentials.Credentials]:
    client_id = os.getenv("GOOGLE_CLIENT_ID")
    client_secret = os.getenv("GOOGLE_CLIENT_SECRET")
    refresh_token = os.getenv("GOOGLE_REFRESH_TOKEN")
    if not (client_id and client_secret and refresh_token):
        return None
    creds = oauth2_credentials.Credentials(
        token=None,
        refresh_token=refresh_token,
        client_id=client_id,
        client_secret=client_secret,
        token_uri="https://oauth2.googleapis.com/token",
        scopes=SCOPES,
    )
    creds.refresh(Request())
    return creds


def get_google_credentials():
    for loader in (_service_account_from_file, _service_account_from_env, _oauth_refresh_credentials):
        creds = loader()
        if creds:
            return creds
    try:
        creds, _ = google.auth.default(scopes=SCOPES)
        return creds
    except google.auth.exceptions.DefaultCredentialsError as exc:
        raise DurableStorageError(
            message=(
                "Google Drive auth not configured. Set GOOGLE_APPLICATION_CREDENTIALS, "
                "GOOGLE_CLIENT_EMAIL/GOOGLE_PRIVATE_KEY or "
                "GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET/GOOGLE_REFRESH_TOKEN."
            ),
            status_code=500,
        ) from exc


def get_drive_client():
    return build("drive", "v3", credentials=get_google_credentials(), cache_discovery=False)


def get_folder_url(folder_id: str) -> str:
    return f"https://drive.google.com/drive/folders/{folder_id}"


def create_folder(name: str, parent_folder_id: Optional[str] = None) -> str:
    body = {"name": name, "mimeType": FOLDER_MIME_TYPE}
    if parent_folder_id:
        body["parents"] = [parent_folder_id]
    try:
        folder = (
            get_drive_client()
            .files()
            .create(body=body, fields="id", supportsAllDrives=True)
            .execute()
        )
    except HttpError as exc:
        raise DurableStorageError(message=f"Failed to create Drive folder {name!r}: {exc}") from exc
    folder_id = folder.get("id")
    if not folder_id:
        raise DurableStorageError(message=f"Failed to create Drive folder {name!r}: missing id")
    return folder_id


def make_folder_public(folder_id: str) -> None:
    try:
        (
            get_drive_client()
            .permissions()
            .create(
                fileId=folder_id,
                body={"type": "anyone", "role": "reader"},
                supportsAllDrives=True,
            )
            .execute()
        )
    except HttpError as exc:
        raise DurableStorageError(message=f"Failed to share Drive folder {folder_id}: {exc}") from exc


def upload_bytes(*, name: str, data: bytes, mime_type: str, parent_folder_id: str) -> dict:
    media = MediaInMemoryUpload(data, mimetype=mime_type, resumable=False)
    try:
        file = (
            get_drive_client()
            .files()
            .create(
                body={"name": name, "parents": [parent_folder_id]},
                media_body=media,
                fields="id,webViewLink,webContentLink",
                supportsAllDrives=True,
            )
            .execute()
        )
    except HttpError as exc:
        raise DurableStorageError(message=f"Failed to upload {name!r} to Drive: {exc}") from exc
    file_id = file.get("id")
    if not file_id:
        raise DurableStorageError(message=f"Failed to upload {name!r} to Drive: missing file id")
    return {
        "id": file_id,
        "webViewLink": file.get("webViewLink"),
        "webContentLink": file.get("webContentLink"),
    }


def drive_file_exists(file_id: str) -> bool:
    try:
        meta = (
            get_drive_client()
            .files()
            .get(fileId=file_id, fields="id,trashed", supportsAllDrives=True)
            .execute()
        )
    except HttpError as exc:
        if getattr(exc, "status_code", None) == 404 or getattr(exc.resp, "status", None) == 404:
            return False
        raise DurableStorageError(message=f"Failed to look up Drive file {file_id}: {exc}") from exc
    return bool(meta.get("id")) and not meta.get("trashed", False)
