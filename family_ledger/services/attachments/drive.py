"""
Attachment Storage using Google Drive

Receipts are uploaded into the uploading user's own Google Drive using the
short-lived delegated token obtained at Google sign-in. Files are never
shared: only the uploader can open the returned link, whatever the
family's transaction visibility.

Flow:
1. Look up the private attachments folder by name, create it if absent
2. Upload the file into it as `<epoch-millis>_<filename>`
3. Return the Drive file id and view link

Any failure raises UploadFailed. Callers (the ledger) treat that as
non-fatal and save the transaction without its attachment.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

import requests
import structlog
from google.auth.transport.requests import AuthorizedSession
from google.oauth2.credentials import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from family_ledger.config import get_settings
from family_ledger.config.settings import DriveSettings
from family_ledger.exceptions import UploadFailed
from family_ledger.models.entities import AttachmentFile, AttachmentRef, utc_now


logger = structlog.get_logger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

SessionFactory = Callable[[str], Any]


class AttachmentStore(ABC):
    """Uploads files to a principal's private storage."""

    @abstractmethod
    async def upload(self, file: AttachmentFile, delegated_token: Optional[str]) -> AttachmentRef:
        """
        Upload a file and return a reference usable as attachmentUrl.

        Raises:
            UploadFailed: token missing or rejected, or the remote call failed
        """
        pass


def _authorized_session(token: str) -> AuthorizedSession:
    return AuthorizedSession(Credentials(token=token))


class GoogleDriveAttachmentStore(AttachmentStore):
    """AttachmentStore backed by the user's Google Drive."""

    def __init__(
        self,
        settings: Optional[DriveSettings] = None,
        max_size_bytes: Optional[int] = None,
        session_factory: Optional[SessionFactory] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._settings = settings or get_settings().drive
        self._max_size_bytes = (
            max_size_bytes if max_size_bytes is not None
            else get_settings().app.max_attachment_size_bytes
        )
        self._session_factory = session_factory or _authorized_session
        self._clock = clock or utc_now

    async def upload(self, file: AttachmentFile, delegated_token: Optional[str]) -> AttachmentRef:
        if not delegated_token:
            raise UploadFailed("no delegated token, sign in with Google", file.filename)
        if file.size_bytes > self._max_size_bytes:
            raise UploadFailed(
                f"file is {file.size_bytes} bytes, limit is {self._max_size_bytes}",
                file.filename,
            )

        try:
            return await asyncio.to_thread(self._upload_sync, file, delegated_token)
        except UploadFailed:
            raise
        except requests.RequestException as e:
            logger.warning("drive_transport_error", filename=file.filename, error=str(e))
            raise UploadFailed(f"Drive unreachable: {e}", file.filename)

    def _upload_sync(self, file: AttachmentFile, token: str) -> AttachmentRef:
        session = self._session_factory(token)
        folder_id = self._get_or_create_folder(session)

        stored_name = f"{int(self._clock().timestamp() * 1000)}_{file.filename}"
        metadata = {
            "name": stored_name,
            "mimeType": file.mime_type,
            "parents": [folder_id],
        }
        body, content_type = self._multipart_body(metadata, file)

        response = self._request(
            session,
            "POST",
            f"{self._settings.upload_base_url}/files",
            params={"uploadType": "multipart", "fields": "id,webViewLink,webContentLink"},
            data=body,
            headers={"Content-Type": content_type},
        )
        payload = self._json(response, "upload", file.filename)

        if not payload.get("id"):
            raise UploadFailed("Drive returned no file id", file.filename)

        logger.info("drive_upload_completed", file_id=payload["id"], stored_name=stored_name)
        return AttachmentRef(
            file_id=payload["id"],
            view_link=payload.get("webViewLink") or f"https://drive.google.com/file/d/{payload['id']}/view",
            download_link=payload.get("webContentLink"),
        )

    def _get_or_create_folder(self, session: Any) -> str:
        """Locate the private folder by name; create it when missing."""
        escaped = self._settings.folder_name.replace("\\", "\\\\").replace("'", "\\'")
        response = self._request(
            session,
            "GET",
            f"{self._settings.api_base_url}/files",
            params={
                "q": f"name = '{escaped}' and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false",
                "fields": "files(id,name)",
                "spaces": "drive",
            },
        )
        files = self._json(response, "folder lookup").get("files") or []
        if files:
            return files[0]["id"]

        response = self._request(
            session,
            "POST",
            f"{self._settings.api_base_url}/files",
            json={"name": self._settings.folder_name, "mimeType": FOLDER_MIME_TYPE},
            params={"fields": "id"},
        )
        folder = self._json(response, "folder create")
        if not folder.get("id"):
            raise UploadFailed("Drive returned no folder id")
        logger.info("drive_folder_created", folder_id=folder["id"])
        return folder["id"]

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _request(self, session: Any, method: str, url: str, **kwargs: Any) -> Any:
        return session.request(method, url, timeout=self._settings.timeout_seconds, **kwargs)

    @staticmethod
    def _json(response: Any, step: str, filename: Optional[str] = None) -> dict:
        if response.status_code == 401:
            raise UploadFailed("delegated token expired or revoked", filename)
        if response.status_code >= 400:
            raise UploadFailed(f"Drive {step} failed with HTTP {response.status_code}", filename)
        try:
            return response.json()
        except ValueError:
            raise UploadFailed(f"Drive {step} returned invalid JSON", filename)

    @staticmethod
    def _multipart_body(metadata: dict, file: AttachmentFile) -> tuple[bytes, str]:
        boundary = f"family_ledger_{uuid4().hex}"
        head = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\n"
            f"Content-Type: {file.mime_type}\r\n\r\n"
        ).encode("utf-8")
        tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
        return head + file.content + tail, f"multipart/related; boundary={boundary}"
