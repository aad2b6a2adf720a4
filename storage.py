"""
Object storage for uploaded files.

Two backends share the same small interface (``upload``, ``delete``,
``path_from_url``):

- ``SupabaseStorage`` talks to the Supabase Storage REST API with httpx.
- ``LocalStorage`` writes under a directory that main.py serves at /uploads.
  It is used when Supabase is not configured, and in tests.
"""
import os
import secrets
import time
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import httpx
from fastapi import UploadFile

from app_logger import get_logger
from config import settings
from errors import STORAGE_ERROR, ApiError

log = get_logger("storage")

ALLOWED_MIME_TYPES: Dict[str, str] = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/avi": "avi",
    "video/mov": "mov",
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
}

IMAGE_MIME_TYPES = {k: v for k, v in ALLOWED_MIME_TYPES.items() if k.startswith("image/")}


class StorageError(Exception):
    pass


def classify_mime(mime_type: str) -> str:
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("image/"):
        return "image"
    return "document"


def _object_name(original_name: str, default_ext: str) -> str:
    ext = original_name.rsplit(".", 1)[-1] if "." in original_name else default_ext
    return f"{int(time.time() * 1000)}-{secrets.token_hex(5)}.{ext}"


def student_file_path(teacher_id: str, student_id: str, kind: str, original_name: str) -> str:
    return f"student-uploads/{teacher_id}/{student_id}/{kind}/{_object_name(original_name, 'file')}"


def profile_picture_path(owner_type: str, owner_id: str, original_name: str) -> str:
    return f"profiles/{owner_type}s/{owner_id}/{_object_name(original_name, 'jpg')}"


def lesson_material_path(teacher_id: str, original_name: str) -> str:
    return f"lesson-materials/{teacher_id}/{_object_name(original_name, 'file')}"


def read_upload(file: UploadFile, allowed: Optional[Dict[str, str]] = None) -> bytes:
    """
    Check an incoming multipart file against the MIME allow-list and size cap,
    and return its bytes.
    """
    allowed = ALLOWED_MIME_TYPES if allowed is None else allowed
    if file.content_type not in allowed:
        raise ApiError(400, "Invalid file type. Only images, videos, and documents are allowed.")
    data = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise ApiError(400, f"File too large. Maximum size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB.")
    return data


class SupabaseStorage:
    def __init__(
        self,
        url: str,
        service_key: str,
        bucket: str,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 60.0,
    ):
        self.base_url = url.rstrip("/")
        self.bucket = bucket
        self._client = httpx.Client(
            base_url=f"{self.base_url}/storage/v1",
            headers={"Authorization": f"Bearer {service_key}", "apikey": service_key},
            timeout=timeout,
            transport=transport,
        )

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    def upload(self, data: bytes, path: str, mime_type: str) -> Dict[str, str]:
        try:
            resp = self._client.post(
                f"/object/{self.bucket}/{quote(path)}",
                content=data,
                headers={"Content-Type": mime_type, "x-upsert": "false"},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            log.error("Supabase upload failed", extra={"path": path, "error": str(e)})
            raise StorageError(f"Upload failed: {e}") from e
        return {"url": self.public_url(path), "path": path}

    def delete(self, path: str) -> bool:
        try:
            resp = self._client.request("DELETE", f"/object/{self.bucket}", json={"prefixes": [path]})
            resp.raise_for_status()
        except httpx.HTTPError as e:
            log.error("Supabase delete failed", extra={"path": path, "error": str(e)})
            return False
        return True

    def path_from_url(self, url: str) -> Optional[str]:
        marker = f"/storage/v1/object/public/{self.bucket}/"
        if marker not in url:
            return None
        return url.split(marker, 1)[1]


class LocalStorage:
    def __init__(self, root: str, base_url: str, mount_path: str = "/uploads"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.mount_path = mount_path

    def public_url(self, path: str) -> str:
        return f"{self.base_url}{self.mount_path}/{path}"

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Path escapes storage root: {path}")
        return target

    def upload(self, data: bytes, path: str, mime_type: str) -> Dict[str, str]:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            log.error("Local upload failed", extra={"path": path, "error": str(e)})
            raise StorageError(f"Upload failed: {e}") from e
        return {"url": self.public_url(path), "path": path}

    def delete(self, path: str) -> bool:
        try:
            os.remove(self._resolve(path))
        except (OSError, StorageError) as e:
            log.error("Local delete failed", extra={"path": path, "error": str(e)})
            return False
        return True

    def path_from_url(self, url: str) -> Optional[str]:
        prefix = f"{self.base_url}{self.mount_path}/"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]


def store(storage, data: bytes, path: str, mime_type: str) -> Dict[str, str]:
    """Upload through ``storage``, answering 500 with STORAGE_ERROR on failure."""
    try:
        return storage.upload(data, path, mime_type)
    except StorageError as e:
        raise ApiError(500, "Failed to upload file to storage", error=STORAGE_ERROR, detail=str(e))


def delete_quietly(storage, path: Optional[str]) -> None:
    """Best-effort removal of a stored object; failures are logged only."""
    if not path:
        return
    if not storage.delete(path):
        log.warning("Stored object was not deleted", extra={"path": path})


_storage = None


def get_storage():
    global _storage
    if _storage is None:
        if settings.supabase_configured:
            _storage = SupabaseStorage(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_KEY,
                settings.SUPABASE_BUCKET_NAME,
            )
        else:
            log.info("Supabase not configured, storing uploads on local disk")
            _storage = LocalStorage(settings.LOCAL_UPLOAD_DIR, settings.BASE_URL)
    return _storage
