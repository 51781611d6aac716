"""
Google Cloud Storage client module.
Handles uploads, downloads, deletes and signed download URLs.

The google-cloud-storage client is blocking, so every call runs in a
worker thread and the public methods are coroutines.
"""
import asyncio
import logging
import unicodedata
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional
from urllib.parse import quote

import google.auth
from google.auth.transport.requests import Request
from google.cloud import storage
from google.cloud.storage import Blob

from signflow.config import Settings
from signflow.exceptions import ExternalDependencyException

logger = logging.getLogger(__name__)

GCS_SCHEME = "gs://"


class ObjectStorage(ABC):
    """Object storage operations the services depend on."""

    @abstractmethod
    async def upload(self, data: bytes, path: str, content_type: Optional[str] = None) -> str:
        """Store bytes at path and return the object URL."""

    @abstractmethod
    async def download(self, url: str) -> bytes: ...

    @abstractmethod
    async def delete(self, path: str) -> None: ...

    @abstractmethod
    async def create_signed_url(
        self,
        path: str,
        ttl: timedelta,
        filename: Optional[str] = None,
    ) -> str: ...

    async def ping(self) -> bool:
        return True


def normalize_storage_path(path: str, bucket: Optional[str] = None) -> str:
    """
    Turn a gs:// URL or a bucket-relative path into an object path.

    Raises ValueError for path traversal attempts, absolute paths or
    URLs that point at another bucket.
    """
    if not path:
        raise ValueError("Storage path cannot be empty")

    if path.startswith(GCS_SCHEME):
        bucket_name, _, object_path = path[len(GCS_SCHEME):].partition("/")
        if bucket and bucket_name != bucket:
            raise ValueError(f"Object belongs to another bucket: {bucket_name}")
        path = object_path

    if ".." in path.split("/"):
        raise ValueError("Path traversal not allowed")
    if path.startswith("/"):
        raise ValueError("Absolute paths not allowed")
    if not path:
        raise ValueError("Storage path cannot be empty")

    return path


def _encode_filename_for_header(filename: str) -> str:
    """
    Encode filename for Content-Disposition header (RFC 5987/RFC 6266).
    Non-ASCII names get an ASCII fallback plus the UTF-8 form.
    """
    try:
        filename.encode("ascii")
        safe_filename = filename.replace('"', '\\"')
        return f'attachment; filename="{safe_filename}"'
    except UnicodeEncodeError:
        encoded = quote(filename, safe="")
        return f"attachment; filename=\"{_ascii_fallback(filename)}\"; filename*=UTF-8''{encoded}"


def _ascii_fallback(filename: str) -> str:
    """Strip accents, replace what is left outside ASCII."""
    decomposed = unicodedata.normalize("NFKD", filename)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return "".join(c if ord(c) < 128 and c != '"' else "_" for c in stripped)


class GCSStorage(ObjectStorage):
    """Google Cloud Storage client wrapper."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    @property
    def bucket(self) -> storage.Bucket:
        if self._bucket is None:
            self._bucket = self.client.bucket(self.settings.gcs_bucket)
        return self._bucket

    def object_url(self, object_path: str) -> str:
        return f"{GCS_SCHEME}{self.settings.gcs_bucket}/{object_path}"

    def _generate_iam_signed_url(
        self,
        blob: Blob,
        method: str,
        expiration_delta: timedelta,
        response_disposition: Optional[str] = None,
    ) -> str:
        """
        Generates a V4 signed URL using the runtime service account's identity (IAM).
        Works on Cloud Run without a private key file.
        """
        credentials, _ = google.auth.default()
        credentials.refresh(Request())

        return blob.generate_signed_url(
            version="v4",
            expiration=expiration_delta,
            method=method,
            response_disposition=response_disposition,
            service_account_email=credentials.service_account_email,
            access_token=credentials.token,
        )

    def _upload_sync(self, data: bytes, object_path: str, content_type: Optional[str]) -> None:
        blob = self.bucket.blob(object_path)
        blob.upload_from_string(data, content_type=content_type or "application/octet-stream")

    def _download_sync(self, object_path: str) -> bytes:
        blob = self.bucket.blob(object_path)
        if not blob.exists():
            raise FileNotFoundError(f"File not found in GCS: {object_path}")
        return blob.download_as_bytes()

    def _delete_sync(self, object_path: str) -> None:
        blob = self.bucket.blob(object_path)
        if blob.exists():
            blob.delete()

    async def upload(self, data: bytes, path: str, content_type: Optional[str] = None) -> str:
        object_path = normalize_storage_path(path, self.settings.gcs_bucket)
        try:
            await asyncio.to_thread(self._upload_sync, data, object_path, content_type)
        except Exception as e:
            logger.error(f"GCS upload failed for {object_path}: {e}")
            raise ExternalDependencyException("storage", f"Upload failed for {object_path}")
        logger.info(f"Uploaded {len(data)} bytes to {object_path}")
        return self.object_url(object_path)

    async def download(self, url: str) -> bytes:
        object_path = normalize_storage_path(url, self.settings.gcs_bucket)
        try:
            data = await asyncio.to_thread(self._download_sync, object_path)
        except FileNotFoundError:
            logger.error(f"GCS object missing: {object_path}")
            raise ExternalDependencyException("storage", f"Object not found: {object_path}")
        except Exception as e:
            logger.error(f"GCS download failed for {object_path}: {e}")
            raise ExternalDependencyException("storage", f"Download failed for {object_path}")
        logger.info(f"Downloaded {object_path} ({len(data)} bytes)")
        return data

    async def delete(self, path: str) -> None:
        object_path = normalize_storage_path(path, self.settings.gcs_bucket)
        try:
            await asyncio.to_thread(self._delete_sync, object_path)
        except Exception as e:
            logger.error(f"GCS delete failed for {object_path}: {e}")
            raise ExternalDependencyException("storage", f"Delete failed for {object_path}")
        logger.info(f"Deleted {object_path}")

    async def create_signed_url(
        self,
        path: str,
        ttl: timedelta,
        filename: Optional[str] = None,
    ) -> str:
        object_path = normalize_storage_path(path, self.settings.gcs_bucket)
        blob = self.bucket.blob(object_path)
        response_disposition = _encode_filename_for_header(filename) if filename else None
        try:
            return await asyncio.to_thread(
                self._generate_iam_signed_url,
                blob,
                "GET",
                ttl,
                response_disposition,
            )
        except Exception as e:
            logger.error(f"Signed URL generation failed for {object_path}: {e}")
            raise ExternalDependencyException("storage", f"Could not sign URL for {object_path}")

    async def ping(self) -> bool:
        try:
            return await asyncio.to_thread(self.bucket.exists)
        except Exception as e:
            logger.warning(f"GCS ping failed: {e}")
            return False
