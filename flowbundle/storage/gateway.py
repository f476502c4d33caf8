"""Supabase Storage gateway for bundle members.

Every archive member is uploaded once under a namespaced key and later
exposed to browsers only through short-lived signed URLs. The service
role key is used server-side only; it is never sent to the frontend.

Calls are synchronous and are not retried: a failure surfaces to the
caller immediately as an `UploadFailed`, `SigningFailed`, `FetchFailed`
or `DeleteFailed`. Deleting a key that no longer exists is not an error.

Security:
  - `_validate_path()` rejects keys with a `..` component or null bytes
    before any network call is made.

Configuration:
  SUPABASE_URL         : Supabase project URL
  SUPABASE_SERVICE_KEY : Service role key
  STORAGE_BUCKET       : Bucket name (default: "fluxos")
"""

from __future__ import annotations

import logging
import uuid
from pathlib import PurePosixPath
from typing import Any, Optional, Protocol, runtime_checkable

import httpx
from fastapi import Depends
from supabase import Client, create_client

from flowbundle.core.config import Settings, get_settings
from flowbundle.core.errors import DeleteFailed, FetchFailed, SigningFailed, UploadFailed

logger = logging.getLogger(__name__)

DEFAULT_SIGNED_URL_EXPIRY = 3600


@runtime_checkable
class StorageGateway(Protocol):
    """Object store operations needed by ingestion and rendering."""

    def upload(self, content: bytes, key: str, mime_type: str) -> str:
        """Store `content` under `key` and return the stored key.

        Raises:
            UploadFailed: On any storage or transport error.
        """
        ...

    def sign(self, key: str, expires_in: int = DEFAULT_SIGNED_URL_EXPIRY) -> str:
        """Return an absolute URL granting read access to `key` for `expires_in` seconds.

        Raises:
            SigningFailed: On any storage or transport error.
        """
        ...

    def fetch(self, url: str) -> bytes:
        """Download the bytes behind a signed URL.

        Raises:
            FetchFailed: On a non-2xx response or transport error.
        """
        ...

    def delete(self, key: str) -> None:
        """Remove `key`. A missing key is treated as already deleted.

        Raises:
            DeleteFailed: On any other storage or transport error.
        """
        ...


def _validate_path(path: str) -> None:
    """Reject storage keys that could be used for path traversal.

    Raises:
        ValueError: If the key is empty, has a `..` component or a null byte.
    """
    if not path:
        raise ValueError("Storage path must not be empty")
    if any(part == ".." for part in path.split("/")):
        raise ValueError(
            f"Invalid storage path: path traversal detected: {path!r}"
        )
    if "\x00" in path:
        raise ValueError(
            f"Invalid storage path: null byte detected: {path!r}"
        )


def unique_name(original_name: str) -> str:
    """Append a short random suffix to a file's base name, keeping its extension.

    "libs/css/app.css" -> "app_1a2b3c4d.css"; ".htaccess" -> ".htaccess_1a2b3c4d".
    """
    base = PurePosixPath(original_name.replace("\\", "/")).name or "file"
    suffix = uuid.uuid4().hex[:8]
    dot = base.rfind(".")
    if dot > 0:
        return f"{base[:dot]}_{suffix}{base[dot:]}"
    return f"{base}_{suffix}"


def build_storage_key(prefix: str, flow_code: str, original_name: str) -> str:
    """Namespace a member under its flow: "{prefix}/{flow_code}/{unique name}"."""
    return f"{prefix.strip('/')}/{flow_code}/{unique_name(original_name)}"


class SupabaseStorage:
    """`StorageGateway` backed by a Supabase Storage bucket.

    The Supabase client is created on first use so constructing the gateway
    (e.g. per request through `get_storage`) never touches the network.
    """

    def __init__(
        self,
        supabase_url: str,
        service_key: str,
        bucket: str,
        timeout: float = 30.0,
        client: Optional[Client] = None,
    ) -> None:
        self.supabase_url = supabase_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseStorage":
        return cls(
            supabase_url=settings.supabase_url,
            service_key=settings.supabase_service_key,
            bucket=settings.storage_bucket,
            timeout=settings.storage_timeout_seconds,
        )

    def _bucket(self) -> Any:
        if self._client is None:
            self._client = create_client(self.supabase_url, self.service_key)
        return self._client.storage.from_(self.bucket)

    def upload(self, content: bytes, key: str, mime_type: str) -> str:
        _validate_path(key)
        try:
            self._bucket().upload(
                key,
                content,
                file_options={"content-type": mime_type, "upsert": "false"},
            )
        except Exception as exc:
            logger.error("Upload to bucket %s failed for '%s': %s", self.bucket, key, exc)
            raise UploadFailed(key, "Storage upload failed", exc) from exc

        logger.debug("Uploaded %d bytes to %s", len(content), key)
        return key

    def sign(self, key: str, expires_in: int = DEFAULT_SIGNED_URL_EXPIRY) -> str:
        _validate_path(key)
        try:
            result = self._bucket().create_signed_url(key, expires_in)
        except Exception as exc:
            logger.error("Failed to generate signed URL for '%s': %s", key, exc)
            raise SigningFailed(key, "Signed URL generation failed", exc) from exc

        # supabase-py returns a dict (signedURL / signedUrl); newer storage
        # clients return an object exposing signed_url.
        if isinstance(result, dict):
            signed_url: Optional[str] = result.get("signedURL") or result.get("signedUrl")
        else:
            signed_url = getattr(result, "signed_url", None)

        if not signed_url:
            logger.warning("Supabase returned no signed URL for path '%s': %s", key, result)
            raise SigningFailed(key, "Storage returned no signed URL")

        return self._absolute(signed_url)

    def _absolute(self, signed_url: str) -> str:
        """Join a relative signed path ("/object/sign/...") onto the storage API root."""
        if signed_url.startswith(("http://", "https://")):
            return signed_url
        return f"{self.supabase_url}/storage/v1/{signed_url.lstrip('/')}"

    def fetch(self, url: str) -> bytes:
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                response = client.get(url)
        except httpx.HTTPError as exc:
            logger.error("Download from storage failed: %s", exc)
            raise FetchFailed(url.split("?", 1)[0], "Storage download failed", exc) from exc

        if response.status_code >= 400:
            logger.error(
                "Download from storage failed. Status: %s, Body: %s",
                response.status_code, response.text[:200],
            )
            raise FetchFailed(
                url.split("?", 1)[0],
                f"Storage download failed with status {response.status_code}",
            )
        return response.content

    def delete(self, key: str) -> None:
        _validate_path(key)
        try:
            removed = self._bucket().remove([key])
        except Exception as exc:
            if _is_not_found(exc):
                logger.info("Storage object already absent: %s", key)
                return
            logger.warning("Failed to delete storage object %s: %s", key, exc)
            raise DeleteFailed(key, "Storage delete failed", exc) from exc

        if not removed:
            logger.info("Storage object already absent: %s", key)
        else:
            logger.info("Deleted storage object: %s", key)


def _is_not_found(exc: Exception) -> bool:
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if str(status) == "404":
        return True
    return "not found" in str(exc).lower()


def get_storage(settings: Settings = Depends(get_settings)) -> StorageGateway:
    """FastAPI dependency returning the configured storage gateway."""
    return SupabaseStorage.from_settings(settings)
