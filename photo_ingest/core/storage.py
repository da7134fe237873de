"""
Storage Abstraction Layer - The Bridge Pattern

Bucket-scoped object storage used by the photo pipeline. Every rendition
kind lives in its own bucket; objects are addressed by a relative path
inside that bucket and exposed through a public URL of the form

    {base}/storage/v1/object/public/{bucket}/{path}

LocalStorage mirrors that layout on disk for development, SupabaseStorage
talks to the Supabase Storage REST API in production.
"""

import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, List
from urllib.parse import quote, unquote

import httpx
from pydantic import BaseModel

from photo_ingest.core.config import settings
from photo_ingest.core.exceptions import StorageError
from photo_ingest.core.logging import get_logger

logger = get_logger(__name__)

PUBLIC_URL_PREFIX = "/storage/v1/object/public"


class StorageWriteResult(BaseModel):
    """Outcome of a storage call. Provider rejections never raise."""
    ok: bool
    error: Optional[str] = None


class IStorage(ABC):
    """Interface for storage operations - The Bridge"""

    @abstractmethod
    async def put(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "image/webp"
    ) -> StorageWriteResult:
        """
        Store an object. Existing objects are never overwritten.

        Args:
            bucket: Bucket holding this rendition kind
            path: Object path relative to the bucket
            data: Raw bytes of the object
            content_type: MIME type of the object

        Returns:
            StorageWriteResult with ok=False and the provider's message
            when the write was rejected
        """

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        """Public URL for an object; no network round trip."""

    @abstractmethod
    async def remove(self, bucket: str, paths: List[str]) -> StorageWriteResult:
        """Delete objects from a bucket. Missing objects are not an error."""

    def path_from_public_url(self, bucket: str, url: str) -> Optional[str]:
        """
        Reverse-map a public URL to its object path inside `bucket`.

        Returns None when the URL does not belong to that bucket.
        """
        pattern = re.compile(f"{PUBLIC_URL_PREFIX}/{re.escape(bucket)}/(.+)$")
        match = pattern.search(url)
        return unquote(match.group(1)) if match else None

    async def aclose(self):
        """Release any held connections."""


def _safe_relative(path: str) -> str:
    parts = [p for p in path.split("/") if p]
    if not parts or any(p in (".", "..") for p in parts):
        raise ValueError(f"Invalid storage path: {path!r}")
    return "/".join(parts)


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development."""

    def __init__(self, base_path: str = "./data/storage", public_base_url: str = ""):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _file_path(self, bucket: str, path: str) -> Path:
        return self.base_path / _safe_relative(bucket) / _safe_relative(path)

    async def put(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "image/webp"
    ) -> StorageWriteResult:
        try:
            file_path = self._file_path(bucket, path)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            # "xb" refuses to clobber an existing object
            with open(file_path, "xb") as f:
                f.write(data)
        except FileExistsError:
            return StorageWriteResult(ok=False, error="The resource already exists")
        except (OSError, ValueError) as e:
            logger.error("storage_upload_error", bucket=bucket, path=path, error=str(e))
            return StorageWriteResult(ok=False, error=str(e))

        return StorageWriteResult(ok=True)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}{PUBLIC_URL_PREFIX}/{bucket}/{quote(path, safe='/')}"

    async def remove(self, bucket: str, paths: List[str]) -> StorageWriteResult:
        try:
            for path in paths:
                self._file_path(bucket, path).unlink(missing_ok=True)
        except (OSError, ValueError) as e:
            logger.error("storage_remove_error", bucket=bucket, error=str(e))
            return StorageWriteResult(ok=False, error=str(e))
        return StorageWriteResult(ok=True)

    async def exists(self, bucket: str, path: str) -> bool:
        return self._file_path(bucket, path).exists()


class SupabaseStorage(IStorage):
    """Supabase Storage implementation for production."""

    def __init__(
        self,
        url: str,
        service_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.url}/storage/v1",
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {service_key}",
                "apikey": service_key,
            },
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or body)
        return str(body)

    async def put(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "image/webp"
    ) -> StorageWriteResult:
        try:
            response = await self._client.post(
                f"/object/{bucket}/{quote(path, safe='/')}",
                content=data,
                headers={
                    "content-type": content_type,
                    "cache-control": "max-age=3600",
                    "x-upsert": "false",
                },
            )
        except httpx.HTTPError as e:
            logger.error("storage_upload_error", bucket=bucket, path=path, error=str(e))
            return StorageWriteResult(ok=False, error=str(e) or type(e).__name__)

        if response.is_error:
            error = self._error_message(response)
            logger.error(
                "storage_upload_error",
                bucket=bucket,
                path=path,
                http_status=response.status_code,
                error=error
            )
            return StorageWriteResult(ok=False, error=error)

        return StorageWriteResult(ok=True)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}{PUBLIC_URL_PREFIX}/{bucket}/{quote(path, safe='/')}"

    async def remove(self, bucket: str, paths: List[str]) -> StorageWriteResult:
        response = await self._client.request(
            "DELETE",
            f"/object/{bucket}",
            json={"prefixes": paths},
        )
        if response.is_error:
            return StorageWriteResult(ok=False, error=self._error_message(response))
        return StorageWriteResult(ok=True)

    async def aclose(self):
        await self._client.aclose()


class StorageFactory:
    """
    Factory for creating storage instances.

    STORAGE_BACKEND=supabase plus SUPABASE_URL / SUPABASE_SERVICE_KEY selects
    the Supabase backend; anything else uses the local filesystem.
    """

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        """Get the appropriate storage implementation based on settings."""
        if cls._instance is None:
            backend = settings.STORAGE_BACKEND.lower()
            if backend == "supabase":
                if not (settings.SUPABASE_URL and settings.SUPABASE_SERVICE_KEY):
                    raise StorageError(
                        "STORAGE_BACKEND=supabase requires SUPABASE_URL and SUPABASE_SERVICE_KEY"
                    )
                cls._instance = SupabaseStorage(
                    url=settings.SUPABASE_URL,
                    service_key=settings.SUPABASE_SERVICE_KEY,
                    timeout=settings.STORAGE_TIMEOUT_SECONDS
                )
            else:
                cls._instance = LocalStorage(
                    base_path=settings.LOCAL_STORAGE_PATH,
                    public_base_url=settings.PUBLIC_BASE_URL
                )
            logger.info("storage_initialized", backend=type(cls._instance).__name__)

        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


# Convenience function for dependency injection
def get_storage() -> IStorage:
    """Get the storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
