"""
Storage Abstraction Layer - The Bridge Pattern

A small interface for persisting PNG buffers and handing back public URLs,
with SupabaseStorage (production) and LocalStorage (development).
"""

import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import httpx

from photofusion.core.config import settings, Settings
from photofusion.core.exceptions import StorageError
from photofusion.core.logging import get_logger
from photofusion.core.metrics import record_upstream_call, track_stage_latency

logger = get_logger(__name__)


def make_object_key(name: str) -> str:
    """Storage key of the form "{uuid4}-{name}"."""
    # Object keys end up in URLs; keep only the basename of client filenames
    safe_name = Path(name).name.replace(" ", "_") or "upload"
    return f"{uuid.uuid4()}-{safe_name}"


class IStorage(ABC):
    """Interface for storage operations - The Bridge"""

    @abstractmethod
    async def upload(
        self,
        file_data: bytes,
        filename: str,
        content_type: str = "image/png"
    ) -> str:
        """
        Upload a file and return its storage key.

        Args:
            file_data: Raw bytes of the file
            filename: Name suffix, prefixed with a fresh uuid4
            content_type: MIME type of the file

        Returns:
            Storage key that can be used with get_url()
        """

    @abstractmethod
    def get_url(self, storage_key: str) -> str:
        """Public URL of a stored object."""

    async def upload_and_get_url(
        self,
        file_data: bytes,
        filename: str,
        content_type: str = "image/png"
    ) -> str:
        with track_stage_latency("storage_upload"):
            key = await self.upload(file_data, filename, content_type=content_type)
        url = self.get_url(key)
        logger.info("object_stored", storage_key=key, size=len(file_data))
        return url


class SupabaseStorage(IStorage):
    """Supabase Storage over its REST API, authenticated with the service role key."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "fusion-images",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0
    ):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self._client = client
        self.timeout = timeout

    def _headers(self, content_type: str) -> dict:
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
            "Content-Type": content_type,
            "x-upsert": "false",
        }

    async def _post(self, url: str, file_data: bytes, content_type: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, content=file_data, headers=self._headers(content_type))
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, content=file_data, headers=self._headers(content_type))

    async def upload(
        self,
        file_data: bytes,
        filename: str,
        content_type: str = "image/png"
    ) -> str:
        key = make_object_key(filename)
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(key)}"

        try:
            response = await self._post(url, file_data, content_type)
        except httpx.HTTPError as e:
            record_upstream_call("supabase", "network")
            raise StorageError(f"Storage upload failed: {e}", stage="storage") from e

        record_upstream_call("supabase", response.status_code)
        if not response.is_success:
            logger.error(
                "supabase_upload_failed",
                storage_key=key,
                http_status=response.status_code,
                body=response.text[:500]
            )
            raise StorageError(
                "Storage upload failed",
                stage="storage",
                details={"http_status": response.status_code, "upstream_error": response.text[:500]}
            )
        return key

    def get_url(self, storage_key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(storage_key)}"


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development."""

    def __init__(self, base_path: str = "./data/storage", public_base_url: str = "http://localhost:8000"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    async def upload(
        self,
        file_data: bytes,
        filename: str,
        content_type: str = "image/png"
    ) -> str:
        key = make_object_key(filename)
        try:
            (self.base_path / key).write_bytes(file_data)
        except OSError as e:
            raise StorageError(f"Storage upload failed: {e}", stage="storage") from e
        return key

    def get_url(self, storage_key: str) -> str:
        """Served by the /static/storage mount in main.py."""
        return f"{self.public_base_url}/static/storage/{quote(storage_key)}"


class StorageFactory:
    """
    Factory for creating storage instances.

    Supabase is used as soon as SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY
    are both set; otherwise files land on the local disk.
    """

    _instance: Optional[IStorage] = None

    @classmethod
    def create(cls, config: Settings, client: Optional[httpx.AsyncClient] = None) -> IStorage:
        if config.supabase_enabled:
            return SupabaseStorage(
                base_url=config.SUPABASE_URL,
                service_key=config.SUPABASE_SERVICE_ROLE_KEY,
                bucket=config.SUPABASE_BUCKET,
                client=client,
                timeout=config.HTTP_TIMEOUT_SECONDS
            )
        if config.ENVIRONMENT.upper() == "PROD":
            logger.warning(
                "supabase_not_configured",
                message="Falling back to LocalStorage in production"
            )
        return LocalStorage(
            base_path=config.LOCAL_STORAGE_PATH,
            public_base_url=config.PUBLIC_BASE_URL
        )

    @classmethod
    def init(cls, client: httpx.AsyncClient, config: Settings = settings) -> IStorage:
        """Build the singleton on top of the app's pooled HTTP client (lifespan startup)."""
        cls._instance = cls.create(config, client=client)
        return cls._instance

    @classmethod
    def close(cls):
        """Drop the singleton once its HTTP client is closed (lifespan shutdown)."""
        cls._instance = None

    @classmethod
    def get_storage(cls) -> IStorage:
        """Get the storage implementation selected by the current settings."""
        if cls._instance is None:
            cls._instance = cls.create(settings)
        return cls._instance


# Convenience function for dependency injection
def get_storage() -> IStorage:
    """Get the storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
