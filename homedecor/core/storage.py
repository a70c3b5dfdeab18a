"""
Storage Abstraction Layer

Generated images are persisted through ``IStorage``. The pipeline only ever
sees the URL returned by ``store()``; ``LocalStorage`` writes to disk and
returns a root-relative URL served by the static mount in ``main``.
"""

import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from homedecor.core.config import settings
from homedecor.core.exceptions import StorageError
from homedecor.core.logging import get_logger

logger = get_logger(__name__)


class IStorage(ABC):
    """Interface for storage operations"""

    @abstractmethod
    async def store(
        self,
        data: bytes,
        filename: str,
        category: str = "uploads",
        content_type: str = "image/png"
    ) -> str:
        """
        Persist a blob and return a URL clients can fetch it from.

        Args:
            data: Raw bytes of the file
            filename: Suggested filename (its extension is kept)
            category: Subfolder/container prefix, e.g. "generated"
            content_type: MIME type of the file

        Returns:
            URL of the stored object
        """
        pass

    @abstractmethod
    async def delete(self, url: str) -> bool:
        """Delete a stored object by the URL ``store()`` returned."""
        pass

    @abstractmethod
    async def exists(self, url: str) -> bool:
        """Check if an object exists in storage."""
        pass


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development."""

    def __init__(self, base_path: str = "./data/storage", url_prefix: str = "/static/storage"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.url_prefix = url_prefix.rstrip("/")

    def _get_unique_filename(self, filename: str) -> str:
        ext = Path(filename).suffix or ".png"
        return f"{uuid.uuid4()}{ext}"

    def _resolve(self, url: str) -> Path:
        key = url
        if key.startswith(self.url_prefix + "/"):
            key = key[len(self.url_prefix) + 1:]
        path = (self.base_path / key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise StorageError(f"Storage key outside of storage root: {url}")
        return path

    async def store(
        self,
        data: bytes,
        filename: str,
        category: str = "uploads",
        content_type: str = "image/png"
    ) -> str:
        if not data:
            raise StorageError("Refusing to store an empty object")

        folder_path = self.base_path / category
        unique_filename = self._get_unique_filename(filename)
        try:
            folder_path.mkdir(parents=True, exist_ok=True)
            (folder_path / unique_filename).write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to write {category}/{unique_filename}: {e}") from e

        logger.debug(
            "storage_object_stored",
            category=category,
            filename=unique_filename,
            size_bytes=len(data),
            content_type=content_type,
        )
        return f"{self.url_prefix}/{category}/{unique_filename}"

    async def delete(self, url: str) -> bool:
        file_path = self._resolve(url)
        if not file_path.exists():
            return False
        try:
            file_path.unlink()
        except OSError as e:
            logger.warning("storage_delete_failed", url=url, error=str(e))
            return False
        return True

    async def exists(self, url: str) -> bool:
        return self._resolve(url).exists()


class StorageFactory:
    """Factory for the process-wide storage instance."""

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        if cls._instance is None:
            cls._instance = LocalStorage(
                base_path=settings.LOCAL_STORAGE_PATH,
                url_prefix=settings.STORAGE_URL_PREFIX,
            )
        return cls._instance
