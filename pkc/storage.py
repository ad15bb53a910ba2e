"""
Blob storage for uploaded file bytes.

Paths are owner-scoped: {owner_id}/{uuid}{ext}. All methods receive the
full storage path.
"""
import os
import uuid
from abc import ABC, abstractmethod

from .errors import StorageError
from .logging_config import logger


def build_storage_path(owner_id: str, filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    return f"{owner_id}/{uuid.uuid4()}{ext}"


class BlobStorage(ABC):
    """Abstract base class for blob storage implementations."""

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str = "") -> None:
        """
        Store bytes at path. Never overwrites an existing object.

        Raises:
            StorageError: If the upload fails.
        """
        ...

    @abstractmethod
    def get(self, path: str) -> bytes:
        """
        Read bytes back.

        Raises:
            StorageError: If the object does not exist or cannot be read.
        """
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        """
        Delete an object.

        Best-effort: logs errors but doesn't raise.
        """
        ...


class LocalBlobStorage(BlobStorage):
    """Stores objects as files under a root directory."""

    def __init__(self, root: str):
        self._root = os.path.abspath(root)

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self._root, path))
        if os.path.commonpath([full, self._root]) != self._root:
            raise StorageError(f"Invalid storage path: {path}")
        return full

    def put(self, path: str, data: bytes, content_type: str = "") -> None:
        full = self._full_path(path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "xb") as f:
                f.write(data)
        except OSError as e:
            logger.error("Blob upload failed", path=path, error=str(e))
            raise StorageError("Failed to upload file to storage") from e

    def get(self, path: str) -> bytes:
        full = self._full_path(path)
        try:
            with open(full, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Failed to read {path} from storage") from e

    def delete(self, path: str) -> None:
        try:
            os.remove(self._full_path(path))
        except FileNotFoundError:
            logger.warning("Blob already gone", path=path)
        except (OSError, StorageError) as e:
            logger.error("Blob deletion failed", path=path, error=str(e))
