"""
File storage backend for uploaded form artifacts.

Stores blobs submitted through file fields and hands back a handle that
the record keeps in its column.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from dazzle_admin.runtime.errors import FileStorageError
from dazzle_admin.runtime.logging import get_store_logger

logger = get_store_logger()


@dataclass(frozen=True)
class UploadedBlob:
    """A file submitted in a multipart form."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


# =============================================================================
# File Metadata
# =============================================================================


class StoredFile(BaseModel):
    """Handle to an artifact persisted by a storage backend."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Storage path/key, kept in the record column")
    filename: str = Field(description="Sanitized original filename")
    content_type: str = Field(description="MIME type")
    size: int = Field(description="File size in bytes")
    url: str = Field(description="Public URL")
    created_at: datetime = Field(description="Upload timestamp")


# =============================================================================
# Storage Backend Protocol
# =============================================================================


class StorageBackend(ABC):
    """Abstract storage backend interface."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name identifier."""

    @abstractmethod
    async def store(self, blob: UploadedBlob, path_prefix: str = "") -> StoredFile:
        """
        Store a blob and return its handle.

        Args:
            blob: Uploaded file
            path_prefix: Optional path prefix (resource/field) for organization

        Raises:
            FileStorageError: If the blob cannot be written
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a stored artifact.

        Returns:
            True if something was deleted
        """

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Get the public URL of a stored artifact."""


# =============================================================================
# Local Storage Backend
# =============================================================================


class LocalStorageBackend(StorageBackend):
    """
    Local filesystem storage backend.

    Stores files in a local directory, suitable for development
    and simple deployments.
    """

    def __init__(
        self,
        base_path: str | Path = ".dazzle/uploads",
        base_url: str = "/files",
    ):
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/")
        self.base_path.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return "local"

    def _resolve(self, key: str) -> Path:
        """Map a key to a path inside ``base_path``."""
        root = self.base_path.resolve()
        full_path = (root / key).resolve()
        if not full_path.is_relative_to(root):
            raise FileStorageError(f"Storage key escapes upload directory: {key}")
        return full_path

    async def store(self, blob: UploadedBlob, path_prefix: str = "") -> StoredFile:
        """Store file in local filesystem."""
        file_id = uuid4()
        safe_filename = secure_filename(blob.filename)

        # Organize by date for easy cleanup
        date_path = datetime.now().strftime("%Y/%m/%d")
        relative_path = f"{path_prefix}/{date_path}" if path_prefix else date_path
        key = f"{relative_path}/{file_id}_{safe_filename}"

        full_path = self._resolve(key)
        try:
            await asyncio.to_thread(_write_bytes, full_path, blob.data)
        except OSError as exc:
            raise FileStorageError(f"Could not store {safe_filename}: {exc}") from exc

        logger.debug(f"Stored {key} ({blob.size} bytes)")
        return StoredFile(
            key=key,
            filename=safe_filename,
            content_type=blob.content_type,
            size=blob.size,
            url=self.get_url(key),
            created_at=datetime.now(UTC),
        )

    async def delete(self, key: str) -> bool:
        """Delete file from local filesystem."""
        full_path = self._resolve(key)
        if not full_path.is_file():
            return False
        try:
            await asyncio.to_thread(full_path.unlink)
        except OSError as exc:
            raise FileStorageError(f"Could not delete {key}: {exc}") from exc
        logger.debug(f"Deleted {key}")
        return True

    def get_url(self, key: str) -> str:
        """Get URL for file access."""
        return f"{self.base_url}/{key}"


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


# =============================================================================
# Utilities
# =============================================================================


def secure_filename(filename: str) -> str:
    """
    Sanitize filename for safe storage.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename
    """
    # Get just the filename, no path
    filename = Path(filename.replace("\\", "/")).name

    # Remove any non-alphanumeric except dots, dashes, underscores
    filename = re.sub(r"[^\w.\-]", "_", filename)

    # Ensure it doesn't start with a dot (hidden file)
    filename = filename.lstrip(".")

    # Limit length
    if "." in filename:
        name, ext = filename.rsplit(".", 1)
        filename = f"{name[:100]}.{ext[:10]}"
    else:
        filename = filename[:100]

    if not filename:
        filename = "unnamed_file"

    return filename


def matches_content_type(content_type: str, allowed_types: list[str]) -> bool:
    """Check a MIME type against an allow list (supports ``image/*`` wildcards)."""
    content_type = content_type.split(";")[0].strip().lower()
    for allowed in allowed_types:
        allowed = allowed.lower()
        if allowed.endswith("/*"):
            if content_type.startswith(allowed[:-1]):
                return True
        elif content_type == allowed:
            return True
    return False
