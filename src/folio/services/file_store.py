"""Opaque blob storage for uploaded files.

Blobs land in a staging area when uploaded and are copied under the owning
project when they become permanent. The rest of the application only sees
storage keys.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from uuid import UUID, uuid4

from folio.config import settings

logger = logging.getLogger(__name__)


class FileStoreError(Exception):
    """Raised when the blob store cannot complete an operation."""


@dataclass(frozen=True)
class StoredBlob:
    key: str
    size: int


class FileStore(Protocol):
    """Blob store contract."""

    async def store(self, data: bytes) -> StoredBlob: ...

    async def promote(self, key: str, project_id: UUID) -> str: ...

    async def discard(self, key: str) -> None: ...

    async def read(self, key: str) -> bytes: ...


class LocalFileStore:
    """File store backed by a directory on local disk."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise FileStoreError(f"Storage key escapes the store root: {key}")
        return path

    async def store(self, data: bytes) -> StoredBlob:
        key = f"staging/{uuid4().hex}"
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise FileStoreError(f"Failed to store blob: {e}") from e
        return StoredBlob(key=key, size=len(data))

    async def promote(self, key: str, project_id: UUID) -> str:
        """Copy a staged blob under the project and return the permanent key."""
        new_key = f"projects/{project_id}/{uuid4().hex}"
        source = self._path(key)
        target = self._path(new_key)

        def _copy() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)

        try:
            await asyncio.to_thread(_copy)
        except OSError as e:
            raise FileStoreError(f"Failed to promote blob {key}: {e}") from e
        return new_key

    async def discard(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            raise FileStoreError(f"Failed to discard blob {key}: {e}") from e

    async def read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise FileStoreError(f"Failed to read blob {key}: {e}") from e


_file_store: FileStore | None = None


def get_file_store() -> FileStore:
    """Get the process-wide file store (FastAPI dependency)."""
    global _file_store
    if _file_store is None:
        _file_store = LocalFileStore(settings.file_store_root)
        logger.info("Using local file store at %s", settings.file_store_root)
    return _file_store
