"""Blob storage for uploaded video files."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    @abstractmethod
    async def upload_file(self, path: str, data: bytes, content_type: str | None = None) -> str:
        """Store `data` at `path` and return its public URL."""

    @abstractmethod
    async def delete_file(self, path: str) -> None:
        ...


class LocalBlobStore(BlobStore):
    """Writes blobs under a directory that the web app serves publicly."""

    def __init__(self, root: str | Path, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise ValueError(f"Blob path escapes storage root: {path}")
        return target

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{path.lstrip('/')}"

    async def upload_file(self, path: str, data: bytes, content_type: str | None = None) -> str:
        target = self._resolve(path)

        def _write():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info(f"Stored blob {path} ({len(data)} bytes, {content_type})")
        return self.public_url(path)

    async def delete_file(self, path: str) -> None:
        target = self._resolve(path)
        await asyncio.to_thread(target.unlink)
