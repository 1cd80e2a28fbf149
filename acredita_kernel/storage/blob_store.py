"""
Filesystem blob store.

Relative paths (``credentials/images/<uuid>.png``) are stored on entities;
this adapter resolves them under a root directory and builds public URLs
from a base URL.  Paths escaping the root are rejected.
"""

from __future__ import annotations

import os
from pathlib import Path

from acredita_kernel.exceptions import BlobNotFoundError, StorageError
from acredita_kernel.logging_config import get_logger

logger = get_logger("storage.blob_store")


class LocalBlobStore:
    """``BlobStore`` implementation over a local directory."""

    def __init__(self, root: str | Path, base_url: str = "/storage"):
        self._root = Path(root).resolve()
        self._base_url = base_url.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        target = (self._root / path.lstrip("/")).resolve()
        if target != self._root and self._root not in target.parents:
            raise StorageError(f"Path escapes blob store root: {path}")
        return target

    def put(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, target)
        logger.debug("blob_stored", extra={"path": path, "size": len(data)})
        return path

    def exists(self, path: str | None) -> bool:
        if not path:
            return False
        return self._resolve(path).is_file()

    def delete(self, path: str | None) -> bool:
        """Remove the blob; returns False when nothing was stored there."""
        if not path:
            return False
        target = self._resolve(path)
        if not target.is_file():
            return False
        target.unlink()
        logger.debug("blob_deleted", extra={"path": path})
        return True

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(path)
        return target.read_bytes()

    def url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def local_path(self, path: str) -> Path:
        return self._resolve(path)
