"""Content-addressed package blob storage."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Protocol

from release_engine.config import settings
from release_engine.errors import InternalError, InvalidArgumentError

logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


class BlobStore(Protocol):
    def put(self, content: bytes, package_hash: str) -> str: ...

    def exists(self, package_hash: str) -> bool: ...

    def delete(self, package_hash: str) -> None: ...

    def url_for(self, package_hash: str) -> str: ...


def _validate_hash(package_hash: str) -> str:
    if not _HASH_RE.match(package_hash or ""):
        raise InvalidArgumentError("Invalid package hash")
    return package_hash


class LocalBlobStore:
    """Stores blobs under ``<root>/<hash[:2]>/<hash>``; never rewrites a hash."""

    def __init__(self, root: str | None = None, url_prefix: str | None = None):
        self.root = Path(root or settings.blob_storage_dir)
        self.url_prefix = (url_prefix or settings.blob_url_prefix).rstrip("/")

    def path_for(self, package_hash: str) -> Path:
        package_hash = _validate_hash(package_hash)
        return self.root / package_hash[:2] / package_hash

    def url_for(self, package_hash: str) -> str:
        return f"{self.url_prefix}/{_validate_hash(package_hash)}"

    def exists(self, package_hash: str) -> bool:
        return self.path_for(package_hash).is_file()

    def put(self, content: bytes, package_hash: str) -> str:
        path = self.path_for(package_hash)
        if path.is_file():
            logger.info("Blob %s already stored, skipping upload", package_hash)
            return self.url_for(package_hash)
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(content)
            os.replace(tmp_path, path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise InternalError("Failed to store package blob") from exc
        return self.url_for(package_hash)

    def delete(self, package_hash: str) -> None:
        path = self.path_for(package_hash)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise InternalError("Failed to delete package blob") from exc


_default_store: LocalBlobStore | None = None


def get_blob_store() -> BlobStore:
    global _default_store
    if _default_store is None:
        _default_store = LocalBlobStore()
    return _default_store
