"""Deterministic hashes: rollout buckets, package content, deployment keys."""

from __future__ import annotations

import hashlib
import io
import secrets
import zipfile

BUCKET_COUNT = 100

_IGNORED_ZIP_PREFIXES = ("__MACOSX/",)
_IGNORED_ZIP_NAMES = {".DS_Store"}


def compute_bucket(deployment_key: str, client_unique_id: str) -> int:
    """Stable bucket in ``[0, 99]`` for a device within a deployment."""
    digest = hashlib.sha256(f"{deployment_key}{client_unique_id}".encode()).hexdigest()
    return int(digest, 16) % BUCKET_COUNT


def is_in_rollout(bucket: int, rollout: int) -> bool:
    return bucket < rollout


def _is_ignored(name: str) -> bool:
    if name.endswith("/"):
        return True
    if any(name.startswith(prefix) for prefix in _IGNORED_ZIP_PREFIXES):
        return True
    return name.rsplit("/", 1)[-1] in _IGNORED_ZIP_NAMES


def _manifest_hash(archive: zipfile.ZipFile) -> str:
    lines = []
    for info in archive.infolist():
        if _is_ignored(info.filename):
            continue
        entry_hash = hashlib.sha256(archive.read(info)).hexdigest()
        lines.append(f"{info.filename}:{entry_hash}")
    lines.sort()
    return hashlib.sha256("\n".join(lines).encode()).hexdigest()


def compute_package_hash(content: bytes) -> str:
    """Content hash of an uploaded bundle.

    Zip bundles are hashed over their sorted file manifest so that
    re-archiving the same files yields the same hash; anything else is
    hashed byte for byte.
    """
    if zipfile.is_zipfile(io.BytesIO(content)):
        try:
            with zipfile.ZipFile(io.BytesIO(content)) as archive:
                return _manifest_hash(archive)
        except zipfile.BadZipFile:
            pass
    return hashlib.sha256(content).hexdigest()


def generate_deployment_key() -> str:
    return secrets.token_urlsafe(32)
