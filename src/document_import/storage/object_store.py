"""
Content-addressed object storage.

Uploaded files are stored under a deterministic key derived from tenant,
upload date and content hash:

    {tenant}/{YYYY}/{MM}/{DD}/{sha256}.{ext}

The pipeline only needs put/get/delete by key; LocalObjectStore keeps objects
on the filesystem. Any other backend (S3, GCS, ...) can implement the
ObjectStore protocol.
"""

import hashlib
import logging
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")


class ObjectNotFoundError(KeyError):
    """No object stored under the key."""

    pass


class ObjectStore(Protocol):
    def put(self, key: str, data: bytes) -> None: ...
    def get(self, key: str) -> bytes: ...
    def delete(self, key: str) -> bool: ...
    def exists(self, key: str) -> bool: ...


def compute_checksum(data: bytes) -> str:
    """SHA256 hex digest of file content."""
    return hashlib.sha256(data).hexdigest()


def build_object_key(
    tenant_id: str,
    checksum: str,
    extension: str,
    uploaded_at: Optional[datetime] = None,
) -> str:
    """
    Build the storage key for an upload.

    The same content uploaded by the same tenant on the same day maps to the
    same key, so re-uploads do not duplicate bytes.
    """
    if not _SAFE_SEGMENT.match(tenant_id or ""):
        raise ValueError(f"tenant id not usable in a storage key: {tenant_id!r}")
    uploaded_at = uploaded_at or datetime.now(timezone.utc)
    ext = extension.lower().lstrip(".")
    name = f"{checksum}.{ext}" if ext else checksum
    return f"{tenant_id}/{uploaded_at:%Y/%m/%d}/{name}"


class LocalObjectStore:
    """Filesystem-backed object store."""

    def __init__(self, root_dir: Path | str) -> None:
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        parts = key.split("/")
        if not parts or any(not _SAFE_SEGMENT.match(part) for part in parts):
            raise ValueError(f"invalid object key: {key!r}")
        return self.root.joinpath(*parts)

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        tmp.write_bytes(data)
        tmp.replace(path)  # atomic on same filesystem
        logger.debug("Stored %d bytes at %s", len(data), key)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise ObjectNotFoundError(key)
        return path.read_bytes()

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        logger.debug("Deleted object %s", key)
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).exists()
