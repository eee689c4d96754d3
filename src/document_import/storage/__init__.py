"""
Object storage for uploaded files.
"""

from .object_store import (
    LocalObjectStore,
    ObjectNotFoundError,
    ObjectStore,
    build_object_key,
    compute_checksum,
)

__all__ = [
    "LocalObjectStore",
    "ObjectNotFoundError",
    "ObjectStore",
    "build_object_key",
    "compute_checksum",
]
