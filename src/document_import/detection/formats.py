"""
Format families.

Every accepted upload belongs to exactly one format family, decided from the
file extension (falling back to the declared mime type). The family selects
the extraction strategy; it never changes for the life of a job.
"""

from enum import Enum
from pathlib import PurePosixPath
from typing import Optional


class FormatFamily(str, Enum):
    """Closed set of input format families."""

    XML = "XML"
    CSV = "CSV"
    PDF = "PDF"
    IMAGE = "IMAGE"


IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "heic", "webp"})

EXTENSION_FAMILIES = {
    "xml": FormatFamily.XML,
    "csv": FormatFamily.CSV,
    "pdf": FormatFamily.PDF,
    **{ext: FormatFamily.IMAGE for ext in IMAGE_EXTENSIONS},
}

MIME_FAMILIES = {
    "application/xml": FormatFamily.XML,
    "text/xml": FormatFamily.XML,
    "text/csv": FormatFamily.CSV,
    "application/csv": FormatFamily.CSV,
    "application/pdf": FormatFamily.PDF,
}

MIME_EXTENSIONS = {
    "application/xml": "xml",
    "text/xml": "xml",
    "text/csv": "csv",
    "application/csv": "csv",
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/heic": "heic",
    "image/webp": "webp",
}


def file_extension(filename: Optional[str]) -> str:
    """Lowercase extension without the dot ("" if none)."""
    if not filename:
        return ""
    return PurePosixPath(filename.replace("\\", "/")).suffix.lower().lstrip(".")


def resolve_extension(filename: Optional[str], mime_type: Optional[str]) -> str:
    """Extension from the filename, else derived from the mime type."""
    ext = file_extension(filename)
    if ext:
        return ext
    return MIME_EXTENSIONS.get((mime_type or "").split(";")[0].strip().lower(), "")


def format_family(filename: Optional[str], mime_type: Optional[str] = None) -> Optional[FormatFamily]:
    """
    Resolve the format family of an upload.

    Returns:
        FormatFamily, or None when neither extension nor mime type is known
    """
    ext = file_extension(filename)
    if ext in EXTENSION_FAMILIES:
        return EXTENSION_FAMILIES[ext]

    mime = (mime_type or "").split(";")[0].strip().lower()
    if mime in MIME_FAMILIES:
        return MIME_FAMILIES[mime]
    if mime.startswith("image/"):
        return FormatFamily.IMAGE
    return None
