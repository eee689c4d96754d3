"""
Type detection and format families.
"""

from .detector import DetectionResult, detect, manual_override
from .formats import FormatFamily, file_extension, format_family, resolve_extension

__all__ = [
    "DetectionResult",
    "detect",
    "manual_override",
    "FormatFamily",
    "file_extension",
    "format_family",
    "resolve_extension",
]
