"""
Shared types, enums, and constants.
"""
import os
from enum import Enum
from typing import Final


class MediaKind(str, Enum):
    """Classification of a filesystem entry under the library root."""

    IMAGE = "image"
    VIDEO = "video"
    DIRECTORY = "directory"
    IGNORED = "ignored"


# Error codes
class ErrorCode(str, Enum):
    """Standardized error codes (string enum)."""

    # Client / validation
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    OUTSIDE_ROOT = "OUTSIDE_ROOT"
    UNSUPPORTED = "UNSUPPORTED"

    # Server / infrastructure
    DB_ERROR = "DB_ERROR"
    TIMEOUT = "TIMEOUT"
    FS_ERROR = "FS_ERROR"

    # Watch lifecycle
    NO_ROOT = "NO_ROOT"
    WATCH_FAILED = "WATCH_FAILED"
    ROOT_SWITCH_FAILED = "ROOT_SWITCH_FAILED"


# File extensions by kind (lowercase, with leading dot)
EXTENSIONS: Final[dict[MediaKind, frozenset[str]]] = {
    MediaKind.IMAGE: frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"}),
    MediaKind.VIDEO: frozenset({".mp4", ".mov", ".webm", ".mkv", ".avi"}),
}


def classify_file(filename: str) -> MediaKind:
    """
    Classify a file by extension.

    Args:
        filename: File name or path

    Returns:
        MediaKind.IMAGE, MediaKind.VIDEO or MediaKind.IGNORED
    """
    ext = os.path.splitext(filename)[1].lower()

    for kind, exts in EXTENSIONS.items():
        if ext in exts:
            return kind

    return MediaKind.IGNORED
