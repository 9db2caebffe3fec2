"""
Shared types, enums, and constants.
"""
import os
from enum import Enum
from typing import Final, Literal

# File type classifications
FileKind = Literal["png", "jpeg", "unknown"]

# Error codes
class ErrorCode(str, Enum):
    """Standardized error codes (string enum)."""

    # Input / container
    UNSUPPORTED = "UNSUPPORTED"
    NOT_FOUND = "NOT_FOUND"
    TOO_LARGE = "TOO_LARGE"
    READ_ERROR = "READ_ERROR"

    # Parsing
    INVALID_JSON = "INVALID_JSON"
    PARSE_ERROR = "PARSE_ERROR"

# Generator formats (discriminant of ImageMetadata)
class MetadataFormat(str, Enum):
    """Which generator schema an embedded metadata record follows."""
    INVOKEAI = "invokeai"
    AUTOMATIC1111 = "automatic1111"
    COMFYUI = "comfyui"
    UNKNOWN = "unknown"

# File extensions by type
EXTENSIONS: Final[dict[FileKind, set[str]]] = {
    "png": {".png"},
    "jpeg": {".jpg", ".jpeg"},
    "unknown": set(),
}

def classify_file(filename: str) -> FileKind:
    """
    Classify file by extension.

    Args:
        filename: File name or path

    Returns:
        File kind (png, jpeg, unknown)
    """
    ext = os.path.splitext(filename)[1].lower()

    for kind, exts in EXTENSIONS.items():
        if ext in exts:
            return kind

    return "unknown"
