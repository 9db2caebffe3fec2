"""
Metadata entry points: bytes or a path in, classified ``ImageMetadata`` out.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from ...config import DEBUG_MODE, MAX_FILE_SIZE_BYTES
from ...shared import ErrorCode, Result, get_logger
from .classifier import classify_blobs
from .container import decode_container
from .models import ImageMetadata

logger = get_logger(__name__)


def parse_result(buffer: bytes, filename: str = "") -> Result[ImageMetadata]:
    """
    Decode and classify ``buffer``.

    Every failure comes back as an error ``Result``; unexpected exceptions are
    logged and reported as ``PARSE_ERROR``.
    """
    try:
        decoded = decode_container(buffer, filename)
        if not decoded.ok or decoded.data is None:
            logger.debug("No metadata container for %s: [%s] %s", filename, decoded.code, decoded.error)
            return Result.Err(decoded.code, decoded.error or "decode failed", **decoded.meta)

        classified = classify_blobs(decoded.data)
        if not classified.ok:
            logger.debug("Unclassified metadata in %s: [%s] %s", filename, classified.code, classified.error)
        return classified
    except Exception as exc:
        logger.error("Unexpected error parsing %s: %s", filename or "<buffer>", exc, exc_info=DEBUG_MODE)
        return Result.Err(ErrorCode.PARSE_ERROR, f"Unexpected error: {exc}")


def parse(buffer: bytes, filename: str = "") -> Optional[ImageMetadata]:
    """Raw metadata of an image buffer, or None. Never raises."""
    result = parse_result(buffer, filename)
    return result.data if result.ok else None


def read_image_metadata(path: str | os.PathLike[str], max_bytes: Optional[int] = None) -> Result[ImageMetadata]:
    """
    Read ``path`` (bounded by ``max_bytes``) and parse it.

    The file's ``size`` and ``mtime`` ride along in ``result.meta`` once it
    could be stat'ed, so callers need no second stat.
    """
    limit = MAX_FILE_SIZE_BYTES if max_bytes is None else int(max_bytes)
    file_path = Path(path)
    try:
        stat = file_path.stat()
    except OSError as exc:
        return Result.Err(ErrorCode.READ_ERROR, f"Cannot stat {file_path}: {exc}")
    stat_meta = {"size": stat.st_size, "mtime": stat.st_mtime}
    if stat.st_size > limit:
        return Result.Err(ErrorCode.TOO_LARGE, f"{file_path.name} is {stat.st_size} bytes (limit {limit})", **stat_meta)

    try:
        buffer = file_path.read_bytes()
    except OSError as exc:
        logger.warning("Failed to read %s: %s", file_path, exc)
        return Result.Err(ErrorCode.READ_ERROR, f"Cannot read {file_path}: {exc}", **stat_meta)
    result = parse_result(buffer, file_path.name)
    result.meta.update(stat_meta)
    return result
