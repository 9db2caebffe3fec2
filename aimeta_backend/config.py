"""
Configuration for the aimeta metadata indexer.

Every value can be overridden through the environment; invalid values fall
back to the default with a warning, out-of-range values are clamped.
"""
import os
import logging

from .utils import env_bool

logger = logging.getLogger(__name__)


def _env_raw(*names: str, default: str | None = None) -> str | None:
    for name in names:
        if not name:
            continue
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return str(val).strip()
    return default


def _env_int(default: int, *names: str, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_bool(default: bool, *names: str) -> bool:
    for name in names:
        if name and name in os.environ:
            return env_bool(name, default)
    return default


# Per-file read cap; oversized files are skipped before any decoding.
MAX_FILE_SIZE_MB = _env_int(256, "AIMETA_MAX_FILE_SIZE_MB", min_value=1, max_value=4096)
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024

# Embedded JSON blobs above this size are treated as absent.
MAX_METADATA_JSON_MB = _env_int(10, "AIMETA_MAX_METADATA_JSON_MB", min_value=1, max_value=512)
MAX_METADATA_JSON_SIZE = MAX_METADATA_JSON_MB * 1024 * 1024

# Batch indexer thread pool.
INDEX_MAX_WORKERS = _env_int(4, "AIMETA_INDEX_MAX_WORKERS", min_value=1, max_value=64)

# Progress callback cadence (files).
PROGRESS_EVERY = _env_int(20, "AIMETA_PROGRESS_EVERY", min_value=1)

DEBUG_MODE = _env_bool(False, "AIMETA_DEBUG")
