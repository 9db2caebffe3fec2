"""
Shared parsing utilities for metadata extraction (JSON sniffing, number
coercion, name list hygiene) used by the container decoder, the schema parsers
and the field normalizer.
"""
import json
import re
import zlib
from typing import Any, Iterable, Optional

from ...config import MAX_METADATA_JSON_SIZE

# 50MB decompressed limit for compressed PNG text chunks
MAX_DECOMPRESSED_SIZE = 50 * 1024 * 1024

# Stringified objects leaking out of other tools' exporters.
OBJECT_SENTINELS = frozenset({"[object Object]"})

_INT_PREFIX_RE = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def safe_zlib_decompress(data: bytes, max_size: int = MAX_DECOMPRESSED_SIZE) -> Optional[bytes]:
    """
    Safely decompress zlib data with size limit.
    """
    try:
        decompressor = zlib.decompressobj()
        result = bytearray()

        chunk_size = 81920 # 80KB chunks
        offset = 0

        while offset < len(data):
            chunk = decompressor.decompress(data[offset:offset + chunk_size], max_size + 1 - len(result))
            if chunk:
                result.extend(chunk)
                if len(result) > max_size:
                    return None
            if decompressor.unconsumed_tail:
                return None
            offset += chunk_size

        chunk = decompressor.flush()
        if chunk:
            result.extend(chunk)

        if len(result) > max_size:
            return None

        return bytes(result)
    except zlib.error:
        return None


def try_load_json(text: Any) -> tuple[bool, Any]:
    """
    Speculatively decode a JSON payload.

    Returns ``(True, value)`` on success and ``(False, None)`` otherwise.
    Payloads over the configured size cap count as failures.
    """
    if not isinstance(text, str):
        return (False, None)
    raw = text.strip()
    if not raw or len(raw) > MAX_METADATA_JSON_SIZE:
        return (False, None)
    try:
        return (True, json.loads(raw))
    except (ValueError, RecursionError):
        return (False, None)


def parse_json_object(text: Any) -> Optional[dict[str, Any]]:
    """Decode a JSON object; a JSON string holding an encoded object is unwrapped once."""
    ok, value = try_load_json(text)
    if not ok:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        ok, nested = try_load_json(value)
        if ok and isinstance(nested, dict):
            return nested
    return None


def maybe_json(value: Any) -> Any:
    """
    Decode ``value`` when it is a JSON string holding an object or array,
    otherwise hand it back untouched (already-parsed graphs, plain text).
    """
    if not isinstance(value, str):
        return value
    ok, decoded = try_load_json(value)
    if not ok:
        return value
    if isinstance(decoded, str):
        ok, nested = try_load_json(decoded)
        if ok and isinstance(nested, (dict, list)):
            return nested
        return value
    if isinstance(decoded, (dict, list)):
        return decoded
    return value


def is_number(value: Any) -> bool:
    """True for real ints/floats; bools and NaN/inf are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value == value and value not in (float("inf"), float("-inf"))


def coerce_int(value: Any) -> Optional[int]:
    """
    Read an integer from a number or from the leading digits of a string
    (``"30"`` and ``"30 steps"`` both give 30, ``"7.5"`` gives 7).
    """
    if is_number(value):
        return int(value)
    if not isinstance(value, str):
        return None
    match = _INT_PREFIX_RE.match(value)
    if not match:
        return None
    return int(match.group(1))


def coerce_float(value: Any) -> Optional[float]:
    """Read a float from a number or from the leading numeric part of a string."""
    if is_number(value):
        return float(value)
    if not isinstance(value, str):
        return None
    match = _FLOAT_PREFIX_RE.match(value)
    if not match:
        return None
    try:
        out = float(match.group(1))
    except ValueError:
        return None
    return out if is_number(out) else None


def is_node_link(value: Any) -> bool:
    """ComfyUI input wired to another node: ``[node_id, output_slot]``."""
    return (
        isinstance(value, (list, tuple))
        and len(value) == 2
        and isinstance(value[0], (str, int))
        and not isinstance(value[0], bool)
        and isinstance(value[1], int)
    )


def non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
    return None


def dedupe_names(values: Iterable[Any]) -> list[str]:
    """Ordered, case-sensitive de-duplication dropping empties and sentinels."""
    out: list[str] = []
    seen: set[str] = set()
    for value in values:
        name = non_empty_str(value)
        if name is None or name in OBJECT_SENTINELS or name in seen:
            continue
        seen.add(name)
        out.append(name)
    return out


_HEX_KEY_RE = re.compile(r"^[a-f0-9\-]+$", re.IGNORECASE)


def readable_model_name(value: Any) -> Optional[str]:
    """
    Human-readable name for a model reference.

    Strings are trimmed; objects are probed for ``name``, ``model``,
    ``model_name``, ``base_model`` and finally ``key``. Long hex keys become
    ``"<mechanism|type|Model> (abcd1234...)"``.
    """
    if isinstance(value, str):
        return non_empty_str(value)
    if not isinstance(value, dict):
        return None

    for candidate in ("name", "model", "model_name", "base_model"):
        name = non_empty_str(value.get(candidate))
        if name and name not in OBJECT_SENTINELS:
            return name

    key = non_empty_str(value.get("key"))
    if key is None:
        return None
    if len(key) > 20 and _HEX_KEY_RE.match(key):
        label = non_empty_str(value.get("mechanism")) or non_empty_str(value.get("type")) or "Model"
        return f"{label} ({key[:8]}...)"
    return key
