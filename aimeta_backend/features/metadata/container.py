"""
Container decoder: pull generator text blobs out of PNG chunks and JPEG EXIF.

Only the handful of keys generators write to are decoded; everything else in
the container is skipped.
"""
from __future__ import annotations

import html
import io
import re
import struct
from typing import Any, Iterator, Optional

from PIL import Image

from ...shared import ErrorCode, FileKind, Result, get_logger
from .models import RawBlobSet
from .parsing_utils import safe_zlib_decompress

logger = get_logger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8"

PNG_TEXT_KEYWORDS = ("invokeai_metadata", "parameters", "workflow", "prompt")
EXIF_TEXT_FIELDS = ("UserComment", "ImageDescription", "Description", "XPComment", "XPTitle")
JPEG_TEXT_KEY = "exif_text"

_PNG_CHUNK_HEADER = struct.Struct(">I4s")
_TEXT_CHUNK_TYPES = (b"tEXt", b"iTXt", b"zTXt")

_EXIF_IFD_POINTER = 0x8769
_TAG_IMAGE_DESCRIPTION = 0x010E
_TAG_USER_COMMENT = 0x9286
_TAG_XP_TITLE = 0x9C9B
_TAG_XP_COMMENT = 0x9C9C

_XMP_DESCRIPTION_RE = re.compile(
    r"<dc:description[^>]*>.*?<rdf:li[^>]*>(.*?)</rdf:li>.*?</dc:description>",
    re.DOTALL | re.IGNORECASE,
)
_XMP_DESCRIPTION_ATTR_RE = re.compile(r'dc:description\s*=\s*"([^"]*)"', re.IGNORECASE)


def sniff_container(buffer: bytes) -> FileKind:
    """Identify the container by its signature bytes."""
    if buffer[:8] == PNG_SIGNATURE:
        return "png"
    if buffer[:2] == JPEG_SIGNATURE:
        return "jpeg"
    return "unknown"


def decode_container(buffer: bytes, filename: str = "") -> Result[RawBlobSet]:
    """
    Decode the recognized text blobs of ``buffer``.

    Returns ``UNSUPPORTED`` for unknown signatures and ``NOT_FOUND`` when the
    container holds none of the recognized keys. Never raises.
    """
    if not isinstance(buffer, (bytes, bytearray, memoryview)):
        return Result.Err(ErrorCode.UNSUPPORTED, f"Not a byte buffer: {filename}")
    data = bytes(buffer)

    kind = sniff_container(data)
    if kind == "png":
        blobs = read_png_text_chunks(data)
        if not blobs:
            return Result.Err(ErrorCode.NOT_FOUND, f"No generator text chunks in {filename}", container="png")
        return Result.Ok(RawBlobSet(blobs=blobs, container="png"))
    if kind == "jpeg":
        return read_jpeg_exif_text(data, filename)
    return Result.Err(ErrorCode.UNSUPPORTED, f"Unsupported container: {filename}")


def iter_png_chunks(buffer: bytes) -> Iterator[tuple[bytes, bytes]]:
    """
    Yield ``(chunk_type, data)`` pairs after the signature, stopping at IEND.

    Lengths come from untrusted headers: a chunk that overruns the buffer is
    yielded truncated and ends the scan; a header that does not fit ends it too.
    """
    offset = len(PNG_SIGNATURE)
    total = len(buffer)
    while offset + _PNG_CHUNK_HEADER.size <= total:
        length, chunk_type = _PNG_CHUNK_HEADER.unpack_from(buffer, offset)
        data_start = offset + _PNG_CHUNK_HEADER.size
        data_end = data_start + length
        truncated = data_end > total
        yield chunk_type, buffer[data_start:min(data_end, total)]
        if chunk_type == b"IEND" or truncated:
            return
        offset = data_end + 4  # CRC


def read_png_text_chunks(buffer: bytes) -> dict[str, str]:
    """Collect recognized keywords from tEXt/iTXt/zTXt chunks; first occurrence wins."""
    found: dict[str, str] = {}
    for chunk_type, data in iter_png_chunks(buffer):
        if chunk_type not in _TEXT_CHUNK_TYPES:
            continue
        parsed = _decode_text_chunk(chunk_type, data)
        if parsed is None:
            continue
        keyword, text = parsed
        if keyword in PNG_TEXT_KEYWORDS and text and keyword not in found:
            found[keyword] = text
    return found


def _decode_text_chunk(chunk_type: bytes, data: bytes) -> Optional[tuple[str, str]]:
    keyword_raw, sep, rest = data.partition(b"\x00")
    if not sep:
        return None
    keyword = keyword_raw.decode("latin-1")
    if keyword not in PNG_TEXT_KEYWORDS:
        return None

    if chunk_type == b"tEXt":
        return keyword, _decode_text_bytes(rest)
    if chunk_type == b"zTXt":
        if not rest:
            return None
        inflated = safe_zlib_decompress(rest[1:])
        return (keyword, _decode_text_bytes(inflated)) if inflated is not None else None
    return _decode_itxt_body(keyword, rest)


def _decode_itxt_body(keyword: str, rest: bytes) -> Optional[tuple[str, str]]:
    if len(rest) < 2:
        return None
    compressed = rest[0] == 1
    body = rest[2:]
    # language tag, then translated keyword, each NUL-terminated
    for _ in range(2):
        _, sep, body = body.partition(b"\x00")
        if not sep:
            return None
    if compressed:
        inflated = safe_zlib_decompress(body)
        if inflated is None:
            return None
        body = inflated
    return keyword, body.decode("utf-8", errors="replace")


def _decode_text_bytes(raw: bytes) -> str:
    # PNG text is nominally latin-1, but every generator writes UTF-8.
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def read_jpeg_exif_text(buffer: bytes, filename: str = "") -> Result[RawBlobSet]:
    """
    Return the first populated EXIF text field, in ``EXIF_TEXT_FIELDS`` order.

    Corrupt EXIF yields ``PARSE_ERROR``; the error is logged, never raised.
    """
    try:
        fields = _read_exif_text_fields(buffer)
    except Exception as exc:
        logger.warning("Failed to read JPEG EXIF for %s: %s", filename or "<buffer>", exc)
        return Result.Err(ErrorCode.PARSE_ERROR, f"Corrupt EXIF in {filename}: {exc}", container="jpeg")

    for name in EXIF_TEXT_FIELDS:
        text = fields.get(name)
        if text:
            return Result.Ok(RawBlobSet(blobs={JPEG_TEXT_KEY: text}, container="jpeg", source_field=name))
    return Result.Err(ErrorCode.NOT_FOUND, f"No EXIF text fields in {filename}", container="jpeg")


def _read_exif_text_fields(buffer: bytes) -> dict[str, str]:
    out: dict[str, str] = {}
    with Image.open(io.BytesIO(buffer)) as img:
        exif = img.getexif()
        exif_ifd = exif.get_ifd(_EXIF_IFD_POINTER)

        _put_text(out, "UserComment", decode_user_comment(exif_ifd.get(_TAG_USER_COMMENT) or exif.get(_TAG_USER_COMMENT)))
        _put_text(out, "ImageDescription", _decode_exif_string(exif.get(_TAG_IMAGE_DESCRIPTION)))
        _put_text(out, "Description", _xmp_description(img.info.get("xmp")))
        _put_text(out, "XPComment", decode_xp_string(exif.get(_TAG_XP_COMMENT)))
        _put_text(out, "XPTitle", decode_xp_string(exif.get(_TAG_XP_TITLE)))
    return out


def _put_text(out: dict[str, str], name: str, value: Optional[str]) -> None:
    if isinstance(value, str):
        text = value.replace("\x00", "").strip()
        if text:
            out[name] = text


def _decode_exif_string(value: Any) -> Optional[str]:
    if isinstance(value, str):
        # Pillow reads ASCII-typed tags as latin-1; generators write UTF-8 into them.
        try:
            return value.encode("latin-1").decode("utf-8")
        except UnicodeError:
            return value
    if isinstance(value, bytes):
        return _decode_text_bytes(value)
    return None


def decode_user_comment(value: Any) -> Optional[str]:
    """Decode an EXIF UserComment, honouring its 8-byte character-code header."""
    if isinstance(value, str):
        return value
    if not isinstance(value, (bytes, bytearray)):
        return None
    raw = bytes(value)
    header, payload = raw[:8], raw[8:]
    if header.startswith(b"UNICODE"):
        return _decode_utf16_guess_order(payload)
    if header.startswith(b"ASCII"):
        return payload.decode("ascii", errors="replace")
    if header.startswith(b"JIS"):
        return payload.decode("shift_jis", errors="replace")
    if header == b"\x00" * 8:
        return _decode_text_bytes(payload)
    return _decode_text_bytes(raw)


def _decode_utf16_guess_order(payload: bytes) -> str:
    # Writers disagree on byte order; mostly-ASCII text has its zero bytes on one side.
    even_zeros = payload[0::2].count(0)
    odd_zeros = payload[1::2].count(0)
    codec = "utf-16-be" if even_zeros >= odd_zeros else "utf-16-le"
    return payload.decode(codec, errors="replace")


def decode_xp_string(value: Any) -> Optional[str]:
    """XP* tags are UTF-16LE, surfaced by Pillow as bytes or a tuple of ints."""
    if isinstance(value, str):
        return value
    if isinstance(value, tuple):
        try:
            value = bytes(value)
        except (TypeError, ValueError):
            return None
    if not isinstance(value, (bytes, bytearray)):
        return None
    return bytes(value).decode("utf-16-le", errors="replace").rstrip("\x00")


def _xmp_description(xmp: Any) -> Optional[str]:
    if isinstance(xmp, (bytes, bytearray)):
        xmp = bytes(xmp).decode("utf-8", errors="replace")
    if not isinstance(xmp, str) or "description" not in xmp:
        return None
    match = _XMP_DESCRIPTION_RE.search(xmp) or _XMP_DESCRIPTION_ATTR_RE.search(xmp)
    return html.unescape(match.group(1)) if match else None

