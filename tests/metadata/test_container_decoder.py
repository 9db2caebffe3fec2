import struct
import zlib

from aimeta_backend.features.metadata.container import (
    JPEG_TEXT_KEY,
    decode_container,
    decode_user_comment,
    decode_xp_string,
    iter_png_chunks,
    sniff_container,
)
from aimeta_shared.types import ErrorCode
from tests.image_fixtures import build_jpeg, build_png, png_chunk, raw_png, text_chunk

TAG_IMAGE_DESCRIPTION = 0x010E
TAG_USER_COMMENT = 0x9286


def test_sniff_container_by_signature():
    assert sniff_container(build_png()) == "png"
    assert sniff_container(b"\xff\xd8\xff\xe0rest") == "jpeg"
    assert sniff_container(b"GIF89a") == "unknown"
    assert sniff_container(b"") == "unknown"


def test_png_text_chunks_are_collected():
    buf = build_png(parameters="a cat\nSteps: 20", workflow='{"nodes": []}', Software="paint")
    res = decode_container(buf, "cat.png")
    assert res.ok
    assert res.data.container == "png"
    assert res.data.get("parameters") == "a cat\nSteps: 20"
    assert res.data.get("workflow") == '{"nodes": []}'
    assert "Software" not in res.data


def test_png_without_recognized_chunks_is_not_found():
    res = decode_container(build_png(Software="paint"), "plain.png")
    assert not res.ok
    assert res.code == ErrorCode.NOT_FOUND.value


def test_unknown_signature_is_unsupported():
    res = decode_container(b"BM\x00\x00garbage", "x.bmp")
    assert not res.ok
    assert res.code == ErrorCode.UNSUPPORTED.value


def test_first_occurrence_of_keyword_wins():
    buf = raw_png(text_chunk("parameters", "first"), text_chunk("parameters", "second"))
    assert decode_container(buf).data.get("parameters") == "first"


def test_empty_text_is_ignored():
    buf = raw_png(text_chunk("parameters", ""), text_chunk("prompt", "{}"))
    res = decode_container(buf)
    assert "parameters" not in res.data
    assert res.data.get("prompt") == "{}"


def test_scan_stops_at_iend():
    buf = raw_png(png_chunk(b"IEND", b""), text_chunk("parameters", "after end"))
    assert decode_container(buf).code == ErrorCode.NOT_FOUND.value


def test_truncated_chunk_is_read_up_to_buffer_end():
    chunk = text_chunk("parameters", "abc")
    # drop the CRC and the last two data bytes
    buf = raw_png(chunk[:-6])
    res = decode_container(buf)
    assert res.ok
    assert res.data.get("parameters") == "a"


def test_oversized_length_header_does_not_overrun():
    header = struct.pack(">I", 0xFFFFFFFF) + b"tEXt"
    buf = raw_png(header + b"parameters\x00xyz")
    chunks = list(iter_png_chunks(buf))
    assert chunks == [(b"tEXt", b"parameters\x00xyz")]
    assert decode_container(buf).data.get("parameters") == "xyz"


def test_partial_header_ends_scan():
    assert list(iter_png_chunks(raw_png(b"\x00\x00\x00"))) == []
    assert decode_container(raw_png(b"\x00\x00")).code == ErrorCode.NOT_FOUND.value


def test_latin1_text_falls_back_when_not_utf8():
    buf = raw_png(png_chunk(b"tEXt", b"parameters\x00caf\xe9"))
    assert decode_container(buf).data.get("parameters") == "café"


def test_itxt_and_ztxt_chunks():
    itxt = png_chunk(b"iTXt", b"workflow\x00\x00\x00en\x00\x00" + '{"nodes": ["é"]}'.encode("utf-8"))
    itxt_z = png_chunk(b"iTXt", b"prompt\x00\x01\x00\x00\x00" + zlib.compress(b'{"1": {}}'))
    ztxt = png_chunk(b"zTXt", b"parameters\x00\x00" + zlib.compress(b"a dog\nSteps: 4"))
    res = decode_container(raw_png(itxt, itxt_z, ztxt))
    assert res.ok
    assert res.data.get("workflow") == '{"nodes": ["é"]}'
    assert res.data.get("prompt") == '{"1": {}}'
    assert res.data.get("parameters") == "a dog\nSteps: 4"


def test_corrupt_ztxt_is_skipped():
    ztxt = png_chunk(b"zTXt", b"parameters\x00\x00not zlib at all")
    assert decode_container(raw_png(ztxt)).code == ErrorCode.NOT_FOUND.value


def test_jpeg_image_description():
    buf = build_jpeg({TAG_IMAGE_DESCRIPTION: "a cat\nSteps: 20"})
    res = decode_container(buf, "cat.jpg")
    assert res.ok
    assert res.data.container == "jpeg"
    assert res.data.source_field == "ImageDescription"
    assert res.data.get(JPEG_TEXT_KEY) == "a cat\nSteps: 20"


def test_jpeg_utf8_image_description_is_not_mojibake():
    buf = build_jpeg({TAG_IMAGE_DESCRIPTION: "café 猫".encode("utf-8")})
    res = decode_container(buf, "cafe.jpg")
    assert res.ok
    assert res.data.get(JPEG_TEXT_KEY) == "café 猫"


def test_jpeg_user_comment_wins_over_description():
    buf = build_jpeg({
        TAG_USER_COMMENT: b"ASCII\x00\x00\x00from comment",
        TAG_IMAGE_DESCRIPTION: "from description",
    })
    res = decode_container(buf)
    assert res.data.source_field == "UserComment"
    assert res.data.get(JPEG_TEXT_KEY) == "from comment"


def test_jpeg_without_text_fields_is_not_found():
    res = decode_container(build_jpeg())
    assert not res.ok
    assert res.code == ErrorCode.NOT_FOUND.value


def test_corrupt_jpeg_is_parse_error():
    res = decode_container(b"\xff\xd8\x00\x01broken", "bad.jpg")
    assert not res.ok
    assert res.code == ErrorCode.PARSE_ERROR.value


def test_user_comment_headers():
    assert decode_user_comment(b"ASCII\x00\x00\x00hello") == "hello"
    assert decode_user_comment(b"UNICODE\x00" + "hi é".encode("utf-16-be")) == "hi é"
    assert decode_user_comment(b"UNICODE\x00" + "hi there".encode("utf-16-le")) == "hi there"
    assert decode_user_comment(b"\x00" * 8 + b"plain") == "plain"
    assert decode_user_comment("already text") == "already text"
    assert decode_user_comment(None) is None


def test_xp_strings_are_utf16le():
    encoded = "titleé".encode("utf-16-le") + b"\x00\x00"
    assert decode_xp_string(encoded) == "titleé"
    assert decode_xp_string(tuple(encoded)) == "titleé"
    assert decode_xp_string(42) is None
