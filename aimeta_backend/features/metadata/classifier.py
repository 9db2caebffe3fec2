"""
Format classification: decide which generator wrote a set of raw blobs.

PNG priority (first match wins): workflow, invokeai_metadata, parameters,
prompt. The discriminant is fixed here and never re-derived downstream.
"""
from __future__ import annotations

from ...shared import ErrorCode, Result, get_logger
from .a1111 import parse_a1111, parse_parameters
from .comfyui import parse_comfyui
from .container import JPEG_TEXT_KEY
from .invokeai import parse_invokeai
from .models import ImageMetadata, RawBlobSet
from .parsing_utils import parse_json_object

logger = get_logger(__name__)


def classify_blobs(blobs: RawBlobSet) -> Result[ImageMetadata]:
    if blobs.container == "jpeg":
        return _classify_jpeg(blobs)
    return _classify_png(blobs)


def _classify_png(blobs: RawBlobSet) -> Result[ImageMetadata]:
    workflow = blobs.get("workflow")
    prompt = blobs.get("prompt")
    parameters = blobs.get("parameters")

    if workflow:
        return Result.Ok(parse_comfyui(workflow, prompt, parameters))

    invokeai_text = blobs.get("invokeai_metadata")
    invalid_invokeai = False
    if invokeai_text:
        data = parse_json_object(invokeai_text)
        if data is not None:
            return Result.Ok(parse_invokeai(data))
        logger.warning("invokeai_metadata chunk is not a JSON object, trying other sources")
        invalid_invokeai = True

    if parameters:
        return Result.Ok(parse_a1111(parameters))
    if prompt:
        return Result.Ok(parse_comfyui(None, prompt))
    if invalid_invokeai:
        return Result.Err(ErrorCode.INVALID_JSON, "invokeai_metadata is not a JSON object")
    return Result.Err(ErrorCode.NOT_FOUND, "No recognized generator metadata")


def _classify_jpeg(blobs: RawBlobSet) -> Result[ImageMetadata]:
    text = blobs.get(JPEG_TEXT_KEY)
    if not text:
        return Result.Err(ErrorCode.NOT_FOUND, "Empty EXIF text")

    data = parse_json_object(text)
    if data is not None:
        return Result.Ok(parse_invokeai(data), source_field=blobs.source_field)

    if parse_parameters(text).is_empty():
        return Result.Err(ErrorCode.NOT_FOUND, "EXIF text is not generator metadata", source_field=blobs.source_field)
    return Result.Ok(parse_a1111(text), source_field=blobs.source_field)
