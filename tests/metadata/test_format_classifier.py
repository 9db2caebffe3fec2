import json

from aimeta_backend.features.metadata.classifier import classify_blobs
from aimeta_backend.features.metadata.models import RawBlobSet
from aimeta_shared.types import ErrorCode, MetadataFormat

PARAMS = "a cat\nNegative prompt: blurry\nSteps: 20, Sampler: Euler a"
INVOKE = json.dumps({"positive_prompt": "a fox", "canvas_v2_metadata": {"board_id": "b1"}})
GRAPH = json.dumps({"1": {"class_type": "CLIPTextEncode", "inputs": {"text": "a dog"}}})


def _png(**blobs) -> RawBlobSet:
    return RawBlobSet(blobs=blobs, container="png")


def test_workflow_wins_over_everything():
    res = classify_blobs(_png(workflow='{"nodes": []}', invokeai_metadata=INVOKE, parameters=PARAMS, prompt=GRAPH))
    assert res.ok
    meta = res.data
    assert meta.format is MetadataFormat.COMFYUI
    assert meta.parameters == PARAMS
    assert meta.normalized.prompt == "a dog"


def test_invokeai_before_parameters():
    res = classify_blobs(_png(invokeai_metadata=INVOKE, parameters=PARAMS))
    assert res.data.format is MetadataFormat.INVOKEAI
    assert res.data.raw["positive_prompt"] == "a fox"


def test_double_encoded_invokeai_json():
    res = classify_blobs(_png(invokeai_metadata=json.dumps(INVOKE)))
    assert res.data.format is MetadataFormat.INVOKEAI


def test_malformed_invokeai_falls_through_to_parameters():
    res = classify_blobs(_png(invokeai_metadata="{not: json", parameters=PARAMS))
    assert res.data.format is MetadataFormat.AUTOMATIC1111
    assert res.data.normalized.prompt == "a cat"


def test_malformed_invokeai_alone_is_invalid_json():
    for text in ("[1, 2]", "{not: json"):
        res = classify_blobs(_png(invokeai_metadata=text))
        assert not res.ok
        assert res.code == ErrorCode.INVALID_JSON.value


def test_prompt_only_is_comfyui():
    res = classify_blobs(_png(prompt=GRAPH))
    assert res.data.format is MetadataFormat.COMFYUI
    assert "workflow" not in res.data.raw
    assert res.data.prompt_graph == json.loads(GRAPH)


def test_empty_blob_set_is_not_found():
    assert classify_blobs(_png()).code == ErrorCode.NOT_FOUND.value


def test_jpeg_json_is_invokeai():
    res = classify_blobs(RawBlobSet(blobs={"exif_text": INVOKE}, container="jpeg", source_field="UserComment"))
    assert res.data.format is MetadataFormat.INVOKEAI
    assert res.meta["source_field"] == "UserComment"


def test_jpeg_text_is_automatic1111():
    res = classify_blobs(RawBlobSet(blobs={"exif_text": PARAMS}, container="jpeg"))
    assert res.data.format is MetadataFormat.AUTOMATIC1111
    assert res.data.normalized.scheduler == "Euler a"


def test_jpeg_without_text_is_not_found():
    assert classify_blobs(RawBlobSet(blobs={}, container="jpeg")).code == ErrorCode.NOT_FOUND.value
