import json

import pytest

from aimeta_backend.features.metadata.board_resolver import BoardResolver
from aimeta_backend.features.metadata.invokeai import (
    board_id_for_resolution,
    extract_board,
    extract_loras,
    extract_models,
    extract_prompt,
    normalize_invokeai,
    parse_invokeai,
)
from aimeta_shared.types import MetadataFormat

HEX_KEY = "0123456789abcdef0123456789abcdef"


def _workflow_with_board(board_id: str) -> dict:
    return {
        "nodes": [
            {"id": "a", "data": {"type": "compel", "inputs": {}}},
            {"id": "b", "data": {"type": "l2i", "inputs": {"board": {"value": {"board_id": board_id}}}}},
        ]
    }


def test_parse_invokeai_keeps_record_and_projects_fields():
    data = {
        "positive_prompt": "a fox",
        "negative_prompt": "blurry",
        "model": {"name": "Juggernaut XL", "key": HEX_KEY},
        "scheduler": "dpmpp_2m",
        "cfg_scale": 5.5,
        "steps": 30,
        "seed": 0,
        "width": 1024,
        "height": 1024,
    }
    meta = parse_invokeai(data)
    assert meta.format is MetadataFormat.INVOKEAI
    assert meta.raw is data
    cache = meta.normalized
    assert cache.prompt == "a fox"
    assert cache.negative_prompt == "blurry"
    assert cache.model == "Juggernaut XL"
    assert cache.scheduler == "dpmpp_2m"
    assert (cache.cfg_scale, cache.steps, cache.seed) == (5.5, 30, 0)
    assert (cache.width, cache.height) == (1024, 1024)


def test_non_numeric_values_are_rejected():
    cache = normalize_invokeai({"steps": True, "cfg_scale": "7", "seed": -1, "width": 0})
    assert cache.steps is None
    assert cache.cfg_scale is None
    assert cache.seed is None
    assert cache.width is None


@pytest.mark.parametrize(
    "data, expected",
    [
        ({"positive_prompt": "new", "prompt": "old"}, "new"),
        ({"prompt": "legacy"}, "legacy"),
        ({"prompt": [{"prompt": "a"}, "b", {"weight": 1}]}, "a b"),
        ({"prompt": {"prompt": "object form"}}, "object form"),
        ({}, ""),
    ],
)
def test_prompt_sources(data, expected):
    assert extract_prompt(data) == expected


def test_models_from_fields_and_file_scan():
    data = {
        "model": {"key": HEX_KEY, "type": "main"},
        "base_model": "sdxl",
        "vae": {"path": "C:\\models\\vae\\sdxl_vae.safetensors"},
        "extra": ["/opt/models/refiner.ckpt", "sdxl"],
    }
    assert extract_models(data) == ["main (01234567...)", "sdxl", "sdxl_vae.safetensors", "refiner.ckpt"]


def test_models_skip_object_sentinel():
    assert extract_models({"model": "[object Object]", "model_name": "  "}) == []


def test_loras_from_prompt_and_structured_fields():
    data = {
        "positive_prompt": "a <lora:detail:0.5> lora:style, more",
        "loras": [
            {"model": {"name": "Detail Tweaker", "key": "k1"}, "weight": 0.7},
            {"lora": {"name": "Film Grain"}},
            "plain_lora",
            {"name": "detail"},
        ],
        "lora": {"model_name": "single"},
    }
    assert extract_loras(data) == ["detail", "style", "Detail Tweaker", "Film Grain", "plain_lora", "single"]


def test_board_label_order():
    resolver = BoardResolver()
    assert extract_board({"board_name": "Favs", "board": {"name": "Other"}}, resolver) == "Favs"
    assert extract_board({"Board Name": "Spaced"}, resolver) == "Spaced"
    assert extract_board({"board": {"name": "Object"}}, resolver) == "Object"
    assert extract_board({"board": {"id": 12}}, resolver) == "12"
    assert extract_board({"board": " Plain "}, resolver) == "Plain"
    assert extract_board({"my_board_label": "Loose"}, resolver) == "Loose"
    assert extract_board({}, resolver) == "Uncategorized"
    assert len(resolver) == 0


def test_board_ids_go_through_resolver():
    resolver = BoardResolver()
    canvas = {"canvas_v2_metadata": {"board_id": "abc123"}}
    nested = {"canvas_v2_metadata": {"board": {"board_id": "def456"}}}
    from_workflow = {"workflow": json.dumps(_workflow_with_board("abc123"))}

    assert extract_board(canvas, resolver) == "My Board 1"
    assert extract_board(nested, resolver) == "My Board 2"
    assert extract_board(from_workflow, resolver) == "My Board 1"
    assert board_id_for_resolution(nested) == "def456"
    assert board_id_for_resolution({"board_name": "x", "canvas_v2_metadata": {"board_id": "z"}}) is None
