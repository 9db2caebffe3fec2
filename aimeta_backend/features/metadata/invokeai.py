"""
InvokeAI ``invokeai_metadata`` records: normalized projection, model/LoRA
extraction and board lookup.
"""
from __future__ import annotations

import json
import re
from typing import Any, Optional

from ...shared import MetadataFormat
from .a1111 import extract_lora_tags
from .board_resolver import BoardResolver
from .models import ImageMetadata, NormalizedMetadata
from .parsing_utils import (
    OBJECT_SENTINELS,
    coerce_float,
    coerce_int,
    dedupe_names,
    is_number,
    maybe_json,
    non_empty_str,
    readable_model_name,
)

UNCATEGORIZED = "Uncategorized"

_MODEL_FILE_RE = re.compile(r"""['"]\s*([^'"]*?\.(?:safetensors|ckpt|pt))\s*['"]""", re.IGNORECASE)
_BARE_LORA_RE = re.compile(r"(?<!<)\b(?:lora|lyco):([^\s,>]+)", re.IGNORECASE)

_BOARD_LABEL_KEYS = ("board_name", "board_id", "boardName", "boardId", "Board Name")
_BOARD_OUTPUT_NODE_TYPES = ("l2i", "canvas_output")


def parse_invokeai(data: dict[str, Any]) -> ImageMetadata:
    """Keep the record verbatim and attach its normalized projection."""
    return ImageMetadata(format=MetadataFormat.INVOKEAI, raw=data, normalized=normalize_invokeai(data))


def normalize_invokeai(data: dict[str, Any]) -> NormalizedMetadata:
    result = NormalizedMetadata(
        prompt=extract_prompt(data),
        negative_prompt=data.get("negative_prompt") if isinstance(data.get("negative_prompt"), str) else "",
        model=data.get("model_name") if isinstance(data.get("model_name"), str) else "",
        scheduler=data.get("scheduler") if isinstance(data.get("scheduler"), str) else "",
        width=_positive_int(data.get("width")),
        height=_positive_int(data.get("height")),
        steps=_positive_int(data.get("steps")),
        cfg_scale=_positive_float(data.get("cfg_scale")),
        seed=int(data["seed"]) if is_number(data.get("seed")) and data["seed"] >= 0 else None,
        models=extract_models(data),
        loras=extract_loras(data),
    )
    if result.models:
        result.model = result.models[0]
    return result


def _positive_int(value: Any) -> Optional[int]:
    if not is_number(value):
        return None
    out = coerce_int(value)
    return out if out is not None and out > 0 else None


def _positive_float(value: Any) -> Optional[float]:
    if not is_number(value) or value <= 0:
        return None
    return coerce_float(value)


def extract_prompt(data: dict[str, Any]) -> str:
    """``positive_prompt`` first, then the legacy ``prompt`` (string, segments or object)."""
    positive = data.get("positive_prompt")
    if isinstance(positive, str):
        return positive
    return _legacy_prompt(data)


def _legacy_prompt(data: dict[str, Any]) -> str:
    legacy = data.get("prompt")
    if isinstance(legacy, str):
        return legacy
    if isinstance(legacy, list):
        segments = []
        for segment in legacy:
            text = segment if isinstance(segment, str) else (segment.get("prompt") if isinstance(segment, dict) else None)
            if isinstance(text, str) and text.strip():
                segments.append(text)
        return " ".join(segments)
    if isinstance(legacy, dict) and isinstance(legacy.get("prompt"), str):
        return legacy["prompt"]
    return ""


def extract_models(data: dict[str, Any]) -> list[str]:
    names = [readable_model_name(data.get(key)) for key in ("model", "base_model", "model_name")]

    try:
        serialized = json.dumps(data, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        serialized = ""
    for match in _MODEL_FILE_RE.finditer(serialized):
        path = match.group(1).strip()
        names.append(path.replace("\\", "/").split("/")[-1])

    return dedupe_names(names)


def extract_loras(data: dict[str, Any]) -> list[str]:
    prompt_text = " ".join(
        text for text in (data.get("positive_prompt"), _legacy_prompt(data)) if isinstance(text, str) and text
    )
    names: list[Any] = list(extract_lora_tags(prompt_text))
    names.extend(match.group(1) for match in _BARE_LORA_RE.finditer(prompt_text))

    loras = data.get("loras")
    if isinstance(loras, list):
        names.extend(_lora_entry_name(entry) for entry in loras)

    single = data.get("lora")
    if isinstance(single, str):
        names.append(single)
    elif isinstance(single, dict):
        names.append(_lora_entry_name(single))

    return dedupe_names(names)


def _lora_entry_name(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry
    if not isinstance(entry, dict):
        return None

    candidates = [entry.get("name"), entry.get("model_name"), entry.get("key")]
    for nested_key in ("model", "lora"):
        nested = entry.get(nested_key)
        if isinstance(nested, dict):
            candidates.extend(nested.get(k) for k in ("name", "model", "model_name", "key"))
        elif isinstance(nested, str):
            candidates.append(nested)

    for candidate in candidates:
        name = non_empty_str(candidate)
        if name and name not in OBJECT_SENTINELS:
            return name
    return None


def board_source(data: dict[str, Any]) -> tuple[str, str] | None:
    """
    Locate the board reference of a record.

    Returns ``("label", name)`` for a human-readable board, ``("id", board_id)``
    for an opaque id that must go through the resolver, or None.
    """
    for key in _BOARD_LABEL_KEYS:
        label = non_empty_str(data.get(key))
        if label:
            return ("label", label)

    board = data.get("board")
    if isinstance(board, dict):
        for key in ("name", "board_name", "id"):
            value = board.get(key)
            if non_empty_str(value):
                return ("label", value.strip())
            if is_number(value):
                return ("label", str(value))
    elif non_empty_str(board):
        return ("label", board.strip())

    canvas = data.get("canvas_v2_metadata")
    if isinstance(canvas, dict):
        board_id = canvas.get("board_id")
        if not board_id and isinstance(canvas.get("board"), dict):
            board_id = canvas["board"].get("board_id")
        if board_id:
            return ("id", str(board_id))

    board_id = _board_id_from_workflow(data.get("workflow"))
    if board_id:
        return ("id", board_id)

    for key, value in data.items():
        if "board" in str(key).lower():
            label = non_empty_str(value)
            if label:
                return ("label", label)
    return None


def _board_id_from_workflow(workflow: Any) -> Optional[str]:
    workflow = maybe_json(workflow)
    if not isinstance(workflow, dict) or not isinstance(workflow.get("nodes"), list):
        return None
    for node in workflow["nodes"]:
        node_data = node.get("data") if isinstance(node, dict) else None
        if not isinstance(node_data, dict) or node_data.get("type") not in _BOARD_OUTPUT_NODE_TYPES:
            continue
        inputs = node_data.get("inputs")
        board_input = inputs.get("board") if isinstance(inputs, dict) else None
        value = board_input.get("value") if isinstance(board_input, dict) else None
        if isinstance(value, dict) and value.get("board_id"):
            return str(value["board_id"])
    return None


def extract_board(data: dict[str, Any], resolver: BoardResolver) -> str:
    source = board_source(data)
    if source is None:
        return UNCATEGORIZED
    kind, value = source
    return resolver.resolve(value) if kind == "id" else value


def board_id_for_resolution(data: dict[str, Any]) -> Optional[str]:
    """The opaque id ``extract_board`` would hand to the resolver, if any."""
    source = board_source(data)
    if source is not None and source[0] == "id":
        return source[1]
    return None
