"""
Field normalizer: one uniform record out of any ``ImageMetadata`` variant.

Every output field is resolved by an ordered tuple of strategies; the first
one producing a populated value wins:

1. the parser's ``NormalizedMetadata`` cache
2. an Automatic1111 ``parameters`` block, whatever the variant
3. the extractor for ``metadata.format``
4. a generic scan of well-known raw keys
5. the field default
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable, Optional

from ...shared import MetadataFormat
from . import comfyui, invokeai
from .a1111 import A1111Parameters, parse_parameters
from .board_resolver import BoardResolver
from .models import ImageMetadata
from .parsing_utils import dedupe_names, is_number, non_empty_str, readable_model_name

DEFAULT_SCHEDULER = "Unknown"
DEFAULT_BOARD = invokeai.UNCATEGORIZED

Strategy = Callable[[ImageMetadata], Any]

_MODEL_KEYS = ("model", "model_name", "ckpt_name", "checkpoint", "model_hash")
_LORA_KEYS = ("loras", "lora", "lora_name", "lyco", "lyco_name")
_SCHEDULER_KEYS = ("scheduler", "sampler", "sampler_name", "sampling_method")
_PROMPT_KEYS = ("prompt", "positive_prompt")


@dataclass
class NormalizedFields:
    prompt: str = ""
    negative_prompt: Optional[str] = None
    models: list[str] = field(default_factory=list)
    loras: list[str] = field(default_factory=list)
    scheduler: str = DEFAULT_SCHEDULER
    board: str = DEFAULT_BOARD
    cfg_scale: Optional[float] = None
    steps: Optional[int] = None
    seed: Optional[int] = None
    dimensions: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) > 0
    return True


def first_result(strategies: Iterable[Strategy], metadata: ImageMetadata, default: Any = None) -> Any:
    """Run ``strategies`` in order and return the first populated result."""
    for strategy in strategies:
        value = strategy(metadata)
        if is_populated(value):
            return value
    return default


# -- strategy builders ------------------------------------------------------

def _cached(name: str) -> Strategy:
    def strategy(metadata: ImageMetadata) -> Any:
        cache = metadata.normalized
        return getattr(cache, name) if cache is not None else None
    return strategy


def _cached_dimensions(metadata: ImageMetadata) -> Optional[str]:
    cache = metadata.normalized
    if cache is None:
        return None
    return _format_dimensions(cache.width, cache.height)


def _from_parameters(read: Callable[[A1111Parameters], Any]) -> Strategy:
    def strategy(metadata: ImageMetadata) -> Any:
        text = metadata.parameters
        return read(parse_parameters(text)) if text else None
    return strategy


def _by_format(**handlers: Strategy) -> Strategy:
    def strategy(metadata: ImageMetadata) -> Any:
        handler = handlers.get(metadata.format.value)
        return handler(metadata) if handler is not None else None
    return strategy


def _format_dimensions(width: Any, height: Any) -> Optional[str]:
    if is_number(width) and is_number(height) and width > 0 and height > 0:
        return f"{int(width)}x{int(height)}"
    return None


def _graphs(metadata: ImageMetadata) -> tuple[Any, Any]:
    """Execution graph first, then the UI graph."""
    return metadata.prompt_graph, metadata.workflow


def _first_graph_value(metadata: ImageMetadata, read: Callable[[Any], Any]) -> Any:
    for graph in _graphs(metadata):
        if graph is None:
            continue
        value = read(graph)
        if is_populated(value):
            return value
    return None


def _comfy_sampler_number(name: str) -> Strategy:
    return lambda metadata: _first_graph_value(
        metadata, lambda graph: comfyui.extract_sampler_numbers_from_graph(graph).get(name)
    )


def _comfy_dimensions(metadata: ImageMetadata) -> Optional[str]:
    dims = _first_graph_value(metadata, comfyui.extract_dimensions_from_graph)
    return f"{dims[0]}x{dims[1]}" if dims else None


def _raw_text(*keys: str) -> Strategy:
    def strategy(metadata: ImageMetadata) -> Optional[str]:
        for key in keys:
            value = metadata.raw.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None
    return strategy


def _raw_positive(key_names: tuple[str, ...], cast: Callable[[Any], Any], allow_zero: bool = False) -> Strategy:
    def strategy(metadata: ImageMetadata) -> Any:
        for key in key_names:
            value = metadata.raw.get(key)
            if is_number(value) and (value > 0 or (allow_zero and value == 0)):
                return cast(value)
        return None
    return strategy


# -- generic raw scan -------------------------------------------------------

def _workflow_nodes(metadata: ImageMetadata) -> list[comfyui.GraphNode]:
    return comfyui.graph_nodes(metadata.raw.get("workflow"))


def _scan_models(metadata: ImageMetadata) -> list[str]:
    names: list[Any] = [readable_model_name(metadata.raw.get(key)) for key in _MODEL_KEYS]
    for node in _workflow_nodes(metadata):
        if node.class_type == "CheckpointLoaderSimple":
            names.append(node.inputs.get("ckpt_name"))
    return dedupe_names(names)


def _scan_loras(metadata: ImageMetadata) -> list[str]:
    names: list[Any] = []
    for key in _LORA_KEYS:
        value = metadata.raw.get(key)
        if isinstance(value, list):
            names.extend(readable_model_name(item) for item in value)
        else:
            names.append(readable_model_name(value))
    for node in _workflow_nodes(metadata):
        if "lora" in node.class_type.lower():
            names.append(node.inputs.get("lora_name"))
    return dedupe_names(names)


def _scan_scheduler(metadata: ImageMetadata) -> Optional[str]:
    for key in _SCHEDULER_KEYS:
        text = non_empty_str(metadata.raw.get(key))
        if text:
            return text
    for node in _workflow_nodes(metadata):
        if comfyui.NodeRole.SAMPLER in node.roles:
            text = non_empty_str(node.inputs.get("sampler_name"))
            if text:
                return text
    return None


def _scan_dimensions(metadata: ImageMetadata) -> Optional[str]:
    return _format_dimensions(metadata.raw.get("width"), metadata.raw.get("height"))


# -- per-field chains -------------------------------------------------------

def _invokeai_number(key: str, cast: Callable[[Any], Any], allow_zero: bool = False) -> Strategy:
    return _raw_positive((key,), cast, allow_zero)


PROMPT_STRATEGIES: tuple[Strategy, ...] = (
    _cached("prompt"),
    _from_parameters(lambda p: p.prompt),
    _by_format(
        invokeai=lambda m: invokeai.extract_prompt(m.raw),
        comfyui=lambda m: _first_graph_value(m, comfyui.extract_prompt_from_graph),
    ),
    _raw_text(*_PROMPT_KEYS),
)

NEGATIVE_PROMPT_STRATEGIES: tuple[Strategy, ...] = (
    _cached("negative_prompt"),
    _from_parameters(lambda p: p.negative_prompt),
    _by_format(
        invokeai=_raw_text("negative_prompt"),
        comfyui=lambda m: _first_graph_value(m, comfyui.extract_negative_prompt_from_graph),
    ),
    _raw_text("negative_prompt"),
)

MODELS_STRATEGIES: tuple[Strategy, ...] = (
    _cached("models"),
    _from_parameters(lambda p: p.models),
    _by_format(
        invokeai=lambda m: invokeai.extract_models(m.raw),
        comfyui=lambda m: comfyui.extract_models_from_graphs(m.prompt_graph, m.workflow),
    ),
    _scan_models,
)

LORAS_STRATEGIES: tuple[Strategy, ...] = (
    _cached("loras"),
    _from_parameters(lambda p: p.loras),
    _by_format(
        invokeai=lambda m: invokeai.extract_loras(m.raw),
        comfyui=lambda m: comfyui.extract_loras_from_graphs(m.prompt_graph, m.workflow),
    ),
    _scan_loras,
)

SCHEDULER_STRATEGIES: tuple[Strategy, ...] = (
    _cached("scheduler"),
    _from_parameters(lambda p: p.sampler),
    _by_format(
        invokeai=_raw_text("scheduler"),
        comfyui=lambda m: _first_graph_value(m, comfyui.extract_scheduler_from_graph),
    ),
    _scan_scheduler,
)

CFG_SCALE_STRATEGIES: tuple[Strategy, ...] = (
    _cached("cfg_scale"),
    _from_parameters(lambda p: p.cfg_scale),
    _by_format(
        invokeai=_invokeai_number("cfg_scale", float),
        comfyui=_comfy_sampler_number("cfg_scale"),
    ),
    _raw_positive(("cfg_scale", "cfg"), float),
)

STEPS_STRATEGIES: tuple[Strategy, ...] = (
    _cached("steps"),
    _from_parameters(lambda p: p.steps),
    _by_format(
        invokeai=_invokeai_number("steps", int),
        comfyui=_comfy_sampler_number("steps"),
    ),
    _raw_positive(("steps",), int),
)

SEED_STRATEGIES: tuple[Strategy, ...] = (
    _cached("seed"),
    _from_parameters(lambda p: p.seed),
    _by_format(
        invokeai=_invokeai_number("seed", int, allow_zero=True),
        comfyui=_comfy_sampler_number("seed"),
    ),
    _raw_positive(("seed",), int, allow_zero=True),
)

DIMENSIONS_STRATEGIES: tuple[Strategy, ...] = (
    _cached_dimensions,
    _from_parameters(lambda p: p.dimensions),
    _by_format(
        invokeai=_scan_dimensions,
        comfyui=_comfy_dimensions,
    ),
    _scan_dimensions,
)


def extract_prompt(metadata: ImageMetadata) -> str:
    return first_result(PROMPT_STRATEGIES, metadata, "")


def extract_negative_prompt(metadata: ImageMetadata) -> Optional[str]:
    return first_result(NEGATIVE_PROMPT_STRATEGIES, metadata, None)


def extract_models(metadata: ImageMetadata) -> list[str]:
    return list(first_result(MODELS_STRATEGIES, metadata, []))


def extract_loras(metadata: ImageMetadata) -> list[str]:
    return list(first_result(LORAS_STRATEGIES, metadata, []))


def extract_scheduler(metadata: ImageMetadata) -> str:
    return first_result(SCHEDULER_STRATEGIES, metadata, DEFAULT_SCHEDULER)


def extract_cfg_scale(metadata: ImageMetadata) -> Optional[float]:
    return first_result(CFG_SCALE_STRATEGIES, metadata, None)


def extract_steps(metadata: ImageMetadata) -> Optional[int]:
    return first_result(STEPS_STRATEGIES, metadata, None)


def extract_seed(metadata: ImageMetadata) -> Optional[int]:
    return first_result(SEED_STRATEGIES, metadata, None)


def extract_dimensions(metadata: ImageMetadata) -> Optional[str]:
    return first_result(DIMENSIONS_STRATEGIES, metadata, None)


def extract_board(metadata: ImageMetadata, resolver: Optional[BoardResolver] = None) -> str:
    """
    Board label of an InvokeAI record; every other format is uncategorized.

    Without a resolver a throwaway one is used, so opaque ids are only
    numbered consistently within a shared resolver.
    """
    cached = _cached("board")(metadata)
    if is_populated(cached):
        return cached
    if metadata.format is not MetadataFormat.INVOKEAI:
        return DEFAULT_BOARD
    return invokeai.extract_board(metadata.raw, resolver if resolver is not None else BoardResolver())


def collect_board_ids(metadata: ImageMetadata) -> list[str]:
    """Raw board ids ``extract_board`` would send through the resolver."""
    if metadata.format is not MetadataFormat.INVOKEAI or is_populated(_cached("board")(metadata)):
        return []
    board_id = invokeai.board_id_for_resolution(metadata.raw)
    return [board_id] if board_id else []


def normalize(metadata: ImageMetadata, resolver: Optional[BoardResolver] = None) -> NormalizedFields:
    """Resolve every output field; never mutates ``metadata``."""
    return NormalizedFields(
        prompt=extract_prompt(metadata),
        negative_prompt=extract_negative_prompt(metadata),
        models=extract_models(metadata),
        loras=extract_loras(metadata),
        scheduler=extract_scheduler(metadata),
        board=extract_board(metadata, resolver),
        cfg_scale=extract_cfg_scale(metadata),
        steps=extract_steps(metadata),
        seed=extract_seed(metadata),
        dimensions=extract_dimensions(metadata),
    )
