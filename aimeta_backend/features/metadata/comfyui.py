"""
ComfyUI graph parsing.

A ComfyUI PNG carries the UI graph (``workflow``: ``{"nodes": [...]}``) and/or
the execution graph (``prompt``: ``{node_id: {"class_type", "inputs"}}``).
Both are flattened to ``GraphNode`` records; node roles are looked up in
``NODE_ROLE_RULES`` and each role reads a fixed list of input names.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from ...shared import MetadataFormat, get_logger
from .models import ImageMetadata, NormalizedMetadata
from .parsing_utils import coerce_float, coerce_int, dedupe_names, is_node_link, is_number, maybe_json, non_empty_str

logger = get_logger(__name__)


class NodeRole(str, Enum):
    CHECKPOINT = "checkpoint"
    LORA = "lora"
    TEXT_ENCODER = "text_encoder"
    SAMPLER = "sampler"
    SEED = "seed"
    SIZE = "size"


@dataclass(frozen=True)
class RoleRule:
    """
    A class type has ``role`` when it is one of ``names``, contains any of
    ``any_of`` or contains every keyword of ``all_of`` (case-insensitive).
    """

    role: NodeRole
    any_of: tuple[str, ...] = ()
    all_of: tuple[str, ...] = ()
    names: frozenset[str] = frozenset()

    def matches(self, class_type: str) -> bool:
        if class_type in self.names:
            return True
        lowered = class_type.lower()
        if self.any_of and any(keyword in lowered for keyword in self.any_of):
            return True
        return bool(self.all_of) and all(keyword in lowered for keyword in self.all_of)


KNOWN_SAMPLER_TYPES = frozenset({
    "KSampler",
    "SamplerCustom",
    "Sampler",
    "SamplerEuler",
    "SamplerEulerAncestral",
    "SamplerDPMPP2M",
    "SamplerDPMPP2MKarras",
    "SamplerDPMAdaptive",
    "SamplerLMS",
    "SamplerHeun",
    "SamplerDPM2",
    "SamplerDPM2Ancestral",
    "SamplerUniPC",
    "SamplerTCD",
    "SamplerLCM",
})

KNOWN_SIZE_TYPES = frozenset({
    "EmptyLatentImage",
    "LatentFromPrompt",
    "EmptyImage",
    "ImageSize",
    "LatentUpscale",
    "LatentDownscale",
})

NODE_ROLE_RULES: tuple[RoleRule, ...] = (
    RoleRule(NodeRole.CHECKPOINT, any_of=("checkpoint", "model")),
    RoleRule(NodeRole.LORA, any_of=("lora",)),
    RoleRule(NodeRole.TEXT_ENCODER, all_of=("clip", "text", "encode")),
    RoleRule(NodeRole.SAMPLER, any_of=("sampler", "ksampler", "sample"), names=KNOWN_SAMPLER_TYPES),
    RoleRule(NodeRole.SEED, any_of=("seed",), names=frozenset({"Seed Everywhere", "Random Seed"})),
    RoleRule(NodeRole.SIZE, any_of=("latent", "image", "size", "dimension"), names=KNOWN_SIZE_TYPES),
)

CHECKPOINT_INPUTS = ("ckpt_name", "checkpoint", "model_name")
LORA_INPUTS = ("lora_name", "lora", "name")
TEXT_INPUTS = ("text", "prompt", "string")
STEPS_INPUTS = ("steps", "step_count", "num_steps", "steps_count")
CFG_INPUTS = ("cfg", "cfg_scale", "guidance_scale", "scale", "guidance", "cfg_value")
SEED_INPUTS = ("seed", "noise_seed", "seed_value")
SAMPLER_NAME_INPUTS = ("sampler_name", "sampler", "sampling_method", "method")
WIDTH_INPUTS = ("width", "image_width", "size_width", "w", "x")
HEIGHT_INPUTS = ("height", "image_height", "size_height", "h", "y")

NEGATIVE_HINTS = ("blur", "deform", "ugly", "worst", "low quality", "bad", "negative")

# UI workflows store widget values positionally; names for the common core nodes.
WIDGET_INPUT_NAMES: dict[str, tuple[str, ...]] = {
    "KSampler": ("seed", "control_after_generate", "steps", "cfg", "sampler_name", "scheduler", "denoise"),
    "KSamplerAdvanced": (
        "add_noise",
        "noise_seed",
        "control_after_generate",
        "steps",
        "cfg",
        "sampler_name",
        "scheduler",
        "start_at_step",
        "end_at_step",
        "return_with_leftover_noise",
    ),
    "CheckpointLoaderSimple": ("ckpt_name",),
    "CheckpointLoader": ("config_name", "ckpt_name"),
    "LoraLoader": ("lora_name", "strength_model", "strength_clip"),
    "LoraLoaderModelOnly": ("lora_name", "strength_model"),
    "CLIPTextEncode": ("text",),
    "EmptyLatentImage": ("width", "height", "batch_size"),
}

# Fallback input name for the first string widget of unmapped node types.
_PRIMARY_WIDGET_INPUT = {
    NodeRole.CHECKPOINT: "ckpt_name",
    NodeRole.LORA: "lora_name",
    NodeRole.TEXT_ENCODER: "text",
}


@dataclass
class GraphNode:
    id: str
    class_type: str
    inputs: dict[str, Any] = field(default_factory=dict)

    @property
    def roles(self) -> frozenset[NodeRole]:
        return node_roles(self.class_type)


def node_roles(class_type: str) -> frozenset[NodeRole]:
    if not class_type:
        return frozenset()
    return frozenset(rule.role for rule in NODE_ROLE_RULES if rule.matches(class_type))


def graph_nodes(graph: Any) -> list[GraphNode]:
    """Flatten either graph shape into ``GraphNode`` records, in document order."""
    graph = maybe_json(graph)
    if not isinstance(graph, dict):
        return []
    if isinstance(graph.get("nodes"), list):
        return [node for node in (_workflow_node(item) for item in graph["nodes"]) if node is not None]

    out: list[GraphNode] = []
    for node_id, node in graph.items():
        if not isinstance(node, dict):
            continue
        class_type = node.get("class_type") or node.get("type") or ""
        inputs = node.get("inputs")
        out.append(GraphNode(
            id=str(node_id),
            class_type=str(class_type),
            inputs=dict(inputs) if isinstance(inputs, dict) else {},
        ))
    return out


def _workflow_node(item: Any) -> Optional[GraphNode]:
    if not isinstance(item, dict):
        return None
    class_type = str(item.get("class_type") or item.get("type") or "")
    inputs = item.get("inputs")
    # UI-graph inputs are socket descriptors, only API-style dicts carry values.
    values: dict[str, Any] = dict(inputs) if isinstance(inputs, dict) else {}

    widgets = item.get("widgets_values")
    if isinstance(widgets, list) and widgets:
        names = WIDGET_INPUT_NAMES.get(class_type)
        if names:
            for name, value in zip(names, widgets):
                values.setdefault(name, value)
        else:
            _apply_primary_widget(values, class_type, widgets)
    return GraphNode(id=str(item.get("id", "")), class_type=class_type, inputs=values)


def _apply_primary_widget(values: dict[str, Any], class_type: str, widgets: list[Any]) -> None:
    first_text = next((w for w in widgets if non_empty_str(w)), None)
    if first_text is None:
        return
    for role in node_roles(class_type):
        name = _PRIMARY_WIDGET_INPUT.get(role)
        if name:
            values.setdefault(name, first_text)


def looks_negative(text: str) -> bool:
    lowered = text.lower()
    return any(hint in lowered for hint in NEGATIVE_HINTS)


def _first_input(inputs: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = inputs.get(key)
        if value:
            return value
    return None


def _first_text(inputs: dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        text = non_empty_str(inputs.get(key))
        if text:
            return text
    return None


def _read_number(value: Any, cast: Callable[[Any], Any], minimum: float, inclusive: bool) -> Any:
    if value is None or is_node_link(value) or isinstance(value, (bool, list, dict)):
        return None
    if not (is_number(value) or isinstance(value, str)):
        return None
    out = cast(value)
    if out is None:
        return None
    return out if (out >= minimum if inclusive else out > minimum) else None


def _positive_int(value: Any) -> Optional[int]:
    return _read_number(value, coerce_int, 0, inclusive=False)


def _positive_float(value: Any) -> Optional[float]:
    return _read_number(value, coerce_float, 0, inclusive=False)


def _seed_value(value: Any) -> Optional[int]:
    return _read_number(value, coerce_int, 0, inclusive=True)


def _sampler_name(inputs: dict[str, Any]) -> Optional[str]:
    return _first_text(inputs, SAMPLER_NAME_INPUTS) or non_empty_str(inputs.get("scheduler"))


def walk_graph(nodes: list[GraphNode]) -> NormalizedMetadata:
    """Targeted pass over node roles, then the widening fallbacks for unset fields."""
    result = NormalizedMetadata()
    models: list[Any] = []
    loras: list[Any] = []

    for node in nodes:
        roles = node.roles
        inputs = node.inputs
        if NodeRole.CHECKPOINT in roles:
            models.append(_first_text(inputs, CHECKPOINT_INPUTS))
        if NodeRole.LORA in roles:
            loras.append(_first_text(inputs, LORA_INPUTS))
        if NodeRole.TEXT_ENCODER in roles:
            _assign_prompt_text(result, _first_text(inputs, TEXT_INPUTS))
        if NodeRole.SAMPLER in roles:
            _apply_sampler(result, inputs)
        if NodeRole.SEED in roles and result.seed is None:
            result.seed = _seed_node_value(inputs)
        if NodeRole.SIZE in roles:
            if result.width is None:
                result.width = _positive_int(_first_input(inputs, WIDTH_INPUTS))
            if result.height is None:
                result.height = _positive_int(_first_input(inputs, HEIGHT_INPUTS))

    if not result.prompt and not result.negative_prompt:
        for node in nodes:
            _assign_prompt_text(result, non_empty_str(node.inputs.get("text")))
    _apply_numeric_fallbacks(result, nodes)

    result.models = dedupe_names(models)
    result.loras = dedupe_names(loras)
    if result.models:
        result.model = result.models[0]
    return result


def _assign_prompt_text(result: NormalizedMetadata, text: Optional[str]) -> None:
    if not text:
        return
    if looks_negative(text):
        if not result.negative_prompt:
            result.negative_prompt = text
    elif not result.prompt:
        result.prompt = text


def _apply_sampler(result: NormalizedMetadata, inputs: dict[str, Any]) -> None:
    if result.steps is None:
        result.steps = _positive_int(_first_input(inputs, STEPS_INPUTS))
    if result.cfg_scale is None:
        result.cfg_scale = _positive_float(_first_input(inputs, CFG_INPUTS))
    if result.seed is None:
        # `[node_id, slot]` references are left unresolved.
        for key in SEED_INPUTS:
            seed = _seed_value(inputs.get(key))
            if seed is not None:
                result.seed = seed
                break
    if not result.scheduler:
        result.scheduler = _sampler_name(inputs) or ""


def _seed_node_value(inputs: dict[str, Any]) -> Optional[int]:
    for key, value in inputs.items():
        if "seed" in key.lower() and is_number(value) and value > 0:
            return int(value)
    return None


def _apply_numeric_fallbacks(result: NormalizedMetadata, nodes: list[GraphNode]) -> None:
    for node in nodes:
        for key, value in node.inputs.items():
            lowered = str(key).lower()
            if result.steps is None and "step" in lowered:
                steps = _read_number(value, coerce_int, 0, inclusive=False)
                if steps is not None and steps < 200:
                    result.steps = steps
            elif result.cfg_scale is None and _is_cfg_key(lowered):
                cfg = _read_number(value, coerce_float, 0, inclusive=False)
                if cfg is not None and cfg < 50:
                    result.cfg_scale = cfg
            elif result.seed is None and "seed" in lowered:
                result.seed = _seed_value(value)


def _is_cfg_key(key: str) -> bool:
    return "cfg" in key or "guidance" in key or key in ("scale", "strength")


def _decode_graph(value: Any, name: str) -> Any:
    decoded = maybe_json(value)
    if isinstance(decoded, str) and decoded.strip():
        logger.warning("ComfyUI %s chunk is not valid JSON, keeping raw text", name)
    return decoded


def _embedded_prompt(workflow_graph: Any) -> Any:
    # Some exporters nest the execution graph inside the workflow chunk.
    if isinstance(workflow_graph, dict) and "nodes" not in workflow_graph:
        return maybe_json(workflow_graph.get("prompt"))
    return None


def parse_comfyui(workflow: Any, prompt: Any, parameters: Optional[str] = None) -> ImageMetadata:
    """
    Build the comfyui variant.

    The execution graph is walked when it yields nodes, otherwise the UI graph.
    A ``parameters`` chunk found next to the graphs rides along in ``raw``.
    """
    raw: dict[str, Any] = {}
    workflow_graph = prompt_graph = None
    if workflow is not None:
        workflow_graph = raw["workflow"] = _decode_graph(workflow, "workflow")
    if prompt is not None:
        prompt_graph = raw["prompt"] = _decode_graph(prompt, "prompt")
    if isinstance(parameters, str) and parameters.strip():
        raw["parameters"] = parameters

    nodes = (
        graph_nodes(prompt_graph)
        or graph_nodes(_embedded_prompt(workflow_graph))
        or graph_nodes(workflow_graph)
    )
    if not nodes:
        logger.debug("ComfyUI metadata without usable graph nodes")
    return ImageMetadata(format=MetadataFormat.COMFYUI, raw=raw, normalized=walk_graph(nodes))


# Graph-level extractors. These scan a graph directly, without the parser's
# cache, so records re-hydrated without a normalized view still resolve.

def extract_models_from_graphs(*graphs: Any) -> list[str]:
    names: list[Any] = []
    for graph in graphs:
        for node in graph_nodes(graph):
            if NodeRole.CHECKPOINT not in node.roles:
                continue
            for key, value in node.inputs.items():
                if "ckpt_name" in key or "model" in key:
                    names.append(value if isinstance(value, str) else None)
    return dedupe_names(names)


def extract_loras_from_graphs(*graphs: Any) -> list[str]:
    names: list[Any] = []
    for graph in graphs:
        for node in graph_nodes(graph):
            lowered = node.class_type.lower()
            if "lora" not in lowered and "lyco" not in lowered:
                continue
            names.extend(node.inputs.get(key) for key in ("lora_name", "lyco_name"))
    return dedupe_names(names)


def extract_scheduler_from_graph(graph: Any) -> Optional[str]:
    for node in graph_nodes(graph):
        if NodeRole.SAMPLER in node.roles:
            name = _sampler_name(node.inputs)
            if name:
                return name
    return None


def extract_prompt_from_graph(graph: Any) -> Optional[str]:
    nodes = graph_nodes(graph)
    for node in nodes:
        if NodeRole.TEXT_ENCODER in node.roles:
            text = _first_text(node.inputs, TEXT_INPUTS)
            if text and not looks_negative(text):
                return text
    for node in nodes:
        text = non_empty_str(node.inputs.get("text"))
        if text and not looks_negative(text):
            return text
    return None


def extract_negative_prompt_from_graph(graph: Any) -> Optional[str]:
    for node in graph_nodes(graph):
        text = _first_text(node.inputs, TEXT_INPUTS) if NodeRole.TEXT_ENCODER in node.roles else None
        if text and looks_negative(text):
            return text
    return None


def extract_sampler_numbers_from_graph(graph: Any) -> dict[str, Any]:
    """``{"cfg_scale", "steps", "seed"}`` from the first sampler nodes that carry them."""
    found = NormalizedMetadata()
    for node in graph_nodes(graph):
        if NodeRole.SAMPLER in node.roles:
            _apply_sampler(found, node.inputs)
    return {"cfg_scale": found.cfg_scale, "steps": found.steps, "seed": found.seed}


def extract_dimensions_from_graph(graph: Any) -> Optional[tuple[int, int]]:
    for node in graph_nodes(graph):
        if NodeRole.SIZE not in node.roles:
            continue
        width = _positive_int(_first_input(node.inputs, WIDTH_INPUTS))
        height = _positive_int(_first_input(node.inputs, HEIGHT_INPUTS))
        if width and height:
            return width, height
    return None
