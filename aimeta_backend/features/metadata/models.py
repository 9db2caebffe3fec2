"""
Data model for embedded generation metadata.

``ImageMetadata`` is a tagged union: ``format`` is set once by the classifier
and every downstream consumer matches on it instead of re-probing ``raw``.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterator, Mapping, Optional

from ...shared import FileKind, MetadataFormat
from .parsing_utils import coerce_float, coerce_int, is_number, maybe_json

# InvokeAI records carry at least one of these; used only when re-hydrating
# serialized records that predate the explicit discriminant.
INVOKEAI_HINT_KEYS = (
    "app_version",
    "generation_mode",
    "positive_prompt",
    "negative_prompt",
    "canvas_v2_metadata",
    "model_name",
    "cfg_scale",
    "board_id",
    "board_name",
)


@dataclass(frozen=True)
class RawBlobSet:
    """Recognized text blobs pulled out of one image container."""

    blobs: Mapping[str, str]
    container: FileKind = "png"
    source_field: Optional[str] = None

    def __contains__(self, key: object) -> bool:
        return key in self.blobs

    def __iter__(self) -> Iterator[str]:
        return iter(self.blobs)

    def __len__(self) -> int:
        return len(self.blobs)

    def get(self, key: str) -> Optional[str]:
        return self.blobs.get(key)


@dataclass
class NormalizedMetadata:
    """Precomputed uniform view attached by a schema parser."""

    prompt: str = ""
    negative_prompt: str = ""
    model: str = ""
    models: list[str] = field(default_factory=list)
    loras: list[str] = field(default_factory=list)
    scheduler: str = ""
    board: str = ""
    cfg_scale: Optional[float] = None
    steps: Optional[int] = None
    seed: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["NormalizedMetadata"]:
        """Rebuild from a serialized cache, accepting camelCase keys from older caches."""
        if not isinstance(data, Mapping):
            return None

        def pick(*keys: str) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return None

        def text(*keys: str) -> str:
            value = pick(*keys)
            return value if isinstance(value, str) else ""

        def names(*keys: str) -> list[str]:
            value = pick(*keys)
            if not isinstance(value, list):
                return []
            return [v for v in value if isinstance(v, str)]

        def positive_int(*keys: str) -> Optional[int]:
            value = coerce_int(pick(*keys))
            return value if value is not None and value > 0 else None

        seed = pick("seed")
        cfg = pick("cfg_scale", "cfgScale")
        return cls(
            prompt=text("prompt"),
            negative_prompt=text("negative_prompt", "negativePrompt"),
            model=text("model"),
            models=names("models"),
            loras=names("loras"),
            scheduler=text("scheduler"),
            board=text("board"),
            cfg_scale=coerce_float(cfg) if is_number(cfg) else None,
            steps=coerce_int(pick("steps")) if is_number(pick("steps")) else None,
            seed=coerce_int(seed) if is_number(seed) else None,
            width=positive_int("width"),
            height=positive_int("height"),
        )


@dataclass
class ImageMetadata:
    """
    Raw metadata of one image plus its optional normalized cache.

    ``raw`` layout per ``format``:
        invokeai       decoded ``invokeai_metadata`` object, verbatim
        automatic1111  ``{"parameters": str}``
        comfyui        ``{"workflow": ..., "prompt": ..., "parameters"?: str}``
        unknown        arbitrary mapping
    """

    format: MetadataFormat
    raw: dict[str, Any] = field(default_factory=dict)
    normalized: Optional[NormalizedMetadata] = None

    @property
    def parameters(self) -> Optional[str]:
        """Automatic1111-style parameter block, whatever the top-level format."""
        value = self.raw.get("parameters")
        return value if isinstance(value, str) and value.strip() else None

    @property
    def workflow(self) -> Any:
        return self.raw.get("workflow")

    @property
    def prompt_graph(self) -> Any:
        """ComfyUI execution graph (only meaningful for the comfyui variant)."""
        if self.format is not MetadataFormat.COMFYUI:
            return None
        return self.raw.get("prompt")

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format.value,
            "raw": self.raw,
            "normalized": self.normalized.to_dict() if self.normalized is not None else None,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> Optional["ImageMetadata"]:
        """
        Re-hydrate a serialized record.

        Accepts the ``to_dict`` layout as well as plain legacy records without a
        discriminant, which are classified by shape exactly once here.
        """
        if not isinstance(payload, Mapping):
            return None

        fmt_value = payload.get("format")
        raw = payload.get("raw")
        if isinstance(raw, Mapping) and fmt_value in _FORMAT_VALUES:
            return cls(
                format=MetadataFormat(fmt_value),
                raw=dict(raw),
                normalized=NormalizedMetadata.from_dict(payload.get("normalized")),
            )

        legacy = dict(payload)
        camel = legacy.pop("normalizedMetadata", None)
        snake = legacy.pop("normalized", None)
        normalized = NormalizedMetadata.from_dict(camel or snake)
        return cls(format=detect_format_by_shape(legacy), raw=legacy, normalized=normalized)


_FORMAT_VALUES = frozenset(f.value for f in MetadataFormat)


def detect_format_by_shape(raw: Mapping[str, Any]) -> MetadataFormat:
    """Shape sniffing for records that arrive without a discriminant."""
    if any(key in raw for key in INVOKEAI_HINT_KEYS if key != "cfg_scale") and not _has_comfy_graph(raw):
        return MetadataFormat.INVOKEAI
    if _has_comfy_graph(raw):
        return MetadataFormat.COMFYUI
    if isinstance(raw.get("parameters"), str):
        return MetadataFormat.AUTOMATIC1111
    if "cfg_scale" in raw or "invokeai_metadata" in raw:
        return MetadataFormat.INVOKEAI
    return MetadataFormat.UNKNOWN


def _has_comfy_graph(raw: Mapping[str, Any]) -> bool:
    prompt = maybe_json(raw.get("prompt"))
    if isinstance(prompt, dict) and any(
        isinstance(node, dict) and ("class_type" in node or "inputs" in node) for node in prompt.values()
    ):
        return True
    workflow = maybe_json(raw.get("workflow"))
    if isinstance(workflow, dict) and isinstance(workflow.get("nodes"), list):
        # InvokeAI embeds its own node graph; its nodes carry a `data` envelope.
        nodes = workflow["nodes"]
        return not any(isinstance(node, dict) and isinstance(node.get("data"), dict) for node in nodes)
    return False
