"""
Automatic1111 / Forge ``parameters`` text parser.

Layout of the block::

    <prompt, possibly multi-line>
    Negative prompt: <text>
    Steps: 20, Sampler: Euler a, CFG scale: 7, Seed: 42, Size: 512x768, Model: foo

Every key is matched independently; a missing key leaves its field unset.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from ...shared import MetadataFormat
from .models import ImageMetadata, NormalizedMetadata
from .parsing_utils import dedupe_names

NEGATIVE_MARKER = "\nNegative prompt:"

_PARAM_LINE_RE = re.compile(r"\n[A-Z][a-z]+:")

# Keys must open a line or follow a comma so "Hires steps:" / "Variation seed:"
# never shadow the primary values.
_KEY_PREFIX = r"(?:^|[,\n])[ \t]*"
_MODEL_RE = re.compile(_KEY_PREFIX + r"Model:[ \t]*([^,\n]+)", re.IGNORECASE | re.MULTILINE)
_MODEL_HASH_RE = re.compile(_KEY_PREFIX + r"Model hash:[ \t]*([a-f0-9]+)", re.IGNORECASE | re.MULTILINE)
_STEPS_RE = re.compile(_KEY_PREFIX + r"Steps:[ \t]*(\d+)", re.IGNORECASE | re.MULTILINE)
_SAMPLER_RE = re.compile(_KEY_PREFIX + r"Sampler:[ \t]*([^,\n]+)", re.IGNORECASE | re.MULTILINE)
_CFG_RE = re.compile(_KEY_PREFIX + r"CFG scale:[ \t]*(\d+(?:\.\d+)?|\.\d+)", re.IGNORECASE | re.MULTILINE)
_SEED_RE = re.compile(_KEY_PREFIX + r"Seed:[ \t]*(\d+)", re.IGNORECASE | re.MULTILINE)
_SIZE_RE = re.compile(_KEY_PREFIX + r"Size:[ \t]*(\d+)[ \t]*x[ \t]*(\d+)", re.IGNORECASE | re.MULTILINE)

LORA_TAG_RE = re.compile(r"<(?:lora|lyco):([^:>]+)(?::[^>]*)?>", re.IGNORECASE)


@dataclass
class A1111Parameters:
    prompt: str = ""
    negative_prompt: str = ""
    model: str = ""
    model_hash: str = ""
    steps: Optional[int] = None
    sampler: str = ""
    cfg_scale: Optional[float] = None
    seed: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    loras: list[str] = field(default_factory=list)

    @property
    def models(self) -> list[str]:
        if self.model:
            return [self.model]
        if self.model_hash:
            return [hash_model_label(self.model_hash)]
        return []

    @property
    def dimensions(self) -> Optional[str]:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None

    def is_empty(self) -> bool:
        return not (
            self.prompt
            or self.negative_prompt
            or self.models
            or self.sampler
            or self.loras
            or self.steps is not None
            or self.cfg_scale is not None
            or self.seed is not None
            or self.dimensions
        )

    def to_normalized(self) -> NormalizedMetadata:
        models = self.models
        return NormalizedMetadata(
            prompt=self.prompt,
            negative_prompt=self.negative_prompt,
            model=models[0] if models else "",
            models=models,
            loras=list(self.loras),
            scheduler=self.sampler,
            cfg_scale=self.cfg_scale,
            steps=self.steps,
            seed=self.seed,
            width=self.width,
            height=self.height,
        )


def hash_model_label(model_hash: str) -> str:
    return f"Model ({model_hash[:8]}...)"


def split_prompt(parameters: str) -> tuple[str, str]:
    """Return ``(prompt, negative_prompt)`` for a parameters block."""
    neg_idx = parameters.find(NEGATIVE_MARKER)
    if neg_idx != -1:
        prompt = parameters[:neg_idx].strip()
        neg_start = neg_idx + len(NEGATIVE_MARKER)
        neg_end = parameters.find("\n", neg_idx + 1)
        negative = parameters[neg_start:neg_end] if neg_end != -1 else parameters[neg_start:]
        return prompt, negative.strip()

    first_param = _PARAM_LINE_RE.search(parameters)
    if first_param:
        return parameters[:first_param.start()].strip(), ""
    return parameters.strip(), ""


def extract_lora_tags(text: str) -> list[str]:
    """Names from ``<lora:name:weight>`` / ``<lyco:name:weight>`` tags."""
    if not text:
        return []
    return dedupe_names(match.group(1) for match in LORA_TAG_RE.finditer(text))


def parse_parameters(parameters: str) -> A1111Parameters:
    """Parse a parameters block; never raises, unknown content is ignored."""
    result = A1111Parameters()
    if not isinstance(parameters, str) or not parameters.strip():
        return result

    result.prompt, result.negative_prompt = split_prompt(parameters)

    match = _MODEL_RE.search(parameters)
    if match:
        result.model = match.group(1).strip()
    match = _MODEL_HASH_RE.search(parameters)
    if match:
        result.model_hash = match.group(1).strip()
    match = _STEPS_RE.search(parameters)
    if match:
        result.steps = int(match.group(1))
    match = _SAMPLER_RE.search(parameters)
    if match:
        result.sampler = match.group(1).strip()
    match = _CFG_RE.search(parameters)
    if match:
        result.cfg_scale = float(match.group(1))
    match = _SEED_RE.search(parameters)
    if match:
        result.seed = int(match.group(1))
    match = _SIZE_RE.search(parameters)
    if match:
        result.width = int(match.group(1))
        result.height = int(match.group(2))

    result.loras = extract_lora_tags(parameters)
    return result


def parse_a1111(parameters: str) -> ImageMetadata:
    """Build the automatic1111 variant with its normalized cache."""
    parsed = parse_parameters(parameters)
    return ImageMetadata(
        format=MetadataFormat.AUTOMATIC1111,
        raw={"parameters": parameters},
        normalized=parsed.to_normalized(),
    )
