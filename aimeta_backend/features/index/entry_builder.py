"""
Entry builder: pure functions that turn parsed metadata into index records.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

from ...shared import get_logger
from ..metadata.board_resolver import BoardResolver
from ..metadata.models import ImageMetadata
from ..metadata.normalizer import normalize

logger = get_logger(__name__)

_PRIMITIVE_TYPES = (str, int, float, bool, type(None))
_GRAPH_KEYS = ("workflow", "prompt")


@dataclass
class IndexedImage:
    id: str
    name: str
    metadata: ImageMetadata
    metadata_string: str
    last_modified: int
    directory_name: str
    prompt: str = ""
    negative_prompt: Optional[str] = None
    models: list[str] = field(default_factory=list)
    loras: list[str] = field(default_factory=list)
    scheduler: str = "Unknown"
    board: str = "Uncategorized"
    cfg_scale: Optional[float] = None
    steps: Optional[int] = None
    seed: Optional[int] = None
    dimensions: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["metadata"] = self.metadata.to_dict()
        return out


def reduced_payload(metadata: ImageMetadata) -> dict[str, Any]:
    """
    Primitive-only view of a record: the normalized cache is dropped, graphs
    survive only in their original string form.
    """
    raw: dict[str, Any] = {}
    for key, value in metadata.raw.items():
        if key in _GRAPH_KEYS:
            if isinstance(value, str):
                raw[str(key)] = value
            continue
        if isinstance(value, _PRIMITIVE_TYPES):
            raw[str(key)] = value
    return {"format": metadata.format.value, "raw": raw, "normalized": None}


def serialize_metadata(metadata: ImageMetadata) -> str:
    try:
        return json.dumps(metadata.to_dict(), ensure_ascii=False)
    except (TypeError, ValueError, RecursionError) as exc:
        logger.warning("Metadata not serializable (%s), storing reduced payload", exc)
        return json.dumps(reduced_payload(metadata), ensure_ascii=False)


def build_indexed_image(
    path: str | Path,
    metadata: ImageMetadata,
    *,
    mtime: float,
    resolver: Optional[BoardResolver] = None,
) -> IndexedImage:
    file_path = Path(path)
    fields = normalize(metadata, resolver)
    return IndexedImage(
        id=str(file_path),
        name=file_path.name,
        metadata=metadata,
        metadata_string=serialize_metadata(metadata),
        last_modified=int(mtime * 1000),
        directory_name=file_path.parent.name,
        **fields.to_dict(),
    )
