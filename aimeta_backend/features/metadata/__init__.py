"""Metadata extraction feature."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .board_resolver import BoardResolver
    from .models import ImageMetadata, NormalizedMetadata
    from .normalizer import NormalizedFields

__all__ = [
    "BoardResolver",
    "ImageMetadata",
    "NormalizedFields",
    "NormalizedMetadata",
    "normalize",
    "parse",
    "read_image_metadata",
]


def __getattr__(name: str):
    if name in ("parse", "read_image_metadata"):
        from .service import parse, read_image_metadata

        return {"parse": parse, "read_image_metadata": read_image_metadata}[name]
    if name in ("normalize", "NormalizedFields"):
        from .normalizer import NormalizedFields, normalize

        return {"normalize": normalize, "NormalizedFields": NormalizedFields}[name]
    if name in ("ImageMetadata", "NormalizedMetadata"):
        from .models import ImageMetadata, NormalizedMetadata

        return {"ImageMetadata": ImageMetadata, "NormalizedMetadata": NormalizedMetadata}[name]
    if name == "BoardResolver":
        from .board_resolver import BoardResolver as _BoardResolver

        return _BoardResolver
    raise AttributeError(name)
