"""
Index feature - batch indexing of image files.
"""
from .batch import IndexService
from .entry_builder import IndexedImage

__all__ = ["IndexService", "IndexedImage"]
