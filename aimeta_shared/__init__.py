"""Shared utilities for the aimeta metadata indexer."""
from .log import get_logger, log_structured, log_success, scan_id_var
from .result import Result
from .time import timer
from .types import EXTENSIONS, ErrorCode, FileKind, MetadataFormat, classify_file

__all__ = [
    "Result",
    "get_logger",
    "log_success",
    "log_structured",
    "scan_id_var",
    "timer",
    "FileKind",
    "ErrorCode",
    "MetadataFormat",
    "EXTENSIONS",
    "classify_file",
]
