"""Backend-facing alias for shared utilities.

Feature modules import from here (`from ...shared import ...`) so the shared
package can be relocated without touching every import site.
"""

from __future__ import annotations

import aimeta_shared as _root_shared

Result = _root_shared.Result
ErrorCode = _root_shared.ErrorCode
MetadataFormat = _root_shared.MetadataFormat
get_logger = _root_shared.get_logger
log_success = _root_shared.log_success
log_structured = _root_shared.log_structured
scan_id_var = _root_shared.scan_id_var
classify_file = _root_shared.classify_file
timer = _root_shared.timer
FileKind = _root_shared.FileKind
EXTENSIONS = _root_shared.EXTENSIONS

__all__ = [
    "Result",
    "ErrorCode",
    "MetadataFormat",
    "get_logger",
    "log_success",
    "log_structured",
    "scan_id_var",
    "classify_file",
    "timer",
    "FileKind",
    "EXTENSIONS",
]
