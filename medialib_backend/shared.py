"""Backend-facing alias for shared utilities.

Backend modules import from here so the shared package can move without
touching every feature module.
"""

from __future__ import annotations

import medialib_shared as _root_shared
from medialib_shared.types import EXTENSIONS

Result = _root_shared.Result
ErrorCode = _root_shared.ErrorCode
MediaKind = _root_shared.MediaKind
get_logger = _root_shared.get_logger
log_success = _root_shared.log_success
log_structured = _root_shared.log_structured
request_id_var = _root_shared.request_id_var
classify_file = _root_shared.classify_file
sanitize_error_message = _root_shared.sanitize_error_message
timer = _root_shared.timer
monotonic = _root_shared.monotonic

__all__ = [
    "Result",
    "ErrorCode",
    "MediaKind",
    "EXTENSIONS",
    "get_logger",
    "log_success",
    "log_structured",
    "request_id_var",
    "classify_file",
    "sanitize_error_message",
    "timer",
    "monotonic",
]
