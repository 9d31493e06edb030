"""Shared utilities for the media library backend."""
from .errors import sanitize_error_message
from .log import get_logger, log_structured, log_success, request_id_var
from .result import Result
from .time import monotonic, ms, now, timer
from .types import EXTENSIONS, ErrorCode, MediaKind, classify_file

__all__ = [
    "Result",
    "get_logger",
    "log_success",
    "log_structured",
    "request_id_var",
    "now",
    "ms",
    "monotonic",
    "timer",
    "ErrorCode",
    "MediaKind",
    "EXTENSIONS",
    "classify_file",
    "sanitize_error_message",
]
