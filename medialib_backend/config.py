"""
Configuration for the media library backend.

Every value can be overridden through an `MLIB_*` environment variable; bad
values fall back to the default with a warning, numeric values are clamped.
"""
import logging
import os
from pathlib import Path

from .utils import env_bool

logger = logging.getLogger(__name__)


def _env_raw(*names: str, default: str | None = None) -> str | None:
    for name in names:
        if not name:
            continue
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return str(val).strip()
    return default


def _env_int(default: int, *names: str, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_float(default: float, *names: str, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid float for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_bool(default: bool, *names: str) -> bool:
    for name in names:
        if name and name in os.environ:
            return env_bool(name, default)
    return default


def _resolve_data_dir() -> Path:
    env_path = _env_raw("MLIB_DATA_DIR")
    if env_path:
        try:
            return Path(env_path).expanduser().resolve()
        except (OSError, RuntimeError):
            logger.warning("Failed to resolve MLIB_DATA_DIR: %s, using fallback", env_path)
    xdg = _env_raw("XDG_DATA_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".local" / "share"
    return (base / "medialib").resolve()


def _resolve_default_library_root() -> Path:
    env_path = _env_raw("MLIB_LIBRARY_ROOT")
    if env_path:
        try:
            return Path(env_path).expanduser().resolve()
        except (OSError, RuntimeError):
            logger.warning("Failed to resolve MLIB_LIBRARY_ROOT: %s, using fallback", env_path)
    return (Path.cwd() / "library").resolve()


# Application-private data directory (index DB + settings record)
DATA_DIR = str(_resolve_data_dir())
INDEX_DB = str(Path(_env_raw("MLIB_INDEX_DB", default="") or Path(DATA_DIR) / "index.sqlite"))
SETTINGS_PATH = str(Path(_env_raw("MLIB_SETTINGS_PATH", default="") or Path(DATA_DIR) / "settings.json"))

# Root used when no settings record exists yet
DEFAULT_LIBRARY_ROOT = str(_resolve_default_library_root())

# Import destinations, relative to the library root
IMPORT_SUBDIRS = {
    "image": _env_raw("MLIB_IMPORT_IMAGE_SUBDIR", default="images") or "images",
    "video": _env_raw("MLIB_IMPORT_VIDEO_SUBDIR", default="videos") or "videos",
}

# Watcher: a written file is reported once its size has been stable this long
WATCHER_STABILITY_MS = _env_int(2000, "MLIB_WATCHER_STABILITY_MS", min_value=0, max_value=60_000)
WATCHER_POLL_MS = _env_int(100, "MLIB_WATCHER_POLL_MS", min_value=10, max_value=5_000)
WATCHER_JOIN_TIMEOUT = _env_float(2.0, "MLIB_WATCHER_JOIN_TIMEOUT", min_value=0.0, max_value=30.0)

# Drop index rows whose file vanished (or left the root) while the app was closed
PRUNE_ON_OPEN = _env_bool(True, "MLIB_PRUNE_ON_OPEN")

# Database
DB_TIMEOUT = _env_float(30.0, "MLIB_DB_TIMEOUT", min_value=1.0, max_value=600.0)
DB_QUERY_TIMEOUT = _env_float(0.0, "MLIB_DB_QUERY_TIMEOUT", min_value=0.0, max_value=600.0)

# Tags
TAG_NAME_MAX_LENGTH = _env_int(100, "MLIB_TAG_NAME_MAX_LENGTH", min_value=1, max_value=1000)

# Settings record guard
SETTINGS_MAX_BYTES = _env_int(1024 * 1024, "MLIB_SETTINGS_MAX_BYTES", min_value=1024)


def initialize_directories() -> None:
    """Create the application data directory if it does not exist."""
    Path(DATA_DIR).mkdir(parents=True, exist_ok=True)
