"""
Library settings record, persisted as JSON in the application data directory.

The record is kept apart from the index: switching roots clears the index
but never the settings. Each field is validated on load and falls back to its
own default when missing or malformed; one bad field never resets the others.
"""
from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from .config import DEFAULT_LIBRARY_ROOT, SETTINGS_MAX_BYTES, SETTINGS_PATH
from .path_utils import normalize_path
from .shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

_SETTINGS_VERSION = 1
_MIN_WINDOW_EXTENT = 200


@dataclass(frozen=True)
class WindowBounds:
    width: int = 1200
    height: int = 800
    x: Optional[int] = None
    y: Optional[int] = None

    @classmethod
    def from_value(cls, value: Any) -> "WindowBounds":
        default = cls()
        if not isinstance(value, dict):
            return default

        def _int(key: str, fallback: Optional[int], minimum: Optional[int] = None) -> Optional[int]:
            raw = value.get(key)
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                return fallback
            number = int(raw)
            if minimum is not None and number < minimum:
                return fallback
            return number

        return cls(
            width=_int("width", default.width, _MIN_WINDOW_EXTENT) or default.width,
            height=_int("height", default.height, _MIN_WINDOW_EXTENT) or default.height,
            x=_int("x", None),
            y=_int("y", None),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"width": self.width, "height": self.height, "x": self.x, "y": self.y}


@dataclass(frozen=True)
class LibrarySettings:
    library_root_path: str = DEFAULT_LIBRARY_ROOT
    window_bounds: WindowBounds = field(default_factory=WindowBounds)

    @classmethod
    def from_dict(cls, data: Any, *, default_root: str = DEFAULT_LIBRARY_ROOT) -> "LibrarySettings":
        if not isinstance(data, dict):
            return cls(library_root_path=default_root)
        root = default_root
        raw_root = data.get("library_root_path")
        if isinstance(raw_root, str) and raw_root.strip():
            normalized = normalize_path(raw_root.strip())
            if normalized is not None:
                root = str(normalized)
            else:
                logger.warning("Ignoring invalid library_root_path in settings: %r", raw_root)
        return cls(
            library_root_path=root,
            window_bounds=WindowBounds.from_value(data.get("window_bounds")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": _SETTINGS_VERSION,
            "library_root_path": self.library_root_path,
            "window_bounds": self.window_bounds.to_dict(),
        }


class SettingsStore:
    """
    Loads and persists `LibrarySettings`.

    Writes go to a temp file that replaces the record atomically, so a crash
    mid-write leaves the previous record readable.
    """

    def __init__(self, path: str = SETTINGS_PATH, default_root: str = DEFAULT_LIBRARY_ROOT):
        self._path = Path(path)
        self._default_root = default_root
        self._lock = asyncio.Lock()
        self._current: Optional[LibrarySettings] = None

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> LibrarySettings:
        default = LibrarySettings(library_root_path=self._default_root)
        if not self._path.exists():
            return default
        try:
            if self._path.stat().st_size > SETTINGS_MAX_BYTES:
                logger.warning("Settings record too large, ignoring: %s", self._path)
                return default
            raw = self._path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else {}
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read settings record: %s", exc)
            return default
        return LibrarySettings.from_dict(data, default_root=self._default_root)

    def _write(self, settings: LibrarySettings) -> Result[bool]:
        tmp = self._path.with_name(self._path.name + f".tmp_{uuid4().hex}")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(settings.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
            return Result.Ok(True)
        except OSError as exc:
            logger.warning("Failed to persist settings record: %s", exc)
            try:
                tmp.unlink(missing_ok=True)
            except OSError as cleanup_exc:
                logger.debug("Failed to remove temp settings file %s: %s", tmp, cleanup_exc)
            return Result.Err(ErrorCode.FS_ERROR, f"Failed to persist settings: {exc}")

    async def load(self) -> LibrarySettings:
        """Read the record (cached after the first read)."""
        async with self._lock:
            if self._current is None:
                self._current = await asyncio.to_thread(self._read)
            return self._current

    async def save(self, settings: LibrarySettings) -> Result[LibrarySettings]:
        async with self._lock:
            written = await asyncio.to_thread(self._write, settings)
            if not written.ok:
                return Result.Err(written.code, written.error or "Failed to persist settings")
            self._current = settings
            return Result.Ok(settings)

    async def update(self, **changes: Any) -> Result[LibrarySettings]:
        """Persist a copy of the current record with `changes` applied."""
        current = await self.load()
        try:
            updated = replace(current, **changes)
        except TypeError as exc:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Unknown setting: {exc}")
        return await self.save(updated)
