"""
Utility helpers shared across backend modules.
"""
from __future__ import annotations

import os
from typing import Any

BOOL_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "enabled"})
BOOL_FALSE_VALUES = frozenset({"0", "false", "no", "off", "disabled"})


def parse_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in BOOL_TRUE_VALUES:
            return True
        if normalized in BOOL_FALSE_VALUES:
            return False
        try:
            return bool(float(normalized))
        except ValueError:
            pass
    return default


def env_bool(name: str, default: bool) -> bool:
    if not name:
        return default
    raw = os.environ.get(name)
    if raw is None:
        return default
    return parse_bool(raw, default)


def unique_destination(directory: str, filename: str) -> str:
    """
    Return a path in `directory` for `filename` that does not exist yet.

    Collisions get a ` (n)` suffix before the extension: `photo.jpg`,
    `photo (1).jpg`, `photo (2).jpg`, ...
    """
    candidate = os.path.join(directory, filename)
    if not os.path.lexists(candidate):
        return candidate
    stem, ext = os.path.splitext(filename)
    n = 1
    while True:
        candidate = os.path.join(directory, f"{stem} ({n}){ext}")
        if not os.path.lexists(candidate):
            return candidate
        n += 1
