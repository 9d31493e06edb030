"""
Shared path normalization and safety helpers.
"""

from __future__ import annotations

import os
from pathlib import Path


def normalize_path(value: str) -> Path | None:
    if not value:
        return None
    if "\x00" in str(value):
        return None
    try:
        return Path(value).expanduser().resolve(strict=False)
    except (OSError, ValueError, RuntimeError):
        return None


def path_key(value: str) -> str:
    """Normalized string form used as the index's path identity."""
    return os.path.normpath(os.path.abspath(str(value)))


def is_within_root(candidate: Path, root: Path) -> bool:
    """True when `candidate` is `root` or lies below it (symlinks resolved, no existence required)."""
    try:
        root_resolved = root.resolve(strict=False)
        cand_resolved = candidate.resolve(strict=False)
    except (OSError, RuntimeError, ValueError):
        return False
    return cand_resolved == root_resolved or cand_resolved.is_relative_to(root_resolved)


def is_under_path(candidate: str, root: str) -> bool:
    """String-level prefix test on normalized paths; no filesystem access."""
    if not candidate or not root:
        return False
    candidate = os.path.normpath(candidate)
    root = os.path.normpath(root)
    if candidate == root:
        return True
    root_sep = root if root.endswith(os.sep) else root + os.sep
    return candidate.startswith(root_sep)
