"""
Path classification: maps a filesystem entry to image, video, directory or ignored.
"""
from __future__ import annotations

import os
from pathlib import Path

from ...shared import MediaKind, classify_file


def is_hidden_name(name: str) -> bool:
    return bool(name) and name.startswith(".")


def classify_path(path: str, is_dir: bool | None = None) -> MediaKind:
    """
    Classify one filesystem entry.

    Hidden entries (leading dot) are ignored whatever their type. Directories
    are always `directory`; files are classified by case-insensitive extension.

    Args:
        path: Entry path (absolute or relative)
        is_dir: Entry type when the caller already knows it; checked with
            `os.path.isdir` otherwise

    Returns:
        MediaKind
    """
    name = os.path.basename(os.path.normpath(str(path)))
    if is_hidden_name(name):
        return MediaKind.IGNORED
    if is_dir is None:
        is_dir = os.path.isdir(path)
    if is_dir:
        return MediaKind.DIRECTORY
    return classify_file(name)


def has_hidden_component(path: str, root: str) -> bool:
    """True when any segment of `path` below `root` is hidden."""
    try:
        rel = Path(os.path.normpath(path)).relative_to(os.path.normpath(root))
    except ValueError:
        return any(is_hidden_name(part) for part in Path(path).parts)
    return any(is_hidden_name(part) for part in rel.parts)


def classify_under_root(path: str, root: str, is_dir: bool | None = None) -> MediaKind:
    """Classification that also ignores anything inside a hidden subtree of `root`."""
    if has_hidden_component(path, root):
        return MediaKind.IGNORED
    return classify_path(path, is_dir=is_dir)
