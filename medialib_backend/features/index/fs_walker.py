"""
Directory tree traversal for the initial scan and recursive imports.

Walks run on a worker thread (`asyncio.to_thread`); unreadable sub-directories
are logged and skipped so the rest of the tree is still reported.
"""
from __future__ import annotations

import asyncio
import os

from ...shared import get_logger
from .classifier import is_hidden_name

logger = get_logger(__name__)


def _log_walk_error(exc: OSError) -> None:
    logger.warning("Skipping unreadable path %s: %s", getattr(exc, "filename", "?"), exc.strerror or exc)


def walk_tree(root: str, *, include_hidden: bool = False) -> list[tuple[str, bool]]:
    """
    List every entry below `root` as `(path, is_dir)`, parents before children.

    Hidden directories are pruned and hidden files dropped unless
    `include_hidden` is set. Symlinked directories are reported but not followed.
    """
    entries: list[tuple[str, bool]] = []
    for dirpath, dirnames, filenames in os.walk(root, topdown=True, onerror=_log_walk_error, followlinks=False):
        if not include_hidden:
            dirnames[:] = [d for d in dirnames if not is_hidden_name(d)]
        dirnames.sort()
        for name in dirnames:
            entries.append((os.path.join(dirpath, name), True))
        for name in sorted(filenames):
            if not include_hidden and is_hidden_name(name):
                continue
            entries.append((os.path.join(dirpath, name), False))
    return entries


async def walk_tree_async(root: str, *, include_hidden: bool = False) -> list[tuple[str, bool]]:
    return await asyncio.to_thread(walk_tree, root, include_hidden=include_hidden)
