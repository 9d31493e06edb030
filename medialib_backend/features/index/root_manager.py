"""
Root manager: owns which directory is the library root.

Switching roots is destructive (the index is cleared and rebuilt from the new
root's initial scan) and all-or-nothing from the caller's point of view:

    1. ensure the new root exists and start an observer on it
    2. persist the settings record
    3. stop the old watch
    4. clear the index
    5. start the new watch (initial scan)

Every OS-level watch failure happens in step 1, so a failure in steps 1-2
leaves the old root, its watch and its index untouched. A failed clear rolls
back, after which the settings record is restored and the old watch restarted
over the intact index.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ...config import PRUNE_ON_OPEN
from ...path_utils import normalize_path, path_key
from ...settings import SettingsStore
from ...shared import ErrorCode, Result, get_logger, log_structured, log_success
from .synchronizer import SyncState, Synchronizer

logger = get_logger(__name__)


class RootManager:
    def __init__(self, synchronizer: Synchronizer, settings: SettingsStore):
        self._sync = synchronizer
        self._settings = settings
        self._lock = asyncio.Lock()

    @property
    def current_root(self) -> Optional[str]:
        return self._sync.root

    async def open(self, prune: bool = PRUNE_ON_OPEN) -> Result[str]:
        """Start watching the persisted root (or the default one)."""
        async with self._lock:
            settings = await self._settings.load()
            root = settings.library_root_path
            prepared = await self._sync.prepare_watch(root)
            if not prepared.ok:
                return Result.Err(prepared.code, prepared.error or "Failed to watch library root")
            started = await self._sync.activate_watch(root, int(prepared.data or 0))
            if not started.ok:
                return Result.Err(started.code, started.error or "Failed to start watcher")
            pruned = 0
            if prune:
                res = await self._sync.prune_missing()
                if not res.ok:
                    logger.warning("Stale entry pruning failed: %s", res.error)
                pruned = int(res.data or 0)
            return Result.Ok(path_key(root), scanned=started.data, pruned=pruned)

    async def switch_root(self, new_path: str) -> Result[str]:
        """Make `new_path` the library root, replacing the whole index."""
        normalized = normalize_path(str(new_path or "").strip())
        if normalized is None:
            return Result.Err(ErrorCode.INVALID_INPUT, "Invalid library path")
        new_root = path_key(str(normalized))

        async with self._lock:
            old_root = self._sync.root
            if old_root == new_root and self._sync.state == SyncState.ACTIVE:
                return Result.Ok(new_root, unchanged=True)

            prepared = await self._sync.prepare_watch(new_root)
            if not prepared.ok:
                logger.error("Root switch to %s aborted: %s", new_root, prepared.error)
                return Result.Err(ErrorCode.ROOT_SWITCH_FAILED, prepared.error or "Cannot watch new root")
            generation = int(prepared.data or 0)

            previous = await self._settings.load()
            saved = await self._settings.update(library_root_path=new_root)
            if not saved.ok:
                await self._sync.discard_prepared_watch()
                logger.error("Root switch to %s aborted: %s", new_root, saved.error)
                return Result.Err(ErrorCode.ROOT_SWITCH_FAILED, saved.error or "Cannot persist settings")

            await self._sync.stop_watch()
            cleared = await self._sync.clear_index()
            if not cleared.ok:
                await self._sync.discard_prepared_watch()
                await self._restore(previous.library_root_path, old_root)
                logger.error("Root switch to %s aborted, index not cleared: %s", new_root, cleared.error)
                return Result.Err(ErrorCode.ROOT_SWITCH_FAILED, cleared.error or "Cannot clear index")

            started = await self._sync.activate_watch(new_root, generation)
            if not started.ok:
                # Only reachable when the prepared watch was lost; the old root is rescanned.
                await self._restore(previous.library_root_path, old_root)
                logger.error("Watcher failed on %s, reverted to previous root: %s", new_root, started.error)
                return Result.Err(ErrorCode.ROOT_SWITCH_FAILED, started.error or "Cannot start watcher")

            log_success(logger, f"Library root switched to {new_root} ({cleared.data} stale entries cleared)")
            log_structured(
                logger,
                logging.INFO,
                "root_switched",
                old_root=old_root,
                new_root=new_root,
                cleared=cleared.data,
                scanned=started.data,
            )
            return Result.Ok(new_root, cleared=cleared.data, scanned=started.data)

    async def _restore(self, settings_root: str, old_root: Optional[str]) -> None:
        restored = await self._settings.update(library_root_path=settings_root)
        if not restored.ok:
            logger.error("Failed to restore settings record: %s", restored.error)
        if old_root is None:
            return
        res = await self._sync.restart_watch(old_root)
        if not res.ok:
            logger.error("Failed to restart watch on previous root %s: %s", old_root, res.error)

    async def shutdown(self) -> None:
        async with self._lock:
            await self._sync.shutdown()
