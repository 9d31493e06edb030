"""
Synchronizer: the single point where filesystem changes reach the index.

Watcher events and application mutations both go through one asyncio lock, so
the store sees them one at a time and, for a given path, in arrival order.
Watcher events are queued and applied by one worker task in FIFO order.

Application mutations perform the filesystem side effect first, then write the
store directly and notify observers without waiting for the watcher. When the
watcher later reports the same change, the idempotent store operations turn
it into a no-op and no second notification is sent.
"""
from __future__ import annotations

import asyncio
import os
import shutil
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.observers import Observer

from ...config import IMPORT_SUBDIRS, WATCHER_POLL_MS, WATCHER_STABILITY_MS
from ...path_utils import is_under_path, is_within_root, path_key
from ...shared import ErrorCode, MediaKind, Result, get_logger, request_id_var, sanitize_error_message
from ...utils import unique_destination
from ..events.notifier import ChangeNotifier, ImportStatus
from .classifier import classify_path, classify_under_root, is_hidden_name
from .filename_validator import validate_filename
from .fs_walker import walk_tree_async
from .store import IndexStore, MediaEntity, Tag
from .watcher import LibraryWatcher, WatchEvent, WatchEventType

logger = get_logger(__name__)


def _is_real_dir(path: str) -> bool:
    return os.path.isdir(path) and not os.path.islink(path)


class SyncState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"


class Synchronizer:
    """
    Reconciles watcher events and application mutations against the index.

    State per watched root: STOPPED -> STARTING (ensure-exists, initial scan)
    -> ACTIVE. Events from an older watch generation, or from outside the
    active root, are dropped.
    """

    def __init__(
        self,
        store: IndexStore,
        notifier: ChangeNotifier,
        observer_factory: Callable[[], Any] = Observer,
        stability_ms: int = WATCHER_STABILITY_MS,
        poll_ms: int = WATCHER_POLL_MS,
    ):
        self._store = store
        self._notifier = notifier
        self._watcher = LibraryWatcher(
            self.submit,
            observer_factory=observer_factory,
            stability_ms=stability_ms,
            poll_ms=poll_ms,
        )
        self._lock = asyncio.Lock()
        self._queue: asyncio.Queue[WatchEvent] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._state = SyncState.STOPPED
        self._root: Optional[str] = None
        self._generation = 0

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def root(self) -> Optional[str]:
        return self._root

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def watcher(self) -> LibraryWatcher:
        return self._watcher

    # ---- watch lifecycle ---------------------------------------------------------

    async def prepare_watch(self, root: str) -> Result[int]:
        """Ensure `root` exists and start an observer on it; its events stay stale until activation."""
        return await self._watcher.prepare(root)

    async def discard_prepared_watch(self) -> None:
        await self._watcher.discard_prepared()

    async def activate_watch(self, root: str, generation: int) -> Result[int]:
        """Make the prepared watch for `root` current and run its initial scan."""
        self._state = SyncState.STARTING
        self._root = path_key(root)
        self._generation = generation
        res = await self._watcher.start()
        if not res.ok:
            self._state = SyncState.STOPPED
            self._root = None
            return res
        self._state = SyncState.ACTIVE
        return res

    async def stop_watch(self) -> None:
        """
        Stop the active watch. Queued events of the stopped watch are discarded;
        an event already being applied finishes its store write.
        """
        self._state = SyncState.STOPPED
        await self._watcher.stop()

    async def restart_watch(self, new_root: str) -> Result[int]:
        """Stop the current watch and start one on `new_root` (no index reset)."""
        await self.stop_watch()
        prepared = await self.prepare_watch(new_root)
        if not prepared.ok:
            return prepared
        return await self.activate_watch(new_root, int(prepared.data or 0))

    async def clear_index(self) -> Result[int]:
        """Remove every entity, announcing each removed path."""
        async with self._lock:
            listed = await self._store.list_all()
            if not listed.ok:
                return Result.Err(listed.code, listed.error or "Failed to list media")
            cleared = await self._store.clear_all()
            if not cleared.ok:
                return cleared
            for entity in listed.data or []:
                self._notifier.media_removed(entity.path)
            return cleared

    async def prune_missing(self) -> Result[int]:
        """Remove rows whose path no longer exists on disk or lies outside the active root."""
        root = self._root
        async with self._lock:
            listed = await self._store.list_all()
            if not listed.ok:
                return Result.Err(listed.code, listed.error or "Failed to list media")
            pruned = 0
            # Shortest paths first so a vanished directory takes its subtree with it.
            for entity in sorted(listed.data or [], key=lambda e: len(e.path)):
                inside = root is not None and is_under_path(entity.path, root)
                if inside and await asyncio.to_thread(os.path.lexists, entity.path):
                    continue
                pruned += len(await self._unindex_path(entity.path))
        if pruned:
            logger.info("Pruned %d stale index entries", pruned)
        return Result.Ok(pruned)

    async def shutdown(self) -> None:
        await self.stop_watch()
        await self.discard_prepared_watch()
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)

    # ---- watcher events ----------------------------------------------------------

    def submit(self, event: WatchEvent) -> None:
        """Queue a watcher event. Must be called on the event loop thread."""
        self._queue.put_nowait(event)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run_worker(), name="medialib-sync-worker")

    async def drain(self) -> None:
        """Wait until every queued watcher event has been applied."""
        await self._queue.join()

    async def _run_worker(self) -> None:
        request_id_var.set("watcher")
        while True:
            event = await self._queue.get()
            try:
                await self.apply_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Failed to apply %s for %s: %s", event.type.value, event.path, exc, exc_info=True)
            finally:
                self._queue.task_done()

    def _is_stale(self, event: WatchEvent) -> bool:
        if self._state == SyncState.STOPPED or self._root is None:
            return True
        if event.generation != self._generation:
            return True
        return not is_under_path(event.path, self._root)

    async def apply_event(self, event: WatchEvent) -> None:
        async with self._lock:
            if self._is_stale(event):
                logger.debug("Dropping stale %s event for %s", event.type.value, event.path)
                return
            if event.type == WatchEventType.ADDED:
                await self._index_path(event.path, event.is_dir)
            elif event.type == WatchEventType.REMOVED:
                await self._unindex_path(event.path)
            elif event.type == WatchEventType.MOVED and event.dest_path:
                if not is_under_path(event.dest_path, self._root or ""):
                    await self._unindex_path(event.path)
                else:
                    await self._reindex_move(event.path, event.dest_path, event.is_dir)

    # ---- store application (lock held) ---------------------------------------

    async def _index_path(self, path: str, is_dir: Optional[bool] = None) -> Optional[MediaEntity]:
        root = self._root or ""
        kind = classify_under_root(path, root, is_dir=is_dir)
        if kind == MediaKind.IGNORED:
            return None
        size = 0
        if kind != MediaKind.DIRECTORY:
            try:
                st = await asyncio.to_thread(os.stat, path)
            except FileNotFoundError:
                logger.debug("File vanished before indexing: %s", path)
                return None
            except OSError as exc:
                logger.warning("Cannot stat %s: %s", path, exc)
                return None
            size = int(st.st_size)
        res = await self._store.upsert_media(path, os.path.basename(path), kind, size)
        if not res.ok:
            logger.warning("Failed to index %s: %s", path, res.error)
            return None
        entity = res.data
        if entity is not None and res.meta.get("created"):
            self._notifier.media_added(entity.to_dict())
        return entity

    async def _unindex_path(self, path: str) -> list[str]:
        res = await self._store.remove_tree(path)
        if not res.ok:
            logger.warning("Failed to remove %s from the index: %s", path, res.error)
            return []
        removed = res.data or []
        for p in removed:
            self._notifier.media_removed(p)
        return removed

    async def _reindex_move(self, old_path: str, new_path: str, is_dir: Optional[bool]) -> Optional[MediaEntity]:
        """Apply a rename to the index, keeping id, favorite and tags when the kind is unchanged."""
        new_kind = classify_under_root(new_path, self._root or "", is_dir=is_dir)
        existing = await self._store.find_by_path(old_path)
        if existing.ok and existing.data is not None and existing.data.kind == new_kind:
            moved = await self._store.update_path(old_path, new_path)
            if moved.ok and moved.data is not None:
                self._notifier.media_removed(old_path)
                for p in moved.meta.get("previous_paths") or []:
                    self._notifier.media_removed(p)
                self._notifier.media_added(moved.data.to_dict())
                for child in moved.meta.get("descendants") or []:
                    self._notifier.media_added(child.to_dict())
                return moved.data
            if not moved.ok:
                logger.warning("In-place rename failed for %s: %s", old_path, moved.error)
        await self._unindex_path(old_path)
        return await self._index_path(new_path, is_dir)

    # ---- application mutations -------------------------------------------------

    def _require_root(self) -> Result[str]:
        if self._root is None or self._state == SyncState.STOPPED:
            return Result.Err(ErrorCode.NO_ROOT, "No active library root")
        return Result.Ok(self._root)

    async def _resolve_in_root(self, path: str, *, allow_root: bool = False) -> Result[str]:
        root_res = self._require_root()
        if not root_res.ok:
            return root_res
        if not path or "\x00" in str(path):
            return Result.Err(ErrorCode.INVALID_INPUT, "Invalid path")
        key = path_key(path)
        root = root_res.data or ""
        if not is_under_path(key, root) or (key == root and not allow_root):
            return Result.Err(ErrorCode.OUTSIDE_ROOT, "Path is outside the library root")
        # Symlinks may leave the root. Destination directories (`allow_root`) resolve
        # themselves; entries resolve their parent so a link itself stays addressable.
        anchor = Path(key) if allow_root else Path(key).parent
        if not await asyncio.to_thread(is_within_root, anchor, Path(root)):
            return Result.Err(ErrorCode.OUTSIDE_ROOT, "Path resolves outside the library root")
        return Result.Ok(key)

    async def import_files(self, paths: list[str]) -> Result[list[bool]]:
        """
        Copy files into the root under a per-kind subdirectory and index them.

        Name collisions get a numbered suffix. Per-item outcome in the result list;
        progress is reported through `import_progress` events.
        """
        root_res = self._require_root()
        if not root_res.ok:
            return Result.Err(root_res.code, root_res.error or "No active library root")
        root = root_res.data or ""
        outcomes: list[bool] = []
        for src in paths or []:
            filename = os.path.basename(str(src))
            self._notifier.import_progress(ImportStatus.PROCESSING, filename)
            kind = classify_path(str(src))
            if kind not in (MediaKind.IMAGE, MediaKind.VIDEO):
                self._notifier.import_progress(ImportStatus.SKIPPED, filename, "Unsupported file type")
                outcomes.append(False)
                continue
            dest_dir = os.path.join(root, IMPORT_SUBDIRS[kind.value])
            try:
                async with self._lock:
                    await asyncio.to_thread(os.makedirs, dest_dir, exist_ok=True)
                    dest = await asyncio.to_thread(unique_destination, dest_dir, filename)
                    await asyncio.to_thread(shutil.copy2, src, dest)
                    await self._index_path(dest, False)
            except OSError as exc:
                message = sanitize_error_message(exc, "Import failed")
                logger.warning("Import of %s failed: %s", src, exc)
                self._notifier.import_progress(ImportStatus.ERROR, filename, message)
                outcomes.append(False)
                continue
            self._notifier.import_progress(ImportStatus.COMPLETED, filename)
            outcomes.append(True)
        return Result.Ok(outcomes)

    async def add_dropped_paths(self, paths: list[str], dest_dir: Optional[str] = None) -> Result[list[bool]]:
        """
        Copy dropped files and directory trees into `dest_dir` (default: the root).

        Directories keep their relative structure; files that classify as ignored
        are skipped without error. A dropped path that is itself ignored reports False.
        """
        target_res = await self._resolve_in_root(dest_dir, allow_root=True) if dest_dir else self._require_root()
        if not target_res.ok:
            return Result.Err(target_res.code, target_res.error or "Invalid destination")
        target = target_res.data or ""
        outcomes: list[bool] = []
        for src in paths or []:
            src = os.path.normpath(str(src))
            name = os.path.basename(src)
            if await asyncio.to_thread(os.path.isdir, src):
                outcomes.append(await self._copy_dropped_tree(src, target))
                continue
            kind = classify_path(src, is_dir=False)
            if kind == MediaKind.IGNORED:
                self._notifier.import_progress(ImportStatus.SKIPPED, name, "Unsupported file type")
                outcomes.append(False)
                continue
            outcomes.append(await self._copy_dropped_file(src, target))
        return Result.Ok(outcomes)

    async def _copy_dropped_file(self, src: str, dest_dir: str) -> bool:
        name = os.path.basename(src)
        self._notifier.import_progress(ImportStatus.PROCESSING, name)
        try:
            async with self._lock:
                dest = await asyncio.to_thread(unique_destination, dest_dir, name)
                await asyncio.to_thread(shutil.copy2, src, dest)
                await self._index_path(dest, False)
        except OSError as exc:
            logger.warning("Copy of %s failed: %s", src, exc)
            self._notifier.import_progress(ImportStatus.ERROR, name, sanitize_error_message(exc, "Copy failed"))
            return False
        self._notifier.import_progress(ImportStatus.COMPLETED, name)
        return True

    async def _copy_dropped_tree(self, src: str, dest_dir: str) -> bool:
        name = os.path.basename(src)
        if is_hidden_name(name):
            self._notifier.import_progress(ImportStatus.SKIPPED, name, "Hidden directory")
            return False
        try:
            async with self._lock:
                top = await asyncio.to_thread(unique_destination, dest_dir, name)
                await asyncio.to_thread(os.makedirs, top)
                await self._index_path(top, True)
        except OSError as exc:
            logger.warning("Cannot create %s in %s: %s", name, dest_dir, exc)
            self._notifier.import_progress(ImportStatus.ERROR, name, sanitize_error_message(exc, "Copy failed"))
            return False

        ok = True
        for entry, is_dir in await walk_tree_async(src):
            dest = os.path.join(top, os.path.relpath(entry, src))
            if is_dir:
                try:
                    async with self._lock:
                        await asyncio.to_thread(os.makedirs, dest, exist_ok=True)
                        await self._index_path(dest, True)
                except OSError as exc:
                    logger.warning("Cannot create directory %s: %s", dest, exc)
                    ok = False
                continue
            if classify_path(entry, is_dir=False) == MediaKind.IGNORED:
                continue
            ok = await self._copy_dropped_file(entry, os.path.dirname(dest)) and ok
        return ok

    async def create_directory(self, path: str) -> Result[bool]:
        resolved = await self._resolve_in_root(path)
        if not resolved.ok:
            return Result.Err(resolved.code, resolved.error or "Invalid path")
        target = resolved.data or ""
        valid, reason = validate_filename(os.path.basename(target))
        if not valid:
            return Result.Err(ErrorCode.INVALID_INPUT, reason)
        async with self._lock:
            try:
                await asyncio.to_thread(os.mkdir, target)
            except FileExistsError:
                return Result.Err(ErrorCode.CONFLICT, "An entry with that name already exists")
            except OSError as exc:
                logger.warning("mkdir %s failed: %s", target, exc)
                return Result.Err(ErrorCode.FS_ERROR, sanitize_error_message(exc, "Create directory failed"))
            await self._index_path(target, True)
        return Result.Ok(True)

    async def rename_or_move(self, old_path: str, new_path: str) -> Result[bool]:
        """Rename or move an entry on disk, then move its index row in place."""
        old_res = await self._resolve_in_root(old_path)
        if not old_res.ok:
            return Result.Err(old_res.code, old_res.error or "Invalid source")
        new_res = await self._resolve_in_root(new_path)
        if not new_res.ok:
            return Result.Err(new_res.code, new_res.error or "Invalid destination")
        old, new = old_res.data or "", new_res.data or ""
        if old == new:
            return Result.Ok(True)
        valid, reason = validate_filename(os.path.basename(new))
        if not valid:
            return Result.Err(ErrorCode.INVALID_INPUT, reason)
        if is_under_path(new, old):
            return Result.Err(ErrorCode.INVALID_INPUT, "Cannot move a directory into itself")

        async with self._lock:
            if not await asyncio.to_thread(os.path.lexists, old):
                return Result.Err(ErrorCode.NOT_FOUND, "Source does not exist")
            if await asyncio.to_thread(os.path.lexists, new):
                return Result.Err(ErrorCode.CONFLICT, "Destination already exists")
            is_dir = await asyncio.to_thread(os.path.isdir, old)
            try:
                await asyncio.to_thread(shutil.move, old, new)
            except OSError as exc:
                logger.warning("Move %s -> %s failed: %s", old, new, exc)
                return Result.Err(ErrorCode.FS_ERROR, sanitize_error_message(exc, "Move failed"))
            await self._reindex_move(old, new, is_dir)
        return Result.Ok(True)

    async def move_many(self, paths: list[str], dest_dir: str) -> Result[list[bool]]:
        """Move each path into `dest_dir`; every item is attempted."""
        dest_res = await self._resolve_in_root(dest_dir, allow_root=True)
        if not dest_res.ok:
            return Result.Err(dest_res.code, dest_res.error or "Invalid destination")
        outcomes: list[bool] = []
        for path in paths or []:
            res = await self.rename_or_move(path, os.path.join(dest_res.data or "", os.path.basename(os.path.normpath(path))))
            if not res.ok:
                logger.info("Move of %s skipped: %s", path, res.error)
            outcomes.append(bool(res.ok))
        return Result.Ok(outcomes)

    async def delete_media(self, path: str) -> Result[bool]:
        """Delete a file or directory tree from disk and from the index."""
        resolved = await self._resolve_in_root(path)
        if not resolved.ok:
            return Result.Err(resolved.code, resolved.error or "Invalid path")
        target = resolved.data or ""
        async with self._lock:
            on_disk = await asyncio.to_thread(os.path.lexists, target)
            is_tree = on_disk and await asyncio.to_thread(_is_real_dir, target)
            try:
                if is_tree:
                    await asyncio.to_thread(shutil.rmtree, target)
                elif on_disk:
                    await asyncio.to_thread(os.remove, target)
            except FileNotFoundError:
                on_disk = False
            except OSError as exc:
                logger.warning("Delete of %s failed: %s", target, exc)
                return Result.Err(ErrorCode.FS_ERROR, sanitize_error_message(exc, "Delete failed"))
            removed = await self._unindex_path(target)
        if not on_disk and not removed:
            return Result.Err(ErrorCode.NOT_FOUND, "Nothing to delete at that path")
        return Result.Ok(True)

    async def delete_many(self, paths: list[str]) -> Result[list[bool]]:
        outcomes: list[bool] = []
        for path in paths or []:
            res = await self.delete_media(path)
            if not res.ok:
                logger.info("Delete of %s failed: %s", path, res.error)
            outcomes.append(bool(res.ok))
        return Result.Ok(outcomes)

    # ---- tags and favorites ------------------------------------------------------

    async def create_tag(self, name: str) -> Result[Tag]:
        async with self._lock:
            res = await self._store.create_or_get_tag(name)
        if res.ok:
            self._notifier.tags_changed()
        return res

    async def attach_tag(self, media_id: int, tag_id: int) -> Result[bool]:
        async with self._lock:
            res = await self._store.attach_tag(media_id, tag_id)
        if res.ok:
            self._notifier.tags_changed()
        return res

    async def detach_tag(self, media_id: int, tag_id: int) -> Result[bool]:
        async with self._lock:
            res = await self._store.detach_tag(media_id, tag_id)
        if res.ok:
            self._notifier.tags_changed()
        return res

    async def toggle_favorite(self, media_id: int) -> Result[bool]:
        async with self._lock:
            res = await self._store.toggle_favorite(media_id)
            if not res.ok or res.meta.get("skipped"):
                return res
            found = await self._store.find_by_id(media_id)
        if found.ok and found.data is not None:
            self._notifier.media_updated(found.data.to_dict())
        return res
