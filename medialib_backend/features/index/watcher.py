"""
File system watcher for the library root.

Observes one root directory recursively with watchdog and hands a stream of
`WatchEvent`s (added / removed / moved) to a sink running on the event loop.

- Files being written are held back until their size has been stable for the
  stability window, checked at poll granularity.
- Directory creations are reported immediately and their contents rescanned,
  since a directory moved in from outside the root arrives as a single event.
- Hidden entries, and anything inside a hidden directory, are never reported.
- Every event carries the generation of the watch that produced it, so events
  from a watch that has since been replaced can be recognised and dropped.
"""
from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ...config import WATCHER_JOIN_TIMEOUT, WATCHER_POLL_MS, WATCHER_STABILITY_MS
from ...shared import ErrorCode, MediaKind, Result, classify_file, get_logger, log_success, monotonic, timer
from .classifier import has_hidden_component
from .fs_walker import walk_tree_async

logger = get_logger(__name__)


class WatchEventType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MOVED = "moved"


@dataclass(frozen=True)
class WatchEvent:
    type: WatchEventType
    path: str
    generation: int
    is_dir: Optional[bool] = None
    dest_path: Optional[str] = None


EventSink = Callable[[WatchEvent], None]


class StabilityWatchHandler(FileSystemEventHandler):
    """
    Translates watchdog callbacks (observer thread) into `WatchEvent`s delivered
    on the event loop.

    - File creates/modifies enter a pending map; a poll timer reports them once
      their size stops changing for `stability_ms`
    - Deletes are reported immediately and cancel any pending entry
    - In-tree renames are reported as a single moved event
    """

    def __init__(
        self,
        root: str,
        sink: EventSink,
        loop: asyncio.AbstractEventLoop,
        generation: int,
        stability_ms: int = WATCHER_STABILITY_MS,
        poll_ms: int = WATCHER_POLL_MS,
    ):
        super().__init__()
        self._root = os.path.normpath(root)
        self._sink = sink
        self._loop = loop
        self.generation = generation
        self._stability_s = max(0, stability_ms) / 1000.0
        self._poll_s = max(1, poll_ms) / 1000.0

        self._lock = Lock()
        self._pending: dict[str, tuple[int, float]] = {}  # path -> (last size, stable since)
        self._poll_timer: Any = None
        self._rescans: set[asyncio.Task] = set()
        self._closed = False

    # ---- filters ---------------------------------------------------------------

    def _is_ignored_path(self, path: str) -> bool:
        if not path:
            return True
        return has_hidden_component(path, self._root)

    @staticmethod
    def _is_supported(path: str) -> bool:
        return classify_file(path) != MediaKind.IGNORED

    # ---- watchdog callbacks (observer thread) ---------------------------------

    def on_created(self, event):
        path = os.path.normpath(str(event.src_path))
        if self._is_ignored_path(path):
            return
        if event.is_directory:
            self._emit(WatchEvent(WatchEventType.ADDED, path, self.generation, is_dir=True))
            self._schedule_rescan(path)
            return
        self._track(path)

    def on_modified(self, event):
        # Needed for slow writes where the create event precedes most of the content.
        if event.is_directory:
            return
        path = os.path.normpath(str(event.src_path))
        if self._is_ignored_path(path):
            return
        self._track(path)

    def on_deleted(self, event):
        path = os.path.normpath(str(event.src_path))
        if self._is_ignored_path(path):
            return
        self._untrack(path)
        self._emit(WatchEvent(WatchEventType.REMOVED, path, self.generation, is_dir=bool(event.is_directory)))

    def on_moved(self, event):
        src = os.path.normpath(str(event.src_path))
        dest = os.path.normpath(str(getattr(event, "dest_path", "") or ""))
        src_ignored = self._is_ignored_path(src)
        dest_ignored = self._is_ignored_path(dest)
        self._untrack(src)
        if src_ignored and dest_ignored:
            return
        if dest_ignored:
            self._emit(WatchEvent(WatchEventType.REMOVED, src, self.generation, is_dir=bool(event.is_directory)))
            return
        if src_ignored:
            self._handle_arrival(dest, bool(event.is_directory))
            return
        self._emit(
            WatchEvent(WatchEventType.MOVED, src, self.generation, is_dir=bool(event.is_directory), dest_path=dest)
        )
        if event.is_directory:
            self._schedule_rescan(dest)

    def _handle_arrival(self, path: str, is_dir: bool) -> None:
        if is_dir:
            self._emit(WatchEvent(WatchEventType.ADDED, path, self.generation, is_dir=True))
            self._schedule_rescan(path)
        else:
            self._emit(WatchEvent(WatchEventType.ADDED, path, self.generation, is_dir=False))

    # ---- stability tracking ----------------------------------------------------

    def _track(self, path: str) -> None:
        if not self._is_supported(path):
            return
        with self._lock:
            if self._closed:
                return
            # Size -1 forces one more observation before the window starts.
            self._pending[path] = (-1, monotonic())
        self._call_on_loop(self._ensure_poll)

    def _untrack(self, path: str) -> None:
        prefix = path if path.endswith(os.sep) else path + os.sep
        with self._lock:
            for key in [k for k in self._pending if k == path or k.startswith(prefix)]:
                self._pending.pop(key, None)

    def get_pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def is_idle(self) -> bool:
        """True when no file is waiting to settle and no directory rescan is running."""
        with self._lock:
            if self._pending:
                return False
        return not self._rescans

    def _ensure_poll(self) -> None:
        if self._closed or self._poll_timer is not None:
            return
        self._poll_timer = self._loop.call_later(self._poll_s, self._poll_tick)

    def _poll_tick(self) -> None:
        """Runs on the event loop: report files whose size has settled."""
        self._poll_timer = None
        if self._closed:
            return
        now = monotonic()
        ready: list[str] = []
        with self._lock:
            items = list(self._pending.items())
        for path, (last_size, since) in items:
            try:
                size = os.stat(path).st_size
            except FileNotFoundError:
                logger.debug("Pending file vanished before it settled: %s", path)
                with self._lock:
                    self._pending.pop(path, None)
                continue
            except OSError as exc:
                logger.warning("Cannot stat %s, dropping: %s", path, exc)
                with self._lock:
                    self._pending.pop(path, None)
                continue
            with self._lock:
                if path not in self._pending:
                    continue
                if size != last_size:
                    self._pending[path] = (size, now)
                elif now - since >= self._stability_s:
                    self._pending.pop(path, None)
                    ready.append(path)
        for path in ready:
            self._sink(WatchEvent(WatchEventType.ADDED, path, self.generation, is_dir=False))
        with self._lock:
            has_pending = bool(self._pending)
        if has_pending:
            self._ensure_poll()

    # ---- delivery --------------------------------------------------------------

    def _call_on_loop(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(fn, *args)
        except RuntimeError as exc:
            # Loop already closed during shutdown.
            logger.debug("Watcher dropped callback: %s", exc)

    def _emit(self, event: WatchEvent) -> None:
        if self._closed:
            return
        self._call_on_loop(self._sink, event)

    def _schedule_rescan(self, directory: str) -> None:
        self._call_on_loop(self._start_rescan, directory)

    def _start_rescan(self, directory: str) -> None:
        if self._closed:
            return
        task = self._loop.create_task(self._rescan(directory))
        self._rescans.add(task)
        task.add_done_callback(self._rescans.discard)

    async def _rescan(self, directory: str) -> None:
        """Report the contents of a directory that appeared in one piece."""
        entries = await walk_tree_async(directory)
        for path, is_dir in entries:
            if self._closed:
                return
            if is_dir:
                self._sink(WatchEvent(WatchEventType.ADDED, path, self.generation, is_dir=True))
            else:
                self._track(path)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._pending.clear()
        timer, self._poll_timer = self._poll_timer, None
        if timer is not None:
            timer.cancel()
        for task in list(self._rescans):
            task.cancel()


class LibraryWatcher:
    """
    Owns the watchdog observer for the library root.

    Starting is split in two so a caller can find out whether a root can be
    watched before committing to it:

        gen = (await watcher.prepare("/lib")).data   # ensure-exists + observer running
        await watcher.start()                         # promote + initial scan
        ...
        await watcher.stop()

    A prepared observer is already delivering events, tagged with the new
    generation; consumers drop them until that generation becomes current.
    """

    def __init__(
        self,
        sink: EventSink,
        observer_factory: Callable[[], Any] = Observer,
        stability_ms: int = WATCHER_STABILITY_MS,
        poll_ms: int = WATCHER_POLL_MS,
    ):
        self._sink = sink
        self._observer_factory = observer_factory
        self._stability_ms = stability_ms
        self._poll_ms = poll_ms
        self._generation = 0
        self._observer: Any | None = None
        self._handler: StabilityWatchHandler | None = None
        self._root: Optional[str] = None
        self._prepared: Optional[tuple[str, Any, StabilityWatchHandler]] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def root(self) -> Optional[str]:
        return self._root

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def handler(self) -> Optional[StabilityWatchHandler]:
        return self._handler

    def get_pending_count(self) -> int:
        return self._handler.get_pending_count() if self._handler else 0

    def is_idle(self) -> bool:
        return self._handler.is_idle() if self._handler else True

    async def prepare(self, root: str, loop: asyncio.AbstractEventLoop | None = None) -> Result[int]:
        """
        Ensure `root` exists and start an observer on it without making it the
        active watch. Every OS-level failure (missing root, watch limit,
        permission denied) surfaces here.
        """
        loop = loop or asyncio.get_running_loop()
        await self.discard_prepared()
        normalized = os.path.normpath(os.path.abspath(root))
        try:
            await asyncio.to_thread(Path(normalized).mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Cannot create library root %s: %s", normalized, exc)
            return Result.Err(ErrorCode.WATCH_FAILED, f"Cannot create library root: {exc}")
        if not await asyncio.to_thread(os.path.isdir, normalized):
            return Result.Err(ErrorCode.WATCH_FAILED, "Library root is not a directory")

        generation = self._generation + 1
        handler = StabilityWatchHandler(
            normalized,
            self._sink,
            loop,
            generation,
            stability_ms=self._stability_ms,
            poll_ms=self._poll_ms,
        )
        try:
            observer = self._observer_factory()
            observer.schedule(handler, normalized, recursive=True)
            observer.start()
        except (OSError, RuntimeError) as exc:
            handler.close()
            logger.error("Failed to watch %s: %s", normalized, exc)
            return Result.Err(ErrorCode.WATCH_FAILED, f"Failed to watch library root: {exc}")

        self._generation = generation
        self._prepared = (normalized, observer, handler)
        return Result.Ok(generation)

    async def discard_prepared(self) -> None:
        """Stop a prepared observer that was never promoted."""
        prepared, self._prepared = self._prepared, None
        if prepared is None:
            return
        _, observer, handler = prepared
        handler.close()
        await self._stop_observer(observer)

    async def start(self) -> Result[int]:
        """
        Promote the prepared watch and run the initial scan.

        Every pre-existing directory and file is reported as added; the returned
        count is the number of entries reported.
        """
        if self._prepared is None:
            return Result.Err(ErrorCode.WATCH_FAILED, "No prepared watch")
        if self._running:
            await self.stop()
        root, observer, handler = self._prepared
        self._prepared = None

        self._observer = observer
        self._handler = handler
        self._root = root
        self._running = True
        log_success(logger, f"Watching library root: {root}")

        with timer(f"Initial scan of {root}", logger):
            entries = await walk_tree_async(root)
        for path, is_dir in entries:
            if handler is not self._handler:
                break
            self._sink(WatchEvent(WatchEventType.ADDED, path, handler.generation, is_dir=is_dir))
        logger.info("Initial scan of %s reported %d entries", root, len(entries))
        return Result.Ok(len(entries))

    async def stop(self) -> None:
        """Stop the active watch; pending debounced files are dropped."""
        if not self._running:
            return
        observer, handler = self._observer, self._handler
        self._observer = None
        self._handler = None
        self._running = False
        if handler is not None:
            handler.close()
        if observer is not None:
            await self._stop_observer(observer)
        logger.info("File watcher stopped for %s", self._root)
        self._root = None

    @staticmethod
    async def _stop_observer(observer: Any) -> None:
        observer.stop()
        await asyncio.to_thread(observer.join, WATCHER_JOIN_TIMEOUT)
