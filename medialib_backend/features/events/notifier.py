"""
Change notifier: fans out index deltas to subscribed observers.

Each observer gets its own FIFO queue drained by a single pump task, so an
observer sees events in emission order and a slow or failing observer never
blocks the emitter or other observers.
"""
from __future__ import annotations

import asyncio
import inspect
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from ...shared import get_logger, request_id_var

logger = get_logger(__name__)


class EventKind(str, Enum):
    MEDIA_ADDED = "media_added"
    MEDIA_REMOVED = "media_removed"
    MEDIA_UPDATED = "media_updated"
    TAGS_CHANGED = "tags_changed"
    IMPORT_PROGRESS = "import_progress"


class ImportStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class ChangeEvent:
    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)


Observer = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by `ChangeNotifier.subscribe`."""

    _ids = itertools.count(1)

    def __init__(self, callback: Observer):
        self.id = next(self._ids)
        self.callback = callback
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"Subscription(id={self.id})"


class ChangeNotifier:
    def __init__(self):
        self._subscriptions: dict[int, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: Observer) -> Subscription:
        """Register a sync or async callable receiving every future `ChangeEvent`."""
        sub = Subscription(callback)
        self._subscriptions[sub.id] = sub
        self._ensure_pump(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscriptions.pop(sub.id, None)
        if sub.task is not None and not sub.task.done():
            sub.task.cancel()
        sub.task = None

    def emit(self, kind: EventKind, payload: Optional[dict[str, Any]] = None) -> None:
        """Queue an event for every observer. Must be called on the event loop thread."""
        event = ChangeEvent(EventKind(kind), dict(payload or {}))
        for sub in list(self._subscriptions.values()):
            sub.queue.put_nowait(event)
            self._ensure_pump(sub)

    def media_added(self, entity: dict[str, Any]) -> None:
        self.emit(EventKind.MEDIA_ADDED, entity)

    def media_removed(self, path: str) -> None:
        self.emit(EventKind.MEDIA_REMOVED, {"path": path})

    def media_updated(self, entity: dict[str, Any]) -> None:
        self.emit(EventKind.MEDIA_UPDATED, entity)

    def tags_changed(self) -> None:
        self.emit(EventKind.TAGS_CHANGED)

    def import_progress(self, status: ImportStatus, filename: str, error: Optional[str] = None) -> None:
        payload: dict[str, Any] = {"status": ImportStatus(status).value, "filename": filename}
        if error:
            payload["error"] = error
        self.emit(EventKind.IMPORT_PROGRESS, payload)

    async def drain(self) -> None:
        """Wait until every queued event has been delivered."""
        for sub in list(self._subscriptions.values()):
            self._ensure_pump(sub)
            await sub.queue.join()

    async def aclose(self) -> None:
        subs = list(self._subscriptions.values())
        tasks = [s.task for s in subs if s.task is not None]
        for sub in subs:
            self.unsubscribe(sub)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _ensure_pump(self, sub: Subscription) -> None:
        if sub.task is not None and not sub.task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Subscribed outside a loop; the pump starts on the first emit.
            return
        sub.task = loop.create_task(self._pump(sub), name=f"medialib-notifier-{sub.id}")

    async def _pump(self, sub: Subscription) -> None:
        # Long-lived task: do not inherit the operation id of whoever started it.
        request_id_var.set("")
        while True:
            event = await sub.queue.get()
            try:
                result = sub.callback(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Observer %s failed on %s: %s", sub, event.kind.value, exc, exc_info=True)
            finally:
                sub.queue.task_done()
