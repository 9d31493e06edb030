"""
Library service: the request/response surface consumed by the UI layer.

Reads go straight to the index store; every mutation goes through the
synchronizer so it is serialized with watcher events. Entities and tags are
returned as plain dicts.
"""
from __future__ import annotations

import functools
import inspect
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union
from uuid import uuid4

from ...settings import SettingsStore
from ...shared import ErrorCode, Result, get_logger, request_id_var
from ..events.notifier import ChangeNotifier, Observer, Subscription
from ..index.root_manager import RootManager
from ..index.store import IndexStore, MediaEntity
from ..index.synchronizer import Synchronizer

logger = get_logger(__name__)

FilePicker = Callable[[], Union[list[str], Awaitable[list[str]]]]

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def _correlated(fn: F) -> F:
    """Tag every log line emitted while `fn` runs with a fresh operation id."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        token = request_id_var.set(f"{fn.__name__}:{uuid4().hex[:8]}")
        try:
            return await fn(*args, **kwargs)
        finally:
            request_id_var.reset(token)

    return wrapper  # type: ignore[return-value]


def _as_id(value: Any, label: str) -> Result[int]:
    if isinstance(value, bool):
        return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid {label}")
    try:
        ident = int(value)
    except (TypeError, ValueError):
        return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid {label}")
    if ident <= 0:
        return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid {label}")
    return Result.Ok(ident)


def _entities(res: Result[list[MediaEntity]]) -> Result[list[dict[str, Any]]]:
    if not res.ok:
        return Result.Err(res.code, res.error or "Failed to list media")
    return Result.Ok([e.to_dict() for e in res.data or []])


class LibraryService:
    def __init__(
        self,
        store: IndexStore,
        synchronizer: Synchronizer,
        root_manager: RootManager,
        settings: SettingsStore,
        notifier: ChangeNotifier,
        file_picker: Optional[FilePicker] = None,
    ):
        self._store = store
        self._sync = synchronizer
        self._roots = root_manager
        self._settings = settings
        self._notifier = notifier
        self._file_picker = file_picker

    def set_file_picker(self, picker: Optional[FilePicker]) -> None:
        self._file_picker = picker

    def subscribe(self, observer: Observer) -> Subscription:
        """Receive `media_added`, `media_removed`, `media_updated`, `tags_changed`, `import_progress`."""
        return self._notifier.subscribe(observer)

    def unsubscribe(self, subscription: Subscription) -> None:
        self._notifier.unsubscribe(subscription)

    # ---- queries -----------------------------------------------------------------

    async def list_media(self) -> Result[list[dict[str, Any]]]:
        return _entities(await self._store.list_all())

    async def list_favorites(self) -> Result[list[dict[str, Any]]]:
        return _entities(await self._store.list_favorites())

    async def list_media_by_tag(self, tag_id: Any) -> Result[list[dict[str, Any]]]:
        ident = _as_id(tag_id, "tag id")
        if not ident.ok:
            return Result.Err(ident.code, ident.error or "Invalid tag id")
        return _entities(await self._store.list_by_tag(int(ident.data or 0)))

    async def list_directories(self, parent: Optional[str] = None) -> Result[list[dict[str, Any]]]:
        """Directories usable as move targets; direct children of `parent` when given."""
        return _entities(await self._store.list_directories(parent))

    async def get_tags(self) -> Result[list[dict[str, Any]]]:
        res = await self._store.list_tags()
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to list tags")
        return Result.Ok([t.to_dict() for t in res.data or []])

    async def get_settings(self) -> Result[dict[str, Any]]:
        settings = await self._settings.load()
        payload = settings.to_dict()
        payload["active_root"] = self._roots.current_root
        payload["watch_state"] = self._sync.state.value
        return Result.Ok(payload)

    # ---- mutations ---------------------------------------------------------------

    @_correlated
    async def import_files(self) -> Result[list[bool]]:
        """Ask the file picker for files and import them into the library."""
        if self._file_picker is None:
            return Result.Err(ErrorCode.UNSUPPORTED, "No file picker configured")
        picked = self._file_picker()
        if inspect.isawaitable(picked):
            picked = await picked
        paths = [str(p) for p in (picked or []) if p]
        if not paths:
            return Result.Ok([], cancelled=True)
        return await self._sync.import_files(paths)

    @_correlated
    async def add_dropped_paths(self, paths: list[str], dest_dir: Optional[str] = None) -> Result[list[bool]]:
        if not isinstance(paths, (list, tuple)):
            return Result.Err(ErrorCode.INVALID_INPUT, "Expected a list of paths")
        return await self._sync.add_dropped_paths([str(p) for p in paths], dest_dir)

    @_correlated
    async def delete_media(self, path: str) -> Result[bool]:
        return await self._sync.delete_media(path)

    @_correlated
    async def delete_many(self, paths: list[str]) -> Result[list[bool]]:
        return await self._sync.delete_many(list(paths or []))

    @_correlated
    async def rename_or_move(self, old_path: str, new_path: str) -> Result[bool]:
        return await self._sync.rename_or_move(old_path, new_path)

    @_correlated
    async def move_many(self, paths: list[str], dest_dir: str) -> Result[list[bool]]:
        return await self._sync.move_many(list(paths or []), dest_dir)

    @_correlated
    async def create_directory(self, path: str) -> Result[bool]:
        return await self._sync.create_directory(path)

    @_correlated
    async def create_tag(self, name: str) -> Result[dict[str, Any]]:
        res = await self._sync.create_tag(name)
        if not res.ok or res.data is None:
            return Result.Err(res.code, res.error or "Failed to create tag")
        return Result.Ok(res.data.to_dict(), created=bool(res.meta.get("created")))

    @_correlated
    async def attach_tag(self, media_id: Any, tag_id: Any) -> Result[bool]:
        ids = self._ids(media_id, tag_id)
        if not ids.ok:
            return Result.Err(ids.code, ids.error or "Invalid id")
        m, t = ids.data or (0, 0)
        return await self._sync.attach_tag(m, t)

    @_correlated
    async def detach_tag(self, media_id: Any, tag_id: Any) -> Result[bool]:
        ids = self._ids(media_id, tag_id)
        if not ids.ok:
            return Result.Err(ids.code, ids.error or "Invalid id")
        m, t = ids.data or (0, 0)
        return await self._sync.detach_tag(m, t)

    @_correlated
    async def toggle_favorite(self, media_id: Any) -> Result[bool]:
        ident = _as_id(media_id, "media id")
        if not ident.ok:
            return Result.Err(ident.code, ident.error or "Invalid media id")
        return await self._sync.toggle_favorite(int(ident.data or 0))

    @_correlated
    async def set_library_root(self, new_path: str) -> Result[bool]:
        """Switch the library root; the index is rebuilt from the new root."""
        res = await self._roots.switch_root(new_path)
        if not res.ok:
            return Result.Err(res.code, res.error or "Root switch failed")
        return Result.Ok(True, root=res.data, **res.meta)

    @staticmethod
    def _ids(media_id: Any, tag_id: Any) -> Result[tuple[int, int]]:
        m = _as_id(media_id, "media id")
        if not m.ok:
            return Result.Err(m.code, m.error or "Invalid media id")
        t = _as_id(tag_id, "tag id")
        if not t.ok:
            return Result.Err(t.code, t.error or "Invalid tag id")
        return Result.Ok((int(m.data or 0), int(t.data or 0)))
