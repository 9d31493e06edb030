"""
Index store: persisted media entities, tag vocabulary and their association.

Every operation returns a `Result`. Mutations are idempotent set operations:
re-inserting a known path, removing an absent one, attaching an attached tag
all succeed without changing anything, so the watcher re-observing a change
the application already applied is harmless.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from ...adapters.db.sqlite import Sqlite
from ...config import TAG_NAME_MAX_LENGTH
from ...shared import ErrorCode, MediaKind, Result, get_logger

logger = get_logger(__name__)

_MEDIA_COLUMNS = "id, path, name, kind, size_bytes, favorite, created_at"
_NOW_MS_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"
_ORDER_NEWEST_FIRST = "ORDER BY created_at DESC, id DESC"


@dataclass
class Tag:
    id: int
    name: str
    count: int = 0
    last_attached: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "count": self.count,
            "last_attached": self.last_attached,
        }


@dataclass
class MediaEntity:
    id: int
    path: str
    name: str
    kind: MediaKind
    size_bytes: int
    favorite: bool
    created_at: str
    tags: list[Tag] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "name": self.name,
            "kind": self.kind.value,
            "size_bytes": self.size_bytes,
            "favorite": self.favorite,
            "created_at": self.created_at,
            "tags": [{"id": t.id, "name": t.name} for t in self.tags],
        }


class _StoreAbort(Exception):
    """Raised inside a transaction body to roll back with a failed Result."""

    def __init__(self, result: Result[Any]):
        super().__init__(result.error)
        self.result = result


def _check(res: Result[Any]) -> Result[Any]:
    if not res.ok:
        raise _StoreAbort(res)
    return res


def _entity_from_row(row: dict[str, Any], tags: Optional[list[Tag]] = None) -> MediaEntity:
    return MediaEntity(
        id=int(row["id"]),
        path=str(row["path"]),
        name=str(row["name"]),
        kind=MediaKind(row["kind"]),
        size_bytes=int(row["size_bytes"] or 0),
        favorite=bool(row["favorite"]),
        created_at=str(row["created_at"]),
        tags=list(tags or []),
    )


def _tree_prefix(path: str) -> str:
    return path if path.endswith(os.sep) else path + os.sep


class IndexStore:
    """Transactional access to media, tags and media_tags."""

    def __init__(self, db: Sqlite):
        self._db = db

    async def _in_tx(self, body: Callable[[], Awaitable[Result[Any]]], *, mode: str = "immediate") -> Result[Any]:
        try:
            async with self._db.atransaction(mode) as tx:
                if not tx.ok:
                    return Result.Err(tx.code, tx.error or "Failed to begin transaction")
                result = await body()
                if not result.ok:
                    # Roll back writes made before the body gave up.
                    raise _StoreAbort(result)
        except _StoreAbort as exc:
            return Result.Err(exc.result.code, exc.result.error or "Database error", **(exc.result.meta or {}))
        if not tx.ok:
            return Result.Err(tx.code, tx.error or "Transaction failed")
        return result

    # ---- reads -----------------------------------------------------------------

    async def _tags_for_where(self, where_sql: str, params: tuple) -> dict[int, list[Tag]]:
        res = _check(
            await self._db.aquery(
                f"""
                SELECT mt.media_id AS media_id, t.id AS id, t.name AS name
                FROM media_tags mt
                JOIN tags t ON t.id = mt.tag_id
                WHERE mt.media_id IN (SELECT id FROM media WHERE {where_sql})
                ORDER BY t.name COLLATE NOCASE, t.id
                """,
                params,
            )
        )
        by_media: dict[int, list[Tag]] = {}
        for row in res.data or []:
            by_media.setdefault(int(row["media_id"]), []).append(Tag(id=int(row["id"]), name=str(row["name"])))
        return by_media

    async def _select_entities(self, where_sql: str, params: tuple = ()) -> list[MediaEntity]:
        rows = _check(
            await self._db.aquery(
                f"SELECT {_MEDIA_COLUMNS} FROM media WHERE {where_sql} {_ORDER_NEWEST_FIRST}",
                params,
            )
        ).data or []
        if not rows:
            return []
        tags = await self._tags_for_where(where_sql, params)
        return [_entity_from_row(row, tags.get(int(row["id"]))) for row in rows]

    async def _list(self, where_sql: str, params: tuple = ()) -> Result[list[MediaEntity]]:
        async def _body() -> Result[list[MediaEntity]]:
            return Result.Ok(await self._select_entities(where_sql, params))

        return await self._in_tx(_body, mode="deferred")

    async def list_all(self) -> Result[list[MediaEntity]]:
        """All entities with resolved tags, newest first."""
        return await self._list("1 = 1")

    async def list_favorites(self) -> Result[list[MediaEntity]]:
        return await self._list("favorite = 1 AND kind != 'directory'")

    async def list_by_tag(self, tag_id: int) -> Result[list[MediaEntity]]:
        return await self._list("id IN (SELECT media_id FROM media_tags WHERE tag_id = ?)", (int(tag_id),))

    async def list_directories(self, parent: Optional[str] = None) -> Result[list[MediaEntity]]:
        """Indexed directories; direct children of `parent` when given."""
        if parent is None:
            return await self._list("kind = 'directory'")
        prefix = _tree_prefix(os.path.normpath(parent))
        return await self._list(
            "kind = 'directory' AND substr(path, 1, ?) = ? AND instr(substr(path, ?), ?) = 0",
            (len(prefix), prefix, len(prefix) + 1, os.sep),
        )

    async def find_by_path(self, path: str) -> Result[MediaEntity]:
        async def _body() -> Result[MediaEntity]:
            found = await self._select_entities("path = ?", (path,))
            if not found:
                return Result.Err(ErrorCode.NOT_FOUND, "No media at path")
            return Result.Ok(found[0])

        return await self._in_tx(_body, mode="deferred")

    async def find_by_id(self, media_id: int) -> Result[MediaEntity]:
        async def _body() -> Result[MediaEntity]:
            found = await self._select_entities("id = ?", (int(media_id),))
            if not found:
                return Result.Err(ErrorCode.NOT_FOUND, f"Media {media_id} not found")
            return Result.Ok(found[0])

        return await self._in_tx(_body, mode="deferred")

    # ---- media mutations -------------------------------------------------------

    async def upsert_media(self, path: str, name: str, kind: MediaKind, size_bytes: int = 0) -> Result[MediaEntity]:
        """
        Insert the entity if `path` is unknown; otherwise leave the row untouched.

        The returned Result carries `meta["created"]`: True only when a row was inserted.
        """
        kind = MediaKind(kind)
        if kind == MediaKind.IGNORED:
            return Result.Err(ErrorCode.INVALID_INPUT, "Ignored entries are never indexed")
        if not path:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing path")
        size = 0 if kind == MediaKind.DIRECTORY else max(0, int(size_bytes or 0))

        async def _body() -> Result[MediaEntity]:
            ins = _check(
                await self._db.aexecute(
                    "INSERT OR IGNORE INTO media (path, name, kind, size_bytes) VALUES (?, ?, ?, ?)",
                    (path, name, kind.value, size),
                )
            )
            created = int(ins.data or 0) > 0
            found = await self._select_entities("path = ?", (path,))
            if not found:
                return Result.Err(ErrorCode.DB_ERROR, "Inserted row not readable")
            return Result.Ok(found[0], created=created)

        return await self._in_tx(_body)

    async def remove_media(self, path: str) -> Result[bool]:
        """Delete the row at `path`; Ok(False) when nothing was there."""
        res = await self._db.aexecute("DELETE FROM media WHERE path = ?", (path,))
        if not res.ok:
            return Result.Err(res.code, res.error or "Delete failed")
        return Result.Ok(int(res.data or 0) > 0)

    async def remove_tree(self, path: str) -> Result[list[str]]:
        """Delete the row at `path` and every row below it; returns the removed paths."""
        prefix = _tree_prefix(path)

        async def _body() -> Result[list[str]]:
            where = "path = ? OR substr(path, 1, ?) = ?"
            params = (path, len(prefix), prefix)
            rows = _check(await self._db.aquery(f"SELECT path FROM media WHERE {where}", params)).data or []
            if not rows:
                return Result.Ok([])
            _check(await self._db.aexecute(f"DELETE FROM media WHERE {where}", params))
            removed = sorted((str(r["path"]) for r in rows), key=len, reverse=True)
            return Result.Ok(removed)

        return await self._in_tx(_body)

    async def update_path(self, old_path: str, new_path: str) -> Result[Optional[MediaEntity]]:
        """
        Move an entity to a new path in place, keeping its id, favorite flag and tags.

        Descendants of a directory are re-rooted under the new path. A stale row
        (or subtree) already at `new_path` is dropped first. Ok(None) when
        `old_path` is not indexed.

        Meta: `previous_paths` (descendants' old paths) and `descendants`
        (descendant entities at their new paths).
        """
        old_prefix = _tree_prefix(old_path)
        new_prefix = _tree_prefix(new_path)
        new_name = os.path.basename(os.path.normpath(new_path))

        async def _body() -> Result[Optional[MediaEntity]]:
            found = await self._select_entities("path = ?", (old_path,))
            if not found:
                return Result.Ok(None)
            entity = found[0]
            if old_path == new_path:
                return Result.Ok(entity, previous_paths=[], descendants=[])
            previous_paths: list[str] = []
            if entity.kind == MediaKind.DIRECTORY:
                rows = _check(
                    await self._db.aquery(
                        "SELECT path FROM media WHERE substr(path, 1, ?) = ? ORDER BY length(path)",
                        (len(old_prefix), old_prefix),
                    )
                ).data or []
                previous_paths = [str(r["path"]) for r in rows]
            _check(
                await self._db.aexecute(
                    "DELETE FROM media WHERE (path = ? OR substr(path, 1, ?) = ?) AND id != ?",
                    (new_path, len(new_prefix), new_prefix, entity.id),
                )
            )
            _check(
                await self._db.aexecute(
                    "UPDATE media SET path = ?, name = ? WHERE id = ?",
                    (new_path, new_name, entity.id),
                )
            )
            descendants: list[MediaEntity] = []
            if previous_paths:
                _check(
                    await self._db.aexecute(
                        "UPDATE media SET path = ? || substr(path, ?) WHERE substr(path, 1, ?) = ?",
                        (new_prefix, len(old_prefix) + 1, len(old_prefix), old_prefix),
                    )
                )
                descendants = await self._select_entities(
                    "substr(path, 1, ?) = ?", (len(new_prefix), new_prefix)
                )
            moved = await self._select_entities("id = ?", (entity.id,))
            return Result.Ok(
                moved[0] if moved else None,
                previous_paths=previous_paths,
                descendants=descendants,
            )

        return await self._in_tx(_body)

    async def clear_all(self) -> Result[int]:
        """Delete every entity (and, by cascade, every association). Tags survive."""

        async def _body() -> Result[int]:
            rows = _check(await self._db.aquery("SELECT COUNT(*) AS n FROM media")).data or []
            count = int(rows[0]["n"]) if rows else 0
            _check(await self._db.aexecute("DELETE FROM media"))
            return Result.Ok(count)

        return await self._in_tx(_body)

    async def toggle_favorite(self, media_id: int) -> Result[bool]:
        """Flip the favorite flag and return the new value; directories are left unchanged."""

        async def _body() -> Result[bool]:
            rows = _check(
                await self._db.aquery("SELECT kind, favorite FROM media WHERE id = ?", (int(media_id),))
            ).data or []
            if not rows:
                return Result.Err(ErrorCode.NOT_FOUND, f"Media {media_id} not found")
            if rows[0]["kind"] == MediaKind.DIRECTORY.value:
                return Result.Ok(False, skipped="directory")
            new_value = not bool(rows[0]["favorite"])
            _check(
                await self._db.aexecute(
                    "UPDATE media SET favorite = ? WHERE id = ?",
                    (1 if new_value else 0, int(media_id)),
                )
            )
            return Result.Ok(new_value)

        return await self._in_tx(_body)

    # ---- tags ------------------------------------------------------------------

    async def create_or_get_tag(self, name: str) -> Result[Tag]:
        """
        Return the tag whose name matches `name` ignoring case, creating it with
        the given display case when absent.
        """
        clean = str(name or "").strip()
        if not clean:
            return Result.Err(ErrorCode.INVALID_INPUT, "Tag name cannot be empty")
        if len(clean) > TAG_NAME_MAX_LENGTH:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Tag name longer than {TAG_NAME_MAX_LENGTH} characters")
        folded = clean.casefold()

        async def _body() -> Result[Tag]:
            rows = _check(await self._db.aquery("SELECT id, name FROM tags ORDER BY id")).data or []
            for row in rows:
                if str(row["name"]).casefold() == folded:
                    return Result.Ok(Tag(id=int(row["id"]), name=str(row["name"])), created=False)
            ins = _check(await self._db.aexecute("INSERT INTO tags (name) VALUES (?)", (clean,)))
            return Result.Ok(Tag(id=int(ins.meta["lastrowid"]), name=clean), created=True)

        return await self._in_tx(_body)

    async def list_tags(self) -> Result[list[Tag]]:
        """All tags with their association count, ordered by name."""
        res = await self._db.aquery(
            """
            SELECT t.id AS id, t.name AS name,
                   COUNT(mt.media_id) AS count,
                   MAX(mt.attached_at) AS last_attached
            FROM tags t
            LEFT JOIN media_tags mt ON mt.tag_id = t.id
            GROUP BY t.id
            ORDER BY t.name COLLATE NOCASE ASC, t.id ASC
            """
        )
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to list tags")
        return Result.Ok(
            [
                Tag(
                    id=int(row["id"]),
                    name=str(row["name"]),
                    count=int(row["count"] or 0),
                    last_attached=row["last_attached"],
                )
                for row in res.data or []
            ]
        )

    async def _require_media_and_tag(self, media_id: int, tag_id: int) -> Optional[Result[bool]]:
        media = _check(await self._db.aquery("SELECT id FROM media WHERE id = ?", (int(media_id),))).data
        if not media:
            return Result.Err(ErrorCode.NOT_FOUND, f"Media {media_id} not found")
        tag = _check(await self._db.aquery("SELECT id FROM tags WHERE id = ?", (int(tag_id),))).data
        if not tag:
            return Result.Err(ErrorCode.NOT_FOUND, f"Tag {tag_id} not found")
        return None

    async def attach_tag(self, media_id: int, tag_id: int) -> Result[bool]:
        """Associate a tag with an entity; Ok(False) when already associated."""

        async def _body() -> Result[bool]:
            missing = await self._require_media_and_tag(media_id, tag_id)
            if missing is not None:
                return missing
            ins = _check(
                await self._db.aexecute(
                    f"INSERT OR IGNORE INTO media_tags (media_id, tag_id, attached_at) VALUES (?, ?, {_NOW_MS_SQL})",
                    (int(media_id), int(tag_id)),
                )
            )
            return Result.Ok(int(ins.data or 0) > 0)

        return await self._in_tx(_body)

    async def detach_tag(self, media_id: int, tag_id: int) -> Result[bool]:
        """Remove an association; Ok(False) when it did not exist."""

        async def _body() -> Result[bool]:
            missing = await self._require_media_and_tag(media_id, tag_id)
            if missing is not None:
                return missing
            res = _check(
                await self._db.aexecute(
                    "DELETE FROM media_tags WHERE media_id = ? AND tag_id = ?",
                    (int(media_id), int(tag_id)),
                )
            )
            return Result.Ok(int(res.data or 0) > 0)

        return await self._in_tx(_body)
