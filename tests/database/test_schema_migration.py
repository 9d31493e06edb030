from pathlib import Path

import pytest

from medialib_backend.adapters.db.schema import CURRENT_SCHEMA_VERSION, migrate_schema, table_has_column
from medialib_backend.adapters.db.sqlite import Sqlite


@pytest.mark.asyncio
async def test_migrate_creates_tables(tmp_path: Path):
    db = Sqlite(str(tmp_path / "schema.db"), timeout=2.0)
    try:
        res = await migrate_schema(db)
        assert res.ok, res.error
        for table in ("metadata", "media", "tags", "media_tags"):
            assert await db.ahas_table(table)
        assert await db.aget_schema_version() == CURRENT_SCHEMA_VERSION
        assert await table_has_column(db, "media_tags", "attached_at")
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_migrate_is_idempotent(tmp_path: Path):
    db = Sqlite(str(tmp_path / "again.db"), timeout=2.0)
    try:
        assert (await migrate_schema(db)).ok
        await db.aexecute("INSERT INTO media (path, name, kind) VALUES ('/lib/a.jpg', 'a.jpg', 'image')")
        assert (await migrate_schema(db)).ok
        rows = await db.aquery("SELECT path FROM media")
        assert [r["path"] for r in rows.data] == ["/lib/a.jpg"]
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_migrate_adds_missing_column_to_v1_database(tmp_path: Path):
    db = Sqlite(str(tmp_path / "v1.db"), timeout=2.0)
    try:
        await db.aexecutescript(
            """
            CREATE TABLE metadata (key TEXT PRIMARY KEY, value TEXT NOT NULL);
            INSERT INTO metadata (key, value) VALUES ('schema_version', '1');
            CREATE TABLE media (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                path TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                kind TEXT NOT NULL,
                size_bytes INTEGER NOT NULL DEFAULT 0,
                favorite INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            CREATE TABLE tags (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL UNIQUE, created_at TEXT);
            CREATE TABLE media_tags (media_id INTEGER NOT NULL, tag_id INTEGER NOT NULL, PRIMARY KEY (media_id, tag_id));
            """
        )
        assert not await table_has_column(db, "media_tags", "attached_at")
        res = await migrate_schema(db)
        assert res.ok, res.error
        assert await table_has_column(db, "media_tags", "attached_at")
        assert await db.aget_schema_version() == CURRENT_SCHEMA_VERSION
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_schema_rejects_unknown_kind_and_case_duplicate_tags(tmp_path: Path):
    db = Sqlite(str(tmp_path / "checks.db"), timeout=2.0)
    try:
        assert (await migrate_schema(db)).ok
        bad_kind = await db.aexecute("INSERT INTO media (path, name, kind) VALUES ('/x', 'x', 'ignored')")
        assert not bad_kind.ok
        assert (await db.aexecute("INSERT INTO tags (name) VALUES ('Beach')")).ok
        dup = await db.aexecute("INSERT INTO tags (name) VALUES ('BEACH')")
        assert not dup.ok
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_deleting_media_cascades_associations(tmp_path: Path):
    db = Sqlite(str(tmp_path / "cascade.db"), timeout=2.0)
    try:
        assert (await migrate_schema(db)).ok
        await db.aexecute("INSERT INTO media (path, name, kind) VALUES ('/lib/a.jpg', 'a.jpg', 'image')")
        await db.aexecute("INSERT INTO tags (name) VALUES ('t')")
        await db.aexecute("INSERT INTO media_tags (media_id, tag_id) VALUES (1, 1)")
        await db.aexecute("DELETE FROM media WHERE id = 1")
        rows = await db.aquery("SELECT COUNT(*) AS c FROM media_tags")
        assert rows.data[0]["c"] == 0
        tags = await db.aquery("SELECT COUNT(*) AS c FROM tags")
        assert tags.data[0]["c"] == 1
    finally:
        await db.aclose()
