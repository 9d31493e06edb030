"""
Database schema and migrations.
"""
from ...shared import Result, get_logger, log_success
from .sqlite import Sqlite

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = 2
# Schema version history (high-level):
# 1: media, tags, media_tags
# 2: media_tags.attached_at + case-insensitive tag uniqueness

# Millisecond-resolution UTC timestamp; keeps newest-first ordering stable
# for entries inserted within the same second.
_NOW_MS = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"

SCHEMA_V1 = f"""
-- Metadata table for schema versioning
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Indexed files and directories under the library root
CREATE TABLE IF NOT EXISTS media (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    kind TEXT NOT NULL CHECK (kind IN ('image', 'video', 'directory')),
    size_bytes INTEGER NOT NULL DEFAULT 0,
    favorite INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT {_NOW_MS}
);

-- Tag vocabulary
CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT {_NOW_MS}
);

-- Media <-> tag association
CREATE TABLE IF NOT EXISTS media_tags (
    media_id INTEGER NOT NULL,
    tag_id INTEGER NOT NULL,
    attached_at TEXT,
    PRIMARY KEY (media_id, tag_id),
    FOREIGN KEY (media_id) REFERENCES media(id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
);
"""

COLUMN_DEFINITIONS: dict[str, list[tuple[str, str]]] = {
    # SQLite rejects non-constant defaults on ALTER TABLE ADD COLUMN.
    "media_tags": [("attached_at", "attached_at TEXT")],
}

INDEXES = """
CREATE INDEX IF NOT EXISTS idx_media_created_at ON media(created_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_media_kind ON media(kind);
CREATE INDEX IF NOT EXISTS idx_media_favorite ON media(favorite) WHERE favorite = 1;
CREATE UNIQUE INDEX IF NOT EXISTS idx_tags_name_nocase ON tags(name COLLATE NOCASE);
CREATE INDEX IF NOT EXISTS idx_media_tags_tag ON media_tags(tag_id);
"""


async def _get_table_columns(db: Sqlite, table_name: str) -> Result[list[str]]:
    result = await db.aquery(f"PRAGMA table_info('{table_name}')")
    if not result.ok:
        return Result.Err("DB_ERROR", f"Unable to inspect {table_name}: {result.error}")
    return Result.Ok([row["name"] for row in result.data or []])


async def table_has_column(db: Sqlite, table_name: str, column_name: str) -> bool:
    columns_result = await _get_table_columns(db, table_name)
    if not columns_result.ok:
        logger.warning("Unable to determine columns for %s.%s: %s", table_name, column_name, columns_result.error)
        return False
    return column_name in (columns_result.data or [])


async def _ensure_column(db: Sqlite, table_name: str, column_name: str, definition: str) -> Result[bool]:
    if await table_has_column(db, table_name, column_name):
        return Result.Ok(True)
    logger.info("Adding missing column %s.%s", table_name, column_name)
    alter_result = await db.aexecute(f"ALTER TABLE {table_name} ADD COLUMN {definition}")
    if not alter_result.ok:
        return Result.Err(alter_result.code, alter_result.error or "ALTER TABLE failed")
    return Result.Ok(True)


async def ensure_columns_exist(db: Sqlite) -> Result[bool]:
    for table, columns in COLUMN_DEFINITIONS.items():
        for column_name, definition in columns:
            result = await _ensure_column(db, table, column_name, definition)
            if not result.ok:
                logger.error("Failed to ensure column %s.%s: %s", table, column_name, result.error)
                return result
    return Result.Ok(True)


async def _ensure_schema(db: Sqlite) -> Result[bool]:
    result = await db.aexecutescript(SCHEMA_V1)
    if not result.ok:
        logger.error("Failed to ensure base tables: %s", result.error)
        return result

    result = await ensure_columns_exist(db)
    if not result.ok:
        return result

    result = await db.aexecutescript(INDEXES)
    if not result.ok:
        logger.error("Failed to ensure indexes: %s", result.error)
        return result

    version_result = await db.aset_schema_version(CURRENT_SCHEMA_VERSION)
    if not version_result.ok:
        logger.error("Failed to set schema version: %s", version_result.error)
        return version_result

    return Result.Ok(True)


async def migrate_schema(db: Sqlite) -> Result[bool]:
    """
    Bring the index schema to the current version by ensuring expected
    tables, columns and indexes exist.

    Args:
        db: Sqlite instance

    Returns:
        Result with success boolean
    """
    current_version = await db.aget_schema_version()
    logger.debug("Ensuring schema (current version %s -> target %s)", current_version, CURRENT_SCHEMA_VERSION)

    repair_result = await _ensure_schema(db)
    if not repair_result.ok:
        return repair_result

    if current_version != CURRENT_SCHEMA_VERSION:
        log_success(logger, f"Schema migrated from version {current_version} to {CURRENT_SCHEMA_VERSION}")
    return Result.Ok(True)
