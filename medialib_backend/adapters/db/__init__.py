"""SQLite adapter and schema for the index."""
from .schema import CURRENT_SCHEMA_VERSION, migrate_schema, table_has_column
from .sqlite import Sqlite

__all__ = ["Sqlite", "migrate_schema", "table_has_column", "CURRENT_SCHEMA_VERSION"]
