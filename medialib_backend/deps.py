"""
Dependency injection - builds services.
Simple, debug-friendly DI without framework magic.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from watchdog.observers import Observer

from .adapters.db.schema import migrate_schema
from .adapters.db.sqlite import Sqlite
from .config import (
    DB_TIMEOUT,
    DEFAULT_LIBRARY_ROOT,
    INDEX_DB,
    SETTINGS_PATH,
    WATCHER_POLL_MS,
    WATCHER_STABILITY_MS,
    initialize_directories,
)
from .features.events import ChangeNotifier
from .features.index import IndexStore, RootManager, Synchronizer
from .features.library import FilePicker, LibraryService
from .settings import SettingsStore
from .shared import ErrorCode, Result, get_logger, log_success

logger = get_logger(__name__)


@dataclass
class LibraryContext:
    """Everything the UI layer needs, wired together."""

    db: Sqlite
    store: IndexStore
    notifier: ChangeNotifier
    synchronizer: Synchronizer
    root_manager: RootManager
    settings: SettingsStore
    service: LibraryService

    async def open(self) -> Result[str]:
        """Start watching the persisted library root."""
        res = await self.root_manager.open()
        if res.ok:
            log_success(logger, f"Library ready at {res.data} ({res.meta.get('scanned', 0)} entries on disk)")
        else:
            logger.error("Failed to open library root: %s", res.error)
        return res

    async def aclose(self) -> None:
        await self.root_manager.shutdown()
        await self.notifier.aclose()
        await self.db.aclose()
        logger.info("Library services closed")


def _init_db_or_error(db_path: str) -> Result[Sqlite]:
    logger.info("Initializing database: %s", db_path)
    try:
        return Result.Ok(Sqlite(db_path, timeout=DB_TIMEOUT))
    except OSError as exc:
        logger.error("Failed to initialize database: %s", exc)
        return Result.Err(ErrorCode.DB_ERROR, f"Failed to initialize database: {exc}")


async def _migrate_db_or_error(db: Sqlite) -> Result[bool]:
    migrate_result = await migrate_schema(db)
    if not migrate_result.ok:
        logger.error("Schema migration failed: %s", migrate_result.error)
        return Result.Err(
            migrate_result.code or ErrorCode.DB_ERROR,
            f"Failed to initialize database: {migrate_result.error}",
        )
    return Result.Ok(True)


async def build_services(
    db_path: Optional[str] = None,
    settings_path: Optional[str] = None,
    library_root: Optional[str] = None,
    observer_factory: Callable[[], Any] = Observer,
    file_picker: Optional[FilePicker] = None,
    stability_ms: int = WATCHER_STABILITY_MS,
    poll_ms: int = WATCHER_POLL_MS,
) -> Result[LibraryContext]:
    """
    Build all services (DI container).

    Args:
        db_path: Path to the SQLite index (default: config.INDEX_DB)
        settings_path: Path to the settings record (default: config.SETTINGS_PATH)
        library_root: Root used when no settings record exists yet
        observer_factory: watchdog observer class (swapped for a fake in tests)
        file_picker: Callable returning the paths chosen for import

    Returns:
        Result[LibraryContext]; call `open()` on it to start watching.
    """
    logger.info("Building services...")
    if db_path is None or settings_path is None:
        try:
            initialize_directories()
        except OSError as exc:
            logger.error("Failed to initialize directories: %s", exc)
            return Result.Err(ErrorCode.FS_ERROR, f"Failed to initialize directories: {exc}")

    db_res = _init_db_or_error(db_path if db_path is not None else INDEX_DB)
    if not db_res.ok or db_res.data is None:
        return Result.Err(db_res.code or ErrorCode.DB_ERROR, db_res.error or "Failed to initialize database")
    db = db_res.data

    migrated = await _migrate_db_or_error(db)
    if not migrated.ok:
        await db.aclose()
        return Result.Err(migrated.code, migrated.error or "Failed to initialize database")

    settings = SettingsStore(
        settings_path if settings_path is not None else SETTINGS_PATH,
        default_root=library_root if library_root is not None else DEFAULT_LIBRARY_ROOT,
    )
    store = IndexStore(db)
    notifier = ChangeNotifier()
    synchronizer = Synchronizer(
        store,
        notifier,
        observer_factory=observer_factory,
        stability_ms=stability_ms,
        poll_ms=poll_ms,
    )
    root_manager = RootManager(synchronizer, settings)
    service = LibraryService(store, synchronizer, root_manager, settings, notifier, file_picker=file_picker)

    log_success(logger, "Services built")
    return Result.Ok(
        LibraryContext(
            db=db,
            store=store,
            notifier=notifier,
            synchronizer=synchronizer,
            root_manager=root_manager,
            settings=settings,
            service=service,
        )
    )
