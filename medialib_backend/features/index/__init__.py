"""
Index feature: classification, persistence, filesystem watching and the
synchronizer that keeps the index consistent with the library root.
"""
from .classifier import classify_path, classify_under_root, has_hidden_component
from .root_manager import RootManager
from .store import IndexStore, MediaEntity, Tag
from .synchronizer import Synchronizer, SyncState
from .watcher import LibraryWatcher, StabilityWatchHandler, WatchEvent, WatchEventType

__all__ = [
    "classify_path",
    "classify_under_root",
    "has_hidden_component",
    "IndexStore",
    "MediaEntity",
    "Tag",
    "Synchronizer",
    "SyncState",
    "RootManager",
    "LibraryWatcher",
    "StabilityWatchHandler",
    "WatchEvent",
    "WatchEventType",
]
