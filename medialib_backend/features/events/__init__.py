"""Change notification for index deltas."""
from .notifier import ChangeEvent, ChangeNotifier, EventKind, ImportStatus, Subscription

__all__ = ["ChangeNotifier", "ChangeEvent", "EventKind", "ImportStatus", "Subscription"]
