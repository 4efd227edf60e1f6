# Domain logic: derived state, workflows, notifications and read-side views.

from .lifecycle import LifecycleCoordinator
from .notifications import MAX_NOTIFICATIONS, NotificationJournal
from .pending import PendingEntry, PendingKind, PendingOverlay, PendingStatus
from .views import CatalogReader

__all__ = [
    "CatalogReader",
    "LifecycleCoordinator",
    "MAX_NOTIFICATIONS",
    "NotificationJournal",
    "PendingEntry",
    "PendingKind",
    "PendingOverlay",
    "PendingStatus",
]
