# Best-effort collaborators: notifications and the ledger
from .ledger import InMemoryLedger, Ledger, LedgerTransaction
from .notifications import (
    LoggingNotifier,
    NotificationEvent,
    Notifier,
    WebhookNotifier,
    notify_safely,
)

__all__ = [
    "InMemoryLedger",
    "Ledger",
    "LedgerTransaction",
    "LoggingNotifier",
    "NotificationEvent",
    "Notifier",
    "WebhookNotifier",
    "notify_safely",
]
