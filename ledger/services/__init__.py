"""Services package."""

from ledger.services.cache import ResponseCache
from ledger.services.notifications import (
    LoggingNotificationService,
    NotificationError,
    NotificationServiceInterface,
    SmtpNotificationService,
)
from ledger.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateRecordError,
    InMemoryClient,
    RecordNotFoundError,
    RecurringRuleStorageInterface,
    StorageConnectionError,
    StorageError,
    TransactionStorageInterface,
    WalletStorageInterface,
)

__all__ = [
    # Cache
    "ResponseCache",
    # Notifications
    "LoggingNotificationService",
    "NotificationError",
    "NotificationServiceInterface",
    "SmtpNotificationService",
    # Storage services
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "DuplicateRecordError",
    "InMemoryClient",
    "RecordNotFoundError",
    "RecurringRuleStorageInterface",
    "StorageConnectionError",
    "StorageError",
    "TransactionStorageInterface",
    "WalletStorageInterface",
]
