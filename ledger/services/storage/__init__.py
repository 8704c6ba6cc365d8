"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements an in-memory backend, but designed to be swappable.
"""

from ledger.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateRecordError,
    RecordNotFoundError,
    RecurringRuleStorageInterface,
    StorageConnectionError,
    StorageError,
    TransactionStorageInterface,
    WalletStorageInterface,
)
from ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryClient,
    InMemoryRecurringRuleStorage,
    InMemoryTransactionStorage,
    InMemoryWalletStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "RecurringRuleStorageInterface",
    "TransactionStorageInterface",
    "WalletStorageInterface",
    # Exceptions
    "DuplicateRecordError",
    "RecordNotFoundError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    "InMemoryClient",
    "InMemoryRecurringRuleStorage",
    "InMemoryTransactionStorage",
    "InMemoryWalletStorage",
]
