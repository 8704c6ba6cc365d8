"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the in-memory store for a real database later
2. Use in-memory storage for testing
3. Inject failing storages in tests to exercise compensation
4. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
What it does require is the consistency contract the ledger depends on:
- `increment_balance` is an atomic increment, never a two-trip read-modify-write
- `rebase_opening_balance` moves opening and current balance together, atomically
- `save_budget` enforces (user, category, month, year) uniqueness
- `advance_rule` is a compare-and-swap on next_run_at

Every lookup is scoped by the owning user.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ledger.models.audit import AuditEvent
from ledger.models.ledger import (
    Budget,
    RecurringRule,
    Transaction,
    TransactionFilter,
    Wallet,
)


class WalletStorageInterface(ABC):
    """Abstract interface for wallet storage operations."""

    @abstractmethod
    async def save_wallet(self, wallet: Wallet) -> Wallet:
        """Insert a new wallet."""
        pass

    @abstractmethod
    async def get_wallet(self, wallet_id: UUID, user_id: str) -> Optional[Wallet]:
        """
        Retrieve a wallet owned by user_id.

        Returns:
            The wallet if found and owned, None otherwise
        """
        pass

    @abstractmethod
    async def list_wallets(self, user_id: str) -> list[Wallet]:
        """All wallets of a user, oldest first."""
        pass

    @abstractmethod
    async def update_wallet(self, wallet: Wallet) -> Wallet:
        """
        Update name/type of a wallet.

        NOTE: balances are NOT written here; use increment_balance or
        rebase_opening_balance.

        Raises:
            RecordNotFoundError: If wallet doesn't exist
        """
        pass

    @abstractmethod
    async def increment_balance(
        self,
        wallet_id: UUID,
        user_id: str,
        delta: Decimal,
    ) -> Optional[Wallet]:
        """
        Atomically add delta to current_balance.

        Concurrent increments on the same wallet must never lose an update.

        Returns:
            The wallet after the increment, None if it doesn't exist
        """
        pass

    @abstractmethod
    async def rebase_opening_balance(
        self,
        wallet_id: UUID,
        user_id: str,
        opening_balance: Decimal,
    ) -> Optional[Wallet]:
        """
        Atomically set opening_balance and shift current_balance by the
        same difference.

        Returns:
            The wallet after the rebase, None if it doesn't exist
        """
        pass

    @abstractmethod
    async def delete_wallet(self, wallet_id: UUID, user_id: str) -> bool:
        """
        Delete a wallet.

        Returns:
            True if a wallet was deleted
        """
        pass


class TransactionStorageInterface(ABC):
    """Abstract interface for transaction storage operations."""

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a transaction record.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: str,
    ) -> Optional[Transaction]:
        """Retrieve a transaction owned by user_id, None if absent."""
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Replace a stored transaction.

        Raises:
            RecordNotFoundError: If transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID, user_id: str) -> bool:
        """
        Delete a transaction record.

        Returns:
            True if a record was deleted
        """
        pass

    @abstractmethod
    async def find_transactions(
        self,
        user_id: str,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        """
        All of a user's transactions matching filters.

        Returns:
            Matches ordered by date descending; equal dates keep insertion order
        """
        pass

    @abstractmethod
    async def count_for_wallet(self, wallet_id: UUID, user_id: str) -> int:
        """Number of transactions referencing the wallet as source or destination."""
        pass


class BudgetStorageInterface(ABC):
    """Abstract interface for budget storage operations."""

    @abstractmethod
    async def save_budget(self, budget: Budget) -> Budget:
        """
        Insert a budget.

        Raises:
            DuplicateRecordError: If (user, category, month, year) already exists
        """
        pass

    @abstractmethod
    async def get_budget(self, budget_id: UUID, user_id: str) -> Optional[Budget]:
        pass

    @abstractmethod
    async def find_budget(
        self,
        user_id: str,
        category: str,
        month: int,
        year: int,
    ) -> Optional[Budget]:
        """The budget for one (category, month, year) tuple, if any."""
        pass

    @abstractmethod
    async def list_budgets(
        self,
        user_id: str,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[Budget]:
        pass

    @abstractmethod
    async def update_budget(self, budget: Budget) -> Budget:
        """
        Raises:
            RecordNotFoundError: If budget doesn't exist
        """
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID, user_id: str) -> bool:
        pass


class RecurringRuleStorageInterface(ABC):
    """Abstract interface for recurring rule storage operations."""

    @abstractmethod
    async def save_rule(self, rule: RecurringRule) -> RecurringRule:
        pass

    @abstractmethod
    async def get_rule(self, rule_id: UUID, user_id: str) -> Optional[RecurringRule]:
        pass

    @abstractmethod
    async def list_rules(
        self,
        user_id: str,
        wallet_id: Optional[UUID] = None,
    ) -> list[RecurringRule]:
        """Rules of a user, optionally only those touching one wallet."""
        pass

    @abstractmethod
    async def update_rule(self, rule: RecurringRule) -> RecurringRule:
        """
        Raises:
            RecordNotFoundError: If rule doesn't exist
        """
        pass

    @abstractmethod
    async def delete_rule(self, rule_id: UUID, user_id: str) -> bool:
        pass

    @abstractmethod
    async def find_due_rules(self, now: datetime) -> list[RecurringRule]:
        """
        Rules of every user with next_run_at <= now and
        (ends_at is None or ends_at > now).
        """
        pass

    @abstractmethod
    async def advance_rule(
        self,
        rule_id: UUID,
        expected_next_run_at: datetime,
        next_run_at: datetime,
        materialized_at: Optional[datetime] = None,
    ) -> bool:
        """
        Compare-and-swap next_run_at.

        Returns:
            False if the stored next_run_at no longer equals
            expected_next_run_at (someone else advanced the rule)
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one transfer and its compensation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class RecordNotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateRecordError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
