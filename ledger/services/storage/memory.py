"""
In-Memory Storage Implementation

DESIGN DECISION: The ledger ships with a process-local store because:
1. The engine only needs per-document atomic writes and filtered queries
2. Tests need a fast, deterministic backend
3. It documents the consistency contract a database backend must meet

TRADEOFFS:
- Not durable (a restart loses everything)
- Single process only
- Queries filter in Python

Records are copied on the way in and on the way out so callers can never
mutate stored state behind the storage's back. Writes that must be atomic
(balance increments and opening rebases, budget uniqueness, rule
compare-and-swap) happen under the client's lock with no await inside the
critical section.
"""

import asyncio
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
    utc_now,
)
from ledger.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateRecordError,
    RecordNotFoundError,
    RecurringRuleStorageInterface,
    TransactionStorageInterface,
    WalletStorageInterface,
)


class InMemoryClient:
    """
    Shared backing store.

    One client is shared by all collection storages of a process, the way a
    database connection would be.
    """

    def __init__(self):
        self.wallets: dict[UUID, Wallet] = {}
        self.transactions: dict[UUID, Transaction] = {}
        self.budgets: dict[UUID, Budget] = {}
        self.rules: dict[UUID, RecurringRule] = {}
        self.audit_events: list[AuditEvent] = []
        self.lock = asyncio.Lock()

    def reset(self) -> None:
        """Drop every record."""
        self.wallets.clear()
        self.transactions.clear()
        self.budgets.clear()
        self.rules.clear()
        self.audit_events.clear()


def _copy(record):
    return record.model_copy(deep=True)


class InMemoryWalletStorage(WalletStorageInterface):
    """In-memory implementation of wallet storage."""

    def __init__(self, client: Optional[InMemoryClient] = None):
        self._client = client or InMemoryClient()

    def _owned(self, wallet_id: UUID, user_id: str) -> Optional[Wallet]:
        wallet = self._client.wallets.get(wallet_id)
        if wallet is None or wallet.user_id != user_id:
            return None
        return wallet

    async def save_wallet(self, wallet: Wallet) -> Wallet:
        async with self._client.lock:
            if wallet.id in self._client.wallets:
                raise DuplicateRecordError(f"Wallet already exists: {wallet.id}")
            self._client.wallets[wallet.id] = _copy(wallet)
        return _copy(wallet)

    async def get_wallet(self, wallet_id: UUID, user_id: str) -> Optional[Wallet]:
        wallet = self._owned(wallet_id, user_id)
        return _copy(wallet) if wallet else None

    async def list_wallets(self, user_id: str) -> list[Wallet]:
        wallets = [w for w in self._client.wallets.values() if w.user_id == user_id]
        wallets.sort(key=lambda w: w.created_at)
        return [_copy(w) for w in wallets]

    async def update_wallet(self, wallet: Wallet) -> Wallet:
        async with self._client.lock:
            stored = self._owned(wallet.id, wallet.user_id)
            if stored is None:
                raise RecordNotFoundError(f"Wallet not found: {wallet.id}")
            stored.name = wallet.name
            stored.type = wallet.type
            stored.updated_at = utc_now()
            return _copy(stored)

    async def increment_balance(
        self,
        wallet_id: UUID,
        user_id: str,
        delta: Decimal,
    ) -> Optional[Wallet]:
        async with self._client.lock:
            stored = self._owned(wallet_id, user_id)
            if stored is None:
                return None
            stored.current_balance = stored.current_balance + Decimal(delta)
            stored.updated_at = utc_now()
            return _copy(stored)

    async def rebase_opening_balance(
        self,
        wallet_id: UUID,
        user_id: str,
        opening_balance: Decimal,
    ) -> Optional[Wallet]:
        async with self._client.lock:
            stored = self._owned(wallet_id, user_id)
            if stored is None:
                return None
            opening_balance = Decimal(opening_balance)
            stored.current_balance += opening_balance - stored.opening_balance
            stored.opening_balance = opening_balance
            stored.updated_at = utc_now()
            return _copy(stored)

    async def delete_wallet(self, wallet_id: UUID, user_id: str) -> bool:
        async with self._client.lock:
            if self._owned(wallet_id, user_id) is None:
                return False
            del self._client.wallets[wallet_id]
            return True


class InMemoryTransactionStorage(TransactionStorageInterface):
    """In-memory implementation of transaction storage."""

    def __init__(self, client: Optional[InMemoryClient] = None):
        self._client = client or InMemoryClient()

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        async with self._client.lock:
            if transaction.id in self._client.transactions:
                raise DuplicateRecordError(f"Transaction already exists: {transaction.id}")
            self._client.transactions[transaction.id] = _copy(transaction)
        return _copy(transaction)

    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: str,
    ) -> Optional[Transaction]:
        transaction = self._client.transactions.get(transaction_id)
        if transaction is None or transaction.user_id != user_id:
            return None
        return _copy(transaction)

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        async with self._client.lock:
            stored = self._client.transactions.get(transaction.id)
            if stored is None or stored.user_id != transaction.user_id:
                raise RecordNotFoundError(f"Transaction not found: {transaction.id}")
            # Same key, so insertion order is preserved
            self._client.transactions[transaction.id] = _copy(transaction)
        return _copy(transaction)

    async def delete_transaction(self, transaction_id: UUID, user_id: str) -> bool:
        async with self._client.lock:
            stored = self._client.transactions.get(transaction_id)
            if stored is None or stored.user_id != user_id:
                return False
            del self._client.transactions[transaction_id]
            return True

    async def find_transactions(
        self,
        user_id: str,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        filters = filters or TransactionFilter()
        matches = [
            t for t in self._client.transactions.values()
            if t.user_id == user_id and filters.matches(t)
        ]
        # list.sort is stable, also with reverse=True
        matches.sort(key=lambda t: t.date, reverse=True)
        return [_copy(t) for t in matches]

    async def count_for_wallet(self, wallet_id: UUID, user_id: str) -> int:
        return sum(
            1 for t in self._client.transactions.values()
            if t.user_id == user_id and wallet_id in (t.wallet_id, t.to_wallet_id)
        )


class InMemoryBudgetStorage(BudgetStorageInterface):
    """In-memory implementation of budget storage."""

    def __init__(self, client: Optional[InMemoryClient] = None):
        self._client = client or InMemoryClient()

    def _find(self, user_id: str, category: str, month: int, year: int) -> Optional[Budget]:
        for budget in self._client.budgets.values():
            if (
                budget.user_id == user_id
                and budget.category == category
                and budget.month == month
                and budget.year == year
            ):
                return budget
        return None

    async def save_budget(self, budget: Budget) -> Budget:
        async with self._client.lock:
            if self._find(budget.user_id, budget.category, budget.month, budget.year):
                raise DuplicateRecordError(
                    f"Budget exists for {budget.category} {budget.month}/{budget.year}"
                )
            self._client.budgets[budget.id] = _copy(budget)
        return _copy(budget)

    async def get_budget(self, budget_id: UUID, user_id: str) -> Optional[Budget]:
        budget = self._client.budgets.get(budget_id)
        if budget is None or budget.user_id != user_id:
            return None
        return _copy(budget)

    async def find_budget(
        self,
        user_id: str,
        category: str,
        month: int,
        year: int,
    ) -> Optional[Budget]:
        budget = self._find(user_id, category, month, year)
        return _copy(budget) if budget else None

    async def list_budgets(
        self,
        user_id: str,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[Budget]:
        return [
            _copy(b) for b in self._client.budgets.values()
            if b.user_id == user_id
            and (month is None or b.month == month)
            and (year is None or b.year == year)
        ]

    async def update_budget(self, budget: Budget) -> Budget:
        async with self._client.lock:
            stored = self._client.budgets.get(budget.id)
            if stored is None or stored.user_id != budget.user_id:
                raise RecordNotFoundError(f"Budget not found: {budget.id}")
            budget.updated_at = utc_now()
            self._client.budgets[budget.id] = _copy(budget)
        return _copy(budget)

    async def delete_budget(self, budget_id: UUID, user_id: str) -> bool:
        async with self._client.lock:
            stored = self._client.budgets.get(budget_id)
            if stored is None or stored.user_id != user_id:
                return False
            del self._client.budgets[budget_id]
            return True


class InMemoryRecurringRuleStorage(RecurringRuleStorageInterface):
    """In-memory implementation of recurring rule storage."""

    def __init__(self, client: Optional[InMemoryClient] = None):
        self._client = client or InMemoryClient()

    async def save_rule(self, rule: RecurringRule) -> RecurringRule:
        async with self._client.lock:
            if rule.id in self._client.rules:
                raise DuplicateRecordError(f"Recurring rule already exists: {rule.id}")
            self._client.rules[rule.id] = _copy(rule)
        return _copy(rule)

    async def get_rule(self, rule_id: UUID, user_id: str) -> Optional[RecurringRule]:
        rule = self._client.rules.get(rule_id)
        if rule is None or rule.user_id != user_id:
            return None
        return _copy(rule)

    async def list_rules(
        self,
        user_id: str,
        wallet_id: Optional[UUID] = None,
    ) -> list[RecurringRule]:
        return [
            _copy(r) for r in self._client.rules.values()
            if r.user_id == user_id
            and (wallet_id is None or wallet_id in (r.wallet_id, r.to_wallet_id))
        ]

    async def update_rule(self, rule: RecurringRule) -> RecurringRule:
        async with self._client.lock:
            stored = self._client.rules.get(rule.id)
            if stored is None or stored.user_id != rule.user_id:
                raise RecordNotFoundError(f"Recurring rule not found: {rule.id}")
            rule.updated_at = utc_now()
            self._client.rules[rule.id] = _copy(rule)
        return _copy(rule)

    async def delete_rule(self, rule_id: UUID, user_id: str) -> bool:
        async with self._client.lock:
            stored = self._client.rules.get(rule_id)
            if stored is None or stored.user_id != user_id:
                return False
            del self._client.rules[rule_id]
            return True

    async def find_due_rules(self, now: datetime) -> list[RecurringRule]:
        return [_copy(r) for r in self._client.rules.values() if r.is_due(now)]

    async def advance_rule(
        self,
        rule_id: UUID,
        expected_next_run_at: datetime,
        next_run_at: datetime,
        materialized_at: Optional[datetime] = None,
    ) -> bool:
        async with self._client.lock:
            stored = self._client.rules.get(rule_id)
            if stored is None or stored.next_run_at != expected_next_run_at:
                return False
            stored.next_run_at = next_run_at
            if materialized_at is not None:
                stored.last_materialized_at = materialized_at
            stored.updated_at = utc_now()
            return True


class InMemoryAuditStorage(AuditStorageInterface):
    """
    In-memory implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[InMemoryClient] = None):
        self._client = client or InMemoryClient()

    async def append_event(self, event: AuditEvent) -> bool:
        self._client.audit_events.append(_copy(event))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            _copy(e) for e in self._client.audit_events
            if e.correlation_id == correlation_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            _copy(e) for e in self._client.audit_events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = [_copy(e) for e in self._client.audit_events]
        # Newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
