"""
Tests for the transaction engine.

Covers the balance invariant under create/update/delete, transfers,
validation failures, and the compensation path when storage fails
half-way through a write.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import pytest

from conftest import OTHER_USER, USER
from ledger.audit import AuditLogger
from ledger.config import LedgerSettings
from ledger.engine import TransactionEngine, WalletLedger
from ledger.errors import (
    DependencyFailureError,
    NotFoundError,
    ReconciliationRequiredError,
    ValidationError,
)
from ledger.models.audit import AuditEventType, AuditSeverity
from ledger.models.ledger import (
    TransactionCreate,
    TransactionFilter,
    TransactionQuery,
    TransactionType,
    TransactionUpdate,
    WalletCreate,
)
from ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryClient,
    InMemoryRecurringRuleStorage,
    InMemoryTransactionStorage,
    InMemoryWalletStorage,
    StorageConnectionError,
)


# =============================================================================
# FAILING STORAGE DOUBLES
# =============================================================================

class FlakyWalletStorage(InMemoryWalletStorage):
    """
    Fails increments on the wallets in `failing`, or on every call once
    `fail_after` calls have succeeded.
    """

    def __init__(self, client: InMemoryClient):
        super().__init__(client)
        self.calls = 0
        self.fail_after: Optional[int] = None
        self.failing: set = set()

    async def increment_balance(self, wallet_id, user_id, delta):
        self.calls += 1
        if wallet_id in self.failing or (
            self.fail_after is not None and self.calls > self.fail_after
        ):
            raise StorageConnectionError("connection reset")
        return await super().increment_balance(wallet_id, user_id, delta)


class FlakyTransactionStorage(InMemoryTransactionStorage):
    """Fails record writes while `down` is set."""

    def __init__(self, client: InMemoryClient):
        super().__init__(client)
        self.down = False

    async def save_transaction(self, transaction):
        if self.down:
            raise StorageConnectionError("write timeout")
        return await super().save_transaction(transaction)

    async def update_transaction(self, transaction):
        if self.down:
            raise StorageConnectionError("write timeout")
        return await super().update_transaction(transaction)

    async def delete_transaction(self, transaction_id, user_id):
        if self.down:
            raise StorageConnectionError("write timeout")
        return await super().delete_transaction(transaction_id, user_id)


class FlakyLedger:
    """Engine wired to flaky storages over one shared client."""

    def __init__(self):
        self.client = InMemoryClient()
        self.wallet_storage = FlakyWalletStorage(self.client)
        self.transaction_storage = FlakyTransactionStorage(self.client)
        audit = AuditLogger(InMemoryAuditStorage(self.client))
        self.wallets = WalletLedger(
            self.wallet_storage,
            self.transaction_storage,
            InMemoryRecurringRuleStorage(self.client),
            audit_logger=audit,
        )
        self.engine = TransactionEngine(
            self.wallets,
            self.transaction_storage,
            audit_logger=audit,
            settings=LedgerSettings(),
        )

    async def wallet(self, opening: str, name: str = "Wallet"):
        return await self.wallets.create_wallet(
            USER, WalletCreate(name=name, opening_balance=Decimal(opening))
        )

    async def balance(self, wallet) -> Decimal:
        return (await self.wallets.get_wallet(USER, wallet.id)).current_balance

    def events(self, event_type: AuditEventType):
        return [e for e in self.client.audit_events if e.event_type == event_type]


def _transfer(source, target, amount: str) -> TransactionCreate:
    return TransactionCreate(
        type=TransactionType.TRANSFER,
        amount=Decimal(amount),
        wallet_id=source.id,
        to_wallet_id=target.id,
    )


# =============================================================================
# CREATE / DELETE
# =============================================================================

class TestCreateAndDelete:
    """Tests for the create/delete balance invariant."""

    @pytest.mark.asyncio
    async def test_expense_then_delete_restores_balance(self, components, make_wallet, make_expense, balance):
        """Test expense 200 on 1000 gives 800 and deleting it gives 1000."""
        wallet = await make_wallet("1000")
        transaction = await make_expense(wallet, "200", category="Food")
        assert await balance(wallet) == Decimal("800")

        warnings = await components.transactions.delete(USER, transaction.id)
        assert warnings == []
        assert await balance(wallet) == Decimal("1000")
        with pytest.raises(NotFoundError):
            await components.transactions.get(USER, transaction.id)

    @pytest.mark.asyncio
    async def test_income_credits_wallet(self, components, make_wallet, balance):
        wallet = await make_wallet("0")
        await components.transactions.create(USER, TransactionCreate(
            type=TransactionType.INCOME,
            amount=Decimal("1500.75"),
            wallet_id=wallet.id,
            category="Salary",
        ))
        assert await balance(wallet) == Decimal("1500.75")

    @pytest.mark.asyncio
    async def test_transfer_moves_money_between_wallets(self, components, make_wallet, balance):
        """Test transfer 100 from 500 to 300 leaves 400/400."""
        source = await make_wallet("500", name="A")
        target = await make_wallet("300", name="B")
        transaction = await components.transactions.create(USER, _transfer(source, target, "100"))

        assert transaction.category is None
        assert await balance(source) == Decimal("400")
        assert await balance(target) == Decimal("400")

        await components.transactions.delete(USER, transaction.id)
        assert await balance(source) == Decimal("500")
        assert await balance(target) == Decimal("300")

    @pytest.mark.asyncio
    async def test_transfer_without_destination_writes_nothing(self, components, make_wallet, balance):
        """Test that a rejected transfer leaves no record and no balance change."""
        wallet = await make_wallet("1000")
        with pytest.raises(ValidationError) as excinfo:
            await components.transactions.create(USER, TransactionCreate(
                type=TransactionType.TRANSFER,
                amount=Decimal("100"),
                wallet_id=wallet.id,
            ))
        assert any(issue.field == "toWalletId" for issue in excinfo.value.issues)
        assert components.client.transactions == {}
        assert await balance(wallet) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_self_transfer_rejected(self, components, make_wallet):
        wallet = await make_wallet()
        with pytest.raises(ValidationError):
            await components.transactions.create(USER, _transfer(wallet, wallet, "10"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-10"])
    async def test_non_positive_amount_rejected(self, components, make_wallet, make_expense, amount):
        wallet = await make_wallet()
        with pytest.raises(ValidationError):
            await make_expense(wallet, amount)

    @pytest.mark.asyncio
    async def test_destination_on_expense_rejected(self, components, make_wallet):
        wallet = await make_wallet(name="A")
        other = await make_wallet(name="B")
        with pytest.raises(ValidationError):
            await components.transactions.create(USER, TransactionCreate(
                type=TransactionType.EXPENSE,
                amount=Decimal("10"),
                wallet_id=wallet.id,
                to_wallet_id=other.id,
                category="Food",
            ))

    @pytest.mark.asyncio
    async def test_foreign_wallet_is_not_found(self, components, make_wallet, make_expense):
        wallet = await make_wallet(user_id=OTHER_USER)
        with pytest.raises(NotFoundError):
            await make_expense(wallet, user_id=USER)
        assert components.client.transactions == {}

    @pytest.mark.asyncio
    async def test_tags_suggested_from_merchant(self, components, make_wallet, make_expense):
        wallet = await make_wallet()
        transaction = await make_expense(wallet, "40", category="Dining", merchant="Swiggy", notes="monthly order")
        assert "dining" in transaction.tags
        assert "swiggy" in transaction.tags
        assert "monthly" in transaction.tags

    @pytest.mark.asyncio
    async def test_explicit_tags_kept(self, components, make_wallet, make_expense):
        wallet = await make_wallet()
        transaction = await make_expense(wallet, merchant="Swiggy", tags=["work"])
        assert transaction.tags == ["work"]

    @pytest.mark.asyncio
    async def test_concurrent_creates_keep_balance(self, components, make_wallet, make_expense, balance):
        """Test that simultaneous expenses on one wallet never lose an update."""
        wallet = await make_wallet("1000")
        await asyncio.gather(*[make_expense(wallet, "10") for _ in range(25)])
        assert await balance(wallet) == Decimal("750")
        assert len(components.client.transactions) == 25

    @pytest.mark.asyncio
    async def test_create_invalidates_cache(self, components, make_wallet, make_expense):
        wallet = await make_wallet()
        components.cache.set(USER, "/api/wallets", {"cached": True})
        await make_expense(wallet)
        assert components.cache.get(USER, "/api/wallets") is None

    @pytest.mark.asyncio
    async def test_delete_with_missing_wallet_warns(self, components, make_wallet, make_expense):
        """Test that a dangling wallet reference does not block deletion."""
        wallet = await make_wallet()
        transaction = await make_expense(wallet)
        del components.client.wallets[wallet.id]

        warnings = await components.transactions.delete(USER, transaction.id)
        assert len(warnings) == 1
        assert str(wallet.id) in warnings[0]
        assert transaction.id not in components.client.transactions
        events = [e.event_type for e in components.client.audit_events]
        assert AuditEventType.DANGLING_WALLET_REFERENCE in events


# =============================================================================
# UPDATE
# =============================================================================

class TestUpdate:
    """Tests for moving a transaction's effect on edit."""

    @pytest.mark.asyncio
    async def test_amount_change(self, components, make_wallet, make_expense, balance):
        wallet = await make_wallet("1000")
        transaction = await make_expense(wallet, "200")
        await components.transactions.update(USER, transaction.id, TransactionUpdate(amount=Decimal("300")))
        assert await balance(wallet) == Decimal("700")

        await components.transactions.update(USER, transaction.id, TransactionUpdate(amount=Decimal("200")))
        assert await balance(wallet) == Decimal("800")

    @pytest.mark.asyncio
    async def test_wallet_change_moves_effect(self, components, make_wallet, make_expense, balance):
        first = await make_wallet("1000", name="A")
        second = await make_wallet("500", name="B")
        transaction = await make_expense(first, "200")
        await components.transactions.update(USER, transaction.id, TransactionUpdate(wallet_id=second.id))
        assert await balance(first) == Decimal("1000")
        assert await balance(second) == Decimal("300")

    @pytest.mark.asyncio
    async def test_type_change_flips_sign(self, components, make_wallet, make_expense, balance):
        wallet = await make_wallet("1000")
        transaction = await make_expense(wallet, "200", category="Salary")
        updated = await components.transactions.update(
            USER, transaction.id, TransactionUpdate(type=TransactionType.INCOME)
        )
        assert updated.type == TransactionType.INCOME
        assert await balance(wallet) == Decimal("1200")

    @pytest.mark.asyncio
    async def test_change_to_transfer_drops_category(self, components, make_wallet, make_expense, balance):
        source = await make_wallet("1000", name="A")
        target = await make_wallet("0", name="B")
        transaction = await make_expense(source, "200")
        updated = await components.transactions.update(USER, transaction.id, TransactionUpdate(
            type=TransactionType.TRANSFER,
            to_wallet_id=target.id,
        ))
        assert updated.category is None
        assert await balance(source) == Decimal("800")
        assert await balance(target) == Decimal("200")

    @pytest.mark.asyncio
    async def test_change_from_transfer_drops_destination(self, components, make_wallet, balance):
        source = await make_wallet("1000", name="A")
        target = await make_wallet("0", name="B")
        transaction = await components.transactions.create(USER, _transfer(source, target, "200"))
        updated = await components.transactions.update(USER, transaction.id, TransactionUpdate(
            type=TransactionType.EXPENSE,
            category="Shopping",
        ))
        assert updated.to_wallet_id is None
        assert await balance(source) == Decimal("800")
        assert await balance(target) == Decimal("0")

    @pytest.mark.asyncio
    async def test_metadata_edit_keeps_balance(self, components, make_wallet, make_expense, balance):
        wallet = await make_wallet("1000")
        transaction = await make_expense(wallet, "200")
        updated = await components.transactions.update(
            USER, transaction.id, TransactionUpdate(notes="team lunch")
        )
        assert updated.notes == "team lunch"
        assert updated.amount == Decimal("200")
        assert await balance(wallet) == Decimal("800")

    @pytest.mark.asyncio
    async def test_invalid_patch_changes_nothing(self, components, make_wallet, make_expense, balance):
        wallet = await make_wallet("1000")
        transaction = await make_expense(wallet, "200")
        with pytest.raises(ValidationError):
            await components.transactions.update(
                USER, transaction.id, TransactionUpdate(type=TransactionType.TRANSFER)
            )
        assert await balance(wallet) == Decimal("800")
        stored = await components.transactions.get(USER, transaction.id)
        assert stored.type == TransactionType.EXPENSE

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, components):
        with pytest.raises(NotFoundError):
            await components.transactions.update(USER, uuid4(), TransactionUpdate(notes="x"))


# =============================================================================
# COMPENSATION
# =============================================================================

class TestCompensation:
    """Tests for partial-failure handling."""

    @pytest.mark.asyncio
    async def test_failed_second_leg_is_compensated(self):
        """Test that a failed destination leg reverses the source leg."""
        ledger = FlakyLedger()
        source = await ledger.wallet("1000", "A")
        target = await ledger.wallet("0", "B")
        ledger.wallet_storage.failing = {target.id}

        with pytest.raises(DependencyFailureError) as excinfo:
            await ledger.engine.create(USER, _transfer(source, target, "300"))
        assert not isinstance(excinfo.value, ReconciliationRequiredError)

        ledger.wallet_storage.failing = set()
        assert await ledger.balance(source) == Decimal("1000")
        assert await ledger.balance(target) == Decimal("0")
        assert ledger.client.transactions == {}
        assert len(ledger.events(AuditEventType.COMPENSATION_APPLIED)) == 1

    @pytest.mark.asyncio
    async def test_failed_compensation_requires_reconciliation(self):
        """Test that a failed reversal is surfaced and logged as critical."""
        ledger = FlakyLedger()
        source = await ledger.wallet("1000", "A")
        target = await ledger.wallet("0", "B")
        ledger.wallet_storage.fail_after = ledger.wallet_storage.calls + 1

        with pytest.raises(ReconciliationRequiredError) as excinfo:
            await ledger.engine.create(USER, _transfer(source, target, "300"))
        assert len(excinfo.value.details["unreversed_legs"]) == 1

        ledger.wallet_storage.fail_after = None
        assert await ledger.balance(source) == Decimal("700")
        events = ledger.events(AuditEventType.RECONCILIATION_REQUIRED)
        assert len(events) == 1
        assert events[0].severity == AuditSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_failed_record_write_is_compensated(self):
        ledger = FlakyLedger()
        source = await ledger.wallet("1000", "A")
        target = await ledger.wallet("0", "B")
        ledger.transaction_storage.down = True

        with pytest.raises(DependencyFailureError):
            await ledger.engine.create(USER, _transfer(source, target, "250"))
        assert await ledger.balance(source) == Decimal("1000")
        assert await ledger.balance(target) == Decimal("0")

    @pytest.mark.asyncio
    async def test_failed_update_write_is_compensated(self):
        ledger = FlakyLedger()
        wallet = await ledger.wallet("1000")
        transaction = await ledger.engine.create(USER, TransactionCreate(
            type=TransactionType.EXPENSE,
            amount=Decimal("200"),
            wallet_id=wallet.id,
            category="Food",
        ))
        ledger.transaction_storage.down = True

        with pytest.raises(DependencyFailureError):
            await ledger.engine.update(USER, transaction.id, TransactionUpdate(amount=Decimal("500")))
        assert await ledger.balance(wallet) == Decimal("800")

    @pytest.mark.asyncio
    async def test_failed_delete_write_is_compensated(self):
        ledger = FlakyLedger()
        wallet = await ledger.wallet("1000")
        transaction = await ledger.engine.create(USER, TransactionCreate(
            type=TransactionType.EXPENSE,
            amount=Decimal("200"),
            wallet_id=wallet.id,
            category="Food",
        ))
        ledger.transaction_storage.down = True

        with pytest.raises(DependencyFailureError):
            await ledger.engine.delete(USER, transaction.id)
        ledger.transaction_storage.down = False
        assert await ledger.balance(wallet) == Decimal("800")
        stored = await ledger.engine.get(USER, transaction.id)
        assert stored.id == transaction.id


# =============================================================================
# QUERIES
# =============================================================================

class TestQueries:
    """Tests for listing, stats and suggestions."""

    @pytest.mark.asyncio
    async def test_listing_newest_first(self, components, make_wallet, make_expense):
        wallet = await make_wallet()
        older = await make_expense(wallet, date=datetime(2024, 1, 1, tzinfo=timezone.utc))
        newer = await make_expense(wallet, date=datetime(2024, 2, 1, tzinfo=timezone.utc))
        page = await components.transactions.list(USER, TransactionQuery())
        assert [t.id for t in page.transactions] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_stats_cover_filtered_set(self, components, make_wallet, make_expense):
        """Test that stats describe every filtered match, not just one page."""
        wallet = await make_wallet("5000")
        for _ in range(3):
            await make_expense(wallet, "100", category="Food")
        await make_expense(wallet, "999", category="Rent")
        await components.transactions.create(USER, TransactionCreate(
            type=TransactionType.INCOME,
            amount=Decimal("50"),
            wallet_id=wallet.id,
            category="Salary",
        ))

        page = await components.transactions.list(USER, TransactionQuery(
            filters=TransactionFilter(category="Food"),
            limit=2,
            include_stats=True,
        ))
        assert len(page.transactions) == 2
        assert page.pagination.total == 3
        assert page.pagination.pages == 2
        assert page.stats.total_expenses == Decimal("300")
        assert page.stats.count == 3

        overall = await components.transactions.stats(USER)
        assert overall.total_income == Decimal("50")
        assert overall.total_expenses == Decimal("1299")
        assert overall.net == Decimal("-1249")
        assert overall.by_category == {"Food": Decimal("300"), "Rent": Decimal("999")}

    @pytest.mark.asyncio
    async def test_wallet_filter_matches_transfer_destination(self, components, make_wallet):
        source = await make_wallet(name="A")
        target = await make_wallet(name="B")
        await components.transactions.create(USER, _transfer(source, target, "10"))
        page = await components.transactions.list(
            USER, TransactionQuery(filters=TransactionFilter(wallet_id=target.id))
        )
        assert page.pagination.total == 1

    @pytest.mark.asyncio
    async def test_other_users_transactions_invisible(self, components, make_wallet, make_expense):
        theirs = await make_wallet(user_id=OTHER_USER)
        await make_expense(theirs, user_id=OTHER_USER)
        page = await components.transactions.list(USER, TransactionQuery())
        assert page.pagination.total == 0
        assert page.pagination.pages == 0

    def test_suggest(self, components):
        suggestion = components.transactions.suggest(merchant="Uber", notes="ride to office")
        assert suggestion["category"] == "Transportation"
        assert suggestion["tags"][:2] == ["transportation", "uber"]
