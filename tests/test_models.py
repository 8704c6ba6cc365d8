"""
Tests for Wallet Ledger models

Test strategy:
1. Unit tests for individual models and their invariants
2. Engine tests run against the in-memory storage
3. No network in tests (notification transports are faked)
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from ledger.models.ledger import (
    Budget,
    BudgetCreate,
    BudgetUpdate,
    RecurringRule,
    Cadence,
    Transaction,
    TransactionFilter,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    Wallet,
    WalletType,
    balance_effects,
    ensure_utc,
    reversed_effects,
)
from ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


def _transaction(**overrides):
    fields = dict(
        user_id="user-1",
        type=TransactionType.EXPENSE,
        amount=Decimal("100"),
        wallet_id=uuid4(),
        category="Food",
    )
    fields.update(overrides)
    return Transaction(**fields)


class TestWalletModel:
    """Tests for the Wallet model."""

    def test_wallet_creation(self):
        """Test Wallet model creation with defaults."""
        wallet = Wallet(user_id="user-1", name="  Savings  ", opening_balance=Decimal("500"))
        assert wallet.name == "Savings"
        assert wallet.type == WalletType.CASH
        assert wallet.created_at.tzinfo is not None

    def test_wallet_rejects_negative_opening_balance(self):
        """Test that negative opening balances are rejected."""
        with pytest.raises(ValueError):
            Wallet(user_id="user-1", name="Cash", opening_balance=Decimal("-1"))

    def test_wallet_type_values(self):
        """Test the closed set of wallet types."""
        assert {t.value for t in WalletType} == {"Cash", "Bank", "Card", "Other"}

    def test_wallet_serializes_camel_case(self):
        """Test wire format uses camelCase keys and numeric amounts."""
        wallet = Wallet(user_id="user-1", name="Cash", opening_balance=Decimal("10.50"))
        data = wallet.model_dump(mode="json", by_alias=True)
        assert data["openingBalance"] == 10.5
        assert "currentBalance" in data
        assert "userId" in data


class TestTransactionModel:
    """Tests for the Transaction model shape rules."""

    def test_expense_requires_category(self):
        with pytest.raises(ValueError):
            _transaction(category=None)

    def test_expense_rejects_destination(self):
        with pytest.raises(ValueError):
            _transaction(to_wallet_id=uuid4())

    def test_transfer_requires_destination(self):
        with pytest.raises(ValueError):
            _transaction(type=TransactionType.TRANSFER, category=None)

    def test_self_transfer_rejected(self):
        wallet_id = uuid4()
        with pytest.raises(ValueError):
            _transaction(type=TransactionType.TRANSFER, wallet_id=wallet_id, to_wallet_id=wallet_id)

    def test_transfer_drops_category(self):
        transaction = _transaction(
            type=TransactionType.TRANSFER,
            to_wallet_id=uuid4(),
            category="Food",
        )
        assert transaction.category is None

    def test_zero_amount_rejected(self):
        with pytest.raises(ValueError):
            _transaction(amount=Decimal("0"))

    def test_naive_date_is_utc(self):
        transaction = _transaction(date=datetime(2024, 3, 1, 12, 0))
        assert transaction.date == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_accepts_camel_case_input(self):
        wallet_id = uuid4()
        transaction = Transaction.model_validate({
            "userId": "user-1",
            "type": "Income",
            "amount": 250,
            "walletId": str(wallet_id),
            "category": "Salary",
        })
        assert transaction.wallet_id == wallet_id
        assert transaction.type == TransactionType.INCOME


class TestBalanceEffects:
    """Tests for the signed effect of each transaction type."""

    def test_income_effect(self):
        transaction = _transaction(type=TransactionType.INCOME, category="Salary")
        assert balance_effects(transaction) == [(transaction.wallet_id, Decimal("100"))]

    def test_expense_effect(self):
        transaction = _transaction()
        assert balance_effects(transaction) == [(transaction.wallet_id, Decimal("-100"))]

    def test_transfer_conserves_money(self):
        transaction = _transaction(type=TransactionType.TRANSFER, to_wallet_id=uuid4())
        legs = balance_effects(transaction)
        assert legs[0] == (transaction.wallet_id, Decimal("-100"))
        assert legs[1] == (transaction.to_wallet_id, Decimal("100"))
        assert sum(delta for _, delta in legs) == 0

    def test_reversed_effects_undo(self):
        transaction = _transaction(type=TransactionType.TRANSFER, to_wallet_id=uuid4())
        forward = balance_effects(transaction)
        backward = reversed_effects(transaction)
        assert [d for _, d in forward] == [-d for _, d in backward]


class TestBudgetModels:
    """Tests for budget payload conversion."""

    def test_percentage_threshold_converted(self):
        payload = BudgetCreate(category="Food", amount=Decimal("1000"), month=1, year=2024, alert_threshold=80)
        assert payload.alert_threshold == pytest.approx(0.8)

    def test_fraction_threshold_kept(self):
        payload = BudgetUpdate(alert_threshold=0.75)
        assert payload.alert_threshold == 0.75

    def test_threshold_out_of_range(self):
        with pytest.raises(ValueError):
            BudgetUpdate(alert_threshold=150)

    def test_budget_month_bounds(self):
        with pytest.raises(ValueError):
            Budget(user_id="user-1", category="Food", amount=Decimal("1"), month=13, year=2024)


class TestRecurringRuleModel:

    def test_is_due(self):
        now = datetime(2024, 1, 31, tzinfo=timezone.utc)
        rule = RecurringRule(
            user_id="user-1",
            wallet_id=uuid4(),
            type=TransactionType.EXPENSE,
            amount=Decimal("10"),
            category="Rent",
            cadence=Cadence.MONTHLY,
            next_run_at=now,
        )
        assert rule.is_due(now)
        rule.ends_at = now
        assert not rule.is_due(now)


class TestTransactionFilter:
    """Tests for the shared list/stats/budget predicate."""

    def test_for_month_covers_leap_february(self):
        filters = TransactionFilter.for_month(2, 2024)
        assert filters.start_date == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert filters.end_date.day == 29
        assert filters.end_date < datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_for_month_december_rolls_year(self):
        filters = TransactionFilter.for_month(12, 2023)
        assert filters.end_date < datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert filters.end_date.year == 2023

    def test_wallet_matches_source_or_destination(self):
        source, destination = uuid4(), uuid4()
        transfer = _transaction(
            type=TransactionType.TRANSFER,
            wallet_id=source,
            to_wallet_id=destination,
        )
        assert TransactionFilter(wallet_id=source).matches(transfer)
        assert TransactionFilter(wallet_id=destination).matches(transfer)
        assert not TransactionFilter(wallet_id=uuid4()).matches(transfer)

    def test_date_bounds_inclusive(self):
        day = datetime(2024, 5, 10, tzinfo=timezone.utc)
        transaction = _transaction(date=day)
        assert TransactionFilter(start_date=day, end_date=day).matches(transaction)

    def test_category_and_type(self):
        transaction = _transaction()
        assert TransactionFilter(category="Food", type=TransactionType.EXPENSE).matches(transaction)
        assert not TransactionFilter(category="Rent").matches(transaction)
        assert not TransactionFilter(type=TransactionType.INCOME).matches(transaction)

    def test_ensure_utc_converts_offsets(self):
        from datetime import timedelta
        ist = timezone(timedelta(hours=5, minutes=30))
        value = ensure_utc(datetime(2024, 1, 1, 5, 30, tzinfo=ist))
        assert value == datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.WALLET_CREATED,
            description="Wallet created: Cash",
        )
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to structured log format."""
        wallet_id = uuid4()
        event = AuditEventBuilder.wallet_created("user-1", wallet_id, "Cash", Decimal("100"))
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "wallet_created"
        assert log_dict["entity_id"] == str(wallet_id)
        assert log_dict["user_id"] == "user-1"
        assert log_dict["details"]["opening_balance"] == "100"

    def test_reconciliation_is_critical(self):
        """Test that a failed compensation is logged at critical severity."""
        correlation_id = uuid4()
        event = AuditEventBuilder.reconciliation_required(
            user_id="user-1",
            failed_legs=[(uuid4(), Decimal("-50"))],
            cause="storage down",
            correlation_id=correlation_id,
        )
        assert event.severity == AuditSeverity.CRITICAL
        assert event.correlation_id == correlation_id
        assert len(event.details["unreversed_legs"]) == 1

    def test_scheduler_tick_severity(self):
        event = AuditEventBuilder.scheduler_tick(
            AuditEventType.SCHEDULER_TICK_TIMED_OUT, {}, uuid4()
        )
        assert event.severity == AuditSeverity.ERROR


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="Amount must be greater than zero",
                    severity="error",
                ),
                ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message="Date is far in the future",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors
        assert not result.is_valid
        assert result.error_count == 1
        assert result.warnings == ["Date is far in the future"]

    def test_validation_result_warnings_only(self):
        """Test result with only warnings is valid."""
        result = ValidationResult(
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="suspicious_amount",
                    message="Amount is unusually large",
                    severity="warning",
                ),
            ],
        )
        assert result.is_valid
        assert result.error_count == 0

    def test_invalid_severity_rejected(self):
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")
