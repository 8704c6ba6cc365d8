"""
Core Data Models for Wallet Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage, logging and the HTTP surface
4. Make the signed effect of a transaction explicit

DESIGN DECISION: Amounts are Decimals and are never stored negative.
The sign of a balance change is derived from the transaction type.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


# Decimals travel as JSON numbers on the wire
Money = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LedgerModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class WalletType(str, Enum):
    """Kind of account a wallet represents."""
    CASH = "Cash"
    BANK = "Bank"
    CARD = "Card"
    OTHER = "Other"


class TransactionType(str, Enum):
    """
    Transaction types.

    The set is closed: Income moves money into a wallet, Expense out of it,
    Transfer from one wallet to another.
    """
    INCOME = "Income"
    EXPENSE = "Expense"
    TRANSFER = "Transfer"


class Cadence(str, Enum):
    """Recurrence interval of a recurring rule."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# =============================================================================
# WALLET
# =============================================================================

class Wallet(LedgerModel):
    """
    A named account holding a running balance.

    INVARIANT: current_balance == opening_balance + signed effect of every
    transaction referencing this wallet. Only the wallet ledger moves it.
    """

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique wallet ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owning user"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    type: WalletType = Field(
        default=WalletType.CASH,
        description="Account type"
    )
    opening_balance: Money = Field(
        ...,
        ge=0,
        description="Balance the wallet was opened with"
    )
    current_balance: Money = Field(
        default=Decimal("0"),
        description="Maintained balance (derived from transactions)"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(LedgerModel):
    """
    A single recorded money movement.

    The shape depends on the type:
    - Income/Expense: category required, no destination wallet
    - Transfer: destination wallet required (and different from the source),
      category ignored
    """

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owning user"
    )
    type: TransactionType
    amount: Money = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Positive amount; the sign comes from the type"
    )
    wallet_id: UUID = Field(
        ...,
        description="Source wallet (the only wallet for Income/Expense)"
    )
    to_wallet_id: Optional[UUID] = Field(
        default=None,
        description="Destination wallet (Transfer only)"
    )
    category: Optional[str] = Field(
        default=None,
        max_length=100,
    )
    subcategory: Optional[str] = Field(default=None, max_length=100)
    merchant: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=1000)
    tags: list[str] = Field(default_factory=list)
    date: datetime = Field(
        default_factory=utc_now,
        description="When the money moved (user supplied)"
    )
    currency: str = Field(default="INR", min_length=3, max_length=3)
    is_recurring: bool = False
    recurring_rule_id: Optional[UUID] = None
    scheduled_for: Optional[datetime] = Field(
        default=None,
        description="Recurring slot this transaction materialized"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the record was written (system time)"
    )

    @field_validator('date', 'created_at', 'scheduled_for')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @model_validator(mode='after')
    def validate_shape(self) -> 'Transaction':
        """Enforce the per-type field rules."""
        if self.type == TransactionType.TRANSFER:
            if self.to_wallet_id is None:
                raise ValueError("Destination wallet is required for transfers")
            if self.to_wallet_id == self.wallet_id:
                raise ValueError("Cannot transfer a wallet to itself")
            self.category = None
        else:
            if self.to_wallet_id is not None:
                raise ValueError("Only transfers may have a destination wallet")
            if not self.category:
                raise ValueError("Category is required for Income/Expense transactions")
        return self


def balance_effects(transaction: Transaction) -> list[tuple[UUID, Decimal]]:
    """
    Signed balance deltas a transaction applies, one per wallet leg.

    Income: +amount on the wallet. Expense: -amount on the wallet.
    Transfer: -amount on the source, +amount on the destination.
    """
    amount = Decimal(transaction.amount)
    if transaction.type == TransactionType.INCOME:
        return [(transaction.wallet_id, amount)]
    if transaction.type == TransactionType.EXPENSE:
        return [(transaction.wallet_id, -amount)]
    return [
        (transaction.wallet_id, -amount),
        (transaction.to_wallet_id, amount),
    ]


def reversed_effects(transaction: Transaction) -> list[tuple[UUID, Decimal]]:
    """The legs that undo balance_effects(transaction)."""
    return [(wallet_id, -delta) for wallet_id, delta in balance_effects(transaction)]


# =============================================================================
# RECURRING RULE
# =============================================================================

class RecurringRule(LedgerModel):
    """
    Template that spawns a transaction on every cadence step.

    INVARIANT: next_run_at is the authoritative next materialization time
    and only ever moves forward.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    wallet_id: UUID
    to_wallet_id: Optional[UUID] = None
    type: TransactionType
    amount: Money = Field(..., gt=0, decimal_places=2)
    category: Optional[str] = Field(default=None, max_length=100)
    cadence: Cadence
    next_run_at: datetime
    ends_at: Optional[datetime] = Field(
        default=None,
        description="No materialization at or after this time (None = open-ended)"
    )
    last_materialized_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('next_run_at', 'ends_at', 'last_materialized_at', 'created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    def is_due(self, now: datetime) -> bool:
        """Due when the slot has arrived and the rule has not ended."""
        return self.next_run_at <= now and (self.ends_at is None or self.ends_at > now)


# =============================================================================
# BUDGET
# =============================================================================

class Budget(LedgerModel):
    """
    A per-category, per-month spending ceiling.

    NOTE: `spent` is a denormalized hint refreshed on budget writes.
    Summaries and alerts always recompute it from the transactions.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=100)
    amount: Money = Field(..., ge=0)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=9999)
    alert_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Fraction of the amount that triggers an alert"
    )
    spent: Money = Field(default=Decimal("0"), ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)


# =============================================================================
# INPUT PAYLOADS
# =============================================================================

class WalletCreate(LedgerModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: WalletType = WalletType.CASH
    opening_balance: Money = Field(..., ge=0)


class WalletUpdate(LedgerModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[WalletType] = None
    opening_balance: Optional[Money] = Field(default=None, ge=0)


class TransactionCreate(LedgerModel):
    """
    Payload for a new transaction.

    Deliberately loose: shape rules are checked by the TransactionValidator
    so callers get every issue at once.
    """

    type: TransactionType
    amount: Money
    wallet_id: UUID
    to_wallet_id: Optional[UUID] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    merchant: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None
    date: Optional[datetime] = None

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class TransactionUpdate(LedgerModel):
    """Patch: only fields the caller actually sent are applied."""

    type: Optional[TransactionType] = None
    amount: Optional[Money] = None
    wallet_id: Optional[UUID] = None
    to_wallet_id: Optional[UUID] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    merchant: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None
    date: Optional[datetime] = None

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    def changes(self) -> dict:
        """Fields explicitly present in the patch."""
        return self.model_dump(exclude_unset=True)


def _threshold_fraction(v: Optional[float]) -> Optional[float]:
    # UI forms send 80 for 80%
    if v is None:
        return None
    if v < 0 or v > 100:
        raise ValueError("Alert threshold must be a fraction in [0, 1] or a percentage in [0, 100]")
    return v / 100 if v > 1 else v


class BudgetCreate(LedgerModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount: Money = Field(..., ge=0)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=9999)
    alert_threshold: Optional[float] = None

    @field_validator('alert_threshold')
    @classmethod
    def threshold_as_fraction(cls, v: Optional[float]) -> Optional[float]:
        return _threshold_fraction(v)


class BudgetUpdate(LedgerModel):
    amount: Optional[Money] = Field(default=None, ge=0)
    alert_threshold: Optional[float] = None

    @field_validator('alert_threshold')
    @classmethod
    def threshold_as_fraction(cls, v: Optional[float]) -> Optional[float]:
        return _threshold_fraction(v)


class RecurringRuleCreate(LedgerModel):
    wallet_id: UUID
    to_wallet_id: Optional[UUID] = None
    type: TransactionType
    amount: Money
    category: Optional[str] = None
    cadence: str
    start_date: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @field_validator('start_date', 'ends_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class RecurringRuleUpdate(LedgerModel):
    amount: Optional[Money] = None
    category: Optional[str] = None
    cadence: Optional[str] = None
    ends_at: Optional[datetime] = None

    @field_validator('ends_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# =============================================================================
# QUERY MODELS
# =============================================================================

class TransactionFilter(LedgerModel):
    """
    Predicate over a user's transactions.

    CRITICAL: lists, stats and budget spend all use this one predicate,
    so a stats total always describes exactly the listed set.
    """

    wallet_id: Optional[UUID] = Field(
        default=None,
        description="Matches the source or the destination wallet"
    )
    category: Optional[str] = None
    type: Optional[TransactionType] = None
    start_date: Optional[datetime] = Field(default=None, description="Inclusive")
    end_date: Optional[datetime] = Field(default=None, description="Inclusive")
    recurring_rule_id: Optional[UUID] = None
    scheduled_for: Optional[datetime] = Field(
        default=None,
        description="Exact recurring slot"
    )

    @field_validator('start_date', 'end_date', 'scheduled_for')
    @classmethod
    def normalize_bounds(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @classmethod
    def for_month(cls, month: int, year: int, **criteria) -> 'TransactionFilter':
        """Filter covering one calendar month (UTC)."""
        start = datetime(year, month, 1, tzinfo=timezone.utc)
        if month == 12:
            next_start = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        else:
            next_start = datetime(year, month + 1, 1, tzinfo=timezone.utc)
        return cls(
            start_date=start,
            end_date=next_start - timedelta(microseconds=1),
            **criteria,
        )

    def matches(self, transaction: Transaction) -> bool:
        if self.wallet_id and self.wallet_id not in (
            transaction.wallet_id,
            transaction.to_wallet_id,
        ):
            return False
        if self.category and transaction.category != self.category:
            return False
        if self.type and transaction.type != self.type:
            return False
        if self.start_date and transaction.date < self.start_date:
            return False
        if self.end_date and transaction.date > self.end_date:
            return False
        if self.recurring_rule_id and transaction.recurring_rule_id != self.recurring_rule_id:
            return False
        if self.scheduled_for and transaction.scheduled_for != self.scheduled_for:
            return False
        return True


class TransactionQuery(LedgerModel):
    """A filtered, paginated transaction listing."""

    filters: TransactionFilter = Field(default_factory=TransactionFilter)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    include_stats: bool = False


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(LedgerModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'forbidden', 'invalid_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(LedgerModel):
    """Outcome of validating one transaction draft."""

    validated_at: datetime = Field(default_factory=utc_now)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
