"""
Read-side Models for Wallet Ledger

Everything here is computed from the stored entities and never persisted:
listing pages, transaction statistics, budget summaries, alert intents
and scheduler tick reports.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from ledger.models.ledger import Budget, LedgerModel, Money, Transaction, utc_now


class Pagination(LedgerModel):
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    pages: int = Field(ge=0)


class TypeTotals(LedgerModel):
    total: Money = Decimal("0")
    count: int = 0


class TransactionStats(LedgerModel):
    """
    Aggregates over a filtered transaction set.

    net = total_income - total_expenses (transfers move money, they
    neither create nor destroy it).
    """

    total_income: Money = Decimal("0")
    total_expenses: Money = Decimal("0")
    count: int = 0
    net: Money = Decimal("0")
    by_type: dict[str, TypeTotals] = Field(default_factory=dict)
    by_category: dict[str, Money] = Field(
        default_factory=dict,
        description="Expense totals per category"
    )


class TransactionPage(LedgerModel):
    transactions: list[Transaction]
    pagination: Pagination
    stats: Optional[TransactionStats] = None


class BudgetSummaryItem(LedgerModel):
    """
    Spent-vs-budgeted line for one budget.

    `percentage` is capped at 100 for display; use spent/budgeted for the
    real overspend ratio.
    """

    budget_id: UUID
    category: str
    budgeted: Money
    spent: Money
    remaining: Money
    percentage: int = Field(ge=0, le=100)


class BudgetAlert(LedgerModel):
    """Notification intent handed to the notification collaborator."""

    user_id: str
    budget_id: UUID
    category: str
    budget_amount: Money
    spent_amount: Money
    threshold_percent: float
    month: int
    year: int
    created_at: datetime = Field(default_factory=utc_now)


class BudgetUpdateResult(LedgerModel):
    budget: Budget
    alert_triggered: bool = False
    alert_delivered: bool = False


class MaterializationFailure(LedgerModel):
    rule_id: UUID
    error_type: str
    message: str


class TickReport(LedgerModel):
    """What one scheduler tick did."""

    started_at: datetime = Field(default_factory=utc_now)
    due: int = 0
    materialized: list[UUID] = Field(
        default_factory=list,
        description="IDs of the transactions created by this tick"
    )
    advanced_without_materializing: list[UUID] = Field(
        default_factory=list,
        description="Rules whose slot had already been materialized"
    )
    failures: list[MaterializationFailure] = Field(default_factory=list)
    skipped: bool = Field(
        default=False,
        description="A previous tick was still running"
    )
    timed_out: bool = False
