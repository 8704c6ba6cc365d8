"""
Data Models Package

This package contains all Pydantic models used in the Wallet Ledger system.
All data flowing through the system must conform to these schemas.
"""

from ledger.models.ledger import (
    Budget,
    BudgetCreate,
    BudgetUpdate,
    Cadence,
    RecurringRule,
    RecurringRuleCreate,
    RecurringRuleUpdate,
    Transaction,
    TransactionCreate,
    TransactionFilter,
    TransactionQuery,
    TransactionType,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
    Wallet,
    WalletCreate,
    WalletType,
    WalletUpdate,
    balance_effects,
    ensure_utc,
    reversed_effects,
    utc_now,
)
from ledger.models.reports import (
    BudgetAlert,
    BudgetSummaryItem,
    BudgetUpdateResult,
    MaterializationFailure,
    Pagination,
    TickReport,
    TransactionPage,
    TransactionStats,
    TypeTotals,
)
from ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Budget",
    "BudgetCreate",
    "BudgetUpdate",
    "Cadence",
    "RecurringRule",
    "RecurringRuleCreate",
    "RecurringRuleUpdate",
    "Transaction",
    "TransactionCreate",
    "TransactionFilter",
    "TransactionQuery",
    "TransactionType",
    "TransactionUpdate",
    "ValidationIssue",
    "ValidationResult",
    "Wallet",
    "WalletCreate",
    "WalletType",
    "WalletUpdate",
    "balance_effects",
    "ensure_utc",
    "reversed_effects",
    "utc_now",
    # Report models
    "BudgetAlert",
    "BudgetSummaryItem",
    "BudgetUpdateResult",
    "MaterializationFailure",
    "Pagination",
    "TickReport",
    "TransactionPage",
    "TransactionStats",
    "TypeTotals",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
