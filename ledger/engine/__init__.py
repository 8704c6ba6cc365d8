"""
Ledger engine package.

Wallet balances, transactions, recurring rules and budgets.
"""

from ledger.engine.budgets import BudgetAggregator, BudgetService, usage_percentage
from ledger.engine.categorizer import categorize_transaction, suggest_tags
from ledger.engine.recurring import (
    RecurringRuleService,
    RecurringScheduler,
    next_run_date,
    parse_cadence,
)
from ledger.engine.transactions import TransactionEngine
from ledger.engine.wallets import WalletLedger

__all__ = [
    "BudgetAggregator",
    "BudgetService",
    "RecurringRuleService",
    "RecurringScheduler",
    "TransactionEngine",
    "WalletLedger",
    "categorize_transaction",
    "next_run_date",
    "parse_cadence",
    "suggest_tags",
    "usage_percentage",
]
