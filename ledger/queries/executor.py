"""
Transaction Query Execution

DESIGN DECISION: Listing and statistics share ONE predicate.
The filter object that selects the page is the same object the stats are
computed over, before pagination. A stats total therefore always describes
exactly the set the caller is paging through, never the user's whole history.

Ordering is by transaction date, newest first; equal dates keep insertion
order (the storage contract guarantees a stable sort).
"""

import math
from decimal import Decimal
from typing import Optional

from ledger.config import LedgerSettings, get_settings
from ledger.errors import storage_errors
from ledger.models.ledger import (
    Transaction,
    TransactionFilter,
    TransactionQuery,
    TransactionType,
)
from ledger.models.reports import (
    Pagination,
    TransactionPage,
    TransactionStats,
    TypeTotals,
)
from ledger.services.storage import TransactionStorageInterface


def compute_stats(transactions: list[Transaction]) -> TransactionStats:
    """Totals of a transaction set, grouped by type and expense category."""
    by_type: dict[str, TypeTotals] = {}
    by_category: dict[str, Decimal] = {}
    income = Decimal("0")
    expenses = Decimal("0")

    for transaction in transactions:
        amount = Decimal(transaction.amount)
        totals = by_type.setdefault(transaction.type.value, TypeTotals())
        totals.total = totals.total + amount
        totals.count += 1

        if transaction.type == TransactionType.INCOME:
            income += amount
        elif transaction.type == TransactionType.EXPENSE:
            expenses += amount
            category = transaction.category or "Uncategorized"
            by_category[category] = by_category.get(category, Decimal("0")) + amount

    return TransactionStats(
        total_income=income,
        total_expenses=expenses,
        count=len(transactions),
        net=income - expenses,
        by_type=by_type,
        by_category=by_category,
    )


class TransactionQueryExecutor:
    """
    Executes filtered, paginated transaction queries against storage.

    GUARANTEES:
    - Only returns the caller's own transactions
    - Stats (when requested) cover the full filtered set
    - Page sizes are capped by settings
    """

    def __init__(
        self,
        storage: TransactionStorageInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger

    async def execute(self, user_id: str, query: TransactionQuery) -> TransactionPage:
        with storage_errors("Transaction"):
            matches = await self._storage.find_transactions(user_id, query.filters)

        limit = min(query.limit, self._settings.max_page_limit)
        total = len(matches)
        start = (query.page - 1) * limit

        return TransactionPage(
            transactions=matches[start:start + limit],
            pagination=Pagination(
                total=total,
                page=query.page,
                pages=math.ceil(total / limit),
            ),
            stats=compute_stats(matches) if query.include_stats else None,
        )

    async def stats(
        self,
        user_id: str,
        filters: Optional[TransactionFilter] = None,
    ) -> TransactionStats:
        with storage_errors("Transaction"):
            matches = await self._storage.find_transactions(user_id, filters)
        return compute_stats(matches)
