"""Query execution package."""

from ledger.queries.executor import TransactionQueryExecutor, compute_stats

__all__ = ["TransactionQueryExecutor", "compute_stats"]
