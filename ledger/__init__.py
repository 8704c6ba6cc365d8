"""
Wallet Ledger - Source Package

The consistency core of a personal-finance tracker: per-user wallets,
income/expense/transfer transactions, recurring rules and monthly budgets.

DESIGN PRINCIPLES:
1. A wallet balance is a projection of its transactions, never a free-form number
2. Every balance mutation goes through one seam
3. Partial failures are compensated, or reported loudly
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Wallet Ledger Team"
