"""
Shared fixtures.

Every test gets its own in-memory storage client and component set, so no
state leaks between tests.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledger.config import Settings
from ledger.models.ledger import (
    TransactionCreate,
    TransactionType,
    WalletCreate,
    WalletType,
)
from ledger.orchestrator import create_app_components


USER = "user-1"
OTHER_USER = "user-2"

FIXED_NOW = datetime(2024, 1, 31, tzinfo=timezone.utc)


@pytest.fixture
def components():
    return create_app_components(settings=Settings(), clock=lambda: FIXED_NOW)


@pytest.fixture
def make_wallet(components):
    async def _make(opening="1000", name="Cash", user_id=USER, wallet_type=WalletType.CASH):
        return await components.wallets.create_wallet(
            user_id,
            WalletCreate(name=name, type=wallet_type, opening_balance=Decimal(opening)),
        )
    return _make


@pytest.fixture
def make_expense(components):
    async def _make(wallet, amount="100", category="Food", user_id=USER, date=None, **extra):
        return await components.transactions.create(
            user_id,
            TransactionCreate(
                type=TransactionType.EXPENSE,
                amount=Decimal(amount),
                wallet_id=wallet.id,
                category=category,
                date=date,
                **extra,
            ),
        )
    return _make


@pytest.fixture
def balance(components):
    async def _balance(wallet, user_id=USER) -> Decimal:
        refreshed = await components.wallets.get_wallet(user_id, wallet.id)
        return refreshed.current_balance
    return _balance
