"""
Wallet Ledger

DESIGN DECISION: apply_delta is the ONLY seam through which a transaction
moves a balance. It delegates to the storage layer's atomic increment, so two
concurrent writers on one wallet can never lose an update. An opening balance
edit is the one other balance write, and it is a relative atomic shift too:
no code path reads a balance and writes it back.

INVARIANT maintained here (together with the transaction engine):
    current_balance == opening_balance + sum of signed effects of every
    transaction referencing the wallet
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from ledger.audit import AuditLogger
from ledger.errors import (
    ConstraintViolationError,
    DependencyFailureError,
    NotFoundError,
    storage_errors,
)
from ledger.models.audit import AuditEventBuilder
from ledger.models.ledger import (
    TransactionFilter,
    Wallet,
    WalletCreate,
    WalletUpdate,
    balance_effects,
)
from ledger.services.cache import ResponseCache
from ledger.services.storage import (
    RecurringRuleStorageInterface,
    StorageError,
    TransactionStorageInterface,
    WalletStorageInterface,
)


logger = structlog.get_logger(__name__)


class WalletLedger:
    """Owns wallet balances and the wallet lifecycle."""

    def __init__(
        self,
        wallet_storage: WalletStorageInterface,
        transaction_storage: TransactionStorageInterface,
        rule_storage: RecurringRuleStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        cache: Optional[ResponseCache] = None,
    ):
        self._wallets = wallet_storage
        self._transactions = transaction_storage
        self._rules = rule_storage
        self._audit = audit_logger or AuditLogger()
        self._cache = cache

    def _invalidate(self, user_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_for_user(user_id)

    # =========================================================================
    # BALANCE MUTATION
    # =========================================================================

    async def apply_delta(self, wallet_id: UUID, user_id: str, delta: Decimal) -> Wallet:
        """
        Atomically add a signed amount to a wallet's current balance.

        Raises:
            NotFoundError: Wallet absent or owned by someone else
            DependencyFailureError: Storage failed
        """
        try:
            wallet = await self._wallets.increment_balance(wallet_id, user_id, Decimal(delta))
        except StorageError as e:
            raise DependencyFailureError(
                "Wallet storage unavailable",
                details={"wallet_id": str(wallet_id), "error": str(e)},
            ) from e
        if wallet is None:
            raise NotFoundError("Wallet", wallet_id)
        return wallet

    async def recompute_from_history(
        self,
        wallet_id: UUID,
        user_id: str,
        new_opening_balance: Decimal,
    ) -> Wallet:
        """
        Move the wallet to a new opening balance so that
        current_balance = new_opening_balance + net of every transaction
        referencing the wallet (transfers included).

        The balance is shifted by the opening difference in one atomic
        storage write, never overwritten, so a delta applied concurrently
        by the transaction engine is kept. The history replay afterwards
        only verifies the result: a mismatch is logged as a data-quality
        warning, not repaired.
        """
        with storage_errors("Wallet"):
            wallet = await self._wallets.rebase_opening_balance(
                wallet_id, user_id, Decimal(new_opening_balance)
            )
        if wallet is None:
            raise NotFoundError("Wallet", wallet_id)

        with storage_errors("Transaction"):
            history = await self._transactions.find_transactions(
                user_id, TransactionFilter(wallet_id=wallet_id)
            )
        with storage_errors("Wallet"):
            wallet = await self._wallets.get_wallet(wallet_id, user_id)
        if wallet is None:
            raise NotFoundError("Wallet", wallet_id)
        net = Decimal("0")
        for transaction in history:
            for leg_wallet, delta in balance_effects(transaction):
                if leg_wallet == wallet_id:
                    net += delta

        expected = Decimal(new_opening_balance) + net
        if wallet.current_balance != expected:
            logger.warning(
                "wallet_balance_drift",
                wallet_id=str(wallet_id),
                current_balance=str(wallet.current_balance),
                expected_balance=str(expected),
            )
            await self._audit.log_data_quality_warning(
                user_id=user_id,
                entity_type="Wallet",
                entity_id=wallet_id,
                message="Current balance differs from opening balance plus history",
                details={
                    "current_balance": str(wallet.current_balance),
                    "expected_balance": str(expected),
                    "transaction_count": len(history),
                },
            )

        await self._audit.log(AuditEventBuilder.wallet_recomputed(
            user_id=user_id,
            wallet_id=wallet_id,
            opening_balance=new_opening_balance,
            net=net,
            current_balance=wallet.current_balance,
            transaction_count=len(history),
        ))
        return wallet

    async def can_delete(self, wallet_id: UUID, user_id: str) -> bool:
        """
        A wallet may be deleted only when no transaction ever referenced it
        and no recurring rule targets it.
        """
        with storage_errors("Wallet"):
            if await self._transactions.count_for_wallet(wallet_id, user_id) > 0:
                return False
            return not await self._rules.list_rules(user_id, wallet_id=wallet_id)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def create_wallet(self, user_id: str, payload: WalletCreate) -> Wallet:
        wallet = Wallet(
            user_id=user_id,
            name=payload.name,
            type=payload.type,
            opening_balance=payload.opening_balance,
            current_balance=payload.opening_balance,
        )
        with storage_errors("Wallet"):
            wallet = await self._wallets.save_wallet(wallet)
        self._invalidate(user_id)

        await self._audit.log(AuditEventBuilder.wallet_created(
            user_id=user_id,
            wallet_id=wallet.id,
            name=wallet.name,
            opening_balance=wallet.opening_balance,
        ))
        return wallet

    async def list_wallets(self, user_id: str) -> list[Wallet]:
        with storage_errors("Wallet"):
            return await self._wallets.list_wallets(user_id)

    async def get_wallet(self, user_id: str, wallet_id: UUID) -> Wallet:
        with storage_errors("Wallet"):
            wallet = await self._wallets.get_wallet(wallet_id, user_id)
        if wallet is None:
            raise NotFoundError("Wallet", wallet_id)
        return wallet

    async def update_wallet(
        self,
        user_id: str,
        wallet_id: UUID,
        patch: WalletUpdate,
    ) -> Wallet:
        """
        Rename/retype a wallet; an opening balance edit recomputes the
        current balance from the full history.
        """
        wallet = await self.get_wallet(user_id, wallet_id)
        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return wallet

        opening_changed = (
            "opening_balance" in changes
            and Decimal(changes["opening_balance"]) != wallet.opening_balance
        )
        updated = wallet.model_copy(update=changes)

        with storage_errors("Wallet"):
            updated = await self._wallets.update_wallet(updated)

        if opening_changed:
            updated = await self.recompute_from_history(
                wallet_id, user_id, updated.opening_balance
            )

        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.wallet_updated(
            user_id=user_id,
            wallet_id=wallet_id,
            changes=changes,
        ))
        return updated

    async def delete_wallet(self, user_id: str, wallet_id: UUID) -> None:
        """
        Raises:
            NotFoundError: Wallet absent or not owned
            ConstraintViolationError: Wallet is referenced by transactions or rules
        """
        await self.get_wallet(user_id, wallet_id)

        if not await self.can_delete(wallet_id, user_id):
            raise ConstraintViolationError(
                "Cannot delete wallet with existing transactions or recurring rules",
                details={"wallet_id": str(wallet_id)},
            )

        with storage_errors("Wallet"):
            deleted = await self._wallets.delete_wallet(wallet_id, user_id)
        if not deleted:
            raise NotFoundError("Wallet", wallet_id)

        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.wallet_deleted(user_id, wallet_id))
        logger.info("wallet_deleted", user_id=user_id, wallet_id=str(wallet_id))
