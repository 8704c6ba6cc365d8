"""
Transaction Engine

DESIGN DECISION: A transaction and its wallet effects are one logical write,
but the storage layer has no multi-document transactions. We therefore:
1. Apply the balance legs in order through the wallet ledger
2. Persist the transaction record only after every leg succeeded
3. On any failure, reverse the legs already applied (compensation)
4. If a reversal itself fails, raise ReconciliationRequiredError and log it
   at CRITICAL severity with the unreversed legs

Writes are NEVER retried here: a retry could apply a balance effect twice.
Retrying is the caller's responsibility.

A crash between steps 1 and 2 can still leave a balance without its record.
That window is narrow and documented; the audit trail has the legs needed
to repair it by hand.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from ledger.audit import AuditLogger, create_correlation_id
from ledger.config import LedgerSettings, get_settings
from ledger.engine.categorizer import categorize_transaction, suggest_tags
from ledger.engine.wallets import WalletLedger
from ledger.errors import (
    DependencyFailureError,
    LedgerError,
    NotFoundError,
    ReconciliationRequiredError,
    ValidationError,
    storage_errors,
)
from ledger.models.audit import AuditEventBuilder
from ledger.models.ledger import (
    Transaction,
    TransactionCreate,
    TransactionFilter,
    TransactionQuery,
    TransactionType,
    TransactionUpdate,
    balance_effects,
    reversed_effects,
    utc_now,
)
from ledger.models.reports import TransactionPage, TransactionStats
from ledger.queries import TransactionQueryExecutor
from ledger.services.cache import ResponseCache
from ledger.services.storage import StorageError, TransactionStorageInterface
from ledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)

Leg = tuple[UUID, Decimal]

# Fields whose change alters the balance effect
_BALANCE_FIELDS = ("type", "amount", "wallet_id", "to_wallet_id")


def _build_transaction(**fields) -> Transaction:
    try:
        return Transaction.model_validate(fields)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


class TransactionEngine:
    """
    Creates, updates and deletes transactions together with their
    wallet balance effects.
    """

    def __init__(
        self,
        wallet_ledger: WalletLedger,
        transaction_storage: TransactionStorageInterface,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        cache: Optional[ResponseCache] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._wallets = wallet_ledger
        self._storage = transaction_storage
        self._settings = settings or get_settings().ledger
        self._validator = validator or TransactionValidator(self._settings)
        self._audit = audit_logger or AuditLogger()
        self._cache = cache
        self._queries = TransactionQueryExecutor(transaction_storage, self._settings)

    def _invalidate(self, user_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_for_user(user_id)

    # =========================================================================
    # LEG APPLICATION AND COMPENSATION
    # =========================================================================

    async def _compensate(
        self,
        user_id: str,
        applied: list[Leg],
        cause: Exception,
        correlation_id: UUID,
    ) -> None:
        """
        Undo applied legs, newest first.

        Raises:
            ReconciliationRequiredError: If any reversal failed
        """
        failed: list[Leg] = []
        for wallet_id, delta in reversed(applied):
            try:
                await self._wallets.apply_delta(wallet_id, user_id, -delta)
            except NotFoundError:
                # Wallet is gone, there is no balance left to repair
                logger.warning(
                    "compensation_wallet_missing",
                    user_id=user_id,
                    wallet_id=str(wallet_id),
                    correlation_id=str(correlation_id),
                )
            except LedgerError as e:
                logger.error(
                    "compensation_leg_failed",
                    user_id=user_id,
                    wallet_id=str(wallet_id),
                    error=str(e),
                    correlation_id=str(correlation_id),
                )
                failed.append((wallet_id, delta))

        if failed:
            await self._audit.log(AuditEventBuilder.reconciliation_required(
                user_id=user_id,
                failed_legs=failed,
                cause=str(cause),
                correlation_id=correlation_id,
            ))
            raise ReconciliationRequiredError(
                "Balance compensation failed; manual reconciliation required",
                details={
                    "correlation_id": str(correlation_id),
                    "unreversed_legs": [[str(w), str(d)] for w, d in failed],
                },
            ) from cause

        await self._audit.log(AuditEventBuilder.compensation_applied(
            user_id=user_id,
            legs=[(w, -d) for w, d in reversed(applied)],
            cause=str(cause),
            correlation_id=correlation_id,
        ))

    async def _apply_legs(
        self,
        user_id: str,
        legs: list[Leg],
        correlation_id: UUID,
        transaction_id: Optional[UUID] = None,
        skipped: Optional[list[UUID]] = None,
    ) -> list[Leg]:
        """
        Apply legs in order, compensating on the first failure.

        When a `skipped` list is given, a leg whose wallet no longer exists
        is recorded there (and audited as a dangling reference) instead of
        failing the sequence.

        Returns:
            The legs actually applied
        """
        applied: list[Leg] = []
        for wallet_id, delta in legs:
            if delta == 0:
                continue
            try:
                await self._wallets.apply_delta(wallet_id, user_id, delta)
            except NotFoundError as e:
                if skipped is not None:
                    skipped.append(wallet_id)
                    logger.warning(
                        "dangling_wallet_reference",
                        user_id=user_id,
                        wallet_id=str(wallet_id),
                        transaction_id=str(transaction_id),
                    )
                    await self._audit.log(AuditEventBuilder.dangling_wallet_reference(
                        user_id=user_id,
                        transaction_id=transaction_id,
                        wallet_id=wallet_id,
                        correlation_id=correlation_id,
                    ))
                    continue
                await self._compensate(user_id, applied, e, correlation_id)
                raise
            except LedgerError as e:
                await self._compensate(user_id, applied, e, correlation_id)
                raise
            applied.append((wallet_id, delta))
        return applied

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _validate(self, fields: dict[str, Any]) -> None:
        result = self._validator.ensure_valid(
            transaction_type=fields["type"],
            amount=fields["amount"],
            wallet_id=fields["wallet_id"],
            to_wallet_id=fields.get("to_wallet_id"),
            category=fields.get("category"),
            date=fields.get("date"),
        )
        for warning in result.warnings:
            logger.warning("transaction_validation_warning", message=warning)

    async def _require_wallets(self, user_id: str, fields: dict[str, Any]) -> None:
        await self._wallets.get_wallet(user_id, fields["wallet_id"])
        if fields["type"] == TransactionType.TRANSFER:
            await self._wallets.get_wallet(user_id, fields["to_wallet_id"])

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def create(
        self,
        user_id: str,
        payload: TransactionCreate,
        *,
        recurring_rule_id: Optional[UUID] = None,
        scheduled_for: Optional[datetime] = None,
        is_user_action: bool = True,
    ) -> Transaction:
        """
        Record a transaction and apply its balance effect.

        Raises:
            ValidationError: Invalid shape; nothing was written
            NotFoundError: A referenced wallet is absent or foreign
            DependencyFailureError: Storage failed; applied legs were reversed
            ReconciliationRequiredError: Storage failed and reversal failed too
        """
        fields = payload.model_dump()
        self._validate(fields)
        await self._require_wallets(user_id, fields)

        tags = payload.tags
        if tags is None:
            tags = (
                suggest_tags(payload.merchant, payload.notes, payload.category)
                if payload.merchant or payload.notes
                else []
            )

        transaction = _build_transaction(
            user_id=user_id,
            type=payload.type,
            amount=payload.amount,
            wallet_id=payload.wallet_id,
            to_wallet_id=payload.to_wallet_id,
            category=payload.category,
            subcategory=payload.subcategory,
            merchant=payload.merchant,
            notes=payload.notes,
            tags=tags,
            date=payload.date or utc_now(),
            currency=self._settings.currency,
            is_recurring=recurring_rule_id is not None,
            recurring_rule_id=recurring_rule_id,
            scheduled_for=scheduled_for,
        )

        correlation_id = create_correlation_id()
        legs = balance_effects(transaction)
        applied = await self._apply_legs(user_id, legs, correlation_id)

        try:
            saved = await self._storage.save_transaction(transaction)
        except StorageError as e:
            await self._compensate(user_id, applied, e, correlation_id)
            raise DependencyFailureError(
                "Transaction could not be saved",
                details={"correlation_id": str(correlation_id)},
            ) from e

        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.transaction_created(
            user_id=user_id,
            transaction_id=saved.id,
            transaction_type=saved.type.value,
            amount=saved.amount,
            legs=legs,
            correlation_id=correlation_id,
            is_user_action=is_user_action,
        ))
        return saved

    async def get(self, user_id: str, transaction_id: UUID) -> Transaction:
        with storage_errors("Transaction"):
            transaction = await self._storage.get_transaction(transaction_id, user_id)
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    async def update(
        self,
        user_id: str,
        transaction_id: UUID,
        patch: TransactionUpdate,
    ) -> Transaction:
        """
        Apply a patch, moving balances from the old effect to the new one.

        Fields absent from the patch keep their old values. Switching the
        type drops the field the new type forbids unless the patch sets it.
        """
        old = await self.get(user_id, transaction_id)
        changes = patch.changes()
        if not changes:
            return old

        merged = old.model_dump()
        merged.update(changes)
        if "type" in changes and changes["type"] != old.type:
            if changes["type"] == TransactionType.TRANSFER:
                if "category" not in changes:
                    merged["category"] = None
            elif "to_wallet_id" not in changes:
                merged["to_wallet_id"] = None

        if merged.get("tags") is None:
            merged["tags"] = []

        self._validate(merged)
        await self._require_wallets(user_id, merged)
        updated = _build_transaction(**merged)

        correlation_id = create_correlation_id()
        balance_changed = any(
            getattr(old, name) != getattr(updated, name) for name in _BALANCE_FIELDS
        )
        legs = reversed_effects(old) + balance_effects(updated) if balance_changed else []
        applied = await self._apply_legs(user_id, legs, correlation_id, transaction_id)

        try:
            saved = await self._storage.update_transaction(updated)
        except StorageError as e:
            await self._compensate(user_id, applied, e, correlation_id)
            raise DependencyFailureError(
                "Transaction could not be updated",
                details={"correlation_id": str(correlation_id)},
            ) from e

        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.transaction_updated(
            user_id=user_id,
            transaction_id=transaction_id,
            changes=changes,
            legs=legs,
            correlation_id=correlation_id,
        ))
        return saved

    async def delete(self, user_id: str, transaction_id: UUID) -> list[str]:
        """
        Reverse a transaction's effect and remove it.

        A wallet deleted in the meantime does not block the deletion.

        Returns:
            Warnings for the caller (dangling wallet references)
        """
        old = await self.get(user_id, transaction_id)
        correlation_id = create_correlation_id()
        skipped: list[UUID] = []
        applied = await self._apply_legs(
            user_id, reversed_effects(old), correlation_id, transaction_id, skipped
        )

        try:
            deleted = await self._storage.delete_transaction(transaction_id, user_id)
        except StorageError as e:
            await self._compensate(user_id, applied, e, correlation_id)
            raise DependencyFailureError(
                "Transaction could not be deleted",
                details={"correlation_id": str(correlation_id)},
            ) from e
        if not deleted:
            # Removed concurrently; undo our reversal
            cause = NotFoundError("Transaction", transaction_id)
            await self._compensate(user_id, applied, cause, correlation_id)
            raise cause

        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            legs=applied,
            correlation_id=correlation_id,
        ))
        return [f"Wallet {wallet_id} not found; its balance was not adjusted" for wallet_id in skipped]

    async def list(self, user_id: str, query: TransactionQuery) -> TransactionPage:
        return await self._queries.execute(user_id, query)

    async def stats(
        self,
        user_id: str,
        filters: Optional[TransactionFilter] = None,
    ) -> TransactionStats:
        return await self._queries.stats(user_id, filters)

    def suggest(
        self,
        merchant: Optional[str] = None,
        notes: Optional[str] = None,
        category: Optional[str] = None,
    ) -> dict:
        """Suggested category and tags for free text."""
        category = category or categorize_transaction(merchant, notes)
        return {
            "category": category,
            "tags": suggest_tags(merchant, notes, category),
        }
