"""
Budget Aggregation and Budget Lifecycle

DESIGN DECISION: Spending is always recomputed from the transaction stream.
The `spent` field stored on a budget is only a hint refreshed on budget
writes; summaries and alerts never trust it.

Alerts are edge-triggered on budget edits: changing a budget's amount or
threshold re-evaluates it. New transactions do not trigger alerts.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from ledger.audit import AuditLogger
from ledger.config import LedgerSettings, get_settings
from ledger.errors import (
    DependencyFailureError,
    DuplicateBudgetError,
    NotFoundError,
    ValidationError,
    storage_errors,
)
from ledger.models.audit import AuditEventBuilder, AuditEventType
from ledger.models.ledger import (
    Budget,
    BudgetCreate,
    BudgetUpdate,
    TransactionFilter,
    TransactionType,
)
from ledger.models.reports import BudgetAlert, BudgetSummaryItem, BudgetUpdateResult
from ledger.services.cache import ResponseCache
from ledger.services.notifications import (
    LoggingNotificationService,
    NotificationError,
    NotificationServiceInterface,
)
from ledger.services.storage import (
    BudgetStorageInterface,
    DuplicateRecordError,
    StorageError,
    TransactionStorageInterface,
)


logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


def usage_percentage(spent: Decimal, amount: Decimal) -> int:
    """spent/amount as a whole percentage, half-up rounded and capped at 100."""
    if amount <= 0:
        return 0
    percentage = (spent / amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return min(int(percentage), 100)


class BudgetAggregator:
    """
    Read-only: computes spent-vs-budgeted per category for a month.

    Never mutates transactions, wallets or budgets.
    """

    def __init__(
        self,
        budget_storage: BudgetStorageInterface,
        transaction_storage: TransactionStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._budgets = budget_storage
        self._transactions = transaction_storage
        self._audit = audit_logger or AuditLogger()

    async def _expense_totals(
        self,
        user_id: str,
        month: int,
        year: int,
        category: Optional[str] = None,
    ) -> dict[str, Decimal]:
        filters = TransactionFilter.for_month(
            month, year, type=TransactionType.EXPENSE, category=category
        )
        with storage_errors("Transaction"):
            expenses = await self._transactions.find_transactions(user_id, filters)

        totals: dict[str, Decimal] = {}
        for transaction in expenses:
            try:
                amount = Decimal(str(transaction.amount))
                if not amount.is_finite():
                    raise InvalidOperation(transaction.amount)
            except (InvalidOperation, TypeError, ValueError):
                # Malformed stored amount counts as zero
                logger.warning(
                    "malformed_transaction_amount",
                    user_id=user_id,
                    transaction_id=str(transaction.id),
                    amount=repr(transaction.amount),
                )
                await self._audit.log_data_quality_warning(
                    user_id=user_id,
                    entity_type="transaction",
                    entity_id=transaction.id,
                    message="Malformed amount treated as zero in budget aggregation",
                    details={"amount": repr(transaction.amount)},
                )
                amount = Decimal("0")
            key = transaction.category or ""
            totals[key] = totals.get(key, Decimal("0")) + amount
        return totals

    async def spent_for(self, user_id: str, category: str, month: int, year: int) -> Decimal:
        totals = await self._expense_totals(user_id, month, year, category=category)
        return totals.get(category, Decimal("0"))

    async def summarize(self, user_id: str, month: int, year: int) -> list[BudgetSummaryItem]:
        """
        One line per budget of the period.

        Categories with spending but no budget are left out.
        """
        with storage_errors("Budget"):
            budgets = await self._budgets.list_budgets(user_id, month=month, year=year)
        totals = await self._expense_totals(user_id, month, year)

        summary = []
        for budget in budgets:
            budgeted = Decimal(budget.amount)
            spent = totals.get(budget.category, Decimal("0"))
            summary.append(BudgetSummaryItem(
                budget_id=budget.id,
                category=budget.category,
                budgeted=budgeted.quantize(CENTS, rounding=ROUND_HALF_UP),
                spent=spent.quantize(CENTS, rounding=ROUND_HALF_UP),
                remaining=(budgeted - spent).quantize(CENTS, rounding=ROUND_HALF_UP),
                percentage=usage_percentage(spent, budgeted),
            ))
        return summary


class BudgetService:
    """Budget CRUD with edit-triggered alerts."""

    def __init__(
        self,
        budget_storage: BudgetStorageInterface,
        aggregator: BudgetAggregator,
        notifier: Optional[NotificationServiceInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        cache: Optional[ResponseCache] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._budgets = budget_storage
        self._aggregator = aggregator
        self._notifier = notifier or LoggingNotificationService()
        self._audit = audit_logger or AuditLogger()
        self._cache = cache
        self._settings = settings or get_settings().ledger

    def _invalidate(self, user_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_for_user(user_id)

    async def create(self, user_id: str, payload: BudgetCreate) -> Budget:
        """
        Raises:
            DuplicateBudgetError: A budget exists for this category and month
        """
        with storage_errors("Budget"):
            existing = await self._budgets.find_budget(
                user_id, payload.category, payload.month, payload.year
            )
        if existing is not None:
            raise DuplicateBudgetError(payload.category, payload.month, payload.year)

        spent = await self._aggregator.spent_for(
            user_id, payload.category, payload.month, payload.year
        )
        threshold = payload.alert_threshold
        if threshold is None:
            threshold = self._settings.default_alert_threshold

        budget = Budget(
            user_id=user_id,
            category=payload.category,
            amount=payload.amount,
            month=payload.month,
            year=payload.year,
            alert_threshold=threshold,
            spent=spent,
        )
        try:
            budget = await self._budgets.save_budget(budget)
        except DuplicateRecordError as e:
            # Lost a race with a concurrent create
            raise DuplicateBudgetError(payload.category, payload.month, payload.year) from e
        except StorageError as e:
            raise DependencyFailureError("Budget storage unavailable", details={"error": str(e)}) from e

        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.budget_changed(
            AuditEventType.BUDGET_CREATED,
            user_id,
            budget.id,
            {"category": budget.category, "amount": budget.amount,
             "month": budget.month, "year": budget.year},
        ))
        return budget

    async def list(
        self,
        user_id: str,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[Budget]:
        with storage_errors("Budget"):
            return await self._budgets.list_budgets(user_id, month=month, year=year)

    async def get(self, user_id: str, budget_id: UUID) -> Budget:
        with storage_errors("Budget"):
            budget = await self._budgets.get_budget(budget_id, user_id)
        if budget is None:
            raise NotFoundError("Budget", budget_id)
        return budget

    async def update(
        self,
        user_id: str,
        budget_id: UUID,
        patch: BudgetUpdate,
    ) -> BudgetUpdateResult:
        """
        Edit amount and/or threshold, then re-evaluate the alert.

        A failed notification is logged and reported in the result; the edit
        is kept.
        """
        budget = await self.get(user_id, budget_id)
        changes = patch.model_dump(exclude_unset=True, exclude_none=True)

        spent = await self._aggregator.spent_for(
            user_id, budget.category, budget.month, budget.year
        )
        try:
            updated = Budget.model_validate({**budget.model_dump(), **changes, "spent": spent})
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

        with storage_errors("Budget"):
            updated = await self._budgets.update_budget(updated)

        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.budget_changed(
            AuditEventType.BUDGET_UPDATED,
            user_id,
            budget_id,
            changes,
        ))

        result = BudgetUpdateResult(budget=updated)
        threshold_amount = Decimal(updated.amount) * Decimal(str(updated.alert_threshold))
        if spent >= threshold_amount:
            result.alert_triggered = True
            result.alert_delivered = await self._send_alert(updated, spent)
        return result

    async def _send_alert(self, budget: Budget, spent: Decimal) -> bool:
        threshold_percent = round(budget.alert_threshold * 100, 2)
        alert = BudgetAlert(
            user_id=budget.user_id,
            budget_id=budget.id,
            category=budget.category,
            budget_amount=budget.amount,
            spent_amount=spent,
            threshold_percent=threshold_percent,
            month=budget.month,
            year=budget.year,
        )
        delivered = True
        try:
            await self._notifier.send_budget_alert(alert)
        except NotificationError as e:
            delivered = False
            logger.error(
                "budget_alert_delivery_failed",
                user_id=budget.user_id,
                budget_id=str(budget.id),
                error=str(e),
            )
            await self._audit.log_external_service_error(
                service="notifications",
                error_message=str(e),
                user_id=budget.user_id,
            )

        await self._audit.log(AuditEventBuilder.budget_alert_triggered(
            user_id=budget.user_id,
            budget_id=budget.id,
            category=budget.category,
            budget_amount=budget.amount,
            spent_amount=spent,
            threshold_percent=threshold_percent,
            delivered=delivered,
        ))
        return delivered

    async def delete(self, user_id: str, budget_id: UUID) -> None:
        with storage_errors("Budget"):
            deleted = await self._budgets.delete_budget(budget_id, user_id)
        if not deleted:
            raise NotFoundError("Budget", budget_id)
        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.budget_changed(
            AuditEventType.BUDGET_DELETED,
            user_id,
            budget_id,
        ))
