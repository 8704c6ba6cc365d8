"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SHAPE VALIDATION:
- Positive amount
- Category presence for Income/Expense
- Destination wallet rules for Transfer
- Errors here reject the request before any write is attempted

STAGE 2 - SEMANTIC VALIDATION:
- Far-future date detection
- Absurd amount detection
- Issues here are warnings and never reject

IMPORTANT: Validation NEVER silently fixes issues.
It reports every issue at once so the caller can fix the request.
"""

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from uuid import UUID

from ledger.config import LedgerSettings, get_settings
from ledger.errors import ValidationError
from ledger.models.ledger import (
    TransactionType,
    ValidationIssue,
    ValidationResult,
    ensure_utc,
    utc_now,
)


class TransactionValidator:
    """
    Validates a transaction draft through a two-stage pipeline.

    Stage 1: Shape validation (errors)
    Stage 2: Semantic validation (warnings)
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _validate_shape(
        self,
        transaction_type: TransactionType,
        amount: Any,
        wallet_id: Optional[UUID],
        to_wallet_id: Optional[UUID],
        category: Optional[str],
    ) -> list[ValidationIssue]:
        issues = []

        try:
            value = Decimal(str(amount)) if amount is not None else None
        except InvalidOperation:
            value = None

        if value is None or not value.is_finite():
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be a number",
                severity="error",
            ))
        elif value <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
            ))

        if wallet_id is None:
            issues.append(ValidationIssue(
                field="walletId",
                issue_type="missing",
                message="Wallet is required",
                severity="error",
            ))

        if transaction_type == TransactionType.TRANSFER:
            if to_wallet_id is None:
                issues.append(ValidationIssue(
                    field="toWalletId",
                    issue_type="missing",
                    message="Destination wallet is required for transfers",
                    severity="error",
                ))
            elif to_wallet_id == wallet_id:
                issues.append(ValidationIssue(
                    field="toWalletId",
                    issue_type="invalid_value",
                    message="Cannot transfer a wallet to itself",
                    severity="error",
                ))
        else:
            if not category or not category.strip():
                issues.append(ValidationIssue(
                    field="category",
                    issue_type="missing",
                    message="Category is required for Income/Expense transactions",
                    severity="error",
                ))
            if to_wallet_id is not None:
                issues.append(ValidationIssue(
                    field="toWalletId",
                    issue_type="forbidden",
                    message="Only transfers may have a destination wallet",
                    severity="error",
                ))

        return issues

    def _validate_semantic(
        self,
        amount: Any,
        date: Optional[datetime],
    ) -> list[ValidationIssue]:
        issues = []

        if date is not None:
            tolerance = timedelta(days=self._settings.future_date_tolerance_days)
            if ensure_utc(date) > utc_now() + tolerance:
                issues.append(ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message=f"Date is more than {tolerance.days} days in the future",
                    severity="warning",
                ))

        try:
            if Decimal(str(amount)) > Decimal(str(self._settings.max_transaction_amount)):
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="suspicious_amount",
                    message="Amount is unusually large",
                    severity="warning",
                ))
        except (InvalidOperation, TypeError):
            # Already reported by the shape stage
            pass

        return issues

    def validate(
        self,
        transaction_type: TransactionType,
        amount: Any,
        wallet_id: Optional[UUID],
        to_wallet_id: Optional[UUID] = None,
        category: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Run both stages.

        The semantic stage is skipped when the shape stage found errors.
        """
        issues = self._validate_shape(
            transaction_type, amount, wallet_id, to_wallet_id, category
        )
        if not any(issue.severity == "error" for issue in issues):
            issues.extend(self._validate_semantic(amount, date))
        return ValidationResult(issues=issues)

    def ensure_valid(self, **draft) -> ValidationResult:
        """
        Validate and raise on errors.

        Raises:
            ValidationError: If any error-level issue was found
        """
        result = self.validate(**draft)
        if result.has_errors:
            raise ValidationError.from_issues(result.issues)
        return result
