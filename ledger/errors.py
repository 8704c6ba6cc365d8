"""
Domain Errors for Wallet Ledger

Every failure a caller can observe is one of these. Storage exceptions are
translated into them at the engine boundary; the HTTP layer maps them to
status codes.

Validation and not-found errors are deterministic and always carry enough
detail for the caller to fix the request. Dependency failures and
reconciliation conditions never expose internal detail to clients.
"""

from contextlib import contextmanager
from typing import Any, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from ledger.models.ledger import ValidationIssue
from ledger.services.storage.interface import RecordNotFoundError, StorageError


class LedgerError(Exception):
    """Base exception for ledger operations."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(LedgerError):
    """A required field is missing or a value is invalid; nothing was attempted."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> "ValidationError":
        errors = [issue for issue in issues if issue.severity == "error"]
        message = "; ".join(issue.message for issue in errors) or "Invalid request"
        return cls(message, errors)

    @classmethod
    def from_pydantic(cls, error: PydanticValidationError) -> "ValidationError":
        """Convert a pydantic model validation failure."""
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in detail["loc"]) or "body",
                issue_type=detail["type"],
                message=detail["msg"],
                severity="error",
            )
            for detail in error.errors()
        ]
        return cls.from_issues(issues)


class InvalidCadenceError(ValidationError):
    """Cadence outside the supported set."""

    def __init__(self, cadence: Any):
        super().__init__(f"Invalid cadence: {cadence!r} (expected 'weekly' or 'monthly')")
        self.cadence = cadence


class NotFoundError(LedgerError):
    """Entity absent or not owned by the caller."""

    def __init__(self, entity: str, entity_id: Optional[UUID] = None):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class DuplicateBudgetError(LedgerError):
    """A budget already exists for this category and period."""

    def __init__(self, category: str, month: int, year: int):
        super().__init__(
            f"Budget already exists for {category} in {month:02d}/{year}"
        )
        self.category = category
        self.month = month
        self.year = year


class ConstraintViolationError(LedgerError):
    """The operation would break a referential rule (e.g. deleting a wallet in use)."""
    pass


class DependencyFailureError(LedgerError):
    """Storage or notification collaborator failed."""
    pass


class ReconciliationRequiredError(DependencyFailureError):
    """
    A compensating reversal failed after a partial write.

    CRITICAL: wallet balances may no longer match their transactions.
    The unreversed legs are in `details` and in the audit log.
    """
    pass


@contextmanager
def storage_errors(entity: str):
    """
    Translate storage exceptions raised inside the block.

    RecordNotFoundError becomes NotFoundError(entity); any other
    StorageError becomes DependencyFailureError.
    """
    try:
        yield
    except RecordNotFoundError as e:
        raise NotFoundError(entity) from e
    except StorageError as e:
        raise DependencyFailureError(
            f"{entity} storage unavailable",
            details={"error": str(e)},
        ) from e
