"""
Audit Models for Wallet Ledger

Every balance-affecting action in the system is logged for audit purposes.
This provides:
1. Complete traceability of every wallet mutation
2. Debugging information when things go wrong
3. A trail to reconcile balances by hand if compensation ever fails
4. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every mutating operation of the ledger has its own event type.
    """
    # Wallets
    WALLET_CREATED = "wallet_created"
    WALLET_UPDATED = "wallet_updated"
    WALLET_RECOMPUTED = "wallet_recomputed"
    WALLET_DELETED = "wallet_deleted"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    COMPENSATION_APPLIED = "compensation_applied"
    RECONCILIATION_REQUIRED = "reconciliation_required"
    DANGLING_WALLET_REFERENCE = "dangling_wallet_reference"

    # Recurring rules
    RECURRING_RULE_CREATED = "recurring_rule_created"
    RECURRING_RULE_UPDATED = "recurring_rule_updated"
    RECURRING_RULE_DELETED = "recurring_rule_deleted"
    RECURRING_MATERIALIZED = "recurring_materialized"
    RECURRING_MATERIALIZATION_FAILED = "recurring_materialization_failed"
    SCHEDULER_TICK_COMPLETED = "scheduler_tick_completed"
    SCHEDULER_TICK_SKIPPED = "scheduler_tick_skipped"
    SCHEDULER_TICK_TIMED_OUT = "scheduler_tick_timed_out"

    # Budgets
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    BUDGET_ALERT_TRIGGERED = "budget_alert_triggered"

    # Data quality
    DATA_QUALITY_WARNING = "data_quality_warning"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - who and what is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Owning user of the entity"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'wallet', 'transaction', 'budget')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a transfer and its compensation)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user request (vs. the scheduler)?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


def _money(value) -> str:
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(transaction, correlation_id)
        event = AuditEventBuilder.reconciliation_required(user_id, legs, error, correlation_id)
    """

    @staticmethod
    def wallet_created(
        user_id: str,
        wallet_id: UUID,
        name: str,
        opening_balance,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_CREATED,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            description=f"Wallet created: {name}",
            details={"opening_balance": _money(opening_balance)},
            is_user_action=True,
        )

    @staticmethod
    def wallet_updated(
        user_id: str,
        wallet_id: UUID,
        changes: dict,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_UPDATED,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            description="Wallet updated",
            details={key: str(value) for key, value in changes.items()},
            is_user_action=True,
        )

    @staticmethod
    def wallet_recomputed(
        user_id: str,
        wallet_id: UUID,
        opening_balance,
        net,
        current_balance,
        transaction_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_RECOMPUTED,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            description=f"Balance recomputed from {transaction_count} transactions",
            details={
                "opening_balance": _money(opening_balance),
                "net": _money(net),
                "current_balance": _money(current_balance),
            },
        )

    @staticmethod
    def wallet_deleted(user_id: str, wallet_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_DELETED,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            description="Wallet deleted",
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        user_id: str,
        transaction_id: UUID,
        transaction_type: str,
        amount,
        legs: list[tuple[UUID, Any]],
        correlation_id: UUID,
        is_user_action: bool = True,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{transaction_type} of {amount} recorded",
            details={
                "type": transaction_type,
                "amount": _money(amount),
                "legs": [[str(w), _money(d)] for w, d in legs],
            },
            is_user_action=is_user_action,
        )

    @staticmethod
    def transaction_updated(
        user_id: str,
        transaction_id: UUID,
        changes: dict,
        legs: list[tuple[UUID, Any]],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction updated",
            details={
                "changes": {key: str(value) for key, value in changes.items()},
                "legs": [[str(w), _money(d)] for w, d in legs],
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        user_id: str,
        transaction_id: UUID,
        legs: list[tuple[UUID, Any]],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction deleted",
            details={"legs": [[str(w), _money(d)] for w, d in legs]},
            is_user_action=True,
        )

    @staticmethod
    def compensation_applied(
        user_id: str,
        legs: list[tuple[UUID, Any]],
        cause: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMPENSATION_APPLIED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Reversed {len(legs)} balance legs after a failed write",
            details={"legs": [[str(w), _money(d)] for w, d in legs]},
            error_message=cause,
        )

    @staticmethod
    def reconciliation_required(
        user_id: str,
        failed_legs: list[tuple[UUID, Any]],
        cause: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_REQUIRED,
            severity=AuditSeverity.CRITICAL,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Compensation failed: wallet balances may be inconsistent",
            details={"unreversed_legs": [[str(w), _money(d)] for w, d in failed_legs]},
            error_code="RECONCILIATION_REQUIRED",
            error_message=cause,
        )

    @staticmethod
    def dangling_wallet_reference(
        user_id: str,
        transaction_id: UUID,
        wallet_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DANGLING_WALLET_REFERENCE,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Wallet not found while reversing transaction",
            details={"wallet_id": str(wallet_id)},
        )

    @staticmethod
    def recurring_rule_changed(
        event_type: AuditEventType,
        user_id: str,
        rule_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            description=event_type.value.replace("_", " ").capitalize(),
            details={key: str(value) for key, value in (details or {}).items()},
            is_user_action=True,
        )

    @staticmethod
    def recurring_materialized(
        user_id: str,
        rule_id: UUID,
        transaction_id: UUID,
        next_run_at: datetime,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_MATERIALIZED,
            user_id=user_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Recurring rule materialized",
            details={
                "transaction_id": str(transaction_id),
                "next_run_at": next_run_at.isoformat(),
            },
        )

    @staticmethod
    def recurring_materialization_failed(
        user_id: str,
        rule_id: UUID,
        error_type: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_MATERIALIZATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Recurring rule could not be materialized",
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def scheduler_tick(
        event_type: AuditEventType,
        details: dict,
        correlation_id: UUID,
    ) -> AuditEvent:
        severity = {
            AuditEventType.SCHEDULER_TICK_SKIPPED: AuditSeverity.WARNING,
            AuditEventType.SCHEDULER_TICK_TIMED_OUT: AuditSeverity.ERROR,
        }.get(event_type, AuditSeverity.INFO)
        return AuditEvent(
            event_type=event_type,
            severity=severity,
            correlation_id=correlation_id,
            description=event_type.value.replace("_", " ").capitalize(),
            details=details,
        )

    @staticmethod
    def budget_changed(
        event_type: AuditEventType,
        user_id: str,
        budget_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            description=event_type.value.replace("_", " ").capitalize(),
            details={key: str(value) for key, value in (details or {}).items()},
            is_user_action=True,
        )

    @staticmethod
    def budget_alert_triggered(
        user_id: str,
        budget_id: UUID,
        category: str,
        budget_amount,
        spent_amount,
        threshold_percent: float,
        delivered: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_ALERT_TRIGGERED,
            severity=AuditSeverity.INFO if delivered else AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            description=f"{category} spending reached {threshold_percent:g}% of budget",
            details={
                "budget_amount": _money(budget_amount),
                "spent_amount": _money(spent_amount),
                "threshold_percent": threshold_percent,
                "delivered": delivered,
            },
        )

    @staticmethod
    def data_quality_warning(
        user_id: Optional[str],
        entity_type: str,
        entity_id: Optional[UUID],
        message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_QUALITY_WARNING,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=message,
            details=details or {},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
