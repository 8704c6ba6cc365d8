"""
Component Wiring for Wallet Ledger

This module ties together all the components: storage, audit logging,
the response cache, the engines and the scheduler.

DESIGN DECISION: Every collaborator is created here exactly once per
process and injected. Nothing in the engine reaches for a global, so tests
build an isolated set of components per test and the HTTP app receives the
same set it was started with.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from ledger.audit import AuditLogger
from ledger.config import Settings, get_settings
from ledger.engine import (
    BudgetAggregator,
    BudgetService,
    RecurringRuleService,
    RecurringScheduler,
    TransactionEngine,
    WalletLedger,
)
from ledger.models.ledger import utc_now
from ledger.services.cache import ResponseCache
from ledger.services.notifications import (
    LoggingNotificationService,
    NotificationServiceInterface,
    SmtpNotificationService,
)
from ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryClient,
    InMemoryRecurringRuleStorage,
    InMemoryTransactionStorage,
    InMemoryWalletStorage,
)
from ledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)


@dataclass
class LedgerComponents:
    """Everything the HTTP surface and the scheduler need."""

    settings: Settings
    client: InMemoryClient
    audit_logger: AuditLogger
    cache: ResponseCache
    notifier: NotificationServiceInterface
    wallets: WalletLedger
    transactions: TransactionEngine
    recurring: RecurringRuleService
    scheduler: RecurringScheduler
    budget_aggregator: BudgetAggregator
    budgets: BudgetService


def create_app_components(
    settings: Optional[Settings] = None,
    client: Optional[InMemoryClient] = None,
    notifier: Optional[NotificationServiceInterface] = None,
    clock: Callable[[], datetime] = utc_now,
) -> LedgerComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (defaults to get_settings())
        client: Shared storage client (a fresh in-memory one by default)
        notifier: Alert transport (SMTP when enabled, log-only otherwise)
        clock: Source of "now" for rules and the scheduler
    """
    settings = settings or get_settings()
    ledger_settings = settings.ledger
    client = client or InMemoryClient()

    wallet_storage = InMemoryWalletStorage(client)
    transaction_storage = InMemoryTransactionStorage(client)
    budget_storage = InMemoryBudgetStorage(client)
    rule_storage = InMemoryRecurringRuleStorage(client)
    audit_logger = AuditLogger(InMemoryAuditStorage(client))

    cache = ResponseCache(ttl_seconds=ledger_settings.cache_ttl_seconds)

    if notifier is None:
        notification_settings = settings.notifications
        if notification_settings.enabled:
            notifier = SmtpNotificationService(
                notification_settings,
                currency=ledger_settings.currency,
            )
        else:
            notifier = LoggingNotificationService()

    validator = TransactionValidator(ledger_settings)
    wallets = WalletLedger(
        wallet_storage,
        transaction_storage,
        rule_storage,
        audit_logger=audit_logger,
        cache=cache,
    )
    transactions = TransactionEngine(
        wallets,
        transaction_storage,
        validator=validator,
        audit_logger=audit_logger,
        cache=cache,
        settings=ledger_settings,
    )
    recurring = RecurringRuleService(
        rule_storage,
        wallets,
        validator=validator,
        audit_logger=audit_logger,
        cache=cache,
        clock=clock,
    )
    scheduler = RecurringScheduler(
        rule_storage,
        transactions,
        transaction_storage,
        settings=settings.scheduler,
        audit_logger=audit_logger,
        clock=clock,
    )
    aggregator = BudgetAggregator(budget_storage, transaction_storage, audit_logger)
    budgets = BudgetService(
        budget_storage,
        aggregator,
        notifier=notifier,
        audit_logger=audit_logger,
        cache=cache,
        settings=ledger_settings,
    )

    logger.info(
        "components_created",
        notifier=type(notifier).__name__,
        cache_ttl_seconds=ledger_settings.cache_ttl_seconds,
    )

    return LedgerComponents(
        settings=settings,
        client=client,
        audit_logger=audit_logger,
        cache=cache,
        notifier=notifier,
        wallets=wallets,
        transactions=transactions,
        recurring=recurring,
        scheduler=scheduler,
        budget_aggregator=aggregator,
        budgets=budgets,
    )
