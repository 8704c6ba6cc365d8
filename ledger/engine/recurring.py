"""
Recurring Rules and Scheduler

DESIGN DECISION: A rule's next_run_at is the single source of truth for
"what is due". Each tick:
1. Selects rules with next_run_at <= now that have not ended
2. Materializes each through the transaction engine (so balances move
   through the same compensated path as user writes)
3. Advances next_run_at with a compare-and-swap on the value it read

Rules are independent: one rule failing is recorded in the tick report and
leaves that rule's next_run_at untouched so the next tick retries it.

Ticks never overlap. A tick that finds another one in flight is skipped,
and a tick exceeding its timeout is reported and left to finish in the
background (cancelling it could cut a balance write in half).

Idempotency guard (on by default): every materialized transaction records
the slot it was created for (scheduled_for = the rule's next_run_at at the
time). A crash between materializing and advancing leaves a transaction for
the current slot; the next tick sees it and only advances the rule instead
of creating a duplicate. The guard matches the slot exactly, so catching up
on missed slots with anchor_to_schedule creates one transaction per slot.
"""

import asyncio
import contextlib
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

import structlog
from dateutil.relativedelta import relativedelta
from pydantic import ValidationError as PydanticValidationError

from ledger.audit import AuditLogger, create_correlation_id
from ledger.config import SchedulerSettings, get_settings
from ledger.engine.transactions import TransactionEngine
from ledger.engine.wallets import WalletLedger
from ledger.errors import InvalidCadenceError, NotFoundError, ValidationError, storage_errors
from ledger.models.audit import AuditEventBuilder, AuditEventType
from ledger.models.ledger import (
    Cadence,
    RecurringRule,
    RecurringRuleCreate,
    RecurringRuleUpdate,
    TransactionCreate,
    TransactionFilter,
    TransactionType,
    ensure_utc,
    utc_now,
)
from ledger.models.reports import MaterializationFailure, TickReport
from ledger.services.cache import ResponseCache
from ledger.services.storage import RecurringRuleStorageInterface, TransactionStorageInterface
from ledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)


def parse_cadence(cadence) -> Cadence:
    """
    Raises:
        InvalidCadenceError: For anything but weekly/monthly
    """
    try:
        return Cadence(cadence)
    except ValueError as e:
        raise InvalidCadenceError(cadence) from e


def next_run_date(cadence, from_: datetime) -> datetime:
    """
    The slot after `from_`.

    weekly: +7 days. monthly: +1 calendar month, clamped to the last day of
    a shorter month (Jan 31 -> Feb 28/29).
    """
    cadence = parse_cadence(cadence)
    if cadence == Cadence.WEEKLY:
        return from_ + timedelta(days=7)
    return from_ + relativedelta(months=1)


# =============================================================================
# RULE LIFECYCLE
# =============================================================================

class RecurringRuleService:
    """CRUD for recurring rules of one user at a time."""

    def __init__(
        self,
        rule_storage: RecurringRuleStorageInterface,
        wallet_ledger: WalletLedger,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        cache: Optional[ResponseCache] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._rules = rule_storage
        self._wallets = wallet_ledger
        self._validator = validator or TransactionValidator()
        self._audit = audit_logger or AuditLogger()
        self._cache = cache
        self._clock = clock

    def _invalidate(self, user_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_for_user(user_id)

    async def create(self, user_id: str, payload: RecurringRuleCreate) -> RecurringRule:
        """
        First slot is one cadence step after start_date (or now).
        """
        cadence = parse_cadence(payload.cadence)
        self._validator.ensure_valid(
            transaction_type=payload.type,
            amount=payload.amount,
            wallet_id=payload.wallet_id,
            to_wallet_id=payload.to_wallet_id,
            category=payload.category,
        )
        await self._wallets.get_wallet(user_id, payload.wallet_id)
        if payload.type == TransactionType.TRANSFER:
            await self._wallets.get_wallet(user_id, payload.to_wallet_id)

        anchor = payload.start_date or self._clock()
        try:
            rule = RecurringRule(
                user_id=user_id,
                wallet_id=payload.wallet_id,
                to_wallet_id=payload.to_wallet_id,
                type=payload.type,
                amount=payload.amount,
                category=payload.category if payload.type != TransactionType.TRANSFER else None,
                cadence=cadence,
                next_run_at=next_run_date(cadence, anchor),
                ends_at=payload.ends_at,
            )
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

        with storage_errors("Recurring rule"):
            rule = await self._rules.save_rule(rule)

        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.recurring_rule_changed(
            AuditEventType.RECURRING_RULE_CREATED,
            user_id,
            rule.id,
            {"cadence": cadence.value, "next_run_at": rule.next_run_at.isoformat()},
        ))
        return rule

    async def list(self, user_id: str) -> list[RecurringRule]:
        with storage_errors("Recurring rule"):
            return await self._rules.list_rules(user_id)

    async def get(self, user_id: str, rule_id: UUID) -> RecurringRule:
        with storage_errors("Recurring rule"):
            rule = await self._rules.get_rule(rule_id, user_id)
        if rule is None:
            raise NotFoundError("Recurring rule", rule_id)
        return rule

    async def update(
        self,
        user_id: str,
        rule_id: UUID,
        patch: RecurringRuleUpdate,
    ) -> RecurringRule:
        """
        Edit amount, category, cadence or end date.

        A cadence change recomputes next_run_at from now, not from the old slot.
        """
        rule = await self.get(user_id, rule_id)
        changes = patch.changes()
        if not changes:
            return rule

        fields = rule.model_dump()
        if changes.get("cadence") is not None:
            cadence = parse_cadence(changes["cadence"])
            fields["cadence"] = cadence
            fields["next_run_at"] = next_run_date(cadence, self._clock())
        changes.pop("cadence", None)
        if "amount" in changes and changes["amount"] is None:
            changes.pop("amount")
        fields.update(changes)

        if fields["type"] != TransactionType.TRANSFER and not fields.get("category"):
            raise ValidationError("Category is required for Income/Expense rules")

        try:
            updated = RecurringRule.model_validate(fields)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

        with storage_errors("Recurring rule"):
            updated = await self._rules.update_rule(updated)

        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.recurring_rule_changed(
            AuditEventType.RECURRING_RULE_UPDATED,
            user_id,
            rule_id,
            {**patch.changes(), "next_run_at": updated.next_run_at.isoformat()},
        ))
        return updated

    async def delete(self, user_id: str, rule_id: UUID) -> None:
        with storage_errors("Recurring rule"):
            deleted = await self._rules.delete_rule(rule_id, user_id)
        if not deleted:
            raise NotFoundError("Recurring rule", rule_id)
        self._invalidate(user_id)
        await self._audit.log(AuditEventBuilder.recurring_rule_changed(
            AuditEventType.RECURRING_RULE_DELETED,
            user_id,
            rule_id,
        ))


# =============================================================================
# SCHEDULER
# =============================================================================

class RecurringScheduler:
    """
    Turns due rules into transactions on a periodic tick.

    Usage:
        scheduler = RecurringScheduler(rules, engine, transactions)
        report = await scheduler.tick()
        scheduler.start()   # hourly background loop
        await scheduler.stop()
    """

    def __init__(
        self,
        rule_storage: RecurringRuleStorageInterface,
        transaction_engine: TransactionEngine,
        transaction_storage: TransactionStorageInterface,
        settings: Optional[SchedulerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._rules = rule_storage
        self._engine = transaction_engine
        self._transactions = transaction_storage
        self._settings = settings or get_settings().scheduler
        self._audit = audit_logger or AuditLogger()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Future] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked() or (
            self._inflight is not None and not self._inflight.done()
        )

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Process every due rule once."""
        now = ensure_utc(now) or self._clock()
        correlation_id = create_correlation_id()

        if self.busy:
            logger.warning("scheduler_tick_skipped", reason="previous tick still running")
            await self._audit.log(AuditEventBuilder.scheduler_tick(
                AuditEventType.SCHEDULER_TICK_SKIPPED,
                {"reason": "previous tick still running"},
                correlation_id,
            ))
            return TickReport(started_at=now, skipped=True)

        async with self._lock:
            report = TickReport(started_at=now)
            self._inflight = asyncio.ensure_future(self._run(now, report, correlation_id))
            try:
                await asyncio.wait_for(
                    asyncio.shield(self._inflight),
                    timeout=self._settings.tick_timeout_seconds,
                )
            except asyncio.TimeoutError:
                report.timed_out = True
                logger.error(
                    "scheduler_tick_timed_out",
                    timeout_seconds=self._settings.tick_timeout_seconds,
                    materialized=len(report.materialized),
                )
                await self._audit.log(AuditEventBuilder.scheduler_tick(
                    AuditEventType.SCHEDULER_TICK_TIMED_OUT,
                    {"timeout_seconds": self._settings.tick_timeout_seconds, "due": report.due},
                    correlation_id,
                ))
                return report.model_copy(deep=True)

        await self._audit.log(AuditEventBuilder.scheduler_tick(
            AuditEventType.SCHEDULER_TICK_COMPLETED,
            {
                "due": report.due,
                "materialized": len(report.materialized),
                "advanced_without_materializing": len(report.advanced_without_materializing),
                "failures": len(report.failures),
            },
            correlation_id,
        ))
        return report

    async def drain(self) -> None:
        """Wait for a timed-out tick still running in the background."""
        if self._inflight is not None and not self._inflight.done():
            await asyncio.wait([self._inflight])

    async def _run(self, now: datetime, report: TickReport, correlation_id: UUID) -> None:
        with storage_errors("Recurring rule"):
            due = await self._rules.find_due_rules(now)
        report.due = len(due)

        for rule in due:
            try:
                await self._process(rule, now, report, correlation_id)
            except Exception as e:
                # Isolate the failure to this rule; its next_run_at stays put
                logger.error(
                    "recurring_materialization_failed",
                    rule_id=str(rule.id),
                    user_id=rule.user_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                report.failures.append(MaterializationFailure(
                    rule_id=rule.id,
                    error_type=type(e).__name__,
                    message=str(e),
                ))
                await self._audit.log(AuditEventBuilder.recurring_materialization_failed(
                    user_id=rule.user_id,
                    rule_id=rule.id,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    correlation_id=correlation_id,
                ))

    async def _already_materialized(self, rule: RecurringRule) -> bool:
        """True when a transaction already exists for the rule's current slot."""
        with storage_errors("Transaction"):
            linked = await self._transactions.find_transactions(
                rule.user_id,
                TransactionFilter(recurring_rule_id=rule.id, scheduled_for=rule.next_run_at),
            )
        return bool(linked)

    async def _advance(
        self,
        rule: RecurringRule,
        now: datetime,
        materialized_at: Optional[datetime],
    ) -> Optional[datetime]:
        """The new next_run_at, or None when another writer advanced the rule first."""
        anchor = rule.next_run_at if self._settings.anchor_to_schedule else now
        next_run_at = next_run_date(rule.cadence, anchor)
        with storage_errors("Recurring rule"):
            advanced = await self._rules.advance_rule(
                rule.id,
                expected_next_run_at=rule.next_run_at,
                next_run_at=next_run_at,
                materialized_at=materialized_at,
            )
        if not advanced:
            logger.warning(
                "recurring_rule_advance_conflict",
                rule_id=str(rule.id),
                expected_next_run_at=rule.next_run_at.isoformat(),
            )
            return None
        return next_run_at

    async def _process(
        self,
        rule: RecurringRule,
        now: datetime,
        report: TickReport,
        correlation_id: UUID,
    ) -> None:
        if self._settings.idempotent_materialization and await self._already_materialized(rule):
            logger.info("recurring_slot_already_materialized", rule_id=str(rule.id))
            if await self._advance(rule, now, materialized_at=None):
                report.advanced_without_materializing.append(rule.id)
            return

        transaction = await self._engine.create(
            rule.user_id,
            TransactionCreate(
                type=rule.type,
                amount=rule.amount,
                wallet_id=rule.wallet_id,
                to_wallet_id=rule.to_wallet_id,
                category=rule.category,
                date=now,
            ),
            recurring_rule_id=rule.id,
            scheduled_for=rule.next_run_at,
            is_user_action=False,
        )
        report.materialized.append(transaction.id)

        next_run_at = await self._advance(rule, now, materialized_at=now)
        await self._audit.log(AuditEventBuilder.recurring_materialized(
            user_id=rule.user_id,
            rule_id=rule.id,
            transaction_id=transaction.id,
            next_run_at=next_run_at or rule.next_run_at,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    async def _loop(self) -> None:
        while True:
            try:
                report = await self.tick()
                logger.info(
                    "scheduler_tick_completed",
                    due=report.due,
                    materialized=len(report.materialized),
                    failures=len(report.failures),
                    skipped=report.skipped,
                    timed_out=report.timed_out,
                )
            except Exception as e:
                logger.error("scheduler_tick_failed", error=str(e))
            await asyncio.sleep(self._settings.interval_seconds)

    def start(self) -> None:
        """Run tick() every interval_seconds until stop()."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("scheduler_started", interval_seconds=self._settings.interval_seconds)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self.drain()
        logger.info("scheduler_stopped")
