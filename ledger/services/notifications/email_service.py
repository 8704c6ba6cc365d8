"""
Budget Alert Notifications

DESIGN DECISION: Alerts are handed to a notification collaborator behind an
interface. The ledger never depends on delivery:
1. A failed delivery never rolls back the budget edit that triggered it
2. Failures are raised as NotificationError so the caller can log and report them
3. The default implementation only logs, so development needs no SMTP server

The SMTP implementation retries with exponential backoff (tenacity) because
mail relays fail transiently. Retrying a notification is safe; retrying a
ledger write is not, which is why only this layer retries.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Callable, Optional

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from ledger.config import NotificationSettings, get_settings
from ledger.models.reports import BudgetAlert


logger = structlog.get_logger(__name__)


class NotificationError(Exception):
    """An alert could not be delivered."""
    pass


class NotificationServiceInterface(ABC):
    """Abstract interface for alert delivery."""

    @abstractmethod
    async def send_budget_alert(self, alert: BudgetAlert) -> None:
        """
        Deliver a budget alert.

        Raises:
            NotificationError: If delivery failed
        """
        pass


def render_budget_alert(alert: BudgetAlert, currency: str = "INR") -> tuple[str, str]:
    """Subject and HTML body of a budget alert email."""
    threshold = f"{alert.threshold_percent:g}"
    remaining = alert.budget_amount - alert.spent_amount
    subject = f"Budget Alert: {alert.category} spending has reached {threshold}%"
    body = f"""
      <h2>Budget Alert</h2>
      <p>Your spending in the {alert.category} category has reached {threshold}% of your budget.</p>
      <ul>
        <li>Budget Amount: {currency} {alert.budget_amount}</li>
        <li>Amount Spent: {currency} {alert.spent_amount}</li>
        <li>Remaining: {currency} {remaining}</li>
      </ul>
      <p>Please review your spending to stay within your budget.</p>
    """
    return subject, body


class LoggingNotificationService(NotificationServiceInterface):
    """
    Writes alerts to the structured log and keeps them in an outbox.

    Used when SMTP delivery is disabled.
    """

    def __init__(self):
        self.outbox: list[BudgetAlert] = []

    async def send_budget_alert(self, alert: BudgetAlert) -> None:
        self.outbox.append(alert)
        logger.info(
            "budget_alert",
            user_id=alert.user_id,
            budget_id=str(alert.budget_id),
            category=alert.category,
            budget_amount=str(alert.budget_amount),
            spent_amount=str(alert.spent_amount),
            threshold_percent=alert.threshold_percent,
        )


def _email_from_user_id(user_id: str) -> Optional[str]:
    return user_id if "@" in user_id else None


class SmtpNotificationService(NotificationServiceInterface):
    """
    Sends alert emails over SMTP.

    Flow:
    1. Resolve the recipient address of the alert's user
    2. Render the alert email
    3. Send it from a worker thread (smtplib blocks), retrying on failure
    """

    def __init__(
        self,
        settings: Optional[NotificationSettings] = None,
        recipient_resolver: Callable[[str], Optional[str]] = _email_from_user_id,
        currency: Optional[str] = None,
    ):
        self._settings = settings or get_settings().notifications
        self._resolve_recipient = recipient_resolver
        self._currency = currency or get_settings().ledger.currency

    def _build_message(self, alert: BudgetAlert, recipient: str) -> EmailMessage:
        subject, body = render_budget_alert(alert, self._currency)
        message = EmailMessage()
        message["From"] = self._settings.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body, subtype="html")
        return message

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(
            self._settings.host,
            self._settings.port,
            timeout=self._settings.timeout_seconds,
        ) as server:
            if self._settings.use_tls:
                server.starttls()
            if self._settings.username and self._settings.password:
                server.login(self._settings.username, self._settings.password)
            server.send_message(message)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _deliver(self, message: EmailMessage) -> None:
        await asyncio.to_thread(self._send, message)

    async def send_budget_alert(self, alert: BudgetAlert) -> None:
        recipient = self._resolve_recipient(alert.user_id)
        if not recipient:
            raise NotificationError(f"No email address for user {alert.user_id}")

        message = self._build_message(alert, recipient)
        try:
            await self._deliver(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery failed: {e}") from e

        logger.info(
            "budget_alert_sent",
            user_id=alert.user_id,
            budget_id=str(alert.budget_id),
            recipient=recipient,
        )
