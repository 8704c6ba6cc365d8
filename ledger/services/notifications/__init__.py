"""Notification services package."""

from ledger.services.notifications.email_service import (
    LoggingNotificationService,
    NotificationError,
    NotificationServiceInterface,
    SmtpNotificationService,
    render_budget_alert,
)

__all__ = [
    "LoggingNotificationService",
    "NotificationError",
    "NotificationServiceInterface",
    "SmtpNotificationService",
    "render_budget_alert",
]
