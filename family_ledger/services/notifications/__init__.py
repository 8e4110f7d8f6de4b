"""Invite notification services package."""

from family_ledger.services.notifications.mailer import (
    InviteNotifier,
    LoggingInviteNotifier,
    SmtpInviteNotifier,
    create_notifier,
)

__all__ = [
    "InviteNotifier",
    "LoggingInviteNotifier",
    "SmtpInviteNotifier",
    "create_notifier",
]
