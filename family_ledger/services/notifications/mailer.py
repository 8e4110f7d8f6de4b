"""
Family Invite Notifications

Best-effort outbound email telling someone they were invited to a family.
Delivery never affects the invite itself: notifiers return False instead
of raising, and the family engine treats any exception the same way.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from typing import Optional

import structlog

from family_ledger.config import get_settings
from family_ledger.config.settings import SmtpSettings


logger = structlog.get_logger(__name__)


class InviteNotifier(ABC):
    """Dispatches invite notifications."""

    @abstractmethod
    async def notify_invite(self, recipient: str, inviter_name: Optional[str], family_name: str) -> bool:
        """
        Tell `recipient` they were invited.

        Returns:
            True if the notification was handed off for delivery
        """
        pass


class LoggingInviteNotifier(InviteNotifier):
    """Used when email is not configured: the invite is saved, nothing is sent."""

    async def notify_invite(self, recipient: str, inviter_name: Optional[str], family_name: str) -> bool:
        logger.info(
            "invite_email_not_configured",
            recipient=recipient,
            family_name=family_name,
        )
        return False


class SmtpInviteNotifier(InviteNotifier):
    """Sends invite emails through an SMTP relay."""

    def __init__(self, settings: Optional[SmtpSettings] = None):
        self._settings = settings or get_settings().smtp

    def build_message(self, recipient: str, inviter_name: Optional[str], family_name: str) -> MIMEText:
        inviter = inviter_name or "A family member"
        body = (
            f"{inviter} invited you to join the family \"{family_name}\" on Family Ledger.\n\n"
            f"Sign in with this email address to accept the invite:\n"
            f"{self._settings.app_url}\n"
        )
        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = f"You're invited to join {family_name}"
        message["From"] = self._settings.sender
        message["To"] = recipient
        return message

    def _send(self, message: MIMEText) -> None:
        with smtplib.SMTP(self._settings.host, self._settings.port, timeout=30) as smtp:
            if self._settings.use_tls:
                smtp.starttls()
            if self._settings.username:
                smtp.login(self._settings.username, self._settings.password or "")
            smtp.send_message(message)

    async def notify_invite(self, recipient: str, inviter_name: Optional[str], family_name: str) -> bool:
        if not self._settings.is_configured:
            logger.info("invite_email_not_configured", recipient=recipient)
            return False

        message = self.build_message(recipient, inviter_name, family_name)
        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("invite_email_failed", recipient=recipient, error=str(e))
            return False

        logger.info("invite_email_sent", recipient=recipient, family_name=family_name)
        return True


def create_notifier(settings: Optional[SmtpSettings] = None) -> InviteNotifier:
    """SMTP notifier when SMTP_HOST is set, logging notifier otherwise."""
    settings = settings or get_settings().smtp
    if settings.is_configured:
        return SmtpInviteNotifier(settings)
    return LoggingInviteNotifier()
