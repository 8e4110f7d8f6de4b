"""Tests for invite notifications."""

import smtplib

from family_ledger.config.settings import SmtpSettings
from family_ledger.services.notifications import (
    LoggingInviteNotifier,
    SmtpInviteNotifier,
    create_notifier,
)
from family_ledger.services.notifications import mailer


class FakeSMTP:
    """Records what would have been sent."""

    instances: list = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        self.logged_in = (username, password)

    def send_message(self, message):
        self.sent.append(message)


class RefusingSMTP(FakeSMTP):
    def send_message(self, message):
        raise smtplib.SMTPRecipientsRefused({message["To"]: (550, b"no such user")})


def smtp_settings(**overrides) -> SmtpSettings:
    values = {
        "host": "smtp.example.com",
        "port": 587,
        "username": "mailer",
        "password": "secret",
        "sender": "ledger@example.com",
        "app_url": "https://ledger.example.com",
    }
    values.update(overrides)
    return SmtpSettings(**values)


class TestCreateNotifier:
    """Tests for notifier selection."""

    def test_unconfigured_uses_logging(self):
        """Test no SMTP host means nothing is sent."""
        assert isinstance(create_notifier(SmtpSettings(host=None)), LoggingInviteNotifier)

    def test_configured_uses_smtp(self):
        """Test an SMTP host selects the SMTP notifier."""
        assert isinstance(create_notifier(smtp_settings()), SmtpInviteNotifier)

    async def test_logging_notifier_reports_no_delivery(self):
        """Test the logging notifier returns False."""
        notifier = LoggingInviteNotifier()
        assert await notifier.notify_invite("bob@example.com", "Alice", "Smith") is False


class TestSmtpInviteNotifier:
    """Tests for SMTP delivery."""

    def test_message_content(self):
        """Test the invite email names the inviter, family and app link."""
        message = SmtpInviteNotifier(smtp_settings()).build_message(
            "bob@example.com", "Alice Smith", "Smith",
        )
        body = message.get_payload(decode=True).decode("utf-8")

        assert message["To"] == "bob@example.com"
        assert message["From"] == "ledger@example.com"
        assert "Smith" in message["Subject"]
        assert "Alice Smith" in body
        assert "https://ledger.example.com" in body

    def test_message_without_inviter_name(self):
        """Test a missing inviter name still produces a readable body."""
        message = SmtpInviteNotifier(smtp_settings()).build_message("bob@example.com", None, "Smith")
        assert "A family member" in message.get_payload(decode=True).decode("utf-8")

    async def test_sends_with_tls_and_login(self, monkeypatch):
        """Test delivery uses STARTTLS and credentials."""
        FakeSMTP.instances = []
        monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)

        delivered = await SmtpInviteNotifier(smtp_settings()).notify_invite(
            "bob@example.com", "Alice Smith", "Smith",
        )

        assert delivered is True
        smtp = FakeSMTP.instances[0]
        assert (smtp.host, smtp.port) == ("smtp.example.com", 587)
        assert smtp.started_tls
        assert smtp.logged_in == ("mailer", "secret")
        assert smtp.sent[0]["To"] == "bob@example.com"

    async def test_failure_returns_false(self, monkeypatch):
        """Test SMTP errors are reported as no delivery, not raised."""
        monkeypatch.setattr(mailer.smtplib, "SMTP", RefusingSMTP)

        delivered = await SmtpInviteNotifier(smtp_settings()).notify_invite(
            "bob@example.com", "Alice Smith", "Smith",
        )
        assert delivered is False

    async def test_unconfigured_smtp_notifier(self):
        """Test the SMTP notifier without a host sends nothing."""
        notifier = SmtpInviteNotifier(smtp_settings(host=None))
        assert await notifier.notify_invite("bob@example.com", "Alice", "Smith") is False
