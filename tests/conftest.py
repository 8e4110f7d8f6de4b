"""
Shared fixtures.

Nothing here talks to a real service: the document store is in memory,
Drive is a fake HTTP session, and notifications are recorded.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from family_ledger.audit import AuditLogger
from family_ledger.catalog import SharedCatalogManager
from family_ledger.config.settings import DriveSettings, FamilySettings
from family_ledger.exceptions import UploadFailed
from family_ledger.family import FamilyMembershipEngine
from family_ledger.identity import IdentityContext, InMemorySessionScope
from family_ledger.ledger import TransactionLedger
from family_ledger.models.entities import (
    AttachmentFile,
    AttachmentRef,
    CatalogKind,
    Principal,
)
from family_ledger.services.attachments import AttachmentStore
from family_ledger.services.notifications import InviteNotifier
from family_ledger.services.storage import InMemoryDocumentStore


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier(InviteNotifier):
    """Collects invite notifications instead of sending them."""

    def __init__(self, delivered: bool = True, error: Optional[Exception] = None):
        self.delivered = delivered
        self.error = error
        self.sent: list[tuple[str, str, str]] = []

    async def notify_invite(self, recipient: str, inviter_name: str, family_name: str) -> bool:
        self.sent.append((recipient, inviter_name, family_name))
        if self.error is not None:
            raise self.error
        return self.delivered


class FakeAttachmentStore(AttachmentStore):
    """Succeeds with a predictable link, or fails on demand."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: list[tuple[str, Optional[str]]] = []

    async def upload(self, file: AttachmentFile, delegated_token: Optional[str]) -> AttachmentRef:
        self.uploads.append((file.filename, delegated_token))
        if not delegated_token:
            raise UploadFailed("no delegated token", file.filename)
        if self.fail:
            raise UploadFailed("drive unavailable", file.filename)
        file_id = f"file-{len(self.uploads)}"
        return AttachmentRef(
            file_id=file_id,
            view_link=f"https://drive.google.com/file/d/{file_id}/view",
        )


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Optional[dict] = None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}

    def json(self) -> dict:
        return self._payload


class FakeDriveSession:
    """Stands in for an AuthorizedSession; replays queued responses."""

    def __init__(self, responses: list[FakeResponse]):
        self.responses = list(responses)
        self.requests: list[tuple[str, str, dict]] = []

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.requests.append((method, url, kwargs))
        return self.responses.pop(0)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def audit(store) -> AuditLogger:
    return AuditLogger(store)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def family_settings() -> FamilySettings:
    return FamilySettings(
        invite_code_length=10,
        invite_code_alphabet="ABCDEFGHJKLMNPQRSTUVWXYZ23456789",
        invite_expiry_days=7,
    )


@pytest.fixture
def drive_settings() -> DriveSettings:
    return DriveSettings(folder_name="Family Ledger Attachments")


@pytest.fixture
def alice() -> Principal:
    return Principal(
        id="alice",
        email="alice@example.com",
        display_name="Alice Smith",
        auth_providers=frozenset({"google.com"}),
    )


@pytest.fixture
def bob() -> Principal:
    return Principal(
        id="bob",
        email="Bob@Example.com",
        display_name="Bob Smith",
        auth_providers=frozenset({"password"}),
    )


@pytest.fixture
def carol() -> Principal:
    return Principal(id="carol", email="carol@example.com", display_name="Carol Jones")


@pytest.fixture
def engine(store, notifier, audit, family_settings, clock) -> FamilyMembershipEngine:
    return FamilyMembershipEngine(
        store,
        notifier=notifier,
        audit_logger=audit,
        settings=family_settings,
        clock=clock,
    )


@pytest.fixture
def categories(store, audit) -> SharedCatalogManager:
    return SharedCatalogManager(store, CatalogKind.CATEGORY, audit)


@pytest.fixture
def accounts(store, audit) -> SharedCatalogManager:
    return SharedCatalogManager(store, CatalogKind.ACCOUNT, audit)


@pytest.fixture
def identity() -> IdentityContext:
    return IdentityContext(InMemorySessionScope())


@pytest.fixture
def attachments() -> FakeAttachmentStore:
    return FakeAttachmentStore()


@pytest.fixture
def ledger(store, identity, attachments, audit, clock) -> TransactionLedger:
    return TransactionLedger(
        store,
        identity,
        attachments=attachments,
        audit_logger=audit,
        clock=clock,
    )
