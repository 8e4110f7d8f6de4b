"""Services package."""

from family_ledger.services.attachments import (
    AttachmentStore,
    GoogleDriveAttachmentStore,
)
from family_ledger.services.notifications import (
    InviteNotifier,
    LoggingInviteNotifier,
    SmtpInviteNotifier,
    create_notifier,
)
from family_ledger.services.storage import (
    DocumentStore,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Attachments
    "AttachmentStore",
    "GoogleDriveAttachmentStore",
    # Notifications
    "InviteNotifier",
    "LoggingInviteNotifier",
    "SmtpInviteNotifier",
    "create_notifier",
    # Storage
    "DocumentStore",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
    "NotFoundError",
    "StorageError",
]
