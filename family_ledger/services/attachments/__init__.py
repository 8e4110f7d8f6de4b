"""Attachment storage services package."""

from family_ledger.services.attachments.drive import (
    AttachmentStore,
    GoogleDriveAttachmentStore,
)

__all__ = [
    "AttachmentStore",
    "GoogleDriveAttachmentStore",
]
