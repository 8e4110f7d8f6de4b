"""
Data Models Package

This package contains all Pydantic models used by Family Ledger.
Every document read from the store is validated into one of these.
"""

from family_ledger.models.entities import (
    AttachmentFile,
    AttachmentRef,
    CatalogEntry,
    CatalogKind,
    CategoryType,
    Family,
    FamilyInvite,
    FamilyMember,
    InviteStatus,
    Principal,
    StoredModel,
    Transaction,
    TransactionDraft,
    TransactionType,
    TransactionView,
    logical_key,
    utc_now,
)
from family_ledger.models.validation import (
    ValidationIssue,
    ValidationResult,
)
from family_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Entities
    "AttachmentFile",
    "AttachmentRef",
    "CatalogEntry",
    "CatalogKind",
    "CategoryType",
    "Family",
    "FamilyInvite",
    "FamilyMember",
    "InviteStatus",
    "Principal",
    "StoredModel",
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    "TransactionView",
    "logical_key",
    "utc_now",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Audit
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
