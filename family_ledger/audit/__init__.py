"""Audit logging package."""

from family_ledger.audit.logger import (
    AUDIT_COLLECTION,
    AuditLogger,
    configure_logging,
    create_correlation_id,
)

__all__ = ["AUDIT_COLLECTION", "AuditLogger", "configure_logging", "create_correlation_id"]
