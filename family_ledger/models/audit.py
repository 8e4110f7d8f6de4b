"""
Audit Models for Family Ledger

Every mutation of shared state is recorded as an AuditEvent.
Family members act on each other's data (join, remove, delete
transactions), so the audit trail is how a family reconstructs who did what.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from family_ledger.models.entities import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Family lifecycle
    FAMILY_CREATED = "family_created"
    FAMILY_DELETED = "family_deleted"
    INVITE_CODE_CREATED = "invite_code_created"
    INVITE_SENT = "invite_sent"
    INVITE_ACCEPTED = "invite_accepted"
    INVITE_DECLINED = "invite_declined"
    MEMBER_JOINED = "member_joined"
    MEMBER_REMOVED = "member_removed"
    MEMBER_LEFT = "member_left"

    # Catalog
    CATALOG_ENTRY_CREATED = "catalog_entry_created"
    CATALOG_ENTRY_ATTACHED = "catalog_entry_attached"
    CATALOG_ENTRY_DETACHED = "catalog_entry_detached"

    # Ledger
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    ACCOUNT_PURGED = "account_purged"

    # Degraded paths
    ATTACHMENT_UPLOAD_FAILED = "attachment_upload_failed"
    NOTIFICATION_FAILED = "notification_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Who did it, and to what
    actor_id: Optional[str] = Field(
        default=None,
        description="Principal that triggered the event"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'family', 'invite', 'transaction')"
    )
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events of one user action"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "actor_id": self.actor_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_document(self) -> dict:
        """Convert to a document for the auditEvents collection."""
        return self.to_log_dict()


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.family_created(family_id, owner_id, name)
        event = AuditEventBuilder.member_joined(family_id, member_id, via="code")
    """

    @staticmethod
    def family_created(
        family_id: str,
        owner_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FAMILY_CREATED,
            actor_id=owner_id,
            entity_type="family",
            entity_id=family_id,
            correlation_id=correlation_id,
            description=f"Family created: {name}",
            details={"name": name},
        )

    @staticmethod
    def family_deleted(
        family_id: str,
        owner_id: str,
        invites_deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FAMILY_DELETED,
            severity=AuditSeverity.WARNING,
            actor_id=owner_id,
            entity_type="family",
            entity_id=family_id,
            correlation_id=correlation_id,
            description="Family deleted by owner",
            details={"invites_deleted": invites_deleted},
        )

    @staticmethod
    def invite_code_created(
        invite_id: str,
        family_id: str,
        inviter_id: str,
        expires_at: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVITE_CODE_CREATED,
            actor_id=inviter_id,
            entity_type="invite",
            entity_id=invite_id,
            correlation_id=correlation_id,
            description="Invite code created",
            details={"family_id": family_id, "expires_at": expires_at.isoformat()},
        )

    @staticmethod
    def invite_sent(
        invite_id: str,
        family_id: str,
        inviter_id: str,
        invitee_email: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVITE_SENT,
            actor_id=inviter_id,
            entity_type="invite",
            entity_id=invite_id,
            correlation_id=correlation_id,
            description=f"Invite sent to {invitee_email}",
            details={"family_id": family_id, "invitee_email": invitee_email},
        )

    @staticmethod
    def invite_resolved(
        invite_id: str,
        actor_id: Optional[str],
        accepted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.INVITE_ACCEPTED if accepted else AuditEventType.INVITE_DECLINED
            ),
            actor_id=actor_id,
            entity_type="invite",
            entity_id=invite_id,
            correlation_id=correlation_id,
            description="Invite accepted" if accepted else "Invite declined",
        )

    @staticmethod
    def membership_changed(
        event_type: AuditEventType,
        family_id: str,
        actor_id: str,
        member_id: str,
        via: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        descriptions = {
            AuditEventType.MEMBER_JOINED: "Member joined family",
            AuditEventType.MEMBER_REMOVED: "Member removed from family",
            AuditEventType.MEMBER_LEFT: "Member left family",
        }
        details = {"member_id": member_id}
        if via:
            details["via"] = via
        return AuditEvent(
            event_type=event_type,
            actor_id=actor_id,
            entity_type="family",
            entity_id=family_id,
            correlation_id=correlation_id,
            description=descriptions.get(event_type, "Family membership changed"),
            details=details,
        )

    @staticmethod
    def catalog_changed(
        event_type: AuditEventType,
        kind: str,
        entry_id: str,
        actor_id: str,
        name: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.CATALOG_ENTRY_CREATED: "created",
            AuditEventType.CATALOG_ENTRY_ATTACHED: "added to list",
            AuditEventType.CATALOG_ENTRY_DETACHED: "removed from list",
        }.get(event_type, "changed")
        return AuditEvent(
            event_type=event_type,
            actor_id=actor_id,
            entity_type=kind,
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"{kind.capitalize()} {verb}" + (f": {name}" if name else ""),
            details={"name": name} if name else {},
        )

    @staticmethod
    def transaction_changed(
        event_type: AuditEventType,
        transaction_id: str,
        actor_id: Optional[str],
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.TRANSACTION_CREATED: "created",
            AuditEventType.TRANSACTION_UPDATED: "updated",
            AuditEventType.TRANSACTION_DELETED: "deleted",
        }.get(event_type, "changed")
        return AuditEvent(
            event_type=event_type,
            actor_id=actor_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction {verb}",
            details=details or {},
        )

    @staticmethod
    def attachment_upload_failed(
        actor_id: str,
        filename: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENT_UPLOAD_FAILED,
            severity=AuditSeverity.WARNING,
            actor_id=actor_id,
            entity_type="attachment",
            correlation_id=correlation_id,
            description=f"Attachment not uploaded: {filename}",
            error_message=error_message,
            details={"filename": filename},
        )

    @staticmethod
    def notification_failed(
        actor_id: str,
        recipient: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_FAILED,
            severity=AuditSeverity.WARNING,
            actor_id=actor_id,
            entity_type="invite",
            correlation_id=correlation_id,
            description=f"Invite notification not delivered to {recipient}",
            error_message=error_message,
            details={"recipient": recipient},
        )

    @staticmethod
    def account_purged(
        actor_id: str,
        transactions_deleted: int,
        catalog_entries_detached: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_PURGED,
            severity=AuditSeverity.WARNING,
            actor_id=actor_id,
            entity_type="principal",
            entity_id=actor_id,
            correlation_id=correlation_id,
            description="Account data purged",
            details={
                "transactions_deleted": transactions_deleted,
                "catalog_entries_detached": catalog_entries_detached,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
