"""
Error Taxonomy for Family Ledger

Every failure a caller can act on has its own exception class.
All of them derive from LedgerError, which carries a stable error_code
(for display and logging) and a context dict with the identifiers involved.

Errors are raised synchronously to the caller of a mutator. They are never
raised across a subscription boundary: subscriptions log and degrade instead.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class LedgerError(Exception):
    """Base exception for all domain errors."""

    default_code = "LEDGER_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logs and user-facing error payloads."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# IDENTITY
# =============================================================================

class NotAuthenticated(LedgerError):
    """No principal is signed in."""
    default_code = "NOT_AUTHENTICATED"

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


# =============================================================================
# FAMILY MEMBERSHIP
# =============================================================================

class AlreadyInFamily(LedgerError):
    """Principal already owns or belongs to a family."""
    default_code = "ALREADY_IN_FAMILY"

    def __init__(self, principal_id: str, family_id: Optional[str] = None):
        super().__init__(
            "Already in a family",
            context={"principal_id": principal_id, "family_id": family_id},
        )


class NoFamily(LedgerError):
    """Operation needs a family but the principal has none."""
    default_code = "NO_FAMILY"

    def __init__(self, principal_id: Optional[str] = None):
        super().__init__("No family", context={"principal_id": principal_id})


class NotOwner(LedgerError):
    """Only the family owner may perform this operation."""
    default_code = "NOT_OWNER"

    def __init__(self, action: str, principal_id: str, family_id: str):
        super().__init__(
            f"Only the family owner can {action}",
            context={"principal_id": principal_id, "family_id": family_id},
        )


class MemberNotFound(LedgerError):
    """The member to remove is not part of the family."""
    default_code = "MEMBER_NOT_FOUND"

    def __init__(self, member_id: str, family_id: str):
        super().__init__(
            "Member not found",
            context={"member_id": member_id, "family_id": family_id},
        )


class OwnerCannotLeave(LedgerError):
    """The owner must delete the family instead of leaving it."""
    default_code = "OWNER_CANNOT_LEAVE"

    def __init__(self, family_id: str):
        super().__init__(
            "Owner cannot leave, delete family instead",
            context={"family_id": family_id},
        )


class InvalidOrExpiredCode(LedgerError):
    """Invite code is unknown, already used, or past its expiry."""
    default_code = "INVALID_OR_EXPIRED_CODE"

    def __init__(self, code: str, reason: str = "invalid"):
        super().__init__(
            "Invalid or expired code",
            context={"code": code, "reason": reason},
        )


class InviteNotFound(LedgerError):
    """Addressed invite is not pending for this principal."""
    default_code = "INVITE_NOT_FOUND"

    def __init__(self, invite_id: str):
        super().__init__("Invite not found", context={"invite_id": invite_id})


class AlreadyInvited(LedgerError):
    """A pending invite to this email already exists for the family."""
    default_code = "ALREADY_INVITED"

    def __init__(self, email: str, family_id: str):
        super().__init__(
            "Already invited",
            context={"email": email, "family_id": family_id},
        )


class AlreadyMember(LedgerError):
    """The invited email already belongs to a family member."""
    default_code = "ALREADY_MEMBER"

    def __init__(self, email: str, family_id: str):
        super().__init__(
            "Already a member",
            context={"email": email, "family_id": family_id},
        )


class SelfInvite(LedgerError):
    """The owner tried to invite their own email."""
    default_code = "SELF_INVITE"

    def __init__(self, email: str):
        super().__init__("Cannot invite yourself", context={"email": email})


# =============================================================================
# CATALOG
# =============================================================================

class AlreadyInList(LedgerError):
    """The principal already has an equivalent catalog entry."""
    default_code = "ALREADY_IN_LIST"

    def __init__(self, kind: str, name: str):
        super().__init__(
            f"{kind.capitalize()} already in your list",
            context={"kind": kind, "name": name},
        )


class EntryNotFound(LedgerError):
    """Catalog entry id does not exist."""
    default_code = "ENTRY_NOT_FOUND"

    def __init__(self, kind: str, entry_id: str):
        super().__init__(
            f"{kind.capitalize()} not found",
            context={"kind": kind, "entry_id": entry_id},
        )


# =============================================================================
# LEDGER
# =============================================================================

class ValidationError(LedgerError):
    """
    Transaction data violates an integrity rule.

    `issues` holds the individual ValidationIssue objects so the caller
    can highlight each offending field.
    """
    default_code = "VALIDATION_ERROR"

    def __init__(self, issues: list, message: Optional[str] = None):
        self.issues = list(issues)
        summary = message or "; ".join(issue.message for issue in self.issues)
        super().__init__(
            summary or "Invalid transaction",
            context={"fields": [issue.field for issue in self.issues]},
        )


class TransactionNotFound(LedgerError):
    """Transaction id does not exist."""
    default_code = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        super().__init__(
            "Transaction not found",
            context={"transaction_id": transaction_id},
        )


# =============================================================================
# ATTACHMENTS
# =============================================================================

class UploadFailed(LedgerError):
    """
    Attachment upload did not complete.

    Recovered locally by the ledger: the transaction is saved without
    the attachment.
    """
    default_code = "UPLOAD_FAILED"

    def __init__(self, reason: str, filename: Optional[str] = None):
        super().__init__(
            f"Attachment upload failed: {reason}",
            context={"filename": filename},
        )
