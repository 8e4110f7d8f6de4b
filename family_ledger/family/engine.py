"""
Family Membership Engine

Owns every write to the `families` and `familyInvites` collections:
creation, invite codes, addressed invites, join, removal, leave and
deletion. Also computes the visibility set the ledger subscribes with.

DESIGN DECISION: The engine never trusts a caller's Family snapshot.
Every ownership or membership check re-reads the family document, so
decisions are made against the store, not a stale UI copy.

Redemption (join by code, accept invite) writes the membership change and
the invite status change in one WriteBatch. Before committing, the engine
re-checks that the invite is still pending and that the principal is not
already in the family, so a code cannot be used twice in practice even on
a backend whose batches are not atomic.
"""

import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from family_ledger.audit import AuditLogger, create_correlation_id
from family_ledger.config import get_settings
from family_ledger.config.settings import FamilySettings
from family_ledger.exceptions import (
    AlreadyInFamily,
    AlreadyInvited,
    AlreadyMember,
    InvalidOrExpiredCode,
    InviteNotFound,
    LedgerError,
    MemberNotFound,
    NoFamily,
    NotOwner,
    OwnerCannotLeave,
    SelfInvite,
    ValidationError,
)
from family_ledger.models.audit import AuditEventBuilder, AuditEventType
from family_ledger.models.entities import (
    Family,
    FamilyInvite,
    FamilyMember,
    InviteStatus,
    Principal,
    utc_now,
)
from family_ledger.models.validation import ValidationIssue, check_name
from family_ledger.services.notifications import InviteNotifier, LoggingInviteNotifier
from family_ledger.services.storage import (
    ArrayRemove,
    ArrayUnion,
    Document,
    DocumentStore,
    NotFoundError,
    Query,
    StorageError,
)


logger = structlog.get_logger(__name__)

FAMILIES = "families"
INVITES = "familyInvites"


def generate_invite_code(length: int, alphabet: str) -> str:
    """Random code drawn from `alphabet` with a cryptographically strong source."""
    return "".join(secrets.choice(alphabet) for _ in range(length))


def effective_visibility_set(principal: Principal, family: Optional[Family]) -> frozenset[str]:
    """Principal ids whose transactions `principal` may observe."""
    if family is None:
        return frozenset({principal.id})
    return frozenset({family.owner_id, *family.member_ids})


def pending_invites_query(principal: Principal) -> Query:
    """Pending addressed invites for the principal's email."""
    return (
        Query(INVITES)
        .where("inviteeEmail", "==", principal.email.strip().lower())
        .where("status", "==", InviteStatus.PENDING.value)
    )


class FamilyMembershipEngine:
    """
    Family lifecycle operations.

    Usage:
        engine = FamilyMembershipEngine(store)
        family = await engine.create_family(alice, "Smith")
        code = await engine.create_invite_code(alice, family)
        await engine.join_with_code(bob, code)
    """

    def __init__(
        self,
        store: DocumentStore,
        notifier: Optional[InviteNotifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[FamilySettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._notifier = notifier or LoggingInviteNotifier()
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().family
        self._clock = clock or utc_now

    @property
    def store(self) -> DocumentStore:
        return self._store

    # =========================================================================
    # LOOKUP
    # =========================================================================

    async def resolve_family(self, principal: Principal) -> Optional[Family]:
        """
        The family the principal owns, else the one they belong to.

        Lookup errors resolve to None ("not yet in a family").
        """
        try:
            owned = await self._store.query(Query(FAMILIES).where("ownerId", "==", principal.id))
            if owned:
                return Family.from_document(owned[0].id, owned[0].data)

            joined = await self._store.query(
                Query(FAMILIES).where("memberIds", "array_contains", principal.id)
            )
            if joined:
                return Family.from_document(joined[0].id, joined[0].data)
        except (StorageError, PydanticValidationError) as e:
            logger.warning("family_lookup_failed", principal_id=principal.id, error=str(e))
        return None

    async def pending_invites(self, principal: Principal) -> list[FamilyInvite]:
        """Pending addressed invites for the principal's email."""
        documents = await self._store.query(pending_invites_query(principal))
        return [FamilyInvite.from_document(doc.id, doc.data) for doc in documents]

    def effective_visibility_set(
        self,
        principal: Principal,
        family: Optional[Family],
    ) -> frozenset[str]:
        return effective_visibility_set(principal, family)

    async def _load(self, principal: Principal, family: Optional[Family]) -> tuple[Family, Document]:
        """Re-read the family document the caller refers to."""
        if family is None:
            raise NoFamily(principal.id)
        doc = await self._store.get(FAMILIES, family.id)
        if doc is None:
            raise NoFamily(principal.id)
        return Family.from_document(doc.id, doc.data), doc

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_family(self, principal: Principal, name: str) -> Family:
        """
        Create a family owned by `principal`.

        Raises:
            AlreadyInFamily: principal already owns or belongs to a family
            ValidationError: empty or over-long name
        """
        existing = await self.resolve_family(principal)
        if existing is not None:
            raise AlreadyInFamily(principal.id, existing.id)

        name = (name or "").strip()
        issue = check_name(name, "family")
        if issue is not None:
            raise ValidationError([issue])

        data = {
            "name": name,
            "ownerId": principal.id,
            "ownerEmail": principal.email,
            "ownerName": principal.display_name,
            "memberIds": [],
            "members": [],
            "createdAt": self._clock().isoformat(),
        }
        family_id = await self._store.add(FAMILIES, data)
        family = Family.from_document(family_id, data)

        logger.info("family_created", family_id=family_id, owner_id=principal.id)
        await self._audit.log(AuditEventBuilder.family_created(family_id, principal.id, name))
        return family

    async def create_invite_code(self, principal: Principal, family: Optional[Family]) -> str:
        """
        Issue a single-use invite code valid for the configured number of days.

        Raises:
            NoFamily, NotOwner
        """
        family, _ = await self._load(principal, family)
        if not family.is_owner(principal.id):
            raise NotOwner("create invite codes", principal.id, family.id)

        code = generate_invite_code(
            self._settings.invite_code_length,
            self._settings.invite_code_alphabet,
        )
        now = self._clock()
        expires_at = now + timedelta(days=self._settings.invite_expiry_days)

        invite_id = await self._store.add(INVITES, {
            "familyId": family.id,
            "familyName": family.name,
            "inviterId": principal.id,
            "inviterName": principal.display_name,
            "inviteCode": code,
            "status": InviteStatus.PENDING.value,
            "createdAt": now.isoformat(),
            "expiresAt": expires_at.isoformat(),
        })

        logger.info("invite_code_created", invite_id=invite_id, family_id=family.id)
        await self._audit.log(AuditEventBuilder.invite_code_created(
            invite_id, family.id, principal.id, expires_at,
        ))
        return code

    async def invite_member(
        self,
        principal: Principal,
        family: Optional[Family],
        email: str,
    ) -> FamilyInvite:
        """
        Create a pending addressed invite and try to notify the recipient.

        Raises:
            NoFamily, NotOwner, SelfInvite, AlreadyInvited, AlreadyMember,
            ValidationError (malformed email)
        """
        family, _ = await self._load(principal, family)
        if not family.is_owner(principal.id):
            raise NotOwner("invite members", principal.id, family.id)

        invitee_email = (email or "").strip().lower()
        if "@" not in invitee_email:
            raise ValidationError([ValidationIssue(
                field="email",
                issue_type="invalid_format",
                message="A valid email address is required",
            )])
        if invitee_email == principal.email.strip().lower():
            raise SelfInvite(invitee_email)

        existing = await self._store.query(
            Query(INVITES)
            .where("familyId", "==", family.id)
            .where("inviteeEmail", "==", invitee_email)
            .where("status", "==", InviteStatus.PENDING.value)
        )
        if existing:
            raise AlreadyInvited(invitee_email, family.id)

        if family.member_by_email(invitee_email) is not None:
            raise AlreadyMember(invitee_email, family.id)

        correlation_id = create_correlation_id()
        data = {
            "familyId": family.id,
            "familyName": family.name,
            "inviterId": principal.id,
            "inviterName": principal.display_name,
            "inviterEmail": principal.email,
            "inviteeEmail": invitee_email,
            "status": InviteStatus.PENDING.value,
            "createdAt": self._clock().isoformat(),
        }
        invite_id = await self._store.add(INVITES, data)
        invite = FamilyInvite.from_document(invite_id, data)

        logger.info("invite_sent", invite_id=invite_id, family_id=family.id)
        await self._audit.log(AuditEventBuilder.invite_sent(
            invite_id, family.id, principal.id, invitee_email, correlation_id,
        ))

        await self._notify(principal, family, invitee_email, correlation_id)
        return invite

    async def _notify(self, principal: Principal, family: Family, recipient: str, correlation_id) -> None:
        """Best effort: failures are logged and audited, never raised."""
        error = "notifier reported no delivery"
        try:
            delivered = await self._notifier.notify_invite(
                recipient,
                principal.display_name or principal.email,
                family.name,
            )
        except Exception as e:
            delivered = False
            error = str(e)

        if delivered:
            return
        logger.warning("invite_notification_failed", recipient=recipient, error=error)
        await self._audit.log(AuditEventBuilder.notification_failed(
            principal.id, recipient, error, correlation_id,
        ))

    # =========================================================================
    # REDEEM
    # =========================================================================

    async def join_with_code(self, principal: Principal, code: str) -> Family:
        """
        Join the family behind a pending, unexpired invite code.

        Raises:
            AlreadyInFamily: principal already has a family
            InvalidOrExpiredCode: unknown, used or expired code
        """
        existing = await self.resolve_family(principal)
        if existing is not None:
            raise AlreadyInFamily(principal.id, existing.id)

        normalized = (code or "").strip().upper()
        if not normalized:
            raise InvalidOrExpiredCode(normalized, "empty")

        matches = await self._store.query(
            Query(INVITES)
            .where("inviteCode", "==", normalized)
            .where("status", "==", InviteStatus.PENDING.value)
        )
        if not matches:
            raise InvalidOrExpiredCode(normalized, "not_found")

        invite = FamilyInvite.from_document(matches[0].id, matches[0].data)
        if invite.is_expired(self._clock()):
            raise InvalidOrExpiredCode(normalized, "expired")

        return await self._redeem(
            principal,
            invite,
            via="code",
            stale=InvalidOrExpiredCode(normalized, "already_used"),
        )

    async def accept_invite(self, principal: Principal, invite_id: str) -> Family:
        """
        Accept a pending addressed invite sent to the principal's email.

        Raises:
            InviteNotFound: not among the principal's pending invites
            AlreadyInFamily: principal already has a family
        """
        pending = {invite.id: invite for invite in await self.pending_invites(principal)}
        invite = pending.get(invite_id)
        if invite is None:
            raise InviteNotFound(invite_id)

        existing = await self.resolve_family(principal)
        if existing is not None:
            raise AlreadyInFamily(principal.id, existing.id)

        return await self._redeem(principal, invite, via="invite", stale=InviteNotFound(invite_id))

    async def decline_invite(self, principal: Principal, invite_id: str) -> None:
        """
        Mark one of the principal's pending addressed invites declined.

        Raises:
            InviteNotFound: not among the principal's pending invites
        """
        pending = {invite.id for invite in await self.pending_invites(principal)}
        if invite_id not in pending:
            raise InviteNotFound(invite_id)

        await self._store.update(INVITES, invite_id, {"status": InviteStatus.DECLINED.value})

        logger.info("invite_declined", invite_id=invite_id, actor_id=principal.id)
        await self._audit.log(AuditEventBuilder.invite_resolved(invite_id, principal.id, accepted=False))

    async def _redeem(
        self,
        principal: Principal,
        invite: FamilyInvite,
        via: str,
        stale: LedgerError,
    ) -> Family:
        """Add the principal to the invite's family and close the invite, in one batch."""
        family_doc = await self._store.get(FAMILIES, invite.family_id)
        if family_doc is None:
            raise stale
        family = Family.from_document(family_doc.id, family_doc.data)
        if family.is_owner(principal.id) or family.has_member(principal.id):
            raise AlreadyInFamily(principal.id, family.id)

        current = await self._store.get(INVITES, invite.id)
        if current is None or current.data.get("status") != InviteStatus.PENDING.value:
            raise stale

        now = self._clock()
        member = FamilyMember.from_principal(principal, joined_at=now)
        batch = self._store.batch()
        batch.update(FAMILIES, family.id, {
            "memberIds": ArrayUnion(principal.id),
            "members": ArrayUnion(member.to_document()),
        })
        batch.update(INVITES, invite.id, {
            "status": InviteStatus.ACCEPTED.value,
            "acceptedBy": principal.id,
            "acceptedAt": now.isoformat(),
        })
        try:
            await self._store.commit(batch)
        except NotFoundError:
            raise stale

        correlation_id = create_correlation_id()
        logger.info("member_joined", family_id=family.id, member_id=principal.id, via=via)
        await self._audit.log(AuditEventBuilder.membership_changed(
            AuditEventType.MEMBER_JOINED, family.id, principal.id, principal.id,
            via=via, correlation_id=correlation_id,
        ))
        await self._audit.log(AuditEventBuilder.invite_resolved(
            invite.id, principal.id, accepted=True, correlation_id=correlation_id,
        ))

        refreshed = await self._store.get(FAMILIES, family.id)
        if refreshed is None:
            raise NoFamily(principal.id)
        return Family.from_document(refreshed.id, refreshed.data)

    # =========================================================================
    # LEAVE / REMOVE / DELETE
    # =========================================================================

    async def remove_member(
        self,
        principal: Principal,
        family: Optional[Family],
        member_id: str,
    ) -> Family:
        """
        Owner removes a member from both memberIds and members.

        Raises:
            NoFamily, NotOwner, MemberNotFound
        """
        family, doc = await self._load(principal, family)
        if not family.is_owner(principal.id):
            raise NotOwner("remove members", principal.id, family.id)

        raw_member = self._raw_member(doc, member_id)
        if raw_member is None and not family.has_member(member_id):
            raise MemberNotFound(member_id, family.id)

        await self._store.update(FAMILIES, family.id, self._removal_changes(member_id, raw_member))

        logger.info("member_removed", family_id=family.id, member_id=member_id)
        await self._audit.log(AuditEventBuilder.membership_changed(
            AuditEventType.MEMBER_REMOVED, family.id, principal.id, member_id,
        ))
        family, _ = await self._load(principal, family)
        return family

    async def leave_family(self, principal: Principal, family: Optional[Family]) -> None:
        """
        A member leaves their family.

        Raises:
            NoFamily, OwnerCannotLeave, MemberNotFound
        """
        family, doc = await self._load(principal, family)
        if family.is_owner(principal.id):
            raise OwnerCannotLeave(family.id)

        raw_member = self._raw_member(doc, principal.id)
        if raw_member is None and not family.has_member(principal.id):
            raise MemberNotFound(principal.id, family.id)

        await self._store.update(FAMILIES, family.id, self._removal_changes(principal.id, raw_member))

        logger.info("member_left", family_id=family.id, member_id=principal.id)
        await self._audit.log(AuditEventBuilder.membership_changed(
            AuditEventType.MEMBER_LEFT, family.id, principal.id, principal.id,
        ))

    async def delete_family(self, principal: Principal, family: Optional[Family]) -> int:
        """
        Owner deletes the family and every invite that references it.

        Member transactions are untouched.

        Returns:
            Number of invites deleted
        """
        family, _ = await self._load(principal, family)
        if not family.is_owner(principal.id):
            raise NotOwner("delete the family", principal.id, family.id)

        invites = await self._store.query(Query(INVITES).where("familyId", "==", family.id))
        batch = self._store.batch()
        for invite in invites:
            batch.delete(INVITES, invite.id)
        batch.delete(FAMILIES, family.id)
        await self._store.commit(batch)

        logger.info("family_deleted", family_id=family.id, invites_deleted=len(invites))
        await self._audit.log(AuditEventBuilder.family_deleted(family.id, principal.id, len(invites)))
        return len(invites)

    @staticmethod
    def _raw_member(doc: Document, member_id: str) -> Optional[dict[str, Any]]:
        """The stored member entry, exactly as ArrayRemove must match it."""
        for entry in doc.data.get("members") or []:
            if isinstance(entry, dict) and entry.get("id") == member_id:
                return entry
        return None

    @staticmethod
    def _removal_changes(member_id: str, raw_member: Optional[dict[str, Any]]) -> dict[str, Any]:
        changes: dict[str, Any] = {"memberIds": ArrayRemove(member_id)}
        if raw_member is not None:
            changes["members"] = ArrayRemove(raw_member)
        return changes
