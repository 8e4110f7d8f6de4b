"""
Transaction Ledger

Sole writer of the `transactions` collection.

Each transaction belongs to the principal who recorded it (`userId`) and
is visible to everyone in that principal's family. The live view is a
continuous subscription on `userId in <visibility set>`, newest first,
re-targeted whenever family membership changes.

DESIGN DECISION: Data capture beats attachment completeness. When a
receipt upload fails (no Google token, Drive error, file too large) the
transaction is still saved, without the attachment, and the failure is
logged and audited.

Delete is not restricted to the owner: any family member who can see a
transaction can delete it. The deleting principal is recorded in the
audit trail.
"""

import inspect
from datetime import datetime
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from family_ledger.audit import AuditLogger, create_correlation_id
from family_ledger.exceptions import TransactionNotFound, UploadFailed, ValidationError
from family_ledger.identity import IdentityContext
from family_ledger.models.audit import AuditEventBuilder, AuditEventType
from family_ledger.models.entities import (
    AttachmentFile,
    Principal,
    Transaction,
    TransactionDraft,
    utc_now,
)
from family_ledger.models.validation import ValidationIssue
from family_ledger.services.attachments import AttachmentStore
from family_ledger.services.storage import (
    DELETE_FIELD,
    Document,
    DocumentStore,
    Query,
    Subscription,
)
from family_ledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)

TRANSACTIONS = "transactions"

# Patch keys (either spelling) -> stored field name
EDITABLE_FIELDS = {
    "type": "type",
    "amount": "amount",
    "category": "category",
    "account": "account",
    "to_account": "toAccount",
    "toAccount": "toAccount",
    "note": "note",
    "date": "date",
}

READ_ONLY_FIELDS = {
    "id", "userId", "user_id", "userName", "user_name",
    "createdAt", "created_at", "attachmentOwnerId", "attachment_owner_id",
}

SnapshotCallback = Callable[[list[Transaction]], Any]
ErrorCallback = Callable[[Exception], None]


def ledger_query(visibility_set: frozenset[str]) -> Query:
    """Transactions owned by anyone in the visibility set, newest first."""
    return (
        Query(TRANSACTIONS)
        .where("userId", "in", sorted(visibility_set))
        .order("date", descending=True)
        .order("createdAt", descending=True)
    )


def parse_transactions(documents: list[Document]) -> list[Transaction]:
    """Validate store documents; malformed ones are logged and skipped."""
    transactions = []
    for doc in documents:
        try:
            transactions.append(Transaction.from_document(doc.id, doc.data))
        except PydanticValidationError as e:
            logger.warning("transaction_document_invalid", transaction_id=doc.id, error=str(e))
    return transactions


class LedgerSubscription:
    """
    A live, re-targetable view of the visible transactions.

    `snapshot` always holds the last successfully delivered list. On a
    store error the snapshot is kept and `on_error` is called.
    """

    def __init__(
        self,
        store: DocumentStore,
        callback: Optional[SnapshotCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self._store = store
        self._callback = callback
        self._on_error = on_error
        self._subscription: Optional[Subscription] = None
        self._visibility: frozenset[str] = frozenset()
        self._snapshot: list[Transaction] = []

    @property
    def snapshot(self) -> list[Transaction]:
        return list(self._snapshot)

    @property
    def visibility_set(self) -> frozenset[str]:
        return self._visibility

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def retarget(self, visibility_set: frozenset[str]) -> None:
        """Swap the underlying query; no-op when the set is unchanged."""
        visibility_set = frozenset(visibility_set)
        if self.active and visibility_set == self._visibility:
            return
        if self._subscription is not None:
            self._subscription.close()
        self._visibility = visibility_set
        self._subscription = await self._store.subscribe_query(
            ledger_query(visibility_set),
            self._deliver,
            on_error=self._handle_error,
        )
        logger.info("ledger_subscription_targeted", visible_users=len(visibility_set))

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def __enter__(self) -> "LedgerSubscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    async def _deliver(self, documents: list[Document]) -> None:
        self._snapshot = parse_transactions(documents)
        if self._callback is None:
            return
        result = self._callback(self.snapshot)
        if inspect.isawaitable(result):
            await result

    def _handle_error(self, error: Exception) -> None:
        logger.error("ledger_subscription_failed", error=str(error))
        if self._on_error is not None:
            self._on_error(error)


class TransactionLedger:
    """
    Create, update and delete transactions for the signed-in principal.

    Usage:
        ledger = TransactionLedger(store, identity, attachments=drive)
        txn = await ledger.add({"type": "expense", "amount": "500", ...})
    """

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityContext,
        attachments: Optional[AttachmentStore] = None,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._identity = identity
        self._attachments = attachments
        self._validator = validator or TransactionValidator()
        self._audit = audit_logger or AuditLogger()
        self._clock = clock or utc_now

    # =========================================================================
    # READS
    # =========================================================================

    async def subscribe(
        self,
        visibility_set: frozenset[str],
        callback: Optional[SnapshotCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> LedgerSubscription:
        """Open a live subscription; release it with close()."""
        subscription = LedgerSubscription(self._store, callback, on_error)
        await subscription.retarget(visibility_set)
        return subscription

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        doc = await self._store.get(TRANSACTIONS, transaction_id)
        if doc is None:
            return None
        return Transaction.from_document(doc.id, doc.data)

    async def list_for_owner(self, user_id: str) -> list[Transaction]:
        """One-shot fetch of one principal's own transactions."""
        documents = await self._store.query(
            Query(TRANSACTIONS)
            .where("userId", "==", user_id)
            .order("date", descending=True)
            .order("createdAt", descending=True)
        )
        return parse_transactions(documents)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def add(
        self,
        draft: Union[TransactionDraft, dict[str, Any]],
        file: Optional[AttachmentFile] = None,
    ) -> Transaction:
        """
        Record a transaction owned by the signed-in principal.

        Raises:
            NotAuthenticated: nobody is signed in
            ValidationError: the draft breaks an integrity rule
        """
        principal = self._identity.require_principal()
        valid = self._validator.ensure_valid(draft)
        correlation_id = create_correlation_id()

        data = valid.to_document()
        attachment = await self._upload(principal, file, correlation_id)
        if attachment:
            data.update(attachment)
        data.update({
            "userId": principal.id,
            "userName": principal.display_name,
            "createdAt": self._clock().isoformat(),
        })

        transaction_id = await self._store.add(TRANSACTIONS, data)

        logger.info(
            "transaction_created",
            transaction_id=transaction_id,
            user_id=principal.id,
            has_attachment=attachment is not None,
        )
        await self._audit.log(AuditEventBuilder.transaction_changed(
            AuditEventType.TRANSACTION_CREATED,
            transaction_id,
            principal.id,
            details={"type": valid.type.value, "amount": str(valid.amount)},
            correlation_id=correlation_id,
        ))
        return Transaction.from_document(transaction_id, data)

    async def update(
        self,
        transaction_id: str,
        patch: Union[TransactionDraft, dict[str, Any]],
        file: Optional[AttachmentFile] = None,
    ) -> Transaction:
        """
        Overwrite the supplied editable fields.

        The merged record is validated as a whole. Switching away from a
        transfer clears `toAccount` unless the patch sets it. Owner and
        creation stamps are never changed.

        Raises:
            NotAuthenticated, TransactionNotFound, ValidationError
        """
        principal = self._identity.require_principal()
        doc = await self._store.get(TRANSACTIONS, transaction_id)
        if doc is None:
            raise TransactionNotFound(transaction_id)
        current = Transaction.from_document(doc.id, doc.data)

        fields = self._normalize_patch(patch)
        merged = {
            "type": current.type.value,
            "amount": current.amount,
            "category": current.category,
            "account": current.account,
            "toAccount": current.to_account,
            "note": current.note,
            "date": current.date,
        }
        merged.update(fields)
        if merged["type"] != "transfer" and "toAccount" not in fields:
            merged["toAccount"] = None
        valid = self._validator.ensure_valid(merged)

        stored = valid.to_document()
        changed_keys = set(fields)
        if current.to_account and valid.to_account is None:
            changed_keys.add("toAccount")
        changes: dict[str, Any] = {
            key: stored.get(key, DELETE_FIELD) for key in sorted(changed_keys)
        }

        correlation_id = create_correlation_id()
        attachment = await self._upload(principal, file, correlation_id)
        if attachment:
            changes.update(attachment)

        if not changes:
            return current

        await self._store.update(TRANSACTIONS, transaction_id, changes)

        logger.info(
            "transaction_updated",
            transaction_id=transaction_id,
            actor_id=principal.id,
            fields=sorted(changes),
        )
        await self._audit.log(AuditEventBuilder.transaction_changed(
            AuditEventType.TRANSACTION_UPDATED,
            transaction_id,
            principal.id,
            details={"fields": sorted(changes)},
            correlation_id=correlation_id,
        ))
        refreshed = await self._store.get(TRANSACTIONS, transaction_id)
        if refreshed is None:
            raise TransactionNotFound(transaction_id)
        return Transaction.from_document(refreshed.id, refreshed.data)

    async def delete(self, transaction_id: str) -> None:
        """
        Remove a transaction outright. Any signed-in viewer may delete.

        Raises:
            NotAuthenticated, TransactionNotFound
        """
        principal = self._identity.require_principal()
        doc = await self._store.get(TRANSACTIONS, transaction_id)
        if doc is None or not await self._store.delete(TRANSACTIONS, transaction_id):
            raise TransactionNotFound(transaction_id)

        owner_id = doc.data.get("userId")
        logger.info(
            "transaction_deleted",
            transaction_id=transaction_id,
            actor_id=principal.id,
            owner_id=owner_id,
        )
        await self._audit.log(AuditEventBuilder.transaction_changed(
            AuditEventType.TRANSACTION_DELETED,
            transaction_id,
            principal.id,
            details={"owner_id": owner_id},
        ))

    async def purge_owner(self, principal: Principal) -> int:
        """
        Delete every transaction the principal owns.

        Returns:
            Number of transactions deleted
        """
        documents = await self._store.query(Query(TRANSACTIONS).where("userId", "==", principal.id))
        if not documents:
            return 0

        batch = self._store.batch()
        for doc in documents:
            batch.delete(TRANSACTIONS, doc.id)
        await self._store.commit(batch)

        logger.info("transactions_purged", user_id=principal.id, count=len(documents))
        return len(documents)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _normalize_patch(patch: Union[TransactionDraft, dict[str, Any]]) -> dict[str, Any]:
        """Map patch keys to stored field names; reject read-only and unknown keys."""
        if isinstance(patch, TransactionDraft):
            patch = patch.model_dump(by_alias=True, exclude_unset=True)

        fields: dict[str, Any] = {}
        issues = []
        for key, value in patch.items():
            if key in READ_ONLY_FIELDS:
                issues.append(ValidationIssue(
                    field=key,
                    issue_type="read_only",
                    message=f"{key} cannot be changed",
                ))
            elif key not in EDITABLE_FIELDS:
                issues.append(ValidationIssue(
                    field=key,
                    issue_type="unknown",
                    message=f"{key} is not an editable field",
                ))
            else:
                fields[EDITABLE_FIELDS[key]] = value

        if issues:
            raise ValidationError(issues)
        return fields

    async def _upload(
        self,
        principal: Principal,
        file: Optional[AttachmentFile],
        correlation_id,
    ) -> Optional[dict[str, Any]]:
        """Upload a receipt; on UploadFailed log, audit and carry on without it."""
        if file is None:
            return None

        try:
            if self._attachments is None:
                raise UploadFailed("attachment storage not configured", file.filename)
            ref = await self._attachments.upload(file, self._identity.delegated_token())
        except UploadFailed as e:
            logger.warning(
                "attachment_upload_failed",
                user_id=principal.id,
                filename=file.filename,
                error=e.message,
            )
            await self._audit.log(AuditEventBuilder.attachment_upload_failed(
                principal.id, file.filename, e.message, correlation_id,
            ))
            return None

        return {
            "attachmentUrl": ref.view_link,
            "attachmentName": file.filename,
            "attachmentOwnerId": principal.id,
        }
