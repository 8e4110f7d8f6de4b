"""
Main Orchestrator for Family Ledger

This module ties together all the components and defines the
per-principal control flow:

1. Identity resolves the principal
2. FamilyView resolves the family and its visibility set
3. The ledger subscribes to every transaction owned by that set
4. Catalogs resolve the principal's categories and accounts,
   independently of family membership

DESIGN DECISION: The session is the only place where a membership
mutation and the ledger subscription meet. After any mutation that can
change the visibility set, the family view is refreshed and the ledger
subscription is re-targeted, so the transaction list never lags behind
the family.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

import structlog

from family_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from family_ledger.catalog import SharedCatalogManager
from family_ledger.config import Settings, get_settings
from family_ledger.family import FamilyMembershipEngine, FamilyView
from family_ledger.identity import IdentityContext, InMemorySessionScope, SessionScope
from family_ledger.ledger import LedgerSubscription, TransactionLedger, present
from family_ledger.models.audit import AuditEventBuilder
from family_ledger.models.entities import (
    AttachmentFile,
    CatalogEntry,
    CatalogKind,
    CategoryType,
    Family,
    FamilyInvite,
    Principal,
    Transaction,
    TransactionDraft,
    TransactionView,
)
from family_ledger.services.attachments import AttachmentStore, GoogleDriveAttachmentStore
from family_ledger.services.notifications import InviteNotifier, create_notifier
from family_ledger.services.storage import (
    DocumentStore,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    Subscription,
)


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """Everything one process needs, wired to a single document store."""

    store: DocumentStore
    identity: IdentityContext
    engine: FamilyMembershipEngine
    categories: SharedCatalogManager
    accounts: SharedCatalogManager
    ledger: TransactionLedger
    attachments: Optional[AttachmentStore]
    notifier: InviteNotifier
    audit_logger: AuditLogger

    def session(self) -> "LedgerSession":
        return LedgerSession(
            identity=self.identity,
            engine=self.engine,
            ledger=self.ledger,
            categories=self.categories,
            accounts=self.accounts,
            audit_logger=self.audit_logger,
        )


class LedgerSession:
    """
    One signed-in principal's live view plus the mutators bound to them.

    Usage:
        session = components.session()
        await session.start()
        await session.create_family("Smith")
        await session.add_transaction({...})
        await session.close()
    """

    def __init__(
        self,
        identity: IdentityContext,
        engine: FamilyMembershipEngine,
        ledger: TransactionLedger,
        categories: SharedCatalogManager,
        accounts: SharedCatalogManager,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._identity = identity
        self._engine = engine
        self._ledger = ledger
        self._categories = categories
        self._accounts = accounts
        self._audit = audit_logger or AuditLogger()

        self._view = FamilyView(engine)
        self._view_listener: Optional[Subscription] = None
        self._transactions: Optional[LedgerSubscription] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Open the family view and the ledger subscription for the current principal."""
        principal = self._identity.require_principal()
        await self.close()

        await self._view.start(principal)
        self._transactions = await self._ledger.subscribe(self._view.visibility_set)
        self._view_listener = self._view.on_change(self._on_visibility_change)
        logger.info("session_started", principal_id=principal.id)

    async def close(self) -> None:
        """Release every subscription; safe to call twice."""
        if self._view_listener is not None:
            self._view_listener.close()
            self._view_listener = None
        if self._transactions is not None:
            self._transactions.close()
            self._transactions = None
        await self._view.close()

    async def __aenter__(self) -> "LedgerSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _on_visibility_change(self, visibility_set: frozenset[str]) -> None:
        if self._transactions is not None and visibility_set:
            await self._transactions.retarget(visibility_set)

    async def _membership_changed(self) -> None:
        await self._view.refresh()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def principal(self) -> Principal:
        return self._identity.require_principal()

    @property
    def family(self) -> Optional[Family]:
        return self._view.family

    @property
    def pending_invites(self) -> list[FamilyInvite]:
        return self._view.pending_invites

    @property
    def visibility_set(self) -> frozenset[str]:
        return self._view.visibility_set

    @property
    def is_owner(self) -> bool:
        return self._view.is_owner

    @property
    def transactions(self) -> list[Transaction]:
        """Current ledger snapshot, newest first."""
        return self._transactions.snapshot if self._transactions else []

    def visible_transactions(self) -> list[TransactionView]:
        """The snapshot with attachments redacted for the current principal."""
        viewer_id = self.principal.id
        return [present(transaction, viewer_id) for transaction in self.transactions]

    @property
    def categories(self) -> SharedCatalogManager:
        return self._categories

    @property
    def accounts(self) -> SharedCatalogManager:
        return self._accounts

    # =========================================================================
    # FAMILY
    # =========================================================================

    async def create_family(self, name: str) -> Family:
        family = await self._engine.create_family(self.principal, name)
        await self._membership_changed()
        return family

    async def create_invite_code(self) -> str:
        return await self._engine.create_invite_code(self.principal, self.family)

    async def join_with_code(self, code: str) -> Family:
        family = await self._engine.join_with_code(self.principal, code)
        await self._membership_changed()
        return family

    async def invite_member(self, email: str) -> FamilyInvite:
        return await self._engine.invite_member(self.principal, self.family, email)

    async def accept_invite(self, invite_id: str) -> Family:
        family = await self._engine.accept_invite(self.principal, invite_id)
        await self._membership_changed()
        return family

    async def decline_invite(self, invite_id: str) -> None:
        await self._engine.decline_invite(self.principal, invite_id)

    async def remove_member(self, member_id: str) -> Family:
        family = await self._engine.remove_member(self.principal, self.family, member_id)
        await self._membership_changed()
        return family

    async def leave_family(self) -> None:
        await self._engine.leave_family(self.principal, self.family)
        await self._membership_changed()

    async def delete_family(self) -> int:
        deleted = await self._engine.delete_family(self.principal, self.family)
        await self._membership_changed()
        return deleted

    # =========================================================================
    # CATALOGS
    # =========================================================================

    async def add_category(
        self,
        name: str,
        category_type: CategoryType = CategoryType.EXPENSE,
    ) -> CatalogEntry:
        return await self._categories.add(self.principal, name, category_type)

    async def add_account(self, name: str) -> CatalogEntry:
        return await self._accounts.add(self.principal, name)

    async def my_categories(self) -> list[CatalogEntry]:
        return await self._categories.list_mine(self.principal)

    async def my_accounts(self) -> list[CatalogEntry]:
        return await self._accounts.list_mine(self.principal)

    # =========================================================================
    # LEDGER
    # =========================================================================

    async def add_transaction(
        self,
        draft: Union[TransactionDraft, dict[str, Any]],
        file: Optional[AttachmentFile] = None,
    ) -> Transaction:
        return await self._ledger.add(draft, file)

    async def update_transaction(
        self,
        transaction_id: str,
        patch: Union[TransactionDraft, dict[str, Any]],
        file: Optional[AttachmentFile] = None,
    ) -> Transaction:
        return await self._ledger.update(transaction_id, patch, file)

    async def delete_transaction(self, transaction_id: str) -> None:
        await self._ledger.delete(transaction_id)

    # =========================================================================
    # ACCOUNT
    # =========================================================================

    async def purge_account(self) -> dict[str, int]:
        """
        Delete the principal's transactions, detach them from every
        category and account, then sign them out.

        Shared catalog records and the family document are left in place.
        """
        principal = self.principal
        correlation_id = create_correlation_id()

        transactions_deleted = await self._ledger.purge_owner(principal)
        categories_detached = await self._categories.detach_everywhere(principal)
        accounts_detached = await self._accounts.detach_everywhere(principal)

        await self._audit.log(AuditEventBuilder.account_purged(
            principal.id,
            transactions_deleted,
            categories_detached + accounts_detached,
            correlation_id,
        ))

        await self.close()
        self._identity.sign_out()
        return {
            "transactions_deleted": transactions_deleted,
            "categories_detached": categories_detached,
            "accounts_detached": accounts_detached,
        }

    async def sign_out(self) -> None:
        await self.close()
        self._identity.sign_out()


def create_app_components(
    settings: Optional[Settings] = None,
    use_sheets: Optional[bool] = None,
    session_scope: Optional[SessionScope] = None,
    store: Optional[DocumentStore] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from (defaults to get_settings())
        use_sheets: Force the Google Sheets store on or off; by default
                    follows STORAGE_BACKEND
        session_scope: Where the delegated token lives (in-memory by default)
        store: Use this store instead of building one

    Returns:
        AppComponents sharing one store and one audit logger
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)

    if store is None:
        if use_sheets is None:
            use_sheets = app_settings.storage_backend == "sheets"
        store = InMemoryDocumentStore()
        if use_sheets:
            try:
                store = GoogleSheetsDocumentStore()
            except Exception as e:
                # Sheets not configured - continue in memory
                logger.warning("sheets_store_unavailable", error=str(e))

    audit_logger = AuditLogger(store)
    identity = IdentityContext(session_scope or InMemorySessionScope())
    notifier = create_notifier(settings.smtp)
    attachments = GoogleDriveAttachmentStore(
        settings.drive,
        max_size_bytes=app_settings.max_attachment_size_bytes,
    )

    return AppComponents(
        store=store,
        identity=identity,
        engine=FamilyMembershipEngine(
            store,
            notifier=notifier,
            audit_logger=audit_logger,
            settings=settings.family,
        ),
        categories=SharedCatalogManager(store, CatalogKind.CATEGORY, audit_logger),
        accounts=SharedCatalogManager(store, CatalogKind.ACCOUNT, audit_logger),
        ledger=TransactionLedger(
            store,
            identity,
            attachments=attachments,
            audit_logger=audit_logger,
        ),
        attachments=attachments,
        notifier=notifier,
        audit_logger=audit_logger,
    )
