"""
Shared Catalog Manager

Categories and accounts are global records that principals subscribe to,
not per-user copies. An entry's `userIds` is its subscription list:

    add("Food")      -> joins the existing "food" entry if there is one
    remove(entry)    -> leaves the entry; the record itself stays
    attach_existing  -> rejoins (or joins) by id

DESIGN DECISION: Logical identity is (name casefolded, type). Two
concurrent `add` calls can still create duplicate records, there is no
store-level uniqueness constraint. Every read dedupes by logical key and
keeps the first record encountered, so duplicates never reach callers.
"""

from typing import Iterable, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from family_ledger.audit import AuditLogger
from family_ledger.exceptions import AlreadyInList, EntryNotFound, ValidationError
from family_ledger.models.audit import AuditEventBuilder, AuditEventType
from family_ledger.models.entities import (
    CatalogEntry,
    CatalogKind,
    CategoryType,
    Principal,
    logical_key,
    utc_now,
)
from family_ledger.models.validation import check_name
from family_ledger.services.storage import (
    ArrayRemove,
    ArrayUnion,
    Document,
    DocumentStore,
    NotFoundError,
    Query,
)


logger = structlog.get_logger(__name__)


def dedupe(entries: Iterable[CatalogEntry]) -> list[CatalogEntry]:
    """Keep the first entry per logical key, preserving order."""
    seen: set[tuple[str, Optional[str]]] = set()
    unique = []
    for entry in entries:
        if entry.logical_key in seen:
            continue
        seen.add(entry.logical_key)
        unique.append(entry)
    return unique


def by_type(entries: Iterable[CatalogEntry], entry_type: CategoryType) -> list[CatalogEntry]:
    """Category bucket; entries stored without a type count as expense."""
    return [entry for entry in entries if (entry.type or CategoryType.EXPENSE) == entry_type]


class SharedCatalogManager:
    """
    Manages one catalog kind (categories or accounts).

    Usage:
        categories = SharedCatalogManager(store, CatalogKind.CATEGORY)
        entry = await categories.add(alice, "Groceries")
    """

    def __init__(
        self,
        store: DocumentStore,
        kind: CatalogKind,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._kind = kind
        self._audit = audit_logger or AuditLogger()

    by_type = staticmethod(by_type)

    @property
    def kind(self) -> CatalogKind:
        return self._kind

    @property
    def collection(self) -> str:
        return self._kind.value

    # =========================================================================
    # READS
    # =========================================================================

    def _entries(self, documents: list[Document]) -> list[CatalogEntry]:
        entries = []
        for doc in documents:
            try:
                entries.append(CatalogEntry.from_document(doc.id, doc.data, kind=self._kind))
            except PydanticValidationError as e:
                logger.warning(
                    "catalog_document_invalid",
                    kind=self._kind.value,
                    entry_id=doc.id,
                    error=str(e),
                )
        return entries

    async def list_mine(self, principal: Principal) -> list[CatalogEntry]:
        """Entries the principal subscribes to, deduplicated."""
        documents = await self._store.query(
            Query(self.collection).where("userIds", "array_contains", principal.id)
        )
        return dedupe(self._entries(documents))

    async def list_all(self) -> list[CatalogEntry]:
        """Every entry of this kind, deduplicated (used for suggestions)."""
        return dedupe(self._entries(await self._store.query(Query(self.collection))))

    async def available_to_add(self, principal: Principal) -> list[CatalogEntry]:
        """Suggestions: entries not yet in the principal's list."""
        mine = {entry.logical_key for entry in await self.list_mine(principal)}
        return [entry for entry in await self.list_all() if entry.logical_key not in mine]

    async def get(self, entry_id: str) -> CatalogEntry:
        doc = await self._store.get(self.collection, entry_id)
        if doc is None:
            raise EntryNotFound(self._kind.label, entry_id)
        return CatalogEntry.from_document(doc.id, doc.data, kind=self._kind)

    # Derived category buckets

    async def expense_categories(self, principal: Principal) -> list[CatalogEntry]:
        return by_type(await self.list_mine(principal), CategoryType.EXPENSE)

    async def income_categories(self, principal: Principal) -> list[CatalogEntry]:
        return by_type(await self.list_mine(principal), CategoryType.INCOME)

    async def transfer_categories(self, principal: Principal) -> list[CatalogEntry]:
        return by_type(await self.list_mine(principal), CategoryType.TRANSFER)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def add(
        self,
        principal: Principal,
        name: str,
        entry_type: Optional[CategoryType] = None,
    ) -> CatalogEntry:
        """
        Add an entry to the principal's list.

        Joins an existing equivalent entry when one exists, otherwise
        creates a new record. The name keeps its case; matching does not.

        Raises:
            ValidationError: empty or over-long name
            AlreadyInList: the principal already has an equivalent entry
        """
        name = (name or "").strip()
        issue = check_name(name, self._kind.label)
        if issue is not None:
            raise ValidationError([issue])

        if self._kind is CatalogKind.CATEGORY:
            entry_type = CategoryType(entry_type or CategoryType.EXPENSE)
        else:
            entry_type = None
        key = logical_key(name, entry_type)

        if any(entry.logical_key == key for entry in await self.list_mine(principal)):
            raise AlreadyInList(self._kind.label, name)

        existing = next(
            (entry for entry in await self.list_all() if entry.logical_key == key),
            None,
        )
        if existing is not None:
            await self._store.update(
                self.collection, existing.id, {"userIds": ArrayUnion(principal.id)}
            )
            logger.info("catalog_entry_joined", kind=self._kind.value, entry_id=existing.id)
            await self._audit.log(AuditEventBuilder.catalog_changed(
                AuditEventType.CATALOG_ENTRY_ATTACHED,
                self._kind.label, existing.id, principal.id, existing.name,
            ))
            return await self.get(existing.id)

        data = {
            "name": name,
            "userIds": [principal.id],
            "createdBy": principal.id,
            "createdAt": utc_now().isoformat(),
        }
        if entry_type is not None:
            data["type"] = entry_type.value
        entry_id = await self._store.add(self.collection, data)

        logger.info("catalog_entry_created", kind=self._kind.value, entry_id=entry_id)
        await self._audit.log(AuditEventBuilder.catalog_changed(
            AuditEventType.CATALOG_ENTRY_CREATED,
            self._kind.label, entry_id, principal.id, name,
        ))
        return CatalogEntry.from_document(entry_id, data, kind=self._kind)

    async def attach_existing(self, principal: Principal, entry_id: str) -> CatalogEntry:
        """Add the principal to an entry's userIds (idempotent)."""
        await self._change_membership(entry_id, {"userIds": ArrayUnion(principal.id)})
        await self._audit.log(AuditEventBuilder.catalog_changed(
            AuditEventType.CATALOG_ENTRY_ATTACHED, self._kind.label, entry_id, principal.id,
        ))
        return await self.get(entry_id)

    async def remove(self, principal: Principal, entry_id: str) -> None:
        """Remove the principal from an entry; the record is never deleted."""
        await self._change_membership(entry_id, {"userIds": ArrayRemove(principal.id)})
        await self._audit.log(AuditEventBuilder.catalog_changed(
            AuditEventType.CATALOG_ENTRY_DETACHED, self._kind.label, entry_id, principal.id,
        ))

    async def detach_everywhere(self, principal: Principal) -> int:
        """
        Remove the principal from every entry of this kind.

        Returns:
            Number of records the principal was detached from
        """
        documents = await self._store.query(
            Query(self.collection).where("userIds", "array_contains", principal.id)
        )
        for doc in documents:
            await self._store.update(self.collection, doc.id, {"userIds": ArrayRemove(principal.id)})

        logger.info("catalog_detached_everywhere", kind=self._kind.value, count=len(documents))
        return len(documents)

    async def _change_membership(self, entry_id: str, changes: dict) -> None:
        try:
            await self._store.update(self.collection, entry_id, changes)
        except NotFoundError:
            raise EntryNotFound(self._kind.label, entry_id)
        logger.info("catalog_membership_changed", kind=self._kind.value, entry_id=entry_id)
