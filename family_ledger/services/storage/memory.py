"""
In-Memory Document Store

Dict-backed implementation of the DocumentStore contract. Used for tests,
local development, and as the default backend when no remote store is
configured.

Reads and writes deep-copy document bodies, so callers never share mutable
state with the store. Writes are serialized with an asyncio.Lock and
subscribers are notified after the lock is released.
"""

import asyncio
from collections import defaultdict
from copy import deepcopy
from typing import Any, Callable, Optional
from uuid import uuid4

from family_ledger.services.storage.interface import (
    Document,
    DocumentCallback,
    DocumentStore,
    ErrorCallback,
    NotFoundError,
    Query,
    QueryCallback,
    Subscription,
    WriteBatch,
    apply_changes,
)
from family_ledger.services.storage.listeners import ListenerRegistry


def _generate_id() -> str:
    return uuid4().hex[:20]


class InMemoryDocumentStore(DocumentStore):
    """Document store kept entirely in process memory."""

    def __init__(self, id_factory: Optional[Callable[[], str]] = None):
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._lock = asyncio.Lock()
        self._id_factory = id_factory or _generate_id
        self._listeners = ListenerRegistry(self.query, self.get)

    @property
    def listener_count(self) -> int:
        """Number of live subscriptions (leak checks in tests)."""
        return len(self._listeners)

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return Document(doc_id, deepcopy(data))

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        async with self._lock:
            doc_id = self._id_factory()
            while doc_id in self._collections[collection]:
                doc_id = self._id_factory()
            self._collections[collection][doc_id] = deepcopy(data)
        await self._listeners.notify(collection)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        async with self._lock:
            self._collections[collection][doc_id] = deepcopy(data)
        await self._listeners.notify(collection)

    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> None:
        async with self._lock:
            self._apply_update(collection, doc_id, changes)
        await self._listeners.notify(collection)

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            removed = self._collections.get(collection, {}).pop(doc_id, None)
        if removed is not None:
            await self._listeners.notify(collection)
        return removed is not None

    async def query(self, query: Query) -> list[Document]:
        documents = [
            Document(doc_id, deepcopy(data))
            for doc_id, data in self._collections.get(query.collection, {}).items()
        ]
        return query.apply(documents)

    async def subscribe_query(
        self,
        query: Query,
        callback: QueryCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        return await self._listeners.add_query_listener(query, callback, on_error)

    async def subscribe_document(
        self,
        collection: str,
        doc_id: str,
        callback: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        return await self._listeners.add_document_listener(collection, doc_id, callback, on_error)

    async def commit(self, batch: WriteBatch) -> None:
        """Apply the batch all-or-nothing."""
        touched: set[str] = set()
        async with self._lock:
            for op, collection, doc_id, _ in batch.operations:
                if op == "update" and doc_id not in self._collections.get(collection, {}):
                    raise NotFoundError(f"{collection}/{doc_id} does not exist")

            staged = {
                name: deepcopy(docs)
                for name, docs in self._collections.items()
                if any(collection == name for _, collection, _, _ in batch.operations)
            }
            for op, collection, doc_id, changes in batch.operations:
                docs = staged.setdefault(collection, {})
                if op == "update":
                    docs[doc_id] = apply_changes(docs[doc_id], changes or {})
                else:
                    docs.pop(doc_id, None)
                touched.add(collection)
            self._collections.update(staged)

        for collection in touched:
            await self._listeners.notify(collection)

    def _apply_update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> None:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        docs[doc_id] = apply_changes(docs[doc_id], changes)
