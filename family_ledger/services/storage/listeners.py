"""
Subscription bookkeeping shared by the document store backends.

A backend registers listeners here and calls `notify(collection)` after
every write. Each listener re-evaluates its query and receives a fresh
snapshot only when its result actually changed.

Callbacks may be plain functions or coroutine functions; coroutines are
awaited before the write that triggered them returns.

Listener callbacks run on the subscription boundary: anything they raise
is logged and swallowed so one faulty consumer cannot break a write or
another consumer.
"""

import inspect
import itertools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from family_ledger.services.storage.interface import (
    Document,
    DocumentCallback,
    ErrorCallback,
    Query,
    QueryCallback,
    Subscription,
)


logger = structlog.get_logger(__name__)

Snapshot = list[tuple[str, dict[str, Any]]]


@dataclass
class _Listener:
    listener_id: int
    collection: str
    query: Optional[Query]
    doc_id: Optional[str]
    callback: Callable
    on_error: Optional[ErrorCallback]
    last: Any = field(default=None)

    def fingerprint(self, documents: list[Document]) -> Snapshot:
        return [(doc.id, doc.data) for doc in documents]


class ListenerRegistry:
    """
    Live subscriptions of one store instance.

    `fetch_query` and `fetch_document` are the backend's own read
    coroutines; they compute the snapshot delivered to each listener.
    """

    def __init__(
        self,
        fetch_query: Callable[[Query], Awaitable[list[Document]]],
        fetch_document: Callable[[str, str], Awaitable[Optional[Document]]],
    ):
        self._fetch_query = fetch_query
        self._fetch_document = fetch_document
        self._listeners: dict[int, _Listener] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._listeners)

    async def add_query_listener(
        self,
        query: Query,
        callback: QueryCallback,
        on_error: Optional[ErrorCallback],
    ) -> Subscription:
        listener = _Listener(
            listener_id=next(self._ids),
            collection=query.collection,
            query=query,
            doc_id=None,
            callback=callback,
            on_error=on_error,
        )
        return await self._register(listener)

    async def add_document_listener(
        self,
        collection: str,
        doc_id: str,
        callback: DocumentCallback,
        on_error: Optional[ErrorCallback],
    ) -> Subscription:
        listener = _Listener(
            listener_id=next(self._ids),
            collection=collection,
            query=None,
            doc_id=doc_id,
            callback=callback,
            on_error=on_error,
        )
        return await self._register(listener)

    async def _register(self, listener: _Listener) -> Subscription:
        self._listeners[listener.listener_id] = listener
        subscription = Subscription(lambda: self._listeners.pop(listener.listener_id, None))
        await self._deliver(listener, force=True)
        return subscription

    async def notify(self, collection: str) -> None:
        """Re-evaluate every listener on `collection` after a write."""
        for listener in list(self._listeners.values()):
            if listener.collection != collection:
                continue
            if listener.listener_id not in self._listeners:
                continue
            await self._deliver(listener)

    async def _deliver(self, listener: _Listener, force: bool = False) -> None:
        try:
            if listener.query is not None:
                documents = await self._fetch_query(listener.query)
                payload: Any = documents
                fingerprint: Any = listener.fingerprint(documents)
            else:
                payload = await self._fetch_document(listener.collection, listener.doc_id)
                fingerprint = (payload.id, payload.data) if payload else None
        except Exception as e:
            logger.error(
                "subscription_fetch_failed",
                collection=listener.collection,
                listener_id=listener.listener_id,
                error=str(e),
            )
            self._report_error(listener, e)
            return

        if not force and fingerprint == listener.last:
            return
        listener.last = fingerprint

        try:
            result = listener.callback(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "subscription_callback_failed",
                collection=listener.collection,
                listener_id=listener.listener_id,
                error=str(e),
            )

    def _report_error(self, listener: _Listener, error: Exception) -> None:
        if listener.on_error is None:
            return
        try:
            listener.on_error(error)
        except Exception as e:
            logger.error("subscription_error_hook_failed", error=str(e))
