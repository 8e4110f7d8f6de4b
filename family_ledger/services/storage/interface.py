"""
Abstract Document Store Interface

DESIGN DECISION: The core talks to a generic real-time document database
through this interface. This allows us to:
1. Run entirely in memory for tests and local use
2. Back the same logic with Google Sheets
3. Keep business logic decoupled from any one vendor SDK

The contract mirrors what the application needs and nothing more:
- equality / array-contains / in filters, with ordering
- continuous subscriptions that push full snapshots
- field-level array operators (add-if-absent, remove)
- an atomic multi-document update batch
"""

from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional


# =============================================================================
# FIELD OPERATORS
# =============================================================================

class ArrayUnion:
    """Append each value to an array field unless already present."""

    def __init__(self, *values: Any):
        self.values = values

    def apply(self, current: Any) -> list:
        result = list(current) if isinstance(current, list) else []
        for value in self.values:
            if value not in result:
                result.append(deepcopy(value))
        return result

    def __repr__(self) -> str:
        return f"ArrayUnion{self.values!r}"


class ArrayRemove:
    """Remove every occurrence of each value from an array field."""

    def __init__(self, *values: Any):
        self.values = values

    def apply(self, current: Any) -> list:
        if not isinstance(current, list):
            return []
        return [item for item in current if item not in self.values]

    def __repr__(self) -> str:
        return f"ArrayRemove{self.values!r}"


class _DeleteField:
    """Sentinel: remove the field from the document."""

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


def apply_changes(data: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of `data` with field-level `changes` applied."""
    result = deepcopy(data)
    for key, value in changes.items():
        if value is DELETE_FIELD:
            result.pop(key, None)
        elif isinstance(value, (ArrayUnion, ArrayRemove)):
            result[key] = value.apply(result.get(key))
        else:
            result[key] = deepcopy(value)
    return result


# =============================================================================
# QUERIES
# =============================================================================

FILTER_OPERATORS = ("==", "array_contains", "in")


@dataclass(frozen=True)
class Document:
    """A document id plus its body."""
    id: str
    data: dict[str, Any]


@dataclass(frozen=True)
class Filter:
    """A single field predicate."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: dict[str, Any]) -> bool:
        actual = data.get(self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "array_contains":
            return isinstance(actual, list) and self.value in actual
        return actual in self.value


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Query:
    """
    A collection-scoped query.

    Builders return new Query objects:
        Query("transactions").where("userId", "in", ids).order("date", descending=True)
    """
    collection: str
    filters: tuple[Filter, ...] = ()
    ordering: tuple[OrderBy, ...] = ()

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        if op == "in":
            value = tuple(value)
        return Query(self.collection, self.filters + (Filter(field_name, op, value),), self.ordering)

    def order(self, field_name: str, descending: bool = False) -> "Query":
        return Query(self.collection, self.filters, self.ordering + (OrderBy(field_name, descending),))

    def matches(self, data: dict[str, Any]) -> bool:
        return all(f.matches(data) for f in self.filters)

    def apply(self, documents: Iterable[Document]) -> list[Document]:
        """Filter and order documents; missing sort values go last."""
        result = [doc for doc in documents if self.matches(doc.data)]
        for order in reversed(self.ordering):
            present = [d for d in result if d.data.get(order.field) is not None]
            missing = [d for d in result if d.data.get(order.field) is None]
            present.sort(key=lambda d: d.data[order.field], reverse=order.descending)
            result = present + missing
        return result


# =============================================================================
# SUBSCRIPTIONS AND BATCHES
# =============================================================================

QueryCallback = Callable[[list[Document]], Any]
DocumentCallback = Callable[[Optional[Document]], Any]
ErrorCallback = Callable[[Exception], None]


class Subscription:
    """
    Handle for a continuous subscription.

    close() unregisters the listener; it is idempotent. Use as a context
    manager to guarantee release.
    """

    def __init__(self, unregister: Callable[[], None]):
        self._unregister = unregister
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if self._active:
            self._active = False
            self._unregister()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class WriteBatch:
    """
    Group of writes committed together by DocumentStore.commit().

    Only updates and deletes of existing documents are batched; that is
    all the membership mutations need.
    """
    operations: list[tuple[str, str, str, Optional[dict[str, Any]]]] = field(default_factory=list)

    def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> "WriteBatch":
        self.operations.append(("update", collection, doc_id, changes))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self.operations.append(("delete", collection, doc_id, None))
        return self

    def __len__(self) -> int:
        return len(self.operations)


# =============================================================================
# STORE INTERFACE
# =============================================================================

class DocumentStore(ABC):
    """
    Abstract interface for document storage.

    Any backend (in-memory, Google Sheets, ...) must implement these methods.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """
        Fetch one document.

        Returns:
            The document, or None if it does not exist
        """
        pass

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """
        Insert a document under a generated id.

        Returns:
            The new document id
        """
        pass

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or overwrite a document under a known id."""
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> None:
        """
        Apply field-level changes (values may be ArrayUnion, ArrayRemove
        or DELETE_FIELD).

        Raises:
            NotFoundError: If the document does not exist
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """
        Delete a document.

        Returns:
            True if a document was deleted
        """
        pass

    @abstractmethod
    async def query(self, query: Query) -> list[Document]:
        """One-shot fetch of the documents matching a query."""
        pass

    @abstractmethod
    async def subscribe_query(
        self,
        query: Query,
        callback: QueryCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Register a continuous subscription to a query.

        The callback receives the full matching snapshot immediately and
        again whenever the result set changes.
        """
        pass

    @abstractmethod
    async def subscribe_document(
        self,
        collection: str,
        doc_id: str,
        callback: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Register a continuous subscription to a single document.

        The callback receives None once the document is deleted.
        """
        pass

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """
        Apply every write in the batch.

        Raises:
            NotFoundError: If an updated document does not exist
        """
        pass

    def batch(self) -> WriteBatch:
        return WriteBatch()


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
