"""
Storage Services Package

Provides the abstract document store contract and its implementations.
The in-memory store is the default; Google Sheets is the remote backend.
"""

from family_ledger.services.storage.interface import (
    DELETE_FIELD,
    ArrayRemove,
    ArrayUnion,
    ConnectionError,
    Document,
    DocumentStore,
    DuplicateError,
    Filter,
    NotFoundError,
    OrderBy,
    Query,
    StorageError,
    Subscription,
    WriteBatch,
    apply_changes,
)
from family_ledger.services.storage.memory import InMemoryDocumentStore
from family_ledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interface
    "DocumentStore",
    "Document",
    "Filter",
    "OrderBy",
    "Query",
    "Subscription",
    "WriteBatch",
    # Field operators
    "ArrayRemove",
    "ArrayUnion",
    "DELETE_FIELD",
    "apply_changes",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryDocumentStore",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
]
