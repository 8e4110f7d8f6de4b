"""
Google Sheets Document Store

DESIGN DECISION: Google Sheets can back the document store for households
that want to see their raw data in a spreadsheet.

Layout: one worksheet per collection, one row per document:
    id | data_json | updated_at

TRADEOFFS:
- Not suitable for high-volume data (we're fine for a family)
- No transactions: commit() applies batch writes in order
- Limited query capabilities: we filter and sort in Python
- Subscriptions only see writes made through this process
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import gspread
import requests
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from family_ledger.config import get_settings
from family_ledger.config.settings import GoogleSheetsSettings
from family_ledger.services.storage.interface import (
    ConnectionError,
    Document,
    DocumentCallback,
    DocumentStore,
    ErrorCallback,
    NotFoundError,
    Query,
    QueryCallback,
    StorageError,
    Subscription,
    WriteBatch,
    apply_changes,
)
from family_ledger.services.storage.listeners import ListenerRegistry


DOCUMENT_COLUMNS = ["id", "data_json", "updated_at"]

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

# Failures a re-read can recover from
TRANSIENT_ERRORS = (gspread.exceptions.APIError, requests.RequestException)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=SCOPES,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_collection_sheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet holding a collection."""
        if collection in self._worksheets:
            return self._worksheets[collection]

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(collection)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=collection,
                rows=self._settings.rows_per_sheet,
                cols=len(DOCUMENT_COLUMNS),
            )
            sheet.append_row(DOCUMENT_COLUMNS)
        self._worksheets[collection] = sheet
        return sheet


class GoogleSheetsDocumentStore(DocumentStore):
    """
    Google Sheets implementation of the document store.

    gspread is blocking, so every sheet call runs in a worker thread.
    Only row reads are retried; appends and cell writes are not
    idempotent and fail on the first error.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._listeners = ListenerRegistry(self.query, self.get)

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_row(doc_id: str, data: dict[str, Any]) -> list[str]:
        return [
            doc_id,
            json.dumps(data, sort_keys=True),
            datetime.now(timezone.utc).isoformat(),
        ]

    @staticmethod
    def _from_row(row: list[str]) -> Optional[Document]:
        if not row or not row[0]:
            return None
        try:
            data = json.loads(row[1]) if len(row) > 1 and row[1] else {}
        except json.JSONDecodeError:
            return None  # Skip malformed rows
        return Document(row[0], data)

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _rows(self, collection: str) -> list[list[str]]:
        """All rows of a collection, header excluded."""
        return self._client.get_collection_sheet(collection).get_all_values()[1:]

    def _find_row(self, collection: str, doc_id: str) -> Optional[tuple[int, Document]]:
        for idx, row in enumerate(self._rows(collection), start=2):  # Row 1 is the header
            if row and row[0] == doc_id:
                doc = self._from_row(row)
                if doc is not None:
                    return idx, doc
        return None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            found = await asyncio.to_thread(self._find_row, collection, doc_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get {collection}/{doc_id}: {e}")
        return found[1] if found else None

    async def query(self, query: Query) -> list[Document]:
        try:
            rows = await asyncio.to_thread(self._rows, query.collection)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to query {query.collection}: {e}")
        documents = [doc for doc in (self._from_row(row) for row in rows) if doc is not None]
        return query.apply(documents)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid4().hex[:20]
        try:
            await asyncio.to_thread(self._append, collection, doc_id, data)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to add to {collection}: {e}")
        await self._listeners.notify(collection)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._set_sync, collection, doc_id, data)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to set {collection}/{doc_id}: {e}")
        await self._listeners.notify(collection)

    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> None:
        await asyncio.to_thread(self._update_row, collection, doc_id, changes)
        await self._listeners.notify(collection)

    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            deleted = await asyncio.to_thread(self._delete_sync, collection, doc_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete {collection}/{doc_id}: {e}")
        if deleted:
            await self._listeners.notify(collection)
        return deleted

    async def commit(self, batch: WriteBatch) -> None:
        """
        Apply batch writes in order.

        Targets are checked up front so a missing document fails the whole
        batch before anything is written.
        """
        touched = await asyncio.to_thread(self._commit_sync, batch)
        for collection in touched:
            await self._listeners.notify(collection)

    def _append(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        sheet = self._client.get_collection_sheet(collection)
        sheet.append_row(self._to_row(doc_id, data), value_input_option="RAW")

    def _set_sync(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        found = self._find_row(collection, doc_id)
        if found:
            self._write_row(self._client.get_collection_sheet(collection), found[0], doc_id, data)
        else:
            self._append(collection, doc_id, data)

    def _delete_sync(self, collection: str, doc_id: str) -> bool:
        found = self._find_row(collection, doc_id)
        if not found:
            return False
        self._client.get_collection_sheet(collection).delete_rows(found[0])
        return True

    def _commit_sync(self, batch: WriteBatch) -> "set[str]":
        for op, collection, doc_id, _ in batch.operations:
            if op == "update" and self._find_row(collection, doc_id) is None:
                raise NotFoundError(f"{collection}/{doc_id} does not exist")

        touched: set[str] = set()
        for op, collection, doc_id, changes in batch.operations:
            if op == "update":
                self._update_row(collection, doc_id, changes or {})
            else:
                try:
                    self._delete_sync(collection, doc_id)
                except Exception as e:
                    raise StorageError(f"Failed to delete {collection}/{doc_id}: {e}")
            touched.add(collection)
        return touched

    def _update_row(self, collection: str, doc_id: str, changes: dict[str, Any]) -> None:
        try:
            found = self._find_row(collection, doc_id)
            if not found:
                raise NotFoundError(f"{collection}/{doc_id} does not exist")
            row_idx, doc = found
            sheet = self._client.get_collection_sheet(collection)
            self._write_row(sheet, row_idx, doc_id, apply_changes(doc.data, changes))
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {collection}/{doc_id}: {e}")

    def _write_row(self, sheet: gspread.Worksheet, row_idx: int, doc_id: str, data: dict) -> None:
        for col_idx, value in enumerate(self._to_row(doc_id, data), start=1):
            sheet.update_cell(row_idx, col_idx, value)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

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
