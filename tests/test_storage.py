"""Tests for the document store contract (in-memory and Sheets backends)."""

import json

import pytest
import requests
from tenacity import wait_none

from family_ledger.services.storage import (
    DELETE_FIELD,
    ArrayRemove,
    ArrayUnion,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    NotFoundError,
    Query,
    StorageError,
    apply_changes,
)
from family_ledger.services.storage.google_sheets import DOCUMENT_COLUMNS


class TestFieldOperators:
    """Tests for array operators and field deletion."""

    def test_array_union_adds_only_missing_values(self):
        """Test ArrayUnion behaves as add-if-absent."""
        result = apply_changes({"ids": ["a"]}, {"ids": ArrayUnion("a", "b")})
        assert result["ids"] == ["a", "b"]

    def test_array_remove_removes_dict_values(self):
        """Test ArrayRemove matches whole dict entries."""
        member = {"id": "bob", "email": "bob@example.com"}
        result = apply_changes({"members": [member]}, {"members": ArrayRemove(member)})
        assert result["members"] == []

    def test_delete_field(self):
        """Test DELETE_FIELD drops the key."""
        result = apply_changes({"toAccount": "Bank", "note": "x"}, {"toAccount": DELETE_FIELD})
        assert result == {"note": "x"}

    def test_apply_changes_does_not_mutate_input(self):
        """Test the original document is left untouched."""
        original = {"ids": ["a"]}
        apply_changes(original, {"ids": ArrayUnion("b")})
        assert original == {"ids": ["a"]}


class TestQuery:
    """Tests for query filtering and ordering."""

    async def test_in_filter_and_descending_order(self, store):
        """Test 'in' filters and date-descending ordering."""
        await store.set("transactions", "t1", {"userId": "a", "date": "2026-03-01"})
        await store.set("transactions", "t2", {"userId": "b", "date": "2026-03-03"})
        await store.set("transactions", "t3", {"userId": "c", "date": "2026-03-02"})

        results = await store.query(
            Query("transactions").where("userId", "in", ["a", "b"]).order("date", descending=True)
        )
        assert [doc.id for doc in results] == ["t2", "t1"]

    async def test_secondary_ordering_breaks_ties(self, store):
        """Test the second order key is used for equal first keys."""
        await store.set("transactions", "old", {"date": "2026-03-01", "createdAt": "2026-03-01T08:00:00"})
        await store.set("transactions", "new", {"date": "2026-03-01", "createdAt": "2026-03-01T09:00:00"})

        results = await store.query(
            Query("transactions").order("date", descending=True).order("createdAt", descending=True)
        )
        assert [doc.id for doc in results] == ["new", "old"]

    async def test_array_contains(self, store):
        """Test array_contains matches list membership."""
        await store.set("categories", "c1", {"userIds": ["alice", "bob"]})
        await store.set("categories", "c2", {"userIds": ["carol"]})

        results = await store.query(Query("categories").where("userIds", "array_contains", "bob"))
        assert [doc.id for doc in results] == ["c1"]

    def test_unknown_operator_rejected(self):
        """Test unsupported filter operators fail fast."""
        with pytest.raises(ValueError):
            Query("x").where("field", ">", 1)


class TestInMemoryStore:
    """Tests for reads and writes."""

    async def test_reads_are_copies(self, store):
        """Test mutating a read result does not change the store."""
        doc_id = await store.add("families", {"memberIds": []})
        doc = await store.get("families", doc_id)
        doc.data["memberIds"].append("intruder")

        again = await store.get("families", doc_id)
        assert again.data["memberIds"] == []

    async def test_update_missing_document_raises(self, store):
        """Test update of a missing document raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.update("families", "nope", {"name": "x"})

    async def test_delete_reports_whether_anything_was_removed(self, store):
        """Test delete returns False for missing documents."""
        doc_id = await store.add("families", {"name": "Smith"})
        assert await store.delete("families", doc_id) is True
        assert await store.delete("families", doc_id) is False

    async def test_commit_is_all_or_nothing(self, store):
        """Test a batch with a missing target applies nothing."""
        await store.set("families", "f1", {"memberIds": []})
        batch = store.batch()
        batch.update("families", "f1", {"memberIds": ArrayUnion("bob")})
        batch.update("familyInvites", "missing", {"status": "accepted"})

        with pytest.raises(NotFoundError):
            await store.commit(batch)

        doc = await store.get("families", "f1")
        assert doc.data["memberIds"] == []

    async def test_commit_applies_updates_and_deletes(self, store):
        """Test a valid batch applies every write."""
        await store.set("families", "f1", {"memberIds": []})
        await store.set("familyInvites", "i1", {"status": "pending"})
        await store.set("familyInvites", "i2", {"status": "pending"})

        batch = store.batch()
        batch.update("families", "f1", {"memberIds": ArrayUnion("bob")})
        batch.update("familyInvites", "i1", {"status": "accepted"})
        batch.delete("familyInvites", "i2")
        await store.commit(batch)

        assert (await store.get("families", "f1")).data["memberIds"] == ["bob"]
        assert (await store.get("familyInvites", "i1")).data["status"] == "accepted"
        assert await store.get("familyInvites", "i2") is None


class TestSubscriptions:
    """Tests for continuous subscriptions."""

    async def test_query_subscription_fires_immediately_and_on_change(self, store):
        """Test snapshots are pushed on subscribe and after matching writes."""
        snapshots = []
        subscription = await store.subscribe_query(
            Query("transactions").where("userId", "==", "alice"),
            lambda docs: snapshots.append([doc.id for doc in docs]),
        )
        await store.set("transactions", "t1", {"userId": "alice"})
        await store.set("transactions", "t2", {"userId": "bob"})

        assert snapshots == [[], ["t1"]]
        subscription.close()

    async def test_unchanged_result_is_not_redelivered(self, store):
        """Test writes outside the result set do not re-fire the callback."""
        snapshots = []
        await store.subscribe_query(Query("transactions").where("userId", "==", "alice"), snapshots.append)
        await store.set("transactions", "t2", {"userId": "bob"})
        assert len(snapshots) == 1

    async def test_document_subscription_reports_deletion(self, store):
        """Test document subscribers receive None after deletion."""
        await store.set("families", "f1", {"name": "Smith"})
        seen = []
        await store.subscribe_document("families", "f1", seen.append)
        await store.delete("families", "f1")

        assert seen[0].data["name"] == "Smith"
        assert seen[-1] is None

    async def test_close_releases_listener(self, store):
        """Test close() unregisters and is idempotent."""
        with await store.subscribe_query(Query("transactions"), lambda docs: None) as subscription:
            assert store.listener_count == 1
        assert store.listener_count == 0
        subscription.close()
        assert not subscription.active

    async def test_failing_callback_does_not_break_writes(self, store):
        """Test callback exceptions are swallowed at the subscription boundary."""
        def explode(docs):
            if docs:
                raise RuntimeError("consumer bug")

        await store.subscribe_query(Query("transactions"), explode)
        await store.set("transactions", "t1", {"userId": "alice"})
        assert store.count("transactions") == 1

    async def test_async_callbacks_are_awaited(self, store):
        """Test coroutine callbacks finish before the write returns."""
        seen = []

        async def record(docs):
            seen.append(len(docs))

        await store.subscribe_query(Query("transactions"), record)
        await store.set("transactions", "t1", {"userId": "alice"})
        assert seen == [0, 1]

    async def test_fetch_error_goes_to_error_hook(self):
        """Test a failing query is reported to on_error, not raised."""
        class BrokenStore(InMemoryDocumentStore):
            broken = False

            async def query(self, query):
                if self.broken:
                    raise RuntimeError("backend down")
                return await super().query(query)

        store = BrokenStore()
        errors = []
        await store.subscribe_query(Query("transactions"), lambda docs: None, on_error=errors.append)
        store.broken = True
        await store.set("transactions", "t1", {"userId": "alice"})

        assert len(errors) == 1
        assert "backend down" in str(errors[0])


class FakeWorksheet:
    """In-memory stand-in for a gspread worksheet."""

    def __init__(self, header):
        self.rows = [list(header)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None):
        self.rows.append(list(row))

    def update_cell(self, row, col, value):
        self.rows[row - 1][col - 1] = value

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:
    def __init__(self):
        self.sheets = {}

    def get_collection_sheet(self, collection):
        if collection not in self.sheets:
            self.sheets[collection] = FakeWorksheet(DOCUMENT_COLUMNS)
        return self.sheets[collection]


class TestGoogleSheetsDocumentStore:
    """Tests for the Sheets backend over a fake worksheet client."""

    async def test_rows_hold_json_documents(self):
        """Test each document is one id/data_json/updated_at row."""
        client = FakeSheetsClient()
        sheets_store = GoogleSheetsDocumentStore(client)
        doc_id = await sheets_store.add("families", {"name": "Smith", "memberIds": []})

        row = client.sheets["families"].rows[1]
        assert row[0] == doc_id
        assert json.loads(row[1]) == {"memberIds": [], "name": "Smith"}
        assert (await sheets_store.get("families", doc_id)).data["name"] == "Smith"

    async def test_update_applies_operators(self):
        """Test ArrayUnion and DELETE_FIELD are applied to the stored row."""
        sheets_store = GoogleSheetsDocumentStore(FakeSheetsClient())
        await sheets_store.set("transactions", "t1", {"toAccount": "Bank", "tags": ["a"]})
        await sheets_store.update("transactions", "t1", {"toAccount": DELETE_FIELD, "tags": ArrayUnion("b")})

        doc = await sheets_store.get("transactions", "t1")
        assert doc.data == {"tags": ["a", "b"]}

    async def test_query_and_delete(self):
        """Test queries filter in Python and deletes remove the row."""
        sheets_store = GoogleSheetsDocumentStore(FakeSheetsClient())
        await sheets_store.set("categories", "c1", {"userIds": ["alice"]})
        await sheets_store.set("categories", "c2", {"userIds": ["bob"]})

        results = await sheets_store.query(Query("categories").where("userIds", "array_contains", "bob"))
        assert [doc.id for doc in results] == ["c2"]

        assert await sheets_store.delete("categories", "c1") is True
        assert await sheets_store.get("categories", "c1") is None

    async def test_commit_checks_targets_first(self):
        """Test a batch with a missing target writes nothing."""
        sheets_store = GoogleSheetsDocumentStore(FakeSheetsClient())
        await sheets_store.set("families", "f1", {"memberIds": []})
        batch = sheets_store.batch()
        batch.update("families", "f1", {"memberIds": ArrayUnion("bob")})
        batch.update("familyInvites", "missing", {"status": "accepted"})

        with pytest.raises(NotFoundError):
            await sheets_store.commit(batch)
        assert (await sheets_store.get("families", "f1")).data["memberIds"] == []

    async def test_subscribers_see_local_writes(self):
        """Test subscriptions fire after writes made through the same store."""
        sheets_store = GoogleSheetsDocumentStore(FakeSheetsClient())
        seen = []
        await sheets_store.subscribe_document("families", "f1", seen.append)
        await sheets_store.set("families", "f1", {"name": "Smith"})

        assert seen[0] is None
        assert seen[-1].data == {"name": "Smith"}

    async def test_failed_append_is_not_retried(self):
        """Test a failing append raises StorageError after a single attempt."""
        client = FakeSheetsClient()
        sheet = client.get_collection_sheet("transactions")
        calls = []

        def failing_append(row, value_input_option=None):
            calls.append(row)
            raise requests.ConnectionError("connection reset")

        sheet.append_row = failing_append
        sheets_store = GoogleSheetsDocumentStore(client)

        with pytest.raises(StorageError):
            await sheets_store.add("transactions", {"amount": "5"})
        assert len(calls) == 1
        assert sheet.rows == [DOCUMENT_COLUMNS]

    async def test_reads_retry_transient_errors(self, monkeypatch):
        """Test a read that fails once with a transport error is retried."""
        monkeypatch.setattr(GoogleSheetsDocumentStore._rows.retry, "wait", wait_none())
        client = FakeSheetsClient()
        sheets_store = GoogleSheetsDocumentStore(client)
        await sheets_store.set("families", "f1", {"name": "Smith"})

        sheet = client.sheets["families"]
        read = sheet.get_all_values
        attempts = []

        def flaky_read():
            attempts.append(1)
            if len(attempts) == 1:
                raise requests.ConnectionError("timed out")
            return read()

        sheet.get_all_values = flaky_read
        assert (await sheets_store.get("families", "f1")).data == {"name": "Smith"}
        assert len(attempts) == 2
