"""
Tests for the MongoDB document store wrapper
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from vectorsync.core.config_manager import StoreConfig
from vectorsync.core.document_store import MongoDocumentStore, change_stream_pipeline
from vectorsync.core.exceptions import StoreUnavailableError


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def client(collection):
    mongo = MagicMock()
    mongo.admin.command = AsyncMock(return_value={"ok": 1})
    mongo.close = AsyncMock()
    database = MagicMock()
    database.__getitem__.return_value = collection
    database.list_collection_names = AsyncMock(return_value=["invoices"])
    mongo.__getitem__.return_value = database
    return mongo


@pytest.fixture
def store(client):
    return MongoDocumentStore(StoreConfig(database="sync_test"), client=client)


class TestMongoDocumentStore:
    """Test the pymongo calls made for each store operation."""

    async def test_connect_pings(self, store, client):
        await store.connect()

        client.admin.command.assert_awaited_once_with("ping")
        client.__getitem__.assert_called_with("sync_test")

    async def test_unreachable_server(self, store, client):
        """Test server selection failures become StoreUnavailableError."""
        client.admin.command.side_effect = ServerSelectionTimeoutError("no servers")

        with pytest.raises(StoreUnavailableError, match="Cannot reach MongoDB"):
            await store.connect()

    async def test_not_connected(self):
        store = MongoDocumentStore(StoreConfig())

        with pytest.raises(StoreUnavailableError):
            await store.ping()
        with pytest.raises(StoreUnavailableError):
            store.db

    async def test_injected_client_not_closed(self, store, client):
        async with store:
            assert await store.list_collection_names() == ["invoices"]

        client.close.assert_not_awaited()

    async def test_watch_requests_full_document(self, store, collection):
        """Test change streams carry the post-image of writes only."""
        collection.watch = AsyncMock(return_value="stream")

        assert await store.watch("invoices") == "stream"

        args, kwargs = collection.watch.call_args
        assert args[0] == change_stream_pipeline()
        assert kwargs["full_document"] == "updateLookup"
        assert change_stream_pipeline()[0]["$match"]["operationType"]["$in"] == [
            "insert", "update", "replace"
        ]

    async def test_upsert_sets_fields(self, store, collection):
        collection.update_one = AsyncMock()

        await store.upsert_one("documentvectors", {"documentId": "a"}, {"semanticText": "x"})

        collection.update_one.assert_awaited_once_with(
            {"documentId": "a"}, {"$set": {"semanticText": "x"}}, upsert=True
        )

    async def test_count_with_limit(self, store, collection):
        collection.count_documents = AsyncMock(return_value=7)

        assert await store.count_documents("invoices", {"type": "paintInvoice"}, limit=1000) == 7
        collection.count_documents.assert_awaited_once_with({"type": "paintInvoice"}, limit=1000)

    async def test_ensure_unique_index(self, store, collection):
        collection.create_index = AsyncMock()

        await store.ensure_unique_index("documentvectors", ["documentId", "tenantId"])

        collection.create_index.assert_awaited_once_with(
            [("documentId", 1), ("tenantId", 1)],
            unique=True,
            name="documentId_tenantId_unique",
        )

    async def test_find_closes_cursor(self, store, collection):
        """Test the cursor is closed after iteration."""
        documents = [{"_id": 1}, {"_id": 2}]

        class Cursor:
            def __init__(self):
                self.closed = False

            def __aiter__(self):
                return self._iterate()

            async def _iterate(self):
                for document in documents:
                    yield document

            async def close(self):
                self.closed = True

        cursor = Cursor()
        collection.find.return_value = cursor

        found = [doc async for doc in store.find("invoices", {}, batch_size=5)]

        assert found == documents
        assert cursor.closed
        collection.find.assert_called_once_with({}, batch_size=5)
