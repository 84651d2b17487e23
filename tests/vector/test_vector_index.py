"""
Tests for vector record sinks
"""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from qdrant_client.models import UpdateStatus

from vectorsync.core.config_manager import VectorIndexConfig
from vectorsync.models.sync_models import VectorRecord
from vectorsync.vector.qdrant_vector_index import QdrantVectorIndex, point_id
from vectorsync.vector.vector_index import MongoVectorIndex


@pytest.fixture
def record():
    return VectorRecord(
        document_id="inv-1",
        tenant_id="tenant-a",
        document_type="paintInvoice",
        embedding=[0.1, 0.2, 0.3],
        semantic_text="Document type: paintInvoice",
        searchable_content="paintinvoice",
        embedding_model="text-embedding-3-small",
    )


class TestMongoVectorIndex:
    """Test the default collection-backed sink."""

    async def test_initialize_creates_unique_index(self, fake_store):
        index = MongoVectorIndex(fake_store, "documentvectors")

        await index.initialize()

        assert fake_store.unique_indexes == [("documentvectors", ("documentId", "tenantId"))]

    async def test_upsert_is_keyed(self, fake_store, record):
        """Test repeated upserts of one key keep a single record."""
        index = MongoVectorIndex(fake_store, "documentvectors")

        await index.upsert("inv-1", "tenant-a", record)
        await index.upsert("inv-1", "tenant-a", record.model_copy(update={"semantic_text": "changed"}))
        await index.upsert("inv-1", "tenant-b", record)

        records = fake_store.collections["documentvectors"]
        assert len(records) == 2
        assert records[0]["semanticText"] == "changed"
        assert records[0]["lastEmbeddingUpdate"] == record.updated_at
        assert index.get_statistics()["upserts"] == 3

    async def test_errors_propagate(self, fake_store, record):
        fake_store.upsert_errors = [RuntimeError("write failed")]
        index = MongoVectorIndex(fake_store)

        with pytest.raises(RuntimeError):
            await index.upsert("inv-1", "tenant-a", record)

        assert index.get_statistics()["errors"] == 1

    def test_record_round_trip(self, record):
        """Test the stored layout converts back to the same record."""
        assert VectorRecord.from_document(record.to_document()) == record


class TestQdrantVectorIndex:
    """Test the Qdrant sink against a mocked client."""

    @pytest.fixture
    def qdrant_client(self):
        client = AsyncMock()
        client.get_collections.return_value = MagicMock(collections=[])
        client.upsert.return_value = MagicMock(status=UpdateStatus.COMPLETED)
        return client

    @pytest.fixture
    def index(self, qdrant_client):
        return QdrantVectorIndex(VectorIndexConfig(backend="qdrant"), dimensions=3, client=qdrant_client)

    def test_point_id_deterministic(self):
        """Test the point id depends only on the record key."""
        first = point_id("inv-1", "tenant-a")

        assert first == point_id("inv-1", "tenant-a")
        assert first != point_id("inv-1", "tenant-b")
        assert uuid.UUID(first).version == 5

    async def test_initialize_creates_collection(self, index, qdrant_client):
        await index.initialize()

        qdrant_client.create_collection.assert_awaited_once()
        kwargs = qdrant_client.create_collection.call_args.kwargs
        assert kwargs["collection_name"] == "document_vectors"
        assert kwargs["vectors_config"].size == 3
        assert qdrant_client.create_payload_index.await_count == 3

    async def test_existing_collection_reused(self, index, qdrant_client):
        existing = MagicMock()
        existing.name = "document_vectors"
        qdrant_client.get_collections.return_value = MagicMock(collections=[existing])
        qdrant_client.get_collection.return_value.config.params.vectors.size = 3

        await index.initialize()

        qdrant_client.create_collection.assert_not_awaited()

    async def test_upsert_point(self, index, qdrant_client, record):
        """Test records become points with the derived id and a JSON payload."""
        await index.upsert("inv-1", "tenant-a", record)

        kwargs = qdrant_client.upsert.call_args.kwargs
        point = kwargs["points"][0]
        assert point.id == point_id("inv-1", "tenant-a")
        assert point.vector == [0.1, 0.2, 0.3]
        assert point.payload["documentId"] == "inv-1"
        assert "embedding" not in point.payload
        assert isinstance(point.payload["lastEmbeddingUpdate"], str)

    async def test_failed_upsert_raises(self, index, qdrant_client, record):
        qdrant_client.upsert.return_value = MagicMock(status=UpdateStatus.ACKNOWLEDGED)

        with pytest.raises(RuntimeError):
            await index.upsert("inv-1", "tenant-a", record)

        assert index.get_statistics()["errors"] == 1

    async def test_injected_client_not_closed(self, index, qdrant_client):
        await index.initialize()
        await index.close()

        qdrant_client.close.assert_not_awaited()
