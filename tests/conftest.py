"""
Shared fixtures: in-memory document store, change feeds and embedding client.
"""

import asyncio
import hashlib
from typing import Any, Callable, Dict, List, Optional

import pytest
from pymongo.errors import DuplicateKeyError

from vectorsync.core.config_manager import (
    DiscoveryConfig,
    EmbeddingConfig,
    MonitoringConfig,
    ProcessingConfig,
    VectorSyncConfig,
)

TEST_DIMENSIONS = 8

_CLOSED = object()


class FakeChangeFeed:
    """Queue-backed stand-in for a change stream cursor."""

    def __init__(self, collection_name: str, close_delay: float = 0.0):
        self.collection_name = collection_name
        self.close_delay = close_delay
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        item = await self.queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    def push(self, change: Any) -> None:
        self.queue.put_nowait(change)

    async def close(self) -> None:
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(_CLOSED)


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    return all(document.get(key) == value for key, value in query.items())


class FakeDocumentStore:
    """In-memory implementation of the DocumentStore protocol."""

    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.collections: Dict[str, List[Dict[str, Any]]] = {
            name: list(docs) for name, docs in (collections or {}).items()
        }
        self.feeds: Dict[str, List[FakeChangeFeed]] = {}
        self.watch_calls: Dict[str, int] = {}
        self.watch_errors: Dict[str, List[BaseException]] = {}
        self.failing_collections: Dict[str, BaseException] = {}
        self.upsert_errors: List[BaseException] = []
        self.upsert_calls = 0
        self.unique_indexes: List[tuple] = []
        self.duplicate_key_errors = 0
        self.watch_gate: Optional[asyncio.Event] = None
        self.feed_close_delay = 0.0
        self.ping_error: Optional[BaseException] = None
        self.closed = False

    async def __aenter__(self) -> "FakeDocumentStore":
        await self.ping()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    async def close(self) -> None:
        self.closed = True

    async def list_collection_names(self) -> List[str]:
        return list(self.collections)

    async def distinct(self, collection: str, field: str) -> List[Any]:
        if collection in self.failing_collections:
            raise self.failing_collections[collection]
        values: List[Any] = []
        for document in self.collections.get(collection, []):
            value = document.get(field)
            if value is not None and value not in values:
                values.append(value)
        return values

    async def find_one(self, collection: str, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for document in self.collections.get(collection, []):
            if _matches(document, query):
                return document
        return None

    async def count_documents(
        self, collection: str, query: Dict[str, Any], limit: Optional[int] = None
    ) -> int:
        count = sum(1 for doc in self.collections.get(collection, []) if _matches(doc, query))
        return min(count, limit) if limit else count

    async def find(self, collection: str, query: Dict[str, Any], batch_size: int = 100):
        for document in list(self.collections.get(collection, [])):
            if _matches(document, query):
                yield document

    async def watch(self, collection: str) -> FakeChangeFeed:
        self.watch_calls[collection] = self.watch_calls.get(collection, 0) + 1
        if self.watch_gate is not None:
            await self.watch_gate.wait()
        errors = self.watch_errors.get(collection)
        if errors:
            raise errors.pop(0)
        feed = FakeChangeFeed(collection, close_delay=self.feed_close_delay)
        self.feeds.setdefault(collection, []).append(feed)
        return feed

    async def upsert_one(
        self, collection: str, query: Dict[str, Any], document: Dict[str, Any]
    ) -> None:
        self.upsert_calls += 1
        if self.upsert_errors:
            raise self.upsert_errors.pop(0)
        documents = self.collections.setdefault(collection, [])
        for existing in documents:
            if _matches(existing, query):
                existing.update(document)
                return

        if (collection, tuple(query)) in self.unique_indexes:
            # Let a concurrent insert of the same key win the race
            await asyncio.sleep(0)
            if any(_matches(existing, query) for existing in documents):
                self.duplicate_key_errors += 1
                raise DuplicateKeyError(
                    f"E11000 duplicate key error collection: {collection}", code=11000
                )
        documents.append({**query, **document})

    async def ensure_unique_index(self, collection: str, keys: List[str]) -> None:
        self.unique_indexes.append((collection, tuple(keys)))

    def latest_feed(self, collection: str) -> FakeChangeFeed:
        return self.feeds[collection][-1]

    def emit(self, collection: str, document: Dict[str, Any], operation: str = "update") -> None:
        """Deliver a change event to the newest stream on a collection."""
        self.latest_feed(collection).push(
            {"operationType": operation, "fullDocument": document}
        )


class FakeEmbeddingClient:
    """Deterministic embedding client with scriptable failures."""

    def __init__(self, dimensions: int = TEST_DIMENSIONS, delay: float = 0.0):
        self.dimensions = dimensions
        self.delay = delay
        self.calls: List[str] = []
        self.failures: List[BaseException] = []
        self.concurrent = 0
        self.max_concurrent = 0

    async def embed(self, text: str, model: str) -> List[float]:
        self.calls.append(text)
        self.concurrent += 1
        self.max_concurrent = max(self.max_concurrent, self.concurrent)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.failures:
                raise self.failures.pop(0)
            digest = hashlib.sha256(text.encode("utf-8")).digest()
            return [digest[i] / 255.0 for i in range(self.dimensions)]
        finally:
            self.concurrent -= 1


def invoice(
    doc_id: str,
    quantity: int = 5,
    tenant_id: Optional[str] = "tenant-a",
    **extra: Any,
) -> Dict[str, Any]:
    document = {
        "_id": doc_id,
        "type": "paintInvoice",
        "facilityId": "FAC-1",
        "companyId": "CO-9",
        "invoiceNumber": f"INV-{doc_id}",
        "invoiceDate": "2024-03-01",
        "notes": "Exterior paint for the north warehouse",
        "paid": True,
        "lineItems": [{"quantityPurchased": quantity, "vocGramsPerLiter": 250}],
    }
    if tenant_id:
        document["tenantId"] = tenant_id
    document.update(extra)
    return document


@pytest.fixture
def fake_store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def invoice_store() -> FakeDocumentStore:
    return FakeDocumentStore({
        "invoices": [invoice("inv-1"), invoice("inv-2", quantity=12)],
        "system.profile": [{"_id": "p"}],
    })


@pytest.fixture
def embedding_client() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def processing_config() -> ProcessingConfig:
    return ProcessingConfig(
        rate_limit_delay=0.0,
        retry_delay=0.0,
        max_retries=3,
        debounce_interval=0.05,
        freshness_window=60.0,
        upsert_retry_base_delay=0.0,
        shutdown_timeout=2.0,
    )


@pytest.fixture
def test_config(processing_config: ProcessingConfig) -> VectorSyncConfig:
    return VectorSyncConfig(
        embedding=EmbeddingConfig(api_key="test-key", dimensions=TEST_DIMENSIONS),
        processing=processing_config,
        discovery=DiscoveryConfig(),
        monitoring=MonitoringConfig(enabled=False),
    )


@pytest.fixture
def wait_until() -> Callable:
    """Poll a predicate until it holds or the timeout expires."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait


@pytest.fixture
def make_invoice() -> Callable[..., Dict[str, Any]]:
    return invoice


@pytest.fixture
def make_store() -> Callable[..., FakeDocumentStore]:
    return FakeDocumentStore


@pytest.fixture
def make_embedding_client() -> Callable[..., FakeEmbeddingClient]:
    return FakeEmbeddingClient
