"""
Primary Document Store - async MongoDB access used by the pipeline.

Defines the narrow store interface the pipeline depends on and its
implementation over pymongo's asyncio client. Everything the pipeline needs
from the primary store goes through here: collection listing, distinct
values, sampling and counting, change streams and upserts.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from .config_manager import StoreConfig
from .exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

# Change stream filter: deletes are not indexed
CHANGE_OPERATION_TYPES = ["insert", "update", "replace"]


class ChangeFeed(Protocol):
    """A live change stream: an async iterator of change events."""

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]: ...

    async def close(self) -> None: ...


class DocumentStore(Protocol):
    """Operations the pipeline needs from the primary store."""

    async def list_collection_names(self) -> List[str]: ...

    async def distinct(self, collection: str, field: str) -> List[Any]: ...

    async def find_one(self, collection: str, query: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...

    async def count_documents(
        self, collection: str, query: Dict[str, Any], limit: Optional[int] = None
    ) -> int: ...

    def find(
        self, collection: str, query: Dict[str, Any], batch_size: int = 100
    ) -> AsyncIterator[Dict[str, Any]]: ...

    async def watch(self, collection: str) -> ChangeFeed: ...

    async def upsert_one(
        self, collection: str, query: Dict[str, Any], document: Dict[str, Any]
    ) -> None: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


def change_stream_pipeline() -> List[Dict[str, Any]]:
    """Aggregation stage restricting a change stream to writes."""
    return [{"$match": {"operationType": {"$in": CHANGE_OPERATION_TYPES}}}]


class MongoDocumentStore:
    """
    MongoDB-backed document store.

    Wraps a single ``AsyncMongoClient`` for the lifetime of the pipeline.
    """

    def __init__(self, config: StoreConfig, client: Optional[AsyncMongoClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._db = client[config.database] if client is not None else None

    async def connect(self) -> None:
        """Open the client and verify the server is reachable."""
        if self._client is None:
            self._client = AsyncMongoClient(
                self.config.uri,
                serverSelectionTimeoutMS=int(self.config.server_selection_timeout * 1000),
            )
            self._db = self._client[self.config.database]

        await self.ping()
        logger.info(f"Connected to MongoDB database '{self.config.database}'")

    async def ping(self) -> None:
        """Round-trip to the server; raises StoreUnavailableError on failure."""
        if self._client is None:
            raise StoreUnavailableError("Document store is not connected")
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            logger.error(f"Primary store unreachable at {self.config.uri}: {e}")
            raise StoreUnavailableError(f"Cannot reach MongoDB: {e}") from e

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None
            self._db = None
            logger.info("MongoDB connection closed")

    async def __aenter__(self) -> "MongoDocumentStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def db(self):
        if self._db is None:
            raise StoreUnavailableError("Document store is not connected")
        return self._db

    async def list_collection_names(self) -> List[str]:
        return await self.db.list_collection_names()

    async def distinct(self, collection: str, field: str) -> List[Any]:
        return await self.db[collection].distinct(field)

    async def find_one(self, collection: str, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.db[collection].find_one(query)

    async def count_documents(
        self, collection: str, query: Dict[str, Any], limit: Optional[int] = None
    ) -> int:
        kwargs = {"limit": limit} if limit else {}
        return await self.db[collection].count_documents(query, **kwargs)

    async def find(
        self, collection: str, query: Dict[str, Any], batch_size: int = 100
    ) -> AsyncIterator[Dict[str, Any]]:
        cursor = self.db[collection].find(query, batch_size=batch_size)
        try:
            async for document in cursor:
                yield document
        finally:
            await cursor.close()

    async def watch(self, collection: str) -> ChangeFeed:
        """Open a change stream delivering the full post-image document."""
        return await self.db[collection].watch(
            change_stream_pipeline(),
            full_document="updateLookup",
        )

    async def upsert_one(
        self, collection: str, query: Dict[str, Any], document: Dict[str, Any]
    ) -> None:
        await self.db[collection].update_one(query, {"$set": document}, upsert=True)

    async def ensure_unique_index(self, collection: str, keys: List[str]) -> None:
        """Create a unique compound index (no-op when it already exists)."""
        await self.db[collection].create_index(
            [(key, 1) for key in keys],
            unique=True,
            name="_".join(keys) + "_unique",
        )
