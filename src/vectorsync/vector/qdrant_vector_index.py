"""
Qdrant Vector Index - optional vector record sink backed by Qdrant.

Each record becomes one point. The point id is derived from the record key,
so upserting the same document twice overwrites the same point.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import Distance, PointStruct, UpdateStatus, VectorParams
from tenacity import retry, stop_after_attempt, wait_exponential

from ..core.config_manager import VectorIndexConfig
from ..models.sync_models import VectorRecord

logger = logging.getLogger(__name__)

# Payload fields filtered on at query time
INDEXED_PAYLOAD_FIELDS = ("documentId", "tenantId", "documentType")


def point_id(document_id: str, tenant_id: str) -> str:
    """Deterministic point id for a record key."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{tenant_id}:{document_id}"))


class QdrantVectorIndex:
    """
    Qdrant-backed vector index.

    Features:
    - Collection created on first use with cosine distance
    - Connection check retried with backoff
    - Concurrency cap on write operations
    """

    def __init__(
        self,
        config: VectorIndexConfig,
        dimensions: int,
        client: Optional[AsyncQdrantClient] = None,
        max_concurrent_operations: int = 10,
    ):
        self.config = config
        self.dimensions = dimensions
        self.client = client
        self._owns_client = client is None
        self._initialized = False
        self._semaphore = asyncio.Semaphore(max_concurrent_operations)
        self._metrics = {"upserts": 0, "errors": 0}

    @property
    def collection_name(self) -> str:
        return self.config.qdrant_collection

    async def initialize(self) -> None:
        """Connect and create the collection if needed."""
        if self._initialized:
            return

        logger.info(f"Initializing Qdrant vector index on {self.config.qdrant_host}:{self.config.qdrant_port}")

        if self.client is None:
            self.client = AsyncQdrantClient(
                host=self.config.qdrant_host,
                port=self.config.qdrant_port,
                timeout=int(self.config.qdrant_timeout),
            )

        try:
            await self._verify_connection()
            await self._ensure_collection_exists()
        except Exception as e:
            logger.error(f"Failed to initialize Qdrant vector index: {e}")
            raise

        self._initialized = True
        logger.info(f"Qdrant collection '{self.collection_name}' ready")

    async def close(self) -> None:
        if self.client is not None and self._owns_client:
            await self.client.close()
            self.client = None
        self._initialized = False

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=10), reraise=True)
    async def _verify_connection(self) -> None:
        collections = await self.client.get_collections()
        logger.debug(f"Connected to Qdrant. Found {len(collections.collections)} collections")

    async def _ensure_collection_exists(self) -> None:
        collections = await self.client.get_collections()
        names = [c.name for c in collections.collections]

        if self.collection_name in names:
            info = await self.client.get_collection(self.collection_name)
            size = info.config.params.vectors.size
            if size != self.dimensions:
                logger.warning(
                    f"Vector size mismatch in '{self.collection_name}': "
                    f"expected {self.dimensions}, got {size}"
                )
            return

        logger.info(f"Creating collection: {self.collection_name}")
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.dimensions, distance=Distance.COSINE),
        )

        for field_name in INDEXED_PAYLOAD_FIELDS:
            try:
                await self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=field_name,
                    field_schema="keyword",
                )
            except Exception as e:
                logger.warning(f"Failed to create index for {field_name}: {e}")

    async def upsert(self, document_id: str, tenant_id: str, record: VectorRecord) -> None:
        """Insert or replace the point for ``(document_id, tenant_id)``."""
        if not self._initialized:
            await self.initialize()

        payload = record.to_document()
        del payload["embedding"]
        payload["lastEmbeddingUpdate"] = record.updated_at.isoformat()
        payload["last_updated"] = record.updated_at.isoformat()

        point = PointStruct(
            id=point_id(document_id, tenant_id),
            vector=record.embedding,
            payload=payload,
        )

        async with self._semaphore:
            try:
                result = await self.client.upsert(
                    collection_name=self.collection_name,
                    points=[point],
                    wait=True,
                )
            except Exception:
                self._metrics["errors"] += 1
                raise

        if result.status != UpdateStatus.COMPLETED:
            self._metrics["errors"] += 1
            raise RuntimeError(f"Qdrant upsert of {document_id} finished with status {result.status}")

        self._metrics["upserts"] += 1

    def get_statistics(self) -> Dict[str, Any]:
        return dict(self._metrics, collection=self.collection_name)
