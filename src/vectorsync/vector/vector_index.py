"""
Vector Index - sinks for derived vector records.

A vector index stores exactly one record per ``(document_id, tenant_id)``.
Writes are upserts, so re-indexing an unchanged document converges to the
same record. Errors propagate to the caller, which owns the retry policy.
"""

import logging
from typing import Any, Dict, Protocol

from ..core.document_store import DocumentStore
from ..models.sync_models import VectorRecord

logger = logging.getLogger(__name__)

RECORD_KEY_FIELDS = ["documentId", "tenantId"]


class VectorIndex(Protocol):
    """Capability interface of a vector record sink."""

    async def initialize(self) -> None: ...

    async def upsert(self, document_id: str, tenant_id: str, record: VectorRecord) -> None: ...

    async def close(self) -> None: ...


class MongoVectorIndex:
    """
    Stores vector records in a collection of the primary store.

    The collection carries a unique index on ``(documentId, tenantId)``;
    concurrent first-time upserts of the same key can therefore fail with a
    duplicate-key error, which callers are expected to retry.
    """

    def __init__(self, store: DocumentStore, collection_name: str = "documentvectors"):
        self.store = store
        self.collection_name = collection_name
        self._metrics = {"upserts": 0, "errors": 0}

    async def initialize(self) -> None:
        ensure_index = getattr(self.store, "ensure_unique_index", None)
        if ensure_index is not None:
            await ensure_index(self.collection_name, RECORD_KEY_FIELDS)
            logger.debug(f"Unique index ensured on '{self.collection_name}'")

    async def upsert(self, document_id: str, tenant_id: str, record: VectorRecord) -> None:
        """Insert or replace the record for ``(document_id, tenant_id)``."""
        try:
            await self.store.upsert_one(
                self.collection_name,
                {"documentId": document_id, "tenantId": tenant_id},
                record.to_document(),
            )
        except Exception:
            self._metrics["errors"] += 1
            raise
        self._metrics["upserts"] += 1

    async def close(self) -> None:
        # The store connection is owned by the pipeline
        pass

    def get_statistics(self) -> Dict[str, Any]:
        return dict(self._metrics, collection=self.collection_name)
