"""
Document Processor - turn one changed document into one vector record.

Runs the per-document steps after a debounce window closes: resolve the
document type, render text, embed with retry, and upsert the record. The
processor absorbs every failure so that a bad document never takes down the
task that fed it.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from ..core.config_manager import ProcessingConfig
from ..core.error_classifier import ErrorClassifier, default_classifier
from ..core.exceptions import EmbeddingRetryError, VectorWriteError
from ..models.sync_models import (
    DocumentTypeEntry,
    ProcessingOutcome,
    VectorRecord,
    document_id_of,
    tenant_id_of,
    utcnow,
)
from ..vector.embedding_engine import EmbeddingEngine
from ..vector.vector_index import VectorIndex
from .semantic_text import SemanticTextBuilder

logger = logging.getLogger(__name__)


def resolve_document_type(document: Mapping[str, Any], collection_name: str) -> str:
    """The document's ``type`` field, or the collection name when unset."""
    doc_type = document.get("type")
    if isinstance(doc_type, str) and doc_type:
        return doc_type
    return collection_name


class DocumentProcessor:
    """
    Indexes documents against a fixed document-type registry.

    Counters are updated in place and read by the pipeline controller.
    """

    def __init__(
        self,
        registry: Mapping[str, DocumentTypeEntry],
        text_builder: SemanticTextBuilder,
        embedding_engine: EmbeddingEngine,
        vector_index: VectorIndex,
        config: ProcessingConfig,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.registry = registry
        self.text_builder = text_builder
        self.embedding_engine = embedding_engine
        self.vector_index = vector_index
        self.config = config
        self.classifier = classifier or default_classifier

        self.documents_processed = 0
        self.embeddings_generated = 0
        self.errors = 0
        self.last_activity: Optional[datetime] = None
        self.outcomes: Dict[str, int] = {}

    async def process(
        self, collection_name: str, document: Dict[str, Any], dry_run: bool = False
    ) -> ProcessingOutcome:
        """Index one document. Never raises."""
        outcome = await self._process(collection_name, document, dry_run)
        self.outcomes[outcome.value] = self.outcomes.get(outcome.value, 0) + 1
        return outcome

    async def _process(
        self, collection_name: str, document: Dict[str, Any], dry_run: bool
    ) -> ProcessingOutcome:
        document_id = document_id_of(document)
        tenant_id = tenant_id_of(document)
        document_type = resolve_document_type(document, collection_name)

        entry = self.registry.get(document_type)
        if entry is None:
            logger.debug(f"Ignoring {collection_name}/{document_id}: unknown type '{document_type}'")
            return ProcessingOutcome.SKIPPED_UNKNOWN_TYPE

        try:
            semantic_text = self.text_builder.build_semantic_text(document, entry.field_structure)
            if len(semantic_text.strip()) < self.config.min_semantic_length:
                logger.debug(f"Skipping {document_type} {document_id}: semantic text too short")
                return ProcessingOutcome.SKIPPED_SHORT_TEXT

            searchable_content = self.text_builder.build_searchable_content(
                document, entry.field_structure
            )

            if dry_run:
                logger.info(
                    f"[dry-run] {document_type} {document_id}: "
                    f"{len(semantic_text)} chars of semantic text"
                )
                return ProcessingOutcome.DRY_RUN

            embedding = await self.embedding_engine.embed(semantic_text)
            self.embeddings_generated += 1

            record = VectorRecord(
                document_id=document_id,
                tenant_id=tenant_id,
                document_type=document_type,
                embedding=embedding,
                semantic_text=semantic_text,
                searchable_content=searchable_content,
                embedding_model=self.embedding_engine.model,
                updated_at=utcnow(),
            )

            if not await self._upsert_with_retry(record):
                return ProcessingOutcome.SKIPPED_CONCURRENT_WRITE

        except EmbeddingRetryError as e:
            self.errors += 1
            logger.error(
                f"Dropping update for {document_type} {document_id} after "
                f"{e.attempts} embedding attempt(s): {e.last_error}"
            )
            return ProcessingOutcome.DROPPED
        except VectorWriteError as e:
            self.errors += 1
            category = self.classifier.classify(e.last_error)
            logger.error(
                f"Dropping update for {document_type} {document_id} after "
                f"{e.attempts} write attempt(s) ({category.value}): {e.last_error}"
            )
            return ProcessingOutcome.DROPPED
        except Exception as e:
            self.errors += 1
            category = self.classifier.classify(e)
            logger.error(f"Dropping update for {document_type} {document_id} ({category.value}): {e}")
            return ProcessingOutcome.DROPPED

        self.documents_processed += 1
        self.last_activity = utcnow()
        logger.debug(f"Indexed {document_type} {document_id} for tenant {tenant_id}")
        return ProcessingOutcome.INDEXED

    async def _upsert_with_retry(self, record: VectorRecord) -> bool:
        """
        Write the record, retrying duplicate-key races only.

        Returns False when every attempt lost the race; another writer then
        already holds a record for the same key.
        """
        max_attempts = self.config.upsert_max_retries
        for attempt in range(1, max_attempts + 1):
            try:
                await self.vector_index.upsert(record.document_id, record.tenant_id, record)
                return True
            except Exception as e:
                if not self.classifier.is_duplicate_key_error(e):
                    raise VectorWriteError(
                        f"Writing {record.document_id} failed on attempt {attempt}/{max_attempts}: {e}",
                        attempts=attempt,
                        last_error=e,
                    ) from e
                self.classifier.classify(e)
                if attempt >= max_attempts:
                    logger.info(
                        f"Record for {record.document_id} already indexed by a concurrent writer, skipping"
                    )
                    return False
                logger.debug(
                    f"Duplicate key on {record.document_id} (attempt {attempt}/{max_attempts}), retrying"
                )
                await asyncio.sleep(self.config.upsert_retry_base_delay * attempt)
        return False

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "documents_processed": self.documents_processed,
            "embeddings_generated": self.embeddings_generated,
            "errors": self.errors,
            "outcomes": dict(self.outcomes),
        }
