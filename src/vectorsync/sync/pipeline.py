"""
Vector Sync Pipeline - lifecycle and wiring of the synchronization components.

The controller owns every piece of pipeline state: the discovered
document-type registry, the change subscriptions, the debounce table and the
counters. Startup runs schema discovery once, opens one change subscription
per discovered collection and starts the periodic monitor. Shutdown drops
pending debounce timers, closes the subscriptions and waits for in-flight
processing to finish.
"""

import asyncio
import logging
import time
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..core.config_manager import VectorSyncConfig
from ..core.document_store import DocumentStore
from ..core.error_classifier import ErrorClassifier
from ..models.sync_models import (
    BackfillReport,
    DocumentTypeEntry,
    PipelineMetrics,
    ProcessingOutcome,
    utcnow,
)
from ..vector.embedding_client import EmbeddingClient, OpenAIEmbeddingClient
from ..vector.embedding_engine import EmbeddingEngine
from ..vector.vector_index import MongoVectorIndex, VectorIndex
from .debouncer import UpdateDebouncer, is_recently_embedded
from .monitoring import PipelineMonitor
from .processor import DocumentProcessor
from .schema_discovery import SchemaDiscoveryEngine
from .semantic_text import SemanticTextBuilder
from .subscription_manager import ChangeSubscriptionManager

logger = logging.getLogger(__name__)


def create_vector_index(config: VectorSyncConfig, store: DocumentStore) -> VectorIndex:
    """Build the configured vector sink."""
    if config.vector_index.backend == "qdrant":
        from ..vector.qdrant_vector_index import QdrantVectorIndex

        return QdrantVectorIndex(config.vector_index, dimensions=config.embedding.dimensions)
    return MongoVectorIndex(store, config.vector_index.collection_name)


class PipelineController:
    """
    Keeps a vector index synchronized with the primary document store.

    Usage:
        async with PipelineController(config, store) as pipeline:
            ...
    """

    def __init__(
        self,
        config: VectorSyncConfig,
        store: DocumentStore,
        embedding_client: Optional[EmbeddingClient] = None,
        vector_index: Optional[VectorIndex] = None,
        text_builder: Optional[SemanticTextBuilder] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.config = config
        self.store = store
        self.classifier = classifier or ErrorClassifier()

        self._owns_embedding_client = embedding_client is None
        self.embedding_client = embedding_client or OpenAIEmbeddingClient(config.embedding)
        self._owns_vector_index = vector_index is None
        self.vector_index = vector_index or create_vector_index(config, store)
        self.text_builder = text_builder or SemanticTextBuilder(
            max_semantic_length=config.processing.max_semantic_length,
            max_searchable_length=config.processing.max_searchable_length,
        )

        self.embedding_engine = EmbeddingEngine(
            self.embedding_client,
            config.embedding,
            config.processing,
            classifier=self.classifier,
        )

        self._registry: Optional[Mapping[str, DocumentTypeEntry]] = None
        self.processor: Optional[DocumentProcessor] = None
        self.debouncer: Optional[UpdateDebouncer] = None
        self.subscriptions: Optional[ChangeSubscriptionManager] = None
        self.monitor: Optional[PipelineMonitor] = None

        self._prepared = False
        self._running = False
        self._stopping = False
        self._lifecycle_lock = asyncio.Lock()
        self._start_time: Optional[datetime] = None
        self._start_monotonic: Optional[float] = None

    # Lifecycle

    async def start(self) -> None:
        """Discover document types and start watching their collections."""
        async with self._lifecycle_lock:
            if self._running:
                return

            logger.info("Starting vector sync pipeline")
            try:
                await self._prepare()

                self.debouncer = UpdateDebouncer(
                    self.processor.process,
                    debounce_interval=self.config.processing.debounce_interval,
                    freshness_window=self.config.processing.freshness_window,
                )
                self.subscriptions = ChangeSubscriptionManager(
                    self.store,
                    self.debouncer.notify,
                    retry_delay=self.config.processing.retry_delay,
                    classifier=self.classifier,
                )

                for collection_name in self.monitored_collections():
                    await self.subscriptions.open(collection_name)

                if self.config.monitoring.enabled:
                    self.monitor = PipelineMonitor(
                        self.get_metrics, interval=self.config.monitoring.log_interval
                    )
                    self.monitor.start()

            except Exception as e:
                logger.error(f"Failed to start vector sync pipeline: {e}")
                await self._teardown()
                raise

            self._running = True
            self._stopping = False
            self._start_time = utcnow()
            self._start_monotonic = time.monotonic()

            logger.info(
                f"Vector sync pipeline started: {len(self.registry)} document types, "
                f"{self.subscriptions.active_count()} change streams"
            )

    async def stop(self) -> None:
        """Stop the pipeline. Safe to call at any time, any number of times."""
        async with self._lifecycle_lock:
            if self._stopping:
                return
            if not self._running:
                # Prepared by discover()/backfill() only
                if self._prepared:
                    await self._close_sinks()
                return

            self._stopping = True
            logger.info("Stopping vector sync pipeline")
            await self._teardown()
            self._running = False
            logger.info("Vector sync pipeline stopped")

    async def _prepare(self) -> None:
        """Connect the sinks and build the registry and processor once."""
        if self._prepared:
            return

        await self.store.ping()

        initialize = getattr(self.embedding_client, "initialize", None)
        if initialize is not None:
            await initialize()
        await self.vector_index.initialize()

        discovery = SchemaDiscoveryEngine(
            self.store,
            self.config.discovery,
            excluded_collections=[self.config.vector_index.collection_name],
        )
        self._registry = await discovery.discover()

        self.processor = DocumentProcessor(
            self._registry,
            self.text_builder,
            self.embedding_engine,
            self.vector_index,
            self.config.processing,
            classifier=self.classifier,
        )
        self._prepared = True

    async def _teardown(self) -> None:
        # No debounce timer may fire once shutdown has begun
        if self.debouncer is not None:
            self.debouncer.close()

        if self.subscriptions is not None:
            try:
                await self.subscriptions.close_all()
            except Exception as e:
                logger.error(f"Error closing change streams: {e}")

        if self.debouncer is not None:
            try:
                await self.debouncer.drain(self.config.processing.shutdown_timeout)
            except Exception as e:
                logger.error(f"Error draining in-flight updates: {e}")

        if self.monitor is not None:
            try:
                await self.monitor.stop()
            except Exception as e:
                logger.error(f"Error stopping monitor: {e}")
            self.monitor = None

        await self._close_sinks()

    async def _close_sinks(self) -> None:
        if self._owns_embedding_client:
            close = getattr(self.embedding_client, "close", None)
            if close is not None:
                try:
                    await close()
                except Exception as e:
                    logger.error(f"Error closing embedding client: {e}")

        if self._owns_vector_index:
            try:
                await self.vector_index.close()
            except Exception as e:
                logger.error(f"Error closing vector index: {e}")

        self._prepared = False

    async def __aenter__(self) -> "PipelineController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # Discovery and backfill

    @property
    def registry(self) -> Mapping[str, DocumentTypeEntry]:
        """Read-only document-type registry (empty before discovery)."""
        if self._registry is None:
            return MappingProxyType({})
        return self._registry

    def monitored_collections(self) -> List[str]:
        """Source collections of the registry, in discovery order."""
        collections: List[str] = []
        for entry in self.registry.values():
            if entry.source_collection not in collections:
                collections.append(entry.source_collection)
        return collections

    async def discover(self) -> Mapping[str, DocumentTypeEntry]:
        """Run schema discovery without opening any change stream."""
        await self._prepare()
        return self.registry

    async def backfill(
        self, type_names: Optional[Iterable[str]] = None, dry_run: bool = False
    ) -> BackfillReport:
        """
        Index documents that existed before the pipeline started.

        Args:
            type_names: Restrict to these document types (default: all)
            dry_run: Render text only, without embedding or writing

        Returns:
            Counts of scanned, processed, skipped and failed documents
        """
        await self._prepare()
        report = BackfillReport(dry_run=dry_run)

        entries = list(self.registry.values())
        if type_names is not None:
            wanted = set(type_names)
            unknown = wanted - set(self.registry)
            if unknown:
                logger.warning(f"Unknown document types ignored: {', '.join(sorted(unknown))}")
            entries = [entry for entry in entries if entry.type_name in wanted]

        batch_size = self.config.processing.batch_size
        type_field = self.config.discovery.type_field

        for entry in entries:
            query: Dict[str, Any] = {}
            if entry.type_name != entry.source_collection:
                query = {type_field: entry.type_name}

            logger.info(f"Backfilling {entry.type_name} from {entry.source_collection}")
            batch: List[Dict[str, Any]] = []
            async for document in self.store.find(entry.source_collection, query, batch_size=batch_size):
                batch.append(document)
                if len(batch) >= batch_size:
                    await self._backfill_batch(entry, batch, report, dry_run)
                    batch = []
            if batch:
                await self._backfill_batch(entry, batch, report, dry_run)

        logger.info(
            f"Backfill complete: {report.processed} processed, {report.skipped} skipped, "
            f"{report.failed} failed of {report.scanned} scanned"
        )
        return report

    async def _backfill_batch(
        self,
        entry: DocumentTypeEntry,
        batch: List[Dict[str, Any]],
        report: BackfillReport,
        dry_run: bool,
    ) -> None:
        window = self.config.processing.freshness_window

        async def process_one(document: Dict[str, Any]) -> ProcessingOutcome:
            if is_recently_embedded(document, window):
                return ProcessingOutcome.SKIPPED_FRESH
            return await self.processor.process(entry.source_collection, document, dry_run=dry_run)

        outcomes = await asyncio.gather(*(process_one(document) for document in batch))
        for outcome in outcomes:
            report.scanned += 1
            report.record(entry.type_name, outcome)

    # Observability

    @property
    def is_running(self) -> bool:
        return self._running

    def get_metrics(self) -> PipelineMetrics:
        """Point-in-time metrics snapshot."""
        processor = self.processor
        uptime = 0.0
        if self._running and self._start_monotonic is not None:
            uptime = time.monotonic() - self._start_monotonic

        errors = processor.errors if processor else 0
        if self.subscriptions is not None:
            errors += self.subscriptions.errors

        return PipelineMetrics(
            documents_processed=processor.documents_processed if processor else 0,
            embeddings_generated=processor.embeddings_generated if processor else 0,
            errors=errors,
            pending_updates=self.debouncer.pending_count() if self.debouncer else 0,
            active_subscriptions=self.subscriptions.active_count() if self.subscriptions else 0,
            document_types=len(self.registry),
            is_running=self._running,
            uptime_seconds=uptime,
            start_time=self._start_time,
            last_activity=processor.last_activity if processor else None,
        )

    def is_healthy(self) -> bool:
        """Running with at least one live change stream."""
        return self._running and self.get_metrics().active_subscriptions >= 1

    def get_statistics(self) -> Dict[str, Any]:
        """Detailed per-component statistics."""
        return {
            "metrics": self.get_metrics().to_dict(),
            "processor": self.processor.get_statistics() if self.processor else {},
            "debouncer": self.debouncer.get_statistics() if self.debouncer else {},
            "subscriptions": self.subscriptions.get_statistics() if self.subscriptions else {},
            "embedding": self.embedding_engine.get_statistics(),
            "errors": self.classifier.get_statistics(),
        }
