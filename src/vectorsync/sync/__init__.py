"""
Change-driven synchronization of documents into the vector index.

Key Components:
- Schema discovery over the primary store's collections
- Semantic text rendering of documents
- Per-collection change subscriptions with restart on transient failure
- Per-document debouncing with a feedback-loop guard
- Document processing: embed with retry and upsert
- Pipeline controller with lifecycle, metrics and backfill
"""

from .debouncer import UpdateDebouncer, is_recently_embedded
from .monitoring import PipelineMonitor
from .pipeline import PipelineController, create_vector_index
from .processor import DocumentProcessor, resolve_document_type
from .schema_discovery import SchemaDiscoveryEngine, classify_fields, discover, select_collections
from .semantic_text import SemanticTextBuilder, fragment_builder
from .subscription_manager import ChangeSubscriptionManager

__all__ = [
    # Controller
    'PipelineController',
    'PipelineMonitor',
    'create_vector_index',

    # Discovery
    'SchemaDiscoveryEngine',
    'classify_fields',
    'discover',
    'select_collections',

    # Rendering
    'SemanticTextBuilder',
    'fragment_builder',

    # Change handling
    'ChangeSubscriptionManager',
    'UpdateDebouncer',
    'is_recently_embedded',
    'DocumentProcessor',
    'resolve_document_type',
]
