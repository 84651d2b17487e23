"""
Data models shared across the synchronization pipeline.
"""

from .sync_models import (
    DEFAULT_TENANT_ID,
    SCHEMA_VERSION,
    BackfillReport,
    DocumentTypeEntry,
    FieldKind,
    FieldStructure,
    PendingUpdate,
    PipelineMetrics,
    ProcessingOutcome,
    Subscription,
    SubscriptionState,
    VectorRecord,
)

__all__ = [
    "DEFAULT_TENANT_ID",
    "SCHEMA_VERSION",
    "BackfillReport",
    "DocumentTypeEntry",
    "FieldKind",
    "FieldStructure",
    "PendingUpdate",
    "PipelineMetrics",
    "ProcessingOutcome",
    "Subscription",
    "SubscriptionState",
    "VectorRecord",
]
