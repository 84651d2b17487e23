"""
Data models for the vector synchronization pipeline.

Covers the discovered document-type registry, live subscriptions, pending
debounce entries, the derived vector record, and the metrics snapshot.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = "2.0"
DEFAULT_TENANT_ID = "default-tenant"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_aware(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by MongoDB) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce a datetime, date or ISO-8601 string into an aware datetime."""
    if isinstance(value, datetime):
        return as_aware(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return as_aware(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def document_id_of(document: Dict[str, Any]) -> str:
    """Stable identifier of a source document: ``id`` if set, else ``_id``."""
    explicit = document.get("id")
    if explicit is not None and explicit != "":
        return str(explicit)
    return str(document.get("_id"))


def tenant_id_of(document: Dict[str, Any]) -> str:
    return str(document.get("tenantId") or DEFAULT_TENANT_ID)


class FieldKind(Enum):
    """Semantic category of a document field."""

    TEXT = "text"
    NUMERIC = "numeric"
    DATE = "date"
    IDENTIFIER = "identifier"


class FieldStructure(BaseModel):
    """Classified field paths of a document type, in first-seen order."""

    text_fields: List[str] = Field(default_factory=list)
    numeric_fields: List[str] = Field(default_factory=list)
    date_fields: List[str] = Field(default_factory=list)
    identifier_fields: List[str] = Field(default_factory=list)

    def fields_of(self, kind: FieldKind) -> List[str]:
        return getattr(self, f"{kind.value}_fields")

    def add(self, kind: FieldKind, path: str) -> None:
        bucket = self.fields_of(kind)
        if path not in bucket:
            bucket.append(path)

    @property
    def total_fields(self) -> int:
        return sum(len(self.fields_of(kind)) for kind in FieldKind)


class DocumentTypeEntry(BaseModel):
    """Registry entry for one discovered document type."""

    model_config = ConfigDict(frozen=True)

    type_name: str
    source_collection: str
    field_structure: FieldStructure
    sample_count: int = 0


class SubscriptionState(Enum):
    """Lifecycle states of a change subscription."""

    OPENING = "opening"
    ACTIVE = "active"
    RESTARTING = "restarting"
    PERMANENTLY_FAILED = "permanently_failed"
    CLOSED = "closed"


@dataclass
class Subscription:
    """A change stream on one source collection. ACTIVE only while a handle is open."""

    collection_name: str
    state: SubscriptionState = SubscriptionState.OPENING
    handle: Any = None
    task: Optional[asyncio.Task] = None
    restart_count: int = 0
    events_received: int = 0
    last_error: Optional[str] = None
    opened_at: datetime = field(default_factory=utcnow)
    # Set once the first watch attempt has succeeded or failed
    first_attempt: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection_name": self.collection_name,
            "state": self.state.value,
            "restart_count": self.restart_count,
            "events_received": self.events_received,
            "last_error": self.last_error,
            "opened_at": self.opened_at.isoformat(),
        }


@dataclass
class PendingUpdate:
    """Debounce entry: the latest document state waiting for a quiet window."""

    collection_name: str
    document_id: str
    document: Dict[str, Any]
    timer_handle: asyncio.TimerHandle
    scheduled_at: float


class VectorRecord(BaseModel):
    """Derived, indexable representation of one source document."""

    document_id: str
    tenant_id: str
    document_type: str
    embedding: List[float]
    semantic_text: str
    searchable_content: str
    embedding_model: str
    schema_version: str = SCHEMA_VERSION
    updated_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        """Field layout of the record as stored in the vector collection."""
        return {
            "documentId": self.document_id,
            "tenantId": self.tenant_id,
            "documentType": self.document_type,
            "embedding": self.embedding,
            "semanticText": self.semantic_text,
            "searchableContent": self.searchable_content,
            "embeddingModel": self.embedding_model,
            "semanticVersion": self.schema_version,
            "lastEmbeddingUpdate": self.updated_at,
            "last_updated": self.updated_at,
        }

    @classmethod
    def from_document(cls, stored: Dict[str, Any]) -> "VectorRecord":
        return cls(
            document_id=stored["documentId"],
            tenant_id=stored["tenantId"],
            document_type=stored["documentType"],
            embedding=stored["embedding"],
            semantic_text=stored["semanticText"],
            searchable_content=stored["searchableContent"],
            embedding_model=stored["embeddingModel"],
            schema_version=stored.get("semanticVersion", SCHEMA_VERSION),
            updated_at=as_aware(stored["last_updated"]),
        )


class ProcessingOutcome(Enum):
    """Result of running one document through the processor."""

    INDEXED = "indexed"
    SKIPPED_UNKNOWN_TYPE = "skipped_unknown_type"
    SKIPPED_SHORT_TEXT = "skipped_short_text"
    SKIPPED_CONCURRENT_WRITE = "skipped_concurrent_write"
    SKIPPED_FRESH = "skipped_fresh"
    DRY_RUN = "dry_run"
    DROPPED = "dropped"


class PipelineMetrics(BaseModel):
    """Point-in-time metrics snapshot of the pipeline."""

    documents_processed: int = 0
    embeddings_generated: int = 0
    errors: int = 0
    pending_updates: int = 0
    active_subscriptions: int = 0
    document_types: int = 0
    is_running: bool = False
    uptime_seconds: float = 0.0
    start_time: Optional[datetime] = None
    last_activity: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class BackfillReport:
    """Summary of a backfill run over existing documents."""

    scanned: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: bool = False
    by_type: Dict[str, int] = field(default_factory=dict)

    def record(self, type_name: str, outcome: ProcessingOutcome) -> None:
        if outcome in (ProcessingOutcome.INDEXED, ProcessingOutcome.DRY_RUN):
            self.processed += 1
            self.by_type[type_name] = self.by_type.get(type_name, 0) + 1
        elif outcome is ProcessingOutcome.DROPPED:
            self.failed += 1
        else:
            self.skipped += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "dry_run": self.dry_run,
            "by_type": dict(self.by_type),
        }
