"""
Schema Discovery - infer document types and field semantics at startup.

Inspects the collections of the primary store, decides which of them to
monitor, and classifies the fields of a representative document per type
into text, numeric, date and identifier buckets.
"""

import logging
import re
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from ..core.config_manager import DiscoveryConfig
from ..core.document_store import DocumentStore
from ..models.sync_models import DocumentTypeEntry, FieldKind, FieldStructure

logger = logging.getLogger(__name__)

SYSTEM_COLLECTION_PREFIX = "system."

# Internal, audit and derived fields never used for semantics. The last five
# are written by this pipeline; classifying them would feed our own output
# back into the embeddings.
SKIPPED_FIELDS = frozenset({
    "_id", "__v",
    "deleted", "deleted_at", "deleted_by",
    "created_date", "last_updated", "created_by", "updated_by",
    "embedding", "semanticText", "searchableContent",
    "lastEmbeddingUpdate", "ragMetadata",
})

IDENTIFIER_HINTS = ("id", "code")

# YYYY-MM-DD with optional time part
ISO_DATE_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?)?$"
)


def is_iso_date_string(value: str) -> bool:
    """Whether a string is an ISO-8601 date or datetime."""
    text = value.strip()
    if not ISO_DATE_PATTERN.match(text):
        return False
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


def infer_field_kind(key: str, value: Any) -> Optional[FieldKind]:
    """
    Classify one leaf value.

    Returns None for values that carry no indexable meaning (booleans,
    nulls, empty strings and anything that is not a scalar).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return FieldKind.NUMERIC
    if isinstance(value, (datetime, date)):
        return FieldKind.DATE
    if isinstance(value, str):
        if not value.strip():
            return None
        if is_iso_date_string(value):
            return FieldKind.DATE
        lowered = key.lower()
        if any(hint in lowered for hint in IDENTIFIER_HINTS):
            return FieldKind.IDENTIFIER
        return FieldKind.TEXT
    return None


def classify_fields(document: Mapping[str, Any]) -> FieldStructure:
    """Walk a document and bucket every leaf path by field kind."""
    structure = FieldStructure()

    def visit(key: str, value: Any, path: str) -> None:
        if key in SKIPPED_FIELDS or value is None:
            return

        full_path = f"{path}.{key}" if path else key

        if isinstance(value, Mapping):
            for sub_key, sub_value in value.items():
                visit(str(sub_key), sub_value, full_path)
            return

        if isinstance(value, (list, tuple)):
            # First element stands in for the whole array
            if value:
                visit(f"{key}[0]", value[0], path)
            return

        kind = infer_field_kind(key, value)
        if kind is not None:
            structure.add(kind, full_path)

    for key, value in document.items():
        visit(str(key), value, "")

    return structure


def is_system_collection(name: str) -> bool:
    return name.startswith(SYSTEM_COLLECTION_PREFIX)


def select_collections(
    existing: Iterable[str],
    config: DiscoveryConfig,
    excluded: Iterable[str] = (),
) -> List[str]:
    """
    Decide which collections to monitor.

    Allow-listed names come first in the order given, followed by the
    auto-discovered ones in alphabetical order; the result is truncated to
    ``config.max_collections``.
    """
    excluded_set = set(excluded)
    available = [
        name for name in existing
        if not is_system_collection(name) and name not in excluded_set
    ]
    available_set = set(available)

    allowed: List[str] = []
    for name in config.allowed_collections:
        if name in available_set:
            if name not in allowed:
                allowed.append(name)
        else:
            logger.warning(f"Allow-listed collection '{name}' does not exist, ignoring it")

    if config.enabled:
        extra = sorted(name for name in available_set if name not in allowed)
        candidates = allowed + extra
    else:
        candidates = allowed
        if not candidates:
            logger.info(
                "Discovery disabled and no allowed collections configured; "
                "the pipeline will stay idle"
            )
            return []

    if len(candidates) > config.max_collections:
        dropped = candidates[config.max_collections:]
        logger.warning(
            f"Monitoring limited to {config.max_collections} collections; "
            f"skipping {len(dropped)}: {', '.join(dropped)}"
        )
        candidates = candidates[:config.max_collections]

    return candidates


class SchemaDiscoveryEngine:
    """
    Builds the document-type registry from the primary store.

    The resulting mapping is read-only: it is built once per process start
    and shared with the processing components.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: DiscoveryConfig,
        excluded_collections: Iterable[str] = (),
    ):
        self.store = store
        self.config = config
        self.excluded_collections: Set[str] = set(excluded_collections)
        self.failed_collections: Dict[str, str] = {}

    async def discover(self) -> Mapping[str, DocumentTypeEntry]:
        """Discover all document types in the configured collections."""
        existing = await self.store.list_collection_names()
        collections = select_collections(existing, self.config, self.excluded_collections)

        registry: Dict[str, DocumentTypeEntry] = {}
        for collection_name in collections:
            try:
                entries = await self._inspect_collection(collection_name)
            except Exception as e:
                logger.error(f"Failed to inspect collection '{collection_name}', skipping: {e}")
                self.failed_collections[collection_name] = str(e)
                continue

            for entry in entries:
                if entry.type_name in registry:
                    logger.debug(
                        f"Type '{entry.type_name}' from '{collection_name}' already registered "
                        f"from '{registry[entry.type_name].source_collection}'"
                    )
                    continue
                registry[entry.type_name] = entry

        logger.info(
            f"Discovered {len(registry)} document types across {len(collections)} collections"
        )
        for type_name, entry in registry.items():
            logger.debug(
                f"  {type_name} ({entry.source_collection}): "
                f"{entry.field_structure.total_fields} fields, ~{entry.sample_count} documents"
            )

        return MappingProxyType(registry)

    async def _inspect_collection(self, collection_name: str) -> List[DocumentTypeEntry]:
        type_field = self.config.type_field
        type_values = [
            value for value in await self.store.distinct(collection_name, type_field)
            if isinstance(value, str) and value
        ]

        entries: List[DocumentTypeEntry] = []

        if type_values:
            for type_value in type_values:
                query = {type_field: type_value}
                entry = await self._build_entry(collection_name, type_value, query)
                if entry:
                    entries.append(entry)
        else:
            entry = await self._build_entry(collection_name, collection_name, {})
            if entry:
                entries.append(entry)

        return entries

    async def _build_entry(
        self, collection_name: str, type_name: str, query: Dict[str, Any]
    ) -> Optional[DocumentTypeEntry]:
        sample = await self.store.find_one(collection_name, query)
        if not sample:
            return None

        count = await self.store.count_documents(
            collection_name, query, limit=self.config.sample_limit
        )

        return DocumentTypeEntry(
            type_name=type_name,
            source_collection=collection_name,
            field_structure=classify_fields(sample),
            sample_count=count,
        )


async def discover(
    store: DocumentStore,
    config: DiscoveryConfig,
    excluded_collections: Iterable[str] = (),
) -> Mapping[str, DocumentTypeEntry]:
    """Convenience wrapper: build the registry in one call."""
    engine = SchemaDiscoveryEngine(store, config, excluded_collections)
    return await engine.discover()
