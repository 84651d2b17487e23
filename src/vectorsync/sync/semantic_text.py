"""
Semantic Text Builder - render documents into embeddable text.

Produces two bounded strings per document: a natural-language summary used
as embedding input, and a lower-cased keyword blob for keyword matching.
Rendering is deterministic for a given document and field structure, which
keeps re-indexing an unchanged document idempotent.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..models.sync_models import FieldStructure

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."
DEFAULT_MAX_SEMANTIC_LENGTH = 8000
DEFAULT_MAX_SEARCHABLE_LENGTH = 4000

# Numeric fields are only worth rendering when their name says what they count
MEANINGFUL_NUMERIC_HINTS = ("amount", "count", "content", "value", "price", "quantity")

_INDEX_SUFFIX = re.compile(r"\[\d+\]$")
_PATH_SEPARATORS = re.compile(r"[._\[\]]+")
_WHITESPACE = re.compile(r"\s+")

FragmentBuilder = Callable[[Mapping[str, Any]], List[str]]

# Hand-authored fragments for document types that need domain knowledge
DEFAULT_FRAGMENT_BUILDERS: Dict[str, FragmentBuilder] = {}


def fragment_builder(type_name: str) -> Callable[[FragmentBuilder], FragmentBuilder]:
    """Register a fragment builder for a document type in the default set."""

    def decorator(func: FragmentBuilder) -> FragmentBuilder:
        DEFAULT_FRAGMENT_BUILDERS[type_name] = func
        return func

    return decorator


def get_nested_value(document: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path such as ``lineItems[0].quantity``."""
    current: Any = document
    for part in path.split("."):
        if current is None:
            return None
        match = re.match(r"^(.*)\[(\d+)\]$", part)
        if match:
            key, index = match.group(1), int(match.group(2))
            container = current.get(key) if isinstance(current, Mapping) else None
            if not isinstance(container, (list, tuple)) or index >= len(container):
                return None
            current = container[index]
        elif isinstance(current, Mapping):
            current = current.get(part)
        else:
            return None
    return current


def field_label(path: str) -> str:
    """Leaf name of a field path, without array index."""
    return _INDEX_SUFFIX.sub("", path.split(".")[-1])


def truncate_text(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut text to at most ``limit`` UTF-8 bytes, ending with ``marker``."""
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    head = encoded[:max(0, limit - len(marker.encode("utf-8")))]
    return head.decode("utf-8", errors="ignore") + marker


def format_value(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SemanticTextBuilder:
    """
    Renders documents using their discovered field structure.

    Part order: type label, type-specific fragments, text fields, identifier
    fields, meaningful numeric fields, date fields.
    """

    def __init__(
        self,
        max_semantic_length: int = DEFAULT_MAX_SEMANTIC_LENGTH,
        max_searchable_length: int = DEFAULT_MAX_SEARCHABLE_LENGTH,
        fragment_builders: Optional[Mapping[str, FragmentBuilder]] = None,
    ):
        self.max_semantic_length = max_semantic_length
        self.max_searchable_length = max_searchable_length
        self.fragment_builders: Dict[str, FragmentBuilder] = dict(
            DEFAULT_FRAGMENT_BUILDERS if fragment_builders is None else fragment_builders
        )

    def register(self, type_name: str, builder: FragmentBuilder) -> None:
        self.fragment_builders[type_name] = builder

    def build_semantic_text(self, document: Mapping[str, Any], structure: FieldStructure) -> str:
        parts: List[str] = []

        doc_type = document.get("type")
        if isinstance(doc_type, str) and doc_type:
            parts.append(f"Document type: {doc_type}")
            builder = self.fragment_builders.get(doc_type)
            if builder:
                parts.extend(builder(document))

        for path in structure.text_fields:
            value = get_nested_value(document, path)
            if isinstance(value, str) and value.strip():
                parts.append(f"{field_label(path)}: {value.strip()}")

        for path in structure.identifier_fields:
            value = get_nested_value(document, path)
            if value is not None and value != "":
                parts.append(f"{field_label(path)}: {format_value(value)}")

        for path in structure.numeric_fields:
            label = field_label(path)
            if not any(hint in label.lower() for hint in MEANINGFUL_NUMERIC_HINTS):
                continue
            value = get_nested_value(document, path)
            if _is_number(value):
                parts.append(f"{label}: {format_value(value)}")

        for path in structure.date_fields:
            value = get_nested_value(document, path)
            if value is not None and value != "":
                parts.append(f"{field_label(path)}: {format_value(value)}")

        full_text = "\n".join(parts)
        truncated = truncate_text(full_text, self.max_semantic_length)
        if truncated is not full_text:
            logger.warning(
                f"Semantic text truncated from {len(full_text)} to {len(truncated)} "
                f"characters for document {document.get('_id')}"
            )
        return truncated

    def build_searchable_content(self, document: Mapping[str, Any], structure: FieldStructure) -> str:
        keywords: List[str] = []

        for path in structure.text_fields:
            value = get_nested_value(document, path)
            if isinstance(value, str) and value.strip():
                keywords.append(_flatten(value))
                keywords.append(_flatten(_PATH_SEPARATORS.sub(" ", path)))

        for path in structure.identifier_fields:
            value = get_nested_value(document, path)
            if value is not None and value != "":
                keywords.append(_flatten(format_value(value)))

        doc_type = document.get("type")
        if isinstance(doc_type, str) and doc_type:
            keywords.append(doc_type.lower())

        full_content = " ".join(keyword for keyword in keywords if keyword)
        truncated = truncate_text(full_content, self.max_searchable_length)
        if truncated is not full_content:
            logger.warning(
                f"Searchable content truncated from {len(full_content)} to {len(truncated)} "
                f"characters for document {document.get('_id')}"
            )
        return truncated


def _flatten(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip().lower()


@fragment_builder("paintInvoice")
def paint_invoice_fragments(document: Mapping[str, Any]) -> List[str]:
    """Consumption context for paint purchase invoices."""
    parts = ["Paint purchase invoice with consumption data"]

    if document.get("facilityId"):
        parts.append(f"Facility: {document['facilityId']}")
    if document.get("companyId"):
        parts.append(f"Company: {document['companyId']}")
    if document.get("invoiceNumber"):
        parts.append(f"Invoice: {document['invoiceNumber']}")

    line_items = document.get("lineItems")
    if isinstance(line_items, list):
        items = [item for item in line_items if isinstance(item, Mapping)]
        total = sum(
            item.get("quantityPurchased") or 0
            for item in items
            if _is_number(item.get("quantityPurchased"))
        )
        parts.append(f"Total paint purchased: {total} gallons")
        parts.append(f"Line items: {len(line_items)} products")

        for index, item in enumerate(items, start=1):
            if item.get("quantityPurchased"):
                parts.append(f"Product {index}: {item['quantityPurchased']} gallons purchased")
            if item.get("vocGramsPerLiter"):
                parts.append(f"VOC content: {item['vocGramsPerLiter']} g/L")

    return parts
