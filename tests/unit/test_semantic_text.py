"""
Tests for semantic text and searchable content rendering
"""

from datetime import datetime, timezone

import pytest

from vectorsync.models.sync_models import FieldStructure
from vectorsync.sync.schema_discovery import classify_fields
from vectorsync.sync.semantic_text import (
    TRUNCATION_MARKER,
    SemanticTextBuilder,
    field_label,
    get_nested_value,
    truncate_text,
)


@pytest.fixture
def builder():
    return SemanticTextBuilder()


class TestHelpers:
    """Test path resolution and truncation helpers."""

    def test_get_nested_value_with_index(self):
        """Test dotted paths with array indexes resolve."""
        document = {"lineItems": [{"sku": "A1"}, {"sku": "B2"}], "meta": {"owner": "ops"}}

        assert get_nested_value(document, "lineItems[1].sku") == "B2"
        assert get_nested_value(document, "meta.owner") == "ops"
        assert get_nested_value(document, "lineItems[5].sku") is None
        assert get_nested_value(document, "missing.path") is None

    def test_field_label_strips_index(self):
        """Test labels are the leaf name without array index."""
        assert field_label("lineItems[0].quantityPurchased") == "quantityPurchased"
        assert field_label("tags[0]") == "tags"
        assert field_label("name") == "name"

    def test_truncate_short_text_untouched(self):
        """Test text within the limit is returned as-is."""
        assert truncate_text("short", 100) == "short"

    @pytest.mark.parametrize("limit", [16, 100, 8000])
    def test_truncate_bound(self, limit):
        """Test truncated output never exceeds the limit and ends with the marker."""
        result = truncate_text("x" * (limit * 2), limit)

        assert len(result.encode("utf-8")) <= limit
        assert result.endswith(TRUNCATION_MARKER)

    def test_truncate_multibyte_text(self):
        """Test truncation never splits a multi-byte character."""
        result = truncate_text("é" * 50, 21)

        assert len(result.encode("utf-8")) <= 21
        assert result.endswith(TRUNCATION_MARKER)
        assert set(result[:-len(TRUNCATION_MARKER)]) == {"é"}


class TestSemanticText:
    """Test natural-language rendering."""

    def test_invoice_rendering(self, builder, make_invoice):
        """Test the invoice renders type, fragments and field lines in order."""
        document = make_invoice("inv-1")
        text = builder.build_semantic_text(document, classify_fields(document))
        lines = text.split("\n")

        assert lines[0] == "Document type: paintInvoice"
        assert lines[1] == "Paint purchase invoice with consumption data"
        assert "Total paint purchased: 5 gallons" in lines
        assert "Line items: 1 products" in lines
        assert "VOC content: 250 g/L" in lines
        assert "notes: Exterior paint for the north warehouse" in lines
        assert "facilityId: FAC-1" in lines
        assert "quantityPurchased: 5" in lines
        assert "invoiceDate: 2024-03-01" in lines
        # Numeric fields without a meaningful name are left out
        assert "vocGramsPerLiter: 250" not in lines

        assert lines.index("notes: Exterior paint for the north warehouse") < lines.index("facilityId: FAC-1")
        assert lines.index("facilityId: FAC-1") < lines.index("quantityPurchased: 5")
        assert lines.index("quantityPurchased: 5") < lines.index("invoiceDate: 2024-03-01")

    def test_datetime_rendered_as_date(self, builder):
        """Test datetimes render as YYYY-MM-DD."""
        document = {"dueAt": datetime(2024, 5, 17, 13, 45, tzinfo=timezone.utc)}
        structure = FieldStructure(date_fields=["dueAt"])

        assert builder.build_semantic_text(document, structure) == "dueAt: 2024-05-17"

    def test_deterministic(self, builder, make_invoice):
        """Test rendering the same document twice gives identical text."""
        document = make_invoice("inv-1")
        structure = classify_fields(document)

        assert builder.build_semantic_text(document, structure) == builder.build_semantic_text(
            document, structure
        )

    def test_missing_values_skipped(self, builder):
        """Test fields absent from this document are left out."""
        structure = FieldStructure(text_fields=["title", "summary"], identifier_fields=["sku"])

        text = builder.build_semantic_text({"title": "  Primer  "}, structure)

        assert text == "title: Primer"

    def test_semantic_text_capped(self, make_invoice):
        """Test long documents are truncated to the configured cap."""
        builder = SemanticTextBuilder(max_semantic_length=200)
        document = make_invoice("inv-1", notes="very long notes " * 100)

        text = builder.build_semantic_text(document, classify_fields(document))

        assert len(text.encode("utf-8")) <= 200
        assert text.endswith(TRUNCATION_MARKER)

    def test_custom_fragment_builder(self, builder):
        """Test registered fragment builders add type-specific lines."""
        builder.register("memo", lambda doc: [f"Memo from {doc['author']}"])
        document = {"type": "memo", "author": "Dana", "body": "Budget approved"}
        structure = FieldStructure(text_fields=["body"])

        lines = builder.build_semantic_text(document, structure).split("\n")

        assert lines == ["Document type: memo", "Memo from Dana", "body: Budget approved"]

    def test_fragment_builders_isolated_per_instance(self):
        """Test registering on one builder does not affect another."""
        first = SemanticTextBuilder()
        second = SemanticTextBuilder()
        first.register("memo", lambda doc: ["extra"])

        assert "memo" not in second.fragment_builders
        assert "paintInvoice" in second.fragment_builders


class TestSearchableContent:
    """Test keyword rendering."""

    def test_invoice_keywords(self, builder, make_invoice):
        """Test values are lower-cased and followed by their field path."""
        document = make_invoice("inv-1")
        content = builder.build_searchable_content(document, classify_fields(document))

        assert "exterior paint for the north warehouse notes" in content
        assert "fac-1" in content
        assert content.endswith("paintinvoice")
        assert content == content.lower()

    def test_whitespace_flattened(self, builder):
        """Test embedded newlines and runs of spaces collapse."""
        structure = FieldStructure(text_fields=["line_one"])

        content = builder.build_searchable_content({"line_one": "A\n\nB   C"}, structure)

        assert content == "a b c line one"

    def test_searchable_content_capped(self):
        """Test searchable content respects its cap."""
        builder = SemanticTextBuilder(max_searchable_length=64)
        structure = FieldStructure(text_fields=["body"])

        content = builder.build_searchable_content({"body": "word " * 100}, structure)

        assert len(content.encode("utf-8")) <= 64
        assert content.endswith(TRUNCATION_MARKER)
