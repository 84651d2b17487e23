"""
Rich display components for discovery results, metrics and reports
"""

from typing import Any, Dict, Mapping

from rich.panel import Panel
from rich.table import Table

from ...models.sync_models import BackfillReport, DocumentTypeEntry, PipelineMetrics


def create_registry_table(
    registry: Mapping[str, DocumentTypeEntry], title: str = "Discovered Document Types"
) -> Table:
    """
    Create a Rich table listing discovered document types
    """
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Type", style="cyan", no_wrap=True)
    table.add_column("Collection", style="green")
    table.add_column("Documents", justify="right")
    table.add_column("Text", justify="right")
    table.add_column("Identifiers", justify="right")
    table.add_column("Numeric", justify="right")
    table.add_column("Dates", justify="right")

    for type_name, entry in registry.items():
        structure = entry.field_structure
        table.add_row(
            type_name,
            entry.source_collection,
            str(entry.sample_count),
            str(len(structure.text_fields)),
            str(len(structure.identifier_fields)),
            str(len(structure.numeric_fields)),
            str(len(structure.date_fields)),
        )

    return table


def create_metrics_panel(metrics: PipelineMetrics, title: str = "Vector Sync") -> Panel:
    """
    Create a status panel from a metrics snapshot
    """
    if metrics.is_running and metrics.active_subscriptions > 0:
        color, status_text = "green", "✓ Running"
    elif metrics.is_running:
        color, status_text = "yellow", "⚠ Idle (no change streams)"
    else:
        color, status_text = "red", "✗ Stopped"

    lines = [
        f"[{color}]{status_text}[/{color}]",
        f"Document types: {metrics.document_types}",
        f"Change streams: {metrics.active_subscriptions}",
        f"Processed: {metrics.documents_processed}",
        f"Embeddings: {metrics.embeddings_generated}",
        f"Pending: {metrics.pending_updates}",
        f"Errors: {metrics.errors}",
        f"Uptime: {metrics.uptime_seconds:.0f}s",
    ]

    return Panel("\n".join(lines), title=title, border_style=color)


def create_report_table(report: BackfillReport) -> Table:
    """
    Create a summary table for a backfill run
    """
    title = "Backfill Report (dry run)" if report.dry_run else "Backfill Report"
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right", style="green")

    summary: Dict[str, Any] = {
        "Scanned": report.scanned,
        "Processed": report.processed,
        "Skipped": report.skipped,
        "Failed": report.failed,
    }
    for label, value in summary.items():
        table.add_row(label, str(value))

    for type_name, count in sorted(report.by_type.items()):
        table.add_row(f"  {type_name}", str(count))

    return table
