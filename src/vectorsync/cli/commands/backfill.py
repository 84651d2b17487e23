"""
Backfill command: index documents that predate the pipeline
"""

from typing import Tuple

import click
from rich.console import Console

from ...core.document_store import MongoDocumentStore
from ...core.exceptions import StoreUnavailableError
from ...sync.pipeline import PipelineController
from ..ui.display import create_report_table
from ..utils.async_runner import async_command
from ..utils.runtime import load_cli_config


@click.command()
@click.option(
    "--type", "type_names", multiple=True, metavar="NAME",
    help="Only backfill this document type (repeatable)",
)
@click.option("--dry-run", is_flag=True, help="Render text without embedding or writing")
@click.pass_context
@async_command
async def backfill(ctx: click.Context, type_names: Tuple[str, ...], dry_run: bool) -> None:
    """
    Generate embeddings for existing documents.

    Processes every document of the discovered types in batches, skipping
    documents embedded within the freshness window.

    Examples:
      vectorsync backfill                      # All types
      vectorsync backfill --type paintInvoice  # One type
      vectorsync backfill --dry-run            # Preview only
    """
    console: Console = ctx.obj["console"]
    config = load_cli_config(ctx, require_credentials=not dry_run)

    try:
        async with MongoDocumentStore(config.store) as store:
            pipeline = PipelineController(config, store)
            try:
                with console.status("Backfilling embeddings..."):
                    report = await pipeline.backfill(
                        type_names=list(type_names) or None, dry_run=dry_run
                    )
            finally:
                await pipeline.stop()
    except StoreUnavailableError as e:
        raise click.ClickException(str(e)) from e

    console.print(create_report_table(report))
    if report.failed:
        ctx.exit(1)
