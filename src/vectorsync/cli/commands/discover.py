"""
Schema discovery command
"""

import json

import click
from rich.console import Console

from ...core.document_store import MongoDocumentStore
from ...core.exceptions import StoreUnavailableError
from ...sync.pipeline import PipelineController
from ..ui.display import create_registry_table
from ..utils.async_runner import async_command
from ..utils.runtime import load_cli_config


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print the registry as JSON")
@click.pass_context
@async_command
async def discover(ctx: click.Context, as_json: bool) -> None:
    """
    Show the document types the pipeline would index.

    Runs schema discovery against the configured database without opening
    any change stream or calling the embedding provider.
    """
    console: Console = ctx.obj["console"]
    config = load_cli_config(ctx, require_credentials=False)

    try:
        async with MongoDocumentStore(config.store) as store:
            pipeline = PipelineController(config, store)
            try:
                with console.status("Discovering document types..."):
                    registry = await pipeline.discover()
            finally:
                await pipeline.stop()
    except StoreUnavailableError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        payload = {name: entry.model_dump(mode="json") for name, entry in registry.items()}
        click.echo(json.dumps(payload, indent=2))
        return

    if not registry:
        console.print("[yellow]No document types discovered[/yellow]")
        return

    console.print(create_registry_table(registry))
