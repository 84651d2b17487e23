"""
Run the synchronization pipeline in the foreground
"""

import signal

import click
from rich.console import Console

from ...core.document_store import MongoDocumentStore
from ...core.exceptions import StoreUnavailableError
from ...sync.pipeline import PipelineController
from ..ui.display import create_metrics_panel
from ..utils.async_runner import GracefulKiller, async_command
from ..utils.runtime import load_cli_config


@click.command()
@click.pass_context
@async_command
async def run(ctx: click.Context) -> None:
    """
    Start the pipeline and keep the vector index in sync.

    Discovers document types, opens one change stream per collection and
    processes changes until interrupted with Ctrl+C or SIGTERM.
    """
    console: Console = ctx.obj["console"]
    config = load_cli_config(ctx, require_credentials=True)

    killer = GracefulKiller()

    try:
        async with MongoDocumentStore(config.store) as store:
            pipeline = PipelineController(config, store)
            with console.status("Starting pipeline..."):
                await pipeline.start()

            console.print(create_metrics_panel(pipeline.get_metrics()))
            if not pipeline.is_healthy():
                console.print("[yellow]No change streams are open; nothing to synchronize[/yellow]")

            killer.install()
            try:
                await killer.wait()
            finally:
                killer.uninstall()
                signal_name = signal.Signals(killer.received_signal).name if killer.received_signal else "shutdown"
                console.print(f"\n[cyan]Received {signal_name}, stopping...[/cyan]")
                await pipeline.stop()

            console.print(create_metrics_panel(pipeline.get_metrics()))
    except StoreUnavailableError as e:
        raise click.ClickException(str(e)) from e

    console.print("[green]Pipeline stopped cleanly[/green]")
