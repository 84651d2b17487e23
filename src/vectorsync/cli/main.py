"""
Main CLI entry point for vectorsync
"""

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install

from .. import __version__

# Install rich traceback handler for better error display
install(show_locals=False)

# Initialize console
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)],
)
logging.getLogger("vectorsync").setLevel(logging.INFO)


@click.group()
@click.version_option(version=__version__, prog_name="vectorsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False), default=None,
    envvar="VECTORSYNC_CONFIG_PATH", help="YAML configuration file",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool, config_path: Optional[str]) -> None:
    """
    vectorsync - MongoDB to vector index synchronization

    Keeps vector embeddings of every discovered document type up to date by
    following the database's change streams.

    Examples:
      vectorsync discover                 # Show discovered document types
      vectorsync backfill --dry-run       # Preview indexing of existing documents
      vectorsync run                      # Start continuous synchronization
    """
    ctx.ensure_object(dict)

    # Configure console
    if no_color:
        ctx.obj["console"] = Console(force_terminal=False, no_color=True)
    else:
        ctx.obj["console"] = console

    # Configure logging level
    if verbose:
        logging.getLogger().setLevel(logging.INFO)
        logging.getLogger("vectorsync").setLevel(logging.DEBUG)
        ctx.obj["verbose"] = True
    else:
        ctx.obj["verbose"] = False

    # Store global options
    ctx.obj["no_color"] = no_color
    ctx.obj["config_path"] = config_path


# Import and register commands at module level to support testing
from .commands import backfill, discover, run  # noqa: E402

cli.add_command(run.run)
cli.add_command(discover.discover)
cli.add_command(backfill.backfill)


def main() -> None:
    """Main entry point for the CLI application"""
    try:
        cli()

    except KeyboardInterrupt:
        console.print("\n[yellow]Operation interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
