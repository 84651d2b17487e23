"""
Shared setup for CLI commands
"""

import logging

import click

from ...core.config_manager import ConfigManager, VectorSyncConfig
from ...core.exceptions import ConfigurationError


def load_cli_config(ctx: click.Context, require_credentials: bool = True) -> VectorSyncConfig:
    """
    Load configuration for a command, reporting problems as CLI errors
    """
    manager = ConfigManager(ctx.obj.get("config_path"))
    try:
        config = manager.load_config(validate=require_credentials)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    # --verbose wins over the configured level
    if not ctx.obj.get("verbose"):
        logging.getLogger("vectorsync").setLevel(config.log_level)

    return config
