"""Shared CLI helpers kept apart from ``cli`` to avoid circular imports."""

import click

from .config import ConfigManager


def get_config_manager(ctx: click.Context) -> ConfigManager:
    """Return the configuration loaded by the root command."""
    root = ctx.find_root()
    obj = root.obj or {}
    config_manager = obj.get('config_manager')
    if config_manager is None:
        raise click.ClickException("Configuration not loaded")
    return config_manager
