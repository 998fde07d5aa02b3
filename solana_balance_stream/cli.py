"""
Main CLI module.

Provides the ``solana-balance-stream`` entry point: global logging and
configuration options plus the streaming and configuration command groups.
"""

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from solana_balance_stream.core.config import ConfigManager, ConfigError
from solana_balance_stream.core.logging import setup_logging as setup_structured_logging

console = Console(stderr=True)
logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False, verbose: bool = False) -> int:
    """Set up console logging and return the package log level."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)]
    )

    logging.getLogger("solana_balance_stream").setLevel(level)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    return level


def load_config(config_file: Optional[str] = None, level: Optional[int] = None) -> ConfigManager:
    """Load configuration and install the configured log handlers.

    ``level`` comes from the command line and takes precedence over
    ``logging.level`` in the configuration.
    """
    config_manager = ConfigManager(config_file=config_file)
    config_manager.initialize()
    setup_structured_logging(config_manager.get_all(), level)
    return config_manager


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config', '-c', type=click.Path(exists=True, dir_okay=False),
              help='Configuration file path')
@click.pass_context
def main(ctx: click.Context, debug: bool, verbose: bool, config: Optional[str]) -> None:
    """
    Solana Balance Stream - live SOL balance monitoring.

    Subscribes to account change notifications over a websocket RPC endpoint,
    keeps the connection alive and reconnects with exponential backoff.
    """
    level = setup_logging(debug, verbose)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    try:
        config_manager = load_config(config, level)
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    ctx.obj = {'config_manager': config_manager, 'debug': debug, 'verbose': verbose}


@main.command()
def version() -> None:
    """Show version information."""
    from solana_balance_stream import __version__

    click.echo(f"Solana Balance Stream v{__version__}")


def register_commands():
    """Register all command groups with the main CLI."""
    from solana_balance_stream.commands.stream import watch, balance, validate
    from solana_balance_stream.commands.config import config_group

    main.add_command(watch)
    main.add_command(balance)
    main.add_command(validate)
    main.add_command(config_group)


register_commands()


if __name__ == '__main__':
    main()
