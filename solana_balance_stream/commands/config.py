"""
Configuration management commands.

View the effective configuration and manage the encrypted Helius API key.
"""

import json

import click
import yaml
from rich.console import Console
from rich.syntax import Syntax

from ..core.cli_base import get_config_manager
from ..core.config import API_KEY_SECRET, redact_config, redact_url

console = Console()


@click.group(name='config')
def config_group() -> None:
    """Configuration management commands."""
    pass


@config_group.command(name='show')
@click.option('--key', help='Show specific configuration key')
@click.option('--format', 'output_format', type=click.Choice(['yaml', 'json']),
              default='yaml', help='Output format')
@click.pass_context
def show_config(ctx: click.Context, key: str = None, output_format: str = 'yaml') -> None:
    """Show current configuration."""
    config_manager = get_config_manager(ctx)

    if key:
        value = config_manager.get(key)
        if value is None:
            console.print(f"[red]Configuration key '{key}' not found[/red]")
            raise SystemExit(1)
        data = {key: value}
    else:
        data = config_manager.get_all()

    data = redact_config(data)

    if output_format == 'json':
        console.print(Syntax(json.dumps(data, indent=2), "json", theme="monokai"))
    else:
        console.print(Syntax(yaml.dump(data, default_flow_style=False), "yaml", theme="monokai"))


@config_group.command(name='endpoints')
@click.pass_context
def show_endpoints(ctx: click.Context) -> None:
    """Show the RPC endpoints in use, with API keys masked."""
    config_manager = get_config_manager(ctx)
    console.print(f"[bold]HTTP:[/bold] {redact_url(config_manager.http_url())}")
    console.print(f"[bold]WebSocket:[/bold] {redact_url(config_manager.ws_url())}")


@config_group.command(name='set-api-key')
@click.option('--api-key', prompt=True, hide_input=True, help='Helius API key')
@click.pass_context
def set_api_key(ctx: click.Context, api_key: str) -> None:
    """Store the Helius API key encrypted."""
    config_manager = get_config_manager(ctx)
    config_manager.set_secret(API_KEY_SECRET, api_key.strip())
    console.print(f"[green]API key saved to {config_manager.secrets_file}[/green]")


@config_group.command(name='clear-api-key')
@click.pass_context
def clear_api_key(ctx: click.Context) -> None:
    """Remove the stored Helius API key."""
    config_manager = get_config_manager(ctx)
    if config_manager.delete_secret(API_KEY_SECRET):
        console.print("[green]API key removed[/green]")
    else:
        console.print("[yellow]No API key stored[/yellow]")
