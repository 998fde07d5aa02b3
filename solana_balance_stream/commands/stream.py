"""CLI commands for live balance streaming."""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

import aiohttp
import click
from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..core.cli_base import get_config_manager
from ..core.config import ConfigManager
from ..core.logging import capture_exception
from ..data.address import is_valid_address, normalize_address
from ..data.models import BalanceUpdate, ConnectionStatus, lamports_to_sol
from ..data.rpc_client import RPCClientConfig, RPCError, SolanaRPCClient
from ..streaming.errors import StreamError
from ..streaming.history import BalanceHistory
from ..streaming.session import StreamConfig, StreamSession
from ..streaming.transport import Connector

console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    ConnectionStatus.CONNECTED: "bold green",
    ConnectionStatus.CONNECTING: "bold yellow",
    ConnectionStatus.RECONNECTING: "bold yellow",
    ConnectionStatus.DISCONNECTED: "bold red",
}

HISTORY_ROWS = 20


def format_sol(value: Decimal) -> str:
    return f"{value:.9f} SOL"


def format_status(history: BalanceHistory) -> Text:
    status = history.status
    text = Text(status.value.upper(), style=STATUS_STYLES[status])
    event = history.last_status
    if status == ConnectionStatus.RECONNECTING and event is not None:
        text.append(f"  attempt {event.attempt}", style="yellow")
        if event.delay is not None:
            text.append(f", retry in {event.delay:.1f}s", style="yellow")
    elif status == ConnectionStatus.DISCONNECTED and event is not None and event.error:
        text.append(f"  {event.error}", style="red")
    return text


def _update_row(update: BalanceUpdate, previous: Optional[BalanceUpdate]):
    change = ""
    if previous is not None:
        delta = update.balance_lamports - previous.balance_lamports
        if delta:
            sign = "+" if delta > 0 else "-"
            change = f"{sign}{lamports_to_sol(abs(delta)):.9f}"
    return (
        update.timestamp.astimezone().strftime("%H:%M:%S"),
        format_sol(update.balance_sol),
        f"{update.balance_lamports:,}",
        str(update.slot) if update.slot is not None else "seed",
        change,
    )


def render_view(address: str, history: BalanceHistory) -> Panel:
    """Render status, current balance and recent history."""
    header = Text.assemble(("Status: ", "bold"), format_status(history))
    current = history.current_sol
    header.append("\n")
    header.append("Balance: ", style="bold")
    header.append(format_sol(current) if current is not None else "-")
    header.append(f"   Updates: {history.notifications_received}")

    table = Table(box=box.SIMPLE, show_edge=False)
    table.add_column("Time", style="cyan", no_wrap=True)
    table.add_column("Balance", justify="right")
    table.add_column("Lamports", justify="right", style="dim")
    table.add_column("Slot", justify="right", style="magenta")
    table.add_column("Change", justify="right")

    updates = history.updates
    recent = list(enumerate(updates))[-HISTORY_ROWS:]
    for index, update in reversed(recent):
        previous = updates[index - 1] if index > 0 else None
        table.add_row(*_update_row(update, previous))

    if not updates:
        table.add_row("-", "Waiting for account activity...", "", "", "")

    return Panel(Group(header, table), title=f"[bold]{address}[/bold]", border_style="blue")


async def run_watch(config_manager: ConfigManager, address: str, stream_config: StreamConfig,
                    max_updates: int = 0, live_console: Optional[Console] = None,
                    connector: Optional[Connector] = None) -> BalanceHistory:
    """Stream ``address`` until interrupted, ``max_updates`` notifications
    arrive, or reconnection gives up."""
    history = BalanceHistory(max_entries=int(config_manager.get("history.max_entries", 500)))
    done = asyncio.Event()

    async with SolanaRPCClient(RPCClientConfig.from_config(config_manager)) as rpc_client:
        session = StreamSession(stream_config, rpc_client, connector=connector)
        history.attach(session)

        def check_done(update: BalanceUpdate):
            if max_updates and history.notifications_received >= max_updates:
                done.set()

        def check_disconnected(event):
            if event.status == ConnectionStatus.DISCONNECTED:
                done.set()

        session.add_update_handler(check_done)
        session.add_status_handler(check_disconnected)

        with Live(render_view(address, history), console=live_console or console,
                  refresh_per_second=4) as live:
            def refresh(_event):
                live.update(render_view(address, history))

            session.add_update_handler(refresh)
            session.add_status_handler(refresh)

            try:
                await session.start(address)
                await done.wait()
            finally:
                await session.stop()

    return history


@click.command()
@click.argument('address')
@click.option('--keepalive', type=float, default=None,
              help='Seconds between keepalive requests (0 disables)')
@click.option('--reconnect-delay', type=float, default=None,
              help='Initial reconnect delay in seconds')
@click.option('--max-reconnect-delay', type=float, default=None,
              help='Upper bound for the reconnect delay')
@click.option('--max-retries', type=int, default=None,
              help='Give up after this many reconnect attempts')
@click.option('--max-updates', type=int, default=0,
              help='Exit after this many balance notifications')
@click.pass_context
def watch(ctx: click.Context, address: str, keepalive: Optional[float],
          reconnect_delay: Optional[float], max_reconnect_delay: Optional[float],
          max_retries: Optional[int], max_updates: int) -> None:
    """Stream live balance updates for ADDRESS."""
    if not is_valid_address(address):
        raise click.BadParameter(f"Invalid Solana address: {address}", param_hint="ADDRESS")
    address = normalize_address(address)

    config_manager = get_config_manager(ctx)
    stream_config = StreamConfig.from_config(
        config_manager,
        keepalive_interval=keepalive,
        reconnect_delay=reconnect_delay,
        max_reconnect_delay=max_reconnect_delay,
        max_reconnect_attempts=max_retries,
    )

    try:
        history = asyncio.run(run_watch(config_manager, address, stream_config, max_updates))
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Stream stopped[/bold yellow]")
        return
    except (StreamError, RPCError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        message = str(e) or type(e).__name__
        logger.error(f"Streaming failed for {address}: {message}")
        capture_exception(e, {"command": "watch", "address": address})
        raise click.ClickException(f"Streaming failed: {message}")

    console.print(
        f"[bold green]✓[/bold green] Received {history.notifications_received} balance updates"
    )


@click.command()
@click.argument('address')
@click.pass_context
def balance(ctx: click.Context, address: str) -> None:
    """Fetch the current balance of ADDRESS."""
    if not is_valid_address(address):
        raise click.BadParameter(f"Invalid Solana address: {address}", param_hint="ADDRESS")
    address = normalize_address(address)

    config_manager = get_config_manager(ctx)

    async def fetch() -> int:
        async with SolanaRPCClient(RPCClientConfig.from_config(config_manager)) as rpc_client:
            return await rpc_client.get_balance(address)

    try:
        lamports = asyncio.run(fetch())
    except (RPCError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"Balance query failed for {address}: {e}")
        raise click.ClickException(f"Balance query failed: {e}")

    table = Table(title="Account Balance", box=box.ROUNDED)
    table.add_column("Address", style="cyan")
    table.add_column("SOL", justify="right", style="green")
    table.add_column("Lamports", justify="right")
    table.add_row(address, f"{lamports_to_sol(lamports):.9f}", f"{lamports:,}")
    console.print(table)


@click.command()
@click.argument('address')
def validate(address: str) -> None:
    """Check whether ADDRESS is a valid Solana public key."""
    if is_valid_address(address):
        console.print(f"[bold green]✓[/bold green] {address} is a valid address")
    else:
        console.print(f"[bold red]✗[/bold red] {address} is not a valid address")
        raise SystemExit(1)
