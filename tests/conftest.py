"""
Pytest configuration and shared fixtures for the test suite.

Provides in-memory fakes for the websocket connection, the connector and
the timer scheduler so streaming sessions can be driven deterministically.
"""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
import yaml
from click.testing import CliRunner
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from solana_balance_stream.core.config import ConfigManager
from solana_balance_stream.streaming.session import StreamConfig, StreamSession

VALID_ADDRESS = "So11111111111111111111111111111111111111112"
WS_URL = "wss://rpc.test/?api-key=secret"

_DROP = object()
_CLOSE = object()


class FakeWebSocket:
    """In-memory websocket that acknowledges subscribe requests."""

    def __init__(self, subscription_id: int = 7, auto_ack: bool = True,
                 reject: Optional[str] = None):
        self.subscription_id = subscription_id
        self.auto_ack = auto_ack
        self.reject = reject
        self.sent: List[Dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.close_calls = 0

    def push(self, message: Union[str, Dict[str, Any]]):
        """Queue an inbound frame."""
        self.incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def notify(self, lamports: Optional[int], slot: int, subscription: Optional[int] = None):
        value = None if lamports is None else {
            "lamports": lamports,
            "owner": "11111111111111111111111111111111",
            "executable": False,
            "rentEpoch": 18446744073709551615,
            "data": ["", "base64"],
        }
        self.push({
            "jsonrpc": "2.0",
            "method": "accountNotification",
            "params": {
                "subscription": self.subscription_id if subscription is None else subscription,
                "result": {"context": {"slot": slot}, "value": value},
            },
        })

    def drop(self):
        """Simulate the remote side closing the connection abnormally."""
        self.incoming.put_nowait(_DROP)

    def sent_methods(self) -> List[str]:
        return [message.get("method") for message in self.sent]

    async def send(self, text: str):
        if self.closed:
            raise ConnectionClosedOK(None, None)
        message = json.loads(text)
        self.sent.append(message)

        if message.get("method") == "accountSubscribe" and self.auto_ack:
            if self.reject:
                self.push({"jsonrpc": "2.0", "id": message["id"],
                           "error": {"code": -32602, "message": self.reject}})
            else:
                self.push({"jsonrpc": "2.0", "id": message["id"], "result": self.subscription_id})

    async def recv(self) -> str:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        item = await self.incoming.get()
        if item is _DROP:
            self.closed = True
            raise ConnectionClosedError(None, None)
        if item is _CLOSE:
            raise ConnectionClosedOK(None, None)
        return item

    async def close(self):
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(_CLOSE)


class FakeConnector:
    """Connector returning ``FakeWebSocket`` instances."""

    def __init__(self, **socket_kwargs):
        self.socket_kwargs = socket_kwargs
        self.sockets: List[FakeWebSocket] = []
        self.urls: List[str] = []
        self.failures = 0

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.failures:
            self.failures -= 1
            raise OSError("Connection refused")
        websocket = FakeWebSocket(**self.socket_kwargs)
        self.sockets.append(websocket)
        return websocket

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]

    @property
    def open_count(self) -> int:
        return len(self.sockets)

    @property
    def close_count(self) -> int:
        return sum(1 for websocket in self.sockets if websocket.close_calls > 0)

    def subscribe_count(self) -> int:
        return sum(ws.sent_methods().count("accountSubscribe") for ws in self.sockets)


class ManualScheduler:
    """Scheduler whose timers only fire when the test releases them."""

    def __init__(self):
        self.delays: List[float] = []
        self._waiters: List[asyncio.Future] = []

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self.delays.append(delay)
        self._waiters.append(future)
        try:
            await future
        finally:
            if future in self._waiters:
                self._waiters.remove(future)

    @property
    def pending(self) -> int:
        return sum(1 for future in self._waiters if not future.done())

    def fire(self) -> int:
        """Release every pending timer; returns how many fired."""
        fired = 0
        for future in list(self._waiters):
            if not future.done():
                future.set_result(None)
                fired += 1
        return fired


async def eventually(predicate, timeout: float = 1.0):
    """Yield to the loop until ``predicate()`` is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def cli_runner():
    """Create a Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config():
    """Provide sample configuration data for tests."""
    return {
        "rpc": {
            "http_url": "https://rpc.test",
            "ws_url": "wss://rpc.test",
            "timeout": 5,
        },
        "stream": {
            "keepalive_interval": 15.0,
            "reconnect_delay": 0.5,
            "max_reconnect_delay": 8.0,
            "max_reconnect_attempts": 4,
        },
        "history": {"max_entries": 50},
    }


@pytest.fixture
def config_manager(temp_dir, sample_config):
    """Create a ConfigManager reading from a temporary directory."""
    config_dir = temp_dir / "config"
    config_dir.mkdir()
    with open(config_dir / "config.yaml", 'w') as f:
        yaml.dump(sample_config, f)

    manager = ConfigManager(config_dir=config_dir, secrets_file=temp_dir / "secrets" / "secrets.enc")
    manager.initialize()
    return manager


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def rpc_client():
    """RPC client stub returning a seed balance of 1 SOL."""
    client = AsyncMock()
    client.get_balance = AsyncMock(return_value=1_000_000_000)
    return client


@pytest.fixture
def stream_config():
    """Stream configuration with keepalive disabled."""
    return StreamConfig(
        url=WS_URL,
        keepalive_interval=0,
        reconnect_delay=1.0,
        max_reconnect_delay=60.0,
        handshake_timeout=0.5,
    )


@pytest.fixture
def recorder():
    """Collects updates and status events emitted by a session."""
    class Recorder:
        def __init__(self):
            self.updates = []
            self.statuses = []

        def on_update(self, update):
            self.updates.append(update)

        def on_status(self, event):
            self.statuses.append(event)

        def status_values(self):
            return [event.status for event in self.statuses]

    return Recorder()


@pytest_asyncio.fixture
async def session(stream_config, rpc_client, connector, scheduler, recorder):
    """Streaming session wired to the fakes; stopped after the test."""
    stream_session = StreamSession(stream_config, rpc_client, connector=connector, scheduler=scheduler)
    stream_session.add_update_handler(recorder.on_update)
    stream_session.add_status_handler(recorder.on_status)
    yield stream_session
    await stream_session.stop()
