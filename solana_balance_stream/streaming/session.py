"""Live balance streaming session for a single Solana account.

A session owns one websocket subscription to ``accountNotification`` for one
address. It seeds the balance over HTTP, subscribes, keeps the connection
alive with periodic keepalive requests and reconnects with exponential
backoff when the connection drops. All state transitions run on the event
loop between awaits; results from superseded attempts are discarded by
comparing the generation captured when the attempt was launched.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from ..core.config import redact_url
from ..data.address import is_valid_address, normalize_address
from ..data.models import BalanceUpdate, ConnectionStatus, SessionPhase, StatusEvent
from . import protocol
from .errors import (
    InvalidAddressError,
    MalformedMessageError,
    StreamConnectionError,
    SubscriptionError,
    TransportDropped,
)
from .protocol import MessageKind
from .scheduler import Scheduler
from .transport import Connector, WebSocketTransport

logger = logging.getLogger(__name__)

UpdateHandler = Callable[[BalanceUpdate], Union[None, Awaitable[None]]]
StatusHandler = Callable[[StatusEvent], Union[None, Awaitable[None]]]

# Caps the exponent so very long outages cannot overflow the float delay.
_MAX_BACKOFF_EXPONENT = 32


@dataclass
class StreamConfig:
    """Configuration for a balance stream."""

    url: str
    keepalive_interval: float = 30.0
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 60.0
    max_reconnect_attempts: Optional[int] = None
    handshake_timeout: float = 10.0
    commitment: str = "confirmed"
    encoding: str = "jsonParsed"

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        exponent = min(attempt - 1, _MAX_BACKOFF_EXPONENT)
        return min(self.reconnect_delay * (2 ** exponent), self.max_reconnect_delay)

    @classmethod
    def from_config(cls, config: Any, **overrides: Any) -> 'StreamConfig':
        """Build from a ``ConfigManager``; ``None`` overrides are ignored."""
        values = {
            "url": config.ws_url(),
            "keepalive_interval": float(config.get("stream.keepalive_interval", 30.0)),
            "reconnect_delay": float(config.get("stream.reconnect_delay", 1.0)),
            "max_reconnect_delay": float(config.get("stream.max_reconnect_delay", 60.0)),
            "max_reconnect_attempts": config.get("stream.max_reconnect_attempts"),
            "handshake_timeout": float(config.get("stream.handshake_timeout", 10.0)),
            "commitment": config.get("stream.commitment", "confirmed"),
            "encoding": config.get("stream.encoding", "jsonParsed"),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        if values["max_reconnect_attempts"] is not None:
            values["max_reconnect_attempts"] = int(values["max_reconnect_attempts"])
        return cls(**values)


@dataclass
class StreamMetrics:
    """Counters for one session."""

    messages_received: int = 0
    messages_sent: int = 0
    updates_emitted: int = 0
    malformed_messages: int = 0
    keepalives_sent: int = 0
    bytes_received: int = 0
    bytes_sent: int = 0
    connection_count: int = 0
    reconnection_count: int = 0
    last_message_time: Optional[datetime] = None


class StreamSession:
    """Single-account balance subscription with automatic reconnection."""

    def __init__(self, config: StreamConfig, rpc_client: Any,
                 connector: Optional[Connector] = None,
                 scheduler: Optional[Scheduler] = None):
        self.config = config
        self.rpc_client = rpc_client
        self.metrics = StreamMetrics()
        self._connector = connector
        self._scheduler = scheduler or Scheduler()

        self._phase = SessionPhase.IDLE
        self._address: Optional[str] = None
        self._subscription_id: Optional[int] = None
        self._attempt = 0
        self._closing = False
        self._generation = 0

        self._transport: Optional[WebSocketTransport] = None
        self._handshake_transport: Optional[WebSocketTransport] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._update_handlers: List[UpdateHandler] = []
        self._status_handlers: List[StatusHandler] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def subscription_id(self) -> Optional[int]:
        return self._subscription_id

    @property
    def attempt(self) -> int:
        """Reconnect attempts since the last successful subscription."""
        return self._attempt

    @property
    def is_streaming(self) -> bool:
        return self._phase == SessionPhase.STREAMING

    def add_update_handler(self, handler: UpdateHandler):
        """Add balance update handler."""
        if handler not in self._update_handlers:
            self._update_handlers.append(handler)

    def remove_update_handler(self, handler: UpdateHandler):
        """Remove balance update handler."""
        if handler in self._update_handlers:
            self._update_handlers.remove(handler)

    def add_status_handler(self, handler: StatusHandler):
        """Add connection status handler."""
        if handler not in self._status_handlers:
            self._status_handlers.append(handler)

    def remove_status_handler(self, handler: StatusHandler):
        """Remove connection status handler."""
        if handler in self._status_handlers:
            self._status_handlers.remove(handler)

    async def start(self, address: str) -> BalanceUpdate:
        """Seed the balance for ``address`` and subscribe to its changes.

        Returns once the subscription is acknowledged.

        Args:
            address: Base58 account public key

        Returns:
            The seed ``BalanceUpdate`` fetched over HTTP

        Raises:
            InvalidAddressError: If the address is not a valid public key
            StreamConnectionError: If the websocket cannot be established
            SubscriptionError: If the subscribe request is rejected or times out
        """
        if not is_valid_address(address):
            raise InvalidAddressError(address)
        address = normalize_address(address)

        if self._phase != SessionPhase.IDLE:
            await self.stop()

        self._generation += 1
        generation = self._generation
        self._closing = False
        self._address = address
        self._attempt = 0
        self._phase = SessionPhase.CONNECTING
        logger.info(f"Starting balance stream for {address}")
        await self._emit_status(StatusEvent(ConnectionStatus.CONNECTING))

        try:
            lamports = await self.rpc_client.get_balance(address)
            self._check_generation(generation)

            seed = BalanceUpdate(balance_lamports=lamports)
            await self._emit_update(seed)
            self._check_generation(generation)

            transport, subscription_id = await self._open_subscription(generation)
        except (Exception, asyncio.CancelledError) as e:
            if generation == self._generation:
                logger.error(f"Failed to start balance stream for {address}: {e}")
                self._phase = SessionPhase.IDLE
                await self._emit_status(StatusEvent(ConnectionStatus.DISCONNECTED, error=str(e)))
            raise

        await self._enter_streaming(transport, subscription_id, generation)
        return seed

    async def stop(self) -> None:
        """Unsubscribe, close the connection and cancel timers.

        Idempotent; safe to call from any phase, including from handlers.
        """
        if (self._phase == SessionPhase.IDLE and self._transport is None
                and self._handshake_transport is None and not self._pending_tasks()):
            return

        self._closing = True
        self._generation += 1

        transport, subscription_id = self._transport, self._subscription_id
        handshake_transport = self._handshake_transport
        self._transport = None
        self._handshake_transport = None
        self._subscription_id = None

        tasks = self._pending_tasks()
        for task in tasks:
            self._cancel_task(task)
        self._receive_task = None
        self._keepalive_task = None
        self._reconnect_task = None

        self._phase = SessionPhase.IDLE
        self._attempt = 0

        if transport is not None:
            if subscription_id is not None and not transport.closed:
                try:
                    await self._send(transport, protocol.unsubscribe_request(subscription_id))
                except TransportDropped as e:
                    logger.warning(f"Failed to send unsubscribe for subscription {subscription_id}: {e}")
            await transport.close()

        if handshake_transport is not None:
            await handshake_transport.close()

        current = asyncio.current_task()
        others = [task for task in tasks if task is not current]
        if others:
            await asyncio.gather(*others, return_exceptions=True)

        logger.info(
            f"Stopped balance stream for {self._address} "
            f"({self.metrics.messages_received} messages, {self.metrics.bytes_received} bytes received)"
        )
        await self._emit_status(StatusEvent(ConnectionStatus.DISCONNECTED))

    def _pending_tasks(self) -> List[asyncio.Task]:
        tasks = (self._receive_task, self._keepalive_task, self._reconnect_task)
        return [task for task in tasks if task is not None and not task.done()]

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]):
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _check_generation(self, generation: int):
        if generation != self._generation:
            raise StreamConnectionError("Session stopped before the subscription completed")

    async def _send(self, transport: WebSocketTransport, message: dict):
        self.metrics.bytes_sent += await transport.send_json(message)
        self.metrics.messages_sent += 1

    def _record_received(self, raw: Any):
        self.metrics.messages_received += 1
        self.metrics.bytes_received += len(raw) if isinstance(raw, bytes) else len(str(raw).encode())

    async def _open_subscription(self, generation: int) -> Tuple[WebSocketTransport, int]:
        """Connect and complete the subscribe handshake."""
        url = self.config.url
        try:
            transport = await asyncio.wait_for(
                WebSocketTransport.open(url, self._connector),
                timeout=self.config.handshake_timeout
            )
        except asyncio.TimeoutError as e:
            raise StreamConnectionError(f"Timed out connecting to {redact_url(url)}") from e

        self.metrics.connection_count += 1
        try:
            self._check_generation(generation)
            self._handshake_transport = transport

            await self._send(transport, protocol.subscribe_request(
                self._address, encoding=self.config.encoding, commitment=self.config.commitment
            ))
            subscription_id = await asyncio.wait_for(
                self._await_subscribe_ack(transport),
                timeout=self.config.handshake_timeout
            )
            self._check_generation(generation)
        except asyncio.TimeoutError as e:
            await transport.close()
            raise SubscriptionError("Timed out waiting for subscription acknowledgement") from e
        except TransportDropped as e:
            await transport.close()
            raise StreamConnectionError(f"Connection closed during subscribe handshake: {e}") from e
        except (Exception, asyncio.CancelledError):
            await transport.close()
            raise
        finally:
            if self._handshake_transport is transport:
                self._handshake_transport = None

        return transport, subscription_id

    async def _await_subscribe_ack(self, transport: WebSocketTransport) -> int:
        while True:
            raw = await transport.recv()
            self._record_received(raw)
            try:
                message = protocol.decode_message(raw)
            except MalformedMessageError as e:
                self.metrics.malformed_messages += 1
                logger.warning(f"Dropping malformed message during handshake: {e}")
                continue

            if protocol.classify(message) != MessageKind.SUBSCRIBE_ACK:
                logger.debug("Ignoring message received before subscription ack")
                continue

            try:
                subscription_id, error = protocol.parse_subscribe_ack(message)
            except MalformedMessageError as e:
                raise SubscriptionError(str(e)) from e

            if error is not None:
                raise SubscriptionError(
                    error.get("message", "Subscription rejected"),
                    code=error.get("code")
                )
            return subscription_id

    async def _enter_streaming(self, transport: WebSocketTransport, subscription_id: int,
                               generation: int):
        self._transport = transport
        self._subscription_id = subscription_id
        self._attempt = 0
        self._phase = SessionPhase.STREAMING

        self._receive_task = asyncio.create_task(self._receive_loop(transport, generation))
        if self.config.keepalive_interval > 0:
            self._keepalive_task = asyncio.create_task(self._keepalive_loop(transport, generation))

        logger.info(f"Subscribed to {self._address} (subscription {subscription_id})")
        await self._emit_status(StatusEvent(ConnectionStatus.CONNECTED))

    async def _receive_loop(self, transport: WebSocketTransport, generation: int):
        try:
            while True:
                raw = await transport.recv()
                if generation != self._generation:
                    return
                await self._handle_message(raw)
        except TransportDropped as e:
            logger.warning(f"Connection to {redact_url(transport.url)} dropped: {e}")
            await self._on_transport_closed(transport, generation, str(e))
        except Exception as e:
            logger.error(f"Receive loop for {self._address} failed: {e!r}")
            await self._on_transport_closed(transport, generation, repr(e))

    async def _handle_message(self, raw: Any):
        self._record_received(raw)
        self.metrics.last_message_time = datetime.now(timezone.utc)

        try:
            message = protocol.decode_message(raw)
            kind = protocol.classify(message)
            if kind == MessageKind.ACCOUNT_NOTIFICATION:
                subscription_id, slot, lamports = protocol.parse_account_notification(message)
        except MalformedMessageError as e:
            self.metrics.malformed_messages += 1
            logger.warning(f"Dropping malformed message: {e}")
            return

        if kind == MessageKind.SUBSCRIBE_ACK:
            logger.debug("Ignoring repeated subscription ack")
        elif kind == MessageKind.KEEPALIVE:
            logger.debug("Keepalive response received")
        elif kind == MessageKind.ACCOUNT_NOTIFICATION:
            if subscription_id != self._subscription_id:
                logger.debug(f"Ignoring notification for subscription {subscription_id}")
            elif lamports is None:
                logger.info(f"Account {self._address} has no value at slot {slot}")
            else:
                await self._emit_update(BalanceUpdate(balance_lamports=lamports, slot=slot))
        else:
            logger.debug(f"Ignoring unrecognised message: {message!r}")

    async def _keepalive_loop(self, transport: WebSocketTransport, generation: int):
        while True:
            await self._scheduler.sleep(self.config.keepalive_interval)
            if generation != self._generation or transport is not self._transport:
                return
            try:
                await self._send(transport, protocol.keepalive_request())
            except TransportDropped as e:
                logger.warning(f"Keepalive request failed: {e}")
                await self._on_transport_closed(transport, generation, str(e))
                return
            self.metrics.keepalives_sent += 1
            logger.debug("Sent keepalive request")

    async def _on_transport_closed(self, transport: WebSocketTransport, generation: int,
                                   reason: str):
        if self._closing or generation != self._generation or transport is not self._transport:
            return

        self._transport = None
        self._subscription_id = None
        self._cancel_task(self._keepalive_task)
        self._cancel_task(self._receive_task)
        self._keepalive_task = None
        self._receive_task = None
        self._phase = SessionPhase.RECONNECTING

        await transport.close()
        if self._closing or generation != self._generation:
            return

        self._reconnect_task = asyncio.create_task(self._reconnect_loop(generation, reason))

    async def _reconnect_loop(self, generation: int, reason: str):
        error = reason
        while True:
            max_attempts = self.config.max_reconnect_attempts
            if max_attempts is not None and self._attempt >= max_attempts:
                logger.error(
                    f"Giving up on {self._address} after {self._attempt} reconnect attempts"
                )
                self._phase = SessionPhase.IDLE
                self._reconnect_task = None
                await self._emit_status(StatusEvent(
                    ConnectionStatus.DISCONNECTED, attempt=self._attempt, error=error
                ))
                return

            self._attempt += 1
            delay = self.config.backoff_delay(self._attempt)
            logger.info(f"Reconnecting to {self._address} in {delay:.1f}s (attempt {self._attempt})")
            await self._emit_status(StatusEvent(
                ConnectionStatus.RECONNECTING, attempt=self._attempt, delay=delay, error=error
            ))
            if generation != self._generation:
                return

            await self._scheduler.sleep(delay)
            if generation != self._generation:
                return

            try:
                transport, subscription_id = await self._open_subscription(generation)
            except (StreamConnectionError, SubscriptionError) as e:
                if generation != self._generation:
                    return
                error = str(e)
                logger.warning(f"Reconnect attempt {self._attempt} failed: {e}")
                continue

            self._reconnect_task = None
            self.metrics.reconnection_count += 1
            await self._enter_streaming(transport, subscription_id, generation)
            return

    async def _emit_update(self, update: BalanceUpdate):
        self.metrics.updates_emitted += 1
        for handler in list(self._update_handlers):
            try:
                result = handler(update)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in balance update handler: {e}")

    async def _emit_status(self, event: StatusEvent):
        for handler in list(self._status_handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in status handler: {e}")
