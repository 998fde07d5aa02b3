"""Live balance streaming.

This module provides:
- A single-account websocket session with keepalive and backoff reconnection
- JSON-RPC message builders and parsers for account subscriptions
- A bounded balance history sink for consumers
"""

from .session import StreamSession, StreamConfig, StreamMetrics
from .history import BalanceHistory
from .errors import (
    StreamError,
    InvalidAddressError,
    StreamConnectionError,
    SubscriptionError,
    TransportDropped,
    MalformedMessageError,
)

__all__ = [
    'StreamSession',
    'StreamConfig',
    'StreamMetrics',
    'BalanceHistory',
    'StreamError',
    'InvalidAddressError',
    'StreamConnectionError',
    'SubscriptionError',
    'TransportDropped',
    'MalformedMessageError',
]
