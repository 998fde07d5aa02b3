"""
Solana Balance Stream - live account balance monitoring over websockets.

This package provides a streaming session that seeds an account balance over
HTTP, subscribes to account change notifications, keeps the connection alive
and reconnects with exponential backoff, plus a terminal front end.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from solana_balance_stream.data.models import BalanceUpdate, ConnectionStatus, StatusEvent
from solana_balance_stream.streaming.session import StreamConfig, StreamSession
from solana_balance_stream.streaming.history import BalanceHistory

__all__ = [
    "__version__",
    "__license__",
    "BalanceUpdate",
    "ConnectionStatus",
    "StatusEvent",
    "StreamConfig",
    "StreamSession",
    "BalanceHistory",
]
