"""Data models for streamed account balances and connection status."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any
from enum import Enum


LAMPORTS_PER_SOL = 10 ** 9
MAX_LAMPORTS = 2 ** 64 - 1


def lamports_to_sol(lamports: int) -> Decimal:
    """Convert lamports to SOL without going through floating point."""
    return Decimal(lamports).scaleb(-9)


class SessionPhase(Enum):
    """Control phases of a streaming session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"


class ConnectionStatus(Enum):
    """Connection status reported to consumers."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class BalanceUpdate:
    """One observed balance of the monitored account.

    The seed update fetched over HTTP has no slot; updates delivered by the
    subscription carry the slot reported by the node.
    """

    balance_lamports: int
    slot: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if isinstance(self.balance_lamports, bool) or not isinstance(self.balance_lamports, int):
            raise TypeError(f"balance_lamports must be an int, got {type(self.balance_lamports).__name__}")
        if not 0 <= self.balance_lamports <= MAX_LAMPORTS:
            raise ValueError(f"balance_lamports out of range: {self.balance_lamports}")

    @property
    def balance_sol(self) -> Decimal:
        """Balance in SOL, derived from the lamport amount."""
        return lamports_to_sol(self.balance_lamports)

    @property
    def is_seed(self) -> bool:
        return self.slot is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "balance_lamports": self.balance_lamports,
            "balance_sol": str(self.balance_sol),
            "slot": self.slot,
        }


@dataclass(frozen=True)
class StatusEvent:
    """Connection status change emitted by a session."""

    status: ConnectionStatus
    attempt: int = 0
    delay: Optional[float] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status.value,
            "attempt": self.attempt,
            "delay": self.delay,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }
