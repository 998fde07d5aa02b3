"""Data models, address validation and the HTTP RPC client."""

from .models import (
    BalanceUpdate,
    ConnectionStatus,
    SessionPhase,
    StatusEvent,
    LAMPORTS_PER_SOL,
    lamports_to_sol,
)
from .address import is_valid_address, normalize_address
from .rpc_client import SolanaRPCClient, RPCClientConfig, RPCError

__all__ = [
    'BalanceUpdate',
    'ConnectionStatus',
    'SessionPhase',
    'StatusEvent',
    'LAMPORTS_PER_SOL',
    'lamports_to_sol',
    'is_valid_address',
    'normalize_address',
    'SolanaRPCClient',
    'RPCClientConfig',
    'RPCError',
]
