"""
Core components: configuration, logging and shared CLI helpers.
"""

from solana_balance_stream.core.config import ConfigManager, ConfigError

__all__ = [
    "ConfigManager",
    "ConfigError",
]
