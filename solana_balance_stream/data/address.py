"""Public key validation for monitored accounts."""

from solders.pubkey import Pubkey


def is_valid_address(address: str) -> bool:
    """Return True when ``address`` is a base58 encoded 32-byte public key."""
    if not isinstance(address, str) or not address.strip():
        return False
    try:
        Pubkey.from_string(address.strip())
    except ValueError:
        return False
    return True


def normalize_address(address: str) -> str:
    """Return the canonical base58 form of ``address``.

    Raises:
        ValueError: If the address is not a valid public key
    """
    return str(Pubkey.from_string(address.strip()))
