"""Errors raised by the balance streaming session."""


class StreamError(Exception):
    """Base class for streaming errors."""
    pass


class InvalidAddressError(StreamError):
    """Address is not a valid base58 public key."""

    def __init__(self, address: str):
        super().__init__(f"Invalid Solana address: {address!r}")
        self.address = address


class StreamConnectionError(StreamError):
    """Transport could not be established during the initial handshake."""
    pass


class SubscriptionError(StreamError):
    """Remote rejected the subscribe request or never acknowledged it."""

    def __init__(self, message: str, code: int = None):
        super().__init__(message)
        self.code = code


class TransportDropped(StreamError):
    """Connection closed after the handshake completed."""
    pass


class MalformedMessageError(StreamError):
    """Inbound message could not be parsed or lacked expected fields."""
    pass
