"""JSON-RPC client for the Solana HTTP endpoint."""

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import aiohttp

from ..core.config import redact_url
from .models import MAX_LAMPORTS

logger = logging.getLogger(__name__)


class RPCError(Exception):
    """Error object returned by a JSON-RPC endpoint."""

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        super().__init__(f"{method} failed: {message}" + (f" (code {code})" if code is not None else ""))
        self.method = method
        self.code = code
        self.rpc_message = message


@dataclass
class RPCClientConfig:
    """Configuration for the HTTP RPC client."""

    url: str
    timeout: int = 30
    max_retries: int = 0
    retry_delay: float = 1.0
    backoff_factor: float = 2.0
    commitment: str = "confirmed"
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Any) -> 'RPCClientConfig':
        return cls(
            url=config.http_url(),
            timeout=int(config.get("rpc.timeout", 30)),
            max_retries=int(config.get("rpc.max_retries", 0)),
            retry_delay=float(config.get("rpc.retry_delay", 1.0)),
            commitment=config.get("stream.commitment", "confirmed"),
        )


class SolanaRPCClient:
    """Minimal async client for the HTTP calls the streamer needs."""

    def __init__(self, config: RPCClientConfig):
        """Initialize RPC client.

        Args:
            config: RPC client configuration
        """
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)
        self._request_count = 0

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()

    async def start(self):
        """Start the HTTP session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"Content-Type": "application/json", **self.config.headers}
            )
            logger.info(f"Started RPC client for {redact_url(self.config.url)}")

    async def stop(self):
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
            logger.info("Stopped RPC client")

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Issue one JSON-RPC request and return its ``result``.

        Transport errors are retried ``max_retries`` times and then re-raised
        unchanged.

        Raises:
            aiohttp.ClientError: On transport or HTTP status failures
            RPCError: If the endpoint returns an error object
        """
        if not self._session:
            await self.start()

        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": next(self._ids), "method": method}
        if params is not None:
            payload["params"] = params

        start_time = time.time()
        for attempt in range(self.config.max_retries + 1):
            try:
                async with self._session.post(self.config.url, json=payload) as response:
                    response.raise_for_status()
                    data = await response.json(content_type=None)
                break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"{method} attempt {attempt + 1} failed: {e}")
                if attempt >= self.config.max_retries:
                    raise
                delay = self.config.retry_delay * (self.config.backoff_factor ** attempt)
                await asyncio.sleep(delay)

        self._request_count += 1
        logger.debug(f"{method} -> {time.time() - start_time:.3f}s")

        if not isinstance(data, dict):
            raise RPCError(method, f"Unexpected response: {data!r}")
        error = data.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RPCError(method, error.get("message", "RPC error"), error.get("code"))
            raise RPCError(method, str(error))
        if "result" not in data:
            raise RPCError(method, "Response has no result")
        return data["result"]

    async def get_balance(self, address: str) -> int:
        """Get the lamport balance of ``address``.

        Args:
            address: Base58 account public key

        Returns:
            Balance in lamports
        """
        result = await self.call("getBalance", [address, {"commitment": self.config.commitment}])
        value = result.get("value") if isinstance(result, dict) else result
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_LAMPORTS:
            raise RPCError("getBalance", f"Invalid balance value: {value!r}")
        return value

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics."""
        return {
            "url": redact_url(self.config.url),
            "request_count": self._request_count,
            "max_retries": self.config.max_retries,
        }
