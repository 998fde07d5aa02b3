"""Tests for the HTTP JSON-RPC client."""

import pytest
import aiohttp
from unittest.mock import AsyncMock, MagicMock, Mock

from solana_balance_stream.data.rpc_client import RPCClientConfig, RPCError, SolanaRPCClient


@pytest.fixture
def rpc_config():
    """Create a test RPC client configuration."""
    return RPCClientConfig(
        url="https://rpc.test/?api-key=secret",
        timeout=5,
        max_retries=1,
        retry_delay=0,
    )


def mock_response(body):
    response = MagicMock()
    response.raise_for_status = Mock()
    response.json = AsyncMock(return_value=body)
    return response


def mock_session(*responses):
    session = MagicMock()
    session.post.return_value.__aenter__.side_effect = list(responses)
    return session


class TestRPCClientConfig:
    """Test RPCClientConfig."""

    def test_defaults(self):
        config = RPCClientConfig(url="https://rpc.test")

        assert config.timeout == 30
        assert config.max_retries == 0
        assert config.commitment == "confirmed"
        assert config.headers == {}

    def test_from_config(self, config_manager):
        config = RPCClientConfig.from_config(config_manager)

        assert config.url == "https://rpc.test"
        assert config.timeout == 5


class TestSolanaRPCClient:
    """Test SolanaRPCClient."""

    @pytest.mark.asyncio
    async def test_get_balance(self, rpc_config):
        client = SolanaRPCClient(rpc_config)
        client._session = mock_session(mock_response(
            {"jsonrpc": "2.0", "id": 1, "result": {"context": {"slot": 1}, "value": 2_500_000_000}}
        ))

        balance = await client.get_balance("So11111111111111111111111111111111111111112")

        assert balance == 2_500_000_000
        payload = client._session.post.call_args[1]["json"]
        assert payload == {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getBalance",
            "params": ["So11111111111111111111111111111111111111112", {"commitment": "confirmed"}],
        }
        assert client.get_stats()["request_count"] == 1

    @pytest.mark.asyncio
    async def test_request_ids_increase(self, rpc_config):
        client = SolanaRPCClient(rpc_config)
        client._session = mock_session(
            mock_response({"result": "ok"}),
            mock_response({"result": "ok"}),
        )

        await client.call("getHealth")
        await client.call("getHealth")

        ids = [call[1]["json"]["id"] for call in client._session.post.call_args_list]
        assert ids == [1, 2]

    @pytest.mark.asyncio
    async def test_rpc_error_object(self, rpc_config):
        client = SolanaRPCClient(rpc_config)
        client._session = mock_session(mock_response(
            {"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid param"}}
        ))

        with pytest.raises(RPCError) as exc_info:
            await client.get_balance("So11111111111111111111111111111111111111112")

        assert exc_info.value.code == -32602
        assert exc_info.value.method == "getBalance"
        assert exc_info.value.rpc_message == "Invalid param"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [-1, "100", None, 1.5])
    async def test_invalid_balance_value(self, rpc_config, value):
        client = SolanaRPCClient(rpc_config)
        client._session = mock_session(mock_response({"result": {"value": value}}))

        with pytest.raises(RPCError):
            await client.get_balance("So11111111111111111111111111111111111111112")

    @pytest.mark.asyncio
    async def test_missing_result(self, rpc_config):
        client = SolanaRPCClient(rpc_config)
        client._session = mock_session(mock_response({"jsonrpc": "2.0", "id": 1}))

        with pytest.raises(RPCError, match="no result"):
            await client.call("getHealth")

    @pytest.mark.asyncio
    async def test_retry_then_success(self, rpc_config):
        client = SolanaRPCClient(rpc_config)
        client._session = mock_session(
            aiohttp.ClientConnectionError("reset"),
            mock_response({"result": {"value": 10}}),
        )

        balance = await client.get_balance("So11111111111111111111111111111111111111112")

        assert balance == 10
        assert client._session.post.call_count == 2

    @pytest.mark.asyncio
    async def test_transport_error_reraised_unchanged(self, rpc_config):
        client = SolanaRPCClient(rpc_config)
        error = aiohttp.ClientConnectionError("refused")
        client._session = mock_session(error, error)

        with pytest.raises(aiohttp.ClientConnectionError) as exc_info:
            await client.get_balance("So11111111111111111111111111111111111111112")

        assert exc_info.value is error
        assert client._session.post.call_count == 2

    @pytest.mark.asyncio
    async def test_stats_redact_api_key(self, rpc_config):
        client = SolanaRPCClient(rpc_config)

        stats = client.get_stats()

        assert "secret" not in stats["url"]
        assert stats["request_count"] == 0

    @pytest.mark.asyncio
    async def test_context_manager_opens_and_closes_session(self, rpc_config):
        async with SolanaRPCClient(rpc_config) as client:
            assert isinstance(client._session, aiohttp.ClientSession)
            session = client._session

        assert client._session is None
        assert session.closed
