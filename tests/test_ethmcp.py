"""Tests for the JSON-RPC dispatcher, transport loop and configuration."""

import asyncio
import json

import pytest
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, PARSE_ERROR

from ethmcp import (
    ServerConfig,
    ToolDispatcher,
    Toolset,
    Uninitialized,
    serve_lines,
)
from tests.conftest import LINK, USDC, WALLET, WETH, install_pools
from trading_errors import ConfigError


@pytest.fixture
def toolset(resolver, balances, oracle, simulator):
    return Toolset(resolver=resolver, balances=balances, oracle=oracle, swaps=simulator)


@pytest.fixture
def dispatcher():
    return ToolDispatcher(ServerConfig())


async def _ready(dispatcher, toolset):
    await dispatcher.initialize(toolset)
    return dispatcher


def _call(name, arguments, request_id=1):
    return {"jsonrpc": "2.0", "method": "tools/call", "params": {"name": name, "arguments": arguments},
            "id": request_id}


# ---------------------------------------------------------------------------
# Protocol methods
# ---------------------------------------------------------------------------

class TestProtocol:
    @pytest.mark.asyncio
    async def test_tools_list_names_exactly_three_tools(self, dispatcher):
        response = await dispatcher.handle_message({"jsonrpc": "2.0", "method": "tools/list", "id": 1})

        tools = response["result"]
        assert isinstance(tools, list)
        assert {tool["name"] for tool in tools} == {"get_balance", "get_token_price", "swap_tokens"}
        for tool in tools:
            assert tool["description"]
            assert tool["inputSchema"]["type"] == "object"

    @pytest.mark.asyncio
    async def test_swap_schema_requires_every_field(self, dispatcher):
        response = await dispatcher.handle_message({"jsonrpc": "2.0", "method": "tools/list", "id": 1})
        swap = next(tool for tool in response["result"] if tool["name"] == "swap_tokens")
        assert set(swap["inputSchema"]["required"]) == {
            "from_token", "to_token", "amount", "slippage", "wallet_address",
        }

    @pytest.mark.asyncio
    async def test_ping(self, dispatcher):
        response = await dispatcher.handle_message({"jsonrpc": "2.0", "method": "ping", "id": "abc"})
        assert response == {"jsonrpc": "2.0", "result": {"status": "ok"}, "id": "abc"}

    @pytest.mark.asyncio
    async def test_initialize_reports_server_info(self, dispatcher):
        response = await dispatcher.handle_message({
            "jsonrpc": "2.0",
            "method": "initialize",
            "params": {"protocolVersion": "2024-11-05", "capabilities": {},
                       "clientInfo": {"name": "test", "version": "0"}},
            "id": 0,
        })
        result = response["result"]
        assert result["serverInfo"]["name"] == "ethereum-trading-mcp"
        assert "tools" in result["capabilities"]

    @pytest.mark.asyncio
    async def test_notification_gets_no_response(self, dispatcher):
        assert await dispatcher.handle_message({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None

    @pytest.mark.asyncio
    async def test_unknown_method(self, dispatcher):
        response = await dispatcher.handle_message({"jsonrpc": "2.0", "method": "resources/list", "id": 3})
        assert response["error"]["code"] == METHOD_NOT_FOUND
        assert response["id"] == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [[], "ping", {"jsonrpc": "2.0", "id": 4}])
    async def test_invalid_request(self, dispatcher, message):
        response = await dispatcher.handle_message(message)
        assert response["error"]["code"] == INVALID_REQUEST


class TestHandleLine:
    @pytest.mark.asyncio
    async def test_bad_json_is_parse_error_with_null_id(self, dispatcher):
        line = await dispatcher.handle_line('{"jsonrpc": "2.0", "method": ')
        response = json.loads(line)
        assert response["error"]["code"] == PARSE_ERROR
        assert response["id"] is None

    @pytest.mark.asyncio
    async def test_blank_line_ignored(self, dispatcher):
        assert await dispatcher.handle_line("   \n") is None

    @pytest.mark.asyncio
    async def test_response_is_single_line(self, dispatcher):
        line = await dispatcher.handle_line(json.dumps({"jsonrpc": "2.0", "method": "tools/list", "id": 9}))
        assert "\n" not in line
        assert json.loads(line)["id"] == 9


# ---------------------------------------------------------------------------
# tools/call
# ---------------------------------------------------------------------------

class TestToolsCall:
    @pytest.mark.asyncio
    async def test_unknown_tool_is_method_not_found(self, dispatcher, toolset):
        await _ready(dispatcher, toolset)
        response = await dispatcher.handle_message(_call("transfer", {}))
        assert response["error"]["code"] == METHOD_NOT_FOUND
        assert "transfer" in response["error"]["message"]

    @pytest.mark.asyncio
    async def test_missing_tool_name(self, dispatcher):
        response = await dispatcher.handle_message(
            {"jsonrpc": "2.0", "method": "tools/call", "params": {"arguments": {}}, "id": 1}
        )
        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, dispatcher, toolset):
        await _ready(dispatcher, toolset)
        response = await dispatcher.handle_message(_call("swap_tokens", {"from_token": "ETH"}))
        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_calls_before_initialize_fail(self, dispatcher):
        assert isinstance(dispatcher.state, Uninitialized)
        response = await dispatcher.handle_message(_call("get_balance", {"address": WALLET}))
        assert response["error"]["code"] == INTERNAL_ERROR
        assert response["error"]["message"] == "Tools not initialized"

    @pytest.mark.asyncio
    async def test_get_balance(self, dispatcher, toolset, gateway):
        await _ready(dispatcher, toolset)
        gateway.get_native_balance.return_value = 10**18

        response = await dispatcher.handle_message(_call("get_balance", {"address": WALLET}, request_id=7))

        assert response["id"] == 7
        assert response["result"]["balance"] == "1"
        assert response["result"]["token_type"] == "ETH"

    @pytest.mark.asyncio
    async def test_get_balance_invalid_address(self, dispatcher, toolset):
        await _ready(dispatcher, toolset)
        response = await dispatcher.handle_message(_call("get_balance", {"address": "0xnope"}))
        assert response["error"]["code"] == INVALID_PARAMS
        assert "Invalid Ethereum address" in response["error"]["message"]

    @pytest.mark.asyncio
    async def test_get_token_price(self, dispatcher, toolset, gateway):
        await _ready(dispatcher, toolset)
        install_pools(gateway, {
            (LINK, WETH): ("0x2222222222222222222222222222222222222222", 1000 * 10**18, 5 * 10**18),
            (USDC, WETH): ("0x3333333333333333333333333333333333333333", 250_000 * 10**6, 100 * 10**18),
        })

        response = await dispatcher.handle_message(_call("get_token_price", {"token_identifier": "link"}))

        result = response["result"]
        assert result["token"] == "LINK"
        assert result["token_address"] == LINK
        assert result["quote_currency"] == "USD"
        assert result["price"] == "12.5"
        assert isinstance(result["timestamp"], int)

    @pytest.mark.asyncio
    async def test_get_token_price_unknown_token(self, dispatcher, toolset):
        await _ready(dispatcher, toolset)
        response = await dispatcher.handle_message(_call("get_token_price", {"token_identifier": "NOTATOKEN"}))
        assert response["error"]["code"] == INTERNAL_ERROR
        assert response["error"]["message"].startswith("Price query failed")
        assert "not found" in response["error"]["data"]

    @pytest.mark.asyncio
    async def test_swap_failure_is_a_result_not_an_error(self, dispatcher, toolset):
        await _ready(dispatcher, toolset)
        response = await dispatcher.handle_message(_call("swap_tokens", {
            "from_token": "ETH",
            "to_token": "USDC",
            "amount": "abc",
            "slippage": 0.5,
            "wallet_address": WALLET,
        }))

        assert "error" not in response
        assert response["result"]["simulation_success"] is False
        assert "Invalid amount format" in response["result"]["error"]

    @pytest.mark.asyncio
    async def test_swap_with_astronomical_amount_is_a_failed_quote(self, dispatcher, toolset, gateway):
        await _ready(dispatcher, toolset)
        gateway.get_token_balance.return_value = 50 * 10**6

        line = await dispatcher.handle_line(json.dumps(_call("swap_tokens", {
            "from_token": "USDC",
            "to_token": "DAI",
            "amount": "1e1000000",
            "slippage": 0.5,
            "wallet_address": WALLET,
        })))

        response = json.loads(line)
        assert "error" not in response
        assert response["result"]["simulation_success"] is False
        assert "out of range" in response["result"]["error"]

    @pytest.mark.asyncio
    async def test_swap_accepts_json_numbers(self, dispatcher, toolset, gateway):
        await _ready(dispatcher, toolset)
        gateway.get_amounts_out.return_value = [10**18, 990 * 10**6]

        response = await dispatcher.handle_message(_call("swap_tokens", {
            "from_token": "ETH",
            "to_token": "USDC",
            "amount": 1,
            "slippage": 0.5,
            "wallet_address": WALLET,
        }))

        result = response["result"]
        assert result["simulation_success"] is True
        assert result["slippage_percentage"] == "0.5"
        assert result["min_output"] == "985.05"


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class TestServeLines:
    @pytest.mark.asyncio
    async def test_one_response_per_request(self, dispatcher):
        reader = asyncio.StreamReader()
        reader.feed_data(b'{"jsonrpc": "2.0", "method": "ping", "id": 1}\n')
        reader.feed_data(b"\n")
        reader.feed_data(b'{"jsonrpc": "2.0", "method": "notifications/initialized"}\n')
        reader.feed_data(b"not json\n")
        reader.feed_data(b'{"jsonrpc": "2.0", "method": "tools/list", "id": 2}\n')
        reader.feed_eof()

        written = []

        async def send(data):
            written.append(data)

        await serve_lines(dispatcher, reader, send)

        assert all(chunk.endswith(b"\n") and chunk.count(b"\n") == 1 for chunk in written)
        responses = [json.loads(chunk) for chunk in written]
        assert sorted(r["id"] for r in responses if r["id"] is not None) == [1, 2]
        assert sum(1 for r in responses if r["id"] is None) == 1
        assert len(responses) == 3

    @pytest.mark.asyncio
    async def test_oversized_line_is_rejected_and_reading_continues(self, dispatcher):
        padding = "x" * 70_000
        reader = asyncio.StreamReader()
        reader.feed_data(json.dumps({"jsonrpc": "2.0", "method": "ping", "id": 1, "pad": padding}).encode() + b"\n")
        reader.feed_data(b'{"jsonrpc": "2.0", "method": "ping", "id": 2}\n')
        reader.feed_eof()

        written = []

        async def send(data):
            written.append(data)

        await serve_lines(dispatcher, reader, send)

        responses = [json.loads(chunk) for chunk in written]
        assert len(responses) == 2
        rejected = next(r for r in responses if r["id"] is None)
        assert rejected["error"]["code"] == INVALID_REQUEST
        answered = next(r for r in responses if r["id"] == 2)
        assert answered["result"] == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_oversized_line_arriving_in_pieces(self, dispatcher):
        reader = asyncio.StreamReader(limit=64)
        written = []

        async def send(data):
            written.append(data)

        async def feed():
            reader.feed_data(b'{"jsonrpc": "2.0", "method": "ping", "id": 1, "pad": "' + b"x" * 200)
            await asyncio.sleep(0)
            reader.feed_data(b"x" * 200 + b'"}\n')
            await asyncio.sleep(0)
            reader.feed_data(b'{"method": "ping", "id": 2}\n')
            reader.feed_eof()

        await asyncio.gather(serve_lines(dispatcher, reader, send), feed())

        responses = [json.loads(chunk) for chunk in written]
        assert [r["id"] for r in responses if "error" in r] == [None]
        assert [r["id"] for r in responses if "result" in r] == [2]

    @pytest.mark.asyncio
    async def test_eof_inside_oversized_line(self, dispatcher):
        reader = asyncio.StreamReader(limit=64)
        reader.feed_data(b"x" * 500)
        reader.feed_eof()
        written = []

        async def send(data):
            written.append(data)

        await serve_lines(dispatcher, reader, send)

        assert len(written) == 1
        assert json.loads(written[0])["error"]["code"] == INVALID_REQUEST


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestServerConfig:
    ENV_VARS = ["RPC_URL", "CHAIN_ID", "TRANSPORT", "HOST", "PORT", "RPC_TIMEOUT", "LOG_LEVEL",
                "UNISWAP_V2_ROUTER", "UNISWAP_V2_FACTORY", "WETH_ADDRESS", "STABLE_TOKEN"]

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in self.ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        config = ServerConfig.from_env()
        assert config.rpc_url == "https://eth.llamarpc.com"
        assert config.chain_id == 1
        assert config.transport == "tcp"
        assert config.port == 8080

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("RPC_URL", "https://node.example")
        monkeypatch.setenv("TRANSPORT", "STDIO")
        monkeypatch.setenv("PORT", "9090")
        monkeypatch.setenv("RPC_TIMEOUT", "2.5")
        monkeypatch.setenv("STABLE_TOKEN", "dai")

        config = ServerConfig.from_env()

        assert config.rpc_url == "https://node.example"
        assert config.transport == "stdio"
        assert config.port == 9090
        assert config.rpc_timeout == 2.5
        assert config.stable_symbol == "DAI"

    @pytest.mark.parametrize("name", ["CHAIN_ID", "PORT", "RPC_TIMEOUT"])
    def test_malformed_number(self, monkeypatch, name):
        monkeypatch.setenv(name, "lots")
        with pytest.raises(ConfigError, match=name):
            ServerConfig.from_env()
