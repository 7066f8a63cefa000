#!/usr/bin/env python3
"""
Ethereum Trading MCP Server
Provides AI agents with read-only tools to query balances, price tokens and
simulate Uniswap V2 swaps on Ethereum over line-delimited JSON-RPC.
"""

import asyncio
import json
import logging
import os
import sys
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type, Union

from dotenv import load_dotenv
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ErrorData,
    Implementation,
    InitializeResult,
    ServerCapabilities,
    Tool,
    ToolsCapability,
)
from pydantic import BaseModel, ValidationError, field_validator

from balance_tool import BalanceChecker
from chain_gateway import DEFAULT_RPC_TIMEOUT, UNISWAP_V2_FACTORY, UNISWAP_V2_ROUTER, ChainGateway
from precision import format_decimal
from price_oracle import DEFAULT_STABLE_SYMBOL, PriceOracle, QuoteCurrency
from swap_simulator import SwapSimulator
from token_registry import TokenRegistry, TokenResolver
from trading_errors import ConfigError, InvalidInputError, TradingError

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SERVER_NAME = "ethereum-trading-mcp"
SERVER_VERSION = "1.0.0"
DEFAULT_RPC_URL = "https://eth.llamarpc.com"
MAINNET_CHAIN_ID = 1


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"Invalid {name}: {value}") from None


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"Invalid {name}: {value}") from None


@dataclass
class ServerConfig:
    """Configuration for the server process"""
    rpc_url: str = DEFAULT_RPC_URL
    chain_id: int = MAINNET_CHAIN_ID
    transport: str = "tcp"
    host: str = "127.0.0.1"
    port: int = 8080
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    log_level: str = "INFO"
    router_address: str = UNISWAP_V2_ROUTER
    factory_address: str = UNISWAP_V2_FACTORY
    weth_address: Optional[str] = None
    stable_symbol: str = DEFAULT_STABLE_SYMBOL

    @classmethod
    def from_env(cls) -> "ServerConfig":
        rpc_url = os.getenv("RPC_URL")
        if not rpc_url:
            logger.info(f"RPC_URL not set, using default {DEFAULT_RPC_URL}")
            rpc_url = DEFAULT_RPC_URL

        return cls(
            rpc_url=rpc_url,
            chain_id=_int_env("CHAIN_ID", MAINNET_CHAIN_ID),
            transport=os.getenv("TRANSPORT", "tcp").lower(),
            host=os.getenv("HOST", "127.0.0.1"),
            port=_int_env("PORT", 8080),
            rpc_timeout=_float_env("RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            router_address=os.getenv("UNISWAP_V2_ROUTER", UNISWAP_V2_ROUTER),
            factory_address=os.getenv("UNISWAP_V2_FACTORY", UNISWAP_V2_FACTORY),
            weth_address=os.getenv("WETH_ADDRESS") or None,
            stable_symbol=os.getenv("STABLE_TOKEN", DEFAULT_STABLE_SYMBOL).upper(),
        )


# Tool argument models
class BalanceRequest(BaseModel):
    address: str
    token_address: Optional[str] = None


class PriceRequest(BaseModel):
    token_identifier: str
    quote_currency: Optional[str] = None


class SwapRequest(BaseModel):
    from_token: str
    to_token: str
    amount: str
    slippage: Decimal
    wallet_address: str

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("slippage", mode="before")
    @classmethod
    def _slippage_as_decimal(cls, value: Any) -> Any:
        # JSON numbers arrive as floats; go through str() to keep 0.5 exact
        if isinstance(value, float):
            return Decimal(str(value))
        return value


class ToolName(str, Enum):
    GET_BALANCE = "get_balance"
    GET_TOKEN_PRICE = "get_token_price"
    SWAP_TOKENS = "swap_tokens"


TOOL_DEFINITIONS: Dict[ToolName, Tool] = {
    ToolName.GET_BALANCE: Tool(
        name=ToolName.GET_BALANCE.value,
        description="Get ETH or ERC20 token balance for a wallet address",
        inputSchema={
            "type": "object",
            "properties": {
                "address": {
                    "type": "string",
                    "description": "Ethereum wallet address (0x...)"
                },
                "token_address": {
                    "type": "string",
                    "description": "ERC20 contract address or symbol (optional, omit for ETH balance)"
                }
            },
            "required": ["address"]
        },
    ),
    ToolName.GET_TOKEN_PRICE: Tool(
        name=ToolName.GET_TOKEN_PRICE.value,
        description="Get current price of a token in USD or ETH from Uniswap V2 reserves",
        inputSchema={
            "type": "object",
            "properties": {
                "token_identifier": {
                    "type": "string",
                    "description": "Token symbol (e.g., ETH, USDC) or contract address"
                },
                "quote_currency": {
                    "type": "string",
                    "enum": [c.value for c in QuoteCurrency],
                    "description": "Currency to quote the price in (default: USD)"
                }
            },
            "required": ["token_identifier"]
        },
    ),
    ToolName.SWAP_TOKENS: Tool(
        name=ToolName.SWAP_TOKENS.value,
        description="Simulate a token swap on Uniswap (no actual transaction executed)",
        inputSchema={
            "type": "object",
            "properties": {
                "from_token": {
                    "type": "string",
                    "description": "Source token symbol or address"
                },
                "to_token": {
                    "type": "string",
                    "description": "Destination token symbol or address"
                },
                "amount": {
                    "type": "string",
                    "description": "Amount to swap (in human-readable format)"
                },
                "slippage": {
                    "type": "number",
                    "description": "Slippage tolerance in percentage (e.g., 0.5 for 0.5%)"
                },
                "wallet_address": {
                    "type": "string",
                    "description": "Wallet address initiating the swap"
                }
            },
            "required": ["from_token", "to_token", "amount", "slippage", "wallet_address"]
        },
    ),
}


@dataclass(frozen=True)
class Toolset:
    """Tool components sharing one gateway handle."""
    resolver: TokenResolver
    balances: BalanceChecker
    oracle: PriceOracle
    swaps: SwapSimulator


class Uninitialized:
    def __repr__(self) -> str:
        return "Uninitialized"


@dataclass(frozen=True)
class Ready:
    toolset: Toolset


ServerState = Union[Uninitialized, Ready]


def build_toolset(config: ServerConfig) -> Toolset:
    gateway = ChainGateway.from_url(
        config.rpc_url,
        router_address=config.router_address,
        factory_address=config.factory_address,
        timeout=config.rpc_timeout,
    )

    registry = TokenRegistry()
    if config.weth_address:
        registry.register("WETH", config.weth_address)
    if config.chain_id != MAINNET_CHAIN_ID:
        logger.warning(f"Token registry covers Ethereum mainnet only, chain ID is {config.chain_id}")

    resolver = TokenResolver(registry, gateway)
    balances = BalanceChecker(gateway, resolver)
    return Toolset(
        resolver=resolver,
        balances=balances,
        oracle=PriceOracle(gateway, resolver, config.stable_symbol),
        swaps=SwapSimulator(gateway, resolver, balances),
    )


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def error_response(request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error = ErrorData(code=code, message=message, data=data)
    return {
        "jsonrpc": "2.0",
        "error": error.model_dump(exclude_none=True),
        "id": request_id,
    }


# Tool handlers
async def _get_balance(toolset: Toolset, request: BalanceRequest) -> Dict[str, Any]:
    return await toolset.balances.get_balance(request.address, request.token_address)


async def _get_token_price(toolset: Toolset, request: PriceRequest) -> Dict[str, Any]:
    quote_currency = QuoteCurrency.parse(request.quote_currency)
    token = await toolset.resolver.resolve(request.token_identifier)
    price = await toolset.oracle.get_price(token, quote_currency)

    logger.info(f"Price of {token.symbol}: {format_decimal(price)} {quote_currency.value}")
    return {
        "token": token.symbol,
        "token_address": token.address,
        "quote_currency": quote_currency.value,
        "price": format_decimal(price),
        "timestamp": int(time.time()),
    }


async def _swap_tokens(toolset: Toolset, request: SwapRequest) -> Dict[str, Any]:
    quote = await toolset.swaps.simulate_swap(
        request.from_token,
        request.to_token,
        request.amount,
        request.slippage,
        request.wallet_address,
    )
    return quote.to_dict()


ToolHandler = Callable[[Toolset, Any], Awaitable[Dict[str, Any]]]

TOOL_HANDLERS: Dict[ToolName, Tuple[Type[BaseModel], ToolHandler, str]] = {
    ToolName.GET_BALANCE: (BalanceRequest, _get_balance, "Balance query"),
    ToolName.GET_TOKEN_PRICE: (PriceRequest, _get_token_price, "Price query"),
    ToolName.SWAP_TOKENS: (SwapRequest, _swap_tokens, "Swap simulation"),
}


class ToolDispatcher:
    """Routes JSON-RPC requests to the trading tools; one response per request."""

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self._state: ServerState = Uninitialized()
        self._init_lock = asyncio.Lock()
        self._methods: Dict[str, Callable[[Any], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    @property
    def state(self) -> ServerState:
        return self._state

    async def initialize(self, toolset: Optional[Toolset] = None) -> None:
        """Build the tools and connect the gateway; safe to call more than once."""
        async with self._init_lock:
            if isinstance(self._state, Ready):
                return
            logger.info(f"Initializing MCP server with RPC URL: {self.config.rpc_url}")
            self._state = Ready(toolset or build_toolset(self.config))
            logger.info("MCP server initialized successfully")

    def _toolset(self) -> Toolset:
        if not isinstance(self._state, Ready):
            raise JsonRpcError(INTERNAL_ERROR, "Tools not initialized")
        return self._state.toolset

    async def handle_line(self, line: str) -> Optional[str]:
        """Handle one line of input; returns the response line, or None if there is none."""
        line = line.strip()
        if not line:
            return None

        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON-RPC request: {e}")
            return json.dumps(error_response(None, PARSE_ERROR, "Parse error", str(e)))

        response = await self.handle_message(message)
        if response is None:
            return None
        return json.dumps(response)

    async def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            request_id = message.get("id") if isinstance(message, dict) else None
            return error_response(request_id, INVALID_REQUEST, "Invalid Request")

        method = message["method"]
        request_id = message.get("id")
        if "id" not in message and method.startswith("notifications/"):
            logger.debug(f"Received notification: {method}")
            return None

        logger.info(f"Received request: {method} (id: {request_id})")
        params = message.get("params")
        try:
            result = await self.dispatch(method, {} if params is None else params)
        except JsonRpcError as e:
            return error_response(request_id, e.code, e.message, e.data)
        except Exception as e:
            logger.exception(f"Unhandled error in {method}: {e}")
            return error_response(request_id, INTERNAL_ERROR, "Internal error", str(e))

        return {"jsonrpc": "2.0", "result": result, "id": request_id}

    async def dispatch(self, method: str, params: Any) -> Any:
        handler = self._methods.get(method)
        if handler is None:
            raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")
        return await handler(params)

    async def _initialize(self, params: Any) -> Dict[str, Any]:
        result = InitializeResult(
            protocolVersion=LATEST_PROTOCOL_VERSION,
            capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
            serverInfo=Implementation(name=SERVER_NAME, version=SERVER_VERSION),
        )
        return result.model_dump(by_alias=True, exclude_none=True, mode="json")

    async def _ping(self, params: Any) -> Dict[str, Any]:
        return {"status": "ok"}

    async def _tools_list(self, params: Any) -> List[Dict[str, Any]]:
        return [
            tool.model_dump(by_alias=True, exclude_none=True, mode="json")
            for tool in TOOL_DEFINITIONS.values()
        ]

    async def _tools_call(self, params: Any) -> Dict[str, Any]:
        if not isinstance(params, dict):
            raise JsonRpcError(INVALID_PARAMS, "Params must be an object")

        name = params.get("name")
        if not isinstance(name, str):
            raise JsonRpcError(INVALID_PARAMS, "Missing or invalid 'name' parameter")

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "'arguments' must be an object")

        try:
            tool = ToolName(name)
        except ValueError:
            raise JsonRpcError(METHOD_NOT_FOUND, f"Tool not found: {name}") from None

        request_model, handler, label = TOOL_HANDLERS[tool]
        try:
            request = request_model.model_validate(arguments)
        except ValidationError as e:
            raise JsonRpcError(INVALID_PARAMS, f"Invalid arguments for {name}", str(e)) from e

        toolset = self._toolset()
        try:
            return await handler(toolset, request)
        except InvalidInputError as e:
            raise JsonRpcError(INVALID_PARAMS, f"{label} failed: {e}", str(e)) from e
        except TradingError as e:
            logger.error(f"{label} failed: {e}")
            raise JsonRpcError(INTERNAL_ERROR, f"{label} failed: {e}", str(e)) from e


# Transport
Sender = Callable[[bytes], Awaitable[None]]


async def read_line(reader: asyncio.StreamReader) -> Optional[bytes]:
    """Read one line; b"" at EOF, None when the line exceeded the reader's limit.

    An oversized line is consumed up to and including its newline so the next
    read starts at the following request.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        return e.partial
    except asyncio.LimitOverrunError as e:
        consumed = e.consumed

    while True:
        try:
            await reader.readexactly(consumed)
            await reader.readuntil(b"\n")
            return None
        except asyncio.IncompleteReadError:
            return None
        except asyncio.LimitOverrunError as e:
            consumed = e.consumed


async def serve_lines(dispatcher: ToolDispatcher, reader: asyncio.StreamReader, send: Sender) -> None:
    """Serve one newline-delimited JSON stream until EOF.

    Each request runs in its own task, so responses may be written out of order;
    clients pair them by ``id``.
    """
    write_lock = asyncio.Lock()
    pending = set()

    async def respond(line: str) -> None:
        response = await dispatcher.handle_line(line)
        if response is None:
            return
        async with write_lock:
            await send(response.encode("utf-8") + b"\n")

    while True:
        raw = await read_line(reader)
        if raw is None:
            logger.error("Discarded request line longer than the read limit")
            oversized = error_response(None, INVALID_REQUEST, "Request too large")
            async with write_lock:
                await send(json.dumps(oversized).encode("utf-8") + b"\n")
            continue
        if not raw:
            break
        task = asyncio.create_task(respond(raw.decode("utf-8", errors="replace")))
        pending.add(task)
        task.add_done_callback(pending.discard)

    if pending:
        await asyncio.gather(*pending)


async def serve_tcp(dispatcher: ToolDispatcher, host: str, port: int) -> None:
    async def on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        logger.info(f"Accepted connection from {peer}")

        async def send(data: bytes) -> None:
            writer.write(data)
            await writer.drain()

        try:
            await serve_lines(dispatcher, reader, send)
        except ConnectionError as e:
            logger.error(f"Error handling connection from {peer}: {e}")
        finally:
            writer.close()

    server = await asyncio.start_server(on_connect, host, port)
    logger.info(f"MCP server listening on {host}:{port}")
    logger.info(f"Available tools: {', '.join(tool.value for tool in ToolName)}")

    async with server:
        await server.serve_forever()


async def serve_stdio(dispatcher: ToolDispatcher) -> None:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    async def send(data: bytes) -> None:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()

    logger.info("MCP server reading requests from stdin")
    await serve_lines(dispatcher, reader, send)


async def main():
    """Main function to run the MCP server."""
    config = ServerConfig.from_env()
    logging.getLogger().setLevel(config.log_level)

    dispatcher = ToolDispatcher(config)
    try:
        await dispatcher.initialize()
    except TradingError as e:
        logger.error(f"Failed to initialize MCP server: {e}")
        raise

    if config.transport == "stdio":
        await serve_stdio(dispatcher)
    elif config.transport == "tcp":
        await serve_tcp(dispatcher, config.host, config.port)
    else:
        logger.error(f"Unsupported transport: {config.transport}")
        return


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
