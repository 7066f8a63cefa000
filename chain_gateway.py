"""
Read-only gateway to an Ethereum JSON-RPC node.

Wraps a synchronous Web3 client: every call runs in the default executor and
is bounded by ``asyncio.wait_for`` so a slow node never stalls the event loop.
Raw web3/transport exceptions are translated to the trading error taxonomy.
Only ``eth_call`` and ``eth_estimateGas`` are used for simulation; nothing is
ever signed or broadcast.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar
from urllib.parse import urlparse

from eth_abi import decode, encode
from web3 import Web3

from trading_errors import ConfigError, GasEstimationError, NetworkError, RpcError, TradingError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_RPC_TIMEOUT = 10.0

# Uniswap V2 mainnet deployment
UNISWAP_V2_ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
UNISWAP_V2_FACTORY = "0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f"

# ERC-20 ABI (minimal, read-only)
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function"
    }
]

UNISWAP_V2_PAIR_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "getReserves",
        "outputs": [
            {"name": "reserve0", "type": "uint112"},
            {"name": "reserve1", "type": "uint112"},
            {"name": "blockTimestampLast", "type": "uint32"}
        ],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "token0",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function"
    }
]

UNISWAP_V2_FACTORY_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"}
        ],
        "name": "getPair",
        "outputs": [{"name": "pair", "type": "address"}],
        "type": "function"
    }
]

UNISWAP_V2_ROUTER_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"}
        ],
        "name": "getAmountsOut",
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
        "type": "function"
    }
]

# Router swap entry points used for read-only simulation: (signature, argument types)
SWAP_EXACT_TOKENS_FOR_TOKENS = (
    "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)",
    ["uint256", "uint256", "address[]", "address", "uint256"],
)
SWAP_EXACT_ETH_FOR_TOKENS = (
    "swapExactETHForTokens(uint256,address[],address,uint256)",
    ["uint256", "address[]", "address", "uint256"],
)
SWAP_EXACT_TOKENS_FOR_ETH = (
    "swapExactTokensForETH(uint256,uint256,address[],address,uint256)",
    ["uint256", "uint256", "address[]", "address", "uint256"],
)


def function_selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


def decode_amounts(result: bytes) -> List[int]:
    """Decode the ``uint256[] amounts`` returned by Uniswap V2 router swaps."""
    try:
        (amounts,) = decode(["uint256[]"], bytes(result))
    except Exception as e:
        raise RpcError(f"Failed to decode swap result: {e}") from e
    return list(amounts)


async def best_effort(awaitable: Awaitable[T], default: T, what: str) -> T:
    """Await an advisory lookup, substituting ``default`` when it fails."""
    try:
        return await awaitable
    except TradingError as e:
        logger.warning(f"{what} failed: {e}, using {default!r}")
        return default


class ChainGateway:
    """Shared, read-only handle on a node plus the Uniswap V2 contracts."""

    def __init__(self, web3: Web3, router_address: str = UNISWAP_V2_ROUTER,
                 factory_address: str = UNISWAP_V2_FACTORY, timeout: float = DEFAULT_RPC_TIMEOUT):
        self.web3 = web3
        self.router_address = Web3.to_checksum_address(router_address)
        self.factory_address = Web3.to_checksum_address(factory_address)
        self.timeout = timeout

    @classmethod
    def from_url(cls, rpc_url: str, router_address: str = UNISWAP_V2_ROUTER,
                 factory_address: str = UNISWAP_V2_FACTORY,
                 timeout: float = DEFAULT_RPC_TIMEOUT) -> "ChainGateway":
        parsed = urlparse(rpc_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"Invalid RPC URL: {rpc_url}")

        web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        logger.info(f"Connected gateway to RPC: {rpc_url}")
        return cls(web3, router_address, factory_address, timeout)

    async def _run(self, what: str, fn: Callable[[], T],
                   error_cls: Type[TradingError] = RpcError) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, fn), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"{what} timed out after {self.timeout}s")
            raise NetworkError(f"{what} timed out after {self.timeout}s") from None
        except Exception as e:
            logger.error(f"{what} failed: {e}")
            raise error_cls(f"{what} failed: {e}") from e

    def _erc20(self, token: str):
        return self.web3.eth.contract(address=token, abi=ERC20_ABI)

    async def get_native_balance(self, address: str) -> int:
        logger.debug(f"Fetching ETH balance: {address}")
        return await self._run("Get ETH balance", lambda: self.web3.eth.get_balance(address))

    async def get_token_balance(self, token: str, holder: str) -> int:
        logger.debug(f"Fetching token balance: {holder} on token {token}")
        return await self._run(
            "Get token balance",
            lambda: self._erc20(token).functions.balanceOf(holder).call(),
        )

    async def get_token_decimals(self, token: str) -> int:
        return await self._run(
            "Get token decimals", lambda: self._erc20(token).functions.decimals().call()
        )

    async def get_token_symbol(self, token: str) -> str:
        return await self._run(
            "Get token symbol", lambda: self._erc20(token).functions.symbol().call()
        )

    async def get_pair_address(self, token_a: str, token_b: str,
                               factory: Optional[str] = None) -> str:
        factory = factory or self.factory_address
        contract = self.web3.eth.contract(address=factory, abi=UNISWAP_V2_FACTORY_ABI)
        return await self._run(
            "Get pair address", lambda: contract.functions.getPair(token_a, token_b).call()
        )

    async def get_reserves(self, pool: str) -> Tuple[int, int]:
        contract = self.web3.eth.contract(address=pool, abi=UNISWAP_V2_PAIR_ABI)
        reserve0, reserve1, _ = await self._run(
            "Get reserves", lambda: contract.functions.getReserves().call()
        )
        return reserve0, reserve1

    async def get_token0(self, pool: str) -> str:
        contract = self.web3.eth.contract(address=pool, abi=UNISWAP_V2_PAIR_ABI)
        return await self._run("Get token0", lambda: contract.functions.token0().call())

    async def get_amounts_out(self, amount_in: int, path: Sequence[str]) -> List[int]:
        logger.debug(f"Fetching router output: amount_in={amount_in}, path_len={len(path)}")
        contract = self.web3.eth.contract(address=self.router_address, abi=UNISWAP_V2_ROUTER_ABI)
        amounts = await self._run(
            "Get amounts out",
            lambda: contract.functions.getAmountsOut(amount_in, list(path)).call(),
        )
        return list(amounts)

    async def get_gas_price(self) -> int:
        return await self._run("Get gas price", lambda: self.web3.eth.gas_price)

    async def estimate_gas(self, call: Dict[str, Any]) -> int:
        return await self._run(
            "Gas estimation", lambda: self.web3.eth.estimate_gas(call), GasEstimationError
        )

    async def simulate_call(self, call: Dict[str, Any]) -> bytes:
        """Execute ``call`` with eth_call against a throwaway state; nothing is committed."""
        result = await self._run("Contract call", lambda: self.web3.eth.call(call))
        return bytes(result)

    def build_swap_call(self, amount_in: int, amount_out_min: int, path: Sequence[str],
                        recipient: str, deadline: int, native_in: bool = False,
                        native_out: bool = False) -> Dict[str, Any]:
        """Build the router call descriptor for a swap, for eth_call / eth_estimateGas only."""
        path = list(path)
        if native_in:
            signature, types = SWAP_EXACT_ETH_FOR_TOKENS
            args = [amount_out_min, path, recipient, deadline]
            value = amount_in
        else:
            signature, types = SWAP_EXACT_TOKENS_FOR_ETH if native_out else SWAP_EXACT_TOKENS_FOR_TOKENS
            args = [amount_in, amount_out_min, path, recipient, deadline]
            value = 0

        data = function_selector(signature) + encode(types, args)
        return {
            "from": recipient,
            "to": self.router_address,
            "data": "0x" + data.hex(),
            "value": value,
        }
