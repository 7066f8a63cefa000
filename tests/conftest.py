"""Shared fixtures: an in-memory fake of the chain gateway and the real resolver on top of it."""

from typing import Dict, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode

from balance_tool import BalanceChecker
from chain_gateway import UNISWAP_V2_ROUTER, ZERO_ADDRESS
from price_oracle import PriceOracle
from swap_simulator import SwapSimulator
from token_registry import MAINNET_TOKENS, TokenRegistry, TokenResolver

WALLET = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
WETH = MAINNET_TOKENS["WETH"]
USDC = MAINNET_TOKENS["USDC"]
USDT = MAINNET_TOKENS["USDT"]
DAI = MAINNET_TOKENS["DAI"]
LINK = MAINNET_TOKENS["LINK"]

TOKEN_DECIMALS = {USDC: 6, USDT: 6}

READ_ONLY_GATEWAY_CALLS = {
    "get_native_balance",
    "get_token_balance",
    "get_token_decimals",
    "get_token_symbol",
    "get_pair_address",
    "get_reserves",
    "get_token0",
    "get_amounts_out",
    "get_gas_price",
    "estimate_gas",
    "simulate_call",
    "build_swap_call",
}


def install_pools(gateway, pools: Dict[Tuple[str, str], Tuple[str, int, int]]) -> None:
    """Wire fake Uniswap pools into the gateway.

    ``pools`` maps ``(token0, token1)`` to ``(pool_address, reserve0, reserve1)``.
    """
    by_pair = {}
    by_pool = {}
    for (token0, token1), (pool, reserve0, reserve1) in pools.items():
        by_pair[frozenset((token0.lower(), token1.lower()))] = pool
        by_pool[pool] = (token0, reserve0, reserve1)

    async def get_pair_address(token_a, token_b, factory=None):
        return by_pair.get(frozenset((token_a.lower(), token_b.lower())), ZERO_ADDRESS)

    async def get_reserves(pool):
        _, reserve0, reserve1 = by_pool[pool]
        return reserve0, reserve1

    async def get_token0(pool):
        return by_pool[pool][0]

    gateway.get_pair_address = AsyncMock(side_effect=get_pair_address)
    gateway.get_reserves = AsyncMock(side_effect=get_reserves)
    gateway.get_token0 = AsyncMock(side_effect=get_token0)


@pytest.fixture
def gateway():
    gw = MagicMock()

    async def get_token_decimals(token):
        return TOKEN_DECIMALS.get(token, 18)

    gw.get_native_balance = AsyncMock(return_value=10 * 10**18)
    gw.get_token_balance = AsyncMock(return_value=1_000_000 * 10**6)
    gw.get_token_decimals = AsyncMock(side_effect=get_token_decimals)
    gw.get_token_symbol = AsyncMock(return_value="TKN")
    gw.get_pair_address = AsyncMock(return_value=ZERO_ADDRESS)
    gw.get_reserves = AsyncMock(return_value=(0, 0))
    gw.get_token0 = AsyncMock(return_value=ZERO_ADDRESS)
    gw.get_amounts_out = AsyncMock(return_value=[])
    gw.get_gas_price = AsyncMock(return_value=20 * 10**9)
    gw.estimate_gas = AsyncMock(return_value=120_000)
    gw.simulate_call = AsyncMock(return_value=encode(["uint256[]"], [[10**18, 990 * 10**6]]))
    gw.build_swap_call = MagicMock(return_value={"from": WALLET, "to": UNISWAP_V2_ROUTER, "data": "0x", "value": 0})
    return gw


@pytest.fixture
def registry():
    return TokenRegistry()


@pytest.fixture
def resolver(registry, gateway):
    return TokenResolver(registry, gateway)


@pytest.fixture
def balances(gateway, resolver):
    return BalanceChecker(gateway, resolver)


@pytest.fixture
def oracle(gateway, resolver):
    return PriceOracle(gateway, resolver)


@pytest.fixture
def simulator(gateway, resolver, balances):
    return SwapSimulator(gateway, resolver, balances)
