"""
Spot prices from Uniswap V2 constant-product reserves.

Prices are read from the pool holding the token and the quote asset. USD
prices are composed from two hops, token -> WETH and WETH -> stable token,
and no other routing is attempted.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from chain_gateway import ChainGateway, ZERO_ADDRESS
from precision import divide, multiply, to_decimal
from token_registry import TokenIdentity, TokenResolver
from trading_errors import PairNotFoundError, PriceOracleError, TokenNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_STABLE_SYMBOL = "USDC"


class QuoteCurrency(str, Enum):
    USD = "USD"
    ETH = "ETH"

    @classmethod
    def parse(cls, value: Optional[str]) -> "QuoteCurrency":
        if value is None or not value.strip():
            return cls.USD
        try:
            return cls(value.strip().upper())
        except ValueError:
            supported = ", ".join(c.value for c in cls)
            raise PriceOracleError(
                f"Unsupported quote currency: {value} (supported: {supported})"
            ) from None


@dataclass(frozen=True)
class ReservePair:
    """Reserves of one pool at the moment they were read."""
    pool: str
    token0: str
    reserve0: int
    reserve1: int

    def reserves_for(self, token_address: str) -> Tuple[int, int]:
        """Return ``(reserve_of_token, reserve_of_other)`` for ``token_address``."""
        if token_address.lower() == self.token0.lower():
            return self.reserve0, self.reserve1
        return self.reserve1, self.reserve0


class PriceOracle:
    def __init__(self, gateway: ChainGateway, resolver: TokenResolver,
                 stable_symbol: str = DEFAULT_STABLE_SYMBOL):
        self.gateway = gateway
        self.resolver = resolver
        self.stable_symbol = stable_symbol.upper()

    def stable_token(self) -> TokenIdentity:
        address = self.resolver.registry.symbol_to_address(self.stable_symbol)
        if address is None:
            raise TokenNotFoundError(f"Stable quote token not registered: {self.stable_symbol}")
        return TokenIdentity(address=address, symbol=self.stable_symbol)

    async def get_reserve_pair(self, token_a: str, token_b: str) -> ReservePair:
        pool = await self.gateway.get_pair_address(token_a, token_b)
        if not pool or pool.lower() == ZERO_ADDRESS:
            raise PairNotFoundError(f"Pair does not exist for {token_a} / {token_b}")

        reserve0, reserve1 = await self.gateway.get_reserves(pool)
        token0 = await self.gateway.get_token0(pool)
        return ReservePair(pool=pool, token0=token0, reserve0=reserve0, reserve1=reserve1)

    async def spot_price(self, token: TokenIdentity, quote: TokenIdentity) -> Decimal:
        """Price of one ``token`` expressed in ``quote`` from their direct pool."""
        token = await self.resolver.load_decimals(self.resolver.wrapped(token))
        quote = await self.resolver.load_decimals(self.resolver.wrapped(quote))

        try:
            pair = await self.get_reserve_pair(token.address, quote.address)
        except PairNotFoundError as e:
            raise PriceOracleError(str(e)) from e

        reserve_token, reserve_quote = pair.reserves_for(token.address)
        if reserve_token == 0 or reserve_quote == 0:
            raise PriceOracleError(
                f"Pool {pair.pool} has no liquidity for {token.symbol}/{quote.symbol}"
            )

        price = divide(to_decimal(reserve_quote, quote.decimals), to_decimal(reserve_token, token.decimals))
        logger.debug(f"Spot price {token.symbol}/{quote.symbol} from {pair.pool}: {price}")
        return price

    async def get_price(self, token: TokenIdentity, quote_currency: QuoteCurrency) -> Decimal:
        if self.resolver.is_wrapped_native(token):
            price_in_native = Decimal(1)
        else:
            price_in_native = await self.spot_price(token, self.resolver.wrapped_native)

        if quote_currency == QuoteCurrency.ETH:
            return price_in_native

        native_in_stable = await self.spot_price(self.resolver.wrapped_native, self.stable_token())
        return multiply(price_in_native, native_in_stable)
