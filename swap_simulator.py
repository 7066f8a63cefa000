"""
Read-only Uniswap V2 swap simulation.

A simulation resolves both tokens, checks the wallet balance, quotes the
router, applies slippage and estimates gas. Anything that would make the swap
fail is reported inside the returned SwapQuote rather than raised: "this swap
would fail" is an ordinary simulation outcome.

Only eth_call and eth_estimateGas are issued, so a simulation can be repeated
freely without touching balances or nonces.
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from balance_tool import BalanceChecker
from chain_gateway import ChainGateway, best_effort, decode_amounts
from precision import (
    DecimalInput,
    NATIVE_DECIMALS,
    check_slippage,
    format_decimal,
    from_decimal,
    min_output_with_slippage,
    parse_decimal,
    to_decimal,
    wei_to_gwei,
)
from token_registry import TokenIdentity, TokenResolver, validate_address
from trading_errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    SwapSimulationError,
    TradingError,
)

logger = logging.getLogger(__name__)

DEFAULT_GAS_ESTIMATE = 150_000
DEFAULT_GAS_PRICE_WEI = 20_000_000_000  # 20 gwei
SWAP_DEADLINE_SECONDS = 20 * 60


@dataclass(frozen=True)
class SwapQuote:
    from_token: str
    to_token: str
    input_amount: str
    slippage_percentage: str
    estimated_output: str = "0"
    min_output: str = "0"
    gas_estimate: int = 0
    gas_price_gwei: str = "0"
    gas_cost_eth: str = "0"
    simulation_success: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _display(value: DecimalInput) -> str:
    """Render user input as a successful quote would; unparseable input is echoed as given."""
    try:
        return format_decimal(parse_decimal(value))
    except TradingError:
        return str(value)


class SwapSimulator:
    def __init__(self, gateway: ChainGateway, resolver: TokenResolver, balances: BalanceChecker):
        self.gateway = gateway
        self.resolver = resolver
        self.balances = balances

    async def simulate_swap(self, from_token: str, to_token: str, amount: DecimalInput,
                            slippage: DecimalInput, wallet_address: str) -> SwapQuote:
        """Simulate swapping ``amount`` of ``from_token`` into ``to_token``.

        Args:
            from_token: Source token symbol or address ("ETH" for native)
            to_token: Destination token symbol or address
            amount: Human-readable input amount, e.g. "1.5"
            slippage: Slippage tolerance in percent, e.g. 0.5
            wallet_address: Wallet that would execute the swap

        Returns:
            SwapQuote; ``simulation_success`` is False with ``error`` set when the
            swap would fail or could not be simulated.
        """
        logger.debug(f"Simulating swap: {amount} {from_token} -> {to_token}")
        try:
            return await self._simulate(from_token, to_token, amount, slippage, wallet_address)
        except TradingError as e:
            logger.warning(f"Swap simulation failed: {e}")
            return SwapQuote(
                from_token=from_token,
                to_token=to_token,
                input_amount=_display(amount),
                slippage_percentage=_display(slippage),
                error=str(e),
            )

    async def _simulate(self, from_token: str, to_token: str, amount: DecimalInput,
                        slippage: DecimalInput, wallet_address: str) -> SwapQuote:
        source = await self.resolver.resolve(from_token)
        target = await self.resolver.resolve(to_token)
        route_in = self.resolver.wrapped(source)
        route_out = self.resolver.wrapped(target)
        if route_in.address == route_out.address:
            raise SwapSimulationError(f"Cannot swap {source.symbol} for {target.symbol}")

        wallet = validate_address(wallet_address)
        input_amount = parse_decimal(amount)
        if input_amount <= 0:
            raise InvalidAmountError(f"Amount must be positive: {amount}")
        slippage_percentage = check_slippage(slippage)

        # Advisory only: the router simulation below is authoritative
        available = await best_effort(self.balances.balance_of(wallet, source), None, "Balance check")
        if available is not None and available < input_amount:
            raise InsufficientBalanceError(
                required=format_decimal(input_amount),
                available=format_decimal(available),
            )

        source = await self.resolver.load_decimals(source)
        target = await self.resolver.load_decimals(target)
        amount_in = from_decimal(input_amount, source.decimals)
        if amount_in == 0:
            raise InvalidAmountError(f"Amount is below the smallest unit of {source.symbol}: {amount}")

        path = [route_in.address, route_out.address]
        amounts = await self.quote_router(amount_in, path)

        estimated_output = to_decimal(amounts[-1], target.decimals)
        min_output = min_output_with_slippage(estimated_output, slippage_percentage)
        min_output_raw = from_decimal(min_output, target.decimals)

        gas_price = await best_effort(self.gateway.get_gas_price(), DEFAULT_GAS_PRICE_WEI, "Gas price lookup")
        gas_estimate = await self.estimate_swap_gas(source, target, amount_in, min_output_raw, path, wallet)
        gas_cost_eth = to_decimal(gas_estimate * gas_price, NATIVE_DECIMALS)

        logger.info(
            f"Swap simulation complete: {format_decimal(input_amount)} {source.symbol} -> "
            f"{format_decimal(estimated_output)} {target.symbol} (gas: {gas_estimate})"
        )

        return SwapQuote(
            from_token=from_token,
            to_token=to_token,
            input_amount=format_decimal(input_amount),
            slippage_percentage=format_decimal(slippage_percentage),
            estimated_output=format_decimal(estimated_output),
            min_output=format_decimal(min_output),
            gas_estimate=gas_estimate,
            gas_price_gwei=format_decimal(wei_to_gwei(gas_price)),
            gas_cost_eth=format_decimal(gas_cost_eth),
            simulation_success=True,
        )

    async def quote_router(self, amount_in: int, path: List[str]) -> List[int]:
        try:
            amounts = await self.gateway.get_amounts_out(amount_in, path)
        except TradingError as e:
            raise SwapSimulationError(f"Router quote failed: {e}") from e
        if not amounts:
            raise SwapSimulationError("Router returned no output amounts")
        return amounts

    async def estimate_swap_gas(self, source: TokenIdentity, target: TokenIdentity, amount_in: int,
                                min_output_raw: int, path: List[str], wallet: str) -> int:
        call = self.gateway.build_swap_call(
            amount_in,
            min_output_raw,
            path,
            recipient=wallet,
            deadline=int(time.time()) + SWAP_DEADLINE_SECONDS,
            native_in=source.is_native,
            native_out=target.is_native,
        )
        return await best_effort(self._simulate_router_call(call), DEFAULT_GAS_ESTIMATE, "Router call simulation")

    async def _simulate_router_call(self, call: Dict[str, Any]) -> int:
        result = await self.gateway.simulate_call(call)
        amounts = decode_amounts(result)
        logger.debug(f"Router call simulation returned amounts: {amounts}")
        return await self.gateway.estimate_gas(call)
