"""
Well-known token registry and identifier resolution.

An identifier may be omitted (native ETH), the native marker address, a
contract address, or a case-insensitive symbol known to the registry.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from web3 import Web3

from chain_gateway import ChainGateway, best_effort
from precision import NATIVE_DECIMALS
from trading_errors import InvalidAddressError, TokenNotFoundError

logger = logging.getLogger(__name__)

NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
NATIVE_SYMBOL = "ETH"
WRAPPED_NATIVE_SYMBOL = "WETH"
UNKNOWN_SYMBOL = "UNKNOWN"

# Ethereum mainnet tokens
MAINNET_TOKENS = {
    "ETH": NATIVE_TOKEN_ADDRESS,
    "WETH": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
    "USDC": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    "USDT": "0xdAC17F958D2ee523a2206206994597C13D831ec7",
    "DAI": "0x6B175474E89094C44Da98b954EedeAC495271d0F",
    "LINK": "0x514910771AF9Ca656af840dff83E8264EcF986CA",
    "UNI": "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984",
    "AAVE": "0x7Fc66500c84A76Ad7e9c93437E434122A1f9AcDd",
    "FRAX": "0x853d955aCEf822Db058eb8505911ED77F175b999",
}


def validate_address(address: str) -> str:
    """Return the checksummed form of ``address`` or raise InvalidAddressError."""
    if not isinstance(address, str) or not Web3.is_address(address.strip()):
        raise InvalidAddressError(f"Invalid Ethereum address: {address}")
    return Web3.to_checksum_address(address.strip())


def is_native_address(address: str) -> bool:
    return address.lower() == NATIVE_TOKEN_ADDRESS.lower()


@dataclass(frozen=True)
class TokenIdentity:
    """A resolved token; ``decimals`` stays None until loaded."""
    address: str
    symbol: str
    is_native: bool = False
    decimals: Optional[int] = None


NATIVE_TOKEN = TokenIdentity(
    address=NATIVE_TOKEN_ADDRESS,
    symbol=NATIVE_SYMBOL,
    is_native=True,
    decimals=NATIVE_DECIMALS,
)


class TokenRegistry:
    """Static symbol <-> address mapping, pre-populated with mainnet tokens."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self._symbol_to_address: Dict[str, str] = {}
        self._address_to_symbol: Dict[str, str] = {}

        for symbol, address in (MAINNET_TOKENS if tokens is None else tokens).items():
            self.register(symbol, address)

    def register(self, symbol: str, address: str) -> None:
        address = Web3.to_checksum_address(address)
        symbol = symbol.upper()
        self._symbol_to_address[symbol] = address
        self._address_to_symbol[address] = symbol

    def symbol_to_address(self, symbol: str) -> Optional[str]:
        return self._symbol_to_address.get(symbol.upper())

    def address_to_symbol(self, address: str) -> Optional[str]:
        if not Web3.is_address(address):
            return None
        return self._address_to_symbol.get(Web3.to_checksum_address(address))

    def symbols(self) -> List[str]:
        return sorted(self._symbol_to_address)


class TokenResolver:
    """Turns user-supplied token identifiers into TokenIdentity values."""

    def __init__(self, registry: TokenRegistry, gateway: ChainGateway,
                 wrapped_native_address: Optional[str] = None):
        self.registry = registry
        self.gateway = gateway

        wrapped = wrapped_native_address or registry.symbol_to_address(WRAPPED_NATIVE_SYMBOL)
        if wrapped is None:
            raise TokenNotFoundError("Wrapped native token is not registered")
        self.wrapped_native = TokenIdentity(
            address=Web3.to_checksum_address(wrapped),
            symbol=WRAPPED_NATIVE_SYMBOL,
            decimals=NATIVE_DECIMALS,
        )

    async def resolve(self, identifier: Optional[str] = None) -> TokenIdentity:
        if identifier is None or not identifier.strip():
            return NATIVE_TOKEN

        identifier = identifier.strip()
        if is_native_address(identifier):
            return NATIVE_TOKEN

        if Web3.is_address(identifier):
            address = Web3.to_checksum_address(identifier)
            if address == self.wrapped_native.address:
                return self.wrapped_native
            symbol = self.registry.address_to_symbol(address)
            if symbol is None:
                symbol = await best_effort(
                    self.gateway.get_token_symbol(address),
                    UNKNOWN_SYMBOL,
                    f"Symbol lookup for {address}",
                )
            return TokenIdentity(address=address, symbol=symbol)

        symbol = identifier.upper()
        address = self.registry.symbol_to_address(symbol)
        if address is None:
            raise TokenNotFoundError(f"Token not found: {identifier}")
        if is_native_address(address):
            return NATIVE_TOKEN
        if address == self.wrapped_native.address:
            return self.wrapped_native
        return TokenIdentity(address=address, symbol=symbol)

    async def load_decimals(self, token: TokenIdentity) -> TokenIdentity:
        """Attach the token's decimal count; native ETH never needs a gateway call."""
        if token.decimals is not None:
            return token
        if token.is_native:
            return replace(token, decimals=NATIVE_DECIMALS)
        decimals = await self.gateway.get_token_decimals(token.address)
        return replace(token, decimals=decimals)

    def wrapped(self, token: TokenIdentity) -> TokenIdentity:
        """Routing address for ``token``: native ETH trades as WETH."""
        return self.wrapped_native if token.is_native else token

    def is_wrapped_native(self, token: TokenIdentity) -> bool:
        return token.is_native or token.address == self.wrapped_native.address
