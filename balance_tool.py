"""
Wallet balance lookups for native ETH and ERC-20 tokens.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from chain_gateway import ChainGateway
from precision import format_decimal, to_decimal
from token_registry import TokenIdentity, TokenResolver, validate_address

logger = logging.getLogger(__name__)


class BalanceChecker:
    def __init__(self, gateway: ChainGateway, resolver: TokenResolver):
        self.gateway = gateway
        self.resolver = resolver

    async def raw_balance(self, wallet: str, token: TokenIdentity) -> int:
        if token.is_native:
            return await self.gateway.get_native_balance(wallet)
        return await self.gateway.get_token_balance(token.address, wallet)

    async def balance_of(self, wallet: str, token: TokenIdentity) -> Decimal:
        """Human-readable balance of ``token`` held by ``wallet``."""
        token = await self.resolver.load_decimals(token)
        raw = await self.raw_balance(wallet, token)
        return to_decimal(raw, token.decimals)

    async def get_balance(self, address: str, token_identifier: Optional[str] = None) -> Dict[str, Any]:
        """Get the ETH balance of ``address``, or its balance of an ERC-20 token.

        Args:
            address: Wallet address (checksummed or lowercase)
            token_identifier: Token contract address or registry symbol; omit for ETH

        Returns:
            Dict with the formatted balance, decimals, raw amount and token symbol.
        """
        wallet = validate_address(address)
        token = await self.resolver.load_decimals(await self.resolver.resolve(token_identifier))
        logger.info(f"Fetching {token.symbol} balance for: {wallet}")

        raw = await self.raw_balance(wallet, token)
        balance = to_decimal(raw, token.decimals)

        return {
            "address": wallet,
            "balance": format_decimal(balance),
            "decimals": token.decimals,
            "raw": str(raw),
            "token_type": token.symbol,
            "token_address": token.address,
        }
