"""
Error taxonomy for the Ethereum trading MCP server.

Gateway failures are translated into these types at the boundary so that no
raw web3/requests exception ever reaches a tool or the dispatcher.
"""


class TradingError(Exception):
    """Base class for every error raised by the trading tools."""


# Invalid input
class InvalidInputError(TradingError):
    pass


class InvalidAddressError(InvalidInputError):
    pass


class InvalidAmountError(InvalidInputError):
    pass


# Resolution failures
class ResolutionError(TradingError):
    pass


class TokenNotFoundError(ResolutionError):
    pass


class PairNotFoundError(ResolutionError):
    pass


# Upstream failures
class UpstreamError(TradingError):
    pass


class RpcError(UpstreamError):
    pass


class NetworkError(UpstreamError):
    pass


class GasEstimationError(UpstreamError):
    pass


class PrecisionError(TradingError):
    pass


class PriceOracleError(TradingError):
    pass


class SwapSimulationError(TradingError):
    pass


class InsufficientBalanceError(SwapSimulationError):
    """Wallet holds less than the requested input amount."""

    def __init__(self, required: str, available: str):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient balance: {available} available, {required} required")


class ConfigError(TradingError):
    pass
