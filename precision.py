"""
Fixed-point helpers for moving between raw on-chain integers and
human-readable decimal amounts.

All arithmetic happens in a dedicated decimal context wide enough for a full
uint256 scaled by up to 255 decimals, so conversions never round silently.
"""

from decimal import Context, Decimal, DecimalException, InvalidOperation, ROUND_DOWN, localcontext
from typing import Union

from trading_errors import InvalidAmountError, PrecisionError

MAX_UINT256 = 2**256 - 1
MAX_DECIMALS = 255
NATIVE_DECIMALS = 18

# Exponent bounds for any amount that can map to a uint256 at 0..255 decimals
MAX_ADJUSTED_EXPONENT = len(str(MAX_UINT256)) - 1
MIN_ADJUSTED_EXPONENT = -(MAX_DECIMALS + 1)

# uint256 has 78 digits; leave plenty of room for user-supplied fractions
_CONTEXT = Context(prec=200, Emax=999999, Emin=-999999)

DecimalInput = Union[Decimal, str, int, float]


def _check_decimals(decimals: int) -> None:
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise PrecisionError(f"Decimals must be an integer, got {decimals!r}")
    if not 0 <= decimals <= MAX_DECIMALS:
        raise PrecisionError(f"Decimals must be between 0 and {MAX_DECIMALS}, got {decimals}")


def to_decimal(raw_amount: int, decimals: int) -> Decimal:
    """Convert a raw amount in smallest units into a human-readable Decimal.

    Args:
        raw_amount: Amount in the token's smallest unit (wei for ETH)
        decimals: Number of decimal places the token declares

    Returns:
        ``raw_amount / 10**decimals`` computed exactly.
    """
    _check_decimals(decimals)
    if raw_amount < 0:
        raise PrecisionError(f"Raw amount cannot be negative: {raw_amount}")
    if raw_amount > MAX_UINT256:
        raise PrecisionError("Raw amount exceeds uint256")

    try:
        return Decimal(raw_amount).scaleb(-decimals, context=_CONTEXT)
    except DecimalException as e:
        raise PrecisionError(f"Division overflow: {e}") from e


def from_decimal(amount: Decimal, decimals: int) -> int:
    """Convert a human-readable Decimal into a raw amount in smallest units.

    Fractional digits beyond the token's precision are truncated, so the loss
    is always less than one smallest unit.
    """
    _check_decimals(decimals)
    if not isinstance(amount, Decimal):
        amount = parse_decimal(amount)
    if not amount.is_finite():
        raise PrecisionError(f"Amount must be finite, got {amount}")
    if amount < 0:
        raise PrecisionError(f"Amount cannot be negative: {amount}")

    try:
        scaled = amount.scaleb(decimals, context=_CONTEXT)
        if scaled.adjusted() > MAX_ADJUSTED_EXPONENT:
            raise PrecisionError("Amount too large")
        raw = int(scaled.to_integral_value(rounding=ROUND_DOWN, context=_CONTEXT))
    except DecimalException as e:
        raise PrecisionError(f"Multiplication overflow: {e}") from e

    if raw > MAX_UINT256:
        raise PrecisionError("Amount too large")
    return raw


def min_output_with_slippage(expected_output: Decimal, slippage_percentage: Decimal) -> Decimal:
    """Minimum acceptable output for a slippage tolerance given in percent.

    ``min_output_with_slippage(Decimal(100), Decimal("0.5")) == Decimal("99.5")``
    """
    slippage_percentage = check_slippage(slippage_percentage)

    try:
        with localcontext(_CONTEXT):
            multiplier = Decimal(1) - slippage_percentage / Decimal(100)
            return expected_output * multiplier
    except DecimalException as e:
        raise PrecisionError(f"Multiplication overflow: {e}") from e


def check_slippage(slippage_percentage: DecimalInput) -> Decimal:
    if not isinstance(slippage_percentage, Decimal):
        slippage_percentage = parse_decimal(slippage_percentage)
    if not slippage_percentage.is_finite() or not 0 <= slippage_percentage <= 100:
        raise PrecisionError("Slippage must be between 0 and 100")
    return slippage_percentage


def parse_decimal(value: DecimalInput) -> Decimal:
    """Parse user input into a finite Decimal without going through binary floats."""
    if isinstance(value, bool):
        raise InvalidAmountError(f"Invalid amount format: {value!r}")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, float):
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmountError(f"Invalid amount format: {value!r}") from None
    else:
        raise InvalidAmountError(f"Invalid amount format: {value!r}")

    if not parsed.is_finite():
        raise InvalidAmountError(f"Invalid amount format: {value!r}")
    if parsed and not MIN_ADJUSTED_EXPONENT <= parsed.adjusted() <= MAX_ADJUSTED_EXPONENT:
        raise InvalidAmountError(f"Amount out of range: {value!r}")
    return parsed


def divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """``numerator / denominator`` at full precision."""
    try:
        with localcontext(_CONTEXT):
            return numerator / denominator
    except DecimalException as e:
        raise PrecisionError(f"Division failed: {e!r}") from e


def multiply(left: Decimal, right: Decimal) -> Decimal:
    try:
        with localcontext(_CONTEXT):
            return left * right
    except DecimalException as e:
        raise PrecisionError(f"Multiplication overflow: {e!r}") from e


def format_decimal(value: Decimal) -> str:
    """Render a Decimal as a plain string: no exponent, no trailing zeros."""
    if value == 0:
        return "0"
    try:
        return format(value.normalize(_CONTEXT), "f")
    except DecimalException as e:
        raise PrecisionError(f"Cannot format amount: {e!r}") from e


def wei_to_gwei(wei: int) -> Decimal:
    return to_decimal(wei, 9)
