"""
Money Amount Module

Balances and transfer amounts are Decimal values held to two minor-unit
digits (cents). NEVER uses float for monetary values.
"""

from decimal import (
    Decimal, DecimalException, Inexact, InvalidOperation, ROUND_HALF_UP, Rounded,
    getcontext, localcontext
)
from typing import Union

from .errors import InvalidAmountError

# Set global decimal context for financial precision
getcontext().prec = 28

MINOR_UNIT_DIGITS = 2
MINOR_UNIT = Decimal('0.1') ** MINOR_UNIT_DIGITS
ZERO = Decimal('0.00')

AmountLike = Union[Decimal, int, str, float]


def quantize_amount(value: Decimal) -> Decimal:
    """Round a Decimal to minor units"""
    return value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def parse_amount(value: AmountLike) -> Decimal:
    """
    Convert user input into a Decimal amount in minor units

    Floats are converted through their string form so that 0.1 stays 0.1.
    Values with more precision than the minor unit are rejected rather than
    silently rounded.

    Args:
        value: Decimal, int, numeric string or float

    Returns:
        Decimal quantized to minor units

    Raises:
        InvalidAmountError: If the value is not a finite number with at most
            two decimal places
    """
    if isinstance(value, bool):
        raise InvalidAmountError(f"Invalid amount: {value!r}")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = _to_decimal(str(value), value)
    elif isinstance(value, str) and value.strip():
        amount = _to_decimal(value.strip(), value)
    else:
        raise InvalidAmountError(f"Invalid amount: {value!r}")

    if not amount.is_finite():
        raise InvalidAmountError(f"Amount must be a finite number: {value!r}")

    try:
        quantized = quantize_amount(amount)
    except InvalidOperation:
        raise InvalidAmountError(f"Amount {value!r} is out of range")
    if quantized != amount:
        raise InvalidAmountError(
            f"Amount {value!r} has more than {MINOR_UNIT_DIGITS} decimal places"
        )
    return quantized


def parse_positive_amount(value: AmountLike) -> Decimal:
    """Parse an amount that must be strictly greater than zero"""
    amount = parse_amount(value)
    if amount <= ZERO:
        raise InvalidAmountError(f"Amount must be positive, got {amount}")
    return amount


def add_amounts(balance: Decimal, delta: Decimal) -> Decimal:
    """
    Apply a signed delta to a balance without any rounding

    Args:
        balance: Current balance
        delta: Signed change in minor units precision

    Returns:
        New balance quantized to minor units

    Raises:
        InvalidAmountError: If the result needs more digits than the decimal
            context carries
    """
    with localcontext() as ctx:
        ctx.traps[Inexact] = True
        ctx.traps[Rounded] = True
        try:
            return quantize_amount(balance + delta)
        except DecimalException:
            raise InvalidAmountError(
                f"Balance {balance} cannot absorb {delta} without losing precision"
            )


def format_amount(value: Decimal) -> str:
    """Serialize an amount for storage and the wire"""
    return str(quantize_amount(value))


def _to_decimal(text: str, original: AmountLike) -> Decimal:
    try:
        return Decimal(text)
    except InvalidOperation:
        raise InvalidAmountError(f"Cannot convert {original!r} to an amount")
