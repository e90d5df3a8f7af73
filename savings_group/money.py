"""
Money Helpers Module

Single-currency Decimal handling for savings and loan amounts. NEVER uses
float for monetary values; every stored amount is quantized to cents.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Union

from .errors import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28

CURRENCY_CODE = "UGX"
CENT = Decimal('0.01')
ZERO = Decimal('0.00')
MONEY_EPSILON = Decimal('0.01')  # balances at or below this count as paid off

Amount = Union[Decimal, int, str]


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert user input to Decimal

    Accepts Decimal, int and numeric strings (thousands separators allowed).
    Floats are converted through their string form.

    Raises:
        InvalidAmount: if the value is missing, malformed or not finite
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"Invalid {field_name}: {value!r}")

    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).replace(',', '').strip()
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise InvalidAmount(f"Invalid {field_name}: {value!r}")

    if not result.is_finite():
        raise InvalidAmount(f"Invalid {field_name}: {value!r}")
    return result


def quantize(value: Amount) -> Decimal:
    """
    Round to cents, half-up

    Raises:
        InvalidAmount: if the value has too many digits to hold in cents
    """
    amount = to_decimal(value)
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount(f"Amount out of range: {value!r}")


def require_positive(value: Any, field_name: str = "amount") -> Decimal:
    """Parse and require a strictly positive amount"""
    amount = to_decimal(value, field_name)
    if amount <= 0:
        raise InvalidAmount(f"{field_name.capitalize()} must be positive, got {amount}")
    return amount


def require_non_negative(value: Any, field_name: str = "amount") -> Decimal:
    """Parse and require an amount that is zero or more"""
    amount = to_decimal(value, field_name)
    if amount < 0:
        raise InvalidAmount(f"{field_name.capitalize()} cannot be negative, got {amount}")
    return amount


def is_settled(balance: Decimal, epsilon: Decimal = MONEY_EPSILON) -> bool:
    """Check if an outstanding balance is small enough to count as paid off"""
    return balance <= epsilon


def format_money(amount: Amount) -> str:
    """Format for display, e.g. 'UGX 1,250.00'"""
    return f"{CURRENCY_CODE} {quantize(amount):,.2f}"
