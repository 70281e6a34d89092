"""
Money Module

Fixed-point currency arithmetic. Amounts are integer counts of minor units
(paise); fractional results are rounded with ROUND_HALF_UP through Decimal.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR, InvalidOperation
from dataclasses import dataclass
from typing import Union
import re

MINOR_UNITS_PER_MAJOR = 100
CURRENCY_SYMBOL = "₹"

Number = Union[int, Decimal]


@dataclass(frozen=True, order=True)
class Money:
    """
    Immutable amount of money in minor units.
    All ledger amounts MUST use this class.
    """
    minor: int

    def __post_init__(self):
        if isinstance(self.minor, bool) or not isinstance(self.minor, int):
            raise TypeError(f"Money requires integer minor units, got {type(self.minor).__name__}")

    @classmethod
    def zero(cls) -> 'Money':
        return cls(0)

    @classmethod
    def from_major(cls, value: Union[str, int, Decimal]) -> 'Money':
        """
        Build Money from a major-unit value such as "1,250.50" or "₹500"

        Args:
            value: Major-unit amount as text, int or Decimal

        Returns:
            Money rounded half-up to the nearest minor unit

        Raises:
            ValueError: If the value cannot be parsed
        """
        if isinstance(value, str):
            value = decimal_from_string(value)
        elif isinstance(value, int):
            value = Decimal(value)
        elif not isinstance(value, Decimal):
            raise ValueError(f"Cannot build Money from {type(value).__name__}")
        minor = (value * MINOR_UNITS_PER_MAJOR).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
        return cls(int(minor))

    @property
    def major(self) -> Decimal:
        return Decimal(self.minor) / MINOR_UNITS_PER_MAJOR

    def __add__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.minor + other.minor)

    def __radd__(self, other) -> 'Money':
        # Lets sum() start from the int 0
        if other == 0:
            return self
        return NotImplemented

    def __sub__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.minor - other.minor)

    def __mul__(self, multiplier: int) -> 'Money':
        if isinstance(multiplier, bool) or not isinstance(multiplier, int):
            raise TypeError("Money can only be multiplied by an integer; use percent_of or prorate")
        return Money(self.minor * multiplier)

    __rmul__ = __mul__

    def __neg__(self) -> 'Money':
        return Money(-self.minor)

    def __abs__(self) -> 'Money':
        return Money(abs(self.minor))

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.minor == 0

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.minor > 0

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.minor < 0

    def to_string(self) -> str:
        """Format for display"""
        sign = "-" if self.minor < 0 else ""
        return f"{sign}{CURRENCY_SYMBOL}{abs(self.major):,.2f}"

    def __str__(self) -> str:
        return self.to_string()


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer ceiling division for a positive denominator"""
    if denominator <= 0:
        raise ValueError("Denominator must be positive")
    return -(-numerator // denominator)


def round_half_up(value: Decimal) -> int:
    """Round a Decimal to the nearest integer, halves away from zero"""
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def percent_of(amount: Money, percent: Number) -> Money:
    """Return percent% of amount, rounded half-up to a minor unit"""
    return Money(round_half_up(Decimal(amount.minor) * _as_decimal(percent) / Decimal(100)))


def floor_percent_of(amount: Money, percent: Number) -> Money:
    """Return percent% of amount, rounded down to a minor unit"""
    value = Decimal(amount.minor) * _as_decimal(percent) / Decimal(100)
    return Money(int(value.quantize(Decimal('1'), rounding=ROUND_FLOOR)))


def prorate(amount: Money, numerator: Money, denominator: Money) -> Money:
    """Return amount * numerator / denominator, rounded half-up"""
    if not denominator.is_positive():
        raise ValueError("Cannot prorate against a non-positive denominator")
    value = Decimal(amount.minor) * Decimal(numerator.minor) / Decimal(denominator.minor)
    return Money(round_half_up(value))


def _as_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return Decimal(value)
    if isinstance(value, str):
        return Decimal(value)
    raise TypeError(f"Expected int or Decimal, got {type(value).__name__}")


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Currency symbols, spaces and grouping commas (Indian or western) go
    clean_value = re.sub(r'[^\d.\-+]', '', value.strip())
    if not clean_value:
        raise ValueError(f"Cannot convert '{value}' to Decimal")

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")
