# Overview: Fixed-point currency value; integer minor units with half-up rounding.

"""
Money

All amounts are held as an integer count of minor units (cents) with a fixed
scale of 2. Every arithmetic result is re-quantized to that scale before it
can be observed, so long add/subtract chains never drift.

INVARIANTS:
- Binary floats are rejected at every entry point.
- Rounding is ROUND_HALF_UP, applied once per operation.
- Negative values are legal (a negative remaining balance is customer credit).
- Equality and ordering compare the integer representation only.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from fractions import Fraction
from typing import Iterable, Union

SCALE = 2
MINOR_PER_UNIT = 10 ** SCALE
CENT = Decimal("0.01")

Scalar = Union[int, Decimal, Fraction]


def div_round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero."""
    if denominator == 0:
        raise ZeroDivisionError("denominator must be non-zero")
    if denominator < 0:
        numerator, denominator = -numerator, -denominator
    sign = -1 if numerator < 0 else 1
    quotient, remainder = divmod(abs(numerator), denominator)
    if remainder * 2 >= denominator:
        quotient += 1
    return sign * quotient


def _as_fraction(value: Scalar) -> Fraction:
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError("Money arithmetic does not accept floats or booleans")
    if isinstance(value, (int, Fraction)):
        return Fraction(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Non-finite scalar: {value}")
        return Fraction(value)
    raise TypeError(f"Unsupported scalar type: {type(value).__name__}")


@dataclass(frozen=True, order=True)
class Money:
    cents: int

    def __post_init__(self) -> None:
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError("Money.cents must be an int")

    # --- constructors -----------------------------------------------------

    @classmethod
    def zero(cls) -> "Money":
        return cls(0)

    @classmethod
    def from_decimal(cls, value: Union[Decimal, int, str]) -> "Money":
        """Quantize a decimal amount (in currency units) to cents, half-up."""
        if isinstance(value, bool) or isinstance(value, float):
            raise TypeError("Money does not accept floats or booleans")
        try:
            dec = Decimal(value) if not isinstance(value, Decimal) else value
        except InvalidOperation as exc:
            raise ValueError(f"Invalid money amount: {value!r}") from exc
        if not dec.is_finite():
            raise ValueError(f"Invalid money amount: {value!r}")
        quantized = dec.quantize(CENT, rounding=ROUND_HALF_UP)
        return cls(int(quantized * MINOR_PER_UNIT))

    @classmethod
    def parse(cls, text: str) -> "Money":
        """Parse a plain decimal string such as "1250.5" or "-3"."""
        if not isinstance(text, str):
            raise TypeError("Money.parse expects a string")
        cleaned = text.strip().replace(",", "")
        if not cleaned:
            raise ValueError("Empty money amount")
        return cls.from_decimal(cleaned)

    # --- arithmetic -------------------------------------------------------

    def add(self, other: "Money") -> "Money":
        return Money(self.cents + _require_money(other).cents)

    def subtract(self, other: "Money") -> "Money":
        return Money(self.cents - _require_money(other).cents)

    def multiply(self, scalar: Scalar) -> "Money":
        frac = _as_fraction(scalar)
        return Money(div_round_half_up(self.cents * frac.numerator, frac.denominator))

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __mul__(self, scalar: Scalar) -> "Money":
        if isinstance(scalar, Money):
            return NotImplemented
        return self.multiply(scalar)

    __rmul__ = __mul__

    def __neg__(self) -> "Money":
        return Money(-self.cents)

    def __abs__(self) -> "Money":
        return Money(abs(self.cents))

    def __bool__(self) -> bool:
        return self.cents != 0

    # --- inspection -------------------------------------------------------

    @property
    def is_negative(self) -> bool:
        return self.cents < 0

    @property
    def is_positive(self) -> bool:
        return self.cents > 0

    def is_within(self, other: "Money", tolerance_cents: int = 0) -> bool:
        return abs(self.cents - _require_money(other).cents) <= tolerance_cents

    def to_decimal(self) -> Decimal:
        return (Decimal(self.cents) / MINOR_PER_UNIT).quantize(CENT)

    def format(self, symbol: str = "") -> str:
        sign = "-" if self.cents < 0 else ""
        units, minor = divmod(abs(self.cents), MINOR_PER_UNIT)
        body = f"{units:,}.{minor:0{SCALE}d}"
        if symbol:
            return f"{sign}{symbol} {body}"
        return f"{sign}{body}"

    def __str__(self) -> str:
        return self.format()


def _require_money(value: object) -> Money:
    if not isinstance(value, Money):
        raise TypeError(f"Expected Money, got {type(value).__name__}")
    return value


def add(a: Money, b: Money) -> Money:
    return a.add(b)


def subtract(a: Money, b: Money) -> Money:
    return a.subtract(b)


def multiply(a: Money, scalar: Scalar) -> Money:
    return a.multiply(scalar)


def round_money(value: Union[Money, Decimal, Fraction, int]) -> Money:
    """
    Quantize an intermediate currency-unit value to Money.

    Money inputs are already at scale and come back unchanged; Decimal and
    Fraction inputs are interpreted as currency units; ints as whole units.
    """
    if isinstance(value, Money):
        return value
    frac = _as_fraction(value)
    return Money(div_round_half_up(frac.numerator * MINOR_PER_UNIT, frac.denominator))


def sum_money(values: Iterable[Money]) -> Money:
    total = 0
    for value in values:
        total += _require_money(value).cents
    return Money(total)
