# Overview: Mixed-unit quantities (whole + sub-unit, or plain scalar); pure, no I/O.

"""
Unit Quantities

A product's unit type decides how its quantities are written and reduced:

- CompoundUnit: "<major>-<minor>" text, e.g. "155-20" is 155 kg + 20 g for
  the kg-grams unit (1000 minor units per major unit).
- ScalarUnit: a plain integer or decimal, e.g. "12" bags or "2.5" meters.

Every quantity reduces to a single canonical integer, which is the only form
used for comparison, stock math and pricing:

- compound: major * minor_per_major + minor
- scalar:   value * 10 ** decimal_places

format_quantity() is the inverse of parse_quantity(): for every q produced by
parse, parse(format(q)) == q.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from enum import IntEnum
from typing import Union

from ..validation import ParseError, ValidationError


_COMPOUND_RE = re.compile(r"^(\d+)-(\d*)$")
_SCALAR_RE = re.compile(r"^\d+(?:\.(\d+))?$")

# Canonical quantities are stored in signed 64-bit columns
MAX_CANONICAL_QUANTITY = 2 ** 63 - 1


# =============================================================================
# UNIT TYPES
# =============================================================================

@dataclass(frozen=True)
class ScalarUnit:
    code: str
    label: str
    symbol: str
    decimal_places: int = 0

    @property
    def canonical_per_unit(self) -> int:
        return 10 ** self.decimal_places

    @property
    def is_compound(self) -> bool:
        return False


@dataclass(frozen=True)
class CompoundUnit:
    code: str
    label: str
    major_symbol: str
    minor_symbol: str
    minor_per_major: int

    def __post_init__(self) -> None:
        if self.minor_per_major < 2:
            raise ValueError("minor_per_major must be at least 2")

    @property
    def canonical_per_unit(self) -> int:
        return self.minor_per_major

    @property
    def is_compound(self) -> bool:
        return True


UnitType = Union[ScalarUnit, CompoundUnit]


KG_GRAMS = CompoundUnit("kg-grams", "Kilograms-Grams", "kg", "g", 1000)
KG_DECIMAL = ScalarUnit("kg", "Kilograms (decimal)", "kg", decimal_places=3)
PIECE = ScalarUnit("piece", "Pieces", "pcs")
BAG = ScalarUnit("bag", "Bags", "bags")
FOOT = ScalarUnit("foot", "Feet", "ft")
METER = ScalarUnit("meter", "Meters", "m", decimal_places=2)

UNIT_TYPES: dict[str, UnitType] = {
    unit.code: unit for unit in (KG_GRAMS, KG_DECIMAL, PIECE, BAG, FOOT, METER)
}


def get_unit_type(unit_type: Union[str, UnitType]) -> UnitType:
    """Resolve a unit type code (or pass a UnitType through)."""
    if isinstance(unit_type, (ScalarUnit, CompoundUnit)):
        return unit_type
    code = (unit_type or "").strip() if isinstance(unit_type, str) else ""
    unit = UNIT_TYPES.get(code)
    if unit is None:
        raise ValidationError(
            f"Unknown unit type: {unit_type!r}. Must be one of {sorted(UNIT_TYPES)}"
        )
    return unit


# =============================================================================
# QUANTITIES
# =============================================================================

@dataclass(frozen=True)
class ScalarQuantity:
    unit: ScalarUnit
    value: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.value, Decimal):
            if isinstance(self.value, bool) or not isinstance(self.value, int):
                raise TypeError("ScalarQuantity.value must be a Decimal or int")
            object.__setattr__(self, "value", Decimal(self.value))
        if self.value < 0:
            raise ValueError("Quantity cannot be negative")
        exponent = Decimal(1).scaleb(-self.unit.decimal_places)
        quantized = self.value.quantize(exponent)
        if quantized != self.value:
            raise ValueError(
                f"{self.unit.code} allows at most {self.unit.decimal_places} decimal places"
            )
        object.__setattr__(self, "value", quantized)


@dataclass(frozen=True)
class CompoundQuantity:
    unit: CompoundUnit
    major: int
    minor: int

    def __post_init__(self) -> None:
        if self.major < 0 or self.minor < 0:
            raise ValueError("Quantity cannot be negative")
        if self.minor >= self.unit.minor_per_major:
            raise ValueError(
                f"minor must be below {self.unit.minor_per_major} for {self.unit.code}"
            )


UnitQuantity = Union[ScalarQuantity, CompoundQuantity]


class Ordering(IntEnum):
    LESS = -1
    EQUAL = 0
    GREATER = 1


@dataclass(frozen=True)
class SubtractResult:
    quantity: UnitQuantity
    would_underflow: bool
    shortfall_canonical: int = 0


# =============================================================================
# OPERATIONS
# =============================================================================

def parse_quantity(text: Union[str, int], unit_type: Union[str, UnitType]) -> UnitQuantity:
    """
    Parse quantity text for a unit type.

    Raises:
        ParseError: Malformed text (missing, non-numeric or out-of-range
            minor component; negative values; too many decimal places).
    """
    unit = get_unit_type(unit_type)
    if isinstance(text, bool) or not isinstance(text, (str, int)):
        raise ParseError("Quantity must be text", text=repr(text), unit_type=unit.code)
    raw = str(text).strip()

    if isinstance(unit, CompoundUnit):
        match = _COMPOUND_RE.match(raw)
        if match is None:
            if raw.isdigit():
                raise ParseError(
                    f"Quantity {raw!r} is missing its {unit.minor_symbol} component "
                    f"(expected <{unit.major_symbol}>-<{unit.minor_symbol}>)",
                    text=raw, unit_type=unit.code,
                )
            raise ParseError(
                f"Quantity {raw!r} is not in <{unit.major_symbol}>-<{unit.minor_symbol}> form",
                text=raw, unit_type=unit.code,
            )
        major_text, minor_text = match.groups()
        if not minor_text:
            raise ParseError(
                f"Quantity {raw!r} is missing its {unit.minor_symbol} component",
                text=raw, unit_type=unit.code,
            )
        minor = _whole_number(minor_text, raw, unit)
        if minor >= unit.minor_per_major:
            raise ParseError(
                f"{unit.minor_symbol} component {minor} must be below {unit.minor_per_major}",
                text=raw, unit_type=unit.code,
            )
        major = _whole_number(major_text, raw, unit)
        canonical = major * unit.minor_per_major + minor
        _check_storable(canonical, raw, unit)
        return CompoundQuantity(unit, major, minor)

    match = _SCALAR_RE.match(raw)
    if match is None:
        raise ParseError(f"Quantity {raw!r} is not a non-negative number", text=raw, unit_type=unit.code)
    fraction_digits = (match.group(1) or "").rstrip("0")
    if len(fraction_digits) > unit.decimal_places:
        raise ParseError(
            f"{unit.label} allow at most {unit.decimal_places} decimal places",
            text=raw, unit_type=unit.code,
        )
    # Integer arithmetic only; Decimal would round past 28 digits
    canonical = _whole_number(raw.split(".", 1)[0], raw, unit) * unit.canonical_per_unit
    if fraction_digits:
        canonical += int(fraction_digits.ljust(unit.decimal_places, "0"))
    _check_storable(canonical, raw, unit)
    return from_canonical(canonical, unit)


def _whole_number(digits: str, raw: str, unit: UnitType) -> int:
    # 20 or more digits is already above MAX_CANONICAL_QUANTITY
    if len(digits.lstrip("0")) > 19:
        raise ParseError(
            f"Quantity {raw!r} is larger than the largest storable quantity",
            text=raw, unit_type=unit.code,
        )
    return int(digits)


def _check_storable(canonical: int, raw: str, unit: UnitType) -> None:
    if canonical > MAX_CANONICAL_QUANTITY:
        raise ParseError(
            f"Quantity {raw!r} is larger than the largest storable quantity",
            text=raw, unit_type=unit.code,
        )


def to_canonical(quantity: UnitQuantity) -> int:
    if isinstance(quantity, CompoundQuantity):
        return quantity.major * quantity.unit.minor_per_major + quantity.minor
    return int(quantity.value.scaleb(quantity.unit.decimal_places))


def from_canonical(canonical: int, unit_type: Union[str, UnitType]) -> UnitQuantity:
    unit = get_unit_type(unit_type)
    if isinstance(canonical, bool) or not isinstance(canonical, int):
        raise TypeError("canonical quantity must be an int")
    if canonical < 0:
        raise ValueError("canonical quantity cannot be negative")
    if isinstance(unit, CompoundUnit):
        major, minor = divmod(canonical, unit.minor_per_major)
        return CompoundQuantity(unit, major, minor)
    return ScalarQuantity(unit, Decimal(canonical).scaleb(-unit.decimal_places))


def zero(unit_type: Union[str, UnitType]) -> UnitQuantity:
    return from_canonical(0, unit_type)


def format_quantity(quantity: UnitQuantity) -> str:
    """Canonical text form; "0-0" for compound zero, scalars without trailing zeros."""
    if isinstance(quantity, CompoundQuantity):
        return f"{quantity.major}-{quantity.minor}"
    places = quantity.unit.decimal_places
    whole, fraction = divmod(to_canonical(quantity), 10 ** places)
    if places == 0 or fraction == 0:
        return str(whole)
    return f"{whole}.{str(fraction).zfill(places).rstrip('0')}"


def display_quantity(quantity: UnitQuantity) -> str:
    """Human-readable form, e.g. "155kg 20g" or "12 bags"."""
    if isinstance(quantity, CompoundQuantity):
        unit = quantity.unit
        if quantity.minor:
            return f"{quantity.major}{unit.major_symbol} {quantity.minor}{unit.minor_symbol}"
        return f"{quantity.major}{unit.major_symbol}"
    return f"{format_quantity(quantity)} {quantity.unit.symbol}"


def _same_unit(a: UnitQuantity, b: UnitQuantity) -> None:
    if a.unit.code != b.unit.code:
        raise TypeError(f"Cannot combine {a.unit.code} with {b.unit.code} quantities")


def compare(a: UnitQuantity, b: UnitQuantity) -> Ordering:
    _same_unit(a, b)
    left, right = to_canonical(a), to_canonical(b)
    if left < right:
        return Ordering.LESS
    if left > right:
        return Ordering.GREATER
    return Ordering.EQUAL


def add(a: UnitQuantity, b: UnitQuantity) -> UnitQuantity:
    _same_unit(a, b)
    total = to_canonical(a) + to_canonical(b)
    if total > MAX_CANONICAL_QUANTITY:
        raise ValidationError(f"{a.unit.label} total is larger than the largest storable quantity")
    return from_canonical(total, a.unit)


def subtract(a: UnitQuantity, b: UnitQuantity) -> SubtractResult:
    """a - b, clamped at zero; would_underflow reports the clamp instead of wrapping."""
    _same_unit(a, b)
    difference = to_canonical(a) - to_canonical(b)
    if difference < 0:
        return SubtractResult(zero(a.unit), True, -difference)
    return SubtractResult(from_canonical(difference, a.unit), False, 0)
