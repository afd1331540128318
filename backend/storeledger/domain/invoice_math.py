# Overview: Invoice totals and remaining balance from lines, discount, returns and payments.

"""
Invoice Calculator

    subtotal         = sum(line_total(item))        each line rounded first
    discount_amount  = round(subtotal * discount_percent / 100)
    grand_total      = subtotal - discount_amount
    effective_total  = grand_total - total_returned
    remaining        = effective_total - payment_amount

Line totals are rounded to cents individually and then summed. The same
policy prices return lines, so an item returned in full credits exactly what
it was billed at.

The calculator never clamps: over-payment shows up as a negative remaining
balance (customer credit) so diagnostics can see it. Input validation lives
in validate_discount_percent() and validate_payment_amount(), which callers
run before persisting anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import Iterable, Union

from ..validation import ValidationError, require_decimal
from .money import Money, sum_money
from .units import UnitQuantity, to_canonical


HUNDRED = Decimal(100)


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERPAID = "OVERPAID"


@dataclass(frozen=True)
class PricedLine:
    quantity: UnitQuantity
    unit_price: Money

    @property
    def line_total(self) -> Money:
        return line_total(self.quantity, self.unit_price)


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Money
    discount_percent: Decimal
    discount_amount: Money
    grand_total: Money
    total_returned: Money
    effective_total: Money
    payment_amount: Money
    remaining_balance: Money

    @property
    def payment_status(self) -> PaymentStatus:
        return classify_payment(self)

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal.cents,
            "discount_percent": str(self.discount_percent),
            "discount_amount_cents": self.discount_amount.cents,
            "grand_total_cents": self.grand_total.cents,
            "total_returned_cents": self.total_returned.cents,
            "effective_total_cents": self.effective_total.cents,
            "payment_amount_cents": self.payment_amount.cents,
            "remaining_balance_cents": self.remaining_balance.cents,
            "payment_status": self.payment_status.value,
        }


def line_total(quantity: UnitQuantity, unit_price: Money) -> Money:
    """
    Price a quantity: (canonical / canonical_per_unit) * unit_price.

    For compound units this is (major + minor / minor_per_major) * price,
    computed exactly and rounded once, half-up, at the line.
    """
    return unit_price.multiply(Fraction(to_canonical(quantity), quantity.unit.canonical_per_unit))


def validate_discount_percent(value: Union[Decimal, int, str, None]) -> Decimal:
    if value is None:
        return Decimal(0)
    percent = require_decimal(value, "discount_percent")
    if percent < 0 or percent > HUNDRED:
        raise ValidationError(
            "discount_percent must be between 0 and 100",
            details={"discount_percent": str(value)},
        )
    return percent


def discount_amount(subtotal: Money, discount_percent: Decimal) -> Money:
    return subtotal.multiply(Fraction(discount_percent) / 100)


def calculate_totals(
    line_totals: Iterable[Money],
    discount_percent: Union[Decimal, int, str, None],
    total_returned: Money,
    payment_amount: Money,
) -> InvoiceTotals:
    percent = validate_discount_percent(discount_percent)
    subtotal = sum_money(line_totals)
    discount = discount_amount(subtotal, percent)
    grand_total = subtotal - discount
    effective_total = grand_total - total_returned
    remaining = effective_total - payment_amount
    return InvoiceTotals(
        subtotal=subtotal,
        discount_percent=percent,
        discount_amount=discount,
        grand_total=grand_total,
        total_returned=total_returned,
        effective_total=effective_total,
        payment_amount=payment_amount,
        remaining_balance=remaining,
    )


def calculate_invoice(
    lines: Iterable[PricedLine],
    discount_percent: Union[Decimal, int, str, None] = None,
    returned_lines: Iterable[PricedLine] = (),
    payment_amount: Money = Money(0),
) -> InvoiceTotals:
    """Convenience entry point that prices sale and return lines first."""
    return calculate_totals(
        [line.line_total for line in lines],
        discount_percent,
        returned_total(returned_lines),
        payment_amount,
    )


def returned_total(returned_lines: Iterable[PricedLine]) -> Money:
    return sum_money(line.line_total for line in returned_lines)


def classify_payment(totals: InvoiceTotals) -> PaymentStatus:
    remaining = totals.remaining_balance
    if remaining.is_negative:
        return PaymentStatus.OVERPAID
    if remaining.cents == 0:
        return PaymentStatus.PAID
    if totals.payment_amount.cents <= 0:
        return PaymentStatus.UNPAID
    return PaymentStatus.PARTIAL


def validate_payment_amount(amount: Money, totals: InvoiceTotals) -> Money:
    """
    Reject a payment before it is recorded.

    Raises:
        ValidationError: amount is not positive, or exceeds the balance
            currently outstanding on the invoice.
    """
    if not amount.is_positive:
        raise ValidationError("Payment amount must be positive", details={"amount_cents": amount.cents})
    if amount > totals.remaining_balance:
        raise ValidationError(
            "Payment amount exceeds the remaining balance",
            details={
                "amount_cents": amount.cents,
                "remaining_balance_cents": totals.remaining_balance.cents,
            },
        )
    return amount
