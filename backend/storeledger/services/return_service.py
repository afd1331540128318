# Overview: Service-layer operations for returns; validation against sold quantity, restock and ledger credit.

"""
Return Service

WHY: Customers bring back part of what they bought. The return has to put
the goods back on the shelf, lower what the invoice is worth and credit the
customer, in one transaction.

DESIGN PRINCIPLES:
- Returns reference the original invoice item, so the credited price is the
  price the customer was charged, not today's rate.
- Returned quantity per item can never exceed sold minus already returned.
- A return line is priced with the same line_total() rounding as the sale
  line, applied to the cumulative returned quantity, so returning an item in
  full (at once or in parts) credits exactly what it was billed at.
"""

from __future__ import annotations

from collections import OrderedDict

from sqlalchemy import func

from ..extensions import db
from ..models import InvoiceItem, Return, ReturnItem
from ..domain.invoice_math import line_total
from ..domain.ledger_math import EntryType, REF_RETURN
from ..domain.money import Money, sum_money
from ..domain.units import from_canonical, format_quantity, parse_quantity, to_canonical
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, optional_text, require_int
from .concurrency import run_with_retry
from .events import INVOICE_RETURN_APPLIED, publish_events
from .inventory_service import REASON_RETURN, get_product, restock
from .invoice_service import lock_invoice_for_edit, get_invoice, returned_canonical
from .ledger_service import append_ledger_entry
from .reconciliation_service import INVOICE_DRAFT, finish_mutation


def _normalize_lines(items) -> "OrderedDict[int, list]":
    """Group requested lines by invoice item, keeping request order."""
    if not isinstance(items, list) or not items:
        raise ValidationError("A return needs at least one item")
    grouped: "OrderedDict[int, list]" = OrderedDict()
    for raw in items:
        if not isinstance(raw, dict) or "quantity" not in raw:
            raise ValidationError("Each return item needs invoice_item_id and quantity")
        item_id = require_int(raw.get("invoice_item_id"), "invoice_item_id")
        grouped.setdefault(item_id, []).append(raw["quantity"])
    return grouped


def _returned_at_price(item_id: int, price_cents: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(ReturnItem.return_quantity_canonical), 0))
        .filter(ReturnItem.invoice_item_id == item_id, ReturnItem.unit_price_cents == price_cents)
        .scalar()
    )
    return int(total or 0)


def _return_credit(item: InvoiceItem, quantity, price: Money) -> Money:
    """
    Credit for returning quantity of an item.

    The cumulative returned quantity is priced before and after this return
    and the difference is credited, so partial returns add up to what one
    return of the same total would credit and never pass the line total.
    """
    before = _returned_at_price(item.id, price.cents)
    after = before + to_canonical(quantity)
    return (
        line_total(from_canonical(after, item.unit_type), price)
        - line_total(from_canonical(before, item.unit_type), price)
    )


def record_return(invoice_id: int, items: list, *, reason: str | None = None) -> Return:
    """
    Record goods returned against a submitted invoice.

    Args:
        invoice_id: Invoice the goods were sold on
        items: [{"invoice_item_id": 7, "quantity": "2-0"}, ...]
        reason: Free text (optional)

    Raises:
        ValidationError: draft invoice, malformed or zero quantity, or more
            than is left to return on an item
        NotFoundError: invoice or item missing
    """
    grouped = _normalize_lines(items)
    reason = optional_text(reason, "reason")

    def _op():
        invoice = lock_invoice_for_edit(invoice_id)
        if invoice.status == INVOICE_DRAFT:
            raise ValidationError("Cannot record a return against a draft invoice")

        planned = []
        for item_id, quantities in grouped.items():
            item = db.session.query(InvoiceItem).filter_by(id=item_id, invoice_id=invoice.id).first()
            if item is None:
                raise NotFoundError(f"Item {item_id} not found on invoice {invoice.id}")

            requested = 0
            for text in quantities:
                canonical = to_canonical(parse_quantity(text, item.unit_type))
                if canonical == 0:
                    raise ValidationError("Return quantity must be greater than zero", details={"invoice_item_id": item_id})
                requested += canonical

            already = returned_canonical(item.id)
            returnable = item.quantity_canonical - already
            if requested > returnable:
                raise ValidationError(
                    f"Cannot return {format_quantity(from_canonical(requested, item.unit_type))} of item {item.id}; "
                    f"only {format_quantity(from_canonical(returnable, item.unit_type))} left to return",
                    details={
                        "invoice_item_id": item.id,
                        "requested_canonical": requested,
                        "returnable_canonical": returnable,
                    },
                )
            planned.append((item, from_canonical(requested, item.unit_type)))

        ret = Return(
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            reason=reason,
            total_cents=0,
            occurred_at=utcnow(),
        )
        db.session.add(ret)
        db.session.flush()

        totals = []
        for item, quantity in planned:
            price = Money(item.unit_price_cents)
            amount = _return_credit(item, quantity, price)
            totals.append(amount)
            db.session.add(ReturnItem(
                return_id=ret.id,
                invoice_item_id=item.id,
                product_id=item.product_id,
                unit_type=item.unit_type,
                return_quantity_canonical=to_canonical(quantity),
                unit_price_cents=price.cents,
                line_total_cents=amount.cents,
            ))

        for item, quantity in sorted(planned, key=lambda p: p[0].product_id):
            product = get_product(item.product_id, lock=True)
            restock(
                product, quantity,
                reason=REASON_RETURN,
                invoice_id=invoice.id,
                invoice_item_id=item.id,
                return_id=ret.id,
                note=f"Return {ret.id} on {invoice.bill_number}",
            )

        ret.total_cents = sum_money(totals).cents
        db.session.flush()

        if ret.total_cents > 0:
            append_ledger_entry(
                customer_id=invoice.customer_id,
                entry_type=EntryType.CREDIT,
                amount_cents=ret.total_cents,
                description=f"Return {ret.id} on {invoice.bill_number}",
                reference_type=REF_RETURN,
                reference_id=ret.id,
                invoice_id=invoice.id,
            )

        events = finish_mutation(
            event_name=INVOICE_RETURN_APPLIED, invoice=invoice, return_id=ret.id,
        )
        db.session.commit()
        return ret, events

    ret, events = run_with_retry(_op)
    publish_events(events)
    return ret


def list_returns(invoice_id: int) -> list[Return]:
    get_invoice(invoice_id)
    return db.session.query(Return).filter_by(invoice_id=invoice_id).order_by(Return.id.asc()).all()
