# Overview: Service-layer operations for invoices; creation, submission, item edits and discount changes.

"""
Invoice Service

WHY: Invoices are edited after the fact (wrong quantity, forgotten item,
late discount). Each edit has to move stock, the invoice's caches and the
customer's ledger together or not at all.

DESIGN PRINCIPLES:
- Every entry point is one unit of work: lock, reload, change source
  records, then finish_mutation() recomputes and posts. Nothing here
  touches a cached total directly.
- Stock moves only once an invoice is submitted. Draft edits are free.
- Lock order is customer, invoice, then products by id.
- Item prices default to the product's rate at the time the line is added
  and are frozen on the line afterwards.
"""

from __future__ import annotations

import uuid

from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, InvoiceItem, ReturnItem
from ..domain.invoice_math import line_total, validate_discount_percent
from ..domain.money import Money
from ..domain.units import from_canonical, format_quantity, to_canonical
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, optional_text, require_cents, require_int
from .concurrency import lock_for_update, run_with_retry
from .customer_service import get_customer
from .events import (
    INVOICE_CREATED,
    INVOICE_DISCOUNT_CHANGED,
    INVOICE_ITEM_ADDED,
    INVOICE_ITEM_REMOVED,
    INVOICE_ITEM_UPDATED,
    INVOICE_SUBMITTED,
    publish_events,
)
from .inventory_service import (
    REASON_INVOICE,
    REASON_INVOICE_EDIT,
    get_product,
    parse_product_quantity,
    restock,
    stock_low_event,
    take_stock,
)
from .reconciliation_service import (
    INVOICE_DRAFT,
    INVOICE_SUBMITTED as STATUS_SUBMITTED,
    finish_mutation,
    invoice_states,
)


def get_invoice(invoice_id: int, *, lock: bool = False) -> Invoice:
    query = db.session.query(Invoice).filter_by(id=invoice_id)
    if lock:
        query = lock_for_update(query)
    invoice = query.first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def lock_invoice_for_edit(invoice_id: int) -> Invoice:
    """Lock customer then invoice, in that order."""
    invoice = get_invoice(invoice_id)
    get_customer(invoice.customer_id, lock=True)
    return get_invoice(invoice_id, lock=True)


def _get_item(invoice: Invoice, item_id: int) -> InvoiceItem:
    item = db.session.query(InvoiceItem).filter_by(id=item_id, invoice_id=invoice.id).first()
    if item is None:
        raise NotFoundError(f"Item {item_id} not found on invoice {invoice.id}")
    return item


def is_posted(invoice: Invoice) -> bool:
    return invoice.status != INVOICE_DRAFT


def returned_canonical(item_id: int) -> int:
    """Quantity of an invoice item already returned, in canonical units."""
    total = (
        db.session.query(func.coalesce(func.sum(ReturnItem.return_quantity_canonical), 0))
        .filter(ReturnItem.invoice_item_id == item_id)
        .scalar()
    )
    return int(total or 0)


def discount_to_bps(value) -> int:
    """
    Convert a discount percent to basis points.

    Raises:
        ValidationError: outside 0..100 or more than two decimal places
    """
    percent = validate_discount_percent(value)
    bps = percent * 100
    if bps != bps.to_integral_value():
        raise ValidationError(
            "discount_percent allows at most 2 decimal places",
            details={"discount_percent": str(value)},
        )
    return int(bps)


def _normalize_item(raw) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")
    if "quantity" not in raw:
        raise ValidationError("Each item needs a quantity")
    price = raw.get("unit_price_cents")
    return {
        "product_id": require_int(raw.get("product_id"), "product_id"),
        "quantity": raw["quantity"],
        "unit_price_cents": None if price is None else require_cents(price, "unit_price_cents", allow_zero=True),
    }


def _build_item(invoice: Invoice, product, quantity_text, unit_price_cents) -> InvoiceItem:
    quantity = parse_product_quantity(product, quantity_text)
    if to_canonical(quantity) == 0:
        raise ValidationError(f"Quantity for {product.name} must be greater than zero")
    price = Money(product.rate_per_unit_cents if unit_price_cents is None else unit_price_cents)
    item = InvoiceItem(
        invoice_id=invoice.id,
        product_id=product.id,
        unit_type=product.unit_type,
        quantity_canonical=to_canonical(quantity),
        unit_price_cents=price.cents,
        line_total_cents=line_total(quantity, price).cents,
    )
    db.session.add(item)
    return item


def _take_item_stock(invoice: Invoice, items: list, *, reason: str, force: bool) -> list:
    """Take stock for items, locking products in id order. Returns stock events."""
    events = []
    for item in sorted(items, key=lambda i: (i.product_id, i.id or 0)):
        product = get_product(item.product_id, lock=True)
        _, evaluation = take_stock(
            product,
            item.quantity,
            reason=reason,
            force=force,
            invoice_id=invoice.id,
            invoice_item_id=item.id,
            note=f"Invoice {invoice.bill_number}",
        )
        event = stock_low_event(product, evaluation)
        if event is not None:
            events.append(event)
    return events


def _submit_locked(invoice: Invoice, *, force: bool) -> list:
    items = db.session.query(InvoiceItem).filter_by(invoice_id=invoice.id).all()
    if not items:
        raise ValidationError("Cannot submit an invoice with no items")
    stock_events = _take_item_stock(invoice, items, reason=REASON_INVOICE, force=force)
    invoice.status = STATUS_SUBMITTED
    invoice.submitted_at = utcnow()
    return stock_events


# =============================================================================
# INVOICE CREATION
# =============================================================================

def create_invoice(
    customer_id: int,
    items: list,
    *,
    discount_percent=None,
    notes: str | None = None,
    submit: bool = True,
    force: bool = False,
) -> Invoice:
    """
    Create an invoice for a customer.

    Args:
        customer_id: Customer being billed
        items: [{"product_id": 1, "quantity": "10-500", "unit_price_cents": 4500}, ...]
            unit_price_cents is optional and defaults to the product rate
        discount_percent: 0..100, up to two decimal places
        submit: Submit straight away (takes stock and posts to the ledger)
        force: Push through INSUFFICIENT stock

    Raises:
        ValidationError: bad input; InsufficientStockError when stock is short
        NotFoundError: customer or product missing
    """
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    normalized = [_normalize_item(raw) for raw in items]
    bps = discount_to_bps(discount_percent)
    notes = optional_text(notes, "notes")

    def _op():
        get_customer(customer_id, lock=True)

        invoice = Invoice(
            bill_number=f"TMP-{uuid.uuid4().hex[:20]}",
            customer_id=customer_id,
            status=INVOICE_DRAFT,
            discount_bps=bps,
            notes=notes,
        )
        db.session.add(invoice)
        db.session.flush()
        invoice.bill_number = f"INV-{invoice.id:06d}"

        for raw in normalized:
            product = get_product(raw["product_id"], require_active=True)
            _build_item(invoice, product, raw["quantity"], raw["unit_price_cents"])
        db.session.flush()

        names = [INVOICE_CREATED]
        stock_events = []
        if submit:
            stock_events = _submit_locked(invoice, force=force)
            names.append(INVOICE_SUBMITTED)

        events = finish_mutation(event_name=tuple(names), invoice=invoice, extra_events=stock_events)
        db.session.commit()
        return invoice, events

    invoice, events = run_with_retry(_op)
    publish_events(events)
    return invoice


def submit_invoice(invoice_id: int, *, force: bool = False) -> Invoice:
    """Submit a draft: take stock and post the grand total to the ledger."""
    def _op():
        invoice = lock_invoice_for_edit(invoice_id)
        if invoice.status != INVOICE_DRAFT:
            raise ValidationError(f"Invoice {invoice.bill_number} is already {invoice.status}")
        stock_events = _submit_locked(invoice, force=force)
        events = finish_mutation(event_name=INVOICE_SUBMITTED, invoice=invoice, extra_events=stock_events)
        db.session.commit()
        return invoice, events

    invoice, events = run_with_retry(_op)
    publish_events(events)
    return invoice


# =============================================================================
# ITEM EDITS
# =============================================================================

def add_item(
    invoice_id: int,
    *,
    product_id,
    quantity,
    unit_price_cents=None,
    force: bool = False,
) -> InvoiceItem:
    raw = _normalize_item({"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price_cents})

    def _op():
        invoice = lock_invoice_for_edit(invoice_id)
        product = get_product(raw["product_id"], require_active=True)
        item = _build_item(invoice, product, raw["quantity"], raw["unit_price_cents"])
        db.session.flush()

        stock_events = []
        if is_posted(invoice):
            stock_events = _take_item_stock(invoice, [item], reason=REASON_INVOICE_EDIT, force=force)

        events = finish_mutation(
            event_name=INVOICE_ITEM_ADDED, invoice=invoice, extra_events=stock_events, item_id=item.id,
        )
        db.session.commit()
        return item, events

    item, events = run_with_retry(_op)
    publish_events(events)
    return item


def update_item(
    invoice_id: int,
    item_id: int,
    *,
    quantity=None,
    unit_price_cents=None,
    force: bool = False,
) -> InvoiceItem:
    """
    Change an item's quantity and/or unit price.

    Raises:
        ValidationError: quantity zero (use remove_item) or below what has
            already been returned
        InsufficientStockError: an increase exceeds stock and force is False
    """
    if quantity is None and unit_price_cents is None:
        raise ValidationError("Nothing to update: give quantity and/or unit_price_cents")
    price = None if unit_price_cents is None else require_cents(unit_price_cents, "unit_price_cents", allow_zero=True)

    def _op():
        invoice = lock_invoice_for_edit(invoice_id)
        item = _get_item(invoice, item_id)
        stock_events = []

        if quantity is not None:
            product = get_product(item.product_id, lock=is_posted(invoice))
            new_quantity = parse_product_quantity(product, quantity)
            new_canonical = to_canonical(new_quantity)
            if new_canonical == 0:
                raise ValidationError("Quantity must be greater than zero; remove the item instead")

            returned = returned_canonical(item.id)
            if new_canonical < returned:
                raise ValidationError(
                    f"Quantity cannot go below the {format_quantity(from_canonical(returned, item.unit_type))} "
                    "already returned",
                    details={"item_id": item.id, "returned_canonical": returned},
                )

            delta = new_canonical - item.quantity_canonical
            if is_posted(invoice) and delta > 0:
                _, evaluation = take_stock(
                    product, from_canonical(delta, item.unit_type),
                    reason=REASON_INVOICE_EDIT, force=force,
                    invoice_id=invoice.id, invoice_item_id=item.id,
                    note=f"Invoice {invoice.bill_number} item {item.id} increased",
                )
                event = stock_low_event(product, evaluation)
                if event is not None:
                    stock_events.append(event)
            elif is_posted(invoice) and delta < 0:
                restock(
                    product, from_canonical(-delta, item.unit_type),
                    reason=REASON_INVOICE_EDIT,
                    invoice_id=invoice.id, invoice_item_id=item.id,
                    note=f"Invoice {invoice.bill_number} item {item.id} reduced",
                )
            item.quantity_canonical = new_canonical

        if price is not None:
            item.unit_price_cents = price

        item.line_total_cents = line_total(item.quantity, item.unit_price).cents

        events = finish_mutation(
            event_name=INVOICE_ITEM_UPDATED, invoice=invoice, extra_events=stock_events, item_id=item.id,
        )
        db.session.commit()
        return item, events

    item, events = run_with_retry(_op)
    publish_events(events)
    return item


def remove_item(invoice_id: int, item_id: int) -> Invoice:
    """
    Remove an item; stock goes back if the invoice was submitted.

    Raises:
        ValidationError: the item has returns recorded against it
    """
    def _op():
        invoice = lock_invoice_for_edit(invoice_id)
        item = _get_item(invoice, item_id)

        if returned_canonical(item.id):
            raise ValidationError(
                "Cannot remove an item that has returns recorded against it",
                details={"item_id": item.id},
            )

        if is_posted(invoice):
            product = get_product(item.product_id, lock=True)
            restock(
                product, item.quantity,
                reason=REASON_INVOICE_EDIT,
                invoice_id=invoice.id,
                note=f"Invoice {invoice.bill_number} item {item.id} removed",
            )

        removed_id = item.id
        db.session.delete(item)
        db.session.flush()

        events = finish_mutation(event_name=INVOICE_ITEM_REMOVED, invoice=invoice, item_id=removed_id)
        db.session.commit()
        return invoice, events

    invoice, events = run_with_retry(_op)
    publish_events(events)
    return invoice


def set_discount(invoice_id: int, discount_percent) -> Invoice:
    bps = discount_to_bps(discount_percent)

    def _op():
        invoice = lock_invoice_for_edit(invoice_id)
        previous = invoice.discount_percent
        invoice.discount_bps = bps
        events = finish_mutation(
            event_name=INVOICE_DISCOUNT_CHANGED,
            invoice=invoice,
            previous_discount_percent=str(previous),
        )
        db.session.commit()
        return invoice, events

    invoice, events = run_with_retry(_op)
    publish_events(events)
    return invoice


# =============================================================================
# INVOICE QUERIES
# =============================================================================

def get_invoice_detail(invoice_id: int) -> dict:
    invoice = get_invoice(invoice_id)
    data = invoice.to_dict()
    data["states"] = sorted(invoice_states(invoice))
    data["items"] = []
    for item in invoice.items:
        row = item.to_dict()
        returned = returned_canonical(item.id)
        row["returned_quantity"] = format_quantity(from_canonical(returned, item.unit_type))
        row["returned_quantity_canonical"] = returned
        data["items"].append(row)
    data["payments"] = [p.to_dict() for p in invoice.payments]
    data["allocations"] = [a.to_dict() for a in invoice.allocations]
    data["returns"] = [r.to_dict(include_items=False) for r in invoice.returns]
    return data
