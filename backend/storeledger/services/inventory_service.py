# Overview: Service-layer operations for inventory; stock checks, stock movements and products.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, StockMovement
from ..domain.stock import StockEvaluation, StockStatus, evaluate, evaluate_restock
from ..domain.units import UnitQuantity, format_quantity, get_unit_type, parse_quantity, to_canonical, zero
from ..time_utils import utcnow
from ..validation import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    require_cents,
    require_text,
)
from .concurrency import lock_for_update, run_with_retry
from .events import PRODUCT_STOCK_LOW, DomainEvent, publish_events, record_events
"""
Inventory Invariants (authoritative)

- Product.current_stock_canonical is the stock on hand; every change to it
  appends a StockMovement in the same DB transaction.
- Stock never goes negative. A request that would take more than is on hand
  is INSUFFICIENT and is refused unless forced; a forced request takes what
  is there, leaves stock at zero and records the shortfall.
- Quantities cross this module as UnitQuantity values of the product's own
  unit type. Text is parsed at the edge with parse_quantity().
"""


REASON_INVOICE = "invoice"
REASON_INVOICE_EDIT = "invoice_edit"
REASON_RETURN = "return"
REASON_ADJUSTMENT = "adjustment"

DIRECTION_IN = "in"
DIRECTION_OUT = "out"


def get_product(product_id: int, *, lock: bool = False, require_active: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise ValidationError(f"Product {product.name} is inactive")
    return product


def parse_product_quantity(product: Product, text) -> UnitQuantity:
    """Parse quantity text in the product's unit type."""
    return parse_quantity(text, product.unit_type)


def create_product(
    *,
    name: str,
    unit_type: str,
    rate_per_unit_cents,
    current_stock: str | int | None = None,
    min_stock_alert: str | int | None = None,
) -> Product:
    """
    Create a product with its opening stock.

    Raises:
        ValidationError: unknown unit type, malformed quantities, bad rate or
            duplicate name
    """
    name = require_text(name, "name")
    unit = get_unit_type(unit_type)
    rate = require_cents(rate_per_unit_cents, "rate_per_unit_cents", allow_zero=True)
    opening = zero(unit) if current_stock is None else parse_quantity(current_stock, unit)
    alert = zero(unit) if min_stock_alert is None else parse_quantity(min_stock_alert, unit)

    def _op():
        if db.session.query(Product).filter_by(name=name).first():
            raise ValidationError(f"Product {name!r} already exists")

        product = Product(
            name=name,
            unit_type=unit.code,
            rate_per_unit_cents=rate,
            current_stock_canonical=to_canonical(opening),
            min_stock_alert_canonical=to_canonical(alert),
        )
        db.session.add(product)
        db.session.flush()

        if product.current_stock_canonical:
            db.session.add(StockMovement(
                product_id=product.id,
                reason=REASON_ADJUSTMENT,
                delta_canonical=product.current_stock_canonical,
                stock_before_canonical=0,
                stock_after_canonical=product.current_stock_canonical,
                status_after=_status_for(product).value,
                note="Opening stock",
                occurred_at=utcnow(),
            ))

        db.session.commit()
        return product

    return run_with_retry(_op)


def _status_for(product: Product) -> StockStatus:
    if product.current_stock_canonical <= product.min_stock_alert_canonical:
        return StockStatus.LOW
    return StockStatus.OK


def check_stock(product_id: int, quantity_text) -> StockEvaluation:
    """Evaluate taking a quantity out of stock without changing anything."""
    product = get_product(product_id)
    requested = parse_product_quantity(product, quantity_text)
    return evaluate(product.current_stock, requested, product.min_stock_alert)


def stock_low_event(product: Product, evaluation: StockEvaluation) -> DomainEvent | None:
    if evaluation.status is StockStatus.OK:
        return None
    return DomainEvent(
        PRODUCT_STOCK_LOW,
        "product",
        product.id,
        {
            "status": evaluation.status.value,
            "current_stock": format_quantity(evaluation.new_stock),
            "current_stock_canonical": evaluation.new_stock_canonical,
            "min_stock_alert_canonical": product.min_stock_alert_canonical,
        },
    )


def take_stock(
    product: Product,
    quantity: UnitQuantity,
    *,
    reason: str,
    force: bool = False,
    invoice_id: int | None = None,
    invoice_item_id: int | None = None,
    note: str | None = None,
) -> tuple[StockMovement, StockEvaluation]:
    """
    Remove quantity from a locked product inside the caller's unit of work.

    Raises:
        InsufficientStockError: stock would go negative and force is False
    """
    evaluation = evaluate(product.current_stock, quantity, product.min_stock_alert)
    if evaluation.is_blocking:
        if not force:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}: requested {format_quantity(quantity)}, "
                f"on hand {format_quantity(product.current_stock)}",
                evaluation=evaluation,
                details={
                    "product_id": product.id,
                    "requested": format_quantity(quantity),
                    "on_hand": format_quantity(product.current_stock),
                    "shortfall_canonical": evaluation.shortfall_canonical,
                },
            )
        current_app.logger.warning(
            "Forced stock override on product %s (%s): requested %s, on hand %s, shortfall %s",
            product.id, product.name, format_quantity(quantity),
            format_quantity(product.current_stock), evaluation.shortfall_canonical,
        )

    before = product.current_stock_canonical
    product.current_stock_canonical = evaluation.new_stock_canonical
    movement = StockMovement(
        product_id=product.id,
        reason=reason,
        delta_canonical=evaluation.new_stock_canonical - before,
        stock_before_canonical=before,
        stock_after_canonical=evaluation.new_stock_canonical,
        status_after=evaluation.status.value,
        forced=evaluation.is_blocking,
        shortfall_canonical=evaluation.shortfall_canonical,
        invoice_id=invoice_id,
        invoice_item_id=invoice_item_id,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement, evaluation


def restock(
    product: Product,
    quantity: UnitQuantity,
    *,
    reason: str,
    invoice_id: int | None = None,
    invoice_item_id: int | None = None,
    return_id: int | None = None,
    note: str | None = None,
) -> tuple[StockMovement, StockEvaluation]:
    """Put quantity back into a locked product inside the caller's unit of work."""
    evaluation = evaluate_restock(product.current_stock, quantity, product.min_stock_alert)
    before = product.current_stock_canonical
    product.current_stock_canonical = evaluation.new_stock_canonical
    movement = StockMovement(
        product_id=product.id,
        reason=reason,
        delta_canonical=evaluation.new_stock_canonical - before,
        stock_before_canonical=before,
        stock_after_canonical=evaluation.new_stock_canonical,
        status_after=evaluation.status.value,
        invoice_id=invoice_id,
        invoice_item_id=invoice_item_id,
        return_id=return_id,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement, evaluation


def adjust_stock(
    product_id: int,
    quantity_text,
    *,
    direction: str,
    note: str | None = None,
    force: bool = False,
) -> tuple[Product, StockMovement]:
    """
    Manual stock correction (delivery received, breakage, stock count).

    Raises:
        ValidationError: bad direction or malformed quantity
        InsufficientStockError: an "out" adjustment exceeds stock and force is False
    """
    if direction not in (DIRECTION_IN, DIRECTION_OUT):
        raise ValidationError(f"direction must be '{DIRECTION_IN}' or '{DIRECTION_OUT}'")

    def _op():
        product = get_product(product_id, lock=True)
        quantity = parse_product_quantity(product, quantity_text)
        if to_canonical(quantity) == 0:
            raise ValidationError("Adjustment quantity must be greater than zero")

        if direction == DIRECTION_OUT:
            movement, evaluation = take_stock(
                product, quantity, reason=REASON_ADJUSTMENT, force=force, note=note,
            )
        else:
            movement, evaluation = restock(product, quantity, reason=REASON_ADJUSTMENT, note=note)

        events = [e for e in [stock_low_event(product, evaluation)] if e is not None]
        record_events(events)
        db.session.commit()
        return product, movement, events

    product, movement, events = run_with_retry(_op)
    publish_events(events)
    return product, movement


def list_movements(product_id: int) -> list[StockMovement]:
    get_product(product_id)
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.occurred_at.asc(), StockMovement.id.asc())
        .all()
    )
