from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..domain.money import Money
from ..domain.units import UnitQuantity, from_canonical, format_quantity, display_quantity
from ..time_utils import to_utc_z


class Invoice(db.Model):
    """
    Customer invoice.

    LIFECYCLE (status column):
    - DRAFT: being assembled; no stock or ledger effect
    - SUBMITTED: stock taken, grand total debited to the customer ledger
    - RECONCILED: a drift audit confirmed the caches; any later mutation
      drops the invoice back to SUBMITTED

    PARTIALLY_PAID / PAID / HAS_RETURNS are derived from payment_status and
    has_returns and combine freely with SUBMITTED or RECONCILED.

    CACHES: every *_cents column below discount_bps is derived from items,
    returns and payments and rewritten on each mutation in the same
    transaction. posted_total_cents is the net amount already debited to the
    ledger for this invoice, so an edit posts only the difference.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("bill_number", name="uq_invoices_bill_number"),
        db.Index("ix_invoices_customer_status", "customer_id", "status"),
        db.CheckConstraint("discount_bps >= 0 AND discount_bps <= 10000", name="discount_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    # Discount percent in basis points (1250 = 12.50%)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)
    total_returned_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID", index=True)
    has_returns = db.Column(db.Boolean, nullable=False, default=False)
    posted_total_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.String(255), nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def discount_percent(self) -> Decimal:
        return (Decimal(self.discount_bps) / 100).quantize(Decimal("0.01"))

    @property
    def remaining_balance(self) -> Money:
        return Money(self.remaining_balance_cents)

    def totals_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_percent": str(self.discount_percent),
            "discount_amount_cents": self.discount_amount_cents,
            "grand_total_cents": self.grand_total_cents,
            "total_returned_cents": self.total_returned_cents,
            "effective_total_cents": self.grand_total_cents - self.total_returned_cents,
            "payment_amount_cents": self.payment_amount_cents,
            "remaining_balance_cents": self.remaining_balance_cents,
            "payment_status": self.payment_status,
        }

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "bill_number": self.bill_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "has_returns": self.has_returns,
            "posted_total_cents": self.posted_total_cents,
            "notes": self.notes,
            "submitted_at": to_utc_z(self.submitted_at),
            "reconciled_at": to_utc_z(self.reconciled_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        data.update(self.totals_dict())
        return data


class InvoiceItem(db.Model):
    """
    Line on an invoice.

    unit_type is snapshotted from the product when the line is created so the
    stored canonical quantity keeps its meaning. line_total_cents is derived
    (quantity x unit price, rounded at the line) and never set directly.
    """
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint("quantity_canonical > 0", name="quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    unit_type = db.Column(db.String(32), nullable=False)
    quantity_canonical = db.Column(db.BigInteger, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("items", lazy=True, order_by="InvoiceItem.id"))
    product = db.relationship("Product")

    @property
    def quantity(self) -> UnitQuantity:
        return from_canonical(self.quantity_canonical, self.unit_type)

    @property
    def unit_price(self) -> Money:
        return Money(self.unit_price_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "unit_type": self.unit_type,
            "quantity": format_quantity(self.quantity),
            "quantity_display": display_quantity(self.quantity),
            "quantity_canonical": self.quantity_canonical,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
