from __future__ import annotations

from ..extensions import db
from ..domain.units import UnitQuantity, from_canonical, format_quantity
from ..time_utils import to_utc_z


class Return(db.Model):
    """
    Goods returned against a submitted invoice.

    The credited amount is the sum of the item line totals, priced at the
    original sale price. It is credited to the customer ledger in the same
    transaction that records the return.
    """
    __tablename__ = "returns"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    reason = db.Column(db.String(255), nullable=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("returns", lazy=True, order_by="Return.id"))

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "reason": self.reason,
            "total_cents": self.total_cents,
            "occurred_at": to_utc_z(self.occurred_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("return_quantity_canonical > 0", name="return_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    invoice_item_id = db.Column(db.Integer, db.ForeignKey("invoice_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    unit_type = db.Column(db.String(32), nullable=False)
    return_quantity_canonical = db.Column(db.BigInteger, nullable=False)
    # Price at time of sale, copied from the invoice item
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    return_ = db.relationship("Return", backref=db.backref("items", lazy=True, order_by="ReturnItem.id"))
    invoice_item = db.relationship("InvoiceItem", backref=db.backref("return_items", lazy=True))

    @property
    def quantity(self) -> UnitQuantity:
        return from_canonical(self.return_quantity_canonical, self.unit_type)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "invoice_item_id": self.invoice_item_id,
            "product_id": self.product_id,
            "unit_type": self.unit_type,
            "quantity": format_quantity(self.quantity),
            "return_quantity_canonical": self.return_quantity_canonical,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
