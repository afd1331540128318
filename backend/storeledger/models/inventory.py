from __future__ import annotations

from ..extensions import db
from ..domain.units import UnitQuantity, from_canonical, format_quantity, display_quantity, get_unit_type
from ..domain.money import Money
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    QUANTITY STORAGE:
    current_stock_canonical is the source of truth for stock, held in the
    canonical integer form of the product's unit type (grams for kg-grams,
    pieces for piece, ...). Text forms like "155-20" exist only at the edges.

    INVARIANT: current_stock_canonical never goes negative (check constraint
    plus StockEvaluator before every write).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_products_name"),
        db.CheckConstraint("current_stock_canonical >= 0", name="stock_non_negative"),
        db.CheckConstraint("min_stock_alert_canonical >= 0", name="alert_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    # Code from the unit registry (kg-grams, piece, bag, ...)
    unit_type = db.Column(db.String(32), nullable=False)

    rate_per_unit_cents = db.Column(db.Integer, nullable=False, default=0)

    current_stock_canonical = db.Column(db.BigInteger, nullable=False, default=0)
    min_stock_alert_canonical = db.Column(db.BigInteger, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def unit(self):
        return get_unit_type(self.unit_type)

    @property
    def rate_per_unit(self) -> Money:
        return Money(self.rate_per_unit_cents)

    @property
    def current_stock(self) -> UnitQuantity:
        return from_canonical(self.current_stock_canonical, self.unit_type)

    @property
    def min_stock_alert(self) -> UnitQuantity:
        return from_canonical(self.min_stock_alert_canonical, self.unit_type)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} unit_type={self.unit_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit_type": self.unit_type,
            "rate_per_unit_cents": self.rate_per_unit_cents,
            "current_stock": format_quantity(self.current_stock),
            "current_stock_display": display_quantity(self.current_stock),
            "current_stock_canonical": self.current_stock_canonical,
            "min_stock_alert": format_quantity(self.min_stock_alert),
            "min_stock_alert_canonical": self.min_stock_alert_canonical,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of every change to a product's stock.

    REASONS:
    - invoice: stock sold on an invoice (negative delta)
    - invoice_edit: item quantity changed or item removed
    - return: returned goods put back (positive delta)
    - adjustment: manual correction

    forced=True marks an operation pushed through an INSUFFICIENT check;
    shortfall_canonical records how much stock was missing.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    reason = db.Column(db.String(32), nullable=False, index=True)
    delta_canonical = db.Column(db.BigInteger, nullable=False)
    stock_before_canonical = db.Column(db.BigInteger, nullable=False)
    stock_after_canonical = db.Column(db.BigInteger, nullable=False)
    status_after = db.Column(db.String(16), nullable=False)

    forced = db.Column(db.Boolean, nullable=False, default=False)
    shortfall_canonical = db.Column(db.BigInteger, nullable=False, default=0)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    invoice_item_id = db.Column(db.Integer, db.ForeignKey("invoice_items.id", ondelete="SET NULL"), nullable=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "reason": self.reason,
            "delta_canonical": self.delta_canonical,
            "stock_before_canonical": self.stock_before_canonical,
            "stock_after_canonical": self.stock_after_canonical,
            "status_after": self.status_after,
            "forced": self.forced,
            "shortfall_canonical": self.shortfall_canonical,
            "invoice_id": self.invoice_id,
            "invoice_item_id": self.invoice_item_id,
            "return_id": self.return_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
