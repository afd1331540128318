from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Payment(db.Model):
    """
    Money received from a customer.

    invoice_id is null for a general payment on account. A cancelled payment
    stays in the table with status CANCELLED; its ledger credit is offset by
    a payment_reversal debit rather than deleted.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="amount_positive"),
        db.Index("ix_payments_invoice_status", "invoice_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    # cash, bank_transfer, cheque, card, other
    method = db.Column(db.String(32), nullable=False, default="cash")
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="RECORDED", index=True)

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    @property
    def is_active(self) -> bool:
        return self.status == "RECORDED"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "notes": self.notes,
            "status": self.status,
            "recorded_at": to_utc_z(self.recorded_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }


class PaymentAllocation(db.Model):
    """
    Part of a payment on account applied to one invoice.

    Allocations are written oldest invoice first and count toward the
    invoice's paid amount only while their payment is RECORDED. The ledger
    credit was already posted with the payment, so allocating never touches
    the ledger.
    """
    __tablename__ = "payment_allocations"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "invoice_id", name="uq_payment_allocations_payment_invoice"),
        db.CheckConstraint("amount_cents > 0", name="allocation_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    # 1-based position of the invoice within this payment's allocation run
    allocation_order = db.Column(db.Integer, nullable=False)
    invoice_previous_balance_cents = db.Column(db.Integer, nullable=False)
    invoice_new_balance_cents = db.Column(db.Integer, nullable=False)

    allocated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment = db.relationship("Payment", backref=db.backref("allocations", lazy=True, order_by="PaymentAllocation.id"))
    invoice = db.relationship("Invoice", backref=db.backref("allocations", lazy=True, order_by="PaymentAllocation.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "allocation_order": self.allocation_order,
            "invoice_previous_balance_cents": self.invoice_previous_balance_cents,
            "invoice_new_balance_cents": self.invoice_new_balance_cents,
            "payment_status": self.payment.status if self.payment else None,
            "allocated_at": to_utc_z(self.allocated_at),
        }
