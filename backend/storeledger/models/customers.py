from __future__ import annotations

from ..extensions import db
from ..domain.ledger_math import EntryType, LedgerLine
from ..domain.money import Money
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data.

    balance_cents is a cache of the customer's ledger fold (debits minus
    credits). It is rewritten in the same transaction as every ledger entry,
    and the drift audit compares it against a fresh fold.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance(self) -> Money:
        return Money(self.balance_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "balance_cents": self.balance_cents,
            "balance_reconciled_at": to_utc_z(self.balance_reconciled_at),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CustomerLedgerEntry(db.Model):
    """
    Append-only customer ledger.

    ENTRY TYPES:
    - debit: customer owes more (invoice posted, invoice revised upward,
      payment reversed)
    - credit: customer owes less (payment, return, invoice revised downward)
    - adjustment: informational, amount 0, unless is_balance_correction is
      set, in which case the signed amount is a documented correction

    IMMUTABLE: Entries are never updated or deleted. Mistakes are corrected
    by a further entry.
    """
    __tablename__ = "customer_ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_customer_occurred", "customer_id", "occurred_at", "id"),
        db.Index("ix_ledger_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    is_balance_correction = db.Column(db.Boolean, nullable=False, default=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("ledger_entries", lazy=True))

    def to_ledger_line(self) -> LedgerLine:
        return LedgerLine(
            entry_id=self.id,
            entry_type=EntryType(self.entry_type),
            amount=Money(self.amount_cents),
            description=self.description or "",
            occurred_at=self.occurred_at,
            reference_type=self.reference_type,
            reference_id=self.reference_id,
            is_balance_correction=bool(self.is_balance_correction),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "entry_type": self.entry_type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "invoice_id": self.invoice_id,
            "is_balance_correction": self.is_balance_correction,
            "occurred_at": to_utc_z(self.occurred_at),
        }
