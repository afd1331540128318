# Overview: Service-layer operations for the customer ledger; append-only writes and ordered reads.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import CustomerLedgerEntry
from ..domain.ledger_math import EntryType, LedgerAggregate, LedgerLine, aggregate
from ..time_utils import utcnow
"""
Customer Ledger Invariants (authoritative)

- Append-only. Entries are never updated or deleted.
- Entries are written inside the same DB transaction as the change they record.
- The customer balance is the fold of all entries in (occurred_at, id) order.
- debit/credit carry a strictly positive amount; adjustment carries 0 unless
  it is a documented balance correction.
"""


def append_ledger_entry(
    *,
    customer_id: int,
    entry_type: EntryType | str,
    amount_cents: int,
    description: str,
    reference_type: str | None = None,
    reference_id: int | None = None,
    invoice_id: int | None = None,
    is_balance_correction: bool = False,
    occurred_at: Optional[datetime] = None,
) -> CustomerLedgerEntry:
    """
    Append one ledger entry.

    - No balance logic here; callers refresh the customer balance afterwards.
    - occurred_at defaults to now so entries written in one transaction keep
      their insertion order through the id tiebreak.
    """
    entry = CustomerLedgerEntry(
        customer_id=customer_id,
        entry_type=EntryType(entry_type).value,
        amount_cents=amount_cents,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        invoice_id=invoice_id,
        is_balance_correction=is_balance_correction,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def ordered_entries(customer_id: int) -> list[CustomerLedgerEntry]:
    return (
        db.session.query(CustomerLedgerEntry)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerLedgerEntry.occurred_at.asc(), CustomerLedgerEntry.id.asc())
        .all()
    )


def ledger_lines(customer_id: int) -> list[LedgerLine]:
    return [entry.to_ledger_line() for entry in ordered_entries(customer_id)]


def fold_customer_ledger(customer_id: int) -> LedgerAggregate:
    """Balance of a customer recomputed from the full ordered ledger."""
    return aggregate(ledger_lines(customer_id))


def invoice_entries(invoice_id: int) -> list[CustomerLedgerEntry]:
    return (
        db.session.query(CustomerLedgerEntry)
        .filter_by(invoice_id=invoice_id)
        .order_by(CustomerLedgerEntry.occurred_at.asc(), CustomerLedgerEntry.id.asc())
        .all()
    )
