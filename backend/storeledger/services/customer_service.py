# Overview: Service-layer operations for customers; master data, manual ledger postings and ledger reads.

from __future__ import annotations

from ..extensions import db
from ..models import Customer, CustomerLedgerEntry
from ..domain.ledger_math import EntryType, REF_MANUAL, aggregate, available_credit
from ..validation import NotFoundError, ValidationError, optional_text, require_cents, require_text
from .concurrency import lock_for_update, run_with_retry
from .events import publish_events
from .ledger_service import append_ledger_entry, ordered_entries
from .reconciliation_service import finish_mutation


def get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def create_customer(*, name: str, phone: str | None = None, address: str | None = None) -> Customer:
    name = require_text(name, "name")
    phone = optional_text(phone, "phone", max_length=32)
    address = optional_text(address, "address")

    def _op():
        customer = Customer(name=name, phone=phone, address=address, balance_cents=0)
        db.session.add(customer)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def post_manual_entry(
    customer_id: int,
    *,
    entry_type: str,
    amount_cents,
    description: str,
    balance_correction: bool = False,
) -> CustomerLedgerEntry:
    """
    Post a hand-keyed ledger entry (opening balance, write-off, correction).

    RULES:
    - debit/credit need a strictly positive amount
    - adjustment is a zero-amount note, unless balance_correction is set, in
      which case it carries a signed nonzero amount (positive raises the
      balance)

    Raises:
        ValidationError: entry type or amount breaks the rules above
        NotFoundError: customer does not exist
    """
    try:
        kind = EntryType(entry_type)
    except ValueError:
        raise ValidationError(
            f"entry_type must be one of {[t.value for t in EntryType]}",
            details={"entry_type": entry_type},
        )
    description = require_text(description, "description")

    if kind is EntryType.ADJUSTMENT:
        if balance_correction:
            amount = require_cents(amount_cents, "amount_cents", allow_negative=True)
        else:
            amount = require_cents(amount_cents, "amount_cents", allow_zero=True)
            if amount != 0:
                raise ValidationError(
                    "Adjustment entries carry no amount unless marked as a balance correction",
                    details={"amount_cents": amount},
                )
    else:
        if balance_correction:
            raise ValidationError("Only adjustment entries can be balance corrections")
        amount = require_cents(amount_cents, "amount_cents")

    def _op():
        get_customer(customer_id, lock=True)
        entry = append_ledger_entry(
            customer_id=customer_id,
            entry_type=kind,
            amount_cents=amount,
            description=description,
            reference_type=REF_MANUAL,
            is_balance_correction=balance_correction,
        )
        events = finish_mutation(customer_id=customer_id)
        db.session.commit()
        return entry, events

    entry, events = run_with_retry(_op)
    publish_events(events)
    return entry


def get_ledger(customer_id: int) -> dict:
    """
    Customer ledger with a running balance after each entry.

    Anomalous entries are listed but do not move the running balance.
    """
    customer = get_customer(customer_id)
    entries = ordered_entries(customer_id)
    result = aggregate(entry.to_ledger_line() for entry in entries)
    running = dict(result.running_balances)

    rows = []
    for entry in entries:
        row = entry.to_dict()
        row["balance_after_cents"] = running[entry.id].cents
        rows.append(row)

    return {
        "customer": customer.to_dict(),
        "entries": rows,
        "balance_cents": result.balance.cents,
        "total_debit_cents": result.total_debit.cents,
        "total_credit_cents": result.total_credit.cents,
        "available_credit_cents": available_credit(result.balance).cents,
        "anomalies": [a.to_dict() for a in result.anomalies],
    }
