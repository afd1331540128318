# Overview: Service-layer operations for reconciliation; recompute-on-write, drift audit and cache repair.

"""
Reconciliation Service

WHY: An invoice's totals, its returns, its payments and the customer's
running balance are four views of the same money. Every mutation has to
leave them agreeing, and when they stop agreeing (bad import, manual SQL,
a bug in an older release) we need to see where and fix the caches.

DESIGN PRINCIPLES:
- Recompute, never patch: every mutation reloads items, returns and payments
  from the session and recomputes all derived values through the invoice
  calculator. Nothing is incremented in place.
- The ledger is the source of truth for the customer balance. An invoice
  whose grand total changes gets a revision entry for the difference, so the
  invoice's net ledger debit always equals its grand total.
- One transaction per mutation: the change, the caches, the ledger entries
  and the event outbox rows commit together.
- The audit reads committed state without locks. Repair takes locks,
  re-inspects, and writes only derived caches plus a BalanceCorrection
  trail. Items, returns, payments and ledger entries are never touched.

INVOICE LIFECYCLE:
    DRAFT -> SUBMITTED -> {PARTIALLY_PAID, PAID, HAS_RETURNS} -> RECONCILED
Only DRAFT/SUBMITTED/RECONCILED are stored; the middle states are derived
from payment_status and has_returns. Any mutation of a RECONCILED invoice
puts it back to SUBMITTED.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    BalanceCorrection,
    Customer,
    CustomerLedgerEntry,
    Invoice,
    InvoiceItem,
    Payment,
    PaymentAllocation,
    Return,
    ReturnItem,
)
from ..domain.invoice_math import InvoiceTotals, PaymentStatus, calculate_totals, line_total
from ..domain.ledger_math import (
    EntryType,
    LedgerAggregate,
    REF_INVOICE,
    REF_INVOICE_REVISION,
    aggregate,
    find_duplicates,
    signed_amount,
)
from ..domain.money import Money, sum_money
from ..domain.units import from_canonical
from ..time_utils import utcnow
from ..validation import NotFoundError
from .concurrency import lock_for_update, run_with_retry
from .events import (
    CUSTOMER_BALANCE_UPDATED,
    INVOICE_BALANCE_CORRECTED,
    INVOICE_PAYMENT_ALLOCATED,
    INVOICE_RECONCILED as EVENT_INVOICE_RECONCILED,
    DomainEvent,
    publish_events,
    record_events,
)
from .ledger_service import append_ledger_entry, fold_customer_ledger, ledger_lines


# =============================================================================
# INVOICE STATES (CONSTANTS)
# =============================================================================

INVOICE_DRAFT = "DRAFT"
INVOICE_SUBMITTED = "SUBMITTED"
INVOICE_RECONCILED = "RECONCILED"

STATE_PARTIALLY_PAID = "PARTIALLY_PAID"
STATE_PAID = "PAID"
STATE_HAS_RETURNS = "HAS_RETURNS"


# =============================================================================
# AUDIT HINTS (CONSTANTS)
# =============================================================================

HINT_RETURNS_NOT_APPLIED = "RETURNS_NOT_APPLIED"
HINT_RETURNS_APPLIED_TWICE = "RETURNS_APPLIED_TWICE"
HINT_PAYMENT_NOT_APPLIED = "PAYMENT_NOT_APPLIED"
HINT_PAYMENT_TOTAL_MISMATCH = "PAYMENT_TOTAL_MISMATCH"
HINT_DISCOUNT_NOT_APPLIED = "DISCOUNT_NOT_APPLIED"
HINT_STALE_BALANCE_CACHE = "STALE_BALANCE_CACHE"
HINT_ENTRY_NOT_APPLIED = "ENTRY_NOT_APPLIED"
HINT_DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
HINT_LEDGER_ANOMALY = "LEDGER_ANOMALY"

FINDING_DRIFT = "DRIFT"
FINDING_ANOMALY = "ANOMALY"

# Invoice cache columns in the order they are reported
_CENTS_CACHES = (
    "remaining_balance_cents",
    "subtotal_cents",
    "discount_amount_cents",
    "grand_total_cents",
    "total_returned_cents",
    "payment_amount_cents",
)


def invoice_states(invoice: Invoice) -> frozenset:
    """Active lifecycle states of an invoice, stored and derived."""
    if invoice.status == INVOICE_DRAFT:
        return frozenset({INVOICE_DRAFT})
    states = {invoice.status}
    if invoice.payment_status == PaymentStatus.PARTIAL.value:
        states.add(STATE_PARTIALLY_PAID)
    elif invoice.payment_status in (PaymentStatus.PAID.value, PaymentStatus.OVERPAID.value):
        states.add(STATE_PAID)
    if invoice.has_returns:
        states.add(STATE_HAS_RETURNS)
    return frozenset(states)


# =============================================================================
# RECOMPUTE-ON-WRITE
# =============================================================================

def compute_invoice_totals(invoice: Invoice) -> InvoiceTotals:
    """
    Recompute every derived value of an invoice from its source records.

    Reads items, return items, active payments and allocations of active
    payments on account from the session; cached columns on the invoice are
    not consulted.
    """
    items = (
        db.session.query(InvoiceItem)
        .filter_by(invoice_id=invoice.id)
        .order_by(InvoiceItem.id.asc())
        .all()
    )
    return_items = (
        db.session.query(ReturnItem)
        .join(Return, Return.id == ReturnItem.return_id)
        .filter(Return.invoice_id == invoice.id)
        .all()
    )
    paid_cents = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.invoice_id == invoice.id, Payment.status == "RECORDED")
        .scalar()
    )
    allocated_cents = (
        db.session.query(func.coalesce(func.sum(PaymentAllocation.amount_cents), 0))
        .select_from(PaymentAllocation)
        .join(Payment, Payment.id == PaymentAllocation.payment_id)
        .filter(PaymentAllocation.invoice_id == invoice.id, Payment.status == "RECORDED")
        .scalar()
    )

    # Returns are priced on the cumulative quantity per item and price
    returned: dict = {}
    for ri in return_items:
        key = (ri.invoice_item_id, ri.unit_price_cents, ri.unit_type)
        returned[key] = returned.get(key, 0) + ri.return_quantity_canonical

    return calculate_totals(
        [line_total(item.quantity, item.unit_price) for item in items],
        invoice.discount_percent,
        sum_money(
            line_total(from_canonical(canonical, unit_type), Money(price_cents))
            for (_, price_cents, unit_type), canonical in returned.items()
        ),
        Money(int(paid_cents or 0) + int(allocated_cents or 0)),
    )


def _cache_values(totals: InvoiceTotals) -> dict:
    return {
        "subtotal_cents": totals.subtotal.cents,
        "discount_amount_cents": totals.discount_amount.cents,
        "grand_total_cents": totals.grand_total.cents,
        "total_returned_cents": totals.total_returned.cents,
        "payment_amount_cents": totals.payment_amount.cents,
        "remaining_balance_cents": totals.remaining_balance.cents,
        "payment_status": totals.payment_status.value,
        "has_returns": totals.total_returned.cents > 0,
    }


def _write_invoice_caches(invoice: Invoice, totals: InvoiceTotals) -> None:
    for column, value in _cache_values(totals).items():
        if getattr(invoice, column) != value:
            setattr(invoice, column, value)


def _has_opening_entry(invoice: Invoice) -> bool:
    return db.session.query(
        db.session.query(CustomerLedgerEntry)
        .filter_by(invoice_id=invoice.id, reference_type=REF_INVOICE)
        .exists()
    ).scalar()


def _sync_invoice_posting(invoice: Invoice, grand_total: Money) -> Optional[CustomerLedgerEntry]:
    """
    Post the difference between the new grand total and what the ledger
    already holds for this invoice.
    """
    delta = grand_total.cents - invoice.posted_total_cents
    if delta == 0:
        return None

    if delta > 0 and invoice.posted_total_cents == 0 and not _has_opening_entry(invoice):
        reference_type = REF_INVOICE
        description = f"Invoice {invoice.bill_number}"
    else:
        reference_type = REF_INVOICE_REVISION
        description = f"Invoice {invoice.bill_number} revised by {Money(delta)}"

    entry = append_ledger_entry(
        customer_id=invoice.customer_id,
        entry_type=EntryType.DEBIT if delta > 0 else EntryType.CREDIT,
        amount_cents=abs(delta),
        description=description,
        reference_type=reference_type,
        reference_id=invoice.id,
        invoice_id=invoice.id,
    )
    invoice.posted_total_cents = grand_total.cents
    return entry


def reconcile_invoice(invoice: Invoice) -> InvoiceTotals:
    """
    Recompute an invoice and bring its caches and ledger posting in line.

    Must run inside the caller's unit of work with the invoice row locked.
    DRAFT invoices get their caches refreshed but nothing is posted.
    """
    db.session.flush()
    totals = compute_invoice_totals(invoice)
    _write_invoice_caches(invoice, totals)
    if invoice.status != INVOICE_DRAFT:
        _sync_invoice_posting(invoice, totals.grand_total)
    return totals


def refresh_customer_balance(customer_id: int) -> LedgerAggregate:
    """
    Fold the customer's full ordered ledger and store the result.

    Anomalous entries are left out of the balance and logged; they never
    abort the write that discovered them.
    """
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")

    db.session.flush()
    result = fold_customer_ledger(customer_id)
    for anomaly in result.anomalies:
        current_app.logger.warning(
            "Ledger anomaly for customer %s: %s (entry %s)",
            customer_id, anomaly.message, anomaly.entity_id,
        )
    if customer.balance_cents != result.balance.cents:
        customer.balance_cents = result.balance.cents
    return result


def invoice_event(name: str, invoice: Invoice, totals: InvoiceTotals, **extra) -> DomainEvent:
    payload = totals.to_dict()
    payload.update({"status": invoice.status, "customer_id": invoice.customer_id})
    payload.update(extra)
    return DomainEvent(name, "invoice", invoice.id, payload)


def _reopen(invoice: Invoice) -> None:
    if invoice.status == INVOICE_RECONCILED:
        invoice.status = INVOICE_SUBMITTED
        invoice.reconciled_at = None


# =============================================================================
# CREDIT ALLOCATION (FIFO)
# =============================================================================

def _unallocated_credit(customer_id: int) -> list[list]:
    """[payment, cents not yet allocated] for active payments on account, oldest first."""
    used = dict(
        db.session.query(PaymentAllocation.payment_id, func.sum(PaymentAllocation.amount_cents))
        .filter(PaymentAllocation.customer_id == customer_id)
        .group_by(PaymentAllocation.payment_id)
        .all()
    )
    payments = (
        db.session.query(Payment)
        .filter(
            Payment.customer_id == customer_id,
            Payment.invoice_id.is_(None),
            Payment.status == "RECORDED",
        )
        .order_by(Payment.recorded_at.asc(), Payment.id.asc())
        .all()
    )
    credit = []
    for payment in payments:
        left = payment.amount_cents - int(used.get(payment.id) or 0)
        if left > 0:
            credit.append([payment, left])
    return credit


def _write_allocation(payment: Payment, invoice: Invoice, amount: int, previous: int, new: int) -> None:
    allocation = (
        db.session.query(PaymentAllocation)
        .filter_by(payment_id=payment.id, invoice_id=invoice.id)
        .first()
    )
    if allocation is not None:
        # Same payment reaching an invoice that grew again after it was covered
        allocation.amount_cents += amount
        allocation.invoice_new_balance_cents = new
        return
    order = db.session.query(PaymentAllocation).filter_by(payment_id=payment.id).count() + 1
    db.session.add(PaymentAllocation(
        payment_id=payment.id,
        invoice_id=invoice.id,
        customer_id=invoice.customer_id,
        amount_cents=amount,
        allocation_order=order,
        invoice_previous_balance_cents=previous,
        invoice_new_balance_cents=new,
        allocated_at=utcnow(),
    ))
    db.session.flush()


def allocate_customer_credit(customer_id: int) -> list[tuple]:
    """
    Apply unallocated payments on account to the customer's open invoices.

    Oldest invoice first, drawing on the oldest payment first. DRAFT invoices
    are skipped. Allocations never touch the ledger: the credit was posted
    when the payment was recorded. Runs inside the caller's unit of work.

    Returns:
        (invoice, allocated_cents, payment_ids) for every invoice that
        received money.
    """
    db.session.flush()
    credit = _unallocated_credit(customer_id)
    if not credit:
        return []

    invoices = lock_for_update(
        db.session.query(Invoice)
        .filter(Invoice.customer_id == customer_id, Invoice.status != INVOICE_DRAFT)
        .order_by(Invoice.created_at.asc(), Invoice.id.asc())
    ).all()

    touched = []
    for invoice in invoices:
        if not credit:
            break
        remaining = compute_invoice_totals(invoice).remaining_balance.cents
        if remaining <= 0:
            continue
        allocated = 0
        payment_ids = []
        while credit and remaining > 0:
            payment, left = credit[0]
            amount = min(left, remaining)
            _write_allocation(payment, invoice, amount, remaining, remaining - amount)
            remaining -= amount
            allocated += amount
            payment_ids.append(payment.id)
            if amount == left:
                credit.pop(0)
            else:
                credit[0][1] = left - amount
        touched.append((invoice, allocated, payment_ids))
        current_app.logger.info(
            "Allocated %s on account to invoice %s from payments %s",
            Money(allocated), invoice.bill_number, payment_ids,
        )
    return touched


def finish_mutation(
    *,
    event_name: str | tuple | None = None,
    invoice: Invoice | None = None,
    invoices: Iterable[Invoice] = (),
    customer_id: int | None = None,
    extra_events: Iterable[DomainEvent] = (),
    **payload,
) -> list[DomainEvent]:
    """
    Common tail of every mutating operation.

    Recomputes the touched invoice(s), applies any unallocated payments on
    account, re-folds the customer's ledger and writes the event outbox rows,
    all inside the caller's transaction. Returns the events; the caller
    commits and then hands them to publish_events().
    """
    events: list[DomainEvent] = []
    touched = ([invoice] if invoice is not None else []) + list(invoices)

    names = (event_name,) if isinstance(event_name, str) else tuple(event_name or ())
    for row in touched:
        _reopen(row)
        totals = reconcile_invoice(row)
        for name in names:
            events.append(invoice_event(name, row, totals, **payload))
        customer_id = customer_id or row.customer_id

    if customer_id is not None:
        for row, allocated_cents, payment_ids in allocate_customer_credit(customer_id):
            _reopen(row)
            totals = reconcile_invoice(row)
            events.append(invoice_event(
                INVOICE_PAYMENT_ALLOCATED, row, totals,
                allocated_cents=allocated_cents, payment_ids=payment_ids,
            ))

        customer = db.session.get(Customer, customer_id)
        before = customer.balance_cents if customer else None
        result = refresh_customer_balance(customer_id)
        if before != result.balance.cents:
            events.append(DomainEvent(
                CUSTOMER_BALANCE_UPDATED,
                "customer",
                customer_id,
                {"balance_cents": result.balance.cents, "previous_balance_cents": before},
            ))

    events.extend(extra_events)
    record_events(events)
    return events


# =============================================================================
# DRIFT AUDIT
# =============================================================================

@dataclass(frozen=True)
class AuditFinding:
    entity_type: str
    id: int
    kind: str
    field: str
    persisted_value: object
    recomputed_value: object
    delta: int
    hint: str
    entries: tuple = ()
    drifted_fields: tuple = ()
    repaired: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "kind": self.kind,
            "field": self.field,
            "persisted_value": self.persisted_value,
            "recomputed_value": self.recomputed_value,
            "delta": self.delta,
            "hint": self.hint,
            "entries_contributing_to_anomaly": list(self.entries),
            "drifted_fields": {name: {"persisted": p, "recomputed": r} for name, p, r in self.drifted_fields},
            "repaired": self.repaired,
        }


@dataclass
class AuditReport:
    findings: list = field(default_factory=list)
    invoices_checked: int = 0
    customers_checked: int = 0

    @property
    def drift_findings(self) -> list:
        return [f for f in self.findings if f.kind == FINDING_DRIFT]

    @property
    def anomaly_findings(self) -> list:
        return [f for f in self.findings if f.kind == FINDING_ANOMALY]

    @property
    def repaired_count(self) -> int:
        return sum(1 for f in self.findings if f.repaired)

    @property
    def is_clean(self) -> bool:
        return not self.findings

    def merge(self, other: "AuditReport") -> "AuditReport":
        self.findings.extend(other.findings)
        self.invoices_checked += other.invoices_checked
        self.customers_checked += other.customers_checked
        return self

    def to_dict(self) -> dict:
        return {
            "invoices_checked": self.invoices_checked,
            "customers_checked": self.customers_checked,
            "drift_count": len(self.drift_findings),
            "anomaly_count": len(self.anomaly_findings),
            "repaired_count": self.repaired_count,
            "findings": [f.to_dict() for f in self.findings],
        }


def _tolerance() -> int:
    return int(current_app.config.get("RECON_DRIFT_TOLERANCE_CENTS", 1))


def _close(a: int, b: int, tolerance: int) -> bool:
    return abs(a - b) <= tolerance


def _invoice_hint(invoice: Invoice, totals: InvoiceTotals, tolerance: int) -> tuple[str, tuple]:
    """
    Name the most likely cause of an invoice's drift.

    delta > 0 means the cache claims the customer owes more than they do.
    """
    delta = invoice.remaining_balance_cents - totals.remaining_balance.cents
    returned = totals.total_returned.cents
    paid = totals.payment_amount.cents
    discount = totals.discount_amount.cents

    returns = tuple(r.to_dict(include_items=False) for r in invoice.returns)
    payments = tuple(p.to_dict() for p in invoice.payments if p.is_active) + tuple(
        a.to_dict() for a in invoice.allocations if a.payment.is_active
    )

    if returned and _close(delta, returned, tolerance):
        return HINT_RETURNS_NOT_APPLIED, returns
    if returned and _close(delta, -returned, tolerance):
        return HINT_RETURNS_APPLIED_TWICE, returns
    if paid and _close(delta, paid, tolerance):
        return HINT_PAYMENT_NOT_APPLIED, payments
    if discount and _close(delta, discount, tolerance):
        return HINT_DISCOUNT_NOT_APPLIED, ()
    if not _close(invoice.payment_amount_cents, paid, tolerance):
        return HINT_PAYMENT_TOTAL_MISMATCH, payments
    return HINT_STALE_BALANCE_CACHE, ()


def inspect_invoice(invoice: Invoice, tolerance: int | None = None) -> Optional[AuditFinding]:
    """Compare an invoice's caches with a fresh recomputation. Read-only."""
    if tolerance is None:
        tolerance = _tolerance()
    totals = compute_invoice_totals(invoice)
    recomputed = _cache_values(totals)

    drifted = []
    for column in _CENTS_CACHES:
        persisted = getattr(invoice, column)
        if abs(persisted - recomputed[column]) > tolerance:
            drifted.append((column, persisted, recomputed[column]))
    for column in ("payment_status", "has_returns"):
        if getattr(invoice, column) != recomputed[column]:
            drifted.append((column, getattr(invoice, column), recomputed[column]))
    if not drifted:
        return None

    hint, entries = _invoice_hint(invoice, totals, tolerance)
    persisted = invoice.remaining_balance_cents
    actual = totals.remaining_balance.cents
    return AuditFinding(
        entity_type="invoice",
        id=invoice.id,
        kind=FINDING_DRIFT,
        field="remaining_balance_cents",
        persisted_value=persisted,
        recomputed_value=actual,
        delta=actual - persisted,
        hint=hint,
        entries=entries,
        drifted_fields=tuple(drifted),
    )


def _customer_hint(lines: list, result: LedgerAggregate, delta: int, tolerance: int) -> tuple[str, tuple]:
    """
    Name the most likely cause of a customer's drift.

    delta is persisted minus recomputed. A cache that missed one entry is off
    by minus that entry's contribution; a cache that summed an anomalous entry
    is off by that entry's raw signed amount.
    """
    anomalous_ids = {line.entry_id for anomaly in result.anomalies for line in anomaly.entries}
    valid = [line for line in lines if line.entry_id not in anomalous_ids]

    for group in find_duplicates(valid):
        extra = (len(group) - 1) * signed_amount(group[0]).cents
        if _close(delta, -extra, tolerance):
            return HINT_DUPLICATE_ENTRY, tuple(line.to_dict() for line in group)

    for anomaly in result.anomalies:
        for line in anomaly.entries:
            if _close(delta, signed_amount(line).cents, tolerance):
                return HINT_LEDGER_ANOMALY, (line.to_dict(),)

    for line in reversed(valid):
        if _close(delta, -signed_amount(line).cents, tolerance):
            return HINT_ENTRY_NOT_APPLIED, (line.to_dict(),)

    return HINT_STALE_BALANCE_CACHE, ()


def inspect_customer(customer: Customer, tolerance: int | None = None) -> list[AuditFinding]:
    """Compare a customer's cached balance with a fresh ledger fold. Read-only."""
    if tolerance is None:
        tolerance = _tolerance()
    lines = ledger_lines(customer.id)
    result = aggregate(lines)
    persisted = customer.balance_cents
    actual = result.balance.cents
    findings = []

    if abs(persisted - actual) > tolerance:
        hint, entries = _customer_hint(lines, result, persisted - actual, tolerance)
        findings.append(AuditFinding(
            entity_type="customer",
            id=customer.id,
            kind=FINDING_DRIFT,
            field="balance_cents",
            persisted_value=persisted,
            recomputed_value=actual,
            delta=actual - persisted,
            hint=hint,
            entries=entries,
            drifted_fields=(("balance_cents", persisted, actual),),
        ))

    for anomaly in result.anomalies:
        findings.append(AuditFinding(
            entity_type="customer",
            id=customer.id,
            kind=FINDING_ANOMALY,
            field=anomaly.kind,
            persisted_value=persisted,
            recomputed_value=actual,
            delta=anomaly.amount_cents or 0,
            hint=HINT_LEDGER_ANOMALY,
            entries=tuple(line.to_dict() for line in anomaly.entries),
        ))
    return findings


def _record_correction(entity_type: str, entity_id: int, column: str, persisted, recomputed, hint: str) -> None:
    if isinstance(persisted, bool) or not isinstance(persisted, int):
        return
    db.session.add(BalanceCorrection(
        entity_type=entity_type,
        entity_id=entity_id,
        field=column,
        persisted_cents=persisted,
        recomputed_cents=recomputed,
        hint=hint,
    ))


def repair_invoice(invoice_id: int) -> Optional[AuditFinding]:
    """
    Rewrite a drifted invoice's caches from a fresh recomputation.

    Idempotent: a second run finds nothing to correct and writes nothing.
    SUBMITTED invoices that pass (before or after correction) move to
    RECONCILED and publish invoice.reconciled. A correction on a DRAFT or an
    already RECONCILED invoice publishes invoice.balance_corrected.
    """
    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        finding = inspect_invoice(invoice)
        events = []
        if finding is not None:
            current_app.logger.warning(
                "Repairing invoice %s: %s %s -> %s (%s)",
                invoice.id, finding.field, finding.persisted_value, finding.recomputed_value, finding.hint,
            )
            for column, persisted, recomputed in finding.drifted_fields:
                _record_correction("invoice", invoice.id, column, persisted, recomputed, finding.hint)
            _write_invoice_caches(invoice, compute_invoice_totals(invoice))
            finding = replace(finding, repaired=True)

        if invoice.status == INVOICE_SUBMITTED:
            invoice.status = INVOICE_RECONCILED
            invoice.reconciled_at = utcnow()
            events.append(invoice_event(
                EVENT_INVOICE_RECONCILED, invoice, compute_invoice_totals(invoice),
                corrected=finding is not None,
            ))
        elif finding is not None:
            # DRAFT or already RECONCILED: no state change, but the caches moved
            events.append(invoice_event(
                INVOICE_BALANCE_CORRECTED, invoice, compute_invoice_totals(invoice),
                corrected=True,
                hint=finding.hint,
            ))

        record_events(events)
        db.session.commit()
        return finding, events

    finding, events = run_with_retry(_op)
    publish_events(events)
    return finding


def repair_customer(customer_id: int) -> Optional[AuditFinding]:
    """Rewrite a drifted customer's balance cache from the ledger. Idempotent."""
    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")

        drift = next((f for f in inspect_customer(customer) if f.kind == FINDING_DRIFT), None)
        events = []
        if drift is not None:
            current_app.logger.warning(
                "Repairing customer %s balance: %s -> %s (%s)",
                customer.id, drift.persisted_value, drift.recomputed_value, drift.hint,
            )
            _record_correction(
                "customer", customer.id, "balance_cents",
                drift.persisted_value, drift.recomputed_value, drift.hint,
            )
            customer.balance_cents = drift.recomputed_value
            customer.balance_reconciled_at = utcnow()
            events.append(DomainEvent(
                CUSTOMER_BALANCE_UPDATED,
                "customer",
                customer.id,
                {
                    "balance_cents": drift.recomputed_value,
                    "previous_balance_cents": drift.persisted_value,
                    "corrected": True,
                },
            ))
            drift = replace(drift, repaired=True)

        record_events(events)
        db.session.commit()
        return drift, events

    drift, events = run_with_retry(_op)
    publish_events(events)
    return drift


def audit_invoice(invoice_id: int, repair: bool = False) -> AuditReport:
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")

    finding = inspect_invoice(invoice)
    if finding is not None:
        current_app.logger.warning(
            "Drift on invoice %s: persisted %s, recomputed %s (%s)",
            invoice.id, finding.persisted_value, finding.recomputed_value, finding.hint,
        )
    if repair:
        repaired = repair_invoice(invoice_id)
        finding = repaired if repaired is not None else finding

    report = AuditReport(invoices_checked=1)
    if finding is not None:
        report.findings.append(finding)
    return report


def audit_customer(customer_id: int, repair: bool = False) -> AuditReport:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")

    findings = inspect_customer(customer)
    for finding in findings:
        current_app.logger.warning(
            "%s on customer %s: %s (%s)",
            finding.kind, customer.id, finding.field, finding.hint,
        )
    if repair and any(f.kind == FINDING_DRIFT for f in findings):
        repaired = repair_customer(customer_id)
        findings = [
            repaired if (f.kind == FINDING_DRIFT and repaired is not None) else f
            for f in findings
        ]

    return AuditReport(findings=findings, customers_checked=1)


def audit_all(repair: bool = False) -> AuditReport:
    """Audit every invoice and then every customer."""
    report = AuditReport()
    invoice_ids = [row[0] for row in db.session.query(Invoice.id).order_by(Invoice.id.asc()).all()]
    customer_ids = [row[0] for row in db.session.query(Customer.id).order_by(Customer.id.asc()).all()]

    for invoice_id in invoice_ids:
        report.merge(audit_invoice(invoice_id, repair=repair))
    for customer_id in customer_ids:
        report.merge(audit_customer(customer_id, repair=repair))

    current_app.logger.info(
        "Audit finished: %s invoices, %s customers, %s drift, %s anomalies, %s repaired",
        report.invoices_checked, report.customers_checked,
        len(report.drift_findings), len(report.anomaly_findings), report.repaired_count,
    )
    return report
