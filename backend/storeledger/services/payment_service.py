# Overview: Service-layer operations for payments; recording, general payments on account and cancellation.

"""
Payment Service

WHY: Customers pay invoices in parts, pay on account without naming an
invoice, and sometimes a payment has to be taken back (bounced cheque,
keyed against the wrong invoice).

DESIGN PRINCIPLES:
- A payment against an invoice is checked against the remaining balance
  recomputed inside the transaction, never against the cached column.
- Every payment credits the customer ledger in the same transaction.
- Cancelling never deletes: the payment is marked CANCELLED and a
  payment_reversal debit offsets its credit.
- Payments on account are allocated FIFO to open invoices through
  PaymentAllocation rows; see reconciliation_service.allocate_customer_credit.
"""

from ..extensions import db
from ..models import Payment
from ..domain.invoice_math import validate_payment_amount
from ..domain.ledger_math import EntryType, REF_PAYMENT, REF_PAYMENT_REVERSAL
from ..domain.money import Money
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, optional_text, require_cents
from .concurrency import lock_for_update, run_with_retry
from .customer_service import get_customer
from .events import INVOICE_PAYMENT_CANCELLED, INVOICE_PAYMENT_RECORDED, publish_events
from .invoice_service import get_invoice
from .ledger_service import append_ledger_entry
from .reconciliation_service import INVOICE_DRAFT, compute_invoice_totals, finish_mutation


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_CHEQUE = "cheque"
METHOD_CARD = "card"
METHOD_OTHER = "other"

VALID_METHODS = [
    METHOD_CASH,
    METHOD_BANK_TRANSFER,
    METHOD_CHEQUE,
    METHOD_CARD,
    METHOD_OTHER,
]

PAYMENT_RECORDED = "RECORDED"
PAYMENT_CANCELLED = "CANCELLED"


def _validate_method(method: str) -> str:
    if method not in VALID_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")
    return method


# =============================================================================
# PAYMENT RECORDING
# =============================================================================

def record_payment(
    invoice_id: int,
    amount_cents,
    *,
    method: str = METHOD_CASH,
    reference: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Record a payment against a submitted invoice.

    Args:
        invoice_id: Invoice being paid
        amount_cents: Amount received (in cents)
        method: cash, bank_transfer, cheque, card, other
        reference: Cheque number, transfer reference, ... (optional)

    Returns:
        Payment record

    Raises:
        ValidationError: amount not positive, above the remaining balance, or
            the invoice is still a draft
    """
    amount = Money(require_cents(amount_cents, "amount_cents"))
    method = _validate_method(method)
    reference = optional_text(reference, "reference", max_length=128)
    notes = optional_text(notes, "notes")

    def _op():
        invoice = get_invoice(invoice_id)
        get_customer(invoice.customer_id, lock=True)
        invoice = get_invoice(invoice_id, lock=True)

        if invoice.status == INVOICE_DRAFT:
            raise ValidationError("Submit the invoice before recording payments against it")

        # Validate against fresh state, not the cached remaining balance
        validate_payment_amount(amount, compute_invoice_totals(invoice))

        payment = Payment(
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            amount_cents=amount.cents,
            method=method,
            reference=reference,
            notes=notes,
            status=PAYMENT_RECORDED,
            recorded_at=utcnow(),
        )
        db.session.add(payment)
        db.session.flush()

        append_ledger_entry(
            customer_id=invoice.customer_id,
            entry_type=EntryType.CREDIT,
            amount_cents=amount.cents,
            description=f"Payment on {invoice.bill_number} ({method})",
            reference_type=REF_PAYMENT,
            reference_id=payment.id,
            invoice_id=invoice.id,
        )

        events = finish_mutation(
            event_name=INVOICE_PAYMENT_RECORDED, invoice=invoice, payment_id=payment.id,
        )
        db.session.commit()
        return payment, events

    payment, events = run_with_retry(_op)
    publish_events(events)
    return payment


def record_customer_payment(
    customer_id: int,
    amount_cents,
    *,
    method: str = METHOD_CASH,
    reference: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Record a payment on account, not tied to an invoice.

    It lowers the customer balance and may take it negative (store credit).
    The amount is allocated to open invoices oldest first; whatever is left
    over is applied to invoices submitted later.
    """
    amount = Money(require_cents(amount_cents, "amount_cents"))
    method = _validate_method(method)
    reference = optional_text(reference, "reference", max_length=128)
    notes = optional_text(notes, "notes")

    def _op():
        get_customer(customer_id, lock=True)
        payment = Payment(
            invoice_id=None,
            customer_id=customer_id,
            amount_cents=amount.cents,
            method=method,
            reference=reference,
            notes=notes,
            status=PAYMENT_RECORDED,
            recorded_at=utcnow(),
        )
        db.session.add(payment)
        db.session.flush()

        append_ledger_entry(
            customer_id=customer_id,
            entry_type=EntryType.CREDIT,
            amount_cents=amount.cents,
            description=f"Payment on account ({method})",
            reference_type=REF_PAYMENT,
            reference_id=payment.id,
        )

        events = finish_mutation(customer_id=customer_id)
        db.session.commit()
        return payment, events

    payment, events = run_with_retry(_op)
    publish_events(events)
    return payment


# =============================================================================
# PAYMENT CANCELLATION
# =============================================================================

def cancel_payment(payment_id: int, reason: str | None = None) -> Payment:
    """
    Cancel a recorded payment.

    WHY: Mistakes happen (wrong invoice, bounced cheque). The payment row is
    kept for the audit trail and its ledger credit is offset by a reversal.
    Invoices that a payment on account was allocated to are reopened and any
    other credit on account is allocated again.

    Raises:
        ValidationError: payment already cancelled
        NotFoundError: payment missing
    """
    reason = optional_text(reason, "reason")

    def _op():
        payment = db.session.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")

        get_customer(payment.customer_id, lock=True)
        invoice = get_invoice(payment.invoice_id, lock=True) if payment.invoice_id else None
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()

        if payment.status != PAYMENT_RECORDED:
            raise ValidationError(f"Payment {payment.id} is already {payment.status}")

        payment.status = PAYMENT_CANCELLED
        payment.cancelled_at = utcnow()
        payment.cancel_reason = reason

        append_ledger_entry(
            customer_id=payment.customer_id,
            entry_type=EntryType.DEBIT,
            amount_cents=payment.amount_cents,
            description=f"Payment {payment.id} cancelled" + (f": {reason}" if reason else ""),
            reference_type=REF_PAYMENT_REVERSAL,
            reference_id=payment.id,
            invoice_id=payment.invoice_id,
        )

        # Allocations of a payment on account stop counting once it is cancelled
        allocated = [get_invoice(a.invoice_id, lock=True) for a in payment.allocations]
        events = finish_mutation(
            event_name=INVOICE_PAYMENT_CANCELLED,
            invoice=invoice,
            invoices=allocated,
            customer_id=payment.customer_id,
            payment_id=payment.id,
        )
        db.session.commit()
        return payment, events

    payment, events = run_with_retry(_op)
    publish_events(events)
    return payment


def list_invoice_payments(invoice_id: int, include_cancelled: bool = True) -> list[Payment]:
    get_invoice(invoice_id)
    query = db.session.query(Payment).filter_by(invoice_id=invoice_id)
    if not include_cancelled:
        query = query.filter_by(status=PAYMENT_RECORDED)
    return query.order_by(Payment.id.asc()).all()
