"""
Payment and return tests.

Verifies:
- 23000 billed, 10000 returned, 13000 paid leaves nothing outstanding
- A payment above the recomputed remaining balance is refused
- Cancelling keeps the payment row and reverses its ledger credit
- Payments on account are allocated to open invoices oldest first
- Returns restock, credit the customer and cannot exceed what was sold
"""

import pytest

from storeledger.extensions import db
from storeledger.domain.ledger_math import REF_PAYMENT, REF_PAYMENT_REVERSAL, REF_RETURN
from storeledger.models import (
    Customer,
    CustomerLedgerEntry,
    DomainEventRecord,
    Invoice,
    Payment,
    PaymentAllocation,
    Product,
    StockMovement,
)
from storeledger.services import customer_service, invoice_service, payment_service, return_service
from storeledger.services.events import INVOICE_PAYMENT_ALLOCATED
from storeledger.services.ledger_service import invoice_entries
from storeledger.services.reconciliation_service import audit_all
from storeledger.validation import NotFoundError, ValidationError


@pytest.fixture
def invoice(db_session, customer, cement):
    """Submitted invoice: 23 bags of cement, Rs. 230.00."""
    return invoice_service.create_invoice(
        customer.id, [{"product_id": cement.id, "quantity": "23"}],
    )


def return_bags(invoice, quantity):
    return return_service.record_return(
        invoice.id,
        [{"invoice_item_id": invoice.items[0].id, "quantity": quantity}],
        reason="Damp bags",
    )


# =============================================================================
# PAYMENTS
# =============================================================================


class TestPayments:

    def test_return_then_payment_settles_invoice(self, invoice, customer):
        return_bags(invoice, "10")
        invoice_row = db.session.get(Invoice, invoice.id)
        assert invoice_row.total_returned_cents == 10000
        assert invoice_row.remaining_balance_cents == 13000

        payment = payment_service.record_payment(invoice.id, 13000, method="bank_transfer")

        invoice_row = db.session.get(Invoice, invoice.id)
        assert payment.status == "RECORDED"
        assert invoice_row.grand_total_cents == 23000
        assert invoice_row.payment_amount_cents == 13000
        assert invoice_row.remaining_balance_cents == 0
        assert invoice_row.payment_status == "PAID"
        assert db.session.get(Customer, customer.id).balance_cents == 0

    def test_payment_above_remaining_rejected(self, invoice, customer):
        return_bags(invoice, "10")

        with pytest.raises(ValidationError) as exc:
            payment_service.record_payment(invoice.id, 15000)

        assert exc.value.details["remaining_balance_cents"] == 13000
        assert db.session.query(Payment).count() == 0
        assert db.session.get(Invoice, invoice.id).remaining_balance_cents == 13000
        assert db.session.get(Customer, customer.id).balance_cents == 13000

    def test_partial_payments(self, invoice):
        payment_service.record_payment(invoice.id, 5000)
        payment_service.record_payment(invoice.id, "3000")

        invoice_row = db.session.get(Invoice, invoice.id)
        assert invoice_row.payment_amount_cents == 8000
        assert invoice_row.remaining_balance_cents == 15000
        assert invoice_row.payment_status == "PARTIAL"

    @pytest.mark.parametrize("amount", [0, -100, 99.5, "12.50", True, None])
    def test_bad_amounts(self, invoice, amount):
        with pytest.raises(ValidationError):
            payment_service.record_payment(invoice.id, amount)

    def test_bad_method(self, invoice):
        with pytest.raises(ValidationError):
            payment_service.record_payment(invoice.id, 100, method="barter")

    def test_draft_invoice_cannot_be_paid(self, db_session, customer, cement):
        draft = invoice_service.create_invoice(
            customer.id, [{"product_id": cement.id, "quantity": "1"}], submit=False,
        )
        with pytest.raises(ValidationError):
            payment_service.record_payment(draft.id, 100)

    def test_payment_posts_ledger_credit(self, invoice):
        payment = payment_service.record_payment(invoice.id, 5000, reference="CHQ-0042")
        credits = [e for e in invoice_entries(invoice.id) if e.reference_type == REF_PAYMENT]
        assert len(credits) == 1
        assert credits[0].entry_type == "credit"
        assert credits[0].amount_cents == 5000
        assert credits[0].reference_id == payment.id

    def test_unknown_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            payment_service.record_payment(999999, 100)


class TestCancelPayment:

    def test_cancel_restores_balance_and_keeps_row(self, invoice, customer):
        payment = payment_service.record_payment(invoice.id, 5000)
        cancelled = payment_service.cancel_payment(payment.id, reason="Cheque bounced")

        assert cancelled.status == "CANCELLED"
        assert cancelled.cancel_reason == "Cheque bounced"
        assert db.session.query(Payment).count() == 1

        invoice_row = db.session.get(Invoice, invoice.id)
        assert invoice_row.payment_amount_cents == 0
        assert invoice_row.remaining_balance_cents == 23000
        assert invoice_row.payment_status == "UNPAID"
        assert db.session.get(Customer, customer.id).balance_cents == 23000

        reversal = [e for e in invoice_entries(invoice.id) if e.reference_type == REF_PAYMENT_REVERSAL]
        assert len(reversal) == 1
        assert reversal[0].entry_type == "debit"
        assert reversal[0].amount_cents == 5000

    def test_cancel_twice_rejected(self, invoice):
        payment = payment_service.record_payment(invoice.id, 5000)
        payment_service.cancel_payment(payment.id)
        with pytest.raises(ValidationError):
            payment_service.cancel_payment(payment.id)

    def test_cancelled_payment_frees_room_for_another(self, invoice):
        payment = payment_service.record_payment(invoice.id, 23000)
        with pytest.raises(ValidationError):
            payment_service.record_payment(invoice.id, 1)
        payment_service.cancel_payment(payment.id)
        payment_service.record_payment(invoice.id, 23000)
        assert db.session.get(Invoice, invoice.id).payment_status == "PAID"

    def test_list_payments(self, invoice):
        first = payment_service.record_payment(invoice.id, 1000)
        payment_service.record_payment(invoice.id, 2000)
        payment_service.cancel_payment(first.id)

        assert len(payment_service.list_invoice_payments(invoice.id)) == 2
        active = payment_service.list_invoice_payments(invoice.id, include_cancelled=False)
        assert [p.amount_cents for p in active] == [2000]


class TestPaymentOnAccount:

    def test_payment_on_account_can_create_credit(self, invoice, customer):
        payment_service.record_customer_payment(customer.id, 30000)

        assert db.session.get(Customer, customer.id).balance_cents == -7000
        ledger = customer_service.get_ledger(customer.id)
        assert ledger["balance_cents"] == -7000
        assert ledger["available_credit_cents"] == 7000
        assert [e["balance_after_cents"] for e in ledger["entries"]] == [23000, -7000]

        # The open invoice is settled first; the rest stays as credit
        invoice_row = db.session.get(Invoice, invoice.id)
        assert invoice_row.remaining_balance_cents == 0
        assert invoice_row.payment_status == "PAID"

    def test_cancel_payment_on_account(self, db_session, customer):
        payment = payment_service.record_customer_payment(customer.id, 1000)
        payment_service.cancel_payment(payment.id)
        assert db.session.get(Customer, customer.id).balance_cents == 0


class TestPaymentAllocation:

    @pytest.fixture
    def two_invoices(self, db_session, customer, cement):
        first = invoice_service.create_invoice(customer.id, [{"product_id": cement.id, "quantity": "10"}])
        second = invoice_service.create_invoice(customer.id, [{"product_id": cement.id, "quantity": "5"}])
        return first, second

    def test_exact_payment_settles_invoice(self, invoice, customer):
        payment = payment_service.record_customer_payment(customer.id, 23000)

        invoice_row = db.session.get(Invoice, invoice.id)
        assert invoice_row.remaining_balance_cents == 0
        assert invoice_row.payment_amount_cents == 23000
        assert invoice_row.payment_status == "PAID"
        assert db.session.get(Customer, customer.id).balance_cents == 0

        allocation = db.session.query(PaymentAllocation).one()
        assert allocation.payment_id == payment.id
        assert allocation.amount_cents == 23000
        assert allocation.invoice_previous_balance_cents == 23000
        assert allocation.invoice_new_balance_cents == 0

    def test_oldest_invoice_first(self, two_invoices, customer):
        first, second = two_invoices
        payment_service.record_customer_payment(customer.id, 12000)

        assert db.session.get(Invoice, first.id).remaining_balance_cents == 0
        assert db.session.get(Invoice, second.id).remaining_balance_cents == 3000
        assert db.session.get(Invoice, second.id).payment_status == "PARTIAL"

        rows = db.session.query(PaymentAllocation).order_by(PaymentAllocation.id).all()
        assert [(r.invoice_id, r.amount_cents, r.allocation_order) for r in rows] == [
            (first.id, 10000, 1),
            (second.id, 2000, 2),
        ]
        # Allocation never writes to the ledger
        assert db.session.query(CustomerLedgerEntry).filter_by(reference_type=REF_PAYMENT).count() == 1

    def test_leftover_credit_applies_to_later_invoice(self, invoice, customer, cement):
        payment_service.record_customer_payment(customer.id, 30000)

        later = invoice_service.create_invoice(customer.id, [{"product_id": cement.id, "quantity": "10"}])

        later_row = db.session.get(Invoice, later.id)
        assert later_row.payment_amount_cents == 7000
        assert later_row.remaining_balance_cents == 3000
        assert db.session.get(Customer, customer.id).balance_cents == 3000

    def test_draft_waits_for_submission(self, db_session, customer, cement):
        payment_service.record_customer_payment(customer.id, 5000)
        draft = invoice_service.create_invoice(
            customer.id, [{"product_id": cement.id, "quantity": "3"}], submit=False,
        )
        assert db.session.get(Invoice, draft.id).remaining_balance_cents == 3000
        assert db.session.query(PaymentAllocation).count() == 0

        invoice_service.submit_invoice(draft.id)
        assert db.session.get(Invoice, draft.id).remaining_balance_cents == 0

    def test_cancel_reopens_allocated_invoices(self, two_invoices, customer):
        first, second = two_invoices
        payment = payment_service.record_customer_payment(customer.id, 15000)
        assert db.session.get(Invoice, second.id).payment_status == "PAID"

        payment_service.cancel_payment(payment.id, reason="Cheque bounced")

        assert db.session.get(Invoice, first.id).remaining_balance_cents == 10000
        assert db.session.get(Invoice, second.id).remaining_balance_cents == 5000
        assert db.session.get(Invoice, first.id).payment_status == "UNPAID"
        assert db.session.get(Customer, customer.id).balance_cents == 15000
        # Rows stay for the trail; they just stop counting
        assert db.session.query(PaymentAllocation).count() == 2

    def test_cancel_falls_back_to_other_credit(self, invoice, customer):
        first = payment_service.record_customer_payment(customer.id, 23000)
        payment_service.record_customer_payment(customer.id, 23000)

        payment_service.cancel_payment(first.id)

        assert db.session.get(Invoice, invoice.id).remaining_balance_cents == 0
        assert db.session.get(Customer, customer.id).balance_cents == 0

    def test_payment_against_allocated_invoice_refused(self, invoice, customer):
        payment_service.record_customer_payment(customer.id, 20000)
        with pytest.raises(ValidationError):
            payment_service.record_payment(invoice.id, 5000)
        payment_service.record_payment(invoice.id, 3000)
        assert db.session.get(Invoice, invoice.id).payment_status == "PAID"

    def test_allocation_event_and_outbox(self, invoice, customer, events):
        payment = payment_service.record_customer_payment(customer.id, 5000)

        allocated = [e for e in events if e.name == INVOICE_PAYMENT_ALLOCATED]
        assert len(allocated) == 1
        assert allocated[0].entity_id == invoice.id
        assert allocated[0].payload["allocated_cents"] == 5000
        assert allocated[0].payload["payment_ids"] == [payment.id]
        assert allocated[0].payload["remaining_balance_cents"] == 18000
        assert db.session.query(DomainEventRecord).filter_by(event_type=INVOICE_PAYMENT_ALLOCATED).count() == 1

    def test_invoice_detail_lists_allocations(self, invoice, customer):
        payment_service.record_customer_payment(customer.id, 5000)
        detail = invoice_service.get_invoice_detail(invoice.id)
        assert [a["amount_cents"] for a in detail["allocations"]] == [5000]
        assert detail["allocations"][0]["payment_status"] == "RECORDED"

    def test_audit_stays_clean(self, two_invoices, customer):
        payment = payment_service.record_customer_payment(customer.id, 12000)
        assert audit_all().is_clean
        payment_service.cancel_payment(payment.id)
        assert audit_all().is_clean


# =============================================================================
# RETURNS
# =============================================================================


class TestReturns:

    def test_return_restocks_and_credits(self, invoice, customer, cement):
        ret = return_bags(invoice, "10")

        assert ret.total_cents == 10000
        assert ret.items[0].line_total_cents == 10000
        assert db.session.get(Product, cement.id).current_stock_canonical == 87
        assert db.session.get(Customer, customer.id).balance_cents == 13000

        movement = db.session.query(StockMovement).filter_by(return_id=ret.id).one()
        assert movement.delta_canonical == 10
        assert movement.reason == "return"

        credit = db.session.query(CustomerLedgerEntry).filter_by(reference_type=REF_RETURN).one()
        assert credit.amount_cents == 10000
        assert credit.reference_id == ret.id

        invoice_row = db.session.get(Invoice, invoice.id)
        assert invoice_row.has_returns is True
        assert invoice_row.grand_total_cents == 23000

    def test_cannot_return_more_than_sold(self, invoice):
        return_bags(invoice, "20")
        with pytest.raises(ValidationError) as exc:
            return_bags(invoice, "4")
        assert exc.value.details["returnable_canonical"] == 3

    def test_lines_for_same_item_are_summed(self, invoice):
        line_id = invoice.items[0].id
        with pytest.raises(ValidationError):
            return_service.record_return(invoice.id, [
                {"invoice_item_id": line_id, "quantity": "12"},
                {"invoice_item_id": line_id, "quantity": "12"},
            ])

    def test_full_return_settles_unpaid_invoice(self, invoice):
        return_bags(invoice, "23")
        invoice_row = db.session.get(Invoice, invoice.id)
        assert invoice_row.remaining_balance_cents == 0
        assert invoice_row.payment_status == "PAID"

    def test_return_credited_at_invoice_price(self, db_session, customer, rice):
        invoice = invoice_service.create_invoice(
            customer.id, [{"product_id": rice.id, "quantity": "10-500", "unit_price_cents": 4000}],
        )
        rice.rate_per_unit_cents = 9999
        db.session.commit()

        ret = return_service.record_return(
            invoice.id, [{"invoice_item_id": invoice.items[0].id, "quantity": "10-500"}],
        )
        assert ret.total_cents == 42000
        assert db.session.get(Invoice, invoice.id).remaining_balance_cents == 0

    def test_partial_returns_never_credit_more_than_line(self, db_session, customer, rice):
        # 3 g at Rs. 5.00 per kg bills 1.5 cents, rounded to 2
        invoice = invoice_service.create_invoice(
            customer.id, [{"product_id": rice.id, "quantity": "0-003", "unit_price_cents": 500}],
        )
        item_id = invoice.items[0].id
        assert invoice.items[0].line_total_cents == 2

        credits = [
            return_service.record_return(
                invoice.id, [{"invoice_item_id": item_id, "quantity": "0-001"}],
            ).total_cents
            for _ in range(3)
        ]

        assert credits == [1, 0, 1]
        invoice_row = db.session.get(Invoice, invoice.id)
        assert invoice_row.total_returned_cents == 2
        assert invoice_row.remaining_balance_cents == 0
        assert db.session.get(Customer, customer.id).balance_cents == 0
        assert audit_all().is_clean

    def test_split_return_matches_single_return(self, db_session, customer, rice):
        invoice = invoice_service.create_invoice(
            customer.id, [{"product_id": rice.id, "quantity": "1-333", "unit_price_cents": 100}],
        )
        item_id = invoice.items[0].id
        return_service.record_return(invoice.id, [{"invoice_item_id": item_id, "quantity": "0-333"}])
        return_service.record_return(invoice.id, [{"invoice_item_id": item_id, "quantity": "0-333"}])

        # 0-666 at Rs. 1.00 per kg is 66.6 cents, rounded once to 67
        assert db.session.get(Invoice, invoice.id).total_returned_cents == 67

    @pytest.mark.parametrize("quantity", ["0", "-1", "1.5"])
    def test_bad_quantities(self, invoice, quantity):
        with pytest.raises(ValidationError):
            return_bags(invoice, quantity)

    def test_empty_return_rejected(self, invoice):
        with pytest.raises(ValidationError):
            return_service.record_return(invoice.id, [])

    def test_draft_invoice_rejected(self, db_session, customer, cement):
        draft = invoice_service.create_invoice(
            customer.id, [{"product_id": cement.id, "quantity": "1"}], submit=False,
        )
        with pytest.raises(ValidationError):
            return_service.record_return(
                draft.id, [{"invoice_item_id": draft.items[0].id, "quantity": "1"}],
            )

    def test_unknown_item(self, invoice):
        with pytest.raises(NotFoundError):
            return_service.record_return(invoice.id, [{"invoice_item_id": 999999, "quantity": "1"}])
