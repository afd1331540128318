"""
Invoice service tests.

Verifies:
- Submitting takes stock and posts the grand total to the customer ledger
- Drafts move neither stock nor the ledger
- Item edits move stock by the difference and post revision entries, so an
  invoice's net ledger debit always equals its grand total
- A failed operation leaves nothing behind
"""

import pytest

from storeledger.extensions import db
from storeledger.domain.ledger_math import REF_INVOICE, REF_INVOICE_REVISION
from storeledger.models import (
    Customer,
    CustomerLedgerEntry,
    Invoice,
    Product,
    StockMovement,
)
from storeledger.services import invoice_service, return_service
from storeledger.services.ledger_service import invoice_entries
from storeledger.services.reconciliation_service import (
    INVOICE_DRAFT,
    INVOICE_RECONCILED,
    INVOICE_SUBMITTED,
    repair_invoice,
)
from storeledger.validation import InsufficientStockError, NotFoundError, ValidationError


def item(product, quantity, unit_price_cents=None):
    data = {"product_id": product.id, "quantity": quantity}
    if unit_price_cents is not None:
        data["unit_price_cents"] = unit_price_cents
    return data


def net_posted(invoice_id):
    total = 0
    for entry in invoice_entries(invoice_id):
        if entry.reference_type in (REF_INVOICE, REF_INVOICE_REVISION):
            total += entry.amount_cents if entry.entry_type == "debit" else -entry.amount_cents
    return total


# =============================================================================
# CREATION AND SUBMISSION
# =============================================================================


class TestCreateInvoice:

    def test_create_submits_takes_stock_and_posts(self, db_session, customer, cement, rice):
        invoice = invoice_service.create_invoice(
            customer.id,
            [item(cement, "23"), item(rice, "10-500")],
        )

        assert invoice.status == INVOICE_SUBMITTED
        assert invoice.bill_number == f"INV-{invoice.id:06d}"
        assert invoice.subtotal_cents == 23000 + 47250
        assert invoice.grand_total_cents == 70250
        assert invoice.remaining_balance_cents == 70250
        assert invoice.payment_status == "UNPAID"
        assert invoice.posted_total_cents == 70250

        assert db.session.get(Product, cement.id).current_stock_canonical == 77
        assert db.session.get(Product, rice.id).current_stock_canonical == 489500
        assert db.session.get(Customer, customer.id).balance_cents == 70250

        entries = invoice_entries(invoice.id)
        assert len(entries) == 1
        assert entries[0].reference_type == REF_INVOICE
        assert entries[0].amount_cents == 70250

    def test_unit_price_override_is_frozen_on_line(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10", unit_price_cents=950)])
        assert invoice.grand_total_cents == 9500

        cement = db.session.get(Product, cement.id)
        cement.rate_per_unit_cents = 2000
        db.session.commit()
        assert db.session.get(Invoice, invoice.id).items[0].unit_price_cents == 950

    def test_discount(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "20")], discount_percent="12.5")
        assert invoice.discount_amount_cents == 2500
        assert invoice.grand_total_cents == 17500
        assert db.session.get(Customer, customer.id).balance_cents == 17500

    def test_draft_moves_nothing(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "5")], submit=False)

        assert invoice.status == INVOICE_DRAFT
        assert invoice.grand_total_cents == 5000
        assert invoice.posted_total_cents == 0
        assert db.session.get(Product, cement.id).current_stock_canonical == 100
        assert invoice_entries(invoice.id) == []
        assert db.session.get(Customer, customer.id).balance_cents == 0

    def test_submit_draft(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "5")], submit=False)
        invoice = invoice_service.submit_invoice(invoice.id)

        assert invoice.status == INVOICE_SUBMITTED
        assert invoice.submitted_at is not None
        assert db.session.get(Product, cement.id).current_stock_canonical == 95
        assert db.session.get(Customer, customer.id).balance_cents == 5000

        with pytest.raises(ValidationError):
            invoice_service.submit_invoice(invoice.id)

    def test_submit_empty_draft_rejected(self, db_session, customer):
        invoice = invoice_service.create_invoice(customer.id, [], submit=False)
        with pytest.raises(ValidationError):
            invoice_service.submit_invoice(invoice.id)

    def test_unknown_customer_or_product(self, db_session, customer, cement):
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(999999, [item(cement, "1")])
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(customer.id, [{"product_id": 999999, "quantity": "1"}])

    @pytest.mark.parametrize("quantity", ["0", "1.5", "abc"])
    def test_bad_quantity(self, db_session, customer, cement, quantity):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(customer.id, [item(cement, quantity)])
        assert db.session.query(Invoice).count() == 0

    def test_compound_quantity_missing_grams(self, db_session, customer, rice):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(customer.id, [item(rice, "10")])

    @pytest.mark.parametrize("discount", [12.5, "101", "2.555"])
    def test_bad_discount(self, db_session, customer, cement, discount):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(customer.id, [item(cement, "1")], discount_percent=discount)

    def test_float_price_rejected(self, db_session, customer, cement):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(customer.id, [item(cement, "1", unit_price_cents=9.99)])


class TestStockChecks:

    def test_insufficient_stock_leaves_nothing_behind(self, db_session, customer, cement):
        with pytest.raises(InsufficientStockError) as exc:
            invoice_service.create_invoice(customer.id, [item(cement, "120")])

        assert exc.value.evaluation.shortfall_canonical == 20
        assert db.session.query(Invoice).count() == 0
        assert db.session.query(CustomerLedgerEntry).count() == 0
        assert db.session.get(Product, cement.id).current_stock_canonical == 100

    def test_forced_override_clamps_and_records_shortfall(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "120")], force=True)

        assert invoice.grand_total_cents == 120000
        assert db.session.get(Product, cement.id).current_stock_canonical == 0
        movement = (
            db.session.query(StockMovement)
            .filter_by(product_id=cement.id, invoice_id=invoice.id)
            .one()
        )
        assert movement.forced is True
        assert movement.shortfall_canonical == 20
        assert movement.delta_canonical == -100
        assert movement.status_after == "INSUFFICIENT"


# =============================================================================
# ITEM EDITS
# =============================================================================


class TestItemEdits:

    def test_increase_quantity_takes_stock_and_posts_revision(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10")])
        line = invoice.items[0]

        invoice_service.update_item(invoice.id, line.id, quantity="15")
        invoice = db.session.get(Invoice, invoice.id)

        assert invoice.grand_total_cents == 15000
        assert db.session.get(Product, cement.id).current_stock_canonical == 85
        assert db.session.get(Customer, customer.id).balance_cents == 15000
        revisions = [e for e in invoice_entries(invoice.id) if e.reference_type == REF_INVOICE_REVISION]
        assert len(revisions) == 1
        assert revisions[0].entry_type == "debit"
        assert revisions[0].amount_cents == 5000
        assert net_posted(invoice.id) == invoice.grand_total_cents

    def test_decrease_quantity_restocks_and_credits(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10")])
        line = invoice.items[0]

        invoice_service.update_item(invoice.id, line.id, quantity="4")
        invoice = db.session.get(Invoice, invoice.id)

        assert invoice.grand_total_cents == 4000
        assert db.session.get(Product, cement.id).current_stock_canonical == 96
        assert db.session.get(Customer, customer.id).balance_cents == 4000
        assert net_posted(invoice.id) == 4000

    def test_price_change(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10")])
        line = invoice_service.update_item(invoice.id, invoice.items[0].id, unit_price_cents=1200)
        assert line.line_total_cents == 12000
        assert db.session.get(Invoice, invoice.id).grand_total_cents == 12000
        assert db.session.get(Product, cement.id).current_stock_canonical == 90

    def test_quantity_cannot_drop_below_returned(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10")])
        line_id = invoice.items[0].id
        return_service.record_return(invoice.id, [{"invoice_item_id": line_id, "quantity": "6"}])

        with pytest.raises(ValidationError):
            invoice_service.update_item(invoice.id, line_id, quantity="5")
        with pytest.raises(ValidationError):
            invoice_service.update_item(invoice.id, line_id, quantity="0")

        invoice_service.update_item(invoice.id, line_id, quantity="6")
        assert db.session.get(Invoice, invoice.id).remaining_balance_cents == 0

    def test_add_item_to_submitted_invoice(self, db_session, customer, cement, rice):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10")])
        invoice_service.add_item(invoice.id, product_id=rice.id, quantity="2-0")

        invoice = db.session.get(Invoice, invoice.id)
        assert len(invoice.items) == 2
        assert invoice.grand_total_cents == 10000 + 9000
        assert db.session.get(Product, rice.id).current_stock_canonical == 498000
        assert db.session.get(Customer, customer.id).balance_cents == 19000

    def test_add_item_insufficient_rolls_back(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "90")])
        with pytest.raises(InsufficientStockError):
            invoice_service.add_item(invoice.id, product_id=cement.id, quantity="20")

        invoice = db.session.get(Invoice, invoice.id)
        assert len(invoice.items) == 1
        assert invoice.grand_total_cents == 90000
        assert db.session.get(Product, cement.id).current_stock_canonical == 10

    def test_remove_item_restocks(self, db_session, customer, cement, rice):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10"), item(rice, "1-0")])
        rice_line = next(i for i in invoice.items if i.product_id == rice.id)

        invoice_service.remove_item(invoice.id, rice_line.id)

        invoice = db.session.get(Invoice, invoice.id)
        assert [i.product_id for i in invoice.items] == [cement.id]
        assert invoice.grand_total_cents == 10000
        assert db.session.get(Product, rice.id).current_stock_canonical == 500000
        assert db.session.get(Customer, customer.id).balance_cents == 10000
        assert net_posted(invoice.id) == 10000

    def test_remove_item_with_returns_rejected(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10")])
        line_id = invoice.items[0].id
        return_service.record_return(invoice.id, [{"invoice_item_id": line_id, "quantity": "1"}])

        with pytest.raises(ValidationError):
            invoice_service.remove_item(invoice.id, line_id)

    def test_item_from_another_invoice(self, db_session, customer, cement):
        first = invoice_service.create_invoice(customer.id, [item(cement, "1")])
        second = invoice_service.create_invoice(customer.id, [item(cement, "1")])
        with pytest.raises(NotFoundError):
            invoice_service.update_item(second.id, first.items[0].id, quantity="2")

    def test_set_discount_posts_revision_credit(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "20")])
        invoice_service.set_discount(invoice.id, "10")

        invoice = db.session.get(Invoice, invoice.id)
        assert str(invoice.discount_percent) == "10.00"
        assert invoice.grand_total_cents == 18000
        assert db.session.get(Customer, customer.id).balance_cents == 18000
        assert net_posted(invoice.id) == 18000

    def test_draft_edits_move_nothing(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10")], submit=False)
        invoice_service.update_item(invoice.id, invoice.items[0].id, quantity="30")

        invoice = db.session.get(Invoice, invoice.id)
        assert invoice.grand_total_cents == 30000
        assert db.session.get(Product, cement.id).current_stock_canonical == 100
        assert db.session.get(Customer, customer.id).balance_cents == 0


class TestLifecycle:

    def test_mutation_reopens_reconciled_invoice(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10")])
        repair_invoice(invoice.id)
        assert db.session.get(Invoice, invoice.id).status == INVOICE_RECONCILED

        invoice_service.set_discount(invoice.id, "5")
        invoice = db.session.get(Invoice, invoice.id)
        assert invoice.status == INVOICE_SUBMITTED
        assert invoice.reconciled_at is None

    def test_detail_lists_states_and_returned_quantities(self, db_session, customer, cement):
        invoice = invoice_service.create_invoice(customer.id, [item(cement, "10")])
        line_id = invoice.items[0].id
        return_service.record_return(invoice.id, [{"invoice_item_id": line_id, "quantity": "3"}])

        detail = invoice_service.get_invoice_detail(invoice.id)
        assert "HAS_RETURNS" in detail["states"]
        assert "SUBMITTED" in detail["states"]
        assert detail["items"][0]["returned_quantity"] == "3"
        assert detail["effective_total_cents"] == 7000
        assert len(detail["returns"]) == 1
