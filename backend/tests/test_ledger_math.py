from storeledger.domain.ledger_math import (
    BALANCE_DRIFT,
    NON_POSITIVE_AMOUNT,
    NONZERO_ADJUSTMENT,
    REF_INVOICE_REVISION,
    REF_PAYMENT,
    EntryType,
    LedgerLine,
    aggregate,
    available_credit,
    find_duplicates,
    signed_amount,
)
from storeledger.domain.money import Money


def entry(entry_id, kind, cents, **kwargs):
    return LedgerLine(entry_id=entry_id, entry_type=EntryType(kind), amount=Money(cents), **kwargs)


class TestAggregate:

    def test_debits_minus_credits(self):
        result = aggregate([entry(1, "debit", 32128), entry(2, "credit", 21440)])
        assert result.balance == Money(10688)
        assert result.total_debit == Money(32128)
        assert result.total_credit == Money(21440)
        assert not result.has_anomalies

    def test_running_balance_follows_order(self):
        result = aggregate([
            entry(1, "debit", 10000),
            entry(2, "credit", 4000),
            entry(3, "debit", 500),
        ])
        assert [b.cents for _, b in result.running_balances] == [10000, 6000, 6500]
        assert result.balance_after(2) == Money(6000)
        assert result.balance_after(99) is None

    def test_zero_adjustment_is_a_note(self):
        result = aggregate([entry(1, "debit", 1000), entry(2, "adjustment", 0)])
        assert result.balance == Money(1000)
        assert not result.has_anomalies

    def test_nonzero_adjustment_is_anomalous_and_excluded(self):
        result = aggregate([entry(1, "debit", 1000), entry(2, "adjustment", 500)])
        assert result.balance == Money(1000)
        assert len(result.anomalies) == 1
        anomaly = result.anomalies[0]
        assert anomaly.kind == NONZERO_ADJUSTMENT
        assert anomaly.entity_id == 2
        assert anomaly.amount_cents == 500

    def test_documented_correction_is_signed(self):
        result = aggregate([
            entry(1, "debit", 1000),
            entry(2, "adjustment", -300, is_balance_correction=True),
        ])
        assert result.balance == Money(700)
        assert result.total_corrections == Money(-300)
        assert not result.has_anomalies

    def test_non_positive_debit_is_anomalous(self):
        result = aggregate([entry(1, "debit", 0), entry(2, "credit", -50)])
        assert result.balance == Money(0)
        assert [a.kind for a in result.anomalies] == [NON_POSITIVE_AMOUNT, NON_POSITIVE_AMOUNT]

    def test_empty_ledger(self):
        assert aggregate([]).balance == Money(0)

    def test_anomaly_to_dict_lists_entries(self):
        anomaly = aggregate([entry(7, "adjustment", 250)]).anomalies[0]
        data = anomaly.to_dict()
        assert data["entries"][0]["entry_id"] == 7
        assert data["kind"] != BALANCE_DRIFT


class TestHelpers:

    def test_signed_amount(self):
        assert signed_amount(entry(1, "credit", 400)) == Money(-400)
        assert signed_amount(entry(1, "debit", 400)) == Money(400)

    def test_available_credit(self):
        assert available_credit(Money(-500)) == Money(500)
        assert available_credit(Money(500)) == Money(0)

    def test_find_duplicates_single_post_references_only(self):
        lines = [
            entry(1, "credit", 5000, reference_type=REF_PAYMENT, reference_id=3),
            entry(2, "credit", 5000, reference_type=REF_PAYMENT, reference_id=3),
            entry(3, "debit", 200, reference_type=REF_INVOICE_REVISION, reference_id=9),
            entry(4, "debit", 200, reference_type=REF_INVOICE_REVISION, reference_id=9),
        ]
        groups = find_duplicates(lines)
        assert len(groups) == 1
        assert [line.entry_id for line in groups[0]] == [1, 2]
