import pytest

from storeledger.domain.stock import StockStatus, evaluate, evaluate_restock
from storeledger.domain.units import format_quantity, parse_quantity


def kg(text):
    return parse_quantity(text, "kg-grams")


class TestEvaluate:

    def test_ok(self):
        result = evaluate(kg("100-0"), kg("40-0"), kg("10-0"))
        assert result.status is StockStatus.OK
        assert format_quantity(result.new_stock) == "60-0"
        assert not result.is_blocking

    def test_low_at_or_below_threshold(self):
        assert evaluate(kg("100-0"), kg("95-0"), kg("10-0")).status is StockStatus.LOW
        assert evaluate(kg("100-0"), kg("90-0"), kg("10-0")).status is StockStatus.LOW

    def test_taking_everything_is_low_not_insufficient(self):
        result = evaluate(kg("100-0"), kg("100-0"), kg("0-0"))
        assert result.status is StockStatus.LOW
        assert result.new_stock_canonical == 0

    def test_insufficient_reports_shortfall_and_clamps(self):
        result = evaluate(kg("100-0"), kg("120-250"), kg("10-0"))
        assert result.status is StockStatus.INSUFFICIENT
        assert result.is_blocking
        assert result.shortfall_canonical == 20250
        assert result.new_stock_canonical == 0

    def test_mixed_units_refused(self):
        with pytest.raises(TypeError):
            evaluate(kg("1-0"), parse_quantity("1", "bag"), kg("0-0"))


class TestEvaluateRestock:

    def test_restock_never_blocks(self):
        result = evaluate_restock(kg("0-0"), kg("2-500"), kg("10-0"))
        assert result.status is StockStatus.LOW
        assert format_quantity(result.new_stock) == "2-500"

    def test_restock_above_threshold(self):
        result = evaluate_restock(kg("9-0"), kg("5-0"), kg("10-0"))
        assert result.status is StockStatus.OK
        assert result.new_stock_canonical == 14000
