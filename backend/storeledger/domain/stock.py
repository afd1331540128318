# Overview: Stock sufficiency and alert classification over canonical quantities.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .units import UnitQuantity, from_canonical, to_canonical


class StockStatus(str, Enum):
    OK = "OK"
    LOW = "LOW"
    INSUFFICIENT = "INSUFFICIENT"


@dataclass(frozen=True)
class StockEvaluation:
    """
    Result of checking a stock movement.

    new_stock is the clamp-to-zero value when status is INSUFFICIENT; it is
    for display only and must not be persisted unless the caller forces the
    operation through.
    """
    new_stock: UnitQuantity
    status: StockStatus
    shortfall_canonical: int = 0

    @property
    def is_blocking(self) -> bool:
        return self.status is StockStatus.INSUFFICIENT

    @property
    def new_stock_canonical(self) -> int:
        return to_canonical(self.new_stock)


def _classify(new_canonical: int, alert_threshold: UnitQuantity) -> StockStatus:
    if new_canonical <= to_canonical(alert_threshold):
        return StockStatus.LOW
    return StockStatus.OK


def evaluate(
    current_stock: UnitQuantity,
    requested: UnitQuantity,
    alert_threshold: UnitQuantity,
) -> StockEvaluation:
    """Classify taking `requested` out of `current_stock`."""
    unit = current_stock.unit
    if requested.unit.code != unit.code or alert_threshold.unit.code != unit.code:
        raise TypeError("Stock, request and alert threshold must share a unit type")

    new_canonical = to_canonical(current_stock) - to_canonical(requested)
    if new_canonical < 0:
        return StockEvaluation(from_canonical(0, unit), StockStatus.INSUFFICIENT, -new_canonical)
    return StockEvaluation(from_canonical(new_canonical, unit), _classify(new_canonical, alert_threshold))


def evaluate_restock(
    current_stock: UnitQuantity,
    returned: UnitQuantity,
    alert_threshold: UnitQuantity,
) -> StockEvaluation:
    """Classify putting `returned` back into stock. Never blocking."""
    unit = current_stock.unit
    if returned.unit.code != unit.code or alert_threshold.unit.code != unit.code:
        raise TypeError("Stock, returned quantity and alert threshold must share a unit type")

    new_canonical = to_canonical(current_stock) + to_canonical(returned)
    return StockEvaluation(from_canonical(new_canonical, unit), _classify(new_canonical, alert_threshold))
