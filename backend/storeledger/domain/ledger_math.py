# Overview: Customer balance as an ordered fold of ledger entries, with anomaly flagging.

"""
Ledger Aggregator

    balance = sum(debit) - sum(credit)

folded in the order given (callers pass entries in occurred_at, id order).

Entries that break the ledger's structural rules are reported as
IntegrityAnomaly and left out of the balance:

- an adjustment carrying a nonzero amount, unless it is flagged as a
  documented balance correction
- a debit or credit carrying a zero or negative amount

Documented balance corrections are signed: a positive amount raises the
balance, a negative one lowers it.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from .money import Money


class EntryType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"
    ADJUSTMENT = "adjustment"


# Anomaly kinds
NONZERO_ADJUSTMENT = "NONZERO_ADJUSTMENT"
NON_POSITIVE_AMOUNT = "NON_POSITIVE_AMOUNT"
BALANCE_DRIFT = "BALANCE_DRIFT"

# What a ledger entry was posted for
REF_INVOICE = "invoice"
REF_INVOICE_REVISION = "invoice_revision"
REF_RETURN = "return"
REF_PAYMENT = "payment"
REF_PAYMENT_REVERSAL = "payment_reversal"
REF_MANUAL = "manual"

SINGLE_POST_REFERENCES = frozenset({REF_INVOICE, REF_RETURN, REF_PAYMENT, REF_PAYMENT_REVERSAL})


@dataclass(frozen=True)
class LedgerLine:
    entry_id: Optional[int]
    entry_type: EntryType
    amount: Money
    description: str = ""
    occurred_at: Optional[datetime] = None
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    is_balance_correction: bool = False

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "entry_type": self.entry_type.value,
            "amount_cents": self.amount.cents,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "is_balance_correction": self.is_balance_correction,
        }


@dataclass(frozen=True)
class IntegrityAnomaly:
    """A data-level problem found after the fact. Reported, never raised."""
    kind: str
    message: str
    entity_type: str
    entity_id: Optional[int]
    amount_cents: Optional[int] = None
    entries: tuple = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "amount_cents": self.amount_cents,
            "entries": [e.to_dict() if hasattr(e, "to_dict") else e for e in self.entries],
        }


@dataclass(frozen=True)
class LedgerAggregate:
    balance: Money
    total_debit: Money
    total_credit: Money
    total_corrections: Money
    running_balances: tuple
    anomalies: tuple

    @property
    def has_anomalies(self) -> bool:
        return bool(self.anomalies)

    def balance_after(self, entry_id: int) -> Optional[Money]:
        for eid, balance in self.running_balances:
            if eid == entry_id:
                return balance
        return None


def _anomaly_for(line: LedgerLine) -> Optional[IntegrityAnomaly]:
    if line.entry_type is EntryType.ADJUSTMENT:
        if line.amount.cents != 0 and not line.is_balance_correction:
            return IntegrityAnomaly(
                kind=NONZERO_ADJUSTMENT,
                message=f"Adjustment entry carries {line.amount.cents} cents without being a documented correction",
                entity_type="ledger_entry",
                entity_id=line.entry_id,
                amount_cents=line.amount.cents,
                entries=(line,),
            )
        return None
    if line.amount.cents <= 0:
        return IntegrityAnomaly(
            kind=NON_POSITIVE_AMOUNT,
            message=f"{line.entry_type.value.capitalize()} entry carries a non-positive amount ({line.amount.cents} cents)",
            entity_type="ledger_entry",
            entity_id=line.entry_id,
            amount_cents=line.amount.cents,
            entries=(line,),
        )
    return None


def aggregate(entries: Iterable[LedgerLine]) -> LedgerAggregate:
    debit = credit = corrections = 0
    running = []
    anomalies = []

    for line in entries:
        anomaly = _anomaly_for(line)
        if anomaly is not None:
            anomalies.append(anomaly)
        elif line.entry_type is EntryType.DEBIT:
            debit += line.amount.cents
        elif line.entry_type is EntryType.CREDIT:
            credit += line.amount.cents
        else:
            corrections += line.amount.cents
        running.append((line.entry_id, Money(debit - credit + corrections)))

    return LedgerAggregate(
        balance=Money(debit - credit + corrections),
        total_debit=Money(debit),
        total_credit=Money(credit),
        total_corrections=Money(corrections),
        running_balances=tuple(running),
        anomalies=tuple(anomalies),
    )


def signed_amount(line: LedgerLine) -> Money:
    """Contribution of a well-formed entry to the balance."""
    if line.entry_type is EntryType.CREDIT:
        return -line.amount
    return line.amount


def available_credit(balance: Money) -> Money:
    """Credit the customer holds with the store (a negative balance)."""
    return Money(max(0, -balance.cents))


def find_duplicates(
    entries: Iterable[LedgerLine],
    single_post_references: frozenset = SINGLE_POST_REFERENCES,
) -> list[tuple]:
    """
    Group entries that post the same amount against the same reference twice.

    Only reference types that are posted exactly once (an invoice's opening
    debit, a return, a payment, a payment reversal) are considered; invoice
    revisions and manual postings may legitimately repeat.
    """
    groups: dict[tuple, list[LedgerLine]] = defaultdict(list)
    for line in entries:
        if line.reference_type not in single_post_references or line.reference_id is None:
            continue
        key = (line.entry_type, line.amount.cents, line.reference_type, line.reference_id)
        groups[key].append(line)
    return [tuple(lines) for lines in groups.values() if len(lines) > 1]
