from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class DomainEventRecord(db.Model):
    """
    Append-only outbox of domain events.

    Written in the same transaction as the change it describes. In-process
    subscribers are notified only after that transaction commits, so a row
    here with no matching notification means the process died in between.
    """
    __tablename__ = "domain_events"
    __table_args__ = (
        db.Index("ix_domain_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    payload = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "payload": json.loads(self.payload) if self.payload else None,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class BalanceCorrection(db.Model):
    """
    Audit trail of cache repairs made by the drift audit.

    Only cached columns are ever corrected; the underlying items, returns,
    payments and ledger entries are left alone.
    """
    __tablename__ = "balance_corrections"
    __table_args__ = (
        db.Index("ix_balance_corrections_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    field = db.Column(db.String(64), nullable=False)
    persisted_cents = db.Column(db.Integer, nullable=False)
    recomputed_cents = db.Column(db.Integer, nullable=False)
    hint = db.Column(db.String(64), nullable=True)
    corrected_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def delta_cents(self) -> int:
        return self.recomputed_cents - self.persisted_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "field": self.field,
            "persisted_cents": self.persisted_cents,
            "recomputed_cents": self.recomputed_cents,
            "delta_cents": self.delta_cents,
            "hint": self.hint,
            "corrected_at": to_utc_z(self.corrected_at),
        }
