# Overview: Domain events: outbox rows written in the transaction, in-process fan-out after commit.

"""
Domain Events

WHY: Other parts of the application (displays, reports, printers) need to
know when an invoice or a balance changes without polling.

DESIGN:
- The bus is an explicit object held on the Flask app
  (app.extensions["event_bus"]); there is no module-level singleton.
- record_events() writes DomainEventRecord rows inside the caller's unit of
  work. publish_events() runs after commit, so subscribers never see a
  change that was rolled back.
- Events carry the entity id and the new derived totals. Subscribers that
  need more re-read committed state.
"""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable

from flask import current_app

from ..extensions import db
from ..models import DomainEventRecord


INVOICE_CREATED = "invoice.created"
INVOICE_SUBMITTED = "invoice.submitted"
INVOICE_ITEM_ADDED = "invoice.item_added"
INVOICE_ITEM_UPDATED = "invoice.item_updated"
INVOICE_ITEM_REMOVED = "invoice.item_removed"
INVOICE_DISCOUNT_CHANGED = "invoice.discount_changed"
INVOICE_PAYMENT_RECORDED = "invoice.payment_recorded"
INVOICE_PAYMENT_CANCELLED = "invoice.payment_cancelled"
INVOICE_RETURN_APPLIED = "invoice.return_applied"
INVOICE_RECONCILED = "invoice.reconciled"
INVOICE_BALANCE_CORRECTED = "invoice.balance_corrected"
INVOICE_PAYMENT_ALLOCATED = "invoice.payment_allocated"
CUSTOMER_BALANCE_UPDATED = "customer.balance_updated"
PRODUCT_STOCK_LOW = "product.stock_low"

ALL_EVENTS = "*"


@dataclass(frozen=True)
class DomainEvent:
    name: str
    entity_type: str
    entity_id: int
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "payload": self.payload,
        }


Handler = Callable[[DomainEvent], None]


class EventBus:
    """Synchronous in-process publish/subscribe."""

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> Handler:
        """Register handler for an event name, or ALL_EVENTS for every event."""
        self._handlers[name].append(handler)
        return handler

    def unsubscribe(self, name: str, handler: Handler) -> None:
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        for handler in [*self._handlers.get(event.name, []), *self._handlers.get(ALL_EVENTS, [])]:
            try:
                handler(event)
            except Exception:
                # The change is already committed; a failing subscriber must not undo it
                current_app.logger.exception("Event handler failed for %s", event.name)


def get_event_bus() -> EventBus:
    return current_app.extensions["event_bus"]


def record_events(events: Iterable[DomainEvent]) -> None:
    """Write outbox rows for events inside the current transaction."""
    for event in events:
        db.session.add(DomainEventRecord(
            event_type=event.name,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            payload=json.dumps(event.payload, sort_keys=True),
        ))


def publish_events(events: Iterable[DomainEvent]) -> None:
    """Notify subscribers. Call only after the recording transaction committed."""
    bus = get_event_bus()
    for event in events:
        bus.publish(event)
