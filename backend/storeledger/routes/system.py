# backend/storeledger/routes/system.py
"""
System health and reference endpoints.

Health checks the database and the event bus; /units lists the quantity
unit types a product can be created with.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Customer, Invoice, Product
from ..domain.units import UNIT_TYPES
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity with a count over the core tables.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        details = {
            "products": db.session.query(Product).count(),
            "customers": db.session.query(Customer).count(),
            "invoices": db.session.query(Invoice).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_event_bus_health() -> dict:
    bus = current_app.extensions.get("event_bus")
    if bus is None:
        return {"status": "unhealthy", "error": "Event bus not configured"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All systems healthy
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    event_bus_health = check_event_bus_health()

    all_checks = [database_health, event_bus_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "event_bus": event_bus_health,
        }
    }

    return response, http_status


@system_bp.get("/units")
def list_units():
    units = []
    for unit in UNIT_TYPES.values():
        units.append({
            "code": unit.code,
            "label": unit.label,
            "is_compound": unit.is_compound,
            "canonical_per_unit": unit.canonical_per_unit,
        })
    return {"units": units}, 200
