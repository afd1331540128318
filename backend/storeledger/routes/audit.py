# Overview: Flask API routes for the drift audit; parses input and returns JSON responses.

# backend/storeledger/routes/audit.py
"""
Drift Audit API Routes

WHY: "Remaining balance shows 10,000 but should show 0" has to be findable
and fixable without a database shell.

DESIGN:
- GET endpoints are read-only reports.
- POST /run with {"repair": true} rewrites drifted caches and records a
  BalanceCorrection per corrected value. Running it twice is harmless.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import reconciliation_service
from ..services.concurrency import ResourceContention
from ..validation import NotFoundError, ValidationError, require_flag


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


def _repair_flag() -> bool:
    return request.args.get("repair", "false").lower() == "true"


@audit_bp.get("/invoices/<int:invoice_id>")
def audit_invoice_route(invoice_id: int):
    try:
        report = reconciliation_service.audit_invoice(invoice_id, repair=False)
        return jsonify(report.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@audit_bp.get("/customers/<int:customer_id>")
def audit_customer_route(customer_id: int):
    try:
        report = reconciliation_service.audit_customer(customer_id, repair=False)
        return jsonify(report.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@audit_bp.post("/run")
def run_audit_route():
    """
    Audit everything, optionally repairing drifted caches.

    Request body:
    {"repair": false}

    Returns:
        200: Audit report
        400: repair is not a JSON boolean
    """
    try:
        data = request.get_json(silent=True) or {}
        repair = require_flag(data.get("repair"), "repair", default=False) or _repair_flag()
        report = reconciliation_service.audit_all(repair=repair)
        return jsonify(report.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Audit run failed")
        return jsonify({"error": "Internal server error"}), 500
