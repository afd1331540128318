# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/storeledger/routes/payments.py
"""
Payment API Routes

DESIGN:
- Payments against an invoice are checked against the remaining balance
  recomputed inside the transaction (15000 against 13000 outstanding is a
  400, not a negative balance).
- Cancel keeps the payment row (status CANCELLED) and posts a reversal.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import payment_service
from ..services.concurrency import ResourceContention
from ..validation import NotFoundError, ValidationError
from .invoices import invoice_response


payments_bp = Blueprint("payments", __name__, url_prefix="/api")


@payments_bp.post("/invoices/<int:invoice_id>/payments")
def record_payment_route(invoice_id: int):
    """
    Record a payment against an invoice.

    Request body:
    {
        "amount_cents": 13000,
        "method": "cash" | "bank_transfer" | "cheque" | "card" | "other",
        "reference": "CHQ-0042",   (optional)
        "notes": "..."             (optional)
    }

    Returns:
        201: Payment recorded; updated invoice returned
        400: Invalid amount or method, or draft invoice
        404: Invoice not found
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount_cents") is None:
            return jsonify({"error": "amount_cents required"}), 400

        payment = payment_service.record_payment(
            invoice_id,
            data["amount_cents"],
            method=data.get("method", payment_service.METHOD_CASH),
            reference=data.get("reference"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict(), "invoice": invoice_response(invoice_id)}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/invoices/<int:invoice_id>/payments")
def list_payments_route(invoice_id: int):
    try:
        include_cancelled = request.args.get("include_cancelled", "true").lower() == "true"
        payments = payment_service.list_invoice_payments(invoice_id, include_cancelled=include_cancelled)
        return jsonify({"invoice_id": invoice_id, "payments": [p.to_dict() for p in payments]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@payments_bp.post("/payments/<int:payment_id>/cancel")
def cancel_payment_route(payment_id: int):
    """
    Cancel a payment.

    Request body:
    {"reason": "Cheque bounced"}   (optional)
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.cancel_payment(payment_id, reason=data.get("reason"))
        body = {"payment": payment.to_dict()}
        if payment.invoice_id:
            body["invoice"] = invoice_response(payment.invoice_id)
        return jsonify(body), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to cancel payment")
        return jsonify({"error": "Internal server error"}), 500
