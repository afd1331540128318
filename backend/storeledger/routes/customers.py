# Overview: Flask API routes for customers and their ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import customer_service, payment_service
from ..services.concurrency import ResourceContention
from ..display import with_money_display
from ..validation import NotFoundError, ValidationError, require_flag


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("/")
def create_customer_route():
    """
    Request body:
    {
        "name": "Hassan Traders",
        "phone": "0300-1234567",   (optional)
        "address": "Main Bazar"    (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        customer = customer_service.create_customer(
            name=data.get("name"),
            phone=data.get("phone"),
            address=data.get("address"),
        )
        return jsonify({"customer": with_money_display(customer.to_dict(), "balance_cents")}), 201

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(customer_id)
        return jsonify({"customer": with_money_display(customer.to_dict(), "balance_cents")}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@customers_bp.get("/<int:customer_id>/ledger")
def get_ledger_route(customer_id: int):
    """
    Full ledger in (occurred_at, id) order with the running balance after
    each entry. Anomalous entries are listed separately and do not move the
    balance.
    """
    try:
        ledger = customer_service.get_ledger(customer_id)
        with_money_display(ledger, "balance_cents", "available_credit_cents")
        return jsonify(ledger), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@customers_bp.post("/<int:customer_id>/ledger")
def post_ledger_entry_route(customer_id: int):
    """
    Post a manual ledger entry.

    Request body:
    {
        "entry_type": "debit" | "credit" | "adjustment",
        "amount_cents": 32128,
        "description": "Opening balance",
        "balance_correction": false   (optional; adjustment only)
    }

    Returns:
        201: Entry posted; customer balance returned
        400: Invalid input
        404: Customer not found
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = customer_service.post_manual_entry(
            customer_id,
            entry_type=data.get("entry_type"),
            amount_cents=data.get("amount_cents", 0),
            description=data.get("description"),
            balance_correction=require_flag(data.get("balance_correction"), "balance_correction", default=False),
        )
        customer = customer_service.get_customer(customer_id)
        return jsonify({
            "entry": entry.to_dict(),
            "customer": with_money_display(customer.to_dict(), "balance_cents"),
        }), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to post ledger entry")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/payments")
def customer_payment_route(customer_id: int):
    """
    Payment on account, not tied to an invoice.

    Request body:
    {
        "amount_cents": 5000,
        "method": "cash",      (optional)
        "reference": "...",    (optional)
        "notes": "..."         (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.record_customer_payment(
            customer_id,
            data.get("amount_cents"),
            method=data.get("method", payment_service.METHOD_CASH),
            reference=data.get("reference"),
            notes=data.get("notes"),
        )
        customer = customer_service.get_customer(customer_id)
        return jsonify({
            "payment": payment.to_dict(),
            "customer": with_money_display(customer.to_dict(), "balance_cents"),
        }), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to record customer payment")
        return jsonify({"error": "Internal server error"}), 500
