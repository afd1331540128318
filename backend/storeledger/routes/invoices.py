# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/storeledger/routes/invoices.py
"""
Invoice API Routes

DESIGN:
- Every response carries the invoice detail recomputed by the service
  layer: items, totals, derived states, payments and returns.
- Item quantities are text in the product's unit; prices are cents.
- INSUFFICIENT stock answers 409 with the stock evaluation, unless the
  request sends "force": true.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import invoice_service
from ..services.concurrency import ResourceContention
from ..display import with_money_display
from ..validation import InsufficientStockError, NotFoundError, ValidationError, require_flag


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

_MONEY_KEYS = (
    "subtotal_cents",
    "discount_amount_cents",
    "grand_total_cents",
    "total_returned_cents",
    "effective_total_cents",
    "payment_amount_cents",
    "remaining_balance_cents",
)


def invoice_response(invoice_id: int) -> dict:
    return with_money_display(invoice_service.get_invoice_detail(invoice_id), *_MONEY_KEYS)


def _insufficient(e: InsufficientStockError):
    evaluation = e.evaluation
    return jsonify({
        "error": str(e),
        "details": e.details,
        "stock_status": evaluation.status.value if evaluation is not None else None,
    }), 409


@invoices_bp.post("/")
def create_invoice_route():
    """
    Create (and by default submit) an invoice.

    Request body:
    {
        "customer_id": 1,
        "items": [
            {"product_id": 3, "quantity": "10-500", "unit_price_cents": 4500},
            {"product_id": 4, "quantity": "12"}
        ],
        "discount_percent": "5",   (optional, 0..100)
        "notes": "...",            (optional)
        "submit": true,            (optional, default: true)
        "force": false             (optional)
    }

    Returns:
        201: Invoice created
        400: Invalid input
        404: Customer or product not found
        409: Insufficient stock
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("customer_id") is None:
            return jsonify({"error": "customer_id required"}), 400

        invoice = invoice_service.create_invoice(
            data["customer_id"],
            data.get("items", []),
            discount_percent=data.get("discount_percent"),
            notes=data.get("notes"),
            submit=require_flag(data.get("submit"), "submit", default=True),
            force=require_flag(data.get("force"), "force", default=False),
        )
        return jsonify({"invoice": invoice_response(invoice.id)}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return _insufficient(e)
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        return jsonify({"invoice": invoice_response(invoice_id)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@invoices_bp.post("/<int:invoice_id>/submit")
def submit_invoice_route(invoice_id: int):
    try:
        data = request.get_json(silent=True) or {}
        invoice_service.submit_invoice(invoice_id, force=require_flag(data.get("force"), "force", default=False))
        return jsonify({"invoice": invoice_response(invoice_id)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return _insufficient(e)
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to submit invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/items")
def add_item_route(invoice_id: int):
    """
    Request body:
    {"product_id": 3, "quantity": "2-250", "unit_price_cents": 4500, "force": false}
    """
    try:
        data = request.get_json(silent=True) or {}
        item = invoice_service.add_item(
            invoice_id,
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            unit_price_cents=data.get("unit_price_cents"),
            force=require_flag(data.get("force"), "force", default=False),
        )
        return jsonify({"item": item.to_dict(), "invoice": invoice_response(invoice_id)}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return _insufficient(e)
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to add invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.patch("/<int:invoice_id>/items/<int:item_id>")
def update_item_route(invoice_id: int, item_id: int):
    """
    Request body (either or both):
    {"quantity": "3-0", "unit_price_cents": 4400, "force": false}
    """
    try:
        data = request.get_json(silent=True) or {}
        item = invoice_service.update_item(
            invoice_id,
            item_id,
            quantity=data.get("quantity"),
            unit_price_cents=data.get("unit_price_cents"),
            force=require_flag(data.get("force"), "force", default=False),
        )
        return jsonify({"item": item.to_dict(), "invoice": invoice_response(invoice_id)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return _insufficient(e)
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to update invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>/items/<int:item_id>")
def remove_item_route(invoice_id: int, item_id: int):
    try:
        invoice_service.remove_item(invoice_id, item_id)
        return jsonify({"invoice": invoice_response(invoice_id)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to remove invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.patch("/<int:invoice_id>/discount")
def set_discount_route(invoice_id: int):
    """Request body: {"discount_percent": "12.5"}"""
    try:
        data = request.get_json(silent=True) or {}
        if "discount_percent" not in data:
            return jsonify({"error": "discount_percent required"}), 400
        invoice_service.set_discount(invoice_id, data["discount_percent"])
        return jsonify({"invoice": invoice_response(invoice_id)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to set invoice discount")
        return jsonify({"error": "Internal server error"}), 500
