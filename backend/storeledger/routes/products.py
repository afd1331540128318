# Overview: Flask API routes for products and stock; parses input and returns JSON responses.

# backend/storeledger/routes/products.py
"""
Product & Stock API Routes

DESIGN:
- Quantities travel as text in the product's unit ("155-20" for kg-grams,
  "12" for bags) and are parsed by the service.
- Stock checks are read-only; adjustments append a StockMovement.
- An "out" adjustment larger than stock is refused with 409 unless
  "force": true is sent.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import inventory_service
from ..services.concurrency import ResourceContention
from ..domain.units import format_quantity
from ..display import with_money_display
from ..validation import InsufficientStockError, NotFoundError, ValidationError, require_flag


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _evaluation_dict(evaluation) -> dict:
    return {
        "status": evaluation.status.value,
        "new_stock": format_quantity(evaluation.new_stock),
        "new_stock_canonical": evaluation.new_stock_canonical,
        "shortfall_canonical": evaluation.shortfall_canonical,
        "is_blocking": evaluation.is_blocking,
    }


@products_bp.post("/")
def create_product_route():
    """
    Create a product.

    Request body:
    {
        "name": "Basmati Rice",
        "unit_type": "kg-grams",
        "rate_per_unit_cents": 45000,
        "current_stock": "155-20",   (optional, default: 0)
        "min_stock_alert": "10-0"    (optional, default: 0)
    }

    Returns:
        201: Product created
        400: Invalid input
    """
    try:
        data = request.get_json(silent=True) or {}
        product = inventory_service.create_product(
            name=data.get("name"),
            unit_type=data.get("unit_type"),
            rate_per_unit_cents=data.get("rate_per_unit_cents"),
            current_stock=data.get("current_stock"),
            min_stock_alert=data.get("min_stock_alert"),
        )
        return jsonify({"product": with_money_display(product.to_dict(), "rate_per_unit_cents")}), 201

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(product_id)
        return jsonify({"product": with_money_display(product.to_dict(), "rate_per_unit_cents")}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@products_bp.post("/<int:product_id>/adjust-stock")
def adjust_stock_route(product_id: int):
    """
    Manual stock adjustment.

    Request body:
    {
        "quantity": "2-500",
        "direction": "in" | "out",
        "note": "Breakage",   (optional)
        "force": false        (optional)
    }

    Returns:
        200: Adjusted; product and movement returned
        400: Invalid input
        404: Product not found
        409: Insufficient stock (not forced)
    """
    try:
        data = request.get_json(silent=True) or {}
        if "quantity" not in data or "direction" not in data:
            return jsonify({"error": "quantity and direction required"}), 400

        product, movement = inventory_service.adjust_stock(
            product_id,
            data["quantity"],
            direction=data["direction"],
            note=data.get("note"),
            force=require_flag(data.get("force"), "force", default=False),
        )
        return jsonify({"product": product.to_dict(), "movement": movement.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return jsonify({
            "error": str(e),
            "details": e.details,
            "evaluation": _evaluation_dict(e.evaluation) if e.evaluation else None,
        }), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/stock-check")
def stock_check_route(product_id: int):
    """
    Evaluate taking ?quantity= out of stock without changing anything.

    Returns:
        200: {status: OK | LOW | INSUFFICIENT, new_stock, shortfall_canonical}
    """
    try:
        quantity = request.args.get("quantity")
        if quantity is None:
            return jsonify({"error": "quantity query parameter required"}), 400
        evaluation = inventory_service.check_stock(product_id, quantity)
        return jsonify({"product_id": product_id, "evaluation": _evaluation_dict(evaluation)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400


@products_bp.get("/<int:product_id>/movements")
def list_movements_route(product_id: int):
    try:
        movements = inventory_service.list_movements(product_id)
        return jsonify({"product_id": product_id, "movements": [m.to_dict() for m in movements]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
