# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import return_service
from ..services.concurrency import ResourceContention
from ..validation import NotFoundError, ValidationError
from .invoices import invoice_response


returns_bp = Blueprint("returns", __name__, url_prefix="/api/invoices")


@returns_bp.post("/<int:invoice_id>/returns")
def record_return_route(invoice_id: int):
    """
    Record returned goods.

    Request body:
    {
        "items": [{"invoice_item_id": 7, "quantity": "2-0"}],
        "reason": "Damp bags"   (optional)
    }

    Returns:
        201: Return recorded; stock restored and customer credited
        400: More than left to return, malformed quantity, or draft invoice
        404: Invoice or item not found
    """
    try:
        data = request.get_json(silent=True) or {}
        ret = return_service.record_return(invoice_id, data.get("items"), reason=data.get("reason"))
        return jsonify({"return": ret.to_dict(), "invoice": invoice_response(invoice_id)}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ResourceContention:
        raise
    except Exception:
        current_app.logger.exception("Failed to record return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:invoice_id>/returns")
def list_returns_route(invoice_id: int):
    try:
        returns = return_service.list_returns(invoice_id)
        return jsonify({"invoice_id": invoice_id, "returns": [r.to_dict() for r in returns]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
