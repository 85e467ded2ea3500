# Overview: Flask API routes for product catalog operations; parses input and returns JSON responses.

# backend/ledger/routes/products.py
"""
Product Catalog API Routes

DESIGN:
- Composite mixes carry a component recipe validated on every write
- Stock is never edited here; it moves only through receipt postings
- Movement history exposes the stock ledger per product
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_actor
from ..errors import LedgerError, ValidationError
from ..services import catalog_service, stock_ledger
from ..validation import ProductInput, parse_optional_id


products_bp = Blueprint("products", __name__, url_prefix="/products")


@products_bp.post("")
@require_actor
def create_product_route():
    try:
        data = ProductInput.from_json(request.get_json(silent=True))
        product = catalog_service.create_product(data)
        return jsonify({"product": product.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_actor
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_actor
def update_product_route(product_id: int):
    try:
        data = ProductInput.from_json(request.get_json(silent=True), partial=True)
        product = catalog_service.update_product(product_id, data)
        return jsonify({"product": product.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/movements")
@require_actor
def product_movements_route(product_id: int):
    """
    Stock movements of a product, newest first.

    Query params: receipt_id, limit (default 100, max 500)
    """
    try:
        product = catalog_service.get_product(product_id)
        try:
            limit = min(max(int(request.args.get("limit", 100)), 1), 500)
        except ValueError:
            raise ValidationError("limit must be an integer")

        movements = stock_ledger.list_movements(
            product.id,
            receipt_id=parse_optional_id(request.args.get("receipt_id"), "receipt_id"),
            limit=limit,
        )
        return jsonify({
            "product_id": product.id,
            "stock_qty": product.stock_qty,
            "ledger_balance": stock_ledger.movement_balance(product.id),
            "movements": [m.to_dict() for m in movements],
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list product movements")
        return jsonify({"error": "Internal server error"}), 500
