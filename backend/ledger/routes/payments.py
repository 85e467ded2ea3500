# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/ledger/routes/payments.py
"""
Payment API Routes

DESIGN:
- RECEIPT and CUSTOMER_PAYMENT payments allocate to receipts
- Other payment types are recorded without allocations
- Deleting a payment reverts its allocations
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import actor_label, require_actor
from ..errors import LedgerError
from ..services import payment_service
from ..validation import PaymentInput


payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.post("")
@require_actor
def record_payment_route():
    """
    Record a payment.

    Request body:
    {
        "type": "CUSTOMER_PAYMENT",
        "amount": 150,
        "customer_id": 4,            (CUSTOMER_PAYMENT)
        "receipt_id": 12,            (RECEIPT)
        "apply_to_receipts": true,   (optional)
        "date": "2024-05-01"         (optional)
    }

    Returns:
        201: Payment recorded with its allocations
        400: Invalid input
        404: Customer or receipt not found
    """
    try:
        data = PaymentInput.from_json(request.get_json(silent=True))
        payment = payment_service.record_payment(data, actor=actor_label())
        return jsonify({"payment": payment.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_actor
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.delete("/<int:payment_id>")
@require_actor
def delete_payment_route(payment_id: int):
    try:
        summary = payment_service.delete_payment(payment_id, actor=actor_label())
        return jsonify({"deleted": summary}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return jsonify({"error": "Internal server error"}), 500
