# Overview: Flask API routes for receipt operations; parses input and returns JSON responses.

# backend/ledger/routes/receipts.py
"""
Receipt API Routes

DESIGN:
- Create/update/delete run as one ledger transaction each (stock + payments)
- Sequencing preview for both receipt types
- Per-flag (tehmil/tenzil) one-time payments
- Invoice preview bundles a customer's receipts

SECURITY:
- Every route requires an actor identity
- Renumbering requires the ADMIN role
- All mutations are written to the audit log
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import actor_label, require_actor, require_role
from ..errors import LedgerError, ValidationError
from ..services import invoice_service, receipt_service, sequencer
from ..time_utils import to_utc_z
from ..validation import (
    FlagPaymentInput,
    InvoicePreviewInput,
    ReceiptCreateInput,
    ReceiptNumberInput,
    ReceiptUpdateInput,
    parse_date,
    parse_optional_boolean,
    parse_optional_id,
    parse_receipt_type,
)


receipts_bp = Blueprint("receipts", __name__, url_prefix="/receipts")


# =============================================================================
# RECEIPT QUERIES
# =============================================================================

@receipts_bp.get("")
@require_actor
def list_receipts_route():
    """
    List receipts, newest first.

    Query params: type, customer_id, job_site_id, is_paid, date_from, date_to,
    flagged (tehmil|tenzil|any), product_id, search, page, limit
    """
    try:
        args = request.args
        flagged = (args.get("flagged") or "").strip().lower() or None
        if flagged not in (None, "tehmil", "tenzil", "any"):
            raise ValidationError("flagged must be tehmil, tenzil or any")

        try:
            page = int(args.get("page", 1))
            limit = int(args.get("limit", 50))
        except ValueError:
            raise ValidationError("page and limit must be integers")

        result = receipt_service.list_receipts(
            receipt_type=parse_receipt_type(args.get("type")),
            customer_id=parse_optional_id(args.get("customer_id"), "customer_id"),
            job_site_id=parse_optional_id(args.get("job_site_id"), "job_site_id"),
            is_paid=parse_optional_boolean(args.get("is_paid")),
            date_from=parse_date(args.get("date_from"), "date_from"),
            date_to=parse_date(args.get("date_to"), "date_to"),
            flagged=flagged,
            product_id=parse_optional_id(args.get("product_id"), "product_id"),
            search=args.get("search"),
            limit=limit,
            page=page,
        )
        result["receipts"] = [r.to_dict(include_items=False) for r in result["receipts"]]
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list receipts")
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.get("/next-number")
@require_actor
def next_number_route():
    """Preview the next receipt number for each type. Nothing is reserved."""
    try:
        return jsonify(sequencer.preview_numbers()), 200
    except Exception:
        current_app.logger.exception("Failed to preview receipt numbers")
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.get("/<int:receipt_id>")
@require_actor
def get_receipt_route(receipt_id: int):
    try:
        receipt = receipt_service.get_receipt(receipt_id)
        return jsonify({"receipt": receipt.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get receipt")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RECEIPT LIFECYCLE
# =============================================================================

@receipts_bp.post("")
@require_actor
def create_receipt_route():
    """
    Create a receipt with its items and stock postings.

    Returns:
        201: Receipt created
        400: Invalid input or type/sequence rule broken
        404: Customer or product not found
        409: Receipt number conflict
        503: No unique number after retries
    """
    try:
        data = ReceiptCreateInput.from_json(request.get_json(silent=True))
        receipt = receipt_service.create_receipt(data, actor=actor_label())
        return jsonify({"receipt": receipt.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create receipt")
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.put("/<int:receipt_id>")
@require_actor
def update_receipt_route(receipt_id: int):
    try:
        data = ReceiptUpdateInput.from_json(request.get_json(silent=True))
        receipt = receipt_service.update_receipt(receipt_id, data, actor=actor_label())
        return jsonify({"receipt": receipt.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update receipt")
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.delete("/<int:receipt_id>")
@require_actor
def delete_receipt_route(receipt_id: int):
    try:
        summary = receipt_service.delete_receipt(receipt_id, actor=actor_label())
        return jsonify({"deleted": summary}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete receipt")
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.patch("/<int:receipt_id>/number")
@require_actor
@require_role("ADMIN")
def override_number_route(receipt_id: int):
    try:
        data = ReceiptNumberInput.from_json(request.get_json(silent=True))
        receipt = receipt_service.override_receipt_number(receipt_id, data.receipt_no, actor=actor_label())
        return jsonify({"receipt": receipt.to_dict(include_items=False)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to override receipt number")
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.post("/<int:receipt_id>/flag-payments")
@require_actor
def flag_payment_route(receipt_id: int):
    """
    Record the one-time tehmil/tenzil payment.

    Request body:
    {
        "flag": "tehmil",
        "amount": 25,       (optional)
        "quantity": 10,     (optional)
        "note": "crew A",   (optional)
        "date": "2024-05-01" (optional)
    }
    """
    try:
        data = FlagPaymentInput.from_json(request.get_json(silent=True))
        result = receipt_service.record_flag_payment(receipt_id, data, actor=actor_label())
        result["paid_at"] = to_utc_z(result["paid_at"])
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record flag payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INVOICE BUNDLING
# =============================================================================

@receipts_bp.post("/customers/<int:customer_id>/invoice-preview")
@require_actor
def invoice_preview_route(customer_id: int):
    """
    Build an invoice bundle for a customer.

    Request body:
    {
        "receipt_ids": [1, 2],        (or)
        "amount": 250,
        "include_paid": false,
        "job_site_id": 3,
        "price_overrides": [{"receipt_id": 1, "items": [{"item_id": 9, "unit_price": 12.5}]}]
    }
    """
    try:
        data = InvoicePreviewInput.from_json(request.get_json(silent=True))
        preview = invoice_service.build_invoice_preview(customer_id, data, actor=actor_label())
        return jsonify(preview), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build invoice preview")
        return jsonify({"error": "Internal server error"}), 500
