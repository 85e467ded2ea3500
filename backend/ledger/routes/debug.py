# Overview: Flask API routes for receivables diagnostics and repair; admin only.

# backend/ledger/routes/debug.py
"""
Receivables Diagnostics API Routes

DESIGN:
- Health sweep is read-only
- Recompute/repair apply canonical paid amounts and are idempotent

SECURITY:
- ADMIN role required on every route
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import actor_label, require_actor, require_role
from ..errors import LedgerError
from ..services import reconciliation_service
from ..services.audit_service import log_audit
from ..validation import parse_optional_id


debug_bp = Blueprint("debug", __name__, url_prefix="/debug")


@debug_bp.get("/receivables-health")
@require_actor
@require_role("ADMIN")
def receivables_health_route():
    try:
        return jsonify(reconciliation_service.receivables_health()), 200
    except Exception:
        current_app.logger.exception("Failed to run receivables health sweep")
        return jsonify({"error": "Internal server error"}), 500


@debug_bp.post("/recompute-receipt-balances")
@require_actor
@require_role("ADMIN")
def recompute_balances_route():
    """
    Recompute amount_paid/is_paid from payment sources.

    Request body (all optional):
    {
        "receipt_id": 12,
        "customer_id": 4
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = reconciliation_service.recompute_receipt_balances(
            receipt_id=parse_optional_id(data.get("receipt_id"), "receipt_id"),
            customer_id=parse_optional_id(data.get("customer_id"), "customer_id"),
        )
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to recompute receipt balances")
        return jsonify({"error": "Internal server error"}), 500


@debug_bp.post("/receivables-repair")
@require_actor
@require_role("ADMIN")
def receivables_repair_route():
    try:
        result = reconciliation_service.repair_receivables()
        if result["count"]:
            log_audit(
                action="RECEIVABLES_REPAIRED",
                entity_type="receipt",
                description=f"Repaired {result['count']} receipt balances",
                user=actor_label(),
                metadata={"receipt_ids": [row["id"] for row in result["repaired"]]},
            )
        return jsonify(result), 200

    except Exception:
        current_app.logger.exception("Failed to repair receivables")
        return jsonify({"error": "Internal server error"}), 500


@debug_bp.post("/receipts/<int:receipt_id>/repair")
@require_actor
@require_role("ADMIN")
def repair_receipt_route(receipt_id: int):
    try:
        receipt = reconciliation_service.repair_receipt(receipt_id)
        return jsonify({"receipt": receipt.to_dict(include_items=False)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to repair receipt")
        return jsonify({"error": "Internal server error"}), 500
