# Overview: Flask API routes for receiving branch transfers.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_principal
from ..errors import StockError
from ..extensions import db
from ..services import transfer_service


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.get("/pending")
@require_principal
def pending_transfers_route():
    """Incoming transfers waiting for the caller's branch to confirm."""
    try:
        data = transfer_service.pending(g.policy)
        return jsonify({"count": len(data), "data": data}), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list pending transfers")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("/<int:stock_out_id>/confirm")
@require_principal
def confirm_transfer_route(stock_out_id: int):
    try:
        record = transfer_service.confirm(stock_out_id, g.policy)
        return jsonify({
            "message": "Transfer confirmed",
            "receipt_id": record.receipt_id,
            "items_confirmed": len(record.items),
        }), 200
    except StockError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to confirm transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.get("/history")
@require_principal
def transfer_history_route():
    try:
        result = transfer_service.history(
            g.policy,
            page=request.args.get("page"),
            per_page=request.args.get("per_page"),
        )
        return jsonify(result), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list transfer history")
        return jsonify({"error": "Internal server error"}), 500
