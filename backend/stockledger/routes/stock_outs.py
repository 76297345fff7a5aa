# Overview: Flask API routes for stock-out records and the track search.

# backend/stockledger/routes/stock_outs.py
"""
Stock-Out API Routes

DESIGN:
- POST creates one record for a set of available units (all-or-nothing)
- GET /<id-or-receipt> accepts either the numeric id or the paper receipt code
- GET /api/track searches serials, receipt codes and tracking numbers
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_principal
from ..errors import StockError
from ..extensions import db
from ..services import stock_out_service
from ..services.stock_out_schemas import parse_stock_out_request


stock_outs_bp = Blueprint("stock_outs", __name__, url_prefix="/api")


@stock_outs_bp.get("/stock-outs")
@require_principal
def list_stock_outs_route():
    try:
        args = request.args
        result = stock_out_service.list_stock_outs(
            g.policy,
            category=args.get("category") or None,
            search=args.get("search"),
            page=args.get("page"),
            per_page=args.get("per_page"),
        )
        return jsonify(result), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stock-outs")
        return jsonify({"error": "Internal server error"}), 500


@stock_outs_bp.post("/stock-outs")
@require_principal
def create_stock_out_route():
    """
    Stock out a set of units.

    Request body (branch transfer example):
    {
        "category": "branch_transfer",
        "unit_ids": [10, 11],
        "destination_branch_id": 2,
        "receiver_name": "Rina",
        "transfer_notes": "box 3"
    }

    Returns:
        201: {"stock_out": {...}}
        409: {"error": ..., "unit_ids": [...]} when some units are unavailable
    """
    try:
        req = parse_stock_out_request(request.get_json(silent=True))
        record = stock_out_service.stock_out(req, g.policy)
        return jsonify({"stock_out": record.to_dict()}), 201
    except StockError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create stock-out")
        return jsonify({"error": "Internal server error"}), 500


@stock_outs_bp.get("/stock-outs/<id_or_receipt>")
@require_principal
def get_stock_out_route(id_or_receipt: str):
    try:
        record = stock_out_service.get_stock_out(id_or_receipt, g.policy)
        return jsonify({"stock_out": record.to_dict()}), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load stock-out")
        return jsonify({"error": "Internal server error"}), 500


@stock_outs_bp.get("/track")
@require_principal
def track_route():
    try:
        return jsonify(stock_out_service.track(request.args.get("q", ""))), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to run track search")
        return jsonify({"error": "Internal server error"}), 500
