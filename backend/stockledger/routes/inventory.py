# Overview: Flask API routes for units and quantity stock; parses input and returns JSON responses.

# backend/stockledger/routes/inventory.py
"""
Inventory API Routes

DESIGN:
- Listing is always scoped by the caller's AccessPolicy (g.policy)
- Stock-in accepts either a quantity or a list of serialized units
- Manual status changes never move a unit in or out of transit

Errors from the services carry their own HTTP status (StockError.status_code).
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_principal
from ..errors import StockError
from ..extensions import db
from ..services import quantity_service, stock_in_service, unit_registry
from ..services.placement_service import parse_placement
from ..validation import optional_int, optional_str, require_dict, require_int, require_str


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _placement_filter(args):
    if args.get("placement_id") in (None, ""):
        return None
    return parse_placement(args.get("placement_kind"), args.get("placement_id"))


@inventory_bp.get("")
@require_principal
def list_units_route():
    """
    List units visible to the caller.

    Query params: placement_kind, placement_id, status (comma separated,
    default available), search, product_id, page, per_page
    """
    try:
        args = request.args
        result = unit_registry.find(
            g.policy,
            placement=_placement_filter(args),
            placement_kind=args.get("placement_kind") or None,
            statuses=args.get("status"),
            search=args.get("search"),
            product_id=optional_int(args, "product_id"),
            page=args.get("page"),
            per_page=args.get("per_page"),
        )
        return jsonify(result), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list units")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:unit_id>")
@require_principal
def get_unit_route(unit_id: int):
    try:
        unit = unit_registry.get_unit(unit_id, g.policy)
        return jsonify({"unit": unit_registry.serialize_units([unit])[0]}), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load unit")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/stock-in")
@require_principal
def stock_in_route():
    """
    Receive stock.

    Request body:
    {
        "product_id": 1,
        "placement_kind": "branch",
        "placement_id": 2,
        "distributor_id": 3,              (or "new_distributor_name": "...")
        "units": [{"serial": "356...", "selling_price": "2500000.00", ...}]
                                          (or "quantity": 10)
    }

    Returns:
        201: {"inserted_count", "duplicates", "duplicate_count", "ledger_entry_id"}
    """
    try:
        req = stock_in_service.parse_stock_in_request(request.get_json(silent=True))
        result = stock_in_service.stock_in(
            product_id=req.product_id,
            placement=req.placement,
            items=req.items,
            policy=g.policy,
            distributor_id=req.distributor_id,
            new_distributor_name=req.new_distributor_name,
            notes=req.notes,
        )
        return jsonify(result.to_dict()), 201
    except StockError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to stock in")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/quantity-out")
@require_principal
def quantity_out_route():
    """Correct a quantity bucket downwards (non-serialized products only)."""
    try:
        data = require_dict(request.get_json(silent=True))
        quantity = require_int(data, "quantity", minimum=1)
        result = quantity_service.remove_quantity(
            g.policy,
            product_id=require_int(data, "product_id", minimum=1),
            placement=parse_placement(data.get("placement_kind"), data.get("placement_id")),
            quantity=quantity,
            owner_user_id=optional_int(data, "owner_user_id"),
            reason=optional_str(data, "reason", max_length=None),
        )
        return jsonify(result), 200
    except StockError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to remove quantity")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.patch("/<int:unit_id>/status")
@require_principal
def update_status_route(unit_id: int):
    """Manual status change, e.g. accepting a returned unit back as available."""
    try:
        data = require_dict(request.get_json(silent=True))
        unit = unit_registry.update_status(unit_id, require_str(data, "status", max_length=32), g.policy)
        return jsonify({"unit": unit_registry.serialize_units([unit])[0]}), 200
    except StockError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update unit status")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/buckets")
@require_principal
def list_buckets_route():
    try:
        args = request.args
        result = quantity_service.list_buckets(
            g.policy,
            product_id=optional_int(args, "product_id"),
            placement=_placement_filter(args),
            include_empty=args.get("include_empty", "").lower() in ("1", "true", "yes"),
            page=args.get("page"),
            per_page=args.get("per_page"),
        )
        return jsonify(result), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list quantity buckets")
        return jsonify({"error": "Internal server error"}), 500
