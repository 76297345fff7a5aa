# Overview: Flask API routes for reading the stock ledger.

# backend/stockledger/routes/ledger.py
"""
Ledger API Routes

Read-only: the ledger is append-only and has no write endpoint. Entries are
written by stock-in, stock-out, transfer confirmation and quantity
corrections inside their own transactions.

Time semantics:
- start/end accept ISO-8601 datetimes with Z/offsets; normalized to UTC-naive.
- Both bounds are inclusive.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_principal
from ..errors import StockError, ValidationError
from ..services import ledger_service
from ..services.placement_service import parse_placement
from ..time_utils import parse_iso_datetime
from ..validation import optional_int


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _parse_time(value, key):
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")


@ledger_bp.get("")
@require_principal
def list_ledger_route():
    try:
        args = request.args
        placement = None
        if args.get("placement_id") not in (None, ""):
            placement = parse_placement(args.get("placement_kind"), args.get("placement_id"))
        result = ledger_service.list_entries(
            g.policy,
            product_id=optional_int(args, "product_id"),
            placement=placement,
            direction=args.get("direction") or None,
            event_type=args.get("event_type") or None,
            start=_parse_time(args.get("start"), "start"),
            end=_parse_time(args.get("end"), "end"),
            page=args.get("page"),
            per_page=args.get("per_page"),
        )
        return jsonify(result), 200
    except StockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list ledger entries")
        return jsonify({"error": "Internal server error"}), 500
