# Overview: Stock-out processing, receipt ids, stock-out listings and the track search.

"""
Stock-Out Service

WHY: Removing stock is a committed business action, so unlike stock-in it is
all-or-nothing: if one scanned unit is missing, out of scope or no longer
available, nothing moves and the caller gets the full list of offenders.

CATEGORY -> RESULTING UNIT STATUS:
    branch_transfer  -> in_transit (placement unchanged until confirmed)
    input_error      -> deleted
    return           -> returned (moved to the receiving warehouse if given)
    channel_dispatch -> sold
    giveaway         -> sold

LEDGER: one 'out' entry per (product, source placement) group, with
balance_after = available units of that product left at the source.
"""

from __future__ import annotations

import secrets
import string
from collections import defaultdict
from typing import Optional

from flask import current_app
from sqlalchemy import and_, or_

from ..errors import ConflictError, NotFoundError, UnavailableUnitsError, ValidationError
from ..extensions import db
from ..models import StockOut, StockOutItem, StockOutShipment, Unit
from ..models.inventory import (
    LEDGER_DIRECTION_OUT,
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_DELETED,
    UNIT_STATUS_IN_TRANSIT,
    UNIT_STATUS_RETURNED,
    UNIT_STATUS_SOLD,
)
from ..models.stock_out import (
    CATEGORY_BRANCH_TRANSFER,
    CATEGORY_CHANNEL_DISPATCH,
    CATEGORY_GIVEAWAY,
    CATEGORY_INPUT_ERROR,
    CATEGORY_RETURN,
)
from ..time_utils import receipt_date_code, to_utc_z
from .access_policy import AccessPolicy
from .concurrency import atomic, lock_for_update
from .ledger_service import append_entry, available_count, lock_products
from .listing import contains_ci, paginate_query
from .placement_service import PlacementKind, PlacementRef, placement_names, resolve_placement
from .stock_out_schemas import (
    BranchTransferOut,
    ChannelDispatchOut,
    GiveawayOut,
    InputErrorOut,
    ReturnOut,
    StockOutRequest,
    parse_category,
)
from .unit_registry import apply_transition


RECEIPT_PREFIX = "O"
RECEIPT_SUFFIX_LENGTH = 3
_RECEIPT_ALPHABET = string.ascii_uppercase + string.digits

TARGET_STATUS = {
    CATEGORY_BRANCH_TRANSFER: UNIT_STATUS_IN_TRANSIT,
    CATEGORY_INPUT_ERROR: UNIT_STATUS_DELETED,
    CATEGORY_RETURN: UNIT_STATUS_RETURNED,
    CATEGORY_CHANNEL_DISPATCH: UNIT_STATUS_SOLD,
    CATEGORY_GIVEAWAY: UNIT_STATUS_SOLD,
}


def generate_receipt_id(max_attempts: int | None = None) -> str:
    """
    Short paper receipt code: O + DDMON + '-' + 3 random characters,
    e.g. O03FEB-K9Z.

    Raises:
        ConflictError: every attempt collided with an existing receipt
    """
    attempts = max_attempts or current_app.config["RECEIPT_ID_MAX_ATTEMPTS"]
    prefix = f"{RECEIPT_PREFIX}{receipt_date_code()}-"
    for _ in range(attempts):
        suffix = "".join(secrets.choice(_RECEIPT_ALPHABET) for _ in range(RECEIPT_SUFFIX_LENGTH))
        receipt_id = prefix + suffix
        taken = db.session.query(StockOut.id).filter(StockOut.receipt_id == receipt_id).first()
        if taken is None:
            return receipt_id
    raise ConflictError(f"Could not allocate a unique receipt id after {attempts} attempts")


def _lock_available_units(unit_ids: tuple[int, ...], policy: AccessPolicy) -> list[Unit]:
    units = (
        lock_for_update(db.session.query(Unit).filter(Unit.id.in_(unit_ids)))
        .order_by(Unit.id)
        .all()
    )
    found = {u.id: u for u in units}
    offending = [
        uid for uid in unit_ids
        if uid not in found
        or found[uid].status != UNIT_STATUS_AVAILABLE
        or not policy.can_see(PlacementRef.of(found[uid]))
    ]
    if offending:
        raise UnavailableUnitsError(offending)
    return [found[uid] for uid in unit_ids]


def _new_record(request: StockOutRequest, policy: AccessPolicy, source: Optional[PlacementRef]) -> StockOut:
    record = StockOut(
        receipt_id=generate_receipt_id(),
        category=request.category,
        user_id=policy.user_id,
        source_placement_kind=source.kind.value if source else None,
        source_placement_id=source.id if source else None,
        notes=request.notes,
    )
    if isinstance(request, BranchTransferOut):
        record.destination_branch_id = request.destination_branch_id
        record.receiver_name = request.receiver_name
        record.transfer_notes = request.transfer_notes
    elif isinstance(request, ReturnOut):
        record.return_officer = request.return_officer
        record.return_seal = request.return_seal
        record.return_issue = request.return_issue
        record.customer_name = request.customer_name
        record.customer_phone = request.customer_phone
        record.return_destination_id = request.return_destination_id
    elif isinstance(request, ChannelDispatchOut):
        record.channel_name = request.channel_name
    elif isinstance(request, InputErrorOut):
        record.deletion_reason = request.deletion_reason
    db.session.add(record)
    db.session.flush()
    return record


def _write_shipments(record: StockOut, request: StockOutRequest) -> None:
    if isinstance(request, ChannelDispatchOut):
        shipments = request.shipments
    elif isinstance(request, GiveawayOut):
        shipments = (request.recipient,)
    else:
        return
    for shipment in shipments:
        db.session.add(StockOutShipment(stock_out_id=record.id, **shipment.to_row_kwargs()))


def stock_out(request: StockOutRequest, policy: AccessPolicy) -> StockOut:
    """
    Remove a set of available units under one category.

    Args:
        request: One of the typed variants from stock_out_schemas
        policy: Acting principal; every unit must be visible to it

    Returns:
        StockOut: The committed record with its items

    Raises:
        UnavailableUnitsError: any unit missing, out of scope or not available
        ValidationError: transfer from several placements or to its own source
        NotFoundError: destination branch or warehouse missing
        ConflictError: a concurrent operation touched the same units
    """
    destination: Optional[PlacementRef] = None
    if isinstance(request, BranchTransferOut):
        destination = PlacementRef.branch(request.destination_branch_id)
        resolve_placement(destination, require_active=True)
    elif isinstance(request, ReturnOut) and request.return_destination_id is not None:
        destination = PlacementRef.warehouse(request.return_destination_id)
        resolve_placement(destination, require_active=True)

    with atomic():
        units = _lock_available_units(request.unit_ids, policy)
        lock_products(u.product_id for u in units)
        sources = {PlacementRef.of(u) for u in units}
        source = next(iter(sources)) if len(sources) == 1 else None

        is_transfer = request.category == CATEGORY_BRANCH_TRANSFER
        if is_transfer:
            if source is None:
                raise ValidationError("A branch transfer must send units from a single placement")
            if source == destination:
                raise ValidationError("Cannot transfer units to the branch they are already in")

        record = _new_record(request, policy, source)

        for unit in units:
            db.session.add(StockOutItem(
                stock_out_id=record.id,
                unit_id=unit.id,
                open_unit_id=unit.id if is_transfer else None,
            ))
        _write_shipments(record, request)

        origins = {u.id: PlacementRef.of(u) for u in units}

        # Transfers keep their source placement until the receiver confirms
        new_placement = None if is_transfer else destination
        target = TARGET_STATUS[request.category]
        for unit in units:
            apply_transition(unit, target, new_placement)

        groups: dict[tuple[int, PlacementRef], int] = defaultdict(int)
        for unit in units:
            groups[(unit.product_id, origins[unit.id])] += 1
        for (product_id, placement), count in sorted(groups.items()):
            append_entry(
                product_id=product_id,
                placement=placement,
                direction=LEDGER_DIRECTION_OUT,
                quantity=count,
                balance_after=available_count(product_id, placement),
                user_id=policy.user_id,
                event_type=f"stock_out.{request.category}",
                description=f"Stock out ({request.category}) {record.receipt_id}",
                reference_id=record.receipt_id,
                stock_out_id=record.id,
            )

    current_app.logger.info(
        "Stock-out %s (%s) moved %d unit(s)", record.receipt_id, record.category, len(units)
    )
    return record


def _scope_clause(policy: AccessPolicy):
    """
    A scoped caller sees records it created, records sent from one of its
    placements and records addressed to one of them.
    """
    clauses = [StockOut.user_id == policy.user_id]
    for ref in sorted(policy.visible):
        clauses.append(and_(
            StockOut.source_placement_kind == ref.kind.value,
            StockOut.source_placement_id == ref.id,
        ))
    branch_ids = policy.visible_ids(PlacementKind.BRANCH)
    if branch_ids:
        clauses.append(StockOut.destination_branch_id.in_(branch_ids))
    warehouse_ids = policy.visible_ids(PlacementKind.WAREHOUSE)
    if warehouse_ids:
        clauses.append(StockOut.return_destination_id.in_(warehouse_ids))
    return or_(*clauses)


def _is_visible(record: StockOut, policy: AccessPolicy) -> bool:
    if policy.is_unrestricted or record.user_id == policy.user_id:
        return True
    if record.source_placement_kind and policy.can_see(PlacementRef.of_source(record)):
        return True
    if record.destination_branch_id and policy.can_see(PlacementRef.branch(record.destination_branch_id)):
        return True
    if record.return_destination_id and policy.can_see(PlacementRef.warehouse(record.return_destination_id)):
        return True
    return False


def serialize_stock_outs(records: list[StockOut], include_items: bool = False) -> list[dict]:
    names = placement_names(PlacementRef.of_source(r) for r in records if r.source_placement_kind)
    data = []
    for record in records:
        row = record.to_dict(include_items=include_items)
        row["source_placement_name"] = (
            names.get(PlacementRef.of_source(record)) if record.source_placement_kind else None
        )
        data.append(row)
    return data


def list_stock_outs(
    policy: AccessPolicy,
    *,
    category: str | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(StockOut).filter(StockOut.deleted_at.is_(None))
    if not policy.is_unrestricted:
        q = q.filter(_scope_clause(policy))
    if category:
        q = q.filter(StockOut.category == parse_category(category))
    term = (search or "").strip()
    if term:
        q = q.filter(or_(
            contains_ci(StockOut.receipt_id, term),
            contains_ci(StockOut.receiver_name, term),
            contains_ci(StockOut.customer_name, term),
        ))
    q = q.order_by(StockOut.created_at.desc(), StockOut.id.desc())
    return paginate_query(q, page=page, per_page=per_page, serialize=serialize_stock_outs)


def get_stock_out(id_or_receipt, policy: AccessPolicy | None = None) -> StockOut:
    """Look a record up by numeric id or by its receipt code."""
    key = str(id_or_receipt or "").strip()
    if not key:
        raise NotFoundError("Stock-out not found")

    record = None
    if key.isdigit():
        record = db.session.get(StockOut, int(key))
    if record is None:
        record = db.session.query(StockOut).filter(StockOut.receipt_id == key.upper()).first()
    if record is None or record.deleted_at is not None:
        raise NotFoundError(f"Stock-out {key} not found")
    if policy is not None and not _is_visible(record, policy):
        raise NotFoundError(f"Stock-out {key} not found")
    return record


def _unit_hit(unit: Unit, names: dict) -> dict:
    return {
        "type": "stock_in",
        "id": f"IN-{unit.id}",
        "serial": unit.serial,
        "product_name": unit.product.name if unit.product else None,
        "product_brand": unit.product.brand if unit.product else None,
        "ram": unit.ram,
        "storage": unit.storage,
        "condition": unit.condition,
        "status": unit.status,
        "placement_kind": unit.placement_kind,
        "placement_id": unit.placement_id,
        "placement_name": names.get(PlacementRef.of(unit)),
        "distributor": unit.distributor.name if unit.distributor else None,
        "input_by": unit.user.display_name if unit.user else None,
        "cost_price": str(unit.cost_price) if unit.cost_price is not None else None,
        "selling_price": str(unit.selling_price) if unit.selling_price is not None else None,
        "created_at": to_utc_z(unit.created_at),
    }


def _stock_out_hit(record: StockOut) -> dict:
    return {
        "type": "stock_out",
        "id": record.receipt_id,
        "stock_out_id": record.id,
        "category": record.category,
        "items": [
            {
                "serial": item.unit.serial,
                "product_name": item.unit.product.name if item.unit.product else None,
            }
            for item in record.items
        ],
        "destination_branch": record.destination_branch.name if record.destination_branch else None,
        "receiver_name": record.receiver_name,
        "customer_name": record.customer_name,
        "tracking_numbers": [s.tracking_no for s in record.shipments if s.tracking_no],
        "deletion_reason": record.deletion_reason,
        "confirmed": record.is_confirmed,
        "processed_by": record.user.display_name if record.user else None,
        "created_at": to_utc_z(record.created_at),
    }


def track(query: str) -> dict:
    """
    Free-text lookup across both directions of stock movement.

    stock_in hits: units whose serial contains the query.
    stock_out hits: records matching by receipt id, by a member unit's serial
    or by a shipment tracking number, each record reported once.
    Results are merged newest first.
    """
    term = (query or "").strip()
    min_length = current_app.config["TRACK_MIN_QUERY_LENGTH"]
    if len(term) < min_length:
        raise ValidationError(f"Query must be at least {min_length} characters")

    units = db.session.query(Unit).filter(contains_ci(Unit.serial, term)).all()

    by_receipt = db.session.query(StockOut.id).filter(contains_ci(StockOut.receipt_id, term))
    by_serial = (
        db.session.query(StockOutItem.stock_out_id)
        .join(Unit, Unit.id == StockOutItem.unit_id)
        .filter(contains_ci(Unit.serial, term))
    )
    by_tracking = (
        db.session.query(StockOutShipment.stock_out_id)
        .filter(contains_ci(StockOutShipment.tracking_no, term))
    )
    record_ids = {row[0] for q in (by_receipt, by_serial, by_tracking) for row in q.all()}
    records = []
    if record_ids:
        records = (
            db.session.query(StockOut)
            .filter(StockOut.id.in_(record_ids), StockOut.deleted_at.is_(None))
            .all()
        )

    names = placement_names(PlacementRef.of(u) for u in units)
    hits = [(u.created_at, _unit_hit(u, names)) for u in units]
    hits += [(r.created_at, _stock_out_hit(r)) for r in records]
    hits.sort(key=lambda pair: pair[0], reverse=True)

    data = [hit for _, hit in hits]
    return {"query": term, "count": len(data), "data": data}
