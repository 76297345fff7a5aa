# backend/stockledger/services/transfer_service.py
"""
Branch transfer confirmation.

WHY: A transferred unit must never count as available in two branches. The
stock-out half of a transfer puts every unit in_transit at its source; only
the receiving branch confirming the record makes the units available again,
now at the destination.

LIFECYCLE (per branch_transfer stock-out record):
1. DISPATCHED: confirmed_at NULL, units in_transit, open membership markers set
2. CONFIRMED: confirmed_at/confirmed_by set, units available at destination,
   markers cleared

CONFIRMED is terminal. A second confirm finds nothing to confirm and raises
NotFoundError instead of applying the placement change twice.
"""
from __future__ import annotations

from collections import defaultdict

from flask import current_app
from sqlalchemy import or_

from ..errors import NotFoundError
from ..extensions import db
from ..models import StockOut
from ..models.inventory import LEDGER_DIRECTION_IN, UNIT_STATUS_AVAILABLE
from ..models.stock_out import CATEGORY_BRANCH_TRANSFER
from ..time_utils import to_utc_z, utcnow
from .access_policy import AccessPolicy
from .concurrency import atomic, lock_for_update
from .ledger_service import append_entry, available_count, lock_products
from .listing import paginate_query
from .placement_service import PlacementKind, PlacementRef
from .stock_out_service import serialize_stock_outs
from .unit_registry import apply_transition, lock_unit


# Transfer states as reported to callers
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_CONFIRMED = "confirmed"

TRANSFER_INCOMING = "incoming"
TRANSFER_OUTGOING = "outgoing"

EVENT_TRANSFER_CONFIRM = "transfer.confirm"


def _transfers():
    return db.session.query(StockOut).filter(
        StockOut.category == CATEGORY_BRANCH_TRANSFER,
        StockOut.deleted_at.is_(None),
    )


def _own_branch_ids(policy: AccessPolicy) -> set[int]:
    """
    Branches whose incoming transfers this caller receives.

    Unrestricted callers receive only at their home branch; seeing every
    branch does not make them the receiver of every transfer.
    """
    if policy.is_unrestricted:
        if policy.home is not None and policy.home.kind == PlacementKind.BRANCH:
            return {policy.home.id}
        return set()
    return policy.visible_ids(PlacementKind.BRANCH)


def pending(policy: AccessPolicy) -> list[dict]:
    """
    Dispatched, unconfirmed transfers addressed to the caller's branches,
    newest first, with their items.
    """
    branch_ids = _own_branch_ids(policy)
    if not branch_ids:
        return []
    records = (
        _transfers()
        .filter(StockOut.confirmed_at.is_(None), StockOut.destination_branch_id.in_(branch_ids))
        .order_by(StockOut.created_at.desc(), StockOut.id.desc())
        .all()
    )
    return serialize_stock_outs(records, include_items=True)


def confirm(stock_out_id: int, policy: AccessPolicy) -> StockOut:
    """
    Receive a dispatched transfer at its destination branch.

    Args:
        stock_out_id: The branch_transfer record to confirm
        policy: Acting principal; the destination must be one of its own branches

    Returns:
        StockOut: The confirmed record

    Raises:
        NotFoundError: not a transfer, already confirmed, or addressed to a
            branch that is not one of the caller's own
        ConflictError: a concurrent confirm won the race
    """
    with atomic():
        record = lock_for_update(
            _transfers().filter(StockOut.id == stock_out_id, StockOut.confirmed_at.is_(None))
        ).first()
        if record is None:
            raise NotFoundError(f"Transfer {stock_out_id} not found or already confirmed")

        destination = PlacementRef.branch(record.destination_branch_id)
        if record.destination_branch_id not in _own_branch_ids(policy):
            raise NotFoundError(f"Transfer {stock_out_id} not found or already confirmed")

        record.confirmed_at = utcnow()
        record.confirmed_by = policy.user_id

        units = [lock_unit(item.unit_id) for item in record.items]
        lock_products(u.product_id for u in units)

        received: dict[int, int] = defaultdict(int)
        for item, unit in zip(record.items, units):
            item.open_unit_id = None
            apply_transition(unit, UNIT_STATUS_AVAILABLE, destination)
            received[unit.product_id] += 1

        for product_id, count in sorted(received.items()):
            append_entry(
                product_id=product_id,
                placement=destination,
                direction=LEDGER_DIRECTION_IN,
                quantity=count,
                balance_after=available_count(product_id, destination),
                user_id=policy.user_id,
                event_type=EVENT_TRANSFER_CONFIRM,
                description=f"Transfer {record.receipt_id} received",
                reference_id=record.receipt_id,
                stock_out_id=record.id,
            )

    current_app.logger.info(
        "Transfer %s confirmed at %s by user %s (%d unit(s))",
        record.receipt_id, destination, policy.user_id, len(record.items),
    )
    return record


def history(policy: AccessPolicy, *, page: int | None = None, per_page: int | None = None) -> dict:
    """
    Transfers the caller sent or that were addressed to the caller's
    branches, labelled incoming/outgoing and pending/confirmed.
    """
    own_branches = _own_branch_ids(policy)

    q = _transfers()
    if not policy.is_unrestricted:
        clauses = [StockOut.user_id == policy.user_id]
        if own_branches:
            clauses.append(StockOut.destination_branch_id.in_(own_branches))
        q = q.filter(or_(*clauses))
    q = q.order_by(StockOut.created_at.desc(), StockOut.id.desc())

    def _serialize(records: list[StockOut]) -> list[dict]:
        data = []
        for record in records:
            data.append({
                "id": record.id,
                "receipt_id": record.receipt_id,
                "type": TRANSFER_INCOMING if record.destination_branch_id in own_branches else TRANSFER_OUTGOING,
                "status": TRANSFER_STATUS_CONFIRMED if record.is_confirmed else TRANSFER_STATUS_PENDING,
                "items_count": len(record.items),
                "source_placement_kind": record.source_placement_kind,
                "source_placement_id": record.source_placement_id,
                "destination_branch_id": record.destination_branch_id,
                "destination_branch": record.destination_branch.name if record.destination_branch else None,
                "sender": record.user.display_name if record.user else None,
                "receiver_name": record.receiver_name,
                "confirmed_at": to_utc_z(record.confirmed_at) if record.confirmed_at else None,
                "confirmed_by": record.confirmed_by_user.display_name if record.confirmed_by_user else None,
                "created_at": to_utc_z(record.created_at),
            })
        return data

    return paginate_query(q, page=page, per_page=per_page, serialize=_serialize)
