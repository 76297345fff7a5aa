# backend/stockledger/services/unit_registry.py
"""
Unit registry: admission, status transitions and listing of serialized units.

WHY: A unit's status and placement must change together or not at all. This
module owns the transition table and is the only code that writes either
column; every other service asks it to move a unit.

TRANSITIONS:
    available        -> sold, in_transit, transfer_pending, service, booked,
                        returned, deleted
    in_transit       -> available           (transfer confirmation only)
    transfer_pending -> available, in_transit
    service          -> available, returned, deleted
    booked           -> available, sold
    returned         -> available, service, deleted
    sold             -> returned
    deleted          -> (terminal)

admit(), transition() and update_status() own their transaction. The last two
write one ledger entry whenever a unit enters or leaves available; stock-out
and transfer confirmation write grouped entries of their own. register_unit(),
lock_unit() and apply_transition() run inside the caller's unit of work.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import or_

from ..errors import DuplicateSerialError, InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockOut, StockOutItem, Unit
from ..models.inventory import (
    LEDGER_DIRECTION_IN,
    LEDGER_DIRECTION_OUT,
    UNIT_CONDITIONS,
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_BOOKED,
    UNIT_STATUS_DELETED,
    UNIT_STATUS_IN_TRANSIT,
    UNIT_STATUS_RETURNED,
    UNIT_STATUS_SERVICE,
    UNIT_STATUS_SOLD,
    UNIT_STATUS_TRANSFER_PENDING,
    UNIT_STATUSES,
)
from ..models.stock_out import CATEGORY_RETURN
from ..time_utils import to_utc_z, utcnow
from ..validation import optional_money, optional_str, require_dict
from .access_policy import AccessPolicy
from .concurrency import atomic, lock_for_update
from .ledger_service import append_entry, available_count, lock_products
from .listing import contains_ci, paginate_query
from .placement_service import PlacementKind, PlacementRef, parse_kind, placement_names


EVENT_UNIT_ADMIT = "unit.admit"
EVENT_STATUS_PREFIX = "status"

SERIAL_MAX_LENGTH = 64
_SERIAL_FORBIDDEN = re.compile(r"[\s,;]")

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    UNIT_STATUS_AVAILABLE: frozenset({
        UNIT_STATUS_SOLD,
        UNIT_STATUS_IN_TRANSIT,
        UNIT_STATUS_TRANSFER_PENDING,
        UNIT_STATUS_SERVICE,
        UNIT_STATUS_BOOKED,
        UNIT_STATUS_RETURNED,
        UNIT_STATUS_DELETED,
    }),
    UNIT_STATUS_IN_TRANSIT: frozenset({UNIT_STATUS_AVAILABLE}),
    UNIT_STATUS_TRANSFER_PENDING: frozenset({UNIT_STATUS_AVAILABLE, UNIT_STATUS_IN_TRANSIT}),
    UNIT_STATUS_SERVICE: frozenset({UNIT_STATUS_AVAILABLE, UNIT_STATUS_RETURNED, UNIT_STATUS_DELETED}),
    UNIT_STATUS_BOOKED: frozenset({UNIT_STATUS_AVAILABLE, UNIT_STATUS_SOLD}),
    UNIT_STATUS_RETURNED: frozenset({UNIT_STATUS_AVAILABLE, UNIT_STATUS_SERVICE, UNIT_STATUS_DELETED}),
    UNIT_STATUS_SOLD: frozenset({UNIT_STATUS_RETURNED}),
    UNIT_STATUS_DELETED: frozenset(),
}

# Targets an operator may set by hand; in_transit belongs to stock-out/confirm
MANUAL_STATUSES = frozenset({
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_SOLD,
    UNIT_STATUS_RETURNED,
    UNIT_STATUS_DELETED,
    UNIT_STATUS_SERVICE,
    UNIT_STATUS_BOOKED,
})


@dataclass(frozen=True)
class UnitSpec:
    serial: str
    condition: str = "new"
    cost_price: Decimal = Decimal("0.00")
    selling_price: Decimal = Decimal("0.00")
    color: Optional[str] = None
    ram: Optional[str] = None
    storage: Optional[str] = None

    @classmethod
    def from_dict(cls, raw) -> "UnitSpec":
        data = require_dict(raw)
        condition = (optional_str(data, "condition", max_length=16) or "new").lower()
        if condition not in UNIT_CONDITIONS:
            raise ValidationError(f"condition must be one of: {', '.join(UNIT_CONDITIONS)}")
        return cls(
            serial=validate_serial(data.get("serial")),
            condition=condition,
            cost_price=optional_money(data, "cost_price"),
            selling_price=optional_money(data, "selling_price"),
            color=optional_str(data, "color", max_length=64),
            ram=optional_str(data, "ram", max_length=32),
            storage=optional_str(data, "storage", max_length=32),
        )


def validate_serial(raw) -> str:
    """
    Normalize and validate a serial (IMEI or similar).

    Surrounding whitespace is stripped. Serials are compared case-sensitively,
    so no case folding happens here.

    Raises:
        ValidationError: empty, too long, or containing whitespace, ',' or ';'
    """
    if raw is None:
        raise ValidationError("serial is required")
    if not isinstance(raw, (str, int)) or isinstance(raw, bool):
        raise ValidationError("serial must be a string")
    serial = str(raw).strip()
    if not serial:
        raise ValidationError("serial is required")
    if len(serial) > SERIAL_MAX_LENGTH:
        raise ValidationError(f"serial must be at most {SERIAL_MAX_LENGTH} characters")
    if _SERIAL_FORBIDDEN.search(serial):
        raise ValidationError(f"serial {serial!r} contains whitespace, ',' or ';'")
    return serial


def serial_in_use(serial: str) -> bool:
    """True when a non-deleted unit already carries this exact serial."""
    return (
        db.session.query(Unit.id)
        .filter(Unit.serial == serial, Unit.status != UNIT_STATUS_DELETED)
        .first()
        is not None
    )


def register_unit(
    spec: UnitSpec,
    *,
    product_id: int,
    placement: PlacementRef,
    user_id: int | None,
    distributor_id: int | None = None,
) -> Unit:
    if serial_in_use(spec.serial):
        raise DuplicateSerialError(spec.serial)

    unit = Unit(
        serial=spec.serial,
        product_id=product_id,
        condition=spec.condition,
        color=spec.color,
        ram=spec.ram,
        storage=spec.storage,
        cost_price=spec.cost_price,
        selling_price=spec.selling_price,
        status=UNIT_STATUS_AVAILABLE,
        placement_kind=placement.kind.value,
        placement_id=placement.id,
        distributor_id=distributor_id,
        user_id=user_id,
    )
    db.session.add(unit)
    db.session.flush()
    return unit


def admit(
    spec: UnitSpec,
    *,
    product_id: int,
    placement: PlacementRef,
    user_id: int | None,
    distributor_id: int | None = None,
) -> Unit:
    """
    Register a single new unit as available at a placement.

    Raises:
        DuplicateSerialError: a non-deleted unit already has this serial
        NotFoundError: product does not exist
    """
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")
    with atomic():
        lock_products([product_id])
        unit = register_unit(
            spec,
            product_id=product_id,
            placement=placement,
            user_id=user_id,
            distributor_id=distributor_id,
        )
        record_availability_change(unit, None, None, user_id=user_id, event_type=EVENT_UNIT_ADMIT)
    return unit


def lock_unit(unit_id: int) -> Unit:
    unit = lock_for_update(db.session.query(Unit).filter(Unit.id == unit_id)).first()
    if unit is None:
        raise NotFoundError(f"Unit {unit_id} not found")
    return unit


def apply_transition(unit: Unit, new_status: str, new_placement: PlacementRef | None = None) -> Unit:
    """Change status (and optionally placement) of an already-locked unit."""
    if new_status not in UNIT_STATUSES:
        raise ValidationError(f"Unknown unit status: {new_status}")
    if new_status not in ALLOWED_TRANSITIONS[unit.status]:
        raise InvalidTransitionError(unit.id, unit.status, new_status)

    unit.status = new_status
    if new_placement is not None:
        unit.placement_kind = new_placement.kind.value
        unit.placement_id = new_placement.id
    if new_status == UNIT_STATUS_DELETED:
        unit.deleted_at = utcnow()
    db.session.flush()
    return unit


def record_availability_change(
    unit: Unit,
    previous_status: str | None,
    previous_placement: PlacementRef | None,
    *,
    user_id: int | None,
    event_type: str | None = None,
):
    """
    Append the ledger entry for one unit entering or leaving available.

    Leaving is booked at the placement the unit left, entering at the one it
    is now in. Moves between two non-available statuses record nothing.
    """
    was_available = previous_status == UNIT_STATUS_AVAILABLE
    is_available = unit.status == UNIT_STATUS_AVAILABLE
    if was_available == is_available:
        return None

    if was_available:
        placement, direction = previous_placement, LEDGER_DIRECTION_OUT
    else:
        placement, direction = PlacementRef.of(unit), LEDGER_DIRECTION_IN
    return append_entry(
        product_id=unit.product_id,
        placement=placement,
        direction=direction,
        quantity=1,
        balance_after=available_count(unit.product_id, placement),
        user_id=user_id,
        event_type=event_type or f"{EVENT_STATUS_PREFIX}.{unit.status}",
        description=f"Unit {unit.serial}: {previous_status or 'new'} -> {unit.status}",
        reference_id=unit.serial,
    )


def _move(unit: Unit, new_status: str, new_placement: PlacementRef | None, user_id: int | None) -> Unit:
    previous_status, previous_placement = unit.status, PlacementRef.of(unit)
    lock_products([unit.product_id])
    apply_transition(unit, new_status, new_placement)
    record_availability_change(unit, previous_status, previous_placement, user_id=user_id)
    return unit


def transition(
    unit_id: int,
    new_status: str,
    new_placement: PlacementRef | None = None,
    *,
    user_id: int | None = None,
) -> Unit:
    """
    Move one unit to a new status, and optionally a new placement, atomically.

    Args:
        unit_id: Unit to move
        new_status: Target status (must be allowed from the current one)
        new_placement: Destination placement; None keeps the current one
        user_id: Operator recorded on the ledger entry, if one is written

    Returns:
        Unit: The updated unit

    Raises:
        NotFoundError: unit does not exist
        InvalidTransitionError: target status not reachable from current
        ConflictError: another operation changed the unit concurrently
    """
    with atomic():
        unit = _move(lock_unit(unit_id), new_status, new_placement, user_id)
    return unit


def update_status(unit_id: int, new_status: str, policy: AccessPolicy) -> Unit:
    """
    Manual status change by an operator (accepting a return, booking, selling
    over the counter, sending to service).

    Units in transit can only be released by confirming their transfer, and
    in_transit itself can only be entered through a branch-transfer stock-out.
    """
    new_status = (new_status or "").strip().lower()
    if new_status not in MANUAL_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(MANUAL_STATUSES))}")

    with atomic():
        unit = lock_unit(unit_id)
        policy.require_visible(PlacementRef.of(unit))
        if unit.status == UNIT_STATUS_IN_TRANSIT:
            raise InvalidTransitionError(unit.id, unit.status, new_status)
        _move(unit, new_status, None, policy.user_id)
    return unit


def get_unit(unit_id: int, policy: AccessPolicy) -> Unit:
    unit = db.session.get(Unit, unit_id)
    if unit is None:
        raise NotFoundError(f"Unit {unit_id} not found")
    policy.require_visible(PlacementRef.of(unit))
    return unit


def _parse_statuses(statuses) -> list[str]:
    if statuses is None or statuses == "":
        return [UNIT_STATUS_AVAILABLE]
    if isinstance(statuses, str):
        statuses = [s for s in statuses.split(",")]
    result = []
    for raw in statuses:
        status = str(raw).strip().lower()
        if not status:
            continue
        if status not in UNIT_STATUSES:
            raise ValidationError(f"Unknown unit status: {status}")
        result.append(status)
    return result or [UNIT_STATUS_AVAILABLE]


def _latest_returns(unit_ids: Iterable[int]) -> dict[int, StockOut]:
    """Most recent return record per unit."""
    ids = list(unit_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(StockOutItem.unit_id, StockOut)
        .join(StockOut, StockOut.id == StockOutItem.stock_out_id)
        .filter(StockOutItem.unit_id.in_(ids), StockOut.category == CATEGORY_RETURN)
        .order_by(StockOut.created_at.desc(), StockOut.id.desc())
        .all()
    )
    latest: dict[int, StockOut] = {}
    for unit_id, record in rows:
        latest.setdefault(unit_id, record)
    return latest


def serialize_units(units: list[Unit]) -> list[dict]:
    names = placement_names(PlacementRef.of(u) for u in units)
    returns = _latest_returns(u.id for u in units if u.status == UNIT_STATUS_RETURNED)

    data = []
    for unit in units:
        row = unit.to_dict()
        row["placement_name"] = names.get(PlacementRef.of(unit))
        record = returns.get(unit.id)
        if record is not None:
            row["return_info"] = {
                "stock_out_id": record.id,
                "receipt_id": record.receipt_id,
                "return_officer": record.return_officer,
                "return_issue": record.return_issue,
                "customer_name": record.customer_name,
                "customer_phone": record.customer_phone,
                "returned_at": to_utc_z(record.created_at),
            }
        data.append(row)
    return data


def find(
    policy: AccessPolicy,
    *,
    placement: PlacementRef | None = None,
    placement_kind: str | PlacementKind | None = None,
    statuses=None,
    search: str | None = None,
    product_id: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Paginated unit listing, newest first.

    Scope is always applied before the caller's own filters, so a scoped
    caller asking for another placement gets an empty page, not an error.
    Deleted units only show up when 'deleted' is listed in statuses.
    """
    q = db.session.query(Unit).join(Product, Product.id == Unit.product_id)
    q = policy.apply_to_query(q, Unit.placement_kind, Unit.placement_id)

    q = q.filter(Unit.status.in_(_parse_statuses(statuses)))

    if placement is not None:
        q = q.filter(Unit.placement_kind == placement.kind.value, Unit.placement_id == placement.id)
    elif placement_kind:
        q = q.filter(Unit.placement_kind == parse_kind(placement_kind).value)

    if product_id is not None:
        q = q.filter(Unit.product_id == product_id)

    term = (search or "").strip()
    if term:
        q = q.filter(or_(
            contains_ci(Unit.serial, term),
            contains_ci(Product.name, term),
            contains_ci(Product.sku, term),
        ))

    q = q.order_by(Unit.created_at.desc(), Unit.id.desc())
    return paginate_query(q, page=page, per_page=per_page, serialize=serialize_units)
