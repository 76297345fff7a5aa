# Overview: Service-layer operations for the stock ledger; append-only writes and read helpers.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import case, func

from ..errors import ValidationError
from ..extensions import db
from ..models import LedgerEntry, Product, QuantityBucket, Unit
from ..models.inventory import LEDGER_DIRECTION_IN, LEDGER_DIRECTION_OUT, UNIT_STATUS_AVAILABLE
from .access_policy import AccessPolicy
from .concurrency import lock_for_update
from .listing import paginate_query
from .placement_service import PlacementRef
"""
Stock Ledger Invariants (authoritative)

- Append-only: there is no update or delete API, and mapper events reject
  any attempt to modify a persisted row.
- Entries are written inside the same DB transaction as the mutation they
  record; append_entry() only flushes, the caller's unit of work commits.
- balance_after is computed by the caller right after its mutation:
    quantity stock   -> the bucket's quantity after the atomic UPDATE
    serialized stock -> available units of the product at that placement
- Replaying a bucket's entries from zero reproduces its quantity; replaying
  the unit entries of a (product, placement) reproduces its available count.
- Writers changing serialized availability lock the Product row first, so
  balance_after counts every committed concurrent change.
"""


def append_entry(
    *,
    product_id: int,
    placement: PlacementRef,
    direction: str,
    quantity: int,
    balance_after: int,
    user_id: int | None,
    event_type: str,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
    distributor_id: int | None = None,
    quantity_bucket_id: int | None = None,
    stock_out_id: int | None = None,
) -> LedgerEntry:
    """
    Append one ledger entry.

    - No domain logic here.
    - No deletes/updates of existing entries.
    """
    if direction not in (LEDGER_DIRECTION_IN, LEDGER_DIRECTION_OUT):
        raise ValidationError(f"Invalid ledger direction: {direction}")
    if quantity <= 0:
        raise ValidationError("Ledger quantity must be positive")
    if balance_after < 0:
        raise ValidationError("Ledger balance_after cannot be negative")

    entry = LedgerEntry(
        product_id=product_id,
        placement_kind=placement.kind.value,
        placement_id=placement.id,
        quantity_bucket_id=quantity_bucket_id,
        user_id=user_id,
        distributor_id=distributor_id,
        stock_out_id=stock_out_id,
        event_type=event_type,
        direction=direction,
        quantity=quantity,
        balance_after=balance_after,
        description=description,
        reference_id=reference_id,
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def lock_products(product_ids) -> None:
    """
    Serialize writers of serialized stock per product.

    Locks the Product rows in ascending id order. Call it after locking the
    units being moved and before counting for balance_after; the lock is held
    until the caller's unit of work ends.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return
    lock_for_update(
        db.session.query(Product.id).filter(Product.id.in_(ids)).order_by(Product.id)
    ).all()


def available_count(product_id: int, placement: PlacementRef) -> int:
    """Authoritative serialized balance: available units of a product at one placement."""
    return int(
        db.session.query(func.count(Unit.id))
        .filter(
            Unit.product_id == product_id,
            Unit.placement_kind == placement.kind.value,
            Unit.placement_id == placement.id,
            Unit.status == UNIT_STATUS_AVAILABLE,
        )
        .scalar()
        or 0
    )


def list_entries(
    policy: AccessPolicy,
    *,
    product_id: int | None = None,
    placement: PlacementRef | None = None,
    direction: str | None = None,
    event_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Scoped, newest-first ledger listing for the presentation layer."""
    q = db.session.query(LedgerEntry)
    q = policy.apply_to_query(q, LedgerEntry.placement_kind, LedgerEntry.placement_id)

    if product_id is not None:
        q = q.filter(LedgerEntry.product_id == product_id)
    if placement is not None:
        q = q.filter(
            LedgerEntry.placement_kind == placement.kind.value,
            LedgerEntry.placement_id == placement.id,
        )
    if direction:
        if direction not in (LEDGER_DIRECTION_IN, LEDGER_DIRECTION_OUT):
            raise ValidationError("direction must be 'in' or 'out'")
        q = q.filter(LedgerEntry.direction == direction)
    if event_type:
        q = q.filter(LedgerEntry.event_type == event_type)
    if start is not None:
        q = q.filter(LedgerEntry.created_at >= start)
    if end is not None:
        q = q.filter(LedgerEntry.created_at <= end)

    q = q.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
    return paginate_query(q, page=page, per_page=per_page)


def _replay(*criteria) -> int:
    signed = case(
        (LedgerEntry.direction == LEDGER_DIRECTION_IN, LedgerEntry.quantity),
        else_=-LedgerEntry.quantity,
    )
    total = db.session.query(func.coalesce(func.sum(signed), 0)).filter(*criteria).scalar()
    return int(total or 0)


def replay_bucket(bucket_id: int) -> int:
    """Signed sum of every entry recorded against a bucket, starting from zero."""
    return _replay(LedgerEntry.quantity_bucket_id == bucket_id)


def replay_units(product_id: int, placement: PlacementRef) -> int:
    """Signed sum of the serialized entries of a product at one placement."""
    return _replay(
        LedgerEntry.product_id == product_id,
        LedgerEntry.placement_kind == placement.kind.value,
        LedgerEntry.placement_id == placement.id,
        LedgerEntry.quantity_bucket_id.is_(None),
    )


def last_balance(bucket_id: int) -> int | None:
    entry = (
        db.session.query(LedgerEntry)
        .filter(LedgerEntry.quantity_bucket_id == bucket_id)
        .order_by(LedgerEntry.id.desc())
        .first()
    )
    return entry.balance_after if entry else None


def verify_buckets() -> list[dict]:
    """
    Compare every bucket against its ledger.

    Returns one row per drifting bucket (empty list when consistent).
    """
    drift = []
    for bucket in db.session.query(QuantityBucket).order_by(QuantityBucket.id).all():
        replayed = replay_bucket(bucket.id)
        last = last_balance(bucket.id)
        if replayed != bucket.quantity or (last is not None and last != bucket.quantity):
            drift.append({
                "bucket_id": bucket.id,
                "product_id": bucket.product_id,
                "placement": f"{bucket.placement_kind}:{bucket.placement_id}",
                "quantity": bucket.quantity,
                "replayed": replayed,
                "last_balance_after": last,
            })
    return drift

