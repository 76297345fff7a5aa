# backend/stockledger/services/quantity_service.py
"""
Quantity buckets for non-serialized products.

WHY: Concurrent stock-ins to the same bucket must not lose updates, so the
quantity column is never read, changed in Python and written back. Every
change is a single UPDATE evaluated by the database, paired with one ledger
entry carrying the value the UPDATE produced.

increment() and decrement() run inside the caller's unit of work (they only
flush). remove_quantity() is the public correction operation and owns its
transaction.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy import update

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, QuantityBucket
from ..models.inventory import LEDGER_DIRECTION_IN, LEDGER_DIRECTION_OUT
from ..time_utils import utcnow
from .access_policy import AccessPolicy
from .concurrency import atomic
from .ledger_service import append_entry
from .listing import paginate_query
from .placement_service import PlacementRef, placement_names


EVENT_QUANTITY_CORRECTION = "quantity.correction"


def _bucket_query(product_id: int, placement: PlacementRef, owner_user_id: int):
    return db.session.query(QuantityBucket).filter(
        QuantityBucket.product_id == product_id,
        QuantityBucket.placement_kind == placement.kind.value,
        QuantityBucket.placement_id == placement.id,
        QuantityBucket.owner_user_id == owner_user_id,
    )


def _get_or_create_bucket(product_id: int, placement: PlacementRef, owner_user_id: int) -> QuantityBucket:
    bucket = _bucket_query(product_id, placement, owner_user_id).first()
    if bucket is None:
        bucket = QuantityBucket(
            product_id=product_id,
            placement_kind=placement.kind.value,
            placement_id=placement.id,
            owner_user_id=owner_user_id,
            quantity=0,
        )
        db.session.add(bucket)
        db.session.flush()
    return bucket


def _current_quantity(bucket: QuantityBucket) -> int:
    # Drop the cached attribute; the UPDATE bypassed the identity map
    db.session.expire(bucket, ["quantity", "updated_at"])
    return int(
        db.session.query(QuantityBucket.quantity)
        .filter(QuantityBucket.id == bucket.id)
        .scalar()
    )


def increment(
    product_id: int,
    placement: PlacementRef,
    owner_user_id: int,
    quantity: int,
    *,
    user_id: int | None,
    event_type: str,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
    distributor_id: int | None = None,
):
    """
    Add quantity to a bucket (created on first use) and record it.

    Returns:
        (QuantityBucket, LedgerEntry)
    """
    if quantity <= 0:
        raise ValidationError("quantity must be positive")

    bucket = _get_or_create_bucket(product_id, placement, owner_user_id)
    stmt = (
        update(QuantityBucket)
        .where(QuantityBucket.id == bucket.id)
        .values(quantity=QuantityBucket.quantity + quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    balance = _current_quantity(bucket)

    entry = append_entry(
        product_id=product_id,
        placement=placement,
        direction=LEDGER_DIRECTION_IN,
        quantity=quantity,
        balance_after=balance,
        user_id=user_id,
        event_type=event_type,
        description=description,
        reference_id=reference_id,
        distributor_id=distributor_id,
        quantity_bucket_id=bucket.id,
    )
    return bucket, entry


def decrement(
    product_id: int,
    placement: PlacementRef,
    owner_user_id: int,
    quantity: int,
    *,
    user_id: int | None,
    event_type: str,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
):
    """
    Remove quantity from a bucket and record it.

    The guard `quantity >= n` is part of the UPDATE itself, so two concurrent
    decrements can never take the bucket below zero between them.

    Raises:
        ValidationError: bucket missing or holding less than quantity
    """
    if quantity <= 0:
        raise ValidationError("quantity must be positive")

    bucket = _bucket_query(product_id, placement, owner_user_id).first()
    if bucket is None:
        raise ValidationError("Insufficient quantity: no stock recorded for this product here")

    stmt = (
        update(QuantityBucket)
        .where(QuantityBucket.id == bucket.id, QuantityBucket.quantity >= quantity)
        .values(quantity=QuantityBucket.quantity - quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 0:
        raise ValidationError(
            f"Insufficient quantity: requested {quantity}, available {_current_quantity(bucket)}"
        )
    balance = _current_quantity(bucket)

    entry = append_entry(
        product_id=product_id,
        placement=placement,
        direction=LEDGER_DIRECTION_OUT,
        quantity=quantity,
        balance_after=balance,
        user_id=user_id,
        event_type=event_type,
        description=description,
        reference_id=reference_id,
        quantity_bucket_id=bucket.id,
    )
    return bucket, entry


def remove_quantity(
    policy: AccessPolicy,
    *,
    product_id: int,
    placement: PlacementRef,
    quantity: int,
    owner_user_id: int | None = None,
    reason: Optional[str] = None,
) -> dict:
    """Operator correction: take quantity out of a bucket the caller can see."""
    policy.require_visible(placement)
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if product.tracks_serial:
        raise ValidationError("Serialized products are removed through stock-out, not by quantity")

    owner = owner_user_id if owner_user_id is not None else policy.user_id
    with atomic():
        bucket, entry = decrement(
            product_id,
            placement,
            owner,
            quantity,
            user_id=policy.user_id,
            event_type=EVENT_QUANTITY_CORRECTION,
            description=reason,
        )
        result = {"bucket": bucket.to_dict(), "ledger_entry": entry.to_dict()}
    return result


def _serialize_buckets(rows: list[QuantityBucket]) -> list[dict]:
    names = placement_names(PlacementRef.of(b) for b in rows)
    data = []
    for bucket in rows:
        row = bucket.to_dict()
        row["placement_name"] = names.get(PlacementRef.of(bucket))
        data.append(row)
    return data


def list_buckets(
    policy: AccessPolicy,
    *,
    product_id: int | None = None,
    placement: PlacementRef | None = None,
    include_empty: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(QuantityBucket)
    q = policy.apply_to_query(q, QuantityBucket.placement_kind, QuantityBucket.placement_id)
    if product_id is not None:
        q = q.filter(QuantityBucket.product_id == product_id)
    if placement is not None:
        q = q.filter(
            QuantityBucket.placement_kind == placement.kind.value,
            QuantityBucket.placement_id == placement.id,
        )
    if not include_empty:
        q = q.filter(QuantityBucket.quantity > 0)
    q = q.order_by(QuantityBucket.updated_at.desc(), QuantityBucket.id.desc())
    return paginate_query(q, page=page, per_page=per_page, serialize=_serialize_buckets)
