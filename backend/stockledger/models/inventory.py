from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


# Unit status values
UNIT_STATUS_AVAILABLE = "available"
UNIT_STATUS_SOLD = "sold"
UNIT_STATUS_TRANSFER_PENDING = "transfer_pending"
UNIT_STATUS_SERVICE = "service"
UNIT_STATUS_BOOKED = "booked"
UNIT_STATUS_RETURNED = "returned"
UNIT_STATUS_DELETED = "deleted"
UNIT_STATUS_IN_TRANSIT = "in_transit"

UNIT_STATUSES = (
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_SOLD,
    UNIT_STATUS_TRANSFER_PENDING,
    UNIT_STATUS_SERVICE,
    UNIT_STATUS_BOOKED,
    UNIT_STATUS_RETURNED,
    UNIT_STATUS_DELETED,
    UNIT_STATUS_IN_TRANSIT,
)

UNIT_CONDITIONS = ("new", "second")

LEDGER_DIRECTION_IN = "in"
LEDGER_DIRECTION_OUT = "out"


class Unit(db.Model):
    """
    One serialized, individually tracked item (e.g. a phone with an IMEI).

    PLACEMENT: (placement_kind, placement_id) is a tagged reference. The table
    placement_id points at depends on placement_kind, so there is no foreign
    key; resolve it through placement_service.

    INVARIANTS:
    - status and placement only change together, through
      unit_registry.transition().
    - serial is unique among units whose status is not 'deleted'
      (partial unique index below).
    - a deleted unit keeps its last placement for audit purposes.

    CONCURRENCY: version_id is an optimistic lock; a concurrent transition on
    the same row raises StaleDataError at flush.
    """
    __tablename__ = "units"
    __table_args__ = (
        db.Index(
            "uq_units_serial_live",
            "serial",
            unique=True,
            sqlite_where=db.text("status <> 'deleted'"),
            postgresql_where=db.text("status <> 'deleted'"),
        ),
        db.Index("ix_units_placement", "placement_kind", "placement_id"),
        db.Index("ix_units_product_status", "product_id", "status"),
        db.Index("ix_units_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    serial = db.Column(db.String(64), nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    condition = db.Column(db.String(16), nullable=False, default="new")

    # Informational specs
    color = db.Column(db.String(64), nullable=True)
    ram = db.Column(db.String(32), nullable=True)
    storage = db.Column(db.String(32), nullable=True)

    cost_price = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    selling_price = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    status = db.Column(db.String(32), nullable=False, default=UNIT_STATUS_AVAILABLE)
    placement_kind = db.Column(db.String(32), nullable=False)
    placement_id = db.Column(db.Integer, nullable=False)

    distributor_id = db.Column(db.Integer, db.ForeignKey("distributors.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    distributor = db.relationship("Distributor")
    user = db.relationship("User")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Unit id={self.id} serial={self.serial!r} status={self.status} "
            f"placement={self.placement_kind}:{self.placement_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial": self.serial,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "product_sku": self.product.sku if self.product else None,
            "product_brand": self.product.brand if self.product else None,
            "condition": self.condition,
            "color": self.color,
            "ram": self.ram,
            "storage": self.storage,
            "cost_price": str(self.cost_price) if self.cost_price is not None else None,
            "selling_price": str(self.selling_price) if self.selling_price is not None else None,
            "status": self.status,
            "placement_kind": self.placement_kind,
            "placement_id": self.placement_id,
            "distributor_id": self.distributor_id,
            "distributor": self.distributor.name if self.distributor else None,
            "user_id": self.user_id,
            "input_by": self.user.display_name if self.user else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "version_id": self.version_id,
        }


class QuantityBucket(db.Model):
    """
    Aggregate count of a non-serialized product at one placement, per owning
    account.

    quantity is only ever mutated by a single atomic UPDATE statement in
    quantity_service, each paired with exactly one LedgerEntry whose
    balance_after equals the quantity right after that UPDATE.
    """
    __tablename__ = "quantity_buckets"
    __table_args__ = (
        db.UniqueConstraint(
            "product_id", "placement_kind", "placement_id", "owner_user_id",
            name="uq_quantity_buckets_product_placement_owner",
        ),
        db.CheckConstraint("quantity >= 0", name="ck_quantity_buckets_non_negative"),
        db.Index("ix_quantity_buckets_placement", "placement_kind", "placement_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    placement_kind = db.Column(db.String(32), nullable=False)
    placement_id = db.Column(db.Integer, nullable=False)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product")
    owner = db.relationship("User")

    def __repr__(self) -> str:
        return (
            f"<QuantityBucket id={self.id} product_id={self.product_id} "
            f"placement={self.placement_kind}:{self.placement_id} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "placement_kind": self.placement_kind,
            "placement_id": self.placement_id,
            "owner_user_id": self.owner_user_id,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEntry(db.Model):
    """
    Append-only record of a stock-affecting event.

    - Written inside the same DB transaction as the mutation it records.
    - quantity is the magnitude; direction says which way it moved.
    - balance_after is the authoritative count right after the mutation:
      the bucket quantity for quantity stock, the available-unit count of the
      product at that placement for serialized stock.
    - Rows are never updated or deleted (guarded by mapper events below).
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint("direction IN ('in', 'out')", name="ck_ledger_entries_direction"),
        db.CheckConstraint("quantity > 0", name="ck_ledger_entries_quantity_positive"),
        db.Index("ix_ledger_entries_created_at", "created_at"),
        db.Index("ix_ledger_entries_product_placement", "product_id", "placement_kind", "placement_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    placement_kind = db.Column(db.String(32), nullable=False)
    placement_id = db.Column(db.Integer, nullable=False)
    quantity_bucket_id = db.Column(db.Integer, db.ForeignKey("quantity_buckets.id"), nullable=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    distributor_id = db.Column(db.Integer, db.ForeignKey("distributors.id"), nullable=True, index=True)
    stock_out_id = db.Column(db.Integer, db.ForeignKey("stock_outs.id"), nullable=True, index=True)

    # stock_in, stock_out.<category>, transfer.confirm, quantity.correction
    event_type = db.Column(db.String(64), nullable=False, index=True)
    direction = db.Column(db.String(8), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    description = db.Column(db.Text, nullable=True)
    reference_id = db.Column(db.String(64), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")
    user = db.relationship("User")
    distributor = db.relationship("Distributor")

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == LEDGER_DIRECTION_IN else -self.quantity

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} {self.direction} {self.quantity} "
            f"product_id={self.product_id} balance_after={self.balance_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "placement_kind": self.placement_kind,
            "placement_id": self.placement_id,
            "quantity_bucket_id": self.quantity_bucket_id,
            "user_id": self.user_id,
            "user_name": self.user.display_name if self.user else None,
            "distributor_id": self.distributor_id,
            "distributor": self.distributor.name if self.distributor else None,
            "stock_out_id": self.stock_out_id,
            "event_type": self.event_type,
            "direction": self.direction,
            "quantity": self.quantity,
            "balance_after": self.balance_after,
            "description": self.description,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }


class LedgerImmutableError(RuntimeError):
    """Raised when code tries to modify or delete a ledger row."""


@event.listens_for(LedgerEntry, "before_update")
def _ledger_entry_no_update(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} is append-only")


@event.listens_for(LedgerEntry, "before_delete")
def _ledger_entry_no_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} is append-only")
