from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


# Stock-out categories
CATEGORY_BRANCH_TRANSFER = "branch_transfer"
CATEGORY_INPUT_ERROR = "input_error"
CATEGORY_RETURN = "return"
CATEGORY_CHANNEL_DISPATCH = "channel_dispatch"
CATEGORY_GIVEAWAY = "giveaway"

STOCK_OUT_CATEGORIES = (
    CATEGORY_BRANCH_TRANSFER,
    CATEGORY_INPUT_ERROR,
    CATEGORY_RETURN,
    CATEGORY_CHANNEL_DISPATCH,
    CATEGORY_GIVEAWAY,
)


class StockOut(db.Model):
    """
    One outbound movement grouping one or more units under a category.

    LIFECYCLE:
    - Created once by stock_out_service.stock_out(); membership (items) is
      fixed at creation.
    - branch_transfer only: dispatched (confirmed_at NULL) -> confirmed
      (confirmed_at/confirmed_by set) by transfer_service.confirm().
      Terminal once confirmed.
    - Never hard-deleted; deleted_at exists for audit-preserving removal.

    Category-specific columns are nullable; which ones are filled is decided by
    the typed request variant in stock_out_schemas.
    """
    __tablename__ = "stock_outs"
    __table_args__ = (
        db.UniqueConstraint("receipt_id", name="uq_stock_outs_receipt_id"),
        db.Index("ix_stock_outs_category", "category"),
        db.Index("ix_stock_outs_created_at", "created_at"),
        db.Index("ix_stock_outs_pending", "category", "destination_branch_id", "confirmed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Short paper receipt code, e.g. O03FEB-K9Z
    receipt_id = db.Column(db.String(20), nullable=False)
    category = db.Column(db.String(32), nullable=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Where the units were when they left (NULL when they came from several)
    source_placement_kind = db.Column(db.String(32), nullable=True)
    source_placement_id = db.Column(db.Integer, nullable=True)

    # branch_transfer
    destination_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    receiver_name = db.Column(db.String(255), nullable=True)
    transfer_notes = db.Column(db.Text, nullable=True)

    # input_error
    deletion_reason = db.Column(db.Text, nullable=True)

    # return
    return_officer = db.Column(db.String(255), nullable=True)
    return_seal = db.Column(db.String(255), nullable=True)
    return_issue = db.Column(db.Text, nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)
    return_destination_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    # channel_dispatch
    channel_name = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    # Transfer confirmation
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id])
    confirmed_by_user = db.relationship("User", foreign_keys=[confirmed_by])
    destination_branch = db.relationship("Branch", foreign_keys=[destination_branch_id])
    return_destination = db.relationship("Warehouse", foreign_keys=[return_destination_id])
    items = db.relationship(
        "StockOutItem",
        backref=db.backref("stock_out", lazy=True),
        lazy=True,
        order_by="StockOutItem.id",
    )
    shipments = db.relationship(
        "StockOutShipment",
        backref=db.backref("stock_out", lazy=True),
        lazy=True,
        order_by="StockOutShipment.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def units(self) -> list:
        return [item.unit for item in self.items]

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at is not None

    def __repr__(self) -> str:
        return f"<StockOut id={self.id} receipt_id={self.receipt_id!r} category={self.category}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "category": self.category,
            "user_id": self.user_id,
            "processed_by": self.user.display_name if self.user else None,
            "source_placement_kind": self.source_placement_kind,
            "source_placement_id": self.source_placement_id,
            "destination_branch_id": self.destination_branch_id,
            "destination_branch": self.destination_branch.name if self.destination_branch else None,
            "receiver_name": self.receiver_name,
            "transfer_notes": self.transfer_notes,
            "deletion_reason": self.deletion_reason,
            "return_officer": self.return_officer,
            "return_seal": self.return_seal,
            "return_issue": self.return_issue,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "return_destination_id": self.return_destination_id,
            "return_destination": self.return_destination.name if self.return_destination else None,
            "channel_name": self.channel_name,
            "notes": self.notes,
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "confirmed_by": self.confirmed_by,
            "confirmed_by_name": self.confirmed_by_user.display_name if self.confirmed_by_user else None,
            "items_count": len(self.items),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [
                {
                    "id": item.unit.id,
                    "serial": item.unit.serial,
                    "product_name": item.unit.product.name if item.unit.product else None,
                    "product_brand": item.unit.product.brand if item.unit.product else None,
                    "status": item.unit.status,
                }
                for item in self.items
            ]
            data["shipments"] = [s.to_dict() for s in self.shipments]
        return data


class StockOutItem(db.Model):
    """
    Membership of a unit in a stock-out record.

    open_unit_id mirrors unit_id while the record is an unconfirmed branch
    transfer and is NULL otherwise; its unique constraint stops one unit from
    sitting in two open transfers at once.
    """
    __tablename__ = "stock_out_items"
    __table_args__ = (
        db.UniqueConstraint("stock_out_id", "unit_id", name="uq_stock_out_items_stock_out_unit"),
        db.UniqueConstraint("open_unit_id", name="uq_stock_out_items_open_unit"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_out_id = db.Column(db.Integer, db.ForeignKey("stock_outs.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False, index=True)
    open_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    unit = db.relationship("Unit", foreign_keys=[unit_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_out_id": self.stock_out_id,
            "unit_id": self.unit_id,
            "open": self.open_unit_id is not None,
            "created_at": to_utc_z(self.created_at),
        }


class StockOutShipment(db.Model):
    """
    Per-recipient shipping detail for channel_dispatch (one row per unit) and
    giveaway (one row, unit_id NULL).
    """
    __tablename__ = "stock_out_shipments"
    __table_args__ = (
        db.Index("ix_stock_out_shipments_tracking_no", "tracking_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_out_id = db.Column(db.Integer, db.ForeignKey("stock_outs.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True, index=True)

    receiver_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    address = db.Column(db.Text, nullable=True)
    province = db.Column(db.String(128), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    district = db.Column(db.String(128), nullable=True)
    village = db.Column(db.String(128), nullable=True)
    postal_code = db.Column(db.String(16), nullable=True)
    tracking_no = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    unit = db.relationship("Unit", foreign_keys=[unit_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "unit_id": self.unit_id,
            "serial": self.unit.serial if self.unit else None,
            "receiver_name": self.receiver_name,
            "phone": self.phone,
            "address": self.address,
            "province": self.province,
            "city": self.city,
            "district": self.district,
            "village": self.village,
            "postal_code": self.postal_code,
            "tracking_no": self.tracking_no,
            "notes": self.notes,
        }
