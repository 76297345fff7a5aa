from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Discriminator values stored in every (placement_kind, placement_id) pair
PLACEMENT_BRANCH = "branch"
PLACEMENT_WAREHOUSE = "warehouse"
PLACEMENT_ONLINE_CHANNEL = "online_channel"

PLACEMENT_KINDS = (PLACEMENT_BRANCH, PLACEMENT_WAREHOUSE, PLACEMENT_ONLINE_CHANNEL)


class _PlacementMixin:
    """Columns shared by every concrete placement table."""

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True)
    address = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    placement_kind: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.placement_kind,
            "name": self.name,
            "code": self.code,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Branch(_PlacementMixin, db.Model):
    """Physical retail branch (cabang)."""
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    placement_kind = PLACEMENT_BRANCH

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r}>"


class Warehouse(_PlacementMixin, db.Model):
    """Back-office warehouse (gudang); also receives returned units."""
    __tablename__ = "warehouses"
    __table_args__ = {"sqlite_autoincrement": True}

    placement_kind = PLACEMENT_WAREHOUSE

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} name={self.name!r}>"


class OnlineShop(_PlacementMixin, db.Model):
    """Online sales channel account (e.g. a marketplace storefront)."""
    __tablename__ = "online_shops"
    __table_args__ = {"sqlite_autoincrement": True}

    placement_kind = PLACEMENT_ONLINE_CHANNEL

    def __repr__(self) -> str:
        return f"<OnlineShop id={self.id} name={self.name!r}>"
