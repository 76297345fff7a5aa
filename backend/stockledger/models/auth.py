from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class User(db.Model):
    """
    Operator account as handed over by the identity layer.

    PLACEMENT: a user is attached to at most one branch, warehouse or online
    shop. Whether that attachment restricts what they see is decided by
    AccessPolicy.for_user() from the role, never here.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(64), nullable=False, default="staff")

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)
    online_shop_id = db.Column(db.Integer, db.ForeignKey("online_shops.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    branch = db.relationship("Branch")
    warehouse = db.relationship("Warehouse")
    online_shop = db.relationship("OnlineShop")

    @property
    def display_name(self) -> str:
        return self.name or self.username

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "role": self.role,
            "branch_id": self.branch_id,
            "warehouse_id": self.warehouse_id,
            "online_shop_id": self.online_shop_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
