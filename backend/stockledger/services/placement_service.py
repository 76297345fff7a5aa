# Overview: Tagged placement references and their per-kind resolvers.

"""
Placement references

A unit or bucket lives at a (kind, id) pair. The id means nothing without the
kind: branch 6 and warehouse 6 are unrelated rows in different tables. This
module is the only place that knows which table each kind points at.

USAGE:
    ref = parse_placement("branch", 6)
    branch = resolve_placement(ref)          # NotFoundError if missing
    names = placement_names([ref, other])    # one query per kind
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Branch, OnlineShop, Warehouse
from ..models.placement import PLACEMENT_BRANCH, PLACEMENT_ONLINE_CHANNEL, PLACEMENT_WAREHOUSE
from ..validation import coerce_int


class PlacementKind(str, Enum):
    BRANCH = PLACEMENT_BRANCH
    WAREHOUSE = PLACEMENT_WAREHOUSE
    ONLINE_CHANNEL = PLACEMENT_ONLINE_CHANNEL


# Older clients send the storefront kind under its table name
_KIND_ALIASES = {
    "online_shop": PlacementKind.ONLINE_CHANNEL,
}

_RESOLVERS = {
    PlacementKind.BRANCH: Branch,
    PlacementKind.WAREHOUSE: Warehouse,
    PlacementKind.ONLINE_CHANNEL: OnlineShop,
}


@dataclass(frozen=True, order=True)
class PlacementRef:
    kind: PlacementKind
    id: int

    @classmethod
    def branch(cls, branch_id: int) -> "PlacementRef":
        return cls(PlacementKind.BRANCH, branch_id)

    @classmethod
    def warehouse(cls, warehouse_id: int) -> "PlacementRef":
        return cls(PlacementKind.WAREHOUSE, warehouse_id)

    @classmethod
    def online_channel(cls, shop_id: int) -> "PlacementRef":
        return cls(PlacementKind.ONLINE_CHANNEL, shop_id)

    @classmethod
    def of(cls, row) -> "PlacementRef":
        """Placement of any row carrying placement_kind/placement_id columns."""
        return cls(parse_kind(row.placement_kind), row.placement_id)

    @classmethod
    def of_source(cls, record) -> "PlacementRef":
        """Where a stock-out record's units were dispatched from."""
        return cls(parse_kind(record.source_placement_kind), record.source_placement_id)

    def to_dict(self) -> dict:
        return {"placement_kind": self.kind.value, "placement_id": self.id}

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def parse_kind(raw) -> PlacementKind:
    if isinstance(raw, PlacementKind):
        return raw
    value = str(raw or "").strip().lower()
    if value in _KIND_ALIASES:
        return _KIND_ALIASES[value]
    try:
        return PlacementKind(value)
    except ValueError:
        allowed = ", ".join(k.value for k in PlacementKind)
        raise ValidationError(f"placement_kind must be one of: {allowed}")


def parse_placement(kind, placement_id) -> PlacementRef:
    """Validate raw request values into a PlacementRef (no existence check)."""
    if placement_id is None or placement_id == "":
        raise ValidationError("placement_id is required")
    pid = coerce_int(placement_id, "placement_id")
    if pid <= 0:
        raise ValidationError("placement_id must be positive")
    return PlacementRef(parse_kind(kind), pid)


def resolve_placement(ref: PlacementRef, *, require_active: bool = False):
    """Load the row a placement points at, or raise NotFoundError."""
    model = _RESOLVERS[ref.kind]
    row = db.session.get(model, ref.id)
    if row is None:
        raise NotFoundError(f"{ref.kind.value} {ref.id} not found")
    if require_active and not row.is_active:
        raise ValidationError(f"{ref.kind.value} {ref.id} is inactive")
    return row


def placement_name(ref: PlacementRef) -> str | None:
    row = db.session.get(_RESOLVERS[ref.kind], ref.id)
    return row.name if row else None


def placement_names(refs: Iterable[PlacementRef]) -> dict[PlacementRef, str]:
    """
    Batch-resolve display names for a listing page: one query per kind
    instead of one per row.
    """
    by_kind: dict[PlacementKind, set[int]] = {}
    for ref in refs:
        by_kind.setdefault(ref.kind, set()).add(ref.id)

    names: dict[PlacementRef, str] = {}
    for kind, ids in by_kind.items():
        model = _RESOLVERS[kind]
        rows = db.session.query(model.id, model.name).filter(model.id.in_(ids)).all()
        for row_id, name in rows:
            names[PlacementRef(kind, row_id)] = name
    return names


def placement_of_user(user) -> PlacementRef | None:
    """The single placement an operator account is attached to, if any."""
    if user is None:
        return None
    if user.branch_id:
        return PlacementRef.branch(user.branch_id)
    if user.warehouse_id:
        return PlacementRef.warehouse(user.warehouse_id)
    if user.online_shop_id:
        return PlacementRef.online_channel(user.online_shop_id)
    return None
