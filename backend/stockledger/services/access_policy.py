"""
Access policy: which placements an acting principal may see and act on.

WHY: Handlers never look at role names. Every registry, ledger and stock
operation receives an explicit AccessPolicy, built once per request from the
principal handed over by the identity layer.

RULES:
- visible is ALL for unrestricted principals.
- Otherwise visible is a fixed set of placements; scoped callers never see
  rows outside it, whatever filters they supply.
- A scoped principal with no placement sees nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import and_, false, or_

from ..errors import NotFoundError
from .placement_service import PlacementKind, PlacementRef, placement_of_user


ALL = "ALL"


@dataclass(frozen=True)
class AccessPolicy:
    user_id: int
    visible: object = ALL  # ALL or frozenset[PlacementRef]
    role: str | None = None
    home: PlacementRef | None = field(default=None, compare=False)

    @classmethod
    def unrestricted(cls, user_id: int, *, role: str | None = None, home: PlacementRef | None = None) -> "AccessPolicy":
        return cls(user_id=user_id, visible=ALL, role=role, home=home)

    @classmethod
    def scoped(cls, user_id: int, placements: Iterable[PlacementRef], *, role: str | None = None) -> "AccessPolicy":
        refs = frozenset(placements)
        home = min(refs) if len(refs) == 1 else None
        return cls(user_id=user_id, visible=refs, role=role, home=home)

    @classmethod
    def for_user(cls, user, unrestricted_roles: Iterable[str]) -> "AccessPolicy":
        home = placement_of_user(user)
        if user.role in set(unrestricted_roles):
            return cls.unrestricted(user.id, role=user.role, home=home)
        return cls.scoped(user.id, [home] if home else [], role=user.role)

    @property
    def is_unrestricted(self) -> bool:
        return self.visible == ALL

    def can_see(self, ref: PlacementRef) -> bool:
        return self.is_unrestricted or ref in self.visible

    def require_visible(self, ref: PlacementRef) -> None:
        # Same error as a missing placement: do not reveal what exists elsewhere
        if not self.can_see(ref):
            raise NotFoundError(f"{ref.kind.value} {ref.id} not found")

    def visible_ids(self, kind: PlacementKind) -> set[int] | None:
        """Ids of one kind this policy may see; None means no restriction."""
        if self.is_unrestricted:
            return None
        return {ref.id for ref in self.visible if ref.kind == kind}

    def apply_to_query(self, query, kind_col, id_col):
        """Restrict a query on (kind_col, id_col) to the visible placements."""
        if self.is_unrestricted:
            return query
        if not self.visible:
            return query.filter(false())
        clauses = [and_(kind_col == ref.kind.value, id_col == ref.id) for ref in sorted(self.visible)]
        return query.filter(or_(*clauses))
