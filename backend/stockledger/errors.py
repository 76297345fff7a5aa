# Overview: Error taxonomy shared by the registry, ledger and stock workflows.

from __future__ import annotations


class StockError(Exception):
    """Base class for business errors raised by the stock core."""

    status_code = 400

    def to_dict(self) -> dict:
        return {"error": str(self)}


class ValidationError(StockError, ValueError):
    """400-level input problem."""


class NotFoundError(StockError):
    """Referenced record does not exist or is outside the caller's scope."""

    status_code = 404


class ConflictError(StockError):
    """409-level conflict: a concurrent transaction won the race."""

    status_code = 409


class DuplicateSerialError(ConflictError):
    """A non-deleted unit already carries this serial."""

    def __init__(self, serial: str):
        super().__init__(f"Serial {serial} already exists")
        self.serial = serial

    def to_dict(self) -> dict:
        return {"error": str(self), "serial": self.serial}


class InvalidTransitionError(ConflictError):
    """Requested status change is not allowed from the unit's current status."""

    def __init__(self, unit_id: int, current: str, target: str):
        super().__init__(f"Unit {unit_id} cannot move from {current} to {target}")
        self.unit_id = unit_id
        self.current = current
        self.target = target


class UnavailableUnitsError(ConflictError):
    """
    Stock-out precondition failure.

    Carries every unit id that was missing, out of scope, or not available so
    the caller can show exactly which scans to remove.
    """

    def __init__(self, unit_ids: list[int]):
        ids = sorted(set(unit_ids))
        super().__init__(
            "Some units are no longer available or were already stocked out: "
            + ", ".join(str(i) for i in ids)
        )
        self.unit_ids = ids

    def to_dict(self) -> dict:
        return {"error": str(self), "unit_ids": self.unit_ids}
