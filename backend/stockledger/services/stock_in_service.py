# Overview: Stock-in processing for serialized units and quantity stock.

"""
Stock-In Service

WHY: Receiving is scanned in bulk and scans repeat. A serial that is already
registered (or scanned twice in the same batch) is skipped and reported back
instead of failing the whole delivery.

RULES:
- The distributor is resolved (or created from a free-form name) before any
  unit is admitted; neither id nor name fails fast with no writes.
- The product's tracks_serial decides the accepted request shape.
- Serialized: one aggregate ledger entry for everything admitted, with
  balance_after = available units of that product at the placement.
- Quantity: one atomic bucket increment and its ledger entry.
- Any exception rolls back the distributor, the units and the ledger entry.

KNOWN QUIRK: after a serialized stock-in the catalog price of the product is
overwritten with the selling price of the FIRST admitted unit, even when the
batch carries different prices.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Distributor, Product
from ..models.inventory import LEDGER_DIRECTION_IN
from ..validation import coerce_int, optional_int, optional_str, require_dict, require_int
from .access_policy import AccessPolicy
from .concurrency import atomic
from .ledger_service import append_entry, available_count, lock_products
from .placement_service import PlacementRef, parse_placement, resolve_placement
from .quantity_service import increment
from .unit_registry import UnitSpec, register_unit, serial_in_use


EVENT_STOCK_IN = "stock_in"


@dataclass(frozen=True)
class QuantityStockIn:
    quantity: int


@dataclass(frozen=True)
class SerializedStockIn:
    units: tuple[UnitSpec, ...]


StockInItems = Union[QuantityStockIn, SerializedStockIn]


@dataclass(frozen=True)
class StockInRequest:
    product_id: int
    placement: PlacementRef
    items: StockInItems
    distributor_id: Optional[int] = None
    new_distributor_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class StockInResult:
    inserted_count: int
    duplicates: list[str] = field(default_factory=list)
    ledger_entry_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "inserted_count": self.inserted_count,
            "duplicates": list(self.duplicates),
            "duplicate_count": len(self.duplicates),
            "ledger_entry_id": self.ledger_entry_id,
        }


def parse_stock_in_request(payload) -> StockInRequest:
    """
    Build a typed request from JSON.

    Exactly one of "quantity" (non-serialized) or "units" (serialized list)
    must be present. One malformed serial rejects the whole batch.
    """
    data = require_dict(payload)
    product_id = require_int(data, "product_id", minimum=1)
    placement = parse_placement(data.get("placement_kind"), data.get("placement_id"))

    has_quantity = data.get("quantity") not in (None, "")
    has_units = data.get("units") is not None
    if has_quantity == has_units:
        raise ValidationError("Provide exactly one of quantity or units")

    if has_quantity:
        quantity = coerce_int(data["quantity"], "quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        items: StockInItems = QuantityStockIn(quantity)
    else:
        raw_units = data["units"]
        if not isinstance(raw_units, list) or not raw_units:
            raise ValidationError("units must be a non-empty list")
        items = SerializedStockIn(tuple(UnitSpec.from_dict(u) for u in raw_units))

    return StockInRequest(
        product_id=product_id,
        placement=placement,
        items=items,
        distributor_id=optional_int(data, "distributor_id"),
        new_distributor_name=optional_str(data, "new_distributor_name"),
        notes=optional_str(data, "notes", max_length=None),
    )


def resolve_distributor(distributor_id: int | None, new_distributor_name: str | None) -> Distributor:
    """
    Existing distributor by id, else an active one with exactly that name,
    else a new one. Flushes but does not commit.

    Raises:
        ValidationError: neither id nor name supplied
        NotFoundError: id supplied but unknown
    """
    if distributor_id is not None:
        distributor = db.session.get(Distributor, distributor_id)
        if distributor is None:
            raise NotFoundError(f"Distributor {distributor_id} not found")
        return distributor

    name = (new_distributor_name or "").strip()
    if not name:
        raise ValidationError("distributor_id or new_distributor_name is required")

    existing = (
        db.session.query(Distributor)
        .filter(Distributor.name == name, Distributor.is_active.is_(True))
        .order_by(Distributor.id)
        .first()
    )
    if existing is not None:
        return existing

    distributor = Distributor(name=name, is_active=True)
    db.session.add(distributor)
    db.session.flush()
    return distributor


def _stock_in_units(
    product: Product,
    placement: PlacementRef,
    units: tuple[UnitSpec, ...],
    *,
    user_id: int,
    distributor: Distributor,
    notes: Optional[str],
) -> StockInResult:
    seen: set[str] = set()
    lock_products([product.id])
    duplicates: list[str] = []
    admitted = []

    for spec in units:
        if spec.serial in seen or serial_in_use(spec.serial):
            duplicates.append(spec.serial)
            continue
        seen.add(spec.serial)
        admitted.append(
            register_unit(
                spec,
                product_id=product.id,
                placement=placement,
                user_id=user_id,
                distributor_id=distributor.id,
            )
        )

    result = StockInResult(inserted_count=len(admitted), duplicates=duplicates)
    if not admitted:
        return result

    entry = append_entry(
        product_id=product.id,
        placement=placement,
        direction=LEDGER_DIRECTION_IN,
        quantity=len(admitted),
        balance_after=available_count(product.id, placement),
        user_id=user_id,
        event_type=EVENT_STOCK_IN,
        description=notes or f"Stock in {len(admitted)} unit(s) of {product.name} from {distributor.name}",
        distributor_id=distributor.id,
    )
    result.ledger_entry_id = entry.id

    product.price = admitted[0].selling_price
    return result


def stock_in(
    *,
    product_id: int,
    placement: PlacementRef,
    items: StockInItems,
    policy: AccessPolicy,
    distributor_id: int | None = None,
    new_distributor_name: str | None = None,
    notes: str | None = None,
) -> StockInResult:
    """
    Receive stock at a placement.

    Args:
        product_id: Catalog product being received
        placement: Where the stock arrives (must be visible to the caller)
        items: QuantityStockIn or SerializedStockIn
        policy: Acting principal; its user owns the quantity bucket
        distributor_id / new_distributor_name: Source of the goods

    Returns:
        StockInResult with inserted_count + len(duplicates) == number of items

    Raises:
        ValidationError: no distributor, shape does not match the product
        NotFoundError: product, distributor or placement missing or not visible
    """
    if distributor_id is None and not (new_distributor_name or "").strip():
        raise ValidationError("distributor_id or new_distributor_name is required")

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product_id} is inactive")

    serialized = isinstance(items, SerializedStockIn)
    if serialized != bool(product.tracks_serial):
        expected = "a list of serialized units" if product.tracks_serial else "a quantity"
        raise ValidationError(f"Product {product.name} is received as {expected}")

    policy.require_visible(placement)
    resolve_placement(placement, require_active=True)

    with atomic():
        distributor = resolve_distributor(distributor_id, new_distributor_name)

        if serialized:
            result = _stock_in_units(
                product,
                placement,
                items.units,
                user_id=policy.user_id,
                distributor=distributor,
                notes=notes,
            )
        else:
            _, entry = increment(
                product.id,
                placement,
                policy.user_id,
                items.quantity,
                user_id=policy.user_id,
                event_type=EVENT_STOCK_IN,
                description=notes or f"Stock in {items.quantity} x {product.name} from {distributor.name}",
                distributor_id=distributor.id,
            )
            result = StockInResult(inserted_count=items.quantity, ledger_entry_id=entry.id)

    if result.duplicates:
        current_app.logger.info(
            "Stock-in at %s skipped %d duplicate serial(s): %s",
            placement, len(result.duplicates), ", ".join(result.duplicates),
        )
    return result
