"""
Typed stock-out requests.

Each category gets its own variant carrying exactly the metadata it needs, so
stock_out_service never has to guess which nullable columns are meaningful.
parse_stock_out_request() is the only entry point from raw JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..errors import ValidationError
from ..models.stock_out import (
    CATEGORY_BRANCH_TRANSFER,
    CATEGORY_CHANNEL_DISPATCH,
    CATEGORY_GIVEAWAY,
    CATEGORY_INPUT_ERROR,
    CATEGORY_RETURN,
    STOCK_OUT_CATEGORIES,
)
from ..validation import optional_int, optional_str, require_dict, require_int, require_int_list, require_str


# Older clients send these category names
_CATEGORY_ALIASES = {
    "pindah_cabang": CATEGORY_BRANCH_TRANSFER,
    "kesalahan_input": CATEGORY_INPUT_ERROR,
    "retur": CATEGORY_RETURN,
    "shopee": CATEGORY_CHANNEL_DISPATCH,
}


@dataclass(frozen=True)
class Shipment:
    receiver_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    tracking_no: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    village: Optional[str] = None
    postal_code: Optional[str] = None
    notes: Optional[str] = None
    unit_id: Optional[int] = None

    def to_row_kwargs(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "receiver_name": self.receiver_name,
            "phone": self.phone,
            "address": self.address,
            "tracking_no": self.tracking_no,
            "province": self.province,
            "city": self.city,
            "district": self.district,
            "village": self.village,
            "postal_code": self.postal_code,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class BranchTransferOut:
    unit_ids: tuple[int, ...]
    destination_branch_id: int
    receiver_name: str
    transfer_notes: Optional[str] = None
    notes: Optional[str] = None
    category: str = CATEGORY_BRANCH_TRANSFER


@dataclass(frozen=True)
class InputErrorOut:
    unit_ids: tuple[int, ...]
    deletion_reason: str
    notes: Optional[str] = None
    category: str = CATEGORY_INPUT_ERROR


@dataclass(frozen=True)
class ReturnOut:
    unit_ids: tuple[int, ...]
    return_officer: str
    return_issue: str
    customer_name: str
    customer_phone: str
    return_seal: Optional[str] = None
    return_destination_id: Optional[int] = None
    notes: Optional[str] = None
    category: str = CATEGORY_RETURN


@dataclass(frozen=True)
class ChannelDispatchOut:
    unit_ids: tuple[int, ...]
    channel_name: str
    shipments: tuple[Shipment, ...]
    notes: Optional[str] = None
    category: str = CATEGORY_CHANNEL_DISPATCH


@dataclass(frozen=True)
class GiveawayOut:
    unit_ids: tuple[int, ...]
    recipient: Shipment
    notes: Optional[str] = None
    category: str = CATEGORY_GIVEAWAY


StockOutRequest = Union[BranchTransferOut, InputErrorOut, ReturnOut, ChannelDispatchOut, GiveawayOut]


def _parse_shipment(raw, *, require_contact: bool) -> Shipment:
    data = require_dict(raw)
    if require_contact:
        phone = require_str(data, "phone", max_length=50)
        address = require_str(data, "address", max_length=None)
        tracking_no = require_str(data, "tracking_no", max_length=100)
    else:
        phone = optional_str(data, "phone", max_length=50)
        address = optional_str(data, "address", max_length=None)
        tracking_no = optional_str(data, "tracking_no", max_length=100)
    return Shipment(
        receiver_name=require_str(data, "receiver_name"),
        phone=phone,
        address=address,
        tracking_no=tracking_no,
        province=optional_str(data, "province", max_length=128),
        city=optional_str(data, "city", max_length=128),
        district=optional_str(data, "district", max_length=128),
        village=optional_str(data, "village", max_length=128),
        postal_code=optional_str(data, "postal_code", max_length=16),
        notes=optional_str(data, "notes", max_length=None),
        unit_id=optional_int(data, "unit_id"),
    )


def _parse_channel_dispatch(data: dict, unit_ids: tuple[int, ...], notes) -> ChannelDispatchOut:
    raw_shipments = data.get("shipments")
    if not isinstance(raw_shipments, list) or not raw_shipments:
        raise ValidationError("shipments must be a non-empty list")
    shipments = tuple(_parse_shipment(s, require_contact=True) for s in raw_shipments)

    shipment_units = [s.unit_id for s in shipments]
    if any(uid is None for uid in shipment_units):
        raise ValidationError("Every shipment needs a unit_id")
    if len(set(shipment_units)) != len(shipment_units) or set(shipment_units) != set(unit_ids):
        raise ValidationError("Provide exactly one shipment per unit")

    return ChannelDispatchOut(
        unit_ids=unit_ids,
        channel_name=optional_str(data, "channel_name", max_length=64) or "shopee",
        shipments=shipments,
        notes=notes,
    )


def parse_category(raw) -> str:
    value = str(raw or "").strip().lower()
    value = _CATEGORY_ALIASES.get(value, value)
    if value not in STOCK_OUT_CATEGORIES:
        raise ValidationError(f"category must be one of: {', '.join(STOCK_OUT_CATEGORIES)}")
    return value


def parse_stock_out_request(payload) -> StockOutRequest:
    """
    Validate the common envelope (unit_ids, category, notes) and the
    category's own metadata.

    Raises:
        ValidationError: unknown category, missing or malformed field
    """
    data = require_dict(payload)
    category = parse_category(data.get("category"))
    unit_ids = tuple(require_int_list(data, "unit_ids"))
    notes = optional_str(data, "notes", max_length=None)

    if category == CATEGORY_BRANCH_TRANSFER:
        return BranchTransferOut(
            unit_ids=unit_ids,
            destination_branch_id=require_int(data, "destination_branch_id", minimum=1),
            receiver_name=require_str(data, "receiver_name"),
            transfer_notes=optional_str(data, "transfer_notes", max_length=None),
            notes=notes,
        )

    if category == CATEGORY_INPUT_ERROR:
        return InputErrorOut(
            unit_ids=unit_ids,
            deletion_reason=require_str(data, "deletion_reason", max_length=None),
            notes=notes,
        )

    if category == CATEGORY_RETURN:
        destination = optional_int(data, "return_destination_id")
        if destination is not None and destination <= 0:
            raise ValidationError("return_destination_id must be positive")
        return ReturnOut(
            unit_ids=unit_ids,
            return_officer=require_str(data, "return_officer"),
            return_issue=require_str(data, "return_issue", max_length=None),
            customer_name=require_str(data, "customer_name"),
            customer_phone=require_str(data, "customer_phone", max_length=50),
            return_seal=optional_str(data, "return_seal"),
            return_destination_id=destination,
            notes=notes,
        )

    if category == CATEGORY_CHANNEL_DISPATCH:
        return _parse_channel_dispatch(data, unit_ids, notes)

    recipient = _parse_shipment(data.get("recipient"), require_contact=False)
    if recipient.unit_id is not None:
        raise ValidationError("A giveaway recipient is not tied to a single unit")
    return GiveawayOut(unit_ids=unit_ids, recipient=recipient, notes=notes)
