# Overview: Pytest coverage for serialized unit admission, transitions and listing.

"""
Unit Registry Tests

Verifies:
1. Serial validation and the live-serial uniqueness rule
2. The transition table (allowed and rejected moves)
3. Manual status changes respect scope and never touch in_transit
4. Listing is scoped before any caller filter
"""

import pytest

from stockledger.errors import (
    DuplicateSerialError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from stockledger.models import LedgerEntry, Unit
from stockledger.services import ledger_service, stock_out_service, unit_registry
from stockledger.services.placement_service import PlacementRef
from stockledger.services.stock_out_schemas import InputErrorOut
from stockledger.services.unit_registry import UnitSpec


def _admit(serial, product, placement, user):
    return unit_registry.admit(
        UnitSpec(serial=serial),
        product_id=product.id,
        placement=placement,
        user_id=user.id,
    )


class TestSerialValidation:
    """validate_serial() and UnitSpec.from_dict()."""

    def test_strips_surrounding_whitespace(self):
        assert unit_registry.validate_serial("  356789012345678 ") == "356789012345678"

    def test_keeps_case(self):
        assert unit_registry.validate_serial("AbC123") == "AbC123"

    @pytest.mark.parametrize("raw", [None, "", "   ", "35 67", "356,789", "356;789", "x" * 65])
    def test_rejects_malformed(self, raw):
        with pytest.raises(ValidationError):
            unit_registry.validate_serial(raw)

    def test_spec_defaults(self):
        spec = UnitSpec.from_dict({"serial": "SN-1"})
        assert spec.condition == "new"
        assert str(spec.selling_price) == "0.00"

    def test_spec_rejects_unknown_condition(self):
        with pytest.raises(ValidationError):
            UnitSpec.from_dict({"serial": "SN-1", "condition": "refurb"})

    def test_spec_rejects_three_decimals(self):
        with pytest.raises(ValidationError):
            UnitSpec.from_dict({"serial": "SN-1", "selling_price": "10.005"})


class TestAdmit:
    """Single-unit admission."""

    def test_admit_creates_available_unit(self, db_session, phone, central_ref, central_staff):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)

        assert unit.id is not None
        assert unit.status == "available"
        assert PlacementRef.of(unit) == central_ref
        assert unit.user_id == central_staff.id

    def test_duplicate_live_serial_rejected(self, db_session, phone, central_ref, central_staff):
        _admit("IMEI-001", phone, central_ref, central_staff)

        with pytest.raises(DuplicateSerialError) as exc:
            _admit("IMEI-001", phone, central_ref, central_staff)
        assert exc.value.serial == "IMEI-001"
        assert exc.value.status_code == 409

    def test_serial_reusable_after_delete(self, db_session, phone, central_ref, central_staff):
        first = _admit("IMEI-001", phone, central_ref, central_staff)
        unit_registry.transition(first.id, "deleted")

        second = _admit("IMEI-001", phone, central_ref, central_staff)

        assert second.id != first.id
        rows = db_session.query(Unit).filter_by(serial="IMEI-001").all()
        assert sorted(u.status for u in rows) == ["available", "deleted"]

    def test_serials_are_case_sensitive(self, db_session, phone, central_ref, central_staff):
        _admit("abc-001", phone, central_ref, central_staff)
        unit = _admit("ABC-001", phone, central_ref, central_staff)
        assert unit.serial == "ABC-001"

    def test_unknown_product(self, db_session, central_ref, central_staff):
        with pytest.raises(NotFoundError):
            unit_registry.admit(
                UnitSpec(serial="IMEI-404"), product_id=99999, placement=central_ref, user_id=central_staff.id
            )


class TestTransitions:
    """The transition table."""

    def test_allowed_transition_moves_placement(
        self, db_session, phone, central_ref, warehouse_ref, central_staff
    ):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)

        moved = unit_registry.transition(unit.id, "returned", warehouse_ref)

        assert moved.status == "returned"
        assert PlacementRef.of(moved) == warehouse_ref

    def test_sold_cannot_become_available(self, db_session, phone, central_ref, central_staff):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)
        unit_registry.transition(unit.id, "sold")

        with pytest.raises(InvalidTransitionError) as exc:
            unit_registry.transition(unit.id, "available")
        assert exc.value.current == "sold"
        assert exc.value.target == "available"

    def test_deleted_is_terminal(self, db_session, phone, central_ref, central_staff):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)
        deleted = unit_registry.transition(unit.id, "deleted")
        assert deleted.deleted_at is not None

        for target in ("available", "returned", "sold"):
            with pytest.raises(InvalidTransitionError):
                unit_registry.transition(unit.id, target)

    def test_unknown_status(self, db_session, phone, central_ref, central_staff):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)
        with pytest.raises(ValidationError):
            unit_registry.transition(unit.id, "lost")

    def test_missing_unit(self, db_session):
        with pytest.raises(NotFoundError):
            unit_registry.transition(99999, "sold")

    def test_failed_transition_changes_nothing(self, db_session, phone, central_ref, central_staff):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)
        unit_registry.transition(unit.id, "sold")
        version = db_session.get(Unit, unit.id).version_id

        with pytest.raises(InvalidTransitionError):
            unit_registry.transition(unit.id, "in_transit")

        db_session.expire_all()
        reloaded = db_session.get(Unit, unit.id)
        assert reloaded.status == "sold"
        assert reloaded.version_id == version


class TestUpdateStatus:
    """Manual status changes by operators."""

    def test_accept_return_back_to_available(
        self, db_session, phone, central_ref, central_staff, central_policy
    ):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)
        unit_registry.transition(unit.id, "returned")

        updated = unit_registry.update_status(unit.id, "available", central_policy)

        assert updated.status == "available"

    def test_in_transit_is_not_a_manual_target(
        self, db_session, phone, central_ref, central_staff, central_policy
    ):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)
        with pytest.raises(ValidationError):
            unit_registry.update_status(unit.id, "in_transit", central_policy)

    def test_unit_in_transit_cannot_be_released_by_hand(
        self, db_session, phone, central_ref, central_staff, central_policy
    ):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)
        unit_registry.transition(unit.id, "in_transit")

        with pytest.raises(InvalidTransitionError):
            unit_registry.update_status(unit.id, "available", central_policy)

    def test_out_of_scope_unit_looks_missing(
        self, db_session, phone, north_ref, north_staff, central_policy
    ):
        unit = _admit("IMEI-001", phone, north_ref, north_staff)

        with pytest.raises(NotFoundError):
            unit_registry.update_status(unit.id, "sold", central_policy)
        assert db_session.get(Unit, unit.id).status == "available"


class TestStatusLedger:
    """Manual moves in and out of available are recorded in the ledger."""

    @staticmethod
    def _entries(db_session, product, placement):
        return [
            (e.direction, e.quantity, e.balance_after, e.event_type)
            for e in db_session.query(LedgerEntry)
            .filter_by(product_id=product.id, placement_kind=placement.kind.value, placement_id=placement.id)
            .order_by(LedgerEntry.id)
        ]

    def test_manual_sale_keeps_ledger_replayable(
        self, db_session, phone, central_ref, central_policy, receive_units
    ):
        sold, other = receive_units(central_policy, phone, central_ref, ["PA1", "PA2"])

        unit_registry.update_status(sold.id, "sold", central_policy)
        stock_out_service.stock_out(InputErrorOut(unit_ids=(other.id,), deletion_reason="typo"), central_policy)

        assert ledger_service.available_count(phone.id, central_ref) == 0
        assert ledger_service.replay_units(phone.id, central_ref) == 0
        assert self._entries(db_session, phone, central_ref) == [
            ("in", 2, 2, "stock_in"),
            ("out", 1, 1, "status.sold"),
            ("out", 1, 0, "stock_out.input_error"),
        ]

    def test_restock_is_booked_where_the_unit_now_is(
        self, db_session, phone, central_ref, warehouse_ref, central_staff
    ):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)
        unit_registry.transition(unit.id, "returned", warehouse_ref, user_id=central_staff.id)
        unit_registry.transition(unit.id, "available", user_id=central_staff.id)

        assert self._entries(db_session, phone, central_ref) == [
            ("in", 1, 1, "unit.admit"),
            ("out", 1, 0, "status.returned"),
        ]
        assert self._entries(db_session, phone, warehouse_ref) == [("in", 1, 1, "status.available")]
        entry = db_session.query(LedgerEntry).order_by(LedgerEntry.id.desc()).first()
        assert entry.user_id == central_staff.id
        assert entry.reference_id == "IMEI-001"

    def test_moves_between_unavailable_states_write_nothing(
        self, db_session, phone, central_ref, central_staff, central_policy
    ):
        unit = _admit("IMEI-001", phone, central_ref, central_staff)
        unit_registry.update_status(unit.id, "sold", central_policy)
        before = db_session.query(LedgerEntry).count()

        unit_registry.update_status(unit.id, "returned", central_policy)

        assert db_session.query(LedgerEntry).count() == before
        assert ledger_service.replay_units(phone.id, central_ref) == 0

    def test_rejected_change_writes_nothing(self, db_session, phone, north_ref, north_staff, central_policy):
        unit = _admit("IMEI-001", phone, north_ref, north_staff)
        before = db_session.query(LedgerEntry).count()

        with pytest.raises(NotFoundError):
            unit_registry.update_status(unit.id, "sold", central_policy)

        assert db_session.query(LedgerEntry).count() == before


class TestFind:
    """Scoped, paginated listing."""

    @pytest.fixture
    def stocked(self, db_session, phone, central_ref, north_ref, central_staff, north_staff):
        for serial in ("C-1", "C-2", "C-3"):
            _admit(serial, phone, central_ref, central_staff)
        for serial in ("N-1", "N-2"):
            _admit(serial, phone, north_ref, north_staff)

    def test_scoped_caller_sees_own_branch_only(self, stocked, central_policy):
        result = unit_registry.find(central_policy)

        assert result["pagination"]["total"] == 3
        assert {row["serial"] for row in result["items"]} == {"C-1", "C-2", "C-3"}

    def test_foreign_placement_filter_returns_empty_page(self, stocked, central_policy, north_ref):
        result = unit_registry.find(central_policy, placement=north_ref)

        assert result["items"] == []
        assert result["pagination"]["total"] == 0

    def test_unrestricted_caller_sees_everything(self, stocked, owner_policy):
        result = unit_registry.find(owner_policy)
        assert result["pagination"]["total"] == 5

    def test_search_matches_serial_and_product(self, stocked, owner_policy):
        assert unit_registry.find(owner_policy, search="n-")["pagination"]["total"] == 2
        assert unit_registry.find(owner_policy, search="galaxy")["pagination"]["total"] == 5

    def test_search_escapes_wildcards(self, stocked, owner_policy):
        assert unit_registry.find(owner_policy, search="%")["pagination"]["total"] == 0

    def test_default_status_is_available(self, stocked, owner_policy, db_session):
        unit = db_session.query(Unit).filter_by(serial="C-1").one()
        unit_registry.transition(unit.id, "sold")

        assert unit_registry.find(owner_policy)["pagination"]["total"] == 4
        sold = unit_registry.find(owner_policy, statuses="sold")
        assert [row["serial"] for row in sold["items"]] == ["C-1"]

    def test_pagination_metadata(self, stocked, owner_policy):
        result = unit_registry.find(owner_policy, page=2, per_page=2)

        assert result["count"] == 2
        assert result["pagination"] == {
            "page": 2,
            "per_page": 2,
            "total": 5,
            "total_pages": 3,
            "has_next": True,
            "has_prev": True,
        }

    def test_items_carry_placement_name(self, stocked, central_policy):
        row = unit_registry.find(central_policy, per_page=1)["items"][0]
        assert row["placement_name"] == "Central Branch"

    def test_scoped_caller_without_placement_sees_nothing(self, stocked, app, db_session):
        from stockledger.models import User
        from stockledger.services.access_policy import AccessPolicy

        floating = User(username="floating", role="staff")
        db_session.add(floating)
        db_session.commit()
        policy = AccessPolicy.for_user(floating, app.config["UNRESTRICTED_ROLES"])

        assert unit_registry.find(policy)["pagination"]["total"] == 0
