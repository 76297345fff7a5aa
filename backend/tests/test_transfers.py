# Overview: Pytest coverage for the dispatch/confirm branch transfer lifecycle.

"""
Branch Transfer Tests

Verifies:
1. Pending lists only transfers addressed to the caller's branches
2. Confirm moves units to the destination and clears open markers
3. Confirm is terminal and scoped to the receiving branch
4. History labels incoming/outgoing and pending/confirmed
"""

import pytest

from stockledger.errors import ConflictError, InvalidTransitionError, NotFoundError
from stockledger.models import LedgerEntry, StockOutItem, Unit
from stockledger.services import stock_out_service, transfer_service, unit_registry
from stockledger.services.access_policy import AccessPolicy
from stockledger.services.placement_service import PlacementRef
from stockledger.services.stock_out_schemas import BranchTransferOut


@pytest.fixture
def dispatched(db_session, phone, central_ref, central_policy, receive_units, north):
    """Two central units dispatched to the north branch."""
    units = receive_units(central_policy, phone, central_ref, ["T-1", "T-2"])
    record = stock_out_service.stock_out(
        BranchTransferOut(
            unit_ids=tuple(u.id for u in units),
            destination_branch_id=north.id,
            receiver_name="Rina",
            transfer_notes="box 3",
        ),
        central_policy,
    )
    return record


class TestPending:

    def test_destination_sees_pending(self, dispatched, north_policy):
        data = transfer_service.pending(north_policy)

        assert [row["id"] for row in data] == [dispatched.id]
        assert len(data[0]["items"]) == 2
        assert data[0]["source_placement_name"] == "Central Branch"

    def test_sender_does_not_see_it_as_pending(self, dispatched, central_policy):
        assert transfer_service.pending(central_policy) == []

    def test_unrestricted_without_home_branch_sees_nothing(self, dispatched, owner_policy):
        assert transfer_service.pending(owner_policy) == []

    def test_unrestricted_sees_only_home_branch(self, dispatched, owner_policy, north_ref, central_ref):
        at_north = AccessPolicy.unrestricted(owner_policy.user_id, role="owner", home=north_ref)
        at_central = AccessPolicy.unrestricted(owner_policy.user_id, role="owner", home=central_ref)

        assert [row["id"] for row in transfer_service.pending(at_north)] == [dispatched.id]
        assert transfer_service.pending(at_central) == []

    def test_non_branch_caller_sees_nothing(self, dispatched, warehouse_policy):
        assert transfer_service.pending(warehouse_policy) == []

    def test_confirmed_no_longer_pending(self, dispatched, north_policy):
        transfer_service.confirm(dispatched.id, north_policy)
        assert transfer_service.pending(north_policy) == []


class TestConfirm:

    def test_units_become_available_at_destination(self, db_session, dispatched, north_policy, north_ref):
        record = transfer_service.confirm(dispatched.id, north_policy)

        assert record.confirmed_at is not None
        assert record.confirmed_by == north_policy.user_id
        for item in db_session.query(StockOutItem).filter_by(stock_out_id=dispatched.id):
            unit = db_session.get(Unit, item.unit_id)
            assert unit.status == "available"
            assert PlacementRef.of(unit) == north_ref
            assert item.open_unit_id is None

    def test_ledger_in_entry_at_destination(self, db_session, dispatched, north_policy, north_ref, phone):
        transfer_service.confirm(dispatched.id, north_policy)

        entry = (
            db_session.query(LedgerEntry)
            .filter_by(stock_out_id=dispatched.id, direction="in")
            .one()
        )
        assert entry.event_type == "transfer.confirm"
        assert entry.placement_id == north_ref.id
        assert entry.product_id == phone.id
        assert entry.quantity == 2
        assert entry.balance_after == 2

    def test_second_confirm_is_not_found(self, db_session, dispatched, north_policy):
        transfer_service.confirm(dispatched.id, north_policy)

        with pytest.raises(NotFoundError):
            transfer_service.confirm(dispatched.id, north_policy)
        entries = db_session.query(LedgerEntry).filter_by(stock_out_id=dispatched.id, direction="in").count()
        assert entries == 1

    def test_sender_cannot_confirm(self, db_session, dispatched, central_policy):
        with pytest.raises(NotFoundError):
            transfer_service.confirm(dispatched.id, central_policy)
        assert all(u.status == "in_transit" for u in db_session.query(Unit).all())

    def test_unrestricted_without_home_branch_cannot_confirm(self, db_session, dispatched, owner_policy):
        with pytest.raises(NotFoundError):
            transfer_service.confirm(dispatched.id, owner_policy)

        db_session.expire_all()
        assert all(u.status == "in_transit" for u in db_session.query(Unit).all())
        assert db_session.query(LedgerEntry).filter_by(stock_out_id=dispatched.id, direction="in").count() == 0

    def test_unrestricted_at_other_branch_cannot_confirm(self, dispatched, owner_policy, central_ref):
        elsewhere = AccessPolicy.unrestricted(owner_policy.user_id, role="owner", home=central_ref)
        with pytest.raises(NotFoundError):
            transfer_service.confirm(dispatched.id, elsewhere)

    def test_unrestricted_at_destination_can_confirm(self, dispatched, owner_policy, north_ref):
        at_north = AccessPolicy.unrestricted(owner_policy.user_id, role="owner", home=north_ref)
        record = transfer_service.confirm(dispatched.id, at_north)
        assert record.is_confirmed

    def test_non_transfer_record_is_not_found(self, db_session, phone, central_ref, central_policy,
                                              receive_units, north_policy):
        from stockledger.services.stock_out_schemas import InputErrorOut

        (unit,) = receive_units(central_policy, phone, central_ref, ["X-1"])
        record = stock_out_service.stock_out(
            InputErrorOut(unit_ids=(unit.id,), deletion_reason="x"), central_policy
        )
        with pytest.raises(NotFoundError):
            transfer_service.confirm(record.id, north_policy)

    def test_in_transit_unit_cannot_be_stocked_out_again(self, dispatched, central_policy, north):
        from stockledger.errors import UnavailableUnitsError

        unit_id = dispatched.items[0].unit_id
        with pytest.raises(UnavailableUnitsError):
            stock_out_service.stock_out(
                BranchTransferOut(unit_ids=(unit_id,), destination_branch_id=north.id, receiver_name="R"),
                central_policy,
            )

    def test_in_transit_unit_cannot_be_released_manually(self, dispatched, owner_policy):
        unit_id = dispatched.items[0].unit_id
        with pytest.raises(InvalidTransitionError):
            unit_registry.update_status(unit_id, "available", owner_policy)

    def test_stale_record_version_is_a_conflict(self, db_session, dispatched, north_policy, monkeypatch):
        from sqlalchemy.orm.exc import StaleDataError

        def stale(*args, **kwargs):
            raise StaleDataError("version mismatch")

        monkeypatch.setattr(transfer_service, "append_entry", stale)

        with pytest.raises(ConflictError):
            transfer_service.confirm(dispatched.id, north_policy)

        db_session.expire_all()
        assert all(u.status == "in_transit" for u in db_session.query(Unit).all())


class TestHistory:

    def test_labels_for_receiver(self, dispatched, north_policy):
        row = transfer_service.history(north_policy)["items"][0]

        assert row["type"] == "incoming"
        assert row["status"] == "pending"
        assert row["items_count"] == 2
        assert row["destination_branch"] == "North Branch"

    def test_labels_for_sender(self, dispatched, central_policy):
        row = transfer_service.history(central_policy)["items"][0]
        assert row["type"] == "outgoing"
        assert row["sender"] == "Central"

    def test_confirmed_status(self, dispatched, north_policy):
        transfer_service.confirm(dispatched.id, north_policy)
        row = transfer_service.history(north_policy)["items"][0]
        assert row["status"] == "confirmed"
        assert row["confirmed_by"] == "North"

    def test_unrelated_branch_sees_nothing(self, db_session, dispatched, app):
        from stockledger.models import Branch, User

        south = Branch(name="South Branch")
        db_session.add(south)
        db_session.commit()
        user = User(username="south", role="staff", branch_id=south.id)
        db_session.add(user)
        db_session.commit()
        policy = AccessPolicy.for_user(user, app.config["UNRESTRICTED_ROLES"])

        assert transfer_service.history(policy)["pagination"]["total"] == 0

    def test_unrestricted_home_branch_decides_label(self, db_session, dispatched, north, app):
        from stockledger.models import User

        manager = User(username="manager", role="owner", branch_id=north.id)
        db_session.add(manager)
        db_session.commit()
        policy = AccessPolicy.for_user(manager, app.config["UNRESTRICTED_ROLES"])

        row = transfer_service.history(policy)["items"][0]
        assert row["type"] == "incoming"

    def test_unrestricted_without_home_sees_outgoing(self, dispatched, owner_policy):
        row = transfer_service.history(owner_policy)["items"][0]
        assert row["type"] == "outgoing"
