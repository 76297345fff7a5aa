"""
HTTP route tests.

Verifies:
- Requests without a valid principal return 401
- Service errors map to their status codes (400 / 404 / 409)
- Happy paths for stock-in, stock-out, transfer confirmation and track
"""

import pytest


# =============================================================================
# PRINCIPAL (401)
# =============================================================================


class TestPrincipalRequired:
    """All stock endpoints need the X-User-Id principal."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/inventory"),
            ("GET", "/api/inventory/1"),
            ("POST", "/api/inventory/stock-in"),
            ("POST", "/api/inventory/quantity-out"),
            ("PATCH", "/api/inventory/1/status"),
            ("GET", "/api/inventory/buckets"),
            ("GET", "/api/stock-outs"),
            ("POST", "/api/stock-outs"),
            ("GET", "/api/stock-outs/1"),
            ("GET", "/api/track?q=abc"),
            ("GET", "/api/transfers/pending"),
            ("POST", "/api/transfers/1/confirm"),
            ("GET", "/api/transfers/history"),
            ("GET", "/api/ledger"),
        ],
    )
    def test_requires_principal(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_user(self, client, db_session):
        resp = client.get("/api/inventory", headers={"X-User-Id": "424242"})
        assert resp.status_code == 401

    def test_inactive_user(self, client, db_session, central_staff, central_headers):
        central_staff.is_active = False
        db_session.commit()
        resp = client.get("/api/inventory", headers=central_headers)
        assert resp.status_code == 401


class TestHealth:

    def test_health_needs_no_principal(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "ok"
        assert resp.json["checks"]["database"]["status"] == "healthy"


# =============================================================================
# INVENTORY
# =============================================================================


def _stock_in_payload(product, branch, serials):
    return {
        "product_id": product.id,
        "placement_kind": "branch",
        "placement_id": branch.id,
        "new_distributor_name": "PT Sumber Makmur",
        "units": [{"serial": s, "selling_price": "2500000.00"} for s in serials],
    }


class TestInventoryRoutes:

    def test_stock_in_then_list(self, client, db_session, phone, central, central_headers):
        resp = client.post(
            "/api/inventory/stock-in",
            json=_stock_in_payload(phone, central, ["R-1", "R-2", "R-1"]),
            headers=central_headers,
        )
        assert resp.status_code == 201
        assert resp.json["inserted_count"] == 2
        assert resp.json["duplicates"] == ["R-1"]

        listing = client.get("/api/inventory?search=r-", headers=central_headers)
        assert listing.status_code == 200
        assert listing.json["pagination"]["total"] == 2

    def test_stock_in_validation_error(self, client, db_session, phone, central, central_headers):
        payload = _stock_in_payload(phone, central, ["R-1"])
        payload["quantity"] = 4
        resp = client.post("/api/inventory/stock-in", json=payload, headers=central_headers)
        assert resp.status_code == 400
        assert "error" in resp.json

    def test_stock_in_foreign_branch_is_404(self, client, db_session, phone, north, central_headers):
        resp = client.post(
            "/api/inventory/stock-in", json=_stock_in_payload(phone, north, ["R-1"]), headers=central_headers
        )
        assert resp.status_code == 404

    def test_get_unit_scoped(self, client, db_session, phone, central, central_headers, north_headers):
        client.post(
            "/api/inventory/stock-in", json=_stock_in_payload(phone, central, ["R-1"]), headers=central_headers
        )
        unit_id = client.get("/api/inventory", headers=central_headers).json["items"][0]["id"]

        assert client.get(f"/api/inventory/{unit_id}", headers=central_headers).status_code == 200
        assert client.get(f"/api/inventory/{unit_id}", headers=north_headers).status_code == 404

    def test_patch_status(self, client, db_session, phone, central, central_headers):
        client.post(
            "/api/inventory/stock-in", json=_stock_in_payload(phone, central, ["R-1"]), headers=central_headers
        )
        unit_id = client.get("/api/inventory", headers=central_headers).json["items"][0]["id"]

        resp = client.patch(f"/api/inventory/{unit_id}/status", json={"status": "booked"}, headers=central_headers)
        assert resp.status_code == 200
        assert resp.json["unit"]["status"] == "booked"

        resp = client.patch(f"/api/inventory/{unit_id}/status", json={"status": "returned"}, headers=central_headers)
        assert resp.status_code == 409

    def test_quantity_flow(self, client, db_session, cable, central, central_headers):
        resp = client.post("/api/inventory/stock-in", json={
            "product_id": cable.id,
            "placement_kind": "branch",
            "placement_id": central.id,
            "new_distributor_name": "PT Kabel Jaya",
            "quantity": 5,
        }, headers=central_headers)
        assert resp.status_code == 201

        out = {"product_id": cable.id, "placement_kind": "branch", "placement_id": central.id, "quantity": 6}
        resp = client.post("/api/inventory/quantity-out", json=out, headers=central_headers)
        assert resp.status_code == 400

        out["quantity"] = 2
        resp = client.post("/api/inventory/quantity-out", json=out, headers=central_headers)
        assert resp.status_code == 200
        assert resp.json["bucket"]["quantity"] == 3

        buckets = client.get("/api/inventory/buckets", headers=central_headers)
        assert buckets.json["items"][0]["quantity"] == 3


# =============================================================================
# STOCK-OUTS AND TRANSFERS
# =============================================================================


class TestStockOutRoutes:

    @pytest.fixture
    def unit_ids(self, client, db_session, phone, central, central_headers):
        client.post(
            "/api/inventory/stock-in",
            json=_stock_in_payload(phone, central, ["S-1", "S-2"]),
            headers=central_headers,
        )
        return sorted(row["id"] for row in client.get("/api/inventory", headers=central_headers).json["items"])

    def test_transfer_round_trip(self, client, unit_ids, north, central_headers, north_headers):
        resp = client.post("/api/stock-outs", json={
            "category": "pindah_cabang",
            "unit_ids": unit_ids,
            "destination_branch_id": north.id,
            "receiver_name": "Rina",
        }, headers=central_headers)
        assert resp.status_code == 201
        record = resp.json["stock_out"]
        assert record["category"] == "branch_transfer"
        assert {item["status"] for item in record["items"]} == {"in_transit"}

        pending = client.get("/api/transfers/pending", headers=north_headers)
        assert pending.json["count"] == 1

        confirm = client.post(f"/api/transfers/{record['id']}/confirm", headers=north_headers)
        assert confirm.status_code == 200
        assert confirm.json == {
            "message": "Transfer confirmed",
            "receipt_id": record["receipt_id"],
            "items_confirmed": 2,
        }

        again = client.post(f"/api/transfers/{record['id']}/confirm", headers=north_headers)
        assert again.status_code == 404

        north_units = client.get("/api/inventory", headers=north_headers)
        assert north_units.json["pagination"]["total"] == 2

        history = client.get("/api/transfers/history", headers=north_headers)
        assert history.json["items"][0]["type"] == "incoming"
        assert history.json["items"][0]["status"] == "confirmed"

    def test_unavailable_units_409(self, client, unit_ids, central_headers):
        body = {"category": "input_error", "unit_ids": unit_ids[:1], "deletion_reason": "typo"}
        assert client.post("/api/stock-outs", json=body, headers=central_headers).status_code == 201

        body["unit_ids"] = unit_ids
        resp = client.post("/api/stock-outs", json=body, headers=central_headers)
        assert resp.status_code == 409
        assert resp.json["unit_ids"] == unit_ids[:1]

    def test_get_by_receipt(self, client, unit_ids, central_headers):
        created = client.post("/api/stock-outs", json={
            "category": "input_error", "unit_ids": unit_ids, "deletion_reason": "typo",
        }, headers=central_headers).json["stock_out"]

        resp = client.get(f"/api/stock-outs/{created['receipt_id']}", headers=central_headers)
        assert resp.status_code == 200
        assert resp.json["stock_out"]["id"] == created["id"]

        listing = client.get("/api/stock-outs?category=kesalahan_input", headers=central_headers)
        assert listing.json["pagination"]["total"] == 1

    def test_bad_category_400(self, client, unit_ids, central_headers):
        resp = client.post("/api/stock-outs", json={"category": "lost", "unit_ids": unit_ids}, headers=central_headers)
        assert resp.status_code == 400

    def test_track(self, client, unit_ids, central_headers):
        assert client.get("/api/track?q=S-", headers=central_headers).status_code == 400
        resp = client.get("/api/track?q=S-1", headers=central_headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 1


class TestLedgerRoute:

    def test_lists_entries(self, client, db_session, phone, central, central_headers):
        client.post(
            "/api/inventory/stock-in", json=_stock_in_payload(phone, central, ["L-1"]), headers=central_headers
        )
        resp = client.get("/api/ledger?direction=in", headers=central_headers)
        assert resp.status_code == 200
        assert resp.json["items"][0]["event_type"] == "stock_in"

    def test_bad_time_filter(self, client, db_session, central_headers):
        resp = client.get("/api/ledger?start=yesterday", headers=central_headers)
        assert resp.status_code == 400


class TestUnexpectedErrors:
    """Unexpected failures are logged and reported as 500 on every read route."""

    @pytest.mark.parametrize(
        "module,attr,path",
        [
            ("unit_registry", "find", "/api/inventory"),
            ("unit_registry", "get_unit", "/api/inventory/1"),
            ("quantity_service", "list_buckets", "/api/inventory/buckets"),
            ("stock_out_service", "list_stock_outs", "/api/stock-outs"),
            ("stock_out_service", "get_stock_out", "/api/stock-outs/1"),
            ("stock_out_service", "track", "/api/track?q=abc"),
            ("transfer_service", "pending", "/api/transfers/pending"),
            ("transfer_service", "history", "/api/transfers/history"),
            ("ledger_service", "list_entries", "/api/ledger"),
        ],
    )
    def test_logged_500(self, client, db_session, central_headers, monkeypatch, caplog, module, attr, path):
        import importlib

        def boom(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(importlib.import_module(f"stockledger.services.{module}"), attr, boom)

        resp = client.get(path, headers=central_headers)

        assert resp.status_code == 500
        assert resp.json == {"error": "Internal server error"}
        assert any(record.exc_info and "database went away" in str(record.exc_info[1]) for record in caplog.records)
