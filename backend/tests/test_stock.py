# Overview: Pytest coverage for stock movements, transfers and movement requests.

"""
Stock Tests

Verifies:
1. IN / OUT / TRANSFER / ADJUSTMENT update balances and write numbered movements
2. Decreases never dip into reserved units
3. Expired batches cannot be moved out (BATCH_EXPIRED)
4. Bulk transfers are all-or-nothing under one reference id
5. Movement requests are city-scoped and settle in creation order on bulk fulfill
"""

from decimal import Decimal

import pytest

from conftest import add_balance, add_batch, add_presentation, auth_headers, reload
from pharmadist.extensions import db
from pharmadist.models import InventoryBalance, ProductPresentation, StockMovement, StockMovementRequest
from pharmadist.services.audit_service import list_audit_events
from pharmadist.services.stock_service import find_invariant_violations


def move(client, user, **body):
    return client.post("/api/stock/movements", json=body, headers=auth_headers(user))


def on_hand(product, location, batch=None):
    db.session.expire_all()
    balance = (
        db.session.query(InventoryBalance)
        .filter_by(product_id=product.id, location_id=location.id, batch_id=batch.id if batch else None)
        .first()
    )
    return balance.quantity if balance else None


# =============================================================================
# SINGLE MOVEMENTS
# =============================================================================


class TestMovements:

    def test_in_creates_balance(self, client, world):
        resp = move(client, world.users.warehouse, type="in", product_id=world.paracetamol.id, quantity=10, to_location_id=world.lp.id)

        assert resp.status_code == 201
        assert resp.json["movement"]["type"] == "IN"
        assert resp.json["movement"]["number"].startswith("MS-")
        assert resp.json["to_balance"]["quantity"] == "10"
        assert resp.json["from_balance"] is None

    def test_out_reduces_balance(self, client, world):
        add_balance(world.paracetamol, world.lp, 10)

        resp = move(client, world.users.warehouse, type="OUT", product_id=world.paracetamol.id, quantity=4, from_location_id=world.lp.id)

        assert resp.status_code == 201
        assert on_hand(world.paracetamol, world.lp) == Decimal("6")

    def test_out_beyond_stock_conflicts(self, client, world):
        add_balance(world.paracetamol, world.lp, 3)

        resp = move(client, world.users.warehouse, type="OUT", product_id=world.paracetamol.id, quantity=4, from_location_id=world.lp.id)

        assert resp.status_code == 409
        assert resp.json["error"] == "Insufficient stock"
        assert on_hand(world.paracetamol, world.lp) == Decimal("3")
        assert db.session.query(StockMovement).count() == 0

    def test_failed_out_leaves_no_unit_presentation(self, client, world):
        """The lazy "Unidad" insert is rolled back with the movement."""
        resp = move(client, world.users.warehouse, type="OUT", product_id=world.paracetamol.id, quantity=5, from_location_id=world.lp.id)

        assert resp.status_code == 409
        assert resp.json["error"] == "Insufficient stock"
        db.session.expire_all()
        assert db.session.query(ProductPresentation).filter_by(product_id=world.paracetamol.id).count() == 0

    def test_failed_bulk_transfer_leaves_no_unit_presentation(self, client, world):
        resp = client.post(
            "/api/stock/bulk-transfers",
            json={
                "from_location_id": world.lp.id,
                "to_location_id": world.lp_back.id,
                "lines": [{"product_id": world.amoxicilina.id, "quantity": 1}],
            },
            headers=auth_headers(world.users.warehouse),
        )

        assert resp.status_code == 409
        db.session.expire_all()
        assert db.session.query(ProductPresentation).count() == 0

    def test_out_cannot_take_reserved_units(self, client, world):
        add_balance(world.paracetamol, world.lp, 10, reserved=8)
        user = world.users.warehouse

        denied = move(client, user, type="OUT", product_id=world.paracetamol.id, quantity=3, from_location_id=world.lp.id)
        allowed = move(client, user, type="OUT", product_id=world.paracetamol.id, quantity=2, from_location_id=world.lp.id)

        assert denied.status_code == 409
        assert allowed.status_code == 201
        assert allowed.json["from_balance"]["available_quantity"] == "0"
        assert find_invariant_violations(world.tenant.id) == []

    def test_transfer_between_locations(self, client, world):
        add_balance(world.paracetamol, world.lp, 10)

        resp = move(
            client, world.users.warehouse, type="TRANSFER", product_id=world.paracetamol.id, quantity=4,
            from_location_id=world.lp.id, to_location_id=world.lp_back.id,
        )

        assert resp.status_code == 201
        assert on_hand(world.paracetamol, world.lp) == Decimal("6")
        assert on_hand(world.paracetamol, world.lp_back) == Decimal("4")

    def test_transfer_to_same_location_rejected(self, client, world):
        add_balance(world.paracetamol, world.lp, 10)

        resp = move(
            client, world.users.warehouse, type="TRANSFER", product_id=world.paracetamol.id, quantity=1,
            from_location_id=world.lp.id, to_location_id=world.lp.id,
        )

        assert resp.status_code == 400

    def test_adjustment_takes_one_side(self, client, world):
        add_balance(world.paracetamol, world.lp, 10)
        user = world.users.warehouse

        both = move(
            client, user, type="ADJUSTMENT", product_id=world.paracetamol.id, quantity=1,
            from_location_id=world.lp.id, to_location_id=world.lp_back.id,
        )
        down = move(client, user, type="ADJUSTMENT", product_id=world.paracetamol.id, quantity=1, from_location_id=world.lp.id)

        assert both.status_code == 400
        assert down.status_code == 201
        assert on_hand(world.paracetamol, world.lp) == Decimal("9")

    @pytest.mark.parametrize("body", [{}, {"type": "GIFT"}])
    def test_type_required_and_known(self, client, world, body):
        payload = dict(body, product_id=world.paracetamol.id, quantity=1, to_location_id=world.lp.id)
        assert move(client, world.users.warehouse, **payload).status_code == 400

    def test_presentation_quantity_moves_base_units(self, client, world):
        caja = add_presentation(world.paracetamol, "Caja", 12, is_default=True)

        resp = move(
            client, world.users.warehouse, type="IN", product_id=world.paracetamol.id,
            presentation_id=caja.id, presentation_quantity=2, to_location_id=world.lp.id,
        )

        assert resp.status_code == 201
        assert resp.json["movement"]["quantity"] == "24"
        assert resp.json["movement"]["presentation_id"] == caja.id
        assert resp.json["movement"]["presentation_quantity"] == "2"

    def test_location_of_other_tenant_not_found(self, client, world, other_world):
        resp = move(
            client, world.users.warehouse, type="IN", product_id=world.paracetamol.id, quantity=1,
            to_location_id=other_world.lp.id,
        )
        assert resp.status_code == 404

    def test_movement_is_audited(self, client, world):
        movement = move(
            client, world.users.warehouse, type="IN", product_id=world.paracetamol.id, quantity=5,
            to_location_id=world.lp.id, reference_type="PURCHASE", reference_id="FAC-77",
        ).json["movement"]

        events = list_audit_events(world.tenant.id, entity_type="stock_movement", entity_id=movement["id"])

        assert [e.action for e in events] == ["stock.movement.create"]
        assert events[0].after["reference_id"] == "FAC-77"


class TestExpiredBatches:

    def test_expired_batch_cannot_leave(self, client, world):
        batch = add_batch(world.paracetamol, "L-OLD", expires_in_days=-1)
        add_balance(world.paracetamol, world.lp, 10, batch=batch)

        resp = move(
            client, world.users.warehouse, type="OUT", product_id=world.paracetamol.id, quantity=1,
            batch_id=batch.id, from_location_id=world.lp.id,
        )

        assert resp.status_code == 409
        assert resp.json["code"] == "BATCH_EXPIRED"
        assert resp.json["details"]["batch_number"] == "L-OLD"
        assert on_hand(world.paracetamol, world.lp, batch) == Decimal("10")

    def test_expired_batch_can_still_be_received(self, client, world):
        batch = add_batch(world.paracetamol, "L-OLD", expires_in_days=-1)

        resp = move(
            client, world.users.warehouse, type="IN", product_id=world.paracetamol.id, quantity=1,
            batch_id=batch.id, to_location_id=world.lp.id,
        )

        assert resp.status_code == 201


# =============================================================================
# BULK TRANSFER
# =============================================================================


class TestBulkTransfer:

    def _post(self, client, world, lines):
        return client.post(
            "/api/stock/bulk-transfers",
            json={"from_location_id": world.lp.id, "to_location_id": world.sc.id, "lines": lines},
            headers=auth_headers(world.users.warehouse),
        )

    def test_lines_share_one_reference(self, client, world):
        add_balance(world.paracetamol, world.lp, 10)
        add_balance(world.amoxicilina, world.lp, 10)

        resp = self._post(client, world, [
            {"product_id": world.paracetamol.id, "quantity": 3},
            {"product_id": world.amoxicilina.id, "quantity": 2},
        ])

        assert resp.status_code == 201
        assert resp.json["reference_type"] == "BULK_TRANSFER"
        refs = {item["movement"]["reference_id"] for item in resp.json["items"]}
        assert refs == {resp.json["reference_id"]}
        assert on_hand(world.amoxicilina, world.sc) == Decimal("2")

    def test_one_short_line_rolls_back_everything(self, client, world):
        add_balance(world.paracetamol, world.lp, 10)
        add_balance(world.amoxicilina, world.lp, 1)

        resp = self._post(client, world, [
            {"product_id": world.paracetamol.id, "quantity": 3},
            {"product_id": world.amoxicilina.id, "quantity": 2},
        ])

        assert resp.status_code == 409
        assert on_hand(world.paracetamol, world.lp) == Decimal("10")
        assert on_hand(world.paracetamol, world.sc) is None
        assert db.session.query(StockMovement).count() == 0


class TestBalances:

    def test_branch_user_sees_own_city_only(self, client, world):
        add_balance(world.paracetamol, world.lp, 10)
        add_balance(world.paracetamol, world.sc, 10)

        resp = client.get("/api/stock/balances?city=SC", headers=auth_headers(world.users.lp_warehouse))
        assert resp.status_code == 403

        items = client.get("/api/stock/balances", headers=auth_headers(world.users.lp_warehouse)).json["items"]
        assert {item["city"] for item in items} == {"LP"}

    def test_available_filter(self, client, world):
        add_balance(world.paracetamol, world.lp, 10, reserved=10)
        add_balance(world.amoxicilina, world.lp, 10)

        items = client.get("/api/stock/balances?available=1", headers=auth_headers(world.users.seller)).json["items"]

        assert [item["product_id"] for item in items] == [world.amoxicilina.id]


# =============================================================================
# MOVEMENT REQUESTS
# =============================================================================


def open_request(client, user, quantity, product, **extra):
    body = {"lines": [{"product_id": product.id, "quantity": quantity}]}
    body.update(extra)
    resp = client.post("/api/stock/movement-requests", json=body, headers=auth_headers(user))
    assert resp.status_code == 201, resp.json
    return resp.json


class TestMovementRequests:

    def test_branch_seller_requests_for_own_city(self, client, world):
        req = open_request(client, world.users.lp_seller, 5, world.paracetamol)

        assert req["status"] == "OPEN"
        assert req["requested_city"] == "LP"
        assert req["requested_by"] == "Lp Seller"
        assert req["items"][0]["remaining_quantity"] == "5"

    def test_branch_seller_cannot_request_for_other_city(self, client, world):
        resp = client.post(
            "/api/stock/movement-requests",
            json={"city": "SC", "lines": [{"product_id": world.paracetamol.id, "quantity": 1}]},
            headers=auth_headers(world.users.lp_seller),
        )
        assert resp.status_code == 403

    def test_warehouse_id_sets_city(self, client, world):
        req = open_request(client, world.users.seller, 1, world.paracetamol, warehouse_id=world.warehouses["SC"].id)
        assert req["requested_city"] == "SC"

    def test_list_is_city_scoped(self, client, world):
        open_request(client, world.users.lp_seller, 1, world.paracetamol)
        open_request(client, world.users.sc_seller, 1, world.paracetamol)

        sc_items = client.get("/api/stock/movement-requests", headers=auth_headers(world.users.sc_seller)).json["items"]
        lp_filter = client.get("/api/stock/movement-requests?city=lp", headers=auth_headers(world.users.seller)).json["items"]

        assert [r["requested_city"] for r in sc_items] == ["SC"]
        assert [r["requested_city"] for r in lp_filter] == ["LP"]

    def test_cancel_only_once(self, client, world):
        req = open_request(client, world.users.lp_seller, 1, world.paracetamol)
        headers = auth_headers(world.users.warehouse)

        first = client.post(f"/api/stock/movement-requests/{req['id']}/cancel", headers=headers)
        second = client.post(f"/api/stock/movement-requests/{req['id']}/cancel", headers=headers)

        assert first.status_code == 200
        assert first.json["status"] == "CANCELLED"
        assert second.status_code == 409


class TestBulkFulfill:

    def _fulfill(self, client, world, request_ids, quantity, *, user=None, to_location=None):
        return client.post(
            "/api/stock/movement-requests/bulk-fulfill",
            json={
                "request_ids": request_ids,
                "from_location_id": world.sc.id,
                "to_location_id": (to_location or world.lp).id,
                "lines": [{"product_id": world.paracetamol.id, "quantity": quantity}],
            },
            headers=auth_headers(user or world.users.warehouse),
        )

    def test_quantities_settle_requests_in_creation_order(self, client, world):
        add_balance(world.paracetamol, world.sc, 20)
        first = open_request(client, world.users.lp_seller, 5, world.paracetamol)
        second = open_request(client, world.users.lp_seller, 3, world.paracetamol)

        resp = self._fulfill(client, world, [second["id"], first["id"]], 6)

        assert resp.status_code == 200
        assert resp.json["destination_city"] == "LP"
        assert resp.json["fulfilled_request_ids"] == [first["id"]]
        remaining = {r["id"]: r["items"][0]["remaining_quantity"] for r in resp.json["requests"]}
        assert remaining == {first["id"]: "0", second["id"]: "2"}
        assert on_hand(world.paracetamol, world.lp) == Decimal("6")

        resp = self._fulfill(client, world, [second["id"]], 2)
        assert resp.json["fulfilled_request_ids"] == [second["id"]]
        assert db.session.query(StockMovementRequest).filter_by(status="FULFILLED").count() == 2

    def test_requests_must_match_destination_city(self, client, world):
        add_balance(world.paracetamol, world.lp, 20)
        sc_request = open_request(client, world.users.sc_seller, 1, world.paracetamol)

        resp = client.post(
            "/api/stock/movement-requests/bulk-fulfill",
            json={
                "request_ids": [sc_request["id"]],
                "from_location_id": world.lp.id,
                "to_location_id": world.lp_back.id,
                "lines": [{"product_id": world.paracetamol.id, "quantity": 1}],
            },
            headers=auth_headers(world.users.warehouse),
        )

        assert resp.status_code == 409
        assert on_hand(world.paracetamol, world.lp) == Decimal("20")

    def test_cancelled_request_blocks_fulfill(self, client, world):
        add_balance(world.paracetamol, world.sc, 20)
        req = open_request(client, world.users.lp_seller, 1, world.paracetamol)
        client.post(f"/api/stock/movement-requests/{req['id']}/cancel", headers=auth_headers(world.users.warehouse))

        resp = self._fulfill(client, world, [req["id"]], 1)

        assert resp.status_code == 409
        assert resp.json["error"] == "All requests must be OPEN"

    def test_unknown_request_is_404(self, client, world):
        add_balance(world.paracetamol, world.sc, 20)
        assert self._fulfill(client, world, [999999], 1).status_code == 404

    def test_branch_warehouse_fulfills_only_into_own_city(self, client, world):
        add_balance(world.paracetamol, world.lp, 20)
        req = open_request(client, world.users.sc_seller, 1, world.paracetamol)

        resp = client.post(
            "/api/stock/movement-requests/bulk-fulfill",
            json={
                "request_ids": [req["id"]],
                "from_location_id": world.lp.id,
                "to_location_id": world.sc.id,
                "lines": [{"product_id": world.paracetamol.id, "quantity": 1}],
            },
            headers=auth_headers(world.users.lp_warehouse),
        )

        assert resp.status_code == 403

    def test_short_source_rolls_back_request_state(self, client, world):
        add_balance(world.paracetamol, world.sc, 1)
        req = open_request(client, world.users.lp_seller, 5, world.paracetamol)

        resp = self._fulfill(client, world, [req["id"]], 5)

        assert resp.status_code == 409
        assert reload(db.session.get(StockMovementRequest, req["id"])).items[0].remaining_quantity == Decimal("5")
