# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

These tests build two tenants with the same shape (cities, products,
customers, users), then verify that:
1. A user of tenant A cannot read or write tenant B's quotes and orders
2. Foreign product, location and customer ids are reported as not found
3. Stock of tenant B never counts toward tenant A's availability
4. Sequence numbers are counted per tenant
"""

from decimal import Decimal

import pytest

from conftest import actor, add_balance, auth_headers
from pharmadist.errors import NotFoundError
from pharmadist.services.presentation_service import get_product
from pharmadist.services.quote_service import create_quote, get_quote, process_quote
from pharmadist.services.stock_service import available_in_city
from pharmadist.validation import parse_quote


@pytest.fixture
def foreign_quote(other_world):
    """A processed quote (and its order) belonging to tenant B."""
    add_balance(other_world.paracetamol, other_world.lp, 10)
    seller = actor(other_world.users.seller)
    quote = create_quote(seller, parse_quote({
        "customer_id": other_world.customer_lp.id,
        "lines": [{"product_id": other_world.paracetamol.id, "quantity": 2}],
    }))
    result = process_quote(quote.id, seller)
    return quote.id, result.order.id


class TestServiceHelpers:

    def test_get_product_cross_tenant(self, world, other_world):
        with pytest.raises(NotFoundError):
            get_product(world.tenant.id, other_world.paracetamol.id)

    def test_get_quote_cross_tenant(self, world, foreign_quote):
        quote_id, _ = foreign_quote
        with pytest.raises(NotFoundError):
            get_quote(world.tenant.id, quote_id)

    def test_stock_is_counted_per_tenant(self, world, other_world):
        add_balance(other_world.paracetamol, other_world.lp, 100)
        add_balance(world.paracetamol, world.lp, 3)

        assert available_in_city(world.tenant.id, "LP", world.paracetamol.id) == Decimal("3")
        assert available_in_city(world.tenant.id, "LP", other_world.paracetamol.id) == Decimal("0")


class TestCrossTenantApi:
    """Tenant A's admin against tenant B's ids: always 404, never data."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/quotes/{quote}"),
            ("PUT", "/api/quotes/{quote}"),
            ("DELETE", "/api/quotes/{quote}"),
            ("POST", "/api/quotes/{quote}/process"),
            ("GET", "/api/quotes/{quote}/shortages"),
            ("GET", "/api/orders/{order}"),
            ("POST", "/api/orders/{order}/fulfill"),
            ("POST", "/api/orders/{order}/cancel"),
        ],
    )
    def test_foreign_documents_not_found(self, client, world, foreign_quote, method, path):
        quote_id, order_id = foreign_quote
        url = path.format(quote=quote_id, order=order_id)

        resp = getattr(client, method.lower())(url, json={}, headers=auth_headers(world.users.admin))

        assert resp.status_code == 404, f"{method} {url} returned {resp.status_code}"

    def test_lists_are_empty(self, client, world, foreign_quote):
        headers = auth_headers(world.users.admin)

        assert client.get("/api/quotes", headers=headers).json["items"] == []
        assert client.get("/api/orders", headers=headers).json["items"] == []
        assert client.get("/api/stock/balances", headers=headers).json["items"] == []

    def test_foreign_customer_cannot_be_quoted(self, client, world, other_world):
        resp = client.post(
            "/api/quotes",
            json={"customer_id": other_world.customer_lp.id, "lines": [{"product_id": world.paracetamol.id, "quantity": 1}]},
            headers=auth_headers(world.users.admin),
        )
        assert resp.status_code == 404

    def test_foreign_product_cannot_be_quoted(self, client, world, other_world):
        resp = client.post(
            "/api/quotes",
            json={"customer_id": world.customer_lp.id, "lines": [{"product_id": other_world.paracetamol.id, "quantity": 1}]},
            headers=auth_headers(world.users.admin),
        )
        assert resp.status_code == 404

    def test_foreign_presentation_list_not_found(self, client, world, other_world):
        resp = client.get(
            f"/api/catalog/products/{other_world.paracetamol.id}/presentations",
            headers=auth_headers(world.users.admin),
        )
        assert resp.status_code == 404

    def test_cannot_move_foreign_stock(self, client, world, other_world):
        add_balance(other_world.paracetamol, other_world.lp, 10)

        resp = client.post(
            "/api/stock/movements",
            json={"type": "OUT", "product_id": other_world.paracetamol.id, "quantity": 1, "from_location_id": other_world.lp.id},
            headers=auth_headers(world.users.admin),
        )

        assert resp.status_code == 404


class TestSequencesPerTenant:

    def test_both_tenants_start_at_one(self, client, world, other_world):
        body_a = {"customer_id": world.customer_lp.id, "lines": [{"product_id": world.paracetamol.id, "quantity": 1}]}
        body_b = {"customer_id": other_world.customer_lp.id, "lines": [{"product_id": other_world.paracetamol.id, "quantity": 1}]}

        a = client.post("/api/quotes", json=body_a, headers=auth_headers(world.users.seller)).json
        b = client.post("/api/quotes", json=body_b, headers=auth_headers(other_world.users.seller)).json

        assert a["number"] == b["number"]
        assert a["number"].endswith("-0001")
