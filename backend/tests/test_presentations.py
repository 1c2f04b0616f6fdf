# Overview: Pytest coverage for presentation resolution and lifecycle.

"""
Presentation Tests

Verifies:
1. Presentation quantities resolve to base units (Caja x 12)
2. Unit price falls back from explicit price to price_override / factor to product price
3. "Unidad" is created lazily for products without presentations
4. Exactly one default per product through create / set-default / deactivate
"""

from decimal import Decimal

import pytest

from conftest import add_presentation, auth_headers, reload
from pharmadist.errors import ValidationError
from pharmadist.models import ProductPresentation
from pharmadist.services.presentation_service import (
    required_base_quantity,
    resolve_line,
)
from pharmadist.validation import LineInput, parse_line


class TestResolveLine:
    """Quantity/presentation resolution."""

    def test_caja_of_twelve_times_three_is_36_base_units(self, world):
        caja = add_presentation(world.paracetamol, "Caja", 12, is_default=True)
        line = LineInput(
            product_id=world.paracetamol.id,
            presentation_id=caja.id,
            presentation_quantity=Decimal("3"),
        )

        resolved = resolve_line(world.tenant.id, line)

        assert resolved.quantity == Decimal("36")
        assert resolved.presentation_id == caja.id
        assert resolved.presentation_quantity == Decimal("3")
        assert required_base_quantity(world.tenant.id, line) == Decimal("36")

    def test_price_override_is_spread_over_base_units(self, world):
        caja = add_presentation(world.paracetamol, "Caja", 12, is_default=True, price_override="24.00")
        line = LineInput(product_id=world.paracetamol.id, presentation_id=caja.id, presentation_quantity=Decimal("1"))

        assert resolve_line(world.tenant.id, line).unit_price == Decimal("2")

    def test_explicit_unit_price_wins(self, world):
        caja = add_presentation(world.paracetamol, "Caja", 12, is_default=True, price_override="24.00")
        line = LineInput(
            product_id=world.paracetamol.id,
            presentation_id=caja.id,
            presentation_quantity=Decimal("1"),
            unit_price=Decimal("1.75"),
        )

        assert resolve_line(world.tenant.id, line).unit_price == Decimal("1.75")

    def test_base_units_use_product_price(self, world):
        add_presentation(world.paracetamol, "Caja", 12, is_default=True)
        line = LineInput(product_id=world.paracetamol.id, quantity=Decimal("6"))

        resolved = resolve_line(world.tenant.id, line)

        assert resolved.quantity == Decimal("6")
        assert resolved.unit_price == Decimal("2.50")
        assert resolved.presentation_quantity == Decimal("0.5")

    def test_unidad_created_for_product_without_presentations(self, world, db_session):
        line = LineInput(product_id=world.amoxicilina.id, quantity=Decimal("4"))

        resolved = resolve_line(world.tenant.id, line)
        db_session.commit()

        unit = db_session.query(ProductPresentation).filter_by(product_id=world.amoxicilina.id).one()
        assert unit.name == "Unidad"
        assert unit.units_per_presentation == 1
        assert unit.is_default is True
        assert resolved.presentation_id == unit.id

    def test_shortage_math_never_creates_presentations(self, world, db_session):
        line = LineInput(product_id=world.amoxicilina.id, quantity=Decimal("4"))

        assert required_base_quantity(world.tenant.id, line) == Decimal("4")
        assert db_session.query(ProductPresentation).count() == 0

    def test_presentation_of_another_product_rejected(self, world):
        caja = add_presentation(world.amoxicilina, "Caja", 10, is_default=True)
        line = LineInput(product_id=world.paracetamol.id, presentation_id=caja.id, presentation_quantity=Decimal("1"))

        with pytest.raises(ValidationError):
            resolve_line(world.tenant.id, line)

    def test_inactive_presentation_rejected(self, world, db_session):
        caja = add_presentation(world.paracetamol, "Caja", 12)
        caja.is_active = False
        db_session.commit()
        line = LineInput(product_id=world.paracetamol.id, presentation_id=caja.id, presentation_quantity=Decimal("1"))

        with pytest.raises(ValidationError, match="Invalid presentation"):
            resolve_line(world.tenant.id, line)


class TestLineParsing:
    """quantity XOR presentation_id + presentation_quantity."""

    def test_both_forms_rejected(self):
        with pytest.raises(ValidationError, match="not both"):
            parse_line({"product_id": 1, "quantity": 2, "presentation_id": 3, "presentation_quantity": 1})

    def test_presentation_without_quantity_rejected(self):
        with pytest.raises(ValidationError, match="presentation_quantity is required"):
            parse_line({"product_id": 1, "presentation_id": 3})

    def test_neither_form_rejected(self):
        with pytest.raises(ValidationError, match="quantity is required"):
            parse_line({"product_id": 1})

    @pytest.mark.parametrize("quantity", [0, -1, "abc", True])
    def test_bad_quantities_rejected(self, quantity):
        with pytest.raises(ValidationError):
            parse_line({"product_id": 1, "quantity": quantity})

    def test_string_decimal_accepted(self):
        line = parse_line({"product_id": "7", "quantity": "2.5"})
        assert line.product_id == 7
        assert line.quantity == Decimal("2.5")


class TestPresentationRoutes:
    """Catalog API: one default per product."""

    def _url(self, product):
        return f"/api/catalog/products/{product.id}/presentations"

    def test_first_presentation_becomes_default(self, client, world):
        headers = auth_headers(world.users.admin)

        resp = client.post(self._url(world.paracetamol), json={"name": "Caja", "units_per_presentation": 12}, headers=headers)

        assert resp.status_code == 201
        assert resp.json["is_default"] is True
        assert resp.json["units_per_presentation"] == 12

    def test_new_default_replaces_old(self, client, world):
        headers = auth_headers(world.users.admin)
        caja = add_presentation(world.paracetamol, "Caja", 12, is_default=True)

        resp = client.post(
            self._url(world.paracetamol),
            json={"name": "Blister", "units_per_presentation": 10, "is_default": True},
            headers=headers,
        )

        assert resp.status_code == 201
        assert reload(caja).is_default is False
        listed = client.get(self._url(world.paracetamol), headers=headers).json["items"]
        assert [p["name"] for p in listed if p["is_default"]] == ["Blister"]

    def test_duplicate_name_conflicts(self, client, world):
        headers = auth_headers(world.users.admin)
        add_presentation(world.paracetamol, "Caja", 12, is_default=True)

        resp = client.post(self._url(world.paracetamol), json={"name": "Caja", "units_per_presentation": 6}, headers=headers)

        assert resp.status_code == 409

    def test_zero_factor_rejected(self, client, world):
        resp = client.post(
            self._url(world.paracetamol),
            json={"name": "Caja", "units_per_presentation": 0},
            headers=auth_headers(world.users.admin),
        )
        assert resp.status_code == 400

    def test_set_default_with_stale_version_conflicts(self, client, world):
        headers = auth_headers(world.users.admin)
        add_presentation(world.paracetamol, "Caja", 12, is_default=True)
        blister = add_presentation(world.paracetamol, "Blister", 10)

        resp = client.post(
            f"/api/catalog/presentations/{blister.id}/default",
            json={"version": blister.version + 5},
            headers=headers,
        )

        assert resp.status_code == 409

    def test_set_default(self, client, world):
        headers = auth_headers(world.users.admin)
        caja = add_presentation(world.paracetamol, "Caja", 12, is_default=True)
        blister = add_presentation(world.paracetamol, "Blister", 10)

        resp = client.post(f"/api/catalog/presentations/{blister.id}/default", json={}, headers=headers)

        assert resp.status_code == 200
        assert resp.json["is_default"] is True
        assert reload(caja).is_default is False

    def test_deactivating_default_requires_replacement(self, client, world):
        headers = auth_headers(world.users.admin)
        caja = add_presentation(world.paracetamol, "Caja", 12, is_default=True)
        blister = add_presentation(world.paracetamol, "Blister", 10)

        resp = client.post(f"/api/catalog/presentations/{caja.id}/deactivate", json={}, headers=headers)
        assert resp.status_code == 409

        resp = client.post(
            f"/api/catalog/presentations/{caja.id}/deactivate",
            json={"replacement_default_id": blister.id},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json["is_active"] is False
        assert reload(blister).is_default is True

    def test_last_active_presentation_cannot_be_deactivated(self, client, world):
        caja = add_presentation(world.paracetamol, "Caja", 12, is_default=True)

        resp = client.post(
            f"/api/catalog/presentations/{caja.id}/deactivate",
            json={},
            headers=auth_headers(world.users.admin),
        )

        assert resp.status_code == 409
        assert "last active presentation" in resp.json["error"]

    def test_seller_cannot_write_catalog(self, client, world):
        resp = client.post(
            self._url(world.paracetamol),
            json={"name": "Caja", "units_per_presentation": 12},
            headers=auth_headers(world.users.seller),
        )
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "CATALOG_WRITE"
