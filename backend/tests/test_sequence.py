# Overview: Pytest coverage for tenant/year/key document numbering.

import pytest

from pharmadist.errors import ValidationError
from pharmadist.models import TenantSequence
from pharmadist.services.sequence_service import derive_order_number, format_sequence_number, next_sequence


class TestNextSequence:

    def test_numbers_increase_per_key(self, world, db_session):
        first = next_sequence(tenant_id=world.tenant.id, key="COT", year=2026)
        second = next_sequence(tenant_id=world.tenant.id, key="COT", year=2026)
        other_key = next_sequence(tenant_id=world.tenant.id, key="OV", year=2026)
        db_session.commit()

        assert first.number == "COT-2026-0001"
        assert second.number == "COT-2026-0002"
        assert other_key.number == "OV-2026-0001"

    def test_counters_are_per_tenant_and_year(self, world, other_world, db_session):
        next_sequence(tenant_id=world.tenant.id, key="MS", year=2026)
        b = next_sequence(tenant_id=other_world.tenant.id, key="MS", year=2026)
        next_year = next_sequence(tenant_id=world.tenant.id, key="MS", year=2027)
        db_session.commit()

        assert b.value == 1
        assert next_year.number == "MS-2027-0001"
        assert db_session.query(TenantSequence).count() == 3

    def test_rolled_back_number_is_reissued(self, world, db_session):
        next_sequence(tenant_id=world.tenant.id, key="COT", year=2026)
        db_session.commit()
        next_sequence(tenant_id=world.tenant.id, key="COT", year=2026)
        db_session.rollback()

        assert next_sequence(tenant_id=world.tenant.id, key="COT", year=2026).value == 2

    def test_unknown_key_rejected(self, world):
        with pytest.raises(ValidationError):
            next_sequence(tenant_id=world.tenant.id, key="XYZ")


@pytest.mark.parametrize("key", ["LOT", "SR"])
def test_only_issued_keys_are_known(world, key):
    with pytest.raises(ValidationError):
        next_sequence(tenant_id=world.tenant.id, key=key)


def test_number_format():
    assert format_sequence_number("MS", 2026, 7) == "MS-2026-0007"


@pytest.mark.parametrize(
    "quote_number,expected",
    [("COT-2026-0007", "OV-2026-0007"), ("Q-1", None), ("", None)],
)
def test_order_number_derived_from_quote(quote_number, expected):
    assert derive_order_number(quote_number) == expected
