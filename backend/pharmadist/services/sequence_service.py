# Overview: Tenant/year/key scoped document numbering.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import TenantSequence
from ..time_utils import current_year_utc

SEQUENCE_KEYS = {"COT", "OV", "MS"}


@dataclass(frozen=True)
class SequenceNumber:
    value: int
    number: str


def format_sequence_number(key: str, year: int, value: int) -> str:
    return f"{key}-{year}-{value:04d}"


def next_sequence(*, tenant_id: int, key: str, year: int | None = None) -> SequenceNumber:
    """
    Atomically allocate the next number for (tenant, year, key).

    Increment-and-read on the counter row, creating it on first use. Runs in
    the caller's transaction, so a rolled back caller gives its number back;
    numbers may have gaps but never repeat.
    """
    if not tenant_id:
        raise ValidationError("tenant_id is required")
    if key not in SEQUENCE_KEYS:
        raise ValidationError(f"Unknown sequence key: {key}")
    year = year or current_year_utc()

    stmt = (
        update(TenantSequence)
        .where(
            TenantSequence.tenant_id == tenant_id,
            TenantSequence.year == year,
            TenantSequence.key == key,
        )
        .values(current_value=TenantSequence.current_value + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            # Savepoint: losing the insert race must not roll back the caller's work
            with db.session.begin_nested():
                db.session.add(TenantSequence(tenant_id=tenant_id, year=year, key=key, current_value=1))
            return SequenceNumber(value=1, number=format_sequence_number(key, year, 1))
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    value = (
        db.session.query(TenantSequence.current_value)
        .filter_by(tenant_id=tenant_id, year=year, key=key)
        .scalar()
    )
    return SequenceNumber(value=value, number=format_sequence_number(key, year, value))


def derive_order_number(quote_number: str) -> str | None:
    """
    Order number from its quote's number by prefix rewrite:
    "COT-2026-0007" -> "OV-2026-0007". None when the quote number does not
    carry the quote prefix.
    """
    if quote_number and quote_number.startswith("COT-"):
        return "OV-" + quote_number[len("COT-"):]
    return None
