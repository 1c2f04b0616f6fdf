"""
Request payload parsing.

Routes hand raw JSON to these helpers; services only ever see typed,
normalized values. Every problem is a ValidationError (400) and never
reaches the allocator.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .errors import ValidationError
from .quantities import ZERO, clamp_pct, to_decimal

# Upper bounds mirror what the UI can send; they keep absurd input out
MAX_LINES_PER_DOCUMENT = 300
MAX_NOTE_LENGTH = 500


@dataclass(frozen=True)
class LineInput:
    """
    One requested line. Exactly one of `quantity` (base units) or
    `presentation_id` + `presentation_quantity` is set.
    """
    product_id: int
    quantity: Decimal | None = None
    presentation_id: int | None = None
    presentation_quantity: Decimal | None = None
    batch_id: int | None = None
    unit_price: Decimal | None = None
    discount_pct: Decimal = ZERO
    from_location_id: int | None = None
    to_location_id: int | None = None
    note: str | None = None

    @property
    def uses_presentation(self) -> bool:
        return self.presentation_id is not None


def require_payload(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def require_int(payload: dict, key: str, *, label: str | None = None) -> int:
    if key not in payload or payload[key] is None:
        raise ValidationError(f"Missing required field: {label or key}")
    return coerce_int(payload[key], label or key)


def optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return coerce_int(value, key)


def coerce_int(value: Any, field: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def optional_str(payload: dict, key: str, *, max_length: int) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value


def positive_decimal(value: Any, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result <= ZERO:
        raise ValidationError(f"{field} must be > 0")
    return result


def optional_pct(payload: dict, key: str) -> Decimal:
    if payload.get(key) is None:
        return ZERO
    return clamp_pct(to_decimal(payload[key], key))


def int_in_range(payload: dict, key: str, default: int, low: int, high: int) -> int:
    if payload.get(key) is None:
        return default
    value = coerce_int(payload[key], key)
    if value < low or value > high:
        raise ValidationError(f"{key} must be between {low} and {high}")
    return value


def parse_line(raw: Any, *, index: int = 0, allow_price: bool = False) -> LineInput:
    """
    Parse one line, enforcing quantity XOR presentation.

    Sending both, or neither, is ambiguous and rejected.
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"lines[{index}] must be an object")

    product_id = require_int(raw, "product_id", label=f"lines[{index}].product_id")

    has_quantity = raw.get("quantity") is not None
    has_presentation = raw.get("presentation_id") is not None
    has_presentation_qty = raw.get("presentation_quantity") is not None

    if has_quantity and (has_presentation or has_presentation_qty):
        raise ValidationError(
            f"lines[{index}]: send either quantity or presentation_id + presentation_quantity, not both"
        )
    if has_presentation != has_presentation_qty:
        raise ValidationError(
            f"lines[{index}]: presentation_quantity is required when presentation_id is provided"
        )
    if not has_quantity and not has_presentation:
        raise ValidationError(f"lines[{index}]: quantity is required when presentation_id is not provided")

    quantity = None
    presentation_id = None
    presentation_quantity = None
    if has_presentation:
        presentation_id = coerce_int(raw["presentation_id"], f"lines[{index}].presentation_id")
        presentation_quantity = positive_decimal(raw["presentation_quantity"], f"lines[{index}].presentation_quantity")
    else:
        quantity = positive_decimal(raw["quantity"], f"lines[{index}].quantity")

    unit_price = None
    if allow_price and raw.get("unit_price") is not None:
        unit_price = to_decimal(raw["unit_price"], f"lines[{index}].unit_price")
        if unit_price < ZERO:
            raise ValidationError(f"lines[{index}].unit_price must be >= 0")

    return LineInput(
        product_id=product_id,
        quantity=quantity,
        presentation_id=presentation_id,
        presentation_quantity=presentation_quantity,
        batch_id=optional_int(raw, "batch_id"),
        unit_price=unit_price,
        discount_pct=optional_pct(raw, "discount_pct") if allow_price else ZERO,
        from_location_id=optional_int(raw, "from_location_id"),
        to_location_id=optional_int(raw, "to_location_id"),
        note=optional_str(raw, "note", max_length=MAX_NOTE_LENGTH),
    )


def parse_lines(raw: Any, *, allow_price: bool = False, max_lines: int = MAX_LINES_PER_DOCUMENT) -> list[LineInput]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("lines must be a non-empty list")
    if len(raw) > max_lines:
        raise ValidationError(f"At most {max_lines} lines are allowed")
    return [parse_line(item, index=i, allow_price=allow_price) for i, item in enumerate(raw)]


def parse_id_list(raw: Any, field: str, *, max_items: int = 100) -> list[int]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{field} must be a non-empty list")
    if len(raw) > max_items:
        raise ValidationError(f"At most {max_items} {field} are allowed")
    ids = [coerce_int(value, field) for value in raw]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"{field} contains duplicates")
    return ids


@dataclass(frozen=True)
class QuoteInput:
    customer_id: int | None
    lines: list[LineInput] | None
    validity_days: int | None = None
    payment_mode: str | None = None
    delivery_days: int | None = None
    delivery_city: str | None = None
    delivery_address: str | None = None
    global_discount_pct: Decimal | None = None
    proposal_value: str | None = None
    note: str | None = None
    fields: frozenset = frozenset()


QUOTE_FIELDS = (
    "customer_id", "lines", "validity_days", "payment_mode", "delivery_days",
    "delivery_city", "delivery_address", "global_discount_pct", "proposal_value", "note",
)


def parse_quote(payload: Any, *, partial: bool = False) -> QuoteInput:
    """
    Quote body for create (all required fields) or update (partial=True:
    only the keys present are applied, listed in `fields`).
    """
    payload = require_payload(payload)
    present = frozenset(key for key in QUOTE_FIELDS if key in payload)

    customer_id = None
    if not partial or "customer_id" in present:
        customer_id = require_int(payload, "customer_id")
    lines = None
    if not partial or "lines" in present:
        lines = parse_lines(payload.get("lines"), allow_price=True)

    return QuoteInput(
        customer_id=customer_id,
        lines=lines,
        validity_days=int_in_range(payload, "validity_days", 7, 1, 365),
        payment_mode=optional_str(payload, "payment_mode", max_length=50),
        delivery_days=int_in_range(payload, "delivery_days", 1, 0, 365),
        delivery_city=optional_str(payload, "delivery_city", max_length=80),
        delivery_address=optional_str(payload, "delivery_address", max_length=255),
        global_discount_pct=optional_pct(payload, "global_discount_pct"),
        proposal_value=optional_str(payload, "proposal_value", max_length=200),
        note=optional_str(payload, "note", max_length=MAX_NOTE_LENGTH),
        fields=present if partial else frozenset(QUOTE_FIELDS),
    )
