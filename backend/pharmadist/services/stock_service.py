# Overview: City-scoped stock queries, shortage calculation and stock movements.

"""
Stock service.

CITY SCOPING: automatic allocation and availability checks only ever look
at balances whose location's warehouse is in the requested city (compared
upper-cased) and where both warehouse and location are active.

ELIGIBILITY: a balance counts as available stock when it is unbatched, or
its batch is RELEASED and not expired as of today UTC.

Stock movements are the only way on-hand quantities change outside of
order fulfillment. Every movement is numbered (MS sequence) and mutates
one or two InventoryBalance rows in the same transaction.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, func, or_

from ..errors import BatchExpiredError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    BATCH_STATUS_RELEASED,
    MOVEMENT_TYPES,
    Batch,
    InventoryBalance,
    Location,
    Product,
    StockMovement,
    Warehouse,
)
from ..quantities import ZERO, format_quantity, is_short, non_negative
from ..time_utils import add_days, current_year_utc, today_utc, to_iso_date
from ..validation import LineInput
from . import realtime
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
from .presentation_service import get_product, required_base_quantity, resolve_line
from .sequence_service import next_sequence

logger = logging.getLogger(__name__)


def normalize_city(city: str | None) -> str:
    return (city or "").strip().upper()


def require_city(city: str | None) -> str:
    normalized = normalize_city(city)
    if not normalized:
        raise ValidationError("city is required")
    return normalized


def eligible_batch_clause(today: date):
    """Unbatched, or batch RELEASED and not expired as of today."""
    return or_(
        InventoryBalance.batch_id.is_(None),
        and_(
            Batch.status == BATCH_STATUS_RELEASED,
            or_(Batch.expires_at.is_(None), Batch.expires_at >= today),
        ),
    )


def city_balances_query(tenant_id: int, city: str, product_id: int):
    """InventoryBalance rows of one product in active locations of a city."""
    return (
        db.session.query(InventoryBalance)
        .join(Location, Location.id == InventoryBalance.location_id)
        .join(Warehouse, Warehouse.id == Location.warehouse_id)
        .outerjoin(Batch, Batch.id == InventoryBalance.batch_id)
        .filter(
            InventoryBalance.tenant_id == tenant_id,
            InventoryBalance.product_id == product_id,
            Location.tenant_id == tenant_id,
            Location.is_active.is_(True),
            Warehouse.tenant_id == tenant_id,
            Warehouse.is_active.is_(True),
            func.upper(func.trim(Warehouse.city)) == normalize_city(city),
        )
    )


def eligible_city_balances(tenant_id: int, city: str, product_id: int, *, today: date | None = None, lock: bool = False) -> list[InventoryBalance]:
    query = city_balances_query(tenant_id, city, product_id).filter(eligible_batch_clause(today or today_utc()))
    if lock:
        query = lock_for_update(query, of=InventoryBalance)
    return query.all()


def available_in_city(tenant_id: int, city: str, product_id: int, *, today: date | None = None, lock: bool = False) -> Decimal:
    """Sum of max(0, quantity - reserved) over eligible in-city balances."""
    total = ZERO
    for balance in eligible_city_balances(tenant_id, city, product_id, today=today, lock=lock):
        total += non_negative(balance.available_quantity)
    return total


@dataclass(frozen=True)
class ShortageItem:
    product_id: int
    product_name: str | None
    required: Decimal
    available: Decimal
    presentation_id: int | None = None
    presentation_quantity: Decimal | None = None

    @property
    def missing(self) -> Decimal:
        return non_negative(self.required - self.available)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "required": format_quantity(self.required),
            "available": format_quantity(self.available),
            "missing": format_quantity(self.missing),
            "presentation_id": self.presentation_id,
            "presentation_quantity": format_quantity(self.presentation_quantity),
        }


def compute_shortages(tenant_id: int, city: str, lines: list[LineInput]) -> list[ShortageItem]:
    """
    Read-only availability check of lines against a city's stock.

    Returns one ShortageItem per line whose required base quantity is not
    covered (within EPSILON). Performs no writes; callers that are about to
    allocate must call it again inside their transaction.
    """
    city = require_city(city)
    today = today_utc()
    shortages: list[ShortageItem] = []
    for line in lines:
        product = get_product(tenant_id, line.product_id)
        required = required_base_quantity(tenant_id, line)
        available = available_in_city(tenant_id, city, product.id, today=today)
        if is_short(available, required):
            shortages.append(
                ShortageItem(
                    product_id=product.id,
                    product_name=product.name,
                    required=required,
                    available=available,
                    presentation_id=line.presentation_id,
                    presentation_quantity=line.presentation_quantity,
                )
            )
    return shortages


# Balances


def list_balances(
    tenant_id: int,
    *,
    product_id: int | None = None,
    city: str | None = None,
    location_id: int | None = None,
    only_available: bool = False,
    limit: int = 200,
) -> list[dict]:
    query = (
        db.session.query(InventoryBalance, Location, Warehouse, Batch)
        .join(Location, Location.id == InventoryBalance.location_id)
        .join(Warehouse, Warehouse.id == Location.warehouse_id)
        .outerjoin(Batch, Batch.id == InventoryBalance.batch_id)
        .filter(InventoryBalance.tenant_id == tenant_id)
    )
    if product_id is not None:
        query = query.filter(InventoryBalance.product_id == product_id)
    if location_id is not None:
        query = query.filter(InventoryBalance.location_id == location_id)
    if normalize_city(city):
        query = query.filter(func.upper(func.trim(Warehouse.city)) == normalize_city(city))

    rows = query.order_by(InventoryBalance.product_id.asc(), InventoryBalance.id.asc()).limit(limit).all()
    items = []
    for balance, location, warehouse, batch in rows:
        if only_available and balance.available_quantity <= ZERO:
            continue
        item = balance.to_dict()
        item.update({
            "location_code": location.code,
            "warehouse_id": warehouse.id,
            "warehouse_code": warehouse.code,
            "city": warehouse.city,
            "batch_number": batch.batch_number if batch else None,
            "batch_status": batch.status if batch else None,
            "expires_at": to_iso_date(batch.expires_at) if batch else None,
        })
        items.append(item)
    return items


def find_invariant_violations(tenant_id: int | None = None) -> list[InventoryBalance]:
    """Balances breaking 0 <= reserved_quantity <= quantity."""
    query = db.session.query(InventoryBalance)
    if tenant_id is not None:
        query = query.filter_by(tenant_id=tenant_id)
    violations = []
    for balance in query.order_by(InventoryBalance.id.asc()).all():
        reserved = balance.reserved_quantity or ZERO
        quantity = balance.quantity or ZERO
        if reserved < ZERO or reserved > quantity:
            violations.append(balance)
    return violations


# Expiry


EXPIRY_STATUSES = ("EXPIRED", "RED", "YELLOW", "GREEN")


def expiry_status(days_to_expire: int) -> str:
    """Expiry semaphore: past date, within 30 days, within 90 days, later."""
    if days_to_expire < 0:
        return "EXPIRED"
    if days_to_expire <= 30:
        return "RED"
    if days_to_expire <= 90:
        return "YELLOW"
    return "GREEN"


def _require_warehouse(tenant_id: int, warehouse_id: int) -> Warehouse:
    warehouse = db.session.query(Warehouse).filter_by(id=warehouse_id, tenant_id=tenant_id).first()
    if not warehouse:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")
    return warehouse


def warehouse_city(tenant_id: int, warehouse_id: int) -> str:
    return normalize_city(_require_warehouse(tenant_id, warehouse_id).city)


def fefo_suggestions(
    tenant_id: int,
    product_id: int,
    *,
    location_id: int | None = None,
    warehouse_id: int | None = None,
    limit: int = 10,
    today: date | None = None,
) -> list[dict]:
    """
    Batches of a product holding stock at a location (or across a
    warehouse), soonest expiry first, batches without expiry last.

    Expired batches are left out. Quantities of one batch spread over
    several locations of the warehouse are added up.
    """
    if not location_id and not warehouse_id:
        raise ValidationError("location_id or warehouse_id is required")
    today = today or today_utc()
    get_product(tenant_id, product_id)

    query = (
        db.session.query(InventoryBalance, Batch)
        .join(Batch, Batch.id == InventoryBalance.batch_id)
        .join(Location, Location.id == InventoryBalance.location_id)
        .filter(
            InventoryBalance.tenant_id == tenant_id,
            InventoryBalance.product_id == product_id,
            or_(Batch.expires_at.is_(None), Batch.expires_at >= today),
        )
    )
    if location_id:
        _require_location(tenant_id, location_id)
        query = query.filter(InventoryBalance.location_id == location_id)
    else:
        _require_warehouse(tenant_id, warehouse_id)
        query = query.filter(Location.warehouse_id == warehouse_id)

    by_batch: dict[int, dict] = {}
    for balance, batch in query.all():
        if (balance.quantity or ZERO) <= ZERO:
            continue
        entry = by_batch.setdefault(batch.id, {"batch": batch, "quantity": ZERO, "available": ZERO})
        entry["quantity"] += balance.quantity
        entry["available"] += balance.available_quantity

    ordered = sorted(
        by_batch.values(),
        key=lambda e: (e["batch"].expires_at is None, e["batch"].expires_at or today, e["batch"].id),
    )
    items = []
    for entry in ordered[:limit]:
        batch = entry["batch"]
        items.append({
            "batch_id": batch.id,
            "batch_number": batch.batch_number,
            "expires_at": to_iso_date(batch.expires_at),
            "days_to_expire": (batch.expires_at - today).days if batch.expires_at else None,
            "status": batch.status,
            "quantity": format_quantity(entry["quantity"]),
            "available_quantity": format_quantity(entry["available"]),
        })
    return items


def expiry_summary(
    tenant_id: int,
    *,
    city: str | None = None,
    warehouse_id: int | None = None,
    status: str | None = None,
    days_to_expire_max: int | None = None,
    limit: int = 100,
    today: date | None = None,
) -> list[dict]:
    """Batched balances with stock and an expiry date, soonest expiry first."""
    today = today or today_utc()
    query = (
        db.session.query(InventoryBalance, Batch, Product, Location, Warehouse)
        .join(Batch, Batch.id == InventoryBalance.batch_id)
        .join(Product, Product.id == InventoryBalance.product_id)
        .join(Location, Location.id == InventoryBalance.location_id)
        .join(Warehouse, Warehouse.id == Location.warehouse_id)
        .filter(InventoryBalance.tenant_id == tenant_id, Batch.expires_at.isnot(None))
    )
    if normalize_city(city):
        query = query.filter(func.upper(func.trim(Warehouse.city)) == normalize_city(city))
    if warehouse_id:
        query = query.filter(Warehouse.id == warehouse_id)

    if status:
        status = status.strip().upper()
        if status not in EXPIRY_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(EXPIRY_STATUSES)}")
        if status == "EXPIRED":
            query = query.filter(Batch.expires_at < today)
        elif status == "RED":
            query = query.filter(Batch.expires_at >= today, Batch.expires_at <= add_days(today, 30))
        elif status == "YELLOW":
            query = query.filter(Batch.expires_at > add_days(today, 30), Batch.expires_at <= add_days(today, 90))
        else:
            query = query.filter(Batch.expires_at > add_days(today, 90))
    if days_to_expire_max is not None:
        query = query.filter(Batch.expires_at <= add_days(today, days_to_expire_max))

    rows = query.order_by(Batch.expires_at.asc(), InventoryBalance.id.asc()).all()
    items = []
    for balance, batch, product, location, warehouse in rows:
        if (balance.quantity or ZERO) <= ZERO:
            continue
        days = (batch.expires_at - today).days
        items.append({
            "balance_id": balance.id,
            "product_id": product.id,
            "sku": product.sku,
            "product_name": product.name,
            "generic_name": product.generic_name,
            "batch_id": batch.id,
            "batch_number": batch.batch_number,
            "expires_at": to_iso_date(batch.expires_at),
            "days_to_expire": days,
            "status": expiry_status(days),
            "quantity": format_quantity(balance.quantity),
            "reserved_quantity": format_quantity(balance.reserved_quantity),
            "available_quantity": format_quantity(balance.available_quantity),
            "warehouse_id": warehouse.id,
            "warehouse_code": warehouse.code,
            "city": warehouse.city,
            "location_id": location.id,
            "location_code": location.code,
        })
        if len(items) >= limit:
            break
    return items


# Movements


@dataclass
class MovementResult:
    movement: StockMovement
    from_balance: InventoryBalance | None
    to_balance: InventoryBalance | None

    def to_dict(self) -> dict:
        return {
            "movement": self.movement.to_dict(),
            "from_balance": self.from_balance.to_dict() if self.from_balance else None,
            "to_balance": self.to_balance.to_dict() if self.to_balance else None,
        }


def _require_location(tenant_id: int, location_id: int) -> Location:
    location = (
        db.session.query(Location)
        .filter_by(id=location_id, tenant_id=tenant_id, is_active=True)
        .first()
    )
    if not location:
        raise NotFoundError(f"Location {location_id} not found")
    return location


def _require_batch(tenant_id: int, product_id: int, batch_id: int) -> Batch:
    batch = (
        db.session.query(Batch)
        .filter_by(id=batch_id, tenant_id=tenant_id, product_id=product_id)
        .first()
    )
    if not batch:
        raise NotFoundError(f"Batch {batch_id} not found")
    return batch


def _locked_balance(tenant_id: int, product_id: int, batch_id: int | None, location_id: int) -> InventoryBalance | None:
    query = db.session.query(InventoryBalance).filter(
        InventoryBalance.tenant_id == tenant_id,
        InventoryBalance.product_id == product_id,
        InventoryBalance.location_id == location_id,
    )
    if batch_id is None:
        query = query.filter(InventoryBalance.batch_id.is_(None))
    else:
        query = query.filter(InventoryBalance.batch_id == batch_id)
    return lock_for_update(query).first()


def _apply_delta(tenant_id: int, product_id: int, batch_id: int | None, location_id: int, delta: Decimal) -> InventoryBalance:
    balance = _locked_balance(tenant_id, product_id, batch_id, location_id)
    if balance is None:
        if delta < ZERO:
            raise ConflictError("Insufficient stock")
        balance = InventoryBalance(
            tenant_id=tenant_id,
            product_id=product_id,
            batch_id=batch_id,
            location_id=location_id,
            quantity=ZERO,
            reserved_quantity=ZERO,
        )
        db.session.add(balance)
    try:
        balance.adjust_quantity(delta)
    except ValueError as exc:
        # Reserved units are committed to orders and cannot be moved
        raise ConflictError("Insufficient stock") from exc
    return balance


def apply_stock_movement(
    *,
    tenant_id: int,
    user_id: int | None,
    movement_type: str,
    product_id: int,
    quantity: Decimal,
    batch_id: int | None = None,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    presentation_id: int | None = None,
    presentation_quantity: Decimal | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    note: str | None = None,
) -> MovementResult:
    """
    Record one movement and update the affected balances.

    Runs in the caller's transaction; does not commit. Realtime events for
    the movement and every touched balance are queued for after commit.

    - IN: +quantity at to_location
    - OUT: -quantity at from_location
    - TRANSFER: -quantity at from_location, +quantity at to_location
    - ADJUSTMENT: +quantity at to_location, or -quantity at from_location
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}")
    if quantity is None or quantity <= ZERO:
        raise ValidationError("quantity must be > 0")
    if movement_type == "IN" and not to_location_id:
        raise ValidationError("to_location_id is required")
    if movement_type == "OUT" and not from_location_id:
        raise ValidationError("from_location_id is required")
    if movement_type == "TRANSFER":
        if not from_location_id or not to_location_id:
            raise ValidationError("from_location_id and to_location_id are required")
        if from_location_id == to_location_id:
            raise ValidationError("from_location_id and to_location_id must differ")
    if movement_type == "ADJUSTMENT":
        if not (from_location_id or to_location_id):
            raise ValidationError("from_location_id or to_location_id is required")
        if from_location_id and to_location_id:
            raise ValidationError("An adjustment takes either from_location_id or to_location_id")

    product = get_product(tenant_id, product_id)
    if not product.is_active:
        raise NotFoundError(f"Product {product_id} not found")

    decreases = movement_type in ("OUT", "TRANSFER") or (movement_type == "ADJUSTMENT" and not to_location_id)
    if batch_id is not None:
        batch = _require_batch(tenant_id, product.id, batch_id)
        if decreases and batch.is_expired(today_utc()):
            raise BatchExpiredError(
                "Batch is expired",
                details={
                    "batch_id": batch.id,
                    "batch_number": batch.batch_number,
                    "expires_at": to_iso_date(batch.expires_at),
                },
            )

    if from_location_id:
        _require_location(tenant_id, from_location_id)
    if to_location_id:
        _require_location(tenant_id, to_location_id)

    from_balance = None
    to_balance = None
    if movement_type == "IN":
        to_balance = _apply_delta(tenant_id, product.id, batch_id, to_location_id, quantity)
    elif movement_type == "OUT":
        from_balance = _apply_delta(tenant_id, product.id, batch_id, from_location_id, -quantity)
    elif movement_type == "TRANSFER":
        from_balance = _apply_delta(tenant_id, product.id, batch_id, from_location_id, -quantity)
        to_balance = _apply_delta(tenant_id, product.id, batch_id, to_location_id, quantity)
    elif to_location_id:
        to_balance = _apply_delta(tenant_id, product.id, batch_id, to_location_id, quantity)
    else:
        from_balance = _apply_delta(tenant_id, product.id, batch_id, from_location_id, -quantity)

    movement = record_movement(
        tenant_id=tenant_id,
        user_id=user_id,
        movement_type=movement_type,
        product_id=product.id,
        quantity=quantity,
        batch_id=batch_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        presentation_id=presentation_id,
        presentation_quantity=presentation_quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
    )
    for balance in (from_balance, to_balance):
        if balance is not None:
            realtime.enqueue(db.session, tenant_id, "stock.balance.changed", balance.to_dict())

    return MovementResult(movement=movement, from_balance=from_balance, to_balance=to_balance)


def record_movement(
    *,
    tenant_id: int,
    user_id: int | None,
    movement_type: str,
    product_id: int,
    quantity: Decimal,
    batch_id: int | None = None,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    presentation_id: int | None = None,
    presentation_quantity: Decimal | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """Write the numbered movement row only; balances are the caller's job."""
    year = current_year_utc()
    seq = next_sequence(tenant_id=tenant_id, key="MS", year=year)
    movement = StockMovement(
        tenant_id=tenant_id,
        number=seq.number,
        number_year=year,
        type=movement_type,
        product_id=product_id,
        batch_id=batch_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        quantity=quantity,
        presentation_id=presentation_id,
        presentation_quantity=presentation_quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        created_by_user_id=user_id,
    )
    db.session.add(movement)
    db.session.flush()
    realtime.enqueue(db.session, tenant_id, "stock.movement.created", movement.to_dict())
    return movement


def create_stock_movement(
    *,
    tenant_id: int,
    user_id: int | None,
    movement_type: str,
    line: LineInput,
    reference_type: str | None = None,
    reference_id: str | None = None,
    note: str | None = None,
) -> MovementResult:
    """Single movement as its own unit of work (validated, audited, committed)."""
    def _op():
        resolved = resolve_line(tenant_id, line)
        result = apply_stock_movement(
            tenant_id=tenant_id,
            user_id=user_id,
            movement_type=movement_type,
            product_id=resolved.product_id,
            quantity=resolved.quantity,
            batch_id=line.batch_id,
            from_location_id=line.from_location_id,
            to_location_id=line.to_location_id,
            presentation_id=resolved.presentation_id if line.uses_presentation else None,
            presentation_quantity=resolved.presentation_quantity if line.uses_presentation else None,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note or line.note,
        )
        append_audit_event(
            tenant_id=tenant_id,
            action="stock.movement.create",
            entity_type="stock_movement",
            entity_id=result.movement.id,
            actor_user_id=user_id,
            after=result.movement.to_dict(),
        )
        return result

    return run_in_transaction(_op)


def transfer_lines(
    *,
    tenant_id: int,
    user_id: int | None,
    from_location_id: int,
    to_location_id: int,
    lines: list[LineInput],
    reference_type: str,
    reference_id: str,
    note: str | None = None,
) -> list[MovementResult]:
    """One TRANSFER per line, in the caller's transaction. Lines may override the source location."""
    results = []
    for line in lines:
        resolved = resolve_line(tenant_id, line)
        results.append(
            apply_stock_movement(
                tenant_id=tenant_id,
                user_id=user_id,
                movement_type="TRANSFER",
                product_id=resolved.product_id,
                quantity=resolved.quantity,
                batch_id=line.batch_id,
                from_location_id=line.from_location_id or from_location_id,
                to_location_id=to_location_id,
                presentation_id=resolved.presentation_id if line.uses_presentation else None,
                presentation_quantity=resolved.presentation_quantity if line.uses_presentation else None,
                reference_type=reference_type,
                reference_id=reference_id,
                note=line.note or note,
            )
        )
    return results


def bulk_transfer(
    *,
    tenant_id: int,
    user_id: int | None,
    from_location_id: int,
    to_location_id: int,
    lines: list[LineInput],
    note: str | None = None,
) -> dict:
    """
    Multi-line TRANSFER between two locations, all-or-nothing.

    Every movement shares one BULK_TRANSFER reference id.
    """
    reference_type = "BULK_TRANSFER"

    def _op():
        reference_id = str(uuid.uuid4())
        _require_location(tenant_id, from_location_id)
        _require_location(tenant_id, to_location_id)
        results = transfer_lines(
            tenant_id=tenant_id,
            user_id=user_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            lines=lines,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
        )
        append_audit_event(
            tenant_id=tenant_id,
            action="stock.bulk-transfer.create",
            entity_type="stock_movement",
            entity_id=reference_id,
            actor_user_id=user_id,
            after={"reference_type": reference_type, "reference_id": reference_id, "count": len(results)},
        )
        return {
            "reference_type": reference_type,
            "reference_id": reference_id,
            "items": [result.to_dict() for result in results],
        }

    return run_in_transaction(_op)


def location_city(tenant_id: int, location_id: int) -> str:
    location = _require_location(tenant_id, location_id)
    return normalize_city(location.warehouse.city if location.warehouse else None)


def product_names(tenant_id: int, product_ids) -> dict[int, str]:
    rows = (
        db.session.query(Product.id, Product.name)
        .filter(Product.tenant_id == tenant_id, Product.id.in_(list(product_ids)))
        .all()
    )
    return {row.id: row.name for row in rows}
