# Overview: City-scoped, expiry-aware reservation of stock for order lines.

"""
Reservation allocator.

reserve_for_order_in_city_or_fail() commits stock to the lines of one order.
It runs inside the caller's transaction (the one that created the order and
its lines) and either reserves every line in full or raises, leaving the
caller to roll everything back.

ALLOCATION POLICY (fixed order, FEFO first):
- A line pinned to a batch draws only from that batch's in-city balances,
  most recently updated first, then id.
- Otherwise three pools are drained strictly one after another:
    1. batched, RELEASED, expires_at >= today: soonest expiry, then most
       recently updated, then id
    2. batched, RELEASED, no expiry: most recently updated, then id
    3. unbatched: most recently updated, then id

CONCURRENCY:
- Availability is re-checked inside the transaction with the candidate
  balances locked (SELECT ... FOR UPDATE where the database supports it).
- Every balance update bumps its version (optimistic lock); a concurrent
  writer surfaces as StaleDataError at flush/commit.
- If a line still cannot be covered after walking every pool, the race
  guard raises InsufficientStockInCityError. Nothing partial is committed.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from ..errors import ConflictError, InsufficientStockInCityError, NotFoundError
from ..extensions import db
from ..models import (
    BATCH_STATUS_RELEASED,
    Batch,
    Customer,
    InventoryBalance,
    Product,
    SalesOrder,
    SalesOrderLine,
    SalesOrderReservation,
    User,
)
from ..quantities import EPSILON, ZERO, is_short, non_negative
from ..time_utils import to_iso_date, today_utc, utcnow
from . import realtime
from .concurrency import lock_for_update
from .session_service import ActorContext
from .stock_service import (
    available_in_city,
    city_balances_query,
    eligible_batch_clause,
    product_names,
    record_movement,
    require_city,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationLine:
    """One order line to cover, in base units."""
    id: int
    product_id: int
    quantity: Decimal
    batch_id: int | None = None
    presentation_id: int | None = None
    presentation_quantity: Decimal | None = None


@dataclass
class AllocationResult:
    reservations: list[SalesOrderReservation] = field(default_factory=list)
    changed_balances: list[InventoryBalance] = field(default_factory=list)


def _recency_order():
    return (InventoryBalance.updated_at.desc(), InventoryBalance.id.asc())


def candidate_pools(tenant_id: int, city: str, line: AllocationLine, today: date) -> list:
    """Ordered candidate queries for a line; drained first to last."""
    base = city_balances_query(tenant_id, city, line.product_id)

    if line.batch_id is not None:
        pinned = (
            base.filter(InventoryBalance.batch_id == line.batch_id, eligible_batch_clause(today))
            .order_by(*_recency_order())
        )
        return [pinned]

    released = (InventoryBalance.batch_id.isnot(None), Batch.status == BATCH_STATUS_RELEASED)
    expiring = (
        base.filter(*released, Batch.expires_at.isnot(None), Batch.expires_at >= today)
        .order_by(Batch.expires_at.asc(), *_recency_order())
    )
    non_expiring = (
        base.filter(*released, Batch.expires_at.is_(None))
        .order_by(*_recency_order())
    )
    unbatched = (
        base.filter(InventoryBalance.batch_id.is_(None))
        .order_by(*_recency_order())
    )
    return [expiring, non_expiring, unbatched]


def _shortage_items(tenant_id: int, shortfalls: list[tuple]) -> list[dict]:
    names = product_names(tenant_id, {row[0] for row in shortfalls})
    items = []
    for product_id, required, available, presentation_id, presentation_quantity in shortfalls:
        item = {
            "product_id": product_id,
            "product_name": names.get(product_id),
            "required": required,
            "available": non_negative(available),
        }
        if presentation_id is not None:
            item["presentation_id"] = presentation_id
            item["presentation_quantity"] = presentation_quantity
        items.append(item)
    return items


def precheck_city_availability(tenant_id: int, city: str, lines: list[AllocationLine], *, today: date | None = None) -> None:
    """
    Fail fast before any balance is touched.

    Requirements are summed per product across lines, so two lines of the
    same product are checked against the same stock. In-city balances are
    locked while they are read.
    """
    today = today or today_utc()
    required_by_product: "OrderedDict[int, Decimal]" = OrderedDict()
    presentation_by_product: dict[int, tuple] = {}
    for line in lines:
        required_by_product[line.product_id] = required_by_product.get(line.product_id, ZERO) + line.quantity
        presentation_by_product.setdefault(line.product_id, (line.presentation_id, line.presentation_quantity))

    shortfalls = []
    for product_id, required in required_by_product.items():
        available = available_in_city(tenant_id, city, product_id, today=today, lock=True)
        if is_short(available, required):
            presentation_id, presentation_quantity = presentation_by_product[product_id]
            # Presentation view only makes sense when a single line asked for the product
            if sum(1 for line in lines if line.product_id == product_id) > 1:
                presentation_id, presentation_quantity = None, None
            shortfalls.append((product_id, required, available, presentation_id, presentation_quantity))

    if shortfalls:
        logger.info(
            "Insufficient stock in %s for %d product(s) (tenant %s)",
            city, len(shortfalls), tenant_id,
        )
        raise InsufficientStockInCityError(city, _shortage_items(tenant_id, shortfalls))


def reserve_for_order_in_city_or_fail(
    *,
    tenant_id: int,
    user_id: int | None,
    order_id: int,
    city: str,
    lines: list[AllocationLine],
) -> AllocationResult:
    """
    Reserve in-city stock for every line of an order, or raise.

    Must run in the same transaction as the order and line inserts. On
    InsufficientStockInCityError the caller rolls back, so no reservation or
    balance change for any line survives.
    """
    city = require_city(city)
    today = today_utc()

    precheck_city_availability(tenant_id, city, lines, today=today)

    result = AllocationResult()
    changed: "OrderedDict[int, InventoryBalance]" = OrderedDict()

    for line in lines:
        remaining = line.quantity
        for pool in candidate_pools(tenant_id, city, line, today):
            if remaining <= ZERO:
                break
            for balance in lock_for_update(pool, of=InventoryBalance).all():
                if remaining <= ZERO:
                    break
                take = min(balance.available_quantity, remaining)
                if take <= ZERO:
                    continue
                balance.reserve(take)
                reservation = SalesOrderReservation(
                    tenant_id=tenant_id,
                    sales_order_id=order_id,
                    sales_order_line_id=line.id,
                    inventory_balance_id=balance.id,
                    quantity=take,
                    created_by_user_id=user_id,
                )
                db.session.add(reservation)
                result.reservations.append(reservation)
                changed.setdefault(balance.id, balance)
                remaining -= take
            # Flush so the next pool query sees this pool's updates
            db.session.flush()

        if remaining > EPSILON:
            # Stock moved between the pre-check and the walk
            logger.info(
                "Race guard: line %s of order %s short by %s in %s",
                line.id, order_id, remaining, city,
            )
            raise InsufficientStockInCityError(
                city,
                _shortage_items(
                    tenant_id,
                    [(line.product_id, line.quantity, line.quantity - remaining, line.presentation_id, line.presentation_quantity)],
                ),
            )

    db.session.flush()
    result.changed_balances = list(changed.values())
    return result


def active_reservations(order: SalesOrder) -> list[SalesOrderReservation]:
    return (
        db.session.query(SalesOrderReservation)
        .filter_by(tenant_id=order.tenant_id, sales_order_id=order.id)
        .filter(SalesOrderReservation.released_at.is_(None))
        .order_by(SalesOrderReservation.id.asc())
        .all()
    )


def _locked_balance(reservation: SalesOrderReservation) -> InventoryBalance:
    query = db.session.query(InventoryBalance).filter_by(
        id=reservation.inventory_balance_id,
        tenant_id=reservation.tenant_id,
    )
    return lock_for_update(query).one()


def _guarded(mutator, reservation: SalesOrderReservation) -> None:
    try:
        mutator(reservation.quantity)
    except ValueError as exc:
        raise ConflictError(
            f"Reservation {reservation.id} no longer matches balance {reservation.inventory_balance_id}"
        ) from exc


def release_order_reservations(order: SalesOrder) -> list[InventoryBalance]:
    """Hand reserved units back to available stock (order cancelled)."""
    changed: "OrderedDict[int, InventoryBalance]" = OrderedDict()
    now = utcnow()
    for reservation in active_reservations(order):
        balance = _locked_balance(reservation)
        _guarded(balance.release, reservation)
        reservation.released_at = now
        changed.setdefault(balance.id, balance)
    db.session.flush()
    for balance in changed.values():
        realtime.enqueue(db.session, order.tenant_id, "stock.balance.changed", balance.to_dict())
    return list(changed.values())


def consume_order_reservations(order: SalesOrder, *, user_id: int | None = None) -> tuple[list, list[InventoryBalance]]:
    """
    Ship reserved units (order fulfilled).

    Each reservation drops both quantity and reserved_quantity of its
    balance and is recorded as an OUT movement referencing the order.
    """
    changed: "OrderedDict[int, InventoryBalance]" = OrderedDict()
    movements = []
    now = utcnow()
    for reservation in active_reservations(order):
        balance = _locked_balance(reservation)
        _guarded(balance.consume_reserved, reservation)
        reservation.released_at = now
        changed.setdefault(balance.id, balance)
        movements.append(
            record_movement(
                tenant_id=order.tenant_id,
                user_id=user_id,
                movement_type="OUT",
                product_id=balance.product_id,
                quantity=reservation.quantity,
                batch_id=balance.batch_id,
                from_location_id=balance.location_id,
                reference_type="SALES_ORDER",
                reference_id=order.number,
            )
        )
    db.session.flush()
    for balance in changed.values():
        realtime.enqueue(db.session, order.tenant_id, "stock.balance.changed", balance.to_dict())
    return movements, list(changed.values())


def list_balance_reservations(actor: ActorContext, balance_id: int, *, active_only: bool = False) -> list[dict]:
    """
    Who is holding units of one balance: each reservation with its order,
    customer, seller and delivery date, newest first.

    Branch-scoped actors only see balances of their own city.
    """
    balance = (
        db.session.query(InventoryBalance)
        .filter_by(id=balance_id, tenant_id=actor.tenant_id)
        .first()
    )
    if not balance:
        raise NotFoundError("Balance not found")
    warehouse = balance.location.warehouse if balance.location else None
    actor.ensure_city(warehouse.city if warehouse else None, "Balance belongs to another branch city")

    query = (
        db.session.query(SalesOrderReservation, SalesOrder, Customer, Product, User)
        .join(SalesOrder, SalesOrder.id == SalesOrderReservation.sales_order_id)
        .join(Customer, Customer.id == SalesOrder.customer_id)
        .join(SalesOrderLine, SalesOrderLine.id == SalesOrderReservation.sales_order_line_id)
        .join(Product, Product.id == SalesOrderLine.product_id)
        .outerjoin(User, User.id == SalesOrder.created_by_user_id)
        .filter(
            SalesOrderReservation.tenant_id == actor.tenant_id,
            SalesOrderReservation.inventory_balance_id == balance.id,
        )
    )
    if active_only:
        query = query.filter(SalesOrderReservation.released_at.is_(None))

    today = today_utc()
    items = []
    for reservation, order, customer, product, seller in query.order_by(
        SalesOrderReservation.created_at.desc(), SalesOrderReservation.id.desc()
    ):
        item = reservation.to_dict()
        item.update({
            "order_number": order.number,
            "order_status": order.status,
            "customer_name": customer.name,
            "seller": seller.display_name if seller else None,
            "product_name": product.name,
            "delivery_date": to_iso_date(order.delivery_date),
            "delivery_days": (order.delivery_date - today).days if order.delivery_date else None,
        })
        items.append(item)
    return items
