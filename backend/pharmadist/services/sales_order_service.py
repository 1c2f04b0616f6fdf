# Overview: Sales order queries, fulfillment and cancellation.

"""
Sales orders.

LIFECYCLE: CONFIRMED -> FULFILLED (reserved units shipped)
           CONFIRMED -> CANCELLED (reserved units handed back)

Orders are only created by processing a quote (quote_service). Both
transitions settle every active reservation of the order in the same
transaction as the status change.
"""
from __future__ import annotations

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_FULFILLED,
    SalesOrder,
    SalesOrderReservation,
)
from . import realtime
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
from .reservation_service import consume_order_reservations, release_order_reservations
from .session_service import ActorContext

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def order_to_dict(order: SalesOrder, *, include_lines: bool = True) -> dict:
    data = order.to_dict()
    data["customer_name"] = order.customer.name if order.customer else None
    if include_lines:
        data["lines"] = [line.to_dict() for line in order.lines]
        data["reservations"] = [
            r.to_dict()
            for r in db.session.query(SalesOrderReservation)
            .filter_by(tenant_id=order.tenant_id, sales_order_id=order.id)
            .order_by(SalesOrderReservation.id.asc())
            .all()
        ]
    return data


def get_order(actor: ActorContext, order_id: int, *, lock: bool = False) -> SalesOrder:
    query = db.session.query(SalesOrder).filter_by(id=order_id, tenant_id=actor.tenant_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if not order:
        raise NotFoundError("Sales order not found")
    return order


def list_orders(
    actor: ActorContext,
    *,
    status: str | None = None,
    cursor: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    limit = max(1, min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))
    query = db.session.query(SalesOrder).filter(SalesOrder.tenant_id == actor.tenant_id)
    if status:
        query = query.filter(SalesOrder.status == status.upper())
    scoped_city = actor.require_branch_city()
    if scoped_city:
        query = query.filter(SalesOrder.city == scoped_city)
    if cursor:
        query = query.filter(SalesOrder.id < cursor)
    rows = query.order_by(SalesOrder.id.desc()).limit(limit + 1).all()
    has_more = len(rows) > limit
    rows = rows[:limit]
    return {
        "items": [order_to_dict(o, include_lines=False) for o in rows],
        "next_cursor": rows[-1].id if has_more and rows else None,
    }


def fulfill_order(actor: ActorContext, order_id: int) -> dict:
    """Ship every reserved unit of a CONFIRMED order and mark it FULFILLED."""
    def _op():
        order = get_order(actor, order_id, lock=True)
        if order.status != ORDER_STATUS_CONFIRMED:
            raise ConflictError(f"Order cannot be fulfilled in {order.status} status")
        actor.ensure_city(order.city, "Order belongs to another branch city")

        before = {"status": order.status, "version": order.version}
        movements, balances = consume_order_reservations(order, user_id=actor.user_id)
        order.status = ORDER_STATUS_FULFILLED
        db.session.flush()

        data = order_to_dict(order)
        append_audit_event(
            tenant_id=actor.tenant_id,
            action="sales.order.fulfill",
            entity_type="sales_order",
            entity_id=order.id,
            actor_user_id=actor.user_id,
            before=before,
            after={"status": order.status, "movements": [m.number for m in movements]},
        )
        realtime.enqueue(db.session, actor.tenant_id, "sales.order.fulfilled", {
            "id": order.id,
            "number": order.number,
            "status": order.status,
        })
        return {
            "order": data,
            "movements": [m.to_dict() for m in movements],
            "balances": [b.to_dict() for b in balances],
        }

    return run_in_transaction(_op)


def cancel_order(actor: ActorContext, order_id: int) -> dict:
    """Release every active reservation of the order and mark it CANCELLED."""
    def _op():
        order = get_order(actor, order_id, lock=True)
        if order.status not in (ORDER_STATUS_DRAFT, ORDER_STATUS_CONFIRMED):
            raise ConflictError(f"Order cannot be cancelled in {order.status} status")
        actor.ensure_city(order.city, "Order belongs to another branch city")

        before = {"status": order.status, "version": order.version}
        balances = release_order_reservations(order)
        order.status = ORDER_STATUS_CANCELLED
        db.session.flush()

        append_audit_event(
            tenant_id=actor.tenant_id,
            action="sales.order.cancel",
            entity_type="sales_order",
            entity_id=order.id,
            actor_user_id=actor.user_id,
            before=before,
            after={"status": order.status, "released_balances": [b.id for b in balances]},
        )
        realtime.enqueue(db.session, actor.tenant_id, "sales.order.cancelled", {
            "id": order.id,
            "number": order.number,
            "status": order.status,
        })
        return {
            "order": order_to_dict(order),
            "balances": [b.to_dict() for b in balances],
        }

    return run_in_transaction(_op)
