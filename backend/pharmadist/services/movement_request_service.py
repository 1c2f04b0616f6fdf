# Overview: Cross-branch stock requests and their bulk fulfillment.

"""
Stock movement requests.

A branch that cannot cover a quote (or simply needs stock) opens a request
for its city. Another branch ships stock with bulk_fulfill(): the moved
quantities are TRANSFER movements into a location of the requesting city,
and are applied to the selected requests' items in request creation order,
then item id. A request whose items' remaining quantities sum to zero
(within EPSILON) becomes FULFILLED.

LIFECYCLE: OPEN -> FULFILLED | CANCELLED
"""
from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    REQUEST_STATUS_CANCELLED,
    REQUEST_STATUS_FULFILLED,
    REQUEST_STATUS_OPEN,
    StockMovementRequest,
    StockMovementRequestItem,
    Warehouse,
)
from ..quantities import EPSILON, ZERO
from ..time_utils import utcnow
from ..validation import LineInput
from . import realtime
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
from .presentation_service import resolve_line
from .quote_service import get_quote, shortage_items_for_quote
from .session_service import ActorContext
from .stock_service import location_city, normalize_city, require_city, transfer_lines

logger = logging.getLogger(__name__)


def _request_payload(req: StockMovementRequest) -> dict:
    return {
        "id": req.id,
        "status": req.status,
        "requested_city": req.requested_city,
        "quote_id": req.quote_id,
        "requested_by": req.requested_by,
    }


def _add_request(
    actor: ActorContext,
    *,
    city: str,
    items: list[dict],
    warehouse_id: int | None = None,
    quote_id: int | None = None,
    note: str | None = None,
) -> StockMovementRequest:
    req = StockMovementRequest(
        tenant_id=actor.tenant_id,
        status=REQUEST_STATUS_OPEN,
        requested_city=city,
        warehouse_id=warehouse_id,
        quote_id=quote_id,
        requested_by=actor.display_name,
        note=note,
    )
    for item in items:
        req.items.append(
            StockMovementRequestItem(
                tenant_id=actor.tenant_id,
                product_id=item["product_id"],
                requested_quantity=item["quantity"],
                remaining_quantity=item["quantity"],
                presentation_id=item.get("presentation_id"),
                presentation_quantity=item.get("presentation_quantity"),
            )
        )
    db.session.add(req)
    db.session.flush()

    append_audit_event(
        tenant_id=actor.tenant_id,
        action="stock.movement-request.create",
        entity_type="stock_movement_request",
        entity_id=req.id,
        actor_user_id=actor.user_id,
        after=req.to_dict(),
    )
    realtime.enqueue(db.session, actor.tenant_id, "stock.movement-request.created", _request_payload(req))
    return req


def create_movement_request(
    actor: ActorContext,
    *,
    lines: list[LineInput],
    warehouse_id: int | None = None,
    city: str | None = None,
    note: str | None = None,
) -> StockMovementRequest:
    """
    Open a request for stock in a city.

    The city comes from warehouse_id when given, else from `city`, else
    from the actor's branch. Branch-scoped actors request for their own city.
    """
    def _op():
        requested_city = normalize_city(city)
        if warehouse_id is not None:
            warehouse = (
                db.session.query(Warehouse)
                .filter_by(id=warehouse_id, tenant_id=actor.tenant_id, is_active=True)
                .first()
            )
            if not warehouse:
                raise NotFoundError("Warehouse not found")
            requested_city = normalize_city(warehouse.city)
            if not requested_city:
                raise ConflictError("Warehouse has no city")
        if not requested_city:
            requested_city = actor.require_branch_city() or ""
        requested_city = require_city(requested_city)
        actor.ensure_city(requested_city, "You can only request stock for your branch city")

        items = []
        for line in lines:
            resolved = resolve_line(actor.tenant_id, line)
            items.append({
                "product_id": resolved.product_id,
                "quantity": resolved.quantity,
                "presentation_id": resolved.presentation_id if line.uses_presentation else None,
                "presentation_quantity": resolved.presentation_quantity if line.uses_presentation else None,
            })
        return _add_request(actor, city=requested_city, items=items, warehouse_id=warehouse_id, note=note)

    return run_in_transaction(_op)


def request_stock_for_quote(actor: ActorContext, quote_id: int, *, note: str | None = None) -> StockMovementRequest:
    """Open a request for exactly what the quote's city is missing."""
    def _op():
        quote = get_quote(actor.tenant_id, quote_id)
        city = require_city(quote.effective_city)
        actor.ensure_city(city, "Quote belongs to another branch city")
        shortages = shortage_items_for_quote(quote, city)
        if not shortages:
            raise ConflictError("Quote has no shortages in its city")

        items = []
        for shortage in shortages:
            missing = shortage.missing
            presentation_quantity = None
            if shortage.presentation_id is not None and shortage.presentation_quantity:
                factor = shortage.required / shortage.presentation_quantity
                presentation_quantity = missing / factor if factor else None
            items.append({
                "product_id": shortage.product_id,
                "quantity": missing,
                "presentation_id": shortage.presentation_id,
                "presentation_quantity": presentation_quantity,
            })
        return _add_request(
            actor,
            city=city,
            items=items,
            quote_id=quote.id,
            note=note or f"Stock for quote {quote.number}",
        )

    return run_in_transaction(_op)


def list_movement_requests(
    actor: ActorContext,
    *,
    status: str | None = None,
    city: str | None = None,
    limit: int = 100,
) -> list[StockMovementRequest]:
    """Newest first. Branch-scoped actors only see their own city's requests."""
    query = db.session.query(StockMovementRequest).filter_by(tenant_id=actor.tenant_id)
    if status:
        query = query.filter(StockMovementRequest.status == status.upper())
    scoped_city = actor.require_branch_city()
    if scoped_city:
        query = query.filter(StockMovementRequest.requested_city == scoped_city)
    elif normalize_city(city):
        query = query.filter(StockMovementRequest.requested_city == normalize_city(city))
    return query.order_by(StockMovementRequest.id.desc()).limit(max(1, min(limit, 500))).all()


def _get_request(tenant_id: int, request_id: int) -> StockMovementRequest:
    req = lock_for_update(
        db.session.query(StockMovementRequest).filter_by(id=request_id, tenant_id=tenant_id)
    ).first()
    if not req:
        raise NotFoundError("Movement request not found")
    return req


def cancel_movement_request(actor: ActorContext, request_id: int) -> StockMovementRequest:
    def _op():
        req = _get_request(actor.tenant_id, request_id)
        if req.status != REQUEST_STATUS_OPEN:
            raise ConflictError("Only OPEN requests can be cancelled")
        actor.ensure_city(req.requested_city, "Request belongs to another branch city")
        before = {"status": req.status}
        req.status = REQUEST_STATUS_CANCELLED
        req.cancelled_at = utcnow()
        db.session.flush()
        append_audit_event(
            tenant_id=actor.tenant_id,
            action="stock.movement-request.cancel",
            entity_type="stock_movement_request",
            entity_id=req.id,
            actor_user_id=actor.user_id,
            before=before,
            after={"status": req.status},
        )
        return req

    return run_in_transaction(_op)


def _apply_to_items(items: list[StockMovementRequestItem], quantity: Decimal, touched: set) -> None:
    remaining = quantity
    for item in items:
        if remaining <= ZERO:
            break
        open_qty = item.remaining_quantity or ZERO
        if open_qty <= ZERO:
            continue
        applied = min(open_qty, remaining)
        item.remaining_quantity = open_qty - applied
        remaining -= applied
        touched.add(item.request_id)


def bulk_fulfill(
    actor: ActorContext,
    *,
    request_ids: list[int],
    from_location_id: int,
    to_location_id: int,
    lines: list[LineInput],
    note: str | None = None,
) -> dict:
    """
    Ship stock into the requests' city and settle the selected requests.

    All requests must be OPEN and belong to the destination location's
    city. Everything (movements, item updates, status changes) commits
    together or not at all.
    """
    reference_type = "REQUEST_BULK_FULFILL"

    def _op():
        reference_id = str(uuid.uuid4())
        dest_city = location_city(actor.tenant_id, to_location_id)
        if not dest_city:
            raise ConflictError("Destination warehouse has no city")
        actor.ensure_city(dest_city, "You can only fulfill requests for your branch city")

        requests = (
            lock_for_update(
                db.session.query(StockMovementRequest).filter(
                    StockMovementRequest.tenant_id == actor.tenant_id,
                    StockMovementRequest.id.in_(request_ids),
                )
            )
            .order_by(StockMovementRequest.created_at.asc(), StockMovementRequest.id.asc())
            .all()
        )
        if len(requests) != len(set(request_ids)):
            raise NotFoundError("One or more requests not found")
        for req in requests:
            if req.status != REQUEST_STATUS_OPEN:
                raise ConflictError("All requests must be OPEN")
            if normalize_city(req.requested_city) != dest_city:
                raise ConflictError("All requests must belong to the destination city")

        # Request creation order, then item id
        items_by_product: dict[int, list[StockMovementRequestItem]] = {}
        for req in requests:
            for item in sorted(req.items, key=lambda i: i.id):
                items_by_product.setdefault(item.product_id, []).append(item)

        results = transfer_lines(
            tenant_id=actor.tenant_id,
            user_id=actor.user_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            lines=lines,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
        )

        touched: set[int] = set()
        for result in results:
            movement = result.movement
            _apply_to_items(items_by_product.get(movement.product_id, []), movement.quantity, touched)

        fulfilled = []
        now = utcnow()
        for req in requests:
            if req.id not in touched:
                continue
            open_total = sum((item.remaining_quantity or ZERO for item in req.items), ZERO)
            if open_total <= EPSILON:
                req.status = REQUEST_STATUS_FULFILLED
                req.fulfilled_at = now
                req.fulfilled_by_user_id = actor.user_id
                fulfilled.append(req)
        db.session.flush()

        append_audit_event(
            tenant_id=actor.tenant_id,
            action="stock.movement-request.bulk-fulfill",
            entity_type="stock_movement_request",
            entity_id=reference_id,
            actor_user_id=actor.user_id,
            after={
                "request_ids": list(request_ids),
                "fulfilled_request_ids": [req.id for req in fulfilled],
                "movement_count": len(results),
                "destination_city": dest_city,
            },
        )
        for req in fulfilled:
            realtime.enqueue(db.session, actor.tenant_id, "stock.movement-request.fulfilled", _request_payload(req))

        return {
            "reference_type": reference_type,
            "reference_id": reference_id,
            "destination_city": dest_city,
            "fulfilled_request_ids": [req.id for req in fulfilled],
            "movements": [result.to_dict() for result in results],
            "requests": [req.to_dict() for req in requests],
        }

    if not lines:
        raise ValidationError("lines must be a non-empty list")
    return run_in_transaction(_op)
