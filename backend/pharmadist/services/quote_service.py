# Overview: Quote CRUD and the quote -> sales order processing transaction.

"""
Quotes.

LIFECYCLE: CREATED -> PROCESSED (terminal).
- Lines and header fields are editable only while CREATED.
- process_quote() runs once: it creates the sales order and its lines,
  reserves same-city stock for them and flips the quote to PROCESSED, all
  in one transaction. A shortage leaves the quote CREATED and persists no
  order, line, reservation or balance change.

CITY: a quote is served from its delivery city, or from its customer's city
when no delivery city is set (Quote.effective_city).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    QUOTE_STATUS_CREATED,
    QUOTE_STATUS_PROCESSED,
    Customer,
    InventoryBalance,
    Quote,
    QuoteLine,
    SalesOrder,
    SalesOrderLine,
    SalesOrderReservation,
)
from ..quantities import HUNDRED, ZERO, format_quantity, is_short
from ..time_utils import add_days, today_utc, utcnow
from ..validation import QuoteInput
from . import realtime
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_in_transaction
from .presentation_service import resolve_lines
from .reservation_service import AllocationLine, reserve_for_order_in_city_or_fail
from .sequence_service import derive_order_number, next_sequence
from .session_service import ActorContext
from .stock_service import ShortageItem, available_in_city, normalize_city, require_city

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def discounted(amount: Decimal, pct: Decimal | None) -> Decimal:
    return amount * (HUNDRED - (pct or ZERO)) / HUNDRED


def order_line_price(unit_price: Decimal, line_discount_pct: Decimal, global_discount_pct: Decimal) -> Decimal:
    """unit_price x (1 - line%) x (1 - global%)."""
    return discounted(discounted(unit_price, line_discount_pct), global_discount_pct)


def quote_totals(quote: Quote) -> dict:
    subtotal = ZERO
    for line in quote.lines:
        subtotal += discounted(line.quantity * line.unit_price, line.discount_pct)
    global_discount = subtotal * (quote.global_discount_pct or ZERO) / HUNDRED
    return {
        "subtotal": format_quantity(subtotal),
        "global_discount_amount": format_quantity(global_discount),
        "total": format_quantity(subtotal - global_discount),
    }


def quote_to_dict(quote: Quote, *, include_lines: bool = True) -> dict:
    data = quote.to_dict()
    data["city"] = quote.effective_city
    data.update(quote_totals(quote))
    if include_lines:
        data["lines"] = [line.to_dict() for line in quote.lines]
    return data


def _get_customer(tenant_id: int, customer_id: int) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id, tenant_id=tenant_id).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    if not customer.is_active:
        raise ValidationError("Customer is not active")
    return customer


def get_quote(tenant_id: int, quote_id: int, *, lock: bool = False) -> Quote:
    query = db.session.query(Quote).filter_by(id=quote_id, tenant_id=tenant_id)
    if lock:
        query = lock_for_update(query)
    quote = query.first()
    if not quote:
        raise NotFoundError("Quote not found")
    return quote


def list_quotes(
    actor: ActorContext,
    *,
    cursor: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    status: str | None = None,
    search: str | None = None,
) -> dict:
    """Newest first, keyset-paginated by id. Branch-scoped actors see their city only."""
    limit = max(1, min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))
    query = (
        db.session.query(Quote)
        .join(Customer, Customer.id == Quote.customer_id)
        .filter(Quote.tenant_id == actor.tenant_id)
    )
    if status:
        query = query.filter(Quote.status == status.upper())
    if search:
        query = query.filter(func.lower(Customer.name).contains(search.strip().lower()))
    scoped_city = actor.require_branch_city()
    if scoped_city:
        city_expr = func.upper(func.trim(func.coalesce(Quote.delivery_city, Customer.city)))
        query = query.filter(city_expr == scoped_city)
    if cursor:
        query = query.filter(Quote.id < cursor)

    rows = query.order_by(Quote.id.desc()).limit(limit + 1).all()
    has_more = len(rows) > limit
    rows = rows[:limit]
    return {
        "items": [quote_to_dict(q, include_lines=False) for q in rows],
        "next_cursor": rows[-1].id if has_more and rows else None,
    }


def _build_lines(tenant_id: int, data: QuoteInput) -> list[QuoteLine]:
    lines = []
    for resolved, raw in zip(resolve_lines(tenant_id, data.lines), data.lines):
        lines.append(
            QuoteLine(
                tenant_id=tenant_id,
                product_id=resolved.product_id,
                quantity=resolved.quantity,
                presentation_id=resolved.presentation_id,
                presentation_quantity=resolved.presentation_quantity,
                unit_price=resolved.unit_price,
                discount_pct=raw.discount_pct,
            )
        )
    return lines


def _check_quote_city(actor: ActorContext, quote: Quote) -> None:
    actor.ensure_city(quote.effective_city, "Quote belongs to another branch city")


def get_quote_for_actor(actor: ActorContext, quote_id: int) -> Quote:
    """get_quote() plus the branch-city check branch-scoped readers are held to."""
    quote = get_quote(actor.tenant_id, quote_id)
    _check_quote_city(actor, quote)
    return quote


def create_quote(actor: ActorContext, data: QuoteInput) -> Quote:
    tenant_id = actor.tenant_id

    def _op():
        customer = _get_customer(tenant_id, data.customer_id)
        seq = next_sequence(tenant_id=tenant_id, key="COT")
        quote = Quote(
            tenant_id=tenant_id,
            number=seq.number,
            customer_id=customer.id,
            status=QUOTE_STATUS_CREATED,
            validity_days=data.validity_days,
            payment_mode=data.payment_mode or "CASH",
            delivery_days=data.delivery_days,
            delivery_city=normalize_city(data.delivery_city) or None,
            delivery_address=data.delivery_address or customer.address,
            global_discount_pct=data.global_discount_pct or ZERO,
            proposal_value=data.proposal_value,
            note=data.note,
            created_by_user_id=actor.user_id,
        )
        quote.customer = customer
        _check_quote_city(actor, quote)
        quote.lines = _build_lines(tenant_id, data)
        db.session.add(quote)
        db.session.flush()

        append_audit_event(
            tenant_id=tenant_id,
            action="quote.create",
            entity_type="quote",
            entity_id=quote.id,
            actor_user_id=actor.user_id,
            after=quote_to_dict(quote),
        )
        return quote

    return run_in_transaction(_op)


def update_quote(actor: ActorContext, quote_id: int, data: QuoteInput, *, expected_version: int | None = None) -> Quote:
    """Apply the fields present in data. Only CREATED quotes can change."""
    tenant_id = actor.tenant_id

    def _op():
        quote = get_quote(tenant_id, quote_id, lock=True)
        if quote.status != QUOTE_STATUS_CREATED:
            raise ConflictError("Only quotes in CREATED status can be edited")
        if expected_version is not None and quote.version != expected_version:
            raise ConflictError("Quote was modified by someone else")
        _check_quote_city(actor, quote)
        before = quote_to_dict(quote)

        fields = data.fields
        if "customer_id" in fields:
            quote.customer = _get_customer(tenant_id, data.customer_id)
        if "validity_days" in fields:
            quote.validity_days = data.validity_days
        if "payment_mode" in fields:
            quote.payment_mode = data.payment_mode or "CASH"
        if "delivery_days" in fields:
            quote.delivery_days = data.delivery_days
        if "delivery_city" in fields:
            quote.delivery_city = normalize_city(data.delivery_city) or None
        if "delivery_address" in fields:
            quote.delivery_address = data.delivery_address
        if "global_discount_pct" in fields:
            quote.global_discount_pct = data.global_discount_pct
        if "proposal_value" in fields:
            quote.proposal_value = data.proposal_value
        if "note" in fields:
            quote.note = data.note
        # The new city must still be the actor's
        _check_quote_city(actor, quote)

        if "lines" in fields:
            quote.lines = _build_lines(tenant_id, data)

        db.session.flush()
        append_audit_event(
            tenant_id=tenant_id,
            action="quote.update",
            entity_type="quote",
            entity_id=quote.id,
            actor_user_id=actor.user_id,
            before=before,
            after=quote_to_dict(quote),
        )
        return quote

    return run_in_transaction(_op)


def delete_quote(actor: ActorContext, quote_id: int) -> None:
    tenant_id = actor.tenant_id

    def _op():
        quote = get_quote(tenant_id, quote_id, lock=True)
        if quote.status != QUOTE_STATUS_CREATED:
            raise ConflictError("Only quotes in CREATED status can be deleted")
        _check_quote_city(actor, quote)
        before = quote_to_dict(quote)
        db.session.delete(quote)
        db.session.flush()
        append_audit_event(
            tenant_id=tenant_id,
            action="quote.delete",
            entity_type="quote",
            entity_id=quote_id,
            actor_user_id=actor.user_id,
            before=before,
        )

    run_in_transaction(_op)


@dataclass
class ProcessResult:
    order: SalesOrder
    reservations: list[SalesOrderReservation] = field(default_factory=list)
    changed_balances: list[InventoryBalance] = field(default_factory=list)

    def to_dict(self) -> dict:
        order = self.order.to_dict()
        order["lines"] = [line.to_dict() for line in self.order.lines]
        return {
            "order": order,
            "reservations": [r.to_dict() for r in self.reservations],
            "changed_balances": [b.to_dict() for b in self.changed_balances],
        }


def process_quote(quote_id: int, actor: ActorContext) -> ProcessResult:
    """
    Turn a CREATED quote into a CONFIRMED sales order with reserved stock.

    One transaction: order, lines, reservations, balance counters, quote
    status and audit rows commit together or not at all. Realtime events
    go out only after the commit.

    Raises NotFoundError, ConflictError (already processed, version
    conflict), ForbiddenError (branch city mismatch) or
    InsufficientStockInCityError.
    """
    tenant_id = actor.tenant_id

    def _op():
        quote = get_quote(tenant_id, quote_id, lock=True)
        if quote.status == QUOTE_STATUS_PROCESSED:
            raise ConflictError("Quote already processed")
        if quote.status != QUOTE_STATUS_CREATED:
            raise ConflictError(f"Quote cannot be processed in {quote.status} status")
        if not quote.lines:
            raise ValidationError("Quote has no lines")

        city = normalize_city(quote.effective_city)
        if not city:
            raise ValidationError("Quote has no delivery city and its customer has no city")
        actor.ensure_city(city, "Quote belongs to another branch city")

        delivery_date = add_days(today_utc(), quote.delivery_days or 0)
        number = derive_order_number(quote.number) or next_sequence(tenant_id=tenant_id, key="OV").number

        order = SalesOrder(
            tenant_id=tenant_id,
            number=number,
            customer_id=quote.customer_id,
            quote_id=quote.id,
            city=city,
            delivery_date=delivery_date,
            delivery_address=quote.delivery_address,
            note=quote.note,
            created_by_user_id=actor.user_id,
        )
        db.session.add(order)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Another transaction already created this quote's order
            raise ConflictError("Quote already processed") from exc

        allocation_lines = []
        for quote_line in quote.lines:
            order_line = SalesOrderLine(
                tenant_id=tenant_id,
                sales_order_id=order.id,
                product_id=quote_line.product_id,
                quantity=quote_line.quantity,
                presentation_id=quote_line.presentation_id,
                presentation_quantity=quote_line.presentation_quantity,
                unit_price=order_line_price(
                    quote_line.unit_price,
                    quote_line.discount_pct,
                    quote.global_discount_pct,
                ),
            )
            db.session.add(order_line)
            db.session.flush()
            allocation_lines.append(
                AllocationLine(
                    id=order_line.id,
                    product_id=order_line.product_id,
                    quantity=order_line.quantity,
                    batch_id=order_line.batch_id,
                    presentation_id=order_line.presentation_id,
                    presentation_quantity=order_line.presentation_quantity,
                )
            )

        allocation = reserve_for_order_in_city_or_fail(
            tenant_id=tenant_id,
            user_id=actor.user_id,
            order_id=order.id,
            city=city,
            lines=allocation_lines,
        )

        before = {"status": quote.status, "version": quote.version}
        quote.status = QUOTE_STATUS_PROCESSED
        quote.processed_at = utcnow()
        db.session.flush()

        result = ProcessResult(
            order=order,
            reservations=allocation.reservations,
            changed_balances=allocation.changed_balances,
        )
        payload = result.to_dict()

        append_audit_event(
            tenant_id=tenant_id,
            action="quote.process",
            entity_type="quote",
            entity_id=quote.id,
            actor_user_id=actor.user_id,
            before=before,
            after={"status": quote.status, "sales_order_id": order.id, "sales_order_number": order.number},
        )
        append_audit_event(
            tenant_id=tenant_id,
            action="sales.order.create",
            entity_type="sales_order",
            entity_id=order.id,
            actor_user_id=actor.user_id,
            after=payload["order"],
            metadata={"quote_id": quote.id, "reservations": len(allocation.reservations)},
        )

        realtime.enqueue(db.session, tenant_id, "sales.quote.processed", {
            "id": quote.id,
            "number": quote.number,
            "status": quote.status,
            "sales_order_id": order.id,
        })
        realtime.enqueue(db.session, tenant_id, "sales.order.created", payload["order"])
        for balance in payload["changed_balances"]:
            realtime.enqueue(db.session, tenant_id, "stock.balance.changed", balance)
        return result

    return run_in_transaction(_op)


def quote_shortages(actor: ActorContext, quote_id: int) -> dict:
    """Read-only availability of a quote's lines in its city."""
    quote = get_quote(actor.tenant_id, quote_id)
    _check_quote_city(actor, quote)
    city = require_city(quote.effective_city)
    return {"quote_id": quote.id, "city": city, "items": shortage_items_for_quote(quote, city)}


def shortage_items_for_quote(quote: Quote, city: str) -> list[ShortageItem]:
    today = today_utc()
    items = []
    for line in quote.lines:
        available = available_in_city(quote.tenant_id, city, line.product_id, today=today)
        if is_short(available, line.quantity):
            items.append(
                ShortageItem(
                    product_id=line.product_id,
                    product_name=line.product.name if line.product else None,
                    required=line.quantity,
                    available=available,
                    presentation_id=line.presentation_id,
                    presentation_quantity=line.presentation_quantity,
                )
            )
    return items
