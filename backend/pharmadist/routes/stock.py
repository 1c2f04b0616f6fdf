# backend/pharmadist/routes/stock.py
"""
Stock API routes: city availability, balances, reservations, expiry,
movements and cross-branch movement requests.

SECURITY: Branch-scoped users only see and act on their own city; the
services enforce it, the routes only pass the actor along.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import DomainError, ValidationError, error_response
from ..extensions import db
from ..services import movement_request_service, reservation_service, stock_service
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    MAX_NOTE_LENGTH,
    optional_int,
    optional_str,
    parse_id_list,
    parse_line,
    parse_lines,
    require_int,
    require_payload,
)
from . import unexpected_error

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.route("/shortages", methods=["POST"])
@require_auth
@require_permission("STOCK_READ")
def check_shortages():
    """
    Check lines against the stock of one city. Read only.

    Request body:
    {
        "city": str (defaults to the user's branch city),
        "lines": [{"product_id": int, "quantity": num} |
                  {"product_id": int, "presentation_id": int, "presentation_quantity": num}]
    }

    Returns:
        200: {city, ok, items: [shortage, ...]}
    """
    try:
        payload = require_payload(request.get_json(silent=True))
        lines = parse_lines(payload.get("lines"))
        city = stock_service.normalize_city(payload.get("city")) or g.actor.require_branch_city()
        city = stock_service.require_city(city)
        g.actor.ensure_city(city, "You can only check stock for your branch city")

        items = stock_service.compute_shortages(g.tenant_id, city, lines)
        return jsonify({
            "city": city,
            "ok": not items,
            "items": [item.to_dict() for item in items],
        }), 200
    except DomainError as e:
        return error_response(e)


@stock_bp.route("/balances", methods=["GET"])
@require_auth
@require_permission("STOCK_READ")
def list_balances():
    """Query params: product_id, city, location_id, available=1, limit"""
    try:
        city = request.args.get("city")
        scoped_city = g.actor.require_branch_city()
        if scoped_city:
            if city:
                g.actor.ensure_city(city, "You can only view stock of your branch city")
            city = scoped_city
        items = stock_service.list_balances(
            g.tenant_id,
            product_id=request.args.get("product_id", type=int),
            city=city,
            location_id=request.args.get("location_id", type=int),
            only_available=request.args.get("available", "0") in ("1", "true"),
            limit=max(1, min(request.args.get("limit", default=200, type=int), 1000)),
        )
        return jsonify({"items": items}), 200
    except DomainError as e:
        return error_response(e)


@stock_bp.route("/reservations", methods=["GET"])
@require_auth
@require_permission("STOCK_READ")
def list_reservations():
    """
    Reservations held against one balance, newest first.

    Query params: balance_id (required), active=1 to hide released rows
    """
    try:
        balance_id = request.args.get("balance_id", type=int)
        if not balance_id:
            raise ValidationError("balance_id is required")
        items = reservation_service.list_balance_reservations(
            g.actor,
            balance_id,
            active_only=request.args.get("active", "0") in ("1", "true"),
        )
        return jsonify({"items": items}), 200
    except DomainError as e:
        return error_response(e)


@stock_bp.route("/fefo-suggestions", methods=["GET"])
@require_auth
@require_permission("STOCK_READ")
def fefo_suggestions():
    """
    Batches to pick from first for a product.

    Query params: product_id (required), location_id | warehouse_id, limit (1-50)
    """
    try:
        product_id = request.args.get("product_id", type=int)
        if not product_id:
            raise ValidationError("product_id is required")
        location_id = request.args.get("location_id", type=int)
        warehouse_id = request.args.get("warehouse_id", type=int)
        if location_id:
            g.actor.ensure_city(stock_service.location_city(g.tenant_id, location_id), "You can only view stock of your branch city")
        elif warehouse_id:
            g.actor.ensure_city(stock_service.warehouse_city(g.tenant_id, warehouse_id), "You can only view stock of your branch city")

        items = stock_service.fefo_suggestions(
            g.tenant_id,
            product_id,
            location_id=location_id,
            warehouse_id=warehouse_id,
            limit=max(1, min(request.args.get("limit", default=10, type=int), 50)),
        )
        return jsonify({"items": items}), 200
    except DomainError as e:
        return error_response(e)


@stock_bp.route("/expiry/summary", methods=["GET"])
@require_auth
@require_permission("STOCK_READ")
def expiry_summary():
    """
    Batched stock by expiry, soonest first.

    Query params: city, warehouse_id, status (EXPIRED|RED|YELLOW|GREEN),
    days_to_expire_max, limit (1-200)
    """
    try:
        city = request.args.get("city")
        warehouse_id = request.args.get("warehouse_id", type=int)
        scoped_city = g.actor.require_branch_city()
        if scoped_city:
            if city:
                g.actor.ensure_city(city, "You can only view stock of your branch city")
            if warehouse_id:
                g.actor.ensure_city(stock_service.warehouse_city(g.tenant_id, warehouse_id), "You can only view stock of your branch city")
            city = scoped_city

        items = stock_service.expiry_summary(
            g.tenant_id,
            city=city,
            warehouse_id=warehouse_id,
            status=request.args.get("status"),
            days_to_expire_max=request.args.get("days_to_expire_max", type=int),
            limit=max(1, min(request.args.get("limit", default=100, type=int), 200)),
        )
        return jsonify({"items": items, "generated_at": to_utc_z(utcnow())}), 200
    except DomainError as e:
        return error_response(e)


@stock_bp.route("/movements", methods=["POST"])
@require_auth
@require_permission("STOCK_MOVE")
def create_movement():
    """
    Record a single movement.

    Request body:
    {
        "type": "IN" | "OUT" | "TRANSFER" | "ADJUSTMENT",
        "product_id": int,
        "quantity": num | "presentation_id": int + "presentation_quantity": num,
        "batch_id": int (optional),
        "from_location_id": int, "to_location_id": int (as the type requires),
        "reference_type": str, "reference_id": str, "note": str (optional)
    }

    Returns:
        201: {movement, from_balance, to_balance}
        409: Insufficient stock, or BATCH_EXPIRED when moving expired stock out
    """
    try:
        payload = require_payload(request.get_json(silent=True))
        movement_type = str(payload.get("type") or "").strip().upper()
        if not movement_type:
            raise ValidationError("Missing required field: type")
        line = parse_line(payload)

        result = stock_service.create_stock_movement(
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
            movement_type=movement_type,
            line=line,
            reference_type=optional_str(payload, "reference_type", max_length=50),
            reference_id=optional_str(payload, "reference_id", max_length=100),
        )
        return jsonify(result.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@stock_bp.route("/bulk-transfers", methods=["POST"])
@require_auth
@require_permission("STOCK_MOVE")
def bulk_transfer():
    """
    Move several lines between two locations in one all-or-nothing call.

    Request body:
    {
        "from_location_id": int,
        "to_location_id": int,
        "lines": [{"product_id", "quantity" | presentation, "batch_id"?, "from_location_id"?}],
        "note": str (optional)
    }
    """
    try:
        payload = require_payload(request.get_json(silent=True))
        result = stock_service.bulk_transfer(
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
            from_location_id=require_int(payload, "from_location_id"),
            to_location_id=require_int(payload, "to_location_id"),
            lines=parse_lines(payload.get("lines")),
            note=optional_str(payload, "note", max_length=MAX_NOTE_LENGTH),
        )
        return jsonify(result), 201
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@stock_bp.route("/movement-requests", methods=["GET"])
@require_auth
@require_permission("STOCK_READ")
def list_movement_requests():
    """Query params: status, city, limit"""
    try:
        requests = movement_request_service.list_movement_requests(
            g.actor,
            status=request.args.get("status"),
            city=request.args.get("city"),
            limit=request.args.get("limit", default=100, type=int),
        )
        return jsonify({"items": [req.to_dict() for req in requests]}), 200
    except DomainError as e:
        return error_response(e)


@stock_bp.route("/movement-requests", methods=["POST"])
@require_auth
@require_permission("STOCK_READ")
def create_movement_request():
    """
    Ask another branch for stock.

    Request body:
    {
        "warehouse_id": int | "city": str (both optional; default is the user's branch),
        "lines": [{"product_id", "quantity" | presentation}],
        "note": str (optional)
    }
    """
    try:
        payload = require_payload(request.get_json(silent=True))
        req = movement_request_service.create_movement_request(
            g.actor,
            lines=parse_lines(payload.get("lines")),
            warehouse_id=optional_int(payload, "warehouse_id"),
            city=optional_str(payload, "city", max_length=80),
            note=optional_str(payload, "note", max_length=MAX_NOTE_LENGTH),
        )
        return jsonify(req.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@stock_bp.route("/movement-requests/<int:request_id>/cancel", methods=["POST"])
@require_auth
@require_permission("STOCK_MOVE")
def cancel_movement_request(request_id: int):
    try:
        req = movement_request_service.cancel_movement_request(g.actor, request_id)
        return jsonify(req.to_dict()), 200
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@stock_bp.route("/movement-requests/bulk-fulfill", methods=["POST"])
@require_auth
@require_permission("STOCK_MOVE")
def bulk_fulfill_movement_requests():
    """
    Ship stock into the requesting city and settle the selected requests.

    Request body:
    {
        "request_ids": [int, ...],
        "from_location_id": int,
        "to_location_id": int (a location in the requests' city),
        "lines": [{"product_id", "quantity" | presentation, "batch_id"?, "from_location_id"?}],
        "note": str (optional)
    }

    Returns:
        200: {reference_type, reference_id, destination_city,
              fulfilled_request_ids, movements, requests}
    """
    try:
        payload = require_payload(request.get_json(silent=True))
        result = movement_request_service.bulk_fulfill(
            g.actor,
            request_ids=parse_id_list(payload.get("request_ids"), "request_ids"),
            from_location_id=require_int(payload, "from_location_id"),
            to_location_id=require_int(payload, "to_location_id"),
            lines=parse_lines(payload.get("lines")),
            note=optional_str(payload, "note", max_length=MAX_NOTE_LENGTH),
        )
        return jsonify(result), 200
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)
