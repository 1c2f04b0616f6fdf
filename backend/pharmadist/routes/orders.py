# backend/pharmadist/routes/orders.py
"""
Sales order API routes.

Orders are created by processing a quote; here they are read, shipped
(fulfill) or cancelled. Both transitions settle the order's reservations.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import DomainError, error_response
from ..extensions import db
from ..services import sales_order_service
from . import unexpected_error

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.route("", methods=["GET"])
@require_auth
@require_permission("SALES_READ")
def list_orders():
    """Query params: status, cursor (id), limit"""
    try:
        page = sales_order_service.list_orders(
            g.actor,
            status=request.args.get("status"),
            cursor=request.args.get("cursor", type=int),
            limit=request.args.get("limit", default=sales_order_service.DEFAULT_PAGE_SIZE, type=int),
        )
        return jsonify(page), 200
    except DomainError as e:
        return error_response(e)


@orders_bp.route("/<int:order_id>", methods=["GET"])
@require_auth
@require_permission("SALES_READ")
def get_order(order_id: int):
    try:
        order = sales_order_service.get_order(g.actor, order_id)
        return jsonify(sales_order_service.order_to_dict(order)), 200
    except DomainError as e:
        return error_response(e)


@orders_bp.route("/<int:order_id>/fulfill", methods=["POST"])
@require_auth
@require_permission("STOCK_MOVE")
def fulfill_order(order_id: int):
    """
    Ship the reserved stock of a CONFIRMED order.

    Returns:
        200: {order, movements, balances}
        403: Order outside the actor's branch city
        409: Order not CONFIRMED
    """
    try:
        return jsonify(sales_order_service.fulfill_order(g.actor, order_id)), 200
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@orders_bp.route("/<int:order_id>/cancel", methods=["POST"])
@require_auth
@require_permission("SALES_WRITE")
def cancel_order(order_id: int):
    try:
        return jsonify(sales_order_service.cancel_order(g.actor, order_id)), 200
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)
