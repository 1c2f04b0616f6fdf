# backend/pharmadist/routes/quotes.py
"""
Sales quote API routes.

Processing a quote is the one call that reserves stock; a shortage comes
back as 409 with the INSUFFICIENT_STOCK_IN_CITY body, unchanged.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import DomainError, error_response
from ..extensions import db
from ..services import movement_request_service, quote_service
from ..validation import MAX_NOTE_LENGTH, optional_int, optional_str, parse_quote, require_payload
from . import unexpected_error

quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


@quotes_bp.route("", methods=["GET"])
@require_auth
@require_permission("SALES_READ")
def list_quotes():
    """
    List quotes, newest first.

    Query params: cursor (id), limit, status, q (customer name)
    """
    try:
        page = quote_service.list_quotes(
            g.actor,
            cursor=request.args.get("cursor", type=int),
            limit=request.args.get("limit", default=quote_service.DEFAULT_PAGE_SIZE, type=int),
            status=request.args.get("status"),
            search=request.args.get("q"),
        )
        return jsonify(page), 200
    except DomainError as e:
        return error_response(e)


@quotes_bp.route("", methods=["POST"])
@require_auth
@require_permission("SALES_WRITE")
def create_quote():
    """
    Create a quote.

    Request body:
    {
        "customer_id": int,
        "lines": [{"product_id": int, "quantity": num} |
                  {"product_id": int, "presentation_id": int, "presentation_quantity": num},
                  ... optional "unit_price", "discount_pct"],
        "validity_days", "payment_mode", "delivery_days", "delivery_city",
        "delivery_address", "global_discount_pct", "proposal_value", "note"
    }

    Returns:
        201: Quote created
        400: Invalid request
        404: Customer/product not found
    """
    try:
        data = parse_quote(request.get_json(silent=True))
        quote = quote_service.create_quote(g.actor, data)
        return jsonify(quote_service.quote_to_dict(quote)), 201
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@quotes_bp.route("/<int:quote_id>", methods=["GET"])
@require_auth
@require_permission("SALES_READ")
def get_quote(quote_id: int):
    try:
        quote = quote_service.get_quote_for_actor(g.actor, quote_id)
        return jsonify(quote_service.quote_to_dict(quote)), 200
    except DomainError as e:
        return error_response(e)


@quotes_bp.route("/<int:quote_id>", methods=["PUT"])
@require_auth
@require_permission("SALES_WRITE")
def update_quote(quote_id: int):
    """
    Update a CREATED quote. Only the keys present are changed; "version"
    (optional) must match the current version.
    """
    try:
        payload = require_payload(request.get_json(silent=True))
        data = parse_quote(payload, partial=True)
        quote = quote_service.update_quote(
            g.actor,
            quote_id,
            data,
            expected_version=optional_int(payload, "version"),
        )
        return jsonify(quote_service.quote_to_dict(quote)), 200
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@quotes_bp.route("/<int:quote_id>", methods=["DELETE"])
@require_auth
@require_permission("SALES_WRITE")
def delete_quote(quote_id: int):
    try:
        quote_service.delete_quote(g.actor, quote_id)
        return jsonify({"deleted": True, "id": quote_id}), 200
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@quotes_bp.route("/<int:quote_id>/process", methods=["POST"])
@require_auth
@require_permission("SALES_PROCESS")
def process_quote(quote_id: int):
    """
    Turn the quote into a sales order with reserved stock.

    Returns:
        201: {order, reservations, changed_balances}
        403: Quote outside the actor's branch city
        404: Quote not found
        409: Already processed, version conflict, or INSUFFICIENT_STOCK_IN_CITY
    """
    try:
        result = quote_service.process_quote(quote_id, g.actor)
        return jsonify(result.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@quotes_bp.route("/<int:quote_id>/shortages", methods=["GET"])
@require_auth
@require_permission("SALES_READ")
def quote_shortages(quote_id: int):
    try:
        report = quote_service.quote_shortages(g.actor, quote_id)
        report["items"] = [item.to_dict() for item in report["items"]]
        return jsonify(report), 200
    except DomainError as e:
        return error_response(e)


@quotes_bp.route("/<int:quote_id>/stock-request", methods=["POST"])
@require_auth
@require_permission("SALES_WRITE")
def request_stock(quote_id: int):
    """Open a stock movement request for what the quote's city is missing."""
    try:
        payload = require_payload(request.get_json(silent=True))
        req = movement_request_service.request_stock_for_quote(
            g.actor,
            quote_id,
            note=optional_str(payload, "note", max_length=MAX_NOTE_LENGTH),
        )
        return jsonify(req.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)
