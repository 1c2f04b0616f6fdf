# backend/pharmadist/routes/catalog.py
"""
Catalog API routes: product presentations.

Exactly one active default per product; deactivating the default needs a
replacement_default_id to promote.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import DomainError, ValidationError, error_response
from ..extensions import db
from ..services import presentation_service
from ..services.concurrency import run_in_transaction
from ..validation import coerce_int, optional_int, require_int, require_payload
from . import unexpected_error

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.route("/products/<int:product_id>/presentations", methods=["GET"])
@require_auth
@require_permission("CATALOG_READ")
def list_presentations(product_id: int):
    """Query params: include_inactive=1"""
    try:
        presentations = presentation_service.list_presentations(
            g.tenant_id,
            product_id,
            include_inactive=request.args.get("include_inactive", "0") in ("1", "true"),
        )
        return jsonify({"items": [p.to_dict() for p in presentations]}), 200
    except DomainError as e:
        return error_response(e)


@catalog_bp.route("/products/<int:product_id>/presentations", methods=["POST"])
@require_auth
@require_permission("CATALOG_WRITE")
def create_presentation(product_id: int):
    """
    Add a presentation to a product.

    Request body:
    {
        "name": str,
        "units_per_presentation": int >= 1,
        "price_override": num (optional, price of one presentation),
        "is_default": bool (optional; the first presentation always is),
        "sort_order": int (optional)
    }
    """
    try:
        payload = require_payload(request.get_json(silent=True))
        is_default = payload.get("is_default", False)
        if not isinstance(is_default, bool):
            raise ValidationError("is_default must be a boolean")
        presentation = run_in_transaction(
            lambda: presentation_service.create_presentation(
                tenant_id=g.tenant_id,
                product_id=product_id,
                name=str(payload.get("name") or ""),
                units_per_presentation=require_int(payload, "units_per_presentation"),
                price_override=payload.get("price_override"),
                is_default=is_default,
                sort_order=coerce_int(payload.get("sort_order", 0), "sort_order"),
                actor_user_id=g.current_user.id,
            )
        )
        return jsonify(presentation.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@catalog_bp.route("/presentations/<int:presentation_id>/default", methods=["POST"])
@require_auth
@require_permission("CATALOG_WRITE")
def set_default_presentation(presentation_id: int):
    """Request body (optional): {"version": int}"""
    try:
        payload = require_payload(request.get_json(silent=True))
        presentation = run_in_transaction(
            lambda: presentation_service.set_default_presentation(
                tenant_id=g.tenant_id,
                presentation_id=presentation_id,
                expected_version=optional_int(payload, "version"),
                actor_user_id=g.current_user.id,
            )
        )
        return jsonify(presentation.to_dict()), 200
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@catalog_bp.route("/presentations/<int:presentation_id>/deactivate", methods=["POST"])
@require_auth
@require_permission("CATALOG_WRITE")
def deactivate_presentation(presentation_id: int):
    """Request body: {"replacement_default_id": int} when deactivating the default"""
    try:
        payload = require_payload(request.get_json(silent=True))
        presentation = run_in_transaction(
            lambda: presentation_service.deactivate_presentation(
                tenant_id=g.tenant_id,
                presentation_id=presentation_id,
                replacement_default_id=optional_int(payload, "replacement_default_id"),
                actor_user_id=g.current_user.id,
            )
        )
        return jsonify(presentation.to_dict()), 200
    except DomainError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)
