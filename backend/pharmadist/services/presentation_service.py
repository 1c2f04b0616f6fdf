# Overview: Presentation factor resolution, pricing and presentation lifecycle.

"""
Quantity/presentation resolution.

Stock is tracked in base units only. A line may be entered either in base
units or as N units of a presentation ("3 Caja" with factor 12 = 36 base
units); resolve_line() turns either form into the canonical base quantity
and works out the per-base-unit price.

Presentation lifecycle:
- Exactly one default per product. The application keeps this invariant;
  the partial unique index uq_presentations_product_default backs it up.
- Deactivating the default requires promoting a replacement.
- The last active presentation of a product cannot be deactivated.
- "Unidad" (factor 1) is created lazily for products that have none.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ProductPresentation
from ..quantities import ZERO, to_decimal
from ..validation import LineInput
from .audit_service import append_audit_event

logger = logging.getLogger(__name__)

UNIT_PRESENTATION_NAME = "Unidad"


@dataclass(frozen=True)
class ResolvedLine:
    """A line in canonical form: base units plus a per-base-unit price."""
    product: Product
    quantity: Decimal
    presentation_id: int | None
    presentation_quantity: Decimal | None
    unit_price: Decimal
    factor: int = 1

    @property
    def product_id(self) -> int:
        return self.product.id


def get_product(tenant_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_presentation_for_product(tenant_id: int, product_id: int, presentation_id: int) -> ProductPresentation:
    """
    Load an active presentation of the given product.

    Missing, cross-tenant, inactive or zero-factor presentations are all the
    same input error to the caller.
    """
    presentation = (
        db.session.query(ProductPresentation)
        .filter_by(id=presentation_id, tenant_id=tenant_id, product_id=product_id)
        .first()
    )
    if not presentation or not presentation.is_active:
        raise ValidationError(f"Invalid presentation {presentation_id} for product {product_id}")
    if (presentation.units_per_presentation or 0) <= 0:
        raise ValidationError(f"Presentation {presentation_id} has an invalid factor")
    return presentation


def base_quantity(presentation_quantity: Decimal, factor: int) -> Decimal:
    return presentation_quantity * Decimal(factor)


def resolve_unit_price(
    product: Product,
    presentation: ProductPresentation | None,
    explicit_price: Decimal | None = None,
) -> Decimal:
    """
    Per-base-unit price: explicit price, else the presentation's
    price_override / factor, else the product price.
    """
    if explicit_price is not None:
        return explicit_price
    if presentation is not None and presentation.price_override is not None:
        return presentation.price_override / Decimal(presentation.units_per_presentation)
    return product.price if product.price is not None else ZERO


def ensure_unit_presentation(tenant_id: int, product_id: int) -> ProductPresentation | None:
    """
    Return the product's display presentation, creating "Unidad" if the
    product has no active presentation at all.

    Preference: active default, then lowest sort_order, then id.
    """
    existing = _first_active_presentation(tenant_id, product_id)
    if existing:
        return existing

    has_default = (
        db.session.query(ProductPresentation.id)
        .filter_by(tenant_id=tenant_id, product_id=product_id, is_default=True)
        .first()
        is not None
    )
    try:
        with db.session.begin_nested():
            unit = ProductPresentation(
                tenant_id=tenant_id,
                product_id=product_id,
                name=UNIT_PRESENTATION_NAME,
                units_per_presentation=1,
                is_default=not has_default,
                sort_order=0,
                is_active=True,
            )
            db.session.add(unit)
        return unit
    except IntegrityError:
        # Created concurrently, or an inactive "Unidad" already holds the name
        logger.info("Unit presentation for product %s already exists", product_id)
        return _first_active_presentation(tenant_id, product_id)


def _first_active_presentation(tenant_id: int, product_id: int) -> ProductPresentation | None:
    return (
        db.session.query(ProductPresentation)
        .filter_by(tenant_id=tenant_id, product_id=product_id, is_active=True)
        .order_by(
            ProductPresentation.is_default.desc(),
            ProductPresentation.sort_order.asc(),
            ProductPresentation.id.asc(),
        )
        .first()
    )


def resolve_line(tenant_id: int, line: LineInput) -> ResolvedLine:
    """
    Resolve one validated line to base units and a per-base-unit price.

    Lines given in base units are still tagged with the product's default
    presentation for display; their quantity is used as-is.
    """
    product = get_product(tenant_id, line.product_id)

    if line.uses_presentation:
        presentation = get_presentation_for_product(tenant_id, product.id, line.presentation_id)
        factor = presentation.units_per_presentation
        return ResolvedLine(
            product=product,
            quantity=base_quantity(line.presentation_quantity, factor),
            presentation_id=presentation.id,
            presentation_quantity=line.presentation_quantity,
            unit_price=resolve_unit_price(product, presentation, line.unit_price),
            factor=factor,
        )

    display = ensure_unit_presentation(tenant_id, product.id)
    presentation_quantity = None
    factor = 1
    if display is not None and display.units_per_presentation:
        factor = display.units_per_presentation
        presentation_quantity = line.quantity / Decimal(factor)
    return ResolvedLine(
        product=product,
        quantity=line.quantity,
        presentation_id=display.id if display else None,
        presentation_quantity=presentation_quantity,
        unit_price=resolve_unit_price(product, None, line.unit_price),
        factor=factor,
    )


def resolve_lines(tenant_id: int, lines: list[LineInput]) -> list[ResolvedLine]:
    return [resolve_line(tenant_id, line) for line in lines]


def required_base_quantity(tenant_id: int, line: LineInput) -> Decimal:
    """Base units a line asks for. Read-only: never creates presentations."""
    if not line.uses_presentation:
        return line.quantity
    presentation = get_presentation_for_product(tenant_id, line.product_id, line.presentation_id)
    return base_quantity(line.presentation_quantity, presentation.units_per_presentation)


# Presentation management


def list_presentations(tenant_id: int, product_id: int, *, include_inactive: bool = False) -> list[ProductPresentation]:
    get_product(tenant_id, product_id)
    query = db.session.query(ProductPresentation).filter_by(tenant_id=tenant_id, product_id=product_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(ProductPresentation.sort_order.asc(), ProductPresentation.id.asc()).all()


def create_presentation(
    *,
    tenant_id: int,
    product_id: int,
    name: str,
    units_per_presentation: int,
    price_override=None,
    is_default: bool = False,
    sort_order: int = 0,
    actor_user_id: int | None = None,
) -> ProductPresentation:
    product = get_product(tenant_id, product_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    if units_per_presentation is None or units_per_presentation < 1:
        raise ValidationError("units_per_presentation must be >= 1")
    price = None
    if price_override is not None:
        price = to_decimal(price_override, "price_override")
        if price < ZERO:
            raise ValidationError("price_override must be >= 0")

    duplicate = (
        db.session.query(ProductPresentation.id)
        .filter_by(tenant_id=tenant_id, product_id=product.id, name=name)
        .first()
    )
    if duplicate:
        raise ConflictError(f"Presentation '{name}' already exists for this product")

    has_active = _first_active_presentation(tenant_id, product.id) is not None
    if is_default or not has_active:
        _clear_default(tenant_id, product.id)
        is_default = True

    presentation = ProductPresentation(
        tenant_id=tenant_id,
        product_id=product.id,
        name=name,
        units_per_presentation=units_per_presentation,
        price_override=price,
        is_default=is_default,
        sort_order=sort_order,
        is_active=True,
    )
    db.session.add(presentation)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConflictError("Product already has a default presentation") from exc

    append_audit_event(
        tenant_id=tenant_id,
        action="catalog.presentation.create",
        entity_type="product_presentation",
        entity_id=presentation.id,
        actor_user_id=actor_user_id,
        after=presentation.to_dict(),
    )
    return presentation


def _clear_default(tenant_id: int, product_id: int, *, keep_id: int | None = None) -> None:
    current = (
        db.session.query(ProductPresentation)
        .filter_by(tenant_id=tenant_id, product_id=product_id, is_default=True)
        .all()
    )
    for presentation in current:
        if presentation.id != keep_id:
            presentation.is_default = False
    # The old default must be cleared before the new one is set
    db.session.flush()


def _load_presentation(tenant_id: int, presentation_id: int) -> ProductPresentation:
    presentation = (
        db.session.query(ProductPresentation)
        .filter_by(id=presentation_id, tenant_id=tenant_id)
        .first()
    )
    if not presentation:
        raise NotFoundError(f"Presentation {presentation_id} not found")
    return presentation


def set_default_presentation(
    *,
    tenant_id: int,
    presentation_id: int,
    expected_version: int | None = None,
    actor_user_id: int | None = None,
) -> ProductPresentation:
    presentation = _load_presentation(tenant_id, presentation_id)
    if expected_version is not None and presentation.version != expected_version:
        raise ConflictError("Presentation was modified by someone else")
    if not presentation.is_active:
        raise ConflictError("An inactive presentation cannot be the default")
    if presentation.is_default:
        return presentation

    before = presentation.to_dict()
    _clear_default(tenant_id, presentation.product_id, keep_id=presentation.id)
    presentation.is_default = True
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConflictError("Product already has a default presentation") from exc

    append_audit_event(
        tenant_id=tenant_id,
        action="catalog.presentation.set-default",
        entity_type="product_presentation",
        entity_id=presentation.id,
        actor_user_id=actor_user_id,
        before=before,
        after=presentation.to_dict(),
    )
    return presentation


def deactivate_presentation(
    *,
    tenant_id: int,
    presentation_id: int,
    replacement_default_id: int | None = None,
    actor_user_id: int | None = None,
) -> ProductPresentation:
    """
    Deactivate a presentation.

    When it is the product's default, replacement_default_id names the
    active presentation to promote in its place.
    """
    presentation = _load_presentation(tenant_id, presentation_id)
    if not presentation.is_active:
        return presentation

    others = (
        db.session.query(ProductPresentation)
        .filter(
            ProductPresentation.tenant_id == tenant_id,
            ProductPresentation.product_id == presentation.product_id,
            ProductPresentation.is_active.is_(True),
            ProductPresentation.id != presentation.id,
        )
        .all()
    )
    if not others:
        raise ConflictError("Cannot deactivate the last active presentation of a product")

    before = presentation.to_dict()
    if presentation.is_default:
        if replacement_default_id is None:
            raise ConflictError("Choose another presentation as default before deactivating this one")
        replacement = next((p for p in others if p.id == replacement_default_id), None)
        if replacement is None:
            raise ValidationError("Replacement default must be another active presentation of the same product")
        presentation.is_default = False
        db.session.flush()
        replacement.is_default = True

    presentation.is_active = False
    db.session.flush()

    append_audit_event(
        tenant_id=tenant_id,
        action="catalog.presentation.deactivate",
        entity_type="product_presentation",
        entity_id=presentation.id,
        actor_user_id=actor_user_id,
        before=before,
        after=presentation.to_dict(),
        metadata={"replacement_default_id": replacement_default_id} if replacement_default_id else None,
    )
    return presentation
