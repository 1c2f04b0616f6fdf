from __future__ import annotations

from ..extensions import db
from ..quantities import format_quantity
from ..time_utils import to_iso_date, to_utc_z
from .types import DecimalString


class Product(db.Model):
    """
    Product master data.

    SKU is unique per tenant. price is the price of one base unit; stock for
    the product is always tracked in base units.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    generic_name = db.Column(db.String(255), nullable=True)
    price = db.Column(DecimalString(), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "generic_name": self.generic_name,
            "price": format_quantity(self.price),
            "is_active": self.is_active,
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductPresentation(db.Model):
    """
    Named packaging multiple of a product's base unit ("Caja" = 12 units).

    Exactly one active default per product. The application keeps that
    invariant; the partial unique index only backs it up.
    price_override is the price of ONE presentation unit, not of a base unit.
    """
    __tablename__ = "product_presentations"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_id", "name", name="uq_presentations_product_name"),
        db.Index(
            "uq_presentations_product_default",
            "product_id",
            unique=True,
            sqlite_where=db.text("is_default = 1"),
            postgresql_where=db.text("is_default"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(80), nullable=False)
    units_per_presentation = db.Column(db.Integer, nullable=False, default=1)
    price_override = db.Column(DecimalString(), nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("presentations", lazy=True))

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "units_per_presentation": self.units_per_presentation,
            "price_override": format_quantity(self.price_override),
            "is_default": self.is_default,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
            "version": self.version,
        }


BATCH_STATUS_RELEASED = "RELEASED"
BATCH_STATUS_QUARANTINE = "QUARANTINE"
BATCH_STATUS_REJECTED = "REJECTED"
BATCH_STATUSES = {BATCH_STATUS_RELEASED, BATCH_STATUS_QUARANTINE, BATCH_STATUS_REJECTED}


class Batch(db.Model):
    """
    Production lot of a product.

    Only RELEASED batches that are not expired (expires_at >= today UTC, or no
    expiry at all) may back a reservation.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_id", "batch_number", name="uq_batches_product_number"),
        db.Index("ix_batches_product_expiry", "product_id", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    batch_number = db.Column(db.String(80), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=BATCH_STATUS_RELEASED, index=True)
    expires_at = db.Column(db.Date, nullable=True)
    manufacturing_date = db.Column(db.Date, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))

    __mapper_args__ = {"version_id_col": version}

    def is_expired(self, today) -> bool:
        return self.expires_at is not None and self.expires_at < today

    def is_allocatable(self, today) -> bool:
        return self.status == BATCH_STATUS_RELEASED and not self.is_expired(today)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "status": self.status,
            "expires_at": to_iso_date(self.expires_at),
            "manufacturing_date": to_iso_date(self.manufacturing_date),
            "version": self.version,
        }
