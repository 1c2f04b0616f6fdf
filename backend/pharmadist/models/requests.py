from __future__ import annotations

from ..extensions import db
from ..quantities import format_quantity
from ..time_utils import to_utc_z
from .types import DecimalString

REQUEST_STATUS_OPEN = "OPEN"
REQUEST_STATUS_FULFILLED = "FULFILLED"
REQUEST_STATUS_CANCELLED = "CANCELLED"


class StockMovementRequest(db.Model):
    """
    Cross-branch "please ship me stock" ticket for one city.

    LIFECYCLE: OPEN -> FULFILLED (all items' remaining reached zero)
               OPEN -> CANCELLED
    """
    __tablename__ = "stock_movement_requests"
    __table_args__ = (
        db.Index("ix_movement_requests_tenant_city_status", "tenant_id", "requested_city", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=REQUEST_STATUS_OPEN, index=True)
    requested_city = db.Column(db.String(80), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=True, index=True)
    requested_by = db.Column(db.String(255), nullable=True)
    note = db.Column(db.String(500), nullable=True)

    fulfilled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfilled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "StockMovementRequestItem",
        backref="request",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="StockMovementRequestItem.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "requested_city": self.requested_city,
            "warehouse_id": self.warehouse_id,
            "quote_id": self.quote_id,
            "requested_by": self.requested_by,
            "note": self.note,
            "fulfilled_at": to_utc_z(self.fulfilled_at),
            "fulfilled_by_user_id": self.fulfilled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class StockMovementRequestItem(db.Model):
    __tablename__ = "stock_movement_request_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    request_id = db.Column(db.Integer, db.ForeignKey("stock_movement_requests.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    requested_quantity = db.Column(DecimalString(), nullable=False)
    remaining_quantity = db.Column(DecimalString(), nullable=False)
    presentation_id = db.Column(db.Integer, db.ForeignKey("product_presentations.id"), nullable=True)
    presentation_quantity = db.Column(DecimalString(), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_sku": self.product.sku if self.product else None,
            "product_name": self.product.name if self.product else None,
            "requested_quantity": format_quantity(self.requested_quantity),
            "remaining_quantity": format_quantity(self.remaining_quantity),
            "presentation_id": self.presentation_id,
            "presentation_quantity": format_quantity(self.presentation_quantity),
        }
