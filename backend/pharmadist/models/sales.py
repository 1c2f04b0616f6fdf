from __future__ import annotations

from ..extensions import db
from ..quantities import format_quantity
from ..time_utils import to_iso_date, to_utc_z
from .types import DecimalString


class Customer(db.Model):
    """Customer with a home city; quotes are served from warehouses in that city."""
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_tenant_name", "tenant_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    business_name = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(80), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "business_name": self.business_name,
            "city": self.city,
            "address": self.address,
            "phone": self.phone,
            "is_active": self.is_active,
        }


QUOTE_STATUS_CREATED = "CREATED"
QUOTE_STATUS_PROCESSED = "PROCESSED"


class Quote(db.Model):
    """
    Sales quote.

    LIFECYCLE: CREATED -> PROCESSED (terminal). Editable only while CREATED;
    processing happens exactly once and yields one SalesOrder.
    """
    __tablename__ = "quotes"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "number", name="uq_quotes_tenant_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=QUOTE_STATUS_CREATED, index=True)

    validity_days = db.Column(db.Integer, nullable=False, default=7)
    payment_mode = db.Column(db.String(50), nullable=False, default="CASH")
    delivery_days = db.Column(db.Integer, nullable=False, default=1)
    delivery_city = db.Column(db.String(80), nullable=True)
    delivery_address = db.Column(db.String(255), nullable=True)
    global_discount_pct = db.Column(DecimalString(), nullable=False, default=0)
    proposal_value = db.Column(db.String(200), nullable=True)
    note = db.Column(db.String(500), nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer")
    lines = db.relationship(
        "QuoteLine",
        backref="quote",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="QuoteLine.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def effective_city(self) -> str | None:
        """Delivery city when given, otherwise the customer's home city."""
        return self.delivery_city or (self.customer.city if self.customer else None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "status": self.status,
            "validity_days": self.validity_days,
            "payment_mode": self.payment_mode,
            "delivery_days": self.delivery_days,
            "delivery_city": self.delivery_city,
            "delivery_address": self.delivery_address,
            "global_discount_pct": format_quantity(self.global_discount_pct),
            "proposal_value": self.proposal_value,
            "note": self.note,
            "processed_at": to_utc_z(self.processed_at),
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class QuoteLine(db.Model):
    """
    quantity is always base units. presentation_id/presentation_quantity are a
    redundant view of the same amount, kept for display.
    """
    __tablename__ = "quote_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(DecimalString(), nullable=False)
    presentation_id = db.Column(db.Integer, db.ForeignKey("product_presentations.id"), nullable=True)
    presentation_quantity = db.Column(DecimalString(), nullable=True)
    unit_price = db.Column(DecimalString(), nullable=False)
    discount_pct = db.Column(DecimalString(), nullable=False, default=0)

    product = db.relationship("Product")
    presentation = db.relationship("ProductPresentation")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "product_sku": self.product.sku if self.product else None,
            "quantity": format_quantity(self.quantity),
            "presentation_id": self.presentation_id,
            "presentation_name": self.presentation.name if self.presentation else None,
            "presentation_quantity": format_quantity(self.presentation_quantity),
            "unit_price": format_quantity(self.unit_price),
            "discount_pct": format_quantity(self.discount_pct),
        }


ORDER_STATUS_DRAFT = "DRAFT"
ORDER_STATUS_CONFIRMED = "CONFIRMED"
ORDER_STATUS_FULFILLED = "FULFILLED"
ORDER_STATUS_CANCELLED = "CANCELLED"


class SalesOrder(db.Model):
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "number", name="uq_sales_orders_tenant_number"),
        db.UniqueConstraint("tenant_id", "quote_id", name="uq_sales_orders_tenant_quote"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_CONFIRMED, index=True)
    city = db.Column(db.String(80), nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)
    delivery_address = db.Column(db.String(255), nullable=True)
    note = db.Column(db.String(500), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer")
    quote = db.relationship("Quote")
    lines = db.relationship("SalesOrderLine", backref="order", lazy=True, order_by="SalesOrderLine.id")

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "customer_id": self.customer_id,
            "quote_id": self.quote_id,
            "status": self.status,
            "city": self.city,
            "delivery_date": to_iso_date(self.delivery_date),
            "delivery_address": self.delivery_address,
            "note": self.note,
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SalesOrderLine(db.Model):
    __tablename__ = "sales_order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)

    quantity = db.Column(DecimalString(), nullable=False)
    presentation_id = db.Column(db.Integer, db.ForeignKey("product_presentations.id"), nullable=True)
    presentation_quantity = db.Column(DecimalString(), nullable=True)
    # Net of line and global discounts
    unit_price = db.Column(DecimalString(), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "batch_id": self.batch_id,
            "quantity": format_quantity(self.quantity),
            "presentation_id": self.presentation_id,
            "presentation_quantity": format_quantity(self.presentation_quantity),
            "unit_price": format_quantity(self.unit_price),
        }


class SalesOrderReservation(db.Model):
    """
    "This many units of this balance were committed to this order line."

    Written once. released_at is stamped when the units leave the
    reservation, either shipped (fulfill) or handed back (cancel).
    """
    __tablename__ = "sales_order_reservations"
    __table_args__ = (
        db.Index("ix_reservations_order_line", "sales_order_id", "sales_order_line_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    sales_order_line_id = db.Column(db.Integer, db.ForeignKey("sales_order_lines.id"), nullable=False, index=True)
    inventory_balance_id = db.Column(db.Integer, db.ForeignKey("inventory_balances.id"), nullable=False, index=True)
    quantity = db.Column(DecimalString(), nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    released_at = db.Column(db.DateTime(timezone=True), nullable=True)

    inventory_balance = db.relationship("InventoryBalance")
    line = db.relationship("SalesOrderLine")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_order_id": self.sales_order_id,
            "sales_order_line_id": self.sales_order_line_id,
            "inventory_balance_id": self.inventory_balance_id,
            "quantity": format_quantity(self.quantity),
            "created_at": to_utc_z(self.created_at),
            "released_at": to_utc_z(self.released_at),
        }
