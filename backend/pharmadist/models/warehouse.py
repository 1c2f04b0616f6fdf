from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..quantities import ZERO, format_quantity, non_negative
from ..time_utils import to_utc_z
from .types import DecimalString


class Warehouse(db.Model):
    """
    A branch's warehouse. city is what scopes automatic stock allocation:
    an order is only ever served from warehouses in its own city.
    """
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_warehouses_tenant_code"),
        db.Index("ix_warehouses_tenant_city", "tenant_id", "city"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    city = db.Column(db.String(80), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "city": self.city,
            "is_active": self.is_active,
        }


class Location(db.Model):
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "warehouse_id", "code", name="uq_locations_warehouse_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    warehouse = db.relationship("Warehouse", backref=db.backref("locations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "warehouse_id": self.warehouse_id,
            "code": self.code,
            "is_active": self.is_active,
        }


class InventoryBalance(db.Model):
    """
    Mutable stock ledger row: (tenant, product, batch|null, location).

    quantity is what is physically on hand, reserved_quantity what is already
    committed to orders but not shipped. 0 <= reserved_quantity <= quantity
    always holds; the mutators below refuse any change that would break it.
    Rows are only mutated inside a transaction that also writes the matching
    reservation or movement record.
    """
    __tablename__ = "inventory_balances"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "product_id", "batch_id", "location_id",
            name="uq_inventory_balances_key",
        ),
        db.Index("ix_inventory_balances_product_location", "product_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    quantity = db.Column(DecimalString(), nullable=False, default=Decimal("0"))
    reserved_quantity = db.Column(DecimalString(), nullable=False, default=Decimal("0"))
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    batch = db.relationship("Batch")
    location = db.relationship("Location")

    __mapper_args__ = {"version_id_col": version}

    @property
    def available_quantity(self) -> Decimal:
        """quantity - reserved, clamped at zero against bad data."""
        return non_negative((self.quantity or ZERO) - (self.reserved_quantity or ZERO))

    def reserve(self, amount: Decimal) -> None:
        new_reserved = (self.reserved_quantity or ZERO) + amount
        if amount <= ZERO or new_reserved > (self.quantity or ZERO):
            raise ValueError(f"Cannot reserve {amount} on balance {self.id}")
        self.reserved_quantity = new_reserved

    def release(self, amount: Decimal) -> None:
        new_reserved = (self.reserved_quantity or ZERO) - amount
        if amount <= ZERO or new_reserved < ZERO:
            raise ValueError(f"Cannot release {amount} on balance {self.id}")
        self.reserved_quantity = new_reserved

    def consume_reserved(self, amount: Decimal) -> None:
        """Ship reserved units: both counters drop by the same amount."""
        self.release(amount)
        self.quantity = (self.quantity or ZERO) - amount

    def adjust_quantity(self, delta: Decimal) -> None:
        """Change on-hand stock; a decrease may not dip into reserved units."""
        new_quantity = (self.quantity or ZERO) + delta
        if new_quantity < (self.reserved_quantity or ZERO):
            raise ValueError(f"Balance {self.id} would drop below its reserved quantity")
        self.quantity = new_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "location_id": self.location_id,
            "quantity": format_quantity(self.quantity),
            "reserved_quantity": format_quantity(self.reserved_quantity),
            "available_quantity": format_quantity(self.available_quantity),
            "version": self.version,
            "updated_at": to_utc_z(self.updated_at),
        }


MOVEMENT_TYPES = {"IN", "OUT", "TRANSFER", "ADJUSTMENT"}


class StockMovement(db.Model):
    """Immutable record of one physical stock change, numbered per tenant/year."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "number", name="uq_stock_movements_tenant_number"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    number = db.Column(db.String(32), nullable=False)
    number_year = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    quantity = db.Column(DecimalString(), nullable=False)
    presentation_id = db.Column(db.Integer, db.ForeignKey("product_presentations.id"), nullable=True)
    presentation_quantity = db.Column(DecimalString(), nullable=True)

    reference_type = db.Column(db.String(50), nullable=True)
    reference_id = db.Column(db.String(80), nullable=True)
    note = db.Column(db.String(500), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "type": self.type,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "quantity": format_quantity(self.quantity),
            "presentation_id": self.presentation_id,
            "presentation_quantity": format_quantity(self.presentation_quantity),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
