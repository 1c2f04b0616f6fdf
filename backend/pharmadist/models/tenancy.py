from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every company using the system is a Tenant.

    All catalog, warehouse, sales and stock rows carry tenant_id and every
    query is scoped by it. Nothing crosses tenant boundaries.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    country = db.Column(db.String(2), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "country": self.country,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TenantSequence(db.Model):
    """
    Counter row per (tenant, year, key).

    current_value is the last issued value. Numbers are handed out by an
    atomic increment on this row, never by scanning existing documents.
    """
    __tablename__ = "tenant_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "year", "key", name="uq_tenant_sequences_tenant_year_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    key = db.Column(db.String(16), nullable=False)
    current_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "year": self.year,
            "key": self.key,
            "current_value": self.current_value,
            "updated_at": to_utc_z(self.updated_at),
        }
