from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only record of a state transition.

    Written in the same transaction as the change it describes. Rows are
    never updated or deleted.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_tenant_entity", "tenant_id", "entity_type", "entity_id"),
        db.Index("ix_audit_events_tenant_created", "tenant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)  # e.g. quote.process
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(80), nullable=True)

    before = db.Column(db.JSON, nullable=True)
    after = db.Column(db.JSON, nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "metadata": self.metadata_json,
            "created_at": to_utc_z(self.created_at),
        }
