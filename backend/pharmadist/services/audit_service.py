# Overview: Append-only audit trail for state transitions.

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditEvent

logger = logging.getLogger(__name__)
"""
Audit invariants:

- One row per state transition (create/update/process/fulfill/cancel...).
- Written inside the same DB transaction as the change it records.
- A failed audit write is logged and never blocks the transition itself.
"""


def append_audit_event(
    *,
    tenant_id: int,
    action: str,
    entity_type: str,
    entity_id=None,
    actor_user_id: int | None = None,
    before: dict | None = None,
    after: dict | None = None,
    metadata: dict | None = None,
) -> AuditEvent | None:
    """
    Append an audit event in a SAVEPOINT of the current transaction.

    Returns the event, or None when the write failed (already logged).
    """
    event = AuditEvent(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        before=before,
        after=after,
        metadata_json=metadata,
    )
    # Pending domain writes flush here, outside the guarded block
    db.session.flush()
    try:
        with db.session.begin_nested():
            db.session.add(event)
    except SQLAlchemyError:
        logger.warning(
            "Audit write failed for %s %s/%s (tenant %s)",
            action, entity_type, entity_id, tenant_id,
            exc_info=True,
        )
        return None
    return event


def list_audit_events(tenant_id: int, *, entity_type: str | None = None, entity_id=None, limit: int = 100) -> list[AuditEvent]:
    query = db.session.query(AuditEvent).filter_by(tenant_id=tenant_id)
    if entity_type:
        query = query.filter_by(entity_type=entity_type)
    if entity_id is not None:
        query = query.filter_by(entity_id=str(entity_id))
    return query.order_by(AuditEvent.id.desc()).limit(limit).all()
