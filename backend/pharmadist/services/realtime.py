# Overview: Post-commit realtime notifications (tenant-scoped channels).

"""
Realtime side channel.

Services call enqueue() while their transaction is open. Nothing is sent
then: events wait in session.info and are handed to the sink from the
session's after_commit hook, so a rolled back transaction never announces
anything and a sink failure never touches a committed transaction.
Delivery is best effort; failures are logged.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

OUTBOX_KEY = "realtime_outbox"


def channel_for_tenant(tenant_id: int) -> str:
    return f"tenant:{tenant_id}"


@dataclass
class RealtimeEvent:
    channel: str
    name: str
    payload: dict = field(default_factory=dict)


class LoggingSink:
    """Writes events to the log. Default when no transport is attached."""

    def publish(self, evt: RealtimeEvent) -> None:
        logger.info("realtime %s -> %s %s", evt.name, evt.channel, json.dumps(evt.payload, default=str))


class NullSink:
    def publish(self, evt: RealtimeEvent) -> None:
        return None


class RecordingSink:
    """Keeps published events in memory (tests, debugging)."""

    def __init__(self):
        self.events: list[RealtimeEvent] = []

    def publish(self, evt: RealtimeEvent) -> None:
        self.events.append(evt)

    def names(self) -> list[str]:
        return [evt.name for evt in self.events]

    def clear(self) -> None:
        self.events.clear()


_sink = LoggingSink()


def set_sink(sink) -> None:
    global _sink
    _sink = sink


def sink_from_config(name: str):
    if name == "none":
        return NullSink()
    return LoggingSink()


def enqueue(session: Session, tenant_id: int, name: str, payload: dict) -> None:
    """Queue an event for delivery after the session's next commit."""
    session.info.setdefault(OUTBOX_KEY, []).append(
        RealtimeEvent(channel=channel_for_tenant(tenant_id), name=name, payload=payload)
    )


def pending(session: Session) -> list[RealtimeEvent]:
    return list(session.info.get(OUTBOX_KEY, []))


def _dispatch_after_commit(session: Session) -> None:
    # Releasing a savepoint also fires after_commit; only the outer commit counts
    if session.in_nested_transaction():
        return
    events = session.info.pop(OUTBOX_KEY, [])
    for evt in events:
        try:
            _sink.publish(evt)
        except Exception:
            logger.exception("Realtime publish failed for %s on %s", evt.name, evt.channel)


def _discard_after_rollback(session: Session, previous_transaction) -> None:
    # Savepoint rollbacks (audit writes, sequence races) keep the outer work alive
    if previous_transaction.nested:
        return
    session.info.pop(OUTBOX_KEY, None)


def register_session_hooks() -> None:
    if not event.contains(Session, "after_commit", _dispatch_after_commit):
        event.listen(Session, "after_commit", _dispatch_after_commit)
    if not event.contains(Session, "after_soft_rollback", _discard_after_rollback):
        event.listen(Session, "after_soft_rollback", _discard_after_rollback)
